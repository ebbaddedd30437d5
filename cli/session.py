"""
MiniDoc Session
===============
Scoped state object for one demo run.

Owns:
  - the books Collection (seeded from the built-in sample or a JSON file)
  - the Executor facade over it, built from one EngineConfig

Lifecycle:
  - Use as a context manager; close() runs on every exit path
  - After close() the collection is emptied and every call raises
    SessionError
"""

import json
import logging
import os
from typing import Any, Dict, List, Optional

from cli.sample_data import SAMPLE_BOOKS
from execution.context import EngineConfig
from execution.executor import Executor
from storage.collection import Collection
from storage.errors import EngineError

logger = logging.getLogger(__name__)


class SessionError(EngineError):
    """Session-level error (closed session, unreadable data file)."""
    pass


def load_documents(path: str) -> List[Dict[str, Any]]:
    """Read a JSON array of book objects."""
    if not os.path.isfile(path):
        raise SessionError(f"Data file not found: {path}")
    with open(path, "r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise SessionError(f"Data file {path} is not valid JSON: {e}") from e
    if not isinstance(data, list) or not all(isinstance(d, dict) for d in data):
        raise SessionError(f"Data file {path} must hold a JSON array of objects")
    return data


class Session:
    """
    Demo session: owns the collection for one run.

    Usage:
        with Session() as session:
            session.executor.find({"genre": "Fiction"})
    """

    def __init__(self, data_path: Optional[str] = None, *,
                 config: Optional[EngineConfig] = None, collection_name: str = "books"):
        self.config = config or EngineConfig.from_env()
        self.data_path = data_path
        self.collection = Collection(collection_name, lock_timeout=self.config.lock_timeout)
        self._executor = Executor(self.collection, self.config)
        self._closed: bool = False

        documents = load_documents(data_path) if data_path else SAMPLE_BOOKS
        self.loaded = len(self._executor.insert_many(documents).inserted_ids)
        logger.info("Session loaded %d document(s) into %s from %s",
                    self.loaded, collection_name, data_path or "built-in sample")

    @property
    def executor(self) -> Executor:
        self._check_closed()
        return self._executor

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_closed(self):
        if self._closed:
            raise SessionError("Session is closed")

    # ─── Lifecycle ──────────────────────────────────────────────────

    def close(self) -> None:
        """Release the collection. Safe to call more than once."""
        if self._closed:
            return
        self.collection.clear()
        self._closed = True
        logger.info("Session closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
