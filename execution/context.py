"""
MiniDoc Execution Context
=========================
Engine configuration (defaults overridable through MINIDOC_* environment
variables) and the per-operation context handed to the physical planner.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

from storage.collection import Collection


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass
class EngineConfig:
    """Engine tuning knobs."""
    lock_timeout: float = 5.0           # seconds to wait for a collection lock
    fast_scan_threshold: int = 1_000    # docs examined at or below → "fast"
    slow_scan_threshold: int = 100_000  # docs examined above → "slow"
    default_page_size: int = 5

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Read MINIDOC_* environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            lock_timeout=_env_float("MINIDOC_LOCK_TIMEOUT", defaults.lock_timeout),
            fast_scan_threshold=_env_int("MINIDOC_FAST_SCAN_THRESHOLD", defaults.fast_scan_threshold),
            slow_scan_threshold=_env_int("MINIDOC_SLOW_SCAN_THRESHOLD", defaults.slow_scan_threshold),
            default_page_size=_env_int("MINIDOC_PAGE_SIZE", defaults.default_page_size),
        )

    def duration_class(self, docs_examined: int) -> str:
        if docs_examined <= self.fast_scan_threshold:
            return "fast"
        if docs_examined <= self.slow_scan_threshold:
            return "moderate"
        return "slow"


@dataclass
class ScanStats:
    """Counters filled in by scan operators during one execution."""
    docs_examined: int = 0
    keys_examined: int = 0


@dataclass
class ExecutionContext:
    """Run-time context for one operation."""
    collection: Collection
    config: EngineConfig = field(default_factory=EngineConfig)
    stats: ScanStats = field(default_factory=ScanStats)
    index_name: Optional[str] = field(default=None)   # index used, if any
