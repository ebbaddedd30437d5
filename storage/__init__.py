"""
MiniDoc Storage Layer
=====================
Document model, value type system and error taxonomy.

Usage:
    from storage import DataType, type_of, values_equal, MISSING
    from storage.collection import Collection
"""

from storage.types import (
    DataType, Bracket, type_of, is_number, values_equal, sort_key, equality_key,
)
from storage.document import ID_FIELD, MISSING, Document, get_path, validate_document
from storage.errors import (
    EngineError, InvalidPredicateError, InvalidQueryError, InvalidUpdateError,
    InvalidPipelineError, ExpressionError, InvalidDocumentError, ImmutableFieldError,
    DuplicateKeyError, IndexConflictError, IndexNotFoundError,
)

__all__ = [
    "DataType", "Bracket", "type_of", "is_number", "values_equal", "sort_key", "equality_key",
    "ID_FIELD", "MISSING", "Document", "get_path", "validate_document",
    "EngineError", "InvalidPredicateError", "InvalidQueryError", "InvalidUpdateError",
    "InvalidPipelineError", "ExpressionError", "InvalidDocumentError", "ImmutableFieldError",
    "DuplicateKeyError", "IndexConflictError", "IndexNotFoundError",
]
