"""
MiniDoc Error Taxonomy
======================
Every error the engine raises derives from EngineError, so callers can
catch the whole family or a single failure class.

Rules:
  - Errors are raised where detected and propagate to the caller.
  - A raised error means the operation was aborted with no partial mutation.
  - "No match" is never an error (find/update_one/delete_one report zero).
"""


class EngineError(Exception):
    """Base class for all MiniDoc errors."""
    pass


class InvalidPredicateError(EngineError):
    """Malformed filter, or a range comparison between incompatible types."""
    pass


class InvalidQueryError(EngineError):
    """Malformed projection, sort, skip, limit or page request."""
    pass


class InvalidUpdateError(EngineError):
    """Malformed update document."""
    pass


class InvalidPipelineError(EngineError):
    """Unknown or malformed aggregation stage or accumulator."""
    pass


class ExpressionError(EngineError):
    """Runtime failure while evaluating a pipeline expression."""
    pass


class InvalidDocumentError(EngineError):
    """Document holds an unsupported value type or field name."""
    pass


class ImmutableFieldError(EngineError):
    """An update tried to change the document identifier."""
    pass


class DuplicateKeyError(EngineError):
    """Duplicate _id, or a unique index violation."""
    pass


class IndexConflictError(EngineError):
    """An index with the same fields (or name) but a different key exists."""
    pass


class IndexNotFoundError(EngineError):
    """No index with the given name."""
    def __init__(self, name: str):
        super().__init__(f"Index '{name}' not found.")
        self.name = name
