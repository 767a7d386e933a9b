from typing import Iterable, Optional


class StrataError(Exception):
    """Base exception for all engine and storage errors."""

    def __init__(self, message: str, ids: Optional[Iterable[str]] = None):
        super().__init__(message)
        self.message = message
        self.ids = tuple(ids or ())

class RecoverableError(StrataError):
    """An error that leaves the snapshot untouched; the caller may retry or move on."""
    pass

class FatalError(StrataError):
    """An error that requires application termination or major intervention."""
    pass

class NotFound(RecoverableError):
    """An operation referenced an id absent from the current snapshot."""
    pass

class InvalidStructure(RecoverableError):
    """A mutation would break the tree, e.g. by parenting an item under its own subtree."""
    pass

class ValidationFailure(RecoverableError):
    """Caller-facing rule violation; never reaches storage."""
    pass

class StorageFailure(RecoverableError):
    """A storage call failed. The whole logical mutation can be retried."""
    pass

class FileOperationError(StorageFailure):
    """File operation failed but can be retried."""
    pass

class CorruptionError(FatalError):
    """Corrupted Data Error - from syntax errors in data formats, to just unknown data"""
    pass
