"""
Error Types Module
Exceptions raised by the comparison engine and the record store.
"""

from pathlib import Path
from typing import Optional, Union


class ScreenDiffError(Exception):
    """Base class for errors raised by this package."""


class DecodeError(ScreenDiffError):
    """A raster file exists but could not be decoded."""

    def __init__(self, path: Union[str, Path], reason: str):
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"Could not decode image {self.path}: {reason}")


class SchemaValidationError(ScreenDiffError, ValueError):
    """A persisted record is malformed or missing a required field."""

    def __init__(self, message: str, field: Optional[str] = None, index: Optional[int] = None):
        self.field = field
        self.index = index
        super().__init__(message)
