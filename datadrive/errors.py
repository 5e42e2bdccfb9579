# datadrive/errors.py
from __future__ import annotations

from typing import Dict, Optional


class DataDriveError(Exception):
    """Base class for every error raised by the dataset / edit-request core."""


class ParseError(DataDriveError):
    """Uploaded file could not be decoded, or holds no data rows."""


class DuplicateNameError(DataDriveError):
    pass


class NotFoundError(DataDriveError):
    """Unknown dataset, version, request or media item."""


class UnmarshalError(DataDriveError):
    """A stored row could not be decoded. Treated as store corruption."""


class UploadError(DataDriveError):
    pass


class RelocationError(DataDriveError):
    """
    Object-store copy/delete failed while moving a prefix.

    ``moved`` holds the objects that were already moved (old -> new) so that
    the caller can compensate. Nothing is trusted to have moved.
    """

    def __init__(self, message: str, moved: Optional[Dict[str, str]] = None):
        super().__init__(message)
        self.moved: Dict[str, str] = dict(moved or {})


class RowNotFoundError(DataDriveError):
    """An existing-row edit points at a row that is no longer stored."""
