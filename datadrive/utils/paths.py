# datadrive/utils/paths.py
from __future__ import annotations

import os
import re

from ..config import settings


MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/jpg": ".jpg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/heic": ".heic",
    "application/pdf": ".pdf",
}
DEFAULT_EXTENSION = ".jpg"


def sanitize_part(s: str | None) -> str:
    s = (s or "").strip().lower().replace(" ", "_")
    s = re.sub(r"[^a-z0-9_\-]", "", s)
    return s or "unknown"


def staging_prefix(request_id: int, first_name: str | None, last_name: str | None) -> str:
    """Temporary folder for media of a request whose row does not exist yet."""
    return f"{settings.MEDIA_PREFIX}/{request_id}_{sanitize_part(first_name)}_{sanitize_part(last_name)}"


def row_prefix(row_id: int) -> str:
    return f"{settings.MEDIA_PREFIX}/{row_id}"


def ext_from_filename_or_mime(filename: str | None, mime: str | None) -> str:
    ext = os.path.splitext(filename or "")[1].lower()
    if ext:
        return ext
    return MIME_EXTENSIONS.get((mime or "").strip().lower(), DEFAULT_EXTENSION)


def clamp_comment(s: str | None, limit: int = 100) -> str:
    return (s or "").strip()[:limit]


def make_locator(bucket: str, object_name: str) -> str:
    return f"{bucket}/{object_name}"


def split_locator(locator: str) -> tuple[str, str]:
    bucket, sep, object_name = (locator or "").strip().partition("/")
    if not sep or not bucket or not object_name:
        raise ValueError(f"invalid media locator: {locator!r}")
    return bucket, object_name
