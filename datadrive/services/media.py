"""
Media Attachment Manager.

Photos and documents are written to an object store under a prefix derived
from the edit request (staging) or from the permanent row id. The store used
in production is a directory tree, one directory per bucket.
"""
from __future__ import annotations

import base64
import binascii
import mimetypes
import shutil
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from ..errors import NotFoundError, RelocationError, UploadError
from ..logging import get_logger
from ..models import MediaAttachment
from ..models.edit_request import DOCUMENT, PHOTOS
from ..utils.paths import (
    ext_from_filename_or_mime,
    make_locator,
    sanitize_part,
    split_locator,
)

logger = get_logger(__name__)


# ---------- Object store ----------

class ObjectStore:
    """Minimal bucket/object interface the media manager relies on."""

    def write(self, bucket: str, name: str, data: bytes) -> int:
        raise NotImplementedError

    def read(self, bucket: str, name: str) -> bytes:
        raise NotImplementedError

    def copy(self, bucket: str, src: str, dst: str) -> None:
        raise NotImplementedError

    def delete(self, bucket: str, name: str) -> None:
        raise NotImplementedError

    def list(self, bucket: str, prefix: str) -> List[str]:
        raise NotImplementedError

    def exists(self, bucket: str, name: str) -> bool:
        raise NotImplementedError


class LocalObjectStore(ObjectStore):
    def __init__(self, root: str | Path):
        self.root = Path(root)

    def _bucket_dir(self, bucket: str) -> Path:
        return self.root / bucket

    def _path(self, bucket: str, name: str) -> Path:
        base = self._bucket_dir(bucket).resolve()
        path = (base / name).resolve()
        if base != path and base not in path.parents:
            raise ValueError(f"object name escapes bucket: {name!r}")
        return path

    def write(self, bucket: str, name: str, data: bytes) -> int:
        path = self._path(bucket, name)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
        return len(data)

    def read(self, bucket: str, name: str) -> bytes:
        return self._path(bucket, name).read_bytes()

    def copy(self, bucket: str, src: str, dst: str) -> None:
        target = self._path(bucket, dst)
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(self._path(bucket, src), target)

    def delete(self, bucket: str, name: str) -> None:
        self._path(bucket, name).unlink()

    def list(self, bucket: str, prefix: str) -> List[str]:
        base = self._bucket_dir(bucket)
        if not base.exists():
            return []
        names = (p.relative_to(base).as_posix() for p in base.rglob("*") if p.is_file())
        return sorted(n for n in names if n.startswith(prefix))

    def exists(self, bucket: str, name: str) -> bool:
        return self._path(bucket, name).is_file()


# ---------- Staging ----------

@dataclass
class StagedObject:
    locator: str
    object_name: str
    file_name: str
    size_bytes: int
    content_type: str


def media_file_name(
    first_name: Optional[str],
    last_name: Optional[str],
    timestamp: str,
    index: int,
    kind: str,
    original_filename: str = "",
    mime_type: str = "",
) -> str:
    """
    ``kind`` is "photo", "gallery" or "document". Photos are always renamed;
    documents keep their original basename after the numbered prefix.
    """
    ext = ext_from_filename_or_mime(original_filename, mime_type)
    stem = f"{sanitize_part(first_name)}_{sanitize_part(last_name)}_{timestamp}"
    if kind == "gallery":
        return f"{stem}_gallery_{index}{ext}"
    if kind == "document":
        original = PurePosixPath((original_filename or "").replace("\\", "/")).name
        if not original:
            return f"{stem}_doc_{index}{ext}"
        if not PurePosixPath(original).suffix:
            original += ext
        return f"{stem}_doc_{index}_{original}"
    return f"{stem}_{index}{ext}"


def decode_base64_payload(data_base64: str) -> bytes:
    # strip "data:image/jpeg;base64," prefix
    if "," in data_base64:
        data_base64 = data_base64.split(",", 1)[1]
    return base64.b64decode(data_base64, validate=True)


def stage_media(
    store: ObjectStore,
    bucket: str,
    base_prefix: str,
    file_name: str,
    data_base64: str,
    content_type: str = "",
) -> StagedObject:
    object_name = f"{base_prefix.rstrip('/')}/{file_name}"
    try:
        data = decode_base64_payload(data_base64)
    except (binascii.Error, ValueError) as exc:
        raise UploadError(f"invalid base64 payload for {file_name}: {exc}") from exc

    try:
        size = store.write(bucket, object_name, data)
    except (OSError, ValueError) as exc:
        raise UploadError(f"failed to upload {object_name}: {exc}") from exc

    return StagedObject(
        locator=make_locator(bucket, object_name),
        object_name=object_name,
        file_name=file_name,
        size_bytes=size,
        content_type=content_type or mimetypes.guess_type(file_name)[0] or "application/octet-stream",
    )


def discard_objects(store: ObjectStore, bucket: str, names: Iterable[str]) -> None:
    """Best-effort cleanup of objects written by an abandoned submission."""
    for name in names:
        try:
            store.delete(bucket, name)
        except OSError as exc:
            logger.warning("Could not discard %s/%s: %s", bucket, name, exc)


# ---------- Relocation ----------

def relocate(store: ObjectStore, bucket: str, src_prefix: str, dst_prefix: str) -> Dict[str, str]:
    """
    Move every object under ``src_prefix/`` to ``dst_prefix/`` keeping basenames.

    Returns ``{old_object_name: new_object_name}``. On any failure the objects
    already moved are moved back (best effort) and the error is raised, so a
    failed call never counts as a partial success.
    """
    src_prefix = src_prefix.rstrip("/")
    dst_prefix = dst_prefix.rstrip("/")

    moved: Dict[str, str] = {}
    try:
        for old_name in store.list(bucket, src_prefix + "/"):
            new_name = f"{dst_prefix}/{PurePosixPath(old_name).name}"
            store.copy(bucket, old_name, new_name)
            store.delete(bucket, old_name)
            moved[old_name] = new_name
    except OSError as exc:
        _move_back(store, bucket, moved)
        raise RelocationError(
            f"failed to move {src_prefix} -> {dst_prefix} after {len(moved)} object(s): {exc}",
            moved,
        ) from exc
    except BaseException:
        _move_back(store, bucket, moved)
        raise

    logger.info("Relocated %d object(s) %s -> %s", len(moved), src_prefix, dst_prefix)
    return moved


def _move_back(store: ObjectStore, bucket: str, moved: Dict[str, str]) -> None:
    for old_name, new_name in moved.items():
        try:
            store.copy(bucket, new_name, old_name)
            store.delete(bucket, new_name)
        except OSError as exc:
            logger.error("Could not move %s back to %s: %s", new_name, old_name, exc)


# ---------- Moderation / reads ----------

def review_media(
    db: Session,
    approved: Iterable[int],
    rejected: Iterable[int],
    reviewer: Optional[str],
) -> int:
    """Photo moderation, independent from the parent request's approval."""
    now = datetime.utcnow()
    approved, rejected = list(approved), list(rejected)
    touched = 0
    try:
        for ids, flag in ((approved, True), (rejected, False)):
            if not ids:
                continue
            touched += (
                db.query(MediaAttachment)
                .filter(MediaAttachment.id.in_(ids))
                .update(
                    {
                        MediaAttachment.is_approved: flag,
                        MediaAttachment.approved_by: reviewer,
                        MediaAttachment.approved_at: now,
                    },
                    synchronize_session=False,
                )
            )
        db.commit()
    except BaseException:
        db.rollback()
        raise
    return touched


def media_for_request(
    db: Session, request_id: int, document_type: Optional[str] = None
) -> List[MediaAttachment]:
    q = db.query(MediaAttachment).filter(MediaAttachment.request_id == request_id)
    if document_type:
        q = q.filter(MediaAttachment.document_type == document_type)
    return q.order_by(MediaAttachment.id).all()


def media_for_row(
    db: Session, row_id: int, document_type: Optional[str] = None
) -> List[MediaAttachment]:
    """Only moderated (approved) media is attached to a row publicly."""
    q = db.query(MediaAttachment).filter(
        MediaAttachment.row_id == row_id,
        MediaAttachment.is_approved.is_(True),
    )
    if document_type:
        q = q.filter(MediaAttachment.document_type == document_type)
    return q.order_by(MediaAttachment.id).all()


@dataclass
class MediaBlob:
    data: bytes
    content_type: str
    filename: str
    disposition: str


def open_media(
    db: Session, store: ObjectStore, media_id: int, kind: Optional[str] = None
) -> MediaBlob:
    rec = db.query(MediaAttachment).filter(MediaAttachment.id == media_id).first()
    if rec is None:
        raise NotFoundError(f"media {media_id} not found")

    kind = (kind or "").strip().lower()
    if kind == "photo" and rec.document_type != PHOTOS:
        raise NotFoundError(f"media {media_id} is not a photo")
    if kind in {"doc", "document"} and rec.document_type != DOCUMENT:
        raise NotFoundError(f"media {media_id} is not a document")

    bucket, object_name = split_locator(rec.locator)
    try:
        data = store.read(bucket, object_name)
    except OSError as exc:
        raise NotFoundError(f"media object {rec.locator} is missing") from exc

    content_type = rec.content_type or mimetypes.guess_type(object_name)[0] or "application/octet-stream"
    filename = rec.file_name or PurePosixPath(object_name).name or f"file_{rec.id}"
    disposition = "attachment"
    if content_type.startswith("image/") or content_type == "application/pdf":
        disposition = "inline"
    return MediaBlob(data=data, content_type=content_type, filename=filename, disposition=disposition)
