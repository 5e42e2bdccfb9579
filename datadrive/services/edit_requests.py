"""
Edit Request Ledger: proposed field changes against one row, plus the media
submitted with them.
"""
from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload, selectinload

from ..config import settings
from ..errors import NotFoundError
from ..logging import get_logger
from ..models import Dataset, EditRequest, EditRequestDetail, MediaAttachment, User
from ..models.edit_request import DOCUMENT, PENDING, PHOTOS, REJECTED
from ..schemas.edit_request import EditRequestIn
from ..utils.paths import clamp_comment, row_prefix, staging_prefix
from .media import ObjectStore, StagedObject, discard_objects, media_file_name, stage_media

logger = get_logger(__name__)


def parse_statuses(csv: Optional[str]) -> List[str]:
    """"approved, Rejected,,approved" -> ["approved", "rejected"]"""
    out: List[str] = []
    for part in (csv or "").split(","):
        s = part.strip().lower()
        if s and s not in out:
            out.append(s)
    return out


def change_count(details: Iterable[EditRequestDetail]) -> int:
    """Number of real changes; details with empty old and new value are void."""
    return sum(1 for d in details if not d.is_void)


def _media_plan(payload: EditRequestIn) -> List[Tuple[str, int, object]]:
    plan: List[Tuple[str, int, object]] = []
    for i, photo in enumerate(payload.photos_in_app, start=1):
        plan.append(("photo", i, photo))
    for i, photo in enumerate(payload.photos_for_gallery, start=1):
        plan.append(("gallery", i, photo))
    for i, doc in enumerate(payload.documents, start=1):
        # only real documents go through the documents list
        if (doc.document_type or "document") != "document":
            continue
        plan.append(("document", i, doc))
    return plan


def _attachment(
    request: EditRequest,
    dataset: Dataset,
    kind: str,
    item,
    staged: StagedObject,
) -> MediaAttachment:
    return MediaAttachment(
        request_id=request.id,
        dataset_id=dataset.id,
        row_id=request.row_id,
        locator=staged.locator,
        file_name=staged.file_name,
        size_bytes=staged.size_bytes,
        content_type=staged.content_type,
        is_gallery_photo=kind == "gallery",
        document_type=DOCUMENT if kind == "document" else PHOTOS,
        document_category=(item.document_category or "other_document") if kind == "document" else "",
        comment=clamp_comment(getattr(item, "comment", None)) or None,
        is_approved=False,
        source_dataset=dataset.name,
    )


def _abandon_submission(db: Session, request_id: int) -> None:
    try:
        request = db.get(EditRequest, request_id)
        if request is not None:
            db.delete(request)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not remove abandoned edit request %s", request_id)


def submit_edit_request(
    db: Session,
    store: ObjectStore,
    payload: EditRequestIn,
    submitter: User,
    bucket: Optional[str] = None,
) -> EditRequest:
    """
    Record a pending edit request and stage its media.

    The request rows are committed first (the staging folder is named after
    the request id), media is uploaded outside any transaction, and the
    attachment records are committed last. If any upload fails the staged
    objects and the request are removed again before the error propagates.
    """
    bucket = bucket or settings.MEDIA_BUCKET
    dataset = db.query(Dataset).filter(Dataset.id == payload.dataset_id).first()
    if dataset is None:
        raise NotFoundError(f"dataset {payload.dataset_id} not found")

    is_edited = payload.row_id is not None
    first_name = payload.first_name if payload.first_name is not None else (submitter.first_name or "")
    last_name = payload.last_name if payload.last_name is not None else (submitter.last_name or "")

    request = EditRequest(
        dataset_id=dataset.id,
        row_id=payload.row_id if is_edited else None,
        user_id=submitter.id,
        first_name=first_name,
        last_name=last_name,
        status=PENDING,
        is_edited=is_edited,
        consent=payload.consent,
        archive_consent=payload.archive_consent,
        community=list(payload.community),
        uploader_community=list(payload.uploader_community),
    )
    request.details = [
        EditRequestDetail(
            dataset_id=dataset.id,
            dataset_name=dataset.name,
            row_id=request.row_id,
            field_name=change.field_name,
            old_value=change.old_value,
            new_value=change.new_value,
        )
        for change in payload.changes
    ]
    try:
        db.add(request)
        db.commit()
    except BaseException:
        db.rollback()
        raise
    db.refresh(request)

    plan = _media_plan(payload)
    if not plan:
        logger.info("Edit request %s submitted (no media)", request.id)
        return request

    if is_edited:
        base_prefix = row_prefix(request.row_id)
    else:
        base_prefix = staging_prefix(request.id, first_name, last_name)
    timestamp = datetime.now().strftime("%Y%m%d%H%M%S")

    staged: List[Tuple[str, object, StagedObject]] = []
    try:
        for kind, index, item in plan:
            file_name = media_file_name(
                first_name, last_name, timestamp, index, kind, item.filename, item.mime_type
            )
            obj = stage_media(store, bucket, base_prefix, file_name, item.data_base64, item.mime_type)
            staged.append((kind, item, obj))

        for kind, item, obj in staged:
            db.add(_attachment(request, dataset, kind, item, obj))
        db.commit()
    except BaseException:
        db.rollback()
        logger.warning(
            "Abandoning edit request %s after media failure (%d staged object(s) discarded)",
            request.id,
            len(staged),
        )
        discard_objects(store, bucket, [obj.object_name for _, _, obj in staged])
        _abandon_submission(db, request.id)
        raise

    db.refresh(request)
    logger.info("Edit request %s submitted with %d media item(s)", request.id, len(staged))
    return request


def list_edit_requests(
    db: Session,
    status_csv: Optional[str] = None,
    user_id: Optional[str] = None,
) -> List[EditRequest]:
    """
    Pending requests unless both a status list and a submitter are given.
    An unusable status list (e.g. ",,,") falls back to pending-only.
    """
    q = (
        db.query(EditRequest)
        .options(
            joinedload(EditRequest.submitter),
            selectinload(EditRequest.details),
        )
        .order_by(EditRequest.created_at.desc(), EditRequest.id.desc())
    )

    statuses = parse_statuses(status_csv) if status_csv and status_csv.strip() and user_id else []
    if statuses:
        q = q.filter(EditRequest.user_id == user_id, EditRequest.status.in_(statuses))
    else:
        q = q.filter(EditRequest.status == PENDING)
    return q.all()


def get_edit_request(db: Session, request_id: int) -> EditRequest:
    request = db.query(EditRequest).filter(EditRequest.id == request_id).first()
    if request is None:
        raise NotFoundError(f"edit request {request_id} not found")
    return request


def reject_edit_request(db: Session, request_id: int) -> EditRequest:
    request = (
        db.query(EditRequest)
        .filter(EditRequest.id == request_id, EditRequest.status == PENDING)
        .first()
    )
    # a bound request is mid-approval; only recovery may move it on
    if request is None or request.relocation_pending:
        raise NotFoundError(f"pending edit request {request_id} not found")
    request.status = REJECTED
    request.reviewed_at = datetime.utcnow()
    db.commit()
    db.refresh(request)
    logger.info("Edit request %s rejected", request_id)
    return request
