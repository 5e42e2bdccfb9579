"""
Approval Orchestrator.

Existing-row edits are merged in a single transaction. New-row requests go
through two steps because the row store and the object store share no
transaction:

1. mint the row and bind its id onto the request, its details and its
   attachments, and commit with ``relocation_pending`` set (pending-bound);
2. move the staged media to the row folder, then rewrite the attachment
   locators and mark the request approved.

If step 2 fails (or is interrupted) the minted row is deleted and the
identifiers are unbound again, leaving the request pending and unbound.
A crash between the steps leaves ``relocation_pending`` set, which
``resume_pending_relocations`` picks up.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..errors import NotFoundError, RelocationError, RowNotFoundError
from ..logging import get_logger
from ..models import DataRow, Dataset, EditRequest
from ..models.edit_request import APPROVED, PENDING
from ..schemas.edit_request import DetailOverride
from ..utils.paths import make_locator, row_prefix, staging_prefix
from .datasets import decode_row, encode_row
from .media import ObjectStore, relocate

logger = get_logger(__name__)


def bind_row_identity(request: EditRequest, row_id: Optional[int]) -> None:
    """
    Single transition for the row identity of a new-row request.

    ``row_id`` set: pending-unbound -> pending-bound. ``None``: back to
    pending-unbound. The request, every detail and every attachment always
    carry the same value.
    """
    request.row_id = row_id
    for detail in request.details:
        detail.row_id = row_id
    for attachment in request.attachments:
        attachment.row_id = row_id
    request.relocation_pending = row_id is not None


def _load_pending(db: Session, request_id: int) -> EditRequest:
    request = (
        db.query(EditRequest)
        .filter(EditRequest.id == request_id, EditRequest.status == PENDING)
        .with_for_update()
        .first()
    )
    if request is None:
        raise NotFoundError(f"pending edit request {request_id} not found")
    return request


def _apply_overrides(request: EditRequest, overrides: Sequence[DetailOverride]) -> None:
    by_id = {d.id: d for d in request.details}
    for upd in overrides:
        detail = by_id.get(upd.id)
        if detail is None:
            raise NotFoundError(f"detail {upd.id} does not belong to edit request {request.id}")
        detail.new_value = upd.new_value


def _mark_approved(request: EditRequest, approver_id: Optional[str]) -> None:
    request.status = APPROVED
    request.approved_by = approver_id
    request.reviewed_at = datetime.utcnow()


def _merge_existing_row(db: Session, request: EditRequest) -> None:
    for detail in request.details:
        row = (
            db.query(DataRow)
            .filter(DataRow.dataset_id == detail.dataset_id, DataRow.id == detail.row_id)
            .with_for_update()
            .first()
        )
        if row is None:
            raise RowNotFoundError(
                f"data row not found for dataset {detail.dataset_id} row {detail.row_id}"
            )
        fields = decode_row(row.row_data, row.id)
        fields[detail.field_name] = detail.new_value
        row.row_data = encode_row(fields)


def _fold_details(request: EditRequest) -> Dict[str, str]:
    # void details still contribute an empty field
    fields: Dict[str, str] = {}
    for detail in request.details:
        fields[detail.field_name] = detail.new_value or ""
    return fields


def _insert_new_row(db: Session, request: EditRequest) -> DataRow:
    dataset = (
        db.query(Dataset)
        .filter(Dataset.id == request.dataset_id)
        .with_for_update()
        .first()
    )
    if dataset is None:
        raise NotFoundError(f"dataset {request.dataset_id} not found")

    fields = _fold_details(request)
    last_position = (
        db.query(func.max(DataRow.position))
        .filter(DataRow.dataset_id == dataset.id, DataRow.version == dataset.version)
        .scalar()
    )
    row = DataRow(
        dataset_id=dataset.id,
        version=dataset.version,
        position=(last_position if last_position is not None else -1) + 1,
        row_data=encode_row(fields),
        inserted_by=request.user_id,
    )
    db.add(row)
    db.flush()
    dataset.row_count = (dataset.row_count or 0) + 1
    return row


def _unbind(db: Session, request_id: int, submitted: Optional[Dict[int, str]] = None) -> None:
    """
    Compensation for a failed relocation: drop the minted row, clear the ids
    and put back the detail values as submitted (before any overrides).
    """
    try:
        request = db.get(EditRequest, request_id)
        if request is None or request.row_id is None:
            return
        row = db.get(DataRow, request.row_id)
        if row is not None:
            dataset = db.get(Dataset, row.dataset_id)
            if dataset is not None and dataset.version == row.version:
                dataset.row_count = max((dataset.row_count or 0) - 1, 0)
            db.delete(row)
        bind_row_identity(request, None)
        for detail in request.details:
            if submitted and detail.id in submitted:
                detail.new_value = submitted[detail.id]
        db.commit()
        logger.warning("Edit request %s unbound after failed relocation", request_id)
    except SQLAlchemyError:
        db.rollback()
        # request stays pending-bound with relocation_pending set
        logger.exception("Could not unbind edit request %s; left for recovery", request_id)


def _finish_relocation(
    db: Session,
    store: ObjectStore,
    request: EditRequest,
    approver_id: Optional[str],
    bucket: str,
    submitted: Optional[Dict[int, str]] = None,
) -> EditRequest:
    request_id = request.id
    src = staging_prefix(request.id, request.first_name, request.last_name)
    dst = row_prefix(request.row_id)

    try:
        mapping = relocate(store, bucket, src, dst)
    except BaseException as exc:
        if isinstance(exc, RelocationError):
            logger.warning("Relocation failed for edit request %s: %s", request_id, exc)
        _unbind(db, request_id, submitted)
        raise

    try:
        for attachment in request.attachments:
            old_obj = f"{src}/{attachment.file_name}"
            new_obj = mapping.get(old_obj, f"{dst}/{attachment.file_name}")
            attachment.locator = make_locator(bucket, new_obj)
            attachment.row_id = request.row_id
        request.relocation_pending = False
        _mark_approved(request, approver_id)
        db.commit()
    except BaseException:
        db.rollback()
        raise

    db.refresh(request)
    logger.info("Edit request %s approved as new row %s", request_id, request.row_id)
    return request


def approve_edit_request(
    db: Session,
    store: ObjectStore,
    request_id: int,
    overrides: Sequence[DetailOverride] = (),
    approver_id: Optional[str] = None,
    bucket: Optional[str] = None,
) -> EditRequest:
    """
    Merge a pending edit request into the dataset and mark it approved.

    Raises ``NotFoundError`` if the request is not pending (including a
    second approval of the same request). Any failure leaves the request
    pending with no row written.
    """
    bucket = bucket or settings.MEDIA_BUCKET
    try:
        request = _load_pending(db, request_id)
        submitted = {d.id: d.new_value for d in request.details}
        _apply_overrides(request, overrides)

        if request.is_edited:
            _merge_existing_row(db, request)
            _mark_approved(request, approver_id)
            db.commit()
            db.refresh(request)
            logger.info("Edit request %s approved on row %s", request_id, request.row_id)
            return request

        if request.relocation_pending:
            # bound by an earlier interrupted approval: reuse the minted row
            row = db.get(DataRow, request.row_id)
            if row is None:
                raise RowNotFoundError(f"bound row {request.row_id} of edit request {request_id} is gone")
            row.row_data = encode_row(_fold_details(request))
        else:
            row = _insert_new_row(db, request)
            bind_row_identity(request, row.id)
        db.commit()
    except BaseException:
        db.rollback()
        raise

    return _finish_relocation(db, store, request, approver_id, bucket, submitted)


def resume_pending_relocations(
    db: Session,
    store: ObjectStore,
    approver_id: Optional[str] = None,
    bucket: Optional[str] = None,
) -> List[int]:
    """
    Finish requests left pending-bound by a crash between binding and
    relocation. Returns the ids that were approved; failures are unbound.
    """
    bucket = bucket or settings.MEDIA_BUCKET
    stuck = (
        db.query(EditRequest.id)
        .filter(EditRequest.status == PENDING, EditRequest.relocation_pending.is_(True))
        .order_by(EditRequest.id)
        .all()
    )
    done: List[int] = []
    for (request_id,) in stuck:
        request = db.get(EditRequest, request_id)
        try:
            _finish_relocation(db, store, request, approver_id, bucket)
        except RelocationError:
            continue
        done.append(request_id)
    if done:
        logger.info("Resumed relocation for edit requests %s", done)
    return done
