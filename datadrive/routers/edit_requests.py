# datadrive/routers/edit_requests.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_media_store, require_roles
from ..models.edit_request import EditRequest
from ..models.user import User
from ..schemas.edit_request import ApproveIn, DetailOut, EditRequestIn, EditRequestOut
from ..services import edit_requests as ledger
from ..services.approval import approve_edit_request
from ..services.audit import record_event
from ..services.media import ObjectStore

router = APIRouter(prefix="/edit-requests", tags=["Edit Requests"])


def _serialize_request(request: EditRequest) -> EditRequestOut:
    submitter = request.submitter
    return EditRequestOut(
        request_id=request.id,
        dataset_id=request.dataset_id,
        row_id=request.row_id,
        user_id=request.user_id,
        firstname=submitter.first_name if submitter else None,
        lastname=submitter.last_name if submitter else None,
        efirstname=request.first_name,
        elastname=request.last_name,
        status=request.status,
        is_edited=request.is_edited,
        consent=request.consent,
        archive_consent=request.archive_consent,
        community=list(request.community or []),
        approved_by=request.approved_by,
        created_at=request.created_at,
        change_count=ledger.change_count(request.details),
        details=[DetailOut.model_validate(d) for d in request.details],
    )


def _dataset_name(request: EditRequest) -> Optional[str]:
    return request.details[0].dataset_name if request.details else None


@router.post("", response_model=EditRequestOut)
def submit(
    payload: EditRequestIn,
    db: Session = Depends(get_db),
    media_store: ObjectStore = Depends(get_media_store),
    current_user: User = Depends(get_current_user),
):
    request = ledger.submit_edit_request(db, media_store, payload, current_user)
    record_event(
        db,
        "edit_request.submit",
        f"Submitted edit request {request.id}",
        user_id=current_user.id,
        dataset_name=_dataset_name(request),
        communities=request.community or [],
        details={"request_id": request.id, "row_id": request.row_id},
        service="edit_request",
    )
    return _serialize_request(request)


@router.get("", response_model=List[EditRequestOut])
def list_requests(
    status: Optional[str] = Query(None, description="Comma separated statuses"),
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    # users only ever see their own history; the pending queue is for admins
    if current_user.role != "Admin" and (user_id != current_user.id or not ledger.parse_statuses(status)):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return [_serialize_request(r) for r in ledger.list_edit_requests(db, status, user_id)]


@router.put("/{request_id}/approve", response_model=EditRequestOut)
def approve(
    request_id: int,
    body: Optional[ApproveIn] = None,
    db: Session = Depends(get_db),
    media_store: ObjectStore = Depends(get_media_store),
    current_user: User = Depends(require_roles("Admin")),
):
    overrides = body.updates if body else []
    request = approve_edit_request(db, media_store, request_id, overrides, approver_id=current_user.id)
    record_event(
        db,
        "edit_request.approve",
        f"Approved edit request {request.id}",
        user_id=current_user.id,
        dataset_name=_dataset_name(request),
        communities=request.community or [],
        details={"request_id": request.id, "row_id": request.row_id},
        service="edit_request",
    )
    return _serialize_request(request)


@router.put("/{request_id}/reject", response_model=EditRequestOut)
def reject(
    request_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    request = ledger.reject_edit_request(db, request_id)
    record_event(
        db,
        "edit_request.reject",
        f"Rejected edit request {request.id}",
        user_id=current_user.id,
        dataset_name=_dataset_name(request),
        details={"request_id": request.id},
        service="edit_request",
    )
    return _serialize_request(request)
