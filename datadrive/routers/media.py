# datadrive/routers/media.py
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from ..db import get_db
from ..deps import get_current_user, get_media_store, require_roles
from ..models.edit_request import DOCUMENT, PHOTOS
from ..models.user import User
from ..schemas.edit_request import MediaOut, ReviewIn
from ..services import media as media_service
from ..services.audit import record_event
from ..services.media import ObjectStore

router = APIRouter(prefix="/media", tags=["Media"])


def _document_type(kind: Optional[str]) -> Optional[str]:
    kind = (kind or "").strip().lower()
    if kind in {"photo", "photos"}:
        return PHOTOS
    if kind in {"doc", "document", "documents"}:
        return DOCUMENT
    return None


@router.get("/requests/{request_id}", response_model=List[MediaOut])
def media_for_request(
    request_id: int,
    kind: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return media_service.media_for_request(db, request_id, _document_type(kind))


@router.get("/rows/{row_id}", response_model=List[MediaOut])
def media_for_row(
    row_id: int,
    kind: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return media_service.media_for_row(db, row_id, _document_type(kind))


@router.get("/{media_id}")
def download_media(
    media_id: int,
    kind: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    media_store: ObjectStore = Depends(get_media_store),
    _: User = Depends(get_current_user),
):
    blob = media_service.open_media(db, media_store, media_id, kind)
    return Response(
        content=blob.data,
        media_type=blob.content_type,
        headers={
            "Content-Disposition": f"{blob.disposition}; filename*=UTF-8''{quote(blob.filename)}",
        },
    )


@router.post("/review")
def review(
    body: ReviewIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    updated = media_service.review_media(db, body.approved_photos, body.rejected_photos, current_user.id)
    record_event(
        db,
        "media.review",
        f"Reviewed {updated} media item(s)",
        user_id=current_user.id,
        details={"approved": body.approved_photos, "rejected": body.rejected_photos},
        service="media",
    )
    return {"status": "ok", "updated": updated}
