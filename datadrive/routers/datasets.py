# datadrive/routers/datasets.py
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..deps import get_current_user, require_roles
from ..models.user import User
from ..schemas.dataset import (
    AccessIn,
    AccessOut,
    DatasetOut,
    DatasetVersionOut,
    RevertIn,
    RowOut,
)
from ..services import datasets as store
from ..services.audit import record_event

router = APIRouter(prefix="/datasets", tags=["Datasets"])


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if len(content) > settings.MAX_UPLOAD_BYTES:
        limit_mb = settings.MAX_UPLOAD_BYTES // (1024 * 1024)
        raise HTTPException(status_code=400, detail=f"File too large ({limit_mb}MB limit)")
    return content


def _serialize_version(snapshot) -> DatasetVersionOut:
    out = DatasetVersionOut.model_validate(snapshot)
    if snapshot.creator is not None:
        out.creator_name = snapshot.creator.display_name
    return out


def _serialize_access(grant) -> AccessOut:
    user = grant.user
    return AccessOut(
        id=grant.id,
        user_id=grant.user_id,
        dataset_id=grant.dataset_id,
        first_name=user.first_name if user else None,
        last_name=user.last_name if user else None,
    )


@router.get("", response_model=List[DatasetOut])
def list_datasets(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return store.list_datasets(db, current_user)


@router.post("/upload", response_model=DatasetOut)
async def upload_dataset(
    name: str = Form(...),
    private: bool = Form(False),
    community_filter: bool = Form(False),
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    content = await _read_upload(file)
    dataset = store.ingest_upload(
        db,
        name.strip(),
        file.filename or "",
        content,
        private=private,
        community_filter=community_filter,
        actor_id=current_user.id,
    )
    record_event(
        db,
        "dataset.upload",
        f"Uploaded dataset {dataset.name}",
        user_id=current_user.id,
        dataset_name=dataset.name,
        details={"dataset_id": dataset.id, "rows": dataset.row_count},
    )
    return dataset


@router.post("/{dataset_id}/replace", response_model=DatasetOut)
async def replace_dataset(
    dataset_id: int,
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    content = await _read_upload(file)
    dataset = store.replace_upload(db, dataset_id, file.filename or "", content, actor_id=current_user.id)
    record_event(
        db,
        "dataset.replace",
        f"Replaced dataset {dataset.name} with version {dataset.version}",
        user_id=current_user.id,
        dataset_name=dataset.name,
        details={"dataset_id": dataset.id, "version": dataset.version, "rows": dataset.row_count},
    )
    return dataset


@router.post("/{dataset_id}/revert", response_model=DatasetOut)
def revert_dataset(
    dataset_id: int,
    body: RevertIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    dataset = store.revert_dataset(db, dataset_id, body.version, actor_id=current_user.id)
    record_event(
        db,
        "dataset.revert",
        f"Reverted dataset {dataset.name} to version {body.version}",
        user_id=current_user.id,
        dataset_name=dataset.name,
        details={"dataset_id": dataset.id, "from_version": body.version, "version": dataset.version},
    )
    return dataset


@router.get("/{dataset_id}/rows", response_model=List[RowOut])
def read_rows(
    dataset_id: int,
    version: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    dataset = store.ensure_visible(db, dataset_id, current_user)
    rows = store.read_dataset_rows(db, dataset.id, version or dataset.version)
    return [RowOut(id=r.id, version=r.version, row_data=r.row_data) for r in rows]


@router.get("/{dataset_id}/history", response_model=List[DatasetVersionOut])
def history(
    dataset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    store.ensure_visible(db, dataset_id, current_user)
    return [_serialize_version(v) for v in store.dataset_history(db, dataset_id)]


@router.delete("/{dataset_id}", response_model=DatasetOut)
def delete_dataset(
    dataset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    dataset = store.soft_delete_dataset(db, dataset_id)
    record_event(
        db,
        "dataset.delete",
        f"Deleted dataset {dataset.name}",
        user_id=current_user.id,
        dataset_name=dataset.name,
    )
    return dataset


@router.put("/{dataset_id}/restore", response_model=DatasetOut)
def restore_dataset(
    dataset_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    dataset = store.restore_dataset(db, dataset_id)
    record_event(
        db,
        "dataset.restore",
        f"Restored dataset {dataset.name}",
        user_id=current_user.id,
        dataset_name=dataset.name,
    )
    return dataset


@router.get("/{dataset_id}/access", response_model=List[AccessOut])
def list_access(
    dataset_id: int,
    db: Session = Depends(get_db),
    _=Depends(require_roles("Admin")),
):
    return [_serialize_access(g) for g in store.list_access(db, dataset_id)]


@router.post("/{dataset_id}/access", response_model=List[AccessOut])
def grant_access(
    dataset_id: int,
    body: AccessIn,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    grants = store.grant_access(db, dataset_id, body.user_ids)
    record_event(
        db,
        "dataset.access.grant",
        f"Granted access to dataset {dataset_id}",
        user_id=current_user.id,
        details={"dataset_id": dataset_id, "user_ids": [g.user_id for g in grants]},
    )
    return [_serialize_access(g) for g in grants]


@router.delete("/access/{access_id}")
def revoke_access(
    access_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles("Admin")),
):
    store.revoke_access(db, access_id)
    record_event(
        db,
        "dataset.access.revoke",
        f"Revoked access {access_id}",
        user_id=current_user.id,
    )
    return {"status": "ok", "deleted_access_id": access_id}
