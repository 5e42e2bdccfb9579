"""
Versioned Dataset Store.

Every ingest / replace / revert writes one immutable ``DatasetVersion`` snapshot
and a full set of ``DataRow`` records under that version number. The dataset
record only points at the current version.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value

from ..errors import DuplicateNameError, NotFoundError, ParseError, UnmarshalError
from ..logging import get_logger
from ..models import DataRow, Dataset, DatasetAccess, DatasetVersion, User
from ..utils.tabular import detect_format, parse_tabular

logger = get_logger(__name__)


@dataclass
class RowRecord:
    id: int
    version: int
    row_data: Dict[str, str]


# ---------- Row encoding ----------

def build_row_map(columns: Sequence[str], cells: Sequence[str]) -> Dict[str, str]:
    """Field map built strictly from the declared column order."""
    row: Dict[str, str] = {}
    for j, header in enumerate(columns):
        row[header] = cells[j] if j < len(cells) else ""
    return row


def encode_row(row: Dict[str, str]) -> str:
    return json.dumps(row, ensure_ascii=False)


def decode_row(raw: Optional[str], row_id: Optional[int] = None) -> Dict[str, str]:
    try:
        value = json.loads(raw) if raw is not None else None
    except (TypeError, ValueError) as exc:
        raise UnmarshalError(f"failed to unmarshal row {row_id}: {exc}") from exc
    if not isinstance(value, dict):
        raise UnmarshalError(f"failed to unmarshal row {row_id}: not an object")
    return value


def _text(value) -> str:
    if value is None:
        return ""
    return value if isinstance(value, str) else str(value)


def _insert_rows(
    db: Session,
    dataset_id: int,
    version: int,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    actor_id: Optional[str],
) -> None:
    db.add_all(
        [
            DataRow(
                dataset_id=dataset_id,
                version=version,
                position=i,
                row_data=encode_row(build_row_map(columns, cells)),
                inserted_by=actor_id,
            )
            for i, cells in enumerate(rows)
        ]
    )


def _bump_version(db: Session, dataset: Dataset) -> int:
    """
    Increment ``datasets.version`` in SQL and return the new value.

    The read and the write happen in one statement, so concurrent replaces
    can never reuse or lower a version number.
    """
    stmt = (
        update(Dataset)
        .where(Dataset.id == dataset.id)
        .values(version=Dataset.version + 1)
        .returning(Dataset.version)
        .execution_options(synchronize_session=False)
    )
    new_version = db.execute(stmt).scalar_one()
    set_committed_value(dataset, "version", new_version)
    return new_version


# ---------- Lookups ----------

def get_dataset(db: Session, dataset_id: int, include_deleted: bool = True) -> Dataset:
    q = db.query(Dataset).filter(Dataset.id == dataset_id)
    if not include_deleted:
        q = q.filter(Dataset.is_deleted.is_(False))
    dataset = q.first()
    if dataset is None:
        raise NotFoundError(f"dataset {dataset_id} not found")
    return dataset


def get_version(db: Session, dataset_id: int, version: int) -> DatasetVersion:
    snapshot = (
        db.query(DatasetVersion)
        .filter(DatasetVersion.dataset_id == dataset_id, DatasetVersion.version == version)
        .first()
    )
    if snapshot is None:
        raise NotFoundError(f"version {version} of dataset {dataset_id} not found")
    return snapshot


def list_datasets(db: Session, user: User) -> List[Dataset]:
    """Admins see everything; other users see public datasets plus explicit grants."""
    q = db.query(Dataset)
    if user.role != "Admin":
        granted = db.query(DatasetAccess.dataset_id).filter(DatasetAccess.user_id == user.id)
        q = q.filter(
            Dataset.is_deleted.is_(False),
            or_(Dataset.private.is_(False), Dataset.id.in_(granted)),
        )
    return q.order_by(Dataset.created_at.desc(), Dataset.id.desc()).all()


def ensure_visible(db: Session, dataset_id: int, user: User) -> Dataset:
    """Same rules as ``list_datasets``; hidden datasets read as missing."""
    dataset = get_dataset(db, dataset_id)
    if user.role == "Admin":
        return dataset
    if dataset.is_deleted:
        raise NotFoundError(f"dataset {dataset_id} not found")
    if dataset.private:
        grant = (
            db.query(DatasetAccess.id)
            .filter(DatasetAccess.dataset_id == dataset_id, DatasetAccess.user_id == user.id)
            .first()
        )
        if grant is None:
            raise NotFoundError(f"dataset {dataset_id} not found")
    return dataset


def dataset_history(db: Session, dataset_id: int) -> List[DatasetVersion]:
    get_dataset(db, dataset_id)
    return (
        db.query(DatasetVersion)
        .filter(DatasetVersion.dataset_id == dataset_id)
        .order_by(DatasetVersion.version.desc())
        .all()
    )


# ---------- Ingest / replace / revert ----------

def ingest_dataset(
    db: Session,
    name: str,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    size_bytes: int = 0,
    private: bool = False,
    community_filter: bool = False,
    actor_id: Optional[str] = None,
) -> Dataset:
    if not rows:
        raise ParseError("no data rows to ingest")

    if db.query(Dataset.id).filter(Dataset.name == name).first() is not None:
        raise DuplicateNameError(f"dataset with name {name} already exists")

    columns = list(columns)
    dataset = Dataset(
        name=name,
        inserted_by=actor_id,
        private=private,
        community_filter=community_filter,
        is_deleted=False,
        size_bytes=size_bytes,
        version=1,
        row_count=len(rows),
        columns_order=columns,
    )
    try:
        db.add(dataset)
        db.flush()
        db.add(
            DatasetVersion(
                dataset_id=dataset.id,
                name=name,
                inserted_by=actor_id,
                private=private,
                size_bytes=size_bytes,
                version=1,
                row_count=len(rows),
                columns_order=columns,
            )
        )
        _insert_rows(db, dataset.id, 1, columns, rows, actor_id)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateNameError(f"dataset with name {name} already exists") from exc
    except BaseException:
        db.rollback()
        raise

    db.refresh(dataset)
    logger.info("Ingested dataset %s (id=%s, rows=%d)", name, dataset.id, len(rows))
    return dataset


def replace_dataset(
    db: Session,
    dataset_id: int,
    columns: Sequence[str],
    rows: Sequence[Sequence[str]],
    *,
    size_bytes: int = 0,
    actor_id: Optional[str] = None,
) -> Dataset:
    if not rows:
        raise ParseError("no data rows to ingest")

    dataset = get_dataset(db, dataset_id)
    columns = list(columns)
    try:
        new_version = _bump_version(db, dataset)
        db.add(
            DatasetVersion(
                dataset_id=dataset.id,
                name=dataset.name,
                inserted_by=actor_id,
                private=dataset.private,
                size_bytes=size_bytes,
                version=new_version,
                row_count=len(rows),
                columns_order=columns,
            )
        )
        _insert_rows(db, dataset.id, new_version, columns, rows, actor_id)
        dataset.row_count = len(rows)
        dataset.size_bytes = size_bytes
        dataset.columns_order = columns
        db.commit()
    except BaseException:
        db.rollback()
        raise

    db.refresh(dataset)
    logger.info("Replaced dataset %s -> version %d (rows=%d)", dataset.name, dataset.version, len(rows))
    return dataset


def revert_dataset(
    db: Session,
    dataset_id: int,
    target_version: int,
    actor_id: Optional[str] = None,
) -> Dataset:
    """Copy ``target_version`` forward as a brand new version; nothing is deleted."""
    dataset = get_dataset(db, dataset_id)
    target = get_version(db, dataset_id, target_version)
    columns = list(target.columns_order or dataset.columns_order or [])

    source_rows = (
        db.query(DataRow)
        .filter(DataRow.dataset_id == dataset.id, DataRow.version == target_version)
        .order_by(DataRow.position, DataRow.id)
        .all()
    )
    try:
        new_version = _bump_version(db, dataset)
        db.add(
            DatasetVersion(
                dataset_id=dataset.id,
                name=dataset.name,
                inserted_by=actor_id,
                private=target.private,
                size_bytes=target.size_bytes,
                version=new_version,
                row_count=len(source_rows),
                columns_order=columns,
            )
        )
        db.add_all(
            [
                DataRow(
                    dataset_id=dataset.id,
                    version=new_version,
                    position=i,
                    row_data=row.row_data,
                    inserted_by=actor_id,
                )
                for i, row in enumerate(source_rows)
            ]
        )
        dataset.row_count = len(source_rows)
        dataset.size_bytes = target.size_bytes
        dataset.private = target.private
        dataset.columns_order = columns
        db.commit()
    except BaseException:
        db.rollback()
        raise

    db.refresh(dataset)
    logger.info(
        "Reverted dataset %s to version %d as version %d",
        dataset.name,
        target_version,
        dataset.version,
    )
    return dataset


def ingest_upload(
    db: Session,
    name: str,
    filename: str,
    content: bytes,
    *,
    private: bool = False,
    community_filter: bool = False,
    actor_id: Optional[str] = None,
) -> Dataset:
    table = parse_tabular(content, detect_format(filename))
    return ingest_dataset(
        db,
        name,
        table.columns,
        table.rows,
        size_bytes=len(content),
        private=private,
        community_filter=community_filter,
        actor_id=actor_id,
    )


def replace_upload(
    db: Session,
    dataset_id: int,
    filename: str,
    content: bytes,
    actor_id: Optional[str] = None,
) -> Dataset:
    table = parse_tabular(content, detect_format(filename))
    return replace_dataset(
        db,
        dataset_id,
        table.columns,
        table.rows,
        size_bytes=len(content),
        actor_id=actor_id,
    )


# ---------- Reads ----------

def read_dataset_rows(db: Session, dataset_id: int, version: int) -> List[RowRecord]:
    """
    Rows of one version in upload order, each keyed exactly by that version's
    column order (missing cells come back as "").
    """
    dataset = get_dataset(db, dataset_id, include_deleted=False)
    snapshot = get_version(db, dataset.id, version)
    columns = list(snapshot.columns_order or dataset.columns_order or [])

    records = (
        db.query(DataRow)
        .filter(DataRow.dataset_id == dataset.id, DataRow.version == version)
        .order_by(DataRow.position, DataRow.id)
        .all()
    )

    out: List[RowRecord] = []
    for record in records:
        stored = decode_row(record.row_data, record.id)
        ordered = {col: _text(stored.get(col, "")) for col in columns}
        out.append(RowRecord(id=record.id, version=record.version, row_data=ordered))
    return out


# ---------- Soft delete / access ----------

def soft_delete_dataset(db: Session, dataset_id: int) -> Dataset:
    return _set_deleted(db, dataset_id, True)


def restore_dataset(db: Session, dataset_id: int) -> Dataset:
    return _set_deleted(db, dataset_id, False)


def _set_deleted(db: Session, dataset_id: int, flag: bool) -> Dataset:
    dataset = get_dataset(db, dataset_id)
    dataset.is_deleted = flag
    db.commit()
    db.refresh(dataset)
    return dataset


def grant_access(db: Session, dataset_id: int, user_ids: Sequence[str]) -> List[DatasetAccess]:
    get_dataset(db, dataset_id)
    existing = {
        uid
        for (uid,) in db.query(DatasetAccess.user_id).filter(DatasetAccess.dataset_id == dataset_id)
    }
    known = {uid for (uid,) in db.query(User.id).filter(User.id.in_(list(user_ids)))}
    missing = [uid for uid in user_ids if uid not in known]
    if missing:
        raise NotFoundError(f"users not found: {missing}")

    grants = []
    for uid in dict.fromkeys(user_ids):
        if uid in existing:
            continue
        grant = DatasetAccess(user_id=uid, dataset_id=dataset_id)
        db.add(grant)
        grants.append(grant)
    db.commit()
    for grant in grants:
        db.refresh(grant)
    return grants


def revoke_access(db: Session, access_id: int) -> None:
    grant = db.query(DatasetAccess).filter(DatasetAccess.id == access_id).first()
    if grant is None:
        raise NotFoundError(f"access {access_id} not found")
    db.delete(grant)
    db.commit()


def list_access(db: Session, dataset_id: int) -> List[DatasetAccess]:
    get_dataset(db, dataset_id)
    return (
        db.query(DatasetAccess)
        .filter(DatasetAccess.dataset_id == dataset_id)
        .order_by(DatasetAccess.id)
        .all()
    )
