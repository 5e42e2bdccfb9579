# datadrive/models/dataset.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from ..db import Base


# ---------- Datasets ----------

class Dataset(Base):
    """
    A named tabular resource. ``version`` / ``row_count`` / ``size_bytes`` /
    ``columns_order`` always describe the current version.
    """

    __tablename__ = "datasets"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    inserted_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    private = Column(Boolean, default=False, nullable=False)
    community_filter = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)

    size_bytes = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    row_count = Column(Integer, nullable=False, default=0)
    columns_order = Column(JSON, nullable=False, default=list)

    versions = relationship(
        "DatasetVersion",
        back_populates="dataset",
        cascade="all, delete-orphan",
        order_by="DatasetVersion.version",
    )


class DatasetVersion(Base):
    """Immutable snapshot written once per ingest / replace / revert."""

    __tablename__ = "dataset_versions"
    __table_args__ = (
        UniqueConstraint("dataset_id", "version", name="uq_dataset_version"),
    )

    id = Column(Integer, primary_key=True, index=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    inserted_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    private = Column(Boolean, default=False, nullable=False)
    is_deleted = Column(Boolean, default=False, nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    version = Column(Integer, nullable=False, default=1)
    row_count = Column(Integer, nullable=False, default=0)
    columns_order = Column(JSON, nullable=False, default=list)

    dataset = relationship("Dataset", back_populates="versions")
    creator = relationship("User")


class DataRow(Base):
    """
    One record of one (dataset, version). ``id`` is the row identity;
    ``position`` keeps the upload order, which reads honour over ``id``.
    """

    __tablename__ = "data_rows"

    id = Column(Integer, primary_key=True, index=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1, index=True)
    position = Column(Integer, nullable=False, default=0)
    row_data = Column(Text, nullable=False)
    inserted_by = Column(String, ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class DatasetAccess(Base):
    """Explicit grant letting a non-admin read a private dataset."""

    __tablename__ = "dataset_access"
    __table_args__ = (
        UniqueConstraint("user_id", "dataset_id", name="uq_user_dataset"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False)

    user = relationship("User")
