# datadrive/models/edit_request.py
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
)
from sqlalchemy.orm import relationship

from ..db import Base


PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"

STATUSES = (PENDING, APPROVED, REJECTED)

PHOTOS = "photos"
DOCUMENT = "document"


# ---------- Edit requests ----------

class EditRequest(Base):
    """
    One reviewable unit of work against one logical row.

    New-row requests (``is_edited`` false) keep ``row_id`` NULL until approval
    binds the freshly minted row identity.
    """

    __tablename__ = "edit_requests"

    id = Column(Integer, primary_key=True, index=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False, index=True)
    row_id = Column(Integer, nullable=True)

    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)

    # pending / approved / rejected
    status = Column(String(50), default=PENDING, nullable=False, index=True)
    is_edited = Column(Boolean, default=False, nullable=False)

    consent = Column(Boolean, default=False, nullable=False)
    archive_consent = Column(Boolean, default=False, nullable=False)
    community = Column(JSON, nullable=False, default=list)
    uploader_community = Column(JSON, nullable=False, default=list)

    # Set while a minted row id is bound but media has not been relocated yet
    relocation_pending = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    approved_by = Column(String, ForeignKey("users.id"), nullable=True)
    reviewed_at = Column(DateTime, nullable=True)

    submitter = relationship("User", foreign_keys=[user_id])
    details = relationship(
        "EditRequestDetail",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="EditRequestDetail.id",
    )
    attachments = relationship(
        "MediaAttachment",
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="MediaAttachment.id",
    )

    @property
    def binding_state(self) -> str:
        if self.status == APPROVED:
            return "approved"
        if self.status == REJECTED:
            return "rejected"
        if self.row_id is None:
            return "pending-unbound"
        return "pending-bound"


class EditRequestDetail(Base):
    """One field-level change inside an edit request."""

    __tablename__ = "edit_request_details"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("edit_requests.id"), nullable=False, index=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False)
    dataset_name = Column(String(255), nullable=False, default="")
    row_id = Column(Integer, nullable=True)
    field_name = Column(String(255), nullable=False)
    old_value = Column(Text, nullable=False, default="")
    new_value = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, default=datetime.utcnow)

    request = relationship("EditRequest", back_populates="details")

    @property
    def is_void(self) -> bool:
        return not (self.old_value or "") and not (self.new_value or "")


class MediaAttachment(Base):
    """
    Photo or document uploaded with an edit request.

    ``is_approved`` is moderated separately from the parent request.
    """

    __tablename__ = "media_attachments"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(Integer, ForeignKey("edit_requests.id"), nullable=False, index=True)
    dataset_id = Column(Integer, ForeignKey("datasets.id"), nullable=False)
    row_id = Column(Integer, nullable=True, index=True)

    locator = Column(String(1024), nullable=False)
    file_name = Column(String(512), nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    content_type = Column(String(100), nullable=True)

    is_gallery_photo = Column(Boolean, default=False, nullable=False)
    document_type = Column(String(20), default=PHOTOS, nullable=False)
    document_category = Column(String(50), nullable=True)
    comment = Column(Text, nullable=True)

    is_approved = Column(Boolean, default=False, nullable=False)
    approved_by = Column(String, nullable=True)
    approved_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    source_dataset = Column(String(255), nullable=True)

    request = relationship("EditRequest", back_populates="attachments")
