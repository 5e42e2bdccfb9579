# datadrive/schemas/edit_request.py
from datetime import datetime
from typing import List, Literal, Optional
from pydantic import BaseModel, Field


class FieldChange(BaseModel):
    field_name: str = Field(min_length=1, max_length=255)
    old_value: str = ""
    new_value: str = ""


class PhotoInput(BaseModel):
    filename: str = ""
    mime_type: str = ""
    data_base64: str
    comment: Optional[str] = None


class DocumentInput(BaseModel):
    document_type: str = "document"
    document_category: Optional[str] = None
    filename: str = ""
    mime_type: str = ""
    data_base64: str


class EditRequestIn(BaseModel):
    dataset_id: int
    # None => the row does not exist yet (new-row request)
    row_id: Optional[int] = None
    changes: List[FieldChange] = Field(default_factory=list)

    first_name: Optional[str] = None
    last_name: Optional[str] = None

    photos_in_app: List[PhotoInput] = Field(default_factory=list)
    photos_for_gallery: List[PhotoInput] = Field(default_factory=list)
    documents: List[DocumentInput] = Field(default_factory=list)

    consent: bool = False
    archive_consent: bool = False
    community: List[str] = Field(default_factory=list)
    uploader_community: List[str] = Field(default_factory=list)


class DetailOverride(BaseModel):
    id: int
    new_value: str = ""


class ApproveIn(BaseModel):
    updates: List[DetailOverride] = Field(default_factory=list)


class DetailOut(BaseModel):
    id: int
    request_id: int
    dataset_id: int
    dataset_name: str
    row_id: Optional[int] = None
    field_name: str
    old_value: str
    new_value: str
    created_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class EditRequestOut(BaseModel):
    request_id: int
    dataset_id: int
    row_id: Optional[int] = None
    user_id: str
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    efirstname: Optional[str] = None
    elastname: Optional[str] = None
    status: Literal["pending", "approved", "rejected"]
    is_edited: bool
    consent: bool
    archive_consent: bool
    community: List[str] = Field(default_factory=list)
    approved_by: Optional[str] = None
    created_at: Optional[datetime] = None
    change_count: int = 0
    details: List[DetailOut] = Field(default_factory=list)


class MediaOut(BaseModel):
    id: int
    request_id: int
    dataset_id: int
    row_id: Optional[int] = None
    locator: str
    file_name: str
    size_bytes: int
    content_type: Optional[str] = None
    is_gallery_photo: bool
    document_type: str
    document_category: Optional[str] = None
    comment: Optional[str] = None
    is_approved: bool
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    source_dataset: Optional[str] = None
    model_config = {"from_attributes": True}


class ReviewIn(BaseModel):
    approved_photos: List[int] = Field(default_factory=list)
    rejected_photos: List[int] = Field(default_factory=list)
