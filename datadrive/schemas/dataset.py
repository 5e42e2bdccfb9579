# datadrive/schemas/dataset.py
from __future__ import annotations
from datetime import datetime
from typing import Dict, List, Optional
from pydantic import BaseModel, Field


class DatasetOut(BaseModel):
    id: int
    name: str
    inserted_by: Optional[str] = None
    created_at: Optional[datetime] = None
    private: bool
    community_filter: bool
    is_deleted: bool
    size_bytes: int
    version: int
    row_count: int
    columns_order: List[str] = Field(default_factory=list)
    model_config = {"from_attributes": True}


class DatasetVersionOut(BaseModel):
    id: int
    dataset_id: int
    name: str
    inserted_by: Optional[str] = None
    creator_name: Optional[str] = None
    created_at: Optional[datetime] = None
    private: bool
    is_deleted: bool
    size_bytes: int
    version: int
    row_count: int
    model_config = {"from_attributes": True}


class RowOut(BaseModel):
    id: int
    version: int
    row_data: Dict[str, str]


class RevertIn(BaseModel):
    version: int = Field(ge=1)


class AccessIn(BaseModel):
    user_ids: List[str] = Field(min_length=1)


class AccessOut(BaseModel):
    id: int
    user_id: str
    dataset_id: int
    first_name: Optional[str] = None
    last_name: Optional[str] = None
