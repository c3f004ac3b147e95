"""
schemas/directory.py
--------------------
Pydantic request/response models for directories and their fields.

Naming convention:
  DirectoryCreate  → inbound request body
  DirectoryRead    → outbound response body

Metadata documents pass through untyped here; the services validate them
against the shapes in erp_directory.domain.metadata.
"""

from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from erp_directory.domain.rendering import ViewCapability


class DirectoryCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["Clients"])
    icon_name: str = Field(default="folder", min_length=1, max_length=255)
    directory_type: Literal["System", "Company", "Module"] = "Company"
    metadata: Optional[Dict[str, Any]] = Field(
        default=None,
        examples=[{"selectDisplayField": "name"}],
    )

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        return v.strip()


class DirectoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    icon_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    metadata: Optional[Dict[str, Any]] = None


class DirectoryRead(BaseModel):
    id: str
    name: str
    icon_name: str
    directory_type: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("metadata", mode="before")
    @classmethod
    def empty_metadata(cls, v: Any) -> Any:
        return v or {}


class FieldCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, examples=["contracts"])
    type: str = Field(
        ...,
        examples=["relation"],
        description="string, text, integer, decimal, bool, date, time, datetime, "
        "json, file or relation",
    )
    required: bool = False
    relation_id: Optional[str] = Field(
        default=None, description="Target directory of a relation field"
    )
    metadata: Optional[Dict[str, Any]] = None


class FieldUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    required: Optional[bool] = None
    relation_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class FieldRead(BaseModel):
    id: str
    directory_id: str
    name: str
    type: str
    required: bool
    relation_id: Optional[str]
    position: int
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="meta")

    model_config = {"from_attributes": True}

    @field_validator("metadata", mode="before")
    @classmethod
    def empty_metadata(cls, v: Any) -> Any:
        return v or {}


class OptionRead(BaseModel):
    id: str
    label: str
    value: str

    model_config = {"from_attributes": True}


class DirectoryViewRead(BaseModel):
    directory_id: str
    capability: ViewCapability
    component: Optional[str]
    columns: list[str]
    label_field: Optional[str]
    options: Dict[str, Any]

    model_config = {"from_attributes": True}


class RelatedDirectoryRead(BaseModel):
    directory_id: str
    depth: int
