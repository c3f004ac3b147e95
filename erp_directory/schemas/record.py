"""
schemas/record.py
-----------------
Pydantic request/response models for directory records.

Values are keyed by field id on the way in (field names are accepted too)
and come back joined to their field definitions.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class RecordCreate(BaseModel):
    company_directory_id: Optional[str] = Field(
        default=None,
        description="Binding to store the record under; defaults to the caller's "
        "first enabled binding of the directory",
    )
    values: Dict[str, Any] = Field(
        default_factory=dict,
        examples=[{"name": "UzAuto Motors"}],
        description="Field id (or name) -> raw value",
    )
    metadata: Optional[Dict[str, Any]] = None


class RecordUpdate(BaseModel):
    values: Dict[str, Any] = Field(
        ...,
        description="Only these fields are written; null clears a value",
    )


class RecordMetadataUpdate(BaseModel):
    metadata: Dict[str, Any]


class ValueRead(BaseModel):
    field_id: Optional[str]
    field_name: str
    type: Optional[str] = None
    value: Any = None
    raw: str
    # Relation fields: label of the target record
    display: Optional[str] = None
    unresolved: bool = False
    issue: Optional[Dict[str, Any]] = None
    # Field definition is gone; value shown untyped under its snapshot name
    orphaned: bool = False


class RecordRead(BaseModel):
    id: str
    company_directory_id: str
    directory_id: str
    metadata: Dict[str, Any]
    values: list[ValueRead]
    created_at: datetime
    updated_at: datetime

    def value_of(self, field_name: str) -> Optional[ValueRead]:
        for value in self.values:
            if value.field_name == field_name:
                return value
        return None


class RecordPage(BaseModel):
    total: int
    page: int
    limit: int
    pages: int
    items: list[RecordRead]
