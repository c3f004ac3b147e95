"""
schemas/company_directory.py
----------------------------
Pydantic models for tenant bindings and module licensing.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class CompanyDirectoryCreate(BaseModel):
    directory_id: str = Field(..., description="Directory to bind to the caller's company")
    module_id: Optional[str] = Field(
        default=None,
        description="Module the binding belongs to; hidden while the module is disabled",
    )


class CompanyDirectoryRead(BaseModel):
    id: str
    company_id: str
    directory_id: str
    module_id: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class UnbindResult(BaseModel):
    id: str
    records_removed: int


class ModuleEnabledUpdate(BaseModel):
    enabled: bool


class CompanyModuleRead(BaseModel):
    company_id: str
    module_id: str
    is_enabled: bool

    model_config = {"from_attributes": True}
