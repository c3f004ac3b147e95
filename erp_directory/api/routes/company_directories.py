"""
api/routes/company_directories.py
---------------------------------
Binding of directories to the caller's company.

GET    /company-directories       — Bindings visible to the company
POST   /company-directories       — Bind a directory (idempotent)
GET    /company-directories/{id}  — Fetch one binding
DELETE /company-directories/{id}  — Unbind, removing its records
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.db.session import get_db
from erp_directory.dependencies import get_current_company
from erp_directory.schemas.company_directory import (
    CompanyDirectoryCreate,
    CompanyDirectoryRead,
    UnbindResult,
)
from erp_directory.services.tenant_binding import TenantBinding

router = APIRouter(prefix="/company-directories", tags=["Company Directories"])


@router.get(
    "",
    response_model=list[CompanyDirectoryRead],
    summary="List directories enabled for the company",
)
async def list_company_directories(
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> list[CompanyDirectoryRead]:
    """Bindings under a disabled module are left out; their data is untouched."""
    bindings = await TenantBinding.list_enabled_directories(db, company_id)
    return [CompanyDirectoryRead.model_validate(b) for b in bindings]


@router.post(
    "",
    response_model=CompanyDirectoryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Bind a directory to the company",
)
async def bind_directory(
    body: CompanyDirectoryCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> CompanyDirectoryRead:
    binding = await TenantBinding.bind(db, company_id, body.directory_id, body.module_id)
    return CompanyDirectoryRead.model_validate(binding)


@router.get(
    "/{binding_id}",
    response_model=CompanyDirectoryRead,
    summary="Fetch a binding",
)
async def get_company_directory(
    binding_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> CompanyDirectoryRead:
    binding = await TenantBinding.require_binding(db, binding_id, company_id)
    return CompanyDirectoryRead.model_validate(binding)


@router.delete(
    "/{binding_id}",
    response_model=UnbindResult,
    summary="Unbind a directory and delete its records",
)
async def unbind_directory(
    binding_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> UnbindResult:
    removed = await TenantBinding.unbind(db, binding_id, company_id)
    return UnbindResult(id=binding_id, records_removed=removed)
