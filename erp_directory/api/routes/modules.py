"""
api/routes/modules.py
---------------------
Module licensing for the caller's company.

GET /modules/{module_id}/enabled  — Whether the module is enabled
PUT /modules/{module_id}/enabled  — Enable or disable a module
"""

from typing import Annotated

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.db.session import get_db
from erp_directory.dependencies import get_current_company
from erp_directory.schemas.company_directory import CompanyModuleRead, ModuleEnabledUpdate
from erp_directory.services.tenant_binding import TenantBinding

router = APIRouter(prefix="/modules", tags=["Modules"])


@router.get(
    "/{module_id}/enabled",
    response_model=CompanyModuleRead,
    summary="Whether a module is enabled for the company",
)
async def get_module_enabled(
    module_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> CompanyModuleRead:
    """A module the company never licensed reads as disabled."""
    enabled = await TenantBinding.is_module_enabled(db, company_id, module_id)
    return CompanyModuleRead(company_id=company_id, module_id=module_id, is_enabled=enabled)


@router.put(
    "/{module_id}/enabled",
    response_model=CompanyModuleRead,
    summary="Enable or disable a module for the company",
)
async def set_module_enabled(
    module_id: str,
    body: ModuleEnabledUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> CompanyModuleRead:
    """
    Disabling hides the module's directory bindings from listings and
    option lookups; records stay where they are.
    """
    company_module = await TenantBinding.set_module_enabled(
        db, company_id, module_id, body.enabled
    )
    return CompanyModuleRead.model_validate(company_module)
