"""
api/routes/cascading.py
-----------------------
Cascading selection endpoints.

POST /cascading/validate            — Check a set of dependent-field selections
POST /cascading/options             — Options of one dependent field
POST /cascading/save-values         — Store a submitted cascading form
GET  /cascading/values/{record_id}  — Read a stored form back
GET  /cascading/directories         — Directories with cascading selection enabled
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.db.session import get_db
from erp_directory.dependencies import get_current_company
from erp_directory.domain.metadata import encode_metadata
from erp_directory.schemas.cascading import (
    CascadingOptionsRequest,
    CascadingValuesRead,
    SaveSelectionsRequest,
    ValidateSelectionsRequest,
    ValidationRead,
)
from erp_directory.schemas.directory import DirectoryRead, OptionRead
from erp_directory.schemas.record import RecordRead
from erp_directory.services.cascade_engine import CascadeEngine, SelectionInput

router = APIRouter(prefix="/cascading", tags=["Cascading"])


@router.post(
    "/validate",
    response_model=ValidationRead,
    summary="Validate dependent-field selections",
)
async def validate_selections(
    body: ValidateSelectionsRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> ValidationRead:
    """
    Each selection with a parent is checked against the records carrying
    that parentValue. With recordId, the parent's config also decides
    which fields are required (422 field_required when one is empty).
    """
    selections = [
        SelectionInput(
            field_name=s.field_name,
            value=s.value,
            directory_id=s.directory_id,
            parent_field=s.parent_field,
            parent_value=s.parent_value,
        )
        for s in body.selections
    ]
    result = await CascadeEngine.validate_selections(
        db, company_id, selections, record_id=body.record_id
    )
    return ValidationRead.model_validate(result)


@router.post(
    "/options",
    response_model=list[OptionRead],
    summary="Options of a dependent field under the current selections",
)
async def dependent_field_options(
    body: CascadingOptionsRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> list[OptionRead]:
    """A field that the selections do not reveal has no options."""
    config = await CascadeEngine.get_config(db, body.record_id, company_id)
    options = await CascadeEngine.options_for(
        db, config, body.field_name, body.selections, company_id, body.search
    )
    return [OptionRead.model_validate(o) for o in options]


@router.post(
    "/save-values",
    response_model=RecordRead,
    status_code=status.HTTP_201_CREATED,
    summary="Store a submitted cascading form as a record",
)
async def save_values(
    body: SaveSelectionsRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> RecordRead:
    """422 field_required while a revealed, required field is empty."""
    return await CascadeEngine.save_selections(
        db,
        company_id,
        body.company_directory_id,
        body.parent_field_id,
        body.parent_record_id,
        body.selections,
        body.values,
    )


@router.get(
    "/values/{record_id}",
    response_model=CascadingValuesRead,
    summary="Selections stored on a record",
)
async def get_values(
    record_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> CascadingValuesRead:
    saved = await CascadeEngine.get_selections(db, record_id, company_id)
    return CascadingValuesRead(
        record_id=saved.record_id,
        is_cascading_record=saved.is_cascading_record,
        parent_field_id=saved.parent_field_id,
        parent_record_id=saved.parent_record_id,
        selections=saved.selections,
        cascading_config=encode_metadata(saved.config) if saved.is_cascading_record else None,
    )


@router.get(
    "/directories",
    response_model=list[DirectoryRead],
    summary="Directories bound to the caller with cascading enabled",
)
async def list_cascading_directories(
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> list[DirectoryRead]:
    directories = await CascadeEngine.list_cascading_directories(db, company_id)
    return [DirectoryRead.model_validate(d) for d in directories]
