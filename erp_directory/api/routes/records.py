"""
api/routes/records.py
---------------------
Record endpoints. A record id alone is never enough: every lookup is
checked against the company in the bearer token.

GET    /records/{id}                   — Fetch a record with its values
PUT    /records/{id}                   — Update the given fields only
DELETE /records/{id}                   — Delete a record
PUT    /records/{id}/metadata          — Replace the record's metadata
PUT    /records/{id}/cascading-config  — Replace the cascadingConfig block
"""

from typing import Annotated, Any, Dict

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.db.session import get_db
from erp_directory.dependencies import get_current_company
from erp_directory.domain.metadata import encode_metadata
from erp_directory.schemas.cascading import CascadingConfigUpdate
from erp_directory.schemas.record import RecordMetadataUpdate, RecordRead, RecordUpdate
from erp_directory.services.cascade_engine import CascadeEngine
from erp_directory.services.entity_store import EntityStore

router = APIRouter(prefix="/records", tags=["Records"])


@router.get("/{record_id}", response_model=RecordRead, summary="Fetch a record")
async def get_record(
    record_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> RecordRead:
    return await EntityStore.get_record(db, record_id, company_id)


@router.put("/{record_id}", response_model=RecordRead, summary="Update record values")
async def update_record(
    record_id: str,
    body: RecordUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> RecordRead:
    """Fields missing from the body keep their stored values; null clears a field."""
    return await EntityStore.update_record(db, record_id, body.values, company_id)


@router.delete(
    "/{record_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a record",
)
async def delete_record(
    record_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> Response:
    await EntityStore.delete_record(db, record_id, company_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put(
    "/{record_id}/metadata",
    response_model=RecordRead,
    summary="Replace record metadata",
)
async def update_record_metadata(
    record_id: str,
    body: RecordMetadataUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> RecordRead:
    return await EntityStore.update_record_metadata(db, record_id, body.metadata, company_id)


@router.put(
    "/{record_id}/cascading-config",
    summary="Replace the cascading config carried by a record",
)
async def update_cascading_config(
    record_id: str,
    body: CascadingConfigUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> Dict[str, Any]:
    config = await CascadeEngine.set_config(db, record_id, body.cascading_config, company_id)
    return encode_metadata(config)
