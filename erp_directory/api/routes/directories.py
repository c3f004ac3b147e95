"""
api/routes/directories.py
-------------------------
Directory schema endpoints and the per-directory data views.

GET    /directories                        — List directories (search by name)
POST   /directories                        — Define a directory
GET    /directories/{id}                   — Fetch one directory
PUT    /directories/{id}                   — Rename / edit metadata
DELETE /directories/{id}                   — Delete an unbound directory
GET    /directories/{id}/fields            — Fields in display order
POST   /directories/{id}/fields            — Define a field
PUT    /directories/{id}/fields/{field_id} — Edit a field
DELETE /directories/{id}/fields/{field_id} — Remove a field (values survive)
GET    /directories/{id}/data              — Caller's records, paginated
GET    /directories/{id}/options           — Relation dropdown options
GET    /directories/{id}/fields/{field_id}/options
                                           — Options of one relation field
GET    /directories/{id}/relations         — Directories reachable through relations
GET    /directories/{id}/view              — Renderer descriptor
GET    /directories/{id}/fields/{field_id}/cascading-config
                                           — Config revealed by a chosen value
POST   /directories/{id}/records           — Create a record

Schema definitions are shared across companies; everything that touches
records is scoped to the company in the bearer token.
"""

from typing import Annotated, Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.config import settings
from erp_directory.core.errors import NotFound
from erp_directory.db.session import get_db
from erp_directory.dependencies import get_current_company
from erp_directory.domain.metadata import encode_metadata
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.schemas.directory import (
    DirectoryCreate,
    DirectoryRead,
    DirectoryUpdate,
    DirectoryViewRead,
    FieldCreate,
    FieldRead,
    FieldUpdate,
    OptionRead,
    RelatedDirectoryRead,
)
from erp_directory.schemas.record import RecordCreate, RecordPage, RecordRead
from erp_directory.services.cascade_engine import CascadeEngine
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.relation_resolver import RelationResolver
from erp_directory.services.schema_registry import SchemaRegistry, reachable
from erp_directory.services.tenant_binding import TenantBinding

router = APIRouter(prefix="/directories", tags=["Directories"])


async def _binding_for(
    db: AsyncSession,
    company_id: str,
    directory_id: str,
    binding_id: Optional[str] = None,
) -> Optional[CompanyDirectory]:
    """The caller's binding of a directory: the one asked for, or the first enabled one."""
    await SchemaRegistry.get_directory(db, directory_id)
    if binding_id is not None:
        binding = await TenantBinding.require_binding(db, binding_id, company_id)
        if binding.directory_id != directory_id:
            raise NotFound(
                f"Company directory '{binding_id}' not found", binding_id=binding_id
            )
        return binding
    bindings = await TenantBinding.enabled_bindings_for(db, company_id, directory_id)
    return bindings[0] if bindings else None


# ── Directories ──────────────────────────────────────────────────────────────

@router.get("", response_model=list[DirectoryRead], summary="List directories")
async def list_directories(
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    search: Optional[str] = Query(default=None, max_length=255),
) -> list[DirectoryRead]:
    directories = await SchemaRegistry.list_directories(db, search)
    return [DirectoryRead.model_validate(d) for d in directories]


@router.post(
    "",
    response_model=DirectoryRead,
    status_code=status.HTTP_201_CREATED,
    summary="Define a directory",
)
async def create_directory(
    body: DirectoryCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> DirectoryRead:
    directory = await SchemaRegistry.define_directory(
        db, body.name, body.icon_name, body.directory_type, body.metadata
    )
    return DirectoryRead.model_validate(directory)


@router.get("/{directory_id}", response_model=DirectoryRead, summary="Fetch a directory")
async def get_directory(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> DirectoryRead:
    return DirectoryRead.model_validate(await SchemaRegistry.get_directory(db, directory_id))


@router.put("/{directory_id}", response_model=DirectoryRead, summary="Update a directory")
async def update_directory(
    directory_id: str,
    body: DirectoryUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> DirectoryRead:
    directory = await SchemaRegistry.update_directory(
        db, directory_id, body.name, body.icon_name, body.metadata
    )
    return DirectoryRead.model_validate(directory)


@router.delete(
    "/{directory_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a directory that no company uses",
)
async def delete_directory(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> Response:
    await SchemaRegistry.delete_directory(db, directory_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Fields ───────────────────────────────────────────────────────────────────

@router.get(
    "/{directory_id}/fields",
    response_model=list[FieldRead],
    summary="List fields in display order",
)
async def list_fields(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> list[FieldRead]:
    fields = await SchemaRegistry.list_fields(db, directory_id)
    return [FieldRead.model_validate(f) for f in fields]


@router.post(
    "/{directory_id}/fields",
    response_model=FieldRead,
    status_code=status.HTTP_201_CREATED,
    summary="Define a field",
)
async def create_field(
    directory_id: str,
    body: FieldCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> FieldRead:
    field = await SchemaRegistry.define_field(
        db,
        directory_id,
        body.name,
        body.type,
        required=body.required,
        relation_id=body.relation_id,
        metadata=body.metadata,
    )
    return FieldRead.model_validate(field)


@router.put(
    "/{directory_id}/fields/{field_id}",
    response_model=FieldRead,
    summary="Update a field",
)
async def update_field(
    directory_id: str,
    field_id: str,
    body: FieldUpdate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> FieldRead:
    field = await SchemaRegistry.update_field(
        db,
        directory_id,
        field_id,
        name=body.name,
        required=body.required,
        relation_id=body.relation_id,
        metadata=body.metadata,
    )
    return FieldRead.model_validate(field)


@router.delete(
    "/{directory_id}/fields/{field_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a field",
)
async def delete_field(
    directory_id: str,
    field_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> Response:
    await SchemaRegistry.delete_field(db, directory_id, field_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ── Data, options and views ──────────────────────────────────────────────────

@router.get(
    "/{directory_id}/data",
    response_model=RecordPage,
    summary="Paginated records of the caller's company",
)
async def list_directory_data(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    company: Optional[str] = Query(
        default=None, description="Company directory (binding) id; defaults to the first one"
    ),
    search: Optional[str] = Query(default=None, max_length=255),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
) -> RecordPage:
    binding = await _binding_for(db, company_id, directory_id, company)
    if binding is None:
        return RecordPage(
            total=0, page=page, limit=limit or settings.DEFAULT_PAGE_SIZE, pages=0, items=[]
        )
    return await EntityStore.list_records(
        db, binding.id, search=search, page=page, limit=limit, company_id=company_id
    )


@router.get(
    "/{directory_id}/options",
    response_model=list[OptionRead],
    summary="Selectable records for relation fields",
)
async def list_options(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    search: Optional[str] = Query(default=None, max_length=255),
    editing: Optional[str] = Query(
        default=None, description="Directory of the form being edited"
    ),
    parent_value: Optional[str] = Query(default=None),
) -> list[OptionRead]:
    options = RelationResolver.resolve_options(
        db,
        directory_id,
        company_id,
        search,
        editing_directory_id=editing,
        parent_value=parent_value,
    )
    return [OptionRead.model_validate(o) async for o in options]


@router.get(
    "/{directory_id}/fields/{field_id}/options",
    response_model=list[OptionRead],
    summary="Selectable records for one relation field",
)
async def list_field_options(
    directory_id: str,
    field_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    search: Optional[str] = Query(default=None, max_length=255),
) -> list[OptionRead]:
    """422 invalid_self_reference when the field targets its own directory."""
    options = RelationResolver.resolve_field_options(
        db, field_id, company_id, search, directory_id=directory_id
    )
    return [OptionRead.model_validate(o) async for o in options]


@router.get(
    "/{directory_id}/relations",
    response_model=list[RelatedDirectoryRead],
    summary="Directories reachable through relation fields",
)
async def list_related_directories(
    directory_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    max_depth: int = Query(default=settings.LABEL_MAX_DEPTH, ge=1, le=settings.CASCADE_MAX_DEPTH),
) -> list[RelatedDirectoryRead]:
    """Breadth-first; each directory is listed once, at the depth it is first reached."""
    await SchemaRegistry.get_directory(db, directory_id)
    graph = await SchemaRegistry.relation_graph(db)
    depths = reachable(graph, directory_id, max_depth)
    return [
        RelatedDirectoryRead(directory_id=target, depth=depth)
        for target, depth in sorted(depths.items(), key=lambda item: (item[1], item[0]))
        if target != directory_id
    ]


@router.get(
    "/{directory_id}/view",
    response_model=DirectoryViewRead,
    summary="How the directory should be rendered",
)
async def get_directory_view(
    directory_id: str,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> DirectoryViewRead:
    directory = await SchemaRegistry.get_directory(db, directory_id)
    fields = await SchemaRegistry.list_fields(db, directory_id)
    view = request.app.state.view_registry.render(directory, fields)
    return DirectoryViewRead.model_validate(view)


@router.get(
    "/{directory_id}/fields/{field_id}/cascading-config",
    summary="Cascading config of the record chosen for a field",
)
async def get_cascading_config(
    directory_id: str,
    field_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
    value: str = Query(..., min_length=1, description="Selected record id"),
) -> Dict[str, Any]:
    config = await CascadeEngine.config_for_value(db, directory_id, field_id, value, company_id)
    return encode_metadata(config)


# ── Records ──────────────────────────────────────────────────────────────────

@router.post(
    "/{directory_id}/records",
    response_model=RecordRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a record",
)
async def create_record(
    directory_id: str,
    body: RecordCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[str, Depends(get_current_company)],
) -> RecordRead:
    binding = await _binding_for(db, company_id, directory_id, body.company_directory_id)
    if binding is None:
        raise NotFound(
            "Directory is not bound to this company", directory_id=directory_id
        )
    return await EntityStore.create_record(
        db, binding.id, body.values, body.metadata, company_id=company_id
    )
