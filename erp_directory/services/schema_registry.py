"""
services/schema_registry.py
---------------------------
Directory (entity type) and DirectoryField (attribute) definitions.

Service layer is responsible for:
  - Enforcing schema rules at definition time (targets exist, names unique)
  - Validating metadata documents before they reach the database
  - Returning ORM objects to the route layer
  - Never returning HTTP responses (that's the route's job)

A relation field may target its own directory or close a cycle between
directories; the registry stores such edges. Refusing self-targets is the
resolver's job when options are requested.
"""

from collections import deque
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.errors import (
    DirectoryInUse,
    DuplicateField,
    InvalidReference,
    NotFound,
    TypeMismatch,
)
from erp_directory.core.logging import get_logger
from erp_directory.domain.field_types import FieldType, encode
from erp_directory.domain.labels import order_fields
from erp_directory.domain.metadata import (
    DirectoryMetadata,
    FieldMetadata,
    decode_metadata,
    encode_metadata,
)
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import DIRECTORY_TYPES, Directory, DirectoryField
from erp_directory.models.record import DirectoryValue

logger = get_logger(__name__)

RelationGraph = Dict[str, Set[str]]


def _clean_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise TypeMismatch("Name must not be empty")
    return cleaned


def _validated_field_metadata(field_type: FieldType, raw: Any) -> Dict[str, Any]:
    meta = decode_metadata(FieldMetadata, raw, strict=True)
    if meta.default_value is not None:
        # Defaults must be storable as-is for the field's type
        encode(field_type, meta.default_value)
    return encode_metadata(meta)


class SchemaRegistry:

    # ── Directories ──────────────────────────────────────────────────────────

    @staticmethod
    async def define_directory(
        db: AsyncSession,
        name: str,
        icon_name: str,
        directory_type: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Directory:
        if directory_type not in DIRECTORY_TYPES:
            raise TypeMismatch(
                f"Unknown directory type '{directory_type}'",
                allowed=list(DIRECTORY_TYPES),
            )
        meta = decode_metadata(DirectoryMetadata, metadata, strict=True)
        directory = Directory(
            name=_clean_name(name),
            icon_name=_clean_name(icon_name),
            directory_type=directory_type,
            meta=encode_metadata(meta),
        )
        db.add(directory)
        await db.flush()
        await db.refresh(directory)
        logger.info("Directory defined", directory_id=directory.id, name=directory.name)
        return directory

    @staticmethod
    async def get_directory(db: AsyncSession, directory_id: str) -> Directory:
        directory = await db.get(Directory, directory_id)
        if directory is None:
            raise NotFound(f"Directory '{directory_id}' not found", directory_id=directory_id)
        return directory

    @staticmethod
    async def list_directories(
        db: AsyncSession, search: Optional[str] = None
    ) -> List[Directory]:
        stmt = select(Directory)
        if search:
            stmt = stmt.where(func.lower(Directory.name).contains(search.strip().lower()))
        result = await db.execute(stmt.order_by(Directory.created_at.desc(), Directory.name))
        return list(result.scalars().all())

    @staticmethod
    async def update_directory(
        db: AsyncSession,
        directory_id: str,
        name: Optional[str] = None,
        icon_name: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Directory:
        directory = await SchemaRegistry.get_directory(db, directory_id)
        if name is not None:
            directory.name = _clean_name(name)
        if icon_name is not None:
            directory.icon_name = _clean_name(icon_name)
        if metadata is not None:
            directory.meta = encode_metadata(
                decode_metadata(DirectoryMetadata, metadata, strict=True)
            )
        await db.flush()
        await db.refresh(directory)
        logger.info("Directory updated", directory_id=directory.id)
        return directory

    @staticmethod
    async def delete_directory(db: AsyncSession, directory_id: str) -> None:
        """
        Delete an unbound directory and its fields.

        Raises DirectoryInUse while any company binding exists: records live
        under bindings, so a bound directory may still hold data.
        Relation fields of other directories that targeted it keep existing
        with relation_id cleared.
        """
        directory = await SchemaRegistry.get_directory(db, directory_id)
        bound = await db.scalar(
            select(func.count())
            .select_from(CompanyDirectory)
            .where(CompanyDirectory.directory_id == directory_id)
        )
        if bound:
            raise DirectoryInUse(
                "Cannot delete directory as it is being used by companies",
                directory_id=directory_id,
                bindings=bound,
            )
        await db.execute(
            update(DirectoryField)
            .where(
                DirectoryField.relation_id == directory_id,
                DirectoryField.directory_id != directory_id,
            )
            .values(relation_id=None)
        )
        own_fields = await db.execute(
            select(DirectoryField).where(DirectoryField.directory_id == directory_id)
        )
        for field in own_fields.scalars().all():
            await db.delete(field)
        await db.flush()
        await db.delete(directory)
        await db.flush()
        logger.info("Directory deleted", directory_id=directory_id)

    # ── Fields ───────────────────────────────────────────────────────────────

    @staticmethod
    async def define_field(
        db: AsyncSession,
        directory_id: str,
        name: str,
        type_tag: str,
        required: bool = False,
        relation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DirectoryField:
        """
        Add a field to a directory.

        Raises:
            NotFound: the owning directory does not exist.
            InvalidReference: relation field without a target, or with a
                target directory that does not exist.
            DuplicateField: the directory already has a field of that name
                (compared case-insensitively).
        """
        await SchemaRegistry.get_directory(db, directory_id)
        field_type = FieldType.parse(type_tag, relation_id)
        if field_type.is_relation and await db.get(Directory, field_type.relation_id) is None:
            raise InvalidReference(
                f"Relation target directory '{field_type.relation_id}' does not exist",
                relation_id=field_type.relation_id,
            )

        field_name = _clean_name(name)
        await SchemaRegistry._ensure_unique_name(db, directory_id, field_name)

        last_position = await db.scalar(
            select(func.max(DirectoryField.position)).where(
                DirectoryField.directory_id == directory_id
            )
        )
        field = DirectoryField(
            directory_id=directory_id,
            name=field_name,
            type=field_type.kind.value,
            required=required,
            relation_id=field_type.relation_id,
            position=(last_position or 0) + 1,
            meta=_validated_field_metadata(field_type, metadata),
        )
        db.add(field)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateField(
                f"Field '{field_name}' already exists in this directory",
                directory_id=directory_id,
            )
        await db.refresh(field)
        logger.info(
            "Field defined",
            directory_id=directory_id,
            field_id=field.id,
            name=field.name,
            type=field.type,
        )
        return field

    @staticmethod
    async def _ensure_unique_name(
        db: AsyncSession,
        directory_id: str,
        name: str,
        exclude_field_id: Optional[str] = None,
    ) -> None:
        stmt = select(DirectoryField.id).where(
            DirectoryField.directory_id == directory_id,
            func.lower(DirectoryField.name) == name.lower(),
        )
        if exclude_field_id is not None:
            stmt = stmt.where(DirectoryField.id != exclude_field_id)
        if await db.scalar(stmt) is not None:
            raise DuplicateField(
                f"Field '{name}' already exists in this directory",
                directory_id=directory_id,
            )

    @staticmethod
    async def list_fields(db: AsyncSession, directory_id: str) -> List[DirectoryField]:
        """Fields in display order: metadata fieldOrder, then creation order."""
        await SchemaRegistry.get_directory(db, directory_id)
        result = await db.execute(
            select(DirectoryField).where(DirectoryField.directory_id == directory_id)
        )
        return order_fields(result.scalars().all())

    @staticmethod
    async def get_field(
        db: AsyncSession, field_id: str, directory_id: Optional[str] = None
    ) -> DirectoryField:
        field = await db.get(DirectoryField, field_id)
        if field is None or (directory_id is not None and field.directory_id != directory_id):
            raise NotFound(f"Field '{field_id}' not found", field_id=field_id)
        return field

    @staticmethod
    async def update_field(
        db: AsyncSession,
        directory_id: str,
        field_id: str,
        name: Optional[str] = None,
        required: Optional[bool] = None,
        relation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> DirectoryField:
        """Rename / re-flag a field. The type tag is fixed once values exist."""
        field = await SchemaRegistry.get_field(db, field_id, directory_id)
        if name is not None:
            new_name = _clean_name(name)
            await SchemaRegistry._ensure_unique_name(db, directory_id, new_name, field.id)
            field.name = new_name
        if required is not None:
            field.required = required
        if relation_id is not None:
            if field.type != "relation":
                raise InvalidReference("Only relation fields have a target directory")
            if await db.get(Directory, relation_id) is None:
                raise InvalidReference(
                    f"Relation target directory '{relation_id}' does not exist",
                    relation_id=relation_id,
                )
            field.relation_id = relation_id
        if metadata is not None:
            field.meta = _validated_field_metadata(FieldType.of(field), metadata)
        await db.flush()
        await db.refresh(field)
        logger.info("Field updated", directory_id=directory_id, field_id=field.id)
        return field

    @staticmethod
    async def delete_field(db: AsyncSession, directory_id: str, field_id: str) -> None:
        """
        Remove a field definition. Stored values survive with field_id
        cleared; readers match them on their field_name snapshot.
        """
        field = await SchemaRegistry.get_field(db, field_id, directory_id)
        orphaned = await db.execute(
            update(DirectoryValue)
            .where(DirectoryValue.field_id == field.id)
            .values(field_id=None)
        )
        await db.delete(field)
        await db.flush()
        logger.info(
            "Field deleted",
            directory_id=directory_id,
            field_id=field_id,
            orphaned_values=orphaned.rowcount,
        )

    # ── Relation graph ───────────────────────────────────────────────────────

    @staticmethod
    async def relation_graph(db: AsyncSession) -> RelationGraph:
        """Adjacency map: directory id -> ids of directories its fields target."""
        result = await db.execute(
            select(DirectoryField.directory_id, DirectoryField.relation_id).where(
                DirectoryField.type == "relation",
                DirectoryField.relation_id.is_not(None),
            )
        )
        graph: RelationGraph = {}
        for source, target in result.all():
            graph.setdefault(source, set()).add(target)
            graph.setdefault(target, set())
        return graph


def reachable(graph: RelationGraph, start: str, max_depth: int) -> Dict[str, int]:
    """
    Directories reachable from start through relation edges, with the depth
    at which each was first seen. Cycles terminate on the visited set;
    max_depth bounds how far the walk goes.
    """
    depths: Dict[str, int] = {start: 0}
    queue = deque([start])
    while queue:
        current = queue.popleft()
        depth = depths[current]
        if depth >= max_depth:
            continue
        for target in sorted(graph.get(current, ())):
            if target not in depths:
                depths[target] = depth + 1
                queue.append(target)
    return depths
