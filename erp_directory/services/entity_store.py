"""
services/entity_store.py
------------------------
Record storage on top of the entity-attribute-value tables.

Writes:
  - every raw value is validated against its field type before anything is
    added to the session, so a TypeMismatch or MissingRequiredField leaves
    nothing behind
  - the record row and all of its value rows are flushed together and
    commit with the request transaction
  - update_record touches only the fields it is given

Reads join values to the directory's current fields. A value whose field
link was nulled is matched by its field_name snapshot; failing that it is
returned untyped under the snapshot name. Corrupt stored text and broken
relation links degrade the value, never the read.
"""

import math
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from erp_directory.core.config import settings
from erp_directory.core.errors import (
    InvalidReference,
    MissingRequiredField,
    NotFound,
    UnresolvedRelation,
)
from erp_directory.core.logging import get_logger
from erp_directory.domain.field_types import FieldType, decode, encode, is_blank
from erp_directory.domain.labels import find_value
from erp_directory.domain.metadata import (
    FieldMetadata,
    RecordMetadata,
    decode_metadata,
    encode_metadata,
)
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import DirectoryField
from erp_directory.models.record import DirectoryRecord, DirectoryValue
from erp_directory.schemas.record import RecordPage, RecordRead, ValueRead
from erp_directory.services.relation_resolver import RecordLabeler, RelationResolver
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding

logger = get_logger(__name__)


def _field_index(fields: List[DirectoryField]) -> Tuple[Dict[str, DirectoryField], Dict[str, DirectoryField]]:
    return {f.id: f for f in fields}, {f.name: f for f in fields}


def _resolve_key(
    key: str,
    by_id: Dict[str, DirectoryField],
    by_name: Dict[str, DirectoryField],
    directory_id: str,
) -> DirectoryField:
    field = by_id.get(key) or by_name.get(key)
    if field is None:
        raise InvalidReference(
            f"Field '{key}' does not belong to this directory",
            field=key,
            directory_id=directory_id,
        )
    return field


def _encode_values(
    raw_values: Mapping[str, Any],
    fields: List[DirectoryField],
    directory_id: str,
) -> Dict[str, Optional[str]]:
    """field id -> stored text, or None for values being cleared."""
    by_id, by_name = _field_index(fields)
    encoded: Dict[str, Optional[str]] = {}
    for key, raw in raw_values.items():
        field = _resolve_key(key, by_id, by_name, directory_id)
        if is_blank(raw):
            encoded[field.id] = None
        else:
            encoded[field.id] = encode(FieldType.of(field), raw)
    return encoded


class EntityStore:

    # ── Writes ───────────────────────────────────────────────────────────────

    @staticmethod
    async def create_record(
        db: AsyncSession,
        company_directory_id: str,
        values: Mapping[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        company_id: Optional[str] = None,
    ) -> RecordRead:
        """
        Validate and store a record with all of its values.

        Omitted fields take their metadata defaultValue, if any.

        Raises:
            NotFound: the binding does not exist (or belongs to another company).
            InvalidReference: a key names a field outside the directory.
            TypeMismatch: a value cannot be coerced to its field's type.
            MissingRequiredField: required fields are left without a value.
            InvalidMetadata: the record metadata is malformed.
        """
        binding = await TenantBinding.get_binding(db, company_directory_id, company_id)
        fields = await SchemaRegistry.list_fields(db, binding.directory_id)
        encoded = _encode_values(values, fields, binding.directory_id)

        for field in fields:
            if field.id in encoded:
                continue
            default = decode_metadata(FieldMetadata, field.meta).default_value
            if default is not None:
                encoded[field.id] = encode(FieldType.of(field), default)

        missing = [f.name for f in fields if f.required and encoded.get(f.id) is None]
        if missing:
            raise MissingRequiredField(
                f"Missing required fields: {', '.join(missing)}",
                fields=missing,
            )
        meta = decode_metadata(RecordMetadata, metadata, strict=True)

        names = {f.id: f.name for f in fields}
        record = DirectoryRecord(
            company_directory_id=binding.id,
            meta=encode_metadata(meta),
            values=[
                DirectoryValue(field_id=field_id, field_name=names[field_id], value=text)
                for field_id, text in encoded.items()
                if text is not None
            ],
        )
        db.add(record)
        await db.flush()
        logger.info(
            "Record created",
            record_id=record.id,
            company_directory_id=binding.id,
            values=len(record.values),
        )
        return await EntityStore.get_record(db, record.id, binding.company_id)

    @staticmethod
    async def update_record(
        db: AsyncSession,
        record_id: str,
        values: Mapping[str, Any],
        company_id: Optional[str] = None,
    ) -> RecordRead:
        """
        Upsert the given fields only. None (or a blank string) clears a value;
        clearing a required field raises MissingRequiredField.
        """
        record, binding = await EntityStore.load_record(db, record_id, company_id)
        fields = await SchemaRegistry.list_fields(db, binding.directory_id)
        encoded = _encode_values(values, fields, binding.directory_id)
        by_id = {f.id: f for f in fields}

        cleared_required = [
            by_id[field_id].name
            for field_id, text in encoded.items()
            if text is None and by_id[field_id].required
        ]
        if cleared_required:
            raise MissingRequiredField(
                f"Missing required fields: {', '.join(cleared_required)}",
                fields=cleared_required,
            )

        for field_id, text in encoded.items():
            field = by_id[field_id]
            existing = find_value(record, field)
            if text is None:
                if existing is not None:
                    record.values.remove(existing)
                continue
            if existing is None:
                record.values.append(
                    DirectoryValue(field_id=field.id, field_name=field.name, value=text)
                )
                continue
            # Re-link values matched through their name snapshot
            existing.field_id = field.id
            existing.field_name = field.name
            if existing.value != text:
                existing.value = text
        await db.flush()
        logger.info("Record updated", record_id=record.id, fields=len(encoded))
        return await EntityStore.get_record(db, record.id, binding.company_id)

    @staticmethod
    async def update_record_metadata(
        db: AsyncSession,
        record_id: str,
        metadata: Dict[str, Any],
        company_id: Optional[str] = None,
    ) -> RecordRead:
        """Replace the record's metadata document after strict validation."""
        record, binding = await EntityStore.load_record(db, record_id, company_id)
        meta = decode_metadata(RecordMetadata, metadata, strict=True)
        record.meta = encode_metadata(meta)
        await db.flush()
        logger.info("Record metadata updated", record_id=record.id)
        return await EntityStore.get_record(db, record.id, binding.company_id)

    @staticmethod
    async def delete_record(
        db: AsyncSession, record_id: str, company_id: Optional[str] = None
    ) -> None:
        record, _ = await EntityStore.load_record(db, record_id, company_id)
        await db.delete(record)
        await db.flush()
        logger.info("Record deleted", record_id=record_id)

    # ── Reads ────────────────────────────────────────────────────────────────

    @staticmethod
    async def load_record(
        db: AsyncSession, record_id: str, company_id: Optional[str] = None
    ) -> Tuple[DirectoryRecord, CompanyDirectory]:
        """ORM record and its binding, scoped to company_id when given."""
        result = await db.execute(
            select(DirectoryRecord)
            .where(DirectoryRecord.id == record_id)
            .options(selectinload(DirectoryRecord.values))
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFound(f"Record '{record_id}' not found", record_id=record_id)
        binding = await db.get(CompanyDirectory, record.company_directory_id)
        if binding is None or (company_id is not None and binding.company_id != company_id):
            raise NotFound(f"Record '{record_id}' not found", record_id=record_id)
        return record, binding

    @staticmethod
    async def get_record(
        db: AsyncSession, record_id: str, company_id: Optional[str] = None
    ) -> RecordRead:
        record, binding = await EntityStore.load_record(db, record_id, company_id)
        fields = await SchemaRegistry.list_fields(db, binding.directory_id)
        labeler = RecordLabeler(db, binding.company_id)
        return await EntityStore._to_read(db, record, binding, fields, labeler)

    @staticmethod
    async def list_records(
        db: AsyncSession,
        company_directory_id: str,
        filters: Optional[Mapping[str, Any]] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
        company_id: Optional[str] = None,
    ) -> RecordPage:
        """
        Page through a binding's records, newest first.

        Args:
            filters: field id (or name) -> raw value; a record matches when
                its stored text equals the encoded value for every entry.
            search: case-insensitive substring over any stored value.
        """
        binding = await TenantBinding.get_binding(db, company_directory_id, company_id)
        fields = await SchemaRegistry.list_fields(db, binding.directory_id)
        page = max(page, 1)
        limit = min(max(limit or settings.DEFAULT_PAGE_SIZE, 1), settings.MAX_PAGE_SIZE)

        stmt = select(DirectoryRecord).where(
            DirectoryRecord.company_directory_id == binding.id
        )
        for field_id, text in _encode_values(filters or {}, fields, binding.directory_id).items():
            matching = select(DirectoryValue.directory_record_id).where(
                DirectoryValue.field_id == field_id
            )
            if text is None:
                stmt = stmt.where(DirectoryRecord.id.not_in(matching))
            else:
                stmt = stmt.where(
                    DirectoryRecord.id.in_(matching.where(DirectoryValue.value == text))
                )
        term = (search or "").strip().lower()
        if term:
            stmt = stmt.where(
                DirectoryRecord.id.in_(
                    select(DirectoryValue.directory_record_id).where(
                        func.lower(DirectoryValue.value).contains(term, autoescape=True)
                    )
                )
            )

        total = await db.scalar(select(func.count()).select_from(stmt.subquery())) or 0
        result = await db.execute(
            stmt.options(selectinload(DirectoryRecord.values))
            .order_by(DirectoryRecord.created_at.desc(), DirectoryRecord.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        labeler = RecordLabeler(db, binding.company_id)
        items = [
            await EntityStore._to_read(db, record, binding, fields, labeler)
            for record in result.scalars().all()
        ]
        return RecordPage(
            total=total,
            page=page,
            limit=limit,
            pages=math.ceil(total / limit) if total else 0,
            items=items,
        )

    @staticmethod
    async def _to_read(
        db: AsyncSession,
        record: DirectoryRecord,
        binding: CompanyDirectory,
        fields: List[DirectoryField],
        labeler: RecordLabeler,
    ) -> RecordRead:
        values: List[ValueRead] = []
        claimed = set()
        for field in fields:
            stored = find_value(record, field)
            if stored is None:
                continue
            claimed.add(stored.id)
            if stored.field_id is None:
                logger.warning(
                    "Value matched by field name",
                    record_id=record.id,
                    field_name=stored.field_name,
                )
            values.append(
                await EntityStore._render_value(db, stored, field, binding, labeler)
            )

        for stored in record.values:
            if stored.id in claimed:
                continue
            logger.warning(
                "Orphaned value without a matching field",
                record_id=record.id,
                field_name=stored.field_name,
            )
            values.append(
                ValueRead(
                    field_id=None,
                    field_name=stored.field_name,
                    value=stored.value,
                    raw=stored.value,
                    orphaned=True,
                )
            )

        return RecordRead(
            id=record.id,
            company_directory_id=record.company_directory_id,
            directory_id=binding.directory_id,
            metadata=encode_metadata(decode_metadata(RecordMetadata, record.meta)),
            values=values,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    @staticmethod
    async def _render_value(
        db: AsyncSession,
        stored: DirectoryValue,
        field: DirectoryField,
        binding: CompanyDirectory,
        labeler: RecordLabeler,
    ) -> ValueRead:
        field_type = FieldType.of(field)
        try:
            value = decode(field_type, stored.value)
        except ValueError as exc:
            logger.warning(
                "Stored value does not decode",
                field_id=field.id,
                type=field.type,
                error=str(exc),
            )
            value = stored.value
        rendered = ValueRead(
            field_id=field.id,
            field_name=field.name,
            type=field_type.kind.value,
            value=value,
            raw=stored.value,
        )
        if field_type.is_relation:
            label, resolved = await RelationResolver.render_relation(
                db, field_type.relation_id, stored.value, binding.company_id, labeler
            )
            rendered.display = label
            if not resolved:
                rendered.unresolved = True
                rendered.issue = UnresolvedRelation(
                    "Related record is no longer available",
                    record_id=stored.value,
                    directory_id=field_type.relation_id,
                ).to_dict()
        return rendered
