"""
services/cascade_engine.py
--------------------------
Dependent ("cascading") fields revealed by a selected parent record.

The cascadingConfig lives on the DirectoryRecord chosen as the parent value,
so two options of the same field can reveal entirely different chains:

    Payment Type = buying_raw_material  ->  Inventory, Raw Material
    Payment Type = salary               ->  Department, Employee

Visibility is recomputed from scratch on every change. Starting from the
fields with no dependsOn, a field is revealed only when its parent is itself
visible and has a selection; the walk keeps a visited set and stops at
CASCADE_MAX_DEPTH, so a misconfigured loop (B dependsOn C, C dependsOn B)
cannot spin. Selections that fall out of the visible set are dropped with it.

The pure functions here are shared by the HTTP endpoints and the client-side
CascadeSession.
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.config import settings
from erp_directory.core.errors import (
    DirectoryError,
    FieldRequired,
    InvalidReference,
    NotFound,
)
from erp_directory.core.logging import get_logger
from erp_directory.domain.field_types import is_blank
from erp_directory.domain.metadata import (
    CascadingConfig,
    DependentField,
    DirectoryMetadata,
    RecordMetadata,
    SavedSelection,
    decode_metadata,
    encode_metadata,
)
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import Directory
from erp_directory.models.record import DirectoryRecord
from erp_directory.schemas.record import RecordRead
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.relation_resolver import Option, RelationResolver
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding

logger = get_logger(__name__)

Selections = Dict[str, Any]


# ── Pure selection logic ─────────────────────────────────────────────────────

def _children(config: CascadingConfig) -> Dict[Optional[str], List[DependentField]]:
    children: Dict[Optional[str], List[DependentField]] = {}
    for dependent in config.dependent_fields:
        children.setdefault(dependent.depends_on, []).append(dependent)
    return children


def _selected(selections: Mapping[str, Any], field_name: str) -> bool:
    return not is_blank(selections.get(field_name))


def visible_fields(
    config: CascadingConfig,
    selections: Mapping[str, Any],
    max_depth: Optional[int] = None,
) -> List[DependentField]:
    """Dependent fields to render for the given selections, in config order."""
    if not config.is_active:
        return []
    limit = settings.CASCADE_MAX_DEPTH if max_depth is None else max_depth
    children = _children(config)
    seen: Set[str] = set()
    queue = deque((root, 0) for root in children.get(None, []))
    while queue:
        dependent, depth = queue.popleft()
        if dependent.field_name in seen:
            continue
        seen.add(dependent.field_name)
        if depth >= limit or not _selected(selections, dependent.field_name):
            continue
        for child in children.get(dependent.field_name, []):
            queue.append((child, depth + 1))
    return [d for d in config.dependent_fields if d.field_name in seen]


def downstream_of(config: CascadingConfig, field_name: str) -> Set[str]:
    """Every field whose dependsOn chain passes through field_name."""
    children = _children(config)
    found: Set[str] = set()
    queue = deque([field_name])
    while queue:
        current = queue.popleft()
        for child in children.get(current, []):
            if child.field_name not in found and child.field_name != field_name:
                found.add(child.field_name)
                queue.append(child.field_name)
    return found


def prune_selections(config: CascadingConfig, selections: Mapping[str, Any]) -> Selections:
    """Selections restricted to fields that are still visible."""
    visible = {d.field_name for d in visible_fields(config, selections)}
    return {
        name: value
        for name, value in selections.items()
        if name in visible and not is_blank(value)
    }


def apply_selection(
    config: CascadingConfig,
    selections: Mapping[str, Any],
    field_name: str,
    value: Any,
) -> Selections:
    """
    Select (or clear, with a blank value) one field.

    Changing a field discards every downstream selection, even when the
    new value happens to reveal the same children.
    """
    updated = {
        name: selected
        for name, selected in selections.items()
        if name not in downstream_of(config, field_name)
    }
    if is_blank(value):
        updated.pop(field_name, None)
    else:
        updated[field_name] = value
    return prune_selections(config, updated)


def missing_required(config: CascadingConfig, selections: Mapping[str, Any]) -> List[str]:
    return [
        d.field_name
        for d in visible_fields(config, selections)
        if d.required and not _selected(selections, d.field_name)
    ]


def check_required(config: CascadingConfig, selections: Mapping[str, Any]) -> None:
    """
    Raises:
        FieldRequired: a visible, required field has no selection.
    """
    missing = missing_required(config, selections)
    if missing:
        raise FieldRequired(
            f"Required fields have no selection: {', '.join(missing)}",
            field_names=missing,
        )


# ── Validation results ───────────────────────────────────────────────────────

@dataclass
class SelectionCheck:
    field_name: str
    value: Any
    is_valid: bool
    message: str


@dataclass
class SelectionValidation:
    is_valid: bool
    results: List[SelectionCheck] = field(default_factory=list)


@dataclass
class SelectionInput:
    field_name: str
    value: Any
    directory_id: Optional[str] = None
    parent_field: Optional[str] = None
    parent_value: Optional[str] = None


@dataclass
class CascadingValues:
    record_id: str
    is_cascading_record: bool
    parent_field_id: Optional[str] = None
    parent_record_id: Optional[str] = None
    selections: Selections = field(default_factory=dict)
    config: CascadingConfig = field(default_factory=CascadingConfig.disabled)


def _config_of(record: DirectoryRecord) -> CascadingConfig:
    config = decode_metadata(RecordMetadata, record.meta).cascading_config
    if config is None or not config.enabled:
        return CascadingConfig.disabled()
    return config


# ── Persistence-backed operations ────────────────────────────────────────────

class CascadeEngine:

    @staticmethod
    async def get_config(
        db: AsyncSession, record_id: str, company_id: Optional[str] = None
    ) -> CascadingConfig:
        """Config carried by a parent record; missing or disabled reads as disabled."""
        record, _ = await EntityStore.load_record(db, record_id, company_id)
        return _config_of(record)

    @staticmethod
    async def config_for_value(
        db: AsyncSession,
        directory_id: str,
        field_id: str,
        value: str,
        company_id: str,
    ) -> CascadingConfig:
        """
        Config revealed when `value` (a record id) is chosen for a field.

        Raises:
            NotFound: the field is not in directory_id, or the record is not
                one of the company's records of the field's target directory.
            InvalidReference: the field has no target directory.
        """
        field = await SchemaRegistry.get_field(db, field_id, directory_id)
        if field.relation_id is None:
            raise InvalidReference(
                f"Field '{field.name}' does not point at a directory",
                field_id=field_id,
            )
        record, binding = await EntityStore.load_record(db, value, company_id)
        if binding.directory_id != field.relation_id:
            raise NotFound(f"Record '{value}' not found", record_id=value)
        return _config_of(record)

    @staticmethod
    async def set_config(
        db: AsyncSession,
        record_id: str,
        config: Mapping[str, Any],
        company_id: Optional[str] = None,
    ) -> CascadingConfig:
        """
        Replace a record's cascadingConfig, keeping the rest of its metadata.

        Raises:
            InvalidMetadata: malformed config (unknown keys, duplicate field
                names, dependsOn naming an unknown field).
            InvalidReference: a dependent field's directory does not exist.
        """
        record, _ = await EntityStore.load_record(db, record_id, company_id)
        parsed = decode_metadata(CascadingConfig, dict(config), strict=True)
        for dependent in parsed.dependent_fields:
            if await db.get(Directory, dependent.directory_id) is None:
                raise InvalidReference(
                    f"Directory '{dependent.directory_id}' of dependent field "
                    f"'{dependent.field_name}' does not exist",
                    directory_id=dependent.directory_id,
                )
        meta = decode_metadata(RecordMetadata, record.meta)
        meta.cascading_config = parsed
        record.meta = encode_metadata(meta)
        await db.flush()
        logger.info(
            "Cascading config updated",
            record_id=record_id,
            enabled=parsed.enabled,
            dependent_fields=len(parsed.dependent_fields),
        )
        return parsed

    @staticmethod
    async def options_for(
        db: AsyncSession,
        config: CascadingConfig,
        field_name: str,
        selections: Mapping[str, Any],
        company_id: str,
        search: Optional[str] = None,
    ) -> List[Option]:
        """
        Options for one dependent field. A field that is not visible has
        none; a field with dependsOn only offers records whose parentValue
        equals the parent's selection.
        """
        visible = {d.field_name: d for d in visible_fields(config, selections)}
        dependent = visible.get(field_name)
        if dependent is None:
            return []
        parent_value = None
        if dependent.depends_on is not None:
            parent_value = str(selections[dependent.depends_on])
        return await RelationResolver.collect(
            RelationResolver.resolve_options(
                db,
                dependent.directory_id,
                company_id,
                search,
                parent_value=parent_value,
            )
        )

    @staticmethod
    async def validate_selections(
        db: AsyncSession,
        company_id: str,
        selections: List[SelectionInput],
        record_id: Optional[str] = None,
    ) -> SelectionValidation:
        """
        Check submitted selections.

        With record_id, the parent's config is enforced first (FieldRequired
        for visible required fields left empty) and supplies each field's
        directory and parent. A selection with a parent is valid when a
        record of the company carries that parentValue and the selected
        value.
        """
        by_name: Dict[str, DependentField] = {}
        if record_id is not None:
            config = await CascadeEngine.get_config(db, record_id, company_id)
            chosen = {s.field_name: s.value for s in selections}
            check_required(config, chosen)
            by_name = {d.field_name: d for d in visible_fields(config, chosen)}
            chosen_by_name = chosen
        else:
            chosen_by_name = {s.field_name: s.value for s in selections}

        results: List[SelectionCheck] = []
        for selection in selections:
            dependent = by_name.get(selection.field_name)
            directory_id = selection.directory_id
            parent_value = selection.parent_value
            if dependent is not None:
                directory_id = directory_id or dependent.directory_id
                if parent_value is None and dependent.depends_on is not None:
                    parent_value = chosen_by_name.get(dependent.depends_on)
            elif selection.parent_field and parent_value is None:
                parent_value = chosen_by_name.get(selection.parent_field)

            if is_blank(parent_value):
                results.append(
                    SelectionCheck(
                        selection.field_name,
                        selection.value,
                        True,
                        "Valid selection (no parent dependency)",
                    )
                )
                continue
            valid = await CascadeEngine._child_exists(
                db, company_id, directory_id, str(parent_value), str(selection.value)
            )
            results.append(
                SelectionCheck(
                    selection.field_name,
                    selection.value,
                    valid,
                    "Valid selection" if valid else "Invalid selection for parent value",
                )
            )
        return SelectionValidation(
            is_valid=all(r.is_valid for r in results), results=results
        )

    @staticmethod
    async def save_selections(
        db: AsyncSession,
        company_id: str,
        company_directory_id: str,
        parent_field_id: str,
        parent_record_id: str,
        selections: Mapping[str, Any],
        values: Optional[Mapping[str, Any]] = None,
    ) -> RecordRead:
        """
        Store a submitted cascading form as one record of the binding.

        The parent field gets the chosen record id; every selection still
        visible under its config is written to the field of the same name,
        created as a string field on first use. Selections of hidden fields
        are dropped. Nothing is written while a visible required field is
        empty; any later failure rolls the transaction back, fields created
        here included.

        Raises:
            NotFound: unknown binding, field or parent record.
            FieldRequired: a visible, required field has no selection.
            TypeMismatch, MissingRequiredField: `values` do not fit the directory.
        """
        binding = await TenantBinding.require_binding(db, company_directory_id, company_id)
        config = await CascadeEngine.config_for_value(
            db, binding.directory_id, parent_field_id, parent_record_id, company_id
        )
        chosen = prune_selections(config, selections)
        check_required(config, chosen)
        dropped = sorted(set(selections) - set(chosen))
        if dropped:
            logger.info("Dropping selections of hidden fields", fields=dropped)

        try:
            fields = await SchemaRegistry.list_fields(db, binding.directory_id)
            by_name = {f.name.lower(): f for f in fields}
            record_values: Dict[str, Any] = dict(values or {})
            for name, value in chosen.items():
                target = by_name.get(name.lower())
                if target is None:
                    target = await SchemaRegistry.define_field(
                        db, binding.directory_id, name, "string"
                    )
                record_values[target.id] = str(value)
            record_values[parent_field_id] = parent_record_id

            saved = SavedSelection(
                parent_field_id=parent_field_id,
                parent_record_id=parent_record_id,
                field_names=list(chosen),
            )
            record = await EntityStore.create_record(
                db,
                binding.id,
                record_values,
                {"cascadingSelection": encode_metadata(saved)},
                company_id=company_id,
            )
        except DirectoryError:
            await db.rollback()
            raise
        logger.info(
            "Cascading selection saved",
            record_id=record.id,
            parent_record_id=parent_record_id,
            fields=len(chosen),
        )
        return record

    @staticmethod
    async def get_selections(
        db: AsyncSession, record_id: str, company_id: str
    ) -> CascadingValues:
        """
        Read back a record stored by save_selections, with the config of its
        parent record. Records saved any other way come back with
        is_cascading_record False.
        """
        record = await EntityStore.get_record(db, record_id, company_id)
        saved = decode_metadata(RecordMetadata, record.metadata).cascading_selection
        if saved is None:
            return CascadingValues(record_id=record.id, is_cascading_record=False)

        stored = {v.field_name.lower(): v for v in record.values}
        selections: Selections = {}
        for name in saved.field_names:
            value = stored.get(name.lower())
            if value is not None:
                selections[name] = value.value
        try:
            config = await CascadeEngine.get_config(db, saved.parent_record_id, company_id)
        except NotFound:
            logger.warning(
                "Parent record of a saved selection is gone",
                record_id=record.id,
                parent_record_id=saved.parent_record_id,
            )
            config = CascadingConfig.disabled()
        return CascadingValues(
            record_id=record.id,
            is_cascading_record=True,
            parent_field_id=saved.parent_field_id,
            parent_record_id=saved.parent_record_id,
            selections=selections,
            config=config,
        )

    @staticmethod
    async def _child_exists(
        db: AsyncSession,
        company_id: str,
        directory_id: Optional[str],
        parent_value: str,
        value: str,
    ) -> bool:
        stmt = (
            select(DirectoryRecord)
            .join(CompanyDirectory, DirectoryRecord.company_directory_id == CompanyDirectory.id)
            .where(CompanyDirectory.company_id == company_id)
        )
        if directory_id is not None:
            stmt = stmt.where(CompanyDirectory.directory_id == directory_id)
        result = await db.execute(stmt)
        for record in result.scalars().all():
            meta = decode_metadata(RecordMetadata, record.meta)
            if meta.parent_value == parent_value and value in (meta.value, record.id):
                return True
        return False

    @staticmethod
    async def list_cascading_directories(
        db: AsyncSession, company_id: Optional[str] = None
    ) -> List[Directory]:
        """Directories whose display metadata enables cascading selection."""
        directories = await SchemaRegistry.list_directories(db)
        if company_id is not None:
            bound = {
                b.directory_id
                for b in await TenantBinding.list_enabled_directories(db, company_id)
            }
            directories = [d for d in directories if d.id in bound]
        return [
            d for d in directories
            if decode_metadata(DirectoryMetadata, d.meta).cascading_enabled
        ]
