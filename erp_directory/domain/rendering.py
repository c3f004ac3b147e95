"""
domain/rendering.py
-------------------
Capability-based view registry.

A directory declares how it wants to be presented through its display
metadata (componentName, cascadingEnabled). Handlers are registered per
capability once, when the application starts, and the registry is frozen;
resolving a directory's view is then a dictionary lookup, never a string
comparison at request time.

    registry = build_default_registry()      # lifespan
    view = registry.render(directory, fields)
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence

from erp_directory.core.logging import get_logger
from erp_directory.domain.labels import order_fields, pick_label_field
from erp_directory.domain.metadata import DirectoryMetadata, FieldMetadata, decode_metadata
from erp_directory.models.directory import Directory, DirectoryField

logger = get_logger(__name__)


class ViewCapability(str, Enum):
    table = "table"
    grouped_table = "grouped_table"
    cascading_select = "cascading_select"


# componentName values written by the forms UI
COMPONENT_CAPABILITIES: Dict[str, ViewCapability] = {
    "BankStatement": ViewCapability.grouped_table,
}


@dataclass
class DirectoryView:
    directory_id: str
    capability: ViewCapability
    component: Optional[str]
    columns: List[str]
    label_field: Optional[str]
    options: Dict[str, Any] = field(default_factory=dict)


ViewHandler = Callable[[Directory, DirectoryMetadata, List[DirectoryField]], DirectoryView]


class ViewRegistry:
    def __init__(self) -> None:
        self._handlers: Dict[ViewCapability, ViewHandler] = {}
        self._frozen = False

    def register(self, capability: ViewCapability) -> Callable[[ViewHandler], ViewHandler]:
        def decorator(handler: ViewHandler) -> ViewHandler:
            if self._frozen:
                raise RuntimeError("ViewRegistry is frozen; register handlers at startup")
            self._handlers[capability] = handler
            return handler
        return decorator

    def freeze(self) -> "ViewRegistry":
        if ViewCapability.table not in self._handlers:
            raise RuntimeError("A table handler is required as the fallback view")
        self._frozen = True
        return self

    @property
    def capabilities(self) -> List[ViewCapability]:
        return list(self._handlers)

    def capability_for(self, meta: DirectoryMetadata) -> ViewCapability:
        if meta.component_name:
            capability = COMPONENT_CAPABILITIES.get(meta.component_name)
            if capability is None:
                try:
                    capability = ViewCapability(meta.component_name)
                except ValueError:
                    logger.warning("Unknown componentName", component=meta.component_name)
                    capability = ViewCapability.table
        elif meta.cascading_enabled:
            capability = ViewCapability.cascading_select
        else:
            capability = ViewCapability.table
        return capability if capability in self._handlers else ViewCapability.table

    def render(self, directory: Directory, fields: Sequence[DirectoryField]) -> DirectoryView:
        meta = decode_metadata(DirectoryMetadata, directory.meta)
        handler = self._handlers[self.capability_for(meta)]
        return handler(directory, meta, order_fields(fields))


def _table_columns(fields: List[DirectoryField]) -> List[str]:
    flagged = [
        f.name for f in fields
        if decode_metadata(FieldMetadata, f.meta).is_visible_on_table
    ]
    return flagged or [f.name for f in fields]


def build_default_registry() -> ViewRegistry:
    registry = ViewRegistry()

    @registry.register(ViewCapability.table)
    def table_view(directory, meta, fields):
        label = pick_label_field(meta, fields)
        return DirectoryView(
            directory_id=directory.id,
            capability=ViewCapability.table,
            component=meta.component_name,
            columns=_table_columns(fields),
            label_field=label.name if label else None,
        )

    @registry.register(ViewCapability.grouped_table)
    def grouped_table_view(directory, meta, fields):
        view = table_view(directory, meta, fields)
        view.capability = ViewCapability.grouped_table
        view.options["groupBy"] = meta.group_by
        return view

    @registry.register(ViewCapability.cascading_select)
    def cascading_select_view(directory, meta, fields):
        label = pick_label_field(meta, fields)
        return DirectoryView(
            directory_id=directory.id,
            capability=ViewCapability.cascading_select,
            component=meta.component_name,
            columns=[label.name] if label else [],
            label_field=label.name if label else None,
            options={"cascading": True},
        )

    return registry.freeze()
