# tests/test_rendering.py
import pytest

from erp_directory.domain.rendering import (
    DirectoryView,
    ViewCapability,
    ViewRegistry,
    build_default_registry,
)
from erp_directory.models.directory import Directory, DirectoryField


def _directory(meta=None) -> Directory:
    return Directory(id="dir-1", name="Statements", icon_name="folder",
                     directory_type="Company", meta=meta or {})


def _field(name, position, meta=None) -> DirectoryField:
    return DirectoryField(id=f"f-{name}", directory_id="dir-1", name=name, type="string",
                          required=False, relation_id=None, position=position, meta=meta or {})


FIELDS = [
    _field("amount", 2, {"isVisibleOnTable": True}),
    _field("date", 1),
    _field("account", 3, {"isVisibleOnTable": True}),
]


@pytest.fixture
def registry() -> ViewRegistry:
    return build_default_registry()


# -----------------------------------------------------------------------------
# 1. Capability selection
# -----------------------------------------------------------------------------

def test_plain_directory_renders_as_table(registry):
    view = registry.render(_directory(), FIELDS)

    assert view.capability is ViewCapability.table
    assert view.columns == ["amount", "account"]
    assert view.label_field == "amount"


def test_component_name_maps_to_grouped_table(registry):
    view = registry.render(
        _directory({"componentName": "BankStatement", "groupBy": "account"}), FIELDS
    )

    assert view.capability is ViewCapability.grouped_table
    assert view.component == "BankStatement"
    assert view.options == {"groupBy": "account"}


def test_cascading_enabled_renders_cascading_select(registry):
    view = registry.render(
        _directory({"cascadingEnabled": True, "selectDisplayField": "date"}), FIELDS
    )

    assert view.capability is ViewCapability.cascading_select
    assert view.columns == ["date"]
    assert view.options == {"cascading": True}


def test_unknown_component_falls_back_to_table(registry):
    view = registry.render(_directory({"componentName": "Kanban"}), FIELDS)

    assert view.capability is ViewCapability.table


def test_capability_named_directly(registry):
    view = registry.render(_directory({"componentName": "grouped_table"}), FIELDS)

    assert view.capability is ViewCapability.grouped_table


def test_no_fields_means_no_label(registry):
    view = registry.render(_directory(), [])

    assert view.columns == []
    assert view.label_field is None


# -----------------------------------------------------------------------------
# 2. Registry lifecycle
# -----------------------------------------------------------------------------

def test_registry_is_frozen_after_build(registry):
    with pytest.raises(RuntimeError):
        registry.register(ViewCapability.table)(lambda d, m, f: None)


def test_registry_requires_table_fallback():
    with pytest.raises(RuntimeError):
        ViewRegistry().freeze()


def test_missing_handler_falls_back_to_table():
    registry = ViewRegistry()

    @registry.register(ViewCapability.table)
    def table(directory, meta, fields):
        return DirectoryView(directory.id, ViewCapability.table, None, [], None)

    registry.freeze()
    view = registry.render(_directory({"cascadingEnabled": True}), FIELDS)

    assert view.capability is ViewCapability.table
    assert registry.capabilities == [ViewCapability.table]
