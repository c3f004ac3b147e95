# tests/test_entity_store.py
from decimal import Decimal

import pytest

from erp_directory.core.errors import (
    InvalidMetadata,
    InvalidReference,
    MissingRequiredField,
    NotFound,
    TypeMismatch,
)
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.schema_registry import SchemaRegistry


@pytest.fixture
async def clients(db, company, make_directory):
    """Clients directory bound to the company: name (required), age, vip, rate."""
    directory, fields, binding = await make_directory(
        "Clients",
        {"name": "string", "age": "integer", "vip": "bool", "rate": "decimal"},
        company_id=company.id,
        required=("name",),
    )
    return directory, fields, binding


# -----------------------------------------------------------------------------
# 1. Creating records
# -----------------------------------------------------------------------------

async def test_create_round_trips_typed_values(db, company, clients):
    """Values come back decoded to their field types, keyed by id or name."""
    _, fields, binding = clients

    record = await EntityStore.create_record(
        db,
        binding.id,
        {fields["name"].id: "UzAuto", "age": "30", "vip": False, "rate": "12.50"},
        company_id=company.id,
    )

    assert record.value_of("name").value == "UzAuto"
    assert record.value_of("age").value == 30
    assert record.value_of("vip").value is False
    assert record.value_of("vip").raw == "false"
    assert record.value_of("rate").value == Decimal("12.5")


async def test_create_returns_values_in_field_order(db, clients):
    _, _, binding = clients

    record = await EntityStore.create_record(db, binding.id, {"rate": 1, "name": "A", "age": 2})

    assert [v.field_name for v in record.values] == ["name", "age", "rate"]


async def test_create_rejects_missing_required_field(db, clients):
    _, _, binding = clients

    with pytest.raises(MissingRequiredField) as exc:
        await EntityStore.create_record(db, binding.id, {"age": 3, "name": "  "})

    assert exc.value.context["fields"] == ["name"]


async def test_create_rejects_type_mismatch_and_stores_nothing(db, clients):
    _, _, binding = clients

    with pytest.raises(TypeMismatch):
        await EntityStore.create_record(db, binding.id, {"name": "A", "age": "old"})

    assert (await EntityStore.list_records(db, binding.id)).total == 0


async def test_create_rejects_foreign_field_key(db, clients, make_directory):
    _, _, binding = clients
    _, other_fields, _ = await make_directory("Other", {"code": "string"})

    with pytest.raises(InvalidReference):
        await EntityStore.create_record(
            db, binding.id, {"name": "A", other_fields["code"].id: "x"}
        )


async def test_create_applies_field_defaults(db, company, make_directory):
    directory, _, binding = await make_directory("Tasks", {"title": "string"}, company_id=company.id)
    await SchemaRegistry.define_field(
        db, directory.id, "done", "bool", metadata={"defaultValue": False}
    )

    record = await EntityStore.create_record(db, binding.id, {"title": "Write report"})

    assert record.value_of("done").value is False


async def test_create_validates_record_metadata(db, clients):
    _, _, binding = clients

    with pytest.raises(InvalidMetadata):
        await EntityStore.create_record(db, binding.id, {"name": "A"}, {"colour": "red"})


async def test_create_under_foreign_binding_is_not_found(db, other_company, clients):
    _, _, binding = clients

    with pytest.raises(NotFound):
        await EntityStore.create_record(db, binding.id, {"name": "A"}, company_id=other_company.id)


# -----------------------------------------------------------------------------
# 2. Updating records
# -----------------------------------------------------------------------------

async def test_update_touches_only_given_fields(db, clients):
    _, _, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A", "age": 5, "vip": True})

    updated = await EntityStore.update_record(db, record.id, {"age": 6})

    assert updated.value_of("age").value == 6
    assert updated.value_of("name").value == "A"
    assert updated.value_of("vip").value is True


async def test_update_with_none_clears_optional_value(db, clients):
    _, _, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A", "age": 5})

    updated = await EntityStore.update_record(db, record.id, {"age": None, "rate": "0.5"})

    assert updated.value_of("age") is None
    assert updated.value_of("rate").value == Decimal("0.5")


async def test_update_cannot_clear_required_field(db, clients):
    _, _, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A"})

    with pytest.raises(MissingRequiredField):
        await EntityStore.update_record(db, record.id, {"name": None})


async def test_update_metadata_replaces_document(db, clients):
    _, _, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A"}, {"value": "a"})

    updated = await EntityStore.update_record_metadata(db, record.id, {"name": "Alpha"})

    assert updated.metadata == {"version": 1, "name": "Alpha"}


async def test_delete_record(db, clients):
    _, _, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A"})

    await EntityStore.delete_record(db, record.id)

    with pytest.raises(NotFound):
        await EntityStore.get_record(db, record.id)


# -----------------------------------------------------------------------------
# 3. Degraded reads
# -----------------------------------------------------------------------------

async def test_deleted_field_value_is_returned_as_orphan(db, clients):
    """A value outlives its field and is shown raw under its snapshot name."""
    directory, fields, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A", "age": 41})

    await SchemaRegistry.delete_field(db, directory.id, fields["age"].id)
    read = await EntityStore.get_record(db, record.id)

    orphan = read.value_of("age")
    assert orphan.orphaned is True
    assert orphan.field_id is None
    assert orphan.value == "41"


async def test_recreated_field_reclaims_orphan_by_name(db, clients):
    directory, fields, binding = clients
    record = await EntityStore.create_record(db, binding.id, {"name": "A", "age": 41})
    await SchemaRegistry.delete_field(db, directory.id, fields["age"].id)
    new_age = await SchemaRegistry.define_field(db, directory.id, "age", "integer")

    read = await EntityStore.get_record(db, record.id)
    assert read.value_of("age").value == 41
    assert read.value_of("age").field_id == new_age.id

    updated = await EntityStore.update_record(db, record.id, {"age": 42})
    assert updated.value_of("age").value == 42
    assert updated.value_of("age").orphaned is False


async def test_unresolved_relation_is_flagged_not_raised(db, company, make_directory):
    clients, _, client_binding = await make_directory(
        "Clients", {"name": "string"}, company_id=company.id
    )
    _, _, contract_binding = await make_directory(
        "Contracts", {"client": ("relation", clients.id)}, company_id=company.id
    )
    client = await EntityStore.create_record(db, client_binding.id, {"name": "UzAuto"})
    contract = await EntityStore.create_record(db, contract_binding.id, {"client": client.id})
    assert contract.value_of("client").display == "UzAuto"

    await EntityStore.delete_record(db, client.id)
    read = await EntityStore.get_record(db, contract.id)

    value = read.value_of("client")
    assert value.unresolved is True
    assert value.display is None
    assert value.raw == client.id
    assert value.issue["code"] == "unresolved_relation"


# -----------------------------------------------------------------------------
# 4. Listing
# -----------------------------------------------------------------------------

async def test_list_records_search_and_filters(db, clients):
    _, _, binding = clients
    await EntityStore.create_record(db, binding.id, {"name": "Alpha Motors", "vip": True})
    await EntityStore.create_record(db, binding.id, {"name": "Beta Foods", "vip": False})
    await EntityStore.create_record(db, binding.id, {"name": "Gamma Motors"})

    motors = await EntityStore.list_records(db, binding.id, search="MOTORS")
    vip = await EntityStore.list_records(db, binding.id, filters={"vip": True})
    unset = await EntityStore.list_records(db, binding.id, filters={"vip": None})

    assert {r.value_of("name").value for r in motors.items} == {"Alpha Motors", "Gamma Motors"}
    assert [r.value_of("name").value for r in vip.items] == ["Alpha Motors"]
    assert [r.value_of("name").value for r in unset.items] == ["Gamma Motors"]


async def test_list_records_search_treats_wildcards_literally(db, clients):
    _, _, binding = clients
    await EntityStore.create_record(db, binding.id, {"name": "100% cotton"})
    await EntityStore.create_record(db, binding.id, {"name": "100 pieces"})

    page = await EntityStore.list_records(db, binding.id, search="100%")

    assert page.total == 1


async def test_list_records_pagination(db, clients):
    _, _, binding = clients
    for i in range(5):
        await EntityStore.create_record(db, binding.id, {"name": f"Client {i}"})

    first = await EntityStore.list_records(db, binding.id, page=1, limit=2)
    last = await EntityStore.list_records(db, binding.id, page=3, limit=2)

    assert (first.total, first.pages, len(first.items)) == (5, 3, 2)
    assert len(last.items) == 1
    ids = {r.id for r in first.items} | {r.id for r in last.items}
    assert len(ids) == 3


async def test_list_records_clamps_limit(db, clients):
    _, _, binding = clients

    page = await EntityStore.list_records(db, binding.id, limit=10_000)

    assert page.limit == 100
    assert page.pages == 0
