# tests/test_relation_resolver.py
import pytest

from erp_directory.core.errors import InvalidReference, InvalidSelfReference, NotFound
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.relation_resolver import RecordLabeler, RelationResolver
from erp_directory.services.schema_registry import SchemaRegistry
from erp_directory.services.tenant_binding import TenantBinding


async def _options(db, directory_id, company_id, search=None, **kwargs):
    return await RelationResolver.collect(
        RelationResolver.resolve_options(db, directory_id, company_id, search, **kwargs)
    )


# -----------------------------------------------------------------------------
# 1. Label precedence
# -----------------------------------------------------------------------------

async def test_label_uses_select_display_field(db, company, make_directory):
    directory, _, binding = await make_directory(
        "Clients",
        {"code": "string", "name": "string"},
        metadata={"selectDisplayField": "name"},
        company_id=company.id,
    )
    await EntityStore.create_record(db, binding.id, {"code": "C-1", "name": "UzAuto"})

    options = await _options(db, directory.id, company.id)

    assert [o.label for o in options] == ["UzAuto"]


async def test_label_falls_back_to_visible_on_table_field(db, company, make_directory):
    directory, _, binding = await make_directory(
        "Clients", {"code": "string"}, company_id=company.id
    )
    await SchemaRegistry.define_field(
        db, directory.id, "title", "string", metadata={"isVisibleOnTable": True}
    )
    await EntityStore.create_record(db, binding.id, {"code": "C-1", "title": "Shown"})

    options = await _options(db, directory.id, company.id)

    assert options[0].label == "Shown"


async def test_label_falls_back_to_first_field_then_record_id(db, company, make_directory):
    directory, _, binding = await make_directory(
        "Clients", {"code": "string", "name": "string"}, company_id=company.id
    )
    with_code = await EntityStore.create_record(db, binding.id, {"code": "C-1", "name": "x"})
    without_code = await EntityStore.create_record(db, binding.id, {"name": "y"})

    labels = {o.id: o.label for o in await _options(db, directory.id, company.id)}

    assert labels[with_code.id] == "C-1"
    assert labels[without_code.id] == without_code.id


async def test_option_value_prefers_metadata_value(db, company, make_directory):
    directory, _, binding = await make_directory("Types", {"name": "string"}, company_id=company.id)
    tagged = await EntityStore.create_record(db, binding.id, {"name": "Salary"}, {"value": "salary"})
    plain = await EntityStore.create_record(db, binding.id, {"name": "Other"})

    values = {o.id: o.value for o in await _options(db, directory.id, company.id)}

    assert values == {tagged.id: "salary", plain.id: plain.id}


# -----------------------------------------------------------------------------
# 2. Relation chains
# -----------------------------------------------------------------------------

async def test_relation_label_follows_target_record(db, company, make_directory):
    """Acme's Contracts point at Clients; a contract option shows the client's name."""
    clients, _, client_binding = await make_directory(
        "Clients", {"name": "string"}, company_id=company.id
    )
    contracts, _, contract_binding = await make_directory(
        "Contracts", {"client": ("relation", clients.id)}, company_id=company.id
    )
    client = await EntityStore.create_record(db, client_binding.id, {"name": "UzAuto"})
    await EntityStore.create_record(db, contract_binding.id, {"client": client.id})

    options = await _options(db, contracts.id, company.id)

    assert [o.label for o in options] == ["UzAuto"]


async def test_relation_label_cycle_terminates(db, company, make_directory):
    """A -> B -> A label chains stop instead of recursing forever."""
    a, _, _ = await make_directory("A")
    b, _, b_binding = await make_directory("B", {"to_a": ("relation", a.id)}, company_id=company.id)
    await SchemaRegistry.define_field(db, a.id, "to_b", "relation", relation_id=b.id)
    a_binding = await TenantBinding.bind(db, company.id, a.id)

    record_a = await EntityStore.create_record(db, a_binding.id, {})
    record_b = await EntityStore.create_record(db, b_binding.id, {"to_a": record_a.id})
    await EntityStore.update_record(db, record_a.id, {"to_b": record_b.id})

    labeler = RecordLabeler(db, company.id)
    target = await labeler.load_record(a.id, record_a.id)
    label = await labeler.label(target, a.id)

    assert label in (record_a.id, record_b.id)


async def test_labeler_ignores_records_of_other_tenants(db, company, other_company, make_directory):
    directory, _, binding = await make_directory("Clients", {"name": "string"}, company_id=company.id)
    record = await EntityStore.create_record(db, binding.id, {"name": "Secret"})

    label, resolved = await RelationResolver.render_relation(
        db, directory.id, record.id, other_company.id
    )

    assert (label, resolved) == (None, False)


# -----------------------------------------------------------------------------
# 3. Option listing
# -----------------------------------------------------------------------------

async def test_options_search_is_case_insensitive_and_capped(db, company, make_directory):
    directory, _, binding = await make_directory("Clients", {"name": "string"}, company_id=company.id)
    for name in ("Alpha Motors", "Beta Motors", "Gamma Foods"):
        await EntityStore.create_record(db, binding.id, {"name": name})

    motors = await _options(db, directory.id, company.id, "motors")
    capped = await _options(db, directory.id, company.id, limit=1)

    assert {o.label for o in motors} == {"Alpha Motors", "Beta Motors"}
    assert len(capped) == 1


async def test_options_filter_by_parent_value(db, company, make_directory):
    directory, _, binding = await make_directory("Materials", {"name": "string"}, company_id=company.id)
    await EntityStore.create_record(db, binding.id, {"name": "Circuits"}, {"parentValue": "electronics"})
    await EntityStore.create_record(db, binding.id, {"name": "Cotton"}, {"parentValue": "textiles"})

    options = await _options(db, directory.id, company.id, parent_value="electronics")

    assert [o.label for o in options] == ["Circuits"]


async def test_options_empty_for_unbound_directory(db, company, make_directory):
    directory, _, _ = await make_directory("Clients", {"name": "string"})

    assert await _options(db, directory.id, company.id) == []


async def test_client_contract_options_appear_once_contracts_exist(db, company, make_directory):
    """Acme's Clients point at Contracts; the dropdown is empty until a contract is stored."""
    contracts, _, contract_binding = await make_directory(
        "Contracts",
        {"signed_on": "date", "number": "string"},
        metadata={"selectDisplayField": "number"},
        company_id=company.id,
    )
    clients, client_fields, _ = await make_directory(
        "Clients",
        {"name": "string", "contracts": ("relation", contracts.id)},
        company_id=company.id,
    )
    field_options = RelationResolver.resolve_field_options(
        db, client_fields["contracts"].id, company.id, directory_id=clients.id
    )

    assert await _options(db, contracts.id, company.id) == []
    assert await RelationResolver.collect(field_options) == []

    contract = await EntityStore.create_record(
        db, contract_binding.id, {"signed_on": "2024-03-01", "number": "C-2024-01"}
    )

    options = await _options(db, contracts.id, company.id, editing_directory_id=clients.id)
    assert [(o.id, o.label) for o in options] == [(contract.id, "C-2024-01")]


async def test_options_refuse_self_reference(db, company, make_directory):
    employees, _, _ = await make_directory("Employees", {"name": "string"}, company_id=company.id)
    manager = await SchemaRegistry.define_field(
        db, employees.id, "manager", "relation", relation_id=employees.id
    )

    with pytest.raises(InvalidSelfReference):
        await _options(db, employees.id, company.id, editing_directory_id=employees.id)
    with pytest.raises(InvalidSelfReference):
        await RelationResolver.collect(
            RelationResolver.resolve_field_options(db, manager.id, company.id)
        )


async def test_field_options_require_relation_field(db, company, make_directory):
    _, fields, _ = await make_directory("Clients", {"name": "string"}, company_id=company.id)

    with pytest.raises(InvalidReference):
        await RelationResolver.collect(
            RelationResolver.resolve_field_options(db, fields["name"].id, company.id)
        )


async def test_options_unknown_directory(db, company):
    with pytest.raises(NotFound):
        await _options(db, "missing", company.id)
