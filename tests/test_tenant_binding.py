# tests/test_tenant_binding.py
import pytest
from sqlalchemy.exc import SQLAlchemyError

from erp_directory.core.errors import CascadeDeleteFailed, NotFound
from erp_directory.services.company_service import CompanyService
from erp_directory.services.entity_store import EntityStore
from erp_directory.services.tenant_binding import TenantBinding


# -----------------------------------------------------------------------------
# 1. Binding
# -----------------------------------------------------------------------------

async def test_bind_is_idempotent(db, company, make_directory):
    directory, _, binding = await make_directory("Clients", company_id=company.id)

    again = await TenantBinding.bind(db, company.id, directory.id)

    assert again.id == binding.id


async def test_bind_requires_existing_company_and_directory(db, company, make_directory):
    directory, _, _ = await make_directory("Clients")

    with pytest.raises(NotFound):
        await TenantBinding.bind(db, "no-such-company", directory.id)
    with pytest.raises(NotFound):
        await TenantBinding.bind(db, company.id, "no-such-directory")
    with pytest.raises(NotFound):
        await TenantBinding.bind(db, company.id, directory.id, module_id="no-such-module")


async def test_binding_lookup_is_tenant_scoped(db, company, other_company, make_directory):
    """Knowing another company's binding id does not reveal it."""
    _, _, binding = await make_directory("Clients", company_id=company.id)

    with pytest.raises(NotFound):
        await TenantBinding.require_binding(db, binding.id, other_company.id)
    assert (await TenantBinding.require_binding(db, binding.id, company.id)).id == binding.id


async def test_two_companies_hold_independent_records(db, company, other_company, make_directory):
    directory, _, binding = await make_directory("Clients", {"name": "string"}, company_id=company.id)
    other_binding = await TenantBinding.bind(db, other_company.id, directory.id)
    await EntityStore.create_record(db, binding.id, {"name": "Acme client"})

    page = await EntityStore.list_records(db, other_binding.id, company_id=other_company.id)

    assert page.total == 0


# -----------------------------------------------------------------------------
# 2. Module licensing
# -----------------------------------------------------------------------------

async def test_disabled_module_hides_its_bindings(db, company, make_directory):
    module = await CompanyService.create_module(db, "Cashier")
    directory, _, _ = await make_directory("Payments")
    _, _, free_binding = await make_directory("Clients", company_id=company.id)
    licensed = await TenantBinding.bind(db, company.id, directory.id, module.id)

    visible = {b.id for b in await TenantBinding.list_enabled_directories(db, company.id)}
    assert visible == {free_binding.id}

    await TenantBinding.set_module_enabled(db, company.id, module.id, True)
    visible = {b.id for b in await TenantBinding.list_enabled_directories(db, company.id)}
    assert visible == {free_binding.id, licensed.id}
    assert await TenantBinding.is_module_enabled(db, company.id, module.id)


async def test_unknown_module_is_not_found(db, company):
    with pytest.raises(NotFound):
        await TenantBinding.set_module_enabled(db, company.id, "missing", True)
    with pytest.raises(NotFound):
        await TenantBinding.is_module_enabled(db, company.id, "missing")


# -----------------------------------------------------------------------------
# 3. Unbinding
# -----------------------------------------------------------------------------

async def test_unbind_removes_records_and_values(db, company, make_directory):
    _, _, binding = await make_directory("Clients", {"name": "string"}, company_id=company.id)
    first = await EntityStore.create_record(db, binding.id, {"name": "One"})
    await EntityStore.create_record(db, binding.id, {"name": "Two"})

    removed = await TenantBinding.unbind(db, binding.id, company.id)

    assert removed == 2
    with pytest.raises(NotFound):
        await TenantBinding.get_binding(db, binding.id)
    with pytest.raises(NotFound):
        await EntityStore.get_record(db, first.id)


async def test_unbind_other_tenant_is_not_found(db, company, other_company, make_directory):
    _, _, binding = await make_directory("Clients", company_id=company.id)

    with pytest.raises(NotFound):
        await TenantBinding.unbind(db, binding.id, other_company.id)


async def test_unbind_failure_raises_cascade_delete_failed(db, company, make_directory, monkeypatch):
    """A database error mid-cascade rolls back and surfaces as CascadeDeleteFailed."""
    _, _, binding = await make_directory("Clients", company_id=company.id)

    async def broken_execute(*args, **kwargs):
        raise SQLAlchemyError("disk full")

    monkeypatch.setattr(db, "execute", broken_execute)

    with pytest.raises(CascadeDeleteFailed):
        await TenantBinding.unbind(db, binding.id, company.id)
