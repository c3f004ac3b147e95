"""
services/tenant_binding.py
--------------------------
Binding of shared Directory definitions to companies (tenants).

Critical security invariant:
  Every record query goes through a CompanyDirectory, and every
  CompanyDirectory lookup made on behalf of a caller includes the caller's
  company_id. Knowing a binding id is not enough to read another tenant's
  records.

Module licensing is read from company_modules.is_enabled; disabling a module
hides the directories bound under it without touching their data.
"""

from typing import List, Optional

from sqlalchemy import delete, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.errors import CascadeDeleteFailed, NotFound
from erp_directory.core.logging import get_logger
from erp_directory.models.company import Company, CompanyModule, Module
from erp_directory.models.company_directory import CompanyDirectory
from erp_directory.models.directory import Directory
from erp_directory.models.record import DirectoryRecord, DirectoryValue

logger = get_logger(__name__)


def _enabled_modules(company_id: str):
    return select(CompanyModule.module_id).where(
        CompanyModule.company_id == company_id,
        CompanyModule.is_enabled.is_(True),
    )


class TenantBinding:

    @staticmethod
    async def bind(
        db: AsyncSession,
        company_id: str,
        directory_id: str,
        module_id: Optional[str] = None,
    ) -> CompanyDirectory:
        """
        Bind a directory to a company (optionally under a module).
        Binding an already-bound triple returns the existing binding.
        """
        if await db.get(Company, company_id) is None:
            raise NotFound(f"Company '{company_id}' not found", company_id=company_id)
        if await db.get(Directory, directory_id) is None:
            raise NotFound(f"Directory '{directory_id}' not found", directory_id=directory_id)
        if module_id is not None and await db.get(Module, module_id) is None:
            raise NotFound(f"Module '{module_id}' not found", module_id=module_id)

        stmt = select(CompanyDirectory).where(
            CompanyDirectory.company_id == company_id,
            CompanyDirectory.directory_id == directory_id,
        )
        if module_id is None:
            stmt = stmt.where(CompanyDirectory.module_id.is_(None))
        else:
            stmt = stmt.where(CompanyDirectory.module_id == module_id)
        existing = (await db.execute(stmt.limit(1))).scalar_one_or_none()
        if existing is not None:
            return existing

        binding = CompanyDirectory(
            company_id=company_id,
            directory_id=directory_id,
            module_id=module_id,
        )
        db.add(binding)
        await db.flush()
        await db.refresh(binding)
        logger.info(
            "Directory bound",
            binding_id=binding.id,
            company_id=company_id,
            directory_id=directory_id,
            module_id=module_id,
        )
        return binding

    @staticmethod
    async def get_binding(
        db: AsyncSession, binding_id: str, company_id: Optional[str] = None
    ) -> CompanyDirectory:
        binding = await db.get(CompanyDirectory, binding_id)
        if binding is None or (company_id is not None and binding.company_id != company_id):
            raise NotFound(f"Company directory '{binding_id}' not found", binding_id=binding_id)
        return binding

    @staticmethod
    async def require_binding(
        db: AsyncSession, binding_id: str, company_id: str
    ) -> CompanyDirectory:
        """Tenant-scoped lookup: a binding of another company is reported as missing."""
        return await TenantBinding.get_binding(db, binding_id, company_id)

    @staticmethod
    async def unbind(
        db: AsyncSession, binding_id: str, company_id: Optional[str] = None
    ) -> int:
        """
        Remove a binding together with its records and their values.

        All three deletes run in the caller's transaction; on any database
        error the transaction is rolled back and CascadeDeleteFailed is
        raised, so either everything is gone or nothing is.

        Returns:
            Number of records removed.
        """
        binding = await TenantBinding.get_binding(db, binding_id, company_id)
        record_ids = select(DirectoryRecord.id).where(
            DirectoryRecord.company_directory_id == binding.id
        )
        try:
            await db.execute(
                delete(DirectoryValue)
                .where(DirectoryValue.directory_record_id.in_(record_ids))
                .execution_options(synchronize_session=False)
            )
            removed = await db.execute(
                delete(DirectoryRecord)
                .where(DirectoryRecord.company_directory_id == binding.id)
                .execution_options(synchronize_session=False)
            )
            await db.delete(binding)
            await db.flush()
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Unbind failed", binding_id=binding_id, error=str(exc))
            raise CascadeDeleteFailed(
                "Could not remove the directory binding and its records",
                binding_id=binding_id,
            ) from exc

        # Bulk deletes bypass the identity map; drop the stale rows
        for obj in list(db.identity_map.values()):
            if isinstance(obj, (DirectoryRecord, DirectoryValue)) and obj in db:
                db.expunge(obj)
        logger.info("Directory unbound", binding_id=binding_id, records=removed.rowcount)
        return removed.rowcount

    @staticmethod
    async def list_enabled_directories(
        db: AsyncSession, company_id: str
    ) -> List[CompanyDirectory]:
        """Bindings without a module, or whose module is enabled for the company."""
        result = await db.execute(
            select(CompanyDirectory)
            .where(
                CompanyDirectory.company_id == company_id,
                or_(
                    CompanyDirectory.module_id.is_(None),
                    CompanyDirectory.module_id.in_(_enabled_modules(company_id)),
                ),
            )
            .order_by(CompanyDirectory.created_at, CompanyDirectory.id)
        )
        return list(result.scalars().all())

    @staticmethod
    async def enabled_bindings_for(
        db: AsyncSession, company_id: str, directory_id: str
    ) -> List[CompanyDirectory]:
        """Visible bindings of one directory for one company."""
        bindings = await TenantBinding.list_enabled_directories(db, company_id)
        return [b for b in bindings if b.directory_id == directory_id]

    # ── Module licensing ────────────────────────────────────────────────────

    @staticmethod
    async def is_module_enabled(db: AsyncSession, company_id: str, module_id: str) -> bool:
        if await db.get(Module, module_id) is None:
            raise NotFound(f"Module '{module_id}' not found", module_id=module_id)
        enabled = await db.scalar(
            select(CompanyModule.is_enabled).where(
                CompanyModule.company_id == company_id,
                CompanyModule.module_id == module_id,
            )
        )
        return bool(enabled)

    @staticmethod
    async def set_module_enabled(
        db: AsyncSession, company_id: str, module_id: str, enabled: bool
    ) -> CompanyModule:
        if await db.get(Module, module_id) is None:
            raise NotFound(f"Module '{module_id}' not found", module_id=module_id)
        result = await db.execute(
            select(CompanyModule).where(
                CompanyModule.company_id == company_id,
                CompanyModule.module_id == module_id,
            )
        )
        company_module = result.scalar_one_or_none()
        if company_module is None:
            company_module = CompanyModule(company_id=company_id, module_id=module_id)
            db.add(company_module)
        company_module.is_enabled = enabled
        await db.flush()
        await db.refresh(company_module)
        logger.info(
            "Module licensing changed",
            company_id=company_id,
            module_id=module_id,
            enabled=enabled,
        )
        return company_module
