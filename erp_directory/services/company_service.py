"""
services/company_service.py
---------------------------
Minimal company / module registration.

Company and module management belongs to the wider ERP; the directory engine
only needs rows to bind against. This service is what the seed script,
the admin routes and the tests use to create them.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from erp_directory.core.logging import get_logger
from erp_directory.models.company import Company, Module

logger = get_logger(__name__)


class CompanyService:

    @staticmethod
    async def create_company(db: AsyncSession, name: str) -> Company:
        """
        Create a new company.
        Raises ValueError if a company with the same name already exists.
        """
        company = Company(name=name.strip())
        db.add(company)
        try:
            await db.flush()  # Trigger DB constraints before commit
            await db.refresh(company)
            logger.info("Company created", company_id=company.id, name=company.name)
            return company
        except IntegrityError:
            await db.rollback()
            raise ValueError(f"Company '{name}' already exists")

    @staticmethod
    async def get_company_by_name(db: AsyncSession, name: str) -> Company | None:
        result = await db.execute(select(Company).where(Company.name == name))
        return result.scalar_one_or_none()

    @staticmethod
    async def create_module(db: AsyncSession, name: str, icon_name: str = "cube") -> Module:
        """
        Register a licensable module.
        Raises ValueError on a duplicate name.
        """
        module = Module(name=name.strip(), icon_name=icon_name)
        db.add(module)
        try:
            await db.flush()
            await db.refresh(module)
            logger.info("Module created", module_id=module.id, name=module.name)
            return module
        except IntegrityError:
            await db.rollback()
            raise ValueError(f"Module '{name}' already exists")
