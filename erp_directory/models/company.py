"""
models/company.py
-----------------
Tenant (company) and module-licensing tables.

These rows are owned by the company / licensing services; the directory
engine only reads them:
  - Company        scopes every binding and every record.
  - Module         a licensable product area (Cashier, Warehouse, ...).
  - CompanyModule  the "is this module enabled for this company" switch.
                   Disabling it hides bound directories, never deletes data.
"""

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_directory.db.base import Base, TimestampMixin, UUIDPrimaryKey


class Company(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<Company id={self.id} name={self.name}>"


class Module(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "modules"

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    icon_name: Mapped[str] = mapped_column(String(255), nullable=False, default="cube")

    def __repr__(self) -> str:
        return f"<Module id={self.id} name={self.name}>"


class CompanyModule(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "company_modules"
    __table_args__ = (UniqueConstraint("company_id", "module_id"),)

    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    module_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("modules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    def __repr__(self) -> str:
        return (
            f"<CompanyModule company_id={self.company_id} "
            f"module_id={self.module_id} enabled={self.is_enabled}>"
        )
