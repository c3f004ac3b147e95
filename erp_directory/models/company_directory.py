"""
models/company_directory.py
---------------------------
Tenant binding of a shared Directory definition.

Records hang off the binding, not off the Directory, so two companies bound
to the same Directory hold independent data. module_id is optional: a
binding scoped to a module disappears from listings while that module is
disabled for the company.
"""

from typing import Optional

from sqlalchemy import ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_directory.db.base import Base, TimestampMixin, UUIDPrimaryKey


class CompanyDirectory(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "company_directories"
    __table_args__ = (UniqueConstraint("company_id", "directory_id", "module_id"),)

    company_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    directory_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("directories.id"),
        nullable=False,
        index=True,
    )
    module_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("modules.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    def __repr__(self) -> str:
        return (
            f"<CompanyDirectory id={self.id} company_id={self.company_id} "
            f"directory_id={self.directory_id}>"
        )
