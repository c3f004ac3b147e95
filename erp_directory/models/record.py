"""
models/record.py
----------------
Entity-attribute-value storage.

DirectoryRecord  one entity instance inside a CompanyDirectory. Its metadata
                 may carry a cascadingConfig: the record acts as a selectable
                 parent option that reveals dependent fields.
DirectoryValue   one (record, field) -> text scalar. field_name is a snapshot
                 of the field's name at write time; when the field is deleted
                 field_id becomes NULL and readers match on the snapshot.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from erp_directory.db.base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKey


class DirectoryRecord(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "directory_records"

    company_directory_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("company_directories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=dict
    )

    values: Mapped[List["DirectoryValue"]] = relationship(
        "DirectoryValue",
        back_populates="record",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
        order_by="DirectoryValue.created_at",
    )

    def __repr__(self) -> str:
        return f"<DirectoryRecord id={self.id} company_directory_id={self.company_directory_id}>"


class DirectoryValue(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "directory_values"
    __table_args__ = (UniqueConstraint("directory_record_id", "field_id"),)

    directory_record_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("directory_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("directory_fields.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    field_name: Mapped[str] = mapped_column(String(255), nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    record: Mapped[DirectoryRecord] = relationship(DirectoryRecord, back_populates="values")

    def __repr__(self) -> str:
        return f"<DirectoryValue record={self.directory_record_id} field={self.field_name}>"
