"""
models/directory.py
-------------------
Schema tables: Directory (entity type) and DirectoryField (attribute).

A relation field's relation_id points at a Directory, never at a record.
The edge may point back at its own directory or form cycles across
directories; nothing at this layer assumes the relation graph is acyclic.

Deleting a Directory that is a relation target sets relation_id to NULL on
the pointing fields (ON DELETE SET NULL); the owning directory's own fields
cascade.
"""

from typing import Any, Dict, Optional

from sqlalchemy import Boolean, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from erp_directory.db.base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKey

DIRECTORY_TYPES = ("System", "Company", "Module")


class Directory(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "directories"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    icon_name: Mapped[str] = mapped_column(String(255), nullable=False)
    directory_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # "metadata" is reserved on declarative classes
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=dict
    )

    def __repr__(self) -> str:
        return f"<Directory id={self.id} name={self.name} type={self.directory_type}>"


class DirectoryField(Base, UUIDPrimaryKey, TimestampMixin):
    __tablename__ = "directory_fields"
    __table_args__ = (UniqueConstraint("directory_id", "name"),)

    directory_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("directories.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    relation_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("directories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    # Creation order within the directory; breaks fieldOrder ties
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    meta: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONDocument, nullable=True, default=dict
    )

    def __repr__(self) -> str:
        return f"<DirectoryField id={self.id} name={self.name} type={self.type}>"
