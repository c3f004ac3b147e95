"""
domain/metadata.py
------------------
Typed shapes for the JSON metadata columns.

The database stores plain JSON documents (camelCase keys, as the forms UI
writes them). Nothing past the storage boundary sees a raw dict: services
call decode_metadata() on the way in and encode_metadata() on the way out.

Writes decode strictly: unknown keys, wrong types or a newer version raise
InvalidMetadata. Reads decode leniently: the offending keys are dropped,
a warning is logged, and the rest of the document is kept.
"""

from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic.alias_generators import to_camel

from erp_directory.core.errors import InvalidMetadata
from erp_directory.core.logging import get_logger

logger = get_logger(__name__)

METADATA_VERSION = 1


class _Shape(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    @classmethod
    def known_keys(cls) -> set:
        keys = set()
        for name, info in cls.model_fields.items():
            keys.add(name)
            if info.alias:
                keys.add(info.alias)
        return keys


class _MetadataShape(_Shape):
    """A whole metadata column; carries the document version."""

    version: int = METADATA_VERSION


class DisplayConfig(_Shape):
    """How a directory presents itself in listings and dropdowns."""

    select_display_field: Optional[str] = None
    component_name: Optional[str] = None
    group_by: Optional[str] = None
    is_visible: bool = True


class DirectoryMetadata(_MetadataShape, DisplayConfig):
    cascading_enabled: bool = False

    @property
    def display(self) -> DisplayConfig:
        return DisplayConfig(
            select_display_field=self.select_display_field,
            component_name=self.component_name,
            group_by=self.group_by,
            is_visible=self.is_visible,
        )


class FieldMetadata(_MetadataShape):
    field_order: Optional[int] = None
    is_visible_on_table: bool = False
    default_value: Any = None


class DependentField(_Shape):
    field_name: str = Field(min_length=1)
    directory_id: str = Field(min_length=1)
    display_name: str = ""
    required: bool = False
    depends_on: Optional[str] = None


class CascadingConfig(_Shape):
    enabled: bool = False
    dependent_fields: List[DependentField] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_dependencies(self) -> "CascadingConfig":
        names = [f.field_name for f in self.dependent_fields]
        if len(names) != len(set(names)):
            raise ValueError("dependentFields must have unique fieldName values")
        for dependent in self.dependent_fields:
            if dependent.depends_on is None:
                continue
            if dependent.depends_on == dependent.field_name:
                raise ValueError(f"Field '{dependent.field_name}' cannot depend on itself")
            if dependent.depends_on not in names:
                raise ValueError(
                    f"Field '{dependent.field_name}' depends on unknown field "
                    f"'{dependent.depends_on}'"
                )
        return self

    @property
    def is_active(self) -> bool:
        return self.enabled and bool(self.dependent_fields)

    @classmethod
    def disabled(cls) -> "CascadingConfig":
        return cls(enabled=False, dependent_fields=[])


class SavedSelection(_Shape):
    """Marks a record submitted through a cascading form."""

    parent_field_id: str = Field(min_length=1)
    parent_record_id: str = Field(min_length=1)
    field_names: List[str] = Field(default_factory=list)


class RecordMetadata(_MetadataShape):
    name: Optional[str] = None
    value: Optional[str] = None
    parent_value: Optional[str] = None
    cascading_config: Optional[CascadingConfig] = None
    cascading_selection: Optional[SavedSelection] = None


M = TypeVar("M", bound=_Shape)


def decode_metadata(shape: Type[M], raw: Any, *, strict: bool = False) -> M:
    """Validate a stored/submitted JSON document into its typed shape.

    Args:
        shape: the metadata class for the column being read.
        raw: the JSON value as stored or as received.
        strict: True on writes; False on reads.
    """
    if raw is None:
        return shape()
    if not isinstance(raw, dict):
        if strict:
            raise InvalidMetadata(f"{shape.__name__} must be a JSON object")
        logger.warning("Discarding non-object metadata", shape=shape.__name__)
        return shape()

    version = raw.get("version", METADATA_VERSION)
    if "version" in shape.model_fields and (
        not isinstance(version, int) or version > METADATA_VERSION
    ):
        if strict:
            raise InvalidMetadata(
                f"Unsupported {shape.__name__} version {version!r}",
                supported=METADATA_VERSION,
            )
        logger.warning("Unsupported metadata version", shape=shape.__name__, version=version)
        return shape()

    if strict:
        unknown = sorted(set(raw) - shape.known_keys())
        if unknown:
            raise InvalidMetadata(
                f"Unknown {shape.__name__} keys: {', '.join(unknown)}",
                keys=unknown,
            )

    try:
        return shape.model_validate(raw)
    except ValidationError as exc:
        if strict:
            raise InvalidMetadata(
                f"Invalid {shape.__name__}",
                errors=[
                    {"loc": list(err["loc"]), "msg": err["msg"]}
                    for err in exc.errors(include_url=False)
                ],
            )
        bad_keys = {err["loc"][0] for err in exc.errors() if err["loc"]}
        logger.warning(
            "Dropping invalid metadata keys",
            shape=shape.__name__,
            keys=sorted(str(k) for k in bad_keys),
        )
        cleaned = {k: v for k, v in raw.items() if k not in bad_keys}
        try:
            return shape.model_validate(cleaned)
        except ValidationError:
            return shape()


def encode_metadata(value: _Shape) -> Dict[str, Any]:
    return value.model_dump(by_alias=True, exclude_none=True, mode="json")
