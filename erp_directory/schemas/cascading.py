"""
schemas/cascading.py
--------------------
Pydantic models for the cascading endpoints.

Bodies use the camelCase keys the forms UI sends (fieldName, parentValue);
snake_case is accepted as well.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CascadingConfigUpdate(_CamelModel):
    cascading_config: Dict[str, Any] = Field(
        ...,
        examples=[
            {
                "enabled": True,
                "dependentFields": [
                    {"fieldName": "inventory", "directoryId": "<uuid>", "required": True},
                    {
                        "fieldName": "raw_material",
                        "directoryId": "<uuid>",
                        "dependsOn": "inventory",
                    },
                ],
            }
        ],
    )


class SelectionIn(_CamelModel):
    field_name: str = Field(..., min_length=1)
    value: Any = None
    directory_id: Optional[str] = None
    parent_field: Optional[str] = None
    parent_value: Optional[str] = None


class ValidateSelectionsRequest(_CamelModel):
    record_id: Optional[str] = Field(
        default=None,
        description="Parent record whose cascadingConfig the selections answer",
    )
    selections: list[SelectionIn]


class SelectionResultRead(_CamelModel):
    field_name: str
    value: Any
    is_valid: bool
    message: str

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class ValidationRead(_CamelModel):
    is_valid: bool
    results: list[SelectionResultRead]

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class CascadingOptionsRequest(_CamelModel):
    record_id: str = Field(..., description="Parent record whose cascadingConfig applies")
    field_name: str = Field(..., min_length=1)
    selections: Dict[str, Any] = Field(default_factory=dict)
    search: Optional[str] = Field(default=None, max_length=255)


class SaveSelectionsRequest(_CamelModel):
    company_directory_id: str
    parent_field_id: str
    parent_record_id: str = Field(..., description="Record chosen for the parent field")
    selections: Dict[str, Any] = Field(
        default_factory=dict,
        examples=[{"inventory": "electronics", "raw_material": "circuits"}],
    )
    values: Dict[str, Any] = Field(
        default_factory=dict,
        description="Other fields of the record: field id (or name) -> raw value",
    )


class CascadingValuesRead(_CamelModel):
    record_id: str
    is_cascading_record: bool
    parent_field_id: Optional[str] = None
    parent_record_id: Optional[str] = None
    selections: Dict[str, Any]
    cascading_config: Optional[Dict[str, Any]] = None
