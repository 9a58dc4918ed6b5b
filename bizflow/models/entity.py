"""Shared base model for the four entity collections"""

import uuid
from decimal import Decimal
from typing import Annotated, Any, Dict, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, SerializationInfo, model_validator
from pydantic.alias_generators import to_camel


# Serialization context flag: keep every digit of Money values as a JSON string
EXACT_DECIMALS = "exact_decimals"


def _money_to_json(value: Decimal, info: SerializationInfo) -> Union[float, str]:
    if info.context and info.context.get(EXACT_DECIMALS):
        return str(value)
    return float(value)


# Decimal in memory; a JSON number for spreadsheet scripts, an exact string when stored
Money = Annotated[Decimal, PlainSerializer(_money_to_json, when_used="json")]


def new_entity_id() -> str:
    """Client-side id for a newly created entity"""
    return str(uuid.uuid4())


class Entity(BaseModel):
    """
    Base for Transaction, Customer, Product and Supplier.

    Field names are snake_case in Python and in hosted backend rows; the
    spreadsheet scripts and the local cache use the camelCase aliases.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=True,
        extra="ignore",
    )

    id: str = Field(..., min_length=1, description="Client-generated unique id")

    @model_validator(mode="before")
    @classmethod
    def _drop_blank_cells(cls, data: Any) -> Any:
        # Empty spreadsheet cells arrive as "" and mean "not set"
        if isinstance(data, Mapping):
            return {k: v for k, v in data.items() if v is not None and v != ""}
        return data

    @classmethod
    def create(cls, data: Mapping[str, Any]):
        """Build a new entity from user data, assigning a fresh id"""
        fields = {k: v for k, v in dict(data).items() if k != "id"}
        return cls.model_validate({**fields, "id": new_entity_id()})

    @classmethod
    def field_name(cls, key: str) -> str:
        """Resolve a camelCase alias or a field name to the field name"""
        if key in cls.model_fields:
            return key
        for name, info in cls.model_fields.items():
            if info.alias == key:
                return name
        return key

    def merged_with(self, changes: Mapping[str, Any]):
        """
        Return a copy with the supplied fields replaced.

        The id is immutable; unknown keys are ignored.
        """
        current = self.model_dump()
        updates = {self.field_name(k): v for k, v in changes.items()}
        updates.pop("id", None)
        return type(self).model_validate({**current, **updates})

    def to_wire(self, exact: bool = False) -> Dict[str, Any]:
        """
        camelCase JSON document (spreadsheet payloads, local cache)

        Money fields are JSON numbers, or decimal strings when exact is set.
        """
        return self.model_dump(
            mode="json", by_alias=True, exclude_none=True, context={EXACT_DECIMALS: exact}
        )

    def to_row(self, owner_id: str) -> Dict[str, Any]:
        """snake_case hosted backend row owned by owner_id"""
        row = self.model_dump(mode="json", context={EXACT_DECIMALS: True})
        row["user_id"] = owner_id
        return row
