"""Reusable pydantic base models for configuration and wire payloads."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """
    A base model that maps snake_case fields to the gateway's camelCase keys.

    For example, the field name `expires_at` in a Python model is read from
    and serialized to `expiresAt` in JSON.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_default=True,
        arbitrary_types_allowed=True,
    )

    def copy(self: Self, **kwargs: Any) -> Self:
        """Create a copy of the model with the updated fields that are validated."""
        fields = {name: getattr(self, name) for name in self.model_fields_set}
        return self.__class__(**(fields | kwargs))


class StrictBaseModel(CamelModel):
    """An immutable pydantic base model for client configuration that rejects unknown keys."""

    model_config = CamelModel.model_config | {
        "extra": "forbid",
        "frozen": True,
    }


class WireModel(CamelModel):
    """
    An immutable model for payloads produced by the gateway.

    Unknown keys are ignored so newer gateways can add fields without
    breaking older clients.
    """

    model_config = CamelModel.model_config | {
        "extra": "ignore",
        "frozen": True,
    }
