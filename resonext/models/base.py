"""Shared pydantic base for documents exchanged with the store and the Gateway."""

from typing import Any

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Model serialized with camelCase keys.

    Stored documents and Gateway responses use camelCase (``activeProfileId``,
    ``researchSummary``); Python code uses the snake_case attribute names.
    Explicit ``null`` values are dropped before validation so that fields fall
    back to their defaults.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @model_validator(mode="before")
    @classmethod
    def _drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data

    def to_json_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict with camelCase keys."""
        return self.model_dump(by_alias=True, mode="json")
