"""Base schema with camelCase serialization for exported payloads."""

from pydantic import BaseModel, ConfigDict


def to_camel(string: str) -> str:
    """Convert snake_case to camelCase."""
    components = string.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


class BaseSchema(BaseModel):
    """Base schema that all exported models inherit from.

    Attributes are snake_case in Python and camelCase on the wire, which is
    what the delivery endpoint and the reporting UI both read.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    def to_wire(self) -> dict:
        """JSON-compatible dict with camelCase keys and absent fields dropped."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
