"""Design document schemas.

The design is the editing surface's serialized state. Only the envelope is
validated here; item, detail and transition records stay loosely-typed
dicts because the core must degrade gracefully on partial or malformed
data rather than reject it.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Size(BaseModel):
    width: int = Field(gt=0)
    height: int = Field(gt=0)


class Design(BaseModel):
    """Declarative editing document submitted for rendering.

    Never mutated by the core; every derived structure works on copies.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    track_items_map: dict[str, Any] = Field(default_factory=dict, alias="trackItemsMap")
    track_item_details_map: dict[str, Any] = Field(
        default_factory=dict, alias="trackItemDetailsMap"
    )
    transitions_map: dict[str, Any] = Field(default_factory=dict, alias="transitionsMap")
    size: Size | None = None
    duration: float | None = Field(default=None, ge=0)  # fallback duration in ms

    @field_validator("track_items_map", "track_item_details_map", "transitions_map", mode="before")
    @classmethod
    def null_map_is_empty(cls, v: Any) -> Any:
        return {} if v is None else v

    def item_ids(self) -> list[str]:
        return list(self.track_items_map.keys())

    def is_empty(self) -> bool:
        return not self.track_items_map

    def to_props(self) -> dict[str, Any]:
        """Serialize with the editor's camelCase keys."""
        return self.model_dump(by_alias=True, exclude_none=True)
