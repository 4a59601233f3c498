"""
Tracking update data models.

Field names follow the wire format (snake_case), so payloads validate
directly onto these models. Unknown wire fields are ignored.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class TrackingEntry(BaseModel):
    """Single tracking milestone."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    current_event_code: Optional[str] = Field(
        default=None,
        description="Status code of the current tracking milestone"
    )


class AtlasResponse(BaseModel):
    """Tracking response; only the first entry drives routing."""

    model_config = ConfigDict(extra="ignore")

    tracking: Optional[List[TrackingEntry]] = Field(
        default=None,
        description="Ordered tracking entries, most relevant first"
    )


class MetaInfo(BaseModel):
    """Message metadata."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    message_source_location: Optional[str] = Field(
        default=None,
        description="Origin system/region that produced the update"
    )


class TrackingUpdateEvent(BaseModel):
    """
    Decoded order tracking update.

    Carries the merged and/or previous tracking response; the merged
    response takes precedence when both are present.
    """

    model_config = ConfigDict(extra="ignore")

    meta_info: MetaInfo = Field(description="Message metadata")
    merged_order_tracking_response: Optional[AtlasResponse] = Field(
        default=None,
        description="Merged tracking response"
    )
    previous_order_tracking_response: Optional[AtlasResponse] = Field(
        default=None,
        description="Previous tracking response"
    )

    @property
    def source_location(self) -> Optional[str]:
        """Origin of the update."""
        return self.meta_info.message_source_location
