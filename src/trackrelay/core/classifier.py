"""
Eligibility classification for gateway forwarding.

An update is eligible when it originates from the expected source location
and the event code of its first tracking entry is one of the configured codes.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from ..models.routing import EXPECTED_SOURCE_LOCATION, RoutingConfig
from ..models.tracking_update import TrackingEntry, TrackingUpdateEvent
from .exceptions import MissingDataError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Classification:
    """Result of classifying a tracking update."""
    source_location: Optional[str]
    event_code: Optional[str]
    eligible: bool


def _select_tracking(event: TrackingUpdateEvent) -> Optional[List[TrackingEntry]]:
    if event.merged_order_tracking_response is not None:
        return event.merged_order_tracking_response.tracking

    logger.info("Merged tracking response not found in payload")
    if event.previous_order_tracking_response is None:
        raise MissingDataError("No tracking response found in the payload")

    return event.previous_order_tracking_response.tracking


def extract_event_code(event: TrackingUpdateEvent) -> Optional[str]:
    """
    Return the current event code of the first tracking entry.

    Uses the merged response when present, else the previous one.
    Raises MissingDataError if neither exists or the tracking list is empty.
    """
    tracking = _select_tracking(event)
    if not tracking:
        raise MissingDataError("No tracking details found in tracking response")

    return tracking[0].current_event_code


def is_eligible(event: TrackingUpdateEvent, event_code: Optional[str], config: RoutingConfig) -> bool:
    """Check source location and event code against the routing config."""
    return (
        event.source_location == EXPECTED_SOURCE_LOCATION
        and event_code is not None
        and event_code in config.event_codes
    )


def classify(event: TrackingUpdateEvent, config: RoutingConfig) -> Classification:
    """Extract the event code and decide eligibility in one step."""
    event_code = extract_event_code(event)
    logger.info("Event code received in tracking response", event_code=event_code)

    return Classification(
        source_location=event.source_location,
        event_code=event_code,
        eligible=is_eligible(event, event_code, config),
    )
