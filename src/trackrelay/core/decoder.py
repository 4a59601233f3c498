"""
Payload decoding for tracking updates.
"""

from typing import Union

import structlog
from pydantic import ValidationError

from ..models.tracking_update import TrackingUpdateEvent
from .exceptions import DecodeError

logger = structlog.get_logger(__name__)


def decode(payload: Union[str, bytes]) -> TrackingUpdateEvent:
    """
    Parse a JSON payload into a TrackingUpdateEvent.

    Raises DecodeError on malformed JSON or a schema mismatch.
    """
    try:
        return TrackingUpdateEvent.model_validate_json(payload)
    except ValidationError as e:
        errors = [
            {"loc": ".".join(str(part) for part in err["loc"]), "msg": err["msg"]}
            for err in e.errors()
        ]
        logger.warning("Payload rejected by decoder", error_count=len(errors))
        raise DecodeError(
            f"Payload is not a valid tracking update: {errors[0]['msg'] if errors else e}",
            details={"errors": errors},
        ) from e


def encode(event: TrackingUpdateEvent) -> str:
    """Serialize a decoded event back to the wire shape, omitting unset fields."""
    return event.model_dump_json(exclude_none=True)
