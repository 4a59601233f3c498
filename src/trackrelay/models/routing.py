"""
Routing configuration resolved per invocation.

Keys and defaults mirror the function user config:
- event_codes: comma-separated codes eligible for forwarding (default "700")
- api_gateway_url: gateway URL (default "dummy", meaning not configured)
"""

from typing import Any, FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

EVENT_CODES_KEY = "event_codes"
API_GATEWAY_URL_KEY = "api_gateway_url"

DEFAULT_EVENT_CODE = "700"
DEFAULT_API_GATEWAY_URL = "dummy"
EXPECTED_SOURCE_LOCATION = "IN"

EVENT_CODES_DELIMITER = ","


def parse_event_codes(raw: Optional[Any]) -> FrozenSet[str]:
    """
    Parse a comma-separated list of event codes.

    Blank items are dropped; an empty result falls back to the default code.
    """
    if raw is None:
        return frozenset({DEFAULT_EVENT_CODE})

    if isinstance(raw, (list, tuple, set, frozenset)):
        items = [str(item) for item in raw]
    else:
        items = str(raw).split(EVENT_CODES_DELIMITER)

    codes = frozenset(item.strip() for item in items if item.strip())
    return codes or frozenset({DEFAULT_EVENT_CODE})


class RoutingConfig(BaseModel):
    """Typed view of the routing user config."""

    model_config = ConfigDict(frozen=True)

    event_codes: FrozenSet[str] = Field(
        default=frozenset({DEFAULT_EVENT_CODE}),
        description="Event codes eligible for gateway forwarding"
    )
    gateway_url: str = Field(
        default=DEFAULT_API_GATEWAY_URL,
        description="Gateway URL, or the 'dummy' sentinel when unset"
    )

    @property
    def gateway_configured(self) -> bool:
        """True when a real gateway URL was supplied."""
        return self.gateway_url != DEFAULT_API_GATEWAY_URL

    @classmethod
    def from_context(cls, context: Any) -> "RoutingConfig":
        """Resolve routing config from a function context's user config."""
        event_codes = context.get_user_config_value_or_default(EVENT_CODES_KEY, DEFAULT_EVENT_CODE)
        gateway_url = context.get_user_config_value_or_default(API_GATEWAY_URL_KEY, DEFAULT_API_GATEWAY_URL)

        return cls(
            event_codes=parse_event_codes(event_codes),
            gateway_url=str(gateway_url) if gateway_url is not None else DEFAULT_API_GATEWAY_URL,
        )
