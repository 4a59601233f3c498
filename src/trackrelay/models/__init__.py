"""
Pydantic data models package.

Contains:
- Tracking update wire schema
- Routing configuration resolved per invocation
"""

from .routing import RoutingConfig, parse_event_codes
from .tracking_update import AtlasResponse, MetaInfo, TrackingEntry, TrackingUpdateEvent

__all__ = [
    # Tracking update models
    "TrackingUpdateEvent",
    "MetaInfo",
    "AtlasResponse",
    "TrackingEntry",

    # Routing
    "RoutingConfig",
    "parse_event_codes",
]
