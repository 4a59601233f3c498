"""
TrackRelay - Tracking update relay for Apache Pulsar

Republishes every tracking update to a downstream topic and forwards
eligible updates to an HTTP gateway with fixed-interval retries.
"""

__version__ = "0.1.0"
