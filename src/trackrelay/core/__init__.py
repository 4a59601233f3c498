"""
Core relay components.

This package contains the processing path for a tracking update:
- Decoding and eligibility classification
- Gateway dispatch with fixed-interval retries
- Relay orchestration and the Pulsar worker
- Metrics and health checks
"""
