"""
API endpoints package.

Contains FastAPI routers for service endpoints:
- /metrics - Prometheus metrics
- /healthz, /readyz - Health checks
"""
from .healthz import router as healthz_router
from .metrics import router as metrics_router

__all__ = ["healthz_router", "metrics_router"]
