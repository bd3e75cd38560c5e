"""
API Package
"""

from .diagnostics import (
    DiagnosticsAPI,
    LoadTestRequest,
    PerformanceTestRequest,
    create_diagnostics_router,
)

__all__ = [
    "DiagnosticsAPI",
    "LoadTestRequest",
    "PerformanceTestRequest",
    "create_diagnostics_router",
]
