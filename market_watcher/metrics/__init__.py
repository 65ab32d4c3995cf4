"""
Prometheus metrics for the market watcher service.
"""

from .registry import metrics_registry

__all__ = ["metrics_registry"]
