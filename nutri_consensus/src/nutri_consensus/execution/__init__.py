"""Concurrent fan-out of one analysis request across several providers."""

from .fanout import (
    FanOutCoordinator,
    FanOutResult,
)

__all__ = [
    "FanOutCoordinator",
    "FanOutResult",
]
