"""Live code execution package."""

from .drivers import DriverRegistry
from .service import ExecutionEngine

__all__ = [
    "DriverRegistry",
    "ExecutionEngine",
]
