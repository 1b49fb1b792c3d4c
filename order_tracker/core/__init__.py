"""
Core module initialization.
Exports configuration, logging utilities and domain exceptions.
"""

from order_tracker.core.config import get_settings, setup_logging, Settings, EnvironmentMode
from order_tracker.core.exceptions import (
    OrderTrackerError,
    NotFoundError,
    InvalidRequestError,
    UnauthorizedError,
    ForbiddenError,
    ConflictError,
)

__all__ = [
    "get_settings",
    "setup_logging",
    "Settings",
    "EnvironmentMode",
    "OrderTrackerError",
    "NotFoundError",
    "InvalidRequestError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
]
