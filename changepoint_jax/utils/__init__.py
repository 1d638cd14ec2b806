"""Utility functions and classes for changepoint-jax."""

from .logging import get_logger, setup_logging
from .validation import validate_array_dimensions, validate_finite

__all__ = [
    "get_logger",
    "setup_logging",
    "validate_array_dimensions",
    "validate_finite",
]
