"""
Validation utilities for changepoint-jax.

Provides common validation functions for predictor arrays and parameter values.
"""

import numpy as np
from typing import Sequence, Optional, Any
from ..core.exceptions import DataFormatError


def validate_array_dimensions(
    array: Any,
    expected_length: Optional[int] = None,
    name: str = "array"
) -> np.ndarray:
    """
    Convert to a 1-D float array and validate its length.

    Args:
        array: Array-like to validate
        expected_length: Expected number of elements
        name: Name for error messages

    Returns:
        1-D float64 numpy array

    Raises:
        DataFormatError: If validation fails
    """
    try:
        values = np.asarray(array, dtype=float)
    except (TypeError, ValueError) as e:
        raise DataFormatError(
            specific_issue=f"{name} must be numeric: {e}",
            suggestions=[
                f"Convert {name} to numbers before passing it",
                "Use np.asarray(values, dtype=float)",
            ]
        ) from e

    if values.ndim == 0:
        values = values.reshape(1)
    if values.ndim != 1:
        raise DataFormatError(
            specific_issue=f"{name} has {values.ndim} dimensions, expected 1",
            suggestions=[
                f"Flatten {name} with np.ravel()",
                f"Check that {name} has correct structure",
            ]
        )

    if expected_length is not None and len(values) != expected_length:
        raise DataFormatError(
            specific_issue=f"{name} has {len(values)} values, expected {expected_length}",
            suggestions=[f"Provide one {name} value per observation"]
        )

    return values


def validate_finite(values: np.ndarray, name: str = "array") -> None:
    """
    Validate that all values are finite.

    Raises:
        DataFormatError: On NaN or infinite values
    """
    bad = ~np.isfinite(values)
    if bad.any():
        index = int(np.argmax(bad))
        raise DataFormatError(
            specific_issue=f"{name} contains a non-finite value at index {index}: {values[index]}",
            suggestions=[
                "Remove or impute missing values",
                "Check the data loader for parsing problems",
            ]
        )


def validate_levels(levels: Sequence[Any], name: str = "group") -> tuple:
    """
    Validate group levels: non-empty and unique, returned as strings.

    Raises:
        DataFormatError: On empty or duplicated levels
    """
    labels = tuple(str(level) for level in levels)
    if not labels:
        raise DataFormatError(specific_issue=f"grouping variable '{name}' has no levels")
    if len(set(labels)) != len(labels):
        raise DataFormatError(specific_issue=f"grouping variable '{name}' has duplicated levels: {labels}")
    return labels
