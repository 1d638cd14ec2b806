"""Core functionality for changepoint-jax."""

from .exceptions import (
    ChangepointJaxError,
    ParseError,
    DuplicateTermError,
    ModelSpecificationError,
    ConstraintViolationError,
    LinkDomainError,
    MissingParameterError,
    DataFormatError,
    ConfigurationError,
)

__all__ = [
    "ChangepointJaxError",
    "ParseError",
    "DuplicateTermError",
    "ModelSpecificationError",
    "ConstraintViolationError",
    "LinkDomainError",
    "MissingParameterError",
    "DataFormatError",
    "ConfigurationError",
]
