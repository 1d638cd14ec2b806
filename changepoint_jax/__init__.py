"""
changepoint-jax: Segmented regression models with unknown change points

Compiles per-segment formulas into JAGS model code, default priors and a
JAX simulator for the same model.
"""

__version__ = "0.1.0"

# Formula system
from .formulas import FormulaParser, Segment, parse_segment, parse_segments

# Data
from .data import DataSummary, summarize_data

# Models
from .models import (
    CompiledModel,
    Simulator,
    Family,
    register_family,
    get_family,
    list_available_families,
)

# Main API
from .core.api import compile_model, simulate
from .core.export import ModelArtifact, export_parameter_table

# Configuration
from .config.settings import ChangepointJaxConfig, get_default_config
from .utils.logging import setup_logging

# Import key exception classes
from .core.exceptions import (
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
    # Version info
    "__version__",

    # Main API
    "compile_model",
    "simulate",
    "ModelArtifact",
    "export_parameter_table",

    # Formula system
    "FormulaParser",
    "Segment",
    "parse_segment",
    "parse_segments",

    # Data
    "DataSummary",
    "summarize_data",

    # Models
    "CompiledModel",
    "Simulator",
    "Family",
    "register_family",
    "get_family",
    "list_available_families",

    # Configuration
    "ChangepointJaxConfig",
    "get_config",
    "configure",
    "setup_logging",

    # Exceptions
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


def get_config() -> ChangepointJaxConfig:
    """Get the global configuration instance."""
    return get_default_config()


def configure(**kwargs) -> None:
    """
    Update global configuration.

    Keys are section names or dotted settings, e.g.
    ``configure(**{"simulation.default_seed": 42})``.
    """
    get_config().update(**kwargs)
