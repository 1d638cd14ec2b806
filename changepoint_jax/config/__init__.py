"""Configuration management for changepoint-jax."""

from .settings import (
    ChangepointJaxConfig,
    LoggingConfig,
    PriorConfig,
    CodegenConfig,
    SimulationConfig,
    get_default_config,
    reset_default_config,
)

__all__ = [
    "ChangepointJaxConfig",
    "LoggingConfig",
    "PriorConfig",
    "CodegenConfig",
    "SimulationConfig",
    "get_default_config",
    "reset_default_config",
]
