"""
Configuration management system for changepoint-jax.

Provides a hierarchical configuration system with support for file-based
configuration, environment variables, and runtime updates.
"""

import os
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from enum import Enum

from ..core.exceptions import ConfigurationError


class LogLevel(str, Enum):
    """Logging levels."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LoggingConfig(BaseModel):
    """Logging configuration."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    level: LogLevel = LogLevel.INFO
    file_logging: bool = False
    log_file: Optional[Path] = None
    console_logging: bool = True
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @field_validator('log_file', mode='before')
    @classmethod
    def validate_log_file(cls, v):
        return Path(v) if v else None


class PriorConfig(BaseModel):
    """
    Scales of the default priors.

    Intercept and slope scales multiply the response standard deviation
    (SDY) for gaussian/identity models and a unit link-scale constant
    otherwise; slope scales are further divided by the predictor range.
    """
    model_config = ConfigDict(validate_assignment=True)

    intercept_scale: float = 3.0
    slope_scale: float = 1.0
    sigma_scale: float = 1.0
    ar_slope_scale: float = 1.0
    link_scale: float = 1.0

    @field_validator('intercept_scale', 'slope_scale', 'sigma_scale', 'ar_slope_scale', 'link_scale')
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("prior scales must be positive")
        return v


class CodegenConfig(BaseModel):
    """Generated model text layout."""
    model_config = ConfigDict(validate_assignment=True)

    indent: int = 2
    include_comments: bool = True

    @field_validator('indent')
    @classmethod
    def validate_indent(cls, v):
        if v < 1 or v > 8:
            raise ValueError("indent must be between 1 and 8 spaces")
        return v


class SimulationConfig(BaseModel):
    """Simulation defaults."""
    model_config = ConfigDict(validate_assignment=True)

    default_seed: int = 0
    add_noise: bool = True


class ChangepointJaxConfig(BaseModel):
    """Main configuration class for changepoint-jax."""
    model_config = ConfigDict(validate_assignment=True, use_enum_values=True)

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    priors: PriorConfig = Field(default_factory=PriorConfig)
    codegen: CodegenConfig = Field(default_factory=CodegenConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)

    def __init__(self, config_file: Optional[Union[str, Path]] = None, **kwargs):
        """
        Initialize configuration.

        Args:
            config_file: Path to YAML configuration file
            **kwargs: Override specific configuration sections
        """
        config_data = {}
        if config_file:
            config_data = _load_config_file(config_file)

        # Environment variables override the file, kwargs override both
        _merge_sections(config_data, _load_environment_variables())
        _merge_sections(config_data, kwargs)

        try:
            super().__init__(**config_data)
        except ValidationError as e:
            raise ConfigurationError(
                config_key=str(config_file) if config_file else None,
                reason=str(e),
            ) from e

    def save_config(self, config_file: Union[str, Path]) -> None:
        """Save current configuration to YAML file."""
        config_path = Path(config_file)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode='json'), f, default_flow_style=False, indent=2)

    def update(self, **kwargs) -> None:
        """
        Update configuration values.

        Nested values are addressed with dotted keys, e.g.
        ``config.update(**{"priors.intercept_scale": 5.0})``.
        """
        for key, value in kwargs.items():
            if '.' in key:
                section, subkey = key.split('.', 1)
                section_obj = getattr(self, section, None)
                if not isinstance(section_obj, BaseModel) or subkey not in type(section_obj).model_fields:
                    raise ConfigurationError(config_key=key, reason="unknown setting")
                target, name = section_obj, subkey
            elif key in type(self).model_fields:
                target, name = self, key
            else:
                raise ConfigurationError(config_key=key, reason="unknown setting")

            try:
                setattr(target, name, value)
            except ValidationError as e:
                raise ConfigurationError(config_key=key, reason=str(e)) from e

    def get_user_config_path(self) -> Path:
        """Get the user's configuration file path."""
        return Path.home() / ".changepoint_jax" / "config.yaml"


def _load_config_file(config_file: Union[str, Path]) -> Dict[str, Any]:
    """Load configuration from YAML file."""
    config_path = Path(config_file)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(config_key=str(config_path), reason=str(e)) from e

    if not isinstance(data, dict):
        raise ConfigurationError(config_key=str(config_path), reason="top level must be a mapping")
    return data


def _load_environment_variables() -> Dict[str, Any]:
    """Load configuration from environment variables."""
    config: Dict[str, Any] = {}

    env_mappings = {
        'CHANGEPOINT_JAX_LOG_LEVEL': ('logging', 'level'),
        'CHANGEPOINT_JAX_SEED': ('simulation', 'default_seed'),
        'CHANGEPOINT_JAX_INDENT': ('codegen', 'indent'),
    }

    for env_var, (section, key) in env_mappings.items():
        value = os.getenv(env_var)
        if value is not None:
            if key in ['default_seed', 'indent']:
                try:
                    value = int(value)
                except ValueError as e:
                    raise ConfigurationError(config_key=env_var, reason=f"expected an integer, got '{value}'") from e
            elif key == 'level':
                value = value.upper()

            config.setdefault(section, {})[key] = value

    return config


def _merge_sections(target: Dict[str, Any], overrides: Dict[str, Any]) -> None:
    """Merge section dictionaries one level deep."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            target[key] = {**target[key], **value}
        else:
            target[key] = value


# Default configuration instance
_default_config: Optional[ChangepointJaxConfig] = None


def get_default_config() -> ChangepointJaxConfig:
    """Get the default configuration instance, loading the user file if present."""
    global _default_config
    if _default_config is None:
        user_config = Path.home() / ".changepoint_jax" / "config.yaml"
        if user_config.exists():
            _default_config = ChangepointJaxConfig(config_file=user_config)
        else:
            _default_config = ChangepointJaxConfig()
    return _default_config


def reset_default_config() -> None:
    """Drop the cached default configuration."""
    global _default_config
    _default_config = None
