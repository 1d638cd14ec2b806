"""
Tests for configuration loading, environment overrides and updates.
"""

import pytest
import yaml

import changepoint_jax as cj
from changepoint_jax.config.settings import (
    ChangepointJaxConfig,
    get_default_config,
    reset_default_config,
)
from changepoint_jax.core.exceptions import ConfigurationError


class TestDefaults:
    """Test the built-in configuration."""

    def test_default_values(self):
        config = ChangepointJaxConfig()

        assert config.priors.intercept_scale == 3.0
        assert config.codegen.indent == 2
        assert config.codegen.include_comments
        assert config.simulation.default_seed == 0
        assert config.simulation.add_noise
        assert config.logging.level == "INFO"

    def test_default_instance_is_cached(self):
        assert get_default_config() is get_default_config()
        first = get_default_config()
        reset_default_config()
        assert get_default_config() is not first

    def test_package_helpers(self):
        cj.configure(**{"simulation.default_seed": 11})
        assert cj.get_config().simulation.default_seed == 11


class TestValidation:
    """Test rejection of invalid settings."""

    def test_negative_prior_scale(self):
        with pytest.raises(ConfigurationError) as exc_info:
            ChangepointJaxConfig(priors={"intercept_scale": -1})
        assert exc_info.value.error_code == "CONFIG"

    def test_indent_range(self):
        with pytest.raises(ConfigurationError):
            ChangepointJaxConfig(codegen={"indent": 0})

    def test_update_unknown_key(self):
        config = ChangepointJaxConfig()

        with pytest.raises(ConfigurationError):
            config.update(**{"priors.width": 2.0})
        with pytest.raises(ConfigurationError):
            config.update(colour="blue")


class TestSources:
    """Test file and environment configuration sources."""

    def test_environment_variables(self, monkeypatch):
        monkeypatch.setenv("CHANGEPOINT_JAX_SEED", "42")
        monkeypatch.setenv("CHANGEPOINT_JAX_INDENT", "3")
        monkeypatch.setenv("CHANGEPOINT_JAX_LOG_LEVEL", "debug")
        config = ChangepointJaxConfig()

        assert config.simulation.default_seed == 42
        assert config.codegen.indent == 3
        assert config.logging.level == "DEBUG"

    def test_environment_not_an_integer(self, monkeypatch):
        monkeypatch.setenv("CHANGEPOINT_JAX_SEED", "many")
        with pytest.raises(ConfigurationError):
            ChangepointJaxConfig()

    def test_kwargs_override_environment(self, monkeypatch):
        monkeypatch.setenv("CHANGEPOINT_JAX_SEED", "42")
        config = ChangepointJaxConfig(simulation={"default_seed": 5})
        assert config.simulation.default_seed == 5

    def test_save_and_load(self, tmp_path):
        config = ChangepointJaxConfig()
        config.update(**{"priors.slope_scale": 2.5, "codegen.include_comments": False})
        path = tmp_path / "nested" / "config.yaml"
        config.save_config(path)

        with open(path) as f:
            raw = yaml.safe_load(f)
        assert raw["priors"]["slope_scale"] == 2.5

        loaded = ChangepointJaxConfig(config_file=path)
        assert loaded.priors.slope_scale == 2.5
        assert not loaded.codegen.include_comments

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ChangepointJaxConfig(config_file=tmp_path / "absent.yaml")

    def test_file_must_be_mapping(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigurationError):
            ChangepointJaxConfig(config_file=path)

    def test_update_assignment_is_validated(self):
        config = ChangepointJaxConfig()
        with pytest.raises(ConfigurationError):
            config.update(**{"codegen.indent": 20})
