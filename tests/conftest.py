"""
Shared pytest configuration and fixtures for changepoint-jax tests.

This module provides common data summaries, compiled models and parameter
values used across the test suite.
"""

import pytest
import numpy as np
import pandas as pd

from changepoint_jax.config.settings import reset_default_config
from changepoint_jax.core.api import compile_model
from changepoint_jax.data.summary import DataSummary


ENV_VARS = ["CHANGEPOINT_JAX_LOG_LEVEL", "CHANGEPOINT_JAX_SEED", "CHANGEPOINT_JAX_INDENT"]


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Run every test against the built-in configuration."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    reset_default_config()
    yield
    reset_default_config()


@pytest.fixture
def summary():
    """Predictor range 1..100 with a unit-scale response."""
    return DataSummary(par_x="x", min_x=1, max_x=100, mean_y=0, sd_y=1, n_obs=100)


@pytest.fixture
def grouped_summary():
    """Predictor range 0..100 with three levels of 'id'."""
    return DataSummary(
        par_x="x",
        min_x=0,
        max_x=100,
        sd_y=2,
        n_obs=30,
        group_levels={"id": ("a", "b", "c")},
    )


@pytest.fixture
def x_grid():
    return np.arange(1, 101, dtype=float)


@pytest.fixture
def ar_model(summary):
    """Plateau with AR(1) residuals, then a joined slope."""
    return compile_model(["y ~ 1 + ar(1)", "~ 0 + x"], data=summary)


@pytest.fixture
def ar_params():
    return {"int_1": 20.0, "ar1_1": 0.7, "cp_1": 50.0, "x_2": 0.5, "sigma_1": 2.0}


@pytest.fixture
def varying_model(grouped_summary):
    """Change point varying by 'id' with a relative intercept jump."""
    return compile_model(["y ~ 1", "1 + (1 | id) ~ rel(1)"], data=grouped_summary)


@pytest.fixture
def varying_params():
    return {"int_1": 0.0, "int_2": 5.0, "cp_1": 50.0, "sigma_1": 1.0}


@pytest.fixture
def sample_frame():
    """Small data frame with a predictor, a response and a grouping column."""
    rng = np.random.default_rng(42)
    x = np.linspace(0, 100, 30)
    return pd.DataFrame({
        "x": x,
        "y": np.where(x < 50, 0.0, 5.0) + rng.normal(0, 1, size=30),
        "id": np.tile(["a", "b", "c"], 10),
    })


# Markers for different test types
def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test (fast)"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (compile and simulate)"
    )
