"""
Tests for the JAX simulator.
"""

import numpy as np
import pytest

from changepoint_jax.core.api import compile_model
from changepoint_jax.core.exceptions import (
    ConstraintViolationError,
    LinkDomainError,
    MissingParameterError,
    ModelSpecificationError,
)


def labels_for(x):
    """Group labels a, b, c cycling over the observations."""
    return np.array(["a", "b", "c"] * (len(x) // 3) + ["a", "b", "c"][: len(x) % 3])


class TestNoiseFree:
    """Test the central tendency and segment membership."""

    def test_plateau_then_joined_slope(self, ar_model, ar_params, x_grid):
        fitted = ar_model.simulate(x_grid, ar_params, add_noise=False)
        expected = np.where(x_grid < 50, 20.0, 20.0 + 0.5 * (x_grid - 50))

        np.testing.assert_allclose(fitted, expected, rtol=1e-5)

    def test_fitted_matches_noise_free(self, ar_model, ar_params, x_grid):
        np.testing.assert_allclose(
            ar_model.simulate.fitted(x_grid, ar_params),
            ar_model.simulate(x_grid, ar_params, add_noise=False),
        )

    def test_segments(self, ar_model, ar_params, x_grid):
        segment = ar_model.simulate.segments(x_grid, ar_params)

        assert segment.shape == (100,)
        assert (segment[x_grid < 50] == 1).all()
        assert (segment[x_grid >= 50] == 2).all()

    def test_three_segments(self, summary, x_grid):
        model = compile_model(["y ~ 1", "~ 1", "~ 0 + x"], data=summary)
        params = {"int_1": 1.0, "int_2": 3.0, "x_3": 2.0, "cp_1": 30.0, "cp_2": 60.0, "sigma_1": 1.0}
        fitted = model.simulate(x_grid, params, add_noise=False)

        assert fitted[28] == pytest.approx(1.0)
        assert fitted[29] == pytest.approx(3.0)
        assert fitted[99] == pytest.approx(3.0 + 2.0 * 40)

    def test_relative_slope(self, summary, x_grid):
        model = compile_model(["y ~ 1 + x", "~ 0 + rel(x)"], data=summary)
        params = {"int_1": 0.0, "x_1": 1.0, "x_2": -1.0, "cp_1": 50.0, "sigma_1": 1.0}
        fitted = model.simulate(x_grid, params, add_noise=False)

        # slope 1 until x = 50, flat afterwards
        np.testing.assert_allclose(fitted[x_grid >= 50], 49.0, rtol=1e-5)

    def test_log_link(self, summary, x_grid):
        model = compile_model(["y ~ 1 + x"], family="poisson", data=summary)
        fitted = model.simulate(x_grid, {"int_1": 0.0, "x_1": 0.01}, add_noise=False)

        np.testing.assert_allclose(fitted, np.exp(0.01 * (x_grid - 1)), rtol=1e-5)

    def test_binomial_returns_probabilities(self, summary, x_grid):
        model = compile_model(["y | trials(n) ~ 1"], family="binomial", par_x="x", data=summary)
        fitted = model.simulate(x_grid, {"int_1": 0.0}, add_noise=False)

        np.testing.assert_allclose(fitted, 0.5, rtol=1e-5)

    def test_constants_override_x_range(self, summary):
        # MINX comes from the data summary (1), not from the simulated x
        model = compile_model(["y ~ 1 + x"], data=summary)
        fitted = model.simulate([11.0], {"int_1": 0.0, "x_1": 1.0, "sigma_1": 1.0}, add_noise=False)

        assert fitted[0] == pytest.approx(10.0)


class TestNoise:
    """Test seeded random draws."""

    def test_same_seed_same_draws(self, ar_model, ar_params, x_grid):
        first = ar_model.simulate(x_grid, ar_params, seed=7)
        second = ar_model.simulate(x_grid, ar_params, seed=7)
        third = ar_model.simulate(x_grid, ar_params, seed=8)

        np.testing.assert_array_equal(first, second)
        assert not np.array_equal(first, third)

    def test_default_seed_from_config(self, ar_model, ar_params, x_grid):
        np.testing.assert_array_equal(
            ar_model.simulate(x_grid, ar_params),
            ar_model.simulate(x_grid, ar_params, seed=0),
        )

    def test_small_sigma_stays_near_mean(self, summary, x_grid):
        model = compile_model(["y ~ 1 + x"], data=summary)
        params = {"int_1": 5.0, "x_1": 0.1, "sigma_1": 1e-4}
        y = model.simulate(x_grid, params, seed=1)

        np.testing.assert_allclose(y, 5.0 + 0.1 * (x_grid - 1), atol=1e-2)

    def test_ar_depends_only_on_past(self, ar_model, ar_params, x_grid):
        changed = dict(ar_params, x_2=3.0)
        before = ar_model.simulate(x_grid, ar_params, seed=3)
        after = ar_model.simulate(x_grid, changed, seed=3)

        np.testing.assert_array_equal(before[:49], after[:49])
        assert not np.array_equal(before[49:], after[49:])

    def test_counts(self, summary, x_grid):
        model = compile_model(["y | trials(n) ~ 1 + x"], family="binomial", data=summary)
        y = model.simulate(x_grid, {"int_1": 0.0, "x_1": 0.0}, trials=np.full(100, 10), seed=2)

        assert ((y >= 0) & (y <= 10)).all()
        np.testing.assert_array_equal(y, np.round(y))

    def test_bernoulli(self, summary, x_grid):
        model = compile_model(["y ~ 1 + x"], family="bernoulli", data=summary)
        y = model.simulate(x_grid, {"int_1": 0.0, "x_1": 0.0}, seed=2)
        assert set(np.unique(y)) <= {0.0, 1.0}


class TestCountAutoregression:
    """Test AR simulation for count families with boundary draws."""

    def test_poisson_zero_counts(self, summary, x_grid):
        model = compile_model(["y ~ 1 + ar(1)", "~ 0 + x"], family="poisson", data=summary)
        params = {"int_1": 0.0, "ar1_1": 0.3, "cp_1": 50.0, "x_2": 0.0}
        y = model.simulate(x_grid, params, seed=0)

        assert (y == 0).any()
        assert (y >= 0).all()
        np.testing.assert_array_equal(y, np.round(y))

    def test_poisson_is_seeded(self, summary, x_grid):
        model = compile_model(["y ~ 1 + ar(1)", "~ 0 + x"], family="poisson", data=summary)
        params = {"int_1": 0.0, "ar1_1": 0.3, "cp_1": 50.0, "x_2": 0.0}

        np.testing.assert_array_equal(
            model.simulate(x_grid, params, seed=4), model.simulate(x_grid, params, seed=4)
        )

    def test_binomial_draws_at_both_bounds(self, summary, x_grid):
        model = compile_model(
            ["y | trials(n) ~ 1 + ar(1)"], family="binomial", par_x="x", data=summary
        )
        y = model.simulate(x_grid, {"int_1": 0.0, "ar1_1": 0.5}, trials=np.full(100, 3), seed=0)

        assert ((y >= 0) & (y <= 3)).all()
        assert (y == 0).any()
        assert (y == 3).any()
        # a draw at the trials count does not pin the rest of the series
        first_full = np.flatnonzero(y == 3)[0]
        assert (y[first_full:] < 3).any()


class TestVarying:
    """Test varying change points."""

    def test_offsets_shift_changepoints(self, varying_model, varying_params):
        x = np.arange(0, 99, dtype=float)
        labels = labels_for(x)
        params = dict(varying_params, cp_1_id={"a": -10.0, "b": 0.0, "c": 10.0})
        cps = varying_model.simulate.changepoints(x, params, groups={"id": labels})

        assert cps.shape == (99, 1)
        np.testing.assert_allclose(cps[labels == "a", 0], 40.0)
        np.testing.assert_allclose(cps[labels == "b", 0], 50.0)
        np.testing.assert_allclose(cps[labels == "c", 0], 60.0)

    def test_clipped_inside_range(self, varying_model, varying_params):
        x = np.arange(0, 99, dtype=float)
        params = dict(varying_params, **{"cp_1_id[c]": 80.0})
        cps = varying_model.simulate.changepoints(x, params, groups=labels_for(x))

        # MAXX of the data summary is 100, the margin is 100 / 100000
        assert cps[:, 0].max() < 100.0
        assert cps[:, 0].max() == pytest.approx(100.0 - 1e-3, abs=1e-4)

    def test_clipped_above_lower_bound(self, varying_model, varying_params):
        x = np.arange(0, 99, dtype=float)
        labels = labels_for(x)
        params = dict(varying_params, cp_1_id={"a": -60.0})
        cps = varying_model.simulate.changepoints(x, params, groups={"id": labels})

        assert (cps[labels == "a", 0] > 0.0).all()
        assert cps[labels == "a", 0] == pytest.approx(1e-3, abs=1e-4)

        # x = 0 of group a stays in the first segment
        segment = varying_model.simulate.segments(x, params, groups={"id": labels})
        assert segment[0] == 1
        assert (segment[1:][labels[1:] == "a"] == 2).all()

    def test_missing_offsets_are_zero(self, varying_model, varying_params):
        x = np.arange(0, 99, dtype=float)
        cps = varying_model.simulate.changepoints(x, varying_params, groups={"id": labels_for(x)})
        np.testing.assert_allclose(cps[:, 0], 50.0)

    def test_relative_jump(self, varying_model, varying_params):
        x = np.arange(0, 99, dtype=float)
        fitted = varying_model.simulate.fitted(x, varying_params, groups={"id": labels_for(x)})
        np.testing.assert_allclose(fitted, np.where(x < 50, 0.0, 5.0), rtol=1e-5)

    def test_group_data_required(self, varying_model, varying_params):
        with pytest.raises(ModelSpecificationError):
            varying_model.simulate(np.arange(10.0), varying_params)

    def test_group_data_shape(self, varying_model, varying_params):
        with pytest.raises(ModelSpecificationError):
            varying_model.simulate(np.arange(10.0), varying_params, groups=["a", "b"])


class TestErrors:
    """Test simulation errors."""

    def test_missing_parameter(self, ar_model, ar_params, x_grid):
        params = dict(ar_params)
        del params["ar1_1"]

        with pytest.raises(MissingParameterError) as exc_info:
            ar_model.simulate(x_grid, params)
        assert exc_info.value.context["parameter"] == "ar1_1"

    def test_spread_and_varying_optional(self, varying_model):
        assert varying_model.simulate.required_parameters == ["cp_1", "int_1", "sigma_1", "int_2"]

    def test_non_positive_sigma(self, ar_model, ar_params, x_grid):
        with pytest.raises(LinkDomainError) as exc_info:
            ar_model.simulate(x_grid, dict(ar_params, sigma_1=0.0))

        assert exc_info.value.context["quantity"] == "sigma"
        assert exc_info.value.context["observation"] == 0

    def test_sigma_not_checked_without_noise(self, ar_model, ar_params, x_grid):
        ar_model.simulate(x_grid, dict(ar_params, sigma_1=-1.0), add_noise=False)

    def test_mean_outside_support(self, summary, x_grid):
        model = compile_model(["y ~ 1 + x"], family="poisson", link="identity", data=summary)

        with pytest.raises(LinkDomainError) as exc_info:
            model.simulate(x_grid, {"int_1": 5.0, "x_1": -0.125}, add_noise=False)

        error = exc_info.value
        assert error.error_code == "LINK_DOMAIN"
        # 5 - 0.125 * (x - 1) turns negative after x = 41
        assert error.context["observation"] == 41
        assert error.context["segment"] == 1

    def test_unordered_changepoints(self, summary, x_grid):
        model = compile_model(["y ~ 1", "~ 1", "~ 1"], par_x="x", data=summary)
        params = {"int_1": 0.0, "int_2": 1.0, "int_3": 2.0, "cp_1": 60.0, "cp_2": 40.0, "sigma_1": 1.0}

        with pytest.raises(ConstraintViolationError):
            model.simulate(x_grid, params)

    def test_trials_required(self, summary, x_grid):
        model = compile_model(["y | trials(n) ~ 1 + x"], family="binomial", data=summary)

        with pytest.raises(ModelSpecificationError):
            model.simulate(x_grid, {"int_1": 0.0, "x_1": 0.0})

    def test_non_numeric_value(self, ar_model, ar_params, x_grid):
        with pytest.raises(ModelSpecificationError):
            ar_model.simulate(x_grid, dict(ar_params, int_1="high"))

    def test_unknown_parameter_warns(self, ar_model, ar_params, x_grid, monkeypatch):
        messages = []
        monkeypatch.setattr(
            ar_model.simulate.logger, "warning", lambda message, **kwargs: messages.append(message)
        )

        ar_model.simulate(x_grid, dict(ar_params, slope_9=1.0), add_noise=False)
        assert messages == ["Ignoring unknown parameter 'slope_9'"]
