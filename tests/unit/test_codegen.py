"""
Tests for JAGS code generation.
"""

from changepoint_jax.config.settings import ChangepointJaxConfig
from changepoint_jax.core.api import compile_model
from changepoint_jax.data.summary import DataSummary


def lines(code):
    return [line.strip() for line in code.splitlines()]


class TestStructure:
    """Test the overall layout of generated models."""

    def test_model_block(self, ar_model):
        code = ar_model.code

        assert "model {" in code
        assert code.endswith("}\n")
        # Bounds are referenced as MINX and MAXX directly
        assert "cp_0 = MINX" not in lines(code)
        assert "cp_2 = MAXX" not in lines(code)
        assert "cp_margin_" not in code

    def test_header_comments(self, ar_model):
        code = ar_model.code

        assert code.startswith("# gaussian(link = 'identity') segmented model\n")
        assert "# Segment 1: y ~ 1 + ar(1)" in code
        assert "# Segment 2: ~ 0 + x" in code

    def test_deterministic(self):
        formulas = ["y ~ 1 + x + sigma(1)", "1 + (1 | id) ~ rel(1) + ar(2)"]
        data = DataSummary(par_x="x", min_x=0, max_x=10, group_levels={"id": ("a", "b")})

        first = compile_model(formulas, data=data).code
        second = compile_model(formulas, data=data).code
        assert first == second

    def test_layout_config(self, summary):
        config = ChangepointJaxConfig(codegen={"indent": 4, "include_comments": False})
        code = compile_model(["y ~ 1 + x", "~ 1"], data=summary, config=config).code

        assert "#" not in code
        assert code.startswith("model {\n")
        assert "    cp_1 ~ dunif(MINX, MAXX)" in code.splitlines()
        assert "        segment_[i_] = 1 + step(x[i_] - cp_1)" in code.splitlines()


class TestPriorsAndPredictors:
    """Test prior statements and per-segment predictor nodes."""

    def test_priors(self, ar_model):
        code = lines(ar_model.code)

        assert "cp_1 ~ dunif(MINX, MAXX)" in code
        assert "int_1 ~ dnorm(0, 1 / (3 * SDY)^2)" in code
        assert "sigma_1 ~ dnorm(0, 1 / (SDY)^2) T(0, )" in code
        assert "ar1_1 ~ dunif(-1, 1)" in code
        assert "x_2 ~ dnorm(0, 1 / (SDY / (MAXX - MINX))^2)" in code

    def test_joined_slope(self, ar_model):
        code = lines(ar_model.code)

        assert "segment_[i_] = 1 + step(x[i_] - cp_1)" in code
        assert "y_seg_[i_, 1] = int_1" in code
        assert "y_seg_[i_, 2] = int_1 + x_2 * (x[i_] - cp_1)" in code
        assert "y_[i_] = y_seg_[i_, segment_[i_]]" in code

    def test_carried_sigma_and_ar(self, ar_model):
        code = lines(ar_model.code)

        assert "sigma_seg_[i_, 2] = sigma_1" in code
        assert "ar1_seg_[i_, 2] = ar1_1" in code

    def test_slope_carried_into_new_level(self, summary):
        code = lines(compile_model(["y ~ 1 + x", "~ 1"], data=summary).code)

        assert "y_seg_[i_, 1] = int_1 + x_1 * (x[i_] - MINX)" in code
        assert "y_seg_[i_, 2] = int_2 + x_1 * (x[i_] - cp_1)" in code

    def test_fixed_changepoint_gets_ordering_check(self, summary):
        model = compile_model(["y ~ 1", "~ 1", "~ 1"], prior={"cp_2": 50}, data=summary)
        code = lines(model.code)

        assert "cp_2 = 50" in code
        assert "cp_order_2_ ~ dbern(step(cp_2 - cp_1))" in code
        assert not any(line.startswith("cp_order_1_") for line in code)
        assert "cp_0" not in model.code

    def test_first_fixed_changepoint_checked_against_minx(self, summary):
        model = compile_model(["y ~ 1", "~ 1", "~ 1"], prior={"cp_1": 20}, data=summary)

        assert "cp_order_1_ ~ dbern(step(cp_1 - MINX))" in lines(model.code)


class TestAutoregression:
    """Test the AR correction blocks."""

    def test_ar1(self, ar_model):
        code = lines(ar_model.code)

        assert "resid_[i_] = y[i_] - y_[i_]" in code
        assert "ar_[1] = 0" in code
        assert "for (i_ in 2:length(x)) {" in code
        assert "ar_[i_] = ar1_[i_] * resid_[i_ - 1]" in code
        assert "y[i_] ~ dnorm(y_[i_] + ar_[i_], 1 / sigma_[i_]^2)" in code

    def test_ar2(self, summary):
        code = lines(compile_model(["y ~ 1 + ar(2)", "~ 0 + x"], data=summary).code)

        assert "ar_[2] = ar1_[2] * resid_[1]" in code
        assert "for (i_ in 3:length(x)) {" in code
        assert "ar_[i_] = ar1_[i_] * resid_[i_ - 1] + ar2_[i_] * resid_[i_ - 2]" in code

    def test_binomial_residual_on_link_scale(self, summary):
        model = compile_model(["y | trials(n) ~ 1 + ar(1)", "~ 0 + x"], family="binomial", data=summary)
        code = lines(model.code)

        assert "resid_[i_] = logit(min(max(y[i_], 0.5), n[i_] - 0.5) / n[i_]) - y_[i_]" in code
        assert "y[i_] ~ dbin(ilogit(y_[i_] + ar_[i_]), n[i_])" in code

    def test_poisson_residual_keeps_zero_counts_finite(self, summary):
        model = compile_model(["y ~ 1 + ar(1)", "~ 0 + x"], family="poisson", data=summary)
        assert "resid_[i_] = log(max(y[i_], 0.5)) - y_[i_]" in lines(model.code)

    def test_identity_link_residual_unchanged(self, summary):
        model = compile_model(
            ["y ~ 1 + ar(1)", "~ 0 + x"], family="poisson", link="identity", data=summary
        )
        assert "resid_[i_] = y[i_] - y_[i_]" in lines(model.code)


class TestFamilies:
    """Test likelihood lines per family and link."""

    def test_poisson_log(self, summary):
        code = lines(compile_model(["y ~ 1 + x"], family="poisson", data=summary).code)
        assert "y[i_] ~ dpois(exp(y_[i_]))" in code

    def test_bernoulli_probit(self, summary):
        model = compile_model(["y ~ 1 + x"], family="bernoulli", link="probit", data=summary)
        assert "y[i_] ~ dbern(phi(y_[i_]))" in lines(model.code)

    def test_no_ar_block_without_ar(self, summary):
        code = compile_model(["y ~ 1 + x"], data=summary).code

        assert "ar_[" not in code
        assert "resid_" not in code
        assert "segment_[i_] = 1" in lines(code)


class TestVaryingChangepoints:
    """Test varying change point blocks."""

    def test_zero_sum_block(self, varying_model):
        code = lines(varying_model.code)

        assert "for (l_ in 1:n_unique_id) {" in code
        assert "cp_1_id_uncentered[l_] ~ dnorm(0, 1 / (cp_1_sd)^2) T(MINX - cp_1, MAXX - cp_1)" in code
        assert "cp_1_id[1:n_unique_id] = cp_1_id_uncentered - mean(cp_1_id_uncentered)" in code
        assert "cp_1_sd ~ dunif(0, MAXX - MINX)" in code

    def test_per_observation_changepoint(self, varying_model):
        code = lines(varying_model.code)

        assert "cp_1_[i_] = min(max(cp_1 + cp_1_id[id[i_]], MINX + cp_margin_), MAXX - cp_margin_)" in code
        assert "segment_[i_] = 1 + step(x[i_] - cp_1_[i_])" in code
        assert "y_seg_[i_, 2] = int_1 + int_2" in code

    def test_open_interval_margin(self, varying_model):
        code = lines(varying_model.code)

        assert "cp_margin_ = (MAXX - MINX) / 100000" in code
        assert "cp_0 = MINX" not in code

    def test_inner_changepoint_clipped_between_neighbours(self, grouped_summary):
        model = compile_model(["y ~ 1", "~ 1", "1 + (1 | id) ~ 1", "~ 1"], data=grouped_summary)

        assert "cp_2_[i_] = min(max(cp_2 + cp_2_id[id[i_]], cp_1 + cp_margin_), cp_3 - cp_margin_)" in lines(model.code)

    def test_varying_slope_uses_local_changepoint(self, grouped_summary):
        model = compile_model(["y ~ 1", "1 + (1 | id) ~ 0 + x"], data=grouped_summary)
        assert "y_seg_[i_, 2] = int_1 + x_2 * (x[i_] - cp_1_[i_])" in lines(model.code)
