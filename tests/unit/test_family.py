"""
Tests for response families, links and the family registry.
"""

import jax
import jax.numpy as jnp
import numpy as np
import pytest

from changepoint_jax.core.exceptions import ModelSpecificationError
from changepoint_jax.models.family import (
    LINKS,
    Family,
    LinkType,
    Support,
    get_family,
    inv_logit,
    inv_probit,
    link_scale_response,
    list_available_families,
    logit,
    probit,
    register_family,
    render_link_scale_response,
)


class TestRegistry:
    """Test family lookup and registration."""

    def test_builtin_families(self):
        for name in ["gaussian", "binomial", "bernoulli", "poisson", "exponential"]:
            assert name in list_available_families()

    def test_unknown_family(self):
        with pytest.raises(ModelSpecificationError):
            get_family("student")

    def test_family_instance_passes_through(self):
        family = get_family("poisson")
        assert get_family(family) is family

    def test_register_custom_family(self):
        family = Family(
            name="test_geometric",
            links=(LinkType.LOGIT,),
            likelihood="dnegbin({mean}, 1)",
            support=Support.UNIT,
            sample=lambda key, mean, sigma, trials: jax.random.geometric(key, mean),
        )
        register_family(family)

        assert get_family("test_geometric") is family
        assert family.render_likelihood("p_[i_]") == "dnegbin(p_[i_], 1)"

    def test_register_rejects_other_types(self):
        with pytest.raises(TypeError):
            register_family("gaussian")


class TestLinks:
    """Test link resolution and link functions."""

    def test_default_links(self):
        assert get_family("gaussian").resolve_link().name == LinkType.IDENTITY
        assert get_family("binomial").resolve_link().name == LinkType.LOGIT
        assert get_family("poisson").resolve_link().name == LinkType.LOG

    def test_allowed_link(self):
        link = get_family("bernoulli").resolve_link("probit")
        assert link.render_inverse("eta") == "phi(eta)"
        assert link.render_link("p") == "probit(p)"

    @pytest.mark.parametrize("family,link", [
        ("gaussian", "logit"),
        ("poisson", "probit"),
        ("binomial", "log"),
        ("gaussian", "cloglog"),
    ])
    def test_rejected_link(self, family, link):
        with pytest.raises(ModelSpecificationError):
            get_family(family).resolve_link(link)

    def test_link_inverses(self):
        p = jnp.array([0.1, 0.5, 0.9])

        np.testing.assert_allclose(inv_logit(logit(p)), p, rtol=1e-5)
        np.testing.assert_allclose(inv_probit(probit(p)), p, rtol=1e-4)
        assert float(logit(jnp.array(0.5))) == pytest.approx(0.0, abs=1e-6)


class TestSupport:
    """Test support checks of the central tendency."""

    def test_support_membership(self):
        values = jnp.array([-1.0, 0.0, 0.5, 2.0, jnp.nan])

        assert Support.REAL.contains(values).tolist() == [True, True, True, True, False]
        assert Support.NON_NEGATIVE.contains(values).tolist() == [False, True, True, True, False]
        assert Support.POSITIVE.contains(values).tolist() == [False, False, True, True, False]
        assert Support.UNIT.contains(values).tolist() == [False, True, True, False, False]

    def test_family_flags(self):
        gaussian = get_family("gaussian")
        binomial = get_family("binomial")

        assert gaussian.has_sigma and gaussian.supports_ar
        assert binomial.needs_trials and binomial.supports_ar
        assert not get_family("bernoulli").supports_ar
        assert not get_family("exponential").supports_ar


class TestBoundaryCounts:
    """Test moving boundary counts into the link domain."""

    def test_log_domain(self):
        y = jnp.array([0.0, 1.0, 4.0])
        shifted = link_scale_response(y, jnp.ones(3), Support.POSITIVE, per_trial=False)

        np.testing.assert_allclose(shifted, [0.5, 1.0, 4.0])
        assert jnp.isfinite(LINKS[LinkType.LOG].forward(shifted)).all()

    def test_unit_domain_per_trial(self):
        y = jnp.array([0.0, 1.0, 3.0])
        trials = jnp.array([3.0, 3.0, 3.0])
        shifted = link_scale_response(y, trials, Support.UNIT, per_trial=True)

        np.testing.assert_allclose(shifted, [0.5 / 3, 1 / 3, 2.5 / 3], rtol=1e-6)
        assert jnp.isfinite(logit(shifted)).all()

    def test_real_domain_untouched(self):
        y = jnp.array([-2.0, 0.0])
        np.testing.assert_array_equal(
            link_scale_response(y, jnp.ones(2), Support.REAL, per_trial=False), y
        )

    def test_only_discrete_families_shift(self):
        log = LINKS[LinkType.LOG]

        assert get_family("poisson").boundary_domain(log) is Support.POSITIVE
        assert get_family("gaussian").boundary_domain(log) is Support.REAL
        assert get_family("poisson").boundary_domain(LINKS[LinkType.IDENTITY]) is Support.REAL

    def test_rendered_text(self):
        assert render_link_scale_response("y[i_]", "", Support.POSITIVE, False) == "max(y[i_], 0.5)"
        assert render_link_scale_response("y[i_]", "n[i_]", Support.UNIT, True) == (
            "min(max(y[i_], 0.5), n[i_] - 0.5) / n[i_]"
        )
        assert render_link_scale_response("y[i_]", "", Support.REAL, False) == "y[i_]"
