"""
Response families and link functions for changepoint-jax.

Each family knows its JAGS likelihood, which links it accepts, the support of
its central tendency and how to draw noise with jax.random. Families live in a
registry so new ones can be plugged in without touching the compiler.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple, Union

import jax
import jax.numpy as jnp
from jax.scipy.special import ndtri
from jax.scipy.stats import norm

from ..core.exceptions import ModelSpecificationError
from ..utils.logging import get_logger


@jax.jit
def identity(x: jnp.ndarray) -> jnp.ndarray:
    """Identity link function."""
    return x


@jax.jit
def log_link(x: jnp.ndarray) -> jnp.ndarray:
    """Log link function."""
    return jnp.log(x)


@jax.jit
def exp_link(x: jnp.ndarray) -> jnp.ndarray:
    """Exponential (inverse log) function."""
    return jnp.exp(x)


@jax.jit
def logit(x: jnp.ndarray) -> jnp.ndarray:
    """Logit link function."""
    return jnp.log(x / (1 - x))


@jax.jit
def inv_logit(x: jnp.ndarray) -> jnp.ndarray:
    """Inverse logit (sigmoid) function."""
    return jax.nn.sigmoid(x)


@jax.jit
def probit(x: jnp.ndarray) -> jnp.ndarray:
    """Probit link function."""
    return ndtri(x)


@jax.jit
def inv_probit(x: jnp.ndarray) -> jnp.ndarray:
    """Standard normal CDF."""
    return norm.cdf(x)


class Support(str, Enum):
    """Valid range of a family's central tendency or of a link's argument."""

    REAL = "real"
    NON_NEGATIVE = "non_negative"
    POSITIVE = "positive"
    UNIT = "unit"

    def contains(self, values: jnp.ndarray) -> jnp.ndarray:
        finite = jnp.isfinite(values)
        if self is Support.NON_NEGATIVE:
            return finite & (values >= 0)
        if self is Support.POSITIVE:
            return finite & (values > 0)
        if self is Support.UNIT:
            return finite & (values >= 0) & (values <= 1)
        return finite


class LinkType(str, Enum):
    """Supported link functions."""

    IDENTITY = "identity"
    LOG = "log"
    LOGIT = "logit"
    PROBIT = "probit"


@dataclass(frozen=True)
class Link:
    """
    A link function with its JAGS spellings.

    ``jags_link`` and ``jags_inverse`` are format templates taking the
    rendered argument, e.g. ``"ilogit({})"``. ``domain`` is the range on which
    ``forward`` is finite.
    """

    name: LinkType
    forward: Callable
    inverse: Callable
    jags_link: str
    jags_inverse: str
    domain: Support

    def render_link(self, argument: str) -> str:
        return self.jags_link.format(argument)

    def render_inverse(self, argument: str) -> str:
        return self.jags_inverse.format(argument)


LINKS: Dict[LinkType, Link] = {
    LinkType.IDENTITY: Link(LinkType.IDENTITY, identity, identity, "{}", "{}", Support.REAL),
    LinkType.LOG: Link(LinkType.LOG, log_link, exp_link, "log({})", "exp({})", Support.POSITIVE),
    LinkType.LOGIT: Link(LinkType.LOGIT, logit, inv_logit, "logit({})", "ilogit({})", Support.UNIT),
    LinkType.PROBIT: Link(LinkType.PROBIT, probit, inv_probit, "probit({})", "phi({})", Support.UNIT),
}

# Counts on the edge of a link's domain move this far inward
BOUNDARY_OFFSET = 0.5


def link_scale_response(
    y: jnp.ndarray, trials: jnp.ndarray, domain: Support, per_trial: bool
) -> jnp.ndarray:
    """
    Observed count as the argument of the forward link.

    A count of 0 under a log link, or 0 or the trials count under a
    logit/probit link, moves ``BOUNDARY_OFFSET`` inside the domain so the
    link-scale residual stays finite. ``domain`` is ``Support.REAL`` for
    continuous families, which leaves the response untouched.
    """
    if domain is Support.POSITIVE:
        y = jnp.maximum(y, BOUNDARY_OFFSET)
    elif domain is Support.UNIT:
        upper = trials if per_trial else 1.0
        y = jnp.clip(y, BOUNDARY_OFFSET, upper - BOUNDARY_OFFSET)
    return y / trials if per_trial else y


def render_link_scale_response(
    response: str, trials: str, domain: Support, per_trial: bool
) -> str:
    """JAGS text of ``link_scale_response``."""
    if domain is Support.POSITIVE:
        response = f"max({response}, {BOUNDARY_OFFSET})"
    elif domain is Support.UNIT:
        upper = trials if per_trial else "1"
        response = f"min(max({response}, {BOUNDARY_OFFSET}), {upper} - {BOUNDARY_OFFSET})"
    return f"{response} / {trials}" if per_trial else response


def _sample_gaussian(key, mean, sigma, trials):
    return mean + sigma * jax.random.normal(key, jnp.shape(mean))


def _sample_binomial(key, mean, sigma, trials):
    return jax.random.binomial(key, trials, mean).astype(jnp.float32)


def _sample_bernoulli(key, mean, sigma, trials):
    return jax.random.bernoulli(key, mean).astype(jnp.float32)


def _sample_poisson(key, mean, sigma, trials):
    return jax.random.poisson(key, mean).astype(jnp.float32)


def _sample_exponential(key, mean, sigma, trials):
    return mean * jax.random.exponential(key, jnp.shape(mean))


@dataclass(frozen=True)
class Family:
    """
    A response distribution.

    Attributes:
        name: Family name
        links: Allowed links, default first
        likelihood: JAGS template with ``{mean}``, ``{sigma}`` and ``{trials}``
        support: Valid range of the central tendency
        sample: ``(key, mean, sigma, trials) -> draws`` using jax.random
        has_sigma: Whether the family has a sigma dpar
        supports_ar: Whether AR residual correction is available
        needs_trials: Whether the response needs a trials column
        discrete: Whether responses are counts
    """

    name: str
    links: Tuple[LinkType, ...]
    likelihood: str
    support: Support
    sample: Callable
    has_sigma: bool = False
    supports_ar: bool = False
    needs_trials: bool = False
    discrete: bool = False

    def boundary_domain(self, link: Link) -> Support:
        """Domain that boundary counts are moved into before applying ``link``."""
        return link.domain if self.discrete else Support.REAL

    @property
    def default_link(self) -> LinkType:
        return self.links[0]

    def resolve_link(self, link: Optional[Union[str, LinkType]] = None) -> Link:
        """
        Validate a link name against this family.

        Raises:
            ModelSpecificationError: If the link is unknown or not allowed
        """
        if link is None:
            return LINKS[self.default_link]
        try:
            link_type = LinkType(link)
        except ValueError:
            link_type = None
        if link_type not in self.links:
            raise ModelSpecificationError(
                reason=f"link '{link}' is not supported for family '{self.name}'",
                suggestions=[
                    f"Use one of: {', '.join(l.value for l in self.links)}",
                    f"The default link for {self.name} is '{self.default_link.value}'",
                ],
            )
        return LINKS[link_type]

    def render_likelihood(self, mean: str, sigma: str = "", trials: str = "") -> str:
        return self.likelihood.format(mean=mean, sigma=sigma, trials=trials)


class FamilyRegistry:
    """
    Registry for managing available response families.

    Provides a plugin-style system for registering and looking up families.
    """

    def __init__(self):
        self._families: Dict[str, Family] = {}
        self.logger = get_logger(self.__class__.__name__)

    def register(self, family: Family) -> None:
        """
        Register a family.

        Args:
            family: Family definition
        """
        if not isinstance(family, Family):
            raise TypeError("Family must be a Family instance")

        self._families[family.name] = family
        self.logger.debug(f"Registered family: {family.name}")

    def get_family(self, name: Union[str, Family]) -> Family:
        """
        Get a family by name.

        Raises:
            ModelSpecificationError: If the family is not registered
        """
        if isinstance(name, Family):
            return name
        if name not in self._families:
            raise ModelSpecificationError(
                reason=f"unknown family '{name}'",
                suggestions=[f"Available families: {', '.join(self.list_families())}"],
            )
        return self._families[name]

    def list_families(self) -> List[str]:
        """Get list of available family names."""
        return list(self._families.keys())

    def is_registered(self, name: str) -> bool:
        return name in self._families


# Global family registry instance
_registry = FamilyRegistry()

_registry.register(
    Family(
        name="gaussian",
        links=(LinkType.IDENTITY, LinkType.LOG),
        likelihood="dnorm({mean}, 1 / {sigma}^2)",
        support=Support.REAL,
        sample=_sample_gaussian,
        has_sigma=True,
        supports_ar=True,
    )
)
_registry.register(
    Family(
        name="binomial",
        links=(LinkType.LOGIT, LinkType.PROBIT, LinkType.IDENTITY),
        likelihood="dbin({mean}, {trials})",
        support=Support.UNIT,
        sample=_sample_binomial,
        supports_ar=True,
        needs_trials=True,
        discrete=True,
    )
)
_registry.register(
    Family(
        name="bernoulli",
        links=(LinkType.LOGIT, LinkType.PROBIT, LinkType.IDENTITY),
        likelihood="dbern({mean})",
        support=Support.UNIT,
        sample=_sample_bernoulli,
        discrete=True,
    )
)
_registry.register(
    Family(
        name="poisson",
        links=(LinkType.LOG, LinkType.IDENTITY),
        likelihood="dpois({mean})",
        support=Support.NON_NEGATIVE,
        sample=_sample_poisson,
        supports_ar=True,
        discrete=True,
    )
)
_registry.register(
    Family(
        name="exponential",
        links=(LinkType.IDENTITY, LinkType.LOG),
        likelihood="dexp(1 / {mean})",
        support=Support.POSITIVE,
        sample=_sample_exponential,
    )
)


def register_family(family: Family) -> None:
    """Register a family with the global registry."""
    _registry.register(family)


def get_family(name: Union[str, Family]) -> Family:
    """Get a family from the global registry."""
    return _registry.get_family(name)


def list_available_families() -> List[str]:
    """List available family names in the global registry."""
    return _registry.list_families()
