"""
Prior synthesis for changepoint-jax.

Priors are a small tagged variant (Uniform, Normal, Hierarchical, Fixed,
Custom) with bounds that are numbers or symbolic expressions over data
constants (MINX, MAXX, SDY, ...) and earlier parameters. Defaults are derived
per parameter kind and truncated by the derived constraints; user overrides
replace a default wholesale.
"""

import re
from dataclasses import dataclass
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

from ..config.settings import PriorConfig
from ..core.exceptions import ModelSpecificationError
from ..formulas.expressions import format_number
from ..utils.logging import get_logger
from .constraints import MAXX, MINX, ConstraintSet
from .family import Family, Link, LinkType
from .parameters import Parameter, ParameterKind, ParameterTable

Bound = Union[int, float, str]

_STOCHASTIC = re.compile(r"^\s*d[a-zA-Z0-9_.]*\(")


class Prior:
    """Base class of prior variants."""

    @property
    def stochastic(self) -> bool:
        """Whether the prior is a distribution (``~``) rather than a value (``<-``)."""
        return True

    def to_jags(self) -> str:
        return render_jags(self)

    def __str__(self) -> str:
        return render_jags(self)


@dataclass(frozen=True)
class Uniform(Prior):
    lower: Bound
    upper: Bound


@dataclass(frozen=True)
class Normal(Prior):
    mean: Bound = 0
    sd: Bound = 1
    lower: Optional[Bound] = None
    upper: Optional[Bound] = None


@dataclass(frozen=True)
class Hierarchical(Prior):
    """Normal prior whose spread is another parameter, e.g. ``cp_1_sd``."""

    sd_param: str
    mean: Bound = 0
    lower: Optional[Bound] = None
    upper: Optional[Bound] = None


@dataclass(frozen=True)
class Fixed(Prior):
    """A parameter fixed to a value (or a deterministic expression)."""

    value: Bound

    @property
    def stochastic(self) -> bool:
        return False


@dataclass(frozen=True)
class Custom(Prior):
    """Verbatim JAGS text, e.g. ``dt(0, 1, 3) T(0, )``."""

    text: str

    @property
    def stochastic(self) -> bool:
        return bool(_STOCHASTIC.match(self.text))


def _bound(bound: Bound) -> str:
    return bound if isinstance(bound, str) else format_number(bound)


def _truncation(lower: Optional[Bound], upper: Optional[Bound]) -> str:
    if lower is None and upper is None:
        return ""
    lo = _bound(lower) if lower is not None else ""
    hi = _bound(upper) if upper is not None else ""
    return f" T({lo}, {hi})"


def render_jags(prior: Prior) -> str:
    """Render a prior as JAGS distribution or value text."""
    if isinstance(prior, Uniform):
        return f"dunif({_bound(prior.lower)}, {_bound(prior.upper)})"
    if isinstance(prior, Normal):
        text = f"dnorm({_bound(prior.mean)}, 1 / ({_bound(prior.sd)})^2)"
        return text + _truncation(prior.lower, prior.upper)
    if isinstance(prior, Hierarchical):
        text = f"dnorm({_bound(prior.mean)}, 1 / ({prior.sd_param})^2)"
        return text + _truncation(prior.lower, prior.upper)
    if isinstance(prior, Fixed):
        return _bound(prior.value)
    if isinstance(prior, Custom):
        return prior.text.strip()
    raise TypeError(f"Unknown prior type: {type(prior).__name__}")


def as_prior(value: Union[Prior, str, int, float], name: str = "") -> Prior:
    """
    Interpret a user override.

    Strings are JAGS text, numbers fix the parameter, Prior instances are
    used as given.

    Raises:
        ModelSpecificationError: On any other type
    """
    if isinstance(value, Prior):
        return value
    if isinstance(value, bool):
        raise ModelSpecificationError(parameter=name, reason=f"invalid prior for '{name}': {value!r}")
    if isinstance(value, (int, float)):
        return Fixed(value)
    if isinstance(value, str) and value.strip():
        return Custom(value.strip())
    raise ModelSpecificationError(
        parameter=name,
        reason=f"invalid prior for '{name}': {value!r}",
        suggestions=[
            "Use JAGS text such as 'dnorm(0, 1 / 10^2)'",
            "Use a number to fix the parameter",
            "Use a changepoint_jax.models.priors Prior instance",
        ],
    )


def _scaled(scale: float, text: str) -> str:
    return text if scale == 1 else f"{format_number(scale)} * {text}"


def _per_range(scale: float, numerator: str = "") -> str:
    if numerator:
        head = _scaled(scale, numerator)
    else:
        head = format_number(scale)
    return f"{head} / ({MAXX} - {MINX})"


class PriorTable:
    """
    Priors of every parameter in canonical order.

    Varying offsets are keyed by their base name (``cp_1_id``).
    """

    def __init__(self, priors: Mapping[str, Prior], overridden: Tuple[str, ...] = ()):
        self._priors: Dict[str, Prior] = dict(priors)
        self.overridden = tuple(overridden)

    def __getitem__(self, name: str) -> Prior:
        return self._priors[name]

    def __contains__(self, name: str) -> bool:
        return name in self._priors

    def __iter__(self) -> Iterator[str]:
        return iter(self._priors)

    def __len__(self) -> int:
        return len(self._priors)

    def items(self):
        return self._priors.items()

    @property
    def names(self) -> List[str]:
        return list(self._priors)

    def is_overridden(self, name: str) -> bool:
        return name in self.overridden

    @property
    def text(self) -> Dict[str, str]:
        """Parameter name to JAGS text."""
        return {name: render_jags(prior) for name, prior in self._priors.items()}


class PriorSynthesizer:
    """Builds default priors by parameter kind and merges user overrides."""

    def __init__(self, family: Family, link: Link, config: Optional[PriorConfig] = None):
        self.family = family
        self.link = link
        self.config = config or PriorConfig()
        self.logger = get_logger(self.__class__.__name__)

    @property
    def response_scale(self) -> bool:
        """Whether mean priors are scaled by the response (gaussian, identity link)."""
        return self.family.name == "gaussian" and self.link.name == LinkType.IDENTITY

    def synthesize(
        self,
        table: ParameterTable,
        constraints: ConstraintSet,
        overrides: Optional[Mapping[str, Union[Prior, str, int, float]]] = None,
    ) -> PriorTable:
        overrides = dict(overrides or {})
        unknown = [name for name in overrides if name not in table]
        if unknown:
            raise ModelSpecificationError(
                parameter=unknown[0],
                reason=f"prior given for unknown parameter(s): {', '.join(unknown)}",
                suggestions=[
                    f"Model parameters: {', '.join(table.names)}",
                    "Varying offsets take one prior keyed by their base name, e.g. 'cp_1_id'",
                ],
            )

        priors: Dict[str, Prior] = {}
        for parameter in table:
            if parameter.name in overrides:
                priors[parameter.name] = as_prior(overrides[parameter.name], parameter.name)
            else:
                priors[parameter.name] = self.default(parameter, constraints)

        overridden = tuple(name for name in table.names if name in overrides)
        if overridden:
            self.logger.debug("Applied prior overrides", names=",".join(overridden))
        return PriorTable(priors, overridden)

    def default(self, parameter: Parameter, constraints: ConstraintSet) -> Prior:
        """Default prior of a parameter."""
        config = self.config
        kind = parameter.kind

        if kind == ParameterKind.CHANGEPOINT:
            ordering = constraints.ordering(parameter.name)
            lower = ordering.lower if ordering is not None else MINX
            return Uniform(lower, MAXX)

        if kind == ParameterKind.CHANGEPOINT_SPREAD:
            return Uniform(0, f"{MAXX} - {MINX}")

        if kind == ParameterKind.VARYING:
            reference = f"cp_{parameter.segment}"
            truncation = constraints.truncation(parameter.name)
            lower = truncation.lower if truncation is not None else MINX
            upper = truncation.upper if truncation is not None else MAXX
            return Hierarchical(
                sd_param=f"{reference}_sd",
                mean=0,
                lower=f"{_bound(lower)} - {reference}",
                upper=f"{_bound(upper)} - {reference}",
            )

        if kind == ParameterKind.INTERCEPT:
            if self.response_scale:
                return Normal(0, _scaled(config.intercept_scale, "SDY"))
            return Normal(0, config.intercept_scale * config.link_scale)

        if kind == ParameterKind.SLOPE:
            if self.response_scale:
                return Normal(0, _per_range(config.slope_scale, "SDY"))
            return Normal(0, _per_range(config.slope_scale * config.link_scale))

        if kind == ParameterKind.SIGMA_INTERCEPT:
            sd = _scaled(config.sigma_scale, "SDY")
            return Normal(0, sd) if parameter.relative else Normal(0, sd, lower=0)

        if kind == ParameterKind.SIGMA_SLOPE:
            return Normal(0, _per_range(config.sigma_scale, "SDY"))

        if kind == ParameterKind.AR_COEFFICIENT:
            stationarity = constraints.for_parameter(parameter.name)
            if parameter.relative:
                # base + offset stays in (-1, 1) only if the offset is in (-2, 2)
                return Uniform(-2, 2)
            if stationarity:
                return Uniform(stationarity[0].lower, stationarity[0].upper)
            return Uniform(-1, 1)

        if kind == ParameterKind.AR_SLOPE:
            return Normal(0, _per_range(config.ar_slope_scale))

        raise ModelSpecificationError(
            parameter=parameter.name, reason=f"no default prior for kind '{kind.value}'"
        )


def synthesize_priors(
    table: ParameterTable,
    constraints: ConstraintSet,
    family: Family,
    link: Link,
    overrides: Optional[Mapping[str, Union[Prior, str, int, float]]] = None,
    config: Optional[PriorConfig] = None,
) -> PriorTable:
    """
    Build the prior table of a model.

    Args:
        table: Parameter table
        constraints: Derived constraints, used for truncation bounds
        family: Response family
        link: Resolved link
        overrides: Parameter name to JAGS text, number or Prior
        config: Default prior scales

    Raises:
        ModelSpecificationError: If an override names an unknown parameter
    """
    return PriorSynthesizer(family, link, config).synthesize(table, constraints, overrides)
