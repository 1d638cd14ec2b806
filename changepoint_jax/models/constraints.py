"""
Derived parameter constraints for changepoint-jax.

Constraints follow from the model structure alone: change points are ordered
inside the observed predictor range, varying offsets sum to zero and keep the
absolute change point between its neighbours, and AR coefficients are hinted
towards stationarity. They feed prior truncation and code generation, and are
checked against concrete parameter values at sampling or simulation time.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

from ..core.exceptions import ConstraintViolationError
from ..formulas.expressions import evaluate_bound, format_number
from ..utils.logging import get_logger
from .parameters import ParameterKind, ParameterTable, collect_varying_values


logger = get_logger(__name__)

Bound = Union[int, float, str]

MINX = "MINX"
MAXX = "MAXX"

# Relative tolerance of the zero-sum check
ZERO_SUM_TOLERANCE = 1e-6

# Varying change points stay (MAXX - MINX) / MARGIN_DIVISOR inside their
# neighbours
MARGIN_DIVISOR = 100000


def changepoint_margin(min_x: float, max_x: float) -> float:
    """Distance kept between a varying change point and its bounds."""
    return (max_x - min_x) / MARGIN_DIVISOR


def render_changepoint_margin() -> str:
    """JAGS expression of ``changepoint_margin``."""
    return f"({MAXX} - {MINX}) / {MARGIN_DIVISOR}"


class ConstraintType(str, Enum):
    """Types of derived constraints."""

    ORDERING = "ordering"
    TRUNCATION = "truncation"
    ZERO_SUM = "zero_sum"
    STATIONARITY = "stationarity"


def _render_bound(bound: Bound) -> str:
    return bound if isinstance(bound, str) else format_number(bound)


@dataclass(frozen=True)
class Constraint:
    """
    A relationship a parameter must satisfy.

    For truncation constraints, ``lower`` and ``upper`` bound the absolute
    location ``reference + offset`` rather than the offset itself.
    """

    type: ConstraintType
    parameter: str
    lower: Optional[Bound] = None
    upper: Optional[Bound] = None
    hard: bool = True
    reference: Optional[str] = None

    def describe(self) -> str:
        lower = _render_bound(self.lower) if self.lower is not None else "-inf"
        upper = _render_bound(self.upper) if self.upper is not None else "inf"
        if self.type == ConstraintType.ORDERING:
            return f"{lower} < {self.parameter} < {upper}"
        if self.type == ConstraintType.TRUNCATION:
            return f"{lower} < {self.reference} + {self.parameter}[level] < {upper}"
        if self.type == ConstraintType.ZERO_SUM:
            return f"sum({self.parameter}) = 0"
        return f"{lower} < {self.parameter} < {upper} (stationarity)"


class ConstraintSet:
    """Ordered, immutable collection of constraints with violation checks."""

    def __init__(self, constraints: Iterable[Constraint]):
        self._constraints: Tuple[Constraint, ...] = tuple(constraints)

    def __iter__(self):
        return iter(self._constraints)

    def __len__(self) -> int:
        return len(self._constraints)

    def __repr__(self) -> str:
        return f"ConstraintSet({len(self)} constraints)"

    def of_type(self, *types: ConstraintType) -> List[Constraint]:
        return [c for c in self._constraints if c.type in types]

    def for_parameter(self, name: str) -> List[Constraint]:
        return [c for c in self._constraints if c.parameter == name]

    def ordering(self, name: str) -> Optional[Constraint]:
        """The ordering constraint of a change point."""
        for constraint in self.for_parameter(name):
            if constraint.type == ConstraintType.ORDERING:
                return constraint
        return None

    def truncation(self, name: str) -> Optional[Constraint]:
        """The truncation constraint of a varying offset."""
        for constraint in self.for_parameter(name):
            if constraint.type == ConstraintType.TRUNCATION:
                return constraint
        return None

    def check(
        self,
        values: Mapping[str, object],
        constants: Optional[Mapping[str, float]] = None,
        types: Optional[Iterable[ConstraintType]] = None,
    ) -> None:
        """
        Check hard constraints against a parameter assignment.

        Bounds that refer to names absent from ``values`` and ``constants``
        are not checked, so passing no constants checks only
        parameter-to-parameter relations.

        Args:
            values: Parameter values; varying offsets as a level mapping or
                expanded ``name[level]`` keys
            constants: Data constants such as MINX and MAXX
            types: Restrict the check to these constraint types

        Raises:
            ConstraintViolationError: On the first violated constraint
        """
        selected = set(types) if types is not None else set(ConstraintType)
        env: Dict[str, float] = dict(constants or {})
        env.update({k: float(v) for k, v in values.items() if not isinstance(v, Mapping)})

        for constraint in self._constraints:
            if not constraint.hard or constraint.type not in selected:
                continue
            if constraint.type == ConstraintType.ORDERING:
                self._check_ordering(constraint, env)
            elif constraint.type == ConstraintType.ZERO_SUM:
                self._check_zero_sum(constraint, values)
            elif constraint.type == ConstraintType.TRUNCATION:
                self._check_truncation(constraint, values, env)

    def _check_ordering(self, constraint: Constraint, env: Mapping[str, float]) -> None:
        if constraint.parameter not in env:
            return
        value = env[constraint.parameter]
        lower = _try_bound(constraint.lower, env)
        upper = _try_bound(constraint.upper, env)
        if (lower is not None and not value > lower) or (upper is not None and not value < upper):
            raise ConstraintViolationError(
                parameter=constraint.parameter,
                constraint=constraint.describe(),
                value=value,
            )

    def _check_zero_sum(self, constraint: Constraint, values: Mapping[str, object]) -> None:
        offsets = collect_varying_values(values, constraint.parameter)
        if not offsets:
            return
        total = sum(offsets.values())
        scale = max(1.0, sum(abs(v) for v in offsets.values()))
        if abs(total) > ZERO_SUM_TOLERANCE * scale:
            raise ConstraintViolationError(
                parameter=constraint.parameter,
                constraint=constraint.describe(),
                value=total,
            )

    def _check_truncation(
        self, constraint: Constraint, values: Mapping[str, object], env: Mapping[str, float]
    ) -> None:
        if constraint.reference not in env:
            return
        reference = env[constraint.reference]
        lower = _try_bound(constraint.lower, env)
        upper = _try_bound(constraint.upper, env)
        for level, offset in collect_varying_values(values, constraint.parameter).items():
            location = reference + offset
            if (lower is not None and not location > lower) or (
                upper is not None and not location < upper
            ):
                raise ConstraintViolationError(
                    parameter=f"{constraint.parameter}[{level}]",
                    constraint=constraint.describe(),
                    value=location,
                )


def _try_bound(bound: Optional[Bound], env: Mapping[str, float]) -> Optional[float]:
    if bound is None:
        return None
    try:
        return evaluate_bound(bound, env)
    except KeyError:
        return None


def derive_constraints(table: ParameterTable) -> ConstraintSet:
    """
    Derive the constraint set of a model.

    Produces, in order: one ordering constraint per change point, a zero-sum
    and a truncation constraint per varying group, and a soft stationarity
    constraint per AR coefficient.
    """
    constraints: List[Constraint] = []
    n_changepoints = table.n_changepoints

    for k in range(1, n_changepoints + 1):
        constraints.append(
            Constraint(
                type=ConstraintType.ORDERING,
                parameter=f"cp_{k}",
                lower=f"cp_{k - 1}" if k > 1 else MINX,
                upper=f"cp_{k + 1}" if k < n_changepoints else MAXX,
            )
        )

    for parameter in table.varying:
        k = parameter.segment
        ordering = constraints[k - 1]
        constraints.append(Constraint(type=ConstraintType.ZERO_SUM, parameter=parameter.name))
        constraints.append(
            Constraint(
                type=ConstraintType.TRUNCATION,
                parameter=parameter.name,
                lower=ordering.lower,
                upper=ordering.upper,
                reference=f"cp_{k}",
            )
        )

    for parameter in table.of_kind(ParameterKind.AR_COEFFICIENT):
        constraints.append(
            Constraint(
                type=ConstraintType.STATIONARITY,
                parameter=parameter.name,
                lower=-1,
                upper=1,
                hard=False,
            )
        )

    logger.debug(f"Derived {len(constraints)} constraints")
    return ConstraintSet(constraints)
