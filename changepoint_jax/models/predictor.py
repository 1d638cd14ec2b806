"""
Piecewise predictor representation for changepoint-jax.

Builds, for every dpar (mu, sigma, ar1..arN), one expression tree per segment
giving the linear predictor of an observation in that segment. The trees use
symbols for the predictor, the change points, the data constant MINX and the
model parameters. The code generator renders them to JAGS and the simulator
evaluates them with jax.numpy, so both read the same definition:

    local_s = x - cp_{s-1}                  (cp_0 = MINX)
    E_s(x)  = level_s + sum_t slope_t * g_t(local_s)
    level_s = int_s                          absolute intercept
            | E_{s-1}(cp_{s-1}) + int_s      relative intercept
            | E_{s-1}(cp_{s-1})              omitted or suppressed (joined)

Segment 1 without an intercept starts at 0.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

import jax.numpy as jnp

from ..formulas.expressions import Expression, Symbol, add, multiply, subtract
from .constraints import MINX
from .parameters import INTERCEPT_KEY, ParameterTable, TermBinding


def changepoint_symbol(k: int) -> Symbol:
    """Symbol of change point k; cp_0 is the lower data bound."""
    return Symbol(MINX) if k == 0 else Symbol(f"cp_{k}")


@dataclass(frozen=True)
class DparPredictor:
    """Per-segment expressions of one dpar; None means the predictor is 0 there."""

    dpar: str
    expressions: Tuple[Optional[Expression], ...]

    def expression(self, segment: int) -> Optional[Expression]:
        return self.expressions[segment - 1]

    @property
    def is_constant_zero(self) -> bool:
        return all(e is None for e in self.expressions)


@dataclass(frozen=True)
class PredictorIR:
    """
    Intermediate representation of a segmented model.

    Attributes:
        par_x: Predictor name
        n_segments: Number of segments
        dpars: Predictors in dpar order (mu, sigma, ar1..arN)
        varying: Change point index to its varying offset parameter name
    """

    par_x: str
    n_segments: int
    dpars: Tuple[DparPredictor, ...]
    varying: Mapping[int, str]

    @property
    def n_changepoints(self) -> int:
        return self.n_segments - 1

    @property
    def changepoints(self) -> Tuple[str, ...]:
        return tuple(f"cp_{k}" for k in range(1, self.n_segments))

    def __getitem__(self, dpar: str) -> DparPredictor:
        for predictor in self.dpars:
            if predictor.dpar == dpar:
                return predictor
        raise KeyError(dpar)

    def __contains__(self, dpar: str) -> bool:
        return any(p.dpar == dpar for p in self.dpars)

    @property
    def ar_dpars(self) -> Tuple[DparPredictor, ...]:
        return tuple(p for p in self.dpars if p.dpar.startswith("ar"))

    def symbol_renderer(self, observation: str = "i_") -> Callable[[str], str]:
        """
        Symbol renderer for JAGS: the predictor and varying change points are
        indexed per observation.
        """
        par_x = self.par_x
        varying_cps = {f"cp_{k}" for k in self.varying}

        def render(name: str) -> str:
            if name == par_x:
                return f"{par_x}[{observation}]"
            if name in varying_cps:
                return f"{name}_[{observation}]"
            return name

        return render


class PredictorBuilder:
    """Assembles per-segment expressions from resolved term bindings."""

    def __init__(self, table: ParameterTable):
        self.table = table
        self.x = Symbol(table.par_x)

    def build(self) -> PredictorIR:
        dpars = tuple(self._build_dpar(dpar) for dpar in self.table.dpars)
        varying = {p.segment: p.name for p in self.table.varying}
        return PredictorIR(
            par_x=self.table.par_x,
            n_segments=self.table.n_segments,
            dpars=dpars,
            varying=varying,
        )

    def _build_dpar(self, dpar: str) -> DparPredictor:
        expressions = []
        for s in range(1, self.table.n_segments + 1):
            local = subtract(self.x, changepoint_symbol(s - 1))
            expressions.append(self._segment(dpar, s, local))
        return DparPredictor(dpar=dpar, expressions=tuple(expressions))

    def _segment(self, dpar: str, s: int, local: Expression) -> Optional[Expression]:
        """E_s evaluated at a local predictor value."""
        bindings = self.table.bindings(s, dpar)
        expression = self._level(dpar, s, bindings.get(INTERCEPT_KEY))
        for key, binding in bindings.items():
            if key == INTERCEPT_KEY:
                continue
            term = binding.expression.substitute({self.table.par_x: local})
            expression = add(expression, multiply(self._value(binding), term))
        return expression

    def _level(self, dpar: str, s: int, intercept: Optional[TermBinding]) -> Optional[Expression]:
        defined_here = intercept is not None and intercept.defined_in(s)
        if defined_here and not intercept.is_relative:
            return Symbol(intercept.name)
        if s == 1:
            return None
        previous_end = self._segment(
            dpar, s - 1, subtract(changepoint_symbol(s - 1), changepoint_symbol(s - 2))
        )
        if defined_here:
            return add(previous_end, Symbol(intercept.name))
        return previous_end

    def _value(self, binding: TermBinding) -> Expression:
        """Value of a slope binding: its parameter, plus the base for relative terms."""
        if binding.is_relative and binding.base is not None:
            return add(self._value(binding.base), Symbol(binding.name))
        return Symbol(binding.name)


def build_predictor(table: ParameterTable) -> PredictorIR:
    """Build the predictor IR of a parameter table."""
    return PredictorBuilder(table).build()


def evaluate_predictor(
    predictor: DparPredictor, env: Mapping[str, object], shape: Tuple[int, ...]
) -> Dict[int, object]:
    """
    Evaluate every segment expression of a dpar.

    Returns:
        Segment index to values broadcast to ``shape``
    """
    values = {}
    for s, expression in enumerate(predictor.expressions, 1):
        value = expression.evaluate(env) if expression is not None else 0.0
        values[s] = jnp.broadcast_to(jnp.asarray(value, dtype=jnp.float32), shape)
    return values
