"""
JAGS code generation for changepoint-jax.

Renders the predictor IR, the prior table and the derived constraints into a
single JAGS model in one pass. Output depends only on its inputs, so
generating twice yields byte-identical text.
"""

from typing import List, Optional

from ..config.settings import CodegenConfig
from ..utils.logging import get_logger
from .constraints import ConstraintSet, render_changepoint_margin
from .family import Family, Link, render_link_scale_response
from .parameters import ParameterKind, ParameterTable
from .predictor import DparPredictor, PredictorIR
from .priors import PriorTable, render_jags


logger = get_logger(__name__)

OBS = "i_"
LEVEL = "l_"
MARGIN = "cp_margin_"


def group_count_name(group: str) -> str:
    """Data constant holding the number of levels of a grouping variable."""
    return f"n_unique_{group}"


def ordering_check_name(k: int) -> str:
    """Data node forcing cp_k above cp_{k-1} when its prior is user supplied."""
    return f"cp_order_{k}_"


class JagsGenerator:
    """Renders a compiled segmented model as JAGS text."""

    def __init__(
        self,
        ir: PredictorIR,
        table: ParameterTable,
        priors: PriorTable,
        constraints: ConstraintSet,
        family: Family,
        link: Link,
        config: Optional[CodegenConfig] = None,
    ):
        self.ir = ir
        self.table = table
        self.priors = priors
        self.constraints = constraints
        self.family = family
        self.link = link
        self.config = config or CodegenConfig()
        self.symbol = ir.symbol_renderer(OBS)
        self._lines: List[str] = []

    # ------------------------------------------------------------------
    # Output helpers
    # ------------------------------------------------------------------

    def _emit(self, text: str = "", depth: int = 0) -> None:
        self._lines.append(" " * (self.config.indent * depth) + text if text else "")

    def _comment(self, text: str, depth: int = 1) -> None:
        if self.config.include_comments:
            self._emit(f"# {text}", depth)

    def _render(self, predictor: DparPredictor, segment: int) -> str:
        expression = predictor.expression(segment)
        return expression.render(self.symbol) if expression is not None else "0"

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def generate(self) -> str:
        self._lines = []
        if self.config.include_comments:
            self._emit(f"# {self.family.name}(link = '{self.link.name.value}') segmented model")
            for segment in self.table.segments:
                self._emit(f"# Segment {segment.index}: {segment.formula}")
            self._emit()
        self._emit("model {")
        self._margin()
        self._population_priors()
        self._varying_priors()
        self._ordering_checks()
        self._observations()
        self._autoregression()
        self._likelihood()
        self._emit("}")
        return "\n".join(self._lines) + "\n"

    def _margin(self) -> None:
        # Varying change points stay this far inside their bounds
        if not self.ir.varying:
            return
        self._comment("Change point margin")
        self._emit(f"{MARGIN} = {render_changepoint_margin()}", 1)

    def _population_priors(self) -> None:
        self._emit()
        self._comment("Priors for population-level parameters")
        for parameter in self.table:
            if parameter.is_varying:
                continue
            prior = self.priors[parameter.name]
            operator = "~" if prior.stochastic else "="
            self._emit(f"{parameter.name} {operator} {render_jags(prior)}", 1)

    def _varying_priors(self) -> None:
        for parameter in self.table.varying:
            name = parameter.name
            group = parameter.group
            count = group_count_name(group)
            prior = self.priors[name]
            operator = "~" if prior.stochastic else "="
            self._emit()
            self._comment(f"Varying change point {parameter.segment} by {group} (zero-sum)")
            self._emit(f"for ({LEVEL} in 1:{count}) {{", 1)
            self._emit(f"{name}_uncentered[{LEVEL}] {operator} {render_jags(prior)}", 2)
            self._emit("}", 1)
            self._emit(
                f"{name}[1:{count}] = {name}_uncentered - mean({name}_uncentered)", 1
            )

    def _ordering_checks(self) -> None:
        overridden = [p for p in self.table.changepoints if self.priors.is_overridden(p.name)]
        if not overridden:
            return
        self._emit()
        self._comment("Keep user-specified change points ordered")
        for parameter in overridden:
            lower = self.constraints.ordering(parameter.name).lower
            self._emit(
                f"{ordering_check_name(parameter.segment)} ~ dbern(step({parameter.name} - {lower}))", 1
            )

    def _observations(self) -> None:
        ir = self.ir
        par_x = ir.par_x
        n_segments = ir.n_segments
        self._emit()
        self._comment("Model and likelihood")
        self._emit(f"for ({OBS} in 1:length({par_x})) {{", 1)

        for k, name in sorted(ir.varying.items()):
            group = self.table[name].group
            bounds = self.constraints.truncation(name)
            self._emit(
                f"cp_{k}_[{OBS}] = min(max(cp_{k} + {name}[{group}[{OBS}]], "
                f"{bounds.lower} + {MARGIN}), {bounds.upper} - {MARGIN})",
                2,
            )

        steps = " + ".join(
            f"step({par_x}[{OBS}] - {self.symbol(f'cp_{k}')})" for k in range(1, n_segments)
        )
        self._comment("Segment membership", 2)
        self._emit(f"segment_[{OBS}] = 1" + (f" + {steps}" if steps else ""), 2)

        for predictor in ir.dpars:
            node = "y" if predictor.dpar == "mu" else predictor.dpar
            self._comment(f"Predictor of {predictor.dpar}", 2)
            for s in range(1, n_segments + 1):
                self._emit(f"{node}_seg_[{OBS}, {s}] = {self._render(predictor, s)}", 2)
            self._emit(f"{node}_[{OBS}] = {node}_seg_[{OBS}, segment_[{OBS}]]", 2)

        if ir.ar_dpars:
            self._emit(f"resid_[{OBS}] = {self._link_response()} - y_[{OBS}]", 2)
        self._emit("}", 1)

    def _link_response(self) -> str:
        trials = f"{self.table.trials}[{OBS}]" if self.family.needs_trials else ""
        response = render_link_scale_response(
            f"{self.table.response}[{OBS}]",
            trials,
            self.family.boundary_domain(self.link),
            self.family.needs_trials,
        )
        return self.link.render_link(response)

    def _ar_sum(self, index: str, orders: int) -> str:
        terms = []
        for k in range(1, orders + 1):
            lag = f"{index} - {k}" if not index.isdigit() else str(int(index) - k)
            terms.append(f"ar{k}_[{index}] * resid_[{lag}]")
        return " + ".join(terms)

    def _autoregression(self) -> None:
        order = self.table.ar_order
        if not order:
            return
        par_x = self.ir.par_x
        self._emit()
        self._comment(f"Autoregressive correction, AR({order})")
        self._emit("ar_[1] = 0", 1)
        for i in range(2, order + 1):
            self._emit(f"ar_[{i}] = {self._ar_sum(str(i), i - 1)}", 1)
        self._emit(f"for ({OBS} in {order + 1}:length({par_x})) {{", 1)
        self._emit(f"ar_[{OBS}] = {self._ar_sum(OBS, order)}", 2)
        self._emit("}", 1)

    def _likelihood(self) -> None:
        par_x = self.ir.par_x
        eta = f"y_[{OBS}]"
        if self.table.ar_order:
            eta = f"{eta} + ar_[{OBS}]"
        mean = self.link.render_inverse(eta)
        sigma = f"sigma_[{OBS}]" if self.table.has_sigma else ""
        trials = f"{self.table.trials}[{OBS}]" if self.family.needs_trials else ""
        self._emit()
        self._comment("Likelihood")
        self._emit(f"for ({OBS} in 1:length({par_x})) {{", 1)
        self._emit(
            f"{self.table.response}[{OBS}] ~ "
            f"{self.family.render_likelihood(mean, sigma=sigma, trials=trials)}",
            2,
        )
        self._emit("}", 1)


def generate_jags(
    ir: PredictorIR,
    table: ParameterTable,
    priors: PriorTable,
    constraints: ConstraintSet,
    family: Family,
    link: Link,
    config: Optional[CodegenConfig] = None,
) -> str:
    """
    Generate JAGS model text.

    The generator performs no numeric validation; out-of-domain predictions
    surface at sampling time.
    """
    code = JagsGenerator(ir, table, priors, constraints, family, link, config).generate()
    logger.debug(
        "Generated JAGS code",
        lines=code.count("\n"),
        changepoints=len(table.of_kind(ParameterKind.CHANGEPOINT)),
    )
    return code
