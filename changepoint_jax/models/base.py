"""
Compiled model for changepoint-jax.

CompiledModel bundles everything one compilation produces: the parsed
segments, the parameter table, constraints, priors, the predictor IR, the
JAGS code and a simulator. It is the narrow interface samplers and reporting
code consume.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import pandas as pd

from ..config.settings import ChangepointJaxConfig
from ..data.summary import DataSummary, build_sampler_data
from ..formulas.spec import Segment
from .codegen import ordering_check_name
from .constraints import ConstraintSet
from .family import Family, Link
from .parameters import ParameterTable
from .predictor import PredictorIR
from .priors import PriorTable
from .simulate import Simulator


@dataclass(frozen=True)
class CompiledModel:
    """
    Result of compiling a list of segment formulas.

    Attributes:
        formulas: Segment formula strings as given
        segments: Parsed segments
        family: Response family
        link: Link function
        data: Summary of the data the model targets
        table: Canonical parameters and bindings
        constraints: Derived constraints
        priors: Prior of every parameter
        ir: Predictor intermediate representation
        code: JAGS model text
        config: Configuration the model was compiled with
        simulate: Simulator over the same predictor IR
    """

    formulas: Tuple[str, ...]
    segments: Tuple[Segment, ...]
    family: Family
    link: Link
    data: DataSummary
    table: ParameterTable
    constraints: ConstraintSet
    priors: PriorTable
    ir: PredictorIR
    code: str
    config: Optional[ChangepointJaxConfig] = field(default=None, repr=False, compare=False)
    simulate: Simulator = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(
            self,
            "simulate",
            Simulator(
                self.table,
                self.ir,
                self.constraints,
                self.family,
                self.link,
                constants=self.data.constants(),
                config=self.config.simulation if self.config is not None else None,
            ),
        )

    # ------------------------------------------------------------------
    # Sampler interface
    # ------------------------------------------------------------------

    @property
    def parameter_names(self) -> List[str]:
        """Canonical parameter names, varying levels expanded."""
        return self.table.parameter_names

    @property
    def prior_text(self) -> Dict[str, str]:
        """Parameter name to JAGS prior text."""
        return self.priors.text

    @property
    def par_x(self) -> str:
        return self.table.par_x

    @property
    def response(self) -> str:
        return self.table.response

    @property
    def groups(self) -> List[str]:
        return [p.group for p in self.table.varying]

    def data_constants(self) -> Dict[str, Any]:
        """
        Named constants the generated code refers to.

        MINX and MAXX are always present; MEANY and SDY only when priors use
        them. Ordering checks of user-specified change points are data nodes
        fixed at 1.
        """
        constants: Dict[str, Any] = {}
        for name, value in self.data.constants().items():
            if name in ("MINX", "MAXX") or re.search(rf"\b{name}\b", self.code):
                constants[name] = value
        for parameter in self.table.changepoints:
            if self.priors.is_overridden(parameter.name):
                constants[ordering_check_name(parameter.segment)] = 1
        return constants

    def sampler_data(self, df: pd.DataFrame) -> Dict[str, Any]:
        """
        Data list for a sampler run on ``df``.

        Raises:
            DataFormatError: On missing columns or unknown group levels
        """
        columns = [self.par_x, self.response]
        if self.table.trials:
            columns.append(self.table.trials)
        return build_sampler_data(
            df,
            self.data,
            columns=columns,
            groups=self.groups,
            constants=self.data_constants(),
        )

    def check_constraints(self, values: Mapping[str, Any]) -> None:
        """
        Check a parameter assignment against the hard constraints.

        Raises:
            ConstraintViolationError: Naming the parameter and the constraint
        """
        self.constraints.check(values, constants=self.data.constants())

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def parameter_frame(self) -> pd.DataFrame:
        """One row per parameter with its kind, owner and prior."""
        frame = pd.DataFrame(self.table.to_records())
        frame["prior"] = [self.prior_text[name] for name in frame["name"]]
        frame["overridden"] = [self.priors.is_overridden(name) for name in frame["name"]]
        return frame

    def active_parameters(self, segment: int) -> List[str]:
        return self.table.active_parameters(segment)

    def to_artifact(self):
        """Persistable artifact; see changepoint_jax.core.export."""
        from ..core.export import ModelArtifact

        return ModelArtifact.from_model(self)

    def summary(self) -> str:
        lines = [
            f"Family: {self.family.name}(link = '{self.link.name.value}')",
            "Segments:",
        ]
        lines.extend(f"  {s.index}: {s.formula}" for s in self.segments)
        lines.append("Priors:")
        lines.extend(f"  {name} ~ {text}" for name, text in self.prior_text.items())
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.summary()
