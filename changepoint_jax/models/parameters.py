"""
Parameter table for changepoint-jax.

Walks the parsed segments in order, assigns canonical parameter names and
resolves carry-over and relative terms into explicit TermBinding references.
Every later stage (constraints, priors, predictor IR, simulation) reads the
table instead of re-inspecting formulas.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from ..core.exceptions import ModelSpecificationError
from ..formulas.expressions import Expression
from ..formulas.spec import Segment, inner_term, is_relative, is_suppressed, term_label
from ..formulas.terms import InterceptTerm, PredictorTerm, Term, VarianceTerm
from ..utils.logging import get_logger
from .family import Family

MU = "mu"
SIGMA = "sigma"
INTERCEPT_KEY = "1"


class ParameterKind(str, Enum):
    """Kinds of model parameters."""

    INTERCEPT = "intercept"
    SLOPE = "slope"
    AR_COEFFICIENT = "ar_coefficient"
    AR_SLOPE = "ar_slope"
    SIGMA_INTERCEPT = "sigma_intercept"
    SIGMA_SLOPE = "sigma_slope"
    CHANGEPOINT = "changepoint"
    CHANGEPOINT_SPREAD = "changepoint_spread"
    VARYING = "varying_offset"


class BindingMode(str, Enum):
    """How a segment specifies a term."""

    ABSOLUTE = "absolute"
    RELATIVE = "relative"


def ar_dpar(order: int) -> str:
    return f"ar{order}"


def ar_order(dpar: str) -> Optional[int]:
    """AR order of a dpar name, None for mu and sigma."""
    if dpar.startswith("ar") and dpar[2:].isdigit():
        return int(dpar[2:])
    return None


@dataclass(frozen=True)
class Parameter:
    """
    A named model parameter.

    Attributes:
        name: Canonical name (``int_1``, ``x_2``, ``sigma_1``, ``ar1_2``, ``cp_1``)
        kind: Parameter kind
        segment: Owning segment; for change point quantities, the change point index
        dpar: Distributional parameter (``mu``, ``sigma``, ``arN``), if any
        term: Term key within its dpar (``1`` for intercepts)
        relative: Whether the parameter is an offset from the previous segment
        group: Grouping variable of a varying offset
        levels: Group levels of a varying offset
    """

    name: str
    kind: ParameterKind
    segment: int
    dpar: Optional[str] = None
    term: Optional[str] = None
    relative: bool = False
    group: Optional[str] = None
    levels: Tuple[str, ...] = ()

    @property
    def order(self) -> Optional[int]:
        return ar_order(self.dpar) if self.dpar else None

    @property
    def is_varying(self) -> bool:
        return self.kind == ParameterKind.VARYING

    @property
    def expanded_names(self) -> Tuple[str, ...]:
        """Names with varying levels expanded, e.g. ``cp_1_id[a]``."""
        if self.is_varying and self.levels:
            return tuple(f"{self.name}[{level}]" for level in self.levels)
        return (self.name,)

    @property
    def category(self) -> str:
        """Reporting category of the parameter."""
        if self.kind == ParameterKind.VARYING:
            return "varying"
        if self.kind in (ParameterKind.CHANGEPOINT, ParameterKind.CHANGEPOINT_SPREAD):
            return "cp"
        if self.kind in (ParameterKind.SIGMA_INTERCEPT, ParameterKind.SIGMA_SLOPE):
            return "sigma"
        if self.kind in (ParameterKind.AR_COEFFICIENT, ParameterKind.AR_SLOPE):
            return "ar"
        if self.kind == ParameterKind.INTERCEPT:
            return "int"
        return "slope"


@dataclass(frozen=True, eq=False)
class TermBinding:
    """
    Resolved reference from (segment, dpar, term) to the parameter that
    supplies the term's value.

    A segment omitting a term holds the very same TermBinding object as the
    segment that defined it. A relative binding adds its parameter to the
    value of ``base``, the binding in force in the previous segment.
    """

    parameter: Parameter
    mode: BindingMode
    segment: int
    dpar: str
    term: str
    expression: Optional[Expression] = None
    base: Optional["TermBinding"] = None

    @property
    def name(self) -> str:
        return self.parameter.name

    @property
    def is_intercept(self) -> bool:
        return self.term == INTERCEPT_KEY

    @property
    def is_relative(self) -> bool:
        return self.mode == BindingMode.RELATIVE

    def defined_in(self, segment: int) -> bool:
        """Whether this binding was created by ``segment`` rather than carried into it."""
        return self.segment == segment

    def __repr__(self) -> str:
        return f"TermBinding({self.name}, {self.mode.value}, segment={self.segment})"


_KINDS = {
    MU: (ParameterKind.INTERCEPT, ParameterKind.SLOPE),
    SIGMA: (ParameterKind.SIGMA_INTERCEPT, ParameterKind.SIGMA_SLOPE),
}


def _kinds(dpar: str) -> Tuple[ParameterKind, ParameterKind]:
    return _KINDS.get(dpar, (ParameterKind.AR_COEFFICIENT, ParameterKind.AR_SLOPE))


def parameter_name(dpar: str, label: str, segment: int) -> str:
    """
    Canonical name of a segment parameter.

    ``int`` labels are the dpar's intercept: ``int_2``, ``sigma_2``, ``ar1_2``.
    Slope labels are prefixed for sigma and AR: ``x_2``, ``sigma_x_2``, ``ar1_x_2``.
    """
    if dpar == MU:
        return f"{label}_{segment}"
    if label == "int":
        return f"{dpar}_{segment}"
    return f"{dpar}_{label}_{segment}"


@dataclass(frozen=True)
class ParameterTable:
    """
    Canonical parameters of a compiled model and their per-segment bindings.
    """

    segments: Tuple[Segment, ...]
    parameters: Tuple[Parameter, ...]
    dpars: Tuple[str, ...]
    par_x: str
    response: str
    trials: Optional[str] = None
    _bindings: Mapping[Tuple[int, str], Mapping[str, TermBinding]] = field(
        default_factory=dict, repr=False
    )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self.parameters)

    def __len__(self) -> int:
        return len(self.parameters)

    def __contains__(self, name: str) -> bool:
        return any(p.name == name for p in self.parameters)

    def __getitem__(self, name: str) -> Parameter:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        raise KeyError(name)

    @property
    def names(self) -> List[str]:
        """Canonical parameter names, varying offsets unexpanded."""
        return [p.name for p in self.parameters]

    @property
    def parameter_names(self) -> List[str]:
        """Canonical parameter names with varying levels expanded."""
        names = []
        for parameter in self.parameters:
            names.extend(parameter.expanded_names)
        return names

    @property
    def n_segments(self) -> int:
        return len(self.segments)

    @property
    def n_changepoints(self) -> int:
        return len(self.segments) - 1

    @property
    def ar_order(self) -> int:
        orders = [ar_order(d) for d in self.dpars if ar_order(d)]
        return max(orders) if orders else 0

    @property
    def has_sigma(self) -> bool:
        return SIGMA in self.dpars

    def of_kind(self, *kinds: ParameterKind) -> List[Parameter]:
        return [p for p in self.parameters if p.kind in kinds]

    @property
    def changepoints(self) -> List[Parameter]:
        return self.of_kind(ParameterKind.CHANGEPOINT)

    @property
    def varying(self) -> List[Parameter]:
        return self.of_kind(ParameterKind.VARYING)

    def spread_for(self, changepoint: int) -> Optional[Parameter]:
        for parameter in self.of_kind(ParameterKind.CHANGEPOINT_SPREAD):
            if parameter.segment == changepoint:
                return parameter
        return None

    def varying_for(self, changepoint: int) -> Optional[Parameter]:
        for parameter in self.varying:
            if parameter.segment == changepoint:
                return parameter
        return None

    def bindings(self, segment: int, dpar: str) -> Mapping[str, TermBinding]:
        """
        Term bindings in force for ``dpar`` in ``segment``, keyed by term key.

        Carried terms map to the same TermBinding object as in the segment
        that defined them. A dpar never specified up to ``segment`` has no
        bindings.
        """
        if not 1 <= segment <= len(self.segments):
            raise KeyError(f"segment {segment} out of range 1..{len(self.segments)}")
        return self._bindings.get((segment, dpar), {})

    def active_parameters(self, segment: int) -> List[str]:
        """Names of the parameters whose values shape ``segment``, in canonical order."""
        active = set()
        for dpar in self.dpars:
            active.update(self._dpar_active(segment, dpar))
        if segment > 1:
            k = segment - 1
            active.add(f"cp_{k}")
            for parameter in (self.spread_for(k), self.varying_for(k)):
                if parameter is not None:
                    active.add(parameter.name)
        return [p.name for p in self.parameters if p.name in active]

    def _dpar_active(self, segment: int, dpar: str) -> set:
        bindings = self.bindings(segment, dpar)
        active = set()
        for binding in bindings.values():
            while binding is not None:
                active.add(binding.name)
                binding = binding.base

        intercept = bindings.get(INTERCEPT_KEY)
        absolute = intercept is not None and intercept.defined_in(segment) and not intercept.is_relative
        if segment > 1 and not absolute:
            # Joined or relative level: the previous segment's end point
            active.update(self._dpar_active(segment - 1, dpar))
            previous = self.bindings(segment - 1, dpar)
            if segment > 2 and any(key != INTERCEPT_KEY for key in previous):
                active.add(f"cp_{segment - 2}")
        return active

    @property
    def categories(self) -> Dict[str, List[str]]:
        """Parameter names grouped for downstream filtering; varying levels expanded."""
        categories: Dict[str, List[str]] = {
            "population": [],
            "varying": [],
            "cp": [],
            "sigma": [],
            "ar": [],
            "int": [],
            "slope": [],
        }
        for parameter in self.parameters:
            names = list(parameter.expanded_names)
            categories[parameter.category].extend(names)
            if not parameter.is_varying:
                categories["population"].extend(names)
        return categories

    def to_records(self) -> List[Dict[str, object]]:
        """One row per parameter, for tabular export."""
        return [
            {
                "name": p.name,
                "kind": p.kind.value,
                "segment": p.segment,
                "dpar": p.dpar,
                "order": p.order,
                "relative": p.relative,
                "group": p.group,
                "category": p.category,
            }
            for p in self.parameters
        ]


class ParameterTableBuilder:
    """
    Builds a ParameterTable from parsed segments.

    Resolves, for every segment and dpar, whether each term is absolute,
    relative, suppressed or carried from an earlier segment.
    """

    def __init__(self, family: Family, par_x: Optional[str] = None,
                 group_levels: Optional[Mapping[str, Sequence]] = None):
        self.family = family
        self.par_x = par_x
        self.group_levels = group_levels or {}
        self.logger = get_logger(self.__class__.__name__)

    def build(self, segments: Sequence[Segment]) -> ParameterTable:
        segments = tuple(segments)
        if not segments:
            raise ModelSpecificationError(reason="a model needs at least one segment")

        first = segments[0]
        self._check_family(segments)
        par_x = self._infer_predictor(segments)
        variance_specs = self._variance_specs(segments)
        max_order = max((s.ar.order for s in segments if s.ar is not None), default=0)
        dpars = [MU]
        if self.family.has_sigma:
            dpars.append(SIGMA)
        dpars.extend(ar_dpar(k) for k in range(1, max_order + 1))

        bindings: Dict[Tuple[int, str], Dict[str, TermBinding]] = {}
        segment_parameters: List[Parameter] = []
        for segment in segments:
            for dpar in dpars:
                terms = self._dpar_terms(segment, dpar, variance_specs)
                previous = bindings.get((segment.index - 1, dpar), {})
                current, created = self._resolve(segment.index, dpar, terms, previous)
                bindings[(segment.index, dpar)] = current
                segment_parameters.extend(created)

        changepoints, spreads, varying = self._changepoint_parameters(segments)
        parameters = tuple(changepoints + spreads + segment_parameters + varying)
        self._check_unique(parameters)
        self._warn_sigma_and_ar(segments)

        table = ParameterTable(
            segments=segments,
            parameters=parameters,
            dpars=tuple(dpars),
            par_x=par_x,
            response=first.response,
            trials=first.trials,
            _bindings=bindings,
        )
        self.logger.debug(
            f"Built parameter table: {len(parameters)} parameters",
            segments=len(segments),
            dpars=",".join(dpars),
        )
        return table

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _dpar_terms(
        self, segment: Segment, dpar: str, variance_specs: Mapping[int, VarianceTerm]
    ) -> Optional[Tuple[Term, ...]]:
        """Terms a segment writes for ``dpar``; None when the dpar is not mentioned."""
        if dpar == MU:
            return segment.terms
        if dpar == SIGMA:
            spec = variance_specs.get(segment.index)
            return spec.terms if spec is not None else None
        order = ar_order(dpar)
        if segment.ar is not None and segment.ar.order >= order:
            return segment.ar.terms
        return None

    def _resolve(
        self,
        index: int,
        dpar: str,
        terms: Optional[Tuple[Term, ...]],
        previous: Mapping[str, TermBinding],
    ) -> Tuple[Dict[str, TermBinding], List[Parameter]]:
        current = dict(previous)
        created: List[Parameter] = []
        if terms is None:
            return current, created

        intercept_kind, slope_kind = _kinds(dpar)
        # Intercept first, then slopes in formula order
        ordered = sorted(terms, key=lambda t: 0 if isinstance(inner_term(t), InterceptTerm) else 1)
        for term in ordered:
            inner = inner_term(term)
            key = inner.key
            if is_suppressed(term):
                current.pop(key, None)
                continue

            relative = is_relative(term)
            base = previous.get(key)
            if relative and base is None and isinstance(inner, PredictorTerm):
                raise ModelSpecificationError(
                    parameter=inner.to_string(),
                    reason=(
                        f"rel({inner.to_string()}) in segment {index} has no earlier "
                        f"'{inner.to_string()}' term to be relative to"
                    ),
                    suggestions=[
                        f"Write '{inner.to_string()}' without rel() in segment {index}",
                        "Add the term to an earlier segment first",
                    ],
                )

            is_slope = isinstance(inner, PredictorTerm)
            parameter = Parameter(
                name=parameter_name(dpar, term_label(term), index),
                kind=slope_kind if is_slope else intercept_kind,
                segment=index,
                dpar=dpar,
                term=key,
                relative=relative,
            )
            current[key] = TermBinding(
                parameter=parameter,
                mode=BindingMode.RELATIVE if relative else BindingMode.ABSOLUTE,
                segment=index,
                dpar=dpar,
                term=key,
                expression=inner.expression if is_slope else None,
                base=base if relative else None,
            )
            created.append(parameter)
        return current, created

    def _changepoint_parameters(
        self, segments: Tuple[Segment, ...]
    ) -> Tuple[List[Parameter], List[Parameter], List[Parameter]]:
        changepoints, spreads, varying = [], [], []
        for segment in segments[1:]:
            k = segment.index - 1
            changepoints.append(Parameter(f"cp_{k}", ParameterKind.CHANGEPOINT, k))
            if segment.varying is None:
                continue
            group = segment.varying.group
            levels = tuple(str(level) for level in self.group_levels.get(group, ()))
            spreads.append(Parameter(f"cp_{k}_sd", ParameterKind.CHANGEPOINT_SPREAD, k, group=group))
            varying.append(
                Parameter(f"cp_{k}_{group}", ParameterKind.VARYING, k, group=group, levels=levels)
            )
        return changepoints, spreads, varying

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _variance_specs(self, segments: Tuple[Segment, ...]) -> Dict[int, VarianceTerm]:
        specs = {s.index: s.variance for s in segments if s.variance is not None}
        if self.family.has_sigma and 1 not in specs:
            specs[1] = VarianceTerm((InterceptTerm(True),))
        return specs

    def _check_family(self, segments: Tuple[Segment, ...]) -> None:
        name = self.family.name
        first = segments[0]
        for segment in segments:
            if segment.variance is not None and not self.family.has_sigma:
                raise ModelSpecificationError(
                    formula=segment.formula,
                    reason=f"family '{name}' has no sigma parameter",
                    suggestions=["Remove sigma() terms or use family='gaussian'"],
                )
            if segment.ar is not None and not self.family.supports_ar:
                raise ModelSpecificationError(
                    formula=segment.formula,
                    reason=f"ar() is not supported for family '{name}'",
                    suggestions=["AR terms are available for gaussian, binomial and poisson"],
                )
        if self.family.needs_trials and first.trials is None:
            raise ModelSpecificationError(
                formula=first.formula,
                reason=f"family '{name}' needs a trials column",
                suggestions=[f"Write the response as '{first.response} | trials(N) ~ ...'"],
            )
        if first.trials is not None and not self.family.needs_trials:
            raise ModelSpecificationError(
                formula=first.formula,
                reason=f"trials() is only used by the binomial family, not '{name}'",
            )

    def _infer_predictor(self, segments: Tuple[Segment, ...]) -> str:
        variables: List[str] = []
        for segment in segments:
            for name in segment.variables():
                if name not in variables:
                    variables.append(name)

        if len(variables) > 1:
            raise ModelSpecificationError(
                reason=f"all segments must use one predictor, found {variables}",
                suggestions=[
                    "Use a single predictor variable across all segments",
                    "Transformations of the predictor (e.g. I(x^2), log(x)) are allowed",
                ],
            )
        if variables and self.par_x is not None and variables[0] != self.par_x:
            raise ModelSpecificationError(
                parameter=variables[0],
                reason=f"formulas use '{variables[0]}' but par_x is '{self.par_x}'",
            )
        if variables:
            return variables[0]
        if self.par_x is None:
            raise ModelSpecificationError(
                reason="the formulas do not mention a predictor, so it cannot be inferred",
                suggestions=["Pass par_x, e.g. compile_model(..., par_x='x')"],
            )
        return self.par_x

    def _check_unique(self, parameters: Tuple[Parameter, ...]) -> None:
        seen: Dict[str, Parameter] = {}
        for parameter in parameters:
            if parameter.name in seen:
                raise ModelSpecificationError(
                    parameter=parameter.name,
                    reason=(
                        f"parameter name '{parameter.name}' is used by both a "
                        f"{seen[parameter.name].kind.value} and a {parameter.kind.value}"
                    ),
                    suggestions=[
                        "Rename the predictor or grouping variable so names do not collide",
                        "Names such as 'int', 'sigma', 'ar1' and 'cp' are reserved prefixes",
                    ],
                )
            seen[parameter.name] = parameter

    def _warn_sigma_and_ar(self, segments: Tuple[Segment, ...]) -> None:
        later = segments[1:]
        if any(s.variance is not None for s in later) and any(s.ar is not None for s in later):
            self.logger.warning(
                "Model changes both sigma and AR terms after segment 1; "
                "the two sub-models are combined independently in the likelihood"
            )


def build_parameter_table(
    segments: Sequence[Segment],
    family: Family,
    par_x: Optional[str] = None,
    group_levels: Optional[Mapping[str, Sequence]] = None,
) -> ParameterTable:
    """
    Build the parameter table of a segmented model.

    Args:
        segments: Parsed segments in order
        family: Response family
        par_x: Predictor name; inferred from slope terms when omitted
        group_levels: Levels of each grouping variable, used to expand
            varying offset names

    Returns:
        ParameterTable with canonical names and resolved bindings

    Raises:
        ModelSpecificationError: On name collisions, mixed predictors,
            family mismatches or relative terms without a base
    """
    return ParameterTableBuilder(family, par_x, group_levels).build(segments)


def collect_varying_values(values: Mapping[str, object], name: str) -> Dict[str, float]:
    """
    Offsets of a varying parameter from a value mapping, keyed by level.

    Accepts either a nested mapping (``{"cp_1_id": {"a": -10}}``) or expanded
    names (``{"cp_1_id[a]": -10}``). Levels without a value are omitted.
    """
    offsets: Dict[str, float] = {}
    nested = values.get(name)
    if isinstance(nested, Mapping):
        offsets.update({str(level): float(value) for level, value in nested.items()})
    elif nested is not None:
        raise ModelSpecificationError(
            parameter=name,
            reason=f"values for '{name}' must map group levels to offsets",
            suggestions=[f"Use {{'{name}': {{'level': offset}}}} or '{name}[level]' keys"],
        )
    prefix = f"{name}["
    for key, value in values.items():
        if isinstance(key, str) and key.startswith(prefix) and key.endswith("]"):
            offsets[key[len(prefix):-1]] = float(value)
    return offsets
