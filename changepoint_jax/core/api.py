"""
Main API functions for changepoint-jax.

High-level entry points: compile segment formulas into a JAGS model, a prior
table and a simulator, and simulate from a compiled model.
"""

from typing import Any, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from ..config.settings import ChangepointJaxConfig, get_default_config
from ..data.summary import DataSummary, summarize_data
from ..formulas.parser import FormulaParser
from ..models.base import CompiledModel
from ..models.codegen import generate_jags
from ..models.constraints import derive_constraints
from ..models.family import Family, get_family
from ..models.parameters import build_parameter_table
from ..models.predictor import build_predictor
from ..models.priors import Prior, synthesize_priors
from ..utils.logging import get_logger, log_function_call
from .exceptions import ModelSpecificationError

logger = get_logger(__name__)

PriorOverrides = Mapping[str, Union[Prior, str, int, float]]


@log_function_call
def compile_model(
    segments: Union[str, Sequence[str]],
    prior: Optional[PriorOverrides] = None,
    family: Union[str, Family] = "gaussian",
    link: Optional[str] = None,
    data: Optional[Union[DataSummary, pd.DataFrame]] = None,
    par_x: Optional[str] = None,
    config: Optional[ChangepointJaxConfig] = None,
) -> CompiledModel:
    """
    Compile segment formulas into a sampler-ready model.

    Args:
        segments: Ordered segment formulas, e.g. ``["y ~ 1", "~ 0 + x"]``
        prior: Prior overrides: parameter name to JAGS text, a number
            (fixes the parameter) or a Prior instance
        family: Response family name or Family instance
        link: Link name (default: the family's default link)
        data: DataSummary, or a DataFrame to summarize
        par_x: Predictor name; inferred from slope terms when omitted
        config: Configuration (default: the process default)

    Returns:
        CompiledModel with code, priors, parameter names and a simulator

    Raises:
        ParseError, DuplicateTermError: On malformed formulas
        ModelSpecificationError: On inconsistent family, link, predictor,
            group data or prior overrides

    Examples:
        >>> summary = DataSummary(par_x="x", min_x=1, max_x=100, sd_y=5)
        >>> model = compile_model(["y ~ 1 + ar(1)", "~ 0 + x"], data=summary)
        >>> model.parameter_names
        ['cp_1', 'int_1', 'sigma_1', 'ar1_1', 'x_2']

        >>> model = compile_model(
        ...     ["y ~ 1", "1 + (1 | id) ~ rel(1)"],
        ...     prior={"cp_1": "dunif(20, 80)"},
        ...     data=df,
        ... )
    """
    config = config or get_default_config()
    formulas = (segments,) if isinstance(segments, str) else tuple(segments)

    parsed = FormulaParser().parse_segments(formulas)
    logger.debug(f"Parsed {len(parsed)} segments")

    family = get_family(family)
    resolved_link = family.resolve_link(link)

    if data is None:
        raise ModelSpecificationError(
            reason="a data summary is required to compile a model",
            suggestions=[
                "Pass data=summarize_data(df, par_x, response, groups)",
                "Or pass data=DataSummary(par_x=..., min_x=..., max_x=...)",
            ],
        )
    if isinstance(data, pd.DataFrame):
        data = _summarize_frame(data, parsed, par_x)
    par_x = par_x or data.par_x

    groups = [s.group for s in parsed if s.group is not None]
    missing = [g for g in groups if g not in data.group_levels]
    if missing:
        raise ModelSpecificationError(
            parameter=missing[0],
            reason=f"no levels known for grouping variable(s) {missing}",
            suggestions=[f"Summarize the data with groups={groups}"],
        )

    table = build_parameter_table(parsed, family, par_x, data.group_levels)
    constraints = derive_constraints(table)
    priors = synthesize_priors(table, constraints, family, resolved_link, prior, config.priors)
    ir = build_predictor(table)
    code = generate_jags(ir, table, priors, constraints, family, resolved_link, config.codegen)

    model = CompiledModel(
        formulas=formulas,
        segments=parsed,
        family=family,
        link=resolved_link,
        data=data,
        table=table,
        constraints=constraints,
        priors=priors,
        ir=ir,
        code=code,
        config=config,
    )

    logger.info(
        "Compiled segmented model",
        family=family.name,
        link=resolved_link.name.value,
        segments=len(parsed),
        parameters=len(table),
    )
    return model


def _summarize_frame(df: pd.DataFrame, segments, par_x: Optional[str]) -> DataSummary:
    """Summarize a DataFrame using the names the formulas mention."""
    variables = [v for s in segments for v in s.variables()]
    predictor = par_x or (variables[0] if variables else None)
    if predictor is None:
        raise ModelSpecificationError(
            reason="cannot infer the predictor column from the formulas",
            suggestions=["Pass par_x explicitly"],
        )
    groups = [s.group for s in segments if s.group is not None]
    return summarize_data(df, predictor, segments[0].response, groups)


def simulate(
    model: CompiledModel,
    x: Any,
    params: Mapping[str, Any],
    **kwargs,
) -> np.ndarray:
    """
    Simulate responses from a compiled model.

    Args:
        model: Compiled model
        x: Predictor values
        params: Parameter values by name
        **kwargs: ``groups``, ``trials``, ``add_noise`` and ``seed``

    Returns:
        Simulated responses as a numpy array
    """
    return model.simulate(x, params, **kwargs)
