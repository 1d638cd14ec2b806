"""
Data summaries for changepoint-jax.

The compiler never sees raw data. It needs the observed predictor range
(MINX, MAXX), the response location and spread (MEANY, SDY), the number of
observations and the levels of each grouping variable. DataSummary holds
exactly that, and build_sampler_data assembles the data list a sampler needs.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from ..core.exceptions import DataFormatError
from ..utils.logging import get_logger
from ..utils.validation import validate_array_dimensions, validate_finite, validate_levels


logger = get_logger(__name__)


@dataclass(frozen=True)
class DataSummary:
    """
    Range and scale summary of the data a model will be fitted to.

    Attributes:
        par_x: Predictor column
        min_x: Smallest observed predictor value (MINX)
        max_x: Largest observed predictor value (MAXX)
        mean_y: Response mean (MEANY)
        sd_y: Response standard deviation (SDY)
        n_obs: Number of observations
        group_levels: Levels of each grouping variable, in coding order
        response: Response column, if known
    """

    par_x: str
    min_x: float
    max_x: float
    mean_y: float = 0.0
    sd_y: float = 1.0
    n_obs: int = 0
    group_levels: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    response: Optional[str] = None

    def __post_init__(self):
        for name in ("min_x", "max_x", "mean_y", "sd_y"):
            value = float(getattr(self, name))
            if not np.isfinite(value):
                raise DataFormatError(specific_issue=f"{name} must be finite, got {value}")
            object.__setattr__(self, name, value)

        if not self.min_x < self.max_x:
            raise DataFormatError(
                specific_issue=(
                    f"degenerate predictor range: min {self.min_x} is not below max {self.max_x}"
                ),
                suggestions=[
                    f"'{self.par_x}' must take at least two distinct values",
                    "Check that the predictor column was parsed as numbers",
                ],
            )
        if self.sd_y < 0:
            raise DataFormatError(specific_issue=f"sd_y must be non-negative, got {self.sd_y}")

        levels = {
            str(group): validate_levels(values, str(group))
            for group, values in dict(self.group_levels).items()
        }
        object.__setattr__(self, "group_levels", levels)
        object.__setattr__(self, "n_obs", int(self.n_obs))

    def constants(self) -> Dict[str, float]:
        """Named data constants that priors and model code may reference."""
        return {
            "MINX": self.min_x,
            "MAXX": self.max_x,
            "MEANY": self.mean_y,
            "SDY": self.sd_y,
        }

    def levels(self, group: str) -> Tuple[str, ...]:
        """
        Levels of a grouping variable.

        Raises:
            DataFormatError: If the group was not summarized
        """
        if group not in self.group_levels:
            raise DataFormatError(
                missing_columns=[group],
                suggestions=[f"Summarize the data with groups=['{group}']"],
            )
        return self.group_levels[group]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "par_x": self.par_x,
            "min_x": self.min_x,
            "max_x": self.max_x,
            "mean_y": self.mean_y,
            "sd_y": self.sd_y,
            "n_obs": self.n_obs,
            "group_levels": {k: list(v) for k, v in self.group_levels.items()},
            "response": self.response,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DataSummary":
        return cls(
            par_x=data["par_x"],
            min_x=data["min_x"],
            max_x=data["max_x"],
            mean_y=data.get("mean_y", 0.0),
            sd_y=data.get("sd_y", 1.0),
            n_obs=data.get("n_obs", 0),
            group_levels={k: tuple(v) for k, v in (data.get("group_levels") or {}).items()},
            response=data.get("response"),
        )


def _require_columns(df: pd.DataFrame, columns: Iterable[Optional[str]]) -> None:
    missing = [c for c in columns if c is not None and c not in df.columns]
    if missing:
        raise DataFormatError(missing_columns=missing)


def summarize_data(
    df: pd.DataFrame,
    par_x: str,
    response: Optional[str] = None,
    groups: Sequence[str] = (),
) -> DataSummary:
    """
    Summarize a data frame for compilation.

    Args:
        df: Data with one row per observation
        par_x: Predictor column
        response: Response column; without it MEANY = 0 and SDY = 1
        groups: Grouping columns of varying change points

    Returns:
        DataSummary

    Raises:
        DataFormatError: On missing columns, non-finite or degenerate predictors
    """
    if not isinstance(df, pd.DataFrame):
        raise DataFormatError(
            specific_issue=f"expected a pandas DataFrame, got {type(df).__name__}",
            suggestions=["Wrap the data with pd.DataFrame(...)"],
        )
    groups = list(groups)
    _require_columns(df, [par_x, response, *groups])

    x = validate_array_dimensions(df[par_x].to_numpy(), name=par_x)
    validate_finite(x, par_x)

    mean_y, sd_y = 0.0, 1.0
    if response is not None:
        y = pd.to_numeric(df[response], errors="coerce").to_numpy(dtype=float)
        y = y[np.isfinite(y)]
        if len(y):
            mean_y = float(np.mean(y))
            sd_y = float(np.std(y, ddof=1)) if len(y) > 1 else 0.0

    group_levels = {}
    for group in groups:
        if df[group].isna().any():
            raise DataFormatError(specific_issue=f"grouping column '{group}' has missing values")
        categories = pd.Categorical(df[group].astype(str)).categories
        group_levels[group] = tuple(str(level) for level in categories)

    summary = DataSummary(
        par_x=par_x,
        min_x=float(x.min()),
        max_x=float(x.max()),
        mean_y=mean_y,
        sd_y=sd_y,
        n_obs=len(df),
        group_levels=group_levels,
        response=response,
    )
    logger.debug(
        "Summarized data",
        par_x=par_x,
        n_obs=summary.n_obs,
        min_x=summary.min_x,
        max_x=summary.max_x,
    )
    return summary


def encode_groups(values: Any, levels: Sequence[str], group: str) -> np.ndarray:
    """
    Code group labels as 1-based integers in level order.

    Raises:
        DataFormatError: On labels not among the levels
    """
    labels = pd.Series(np.asarray(values)).astype(str)
    index = {level: i for i, level in enumerate(levels, 1)}
    unknown = sorted(set(labels) - set(index))
    if unknown:
        raise DataFormatError(
            specific_issue=f"grouping column '{group}' has unknown levels {unknown}",
            suggestions=[f"Known levels: {list(levels)}"],
        )
    return labels.map(index).to_numpy(dtype=int)


def build_sampler_data(
    df: pd.DataFrame,
    summary: DataSummary,
    columns: Sequence[str],
    groups: Sequence[str] = (),
    constants: Optional[Mapping[str, float]] = None,
) -> Dict[str, Any]:
    """
    Assemble the data list of a sampler run.

    Args:
        df: Observations
        summary: Summary the model was compiled against
        columns: Numeric columns to pass through (predictor, response, trials)
        groups: Grouping columns, passed as 1-based codes with ``n_unique_{group}``
        constants: Extra named constants (MINX, MAXX, SDY, ordering checks, ...)

    Returns:
        Name to numpy array or scalar
    """
    _require_columns(df, [*columns, *groups])
    data: Dict[str, Any] = {}
    for column in columns:
        data[column] = validate_array_dimensions(df[column].to_numpy(), name=column)
    for group in groups:
        levels = summary.levels(group)
        data[group] = encode_groups(df[group].to_numpy(), levels, group)
        data[f"n_unique_{group}"] = len(levels)
    data.update(dict(constants or {}))
    return data
