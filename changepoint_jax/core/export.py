"""
Core export functionality for changepoint-jax.

Persists compiled models as artifacts (JSON or YAML) holding everything a
sampler run needs, and exports parameter tables to CSV.
"""

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
import yaml
from pydantic import BaseModel, ConfigDict, Field

from ..config.settings import ChangepointJaxConfig
from ..data.summary import DataSummary, build_sampler_data
from ..utils.logging import get_logger
from .api import compile_model

logger = get_logger(__name__)

ARTIFACT_VERSION = 1

_JSON_SUFFIXES = (".json",)
_YAML_SUFFIXES = (".yaml", ".yml")


class ModelArtifact(BaseModel):
    """
    Persisted compiled model.

    Holds the generated code, priors, parameter names and data constants, so
    a sampler can be driven from the artifact alone. ``recompile()`` rebuilds
    the full CompiledModel (including its simulator) from the formulas, the
    prior overrides and the stored data summary.
    """
    model_config = ConfigDict(frozen=True)

    version: int = ARTIFACT_VERSION
    formulas: List[str]
    family: str
    link: str
    par_x: str
    response: str
    trials: Optional[str] = None
    groups: List[str] = Field(default_factory=list)
    parameter_names: List[str]
    priors: Dict[str, str]
    prior_overrides: Dict[str, str] = Field(default_factory=dict)
    constants: Dict[str, float] = Field(default_factory=dict)
    code: str
    data: Dict[str, Any]
    settings: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_model(cls, model) -> "ModelArtifact":
        """Capture a CompiledModel."""
        prior_text = model.prior_text
        settings = {}
        if model.config is not None:
            settings = {
                section: getattr(model.config, section).model_dump(mode="json")
                for section in ("priors", "codegen", "simulation")
            }
        return cls(
            formulas=list(model.formulas),
            family=model.family.name,
            link=model.link.name.value,
            par_x=model.par_x,
            response=model.response,
            trials=model.table.trials,
            groups=model.groups,
            parameter_names=model.parameter_names,
            priors=prior_text,
            prior_overrides={name: prior_text[name] for name in model.priors.overridden},
            constants={k: float(v) for k, v in model.data_constants().items()},
            code=model.code,
            data=model.data.to_dict(),
            settings=settings,
        )

    @property
    def data_summary(self) -> DataSummary:
        return DataSummary.from_dict(self.data)

    def sampler_data(self, df: pd.DataFrame) -> Dict[str, Any]:
        """Data list for a sampler run on ``df``; see CompiledModel.sampler_data."""
        columns = [self.par_x, self.response]
        if self.trials:
            columns.append(self.trials)
        return build_sampler_data(
            df,
            self.data_summary,
            columns=columns,
            groups=self.groups,
            constants=self.constants,
        )

    def recompile(self, config=None):
        """
        Rebuild the CompiledModel this artifact was captured from.

        Args:
            config: Configuration for the rebuild (default: the stored
                prior, codegen and simulation settings)

        Returns:
            CompiledModel
        """
        if config is None and self.settings:
            config = ChangepointJaxConfig(**self.settings)

        model = compile_model(
            self.formulas,
            prior=self.prior_overrides or None,
            family=self.family,
            link=self.link,
            data=self.data_summary,
            par_x=self.par_x,
            config=config,
        )
        if model.code != self.code:
            logger.warning(
                "Recompiled code differs from the stored artifact; "
                "check the prior and codegen settings"
            )
        return model

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    def save(self, path: Union[str, Path]) -> Path:
        """
        Write the artifact as JSON or YAML, chosen by file suffix.

        Raises:
            ValueError: On an unsupported suffix
        """
        path = Path(path)
        suffix = path.suffix.lower()
        path.parent.mkdir(parents=True, exist_ok=True)
        if suffix in _JSON_SUFFIXES:
            with open(path, "w") as f:
                json.dump(self.to_dict(), f, indent=2)
        elif suffix in _YAML_SUFFIXES:
            with open(path, "w") as f:
                yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        else:
            raise ValueError(f"Unsupported artifact format '{suffix}'; use .json, .yaml or .yml")
        logger.info(f"Model artifact saved to: {path}")
        return path

    @classmethod
    def load(cls, path: Union[str, Path]) -> "ModelArtifact":
        """
        Read an artifact written by ``save``.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: On an unsupported suffix
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Model artifact not found: {path}")
        suffix = path.suffix.lower()
        with open(path, "r") as f:
            if suffix in _JSON_SUFFIXES:
                data = json.load(f)
            elif suffix in _YAML_SUFFIXES:
                data = yaml.safe_load(f)
            else:
                raise ValueError(f"Unsupported artifact format '{suffix}'; use .json, .yaml or .yml")
        return cls.model_validate(data)


def export_parameter_table(
    model,
    export_file: Optional[Union[str, Path]] = None,
    values: Optional[Dict[str, float]] = None,
) -> pd.DataFrame:
    """
    Export the parameter table of a compiled model.

    Args:
        model: CompiledModel
        export_file: Optional CSV path to save the table
        values: Optional parameter values (e.g. posterior means) added as a
            ``value`` column

    Returns:
        DataFrame with one row per parameter
    """
    frame = model.parameter_frame()
    if values is not None:
        frame["value"] = [values.get(name) for name in frame["name"]]

    if export_file:
        export_path = Path(export_file)
        export_path.parent.mkdir(parents=True, exist_ok=True)
        frame.to_csv(export_path, index=False)
        logger.info(f"Parameter table exported to: {export_path}")
    return frame
