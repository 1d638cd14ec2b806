"""
Tests for model artifacts and parameter table export.
"""

import json

import pandas as pd
import pytest

from changepoint_jax.config.settings import ChangepointJaxConfig
from changepoint_jax.core.api import compile_model
from changepoint_jax.core.export import ModelArtifact, export_parameter_table


@pytest.fixture
def overridden_model(grouped_summary):
    config = ChangepointJaxConfig(priors={"slope_scale": 2.0}, codegen={"indent": 3})
    return compile_model(
        ["y ~ 1 + x", "1 + (1 | id) ~ rel(1) + ar(1)"],
        prior={"cp_1": "dunif(20, 80)", "int_1": 4},
        data=grouped_summary,
        config=config,
    )


class TestModelArtifact:
    """Test capturing, saving and recompiling artifacts."""

    def test_from_model(self, overridden_model):
        artifact = overridden_model.to_artifact()

        assert artifact.family == "gaussian"
        assert artifact.link == "identity"
        assert artifact.groups == ["id"]
        assert artifact.parameter_names == overridden_model.parameter_names
        assert artifact.prior_overrides == {"cp_1": "dunif(20, 80)", "int_1": "4"}
        assert artifact.constants["cp_order_1_"] == 1.0
        assert artifact.settings["codegen"]["indent"] == 3

    @pytest.mark.parametrize("suffix", [".json", ".yaml", ".yml"])
    def test_save_and_load(self, overridden_model, tmp_path, suffix):
        artifact = overridden_model.to_artifact()
        path = artifact.save(tmp_path / f"model{suffix}")

        assert path.exists()
        assert ModelArtifact.load(path) == artifact

    def test_json_is_plain(self, overridden_model, tmp_path):
        path = overridden_model.to_artifact().save(tmp_path / "model.json")
        with open(path) as f:
            raw = json.load(f)

        assert raw["version"] == 1
        assert raw["code"] == overridden_model.code

    def test_recompile_is_identical(self, overridden_model, tmp_path):
        path = overridden_model.to_artifact().save(tmp_path / "model.yaml")
        model = ModelArtifact.load(path).recompile()

        assert model.code == overridden_model.code
        assert model.prior_text == overridden_model.prior_text
        assert model.parameter_names == overridden_model.parameter_names

    def test_artifact_sampler_data(self, overridden_model, sample_frame):
        artifact = overridden_model.to_artifact()
        data = artifact.sampler_data(sample_frame)

        assert data["cp_order_1_"] == 1.0
        assert data["n_unique_id"] == 3

    def test_unsupported_suffix(self, overridden_model, tmp_path):
        with pytest.raises(ValueError):
            overridden_model.to_artifact().save(tmp_path / "model.txt")

    def test_load_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            ModelArtifact.load(tmp_path / "absent.json")


class TestParameterExport:
    """Test tabular export of the parameter table."""

    def test_frame(self, ar_model):
        frame = export_parameter_table(ar_model)

        assert list(frame["name"]) == ["cp_1", "int_1", "sigma_1", "ar1_1", "x_2"]
        assert frame.loc[frame["name"] == "ar1_1", "prior"].item() == "dunif(-1, 1)"
        assert not frame["overridden"].any()

    def test_values_and_csv(self, ar_model, ar_params, tmp_path):
        path = tmp_path / "out" / "parameters.csv"
        frame = export_parameter_table(ar_model, export_file=path, values=ar_params)

        assert frame.loc[frame["name"] == "x_2", "value"].item() == 0.5
        written = pd.read_csv(path)
        assert list(written["name"]) == list(frame["name"])
