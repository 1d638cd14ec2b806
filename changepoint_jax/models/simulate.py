"""
Simulation for changepoint-jax.

Evaluates the predictor IR numerically with jax.numpy: change points per
observation, segment membership, per-dpar predictors, the AR residual
recursion (jax.lax.scan) and response noise (jax.random with an explicit
seed). Given the same inputs, repeated calls return identical arrays.
"""

from functools import partial
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import jax
import jax.numpy as jnp
import numpy as np

from ..config.settings import SimulationConfig
from ..core.exceptions import (
    LinkDomainError,
    MissingParameterError,
    ModelSpecificationError,
)
from ..utils.logging import get_logger
from ..utils.validation import validate_array_dimensions, validate_finite
from .constraints import MAXX, MINX, ConstraintSet, ConstraintType, changepoint_margin
from .family import Family, Link, Support, link_scale_response
from .parameters import (
    MU,
    SIGMA,
    ParameterKind,
    ParameterTable,
    ar_dpar,
    collect_varying_values,
)
from .predictor import PredictorIR, evaluate_predictor

GroupData = Union[Mapping[str, Any], Any]


def select_segment(values: Dict[int, jnp.ndarray], segment: jnp.ndarray) -> jnp.ndarray:
    """Pick each observation's value from the column of its segment."""
    stacked = jnp.stack([values[s] for s in sorted(values)], axis=1)
    return jnp.take_along_axis(stacked, (segment - 1)[:, None], axis=1)[:, 0]


@partial(jax.jit, static_argnames=("inverse", "forward", "sample", "domain", "per_trial"))
def _ar_recursion(
    eta: jnp.ndarray,
    coefficients: jnp.ndarray,
    sigma: jnp.ndarray,
    trials: jnp.ndarray,
    keys: jnp.ndarray,
    inverse: Callable,
    forward: Callable,
    sample: Callable,
    domain: Support,
    per_trial: bool,
) -> Tuple[jnp.ndarray, jnp.ndarray, jnp.ndarray]:
    """
    Sequential AR simulation.

    The carry holds the most recent residuals, newest first, so observation i
    sees only residuals of observations before i. The first ``order``
    observations use the partial sums of a zero-initialized buffer. Boundary
    counts are moved into the link domain before taking residuals.
    """
    order = coefficients.shape[1]

    def step(buffer, inputs):
        eta_i, coef_i, sigma_i, trials_i, key_i = inputs
        mean_i = inverse(eta_i + jnp.dot(coef_i, buffer))
        y_i = sample(key_i, mean_i, sigma_i, trials_i)
        observed = link_scale_response(y_i, trials_i, domain, per_trial)
        resid_i = forward(observed) - eta_i
        buffer = jnp.concatenate([resid_i[None], buffer[:-1]])
        return buffer, (y_i, mean_i, resid_i)

    init = jnp.zeros((order,), dtype=eta.dtype)
    _, (y, mean, resid) = jax.lax.scan(step, init, (eta, coefficients, sigma, trials, keys))
    return y, mean, resid


class Simulator:
    """
    Simulate responses from a compiled segmented model.

    Call as ``simulator(x, params, groups=None, trials=None, add_noise=True, seed=0)``.
    ``params`` maps parameter names to values. Varying offsets are given as
    ``{"cp_1_id": {"a": -10, "b": 10}}`` or ``{"cp_1_id[a]": -10}``; levels
    without a value get offset 0. Observation indices in errors are 0-based.

    Without noise the AR correction is zero (every residual is zero) and the
    result equals ``fitted``.
    """

    def __init__(
        self,
        table: ParameterTable,
        ir: PredictorIR,
        constraints: ConstraintSet,
        family: Family,
        link: Link,
        constants: Optional[Mapping[str, float]] = None,
        config: Optional[SimulationConfig] = None,
    ):
        self.table = table
        self.ir = ir
        self.constraints = constraints
        self.family = family
        self.link = link
        self.constants = dict(constants or {})
        self.config = config or SimulationConfig()
        self.logger = get_logger(self.__class__.__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def required_parameters(self) -> List[str]:
        """Parameters without which simulation is impossible, in canonical order."""
        optional = (ParameterKind.CHANGEPOINT_SPREAD, ParameterKind.VARYING)
        return [p.name for p in self.table if p.kind not in optional]

    def __call__(
        self,
        x: Any,
        params: Mapping[str, Any],
        *,
        groups: Optional[GroupData] = None,
        trials: Optional[Any] = None,
        add_noise: Optional[bool] = None,
        seed: Optional[int] = None,
    ) -> np.ndarray:
        """
        Simulate one response per predictor value.

        Raises:
            MissingParameterError: If a required parameter has no value
            ConstraintViolationError: If population change points are not increasing
            LinkDomainError: On non-positive sigma, out-of-support means or
                non-finite link residuals
            ModelSpecificationError: If group or trials data is missing
        """
        add_noise = self.config.add_noise if add_noise is None else add_noise
        seed = self.config.default_seed if seed is None else seed

        state = self._prepare(x, params, groups, trials, require_trials=add_noise)
        if not add_noise:
            return self._central(state)

        if SIGMA in self.ir:
            self._check_sigma(np.asarray(state["sigma"]), np.asarray(state["segment"]))

        key = jax.random.PRNGKey(int(seed))
        if self.table.ar_order:
            y = self._simulate_ar(state, key)
        else:
            mean = self._central(state)
            y = self.family.sample(key, jnp.asarray(mean), state["sigma"], state["trials"])

        self.logger.debug("Simulated responses", n=len(state["x"]), seed=seed)
        return np.asarray(y, dtype=float)

    def fitted(
        self,
        x: Any,
        params: Mapping[str, Any],
        *,
        groups: Optional[GroupData] = None,
    ) -> np.ndarray:
        """Noise-free central tendency (inverse link of the linear predictor)."""
        return self._central(self._prepare(x, params, groups, None, require_trials=False))

    def segments(
        self, x: Any, params: Mapping[str, Any], *, groups: Optional[GroupData] = None
    ) -> np.ndarray:
        """1-based segment index of every observation."""
        state = self._prepare(x, params, groups, None, require_trials=False)
        return np.asarray(state["segment"], dtype=int)

    def changepoints(
        self, x: Any, params: Mapping[str, Any], *, groups: Optional[GroupData] = None
    ) -> np.ndarray:
        """Per-observation change point locations, shape ``(n, n_changepoints)``."""
        state = self._prepare(x, params, groups, None, require_trials=False)
        n = len(state["x"])
        columns = [
            jnp.broadcast_to(state["env"][name], (n,)) for name in self.ir.changepoints
        ]
        if not columns:
            return np.zeros((n, 0))
        return np.asarray(jnp.stack(columns, axis=1), dtype=float)

    # ------------------------------------------------------------------
    # Preparation
    # ------------------------------------------------------------------

    def _prepare(
        self,
        x: Any,
        params: Mapping[str, Any],
        groups: Optional[GroupData],
        trials: Optional[Any],
        require_trials: bool = True,
    ) -> Dict[str, Any]:
        par_x = self.table.par_x
        x = validate_array_dimensions(x, name=par_x)
        validate_finite(x, par_x)
        n = len(x)

        values = self._resolve_values(params)
        self.constraints.check(values, types=[ConstraintType.ORDERING])

        constants = {MINX: float(np.min(x)), MAXX: float(np.max(x))}
        constants.update({k: v for k, v in self.constants.items() if k in (MINX, MAXX)})

        env: Dict[str, Any] = dict(values)
        env[par_x] = jnp.asarray(x)
        env[MINX] = constants[MINX]
        for k in range(1, self.table.n_changepoints + 1):
            env[f"cp_{k}"] = self._changepoint(k, values, params, groups, constants, n)

        segment = jnp.ones((n,), dtype=jnp.int32)
        for name in self.ir.changepoints:
            segment = segment + (env[par_x] >= env[name]).astype(jnp.int32)

        mu = select_segment(evaluate_predictor(self.ir[MU], env, (n,)), segment)
        if SIGMA in self.ir:
            sigma = select_segment(evaluate_predictor(self.ir[SIGMA], env, (n,)), segment)
        else:
            sigma = jnp.zeros((n,))

        coefficients = [
            select_segment(evaluate_predictor(self.ir[ar_dpar(k)], env, (n,)), segment)
            for k in range(1, self.table.ar_order + 1)
        ]

        return {
            "x": x,
            "env": env,
            "segment": segment,
            "eta": mu,
            "sigma": sigma,
            "ar": jnp.stack(coefficients, axis=1) if coefficients else None,
            "trials": self._trials(trials, n) if require_trials else jnp.ones((n,)),
        }

    def _resolve_values(self, params: Mapping[str, Any]) -> Dict[str, float]:
        if not isinstance(params, Mapping):
            raise ModelSpecificationError(
                reason=f"params must be a mapping of parameter names, got {type(params).__name__}"
            )
        required = self.required_parameters
        for name in required:
            if name not in params:
                raise MissingParameterError(parameter=name, required=required)

        known = set(self.table.names)
        values: Dict[str, float] = {}
        for name, value in params.items():
            base = name.split("[", 1)[0] if isinstance(name, str) else name
            if base not in known:
                self.logger.warning(f"Ignoring unknown parameter '{name}'")
                continue
            if base != name or self.table[base].is_varying:
                continue
            try:
                values[name] = float(value)
            except (TypeError, ValueError) as e:
                raise ModelSpecificationError(
                    parameter=name, reason=f"value of '{name}' must be a number, got {value!r}"
                ) from e
        return values

    def _group_labels(self, group: str, groups: Optional[GroupData], n: int) -> np.ndarray:
        if groups is None:
            labels = None
        elif isinstance(groups, Mapping):
            labels = groups.get(group)
        elif len(self.table.varying) == 1:
            labels = groups
        else:
            raise ModelSpecificationError(
                reason="several grouping variables vary; pass groups as a mapping",
                suggestions=[f"Use groups={{'{group}': labels, ...}}"],
            )
        if labels is None:
            raise ModelSpecificationError(
                parameter=group,
                reason=f"group data for '{group}' is required to simulate varying change points",
                suggestions=[f"Pass groups={{'{group}': labels}} with one label per observation"],
            )
        labels = np.asarray(labels).astype(str)
        if labels.shape != (n,):
            raise ModelSpecificationError(
                parameter=group,
                reason=f"group data for '{group}' has shape {labels.shape}, expected ({n},)",
            )
        return labels

    def _changepoint(
        self,
        k: int,
        values: Mapping[str, float],
        params: Mapping[str, Any],
        groups: Optional[GroupData],
        constants: Mapping[str, float],
        n: int,
    ):
        location = values[f"cp_{k}"]
        varying = self.table.varying_for(k)
        if varying is None:
            return location

        labels = self._group_labels(varying.group, groups, n)
        offsets = collect_varying_values(params, varying.name)
        offset = np.array([offsets.get(label, 0.0) for label in labels], dtype=float)

        lower = values[f"cp_{k - 1}"] if k > 1 else constants[MINX]
        upper = values[f"cp_{k + 1}"] if k < self.table.n_changepoints else constants[MAXX]
        margin = changepoint_margin(constants[MINX], constants[MAXX])
        return jnp.clip(jnp.asarray(location + offset), lower + margin, upper - margin)

    def _trials(self, trials: Optional[Any], n: int) -> jnp.ndarray:
        if not self.family.needs_trials:
            return jnp.ones((n,))
        if trials is None:
            raise ModelSpecificationError(
                parameter=self.table.trials,
                reason=f"family '{self.family.name}' needs trials to simulate",
                suggestions=["Pass trials=... with one count per observation"],
            )
        values = validate_array_dimensions(trials, expected_length=n, name="trials")
        return jnp.asarray(values)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _central(self, state: Dict[str, Any]) -> np.ndarray:
        mean = np.asarray(self.link.inverse(state["eta"]), dtype=float)
        self._check_support(mean, np.asarray(state["segment"]))
        return mean

    def _simulate_ar(self, state: Dict[str, Any], key) -> np.ndarray:
        n = len(state["x"])
        keys = jax.random.split(key, n)
        y, mean, resid = _ar_recursion(
            state["eta"],
            state["ar"],
            state["sigma"],
            state["trials"],
            keys,
            inverse=self.link.inverse,
            forward=self.link.forward,
            sample=self.family.sample,
            domain=self.family.boundary_domain(self.link),
            per_trial=self.family.needs_trials,
        )
        segment = np.asarray(state["segment"])
        self._check_support(np.asarray(mean), segment)
        self._check_residuals(np.asarray(resid), segment)
        return np.asarray(y, dtype=float)

    def _domain_error(self, quantity: str, index: int, segment: np.ndarray, value: float):
        return LinkDomainError(
            quantity=quantity,
            observation=index,
            segment=int(segment[index]),
            value=float(value),
            family=self.family.name,
            link=self.link.name.value,
        )

    def _check_sigma(self, sigma: np.ndarray, segment: np.ndarray) -> None:
        bad = ~(np.isfinite(sigma) & (sigma > 0))
        if bad.any():
            index = int(np.argmax(bad))
            raise self._domain_error("sigma", index, segment, sigma[index])

    def _check_support(self, mean: np.ndarray, segment: np.ndarray) -> None:
        bad = ~np.asarray(self.family.support.contains(jnp.asarray(mean)))
        if bad.any():
            index = int(np.argmax(bad))
            raise self._domain_error(
                f"mean ({self.family.support.value} support)", index, segment, mean[index]
            )

    def _check_residuals(self, resid: np.ndarray, segment: np.ndarray) -> None:
        bad = ~np.isfinite(resid)
        if bad.any():
            index = int(np.argmax(bad))
            raise self._domain_error("link residual", index, segment, resid[index])
