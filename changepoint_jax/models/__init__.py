"""
Model compilation for changepoint-jax.

Parameter tables, constraints, priors, the predictor representation, JAGS
code generation and simulation of segmented regression models.
"""

from .family import Family, Link, LinkType, register_family, get_family, list_available_families
from .parameters import Parameter, ParameterKind, ParameterTable, TermBinding, build_parameter_table
from .constraints import Constraint, ConstraintSet, ConstraintType, derive_constraints
from .priors import Prior, Uniform, Normal, Hierarchical, Fixed, Custom, PriorTable, synthesize_priors
from .predictor import PredictorIR, build_predictor
from .codegen import generate_jags
from .simulate import Simulator
from .base import CompiledModel

__all__ = [
    # Families
    "Family",
    "Link",
    "LinkType",
    "register_family",
    "get_family",
    "list_available_families",
    # Parameters and constraints
    "Parameter",
    "ParameterKind",
    "ParameterTable",
    "TermBinding",
    "build_parameter_table",
    "Constraint",
    "ConstraintSet",
    "ConstraintType",
    "derive_constraints",
    # Priors
    "Prior",
    "Uniform",
    "Normal",
    "Hierarchical",
    "Fixed",
    "Custom",
    "PriorTable",
    "synthesize_priors",
    # Code generation and simulation
    "PredictorIR",
    "build_predictor",
    "generate_jags",
    "Simulator",
    "CompiledModel",
]
