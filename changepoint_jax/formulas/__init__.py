"""
Formula system for changepoint-jax.

Provides segment formula parsing into typed terms and the arithmetic
expressions shared by code generation and simulation.
"""

from .parser import FormulaParser, parse_segment, parse_segments
from .terms import (
    Term,
    TermType,
    InterceptTerm,
    SlopeTerm,
    TransformTerm,
    RelativeTerm,
    ARTerm,
    VarianceTerm,
    VaryingTerm,
)
from .spec import Segment
from .expressions import Expression, parse_expression, token_label

__all__ = [
    # Main API
    "parse_segment",
    "parse_segments",
    "parse_expression",
    "token_label",
    # Core classes
    "FormulaParser",
    "Segment",
    "Expression",
    # Term types
    "Term",
    "TermType",
    "InterceptTerm",
    "SlopeTerm",
    "TransformTerm",
    "RelativeTerm",
    "ARTerm",
    "VarianceTerm",
    "VaryingTerm",
]
