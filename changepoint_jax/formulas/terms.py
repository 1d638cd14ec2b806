"""
Formula term representations for changepoint-jax.

Defines the tagged term variant that a segment formula decomposes into.
AR and variance terms hold a nested term list of the same variant type.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .expressions import Expression, Symbol, token_label


class TermType(str, Enum):
    """Types of formula terms."""

    INTERCEPT = "intercept"
    SLOPE = "slope"
    TRANSFORM = "transform"
    RELATIVE = "relative"
    AR = "ar"
    VARIANCE = "variance"
    VARYING = "varying"


class Term(ABC):
    """Abstract base class for formula terms."""

    term_type: TermType

    @property
    @abstractmethod
    def key(self) -> str:
        """Identity of the term within one segment, used for duplicates and carry-over."""

    @abstractmethod
    def to_string(self) -> str:
        """Convert term to string representation."""

    def __str__(self) -> str:
        return self.to_string()


@dataclass(frozen=True)
class InterceptTerm(Term):
    """Intercept term: ``1`` (included) or ``0`` (suppressed)."""

    included: bool = True

    term_type = TermType.INTERCEPT

    @property
    def key(self) -> str:
        return "1"

    def to_string(self) -> str:
        return "1" if self.included else "0"


class PredictorTerm(Term):
    """A term multiplying a function of the predictor by a slope parameter."""

    expression: Expression

    @property
    def key(self) -> str:
        return self.expression.render()

    @property
    def label(self) -> str:
        """Name-safe label used in parameter names."""
        return token_label(self.expression)

    def variables(self) -> Tuple[str, ...]:
        return self.expression.symbols()

    def to_string(self) -> str:
        return self.expression.render()


@dataclass(frozen=True)
class SlopeTerm(PredictorTerm):
    """Plain predictor term, e.g. ``x``."""

    variable: str

    term_type = TermType.SLOPE

    @property
    def expression(self) -> Expression:
        return Symbol(self.variable)


@dataclass(frozen=True)
class TransformTerm(PredictorTerm):
    """Transformed predictor term, e.g. ``I(x^2)``, ``exp(x)``."""

    expression: Expression

    term_type = TermType.TRANSFORM

    def to_string(self) -> str:
        return f"I({self.expression.render()})"


@dataclass(frozen=True)
class RelativeTerm(Term):
    """``rel(term)``: an offset from the previous segment's value of ``term``."""

    term: Term

    term_type = TermType.RELATIVE

    @property
    def key(self) -> str:
        return self.term.key

    def to_string(self) -> str:
        return f"rel({self.term.to_string()})"


@dataclass(frozen=True)
class ARTerm(Term):
    """``ar(order)`` or ``ar(order, formula)``: autoregressive residual correction."""

    order: int
    terms: Tuple[Term, ...]

    term_type = TermType.AR

    @property
    def key(self) -> str:
        return "ar"

    @property
    def formula(self) -> str:
        return " + ".join(term.to_string() for term in self.terms)

    def to_string(self) -> str:
        if self.terms == (InterceptTerm(True),):
            return f"ar({self.order})"
        return f"ar({self.order}, {self.formula})"


@dataclass(frozen=True)
class VarianceTerm(Term):
    """``sigma(formula)``: the variance sub-model."""

    terms: Tuple[Term, ...]

    term_type = TermType.VARIANCE

    @property
    def key(self) -> str:
        return "sigma"

    @property
    def formula(self) -> str:
        return " + ".join(term.to_string() for term in self.terms)

    def to_string(self) -> str:
        return f"sigma({self.formula})"


@dataclass(frozen=True)
class VaryingTerm(Term):
    """``(1 | group)``: per-group offsets on the change point opening a segment."""

    group: str

    term_type = TermType.VARYING

    @property
    def key(self) -> str:
        return f"(1 | {self.group})"

    def to_string(self) -> str:
        return self.key


def find_intercept(terms: Tuple[Term, ...]) -> Optional[Term]:
    """The intercept term (plain or relative) of a term list, if any."""
    for term in terms:
        if isinstance(term, InterceptTerm):
            return term
        if isinstance(term, RelativeTerm) and isinstance(term.term, InterceptTerm):
            return term
    return None


def predictor_terms(terms: Tuple[Term, ...]) -> Tuple[Term, ...]:
    """Slope and transform terms (plain or relative) in formula order."""
    result = []
    for term in terms:
        inner = term.term if isinstance(term, RelativeTerm) else term
        if isinstance(inner, PredictorTerm):
            result.append(term)
    return tuple(result)
