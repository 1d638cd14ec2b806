"""
Segment specification classes for changepoint-jax.

A model is an ordered tuple of Segment records, one per formula fragment.
Segment k+1 starts at change point k.
"""

from dataclasses import dataclass
from typing import Optional, Tuple

from .terms import (
    ARTerm,
    InterceptTerm,
    PredictorTerm,
    RelativeTerm,
    Term,
    VarianceTerm,
    VaryingTerm,
    find_intercept,
    predictor_terms,
)


@dataclass(frozen=True)
class Segment:
    """
    One parsed formula fragment.

    Attributes:
        index: 1-based segment position
        formula: Original formula text
        terms: Mean terms (intercept, slopes, relative terms) in formula order
        response: Response column (segment 1 only)
        trials: Trials column for binomial models (segment 1 only)
        ar: Autoregressive sub-model, if specified in this segment
        variance: Variance sub-model, if specified in this segment
        varying: Grouping of the change point opening this segment

    Examples:
        y ~ 1 + x                      # segment 1
        ~ 0 + x                        # joined slope change
        1 + (1 | id) ~ rel(1) + x      # varying change point, relative jump
        ~ 1 + sigma(1) + ar(2)         # new level, new variance and AR(2)
    """

    index: int
    formula: str
    terms: Tuple[Term, ...] = ()
    response: Optional[str] = None
    trials: Optional[str] = None
    ar: Optional[ARTerm] = None
    variance: Optional[VarianceTerm] = None
    varying: Optional[VaryingTerm] = None

    @property
    def intercept(self) -> Optional[Term]:
        """The intercept term (``InterceptTerm`` or ``RelativeTerm``), if written."""
        return find_intercept(self.terms)

    @property
    def slopes(self) -> Tuple[Term, ...]:
        return predictor_terms(self.terms)

    @property
    def group(self) -> Optional[str]:
        return self.varying.group if self.varying else None

    @property
    def has_changepoint(self) -> bool:
        """Whether a change point precedes this segment."""
        return self.index > 1

    def variables(self) -> Tuple[str, ...]:
        """Predictor variable names used anywhere in the segment."""
        seen = []
        term_lists = [self.terms]
        if self.ar is not None:
            term_lists.append(self.ar.terms)
        if self.variance is not None:
            term_lists.append(self.variance.terms)
        for terms in term_lists:
            for term in predictor_terms(terms):
                inner = term.term if isinstance(term, RelativeTerm) else term
                for name in inner.variables():
                    if name not in seen:
                        seen.append(name)
        return tuple(seen)

    def to_string(self) -> str:
        """Normalized formula text."""
        lhs = []
        if self.response:
            lhs.append(self.response if not self.trials else f"{self.response} | trials({self.trials})")
        elif self.varying is not None:
            lhs.extend(["1", self.varying.to_string()])
        rhs = [term.to_string() for term in self.terms]
        if self.variance is not None:
            rhs.append(self.variance.to_string())
        if self.ar is not None:
            rhs.append(self.ar.to_string())
        left = " + ".join(lhs)
        right = " + ".join(rhs)
        return f"{left} ~ {right}" if left else f"~ {right}"

    def __str__(self) -> str:
        return self.to_string()


def is_relative(term: Optional[Term]) -> bool:
    return isinstance(term, RelativeTerm)


def is_suppressed(term: Optional[Term]) -> bool:
    """``0 +``: an explicitly removed intercept."""
    return isinstance(term, InterceptTerm) and not term.included


def inner_term(term: Term) -> Term:
    """Strip a ``rel()`` wrapper."""
    return term.term if isinstance(term, RelativeTerm) else term


def term_label(term: Term) -> str:
    """Name label of a term: ``int`` for intercepts, the expression label for slopes."""
    inner = inner_term(term)
    if isinstance(inner, PredictorTerm):
        return inner.label
    return "int"
