"""
Formula parser for changepoint-jax.

Parses segment formulas of a segmented regression model by recursive descent
over a token stream:

    y ~ 1 + x                       # segment 1: response and terms
    y | trials(n) ~ 1               # binomial response with trials column
    ~ 0 + x                         # later segments: no response
    1 + (1 | id) ~ rel(1) + x       # varying change point, relative intercept
    ~ 1 + sigma(1 + x) + ar(2, 1 + x)
"""

from typing import List, Optional, Sequence, Tuple

from .expressions import Expression, Symbol, Token, TokenStream, parse_product, tokenize
from .spec import Segment
from .terms import (
    ARTerm,
    InterceptTerm,
    RelativeTerm,
    SlopeTerm,
    Term,
    TransformTerm,
    VarianceTerm,
    VaryingTerm,
)
from ..core.exceptions import DuplicateTermError, ParseError
from ..utils.logging import get_logger


AR_NAMES = ("ar", "autoregressive")
VARIANCE_NAMES = ("sigma", "variance")

# Tokens that end a term inside a right-hand side
_TERM_END = ("+", ")")


class FormulaParser:
    """
    Parser for segment formulas.

    Intercepts are never implicit: ``y ~ x`` has no intercept. ``rel()``,
    ``ar()`` and ``sigma()`` are only recognized as top-level terms, and
    ``(1 | group)`` only on the left-hand side of segments 2 and later.
    """

    def __init__(self):
        self.logger = get_logger(self.__class__.__name__)

    def parse_segment(
        self, formula: str, index: int = 1, response: Optional[str] = None
    ) -> Segment:
        """
        Parse one segment formula.

        Args:
            formula: Formula text
            index: 1-based segment position
            response: Response name of segment 1, used to validate later
                left-hand sides of the form ``y ~ ...``

        Returns:
            Segment record

        Raises:
            ParseError: If the formula cannot be decomposed
            DuplicateTermError: If a term occurs twice
        """
        text = formula.strip()
        self.logger.debug(f"Parsing segment {index}: {text}")

        try:
            tokens = tokenize(text)
        except ParseError as e:
            raise ParseError(
                formula=text,
                reason=e.context["reason"],
                position=e.context["position"],
                segment=index,
            ) from e

        stream = TokenStream(text, tokens, segment=index)
        if not any(token.text == "~" for token in tokens if token.kind == "op"):
            raise stream.error("missing '~'", tokens[-1])

        if index == 1:
            response, trials = self._parse_response(stream)
            varying = None
        else:
            trials = None
            varying = self._parse_changepoint_lhs(stream, response)
            response = None

        stream.expect("~")
        terms = self._parse_rhs(stream, index, nested=False)
        if not stream.at_end():
            raise stream.error(f"unexpected '{stream.peek().text}'")

        ar = None
        variance = None
        mean_terms = []
        for term in terms:
            if isinstance(term, ARTerm):
                ar = term
            elif isinstance(term, VarianceTerm):
                variance = term
            else:
                mean_terms.append(term)

        segment = Segment(
            index=index,
            formula=text,
            terms=tuple(mean_terms),
            response=response,
            trials=trials,
            ar=ar,
            variance=variance,
            varying=varying,
        )
        self.logger.debug(
            f"Parsed segment {index}: {len(mean_terms)} mean terms, "
            f"ar={ar.order if ar else 0}, sigma={variance is not None}, "
            f"varying={segment.group}"
        )
        return segment

    def parse_segments(self, formulas: Sequence[str]) -> Tuple[Segment, ...]:
        """
        Parse an ordered list of segment formulas.

        Raises:
            ParseError: On an empty list or any malformed segment
            DuplicateTermError: If a term occurs twice within one segment
        """
        if isinstance(formulas, str):
            formulas = [formulas]
        if not formulas:
            raise ParseError(
                formula="",
                reason="at least one segment formula is required",
                suggestions=["Pass a list of formulas, e.g. ['y ~ 1', '~ 0 + x']"],
            )

        segments: List[Segment] = []
        response = None
        for index, formula in enumerate(formulas, 1):
            segment = self.parse_segment(formula, index, response)
            if index == 1:
                response = segment.response
            segments.append(segment)

        self.logger.debug(f"Parsed {len(segments)} segments", response=response)
        return tuple(segments)

    # ------------------------------------------------------------------
    # Left-hand sides
    # ------------------------------------------------------------------

    def _parse_response(self, stream: TokenStream) -> Tuple[str, Optional[str]]:
        """response := NAME ('|' 'trials' '(' NAME ')')?"""
        token = stream.peek()
        if stream.at("~"):
            raise stream.error("segment 1 must name the response, e.g. 'y ~ 1'", token)
        if stream.at("(") or token.kind == "number":
            raise stream.error(
                "segment 1 has no change point; varying effects and change point "
                "intercepts start in segment 2",
                token,
            )
        if token.kind != "name":
            raise stream.error(f"expected a response name but found '{token.text}'", token)
        stream.next()

        trials = None
        if stream.accept("|"):
            stream.expect("trials", "expected 'trials(column)' after '|'")
            stream.expect("(")
            column = stream.next()
            if column.kind != "name":
                raise stream.error("trials() takes a column name", column)
            stream.expect(")", "unbalanced parentheses")
            trials = column.text

        if not stream.at("~"):
            raise stream.error(f"unexpected '{stream.peek().text}' in response")
        return token.text, trials

    def _parse_changepoint_lhs(
        self, stream: TokenStream, response: Optional[str]
    ) -> Optional[VaryingTerm]:
        """cp_spec := cp_term ('+' cp_term)*"""
        if stream.at("~"):
            return None

        varying: Optional[VaryingTerm] = None
        seen_intercept = False
        while True:
            token = stream.peek()
            if token.kind == "number":
                if token.text not in ("1", "1.0"):
                    raise stream.error("the change point term must be '1'", token)
                if seen_intercept:
                    raise DuplicateTermError(term="1", formula=stream.source, segment=stream.segment)
                seen_intercept = True
                stream.next()
            elif stream.at("("):
                term = self._parse_varying(stream)
                if varying is not None:
                    if term.group == varying.group:
                        raise DuplicateTermError(
                            term=term.key, formula=stream.source, segment=stream.segment
                        )
                    raise stream.error("at most one grouping per change point", token)
                varying = term
            elif token.kind == "name":
                if response is not None and token.text != response:
                    raise stream.error(
                        f"only segment 1 names a response; '{token.text}' is not '{response}'",
                        token,
                    )
                stream.next()
            else:
                found = token.text or "end of formula"
                raise stream.error(f"expected a change point term but found '{found}'", token)

            if not stream.accept("+"):
                break

        if not stream.at("~"):
            raise stream.error(f"unexpected '{stream.peek().text}' on the left-hand side")
        return varying

    def _parse_varying(self, stream: TokenStream) -> VaryingTerm:
        """varying := '(' '1' '|' NAME ')'"""
        stream.expect("(")
        token = stream.peek()
        if token.kind != "number" or token.text not in ("1", "1.0"):
            raise stream.error(
                "only change point intercepts can vary by group, e.g. '(1 | id)'", token
            )
        stream.next()
        stream.expect("|", "expected '|' in varying effect, e.g. '(1 | id)'")
        group = stream.peek()
        if group.kind != "name":
            raise stream.error("missing grouping variable in varying effect", group)
        stream.next()
        stream.expect(")", "unbalanced parentheses")
        return VaryingTerm(group.text)

    # ------------------------------------------------------------------
    # Right-hand sides
    # ------------------------------------------------------------------

    def _parse_rhs(self, stream: TokenStream, index: int, nested: bool) -> Tuple[Term, ...]:
        """rhs := term ('+' term)*"""
        if stream.at_end() or stream.at(")"):
            raise stream.error("empty right-hand side")

        terms: List[Term] = []
        keys = {}
        while True:
            term = self._parse_term(stream, index, nested)
            key = term.key
            if key in keys:
                raise DuplicateTermError(
                    term=term.to_string(), formula=stream.source, segment=index
                )
            keys[key] = term
            terms.append(term)

            if stream.accept("+"):
                continue
            if stream.at("-"):
                raise stream.error(
                    "term subtraction is not supported; use '0 +' to remove the intercept"
                )
            break

        if nested:
            stream.expect(")", "unbalanced parentheses")
        return tuple(terms)

    def _parse_term(self, stream: TokenStream, index: int, nested: bool) -> Term:
        token = stream.peek()

        if token.kind == "number" and self._ends_term(stream.peek(1)):
            stream.next()
            value = float(token.text)
            if value not in (0.0, 1.0):
                raise stream.error(f"numeric term '{token.text}' must be 0 or 1", token)
            return InterceptTerm(value == 1.0)

        if token.kind == "name" and stream.peek(1).text == "(":
            name = token.text
            if name == "rel":
                return self._parse_relative(stream, index)
            if name in AR_NAMES or name in VARIANCE_NAMES:
                if nested:
                    raise stream.error(f"'{name}()' cannot be nested inside another sub-model", token)
                if name in AR_NAMES:
                    return self._parse_ar(stream, index)
                return self._parse_variance(stream, index)

        if stream.at("(") and stream.group_contains_pipe():
            raise stream.error(
                "varying effects belong on the left-hand side of segments 2 and later, "
                "e.g. '1 + (1 | id) ~ 1'",
                token,
            )

        return self._parse_slope(stream)

    def _parse_relative(self, stream: TokenStream, index: int) -> RelativeTerm:
        rel = stream.next()
        if index == 1:
            raise stream.error("rel() needs a previous segment; it is not allowed in segment 1", rel)
        stream.expect("(")
        token = stream.peek()
        if token.kind == "number" and stream.peek(1).text == ")":
            stream.next()
            if float(token.text) != 1.0:
                raise stream.error("rel() takes '1' or a slope term", token)
            inner: Term = InterceptTerm(True)
        else:
            inner = self._parse_slope(stream)
        stream.expect(")", "unbalanced parentheses")
        return RelativeTerm(inner)

    def _parse_ar(self, stream: TokenStream, index: int) -> ARTerm:
        stream.next()
        stream.expect("(")
        token = stream.next()
        if token.kind != "number" or not token.text.isdigit() or int(token.text) < 1:
            raise stream.error(f"AR order must be a positive integer, got '{token.text}'", token)
        order = int(token.text)

        if stream.accept(","):
            terms = self._parse_rhs(stream, index, nested=True)
        else:
            stream.expect(")", "unbalanced parentheses")
            terms = (InterceptTerm(True),)
        return ARTerm(order=order, terms=terms)

    def _parse_variance(self, stream: TokenStream, index: int) -> VarianceTerm:
        stream.next()
        stream.expect("(")
        return VarianceTerm(terms=self._parse_rhs(stream, index, nested=True))

    def _parse_slope(self, stream: TokenStream) -> Term:
        start = stream.peek()
        expression = parse_product(stream)
        if not expression.symbols():
            raise stream.error(
                f"term '{expression.render()}' does not involve the predictor", start
            )
        if not self._ends_term(stream.peek()) and not stream.at("-"):
            raise stream.error(f"unexpected '{stream.peek().text}'")
        return self._make_slope(expression)

    @staticmethod
    def _make_slope(expression: Expression) -> Term:
        if isinstance(expression, Symbol):
            return SlopeTerm(expression.name)
        return TransformTerm(expression)

    @staticmethod
    def _ends_term(token: Token) -> bool:
        return token.kind == "end" or (token.kind == "op" and token.text in _TERM_END)


# Convenience functions for common use cases


def parse_segment(formula: str, index: int = 1, response: Optional[str] = None) -> Segment:
    """Parse a single segment formula."""
    return FormulaParser().parse_segment(formula, index, response)


def parse_segments(formulas: Sequence[str]) -> Tuple[Segment, ...]:
    """
    Parse an ordered list of segment formulas.

    Examples:
        parse_segments(["y ~ 1", "~ 0 + x"])
        parse_segments(["y ~ 1 + x", "1 + (1 | id) ~ rel(1)", "~ 0 + sigma(1)"])
    """
    return FormulaParser().parse_segments(formulas)
