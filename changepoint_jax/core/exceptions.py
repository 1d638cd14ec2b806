"""
Exception classes for changepoint-jax.

Provides rich error information with actionable suggestions. Every error
raised by the compiler or the simulator derives from ChangepointJaxError.
"""

from typing import List, Optional, Dict, Any


class ChangepointJaxError(Exception):
    """
    Base exception class for changepoint-jax with rich error information.

    Provides structured error information including suggestions for resolution,
    a stable error code and a context dictionary for programmatic inspection.
    """

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        error_code: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.suggestions = suggestions or []
        self.error_code = error_code
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return formatted error message with suggestions."""
        message = super().__str__()

        if self.error_code:
            message = f"[{self.error_code}] {message}"

        if self.suggestions:
            message += "\n\nSuggestions:"
            for i, suggestion in enumerate(self.suggestions, 1):
                message += f"\n  {i}. {suggestion}"

        return message


class ParseError(ChangepointJaxError):
    """Exception raised when a segment formula does not match the grammar."""

    def __init__(
        self,
        formula: Optional[str] = None,
        reason: Optional[str] = None,
        position: Optional[int] = None,
        segment: Optional[int] = None,
        **kwargs
    ):
        if formula is not None and reason:
            message = f"Cannot parse formula '{formula}': {reason}"
        elif formula is not None:
            message = f"Cannot parse formula '{formula}'"
        else:
            message = "Formula parse error"

        if position is not None and formula is not None:
            message += f"\n    {formula}\n    {' ' * position}^"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check formula syntax (e.g. 'y ~ 1 + x', '~ 0 + x', '1 + (1 | id) ~ rel(1)')",
            "Intercepts must be explicit: use '1 +' or '0 +'",
            "Wrap transformations in I(), e.g. I(x^2)",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="PARSE",
            context={
                "formula": formula,
                "reason": reason,
                "position": position,
                "segment": segment,
            },
            **kwargs
        )


class DuplicateTermError(ChangepointJaxError):
    """Exception raised when one segment specifies the same term twice."""

    def __init__(
        self,
        term: Optional[str] = None,
        formula: Optional[str] = None,
        segment: Optional[int] = None,
        **kwargs
    ):
        if term and formula:
            message = f"Term '{term}' is specified more than once in '{formula}'"
        elif term:
            message = f"Term '{term}' is specified more than once"
        else:
            message = "Duplicate term in segment formula"

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=[
                "Remove the repeated term",
                "A term is either absolute ('x') or relative ('rel(x)'), not both",
                "Intercepts are either '0' or '1', not both",
            ],
            error_code="DUPLICATE_TERM",
            context={"term": term, "formula": formula, "segment": segment},
            **kwargs
        )


class ModelSpecificationError(ChangepointJaxError):
    """Exception raised for model specification issues."""

    def __init__(
        self,
        formula: Optional[str] = None,
        parameter: Optional[str] = None,
        reason: Optional[str] = None,
        **kwargs
    ):
        if formula and reason:
            message = f"Invalid model specification '{formula}': {reason}"
        elif reason:
            message = f"Invalid model specification: {reason}"
        elif formula:
            message = f"Invalid model specification: {formula}"
        else:
            message = "Model specification error"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check the segment formulas, family and link",
            "Use one predictor variable across all segments",
            "Review the parameter names reported by the compiled model",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="MODEL_SPEC",
            context={"formula": formula, "parameter": parameter, "reason": reason},
            **kwargs
        )


class ConstraintViolationError(ChangepointJaxError):
    """
    Exception raised when a parameter assignment breaks a derived constraint.

    Raised at sampling or simulation time, never during compilation: user
    overridden priors are not checked against the constraints they may break.
    """

    def __init__(
        self,
        parameter: Optional[str] = None,
        constraint: Optional[str] = None,
        value: Optional[float] = None,
        **kwargs
    ):
        if parameter and constraint:
            message = f"Parameter '{parameter}' violates constraint: {constraint}"
        elif parameter:
            message = f"Parameter '{parameter}' violates a derived constraint"
        else:
            message = "Constraint violation"

        if value is not None:
            message += f" (value={value})"

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=[
                "Check user-supplied priors for the named parameter",
                "Change points must be strictly increasing",
                "Keep change point priors inside the observed predictor range",
            ],
            error_code="CONSTRAINT",
            context={"parameter": parameter, "constraint": constraint, "value": value},
            **kwargs
        )


class LinkDomainError(ChangepointJaxError):
    """Exception raised when a predicted value falls outside its valid domain."""

    def __init__(
        self,
        quantity: Optional[str] = None,
        observation: Optional[int] = None,
        segment: Optional[int] = None,
        value: Optional[float] = None,
        family: Optional[str] = None,
        link: Optional[str] = None,
        **kwargs
    ):
        if quantity and observation is not None:
            message = (
                f"Predicted {quantity} out of domain at observation {observation}"
                f" (segment {segment})"
            )
        else:
            message = "Predicted value out of domain"

        if value is not None:
            message += f": {value}"
        if family and link:
            message += f" for {family}(link = '{link}')"

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=[
                "Narrow the priors of the parameters of this segment",
                "Use a link function that maps onto the valid domain (e.g. log, logit)",
                "Check that sigma terms stay positive across the predictor range",
            ],
            error_code="LINK_DOMAIN",
            context={
                "quantity": quantity,
                "observation": observation,
                "segment": segment,
                "value": value,
                "family": family,
                "link": link,
            },
            **kwargs
        )


class MissingParameterError(ChangepointJaxError):
    """Exception raised when a simulation lacks a required parameter value."""

    def __init__(
        self,
        parameter: Optional[str] = None,
        required: Optional[List[str]] = None,
        **kwargs
    ):
        if parameter:
            message = f"Missing value for parameter '{parameter}'"
        else:
            message = "Missing parameter value"

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=[
                f"Required parameters: {', '.join(required)}" if required
                else "Provide a value for every compiled parameter",
                "Varying offsets may be omitted; they default to zero",
            ],
            error_code="MISSING_PARAMETER",
            context={"parameter": parameter, "required": required},
            **kwargs
        )


class DataFormatError(ChangepointJaxError):
    """Exception raised for data summary issues."""

    def __init__(
        self,
        specific_issue: Optional[str] = None,
        missing_columns: Optional[List[str]] = None,
        **kwargs
    ):
        if missing_columns:
            message = f"Missing data columns: {missing_columns}"
        elif specific_issue:
            message = f"Data format issue: {specific_issue}"
        else:
            message = "Data format validation failed"

        suggestions = kwargs.pop('suggestions', None) or [
            "Check column names against the segment formulas",
            "Remove missing or non-finite values",
            "The predictor must take at least two distinct values",
        ]

        super().__init__(
            message=message,
            suggestions=suggestions,
            error_code="DATA_FORMAT",
            context={"specific_issue": specific_issue, "missing_columns": missing_columns},
            **kwargs
        )


class ConfigurationError(ChangepointJaxError):
    """Exception raised for configuration issues."""

    def __init__(self, config_key: Optional[str] = None, reason: Optional[str] = None, **kwargs):
        if config_key:
            message = f"Invalid configuration for '{config_key}'"
        else:
            message = "Configuration error"
        if reason:
            message += f": {reason}"

        kwargs.pop('suggestions', None)

        super().__init__(
            message=message,
            suggestions=[
                "Review configuration file syntax",
                "Check environment variable formatting",
                "Use changepoint_jax.get_config() to inspect current settings",
            ],
            error_code="CONFIG",
            context={"config_key": config_key, "reason": reason},
            **kwargs
        )
