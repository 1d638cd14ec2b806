"""
Arithmetic expressions for changepoint-jax formulas.

Tokenizes formula text and parses arithmetic expressions of the predictor
(e.g. ``I(x^2)``, ``exp(x)``, ``log(x + 1)``) into small immutable trees.
The same trees are rendered to JAGS text by the code generator and evaluated
with jax.numpy by the simulator, so both always agree.
"""

import re
from dataclasses import dataclass
from typing import Callable, Dict, List, Mapping, Optional, Tuple, Union

import jax.numpy as jnp

from ..core.exceptions import ParseError


# Functions allowed inside transformed terms and their jax.numpy counterparts
FUNCTIONS: Dict[str, Callable] = {
    "I": lambda v: v,
    "exp": jnp.exp,
    "log": jnp.log,
    "sqrt": jnp.sqrt,
    "abs": jnp.abs,
    "sin": jnp.sin,
    "cos": jnp.cos,
    "tan": jnp.tan,
}

# Operator precedence; unary minus sits between '*' and '^'
_PRECEDENCE = {"+": 1, "-": 1, "*": 2, "/": 2, "neg": 3, "^": 4}


def format_number(value: Union[int, float]) -> str:
    """Render a number deterministically: integral values without a decimal point."""
    value = float(value)
    if value == 0:
        return "0"
    if value.is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(value)


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Token:
    kind: str  # "number", "name", "op" or "end"
    text: str
    position: int


# One alternative per token kind; ``bad`` catches anything else
_TOKEN_PATTERN = re.compile(
    r"""
    (?P<space>\s+)
    | (?P<number>(?:\d|\.\d)[\d.]*(?:[eE][+-]?\d+)?)
    | (?P<name>[^\W\d][\w.]*)
    | (?P<op>[+\-*/^(),|~])
    | (?P<bad>.)
    """,
    re.VERBOSE,
)


def tokenize(source: str) -> List[Token]:
    """
    Split formula text into tokens.

    Raises:
        ParseError: On characters outside the formula alphabet
    """
    tokens = []
    for match in _TOKEN_PATTERN.finditer(source):
        kind, text, start = match.lastgroup, match.group(), match.start()
        if kind == "space":
            continue
        if kind == "bad":
            raise ParseError(formula=source, reason=f"unexpected character '{text}'", position=start)
        if kind == "number":
            try:
                float(text)
            except ValueError:
                raise ParseError(formula=source, reason=f"malformed number '{text}'", position=start)
        tokens.append(Token(kind, text, start))
    tokens.append(Token("end", "", len(source)))
    return tokens


class TokenStream:
    """Cursor over a token list with the helpers a recursive-descent parser needs."""

    def __init__(self, source: str, tokens: Optional[List[Token]] = None, segment: Optional[int] = None):
        self.source = source
        self.segment = segment
        self.tokens = tokens if tokens is not None else tokenize(source)
        self.index = 0

    def peek(self, offset: int = 0) -> Token:
        return self.tokens[min(self.index + offset, len(self.tokens) - 1)]

    def next(self) -> Token:
        token = self.peek()
        if token.kind != "end":
            self.index += 1
        return token

    def at(self, text: str) -> bool:
        token = self.peek()
        return token.kind in ("op", "name") and token.text == text

    def accept(self, text: str) -> bool:
        if self.at(text):
            self.next()
            return True
        return False

    def expect(self, text: str, reason: Optional[str] = None) -> Token:
        token = self.peek()
        if not self.at(text):
            found = token.text or "end of formula"
            raise self.error(reason or f"expected '{text}' but found '{found}'", token)
        return self.next()

    def at_end(self) -> bool:
        return self.peek().kind == "end"

    def group_contains_pipe(self) -> bool:
        """Whether the parenthesized group starting at the cursor holds a top-level '|'."""
        depth = 0
        for token in self.tokens[self.index:]:
            if token.kind != "op":
                continue
            if token.text == "(":
                depth += 1
            elif token.text == ")":
                depth -= 1
                if depth == 0:
                    return False
            elif token.text == "|" and depth == 1:
                return True
        return False

    def error(self, reason: str, token: Optional[Token] = None) -> ParseError:
        token = token or self.peek()
        return ParseError(
            formula=self.source, reason=reason, position=token.position, segment=self.segment
        )


# ---------------------------------------------------------------------------
# Expression trees
# ---------------------------------------------------------------------------


SymbolRenderer = Callable[[str], str]


class Expression:
    """Base class of expression tree nodes."""

    precedence = 5

    def render(self, symbol: Optional[SymbolRenderer] = None) -> str:
        raise NotImplementedError

    def evaluate(self, env: Mapping[str, object]):
        raise NotImplementedError

    def substitute(self, mapping: Mapping[str, "Expression"]) -> "Expression":
        raise NotImplementedError

    def symbols(self) -> Tuple[str, ...]:
        """Symbol names in first-occurrence order."""
        seen: List[str] = []
        self._collect(seen)
        return tuple(seen)

    def _collect(self, seen: List[str]) -> None:
        pass

    def to_string(self) -> str:
        return self.render()

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class Number(Expression):
    value: float

    @property
    def precedence(self) -> int:
        return _PRECEDENCE["neg"] if self.value < 0 else 5

    def render(self, symbol=None) -> str:
        return format_number(self.value)

    def evaluate(self, env):
        return self.value

    def substitute(self, mapping):
        return self


@dataclass(frozen=True)
class Symbol(Expression):
    name: str

    def render(self, symbol=None) -> str:
        return symbol(self.name) if symbol else self.name

    def evaluate(self, env):
        return env[self.name]

    def substitute(self, mapping):
        return mapping.get(self.name, self)

    def _collect(self, seen):
        if self.name not in seen:
            seen.append(self.name)


@dataclass(frozen=True)
class Negate(Expression):
    operand: Expression

    precedence = _PRECEDENCE["neg"]

    def render(self, symbol=None) -> str:
        inner = self.operand.render(symbol)
        if self.operand.precedence <= self.precedence:
            inner = f"({inner})"
        return f"-{inner}"

    def evaluate(self, env):
        return -self.operand.evaluate(env)

    def substitute(self, mapping):
        return Negate(self.operand.substitute(mapping))

    def _collect(self, seen):
        self.operand._collect(seen)


@dataclass(frozen=True)
class BinaryOp(Expression):
    op: str
    left: Expression
    right: Expression

    @property
    def precedence(self) -> int:
        return _PRECEDENCE[self.op]

    def render(self, symbol=None) -> str:
        left = self.left.render(symbol)
        right = self.right.render(symbol)
        if self.op == "^":
            # Right associative: only the base needs protection at equal precedence
            if self.left.precedence <= self.precedence:
                left = f"({left})"
            if self.right.precedence < self.precedence:
                right = f"({right})"
            return f"{left}^{right}"
        if self.left.precedence < self.precedence:
            left = f"({left})"
        if self.right.precedence < self.precedence or (
            self.right.precedence == self.precedence and self.op in "-/"
        ):
            right = f"({right})"
        return f"{left} {self.op} {right}"

    def evaluate(self, env):
        left = self.left.evaluate(env)
        right = self.right.evaluate(env)
        if self.op == "+":
            return left + right
        if self.op == "-":
            return left - right
        if self.op == "*":
            return left * right
        if self.op == "/":
            return left / right
        return jnp.power(left, right)

    def substitute(self, mapping):
        return BinaryOp(self.op, self.left.substitute(mapping), self.right.substitute(mapping))

    def _collect(self, seen):
        self.left._collect(seen)
        self.right._collect(seen)


@dataclass(frozen=True)
class Call(Expression):
    function: str
    args: Tuple[Expression, ...]

    def render(self, symbol=None) -> str:
        rendered = ", ".join(arg.render(symbol) for arg in self.args)
        return f"{self.function}({rendered})"

    def evaluate(self, env):
        return FUNCTIONS[self.function](*(arg.evaluate(env) for arg in self.args))

    def substitute(self, mapping):
        return Call(self.function, tuple(arg.substitute(mapping) for arg in self.args))

    def _collect(self, seen):
        for arg in self.args:
            arg._collect(seen)


# ---------------------------------------------------------------------------
# Construction helpers used by the predictor assembly
# ---------------------------------------------------------------------------


def add(left: Optional[Expression], right: Optional[Expression]) -> Optional[Expression]:
    """Sum two optional expressions, treating None as zero."""
    if left is None:
        return right
    if right is None:
        return left
    return BinaryOp("+", left, right)


def subtract(left: Expression, right: Expression) -> Expression:
    return BinaryOp("-", left, right)


def multiply(left: Expression, right: Expression) -> Expression:
    if isinstance(right, Number) and right.value == 1:
        return left
    if isinstance(left, Number) and left.value == 1:
        return right
    return BinaryOp("*", left, right)


def token_label(expression: Expression) -> str:
    """
    Name-safe label of an expression, used to build parameter names.

    ``x`` -> ``x``, ``x^2`` -> ``x_E2``, ``exp(x)`` -> ``exp_x``,
    ``log(x + 1)`` -> ``log_x_P1``, ``x^0.5`` -> ``x_E0d5``.
    """
    text = expression.render().replace(" ", "")
    replacements = {"^": "_E", "+": "_P", "-": "_M", "*": "_T", "/": "_D", ".": "d", "(": "_", ")": "_", ",": "_"}
    label = "".join(replacements.get(char, char) for char in text)
    while "__" in label:
        label = label.replace("__", "_")
    return label.strip("_")


# ---------------------------------------------------------------------------
# Expression parsing (recursive descent)
# ---------------------------------------------------------------------------

# Names the formula grammar reserves; they cannot appear inside expressions
RESERVED_CALLS = ("rel", "ar", "autoregressive", "sigma", "variance", "trials")


def parse_sum(stream: TokenStream) -> Expression:
    """sum := product (('+' | '-') product)*"""
    expression = parse_product(stream)
    while stream.at("+") or stream.at("-"):
        op = stream.next().text
        expression = BinaryOp(op, expression, parse_product(stream))
    return expression


def parse_product(stream: TokenStream) -> Expression:
    """product := unary (('*' | '/') unary)*"""
    expression = parse_unary(stream)
    while stream.at("*") or stream.at("/"):
        op = stream.next().text
        expression = BinaryOp(op, expression, parse_unary(stream))
    return expression


def parse_unary(stream: TokenStream) -> Expression:
    """unary := '-' unary | power"""
    if stream.accept("-"):
        return Negate(parse_unary(stream))
    return parse_power(stream)


def parse_power(stream: TokenStream) -> Expression:
    """power := atom ('^' unary)?"""
    base = parse_atom(stream)
    if stream.accept("^"):
        return BinaryOp("^", base, parse_unary(stream))
    return base


def parse_atom(stream: TokenStream) -> Expression:
    token = stream.peek()
    if token.kind == "number":
        stream.next()
        return Number(float(token.text))
    if token.kind == "name":
        stream.next()
        if not stream.at("("):
            return Symbol(token.text)
        if token.text in RESERVED_CALLS:
            raise stream.error(f"'{token.text}()' is only allowed as a top-level term", token)
        if token.text not in FUNCTIONS:
            raise stream.error(
                f"unsupported function '{token.text}'; use one of {sorted(FUNCTIONS)}", token
            )
        stream.expect("(")
        args = [parse_sum(stream)]
        while stream.accept(","):
            args.append(parse_sum(stream))
        stream.expect(")", "unbalanced parentheses")
        if len(args) != 1:
            raise stream.error(f"'{token.text}()' takes exactly one argument", token)
        if token.text == "I":
            # I() only shields arithmetic from formula syntax
            return args[0]
        return Call(token.text, tuple(args))
    if stream.accept("("):
        inner = parse_sum(stream)
        stream.expect(")", "unbalanced parentheses")
        return inner
    found = token.text or "end of formula"
    raise stream.error(f"expected a term but found '{found}'", token)


def parse_expression(source: str) -> Expression:
    """
    Parse a complete arithmetic expression.

    Used for symbolic prior bounds such as ``MAXX - MINX`` or ``cp_1``.
    """
    stream = TokenStream(source)
    expression = parse_sum(stream)
    if not stream.at_end():
        raise stream.error(f"unexpected '{stream.peek().text}'")
    return expression


def evaluate_bound(bound: Union[int, float, str], env: Mapping[str, float]) -> float:
    """Evaluate a numeric or symbolic bound against named values."""
    if isinstance(bound, (int, float)):
        return float(bound)
    try:
        return float(parse_expression(bound).evaluate(env))
    except KeyError as e:
        raise KeyError(f"bound '{bound}' refers to unknown name {e}") from e
