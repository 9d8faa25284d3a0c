"""Expression evaluator — variable substitution and typed tests.

Two entry points:

  - :func:`evaluate` parses and evaluates a single expression, e.g.
    ``age + 1``, ``contact.name & " (" & district & ")"``,
    ``default(step.value, "none")``, and returns a typed ``Value``.
  - :func:`render` substitutes ``{expr}`` spans inside message templates.
    Unmatched braces, and spans whose content does not parse as an
    expression, are passed through verbatim.

Reference resolution (bare names): run fields first, then contact
attributes, then organization constants.  Qualified prefixes select one
namespace explicitly: ``fields.`` (alias ``flow.``), ``contact.``,
``org.`` (alias ``globals.``), ``extra.``.  ``step.value`` and ``input``
are the most recent response.  An unresolved reference yields Missing.

Evaluation is deterministic and side-effect free; parsed expressions are
cached because the same operands are evaluated on every run.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from decimal import Decimal, DivisionByZero, InvalidOperation, ROUND_HALF_UP
from functools import lru_cache
from typing import Any, Callable, Mapping, Sequence

from surveyor_flows.errors import EvaluationError
from surveyor_flows.models.value import (
    MISSING,
    BooleanValue,
    DateValue,
    MissingValue,
    NumberValue,
    TextValue,
    Value,
)


class ExpressionSyntaxError(EvaluationError):
    """The expression text could not be parsed."""


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EvaluationContext:
    """Everything an expression may read.  Never mutated by evaluation."""

    fields: Mapping[str, Value] = field(default_factory=dict)
    contact: Mapping[str, Any] = field(default_factory=dict)
    org: Mapping[str, Any] = field(default_factory=dict)
    extra: Mapping[str, Any] = field(default_factory=dict)
    # The most recent response (step.value); None means no response yet
    input: Value | None = None
    # Locale settings used when coercing text to numbers and dates
    date_style: str = "day_first"
    decimal_separator: str = "."

    def with_input(self, value: Value | None) -> "EvaluationContext":
        return EvaluationContext(
            fields=self.fields,
            contact=self.contact,
            org=self.org,
            extra=self.extra,
            input=value,
            date_style=self.date_style,
            decimal_separator=self.decimal_separator,
        )


# ---------------------------------------------------------------------------
# Key normalization & python → Value conversion
# ---------------------------------------------------------------------------

_KEY_RE = re.compile(r"[^a-z0-9]+")


def normalize_key(key: str) -> str:
    """Normalize a field key: lower-case, non-alphanumerics collapsed to ``_``."""
    return _KEY_RE.sub("_", key.strip().lower()).strip("_")


def from_python(obj: Any) -> Value:
    """Wrap a plain Python value (from contact/org/extra context) as a Value."""
    if obj is None:
        return MISSING
    if isinstance(obj, (TextValue, NumberValue, DateValue, BooleanValue, MissingValue)):
        return obj
    if isinstance(obj, bool):
        return BooleanValue(value=obj)
    if isinstance(obj, Decimal):
        return NumberValue(value=obj)
    if isinstance(obj, int):
        return NumberValue(value=Decimal(obj))
    if isinstance(obj, float):
        return NumberValue(value=Decimal(str(obj)))
    if isinstance(obj, datetime):
        return DateValue(value=obj.date())
    if isinstance(obj, date):
        return DateValue(value=obj)
    if isinstance(obj, str):
        return TextValue(value=obj)
    if isinstance(obj, (list, tuple)):
        # Lists (e.g. contact groups) render as comma-separated names
        return TextValue(value=", ".join(_name_of(item) for item in obj))
    return TextValue(value=json.dumps(obj, sort_keys=True, default=str))


def _name_of(item: Any) -> str:
    if isinstance(item, Mapping):
        return str(item.get("name") or item.get("uuid") or "")
    return str(item)


# ---------------------------------------------------------------------------
# Coercion — shared with the rule matcher
# ---------------------------------------------------------------------------

_NUMBER_RE = re.compile(r"^[+-]?\d+(\.\d+)?$")
_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_DATE_RE = re.compile(r"(\d{1,4})[-/.](\d{1,2})[-/.](\d{1,4})")


def parse_number(raw: str, decimal_separator: str = ".") -> Decimal | None:
    """Parse a locale-formatted number, ignoring thousands separators."""
    s = raw.strip().replace(" ", "")
    if decimal_separator == ",":
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")
    if not _NUMBER_RE.match(s):
        return None
    try:
        return Decimal(s)
    except InvalidOperation:
        return None


def parse_date(raw: str, date_style: str = "day_first") -> date | None:
    """Parse a date written in ISO form or in the org's date style."""
    s = raw.strip()
    m = _ISO_DATE_RE.match(s)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _DATE_RE.search(s)
    if not m:
        return None
    a, b, c = (int(g) for g in m.groups())
    if date_style == "year_first":
        year, month, day = a, b, c
    elif date_style == "month_first":
        month, day, year = a, b, c
    else:
        day, month, year = a, b, c
    if year < 100:
        year += 2000 if year < 70 else 1900
    return _safe_date(year, month, day)


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def to_number(value: Value, ctx: EvaluationContext) -> Decimal | None:
    """Coerce a value to a Decimal, or None if it does not read as a number."""
    if isinstance(value, NumberValue):
        return value.value
    if isinstance(value, TextValue):
        return parse_number(value.value, ctx.decimal_separator)
    return None


def to_date(value: Value, ctx: EvaluationContext) -> date | None:
    """Coerce a value to a date, or None if it does not read as a date."""
    if isinstance(value, DateValue):
        return value.value
    if isinstance(value, TextValue):
        return parse_date(value.value, ctx.date_style)
    return None


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------

_TOKEN_RE = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+(?:\.\d+)?)
  | (?P<string>"(?:[^"\\]|\\.)*")
  | (?P<name>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z0-9_]+)*)
  | (?P<op><=|>=|!=|=|<|>|\+|-|\*|/|&|\(|\)|,)
    """,
    re.VERBOSE,
)


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    pos = 0
    while pos < len(expression):
        m = _TOKEN_RE.match(expression, pos)
        if m is None:
            raise ExpressionSyntaxError(
                f"Unexpected character {expression[pos]!r} at {pos}",
                expression=expression,
            )
        kind = m.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, m.group()))
        pos = m.end()
    return tokens


# ---------------------------------------------------------------------------
# AST
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class _Literal:
    value: Value


@dataclass(frozen=True)
class _Ref:
    path: str


@dataclass(frozen=True)
class _Call:
    name: str
    args: tuple


@dataclass(frozen=True)
class _Unary:
    op: str
    operand: Any


@dataclass(frozen=True)
class _Binary:
    op: str
    left: Any
    right: Any


class _Parser:
    """Recursive-descent parser.

    comparison := concat (("=" | "!=" | "<" | "<=" | ">" | ">=") concat)?
    concat     := additive ("&" additive)*
    additive   := term (("+" | "-") term)*
    term       := unary (("*" | "/") unary)*
    unary      := "-" unary | primary
    primary    := NUMBER | STRING | NAME | NAME "(" args ")" | "(" comparison ")"
    """

    def __init__(self, expression: str) -> None:
        self._expr = expression
        self._tokens = _tokenize(expression)
        self._pos = 0

    def parse(self):
        if not self._tokens:
            raise ExpressionSyntaxError("Empty expression", expression=self._expr)
        node = self._comparison()
        if self._pos != len(self._tokens):
            raise ExpressionSyntaxError(
                f"Unexpected token {self._tokens[self._pos].text!r}",
                expression=self._expr,
            )
        return node

    # --- token helpers ---

    def _peek(self) -> _Token | None:
        return self._tokens[self._pos] if self._pos < len(self._tokens) else None

    def _accept(self, *ops: str) -> str | None:
        tok = self._peek()
        if tok is not None and tok.kind == "op" and tok.text in ops:
            self._pos += 1
            return tok.text
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            raise ExpressionSyntaxError(f"Expected {op!r}", expression=self._expr)

    # --- grammar ---

    def _comparison(self):
        left = self._concat()
        op = self._accept("=", "!=", "<", "<=", ">", ">=")
        if op is not None:
            left = _Binary(op, left, self._concat())
        return left

    def _concat(self):
        left = self._additive()
        while self._accept("&"):
            left = _Binary("&", left, self._additive())
        return left

    def _additive(self):
        left = self._term()
        while True:
            op = self._accept("+", "-")
            if op is None:
                return left
            left = _Binary(op, left, self._term())

    def _term(self):
        left = self._unary()
        while True:
            op = self._accept("*", "/")
            if op is None:
                return left
            left = _Binary(op, left, self._unary())

    def _unary(self):
        if self._accept("-"):
            return _Unary("-", self._unary())
        return self._primary()

    def _primary(self):
        tok = self._peek()
        if tok is None:
            raise ExpressionSyntaxError("Unexpected end of expression", expression=self._expr)

        if tok.kind == "number":
            self._pos += 1
            return _Literal(NumberValue(value=Decimal(tok.text)))

        if tok.kind == "string":
            self._pos += 1
            raw = tok.text[1:-1]
            return _Literal(TextValue(value=re.sub(r"\\(.)", r"\1", raw)))

        if tok.kind == "name":
            self._pos += 1
            lowered = tok.text.lower()
            if lowered in ("true", "false"):
                return _Literal(BooleanValue(value=lowered == "true"))
            if self._accept("("):
                args = []
                if not self._accept(")"):
                    args.append(self._comparison())
                    while self._accept(","):
                        args.append(self._comparison())
                    self._expect(")")
                return _Call(lowered, tuple(args))
            return _Ref(tok.text)

        if self._accept("("):
            node = self._comparison()
            self._expect(")")
            return node

        raise ExpressionSyntaxError(f"Unexpected token {tok.text!r}", expression=self._expr)


@lru_cache(maxsize=1024)
def parse(expression: str):
    """Parse expression text into an AST (cached).

    Raises:
        ExpressionSyntaxError: if the text is not a valid expression.
    """
    return _Parser(expression).parse()


# ---------------------------------------------------------------------------
# Reference resolution
# ---------------------------------------------------------------------------

def _traverse(root: Mapping[str, Any], parts: Sequence[str]) -> Any:
    """Walk nested mappings case-insensitively; None if any segment is absent."""
    current: Any = root
    for part in parts:
        if not isinstance(current, Mapping):
            return None
        if part in current:
            current = current[part]
            continue
        lowered = part.lower()
        match = next((k for k in current if str(k).lower() == lowered), None)
        if match is None:
            return None
        current = current[match]
    return current


def resolve_reference(path: str, ctx: EvaluationContext) -> Value:
    """Resolve a dotted reference against the context; Missing if unresolved."""
    parts = path.split(".")
    head = parts[0].lower()
    rest = parts[1:]

    if path.lower() in ("step.value", "input"):
        return ctx.input if ctx.input is not None else MISSING

    if rest:
        if head in ("fields", "flow"):
            return ctx.fields.get(normalize_key(".".join(rest)), MISSING)
        if head == "contact":
            return from_python(_traverse(ctx.contact, rest))
        if head in ("org", "globals"):
            return from_python(_traverse(ctx.org, rest))
        if head == "extra":
            return from_python(_traverse(ctx.extra, rest))

    key = normalize_key(path)
    if key in ctx.fields:
        return ctx.fields[key]
    found = _traverse(ctx.contact, parts)
    if found is not None:
        return from_python(found)
    return from_python(_traverse(ctx.org, parts))


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def _require_number(value: Value, ctx: EvaluationContext, op: str) -> Decimal:
    num = to_number(value, ctx)
    if num is None:
        raise EvaluationError(f"Operator {op!r} expects a number, got {value.as_text()!r}")
    return num


def _arith(op: str, left: Value, right: Value, ctx: EvaluationContext) -> Value:
    if isinstance(left, MissingValue) or isinstance(right, MissingValue):
        return MISSING

    # Date arithmetic: date ± days
    left_date = left.value if isinstance(left, DateValue) else None
    if left_date is not None and op in ("+", "-"):
        days = _require_number(right, ctx, op)
        delta = timedelta(days=int(days))
        return DateValue(value=left_date + delta if op == "+" else left_date - delta)

    a = _require_number(left, ctx, op)
    b = _require_number(right, ctx, op)
    if op == "+":
        return NumberValue(value=a + b)
    if op == "-":
        return NumberValue(value=a - b)
    if op == "*":
        return NumberValue(value=a * b)
    if op == "/":
        if b == 0:
            raise EvaluationError("Division by zero")
        try:
            return NumberValue(value=a / b)
        except (DivisionByZero, InvalidOperation) as exc:
            raise EvaluationError(f"Invalid division: {exc}") from exc
    raise EvaluationError(f"Unknown operator {op!r}")


def _compare(op: str, left: Value, right: Value, ctx: EvaluationContext) -> Value:
    if isinstance(left, MissingValue) or isinstance(right, MissingValue):
        return MISSING

    a: Any
    b: Any
    left_num, right_num = to_number(left, ctx), to_number(right, ctx)
    if left_num is not None and right_num is not None:
        a, b = left_num, right_num
    else:
        left_date, right_date = to_date(left, ctx), to_date(right, ctx)
        if left_date is not None and right_date is not None:
            a, b = left_date, right_date
        else:
            a, b = left.as_text().casefold(), right.as_text().casefold()

    if op == "=":
        result = a == b
    elif op == "!=":
        result = a != b
    elif op == "<":
        result = a < b
    elif op == "<=":
        result = a <= b
    elif op == ">":
        result = a > b
    elif op == ">=":
        result = a >= b
    else:
        raise EvaluationError(f"Unknown operator {op!r}")
    return BooleanValue(value=result)


def _fn_round(args: list[Value], ctx: EvaluationContext) -> Value:
    if isinstance(args[0], MissingValue):
        return MISSING
    places = int(_require_number(args[1], ctx, "round")) if len(args) > 1 else 0
    quantum = Decimal(1).scaleb(-places)
    return NumberValue(value=_require_number(args[0], ctx, "round").quantize(quantum, ROUND_HALF_UP))


def _fn_number(args: list[Value], ctx: EvaluationContext) -> Value:
    if isinstance(args[0], MissingValue):
        return MISSING
    return NumberValue(value=_require_number(args[0], ctx, "number"))


def _fn_date(args: list[Value], ctx: EvaluationContext) -> Value:
    if isinstance(args[0], MissingValue):
        return MISSING
    parsed = to_date(args[0], ctx)
    if parsed is None:
        raise EvaluationError(f"date() cannot read {args[0].as_text()!r} as a date")
    return DateValue(value=parsed)


def _text_fn(transform: Callable[[str], str]) -> Callable[[list[Value], EvaluationContext], Value]:
    def fn(args: list[Value], ctx: EvaluationContext) -> Value:
        if isinstance(args[0], MissingValue):
            return MISSING
        return TextValue(value=transform(args[0].as_text()))
    return fn


def _fn_default(args: list[Value], ctx: EvaluationContext) -> Value:
    first = args[0]
    if isinstance(first, MissingValue) or (isinstance(first, TextValue) and not first.value.strip()):
        return args[1]
    return first


# name → (min args, max args, implementation)
_FUNCTIONS: dict[str, tuple[int, int, Callable[[list[Value], EvaluationContext], Value]]] = {
    "upper": (1, 1, _text_fn(str.upper)),
    "lower": (1, 1, _text_fn(str.lower)),
    "trim": (1, 1, _text_fn(str.strip)),
    "len": (1, 1, lambda a, c: NumberValue(value=Decimal(len(a[0].as_text())))),
    "abs": (1, 1, lambda a, c: MISSING if isinstance(a[0], MissingValue)
            else NumberValue(value=abs(_require_number(a[0], c, "abs")))),
    "round": (1, 2, _fn_round),
    "default": (2, 2, _fn_default),
    "is_missing": (1, 1, lambda a, c: BooleanValue(value=isinstance(a[0], MissingValue))),
    "number": (1, 1, _fn_number),
    "date": (1, 1, _fn_date),
}


def _eval_node(node: Any, ctx: EvaluationContext) -> Value:
    if isinstance(node, _Literal):
        return node.value
    if isinstance(node, _Ref):
        return resolve_reference(node.path, ctx)
    if isinstance(node, _Unary):
        operand = _eval_node(node.operand, ctx)
        if isinstance(operand, MissingValue):
            return MISSING
        return NumberValue(value=-_require_number(operand, ctx, "-"))
    if isinstance(node, _Binary):
        left = _eval_node(node.left, ctx)
        right = _eval_node(node.right, ctx)
        if node.op == "&":
            return TextValue(value=left.as_text() + right.as_text())
        if node.op in ("+", "-", "*", "/"):
            return _arith(node.op, left, right, ctx)
        return _compare(node.op, left, right, ctx)
    if isinstance(node, _Call):
        spec = _FUNCTIONS.get(node.name)
        if spec is None:
            raise EvaluationError(f"Unknown function {node.name!r}")
        min_args, max_args, impl = spec
        if not min_args <= len(node.args) <= max_args:
            raise EvaluationError(
                f"{node.name}() takes {min_args}-{max_args} arguments, got {len(node.args)}"
            )
        return impl([_eval_node(arg, ctx) for arg in node.args], ctx)
    raise EvaluationError(f"Unsupported expression node: {type(node).__name__}")


def _eval_source(node: Any, source: str, ctx: EvaluationContext) -> Value:
    """Evaluate a parsed expression, tagging any failure with its source."""
    try:
        return _eval_node(node, ctx)
    except EvaluationError as exc:
        if exc.expression is None:
            exc.expression = source
        raise
    except ArithmeticError as exc:
        # decimal.InvalidOperation, OverflowError from date ranges
        raise EvaluationError(f"Arithmetic error: {exc}", expression=source) from exc


def evaluate(expression: str, ctx: EvaluationContext) -> Value:
    """Evaluate a single expression against the context.

    Raises:
        EvaluationError: on syntax errors, unknown functions, division by
            zero, or arithmetic on values that are not numbers.
    """
    try:
        node = parse(expression.strip())
    except RecursionError as exc:
        raise ExpressionSyntaxError("Expression nested too deeply", expression=expression) from exc
    return _eval_source(node, expression, ctx)


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def _template_parts(template: str) -> list[tuple[str, Any]]:
    """Split a template into ("text", str) and ("expr", (source, ast)) parts."""
    parts: list[tuple[str, Any]] = []
    i = 0
    while True:
        start = template.find("{", i)
        if start == -1:
            parts.append(("text", template[i:]))
            return parts
        end = template.find("}", start + 1)
        if end == -1:
            parts.append(("text", template[i:]))
            return parts
        # A second "{" before the closing brace leaves the first unmatched
        inner_open = template.find("{", start + 1, end)
        if inner_open != -1:
            parts.append(("text", template[i:inner_open]))
            i = inner_open
            continue
        parts.append(("text", template[i:start]))
        source = template[start + 1:end]
        try:
            parts.append(("expr", (source, parse(source.strip()))))
        except ExpressionSyntaxError:
            parts.append(("text", template[start:end + 1]))
        i = end + 1


def render(template: str, ctx: EvaluationContext) -> str:
    """Substitute every ``{expr}`` span; Missing renders as empty text.

    Raises:
        EvaluationError: if a well-formed span fails to evaluate.
    """
    out: list[str] = []
    for kind, payload in _template_parts(template):
        if kind == "text":
            out.append(payload)
        else:
            source, node = payload
            out.append(_eval_source(node, source, ctx).as_text())
    return "".join(out)


def evaluate_template(template: str, ctx: EvaluationContext) -> Value:
    """Evaluate a template, keeping the typed value of a lone ``{expr}`` span.

    ``"{age + 1}"`` yields a NumberValue; ``"Age: {age}"`` yields text.
    """
    parts = [p for p in _template_parts(template.strip()) if not (p[0] == "text" and p[1] == "")]
    if len(parts) == 1 and parts[0][0] == "expr":
        source, node = parts[0][1]
        return _eval_source(node, source, ctx)
    return TextValue(value=render(template, ctx))
