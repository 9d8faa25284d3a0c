"""RuleMatcher — selects the branch of a RuleSet for an operand value.

Rules are tested in definition order; the first rule whose test accepts
the operand wins.  There is no reordering and no overlap resolution beyond
order.  Waiting rulesets always carry exactly one catch-all (enforced by the
loader), so :meth:`RuleMatcher.match` always returns a rule for them.

Test semantics:
  - A missing operand fails every test except ``is_missing`` and the
    catch-all.
  - Numeric and date tests coerce text via the org's locale settings; a
    failed coercion fails that test only.
  - Test arguments are templates rendered against the run context.
"""

from __future__ import annotations

import re
from decimal import Decimal
from typing import Any, Mapping

from surveyor_flows.errors import EvaluationError
from surveyor_flows.expressions import (
    EvaluationContext,
    parse_number,
    render,
    to_date,
    to_number,
)
from surveyor_flows.models.flow import FlowDefinition, RuleSet
from surveyor_flows.models.rule import (
    BetweenTest,
    DateCompareTest,
    GroupTest,
    HasDateTest,
    HasNumberTest,
    IsMissingTest,
    NotEmptyTest,
    NumberCompareTest,
    RegexTest,
    Rule,
    TextTest,
    TrueTest,
)
from surveyor_flows.models.value import MissingValue, TextValue, Value

_WORD_RE = re.compile(r"\w+", re.UNICODE)


def localize(
    texts: Mapping[str, str] | str,
    *,
    language: str | None,
    flow: FlowDefinition,
) -> str:
    """Pick the text for ``language``, falling back deterministically.

    Order: the requested language, the flow's base language, the flow's
    declared languages in declared order, then the first key present.
    """
    if isinstance(texts, str):
        return texts
    if language and language in texts:
        return texts[language]
    for lang in flow.language_order():
        if lang in texts:
            return texts[lang]
    return next(iter(texts.values()), "")


def resolve_category(rule: Rule, flow: FlowDefinition, language: str | None) -> str:
    """Localized category name of a matched rule."""
    return localize(rule.category, language=language, flow=flow)


class RuleMatcher:
    """Evaluates an ordered list of rule tests against an operand value."""

    def match(
        self,
        ruleset: RuleSet,
        operand: Value,
        ctx: EvaluationContext,
        *,
        flow: FlowDefinition,
        language: str | None = None,
    ) -> Rule:
        """Return the first rule whose test accepts ``operand``.

        Raises:
            EvaluationError: if a test cannot be evaluated (e.g. an invalid
                regex after templating), or if no rule matched in a ruleset
                without a catch-all.
        """
        for rule in ruleset.rules:
            if self.test(rule.test, operand, ctx, flow=flow, language=language):
                return rule

        raise EvaluationError(
            f"No rule matched in rule set {ruleset.id!r} for value {operand.as_text()!r}"
        )

    # ------------------------------------------------------------------
    # Test dispatch
    # ------------------------------------------------------------------

    def test(
        self,
        test: Any,
        operand: Value,
        ctx: EvaluationContext,
        *,
        flow: FlowDefinition,
        language: str | None = None,
    ) -> bool:
        """Evaluate one test variant against the operand."""
        if isinstance(test, TrueTest):
            return True

        if isinstance(test, IsMissingTest):
            return isinstance(operand, MissingValue)

        # Every other test fails on a missing operand
        if isinstance(operand, MissingValue):
            return False

        if isinstance(test, TextTest):
            arg = render(localize(test.test, language=language, flow=flow), ctx)
            return self._text_test(test.type, operand.as_text(), arg)

        if isinstance(test, RegexTest):
            pattern = render(localize(test.test, language=language, flow=flow), ctx)
            return self._regex_test(pattern, operand.as_text())

        if isinstance(test, NotEmptyTest):
            return bool(operand.as_text().strip())

        if isinstance(test, NumberCompareTest):
            value = self._find_number(operand, ctx)
            target = parse_number(render(test.test, ctx), ctx.decimal_separator)
            if value is None or target is None:
                return False
            return self._compare(test.type, value, target)

        if isinstance(test, BetweenTest):
            value = self._find_number(operand, ctx)
            low = parse_number(render(test.min, ctx), ctx.decimal_separator)
            high = parse_number(render(test.max, ctx), ctx.decimal_separator)
            if value is None or low is None or high is None:
                return False
            return low <= value <= high

        if isinstance(test, HasNumberTest):
            return self._find_number(operand, ctx) is not None

        if isinstance(test, DateCompareTest):
            value = to_date(operand, ctx)
            target = to_date(TextValue(value=render(test.test, ctx)), ctx)
            if value is None or target is None:
                return False
            if test.type == "date_before":
                return value < target
            if test.type == "date_after":
                return value > target
            return value == target

        if isinstance(test, HasDateTest):
            return to_date(operand, ctx) is not None

        if isinstance(test, GroupTest):
            return self._group_test(test, operand, ctx)

        raise EvaluationError(f"Unsupported rule test: {type(test).__name__}")

    # ------------------------------------------------------------------
    # Variant helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _text_test(kind: str, value: str, arg: str) -> bool:
        value_cf = value.strip().casefold()
        arg_cf = arg.strip().casefold()
        if kind == "equals":
            return value_cf == arg_cf
        if kind == "starts":
            return bool(arg_cf) and value_cf.startswith(arg_cf)

        words = set(_WORD_RE.findall(value_cf))
        wanted = _WORD_RE.findall(arg_cf)
        if not wanted:
            return False
        if kind == "contains_any":
            return any(w in words for w in wanted)
        if kind == "contains":
            return all(w in words for w in wanted)
        raise EvaluationError(f"Unknown text test {kind!r}")

    @staticmethod
    def _regex_test(pattern: str, value: str) -> bool:
        try:
            compiled = re.compile(pattern, re.IGNORECASE | re.UNICODE)
        except re.error as exc:
            raise EvaluationError(f"Invalid regex {pattern!r}: {exc}") from exc
        return compiled.search(value) is not None

    @staticmethod
    def _find_number(operand: Value, ctx: EvaluationContext) -> Decimal | None:
        """Read the operand as a number, or else the first word that is one.

        Surveyors often answer "15 years"; the number is still usable.
        """
        number = to_number(operand, ctx)
        if number is not None or not isinstance(operand, TextValue):
            return number
        for word in operand.value.split():
            number = parse_number(word.strip(".,;:!?"), ctx.decimal_separator)
            if number is not None:
                return number
        return None

    @staticmethod
    def _compare(op: str, value: Decimal, target: Decimal) -> bool:
        if op == "eq":
            return value == target
        if op == "lt":
            return value < target
        if op == "lte":
            return value <= target
        if op == "gt":
            return value > target
        if op == "gte":
            return value >= target
        raise EvaluationError(f"Unknown numeric test {op!r}")

    @staticmethod
    def _group_test(test: GroupTest, operand: Value, ctx: EvaluationContext) -> bool:
        """Operand names the group, or the contact is already a member."""
        keys = {k.casefold() for k in (test.test.name, test.test.uuid) if k}
        if not keys:
            return False
        if operand.as_text().strip().casefold() in keys:
            return True

        groups = ctx.contact.get("groups") or []
        for group in groups:
            if isinstance(group, Mapping):
                candidates = (group.get("name"), group.get("uuid"))
            else:
                candidates = (group,)
            if any(c and str(c).casefold() in keys for c in candidates):
                return True
        return False
