"""Rule and rule-test models for RuleSet nodes.

A RuleSet holds an ordered list of rules; the first rule whose test
accepts the operand wins.  Tests are a closed set of variants:

  Catch-all:
    - true:          "Other" — accepts every value, including missing ones

  Text:
    - equals:        case-insensitive equality
    - contains_any:  any of the test words appears in the operand
    - contains:      all of the test words appear in the operand
    - starts:        operand starts with the test text
    - regex:         case-insensitive regular-expression search
    - not_empty:     operand is non-blank text

  Numeric:
    - eq, lt, lte, gt, gte: comparison against a templated number
    - between:       inclusive range
    - number:        operand can be read as a number

  Date:
    - date_equal, date_before, date_after: comparison against a templated date
    - date:          operand can be read as a date

  Other:
    - in_group:      operand names the group or the contact belongs to it
    - is_missing:    operand is missing

Test arguments are templates: they may reference run fields, e.g.
``{"type": "lt", "test": "{age_limit}"}``.
"""

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, BeforeValidator, Field


def _stringify(value: Any) -> Any:
    """Accept bare JSON numbers where a templated argument is expected."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(value)
    return value


# A template argument: plain text, possibly containing {expr} spans.
TemplateArg = Annotated[str, BeforeValidator(_stringify)]

# Text that is either a single string or a language → string map.
Localized = Union[TemplateArg, Dict[str, TemplateArg]]


class TrueTest(BaseModel):
    """Catch-all ("Other").  Exactly one per waiting ruleset."""

    type: Literal["true"] = "true"


class TextTest(BaseModel):
    type: Literal["equals", "contains_any", "contains", "starts"]
    test: Localized


class RegexTest(BaseModel):
    type: Literal["regex"] = "regex"
    test: Localized


class NotEmptyTest(BaseModel):
    type: Literal["not_empty"] = "not_empty"


class NumberCompareTest(BaseModel):
    type: Literal["eq", "lt", "lte", "gt", "gte"]
    test: TemplateArg


class BetweenTest(BaseModel):
    type: Literal["between"] = "between"
    min: TemplateArg
    max: TemplateArg


class HasNumberTest(BaseModel):
    type: Literal["number"] = "number"


class DateCompareTest(BaseModel):
    type: Literal["date_equal", "date_before", "date_after"]
    test: TemplateArg


class HasDateTest(BaseModel):
    type: Literal["date"] = "date"


class GroupRef(BaseModel):
    """Reference to a contact group by name and/or UUID."""

    name: Optional[str] = None
    uuid: Optional[str] = None


class GroupTest(BaseModel):
    type: Literal["in_group"] = "in_group"
    test: GroupRef


class IsMissingTest(BaseModel):
    type: Literal["is_missing"] = "is_missing"


RuleTest = Annotated[
    Union[
        TrueTest,
        TextTest,
        RegexTest,
        NotEmptyTest,
        NumberCompareTest,
        BetweenTest,
        HasNumberTest,
        DateCompareTest,
        HasDateTest,
        GroupTest,
        IsMissingTest,
    ],
    Field(discriminator="type"),
]


class Rule(BaseModel):
    """One branch of a RuleSet: ``test`` → ``category`` → ``destination``.

    ``destination`` is None for a terminal branch.
    """

    uuid: Optional[str] = None
    test: RuleTest
    category: Dict[str, str]
    destination: Optional[str] = None

    @property
    def is_catch_all(self) -> bool:
        return isinstance(self.test, TrueTest)


def rules_catch_all_count(rules: List[Rule]) -> int:
    """Number of catch-all rules in a rule list."""
    return sum(1 for r in rules if r.is_catch_all)
