"""Typed values produced by the expression evaluator.

Every evaluation yields exactly one of five variants:

  - TextValue:    free text (the type of every raw response)
  - NumberValue:  a Decimal, never a float, so comparisons are exact
  - DateValue:    a calendar date
  - BooleanValue: result of a comparison
  - MissingValue: an unresolved reference or an absent result

The discriminated ``Value`` union uses ``type`` as its discriminator so run
field values can be persisted as JSON and validated back unchanged.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class TextValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    value: str

    def as_text(self) -> str:
        return self.value


class NumberValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["number"] = "number"
    value: Decimal

    def as_text(self) -> str:
        # Integral numbers render without a trailing ".0" / exponent
        if self.value == self.value.to_integral_value():
            return str(self.value.quantize(Decimal(1)))
        return format(self.value.normalize(), "f")


class DateValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["date"] = "date"
    value: date

    def as_text(self) -> str:
        return self.value.isoformat()


class BooleanValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["boolean"] = "boolean"
    value: bool

    def as_text(self) -> str:
        return "true" if self.value else "false"


class MissingValue(BaseModel):
    """An unresolved reference.  Renders as empty text."""

    model_config = ConfigDict(frozen=True)

    type: Literal["missing"] = "missing"

    def as_text(self) -> str:
        return ""


Value = Annotated[
    Union[TextValue, NumberValue, DateValue, BooleanValue, MissingValue],
    Field(discriminator="type"),
]

MISSING = MissingValue()


def text(value: str) -> TextValue:
    """Shorthand used by the engine when wrapping raw input."""
    return TextValue(value=value)


def is_missing(value: object) -> bool:
    return isinstance(value, MissingValue)
