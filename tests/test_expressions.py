"""Expression evaluator and template renderer tests.

All tests use the shared ``ctx`` fixture: a contact named Ana in the
Gasabo district who belongs to the Nurses group, and an ``age_limit`` org
constant of 18.  Run fields are layered on with ``dataclasses.replace``.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from surveyor_flows.errors import EvaluationError
from surveyor_flows.expressions import (
    ExpressionSyntaxError,
    evaluate,
    evaluate_template,
    normalize_key,
    parse,
    parse_date,
    parse_number,
    render,
)
from surveyor_flows.models.value import (
    MISSING,
    BooleanValue,
    DateValue,
    MissingValue,
    NumberValue,
    TextValue,
)


def with_fields(ctx, **fields):
    return replace(ctx, fields={k: v for k, v in fields.items()})


# =====================================================================
# Reference resolution
# =====================================================================


class TestReferences:
    def test_bare_name_prefers_run_fields(self, ctx):
        ctx = with_fields(ctx, name=TextValue(value="Field Name"))
        assert evaluate("name", ctx) == TextValue(value="Field Name")

    def test_bare_name_falls_back_to_contact_then_org(self, ctx):
        assert evaluate("name", ctx) == TextValue(value="Ana")
        assert evaluate("age_limit", ctx) == NumberValue(value=Decimal(18))

    def test_qualified_namespaces(self, ctx):
        ctx = with_fields(ctx, district=TextValue(value="Kicukiro"))
        assert evaluate("contact.district", ctx).as_text() == "Gasabo"
        assert evaluate("fields.district", ctx).as_text() == "Kicukiro"
        assert evaluate("flow.district", ctx).as_text() == "Kicukiro"
        assert evaluate("org.age_limit", ctx).as_text() == "18"
        assert evaluate("globals.age_limit", ctx).as_text() == "18"

    def test_extra_namespace(self, ctx):
        ctx = replace(ctx, extra={"facility": {"name": "CHUK"}})
        assert evaluate("extra.facility.name", ctx) == TextValue(value="CHUK")

    def test_unresolved_reference_is_missing(self, ctx):
        assert isinstance(evaluate("nowhere", ctx), MissingValue)
        assert isinstance(evaluate("contact.phone", ctx), MissingValue)

    def test_step_value_is_latest_input(self, ctx):
        assert evaluate("step.value", ctx) is MISSING
        ctx = ctx.with_input(TextValue(value="15"))
        assert evaluate("step.value", ctx) == TextValue(value="15")
        assert evaluate("input", ctx) == TextValue(value="15")

    def test_contact_lists_render_as_names(self, ctx):
        assert evaluate("contact.groups", ctx).as_text() == "Nurses"

    def test_lookup_is_case_insensitive(self, ctx):
        assert evaluate("contact.District", ctx).as_text() == "Gasabo"


# =====================================================================
# Operators and functions
# =====================================================================


class TestOperators:
    def test_arithmetic_is_decimal(self, ctx):
        assert evaluate("0.1 + 0.2", ctx) == NumberValue(value=Decimal("0.3"))
        assert evaluate("2 * (3 + 4)", ctx).as_text() == "14"
        assert evaluate("-age_limit + 20", ctx).as_text() == "2"

    def test_text_operands_coerce_to_numbers(self, ctx):
        ctx = with_fields(ctx, age=TextValue(value="15"))
        assert evaluate("age + 1", ctx).as_text() == "16"

    def test_division_by_zero_raises(self, ctx):
        with pytest.raises(EvaluationError, match="Division by zero"):
            evaluate("1 / 0", ctx)

    def test_arithmetic_on_text_raises(self, ctx):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate("name + 1", ctx)
        assert exc_info.value.expression == "name + 1"

    @pytest.mark.parametrize("expression", [
        "round(1.5, 30)",
        'date("2020-01-01") + 999999999',
    ])
    def test_out_of_range_arithmetic_raises(self, ctx, expression):
        with pytest.raises(EvaluationError) as exc_info:
            evaluate(expression, ctx)
        assert exc_info.value.expression == expression

        with pytest.raises(EvaluationError):
            render("{" + expression + "}", ctx)
        with pytest.raises(EvaluationError):
            evaluate_template("{" + expression + "}", ctx)

    def test_missing_propagates_through_arithmetic(self, ctx):
        assert isinstance(evaluate("nowhere + 1", ctx), MissingValue)

    def test_concatenation(self, ctx):
        result = evaluate('contact.name & " (" & contact.district & ")"', ctx)
        assert result == TextValue(value="Ana (Gasabo)")

    def test_comparisons(self, ctx):
        assert evaluate("age_limit >= 18", ctx) == BooleanValue(value=True)
        assert evaluate('name = "ana"', ctx) == BooleanValue(value=True)
        assert evaluate('"2024-01-02" > "2023-12-31"', ctx) == BooleanValue(value=True)

    def test_date_plus_days(self, ctx):
        result = evaluate('date("2024-02-28") + 2', ctx)
        assert result == DateValue(value=date(2024, 3, 1))

    def test_functions(self, ctx):
        assert evaluate("upper(name)", ctx).as_text() == "ANA"
        assert evaluate("len(contact.district)", ctx).as_text() == "6"
        assert evaluate("round(2.345, 2)", ctx).as_text() == "2.35"
        assert evaluate('default(nowhere, "none")', ctx).as_text() == "none"
        assert evaluate("is_missing(nowhere)", ctx) == BooleanValue(value=True)

    def test_unknown_function_raises(self, ctx):
        with pytest.raises(EvaluationError, match="Unknown function"):
            evaluate("explode(name)", ctx)

    def test_syntax_errors(self, ctx):
        with pytest.raises(ExpressionSyntaxError):
            evaluate("1 +", ctx)
        with pytest.raises(ExpressionSyntaxError):
            evaluate("(1", ctx)
        with pytest.raises(ExpressionSyntaxError):
            evaluate("a $ b", ctx)


# =====================================================================
# Templates
# =====================================================================


class TestTemplates:
    def test_render_substitutes_spans(self, ctx):
        assert render("Hello {contact.name}!", ctx) == "Hello Ana!"

    def test_missing_renders_empty(self, ctx):
        assert render("[{nowhere}]", ctx) == "[]"

    def test_unmatched_braces_pass_through(self, ctx):
        assert render("a { b", ctx) == "a { b"
        assert render("{ {name}", ctx) == "{ Ana"

    def test_unparsable_span_passes_through(self, ctx):
        assert render("cost: {$5}", ctx) == "cost: {$5}"

    def test_evaluation_failure_raises(self, ctx):
        with pytest.raises(EvaluationError):
            render("{1 / 0}", ctx)

    def test_lone_span_keeps_type(self, ctx):
        assert evaluate_template("{age_limit + 1}", ctx) == NumberValue(value=Decimal(19))
        assert evaluate_template("Limit: {age_limit}", ctx) == TextValue(value="Limit: 18")


# =====================================================================
# Determinism
# =====================================================================


class TestDeterminism:
    EXPRESSIONS = [
        "age_limit * 2 + 1",
        'upper(contact.name) & " " & district',
        'date("01/02/2024") + 30',
        "round(step.value / 3, 2)",
        "nowhere + 1",
    ]

    def test_same_input_same_value(self, ctx):
        ctx = replace(with_fields(ctx, district=TextValue(value="Gasabo")), input=TextValue(value="10"))
        parse.cache_clear()
        cold = [evaluate(e, ctx) for e in self.EXPRESSIONS]
        warm = [[evaluate(e, ctx) for e in self.EXPRESSIONS] for _ in range(3)]
        assert all(values == cold for values in warm)
        assert [v.model_dump() for v in cold] == [v.model_dump() for v in warm[-1]]

    def test_same_template_same_text(self, ctx):
        template = "{contact.name} ({age_limit + 1}) {nowhere}{"
        parse.cache_clear()
        first = render(template, ctx)
        assert [render(template, ctx) for _ in range(3)] == [first] * 3
        assert first == "Ana (19) {"

    def test_evaluation_leaves_context_unchanged(self, ctx):
        ctx = with_fields(ctx, age=NumberValue(value=Decimal(15)))
        before = (dict(ctx.fields), dict(ctx.contact), dict(ctx.org), ctx.input)
        evaluate("age + age_limit", ctx)
        render("{contact.name}", ctx)
        assert (dict(ctx.fields), dict(ctx.contact), dict(ctx.org), ctx.input) == before


# =====================================================================
# Coercion helpers
# =====================================================================


class TestCoercion:
    def test_normalize_key(self):
        assert normalize_key("  Home District ") == "home_district"
        assert normalize_key("Age (years)") == "age_years"

    @pytest.mark.parametrize("raw,separator,expected", [
        ("15", ".", Decimal(15)),
        ("1,250.5", ".", Decimal("1250.5")),
        ("1.250,5", ",", Decimal("1250.5")),
        ("fifteen", ".", None),
    ])
    def test_parse_number(self, raw, separator, expected):
        assert parse_number(raw, separator) == expected

    @pytest.mark.parametrize("raw,style,expected", [
        ("2024-03-01", "day_first", date(2024, 3, 1)),
        ("01/03/2024", "day_first", date(2024, 3, 1)),
        ("03/01/2024", "month_first", date(2024, 3, 1)),
        ("31/02/2024", "day_first", None),
        ("tomorrow", "day_first", None),
    ])
    def test_parse_date(self, raw, style, expected):
        assert parse_date(raw, style) == expected
