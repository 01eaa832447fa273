"""
tests/test_payment_plan.py
Tests du parsing des plans de paiement et du calcul des échéances
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from services.payment_plan import (
    CustomPaymentPlan,
    StandardPaymentPlan,
    StandardPaymentTerm,
    generate_milestones,
    milestone_labels,
    parse_payment_plan,
    require_payment_plan,
    resolve_payment_plan,
)
from services.quotation_errors import QuotationValidationError


class TestParsePaymentPlan:

    @pytest.mark.parametrize("text,expected", [
        ("30-30-40", [30.0, 30.0, 40.0]),
        ("50-50", [50.0, 50.0]),
        ("100", [100.0]),
        (" 30 - 30 - 40 ", [30.0, 30.0, 40.0]),
        ("33.33-33.33-33.34", [33.33, 33.33, 33.34]),
    ])
    def test_valid_plans(self, text, expected):
        assert parse_payment_plan(text) == expected

    @pytest.mark.parametrize("text", [
        "30-30-30",     # somme 90
        "-10-110",      # token négatif
        "0-100",        # token nul
        "30-30-40-",    # token vide
        "abc",
        "",
        "30-x-70",
        "60-60",
    ])
    def test_invalid_plans_return_none(self, text):
        assert parse_payment_plan(text) is None

    def test_non_string_input_returns_none(self):
        assert parse_payment_plan(None) is None


class TestResolvePaymentPlan:

    def test_standard_term_is_case_insensitive(self):
        plan = resolve_payment_plan("net 30")
        assert isinstance(plan, StandardPaymentPlan)
        assert plan.term == StandardPaymentTerm.NET_30
        assert plan.text == "Net 30"

    def test_custom_plan(self):
        plan = resolve_payment_plan("30-70")
        assert isinstance(plan, CustomPaymentPlan)
        assert plan.percentages == [30.0, 70.0]
        assert plan.text == "30-70"

    def test_unresolved_plan(self):
        assert resolve_payment_plan("half now") is None
        assert resolve_payment_plan("   ") is None

    def test_require_raises_field_error(self):
        with pytest.raises(QuotationValidationError) as exc_info:
            require_payment_plan("30-30-30")
        assert exc_info.value.errors[0].field == "payment_plan"

    def test_custom_plan_model_rejects_bad_sum(self):
        with pytest.raises(ValidationError):
            CustomPaymentPlan(percentages=[50, 40])

    def test_custom_plan_model_rejects_negative(self):
        with pytest.raises(ValidationError):
            CustomPaymentPlan(percentages=[120, -20])


class TestMilestones:

    def test_three_milestones_have_fixed_labels(self):
        milestones = generate_milestones([30, 30, 40], Decimal("2444000"), "INR")

        assert [m.amount for m in milestones] == [Decimal("733200.00"), Decimal("733200.00"), Decimal("977600.00")]
        assert milestones[0].label == "Advance payment"
        assert milestones[0].due == "on order confirmation"
        assert milestones[1].due == "on completion of fabrication / pre-dispatch"
        assert milestones[2].label == "Final payment"
        assert milestones[2].due == "pre-shipment"

    def test_extra_milestones_get_generic_labels(self):
        labels = milestone_labels(5)
        assert labels[3] == ("Payment 4", "on completion of phase 4")
        assert labels[4] == ("Payment 5", "on completion of phase 5")

    def test_rounding_remainder_goes_to_last_milestone(self):
        milestones = generate_milestones([33.333, 33.333, 33.334], Decimal("100.00"), "INR")
        assert [m.amount for m in milestones] == [Decimal("33.33"), Decimal("33.33"), Decimal("33.34")]

    def test_zero_decimal_currency(self):
        milestones = generate_milestones([50, 50], Decimal("1001"), "JPY")
        assert [m.amount for m in milestones] == [Decimal("501"), Decimal("500")]

    @pytest.mark.parametrize("plan", ["30-30-40", "33.33-33.33-33.34", "10-20-30-40", "12.5-12.5-25-50", "100"])
    @pytest.mark.parametrize("grand_total", ["0.01", "1", "99.99", "2444000", "1234567.89", "7"])
    def test_sum_of_milestones_equals_rounded_total(self, plan, grand_total):
        total = Decimal(grand_total)
        milestones = generate_milestones(parse_payment_plan(plan), total, "INR")

        assert len(milestones) == len(parse_payment_plan(plan))
        assert sum(m.amount for m in milestones) == total.quantize(Decimal("0.01"))

    def test_standard_plan_is_single_milestone(self):
        plan = StandardPaymentPlan(term=StandardPaymentTerm.DAYS_30)
        milestones = generate_milestones(plan, Decimal("1500.505"), "USD")

        assert len(milestones) == 1
        assert milestones[0].percentage == 100.0
        assert milestones[0].amount == Decimal("1500.51")
        assert milestones[0].label == "30 days"

    def test_accepts_custom_plan_model(self):
        plan = CustomPaymentPlan(percentages=[50, 50])
        milestones = generate_milestones(plan, 1000, "USD")
        assert [m.amount for m in milestones] == [Decimal("500.00"), Decimal("500.00")]
