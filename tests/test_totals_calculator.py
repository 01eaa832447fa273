"""
tests/test_totals_calculator.py
Tests du calcul des totaux et des contraintes des modèles de devis
"""

from datetime import date
from decimal import Decimal

import pytest
from pydantic import ValidationError

from models.quotation_models import CommercialTerms, LineItem, LostReason, Quotation, QuotationStatus
from services.totals_calculator import compute_totals, display_lines


@pytest.fixture
def scenario_items():
    return [
        LineItem(description="Pressure vessel", quantity=1, unit_price=Decimal("2000000")),
        LineItem(description="Spare parts kit", quantity=1, unit_price=Decimal("300000")),
    ]


@pytest.fixture
def scenario_terms():
    return CommercialTerms(
        transport_cost=Decimal("50000"),
        insurance_cost=Decimal("25000"),
        gst_amount=Decimal("0"),
        packing_forwarding_percentage=Decimal("3"),
    )


class TestComputeTotals:

    def test_reference_scenario(self, scenario_items, scenario_terms):
        totals = compute_totals(scenario_items, scenario_terms)

        assert totals.subtotal == Decimal("2300000")
        assert totals.breakdown.packing_forwarding_amount == Decimal("69000")
        assert totals.grand_total == Decimal("2444000")

    def test_breakdown_lists_every_line(self, scenario_items, scenario_terms):
        totals = compute_totals(scenario_items, scenario_terms)

        assert [line.position for line in totals.breakdown.line_totals] == [1, 2]
        assert totals.breakdown.line_totals[0].line_total == Decimal("2000000")
        assert totals.breakdown.transport_cost == Decimal("50000")

    def test_empty_items_never_raise(self):
        totals = compute_totals([], None)
        assert totals.subtotal == Decimal(0)
        assert totals.grand_total == Decimal(0)

    def test_default_terms_apply_three_percent(self):
        items = [LineItem(description="Valve", quantity=4, unit_price=Decimal("250"))]
        totals = compute_totals(items)
        assert totals.breakdown.packing_forwarding_amount == Decimal("30")
        assert totals.grand_total == Decimal("1030")

    def test_exact_decimal_arithmetic(self):
        items = [LineItem(description=f"Bolt {i}", quantity=1, unit_price=Decimal("0.1")) for i in range(3)]
        totals = compute_totals(items, CommercialTerms(packing_forwarding_percentage=Decimal(0)))
        assert totals.subtotal == Decimal("0.3")

    def test_grand_total_never_below_subtotal(self, scenario_items):
        for percentage in ("0", "1.5", "5"):
            terms = CommercialTerms(packing_forwarding_percentage=Decimal(percentage))
            totals = compute_totals(scenario_items, terms)
            assert totals.grand_total >= totals.subtotal

    def test_deterministic(self, scenario_items, scenario_terms):
        assert compute_totals(scenario_items, scenario_terms) == compute_totals(scenario_items, scenario_terms)

    def test_display_lines(self, scenario_items, scenario_terms):
        lines = display_lines(compute_totals(scenario_items, scenario_terms), "INR")

        assert lines[0] == ("Subtotal", "₹23,00,000.00")
        assert lines[1] == ("Packing & Forwarding (3%)", "₹69,000.00")
        assert lines[-1] == ("Grand Total", "₹24,44,000.00")


class TestModelConstraints:

    def test_quantity_must_be_positive(self):
        with pytest.raises(ValidationError):
            LineItem(description="Valve", quantity=0, unit_price=Decimal("10"))

    def test_negative_price_rejected(self):
        with pytest.raises(ValidationError):
            LineItem(description="Valve", quantity=1, unit_price=Decimal("-1"))

    def test_blank_description_rejected(self):
        with pytest.raises(ValidationError):
            LineItem(description="   ", quantity=1, unit_price=Decimal("10"))

    def test_packing_percentage_capped_at_five(self):
        with pytest.raises(ValidationError):
            CommercialTerms(packing_forwarding_percentage=Decimal("6"))

    def test_currency_is_upper_cased(self):
        quotation = Quotation(quotation_number="QT-1", currency="usd")
        assert quotation.currency == "USD"

    def test_validity_before_quotation_date_rejected(self):
        with pytest.raises(ValidationError):
            Quotation(quotation_number="QT-1", quotation_date=date(2026, 5, 10), validity_period=date(2026, 5, 1))

    def test_lost_reason_only_on_lost(self):
        with pytest.raises(ValidationError):
            Quotation(quotation_number="QT-1", status=QuotationStatus.LIVE, lost_reason=LostReason.PRICE)

    def test_terminal_statuses(self):
        assert not QuotationStatus.DRAFT.is_terminal
        assert not QuotationStatus.LIVE.is_terminal
        assert all(s.is_terminal for s in (
            QuotationStatus.WON, QuotationStatus.LOST, QuotationStatus.BUDGETARY,
            QuotationStatus.RECEIVED, QuotationStatus.DEAD,
        ))
