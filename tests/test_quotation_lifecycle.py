"""
tests/test_quotation_lifecycle.py
Tests de la machine à états des devis
"""

from datetime import datetime
from decimal import Decimal

import pytest

from models.quotation_models import CommercialTerms, LineItem, LostReason, PurchaseOrder, Quotation, QuotationStatus
from services.payment_plan import CustomPaymentPlan
from services.quotation_errors import InvalidTransitionError, QuotationStateError, QuotationValidationError
from services.quotation_lifecycle import (
    TRANSITIONS,
    QuotationEvent,
    TransitionRequest,
    allowed_transitions,
    attach_purchase_order_document,
    ensure_mutable,
    enquiry_status_for,
    transition,
)

NOW = datetime(2026, 10, 17, 9, 30)


def make_quotation(**overrides) -> Quotation:
    data = {
        "id": "q-1",
        "quotation_number": "QT-001",
        "items": [
            LineItem(description="Pressure vessel", quantity=1, unit_price=Decimal("2000000")),
            LineItem(description="Spare parts kit", quantity=1, unit_price=Decimal("300000")),
        ],
        "commercial_terms": CommercialTerms(
            transport_cost=Decimal("50000"), insurance_cost=Decimal("25000"),
        ),
        "payment_plan": CustomPaymentPlan(percentages=[30, 30, 40]),
    }
    data.update(overrides)
    return Quotation(**data)


def request(status, **kwargs) -> TransitionRequest:
    return TransitionRequest(status=status, actor="u-42", **kwargs)


class TestSubmit:

    def test_draft_to_live(self):
        updated, record = transition(make_quotation(), request(QuotationStatus.LIVE), now=NOW)

        assert updated.status == QuotationStatus.LIVE
        assert updated.total_value == Decimal("2444000")
        assert updated.value_frozen is False
        assert record.event == QuotationEvent.SUBMIT
        assert record.value_snapshot is None
        assert record.occurred_at == NOW
        assert record.actor == "u-42"

    def test_requires_items(self):
        with pytest.raises(QuotationValidationError) as exc_info:
            transition(make_quotation(items=[]), request(QuotationStatus.LIVE))
        assert exc_info.value.errors[0].field == "items"

    def test_requires_payment_plan(self):
        with pytest.raises(QuotationValidationError) as exc_info:
            transition(make_quotation(payment_plan=None), request(QuotationStatus.LIVE))
        assert exc_info.value.errors[0].field == "payment_plan"

    def test_draft_cannot_skip_live(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(make_quotation(), request(QuotationStatus.WON))
        assert exc_info.value.to_dict()["allowed_statuses"] == ["LIVE"]


class TestOutcomes:

    def test_lost_requires_reason(self):
        live = make_quotation(status=QuotationStatus.LIVE)
        with pytest.raises(QuotationValidationError) as exc_info:
            transition(live, request(QuotationStatus.LOST))
        assert exc_info.value.errors[0].field == "lost_reason"

    def test_lost_with_reason_freezes_value(self):
        live = make_quotation(status=QuotationStatus.LIVE)
        updated, record = transition(live, request(QuotationStatus.LOST, lost_reason=LostReason.PRICE), now=NOW)

        assert updated.status == QuotationStatus.LOST
        assert updated.lost_reason == LostReason.PRICE
        assert updated.value_frozen is True
        assert updated.total_value == Decimal("2444000")
        assert record.value_snapshot == Decimal("2444000")
        assert record.enquiry_status == "LOST"

    @pytest.mark.parametrize("target", [QuotationStatus.WON, QuotationStatus.BUDGETARY, QuotationStatus.DEAD])
    def test_unconditional_outcomes(self, target):
        updated, record = transition(make_quotation(status=QuotationStatus.LIVE), request(target))
        assert updated.status == target
        assert record.value_snapshot == Decimal("2444000")

    def test_received_requires_purchase_order(self):
        with pytest.raises(QuotationValidationError) as exc_info:
            transition(make_quotation(status=QuotationStatus.LIVE), request(QuotationStatus.RECEIVED))
        assert exc_info.value.errors[0].field == "purchase_order.number"

    def test_received_without_document_is_pending(self):
        po = PurchaseOrder(number="PO-778", value=Decimal("2444000"))
        updated, record = transition(
            make_quotation(status=QuotationStatus.LIVE), request(QuotationStatus.RECEIVED, purchase_order=po)
        )

        assert updated.status == QuotationStatus.RECEIVED
        assert updated.purchase_order.number == "PO-778"
        assert record.pending_attachment is True
        assert record.enquiry_status == "WON"

    def test_lost_reason_rejected_for_other_targets(self):
        with pytest.raises(QuotationValidationError):
            transition(make_quotation(status=QuotationStatus.LIVE),
                       request(QuotationStatus.WON, lost_reason=LostReason.OTHER))

    def test_terminal_status_cannot_move(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            transition(make_quotation(status=QuotationStatus.WON), request(QuotationStatus.LIVE))
        assert "terminal" in exc_info.value.message
        assert exc_info.value.allowed_statuses == []

    def test_input_is_not_mutated(self):
        live = make_quotation(status=QuotationStatus.LIVE)
        transition(live, request(QuotationStatus.DEAD))
        assert live.status == QuotationStatus.LIVE


class TestTransitionTable:

    def test_allowed_from_live(self):
        assert allowed_transitions(QuotationStatus.LIVE) == [
            QuotationStatus.WON, QuotationStatus.LOST, QuotationStatus.BUDGETARY,
            QuotationStatus.RECEIVED, QuotationStatus.DEAD,
        ]

    def test_nothing_allowed_from_terminal(self):
        for status in QuotationStatus:
            if status.is_terminal:
                assert allowed_transitions(status) == []

    def test_every_outcome_freezes_value(self):
        for (source, _), rule in TRANSITIONS.items():
            assert rule.freezes_value == (source == QuotationStatus.LIVE)

    def test_enquiry_status_mapping(self):
        assert enquiry_status_for(QuotationStatus.WON) == "WON"
        assert enquiry_status_for(QuotationStatus.RECEIVED) == "WON"
        assert enquiry_status_for(QuotationStatus.DEAD) == "DEAD"
        assert enquiry_status_for(QuotationStatus.BUDGETARY) is None


class TestMutationGuards:

    def test_terminal_quotation_is_read_only(self):
        with pytest.raises(QuotationStateError):
            ensure_mutable(make_quotation(status=QuotationStatus.BUDGETARY))

    def test_live_quotation_is_editable(self):
        ensure_mutable(make_quotation(status=QuotationStatus.LIVE))

    def test_attach_document_to_pending_purchase_order(self):
        received = make_quotation(status=QuotationStatus.RECEIVED, purchase_order=PurchaseOrder(number="PO-1"))
        updated = attach_purchase_order_document(received, "doc-123")

        assert updated.purchase_order.attachment_ref == "doc-123"
        assert updated.status == QuotationStatus.RECEIVED

        with pytest.raises(QuotationStateError):
            attach_purchase_order_document(updated, "doc-456")

    def test_attach_document_requires_received(self):
        with pytest.raises(QuotationStateError):
            attach_purchase_order_document(make_quotation(status=QuotationStatus.LIVE), "doc-123")
