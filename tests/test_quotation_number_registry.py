"""
tests/test_quotation_number_registry.py
Tests de la réservation des numéros de devis (contrainte d'unicité en base)
"""

import re
import threading
from datetime import datetime

import pytest

from services.quotation_errors import QuotationNumberConflict, QuotationValidationError
from services.quotation_number_registry import generate_quotation_number, normalize_candidate


class TestAvailability:

    def test_unknown_number_is_available(self, registry):
        assert registry.check_availability("QT-001") is True

    def test_reserved_number_is_unavailable(self, registry):
        registry.reserve("QT-001", actor="u-1")
        assert registry.check_availability("QT-001") is False

    def test_candidate_is_trimmed(self, registry):
        registry.reserve("  QT-009 ", actor="u-1")
        assert registry.check_availability("QT-009") is False

    def test_comparison_is_case_sensitive(self, registry):
        registry.reserve("QT-001")
        assert registry.check_availability("qt-001") is True

    def test_blank_candidate_is_not_available(self, registry):
        assert registry.check_availability("   ") is False


class TestReserve:

    def test_reserve_returns_reservation(self, registry):
        reservation = registry.reserve("QT-001", actor="u-1")
        assert reservation.quotation_number == "QT-001"
        assert reservation.reserved_by == "u-1"

    def test_duplicate_reservation_conflicts(self, registry):
        registry.reserve("QT-001", actor="u-1")
        with pytest.raises(QuotationNumberConflict) as exc_info:
            registry.reserve("QT-001", actor="u-2")

        assert exc_info.value.code == "CONFLICT"
        assert exc_info.value.message == (
            'Quotation number "QT-001" already exists. Please use a different quotation number.'
        )

    def test_blank_candidate_is_rejected(self, registry):
        with pytest.raises(QuotationValidationError):
            registry.reserve("")

    def test_too_long_candidate_is_rejected(self):
        with pytest.raises(QuotationValidationError):
            normalize_candidate("Q" * 65)

    def test_concurrent_reservations_single_winner(self, registry):
        """Deux réservations simultanées du même numéro : un succès, un conflit"""
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def worker(actor):
            barrier.wait()
            try:
                registry.reserve("QT-001", actor=actor)
                result = "reserved"
            except QuotationNumberConflict:
                result = "conflict"
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=worker, args=(f"u-{i}",)) for i in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=60)

        assert sorted(outcomes) == ["conflict", "reserved"]


class TestGeneration:

    def test_generated_number_format(self):
        number = generate_quotation_number(datetime(2026, 10, 17, 12, 0, 0))
        assert re.fullmatch(r"Q202610\d{6}", number)

    def test_registry_generates_numbers(self, registry):
        assert registry.generate().startswith("Q")
