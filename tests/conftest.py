# tests/conftest.py
"""
Configuration globale pour les tests pytest
Correction du PYTHONPATH pour importer les modules
"""

import pytest
import os
import sys
from decimal import Decimal

# Ajouter le répertoire racine au path
# On remonte d'un niveau depuis le dossier tests/ vers la racine du projet
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.settings import Settings
from db.session import init_db, make_engine, make_session_factory
from services.attachment_storage_service import AttachmentStorageService
from services.quotation_number_registry import QuotationNumberRegistry
from services.quotation_repository import QuotationRepository
from services.quotation_service import QuotationService


@pytest.fixture
def db_url(tmp_path):
    """Base sqlite fichier (partagée entre threads) propre à chaque test"""
    return f"sqlite:///{tmp_path / 'quotations.db'}"


@pytest.fixture
def session_factory(db_url):
    engine = make_engine(db_url)
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def repository(session_factory):
    return QuotationRepository(session_factory)


@pytest.fixture
def registry(repository):
    return QuotationNumberRegistry(repository)


@pytest.fixture
def attachment_storage(tmp_path, session_factory):
    return AttachmentStorageService(
        storage_dir=str(tmp_path / "attachments"),
        session_factory=session_factory,
        max_size_bytes=1024,
    )


@pytest.fixture
def test_settings(db_url, tmp_path):
    return Settings(
        database_url=db_url,
        attachment_storage_dir=str(tmp_path / "attachments"),
        default_currency="INR",
        default_packing_forwarding_percent=3.0,
    )


@pytest.fixture
def service(repository, attachment_storage, test_settings):
    return QuotationService(repository=repository, attachment_storage=attachment_storage, settings=test_settings)


@pytest.fixture
def sample_items():
    """Lignes du scénario de référence : sous-total 2 300 000"""
    return [
        {"description": "Pressure vessel, SS316", "quantity": 1, "unit_price": Decimal("2000000")},
        {"description": "Spare parts kit", "quantity": 1, "unit_price": Decimal("300000")},
    ]


@pytest.fixture
def sample_draft(sample_items):
    """Saisie complète d'un devis"""
    return {
        "quotation_number": "QT-001",
        "enquiry_id": 42,
        "customer_name": "Acme Industries",
        "currency": "INR",
        "items": sample_items,
        "commercial_terms": {
            "transport_cost": Decimal("50000"),
            "insurance_cost": Decimal("25000"),
            "gst_amount": Decimal("0"),
            "packing_forwarding_percentage": Decimal("3"),
        },
        "payment_plan": "30-30-40",
        "delivery_schedule": "12 weeks from PO",
        "incoterms": "FOB Mumbai",
    }
