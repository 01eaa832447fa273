"""
services/quotation_number_registry.py
Unicité des numéros de devis

check_availability() est indicatif : appelé à chaque frappe (debounce côté
client), il peut être contredit par une création concurrente. Seul reserve()
fait foi : il s'appuie sur la contrainte UNIQUE de la base, jamais sur un
"vérifier puis insérer".
"""

import logging
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from core.logging import log_quotation_event
from services.quotation_errors import QuotationNumberConflict, QuotationValidationError

logger = logging.getLogger(__name__)

MAX_NUMBER_LENGTH = 64


class NumberReservation(BaseModel):
    model_config = ConfigDict(frozen=True)

    quotation_number: str
    reserved_by: Optional[str] = None
    reserved_at: datetime


def generate_quotation_number(now: Optional[datetime] = None) -> str:
    """Numéro par défaut : Q + année + mois + 6 derniers chiffres du timestamp (ms)"""
    now = now or datetime.now()
    millis = str(int(now.timestamp() * 1000))
    return f"Q{now.year}{now.month:02d}{millis[-6:]}"


def normalize_candidate(candidate: Optional[str]) -> str:
    """Nettoie un numéro saisi ; vide ou trop long = erreur de saisie"""
    number = (candidate or "").strip()
    if not number:
        raise QuotationValidationError.for_field("quotation_number", "Quotation number is required")
    if len(number) > MAX_NUMBER_LENGTH:
        raise QuotationValidationError.for_field(
            "quotation_number", f"Quotation number must be at most {MAX_NUMBER_LENGTH} characters"
        )
    return number


class QuotationNumberRegistry:
    """
    Registre des numéros de devis

    S'appuie sur le repository (collaborateur de persistance) qui porte la
    contrainte d'unicité. Aucune coordination en mémoire : plusieurs processus
    peuvent créer des devis en parallèle.
    """

    def __init__(self, repository):
        self.repository = repository

    def check_availability(self, candidate: str) -> bool:
        """Indicatif uniquement, ne verrouille rien"""
        try:
            number = normalize_candidate(candidate)
        except QuotationValidationError:
            return False
        return not self.repository.number_exists(number)

    def reserve(self, candidate: str, actor: Optional[str] = None) -> NumberReservation:
        """
        Réserve un numéro de manière atomique

        Args:
            candidate: Numéro souhaité
            actor: Identité de l'appelant (audit)

        Returns:
            NumberReservation

        Raises:
            QuotationNumberConflict: numéro déjà réservé ou utilisé (récupérable)
            QuotationValidationError: numéro vide
        """
        number = normalize_candidate(candidate)
        try:
            reservation = self.repository.insert_reservation(number, actor)
        except QuotationNumberConflict:
            log_quotation_event("number_reserved", quotation_number=number, actor=actor, result="conflict")
            raise

        log_quotation_event("number_reserved", quotation_number=number, actor=actor)
        return reservation

    def generate(self, now: Optional[datetime] = None) -> str:
        return generate_quotation_number(now)
