"""
services/quotation_service.py
Orchestration du moteur de devis

Enchaîne validation, calculs purs (totaux, plan de paiement, machine à états)
et collaborateurs (repository, stockage des PO). Les erreurs métier remontent
telles quelles à l'appelant ; les pannes de base ou de disque ne sont pas
encapsulées.
"""

import logging
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, ValidationError

from core.logging import log_quotation_event
from core.settings import Settings, get_settings
from models.quotation_models import CommercialTerms, LineItem, Quotation, QuotationStatus
from services import quotation_lifecycle as lifecycle
from services.attachment_storage_service import AttachmentStorageService, StoredDocument
from services.document_assembler import LayoutMetrics, PrintableDocument, assemble
from services.payment_plan import require_payment_plan
from services.quotation_errors import (
    InvalidTransitionError,
    QuotationNotFound,
    QuotationNumberConflict,
    QuotationStateError,
    QuotationValidationError,
)
from services.quotation_lifecycle import TransitionRecord, TransitionRequest
from services.quotation_number_registry import NumberReservation, QuotationNumberRegistry, normalize_candidate
from services.quotation_repository import QuotationRepository
from services.quotation_stats import QuotationStats, summarize
from services.totals_calculator import compute_totals

logger = logging.getLogger(__name__)


# ============================================================
# MODÈLES D'ENTRÉE
# ============================================================

class QuotationDraft(BaseModel):
    """Saisie d'un nouveau devis (le plan de paiement est le texte du formulaire)"""
    quotation_number: Optional[str] = None
    enquiry_id: Optional[int] = None
    customer_name: Optional[str] = None
    quotation_date: Optional[date] = None
    validity_period: Optional[date] = None
    currency: Optional[str] = None
    items: List[LineItem] = Field(default_factory=list)
    commercial_terms: Optional[CommercialTerms] = None
    payment_plan: Optional[str] = None
    delivery_schedule: Optional[str] = None
    special_instructions: Optional[str] = None
    incoterms: Optional[str] = None


class QuotationChanges(BaseModel):
    """Modifications d'une révision ; seuls les champs fournis sont appliqués"""
    customer_name: Optional[str] = None
    quotation_date: Optional[date] = None
    validity_period: Optional[date] = None
    currency: Optional[str] = None
    items: Optional[List[LineItem]] = None
    commercial_terms: Optional[CommercialTerms] = None
    payment_plan: Optional[str] = None
    delivery_schedule: Optional[str] = None
    special_instructions: Optional[str] = None
    incoterms: Optional[str] = None


def _parse(model, data, prefix: str = ""):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise QuotationValidationError.from_pydantic(e, prefix)


def _build_quotation(data: Dict[str, Any]) -> Quotation:
    try:
        return Quotation.model_validate(data)
    except ValidationError as e:
        raise QuotationValidationError.from_pydantic(e)


def _require_items(items) -> None:
    if not items:
        raise QuotationValidationError.for_field("items", "At least one line item is required")


# ============================================================
# SERVICE
# ============================================================

class QuotationService:
    """
    Point d'entrée unique des opérations sur les devis

    Responsabilités:
    - Création (numéro saisi ou généré, réservé de façon atomique)
    - Révisions (DRAFT/LIVE uniquement, révision précédente archivée)
    - Transitions de statut et pièce jointe du bon de commande
    - Document imprimable et statistiques
    """

    def __init__(
        self,
        repository: Optional[QuotationRepository] = None,
        attachment_storage: Optional[AttachmentStorageService] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.repository = repository or QuotationRepository()
        self._attachment_storage = attachment_storage
        self.registry = QuotationNumberRegistry(self.repository)

    @property
    def attachment_storage(self) -> AttachmentStorageService:
        # Créé à la première pièce jointe (répertoire de stockage)
        if self._attachment_storage is None:
            self._attachment_storage = AttachmentStorageService(session_factory=self.repository.session_factory)
        return self._attachment_storage

    # ----------------------------------------------------------
    # Numéros
    # ----------------------------------------------------------

    def check_availability(self, candidate: str) -> bool:
        return self.registry.check_availability(candidate)

    def reserve(self, candidate: str, actor: Optional[str] = None) -> NumberReservation:
        return self.registry.reserve(candidate, actor)

    # ----------------------------------------------------------
    # Création / révision
    # ----------------------------------------------------------

    def create_quotation(self, draft: Union[QuotationDraft, Dict[str, Any]], actor: Optional[str] = None) -> Quotation:
        """
        Crée un devis DRAFT

        Args:
            draft: Saisie du formulaire
            actor: Identité fournie par l'appelant

        Returns:
            Devis persisté

        Raises:
            QuotationValidationError: Saisie invalide (aucune ligne, plan de paiement illisible...)
            QuotationNumberConflict: Numéro déjà utilisé
        """
        draft = _parse(QuotationDraft, draft)
        _require_items(draft.items)

        if draft.quotation_number is not None:
            number = normalize_candidate(draft.quotation_number)
        else:
            number = self.registry.generate()

        payment_plan = require_payment_plan(draft.payment_plan) if draft.payment_plan else None
        terms = draft.commercial_terms or CommercialTerms(
            packing_forwarding_percentage=self.settings.default_packing_forwarding_percent
        )
        totals = compute_totals(draft.items, terms)

        data = draft.model_dump(exclude_none=True, exclude={"payment_plan", "commercial_terms"})
        data.update({
            "quotation_number": number,
            "currency": draft.currency or self.settings.default_currency,
            "commercial_terms": terms.model_dump(),
            "payment_plan": payment_plan.model_dump() if payment_plan else None,
            "total_value": totals.grand_total,
        })
        quotation = _build_quotation(data)

        try:
            stored = self.repository.insert_quotation(quotation, actor)
        except QuotationNumberConflict:
            log_quotation_event("created", quotation_number=number, actor=actor, result="conflict")
            raise

        log_quotation_event("created", quotation_number=number, actor=actor,
                            extra_data={"revision_number": stored.revision_number})
        return stored

    def revise(self, quotation_id: str, changes: Union[QuotationChanges, Dict[str, Any]],
               actor: Optional[str] = None) -> Quotation:
        """
        Enregistre une nouvelle révision d'un devis DRAFT ou LIVE

        Le total est recalculé, le numéro de révision incrémenté et la
        révision précédente archivée. Le numéro de devis ne change jamais.

        Raises:
            QuotationStateError: Devis dans un statut terminal
            QuotationValidationError: Modifications invalides
        """
        changes = _parse(QuotationChanges, changes)
        current = self.repository.load_quotation(quotation_id)

        try:
            lifecycle.ensure_mutable(current)
        except QuotationStateError:
            log_quotation_event("revised", quotation_number=current.quotation_number, actor=actor, result="rejected")
            raise

        updates = changes.model_dump(exclude_unset=True, exclude={"items", "commercial_terms", "payment_plan"})
        fields_set = changes.model_fields_set
        if "items" in fields_set:
            _require_items(changes.items)
            updates["items"] = [item.model_dump() for item in changes.items]
        if "commercial_terms" in fields_set and changes.commercial_terms is not None:
            updates["commercial_terms"] = changes.commercial_terms.model_dump()
        if "payment_plan" in fields_set:
            plan = require_payment_plan(changes.payment_plan) if changes.payment_plan else None
            updates["payment_plan"] = plan.model_dump() if plan else None

        data = current.model_dump()
        data.update(updates)
        candidate = _build_quotation(data)

        totals = compute_totals(candidate.items, candidate.commercial_terms)
        revised = candidate.model_copy(update={
            "revision_number": current.revision_number + 1,
            "total_value": totals.grand_total,
            "updated_at": datetime.utcnow(),
        })

        saved = self.repository.save_revision(current, revised, actor)
        log_quotation_event("revised", quotation_number=saved.quotation_number, actor=actor,
                            extra_data={"revision_number": saved.revision_number})
        return saved

    # ----------------------------------------------------------
    # Cycle de vie
    # ----------------------------------------------------------

    def transition(self, quotation_id: str,
                   request: Union[TransitionRequest, Dict[str, Any]]) -> Tuple[Quotation, TransitionRecord]:
        """
        Change le statut d'un devis

        Raises:
            InvalidTransitionError: Transition impossible depuis le statut courant
            QuotationValidationError: Donnée requise manquante (raison de perte, bon de commande)
        """
        request = _parse(TransitionRequest, request)
        current = self.repository.load_quotation(quotation_id)

        try:
            updated, record = lifecycle.transition(current, request)
        except (InvalidTransitionError, QuotationValidationError):
            log_quotation_event("transition", quotation_number=current.quotation_number, actor=request.actor,
                                result="rejected", extra_data={
                                    "previous_status": current.status.value,
                                    "new_status": request.status.value,
                                })
            raise

        saved = self.repository.update_quotation_status(current, updated, record)
        log_quotation_event("transition", quotation_number=saved.quotation_number, actor=record.actor,
                            extra_data={
                                "previous_status": record.previous_status.value,
                                "new_status": record.new_status.value,
                                "value_snapshot": str(record.value_snapshot) if record.value_snapshot is not None else None,
                            })
        return saved, record

    def allowed_transitions(self, quotation_id: str) -> List[QuotationStatus]:
        quotation = self.repository.load_quotation(quotation_id)
        return lifecycle.allowed_transitions(quotation.status)

    def status_history(self, quotation_id: str) -> List[TransitionRecord]:
        return self.repository.status_history(quotation_id)

    def attach_purchase_order_document(
        self,
        quotation_id: str,
        content: bytes,
        filename: str,
        content_type: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> Tuple[Quotation, StoredDocument]:
        """
        Joint le document du bon de commande à un devis RECEIVED en attente

        Le statut et le total figé ne changent pas.

        Raises:
            QuotationStateError: Devis non RECEIVED ou document déjà joint
            QuotationValidationError: Fichier refusé (type, taille, vide)
        """
        current = self.repository.load_quotation(quotation_id)
        lifecycle.ensure_awaiting_purchase_order_document(current)

        stored = self.attachment_storage.store_document(
            content, quotation_id, filename, content_type=content_type, stored_by=actor
        )
        updated = lifecycle.attach_purchase_order_document(current, stored.reference)
        try:
            saved = self.repository.update_purchase_order(current, updated)
        except Exception:
            # Document rejeté : pas de fichier ni de métadonnées orphelins
            self.attachment_storage.delete_document(stored.reference)
            log_quotation_event("po_attached", quotation_number=current.quotation_number, actor=actor,
                                result="rejected", extra_data={"attachment_ref": stored.reference})
            raise

        log_quotation_event("po_attached", quotation_number=saved.quotation_number, actor=actor,
                            extra_data={"attachment_ref": stored.reference})
        return saved, stored

    def purchase_order_document_path(self, quotation_id: str) -> Path:
        """Chemin disque du bon de commande joint au devis"""
        quotation = self.repository.load_quotation(quotation_id)
        reference = quotation.purchase_order.attachment_ref if quotation.purchase_order else None
        path = self.attachment_storage.get_document_path(reference) if reference else None
        if path is None:
            raise QuotationNotFound(quotation_id, f"No purchase order document for quotation {quotation_id}")
        return path

    # ----------------------------------------------------------
    # Lecture
    # ----------------------------------------------------------

    def get_quotation(self, quotation_id: str) -> Quotation:
        return self.repository.load_quotation(quotation_id)

    def list_quotations(self, status: Optional[QuotationStatus] = None) -> List[Quotation]:
        return self.repository.list_quotations(status)

    def revisions(self, quotation_id: str) -> List[Quotation]:
        return self.repository.revisions(quotation_id)

    def assemble_document(self, quotation_id: str, issuer: Optional[str] = None) -> PrintableDocument:
        quotation = self.repository.load_quotation(quotation_id)
        return assemble(quotation, metrics=LayoutMetrics.from_settings(self.settings), issuer=issuer)

    def quotation_stats(self) -> QuotationStats:
        return summarize(self.repository.list_quotations())


# ============================================================
# SINGLETON
# ============================================================

_quotation_service: Optional[QuotationService] = None


def get_quotation_service() -> QuotationService:
    """Retourne l'instance singleton du service devis"""
    global _quotation_service
    if _quotation_service is None:
        _quotation_service = QuotationService()
        logger.info("QuotationService singleton créé")
    return _quotation_service
