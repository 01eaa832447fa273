"""
services/quotation_lifecycle.py
Cycle de vie commercial d'un devis - Machine à états déterministe

DRAFT -> LIVE -> {WON, LOST, BUDGETARY, RECEIVED, DEAD}

Chaque transition est une entrée de la table TRANSITIONS, indexée par
(statut courant, événement). Une transition absente de la table est
impossible ; une garde non satisfaite est une erreur de saisie.
Les transitions vers un statut terminal figent le total du devis.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from models.quotation_models import LostReason, PurchaseOrder, Quotation, QuotationStatus
from services.quotation_errors import (
    InvalidTransitionError,
    QuotationStateError,
    QuotationValidationError,
)
from services.totals_calculator import totals_for

logger = logging.getLogger(__name__)


class QuotationEvent(str, Enum):
    """Événements déclenchant un changement de statut"""
    SUBMIT = "SUBMIT"
    MARK_WON = "MARK_WON"
    MARK_LOST = "MARK_LOST"
    MARK_BUDGETARY = "MARK_BUDGETARY"
    MARK_RECEIVED = "MARK_RECEIVED"
    MARK_DEAD = "MARK_DEAD"


EVENT_FOR_TARGET: Dict[QuotationStatus, QuotationEvent] = {
    QuotationStatus.LIVE: QuotationEvent.SUBMIT,
    QuotationStatus.WON: QuotationEvent.MARK_WON,
    QuotationStatus.LOST: QuotationEvent.MARK_LOST,
    QuotationStatus.BUDGETARY: QuotationEvent.MARK_BUDGETARY,
    QuotationStatus.RECEIVED: QuotationEvent.MARK_RECEIVED,
    QuotationStatus.DEAD: QuotationEvent.MARK_DEAD,
}

# Statut à reporter sur l'enquête d'origine (None = pas de changement)
ENQUIRY_STATUS_BY_QUOTATION_STATUS: Dict[QuotationStatus, str] = {
    QuotationStatus.WON: "WON",
    QuotationStatus.LOST: "LOST",
    QuotationStatus.DEAD: "DEAD",
    QuotationStatus.RECEIVED: "WON",
}


class TransitionRequest(BaseModel):
    """Demande de changement de statut"""
    model_config = ConfigDict(frozen=True)

    status: QuotationStatus
    actor: str = Field(..., min_length=1, description="Identité fournie par l'appelant")
    lost_reason: Optional[LostReason] = None
    purchase_order: Optional[PurchaseOrder] = None
    occurred_at: Optional[datetime] = None


class TransitionRecord(BaseModel):
    """Trace d'une transition"""
    model_config = ConfigDict(frozen=True)

    quotation_id: Optional[str] = None
    quotation_number: str
    previous_status: QuotationStatus
    new_status: QuotationStatus
    event: QuotationEvent
    actor: str
    occurred_at: datetime
    value_snapshot: Optional[Decimal] = None
    lost_reason: Optional[LostReason] = None
    purchase_order: Optional[PurchaseOrder] = None
    pending_attachment: bool = False
    enquiry_status: Optional[str] = None


Guard = Callable[[Quotation, TransitionRequest], Optional[Tuple[str, str]]]


@dataclass(frozen=True)
class TransitionRule:
    """Règle de transition : statut cible, garde, gel du total"""
    target: QuotationStatus
    guard: Guard
    freezes_value: bool


def _requires_items_and_plan(quotation: Quotation, request: TransitionRequest):
    if not quotation.items:
        return "items", "At least one line item is required before the quotation goes live"
    if quotation.payment_plan is None:
        return "payment_plan", "A payment plan is required before the quotation goes live"
    return None


def _requires_lost_reason(quotation: Quotation, request: TransitionRequest):
    if request.lost_reason is None:
        return "lost_reason", "A lost reason is required"
    return None


def _requires_purchase_order(quotation: Quotation, request: TransitionRequest):
    if request.purchase_order is None:
        return "purchase_order.number", "A purchase order number is required"
    return None


def _unconditional(quotation: Quotation, request: TransitionRequest):
    return None


TRANSITIONS: Dict[Tuple[QuotationStatus, QuotationEvent], TransitionRule] = {
    (QuotationStatus.DRAFT, QuotationEvent.SUBMIT):
        TransitionRule(QuotationStatus.LIVE, _requires_items_and_plan, freezes_value=False),
    (QuotationStatus.LIVE, QuotationEvent.MARK_WON):
        TransitionRule(QuotationStatus.WON, _unconditional, freezes_value=True),
    (QuotationStatus.LIVE, QuotationEvent.MARK_LOST):
        TransitionRule(QuotationStatus.LOST, _requires_lost_reason, freezes_value=True),
    (QuotationStatus.LIVE, QuotationEvent.MARK_BUDGETARY):
        TransitionRule(QuotationStatus.BUDGETARY, _unconditional, freezes_value=True),
    (QuotationStatus.LIVE, QuotationEvent.MARK_RECEIVED):
        TransitionRule(QuotationStatus.RECEIVED, _requires_purchase_order, freezes_value=True),
    (QuotationStatus.LIVE, QuotationEvent.MARK_DEAD):
        TransitionRule(QuotationStatus.DEAD, _unconditional, freezes_value=True),
}


def allowed_transitions(status: QuotationStatus) -> List[QuotationStatus]:
    """Statuts atteignables depuis `status` (vide pour un statut terminal)"""
    return [rule.target for (source, _), rule in TRANSITIONS.items() if source == status]


def enquiry_status_for(status: QuotationStatus) -> Optional[str]:
    return ENQUIRY_STATUS_BY_QUOTATION_STATUS.get(status)


def transition(
    quotation: Quotation,
    request: TransitionRequest,
    now: Optional[datetime] = None,
) -> Tuple[Quotation, TransitionRecord]:
    """
    Applique un changement de statut (fonction pure)

    Args:
        quotation: Devis dans son état courant
        request: Statut demandé, acteur et données associées (raison de perte, bon de commande)
        now: Horodatage de la transition (défaut : request.occurred_at ou maintenant)

    Returns:
        (devis mis à jour, trace de la transition)

    Raises:
        InvalidTransitionError: statut terminal ou transition absente de la table
        QuotationValidationError: garde non satisfaite (raison de perte manquante...)
    """
    current = quotation.status
    event = EVENT_FOR_TARGET.get(request.status)
    rule = TRANSITIONS.get((current, event)) if event else None

    if rule is None:
        reason = "quotation is in a terminal status" if current.is_terminal else None
        logger.info(f"Transition refusée {quotation.quotation_number}: {current.value} -> {request.status.value}")
        raise InvalidTransitionError(current, request.status, allowed_transitions(current), reason=reason)

    failure = rule.guard(quotation, request)
    if failure is not None:
        field, message = failure
        logger.info(f"Garde non satisfaite {quotation.quotation_number} -> {rule.target.value}: {message}")
        raise QuotationValidationError.for_field(field, message)

    if request.lost_reason is not None and rule.target != QuotationStatus.LOST:
        raise QuotationValidationError.for_field("lost_reason", "A lost reason is only valid for LOST quotations")
    if request.purchase_order is not None and rule.target != QuotationStatus.RECEIVED:
        raise QuotationValidationError.for_field(
            "purchase_order", "A purchase order is only valid for RECEIVED quotations"
        )

    occurred_at = now or request.occurred_at or datetime.utcnow()
    grand_total = totals_for(quotation).grand_total

    update = {
        "status": rule.target,
        "lost_reason": request.lost_reason,
        "purchase_order": request.purchase_order,
        "total_value": grand_total,
        "updated_at": occurred_at,
    }
    if rule.freezes_value:
        update["value_frozen"] = True

    updated = quotation.model_copy(update=update)

    record = TransitionRecord(
        quotation_id=quotation.id,
        quotation_number=quotation.quotation_number,
        previous_status=current,
        new_status=rule.target,
        event=event,
        actor=request.actor,
        occurred_at=occurred_at,
        value_snapshot=grand_total if rule.freezes_value else None,
        lost_reason=request.lost_reason,
        purchase_order=request.purchase_order,
        pending_attachment=bool(request.purchase_order and request.purchase_order.pending_attachment),
        enquiry_status=enquiry_status_for(rule.target),
    )
    return updated, record


def ensure_mutable(quotation: Quotation) -> None:
    """Lignes et conditions modifiables uniquement en DRAFT ou LIVE"""
    if not quotation.is_mutable:
        raise QuotationStateError(
            f"Quotation {quotation.quotation_number} is {quotation.status.value} and can no longer be edited"
        )


def ensure_awaiting_purchase_order_document(quotation: Quotation) -> None:
    """Seul un devis RECEIVED dont le bon de commande n'a pas de pièce jointe l'accepte"""
    if quotation.status != QuotationStatus.RECEIVED or quotation.purchase_order is None:
        raise QuotationStateError(
            f"Quotation {quotation.quotation_number} is not awaiting a purchase order document"
        )
    if not quotation.purchase_order.pending_attachment:
        raise QuotationStateError(
            f"Quotation {quotation.quotation_number} already has a purchase order document"
        )


def attach_purchase_order_document(quotation: Quotation, attachment_ref: str) -> Quotation:
    """
    Rattache le document du bon de commande à un devis RECEIVED en attente de pièce

    Ne change pas le statut ni le total figé.
    """
    ensure_awaiting_purchase_order_document(quotation)
    purchase_order = quotation.purchase_order.model_copy(update={"attachment_ref": attachment_ref})
    return quotation.model_copy(update={"purchase_order": purchase_order})
