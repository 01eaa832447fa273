"""
API Routes du moteur de devis
Formatage, plans de paiement, totaux, numéros, cycle de vie, document imprimable
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from core.settings import get_settings
from models.quotation_models import CommercialTerms, LineItem, LostReason, PurchaseOrder, QuotationStatus
from services.currency_formatter import format_currency
from services.payment_plan import generate_milestones, parse_payment_plan, resolve_payment_plan
from services.quotation_errors import (
    InvalidTransitionError,
    QuotationError,
    QuotationNotFound,
    QuotationNumberConflict,
    QuotationStateError,
    QuotationValidationError,
)
from services.quotation_service import QuotationService, get_quotation_service
from services.totals_calculator import compute_totals

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/quotations",
    tags=["Quotations"],
    responses={404: {"description": "Quotation not found"}}
)

HTTP_STATUS_BY_ERROR = (
    (QuotationValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (QuotationNumberConflict, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
    (QuotationStateError, status.HTTP_409_CONFLICT),
    (QuotationNotFound, status.HTTP_404_NOT_FOUND),
)


def _http_error(error: QuotationError) -> HTTPException:
    status_code = next(
        (code for error_type, code in HTTP_STATUS_BY_ERROR if isinstance(error, error_type)),
        status.HTTP_400_BAD_REQUEST,
    )
    return HTTPException(status_code=status_code, detail=error.to_dict())


def _require_actor(actor: Optional[str]) -> str:
    if not actor or not actor.strip():
        raise _http_error(QuotationValidationError.for_field("actor", "Actor identity is required"))
    return actor.strip()


# ============================================================
# MODÈLES DE REQUÊTE
# ============================================================

class FormatRequest(BaseModel):
    amount: Decimal
    currency: str
    decimals: int = Field(2, ge=0, le=4)


class PaymentPlanParseRequest(BaseModel):
    input: str = ""


class MilestonesRequest(BaseModel):
    input: str
    grand_total: Decimal = Field(..., ge=0)
    currency: str = "INR"


class TotalsRequest(BaseModel):
    items: List[LineItem] = Field(default_factory=list)
    commercial_terms: Optional[CommercialTerms] = None
    currency: Optional[str] = None


class ReserveRequest(BaseModel):
    quotation_number: str
    actor: Optional[str] = None


class TransitionBody(BaseModel):
    status: QuotationStatus
    actor: Optional[str] = None
    lost_reason: Optional[LostReason] = None
    purchase_order: Optional[PurchaseOrder] = None


# ============================================================
# CALCULS (sans persistance)
# ============================================================

@router.post("/format")
async def format_amount(payload: FormatRequest) -> Dict[str, Any]:
    return {"formatted": format_currency(payload.amount, payload.currency, payload.decimals)}


@router.post("/payment-plans/parse")
async def parse_plan(payload: PaymentPlanParseRequest) -> Dict[str, Any]:
    """Appelé à chaque frappe : une saisie incomplète n'est jamais une erreur"""
    percentages = parse_payment_plan(payload.input)
    return {"percentages": percentages, "valid": percentages is not None}


@router.post("/payment-plans/milestones")
async def plan_milestones(payload: MilestonesRequest) -> Dict[str, Any]:
    plan = resolve_payment_plan(payload.input)
    if plan is None:
        raise _http_error(QuotationValidationError.for_field(
            "input", "Payment plan must be a standard term or percentages summing to 100"
        ))
    milestones = generate_milestones(plan, payload.grand_total, payload.currency)
    return {
        "plan": plan.model_dump(mode="json"),
        "milestones": [
            {**m.model_dump(mode="json"), "formatted_amount": format_currency(m.amount, payload.currency)}
            for m in milestones
        ],
    }


@router.post("/totals")
async def preview_totals(payload: TotalsRequest) -> Dict[str, Any]:
    currency = payload.currency or get_settings().default_currency
    totals = compute_totals(payload.items, payload.commercial_terms)
    result = totals.model_dump(mode="json")
    result["formatted_grand_total"] = format_currency(totals.grand_total, currency)
    return result


# ============================================================
# NUMÉROS
# ============================================================

@router.get("/numbers/{candidate}/availability")
async def number_availability(
    candidate: str,
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    """Indicatif : la réservation reste seule à faire foi"""
    return {
        "quotation_number": candidate.strip(),
        "available": service.check_availability(candidate),
        "debounce_ms": get_settings().availability_debounce_ms,
    }


@router.post("/numbers/reserve", status_code=status.HTTP_201_CREATED)
async def reserve_number(
    payload: ReserveRequest,
    x_actor_id: Optional[str] = Header(None),
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    try:
        reservation = service.reserve(payload.quotation_number, payload.actor or x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return reservation.model_dump(mode="json")


# ============================================================
# DEVIS
# ============================================================

@router.get("/stats")
async def quotation_stats(service: QuotationService = Depends(get_quotation_service)) -> Dict[str, Any]:
    return service.quotation_stats().model_dump(mode="json")


@router.get("/")
async def list_quotations(
    status_filter: Optional[QuotationStatus] = Query(None, alias="status"),
    service: QuotationService = Depends(get_quotation_service),
) -> List[Dict[str, Any]]:
    return [q.model_dump(mode="json") for q in service.list_quotations(status_filter)]


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_quotation(
    draft: Dict[str, Any],
    x_actor_id: Optional[str] = Header(None),
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    logger.info(f"Création devis demandée par {x_actor_id}")
    try:
        quotation = service.create_quotation(draft, actor=x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return quotation.model_dump(mode="json")


@router.get("/{quotation_id}")
async def get_quotation(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    try:
        return service.get_quotation(quotation_id).model_dump(mode="json")
    except QuotationError as e:
        raise _http_error(e)


@router.put("/{quotation_id}")
async def revise_quotation(
    quotation_id: str,
    changes: Dict[str, Any],
    x_actor_id: Optional[str] = Header(None),
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    try:
        quotation = service.revise(quotation_id, changes, actor=x_actor_id)
    except QuotationError as e:
        raise _http_error(e)
    return quotation.model_dump(mode="json")


@router.get("/{quotation_id}/revisions")
async def quotation_revisions(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
) -> List[Dict[str, Any]]:
    try:
        revisions = service.revisions(quotation_id)
    except QuotationError as e:
        raise _http_error(e)
    return [q.model_dump(mode="json") for q in revisions]


# ============================================================
# CYCLE DE VIE
# ============================================================

@router.post("/{quotation_id}/transitions")
async def transition_quotation(
    quotation_id: str,
    payload: TransitionBody,
    x_actor_id: Optional[str] = Header(None),
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    """
    Change le statut d'un devis

    Returns:
        Devis mis à jour et trace de la transition (statut enquête à reporter inclus)
    """
    actor = _require_actor(payload.actor or x_actor_id)
    request = payload.model_dump(exclude_none=True)
    request["actor"] = actor
    try:
        quotation, record = service.transition(quotation_id, request)
    except QuotationError as e:
        raise _http_error(e)
    return {
        "quotation": quotation.model_dump(mode="json"),
        "transition": record.model_dump(mode="json"),
    }


@router.get("/{quotation_id}/transitions")
async def transition_history(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
) -> List[Dict[str, Any]]:
    try:
        return [r.model_dump(mode="json") for r in service.status_history(quotation_id)]
    except QuotationError as e:
        raise _http_error(e)


@router.get("/{quotation_id}/allowed-transitions")
async def allowed_transitions(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    try:
        allowed = service.allowed_transitions(quotation_id)
    except QuotationError as e:
        raise _http_error(e)
    return {"allowed_statuses": [s.value for s in allowed]}


@router.post("/{quotation_id}/purchase-order/document", status_code=status.HTTP_201_CREATED)
async def upload_purchase_order_document(
    quotation_id: str,
    request: Request,
    filename: str = Query(..., min_length=1),
    x_actor_id: Optional[str] = Header(None),
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    """Corps brut de la requête = contenu du document"""
    content = await request.body()
    try:
        quotation, document = service.attach_purchase_order_document(
            quotation_id,
            content,
            filename,
            content_type=request.headers.get("content-type"),
            actor=x_actor_id,
        )
    except QuotationError as e:
        raise _http_error(e)
    return {
        "quotation": quotation.model_dump(mode="json"),
        "document": document.to_dict(),
    }


@router.get("/{quotation_id}/purchase-order/document")
async def download_purchase_order_document(
    quotation_id: str,
    service: QuotationService = Depends(get_quotation_service),
) -> FileResponse:
    try:
        path = service.purchase_order_document_path(quotation_id)
    except QuotationError as e:
        raise _http_error(e)
    return FileResponse(path, filename=path.name.split("_", 1)[-1])


@router.get("/{quotation_id}/document")
async def printable_document(
    quotation_id: str,
    issuer: Optional[str] = None,
    service: QuotationService = Depends(get_quotation_service),
) -> Dict[str, Any]:
    try:
        document = service.assemble_document(quotation_id, issuer=issuer)
    except QuotationError as e:
        raise _http_error(e)
    result = document.model_dump(mode="json")
    result["page_count"] = document.page_count
    return result
