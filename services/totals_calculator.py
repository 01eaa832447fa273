"""
services/totals_calculator.py
Calcul des totaux d'un devis (sous-total, P&F, transport, assurance, GST)

Arithmétique décimale exacte, aucun arrondi intermédiaire : la ventilation
retournée est la seule source des montants affichés et imprimés.
"""

import logging
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from models.quotation_models import CommercialTerms, LineItem, Quotation
from services.currency_formatter import format_currency

logger = logging.getLogger(__name__)

HUNDRED = Decimal(100)


class LineTotal(BaseModel):
    model_config = ConfigDict(frozen=True)

    position: int
    description: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class TotalsBreakdown(BaseModel):
    """Ventilation complète des montants"""
    model_config = ConfigDict(frozen=True)

    line_totals: List[LineTotal]
    subtotal: Decimal
    packing_forwarding_percentage: Decimal
    packing_forwarding_amount: Decimal
    transport_cost: Decimal
    insurance_cost: Decimal
    gst_amount: Decimal
    grand_total: Decimal


class QuotationTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal
    grand_total: Decimal
    breakdown: TotalsBreakdown


def compute_totals(
    items: Iterable[LineItem],
    commercial_terms: Optional[CommercialTerms] = None,
) -> QuotationTotals:
    """
    Calcule sous-total et total général

    Args:
        items: Lignes déjà validées (quantités et prix non négatifs)
        commercial_terms: Conditions commerciales (défaut : P&F 3%, reste à 0)

    Returns:
        QuotationTotals ; une liste vide donne un sous-total de 0 (jamais d'exception,
        le refus d'un devis sans ligne relève de la validation avant persistance)
    """
    terms = commercial_terms or CommercialTerms()

    line_totals = [
        LineTotal(
            position=position,
            description=item.description,
            quantity=item.quantity,
            unit_price=item.unit_price,
            line_total=item.line_total,
        )
        for position, item in enumerate(items, start=1)
    ]
    subtotal = sum((line.line_total for line in line_totals), Decimal(0))

    packing_amount = subtotal * terms.packing_forwarding_percentage / HUNDRED
    grand_total = (
        subtotal
        + terms.transport_cost
        + terms.insurance_cost
        + terms.gst_amount
        + packing_amount
    )

    breakdown = TotalsBreakdown(
        line_totals=line_totals,
        subtotal=subtotal,
        packing_forwarding_percentage=terms.packing_forwarding_percentage,
        packing_forwarding_amount=packing_amount,
        transport_cost=terms.transport_cost,
        insurance_cost=terms.insurance_cost,
        gst_amount=terms.gst_amount,
        grand_total=grand_total,
    )
    return QuotationTotals(subtotal=subtotal, grand_total=grand_total, breakdown=breakdown)


def totals_for(quotation: Quotation) -> QuotationTotals:
    return compute_totals(quotation.items, quotation.commercial_terms)


def display_lines(totals: QuotationTotals, currency: str) -> List[Tuple[str, str]]:
    """Lignes (libellé, montant formaté) du bloc totaux, dans l'ordre d'affichage"""
    b = totals.breakdown
    pf_label = f"Packing & Forwarding ({b.packing_forwarding_percentage.normalize():f}%)"
    return [
        ("Subtotal", format_currency(b.subtotal, currency)),
        (pf_label, format_currency(b.packing_forwarding_amount, currency)),
        ("Transport", format_currency(b.transport_cost, currency)),
        ("Insurance", format_currency(b.insurance_cost, currency)),
        ("GST", format_currency(b.gst_amount, currency)),
        ("Grand Total", format_currency(b.grand_total, currency)),
    ]
