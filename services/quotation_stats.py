"""
services/quotation_stats.py
Statistiques du portefeuille de devis (compteurs par statut, valeurs)
"""

from decimal import Decimal
from typing import Dict, Iterable

from pydantic import BaseModel

from models.quotation_models import Quotation, QuotationStatus

# Statuts dont la valeur compte dans le portefeuille actif
ACTIVE_STATUSES = (
    QuotationStatus.LIVE,
    QuotationStatus.WON,
    QuotationStatus.BUDGETARY,
    QuotationStatus.RECEIVED,
)


class QuotationStats(BaseModel):
    counts: Dict[QuotationStatus, int]
    total: int
    live_total_value: Decimal
    active_total_value: Decimal


def summarize(quotations: Iterable[Quotation]) -> QuotationStats:
    """Agrège les devis ; la valeur utilisée est total_value (figée pour les terminaux)"""
    counts = {status: 0 for status in QuotationStatus}
    live_value = Decimal(0)
    active_value = Decimal(0)

    for quotation in quotations:
        counts[quotation.status] += 1
        if quotation.status == QuotationStatus.LIVE:
            live_value += quotation.total_value
        if quotation.status in ACTIVE_STATUSES:
            active_value += quotation.total_value

    return QuotationStats(
        counts=counts,
        total=sum(counts.values()),
        live_total_value=live_value,
        active_total_value=active_value,
    )
