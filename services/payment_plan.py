"""
services/payment_plan.py
Plans de paiement : termes standard ou répartition personnalisée en pourcentages

Un plan personnalisé est saisi sous la forme "30-30-40" : chaque pourcentage
devient une échéance (acompte, paiement intermédiaire, solde...). Le parsing
ne lève jamais d'exception : None signifie "pas encore un plan valide", ce qui
permet au formulaire de continuer à accepter la saisie.
"""

import logging
import math
import re
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from services.currency_formatter import currency_precision, quantize_amount
from services.quotation_errors import QuotationValidationError

logger = logging.getLogger(__name__)

SEPARATOR = "-"
SUM_TOLERANCE = 0.01
_NUMBER_RE = re.compile(r"^\+?(\d+(\.\d*)?|\.\d+)$")

# Libellés des 3 premières échéances (label, échéance)
MILESTONE_LABELS: Tuple[Tuple[str, str], ...] = (
    ("Advance payment", "on order confirmation"),
    ("Mid-project payment", "on completion of fabrication / pre-dispatch"),
    ("Final payment", "pre-shipment"),
)


class StandardPaymentTerm(str, Enum):
    """Termes de paiement standard proposés dans le formulaire"""
    DAYS_15 = "15 days"
    DAYS_30 = "30 days"
    DAYS_45 = "45 days"
    DAYS_60 = "60 days"
    DAYS_90 = "90 days"
    NET_30 = "Net 30"
    COD = "COD"
    ADVANCE = "Advance payment"


class StandardPaymentPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["standard"] = "standard"
    term: StandardPaymentTerm

    @property
    def text(self) -> str:
        return self.term.value


class CustomPaymentPlan(BaseModel):
    """Répartition personnalisée, l'ordre des pourcentages définit l'ordre des échéances"""
    model_config = ConfigDict(frozen=True)

    kind: Literal["custom"] = "custom"
    percentages: List[float] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_percentages(self):
        for value in self.percentages:
            if not math.isfinite(value) or value <= 0:
                raise ValueError("Each percentage must be a positive number")
        if abs(sum(self.percentages) - 100) > SUM_TOLERANCE:
            raise ValueError("Percentages must add up to 100")
        return self

    @property
    def text(self) -> str:
        return SEPARATOR.join(_format_percentage(p) for p in self.percentages)


PaymentPlan = Annotated[Union[StandardPaymentPlan, CustomPaymentPlan], Field(discriminator="kind")]


class Milestone(BaseModel):
    """Échéance de paiement"""
    model_config = ConfigDict(frozen=True)

    sequence: int
    label: str
    due: str
    percentage: float
    amount: Decimal


def _format_percentage(value: float) -> str:
    return f"{value:g}"


def parse_payment_plan(text: Optional[str]) -> Optional[List[float]]:
    """
    Parse une répartition "30-30-40" en liste de pourcentages

    Args:
        text: Saisie utilisateur, tokens séparés par "-"

    Returns:
        Liste des pourcentages dans l'ordre saisi, ou None si la saisie
        n'est pas (encore) un plan valide : token non numérique, vide,
        nul ou négatif, ou somme différente de 100 (tolérance 0.01)
    """
    if not isinstance(text, str):
        return None

    percentages: List[float] = []
    for token in text.split(SEPARATOR):
        token = token.strip()
        if not _NUMBER_RE.match(token):
            return None
        value = float(token)
        if not math.isfinite(value) or value <= 0:
            return None
        percentages.append(value)

    if abs(sum(percentages) - 100) > SUM_TOLERANCE:
        return None

    return percentages


def resolve_payment_plan(text: Optional[str]) -> Optional[Union[StandardPaymentPlan, CustomPaymentPlan]]:
    """Terme standard (libellé exact, casse ignorée) ou plan personnalisé, sinon None"""
    if not isinstance(text, str) or not text.strip():
        return None

    wanted = text.strip().lower()
    for term in StandardPaymentTerm:
        if term.value.lower() == wanted:
            return StandardPaymentPlan(term=term)

    percentages = parse_payment_plan(text)
    if percentages is None:
        return None
    return CustomPaymentPlan(percentages=percentages)


def require_payment_plan(text: Optional[str], field: str = "payment_plan"):
    """Validation finale avant persistance : un plan non résolu devient bloquant"""
    plan = resolve_payment_plan(text)
    if plan is None:
        logger.debug(f"Plan de paiement invalide: {text!r}")
        raise QuotationValidationError.for_field(
            field,
            "Payment plan must be a standard term or percentages separated by '-' adding up to 100",
        )
    return plan


def milestone_labels(count: int) -> List[Tuple[str, str]]:
    """Libellés des `count` échéances ; au-delà de 3 : "Payment k" / phase k"""
    labels = list(MILESTONE_LABELS[:count])
    for k in range(len(labels) + 1, count + 1):
        labels.append((f"Payment {k}", f"on completion of phase {k}"))
    return labels


def generate_milestones(
    plan: Union[StandardPaymentPlan, CustomPaymentPlan, Sequence[float]],
    grand_total: Decimal,
    currency: str = "INR",
) -> List[Milestone]:
    """
    Calcule les montants des échéances d'un plan

    Chaque montant = grand_total × pourcentage / 100, arrondi à la précision
    de la devise. Le reliquat d'arrondi est ajouté à la dernière échéance :
    la somme des échéances est exactement égale au total arrondi.

    Args:
        plan: Plan standard, plan personnalisé ou liste de pourcentages déjà parsée
        grand_total: Total TTC du devis
        currency: Devise (précision d'arrondi)

    Returns:
        Liste ordonnée des échéances
    """
    precision = currency_precision(currency)
    if not isinstance(grand_total, Decimal):
        grand_total = Decimal(str(grand_total))
    total = quantize_amount(grand_total, precision)

    if isinstance(plan, StandardPaymentPlan):
        return [Milestone(sequence=1, label=plan.term.value, due="as per payment terms",
                          percentage=100.0, amount=total)]

    percentages = list(plan.percentages) if isinstance(plan, CustomPaymentPlan) else list(plan)
    if not percentages:
        return []

    amounts = [
        quantize_amount(total * Decimal(str(p)) / Decimal(100), precision)
        for p in percentages[:-1]
    ]
    amounts.append(total - sum(amounts, Decimal(0)))

    milestones = []
    for index, ((label, due), percentage, amount) in enumerate(
        zip(milestone_labels(len(percentages)), percentages, amounts), start=1
    ):
        milestones.append(Milestone(sequence=index, label=label, due=due,
                                    percentage=percentage, amount=amount))
    return milestones
