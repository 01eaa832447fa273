# models/quotation_models.py
"""
Modèles de données typés du devis (lignes, conditions commerciales, devis)
Objets valeur immuables passés aux fonctions pures du moteur
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from services.payment_plan import PaymentPlan


class QuotationStatus(str, Enum):
    """Statuts commerciaux d'un devis"""
    DRAFT = "DRAFT"
    LIVE = "LIVE"
    WON = "WON"
    LOST = "LOST"
    BUDGETARY = "BUDGETARY"
    RECEIVED = "RECEIVED"
    DEAD = "DEAD"

    @property
    def is_terminal(self) -> bool:
        return self not in (QuotationStatus.DRAFT, QuotationStatus.LIVE)


class LostReason(str, Enum):
    """Raisons de perte d'un devis"""
    PRICE = "PRICE"
    DELIVERY_SCHEDULE = "DELIVERY_SCHEDULE"
    LACK_OF_CONFIDENCE = "LACK_OF_CONFIDENCE"
    OTHER = "OTHER"


class LineItem(BaseModel):
    """Ligne de devis"""
    model_config = ConfigDict(frozen=True)

    description: str = Field(..., min_length=1, description="Description matériel")
    quantity: int = Field(..., ge=1, description="Quantité (entier >= 1)")
    unit_price: Decimal = Field(..., ge=0, description="Prix unitaire")
    specifications: Optional[str] = None

    @field_validator("description", mode="before")
    @classmethod
    def strip_description(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


class CommercialTerms(BaseModel):
    """Conditions commerciales : montants forfaitaires + P&F en % du sous-total"""
    model_config = ConfigDict(frozen=True)

    transport_cost: Decimal = Field(default=Decimal(0), ge=0)
    insurance_cost: Decimal = Field(default=Decimal(0), ge=0)
    gst_amount: Decimal = Field(default=Decimal(0), ge=0)
    packing_forwarding_percentage: Decimal = Field(
        default=Decimal(3), ge=0, le=5,
        description="Packing & forwarding (% du sous-total, 0 à 5)"
    )


class PurchaseOrder(BaseModel):
    """Bon de commande reçu du client (statut RECEIVED)"""
    model_config = ConfigDict(frozen=True)

    number: str = Field(..., min_length=1)
    value: Optional[Decimal] = Field(None, ge=0)
    po_date: Optional[date] = None
    attachment_ref: Optional[str] = None

    @field_validator("number", mode="before")
    @classmethod
    def strip_number(cls, v):
        return v.strip() if isinstance(v, str) else v

    @property
    def pending_attachment(self) -> bool:
        return self.attachment_ref is None


class Quotation(BaseModel):
    """
    Devis complet

    total_value est recalculé tant que le devis est modifiable puis figé
    (value_frozen=True) au passage dans un statut terminal.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    quotation_number: str = Field(..., min_length=1)
    revision_number: int = Field(default=0, ge=0)
    enquiry_id: Optional[int] = None
    customer_name: Optional[str] = None

    quotation_date: date = Field(default_factory=date.today)
    validity_period: Optional[date] = Field(None, description="Date de fin de validité")
    currency: str = Field(default="INR", pattern=r"^[A-Z]{3}$")

    items: List[LineItem] = Field(default_factory=list)
    commercial_terms: CommercialTerms = Field(default_factory=CommercialTerms)
    payment_plan: Optional[PaymentPlan] = None

    delivery_schedule: Optional[str] = None
    special_instructions: Optional[str] = None
    incoterms: Optional[str] = None

    status: QuotationStatus = QuotationStatus.DRAFT
    lost_reason: Optional[LostReason] = None
    purchase_order: Optional[PurchaseOrder] = None

    total_value: Decimal = Decimal(0)
    value_frozen: bool = False

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("quotation_number", mode="before")
    @classmethod
    def strip_quotation_number(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("currency", mode="before")
    @classmethod
    def upper_currency(cls, v):
        return v.strip().upper() if isinstance(v, str) else v

    @model_validator(mode="after")
    def check_consistency(self):
        if self.validity_period is not None and self.validity_period < self.quotation_date:
            raise ValueError("Validity period must not end before the quotation date")
        if self.lost_reason is not None and self.status != QuotationStatus.LOST:
            raise ValueError("lost_reason is only allowed on LOST quotations")
        if self.purchase_order is not None and self.status != QuotationStatus.RECEIVED:
            raise ValueError("purchase_order is only allowed on RECEIVED quotations")
        return self

    @property
    def is_mutable(self) -> bool:
        return not self.status.is_terminal
