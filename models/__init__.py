# models module
"""
Package models pour les modèles de données du moteur de devis
"""

from .quotation_models import (
    CommercialTerms,
    LineItem,
    LostReason,
    PurchaseOrder,
    Quotation,
    QuotationStatus,
)

__all__ = ['CommercialTerms', 'LineItem', 'LostReason', 'PurchaseOrder', 'Quotation', 'QuotationStatus']
