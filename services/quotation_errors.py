"""
services/quotation_errors.py
Erreurs métier du moteur de devis

Toutes ces erreurs sont récupérables par l'appelant, aucune n'est une panne système.
Les pannes des collaborateurs (base, disque) ne sont pas encapsulées : elles remontent telles quelles.
"""

from typing import List, Optional, Sequence

from pydantic import BaseModel, ValidationError


class FieldError(BaseModel):
    """Message d'erreur rattaché à un champ du formulaire"""
    field: str
    message: str


class QuotationError(Exception):
    """Classe de base des erreurs métier devis"""
    code = "QUOTATION_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class QuotationValidationError(QuotationError):
    """Saisie invalide : ligne, plan de paiement, raison de perte manquante..."""
    code = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: Optional[Sequence[FieldError]] = None):
        super().__init__(message)
        self.errors: List[FieldError] = list(errors or [])

    @classmethod
    def for_field(cls, field: str, message: str) -> "QuotationValidationError":
        return cls(message, [FieldError(field=field, message=message)])

    @classmethod
    def from_pydantic(cls, exc: ValidationError, prefix: str = "") -> "QuotationValidationError":
        """Convertit une ValidationError pydantic en messages par champ"""
        errors = []
        for err in exc.errors():
            location = ".".join(str(part) for part in err.get("loc", ()))
            if prefix:
                location = f"{prefix}.{location}" if location else prefix
            errors.append(FieldError(field=location or "__root__", message=err.get("msg", "Invalid value")))
        summary = "; ".join(f"{e.field}: {e.message}" for e in errors) or "Invalid quotation data"
        return cls(summary, errors)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = [e.model_dump() for e in self.errors]
        return data


class QuotationNumberConflict(QuotationError):
    """Numéro de devis déjà utilisé"""
    code = "CONFLICT"

    def __init__(self, quotation_number: str):
        super().__init__(
            f'Quotation number "{quotation_number}" already exists. '
            "Please use a different quotation number."
        )
        self.quotation_number = quotation_number


class InvalidTransitionError(QuotationError):
    """Changement de statut interdit depuis le statut courant"""
    code = "INVALID_TRANSITION"

    def __init__(self, current_status, requested_status, allowed_statuses=(), reason: Optional[str] = None):
        current = getattr(current_status, "value", current_status)
        requested = getattr(requested_status, "value", requested_status)
        message = f"Cannot move quotation from {current} to {requested}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_statuses = list(allowed_statuses)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["allowed_statuses"] = [getattr(s, "value", s) for s in self.allowed_statuses]
        return data


class QuotationStateError(QuotationError):
    """Modification ou pièce jointe interdite dans le statut courant"""
    code = "INVALID_STATE"


class QuotationNotFound(QuotationError):
    code = "NOT_FOUND"

    def __init__(self, quotation_id, message: Optional[str] = None):
        super().__init__(message or f"Quotation {quotation_id} not found")
        self.quotation_id = quotation_id
