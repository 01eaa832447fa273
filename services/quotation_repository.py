"""
Repository pour la persistance des devis.

Tables (voir db/models.py) :
- quotation_number_reservations : autorité d'unicité des numéros (PRIMARY KEY)
- quotations : devis courant, contenu complet sérialisé en JSON
- quotation_revisions : contenu figé de chaque révision précédente
- quotation_status_history : traces des transitions

Les mises à jour sont conditionnées à l'état lu (statut / révision) : une
modification concurrente est détectée au lieu d'être écrasée.

IMPORTANT: AUCUNE logique métier - uniquement CRUD.
"""

import json
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import sessionmaker

from db.models import (
    QuotationNumberReservation,
    QuotationRecord,
    QuotationRevisionRecord,
    QuotationStatusHistory,
)
from db.session import get_session_factory
from models.quotation_models import Quotation, QuotationStatus
from services.quotation_errors import QuotationNotFound, QuotationNumberConflict, QuotationStateError
from services.quotation_lifecycle import TransitionRecord
from services.quotation_number_registry import NumberReservation

logger = logging.getLogger(__name__)

MUTABLE_STATUSES = [QuotationStatus.DRAFT.value, QuotationStatus.LIVE.value]


def _dump(quotation: Quotation) -> str:
    return json.dumps(quotation.model_dump(mode="json"), ensure_ascii=False)


def _load(payload: str) -> Quotation:
    return Quotation.model_validate(json.loads(payload))


def _attachment_ref(quotation: Quotation) -> Optional[str]:
    return quotation.purchase_order.attachment_ref if quotation.purchase_order else None


class QuotationRepository:
    """
    Repository pour accès base de données devis.

    Responsabilités:
    - Réserver les numéros (contrainte UNIQUE, atomique entre processus)
    - Créer/lire les devis
    - Archiver les révisions et tracer les changements de statut
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None):
        self.session_factory = session_factory or get_session_factory()

    # ----------------------------------------------------------
    # Numéros
    # ----------------------------------------------------------

    def number_exists(self, quotation_number: str) -> bool:
        with self.session_factory() as db:
            reserved = db.query(QuotationNumberReservation).filter(
                QuotationNumberReservation.quotation_number == quotation_number
            ).first() is not None
            if reserved:
                return True
            return db.query(QuotationRecord).filter(
                QuotationRecord.quotation_number == quotation_number
            ).first() is not None

    def insert_reservation(self, quotation_number: str, reserved_by: Optional[str] = None) -> NumberReservation:
        """
        Insère une réservation de numéro.

        Raises:
            QuotationNumberConflict: Si le numéro existe déjà (violation UNIQUE)
        """
        reserved_at = datetime.utcnow()
        try:
            with self.session_factory.begin() as db:
                db.add(QuotationNumberReservation(
                    quotation_number=quotation_number,
                    reserved_by=reserved_by,
                    reserved_at=reserved_at,
                ))
        except IntegrityError:
            logger.warning(f"⚠️ Numéro de devis déjà réservé: {quotation_number}")
            raise QuotationNumberConflict(quotation_number)
        except OperationalError as e:
            logger.error(f"✗ Base indisponible (réservation {quotation_number}): {e}")
            raise

        logger.info(f"✅ Numéro réservé: {quotation_number}")
        return NumberReservation(quotation_number=quotation_number, reserved_by=reserved_by, reserved_at=reserved_at)

    # ----------------------------------------------------------
    # Création / lecture
    # ----------------------------------------------------------

    def insert_quotation(self, quotation: Quotation, actor: Optional[str] = None) -> Quotation:
        """
        Crée un devis et consomme son numéro dans la même transaction.

        Une réservation préalable du même acteur est reprise ; sinon une
        réservation est insérée. La contrainte UNIQUE tranche les courses.

        Returns:
            Devis persisté (id et horodatages renseignés)

        Raises:
            QuotationNumberConflict: Si le numéro est déjà pris
        """
        quotation_id = str(uuid.uuid4())
        now = datetime.utcnow()
        stored = quotation.model_copy(update={
            "id": quotation_id,
            "created_by": actor,
            "created_at": now,
            "updated_at": now,
        })
        number = stored.quotation_number

        try:
            with self.session_factory.begin() as db:
                claimed = db.query(QuotationNumberReservation).filter(
                    QuotationNumberReservation.quotation_number == number,
                    QuotationNumberReservation.quotation_id.is_(None),
                    QuotationNumberReservation.reserved_by == actor,
                ).update({"quotation_id": quotation_id}, synchronize_session=False)

                if not claimed:
                    db.add(QuotationNumberReservation(
                        quotation_number=number,
                        reserved_by=actor,
                        reserved_at=now,
                        quotation_id=quotation_id,
                    ))
                    db.flush()

                db.add(QuotationRecord(
                    id=quotation_id,
                    quotation_number=number,
                    revision_number=stored.revision_number,
                    enquiry_id=stored.enquiry_id,
                    status=stored.status.value,
                    payload=_dump(stored),
                    created_by=actor,
                    created_at=now,
                    updated_at=now,
                ))
        except IntegrityError:
            logger.warning(f"⚠️ Devis déjà existant pour le numéro {number}")
            raise QuotationNumberConflict(number)
        except OperationalError as e:
            logger.error(f"✗ Base indisponible (création devis {number}): {e}")
            raise

        logger.info(f"✅ Devis créé: {quotation_id} ({number})")
        return stored

    def load_quotation(self, quotation_id: str) -> Quotation:
        with self.session_factory() as db:
            record = db.get(QuotationRecord, quotation_id)
            if record is None:
                raise QuotationNotFound(quotation_id)
            return _load(record.payload)

    def list_quotations(self, status: Optional[QuotationStatus] = None) -> List[Quotation]:
        with self.session_factory() as db:
            query = db.query(QuotationRecord)
            if status is not None:
                query = query.filter(QuotationRecord.status == status.value)
            records = query.order_by(QuotationRecord.created_at.desc()).all()
            return [_load(r.payload) for r in records]

    # ----------------------------------------------------------
    # Mises à jour
    # ----------------------------------------------------------

    def save_revision(self, previous: Quotation, revised: Quotation, actor: Optional[str] = None) -> Quotation:
        """
        Archive la révision précédente et enregistre la nouvelle.

        Raises:
            QuotationStateError: Si le devis a changé depuis sa lecture
        """
        with self.session_factory.begin() as db:
            updated_rows = db.query(QuotationRecord).filter(
                QuotationRecord.id == previous.id,
                QuotationRecord.revision_number == previous.revision_number,
                QuotationRecord.status.in_(MUTABLE_STATUSES),
            ).update({
                "revision_number": revised.revision_number,
                "payload": _dump(revised),
                "updated_at": revised.updated_at,
            }, synchronize_session=False)

            if updated_rows == 0:
                self._raise_stale(db, previous.id)

            db.add(QuotationRevisionRecord(
                quotation_id=previous.id,
                revision_number=previous.revision_number,
                payload=_dump(previous),
                archived_by=actor,
                archived_at=revised.updated_at,
            ))

        logger.info(f"✅ Devis {revised.quotation_number} révisé: rev {previous.revision_number} -> {revised.revision_number}")
        return revised

    def update_quotation_status(self, previous: Quotation, updated: Quotation, record: TransitionRecord) -> Quotation:
        """
        Enregistre un changement de statut et sa trace.

        Raises:
            QuotationStateError: Si le statut a changé depuis la lecture
        """
        details = {
            "event": record.event.value,
            "lost_reason": record.lost_reason.value if record.lost_reason else None,
            "purchase_order": record.purchase_order.model_dump(mode="json") if record.purchase_order else None,
            "enquiry_status": record.enquiry_status,
        }

        with self.session_factory.begin() as db:
            updated_rows = db.query(QuotationRecord).filter(
                QuotationRecord.id == previous.id,
                QuotationRecord.status == previous.status.value,
            ).update({
                "status": updated.status.value,
                "payload": _dump(updated),
                "po_attachment_ref": _attachment_ref(updated),
                "updated_at": record.occurred_at,
            }, synchronize_session=False)

            if updated_rows == 0:
                self._raise_stale(db, previous.id)

            db.add(QuotationStatusHistory(
                quotation_id=previous.id,
                previous_status=record.previous_status.value,
                new_status=record.new_status.value,
                actor=record.actor,
                occurred_at=record.occurred_at,
                value_snapshot=str(record.value_snapshot) if record.value_snapshot is not None else None,
                details=json.dumps(details, ensure_ascii=False),
            ))

        logger.info(f"✅ Devis {updated.quotation_number} statut {record.previous_status.value} -> {record.new_status.value}")
        return updated

    def update_purchase_order(self, previous: Quotation, updated: Quotation) -> Quotation:
        """
        Met à jour la référence du bon de commande (sans changement de statut).

        Raises:
            QuotationStateError: Si un document a été joint depuis la lecture
        """
        with self.session_factory.begin() as db:
            updated_rows = db.query(QuotationRecord).filter(
                QuotationRecord.id == previous.id,
                QuotationRecord.status == QuotationStatus.RECEIVED.value,
                QuotationRecord.po_attachment_ref.is_(None),
            ).update({
                "payload": _dump(updated),
                "po_attachment_ref": _attachment_ref(updated),
            }, synchronize_session=False)

            if updated_rows == 0:
                self._raise_stale(db, previous.id)

        return updated

    # ----------------------------------------------------------
    # Historique
    # ----------------------------------------------------------

    def status_history(self, quotation_id: str) -> List[TransitionRecord]:
        with self.session_factory() as db:
            record = db.get(QuotationRecord, quotation_id)
            if record is None:
                raise QuotationNotFound(quotation_id)
            rows = db.query(QuotationStatusHistory).filter(
                QuotationStatusHistory.quotation_id == quotation_id
            ).order_by(QuotationStatusHistory.id).all()

            history = []
            for row in rows:
                details = json.loads(row.details) if row.details else {}
                history.append(TransitionRecord(
                    quotation_id=quotation_id,
                    quotation_number=record.quotation_number,
                    previous_status=row.previous_status,
                    new_status=row.new_status,
                    event=details.get("event"),
                    actor=row.actor,
                    occurred_at=row.occurred_at,
                    value_snapshot=Decimal(row.value_snapshot) if row.value_snapshot is not None else None,
                    lost_reason=details.get("lost_reason"),
                    purchase_order=details.get("purchase_order"),
                    pending_attachment=bool(
                        details.get("purchase_order") and not details["purchase_order"].get("attachment_ref")
                    ),
                    enquiry_status=details.get("enquiry_status"),
                ))
            return history

    def revisions(self, quotation_id: str) -> List[Quotation]:
        """Révisions archivées, de la plus ancienne à la plus récente"""
        with self.session_factory() as db:
            if db.get(QuotationRecord, quotation_id) is None:
                raise QuotationNotFound(quotation_id)
            rows = db.query(QuotationRevisionRecord).filter(
                QuotationRevisionRecord.quotation_id == quotation_id
            ).order_by(QuotationRevisionRecord.revision_number).all()
            return [_load(r.payload) for r in rows]

    @staticmethod
    def _raise_stale(db, quotation_id: str):
        if db.get(QuotationRecord, quotation_id) is None:
            raise QuotationNotFound(quotation_id)
        raise QuotationStateError(
            f"Quotation {quotation_id} was modified concurrently, reload it and try again"
        )


# Singleton instance
_quotation_repository: Optional[QuotationRepository] = None


def get_quotation_repository() -> QuotationRepository:
    """Factory pattern pour obtenir l'instance unique."""
    global _quotation_repository
    if _quotation_repository is None:
        _quotation_repository = QuotationRepository()
        logger.info("QuotationRepository singleton created")
    return _quotation_repository
