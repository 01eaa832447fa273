"""
Attachment Storage Service
Stocke localement les bons de commande (PO) joints aux devis RECEIVED.

Stockage : {ATTACHMENT_STORAGE_DIR}/{safe_quotation_dir}/{attachment_id}_{filename}
Base de données : table po_attachments (métadonnées, empreinte SHA256)

La référence retournée (attachment_id) est la seule donnée conservée sur le devis.
"""

import re
import hashlib
import logging
import uuid
from datetime import datetime
from pathlib import Path
from typing import Optional, Dict, Any, List

from pydantic import BaseModel, ConfigDict
from sqlalchemy.orm import sessionmaker

from core.settings import get_settings
from db.models import PurchaseOrderAttachment
from db.session import get_session_factory
from services.quotation_errors import QuotationValidationError

logger = logging.getLogger(__name__)

# ============================================================
# CONSTANTES
# ============================================================

# Types acceptés pour un bon de commande
ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx", ".jpg", ".jpeg", ".png"}


# ============================================================
# MODÈLE
# ============================================================

class StoredDocument(BaseModel):
    """Métadonnées d'un document stocké localement."""
    model_config = ConfigDict(frozen=True)

    reference: str
    quotation_id: str
    filename: str
    content_type: Optional[str] = None
    size: int
    sha256: str
    local_path: str
    stored_by: Optional[str] = None
    stored_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        data = self.model_dump(mode="json")
        data.pop("local_path")
        return data


# ============================================================
# SERVICE
# ============================================================

class AttachmentStorageService:
    """
    Service de stockage local des bons de commande.

    Workflow :
    1. store_document(content, metadata) → écrit sur disque, enregistre en DB, retourne la référence
    2. get_document(reference) → métadonnées
    3. get_document_path(reference) → chemin disque (téléchargement du PO)
    """

    def __init__(
        self,
        storage_dir: Optional[str] = None,
        session_factory: Optional[sessionmaker] = None,
        max_size_bytes: Optional[int] = None,
    ):
        settings = get_settings()
        self.storage_base = Path(storage_dir or settings.attachment_storage_dir)
        self.session_factory = session_factory or get_session_factory()
        self.max_size_bytes = max_size_bytes or settings.attachment_max_size_bytes
        self.storage_base.mkdir(parents=True, exist_ok=True)

    # ----------------------------------------------------------
    # Helpers
    # ----------------------------------------------------------

    @staticmethod
    def _safe_dir(quotation_id: str) -> str:
        """Nom de répertoire safe pour un devis (hash court)."""
        return hashlib.sha256(quotation_id.encode()).hexdigest()[:16]

    @staticmethod
    def _safe_filename(filename: str) -> str:
        """Sanitise un nom de fichier."""
        safe = re.sub(r'[<>:"/\\|?*\x00-\x1f]', '_', filename)
        return safe[:200]  # Limite longueur

    def _get_storage_dir(self, quotation_id: str) -> Path:
        path = self.storage_base / self._safe_dir(quotation_id)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _validate(self, content: bytes, filename: str) -> None:
        if not filename or not filename.strip():
            raise QuotationValidationError.for_field("filename", "A file name is required")
        extension = Path(filename).suffix.lower()
        if extension not in ALLOWED_EXTENSIONS:
            raise QuotationValidationError.for_field(
                "filename", "Purchase order must be a PDF, DOC, DOCX, JPG, JPEG or PNG file"
            )
        if not content:
            raise QuotationValidationError.for_field("content", "The uploaded document is empty")
        if len(content) > self.max_size_bytes:
            raise QuotationValidationError.for_field(
                "content", f"The uploaded document exceeds {self.max_size_bytes // (1024 * 1024)} MB"
            )

    # ----------------------------------------------------------
    # Stockage
    # ----------------------------------------------------------

    def store_document(
        self,
        content: bytes,
        quotation_id: str,
        filename: str,
        content_type: Optional[str] = None,
        stored_by: Optional[str] = None,
    ) -> StoredDocument:
        """
        Écrit un document sur disque et enregistre ses métadonnées.

        Args:
            content: Contenu binaire du document
            quotation_id: ID du devis concerné
            filename: Nom d'origine
            content_type: Type MIME annoncé
            stored_by: Identité de l'appelant

        Returns:
            StoredDocument (reference = ID à conserver sur le devis)

        Raises:
            QuotationValidationError: Type de fichier, taille ou contenu invalide
            OSError: Écriture disque impossible (propagée)
        """
        self._validate(content, filename)

        reference = str(uuid.uuid4())
        local_path = self._get_storage_dir(quotation_id) / f"{reference}_{self._safe_filename(filename)}"
        local_path.write_bytes(content)
        logger.info("Document '%s' stocké: %s", filename, local_path)

        stored = StoredDocument(
            reference=reference,
            quotation_id=quotation_id,
            filename=filename,
            content_type=content_type,
            size=len(content),
            sha256=hashlib.sha256(content).hexdigest(),
            local_path=str(local_path),
            stored_by=stored_by,
            stored_at=datetime.utcnow(),
        )

        try:
            with self.session_factory.begin() as db:
                db.add(PurchaseOrderAttachment(
                    id=stored.reference,
                    quotation_id=stored.quotation_id,
                    filename=stored.filename,
                    content_type=stored.content_type,
                    size=stored.size,
                    sha256=stored.sha256,
                    local_path=stored.local_path,
                    stored_by=stored.stored_by,
                    stored_at=stored.stored_at,
                ))
        except Exception:
            # Pas de fichier orphelin si l'enregistrement échoue
            local_path.unlink(missing_ok=True)
            raise

        return stored

    # ----------------------------------------------------------
    # Lecture
    # ----------------------------------------------------------

    @staticmethod
    def _to_document(row: PurchaseOrderAttachment) -> StoredDocument:
        return StoredDocument(
            reference=row.id,
            quotation_id=row.quotation_id,
            filename=row.filename,
            content_type=row.content_type,
            size=row.size,
            sha256=row.sha256,
            local_path=row.local_path,
            stored_by=row.stored_by,
            stored_at=row.stored_at,
        )

    def get_document(self, reference: str) -> Optional[StoredDocument]:
        with self.session_factory() as db:
            row = db.get(PurchaseOrderAttachment, reference)
            return self._to_document(row) if row is not None else None

    def get_document_path(self, reference: str) -> Optional[Path]:
        """Retourne le chemin disque d'un document, ou None si absent."""
        document = self.get_document(reference)
        if document is None:
            return None
        path = Path(document.local_path)
        if not path.exists():
            logger.warning("Fichier PO manquant: %s", path)
            return None
        return path

    def delete_document(self, reference: str) -> None:
        """Supprime un document (fichier + métadonnées), sans erreur s'il est absent"""
        with self.session_factory.begin() as db:
            row = db.get(PurchaseOrderAttachment, reference)
            if row is None:
                return
            path = Path(row.local_path)
            db.delete(row)
        path.unlink(missing_ok=True)
        logger.info("Document PO supprimé: %s", reference)

    def list_documents(self, quotation_id: str) -> List[StoredDocument]:
        with self.session_factory() as db:
            rows = db.query(PurchaseOrderAttachment).filter(
                PurchaseOrderAttachment.quotation_id == quotation_id
            ).order_by(PurchaseOrderAttachment.stored_at).all()
            return [self._to_document(row) for row in rows]

