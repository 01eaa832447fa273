# core/settings.py - Configuration du moteur de devis (variables d'environnement)

import os
import logging
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()

logger = logging.getLogger(__name__)


class Settings(BaseModel):
    """Configuration lue depuis l'environnement (.env chargé au démarrage)"""
    app_name: str = "Quotation Engine"
    database_url: str = Field(default_factory=lambda: os.getenv("DATABASE_URL", "sqlite:///./quotations.db"))
    attachment_storage_dir: str = Field(default_factory=lambda: os.getenv("ATTACHMENT_STORAGE_DIR", "data/attachments"))
    attachment_max_size_mb: int = Field(default_factory=lambda: int(os.getenv("ATTACHMENT_MAX_SIZE_MB", "15")))
    default_currency: str = Field(default_factory=lambda: os.getenv("DEFAULT_CURRENCY", "INR").upper())
    default_packing_forwarding_percent: float = Field(
        default_factory=lambda: float(os.getenv("DEFAULT_PACKING_FORWARDING_PERCENT", "3"))
    )
    # Indication pour le front : la vérification de disponibilité du numéro est debouncée
    availability_debounce_ms: int = Field(default_factory=lambda: int(os.getenv("AVAILABILITY_DEBOUNCE_MS", "400")))
    document_page_height_mm: float = Field(default_factory=lambda: float(os.getenv("DOCUMENT_PAGE_HEIGHT_MM", "297")))
    document_margin_mm: float = Field(default_factory=lambda: float(os.getenv("DOCUMENT_MARGIN_MM", "20")))
    audit_log_file: Optional[str] = Field(default_factory=lambda: os.getenv("AUDIT_LOG_FILE") or None)
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper())

    @property
    def attachment_max_size_bytes(self) -> int:
        return self.attachment_max_size_mb * 1024 * 1024


# Singleton
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Retourne l'instance singleton de la configuration"""
    global _settings
    if _settings is None:
        _settings = Settings()
        logger.debug(f"Configuration chargée (base: {_settings.database_url})")
    return _settings

