# core/logging.py - Journal d'audit JSON des devis (création, révisions, transitions, PO)

import logging
import json
import sys
from datetime import datetime
from typing import Any, Dict, Iterable, Optional
from pathlib import Path


# Champs passés via extra={} recopiés dans la sortie JSON
AUDIT_FIELDS = (
    "quotation_number",
    "revision_number",
    "actor",
    "quotation_event",
    "result",
    "previous_status",
    "new_status",
    "value_snapshot",
    "attachment_ref",
)

# Résultats journalisés en WARNING (erreurs récupérables côté appelant)
WARNING_RESULTS = ("conflict", "rejected")


class JSONFormatter(logging.Formatter):
    """
    Une ligne JSON par enregistrement, champs métier du devis inclus.
    """

    def __init__(self, fields: Iterable[str] = AUDIT_FIELDS):
        super().__init__()
        self.fields = tuple(fields)

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        payload.update({
            field: getattr(record, field) for field in self.fields if hasattr(record, field)
        })

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def _json_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_audit_logger(
    name: str = "quotations.audit",
    log_file: Optional[str] = None,
    level: int = logging.INFO,
) -> logging.Logger:
    """
    Configure le logger d'audit des devis (stdout + fichier optionnel).

    Args:
        name: Nom du logger
        log_file: Fichier JSON dédié (répertoire créé si absent)
        level: Niveau minimal journalisé

    Returns:
        Logger configuré ; un second appel renvoie le logger existant sans
        ajouter de handler.
    """
    audit_logger = logging.getLogger(name)
    if audit_logger.handlers:
        return audit_logger

    audit_logger.setLevel(level)
    audit_logger.propagate = False
    audit_logger.addHandler(_json_handler(logging.StreamHandler(sys.stdout), level))

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        audit_logger.addHandler(_json_handler(logging.FileHandler(log_file, encoding="utf-8"), level))

    return audit_logger


_audit_logger: Optional[logging.Logger] = None


def get_audit_logger() -> logging.Logger:
    """Logger d'audit global, fichier optionnel via AUDIT_LOG_FILE"""
    global _audit_logger
    if _audit_logger is None:
        from core.settings import get_settings
        _audit_logger = setup_audit_logger(log_file=get_settings().audit_log_file)
    return _audit_logger


def log_quotation_event(
    event: str,
    quotation_number: Optional[str] = None,
    actor: Optional[str] = None,
    result: str = "success",
    extra_data: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Trace un événement devis dans le journal d'audit.

    Args:
        event: created, revised, number_reserved, transition, po_attached
        quotation_number: Numéro du devis
        actor: Identité fournie par l'appelant (jamais authentifiée ici)
        result: success, conflict ou rejected
        extra_data: previous_status, new_status, value_snapshot, revision_number...

    Exemple:
        log_quotation_event("transition", "QT-001", "u-1", extra_data={"new_status": "WON"})
    """
    context = {
        "quotation_number": quotation_number,
        "actor": actor,
        "quotation_event": event,
        "result": result,
        **(extra_data or {}),
    }
    context = {k: v for k, v in context.items() if v is not None}

    level = logging.WARNING if result in WARNING_RESULTS else logging.INFO
    get_audit_logger().log(level, f"Quotation event: {event}", extra=context)
