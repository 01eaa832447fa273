"""
services/document_assembler.py
Assemblage du document imprimable d'un devis (structure paginée, sans rendu)

Le devis est découpé en blocs logiques (en-tête, parties, tableau des lignes,
totaux, échéancier, conditions) qui annoncent leur hauteur estimée en mm.
La pagination range les blocs page par page :
- une ligne d'article est atomique (description renvoyée à la ligne, mais
  quantité / prix / total restent ensemble) ;
- l'en-tête du tableau reste avec la première ligne et est répété en haut
  des pages de suite ;
- seul le bloc conditions (texte libre) peut être coupé, ligne par ligne ;
- un bloc atomique plus haut qu'une page est posé seul et marqué overflow,
  jamais coupé.
Le rendu binaire (PDF) est hors de ce module.
"""

import logging
import math
import textwrap
from dataclasses import dataclass
from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from models.quotation_models import Quotation, QuotationStatus
from services.currency_formatter import format_currency
from services.payment_plan import generate_milestones
from services.totals_calculator import QuotationTotals, display_lines, totals_for

logger = logging.getLogger(__name__)


class BlockKind(str, Enum):
    HEADER = "HEADER"
    PARTIES = "PARTIES"
    ITEM_TABLE_HEADER = "ITEM_TABLE_HEADER"
    LINE_ITEM = "LINE_ITEM"
    TOTALS = "TOTALS"
    PAYMENT_SCHEDULE = "PAYMENT_SCHEDULE"
    TERMS = "TERMS"


class DocumentBlock(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: BlockKind
    height_mm: float
    content: Dict[str, Any] = Field(default_factory=dict)
    splittable: bool = False
    keep_with_next: bool = False
    continued: bool = False
    overflow: bool = False


class DocumentPage(BaseModel):
    number: int
    blocks: List[DocumentBlock]
    used_height_mm: float


class PrintableDocument(BaseModel):
    """Document structuré prêt pour un moteur de rendu externe"""
    quotation_number: str
    revision_number: int
    status: QuotationStatus
    currency: str
    quotation_date: date
    page_height_mm: float
    usable_height_mm: float
    pages: List[DocumentPage]

    @property
    def page_count(self) -> int:
        return len(self.pages)


@dataclass(frozen=True)
class LayoutMetrics:
    """Estimations de hauteur (mm) et largeurs de texte (caractères)"""
    page_height_mm: float = 297.0
    margin_mm: float = 20.0
    line_height_mm: float = 5.0
    header_mm: float = 40.0
    parties_mm: float = 30.0
    table_header_mm: float = 10.0
    row_padding_mm: float = 3.0
    section_title_mm: float = 8.0
    description_chars_per_line: int = 48
    terms_chars_per_line: int = 95

    @property
    def usable_height_mm(self) -> float:
        return self.page_height_mm - 2 * self.margin_mm

    @classmethod
    def from_settings(cls, settings) -> "LayoutMetrics":
        return cls(page_height_mm=settings.document_page_height_mm, margin_mm=settings.document_margin_mm)


# ============================================================
# CONSTRUCTION DES BLOCS
# ============================================================

def _wrap(text: Optional[str], width: int) -> List[str]:
    lines: List[str] = []
    for paragraph in (text or "").splitlines():
        lines.extend(textwrap.wrap(paragraph, width) or [""])
    return lines


def _header_block(quotation: Quotation, metrics: LayoutMetrics, issuer: Optional[str]) -> DocumentBlock:
    return DocumentBlock(kind=BlockKind.HEADER, height_mm=metrics.header_mm, content={
        "title": "QUOTATION",
        "issuer": issuer,
        "quotation_number": quotation.quotation_number,
        "revision_number": quotation.revision_number,
        "quotation_date": quotation.quotation_date.isoformat(),
        "validity_period": quotation.validity_period.isoformat() if quotation.validity_period else None,
        "currency": quotation.currency,
        "status": quotation.status.value,
    })


def _parties_block(quotation: Quotation, metrics: LayoutMetrics, issuer: Optional[str]) -> DocumentBlock:
    return DocumentBlock(kind=BlockKind.PARTIES, height_mm=metrics.parties_mm, content={
        "from": issuer,
        "to": quotation.customer_name,
        "enquiry_id": quotation.enquiry_id,
    })


def _table_header_block(metrics: LayoutMetrics, continued: bool = False) -> DocumentBlock:
    return DocumentBlock(
        kind=BlockKind.ITEM_TABLE_HEADER,
        height_mm=metrics.table_header_mm,
        content={"columns": ["#", "Description", "Qty", "Unit Price", "Total"]},
        keep_with_next=True,
        continued=continued,
    )


def _line_item_blocks(totals: QuotationTotals, quotation: Quotation, metrics: LayoutMetrics) -> List[DocumentBlock]:
    blocks = []
    for line, item in zip(totals.breakdown.line_totals, quotation.items):
        description = _wrap(line.description, metrics.description_chars_per_line)
        specifications = _wrap(item.specifications, metrics.description_chars_per_line) if item.specifications else []
        text_lines = max(1, len(description) + len(specifications))
        blocks.append(DocumentBlock(
            kind=BlockKind.LINE_ITEM,
            height_mm=metrics.row_padding_mm + text_lines * metrics.line_height_mm,
            content={
                "position": line.position,
                "description": description,
                "specifications": specifications,
                "quantity": line.quantity,
                "unit_price": format_currency(line.unit_price, quotation.currency),
                "line_total": format_currency(line.line_total, quotation.currency),
            },
        ))
    return blocks


def _totals_block(totals: QuotationTotals, quotation: Quotation, metrics: LayoutMetrics) -> DocumentBlock:
    lines = display_lines(totals, quotation.currency)
    return DocumentBlock(
        kind=BlockKind.TOTALS,
        height_mm=metrics.section_title_mm + len(lines) * metrics.line_height_mm,
        content={"lines": [{"label": label, "amount": amount} for label, amount in lines]},
    )


def _payment_schedule_block(totals: QuotationTotals, quotation: Quotation,
                            metrics: LayoutMetrics) -> Optional[DocumentBlock]:
    if quotation.payment_plan is None:
        return None
    milestones = generate_milestones(quotation.payment_plan, totals.grand_total, quotation.currency)
    return DocumentBlock(
        kind=BlockKind.PAYMENT_SCHEDULE,
        height_mm=metrics.section_title_mm + len(milestones) * metrics.line_height_mm,
        content={
            "plan": quotation.payment_plan.text,
            "milestones": [
                {
                    "label": m.label,
                    "due": m.due,
                    "percentage": m.percentage,
                    "amount": format_currency(m.amount, quotation.currency),
                }
                for m in milestones
            ],
        },
    )


def _terms_block(quotation: Quotation, metrics: LayoutMetrics) -> Optional[DocumentBlock]:
    sections = [
        ("Delivery Schedule", quotation.delivery_schedule),
        ("Incoterms", quotation.incoterms),
        ("Special Instructions", quotation.special_instructions),
    ]
    if quotation.validity_period:
        sections.append(("Validity", f"This quotation is valid until {quotation.validity_period.isoformat()}"))

    lines: List[str] = []
    for title, text in sections:
        if text:
            lines.append(f"{title}:")
            lines.extend(_wrap(text, metrics.terms_chars_per_line))
    if not lines:
        return None
    return DocumentBlock(
        kind=BlockKind.TERMS,
        height_mm=metrics.section_title_mm + len(lines) * metrics.line_height_mm,
        content={"lines": lines},
        splittable=True,
    )


def build_blocks(quotation: Quotation, totals: QuotationTotals, metrics: LayoutMetrics,
                 issuer: Optional[str] = None) -> List[DocumentBlock]:
    """Blocs du document dans l'ordre de lecture"""
    blocks = [
        _header_block(quotation, metrics, issuer),
        _parties_block(quotation, metrics, issuer),
        _table_header_block(metrics),
    ]
    blocks.extend(_line_item_blocks(totals, quotation, metrics))
    blocks.append(_totals_block(totals, quotation, metrics))

    schedule = _payment_schedule_block(totals, quotation, metrics)
    if schedule is not None:
        blocks.append(schedule)
    terms = _terms_block(quotation, metrics)
    if terms is not None:
        blocks.append(terms)
    return blocks


# ============================================================
# PAGINATION
# ============================================================

def _split_lines_block(block: DocumentBlock, available_mm: float,
                       metrics: LayoutMetrics) -> Optional[Tuple[DocumentBlock, DocumentBlock]]:
    """Coupe un bloc texte pour remplir `available_mm` ; None si aucune ligne ne tient"""
    lines = block.content["lines"]
    fit = math.floor((available_mm - metrics.section_title_mm) / metrics.line_height_mm)
    if fit < 1:
        return None
    fit = min(fit, len(lines) - 1)
    if fit < 1:
        return None

    def part(chunk: List[str], continued: bool) -> DocumentBlock:
        return block.model_copy(update={
            "content": {"lines": chunk},
            "height_mm": metrics.section_title_mm + len(chunk) * metrics.line_height_mm,
            "continued": continued,
        })

    return part(lines[:fit], block.continued), part(lines[fit:], True)


def paginate(blocks: List[DocumentBlock], metrics: LayoutMetrics) -> List[DocumentPage]:
    """
    Range les blocs dans des pages

    Args:
        blocks: Blocs dans l'ordre de lecture
        metrics: Hauteur utile de page et estimations

    Returns:
        Pages numérotées à partir de 1
    """
    usable = metrics.usable_height_mm
    pages: List[List[DocumentBlock]] = [[]]
    used = [0.0]

    def place(block: DocumentBlock) -> None:
        if block.height_mm > usable - used[-1] + 1e-9:
            block = block.model_copy(update={"overflow": True})
            logger.debug(f"Bloc {block.kind.value} plus haut que la page ({block.height_mm} mm)")
        pages[-1].append(block)
        used[-1] += block.height_mm

    def start_page() -> None:
        pages.append([])
        used.append(0.0)

    queue = list(blocks)
    while queue:
        block = queue.pop(0)
        remaining = usable - used[-1]

        if block.splittable and block.height_mm > remaining:
            parts = _split_lines_block(block, remaining, metrics)
            if parts is not None:
                head, tail = parts
                place(head)
                start_page()
                queue.insert(0, tail)
                continue
            if pages[-1]:
                start_page()
                queue.insert(0, block)
                continue
            place(block)
            continue

        needed = block.height_mm
        if block.keep_with_next and queue:
            # Si le couple ne tient sur aucune page, on repart au moins d'une page vierge
            needed = min(needed + queue[0].height_mm, usable)

        held = bool(pages[-1]) and pages[-1][-1].keep_with_next
        if needed > remaining and pages[-1] and not held:
            start_page()
            if block.kind == BlockKind.LINE_ITEM:
                place(_table_header_block(metrics, continued=True))

        place(block)

    return [
        DocumentPage(number=index, blocks=page_blocks, used_height_mm=round(page_used, 2))
        for index, (page_blocks, page_used) in enumerate(zip(pages, used), start=1)
    ]


def assemble(
    quotation: Quotation,
    totals: Optional[QuotationTotals] = None,
    metrics: Optional[LayoutMetrics] = None,
    issuer: Optional[str] = None,
) -> PrintableDocument:
    """
    Produit le document imprimable d'un devis (fonction pure)

    Args:
        quotation: Devis persisté
        totals: Totaux déjà calculés (recalculés si absents)
        metrics: Gabarit de page (A4, marges 20 mm par défaut)
        issuer: Raison sociale émettrice affichée en en-tête

    Returns:
        PrintableDocument
    """
    metrics = metrics or LayoutMetrics()
    totals = totals or totals_for(quotation)

    blocks = build_blocks(quotation, totals, metrics, issuer)
    pages = paginate(blocks, metrics)

    return PrintableDocument(
        quotation_number=quotation.quotation_number,
        revision_number=quotation.revision_number,
        status=quotation.status,
        currency=quotation.currency,
        quotation_date=quotation.quotation_date,
        page_height_mm=metrics.page_height_mm,
        usable_height_mm=metrics.usable_height_mm,
        pages=pages,
    )
