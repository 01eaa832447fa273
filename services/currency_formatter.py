"""
services/currency_formatter.py
Affichage des montants selon la devise

Groupement indien (12,34,567.00) pour INR, groupement occidental
(1,234,567.00) pour toutes les autres devises. Un code devise inconnu ne
bloque jamais l'affichage : groupement occidental + code en préfixe.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Dict, Union

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]

# Locale conventionnellement associée à chaque devise
CURRENCY_LOCALES: Dict[str, str] = {
    "INR": "en-IN",
    "USD": "en-US",
    "EUR": "en-US",
    "GBP": "en-US",
    "CAD": "en-US",
    "AUD": "en-US",
    "SGD": "en-US",
    "AED": "en-US",
    "JPY": "en-US",
}

DEFAULT_LOCALE = "en-US"

CURRENCY_SYMBOLS: Dict[str, str] = {
    "INR": "₹",
    "USD": "$",
    "EUR": "€",
    "GBP": "£",
    "CAD": "CA$",
    "AUD": "A$",
    "JPY": "¥",
}

# Devises sans décimales
ZERO_DECIMAL_CURRENCIES = {"JPY", "KRW"}


def currency_precision(currency_code: str) -> int:
    """Nombre de décimales de la devise (arrondi monétaire)"""
    return 0 if (currency_code or "").upper() in ZERO_DECIMAL_CURRENCIES else 2


def quantize_amount(amount: Decimal, decimals: int) -> Decimal:
    """Arrondi half-up à `decimals` décimales, quelle que soit la grandeur du montant"""
    exponent = Decimal(1).scaleb(-decimals)
    if not amount.is_finite():
        return amount
    with localcontext() as ctx:
        # Précision suffisante pour tous les chiffres entiers + décimales
        ctx.prec = max(ctx.prec, amount.adjusted() + decimals + 2)
        return amount.quantize(exponent, rounding=ROUND_HALF_UP)


def _to_decimal(amount: Number) -> Decimal:
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError):
        value = None
    if value is None or not value.is_finite():
        logger.debug(f"Montant non affichable (non numérique ou infini): {amount!r}")
        return Decimal(0)
    return value


def _group_western(digits: str) -> str:
    groups = []
    while len(digits) > 3:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    groups.insert(0, digits)
    return ",".join(groups)


def _group_indian(digits: str) -> str:
    # 3 derniers chiffres, puis groupes de 2
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def format_currency(amount: Number, currency_code: str, decimals: int = 2) -> str:
    """
    Formate un montant avec le symbole et le groupement de sa devise

    Args:
        amount: Montant (Decimal, int, float ou str numérique), zéro ou négatif accepté
        currency_code: Code devise ISO (INR, USD, EUR...)
        decimals: Nombre de décimales (2 par défaut, 0 pour des unités entières)

    Returns:
        Chaîne formatée, ex: "₹24,44,000.00" ou "$2,444,000.00"
    """
    code = (currency_code or "").strip().upper()
    decimals = max(0, int(decimals))

    value = quantize_amount(_to_decimal(amount), decimals)
    negative = value < 0
    text = f"{value.copy_abs():.{decimals}f}"
    integer_part, _, fraction = text.partition(".")

    locale = CURRENCY_LOCALES.get(code, DEFAULT_LOCALE)
    if locale == "en-IN":
        grouped = _group_indian(integer_part)
    else:
        grouped = _group_western(integer_part)

    number = f"{grouped}.{fraction}" if decimals else grouped

    if code in CURRENCY_SYMBOLS:
        prefix = CURRENCY_SYMBOLS[code]
    elif code:
        prefix = f"{code} "
    else:
        prefix = ""

    return f"{'-' if negative else ''}{prefix}{number}"
