"""Column mapper - resolves which header column holds each logical field"""

import logging
import unicodedata
from typing import Dict, List, Optional, Sequence

from statement_gateway.domain.exceptions import UnrecognizedFormat
from statement_gateway.domain.models import BankFormat, ColumnMapping, ExplicitMapping, LogicalField

logger = logging.getLogger(__name__)

AUTO_FORMAT = "auto"
CUSTOM_FORMAT = "custom"
GENERIC_FORMAT = "generic"

BANK_FORMATS: Dict[str, BankFormat] = {
    fmt.key: fmt
    for fmt in (
        BankFormat(
            key="nubank_credit_card",
            label="Nubank Cartão de Crédito",
            headers=("date", "title", "amount"),
            date_index=0,
            description_index=1,
            amount_index=2,
        ),
        BankFormat(
            key="nubank_checking",
            label="Nubank Conta",
            headers=("Data", "Valor", "Identificador", "Descrição"),
            date_index=0,
            description_index=3,
            amount_index=1,
        ),
        BankFormat(
            key="inter",
            label="Banco Inter",
            headers=("Data Lançamento", "Descrição", "Valor", "Saldo"),
            date_index=0,
            description_index=1,
            amount_index=2,
        ),
    )
}

# Generic headers seen in exports that match no preset
_GENERIC_SYNONYMS: Dict[LogicalField, set] = {
    LogicalField.DATE: {
        "date", "data", "transaction date", "transaction_date", "posted date",
        "data da compra", "data de lancamento", "data lancamento", "dt",
    },
    LogicalField.DESCRIPTION: {
        "description", "descricao", "title", "titulo", "memo", "historico",
        "estabelecimento", "lancamento", "details",
    },
    LogicalField.AMOUNT: {
        "amount", "valor", "value", "valor (r$)", "valor r$", "quantia", "total",
    },
}


def normalize_header(value: str) -> str:
    """Case, accent and whitespace insensitive form of a header cell"""
    text = unicodedata.normalize("NFKD", (value or "").replace("\ufeff", ""))
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return " ".join(text.lower().split())


def _build_synonym_table() -> Dict[LogicalField, set]:
    table = {fld: {normalize_header(s) for s in synonyms} for fld, synonyms in _GENERIC_SYNONYMS.items()}
    for fmt in BANK_FORMATS.values():
        table[LogicalField.DATE].add(normalize_header(fmt.headers[fmt.date_index]))
        table[LogicalField.DESCRIPTION].add(normalize_header(fmt.headers[fmt.description_index]))
        table[LogicalField.AMOUNT].add(normalize_header(fmt.headers[fmt.amount_index]))
    return table


SYNONYMS = _build_synonym_table()


def detect_bank_format(headers: Sequence[str]) -> str:
    """Return the preset whose header row matches exactly, else generic"""
    normalized = tuple(normalize_header(h) for h in headers)
    for fmt in BANK_FORMATS.values():
        if normalized == tuple(normalize_header(h) for h in fmt.headers):
            return fmt.key
    return GENERIC_FORMAT


def _from_explicit(headers: Sequence[str], explicit: ExplicitMapping) -> ColumnMapping:
    normalized = [normalize_header(h) for h in headers]
    indices = []
    for requested in (explicit.date_column, explicit.description_column, explicit.amount_column):
        key = normalize_header(requested)
        if key not in normalized:
            raise UnrecognizedFormat(f"Column '{requested}' not found in header row")
        indices.append(normalized.index(key))
    if len(set(indices)) != 3:
        raise UnrecognizedFormat("Date, description and amount must be different columns")
    return ColumnMapping(*indices, format_name=CUSTOM_FORMAT)


def _from_preset(headers: Sequence[str], fmt: BankFormat) -> ColumnMapping:
    needed = max(fmt.date_index, fmt.description_index, fmt.amount_index) + 1
    if len(headers) < needed:
        raise UnrecognizedFormat(
            f"{fmt.label} expects at least {needed} columns, file has {len(headers)}"
        )
    return ColumnMapping(fmt.date_index, fmt.description_index, fmt.amount_index, format_name=fmt.key)


def _auto_detect(headers: Sequence[str]) -> ColumnMapping:
    found: Dict[LogicalField, int] = {}
    for index, header in enumerate(headers):
        key = normalize_header(header)
        for fld in LogicalField:
            if fld not in found and key in SYNONYMS[fld]:
                found[fld] = index
                break

    missing: List[str] = [fld.value for fld in LogicalField if fld not in found]
    if missing:
        raise UnrecognizedFormat(
            f"Could not recognize columns for: {', '.join(missing)}. Select a bank format or map columns manually"
        )
    return ColumnMapping(
        found[LogicalField.DATE],
        found[LogicalField.DESCRIPTION],
        found[LogicalField.AMOUNT],
        format_name=detect_bank_format(headers),
    )


def resolve_column_mapping(
    headers: Sequence[str],
    bank_format: Optional[str] = None,
    explicit: Optional[ExplicitMapping] = None,
) -> ColumnMapping:
    """
    Map header columns to date, description and amount.

    Precedence: explicit mapping, then a selected preset's fixed layout, then
    synonym-based auto-detection.

    Raises:
        UnrecognizedFormat: Mapping is incomplete or references unknown columns
    """
    if explicit is not None:
        return _from_explicit(headers, explicit)

    selected = bank_format or AUTO_FORMAT
    if selected == CUSTOM_FORMAT:
        raise UnrecognizedFormat("Custom format requires an explicit column mapping")
    if selected != AUTO_FORMAT:
        fmt = BANK_FORMATS.get(selected)
        if fmt is None:
            raise UnrecognizedFormat(f"Unknown bank format '{selected}'")
        return _from_preset(headers, fmt)

    mapping = _auto_detect(headers)
    logger.debug("Auto-detected columns", extra={"format": mapping.format_name})
    return mapping
