"""Statement parser - raw delimited text to normalized StatementLine records"""

import io
import re
from decimal import Decimal, InvalidOperation
from typing import List, Sequence, Tuple

import pandas as pd

from statement_gateway.domain.exceptions import EmptyStatement, MalformedRow
from statement_gateway.domain.models import ColumnMapping, StatementLine
from statement_gateway.utils.date_utils import parse_statement_date

CANDIDATE_DELIMITERS = (",", ";", "\t", "|")

_CURRENCY_RE = re.compile(r"(R\$|US\$|\$|€|£|\s)")
_AMOUNT_RE = re.compile(r"^[+-]?\d+(\.\d{1,2})?$")


def decode_upload(raw: bytes, encoding: str = "utf-8") -> str:
    """
    Decode uploaded bytes with the declared encoding.

    Raises:
        MalformedRow: Bytes are not valid in the declared encoding
        EmptyStatement: Nothing but whitespace was uploaded
    """
    codec = "utf-8-sig" if encoding.lower().replace("_", "-") in ("utf-8", "utf8") else encoding
    try:
        text = raw.decode(codec)
    except (UnicodeDecodeError, LookupError) as e:
        raise MalformedRow(f"File could not be decoded as {encoding}: {e}") from e

    if not text.strip():
        raise EmptyStatement("No transactions found: the file is empty")
    return text


def detect_delimiter(header_line: str) -> str:
    """Most frequent candidate delimiter in the header line, comma on ties"""
    counts = {d: header_line.count(d) for d in CANDIDATE_DELIMITERS}
    best = max(CANDIDATE_DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def read_rows(text: str) -> Tuple[List[str], List[List[str]], List[str]]:
    """
    Split delimited text into header, data rows and warnings.

    Blank rows are skipped and reported as warnings. Rows with more fields
    than the header raise MalformedRow.
    """
    header_line = text.lstrip("\ufeff").splitlines()[0]
    delimiter = detect_delimiter(header_line)

    try:
        frame = pd.read_csv(
            io.StringIO(text.lstrip("\ufeff")),
            sep=delimiter,
            header=None,
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=False,
            skipinitialspace=True,
            engine="python",
        )
    except pd.errors.EmptyDataError as e:
        raise EmptyStatement("No transactions found: the file is empty") from e
    except (pd.errors.ParserError, ValueError) as e:
        raise MalformedRow(f"Could not read statement rows: {e}") from e

    frame = frame.fillna("")
    headers = [str(cell).strip() for cell in frame.iloc[0].tolist()]

    rows: List[List[str]] = []
    warnings: List[str] = []
    for offset, values in enumerate(frame.iloc[1:].itertuples(index=False), start=1):
        cells = [str(v).strip() for v in values]
        if not any(cells):
            warnings.append(f"Row {offset}: blank row skipped")
            continue
        rows.append(cells)

    return headers, rows, warnings


def parse_amount_cents(text: str) -> int:
    """
    Parse a decimal amount into signed integer cents.

    Either '.' or ',' may be the fractional separator; when both appear the
    rightmost one is fractional and the other groups thousands.
    """
    value = _CURRENCY_RE.sub("", text or "")
    if "," in value and "." in value:
        if value.rfind(",") > value.rfind("."):
            value = value.replace(".", "").replace(",", ".")
        else:
            value = value.replace(",", "")
    elif "," in value:
        value = value.replace(",", ".")

    # At most two fractional digits, so "1.234" and "10.005" are rejected
    if not _AMOUNT_RE.match(value):
        raise ValueError(f"invalid amount '{text}'")

    try:
        cents = Decimal(value) * 100
    except InvalidOperation as e:
        raise ValueError(f"invalid amount '{text}'") from e
    return int(cents)


def parse_statement(
    headers: Sequence[str],
    rows: Sequence[Sequence[str]],
    mapping: ColumnMapping,
) -> List[StatementLine]:
    """
    Convert data rows into StatementLines in file order.

    Raises:
        EmptyStatement: Header row only
        MalformedRow: Any row has an unparseable date or amount (whole import fails)
    """
    if not rows:
        raise EmptyStatement("No transactions found in statement")

    lines = []
    width = max(mapping.date_index, mapping.description_index, mapping.amount_index) + 1
    for row_number, row in enumerate(rows, start=1):
        if len(row) < width:
            raise MalformedRow(f"Row {row_number}: expected {width} columns, found {len(row)}", row_number)

        day = parse_statement_date(row[mapping.date_index])
        if day is None:
            raise MalformedRow(f"Row {row_number}: invalid date '{row[mapping.date_index]}'", row_number)

        try:
            amount_cents = parse_amount_cents(row[mapping.amount_index])
        except ValueError as e:
            raise MalformedRow(f"Row {row_number}: {e}", row_number) from e

        lines.append(
            StatementLine(
                date=day,
                raw_description=row[mapping.description_index],
                amount_cents=amount_cents,
            )
        )

    return lines
