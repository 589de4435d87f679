"""Statement import protocol: parse preview, match preview, confirm"""

from datetime import timedelta
from typing import Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statement_gateway.config import settings
from statement_gateway.domain.classifier import PatternClassifier
from statement_gateway.domain.column_mapping import detect_bank_format, resolve_column_mapping
from statement_gateway.domain.exceptions import EmptyStatement, PartialImportFailure
from statement_gateway.domain.matching import build_import_batch, find_best_match, ledger_sign, to_ledger_amount
from statement_gateway.domain.models import (
    BillPaymentCandidate,
    ConfirmOutcome,
    ExplicitMapping,
    ImportBatch,
    MatchResult,
    ParsePreview,
    StatementLine,
)
from statement_gateway.domain.statement_parser import decode_upload, parse_statement, read_rows
from statement_gateway.infrastructure.database.repositories import (
    BillPaymentRepository,
    CreditCardTransactionRepository,
)
from statement_gateway.infrastructure.observability.logging import log_unmatched_import
from statement_gateway.infrastructure.observability.metrics import record_ledger_operation
from statement_gateway.services.mismatch import MismatchTracker
from statement_gateway.services.reconciliation import ExpandCollapseManager


def _classifier() -> PatternClassifier:
    return PatternClassifier(settings.statement_locales)


def parse_preview(
    raw: bytes,
    encoding: Optional[str] = None,
    bank_format: Optional[str] = None,
    explicit: Optional[ExplicitMapping] = None,
) -> ParsePreview:
    """
    Step 1: decode, map columns, parse and classify. Read-only.

    Raises:
        UnrecognizedFormat, MalformedRow, EmptyStatement
    """
    text = decode_upload(raw, encoding or settings.default_encoding)
    headers, rows, warnings = read_rows(text)
    mapping = resolve_column_mapping(headers, bank_format=bank_format, explicit=explicit)
    lines = parse_statement(headers, rows, mapping)

    detected = mapping.format_name if mapping.format_name != "custom" else detect_bank_format(headers)
    return ParsePreview(
        lines=_classifier().classify_lines(lines),
        detected_format=detected,
        errors=warnings,
    )


def prepare_batch(lines: Sequence[StatementLine]) -> ImportBatch:
    return build_import_batch(lines, _classifier())


def match_preview(db: Session, lines: Sequence[StatementLine]) -> MatchResult:
    """
    Step 2: net total and best standalone bill payment. Read-only.

    A result without candidate is the NoMatch outcome, not an error.
    """
    batch = prepare_batch(lines)
    window = max(settings.match_date_window_days, 0)
    bills = BillPaymentRepository(db).list_standalone_by_date(
        batch.anchor_date - timedelta(days=window),
        batch.anchor_date + timedelta(days=window),
    )
    candidates = [
        BillPaymentCandidate(id=b.id, date=b.date, amount_cents=b.amount_cents, description=b.description)
        for b in bills
    ]
    return find_best_match(batch, candidates, date_window_days=window)


def confirm(
    db: Session,
    lines: Sequence[StatementLine],
    bill_payment_id: Optional[int] = None,
    category_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> ConfirmOutcome:
    """
    Step 3: write the import to the ledger.

    With a bill payment the batch expands it. Without one the items are
    stored as pending (unlinked) transactions of the billing cycle and the
    whole net total is reported as unmatched.
    """
    batch = prepare_batch(lines)

    if bill_payment_id is not None:
        outcome = ExpandCollapseManager(db, request_id).expand(bill_payment_id, batch, category_id)
        return ConfirmOutcome(
            created_transaction_ids=outcome.created_transaction_ids,
            billing_cycle=outcome.billing_cycle,
            bill_payment_id=bill_payment_id,
            delta_cents=outcome.delta_cents,
        )

    items = batch.item_lines
    if not items:
        raise EmptyStatement("Statement has no purchases to import")

    sign = ledger_sign(batch.lines)
    transactions = CreditCardTransactionRepository(db)
    try:
        created = [
            transactions.create_from_line(
                line,
                ledger_amount_cents=to_ledger_amount(line, sign),
                billing_cycle=batch.billing_cycle,
                category_id=category_id,
            )
            for line in items
        ]
        created_ids = [txn.id for txn in created]
        # Marker holds ledger amounts, like the status summary it is shown next to
        MismatchTracker(db).register_unmatched(batch.billing_cycle, sum(txn.amount_cents for txn in created))
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        record_ledger_operation("import_unmatched", PartialImportFailure.code)
        raise PartialImportFailure("Import failed and was rolled back") from e

    record_ledger_operation("import_unmatched")
    log_unmatched_import(batch.billing_cycle, len(created_ids), batch.net_total_cents, request_id)
    return ConfirmOutcome(
        created_transaction_ids=created_ids,
        billing_cycle=batch.billing_cycle,
        unmatched_amount_cents=batch.net_total_cents,
    )


def collapse(db: Session, bill_payment_id: int, request_id: Optional[str] = None) -> int:
    """Collapse an expanded bill payment, returning the restored amount in cents"""
    return ExpandCollapseManager(db, request_id).collapse(bill_payment_id).restored_amount_cents
