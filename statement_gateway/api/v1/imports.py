"""POST /v1/credit-card/imports/* - three-step statement import"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from statement_gateway.api.dependencies import get_request_id, to_http_exception
from statement_gateway.api.v1.schemas import (
    BillPaymentCandidateSchema,
    ConfirmRequest,
    ConfirmResponse,
    LinesRequest,
    MatchPreviewResponse,
    ParsePreviewResponse,
    StatementLineSchema,
)
from statement_gateway.config import settings
from statement_gateway.domain.exceptions import DomainException, UnrecognizedFormat
from statement_gateway.domain.models import ExplicitMapping
from statement_gateway.infrastructure.database.session import get_db
from statement_gateway.infrastructure.observability.logging import log_import_preview
from statement_gateway.infrastructure.observability.metrics import record_import_step
from statement_gateway.services import imports

router = APIRouter()


def _explicit_mapping(
    date_column: Optional[str],
    description_column: Optional[str],
    amount_column: Optional[str],
) -> Optional[ExplicitMapping]:
    given = [c for c in (date_column, description_column, amount_column) if c]
    if not given:
        return None
    if len(given) != 3:
        raise UnrecognizedFormat("Explicit mapping needs date, description and amount columns")
    return ExplicitMapping(date_column, description_column, amount_column)


@router.post("/credit-card/imports/preview", response_model=ParsePreviewResponse)
async def preview_statement(
    request: Request,
    file: UploadFile = File(...),
    encoding: Optional[str] = Form(None),
    bank_format: Optional[str] = Form(None, description="auto, custom or a preset key"),
    date_column: Optional[str] = Form(None),
    description_column: Optional[str] = Form(None),
    amount_column: Optional[str] = Form(None),
):
    """
    Parse an uploaded statement and classify its lines.

    Read-only: nothing is written to the ledger.
    """
    request_id = get_request_id(request)
    raw = await file.read()
    if len(raw) > settings.max_upload_bytes:
        record_import_step("preview", "too_large")
        raise HTTPException(status_code=413, detail="Statement file too large")

    try:
        explicit = _explicit_mapping(date_column, description_column, amount_column)
        # Blocking pandas parse runs in a worker thread
        preview = await run_in_threadpool(
            imports.parse_preview, raw, encoding=encoding, bank_format=bank_format, explicit=explicit
        )
    except DomainException as e:
        record_import_step("preview", e.code)
        logging.warning(f"Statement rejected: {e}", extra={"request_id": request_id, "code": e.code})
        raise HTTPException(status_code=422, detail={"code": e.code, "message": str(e)})

    record_import_step("preview", line_count=len(preview.lines))
    log_import_preview(request_id, preview.detected_format, len(preview.lines), len(preview.errors))
    return ParsePreviewResponse(
        lines=[StatementLineSchema.from_line(line) for line in preview.lines],
        detected_format=preview.detected_format,
        errors=preview.errors,
    )


@router.post("/credit-card/imports/match", response_model=MatchPreviewResponse)
def preview_match(body: LinesRequest, request: Request, db: Session = Depends(get_db)):
    """
    Compute the statement net total and the best standalone bill payment.

    Read-only. No candidate is a normal outcome (no_match = true).
    """
    try:
        result = imports.match_preview(db, [line.to_line() for line in body.lines])
    except DomainException as e:
        record_import_step("match", e.code)
        raise to_http_exception(e, db, get_request_id(request))

    record_import_step("match", "ok" if result.candidate else "no_match")
    candidate = None
    if result.candidate is not None:
        candidate = BillPaymentCandidateSchema(
            id=result.candidate.id,
            date=result.candidate.date,
            amount_cents=result.candidate.amount_cents,
            description=result.candidate.description,
        )
    return MatchPreviewResponse(
        candidate=candidate,
        no_match=result.no_match,
        delta_cents=result.delta_cents,
        net_total_cents=result.net_total_cents,
        unmatched_amount_cents=result.unmatched_amount_cents,
        billing_cycle=result.billing_cycle,
    )


@router.post("/credit-card/imports/confirm", response_model=ConfirmResponse)
def confirm_import(body: ConfirmRequest, request: Request, db: Session = Depends(get_db)):
    """
    Write the import: expand the chosen bill payment, or store the items as
    pending transactions when no bill payment is given.
    """
    request_id = get_request_id(request)
    try:
        outcome = imports.confirm(
            db,
            [line.to_line() for line in body.lines],
            bill_payment_id=body.bill_payment_id,
            category_id=body.category_id,
            request_id=request_id,
        )
    except DomainException as e:
        record_import_step("confirm", e.code)
        raise to_http_exception(e, db, request_id)

    record_import_step("confirm", "expanded" if outcome.bill_payment_id else "unmatched")
    return ConfirmResponse(
        created_transaction_ids=outcome.created_transaction_ids,
        billing_cycle=outcome.billing_cycle,
        bill_payment_id=outcome.bill_payment_id,
        delta_cents=outcome.delta_cents,
        unmatched_amount_cents=outcome.unmatched_amount_cents,
    )
