"""/v1/credit-card/* - reconciliation status, linking pending cycles and mismatch markers"""

from typing import List

from fastapi import APIRouter, Depends, Path, Request
from sqlalchemy.orm import Session

from statement_gateway.api.dependencies import get_request_id, to_http_exception
from statement_gateway.api.v1.schemas import (
    BankFormatSchema,
    CandidatesResponse,
    CycleStatusSchema,
    LinkRequest,
    LinkResponse,
    MismatchSchema,
    RankedCandidateSchema,
    ReconcileResponse,
    StatusResponse,
)
from statement_gateway.domain.column_mapping import BANK_FORMATS
from statement_gateway.domain.exceptions import DomainException
from statement_gateway.domain.models import ExpandOutcome
from statement_gateway.infrastructure.database.models import CCMismatch
from statement_gateway.infrastructure.database.session import get_db
from statement_gateway.services.mismatch import MismatchTracker
from statement_gateway.services.reconciliation import ExpandCollapseManager

router = APIRouter()


def _mismatch_schema(marker: CCMismatch) -> MismatchSchema:
    return MismatchSchema(
        billing_cycle=marker.billing_cycle,
        kind=marker.kind,
        bill_payment_id=marker.bill_payment_id,
        delta_cents=marker.delta_cents,
        unmatched_cents=marker.unmatched_cents,
        dismissed=marker.dismissed,
    )


def _link_response(outcome: ExpandOutcome) -> LinkResponse:
    return LinkResponse(
        bill_payment_id=outcome.bill_payment_id,
        billing_cycle=outcome.billing_cycle,
        linked_transaction_ids=outcome.created_transaction_ids,
        delta_cents=outcome.delta_cents,
    )


@router.get("/credit-card/bank-formats", response_model=List[BankFormatSchema])
def list_bank_formats():
    """Known statement layouts for the format selector (auto-detect is the default)"""
    return [
        BankFormatSchema(key=fmt.key, label=fmt.label, headers=list(fmt.headers))
        for fmt in BANK_FORMATS.values()
    ]


@router.get("/credit-card/status", response_model=StatusResponse)
def get_status(db: Session = Depends(get_db)):
    """Spending per billing cycle split into linked and pending amounts"""
    summary = MismatchTracker(db).status_summary()
    return StatusResponse(
        cycles=[CycleStatusSchema(**cycle) for cycle in summary["cycles"]],
        total_cents=summary["total_cents"],
        linked_cents=summary["linked_cents"],
        pending_cents=summary["pending_cents"],
        pending_cycles=summary["pending_cycles"],
        active_mismatches=[_mismatch_schema(m) for m in summary["active_mismatches"]],
    )


@router.post("/credit-card/reconciliation/link", response_model=LinkResponse)
def link_pending(body: LinkRequest, request: Request, db: Session = Depends(get_db)):
    """Link a cycle's pending transactions to a standalone bill payment"""
    request_id = get_request_id(request)
    try:
        outcome = ExpandCollapseManager(db, request_id).link_pending(
            body.bill_payment_id, body.billing_cycle, force=body.force
        )
    except DomainException as e:
        raise to_http_exception(e, db, request_id)

    return _link_response(outcome)


@router.get("/credit-card/reconciliation/{billing_cycle}/candidates", response_model=CandidatesResponse)
def list_candidates(
    request: Request,
    billing_cycle: str = Path(..., pattern=r"^\d{4}-\d{2}$"),
    db: Session = Depends(get_db),
):
    """Standalone bill payments dated in the cycle, best match for its pending total first"""
    request_id = get_request_id(request)
    try:
        result = ExpandCollapseManager(db, request_id).pending_candidates(billing_cycle)
    except DomainException as e:
        raise to_http_exception(e, db, request_id)

    return CandidatesResponse(
        billing_cycle=result.billing_cycle,
        pending_total_cents=result.pending_total_cents,
        pending_count=result.pending_count,
        candidates=[
            RankedCandidateSchema(
                id=r.candidate.id,
                date=r.candidate.date,
                amount_cents=r.candidate.amount_cents,
                description=r.candidate.description,
                delta_cents=r.delta_cents,
                exact=r.exact,
            )
            for r in result.candidates
        ],
    )


@router.post("/credit-card/reconciliation/reconcile", response_model=ReconcileResponse)
def reconcile_pending(request: Request, db: Session = Depends(get_db)):
    """Link every pending cycle that has exactly one exact bill payment"""
    request_id = get_request_id(request)
    try:
        outcome = ExpandCollapseManager(db, request_id).reconcile_pending()
    except DomainException as e:
        raise to_http_exception(e, db, request_id)

    return ReconcileResponse(
        linked=[_link_response(o) for o in outcome.linked],
        unresolved_cycles=outcome.unresolved_cycles,
    )


@router.get("/credit-card/mismatches", response_model=List[MismatchSchema])
def list_mismatches(db: Session = Depends(get_db)):
    """Active (not dismissed) mismatch markers, newest cycle first"""
    return [_mismatch_schema(m) for m in MismatchTracker(db).active()]


@router.post("/credit-card/mismatches/{billing_cycle}/dismiss", response_model=MismatchSchema)
def dismiss_mismatch(billing_cycle: str, request: Request, db: Session = Depends(get_db)):
    """Hide a mismatch marker; ledger data is untouched"""
    try:
        marker = MismatchTracker(db).dismiss(billing_cycle)
    except DomainException as e:
        raise to_http_exception(e, db, get_request_id(request))
    return _mismatch_schema(marker)
