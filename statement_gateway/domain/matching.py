"""Matching engine - statement net total and best bill payment candidate"""

from datetime import date
from typing import Iterable, List, Optional, Sequence

from statement_gateway.domain.classifier import PatternClassifier
from statement_gateway.domain.exceptions import EmptyStatement
from statement_gateway.domain.models import (
    BillPaymentCandidate,
    ImportBatch,
    LineClassification,
    MatchResult,
    RankedCandidate,
    StatementLine,
)
from statement_gateway.utils.date_utils import days_apart

_CHARGE_CLASSES = (LineClassification.PURCHASE, LineClassification.INSTALLMENT)
_SPEND_CLASSES = _CHARGE_CLASSES + (LineClassification.REFUND,)


def compute_net_total(lines: Iterable[StatementLine]) -> int:
    """
    Net purchase total in cents at the signs given by the statement.

    Refunds reduce the total because they carry the opposite sign to
    purchases. The payment-received line is excluded: it is the money that
    left the checking account, already recorded by the bill payment.
    """
    return sum(line.amount_cents for line in lines if line.classification in _SPEND_CLASSES)


def build_import_batch(
    lines: Sequence[StatementLine],
    classifier: Optional[PatternClassifier] = None,
) -> ImportBatch:
    """Classify lines; the batch derives its anchor and billing cycle from them"""
    if not lines:
        raise EmptyStatement("No transactions found in statement")

    classified = (classifier or PatternClassifier()).classify_lines(lines)
    return ImportBatch(lines=classified, net_total_cents=compute_net_total(classified))


def ledger_sign(lines: Iterable[StatementLine]) -> int:
    """
    Factor turning statement amounts into ledger amounts.

    The orientation comes from the charges (purchases and installments): when
    the file writes them as positive, every line is negated so purchases leave
    the ledger as money out. A statement with only refunds is oriented by
    them instead, refunds being written opposite to charges. Classified lines
    are expected.
    """
    lines = list(lines)
    charges = sum(line.amount_cents for line in lines if line.classification in _CHARGE_CLASSES)
    if charges:
        return -1 if charges > 0 else 1

    refunds = sum(line.amount_cents for line in lines if line.classification == LineClassification.REFUND)
    return -1 if refunds < 0 else 1


def to_ledger_amount(line: StatementLine, sign: int) -> int:
    return line.amount_cents * sign


def compute_delta(candidate_amount_cents: int, net_total_cents: int) -> int:
    """|bill payment| - |statement net total|, in cents"""
    return abs(candidate_amount_cents) - abs(net_total_cents)


def rank_candidates(
    total_cents: int,
    candidates: Sequence[BillPaymentCandidate],
    anchor_date: Optional[date] = None,
) -> List[RankedCandidate]:
    """
    Order bill payments by how well they explain a total.

    Ranking:
    1. Smallest |delta|
    2. Closest date to the anchor (when one is given)
    3. Lowest primary key (earliest created)
    """
    def key(candidate: BillPaymentCandidate):
        distance = days_apart(candidate.date, anchor_date) if anchor_date is not None else 0
        return abs(compute_delta(candidate.amount_cents, total_cents)), distance, candidate.id

    return [
        RankedCandidate(candidate=c, delta_cents=compute_delta(c.amount_cents, total_cents))
        for c in sorted(candidates, key=key)
    ]


def find_best_match(
    batch: ImportBatch,
    candidates: Sequence[BillPaymentCandidate],
    date_window_days: int = 0,
) -> MatchResult:
    """
    Pick the standalone bill payment that best explains the statement.

    Eligibility: same date as the batch anchor, or within date_window_days of
    it when a wider window is configured. Eligible candidates are ranked by
    rank_candidates.

    No eligible candidate is a valid outcome (NoMatch): the whole net total is
    reported as unmatched.
    """
    eligible: List[BillPaymentCandidate] = [
        c for c in candidates if days_apart(c.date, batch.anchor_date) <= max(date_window_days, 0)
    ]

    if not eligible:
        return MatchResult(
            net_total_cents=batch.net_total_cents,
            billing_cycle=batch.billing_cycle,
            unmatched_amount_cents=batch.net_total_cents,
        )

    best = rank_candidates(batch.net_total_cents, eligible, batch.anchor_date)[0]
    return MatchResult(
        net_total_cents=batch.net_total_cents,
        billing_cycle=batch.billing_cycle,
        candidate=best.candidate,
        delta_cents=best.delta_cents,
    )
