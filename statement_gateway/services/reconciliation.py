"""Expand/collapse manager - atomic conversion between a bill payment and its itemized transactions"""

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from statement_gateway.domain.exceptions import (
    AlreadyExpanded,
    AmountMismatch,
    BillPaymentNotFound,
    DomainException,
    EmptyStatement,
    ExpandedBillPaymentDeletion,
    NoPendingTransactions,
    NotExpanded,
    PartialImportFailure,
)
from statement_gateway.domain.matching import compute_delta, ledger_sign, rank_candidates, to_ledger_amount
from statement_gateway.domain.models import (
    BillPaymentCandidate,
    CollapseOutcome,
    ExpandOutcome,
    ImportBatch,
    LinkStatus,
    PendingCycleCandidates,
    ReconcileOutcome,
)
from statement_gateway.infrastructure.database.models import BillPayment
from statement_gateway.infrastructure.database.repositories import (
    BillPaymentRepository,
    CreditCardTransactionRepository,
)
from statement_gateway.infrastructure.observability.logging import log_collapse, log_expand
from statement_gateway.infrastructure.observability.metrics import record_ledger_operation
from statement_gateway.services.mismatch import MismatchTracker
from statement_gateway.utils.date_utils import cycle_date_range

logger = logging.getLogger(__name__)


class ExpandCollapseManager:
    """
    Owns the standalone <-> expanded state machine of bill payments.

    Every public method is one unit of work: it commits on success and rolls
    back on any failure, so a bill payment is never left zeroed without
    children, or restored with children still attached.
    """

    def __init__(self, db: Session, request_id: Optional[str] = None):
        self.db = db
        self.request_id = request_id
        self.bills = BillPaymentRepository(db)
        self.transactions = CreditCardTransactionRepository(db)
        self.mismatches = MismatchTracker(db)

    @contextmanager
    def _unit_of_work(self, operation: str) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except DomainException as e:
            self.db.rollback()
            record_ledger_operation(operation, e.code)
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            record_ledger_operation(operation, PartialImportFailure.code)
            logger.error(f"{operation} failed, rolled back: {e}", extra={"request_id": self.request_id})
            raise PartialImportFailure(f"{operation} failed and was rolled back") from e
        record_ledger_operation(operation)

    def _lock_bill_payment(self, bill_payment_id: int) -> BillPayment:
        bill = self.bills.get_for_update(bill_payment_id)
        if bill is None:
            raise BillPaymentNotFound(f"Bill payment {bill_payment_id} not found")
        return bill

    def _expand_locked(self, bill: BillPayment) -> int:
        if bill.link_status == LinkStatus.EXPANDED.value:
            raise AlreadyExpanded(f"Bill payment {bill.id} is already expanded")
        original_amount = bill.amount_cents
        if not self.bills.mark_expanded(bill.id, original_amount):
            raise AlreadyExpanded(f"Bill payment {bill.id} was expanded concurrently")
        return original_amount

    def expand(self, bill_payment_id: int, batch: ImportBatch, category_id: Optional[str] = None) -> ExpandOutcome:
        """
        Replace a standalone bill payment with one transaction per statement item.

        The payment-received line is skipped: the bill payment itself is that
        money. A non-zero delta is recorded as a mismatch, not refused; the
        caller has already accepted it.

        Raises:
            BillPaymentNotFound, AlreadyExpanded, EmptyStatement
            PartialImportFailure: Persistence failed, nothing committed
        """
        items = batch.item_lines
        if not items:
            raise EmptyStatement("Statement has no purchases to expand into")

        sign = ledger_sign(batch.lines)
        with self._unit_of_work("expand"):
            bill = self._lock_bill_payment(bill_payment_id)
            original_amount = self._expand_locked(bill)

            created_ids = []
            for line in items:
                txn = self.transactions.create_from_line(
                    line,
                    ledger_amount_cents=to_ledger_amount(line, sign),
                    billing_cycle=batch.billing_cycle,
                    bill_payment_id=bill_payment_id,
                    category_id=category_id,
                )
                created_ids.append(txn.id)

            delta = compute_delta(original_amount, batch.net_total_cents)
            if delta != 0:
                self.mismatches.register_delta(batch.billing_cycle, bill_payment_id, delta)

        log_expand(bill_payment_id, batch.billing_cycle, len(created_ids), delta, self.request_id)
        return ExpandOutcome(
            bill_payment_id=bill_payment_id,
            created_transaction_ids=created_ids,
            billing_cycle=batch.billing_cycle,
            delta_cents=delta,
        )

    def collapse(self, bill_payment_id: int) -> CollapseOutcome:
        """
        Delete the children of an expanded bill payment and restore its amount.

        The restored amount is the signed sum of the children being deleted,
        so edits made to children after expand carry over to the bill.

        Raises:
            BillPaymentNotFound
            NotExpanded: Bill payment is standalone; nothing is changed
            PartialImportFailure: Deletion failed, nothing committed
        """
        with self._unit_of_work("collapse"):
            bill = self._lock_bill_payment(bill_payment_id)
            if bill.link_status != LinkStatus.EXPANDED.value:
                raise NotExpanded(f"Bill payment {bill_payment_id} is not expanded")

            children = self.transactions.list_by_bill_payment(bill_payment_id)
            restored = sum(child.amount_cents for child in children)
            self.transactions.delete_many(children)
            self.bills.mark_standalone(bill, restored)
            self.mismatches.resolve_for_bill_payment(bill_payment_id)

        log_collapse(bill_payment_id, restored, len(children), self.request_id)
        return CollapseOutcome(
            bill_payment_id=bill_payment_id,
            restored_amount_cents=restored,
            deleted_count=len(children),
        )

    def link_pending(self, bill_payment_id: int, billing_cycle: str, force: bool = False) -> ExpandOutcome:
        """
        Adopt a cycle's unlinked transactions under a standalone bill payment.

        Raises:
            BillPaymentNotFound, AlreadyExpanded
            NoPendingTransactions: Cycle has nothing to link
            AmountMismatch: Totals differ and force is False
        """
        with self._unit_of_work("link"):
            bill = self._lock_bill_payment(bill_payment_id)
            pending = self.transactions.list_pending(billing_cycle)
            if not pending:
                raise NoPendingTransactions(f"No pending credit card transactions for {billing_cycle}")

            delta = compute_delta(bill.amount_cents, sum(txn.amount_cents for txn in pending))
            if delta != 0 and not force:
                raise AmountMismatch(
                    f"Pending total for {billing_cycle} differs from bill payment by {delta} cents",
                    delta_cents=delta,
                )

            self._expand_locked(bill)
            self.transactions.attach(pending, bill_payment_id)
            if delta != 0:
                self.mismatches.register_delta(billing_cycle, bill_payment_id, delta)
            else:
                self.mismatches.resolve_cycle(billing_cycle)

        log_expand(bill_payment_id, billing_cycle, len(pending), delta, self.request_id)
        return ExpandOutcome(
            bill_payment_id=bill_payment_id,
            created_transaction_ids=[txn.id for txn in pending],
            billing_cycle=billing_cycle,
            delta_cents=delta,
        )

    def pending_candidates(self, billing_cycle: str) -> PendingCycleCandidates:
        """
        Rank the standalone bill payments dated in a cycle against its pending total.

        Read-only.

        Raises:
            NoPendingTransactions: Cycle has nothing to link
        """
        pending = self.transactions.list_pending(billing_cycle)
        if not pending:
            raise NoPendingTransactions(f"No pending credit card transactions for {billing_cycle}")

        total = sum(txn.amount_cents for txn in pending)
        start, end = cycle_date_range(billing_cycle)
        candidates = [
            BillPaymentCandidate(id=b.id, date=b.date, amount_cents=b.amount_cents, description=b.description)
            for b in self.bills.list_standalone_by_date(start, end)
        ]
        return PendingCycleCandidates(
            billing_cycle=billing_cycle,
            pending_total_cents=total,
            pending_count=len(pending),
            candidates=rank_candidates(total, candidates),
        )

    def reconcile_pending(self) -> ReconcileOutcome:
        """
        Link every pending cycle that has exactly one bill payment matching it to the cent.

        Cycles with no exact candidate, or with several, are left for the user
        and reported as unresolved. Each link is its own unit of work, so
        cycles linked before a failure stay linked.
        """
        linked: List[ExpandOutcome] = []
        unresolved: List[str] = []
        for billing_cycle in self.transactions.pending_cycles():
            exact = [r for r in self.pending_candidates(billing_cycle).candidates if r.exact]
            if len(exact) != 1:
                unresolved.append(billing_cycle)
                continue
            try:
                linked.append(self.link_pending(exact[0].candidate.id, billing_cycle))
            except AlreadyExpanded:
                logger.warning(
                    "Candidate expanded concurrently, cycle left pending",
                    extra={"billing_cycle": billing_cycle, "request_id": self.request_id},
                )
                unresolved.append(billing_cycle)

        logger.info(
            "Pending cycles reconciled",
            extra={"linked": len(linked), "unresolved": len(unresolved), "request_id": self.request_id},
        )
        return ReconcileOutcome(linked=linked, unresolved_cycles=unresolved)

    def delete_bill_payment(self, bill_payment_id: int) -> None:
        """
        Raises:
            ExpandedBillPaymentDeletion: Collapse first, so the amount is restored
        """
        with self._unit_of_work("delete"):
            bill = self._lock_bill_payment(bill_payment_id)
            if bill.link_status == LinkStatus.EXPANDED.value:
                raise ExpandedBillPaymentDeletion(
                    f"Bill payment {bill_payment_id} is expanded; collapse it before deleting"
                )
            self.bills.delete(bill)
