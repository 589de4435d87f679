"""Data access layer for ledger entities"""

from datetime import date, datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.orm import Session

from statement_gateway.domain.models import LinkStatus, StatementLine, LineClassification
from statement_gateway.infrastructure.database.models import BillPayment, CCMismatch, CreditCardTransaction


class BillPaymentRepository:
    """Repository for bill payments"""

    def __init__(self, db: Session):
        self.db = db

    def create_bill_payment(self, date: date, amount_cents: int, description: str = "") -> BillPayment:
        """Record a standalone bill payment (normally done by manual transaction entry)"""
        db_bill = BillPayment(
            date=date,
            amount_cents=amount_cents,
            description=description,
            link_status=LinkStatus.STANDALONE.value,
        )
        self.db.add(db_bill)
        self.db.flush()  # Get ID without committing
        return db_bill

    def get_by_id(self, bill_payment_id: int) -> Optional[BillPayment]:
        return self.db.get(BillPayment, bill_payment_id)

    def get_for_update(self, bill_payment_id: int) -> Optional[BillPayment]:
        """Fetch with a row lock held until the unit of work ends"""
        return (
            self.db.query(BillPayment)
            .filter(BillPayment.id == bill_payment_id)
            .populate_existing()
            .with_for_update()
            .first()
        )

    def list_standalone_by_date(self, start: date, end: Optional[date] = None) -> List[BillPayment]:
        """Standalone bill payments dated within [start, end], oldest record first"""
        end = end or start
        return (
            self.db.query(BillPayment)
            .filter(BillPayment.link_status == LinkStatus.STANDALONE.value)
            .filter(BillPayment.date >= start, BillPayment.date <= end)
            .order_by(BillPayment.id)
            .all()
        )

    def mark_expanded(self, bill_payment_id: int, original_amount_cents: int) -> bool:
        """
        Flip standalone -> expanded and zero the amount.

        Guarded on the current status so only one concurrent caller wins;
        returns False when the row was not standalone anymore.
        """
        result = self.db.execute(
            update(BillPayment)
            .where(BillPayment.id == bill_payment_id)
            .where(BillPayment.link_status == LinkStatus.STANDALONE.value)
            .values(
                link_status=LinkStatus.EXPANDED.value,
                amount_cents=0,
                original_amount_cents=original_amount_cents,
                expanded_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="evaluate")
        )
        return result.rowcount == 1

    def mark_standalone(self, bill_payment: BillPayment, restored_amount_cents: int) -> None:
        bill_payment.amount_cents = restored_amount_cents
        bill_payment.link_status = LinkStatus.STANDALONE.value
        bill_payment.original_amount_cents = None
        bill_payment.expanded_at = None
        self.db.flush()

    def delete(self, bill_payment: BillPayment) -> None:
        self.db.delete(bill_payment)
        self.db.flush()


class CreditCardTransactionRepository:
    """Repository for itemized credit card transactions"""

    def __init__(self, db: Session):
        self.db = db

    def create_from_line(
        self,
        line: StatementLine,
        ledger_amount_cents: int,
        billing_cycle: str,
        bill_payment_id: Optional[int] = None,
        category_id: Optional[str] = None,
    ) -> CreditCardTransaction:
        db_txn = CreditCardTransaction(
            bill_payment_id=bill_payment_id,
            date=line.date,
            description=line.raw_description,
            amount_cents=ledger_amount_cents,
            is_installment=line.classification == LineClassification.INSTALLMENT,
            installment_index=line.installment_index,
            installment_total=line.installment_total,
            is_refund=line.classification == LineClassification.REFUND,
            billing_cycle=billing_cycle,
            category_id=category_id,
        )
        self.db.add(db_txn)
        self.db.flush()
        return db_txn

    def list_by_bill_payment(self, bill_payment_id: int) -> List[CreditCardTransaction]:
        return (
            self.db.query(CreditCardTransaction)
            .filter(CreditCardTransaction.bill_payment_id == bill_payment_id)
            .order_by(CreditCardTransaction.id)
            .all()
        )

    def list_pending(self, billing_cycle: str) -> List[CreditCardTransaction]:
        """Unlinked transactions of a billing cycle (imported without a matching bill)"""
        return (
            self.db.query(CreditCardTransaction)
            .filter(CreditCardTransaction.bill_payment_id.is_(None))
            .filter(CreditCardTransaction.billing_cycle == billing_cycle)
            .order_by(CreditCardTransaction.id)
            .all()
        )

    def pending_cycles(self) -> List[str]:
        """Billing cycles that still hold unlinked transactions, oldest first"""
        rows = (
            self.db.query(CreditCardTransaction.billing_cycle)
            .filter(CreditCardTransaction.bill_payment_id.is_(None))
            .distinct()
            .order_by(CreditCardTransaction.billing_cycle)
            .all()
        )
        return [cycle for (cycle,) in rows]

    def attach(self, transactions: List[CreditCardTransaction], bill_payment_id: int) -> None:
        for txn in transactions:
            txn.bill_payment_id = bill_payment_id
        self.db.flush()

    def delete_many(self, transactions: List[CreditCardTransaction]) -> None:
        for txn in transactions:
            self.db.delete(txn)
        self.db.flush()

    def cycle_totals(self) -> List[Dict]:
        """Per billing cycle: linked/pending sums and counts"""
        pending = CreditCardTransaction.bill_payment_id.is_(None)
        rows = (
            self.db.query(
                CreditCardTransaction.billing_cycle,
                pending.label("pending"),
                func.count(CreditCardTransaction.id),
                func.coalesce(func.sum(CreditCardTransaction.amount_cents), 0),
            )
            .group_by(CreditCardTransaction.billing_cycle, pending)
            .order_by(CreditCardTransaction.billing_cycle)
            .all()
        )
        return [
            {"billing_cycle": cycle, "pending": bool(pending), "count": count, "total_cents": int(total)}
            for cycle, pending, count, total in rows
        ]


class MismatchRepository:
    """Repository for per-cycle mismatch markers"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_cycle(self, billing_cycle: str) -> Optional[CCMismatch]:
        return self.db.query(CCMismatch).filter(CCMismatch.billing_cycle == billing_cycle).first()

    def upsert(
        self,
        billing_cycle: str,
        kind: str,
        bill_payment_id: Optional[int] = None,
        delta_cents: int = 0,
        unmatched_cents: int = 0,
    ) -> CCMismatch:
        marker = self.get_by_cycle(billing_cycle)
        if marker is None:
            marker = CCMismatch(billing_cycle=billing_cycle)
            self.db.add(marker)
        marker.kind = kind
        marker.bill_payment_id = bill_payment_id
        marker.delta_cents = delta_cents
        marker.unmatched_cents = unmatched_cents
        marker.dismissed = False
        self.db.flush()
        return marker

    def list_active(self) -> List[CCMismatch]:
        return (
            self.db.query(CCMismatch)
            .filter(CCMismatch.dismissed.is_(False))
            .order_by(CCMismatch.billing_cycle.desc())
            .all()
        )

    def delete_for_bill_payment(self, bill_payment_id: int) -> int:
        count = (
            self.db.query(CCMismatch)
            .filter(CCMismatch.bill_payment_id == bill_payment_id)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return count

    def delete_for_cycle(self, billing_cycle: str) -> int:
        count = (
            self.db.query(CCMismatch)
            .filter(CCMismatch.billing_cycle == billing_cycle)
            .delete(synchronize_session="fetch")
        )
        self.db.flush()
        return count
