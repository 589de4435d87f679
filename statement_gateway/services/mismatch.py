"""Mismatch tracker - unresolved statement/bill disagreements per billing cycle"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from statement_gateway.domain.exceptions import MismatchNotFound
from statement_gateway.infrastructure.database.models import CCMismatch
from statement_gateway.infrastructure.database.repositories import (
    CreditCardTransactionRepository,
    MismatchRepository,
)
from statement_gateway.infrastructure.observability.metrics import record_mismatch

logger = logging.getLogger(__name__)

KIND_DELTA = "delta"
KIND_UNMATCHED = "unmatched"


class MismatchTracker:
    """
    Registers and exposes mismatch markers.

    Writes join the caller's unit of work (flush only); dismiss commits on its
    own because it is a standalone UI action. Dismissal never touches ledger
    rows, and any new mismatching import for the cycle clears it again.
    """

    def __init__(self, db: Session):
        self.db = db
        self.markers = MismatchRepository(db)

    def register_delta(self, billing_cycle: str, bill_payment_id: int, delta_cents: int) -> CCMismatch:
        marker = self.markers.upsert(
            billing_cycle,
            KIND_DELTA,
            bill_payment_id=bill_payment_id,
            delta_cents=delta_cents,
        )
        record_mismatch(KIND_DELTA)
        logger.warning(
            "Statement total differs from bill payment",
            extra={"billing_cycle": billing_cycle, "bill_payment_id": bill_payment_id, "delta_cents": delta_cents},
        )
        return marker

    def register_unmatched(self, billing_cycle: str, unmatched_cents: int) -> CCMismatch:
        marker = self.markers.upsert(billing_cycle, KIND_UNMATCHED, unmatched_cents=unmatched_cents)
        record_mismatch(KIND_UNMATCHED)
        logger.warning(
            "Statement imported without matching bill payment",
            extra={"billing_cycle": billing_cycle, "unmatched_cents": unmatched_cents},
        )
        return marker

    def resolve_for_bill_payment(self, bill_payment_id: int) -> int:
        return self.markers.delete_for_bill_payment(bill_payment_id)

    def resolve_cycle(self, billing_cycle: str) -> int:
        return self.markers.delete_for_cycle(billing_cycle)

    def get(self, billing_cycle: str) -> Optional[CCMismatch]:
        return self.markers.get_by_cycle(billing_cycle)

    def active(self) -> List[CCMismatch]:
        return self.markers.list_active()

    def dismiss(self, billing_cycle: str) -> CCMismatch:
        marker = self.markers.get_by_cycle(billing_cycle)
        if marker is None:
            raise MismatchNotFound(f"No mismatch recorded for billing cycle {billing_cycle}")
        marker.dismissed = True
        self.db.commit()
        return marker

    def status_summary(self) -> Dict[str, Any]:
        """
        Credit card status per billing cycle.

        Amounts are ledger amounts (purchases negative). "linked" covers
        transactions owned by an expanded bill payment, "pending" those
        imported without one.
        """
        cycles: Dict[str, Dict[str, Any]] = {}
        for row in CreditCardTransactionRepository(self.db).cycle_totals():
            entry = cycles.setdefault(
                row["billing_cycle"],
                {
                    "billing_cycle": row["billing_cycle"],
                    "total_cents": 0,
                    "linked_cents": 0,
                    "pending_cents": 0,
                    "linked_count": 0,
                    "pending_count": 0,
                },
            )
            entry["total_cents"] += row["total_cents"]
            if row["pending"]:
                entry["pending_cents"] += row["total_cents"]
                entry["pending_count"] += row["count"]
            else:
                entry["linked_cents"] += row["total_cents"]
                entry["linked_count"] += row["count"]

        ordered = sorted(cycles.values(), key=lambda c: c["billing_cycle"], reverse=True)
        return {
            "cycles": ordered,
            "total_cents": sum(c["total_cents"] for c in ordered),
            "linked_cents": sum(c["linked_cents"] for c in ordered),
            "pending_cents": sum(c["pending_cents"] for c in ordered),
            "pending_cycles": [c["billing_cycle"] for c in ordered if c["pending_count"] > 0],
            "active_mismatches": self.active(),
        }
