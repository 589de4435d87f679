"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, List, Optional

from statement_gateway.utils.date_utils import billing_cycle_of


class LineClassification(str, Enum):
    """Kind of statement line, assigned by the pattern classifier"""

    PURCHASE = "purchase"
    INSTALLMENT = "installment"
    REFUND = "refund"
    PAYMENT_RECEIVED = "paymentReceived"


class LinkStatus(str, Enum):
    """Bill payment state: standalone <-> expanded"""

    STANDALONE = "standalone"
    EXPANDED = "expanded"


class LogicalField(str, Enum):
    DATE = "date"
    DESCRIPTION = "description"
    AMOUNT = "amount"


@dataclass(frozen=True)
class StatementLine:
    """One row of an uploaded credit card statement"""

    date: date
    raw_description: str
    amount_cents: int  # Signed as written in the file
    classification: LineClassification = LineClassification.PURCHASE
    installment_index: Optional[int] = None
    installment_total: Optional[int] = None

    @property
    def is_payment_received(self) -> bool:
        return self.classification == LineClassification.PAYMENT_RECEIVED


@dataclass(frozen=True)
class ColumnMapping:
    """Resolved position of each logical field in the header row"""

    date_index: int
    description_index: int
    amount_index: int
    format_name: str = "generic"

    def as_index_map(self) -> Dict[int, LogicalField]:
        return {
            self.date_index: LogicalField.DATE,
            self.description_index: LogicalField.DESCRIPTION,
            self.amount_index: LogicalField.AMOUNT,
        }


@dataclass(frozen=True)
class ExplicitMapping:
    """User-supplied header names for each logical field"""

    date_column: str
    description_column: str
    amount_column: str


@dataclass(frozen=True)
class BankFormat:
    """Known export layout with a fixed column position per field"""

    key: str
    label: str
    headers: tuple
    date_index: int
    description_index: int
    amount_index: int


@dataclass
class ImportBatch:
    """
    Lines from one upload plus the values derived from them.

    Never persisted: each import step rebuilds it from the lines the caller
    sends back. The anchor is the payment-received date, or the latest line
    date without one; billing_cycle is derived from it once, at construction.
    """

    lines: List[StatementLine]
    net_total_cents: int
    anchor_date: date = field(init=False)
    billing_cycle: str = field(init=False)

    def __post_init__(self):
        payment = self.payment_line
        self.anchor_date = payment.date if payment is not None else max(line.date for line in self.lines)
        self.billing_cycle = billing_cycle_of(self.anchor_date)

    @property
    def payment_line(self) -> Optional[StatementLine]:
        return next((line for line in self.lines if line.is_payment_received), None)

    @property
    def item_lines(self) -> List[StatementLine]:
        return [line for line in self.lines if not line.is_payment_received]


@dataclass(frozen=True)
class BillPaymentCandidate:
    """Standalone bill payment considered by the matching engine"""

    id: int
    date: date
    amount_cents: int
    description: str = ""


@dataclass
class MatchResult:
    """Outcome of matching a batch against standalone bill payments"""

    net_total_cents: int
    billing_cycle: str
    candidate: Optional[BillPaymentCandidate] = None
    delta_cents: int = 0
    unmatched_amount_cents: int = 0

    @property
    def no_match(self) -> bool:
        return self.candidate is None


@dataclass
class ParsePreview:
    lines: List[StatementLine]
    detected_format: str
    errors: List[str] = field(default_factory=list)


@dataclass
class ExpandOutcome:
    bill_payment_id: int
    created_transaction_ids: List[int]
    billing_cycle: str
    delta_cents: int


@dataclass
class CollapseOutcome:
    bill_payment_id: int
    restored_amount_cents: int
    deleted_count: int


@dataclass
class ConfirmOutcome:
    created_transaction_ids: List[int]
    billing_cycle: str
    bill_payment_id: Optional[int] = None
    delta_cents: int = 0
    unmatched_amount_cents: int = 0


@dataclass(frozen=True)
class RankedCandidate:
    """Bill payment offered for a pending cycle, with how far its amount is off"""

    candidate: BillPaymentCandidate
    delta_cents: int

    @property
    def exact(self) -> bool:
        return self.delta_cents == 0


@dataclass
class ReconcileOutcome:
    linked: List[ExpandOutcome]
    unresolved_cycles: List[str]


@dataclass
class PendingCycleCandidates:
    """Unlinked transactions of a cycle and the bill payments that could own them"""

    billing_cycle: str
    pending_total_cents: int
    pending_count: int
    candidates: List[RankedCandidate]
