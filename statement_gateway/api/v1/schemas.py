"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional

from statement_gateway.domain.models import LineClassification, StatementLine


class StatementLineSchema(BaseModel):
    """Single statement line, as previewed and as sent back on match/confirm"""

    date: date
    description: str
    amount_cents: int = Field(..., description="Signed amount as written in the statement")
    classification: Optional[LineClassification] = None
    installment_index: Optional[int] = None
    installment_total: Optional[int] = None

    @classmethod
    def from_line(cls, line: StatementLine) -> "StatementLineSchema":
        return cls(
            date=line.date,
            description=line.raw_description,
            amount_cents=line.amount_cents,
            classification=line.classification,
            installment_index=line.installment_index,
            installment_total=line.installment_total,
        )

    def to_line(self) -> StatementLine:
        # Classification is recomputed server-side from the description
        return StatementLine(date=self.date, raw_description=self.description, amount_cents=self.amount_cents)


class ParsePreviewResponse(BaseModel):
    """Response for POST /v1/credit-card/imports/preview"""

    lines: List[StatementLineSchema]
    detected_format: str
    errors: List[str] = []


class LinesRequest(BaseModel):
    """Request body for POST /v1/credit-card/imports/match"""

    lines: List[StatementLineSchema] = Field(..., min_length=1)


class BillPaymentCandidateSchema(BaseModel):
    id: int
    date: date
    amount_cents: int
    description: str


class MatchPreviewResponse(BaseModel):
    """Response for POST /v1/credit-card/imports/match"""

    candidate: Optional[BillPaymentCandidateSchema] = None
    no_match: bool
    delta_cents: int
    net_total_cents: int
    unmatched_amount_cents: int
    billing_cycle: str


class ConfirmRequest(BaseModel):
    """Request body for POST /v1/credit-card/imports/confirm"""

    lines: List[StatementLineSchema] = Field(..., min_length=1)
    bill_payment_id: Optional[int] = Field(None, description="Expand this bill payment; omit for an unmatched import")
    category_id: Optional[str] = None


class ConfirmResponse(BaseModel):
    created_transaction_ids: List[int]
    billing_cycle: str
    bill_payment_id: Optional[int] = None
    delta_cents: int = 0
    unmatched_amount_cents: int = 0


class CollapseResponse(BaseModel):
    """Response for POST /v1/bill-payments/{id}/collapse"""

    bill_payment_id: int
    restored_amount_cents: int
    deleted_count: int


class CreditCardTransactionSchema(BaseModel):
    id: int
    date: date
    description: str
    amount_cents: int
    is_installment: bool
    installment_index: Optional[int] = None
    installment_total: Optional[int] = None
    is_refund: bool
    billing_cycle: str
    category_id: Optional[str] = None


class BillPaymentResponse(BaseModel):
    """Response for GET /v1/bill-payments/{id}"""

    id: int
    date: date
    description: str
    amount_cents: int
    original_amount_cents: Optional[int] = None
    link_status: str
    expanded_at: Optional[datetime] = None
    transactions: List[CreditCardTransactionSchema]


class LinkRequest(BaseModel):
    """Request body for POST /v1/credit-card/reconciliation/link"""

    billing_cycle: str = Field(..., pattern=r"^\d{4}-\d{2}$")
    bill_payment_id: int
    force: bool = False


class LinkResponse(BaseModel):
    bill_payment_id: int
    billing_cycle: str
    linked_transaction_ids: List[int]
    delta_cents: int


class RankedCandidateSchema(BillPaymentCandidateSchema):
    delta_cents: int
    exact: bool


class CandidatesResponse(BaseModel):
    """Response for GET /v1/credit-card/reconciliation/{billing_cycle}/candidates"""

    billing_cycle: str
    pending_total_cents: int
    pending_count: int
    candidates: List[RankedCandidateSchema]


class ReconcileResponse(BaseModel):
    linked: List[LinkResponse]
    unresolved_cycles: List[str]


class MismatchSchema(BaseModel):
    billing_cycle: str
    kind: str
    bill_payment_id: Optional[int] = None
    delta_cents: int
    unmatched_cents: int
    dismissed: bool


class CycleStatusSchema(BaseModel):
    billing_cycle: str
    total_cents: int
    linked_cents: int
    pending_cents: int
    linked_count: int
    pending_count: int


class StatusResponse(BaseModel):
    """Response for GET /v1/credit-card/status"""

    cycles: List[CycleStatusSchema]
    total_cents: int
    linked_cents: int
    pending_cents: int
    pending_cycles: List[str]
    active_mismatches: List[MismatchSchema]


class BankFormatSchema(BaseModel):
    key: str
    label: str
    headers: List[str]
