"""SQLAlchemy ORM models for the reconciliation ledger"""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class BillPayment(Base):
    """Lump-sum payment toward a credit card bill, recorded by ordinary transaction entry"""

    __tablename__ = "bill_payment"

    id = Column(Integer, primary_key=True, autoincrement=True)
    date = Column(Date, nullable=False, index=True)
    description = Column(Text, nullable=False, default="")
    amount_cents = Column(BigInteger, nullable=False)
    # Pre-expand amount, display only; collapse restores from the children
    original_amount_cents = Column(BigInteger, nullable=True)
    link_status = Column(String(16), nullable=False, default="standalone", index=True)
    expanded_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    # No cascade: children are removed only through collapse, which also restores the amount
    transactions = relationship(
        "CreditCardTransaction",
        back_populates="bill_payment",
        order_by="CreditCardTransaction.id",
    )


class CreditCardTransaction(Base):
    """Itemized purchase, installment or refund taken from a statement line"""

    __tablename__ = "credit_card_transaction"

    id = Column(Integer, primary_key=True, autoincrement=True)
    bill_payment_id = Column(Integer, ForeignKey("bill_payment.id"), nullable=True, index=True)
    date = Column(Date, nullable=False)
    description = Column(Text, nullable=False)
    amount_cents = Column(BigInteger, nullable=False)
    is_installment = Column(Boolean, nullable=False, default=False)
    installment_index = Column(Integer, nullable=True)
    installment_total = Column(Integer, nullable=True)
    is_refund = Column(Boolean, nullable=False, default=False)
    billing_cycle = Column(String(7), nullable=False, index=True)
    category_id = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    bill_payment = relationship("BillPayment", back_populates="transactions")


class CCMismatch(Base):
    """Dismissible marker for an unresolved statement/bill disagreement, one per billing cycle"""

    __tablename__ = "cc_mismatch"

    id = Column(Integer, primary_key=True, autoincrement=True)
    billing_cycle = Column(String(7), nullable=False, unique=True)
    kind = Column(String(16), nullable=False)  # delta | unmatched
    bill_payment_id = Column(Integer, nullable=True, index=True)
    delta_cents = Column(BigInteger, nullable=False, default=0)
    unmatched_cents = Column(BigInteger, nullable=False, default=0)
    dismissed = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
