"""/v1/bill-payments/{id} - inspect, collapse and delete bill payments"""

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from statement_gateway.api.dependencies import get_request_id, to_http_exception
from statement_gateway.api.v1.schemas import BillPaymentResponse, CollapseResponse, CreditCardTransactionSchema
from statement_gateway.domain.exceptions import DomainException
from statement_gateway.infrastructure.database.repositories import BillPaymentRepository
from statement_gateway.infrastructure.database.session import get_db
from statement_gateway.services.reconciliation import ExpandCollapseManager

router = APIRouter()


@router.get("/bill-payments/{bill_payment_id}", response_model=BillPaymentResponse)
def get_bill_payment(bill_payment_id: int, db: Session = Depends(get_db)):
    """
    Retrieve a bill payment with the credit card transactions it owns.

    Returns:
        Bill payment; an expanded one shows amount 0 and its original amount
    """
    bill = BillPaymentRepository(db).get_by_id(bill_payment_id)
    if not bill:
        raise HTTPException(status_code=404, detail="Bill payment not found")

    return BillPaymentResponse(
        id=bill.id,
        date=bill.date,
        description=bill.description,
        amount_cents=bill.amount_cents,
        original_amount_cents=bill.original_amount_cents,
        link_status=bill.link_status,
        expanded_at=bill.expanded_at,
        transactions=[
            CreditCardTransactionSchema(
                id=txn.id,
                date=txn.date,
                description=txn.description,
                amount_cents=txn.amount_cents,
                is_installment=txn.is_installment,
                installment_index=txn.installment_index,
                installment_total=txn.installment_total,
                is_refund=txn.is_refund,
                billing_cycle=txn.billing_cycle,
                category_id=txn.category_id,
            )
            for txn in bill.transactions
        ],
    )


@router.post("/bill-payments/{bill_payment_id}/collapse", response_model=CollapseResponse)
def collapse_bill_payment(bill_payment_id: int, request: Request, db: Session = Depends(get_db)):
    """Delete the itemized transactions and restore the bill payment amount"""
    request_id = get_request_id(request)
    try:
        outcome = ExpandCollapseManager(db, request_id).collapse(bill_payment_id)
    except DomainException as e:
        raise to_http_exception(e, db, request_id)

    return CollapseResponse(
        bill_payment_id=outcome.bill_payment_id,
        restored_amount_cents=outcome.restored_amount_cents,
        deleted_count=outcome.deleted_count,
    )


@router.delete("/bill-payments/{bill_payment_id}", status_code=204)
def delete_bill_payment(bill_payment_id: int, request: Request, db: Session = Depends(get_db)):
    """Delete a standalone bill payment; expanded ones must be collapsed first"""
    request_id = get_request_id(request)
    try:
        ExpandCollapseManager(db, request_id).delete_bill_payment(bill_payment_id)
    except DomainException as e:
        raise to_http_exception(e, db, request_id)
    return Response(status_code=204)
