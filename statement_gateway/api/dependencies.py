"""Dependency injection and error translation for FastAPI endpoints"""

import logging
from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from statement_gateway.domain.exceptions import (
    AlreadyExpanded,
    AmountMismatch,
    BillPaymentNotFound,
    DomainException,
    EmptyStatement,
    ExpandedBillPaymentDeletion,
    MalformedRow,
    MismatchNotFound,
    NoPendingTransactions,
    NotExpanded,
    PartialImportFailure,
    UnrecognizedFormat,
)

STATUS_BY_EXCEPTION = {
    UnrecognizedFormat: 422,
    MalformedRow: 422,
    EmptyStatement: 422,
    BillPaymentNotFound: 404,
    NoPendingTransactions: 404,
    MismatchNotFound: 404,
    AlreadyExpanded: 409,
    NotExpanded: 409,
    ExpandedBillPaymentDeletion: 409,
    AmountMismatch: 409,
    PartialImportFailure: 500,
}


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def to_http_exception(error: DomainException, db: Session, request_id: str) -> HTTPException:
    """Roll back and map a domain failure to an HTTP error with a stable code"""
    db.rollback()
    status = STATUS_BY_EXCEPTION.get(type(error), 400)
    detail = {"code": error.code, "message": str(error)}
    if isinstance(error, AmountMismatch):
        detail["delta_cents"] = error.delta_cents
    if isinstance(error, MalformedRow) and error.row_number is not None:
        detail["row"] = error.row_number

    log = logging.error if status >= 500 else logging.warning
    log(f"{error.code}: {error}", extra={"request_id": request_id})
    return HTTPException(status_code=status, detail=detail)
