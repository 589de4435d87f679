"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    code = "domain_error"


# Import-time errors: user-correctable, surfaced verbatim

class UnrecognizedFormat(DomainException):
    """Header row could not be mapped to date, description and amount"""

    code = "unrecognized_format"


class MalformedRow(DomainException):
    """A data row (or the upload itself) could not be decoded or parsed"""

    code = "malformed_row"

    def __init__(self, message: str, row_number: int | None = None):
        super().__init__(message)
        self.row_number = row_number


class EmptyStatement(DomainException):
    """Statement has a header but no data rows"""

    code = "empty_statement"


# Operation-time errors

class BillPaymentNotFound(DomainException):
    """Referenced bill payment does not exist"""

    code = "bill_payment_not_found"


class AlreadyExpanded(DomainException):
    """Bill payment is already expanded into credit card transactions"""

    code = "already_expanded"


class NotExpanded(DomainException):
    """Collapse requested on a standalone bill payment"""

    code = "not_expanded"


class ExpandedBillPaymentDeletion(DomainException):
    """Bill payment must be collapsed before it can be deleted"""

    code = "bill_payment_expanded"


class AmountMismatch(DomainException):
    """Pending total disagrees with the bill payment and linking was not forced"""

    code = "amount_mismatch"

    def __init__(self, message: str, delta_cents: int):
        super().__init__(message)
        self.delta_cents = delta_cents


class NoPendingTransactions(DomainException):
    """Billing cycle has no unlinked credit card transactions"""

    code = "no_pending_transactions"


class MismatchNotFound(DomainException):
    """No mismatch marker exists for the billing cycle"""

    code = "mismatch_not_found"


class PartialImportFailure(DomainException):
    """Persisting the ledger change failed; nothing was committed"""

    code = "partial_import_failure"
