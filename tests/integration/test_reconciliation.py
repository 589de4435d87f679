"""Integration tests for expand, collapse and linking against the database"""

import pytest
from dataclasses import replace
from datetime import date
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError
from statement_gateway.domain.exceptions import (
    AlreadyExpanded,
    AmountMismatch,
    BillPaymentNotFound,
    EmptyStatement,
    ExpandedBillPaymentDeletion,
    NoPendingTransactions,
    NotExpanded,
    PartialImportFailure,
)
from statement_gateway.domain.matching import build_import_batch
from statement_gateway.domain.models import StatementLine
from statement_gateway.infrastructure.database.models import BillPayment, CreditCardTransaction
from statement_gateway.infrastructure.database.repositories import (
    BillPaymentRepository,
    CreditCardTransactionRepository,
)
from statement_gateway.services import imports
from statement_gateway.services.mismatch import MismatchTracker
from statement_gateway.services.reconciliation import ExpandCollapseManager


def _children(db, bill_payment_id):
    return CreditCardTransactionRepository(db).list_by_bill_payment(bill_payment_id)


def test_expand_replaces_bill_with_items(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)

    outcome = ExpandCollapseManager(db).expand(bill.id, build_import_batch(nubank_lines))

    children = _children(db, bill.id)
    assert outcome.delta_cents == 0
    assert outcome.billing_cycle == "2025-11"
    assert [c.amount_cents for c in children] == [-42073, -20000, 25382]
    assert sum(c.amount_cents for c in children) == -36691
    assert bill.amount_cents == 0
    assert bill.original_amount_cents == -36691
    assert bill.link_status == "expanded"
    assert bill.expanded_at is not None


def test_expand_carries_installment_and_refund_flags(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    ExpandCollapseManager(db).expand(bill.id, build_import_batch(nubank_lines), category_id="cat-cartao")

    purchase, installment, refund = _children(db, bill.id)
    assert not purchase.is_installment and not purchase.is_refund
    assert (installment.is_installment, installment.installment_index, installment.installment_total) == (True, 1, 3)
    assert refund.is_refund
    assert {c.billing_cycle for c in (purchase, installment, refund)} == {"2025-11"}
    assert {c.category_id for c in (purchase, installment, refund)} == {"cat-cartao"}


def test_expand_negative_statement_single_child(db, make_bill_payment, negative_lines):
    """Purchase -500 plus payment -500 against a -500 bill: one child, bill zeroed"""
    bill = make_bill_payment(-50000)

    outcome = ExpandCollapseManager(db).expand(bill.id, build_import_batch(negative_lines))

    children = _children(db, bill.id)
    assert outcome.delta_cents == 0
    assert len(children) == 1
    assert children[0].amount_cents == -50000
    assert bill.amount_cents == 0


def test_expand_with_delta_keeps_children_consistent(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-40000)

    outcome = ExpandCollapseManager(db).expand(bill.id, build_import_batch(nubank_lines))

    children = _children(db, bill.id)
    assert outcome.delta_cents == 3309
    assert sum(c.amount_cents for c in children) == -40000 + outcome.delta_cents

    marker = MismatchTracker(db).get("2025-11")
    assert marker.kind == "delta"
    assert marker.delta_cents == 3309
    assert marker.bill_payment_id == bill.id


def test_expand_twice_is_rejected(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))

    with pytest.raises(AlreadyExpanded):
        manager.expand(bill.id, build_import_batch(nubank_lines))

    assert len(_children(db, bill.id)) == 3


def test_conditional_flip_only_succeeds_once(db, make_bill_payment):
    bill = make_bill_payment(-36691)
    repo = BillPaymentRepository(db)

    assert repo.mark_expanded(bill.id, -36691) is True
    assert repo.mark_expanded(bill.id, -36691) is False


def test_expand_unknown_bill_payment(db, nubank_lines):
    with pytest.raises(BillPaymentNotFound):
        ExpandCollapseManager(db).expand(999, build_import_batch(nubank_lines))


def test_expand_payment_line_only_changes_nothing(db, make_bill_payment, negative_lines):
    bill = make_bill_payment(-50000)
    batch = build_import_batch(negative_lines[1:])

    with pytest.raises(EmptyStatement):
        ExpandCollapseManager(db).expand(bill.id, batch)

    assert bill.link_status == "standalone"
    assert bill.amount_cents == -50000


def test_expand_persistence_failure_rolls_back(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)

    with patch.object(CreditCardTransactionRepository, "create_from_line", side_effect=SQLAlchemyError("disk full")):
        with pytest.raises(PartialImportFailure):
            ExpandCollapseManager(db).expand(bill.id, build_import_batch(nubank_lines))

    refreshed = db.get(BillPayment, bill.id)
    assert refreshed.link_status == "standalone"
    assert refreshed.amount_cents == -36691
    assert refreshed.original_amount_cents is None
    assert db.query(CreditCardTransaction).count() == 0


def test_expand_then_collapse_restores_bill(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))

    outcome = manager.collapse(bill.id)

    assert outcome.restored_amount_cents == -36691
    assert outcome.deleted_count == 3
    assert bill.amount_cents == -36691
    assert bill.link_status == "standalone"
    assert bill.original_amount_cents is None
    assert _children(db, bill.id) == []


def test_collapse_uses_edited_children(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))

    first = _children(db, bill.id)[0]
    first.amount_cents = -42000
    db.commit()

    assert manager.collapse(bill.id).restored_amount_cents == -36618


def test_collapse_resolves_delta_marker(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-40000)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))

    manager.collapse(bill.id)

    assert MismatchTracker(db).get("2025-11") is None


def test_collapse_standalone_is_rejected_without_mutation(db, make_bill_payment):
    bill = make_bill_payment(-36691)

    with pytest.raises(NotExpanded):
        ExpandCollapseManager(db).collapse(bill.id)

    assert bill.amount_cents == -36691
    assert bill.link_status == "standalone"


def test_second_collapse_is_rejected(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))
    manager.collapse(bill.id)

    with pytest.raises(NotExpanded):
        manager.collapse(bill.id)


def test_delete_expanded_bill_payment_is_refused(db, make_bill_payment, nubank_lines):
    bill = make_bill_payment(-36691)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(nubank_lines))

    with pytest.raises(ExpandedBillPaymentDeletion):
        manager.delete_bill_payment(bill.id)
    assert len(_children(db, bill.id)) == 3

    manager.collapse(bill.id)
    bill_id = bill.id
    manager.delete_bill_payment(bill_id)
    assert BillPaymentRepository(db).get_by_id(bill_id) is None


def test_link_pending_after_unmatched_import(db, make_bill_payment, nubank_lines):
    imported = imports.confirm(db, nubank_lines)
    bill = make_bill_payment(-36691)

    outcome = ExpandCollapseManager(db).link_pending(bill.id, "2025-11")

    assert sorted(outcome.created_transaction_ids) == sorted(imported.created_transaction_ids)
    assert outcome.delta_cents == 0
    assert bill.link_status == "expanded"
    assert bill.amount_cents == 0
    assert CreditCardTransactionRepository(db).list_pending("2025-11") == []
    assert MismatchTracker(db).get("2025-11") is None


def test_link_pending_amount_mismatch_needs_force(db, make_bill_payment, nubank_lines):
    imports.confirm(db, nubank_lines)
    bill = make_bill_payment(-40000)
    manager = ExpandCollapseManager(db)

    with pytest.raises(AmountMismatch) as exc_info:
        manager.link_pending(bill.id, "2025-11")
    assert exc_info.value.delta_cents == 3309
    assert bill.link_status == "standalone"

    outcome = manager.link_pending(bill.id, "2025-11", force=True)
    assert outcome.delta_cents == 3309
    assert MismatchTracker(db).get("2025-11").kind == "delta"


def test_link_pending_empty_cycle(db, make_bill_payment):
    bill = make_bill_payment(-36691)

    with pytest.raises(NoPendingTransactions):
        ExpandCollapseManager(db).link_pending(bill.id, "2025-11")


def test_link_pending_into_expanded_bill(db, make_bill_payment, nubank_lines, negative_lines):
    bill = make_bill_payment(-50000)
    manager = ExpandCollapseManager(db)
    manager.expand(bill.id, build_import_batch(negative_lines))
    imports.confirm(db, nubank_lines)

    with pytest.raises(AlreadyExpanded):
        manager.link_pending(bill.id, "2025-11", force=True)


def _import_pending(db, amount_cents, day=date(2025, 12, 1)):
    return imports.confirm(db, [StatementLine(day, "Livraria", amount_cents)])


def test_pending_candidates_ranked_by_delta(db, make_bill_payment):
    _import_pending(db, -100000)
    off = make_bill_payment(-101500, day=date(2025, 12, 5))
    exact = make_bill_payment(-100000, day=date(2025, 12, 10))
    make_bill_payment(-100000, day=date(2025, 11, 28))  # other cycle

    result = ExpandCollapseManager(db).pending_candidates("2025-12")

    assert result.pending_total_cents == -100000
    assert result.pending_count == 1
    assert [r.candidate.id for r in result.candidates] == [exact.id, off.id]
    assert [r.delta_cents for r in result.candidates] == [0, 1500]


def test_pending_candidates_skip_expanded_bills(db, make_bill_payment, negative_lines):
    _import_pending(db, -50000)
    bill = make_bill_payment(-50000, day=date(2025, 12, 5))
    ExpandCollapseManager(db).expand(
        bill.id, build_import_batch([replace(line, date=date(2025, 12, 5)) for line in negative_lines])
    )

    assert ExpandCollapseManager(db).pending_candidates("2025-12").candidates == []


def test_pending_candidates_empty_cycle(db):
    with pytest.raises(NoPendingTransactions):
        ExpandCollapseManager(db).pending_candidates("2025-12")


def test_reconcile_links_single_exact_candidate(db, make_bill_payment):
    imported = _import_pending(db, -50000)
    bill = make_bill_payment(-50000, day=date(2025, 12, 5))
    make_bill_payment(-51000, day=date(2025, 12, 6))

    outcome = ExpandCollapseManager(db).reconcile_pending()

    assert outcome.unresolved_cycles == []
    (linked,) = outcome.linked
    assert (linked.bill_payment_id, linked.billing_cycle, linked.delta_cents) == (bill.id, "2025-12", 0)
    assert linked.created_transaction_ids == imported.created_transaction_ids
    assert bill.link_status == "expanded"
    assert CreditCardTransactionRepository(db).list_pending("2025-12") == []
    assert MismatchTracker(db).get("2025-12") is None


def test_reconcile_leaves_inexact_cycle_pending(db, make_bill_payment):
    _import_pending(db, -100000)
    bill = make_bill_payment(-101500, day=date(2025, 12, 5))

    outcome = ExpandCollapseManager(db).reconcile_pending()

    assert outcome.linked == []
    assert outcome.unresolved_cycles == ["2025-12"]
    assert bill.link_status == "standalone"
    assert len(CreditCardTransactionRepository(db).list_pending("2025-12")) == 1


def test_reconcile_leaves_ambiguous_cycle_pending(db, make_bill_payment):
    _import_pending(db, -50000)
    first = make_bill_payment(-50000, day=date(2025, 12, 5))
    second = make_bill_payment(-50000, day=date(2025, 12, 20))

    outcome = ExpandCollapseManager(db).reconcile_pending()

    assert outcome.linked == []
    assert outcome.unresolved_cycles == ["2025-12"]
    assert {first.link_status, second.link_status} == {"standalone"}


def test_reconcile_handles_each_pending_cycle(db, make_bill_payment, nubank_lines):
    imports.confirm(db, nubank_lines)
    _import_pending(db, -50000)
    november = make_bill_payment(-36691)
    december = make_bill_payment(-50000, day=date(2025, 12, 5))

    outcome = ExpandCollapseManager(db).reconcile_pending()

    assert [o.bill_payment_id for o in outcome.linked] == [november.id, december.id]
    assert outcome.unresolved_cycles == []
    assert CreditCardTransactionRepository(db).pending_cycles() == []


def test_reconcile_with_nothing_pending(db):
    outcome = ExpandCollapseManager(db).reconcile_pending()

    assert outcome.linked == []
    assert outcome.unresolved_cycles == []
