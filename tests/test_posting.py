"""Tests for repayment posting, reversals and charges through the engine."""

import pytest
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime
from decimal import Decimal
from pydantic import ValidationError

from conftest import assert_buckets_non_negative
from lendcore.core.exceptions import (
    ConcurrentModificationError, InvalidAmountError, InvalidStatusTransitionError, LoanNotFoundError,
    RepaymentRejectedError,
)
from lendcore.core.loan import LoanStatus
from lendcore.repayment.posting import RepaymentPosted, RepaymentReversed
from lendcore.repayment.transactions import ChargeKind, LoanStatusChange, TransactionKind
from lendcore.risk.classification import IFRS9Stage, RegulatoryBucket

LOAN_ID = "loan_pit"
FIRST_DUE = date(2024, 2, 1)
INSTALLMENT = Decimal("470.73")


class TestPostRepayment:
    """Test live repayment posting."""

    def test_full_installment(self, engine, disbursed_loan):
        result = engine.post_repayment(LOAN_ID, INSTALLMENT, FIRST_DUE)

        allocation = result.transaction.allocation
        assert allocation.interest == Decimal("100.00")
        assert allocation.principal == Decimal("370.73")
        assert allocation.unallocated_excess == Decimal("0")

        loan = result.loan
        assert loan.outstanding_principal == Decimal("9629.27")
        assert loan.outstanding_interest == Decimal("0")
        assert loan.next_due_date == date(2024, 3, 1)
        assert loan.status == LoanStatus.ACTIVE
        assert loan.version == 1
        assert engine.get_loan(LOAN_ID) == loan

    def test_partial_payment_leaves_loan_overdue(self, engine, disbursed_loan):
        result = engine.post_repayment(LOAN_ID, "50", date(2024, 2, 10))

        assert result.transaction.allocation.interest == Decimal("50")
        assert result.loan.outstanding_interest == Decimal("50.00")
        assert result.loan.next_due_date == FIRST_DUE
        assert result.loan.status == LoanStatus.OVERDUE

    def test_transaction_record(self, engine, disbursed_loan):
        result = engine.post_repayment(LOAN_ID, "100", FIRST_DUE, method="Mobile_Money",
                                       reference="MM-0001")
        transaction = result.transaction
        assert transaction.kind == TransactionKind.REPAYMENT
        assert transaction.method == "mobile_money"
        assert transaction.reference == "MM-0001"
        assert transaction.organisation_id == "org_001"
        assert transaction.sequence > 0
        assert engine.book.get_transactions(LOAN_ID) == [transaction]
        with pytest.raises(Exception):
            transaction.amount = Decimal("1")

    def test_overpayment_closes_loan_and_warns(self, engine, disbursed_loan):
        result = engine.post_repayment(LOAN_ID, "12000", FIRST_DUE)

        assert result.loan.status == LoanStatus.CLOSED
        assert result.loan.next_due_date is None
        assert result.loan.get_total_outstanding() == Decimal("0")
        assert result.transaction.allocation.unallocated_excess == Decimal("1900.00")
        assert len(result.warnings) == 1

    def test_closed_loan_rejects_repayment(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "10100", FIRST_DUE)
        with pytest.raises(RepaymentRejectedError) as exc_info:
            engine.post_repayment(LOAN_ID, "10", date(2024, 2, 2))
        assert any("CLOSED" in error for error in exc_info.value.errors)

    def test_validation_collects_every_error(self, engine, disbursed_loan):
        with pytest.raises(RepaymentRejectedError) as exc_info:
            engine.post_repayment(LOAN_ID, "0", date(2023, 12, 1), method="cheque",
                                  organisation_id="org_999")
        errors = exc_info.value.errors
        assert len(errors) == 4
        assert any("disbursement" in e for e in errors)
        assert any("organisation" in e for e in errors)
        assert any("greater than zero" in e for e in errors)
        assert any("cheque" in e for e in errors)

    def test_future_payment_date(self, engine, disbursed_loan):
        with pytest.raises(RepaymentRejectedError):
            engine.post_repayment(LOAN_ID, "100", date(2024, 3, 1), as_of=date(2024, 2, 1))

    def test_payment_before_last_activity(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "100", date(2024, 3, 1))
        with pytest.raises(RepaymentRejectedError) as exc_info:
            engine.post_repayment(LOAN_ID, "100", date(2024, 2, 15))
        assert "last posted activity" in str(exc_info.value)

    def test_rejection_leaves_loan_unchanged(self, engine, disbursed_loan):
        before = engine.get_loan(LOAN_ID)
        with pytest.raises(RepaymentRejectedError):
            engine.post_repayment(LOAN_ID, "-5", FIRST_DUE)
        assert engine.get_loan(LOAN_ID) == before
        assert engine.book.get_transactions(LOAN_ID) == []

    def test_unknown_loan(self, engine):
        with pytest.raises(LoanNotFoundError):
            engine.post_repayment("missing", "100", FIRST_DUE)

    def test_stale_commit_is_refused(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "100", FIRST_DUE)
        stale = disbursed_loan.evolve(outstanding_principal=Decimal("1"))
        with pytest.raises(ConcurrentModificationError):
            engine.book.commit(stale, expected_version=0)
        assert engine.get_loan(LOAN_ID).outstanding_principal == Decimal("10000")

    def test_concurrent_postings_are_serialized(self, engine, disbursed_loan):
        def pay(_):
            return engine.post_repayment(LOAN_ID, "10", FIRST_DUE)

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(pay, range(20)))

        loan = engine.get_loan(LOAN_ID)
        assert loan.version == 20
        assert loan.outstanding_interest == Decimal("0")
        assert loan.outstanding_principal == Decimal("9900")
        assert len(engine.book.get_transactions(LOAN_ID)) == 20
        assert sorted(r.loan.version for r in results) == list(range(1, 21))
        assert_buckets_non_negative(loan)


class TestReverseRepayment:
    """Test reversals as offsetting records."""

    def test_reversal_restores_buckets(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, INSTALLMENT, FIRST_DUE)
        reversed_ = engine.reverse_repayment(posted.transaction.transaction_id, reason="bounced",
                                             reversal_date=date(2024, 2, 5))

        reversal = reversed_.transaction
        assert reversal.kind == TransactionKind.REVERSAL
        assert reversal.amount == -INSTALLMENT
        assert reversal.reverses == posted.transaction.transaction_id
        assert reversal.reason == "bounced"

        loan = reversed_.loan
        assert loan.outstanding_principal == Decimal("10000")
        assert loan.outstanding_interest == Decimal("100.00")
        assert loan.paid_toward_schedule == Decimal("0")
        assert loan.next_due_date == FIRST_DUE
        assert loan.status == LoanStatus.OVERDUE

    def test_original_record_untouched(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, "200", FIRST_DUE)
        engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)

        original = engine.book.get_transaction(posted.transaction.transaction_id)
        assert original == posted.transaction
        assert len(engine.book.get_transactions(LOAN_ID)) == 2

    def test_reverse_only_once(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, "200", FIRST_DUE)
        engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)
        with pytest.raises(RepaymentRejectedError):
            engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)

    def test_cannot_reverse_a_reversal(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, "200", FIRST_DUE)
        reversal = engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)
        with pytest.raises(RepaymentRejectedError):
            engine.reverse_repayment(reversal.transaction.transaction_id, reversal_date=FIRST_DUE)

    def test_reversal_before_last_activity(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, "200", FIRST_DUE)
        engine.post_repayment(LOAN_ID, "200", date(2024, 2, 20))
        with pytest.raises(RepaymentRejectedError):
            engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=date(2024, 2, 10))

    def test_reopens_closed_loan(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, "10100", FIRST_DUE)
        assert posted.loan.status == LoanStatus.CLOSED
        reopened = engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)
        assert reopened.loan.status == LoanStatus.ACTIVE
        assert reopened.loan.outstanding_principal == Decimal("10000")

    def test_unknown_transaction(self, engine, disbursed_loan):
        with pytest.raises(LoanNotFoundError):
            engine.reverse_repayment("missing")


class TestListeners:
    """Test posting events."""

    def test_events_emitted(self, engine, disbursed_loan):
        events = []
        engine.repayments.add_listener(events.append)

        posted = engine.post_repayment(LOAN_ID, "100", FIRST_DUE)
        engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=FIRST_DUE)

        assert isinstance(events[0], RepaymentPosted)
        assert events[0].transaction_id == posted.transaction.transaction_id
        assert events[0].loan_version == 1
        assert isinstance(events[1], RepaymentReversed)
        assert events[1].reversed_transaction_id == posted.transaction.transaction_id

    def test_failing_listener_does_not_undo_posting(self, engine, disbursed_loan):
        def broken(event):
            raise RuntimeError("listener down")

        engine.repayments.add_listener(broken)
        result = engine.post_repayment(LOAN_ID, "100", FIRST_DUE)
        assert engine.get_loan(LOAN_ID) == result.loan


class TestCharges:
    """Test fees and late-payment penalties."""

    def test_fee_is_collected_before_interest(self, engine, disbursed_loan):
        charge = engine.charge(LOAN_ID, ChargeKind.FEE, "25", date(2024, 1, 15))
        assert charge.kind == ChargeKind.FEE
        assert engine.get_loan(LOAN_ID).outstanding_fees == Decimal("25")

        result = engine.post_repayment(LOAN_ID, "50", FIRST_DUE)
        assert result.transaction.allocation.fees == Decimal("25")
        assert result.transaction.allocation.interest == Decimal("25")

    def test_invalid_charge_amount(self, engine, disbursed_loan):
        with pytest.raises(InvalidAmountError):
            engine.charge(LOAN_ID, ChargeKind.FEE, "0", date(2024, 1, 15))

    def test_cannot_charge_closed_loan(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "10100", FIRST_DUE)
        with pytest.raises(RepaymentRejectedError):
            engine.charge(LOAN_ID, ChargeKind.FEE, "5", date(2024, 2, 2))

    def test_assess_penalty(self, engine, disbursed_loan):
        # 43 days past the 2024-02-01 installment: two started 30-day periods at 2%
        charge = engine.assess_penalty(LOAN_ID, date(2024, 3, 15))
        assert charge.kind == ChargeKind.PENALTY
        assert charge.amount == Decimal("400.00")
        assert charge.reference_due_date == FIRST_DUE
        assert engine.get_loan(LOAN_ID).outstanding_penalty == Decimal("400.00")

        # Already charged for this installment
        assert engine.assess_penalty(LOAN_ID, date(2024, 3, 15)) is None

        result = engine.post_repayment(LOAN_ID, "100", date(2024, 3, 15))
        assert result.transaction.allocation.penalty == Decimal("100")

    def test_no_penalty_when_current(self, engine, disbursed_loan):
        assert engine.assess_penalty(LOAN_ID, date(2024, 1, 20)) is None


class TestDefaultAndWriteOff:
    """Test moving loans into default and writing them off."""

    def test_mark_defaulted(self, engine, disbursed_loan):
        schedule = engine.get_schedule(LOAN_ID)
        change = engine.mark_defaulted(LOAN_ID, date(2024, 5, 15), reason="borrower unreachable")

        billed_interest = sum(e.scheduled_interest for e in schedule[:4])
        assert change.status == LoanStatus.DEFAULTED
        assert change.outstanding_at_change == Decimal("10000") + billed_interest
        assert engine.book.get_status_changes(LOAN_ID) == [change]

        loan = engine.get_loan(LOAN_ID)
        assert loan.status == LoanStatus.DEFAULTED
        assert loan.outstanding_interest == billed_interest
        assert loan.version == 1

    def test_defaulted_loan_is_stage_3(self, engine, disbursed_loan):
        engine.mark_defaulted(LOAN_ID, date(2024, 2, 10))
        result = engine.evaluate(LOAN_ID, datetime(2024, 2, 10, 12, 0))

        assert result.classification.days_overdue == 9
        assert result.classification.ifrs9_stage == IFRS9Stage.STAGE_3
        assert result.classification.regulatory_bucket == RegulatoryBucket.STANDARD
        assert result.ecl.stage == IFRS9Stage.STAGE_3

    def test_defaulted_loan_takes_repayments_until_closed(self, engine, disbursed_loan):
        engine.mark_defaulted(LOAN_ID, date(2024, 2, 10))

        partial = engine.post_repayment(LOAN_ID, "300", date(2024, 2, 11))
        assert partial.loan.status == LoanStatus.DEFAULTED

        full = engine.post_repayment(LOAN_ID, "20000", date(2024, 2, 12))
        assert full.loan.status == LoanStatus.CLOSED

    def test_write_off(self, engine, disbursed_loan):
        change = engine.write_off(LOAN_ID, date(2024, 5, 15), reason="uncollectable")

        loan = engine.get_loan(LOAN_ID)
        assert loan.status == LoanStatus.WRITTEN_OFF
        assert loan.get_total_outstanding() == change.outstanding_at_change

        result = engine.evaluate(LOAN_ID, datetime(2024, 5, 20))
        assert not result.is_classified()
        assert result.snapshot.status == LoanStatus.WRITTEN_OFF

    def test_written_off_loan_rejects_repayment(self, engine, disbursed_loan):
        engine.write_off(LOAN_ID, date(2024, 5, 15))
        with pytest.raises(RepaymentRejectedError) as exc_info:
            engine.post_repayment(LOAN_ID, "500", date(2024, 5, 20))
        assert "Cannot post repayment for WRITTEN_OFF loan" in exc_info.value.errors

        with pytest.raises(RepaymentRejectedError):
            engine.charge(LOAN_ID, ChargeKind.FEE, "5", date(2024, 5, 20))

    def test_written_off_loan_rejects_reversal(self, engine, disbursed_loan):
        posted = engine.post_repayment(LOAN_ID, INSTALLMENT, FIRST_DUE)
        engine.write_off(LOAN_ID, date(2024, 6, 1))
        with pytest.raises(RepaymentRejectedError):
            engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=date(2024, 6, 2))

    def test_write_off_after_default(self, engine, disbursed_loan):
        engine.mark_defaulted(LOAN_ID, date(2024, 4, 1))
        engine.write_off(LOAN_ID, date(2024, 9, 1))
        assert engine.get_loan(LOAN_ID).status == LoanStatus.WRITTEN_OFF
        assert [c.status for c in engine.book.get_status_changes(LOAN_ID)] == [
            LoanStatus.DEFAULTED, LoanStatus.WRITTEN_OFF,
        ]

    def test_invalid_transitions(self, engine, disbursed_loan):
        engine.write_off(LOAN_ID, date(2024, 5, 15))
        with pytest.raises(InvalidStatusTransitionError):
            engine.write_off(LOAN_ID, date(2024, 5, 16))
        with pytest.raises(InvalidStatusTransitionError):
            engine.mark_defaulted(LOAN_ID, date(2024, 5, 16))

    def test_closed_loan_cannot_default(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "10100", FIRST_DUE)
        with pytest.raises(InvalidStatusTransitionError):
            engine.mark_defaulted(LOAN_ID, date(2024, 3, 1))

    def test_effective_date_before_last_activity(self, engine, disbursed_loan):
        before = engine.post_repayment(LOAN_ID, INSTALLMENT, date(2024, 3, 1)).loan
        with pytest.raises(InvalidStatusTransitionError):
            engine.mark_defaulted(LOAN_ID, date(2024, 2, 15))
        assert engine.get_loan(LOAN_ID) == before
        assert engine.book.get_status_changes(LOAN_ID) == []

    def test_replay_reproduces_status_changes(self, engine, disbursed_loan):
        live = {}
        engine.post_repayment(LOAN_ID, INSTALLMENT, FIRST_DUE)
        live[FIRST_DUE] = engine.snapshot(LOAN_ID, FIRST_DUE)
        engine.mark_defaulted(LOAN_ID, date(2024, 3, 10))
        live[date(2024, 3, 10)] = engine.snapshot(LOAN_ID, date(2024, 3, 10))
        engine.post_repayment(LOAN_ID, "200", date(2024, 3, 20))
        live[date(2024, 3, 20)] = engine.snapshot(LOAN_ID, date(2024, 3, 20))
        engine.write_off(LOAN_ID, date(2024, 4, 15))
        live[date(2024, 4, 15)] = engine.snapshot(LOAN_ID, date(2024, 4, 15))

        for on, snapshot in live.items():
            assert engine.point_in_time.snapshot_as_of(LOAN_ID, on) == snapshot, on
        assert live[date(2024, 3, 20)].status == LoanStatus.DEFAULTED
        assert live[date(2024, 4, 15)].status == LoanStatus.WRITTEN_OFF

    def test_status_change_records_only_terminal_statuses(self):
        with pytest.raises(ValidationError):
            LoanStatusChange(
                change_id="c1", loan_id=LOAN_ID, organisation_id="org_001",
                status=LoanStatus.ACTIVE, effective_date=date(2024, 3, 1),
                outstanding_at_change=Decimal("100"),
            )
