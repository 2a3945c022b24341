"""Integration tests for point-in-time ECL and provisioning.

The stored record for a date and a recomputation from the repayment history
must produce the same figures.
"""

import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from lendcore.core.exceptions import LoanNotFoundError
from lendcore.core.loan import LoanStatus
from lendcore.history.recalculation import reconstruct_state
from lendcore.repayment.transactions import ChargeKind
from lendcore.risk.classification import IFRS9Stage, RegulatoryBucket
from lendcore.schedule.amortization import generate_schedule

LOAN_ID = "loan_pit"
T1 = datetime(2024, 3, 15, 18, 0)
T2 = date(2024, 4, 10)
T3 = datetime(2024, 4, 20, 9, 0)


@pytest.fixture
def evaluated_loan(engine, disbursed_loan):
    """Evaluated while 43 days overdue, repaid, then evaluated again."""
    first = engine.evaluate(LOAN_ID, T1)
    engine.post_repayment(LOAN_ID, "1500", T2)
    second = engine.evaluate(LOAN_ID, T3)
    return first, second


class TestStoredVersusRecomputed:
    """Test that both point-in-time paths agree."""

    def test_evaluation_at_t1(self, evaluated_loan):
        first, _ = evaluated_loan
        assert first.classification.days_overdue == 43
        assert first.classification.ifrs9_stage == IFRS9Stage.STAGE_2
        assert first.classification.regulatory_bucket == RegulatoryBucket.SUBSTANDARD
        assert first.snapshot.outstanding_interest == Decimal("196.29")
        assert first.ecl.exposure_at_default == Decimal("10196.29")

    def test_ecl_agrees_at_t1_after_later_repayment(self, engine, evaluated_loan):
        stored = engine.ecl_as_of(LOAN_ID, T1)
        recomputed = engine.recompute_ecl_as_of(LOAN_ID, T1)
        assert stored.same_calculation(recomputed)
        assert stored.ecl_value == recomputed.ecl_value

    def test_ecl_agrees_at_t3(self, engine, evaluated_loan):
        _, second = evaluated_loan
        stored = engine.ecl_as_of(LOAN_ID, T3)
        recomputed = engine.recompute_ecl_as_of(LOAN_ID, T3)
        assert stored == second.ecl
        assert stored.stage == IFRS9Stage.STAGE_1
        assert stored.same_calculation(recomputed)

    def test_provision_agrees(self, engine, evaluated_loan):
        for at in (T1, T3):
            stored = engine.provision_as_of(LOAN_ID, at)
            recomputed = engine.recompute_provision_as_of(LOAN_ID, at)
            assert stored.provision_amount == recomputed.provision_amount
            assert stored.classification_bucket == recomputed.classification_bucket

    def test_t1_provision(self, engine, evaluated_loan):
        provision = engine.provision_as_of(LOAN_ID, T1)
        assert provision.provision_amount == Decimal("1019.63")

    def test_recomputation_is_not_stored(self, engine, evaluated_loan):
        engine.recompute_ecl_as_of(LOAN_ID, T1)
        assert len(engine.history.ecl_history(LOAN_ID)) == 2


class TestStoredLookup:
    """Test selection of the latest record on or before a date."""

    def test_before_first_evaluation(self, engine, evaluated_loan):
        assert engine.ecl_as_of(LOAN_ID, date(2024, 3, 1)) is None

    def test_between_evaluations_returns_earlier_record(self, engine, evaluated_loan):
        first, _ = evaluated_loan
        assert engine.ecl_as_of(LOAN_ID, date(2024, 4, 15)) == first.ecl
        assert engine.provision_as_of(LOAN_ID, date(2024, 4, 15)) == first.provision

    def test_date_includes_whole_day(self, engine, evaluated_loan):
        _, second = evaluated_loan
        assert engine.ecl_as_of(LOAN_ID, date(2024, 4, 20)) == second.ecl

    def test_history_is_append_only(self, engine, evaluated_loan):
        first, _ = evaluated_loan
        engine.evaluate(LOAN_ID, T1)
        history = engine.history.ecl_history(LOAN_ID)
        assert len(history) == 3
        assert history[0] == first.ecl
        assert len(engine.history.classification_history(LOAN_ID)) == 3

    def test_unknown_loan(self, engine):
        with pytest.raises(LoanNotFoundError):
            engine.ecl_as_of("missing", T1)


class TestReconstruction:
    """Test that replaying the records reproduces the live loan state."""

    def test_backdated_snapshot_uses_history(self, engine, evaluated_loan):
        snapshot = engine.snapshot(LOAN_ID, date(2024, 3, 20))
        assert snapshot.next_due_date == date(2024, 2, 1)
        assert snapshot.outstanding_principal == Decimal("10000")
        assert snapshot.status == LoanStatus.OVERDUE

    def test_backdated_evaluation_matches_original(self, engine, evaluated_loan):
        first, _ = evaluated_loan
        again = engine.evaluate(LOAN_ID, T1)
        assert again.ecl.same_calculation(first.ecl)
        assert again.snapshot == first.snapshot

    def test_matches_live_state_through_lifecycle(self, engine, disbursed_loan):
        live = {}

        def record(on):
            live[on] = engine.snapshot(LOAN_ID, on)

        engine.charge(LOAN_ID, ChargeKind.FEE, "15", date(2024, 1, 10))
        record(date(2024, 1, 10))
        posted = engine.post_repayment(LOAN_ID, "300", date(2024, 2, 5))
        record(date(2024, 2, 5))
        engine.assess_penalty(LOAN_ID, date(2024, 3, 10))
        record(date(2024, 3, 10))
        engine.reverse_repayment(posted.transaction.transaction_id, reversal_date=date(2024, 3, 12))
        record(date(2024, 3, 12))
        engine.post_repayment(LOAN_ID, "2000", date(2024, 4, 2))
        record(date(2024, 4, 2))

        for on, snapshot in live.items():
            assert engine.point_in_time.snapshot_as_of(LOAN_ID, on) == snapshot, on

    def test_reconstruct_state_function(self, engine, disbursed_loan):
        engine.post_repayment(LOAN_ID, "470.73", date(2024, 2, 1))
        snapshot = reconstruct_state(
            engine.book.get_original_loan(LOAN_ID),
            engine.get_schedule(LOAN_ID),
            engine.book.get_transactions(LOAN_ID),
            engine.book.get_charges(LOAN_ID),
            date(2024, 2, 1),
        )
        assert snapshot.outstanding_principal == Decimal("9629.27")
        assert snapshot.next_due_date == date(2024, 3, 1)
        # Before the repayment
        earlier = reconstruct_state(
            engine.book.get_original_loan(LOAN_ID), engine.get_schedule(LOAN_ID),
            engine.book.get_transactions(LOAN_ID), [], date(2024, 1, 31),
        )
        assert earlier.outstanding_principal == Decimal("10000")
        assert earlier.outstanding_interest == Decimal("0")

    def test_full_term_repayment(self, engine, disbursed_loan):
        schedule = engine.get_schedule(LOAN_ID)
        for entry in schedule:
            engine.post_repayment(LOAN_ID, entry.scheduled_total, entry.due_date)

        loan = engine.get_loan(LOAN_ID)
        assert loan.status == LoanStatus.CLOSED
        assert loan.get_total_outstanding() == Decimal("0")

        midway = schedule[11].due_date
        assert engine.point_in_time.snapshot_as_of(LOAN_ID, midway).outstanding_principal == (
            schedule[11].outstanding_after
        )


class TestClosedLoans:
    """Test that closed loans drop out of classification but keep their history."""

    def test_closed_loan_not_classified(self, engine, evaluated_loan):
        engine.post_repayment(LOAN_ID, "20000", date(2024, 5, 1))
        result = engine.evaluate(LOAN_ID, datetime(2024, 5, 2))

        assert not result.is_classified()
        assert result.ecl is None
        assert result.snapshot.status == LoanStatus.CLOSED
        assert engine.recompute_ecl_as_of(LOAN_ID, date(2024, 5, 2)) is None
        # Earlier figures remain retrievable
        assert engine.ecl_as_of(LOAN_ID, date(2024, 5, 2)).calculation_timestamp == T3

    def test_portfolio_evaluation(self, engine, disbursed_loan):
        engine.disburse("org_001", "5000", "18", 12, date(2024, 1, 15), loan_id="loan_b")
        engine.disburse("org_002", "3000", "10", 6, date(2024, 1, 1), loan_id="loan_c")

        results = engine.evaluate_portfolio(datetime(2024, 2, 10), "org_001")
        assert {r.loan_id for r in results} == {LOAN_ID, "loan_b"}

        summary = engine.get_ecl_summary("org_001")
        assert summary["total_loans"] == 2
        assert summary["total_ecl"] == sum(r.ecl.ecl_value for r in results)

        provisions = engine.get_provision_summary()
        assert provisions["total_provisions"] == sum(r.provision.provision_amount for r in results)


def test_evaluation_timestamps_are_ordered(engine, disbursed_loan):
    for day in range(3):
        engine.evaluate(LOAN_ID, T1 + timedelta(days=day))
    timestamps = [r.calculation_timestamp for r in engine.history.ecl_history(LOAN_ID)]
    assert timestamps == sorted(timestamps)


class TestSameDayPostings:
    """Test evaluations followed by postings dated the same day."""

    MORNING = datetime(2024, 3, 15, 9, 0)
    EVENING = datetime(2024, 3, 15, 17, 0)

    @pytest.fixture
    def morning_evaluation(self, engine, disbursed_loan):
        evaluation = engine.evaluate(LOAN_ID, self.MORNING)
        engine.post_repayment(LOAN_ID, "1500", date(2024, 3, 15))
        return evaluation

    def test_recomputation_sees_what_the_evaluation_saw(self, engine, morning_evaluation):
        stored = engine.ecl_as_of(LOAN_ID, self.MORNING)
        recomputed = engine.recompute_ecl_as_of(LOAN_ID, self.MORNING)

        assert stored == morning_evaluation.ecl
        assert stored.days_overdue == 43
        assert stored.ecl_value == Decimal("509.81")
        assert stored.same_calculation(recomputed)
        assert recomputed.history_sequence == stored.history_sequence

    def test_provision_recomputation_sees_what_the_evaluation_saw(self, engine, morning_evaluation):
        stored = engine.provision_as_of(LOAN_ID, self.MORNING)
        recomputed = engine.recompute_provision_as_of(LOAN_ID, self.MORNING)
        assert stored.provision_amount == recomputed.provision_amount
        assert recomputed.classification_bucket == RegulatoryBucket.SUBSTANDARD

    def test_whole_day_includes_later_posting(self, engine, morning_evaluation):
        recomputed = engine.recompute_ecl_as_of(LOAN_ID, date(2024, 3, 15))
        assert recomputed.days_overdue == 0
        assert recomputed.stage == IFRS9Stage.STAGE_1

    def test_later_evaluation_sees_the_posting(self, engine, morning_evaluation):
        evening = engine.evaluate(LOAN_ID, self.EVENING)
        assert evening.classification.days_overdue == 0
        assert evening.ecl.history_sequence > morning_evaluation.ecl.history_sequence

        assert engine.recompute_ecl_as_of(LOAN_ID, self.EVENING).same_calculation(evening.ecl)
        assert engine.recompute_ecl_as_of(LOAN_ID, self.MORNING).same_calculation(
            morning_evaluation.ecl
        )

    def test_backdated_posting_after_evaluation(self, engine, disbursed_loan):
        evaluation = engine.evaluate(LOAN_ID, self.MORNING)
        engine.post_repayment(LOAN_ID, "1500", date(2024, 3, 10))

        recomputed = engine.recompute_ecl_as_of(LOAN_ID, self.MORNING)
        assert recomputed.same_calculation(evaluation.ecl)


class TestTimezones:
    """Test that offset-aware timestamps compare with stored records."""

    def test_aware_query_bound(self, engine, evaluated_loan):
        first, _ = evaluated_loan
        utc = datetime(2024, 3, 15, 18, 0, tzinfo=timezone.utc)
        assert engine.ecl_as_of(LOAN_ID, utc) == first.ecl
        assert engine.recompute_ecl_as_of(LOAN_ID, utc).same_calculation(first.ecl)

        # 19:00 at UTC+2 is 17:00 UTC, before the evaluation
        plus_two = datetime(2024, 3, 15, 19, 0, tzinfo=timezone(timedelta(hours=2)))
        assert engine.ecl_as_of(LOAN_ID, plus_two) is None

    def test_aware_evaluation_timestamp_is_stored_in_utc(self, engine, disbursed_loan):
        aware = datetime(2024, 3, 15, 11, 0, tzinfo=timezone(timedelta(hours=2)))
        result = engine.evaluate(LOAN_ID, aware)

        assert result.ecl.calculation_timestamp == datetime(2024, 3, 15, 9, 0)
        assert engine.ecl_as_of(LOAN_ID, datetime(2024, 3, 15, 9, 0)) == result.ecl


class TestAdjustedSchedules:
    """Test that restructured schedules sit beside the original one."""

    def test_original_schedule_still_drives_the_loan(self, engine, disbursed_loan):
        original = engine.get_schedule(LOAN_ID)
        engine.post_repayment(LOAN_ID, "470.73", date(2024, 2, 1))

        adjusted = generate_schedule("9629.27", "8", 36, start_date=date(2024, 2, 1))
        engine.add_adjusted_schedule(LOAN_ID, adjusted)

        assert engine.get_schedule(LOAN_ID) == original
        assert engine.get_adjusted_schedules(LOAN_ID) == [adjusted]

        live = engine.snapshot(LOAN_ID, date(2024, 3, 15))
        assert live.outstanding_interest == original[1].scheduled_interest
        assert live.next_due_date == original[1].due_date
        assert engine.point_in_time.snapshot_as_of(LOAN_ID, date(2024, 3, 15)) == live

    def test_adjusted_schedules_are_copies(self, engine, disbursed_loan):
        adjusted = generate_schedule("10000", "8", 36, start_date=date(2024, 1, 1))
        engine.add_adjusted_schedule(LOAN_ID, adjusted)
        engine.get_adjusted_schedules(LOAN_ID)[0].clear()
        assert len(engine.get_adjusted_schedules(LOAN_ID)[0]) == 36

    def test_unknown_loan(self, engine):
        with pytest.raises(LoanNotFoundError):
            engine.add_adjusted_schedule("missing", [])
