"""In-memory loan book and append-only calculation history.

These stand in for the persistence collaborator: the engine itself owns no
storage. Loan state is committed together with the record that changed it, and
only if the loan version read by the caller is still current.
"""

from collections import defaultdict
from datetime import date, datetime
from typing import Dict, Iterator, List, Optional, Union
from contextlib import contextmanager
import itertools
import logging
import threading

from ..accounting.ifrs9 import ECLResult
from ..accounting.provisions import ProvisionResult
from ..core.calendar import end_of_day
from ..core.exceptions import ConcurrentModificationError, LoanNotFoundError, ScheduleNotFoundError
from ..core.loan import Loan
from ..repayment.transactions import LoanCharge, LoanStatusChange, RepaymentTransaction
from ..risk.classification import RiskClassification
from ..schedule.amortization import ScheduleEntry

logger = logging.getLogger(__name__)


class LoanBook:
    """Loans, schedules, repayments, charges and status changes keyed by loan id."""

    def __init__(self):
        self._loans: Dict[str, Loan] = {}
        self._originals: Dict[str, Loan] = {}
        self._schedules: Dict[str, List[ScheduleEntry]] = {}
        self._adjusted_schedules: Dict[str, List[List[ScheduleEntry]]] = defaultdict(list)
        self._transactions: Dict[str, List[RepaymentTransaction]] = defaultdict(list)
        self._transactions_by_id: Dict[str, RepaymentTransaction] = {}
        self._charges: Dict[str, List[LoanCharge]] = defaultdict(list)
        self._status_changes: Dict[str, List[LoanStatusChange]] = defaultdict(list)
        self._loan_locks: Dict[str, threading.RLock] = {}
        self._guard = threading.Lock()
        self._sequence = itertools.count(1)
        self._last_sequence = 0
        self.logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")

    def add_loan(self, loan: Loan, schedule: List[ScheduleEntry]) -> None:
        """Register a disbursed loan with its original schedule."""
        with self._guard:
            if loan.loan_id in self._loans:
                raise ValueError(f"Loan {loan.loan_id} already exists")
            self._loans[loan.loan_id] = loan
            self._originals[loan.loan_id] = loan
            self._schedules[loan.loan_id] = list(schedule)
        self.logger.info(f"Registered loan {loan.loan_id} with {len(schedule)} installments")

    def add_adjusted_schedule(self, loan_id: str, schedule: List[ScheduleEntry]) -> None:
        """Keep a restructured schedule next to, never in place of, the original."""
        self.get_loan(loan_id)
        with self._guard:
            self._adjusted_schedules[loan_id].append(list(schedule))

    def get_loan(self, loan_id: str) -> Loan:
        try:
            return self._loans[loan_id]
        except KeyError:
            raise LoanNotFoundError(f"Loan {loan_id} not found") from None

    def get_original_loan(self, loan_id: str) -> Loan:
        """Loan state as registered at disbursement, the starting point for replay."""
        try:
            return self._originals[loan_id]
        except KeyError:
            raise LoanNotFoundError(f"Loan {loan_id} not found") from None

    def list_loans(self, organisation_id: Optional[str] = None) -> List[Loan]:
        return [
            loan for loan in self._loans.values()
            if organisation_id is None or loan.organisation_id == organisation_id
        ]

    def get_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        """Original schedule created at disbursement."""
        self.get_loan(loan_id)
        schedule = self._schedules.get(loan_id)
        if not schedule:
            raise ScheduleNotFoundError(f"Loan {loan_id} has no generated schedule")
        return list(schedule)

    def get_adjusted_schedules(self, loan_id: str) -> List[List[ScheduleEntry]]:
        return [list(s) for s in self._adjusted_schedules.get(loan_id, [])]

    def get_transactions(self, loan_id: str, through: Optional[date] = None) -> List[RepaymentTransaction]:
        """Transactions in posting order, optionally only those dated on or before ``through``."""
        transactions = sorted(self._transactions.get(loan_id, []), key=lambda t: t.sequence)
        if through is not None:
            transactions = [t for t in transactions if t.payment_date <= through]
        return transactions

    def get_transaction(self, transaction_id: str) -> RepaymentTransaction:
        try:
            return self._transactions_by_id[transaction_id]
        except KeyError:
            raise LoanNotFoundError(f"Transaction {transaction_id} not found") from None

    def is_reversed(self, transaction_id: str) -> bool:
        transaction = self.get_transaction(transaction_id)
        return any(t.reverses == transaction_id for t in self._transactions.get(transaction.loan_id, []))

    def get_charges(self, loan_id: str, through: Optional[date] = None) -> List[LoanCharge]:
        charges = sorted(self._charges.get(loan_id, []), key=lambda c: c.sequence)
        if through is not None:
            charges = [c for c in charges if c.charge_date <= through]
        return charges

    def get_status_changes(self, loan_id: str) -> List[LoanStatusChange]:
        return sorted(self._status_changes.get(loan_id, []), key=lambda s: s.sequence)

    def last_activity_date(self, loan_id: str) -> date:
        """Latest posted record date; the disbursement date if none."""
        loan = self.get_loan(loan_id)
        dates = [t.payment_date for t in self._transactions.get(loan_id, [])]
        dates.extend(c.charge_date for c in self._charges.get(loan_id, []))
        dates.extend(s.effective_date for s in self._status_changes.get(loan_id, []))
        return max(dates, default=loan.disbursement_date)

    def next_sequence(self) -> int:
        with self._guard:
            self._last_sequence = next(self._sequence)
            return self._last_sequence

    def last_sequence(self) -> int:
        """Most recently issued posting sequence, 0 before any posting."""
        with self._guard:
            return self._last_sequence

    @contextmanager
    def lock_for(self, loan_id: str) -> Iterator[None]:
        """Serialize changes to a single loan."""
        with self._guard:
            lock = self._loan_locks.setdefault(loan_id, threading.RLock())
        with lock:
            yield

    def commit(self, loan: Loan, expected_version: int,
               transaction: Optional[RepaymentTransaction] = None,
               charge: Optional[LoanCharge] = None,
               status_change: Optional[LoanStatusChange] = None) -> Loan:
        """Store a new loan state and its originating record atomically.

        Fails with ``ConcurrentModificationError`` if the stored loan moved past
        ``expected_version`` since it was read.
        """
        with self._guard:
            current = self._loans.get(loan.loan_id)
            if current is None:
                raise LoanNotFoundError(f"Loan {loan.loan_id} not found")
            if current.version != expected_version:
                raise ConcurrentModificationError(
                    f"Loan {loan.loan_id} is at version {current.version}, expected {expected_version}"
                )

            stored = loan.evolve(version=expected_version + 1)
            self._loans[loan.loan_id] = stored
            if transaction is not None:
                self._transactions[loan.loan_id].append(transaction)
                self._transactions_by_id[transaction.transaction_id] = transaction
            if charge is not None:
                self._charges[loan.loan_id].append(charge)
            if status_change is not None:
                self._status_changes[loan.loan_id].append(status_change)
            return stored


class CalculationHistory:
    """Append-only classification, ECL and provision records."""

    def __init__(self):
        self._classifications: Dict[str, List[RiskClassification]] = defaultdict(list)
        self._ecl: Dict[str, List[ECLResult]] = defaultdict(list)
        self._provisions: Dict[str, List[ProvisionResult]] = defaultdict(list)
        self._guard = threading.Lock()

    def append_classification(self, classification: RiskClassification) -> None:
        with self._guard:
            self._classifications[classification.loan_id].append(classification)

    def append_ecl(self, result: ECLResult) -> None:
        with self._guard:
            self._ecl[result.loan_id].append(result)

    def append_provision(self, result: ProvisionResult) -> None:
        with self._guard:
            self._provisions[result.loan_id].append(result)

    def classification_history(self, loan_id: str) -> List[RiskClassification]:
        return sorted(self._classifications.get(loan_id, []), key=lambda c: c.evaluation_date)

    def ecl_history(self, loan_id: str) -> List[ECLResult]:
        return sorted(self._ecl.get(loan_id, []), key=lambda r: r.calculation_timestamp)

    def provision_history(self, loan_id: str) -> List[ProvisionResult]:
        return sorted(self._provisions.get(loan_id, []), key=lambda r: r.effective_date)

    def ecl_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ECLResult]:
        """Latest ECL record with a calculation timestamp on or before ``at``."""
        bound = end_of_day(at)
        selected = None
        for result in self.ecl_history(loan_id):
            if result.calculation_timestamp <= bound:
                selected = result
        return selected

    def provision_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ProvisionResult]:
        """Latest provision record effective on or before ``at``."""
        bound = end_of_day(at)
        selected = None
        for result in self.provision_history(loan_id):
            if result.effective_date <= bound:
                selected = result
        return selected

    def latest_ecl_results(self, organisation_id: Optional[str] = None) -> List[ECLResult]:
        latest = [history[-1] for history in (self.ecl_history(k) for k in list(self._ecl)) if history]
        return [r for r in latest if organisation_id is None or r.organisation_id == organisation_id]

    def latest_provision_results(self, organisation_id: Optional[str] = None) -> List[ProvisionResult]:
        latest = [h[-1] for h in (self.provision_history(k) for k in list(self._provisions)) if h]
        return [r for r in latest if organisation_id is None or r.organisation_id == organisation_id]

