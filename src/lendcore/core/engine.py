"""Main loan engine coordinating schedules, repayments, classification and ECL."""

from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict
import logging
import uuid

from .calendar import RepaymentCycle, days_overdue, to_date, to_naive_utc
from .config import EngineConfig
from .exceptions import InvalidAmountError, InvalidStatusTransitionError, RepaymentRejectedError
from .loan import CLASSIFIED_STATUSES, OPEN_STATUSES, InterestMethod, Loan, LoanSnapshot, LoanStatus
from .money import ZERO, to_decimal
from ..accounting.ifrs9 import ECLResult, IFRS9Calculator, RiskParameterProvider
from ..accounting.provisions import ProvisioningEngine, ProvisionResult
from ..history.recalculation import PointInTimeService, classify_snapshot, settle_as_of
from ..history.store import CalculationHistory, LoanBook
from ..repayment.penalties import calculate_penalty
from ..repayment.posting import PostingResult, RepaymentService, apply_charge, apply_status_change
from ..repayment.transactions import ChargeKind, LoanCharge, LoanStatusChange
from ..risk.classification import DelinquencyClassifier, RiskClassification
from ..schedule.amortization import AmortizationGenerator, ScheduleEntry

logger = logging.getLogger(__name__)


class EvaluationResult(BaseModel):
    """Classification, ECL and provision produced by one evaluation run."""

    model_config = ConfigDict(frozen=True)

    loan_id: str
    evaluation_timestamp: datetime
    snapshot: LoanSnapshot
    classification: Optional[RiskClassification] = None
    ecl: Optional[ECLResult] = None
    provision: Optional[ProvisionResult] = None

    def is_classified(self) -> bool:
        return self.classification is not None

    def get_summary_metrics(self) -> Dict[str, Any]:
        """Get summary of key figures."""
        return {
            "loan_id": self.loan_id,
            "evaluated_at": self.evaluation_timestamp.isoformat(),
            "status": self.snapshot.status.value,
            "exposure": self.snapshot.exposure,
            "days_overdue": self.classification.days_overdue if self.classification else 0,
            "ifrs9_stage": self.classification.ifrs9_stage.value if self.classification else None,
            "regulatory_bucket": (
                self.classification.regulatory_bucket.value if self.classification else None
            ),
            "ecl": self.ecl.ecl_value if self.ecl else ZERO,
            "provision": self.provision.provision_amount if self.provision else ZERO,
        }


class LoanEngine:
    """Main engine for the loan lifecycle from disbursement to closure."""

    def __init__(self, config: Optional[EngineConfig] = None, book: Optional[LoanBook] = None,
                 history: Optional[CalculationHistory] = None,
                 risk_provider: Optional[RiskParameterProvider] = None,
                 listeners: Optional[List[Callable[[BaseModel], None]]] = None):
        """Initialize the engine with configuration and storage collaborators."""
        self.config = config or EngineConfig.load_default()
        self.book = book or LoanBook()
        self.history = history or CalculationHistory()

        self.generator = AmortizationGenerator(self.config.currency_places)
        self.classifier = DelinquencyClassifier(self.config)
        self.ecl_calculator = IFRS9Calculator(self.config, risk_provider)
        self.provisioning = ProvisioningEngine(self.config)
        self.repayments = RepaymentService(self.book, self.config, listeners)
        self.point_in_time = PointInTimeService(
            self.book, self.history, self.classifier, self.ecl_calculator, self.provisioning
        )

        logger.info("Loan engine initialized")

    def disburse(self, organisation_id: str, principal: Any, annual_interest_rate: Any,
                 term_months: int, disbursement_date: date,
                 repayment_cycle: RepaymentCycle = RepaymentCycle.MONTHLY,
                 interest_method: InterestMethod = InterestMethod.REDUCING,
                 loan_id: Optional[str] = None, customer_id: Optional[str] = None) -> Loan:
        """Create a loan and its original schedule together."""
        schedule = self.generator.generate_schedule(
            principal, annual_interest_rate, term_months, repayment_cycle,
            disbursement_date, interest_method,
        )
        principal = to_decimal(principal)
        loan = Loan(
            loan_id=loan_id or str(uuid.uuid4()),
            organisation_id=organisation_id,
            customer_id=customer_id,
            principal=principal,
            annual_interest_rate=to_decimal(annual_interest_rate),
            term_months=term_months,
            repayment_cycle=repayment_cycle,
            interest_method=interest_method,
            disbursement_date=disbursement_date,
            outstanding_principal=principal,
            next_due_date=schedule[0].due_date,
            status=LoanStatus.ACTIVE,
        )
        self.book.add_loan(loan, schedule)

        logger.info(f"Disbursed loan {loan.loan_id} for {organisation_id}: {principal} "
                    f"at {loan.annual_interest_rate}% over {term_months} months")
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        return self.book.get_loan(loan_id)

    def get_schedule(self, loan_id: str) -> List[ScheduleEntry]:
        return self.book.get_schedule(loan_id)

    def add_adjusted_schedule(self, loan_id: str, schedule: List[ScheduleEntry]) -> None:
        """Record a restructured schedule beside the original.

        Billing, classification and replay keep using the original schedule.
        """
        self.book.add_adjusted_schedule(loan_id, schedule)
        logger.info(f"Recorded adjusted schedule of {len(schedule)} installments for {loan_id}")

    def get_adjusted_schedules(self, loan_id: str) -> List[List[ScheduleEntry]]:
        return self.book.get_adjusted_schedules(loan_id)

    def post_repayment(self, loan_id: str, amount: Any, payment_date: date,
                       method: str = "cash", reference: Optional[str] = None,
                       organisation_id: Optional[str] = None,
                       as_of: Optional[date] = None) -> PostingResult:
        return self.repayments.post_repayment(
            loan_id, amount, payment_date, method, reference, organisation_id, as_of
        )

    def reverse_repayment(self, transaction_id: str, reason: Optional[str] = None,
                          reversal_date: Optional[date] = None) -> PostingResult:
        return self.repayments.reverse_repayment(transaction_id, reason, reversal_date)

    def charge(self, loan_id: str, kind: ChargeKind, amount: Any, charge_date: date,
               reference_due_date: Optional[date] = None) -> LoanCharge:
        """Record a penalty or fee and add it to the loan's buckets."""
        amount = to_decimal(amount)
        if amount <= 0:
            raise InvalidAmountError(f"Charge amount must be positive, got {amount}")

        with self.book.lock_for(loan_id):
            loan = self.book.get_loan(loan_id)
            if not loan.is_open():
                raise RepaymentRejectedError([f"Cannot charge a {loan.status.value.upper()} loan"])
            last_activity = self.book.last_activity_date(loan_id)
            if charge_date < last_activity:
                raise RepaymentRejectedError(
                    [f"Charge date cannot precede the last posted activity on {last_activity}"]
                )

            charge = LoanCharge(
                charge_id=str(uuid.uuid4()),
                loan_id=loan_id,
                organisation_id=loan.organisation_id,
                kind=ChargeKind(kind),
                amount=amount,
                charge_date=charge_date,
                reference_due_date=reference_due_date,
                sequence=self.book.next_sequence(),
            )
            self.book.commit(apply_charge(loan, charge), loan.version, charge=charge)

        logger.info(f"Charged {charge.kind.value} of {amount} to {loan_id} on {charge_date}")
        return charge

    def assess_penalty(self, loan_id: str, as_of: date) -> Optional[LoanCharge]:
        """Charge the late-payment penalty not yet charged for the current overdue installment."""
        snapshot = self.snapshot(loan_id, as_of)
        if not snapshot.is_open() or snapshot.next_due_date is None:
            return None

        days = days_overdue(snapshot.next_due_date, as_of)
        penalty = calculate_penalty(snapshot.outstanding_principal, days,
                                    self.config.get_penalty_policy())
        already_charged = sum(
            (c.amount for c in self.book.get_charges(loan_id)
             if c.kind == ChargeKind.PENALTY and c.reference_due_date == snapshot.next_due_date),
            ZERO,
        )
        due = penalty - already_charged
        if due <= 0:
            return None
        return self.charge(loan_id, ChargeKind.PENALTY, due, as_of,
                           reference_due_date=snapshot.next_due_date)

    def mark_defaulted(self, loan_id: str, effective_date: date,
                       reason: Optional[str] = None) -> LoanStatusChange:
        """Move an active or overdue loan into default; it stays in Stage 3 until repaid."""
        return self._change_status(loan_id, LoanStatus.DEFAULTED, effective_date, reason,
                                   allowed_from=OPEN_STATUSES)

    def write_off(self, loan_id: str, effective_date: date,
                  reason: Optional[str] = None) -> LoanStatusChange:
        """Write off the balance outstanding on ``effective_date``.

        The buckets are kept as the written-off amount; the loan takes no more
        repayments and is no longer classified.
        """
        return self._change_status(loan_id, LoanStatus.WRITTEN_OFF, effective_date, reason,
                                   allowed_from=CLASSIFIED_STATUSES)

    def _change_status(self, loan_id: str, status: LoanStatus, effective_date: date,
                       reason: Optional[str], allowed_from) -> LoanStatusChange:
        with self.book.lock_for(loan_id):
            loan = self.book.get_loan(loan_id)
            schedule = self.book.get_schedule(loan_id)
            if loan.status not in allowed_from:
                raise InvalidStatusTransitionError(
                    f"Cannot move a {loan.status.value.upper()} loan to {status.value.upper()}"
                )
            last_activity = self.book.last_activity_date(loan_id)
            if effective_date < last_activity:
                raise InvalidStatusTransitionError(
                    f"Effective date cannot precede the last posted activity on {last_activity}"
                )

            change = LoanStatusChange(
                change_id=str(uuid.uuid4()),
                loan_id=loan_id,
                organisation_id=loan.organisation_id,
                status=status,
                effective_date=effective_date,
                reason=reason,
                outstanding_at_change=settle_as_of(loan, schedule, effective_date).get_total_outstanding(),
                sequence=self.book.next_sequence(),
                recorded_at=datetime.now(),
            )
            stored = self.book.commit(apply_status_change(loan, schedule, change), loan.version,
                                      status_change=change)

        logger.info(f"Loan {loan_id} {stored.status.value} on {effective_date} with "
                    f"{change.outstanding_at_change} outstanding ({reason or 'no reason given'})")
        return change

    def snapshot(self, loan_id: str, as_of: Union[date, datetime]) -> LoanSnapshot:
        """Consistent view of the loan on ``as_of``.

        Dates before the latest posted activity are rebuilt from history;
        otherwise the stored loan is billed forward to ``as_of``.
        """
        as_of = to_date(as_of)
        with self.book.lock_for(loan_id):
            loan = self.book.get_loan(loan_id)
            if as_of < self.book.last_activity_date(loan_id):
                return self.point_in_time.snapshot_as_of(loan_id, as_of)
            schedule = self.book.get_schedule(loan_id)
        return LoanSnapshot.from_loan(settle_as_of(loan, schedule, as_of), as_of)

    def classify_loan(self, loan_id: str, evaluation_date: Union[date, datetime]) -> Optional[RiskClassification]:
        """Classify the loan on ``evaluation_date``; ``None`` when it carries no credit risk."""
        self.book.get_schedule(loan_id)
        return classify_snapshot(self.classifier, self.snapshot(loan_id, evaluation_date))

    def evaluate(self, loan_id: str, evaluation_timestamp: Optional[datetime] = None) -> EvaluationResult:
        """Classify the loan and append fresh ECL and provision records.

        Records are stamped with the last posting sequence the snapshot
        reflects, so a later recomputation for the same instant replays the
        same history.
        """
        timestamp = to_naive_utc(evaluation_timestamp or datetime.now())
        self.book.get_schedule(loan_id)
        with self.book.lock_for(loan_id):
            snapshot = self.snapshot(loan_id, timestamp)
            known_sequence = self.book.last_sequence()
        classification = classify_snapshot(self.classifier, snapshot)

        if classification is None:
            logger.info(f"Loan {loan_id} is {snapshot.status.value}; nothing to evaluate")
            return EvaluationResult(loan_id=loan_id, evaluation_timestamp=timestamp, snapshot=snapshot)

        ecl = self.ecl_calculator.calculate_loan_ecl(
            loan_id, snapshot.organisation_id, classification, snapshot.exposure, timestamp,
            history_sequence=known_sequence,
        )
        provision = self.provisioning.calculate_loan_provision(
            loan_id, snapshot.organisation_id, classification, snapshot.exposure, timestamp,
            history_sequence=known_sequence,
        )

        self.history.append_classification(classification)
        self.history.append_ecl(ecl)
        self.history.append_provision(provision)

        logger.info(f"Evaluated {loan_id} at {timestamp}: stage {classification.ifrs9_stage.value}, "
                    f"{classification.regulatory_bucket.value}, ECL {ecl.ecl_value}, "
                    f"provision {provision.provision_amount}")
        return EvaluationResult(
            loan_id=loan_id,
            evaluation_timestamp=timestamp,
            snapshot=snapshot,
            classification=classification,
            ecl=ecl,
            provision=provision,
        )

    def evaluate_portfolio(self, evaluation_timestamp: datetime,
                           organisation_id: Optional[str] = None) -> List[EvaluationResult]:
        """Evaluate every loan of an organisation at the same timestamp."""
        return [
            self.evaluate(loan.loan_id, evaluation_timestamp)
            for loan in self.book.list_loans(organisation_id)
        ]

    def ecl_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ECLResult]:
        return self.point_in_time.ecl_as_of(loan_id, at)

    def provision_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ProvisionResult]:
        return self.point_in_time.provision_as_of(loan_id, at)

    def recompute_ecl_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ECLResult]:
        return self.point_in_time.recompute_ecl_as_of(loan_id, at)

    def recompute_provision_as_of(self, loan_id: str, at: Union[date, datetime]) -> Optional[ProvisionResult]:
        return self.point_in_time.recompute_provision_as_of(loan_id, at)

    def get_ecl_summary(self, organisation_id: Optional[str] = None) -> Dict[str, Any]:
        """Portfolio ECL summary over the latest record of each loan."""
        return self.ecl_calculator.calculate_ecl_summary(self.history.latest_ecl_results(organisation_id))

    def get_provision_summary(self, organisation_id: Optional[str] = None) -> Dict[str, Any]:
        return self.provisioning.calculate_provisions(self.history.latest_provision_results(organisation_id))
