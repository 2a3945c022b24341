"""Services for the loan engine API."""

from datetime import date, datetime
from typing import Any, Dict, Optional
import logging

from ..accounting.ifrs9 import compute_ecl
from ..core.calendar import end_of_day
from ..core.config import EngineConfig
from ..core.engine import LoanEngine
from ..core.exceptions import InvalidStatusTransitionError
from ..core.loan import LoanStatus
from ..repayment.allocation import allocate
from ..risk.classification import IFRS9Stage, RegulatoryBucket, aging_bucket
from ..schedule.amortization import schedule_totals
from .models import (
    AllocationRequest, ClassificationResponse, ClassifyRequest, DisbursementRequest, ECLRequest,
    ECLResponse, EvaluationResponse, LoanDetailResponse, LoanResponse, PointInTimeResponse,
    PostingResponse, ProvisionRequest, ProvisionResponse, RepaymentRequest, ReversalRequest,
    ScheduleRequest, ScheduleResponse, StatusChangeRequest, StatusChangeResponse,
)

logger = logging.getLogger(__name__)


class LoanEngineService:
    """Service wrapping a ``LoanEngine`` for the HTTP layer."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig.load_default()
        self.engine = LoanEngine(self.config)

    async def initialize(self):
        """Initialize the service."""
        logger.info(f"Loan engine service initialized with {len(self.config.get_regulatory_buckets())} "
                    f"regulatory buckets")

    def reset(self) -> None:
        """Drop all loans and history."""
        self.engine = LoanEngine(self.config)

    async def generate_schedule(self, request: ScheduleRequest) -> ScheduleResponse:
        schedule = self.engine.generator.generate_schedule(
            request.principal, request.annual_interest_rate, request.term_months,
            request.repayment_cycle, request.start_date, request.interest_method,
        )
        return ScheduleResponse(entries=schedule, totals=schedule_totals(schedule))

    async def allocate(self, request: AllocationRequest):
        return allocate(
            request.amount_received,
            request.outstanding_penalty,
            request.outstanding_fees,
            request.outstanding_interest,
            request.outstanding_principal,
        )

    async def classify(self, request: ClassifyRequest) -> ClassificationResponse:
        classification = self.engine.classifier.classify(
            request.next_due_date, request.evaluation_date, request.outstanding_balance
        )
        if classification is None:
            return ClassificationResponse(classified=False)
        return ClassificationResponse(
            classified=True,
            classification=classification,
            aging_bucket=aging_bucket(classification.days_overdue),
        )

    async def compute_ecl(self, request: ECLRequest) -> ECLResponse:
        ecl = compute_ecl(
            request.stage, request.exposure_at_default, request.probability_of_default,
            request.loss_given_default, self.config.currency_places,
        )
        return ECLResponse(stage=IFRS9Stage.coerce(request.stage).value, ecl_value=ecl)

    async def compute_provision(self, request: ProvisionRequest) -> ProvisionResponse:
        bucket = RegulatoryBucket(request.regulatory_bucket.lower())
        provisioning = self.engine.provisioning
        return ProvisionResponse(
            regulatory_bucket=bucket.value,
            provision_rate=provisioning.get_rate(bucket),
            provision_amount=provisioning.compute_provision(bucket, request.outstanding_exposure),
        )

    async def disburse(self, request: DisbursementRequest) -> LoanResponse:
        loan = self.engine.disburse(
            organisation_id=request.organisation_id,
            principal=request.principal,
            annual_interest_rate=request.annual_interest_rate,
            term_months=request.term_months,
            disbursement_date=request.disbursement_date,
            repayment_cycle=request.repayment_cycle,
            interest_method=request.interest_method,
            loan_id=request.loan_id,
            customer_id=request.customer_id,
        )
        return LoanResponse(loan=loan, schedule=self.engine.get_schedule(loan.loan_id))

    async def get_loan(self, loan_id: str, as_of: Optional[date] = None) -> LoanDetailResponse:
        loan = self.engine.get_loan(loan_id)
        return LoanDetailResponse(
            loan=loan,
            snapshot=self.engine.snapshot(loan_id, as_of or date.today()),
            transactions=self.engine.book.get_transactions(loan_id),
        )

    async def post_repayment(self, loan_id: str, request: RepaymentRequest) -> PostingResponse:
        result = self.engine.post_repayment(
            loan_id, request.amount, request.payment_date, request.method,
            request.reference, request.organisation_id, request.as_of,
        )
        return PostingResponse(
            transaction=result.transaction,
            allocation=result.transaction.allocation,
            loan=result.loan,
            warnings=result.warnings,
        )

    async def reverse_repayment(self, transaction_id: str, request: ReversalRequest) -> PostingResponse:
        result = self.engine.reverse_repayment(transaction_id, request.reason, request.reversal_date)
        return PostingResponse(
            transaction=result.transaction,
            allocation=result.transaction.allocation,
            loan=result.loan,
        )

    async def change_status(self, loan_id: str, request: StatusChangeRequest) -> StatusChangeResponse:
        if request.status == LoanStatus.DEFAULTED:
            change = self.engine.mark_defaulted(loan_id, request.effective_date, request.reason)
        elif request.status == LoanStatus.WRITTEN_OFF:
            change = self.engine.write_off(loan_id, request.effective_date, request.reason)
        else:
            raise InvalidStatusTransitionError(
                f"Only defaults and write-offs can be recorded, got {request.status.value}"
            )
        return StatusChangeResponse(change=change, loan=self.engine.get_loan(loan_id))

    async def evaluate(self, loan_id: str, evaluation_timestamp: Optional[datetime] = None) -> EvaluationResponse:
        result = self.engine.evaluate(loan_id, evaluation_timestamp)
        return EvaluationResponse(
            loan_id=loan_id,
            evaluation_timestamp=result.evaluation_timestamp,
            classification=result.classification,
            ecl=result.ecl,
            provision=result.provision,
            summary=result.get_summary_metrics(),
        )

    async def ecl_as_of(self, loan_id: str, as_of: datetime) -> PointInTimeResponse:
        stored = self.engine.ecl_as_of(loan_id, as_of)
        recomputed = self.engine.recompute_ecl_as_of(loan_id, as_of)
        if stored is None or recomputed is None:
            consistent = stored is None and recomputed is None
        else:
            consistent = stored.same_calculation(recomputed)
        return PointInTimeResponse(
            loan_id=loan_id,
            as_of=end_of_day(as_of),
            stored=stored,
            recomputed=recomputed,
            consistent=consistent,
        )

    def get_configuration(self) -> Dict[str, Any]:
        """Get current policy configuration."""
        return {
            "currency_places": self.config.currency_places,
            "ifrs9": self.config.get_stage_thresholds(),
            "regulatory_buckets": self.config.get_regulatory_buckets(),
            "penalties": {k: str(v) for k, v in self.config.get_penalty_policy().items()},
            "repayment": {k: str(v) for k, v in self.config.get_repayment_policy().items()},
        }
