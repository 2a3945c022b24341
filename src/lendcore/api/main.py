"""Main FastAPI application for the loan financial engine."""

from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, Optional
import logging

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from ..core.exceptions import (
    ConcurrentModificationError, LoanEngineError, LoanNotFoundError, RepaymentRejectedError,
    ScheduleNotFoundError,
)
from ..repayment.allocation import Allocation
from .models import (
    AllocationRequest, ClassificationResponse, ClassifyRequest, DisbursementRequest, ECLRequest,
    ECLResponse, EvaluationRequest, EvaluationResponse, HealthResponse, LoanDetailResponse,
    LoanResponse, PointInTimeResponse, PostingResponse, ProvisionRequest, ProvisionResponse,
    RepaymentRequest, ReversalRequest, ScheduleRequest, ScheduleResponse, StatusChangeRequest,
    StatusChangeResponse,
)
from .services import LoanEngineService

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize services
loan_service = LoanEngineService()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown tasks."""
    logger.info("Loan engine API starting up...")
    await loan_service.initialize()
    logger.info("Loan engine API ready")
    yield
    logger.info("Loan engine API shutdown complete")


# Create FastAPI app
app = FastAPI(
    title="Loan Financial Engine API",
    description="Amortization, repayment allocation, IFRS 9 staging, ECL and regulatory provisioning",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/", response_model=Dict[str, str])
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Loan Financial Engine API",
        "version": "0.1.0",
        "description": "Loan lifecycle math from disbursement through closure",
        "docs": "/docs",
        "health": "/health",
    }


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    checks = {
        "api": "ok",
        "loan_engine": "ok" if loan_service.engine else "error",
        "timestamp": datetime.now().isoformat(),
    }
    status = "unhealthy" if "error" in checks.values() else "healthy"
    return HealthResponse(status=status, timestamp=datetime.now(), checks=checks)


@app.post("/schedule", response_model=ScheduleResponse)
async def generate_schedule(request: ScheduleRequest):
    """Generate an amortization schedule without creating a loan."""
    try:
        return await loan_service.generate_schedule(request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Schedule generation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Schedule generation failed: {str(e)}")


@app.post("/allocate", response_model=Allocation)
async def allocate_payment(request: AllocationRequest):
    """Split a payment over outstanding buckets."""
    try:
        return await loan_service.allocate(request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Allocation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Allocation failed: {str(e)}")


@app.post("/classify", response_model=ClassificationResponse)
async def classify(request: ClassifyRequest):
    try:
        return await loan_service.classify(request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Classification failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Classification failed: {str(e)}")


@app.post("/ecl", response_model=ECLResponse)
async def compute_ecl(request: ECLRequest):
    try:
        return await loan_service.compute_ecl(request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"ECL calculation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"ECL calculation failed: {str(e)}")


@app.post("/provision", response_model=ProvisionResponse)
async def compute_provision(request: ProvisionRequest):
    try:
        return await loan_service.compute_provision(request)
    except (LoanEngineError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Provision calculation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Provision calculation failed: {str(e)}")


@app.post("/loans", response_model=LoanResponse, status_code=201)
async def disburse_loan(request: DisbursementRequest):
    """Disburse a loan and generate its original schedule."""
    try:
        response = await loan_service.disburse(request)
        logger.info(f"Loan disbursed: {response.loan.loan_id}")
        return response
    except (LoanEngineError, ValueError):
        raise
    except Exception as e:
        logger.error(f"Disbursement failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Disbursement failed: {str(e)}")


@app.get("/loans/{loan_id}", response_model=LoanDetailResponse)
async def get_loan(loan_id: str, as_of: Optional[date] = None):
    """Loan record, its state on ``as_of`` and its transactions."""
    try:
        return await loan_service.get_loan(loan_id, as_of)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Loan lookup failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Loan lookup failed: {str(e)}")


@app.post("/loans/{loan_id}/repayments", response_model=PostingResponse, status_code=201)
async def post_repayment(loan_id: str, request: RepaymentRequest):
    """Post a repayment against a loan."""
    try:
        return await loan_service.post_repayment(loan_id, request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Repayment posting failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Repayment posting failed: {str(e)}")


@app.post("/repayments/{transaction_id}/reverse", response_model=PostingResponse, status_code=201)
async def reverse_repayment(transaction_id: str, request: ReversalRequest):
    """Reverse a posted repayment with an offsetting transaction."""
    try:
        return await loan_service.reverse_repayment(transaction_id, request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Repayment reversal failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Repayment reversal failed: {str(e)}")


@app.post("/loans/{loan_id}/status", response_model=StatusChangeResponse, status_code=201)
async def change_loan_status(loan_id: str, request: StatusChangeRequest):
    """Record a default or write-off."""
    try:
        return await loan_service.change_status(loan_id, request)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Status change failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Status change failed: {str(e)}")


@app.post("/loans/{loan_id}/evaluate", response_model=EvaluationResponse)
async def evaluate_loan(loan_id: str, request: Optional[EvaluationRequest] = None):
    """Classify a loan and append ECL and provision records."""
    try:
        timestamp = request.evaluation_timestamp if request else None
        return await loan_service.evaluate(loan_id, timestamp)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Evaluation failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Evaluation failed: {str(e)}")


@app.get("/loans/{loan_id}/ecl", response_model=PointInTimeResponse)
async def ecl_as_of(loan_id: str, as_of: datetime):
    """Stored ECL on ``as_of`` next to a recomputation from transaction history."""
    try:
        return await loan_service.ecl_as_of(loan_id, as_of)
    except LoanEngineError:
        raise
    except Exception as e:
        logger.error(f"Point-in-time ECL failed: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Point-in-time ECL failed: {str(e)}")


@app.get("/config", response_model=Dict[str, Any])
async def get_configuration():
    """Get current policy configuration."""
    try:
        return loan_service.get_configuration()
    except Exception as e:
        logger.error(f"Failed to get configuration: {str(e)}")
        raise HTTPException(status_code=500, detail=f"Failed to get configuration: {str(e)}")


# Error handlers
@app.exception_handler(RepaymentRejectedError)
async def repayment_rejected_handler(request, exc):
    logger.error(f"Repayment rejected: {str(exc)}")
    return JSONResponse(
        status_code=422,
        content={"detail": str(exc), "errors": exc.errors, "warnings": exc.warnings},
    )


@app.exception_handler(LoanEngineError)
async def engine_error_handler(request, exc):
    """Map engine errors to client errors."""
    if isinstance(exc, (LoanNotFoundError, ScheduleNotFoundError)):
        status_code = 404
    elif isinstance(exc, ConcurrentModificationError):
        status_code = 409
    else:
        status_code = 400
    logger.error(f"{exc.__class__.__name__}: {str(exc)}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error": exc.__class__.__name__},
    )


@app.exception_handler(ValueError)
async def value_error_handler(request, exc):
    """Handle ValueError exceptions."""
    logger.error(f"ValueError: {str(exc)}")
    return JSONResponse(
        status_code=400,
        content={"detail": f"Invalid input: {str(exc)}"},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
