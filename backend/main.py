"""
Equity Tax - FastAPI Backend
============================
Main API server for the tax filing application.

- Tax math runs in tax_calculator; nothing here computes totals itself
- Every write goes through TaxReturnService.save(), which recomputes
  the stored calculations first
- SSNs are accepted on input but never serialized back out

Configuration (environment):
    EQUITYTAX_TAX_YEAR      default tax year for new returns and estimates
    EQUITYTAX_CORS_ORIGINS  comma-separated allowed origins
    DEBUG                   include exception text in 500 responses
"""

import os
import logging
from datetime import datetime
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Local imports
from tax_constants import (
    DEFAULT_TAX_YEAR,
    INCOME_CATEGORIES,
    ITEMIZED_DEDUCTION_CATEGORIES,
    STANDARD_DEDUCTIONS,
    TAX_BRACKETS,
    get_tax_bracket_info,
)
from models import (
    ApiResponse,
    ConfigurationError,
    DeductionCompareRequest,
    ReviewAction,
    ReviewRequest,
    TaxEstimateRequest,
    TaxReturnCreateRequest,
    TaxReturnStatus,
    TaxReturnUpdateRequest,
)
from tax_calculator import TaxCalculator, load_bracket_table
from tax_returns import (
    DuplicateTaxReturnError,
    InMemoryTaxReturnRepository,
    InvalidStatusTransitionError,
    TaxReturnNotFoundError,
    TaxReturnService,
)

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

TAX_YEAR = int(os.getenv("EQUITYTAX_TAX_YEAR", DEFAULT_TAX_YEAR))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "EQUITYTAX_CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"  # React dev servers
    ).split(",")
    if origin.strip()
]


# =============================================================================
# APPLICATION SETUP
# =============================================================================

# In-memory storage (swap the repository for a database-backed one in production)
tax_return_repository = InMemoryTaxReturnRepository()
tax_return_service = TaxReturnService(tax_return_repository, default_tax_year=TAX_YEAR)


def get_tax_return_service() -> TaxReturnService:
    return tax_return_service


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("Equity Tax API starting up...")
    # Fail fast on a broken bracket table
    load_bracket_table(TAX_YEAR)
    yield
    logger.info("Equity Tax API shutting down...")


app = FastAPI(
    title="Equity Tax",
    description="Tax return filing and review API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _return_data(tax_return) -> dict:
    return tax_return.model_dump(mode="json")


# =============================================================================
# API ENDPOINTS
# =============================================================================

@app.get("/")
async def root():
    """API health check."""
    return {
        "service": "Equity Tax",
        "version": "1.0.0",
        "status": "healthy"
    }


@app.get("/api/health")
async def health_check():
    """Detailed health check."""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "components": {
            "tax_calculator": "ready",
            "tax_returns": "in_memory"
        },
        "tax_year": TAX_YEAR
    }


# --- TAX REFERENCE DATA ---

@app.get("/api/reference/brackets")
async def get_tax_brackets(tax_year: Optional[int] = None):
    """Bracket table and standard deduction for a tax year."""
    year = tax_year or TAX_YEAR
    try:
        table = load_bracket_table(year)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return ApiResponse(data={
        "tax_year": year,
        "brackets": table.to_list(),
        "standard_deduction": STANDARD_DEDUCTIONS[year],
        "summary": get_tax_bracket_info(year),
        "income_categories": list(INCOME_CATEGORIES),
        "itemized_deduction_categories": list(ITEMIZED_DEDUCTION_CATEGORIES),
        "available_years": sorted(TAX_BRACKETS)
    })


# --- TAX CALCULATION ---

def _estimate_calculator(tax_year: Optional[int], service: TaxReturnService) -> TaxCalculator:
    """Estimates only run against a configured year; there is no fallback table."""
    year = tax_year or service.default_tax_year
    try:
        return TaxCalculator(year)
    except ConfigurationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/api/tax/estimate")
async def estimate_tax(
    request: TaxEstimateRequest,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """
    Speculative estimate for the filing wizard. Nothing is persisted.
    """
    calculator = _estimate_calculator(request.tax_year, service)
    estimate = calculator.estimate(request.income, request.deductions)
    return ApiResponse(data=estimate.model_dump(mode="json"))


@app.post("/api/tax/deductions/compare")
async def compare_deductions(
    request: DeductionCompareRequest,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """Standard vs itemized for the same income."""
    calculator = _estimate_calculator(request.tax_year, service)
    comparison = calculator.compare_deductions(request.income, request.itemized)
    return ApiResponse(data=comparison.model_dump(mode="json"))


# --- TAX RETURN ENDPOINTS ---

@app.get("/api/tax/returns")
async def list_tax_returns(
    user_id: str,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """Get tax returns for a user."""
    returns = service.list_returns_for_user(user_id)
    return ApiResponse(data=[_return_data(r) for r in returns])


@app.post("/api/tax/returns", status_code=201)
async def create_tax_return(
    user_id: str,
    request: TaxReturnCreateRequest,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """Create a new draft tax return."""
    tax_return = service.create_return(user_id, request)
    return ApiResponse(
        message="Tax return created successfully",
        data=_return_data(tax_return)
    )


@app.get("/api/tax/returns/{return_id}")
async def get_tax_return(
    return_id: str,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    tax_return = service.get_return(return_id)
    return ApiResponse(data=_return_data(tax_return))


@app.put("/api/tax/returns/{return_id}")
async def update_tax_return(
    return_id: str,
    request: TaxReturnUpdateRequest,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """Update a draft or rejected tax return."""
    tax_return = service.update_return(return_id, request)
    return ApiResponse(
        message="Tax return updated successfully",
        data=_return_data(tax_return)
    )


@app.delete("/api/tax/returns/{return_id}")
async def delete_tax_return(
    return_id: str,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    service.delete_return(return_id)
    return ApiResponse(message="Tax return deleted")


@app.post("/api/tax/returns/{return_id}/submit")
async def submit_tax_return(
    return_id: str,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    tax_return = service.submit_return(return_id)
    return ApiResponse(
        message="Tax return submitted successfully",
        data=_return_data(tax_return)
    )


# --- ADMIN ENDPOINTS ---

@app.get("/api/admin/tax-returns")
async def admin_list_tax_returns(
    status: Optional[TaxReturnStatus] = None,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """All tax returns, optionally filtered by status."""
    if status == TaxReturnStatus.PENDING:
        returns = service.find_pending()
    elif status is not None:
        returns = service.find_by_status(status)
    else:
        returns = service.list_all()
    return ApiResponse(data=[_return_data(r) for r in returns])


@app.put("/api/admin/tax-returns/{return_id}/review")
async def review_tax_return(
    return_id: str,
    request: ReviewRequest,
    service: TaxReturnService = Depends(get_tax_return_service)
):
    """Move a submitted return through review."""
    if request.action == ReviewAction.START_REVIEW:
        tax_return = service.start_review(return_id, request.reviewer_id)
    elif request.action == ReviewAction.APPROVE:
        tax_return = service.approve_return(return_id, request.reviewer_id, request.comments)
    elif request.action == ReviewAction.REJECT:
        tax_return = service.reject_return(
            return_id, request.reviewer_id, request.reason, request.comments
        )
    else:
        tax_return = service.complete_return(return_id)

    return ApiResponse(
        message=f"Tax return {tax_return.status.value}",
        data=_return_data(tax_return)
    )


@app.get("/api/admin/analytics")
async def get_analytics(service: TaxReturnService = Depends(get_tax_return_service)):
    return ApiResponse(data=service.analytics().model_dump(mode="json"))


# --- ERROR HANDLERS ---

@app.exception_handler(TaxReturnNotFoundError)
async def not_found_handler(request, exc):
    return JSONResponse(
        status_code=404,
        content={"success": False, "message": str(exc)}
    )


@app.exception_handler(DuplicateTaxReturnError)
@app.exception_handler(InvalidStatusTransitionError)
async def conflict_handler(request, exc):
    logger.info(f"Rejected request to {request.url.path}: {exc}")
    return JSONResponse(
        status_code=409,
        content={"success": False, "message": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": "Internal server error",
            "detail": str(exc) if os.getenv("DEBUG") else "An error occurred"
        }
    )


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
