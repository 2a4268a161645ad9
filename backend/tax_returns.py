"""
Equity Tax - Tax Return Service
===============================
Persistence seam and lifecycle for tax returns.

Derived totals are recomputed by an explicit call in TaxReturnService.save()
right before the record is handed to the repository. Nothing else writes
`calculations`.

Status flow:
    draft -> pending -> under_review -> approved -> completed
                 \\            \\
                  +------------+-> rejected -> pending (resubmit)
"""

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional

from tax_constants import DEFAULT_TAX_YEAR
from models import (
    ConfigurationError,
    ReturnAnalytics,
    TaxReturn,
    TaxReturnCreateRequest,
    TaxReturnStatus,
    TaxReturnUpdateRequest,
)
from tax_calculator import TaxCalculator, round_currency

logger = logging.getLogger(__name__)


# Statuses each target status may be entered from
ALLOWED_TRANSITIONS: Dict[TaxReturnStatus, set] = {
    TaxReturnStatus.PENDING: {TaxReturnStatus.DRAFT, TaxReturnStatus.REJECTED},
    TaxReturnStatus.UNDER_REVIEW: {TaxReturnStatus.PENDING},
    TaxReturnStatus.APPROVED: {TaxReturnStatus.PENDING, TaxReturnStatus.UNDER_REVIEW},
    TaxReturnStatus.REJECTED: {TaxReturnStatus.PENDING, TaxReturnStatus.UNDER_REVIEW},
    TaxReturnStatus.COMPLETED: {TaxReturnStatus.APPROVED},
}

EDITABLE_STATUSES = {TaxReturnStatus.DRAFT, TaxReturnStatus.REJECTED}


# =============================================================================
# ERRORS
# =============================================================================

class TaxReturnNotFoundError(LookupError):
    pass


class DuplicateTaxReturnError(ValueError):
    pass


class InvalidStatusTransitionError(ValueError):
    pass


# =============================================================================
# REPOSITORY
# =============================================================================

class TaxReturnRepository(ABC):
    """
    Tax Return Repository Interface.

    Implementations must return copies, so callers can mutate what they get
    back without touching stored state until they call save().
    """

    @abstractmethod
    def get(self, return_id: str) -> Optional[TaxReturn]:
        """Get a tax return by ID."""

    @abstractmethod
    def save(self, tax_return: TaxReturn) -> None:
        """Insert or replace a tax return."""

    @abstractmethod
    def delete(self, return_id: str) -> bool:
        """Delete a tax return. Returns False if it did not exist."""

    @abstractmethod
    def list_by_user(self, user_id: str) -> List[TaxReturn]:
        """All returns owned by a user."""

    @abstractmethod
    def get_by_user_and_year(self, user_id: str, tax_year: int) -> Optional[TaxReturn]:
        """A user's return for one tax year, if any."""

    @abstractmethod
    def list_by_status(self, status: TaxReturnStatus) -> List[TaxReturn]:
        """All returns in a given status."""

    @abstractmethod
    def list_all(self) -> List[TaxReturn]:
        """Every stored return."""


class InMemoryTaxReturnRepository(TaxReturnRepository):
    """Dict-backed repository for local runs and tests. Thread-safe."""

    def __init__(self):
        self._returns: Dict[str, TaxReturn] = {}
        self._lock = threading.Lock()

    def get(self, return_id: str) -> Optional[TaxReturn]:
        with self._lock:
            tax_return = self._returns.get(return_id)
            return tax_return.model_copy(deep=True) if tax_return else None

    def save(self, tax_return: TaxReturn) -> None:
        with self._lock:
            self._returns[tax_return.return_id] = tax_return.model_copy(deep=True)

    def delete(self, return_id: str) -> bool:
        with self._lock:
            return self._returns.pop(return_id, None) is not None

    def list_by_user(self, user_id: str) -> List[TaxReturn]:
        return self._select(lambda r: r.user_id == user_id)

    def get_by_user_and_year(self, user_id: str, tax_year: int) -> Optional[TaxReturn]:
        matches = self._select(lambda r: r.user_id == user_id and r.tax_year == tax_year)
        return matches[0] if matches else None

    def list_by_status(self, status: TaxReturnStatus) -> List[TaxReturn]:
        return self._select(lambda r: r.status == status)

    def list_all(self) -> List[TaxReturn]:
        return self._select(lambda r: True)

    def _select(self, predicate) -> List[TaxReturn]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._returns.values() if predicate(r)]


# =============================================================================
# SERVICE
# =============================================================================

class TaxReturnService:
    """
    Create, edit, submit and review tax returns.

    Example:
        service = TaxReturnService(InMemoryTaxReturnRepository())
        tax_return = service.create_return("user-1", request)
        service.submit_return(tax_return.return_id)
    """

    def __init__(self, repository: TaxReturnRepository, default_tax_year: int = DEFAULT_TAX_YEAR):
        self.repository = repository
        self.default_tax_year = default_tax_year
        self._create_lock = threading.Lock()

    def calculator_for(self, tax_year: int) -> TaxCalculator:
        """
        Calculator for a return's year. Years without a configured table use
        the default year's table.
        """
        try:
            return TaxCalculator(tax_year)
        except ConfigurationError:
            logger.warning(
                f"No bracket table for tax year {tax_year}; using {self.default_tax_year} table"
            )
            return TaxCalculator(self.default_tax_year)

    # --- persistence ---

    def save(self, tax_return: TaxReturn) -> TaxReturn:
        """Recompute derived totals, then persist."""
        calculator = self.calculator_for(tax_return.tax_year)
        tax_return.calculations = calculator.compute_derived_totals(
            tax_return.income,
            tax_return.deductions
        )
        tax_return.updated_at = datetime.utcnow()
        self.repository.save(tax_return)

        logger.info(
            f"[{tax_return.return_id}] Saved ({tax_return.status.value}), "
            f"taxable income {tax_return.calculations.taxable_income:,.2f}, "
            f"tax owed {tax_return.calculations.tax_owed:,.2f}"
        )
        return tax_return

    def create_return(self, user_id: str, request: TaxReturnCreateRequest) -> TaxReturn:
        tax_year = request.tax_year or self.default_tax_year

        with self._create_lock:
            if self.repository.get_by_user_and_year(user_id, tax_year) is not None:
                raise DuplicateTaxReturnError(
                    f"User {user_id} already has a tax return for {tax_year}"
                )

            deductions = request.deductions
            if deductions is None:
                deductions = self.calculator_for(tax_year).default_deduction()

            tax_return = TaxReturn(
                user_id=user_id,
                tax_year=tax_year,
                personal_info=request.personal_info,
                income=request.income,
                deductions=deductions,
                priority=request.priority,
                submission_method=request.submission_method,
                due_date=request.due_date
            )
            logger.info(f"[{tax_return.return_id}] Created {tax_year} return for user {user_id}")
            return self.save(tax_return)

    def update_return(self, return_id: str, request: TaxReturnUpdateRequest) -> TaxReturn:
        tax_return = self.get_return(return_id)

        if tax_return.status not in EDITABLE_STATUSES:
            raise InvalidStatusTransitionError(
                f"Tax return {return_id} cannot be edited while {tax_return.status.value}"
            )

        for field_name in ("personal_info", "income", "deductions", "priority"):
            value = getattr(request, field_name)
            if value is not None:
                setattr(tax_return, field_name, value)

        return self.save(tax_return)

    def delete_return(self, return_id: str) -> None:
        """Drafts only; anything submitted is kept for the audit trail."""
        tax_return = self.get_return(return_id)
        if tax_return.status != TaxReturnStatus.DRAFT:
            raise InvalidStatusTransitionError(
                f"Only draft returns can be deleted; {return_id} is {tax_return.status.value}"
            )
        self.repository.delete(return_id)
        logger.info(f"[{return_id}] Deleted draft return")

    # --- status transitions ---

    def _transition(self, return_id: str, target: TaxReturnStatus, **changes) -> TaxReturn:
        tax_return = self.get_return(return_id)
        current = tax_return.status

        if current not in ALLOWED_TRANSITIONS[target]:
            raise InvalidStatusTransitionError(
                f"Cannot move tax return {return_id} from {current.value} to {target.value}"
            )

        tax_return.status = target
        for field_name, value in changes.items():
            setattr(tax_return, field_name, value)

        logger.info(f"[{return_id}] {current.value} -> {target.value}")
        return self.save(tax_return)

    def submit_return(self, return_id: str) -> TaxReturn:
        return self._transition(
            return_id,
            TaxReturnStatus.PENDING,
            submitted_at=datetime.utcnow()
        )

    def start_review(self, return_id: str, reviewer_id: str) -> TaxReturn:
        return self._transition(
            return_id,
            TaxReturnStatus.UNDER_REVIEW,
            reviewed_by=reviewer_id
        )

    def approve_return(
        self,
        return_id: str,
        reviewer_id: str,
        comments: Optional[str] = None
    ) -> TaxReturn:
        return self._transition(
            return_id,
            TaxReturnStatus.APPROVED,
            reviewed_at=datetime.utcnow(),
            reviewed_by=reviewer_id,
            review_comments=comments
        )

    def reject_return(
        self,
        return_id: str,
        reviewer_id: str,
        reason: str,
        comments: Optional[str] = None
    ) -> TaxReturn:
        if not reason or not reason.strip():
            raise ValueError("A rejection reason is required")

        return self._transition(
            return_id,
            TaxReturnStatus.REJECTED,
            reviewed_at=datetime.utcnow(),
            reviewed_by=reviewer_id,
            rejection_reason=reason.strip(),
            review_comments=comments
        )

    def complete_return(self, return_id: str) -> TaxReturn:
        return self._transition(return_id, TaxReturnStatus.COMPLETED)

    # --- queries ---

    def get_return(self, return_id: str) -> TaxReturn:
        tax_return = self.repository.get(return_id)
        if tax_return is None:
            raise TaxReturnNotFoundError(f"Tax return {return_id} not found")
        return tax_return

    def list_returns_for_user(self, user_id: str) -> List[TaxReturn]:
        """Newest tax year first."""
        returns = self.repository.list_by_user(user_id)
        return sorted(returns, key=lambda r: r.tax_year, reverse=True)

    def find_by_user_and_year(self, user_id: str, tax_year: int) -> Optional[TaxReturn]:
        return self.repository.get_by_user_and_year(user_id, tax_year)

    def find_by_status(self, status: TaxReturnStatus) -> List[TaxReturn]:
        return self.repository.list_by_status(status)

    def find_pending(self) -> List[TaxReturn]:
        """Review queue, oldest submission first."""
        pending = self.repository.list_by_status(TaxReturnStatus.PENDING)
        return sorted(pending, key=lambda r: r.submitted_at or r.created_at)

    def list_all(self) -> List[TaxReturn]:
        return self.repository.list_all()

    def analytics(self) -> ReturnAnalytics:
        """Counts for the admin dashboard."""
        returns = self.repository.list_all()

        by_status = {status.value: 0 for status in TaxReturnStatus}
        for tax_return in returns:
            by_status[tax_return.status.value] += 1

        # Overdue only matters for returns that still have to be (re)submitted
        overdue = sum(
            1 for r in returns
            if r.is_overdue and r.status in EDITABLE_STATUSES
        )

        return ReturnAnalytics(
            total_returns=len(returns),
            returns_by_status=by_status,
            pending_returns=by_status[TaxReturnStatus.PENDING.value],
            completed_returns=by_status[TaxReturnStatus.COMPLETED.value],
            overdue_returns=overdue,
            total_tax_owed=round_currency(sum(r.calculations.tax_owed for r in returns))
        )
