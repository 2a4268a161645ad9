"""
Equity Tax - Data Models
========================
Models for tax brackets, income/deduction inputs, computed totals and the
tax return record.

These models serve as the contract between:
- The filing wizard / API request bodies
- Tax calculation engine
- Tax return persistence
- Admin review screens
"""

import math
import re
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, Iterable, Iterator, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from tax_constants import (
    FilingStatus,
    STANDARD_DEDUCTION_2023,
    MIN_TAX_YEAR,
    FILING_DEADLINE_MONTH,
    FILING_DEADLINE_DAY,
)


SSN_PATTERN = re.compile(r"^(\d{3}-\d{2}-\d{4}|\d{9})$")
ZIP_CODE_PATTERN = r"^\d{5}(-\d{4})?$"


class ConfigurationError(ValueError):
    """Raised when static tax configuration (bracket tables, tax years) is invalid."""


def validate_tax_year(year: int) -> int:
    current_year = date.today().year
    if year < MIN_TAX_YEAR or year > current_year:
        raise ValueError(f"Tax year must be between {MIN_TAX_YEAR} and {current_year}")
    return year


# =============================================================================
# ENUMS
# =============================================================================

class TaxReturnStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class ReturnPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SubmissionMethod(str, Enum):
    WEB = "web"
    MOBILE = "mobile"
    API = "api"


class DeductionType(str, Enum):
    STANDARD = "standard"
    ITEMIZED = "itemized"


class ReviewAction(str, Enum):
    START_REVIEW = "start_review"
    APPROVE = "approve"
    REJECT = "reject"
    COMPLETE = "complete"


# =============================================================================
# TAX BRACKETS
# =============================================================================

@dataclass(frozen=True)
class TaxBracket:
    """One marginal-rate interval: [lower_bound, upper_bound) taxed at rate."""
    lower_bound: float
    upper_bound: float  # float('inf') for the top bracket
    rate: float

    @property
    def width(self) -> float:
        return self.upper_bound - self.lower_bound

    @property
    def is_unbounded(self) -> bool:
        return self.upper_bound == math.inf

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lower_bound": self.lower_bound,
            "upper_bound": None if self.is_unbounded else self.upper_bound,
            "rate": self.rate,
        }


class BracketTable:
    """
    Validated, ordered sequence of TaxBracket for one tax year.

    The brackets must be contiguous: the first starts at 0, each one starts
    where the previous ended, and only the last is unbounded. Anything else
    raises ConfigurationError here, so compute-time code never sees a bad table.
    """

    def __init__(self, brackets: Iterable[TaxBracket], tax_year: Optional[int] = None):
        self.tax_year = tax_year
        self._brackets: Tuple[TaxBracket, ...] = tuple(brackets)
        self._validate()

    @classmethod
    def from_rows(
        cls,
        rows: Iterable[Tuple[float, float, float]],
        tax_year: Optional[int] = None
    ) -> "BracketTable":
        """Build a table from (lower_bound, upper_bound, rate) tuples."""
        return cls(
            (TaxBracket(lower_bound=lower, upper_bound=upper, rate=rate) for lower, upper, rate in rows),
            tax_year=tax_year
        )

    def _validate(self):
        label = f"tax year {self.tax_year}" if self.tax_year is not None else "bracket table"

        if not self._brackets:
            raise ConfigurationError(f"{label}: at least one bracket is required")

        expected_lower = 0.0
        last_index = len(self._brackets) - 1

        for index, bracket in enumerate(self._brackets):
            if not bracket.lower_bound >= 0:
                raise ConfigurationError(f"{label}: bracket {index} has a negative lower bound")
            if not 0 < bracket.rate <= 1:
                raise ConfigurationError(f"{label}: bracket {index} rate {bracket.rate} is outside (0, 1]")
            if not bracket.upper_bound > bracket.lower_bound:
                raise ConfigurationError(
                    f"{label}: bracket {index} upper bound must exceed lower bound {bracket.lower_bound}"
                )
            if bracket.lower_bound != expected_lower:
                raise ConfigurationError(
                    f"{label}: bracket {index} starts at {bracket.lower_bound}, expected {expected_lower}"
                )
            if bracket.is_unbounded and index != last_index:
                raise ConfigurationError(f"{label}: only the last bracket may be unbounded")
            expected_lower = bracket.upper_bound

        if not self._brackets[-1].is_unbounded:
            raise ConfigurationError(f"{label}: the last bracket must be unbounded")

    def __iter__(self) -> Iterator[TaxBracket]:
        return iter(self._brackets)

    def __len__(self) -> int:
        return len(self._brackets)

    def __getitem__(self, index: int) -> TaxBracket:
        return self._brackets[index]

    def __repr__(self) -> str:
        return f"BracketTable(tax_year={self.tax_year}, brackets={len(self._brackets)})"

    def to_list(self) -> List[Dict[str, Any]]:
        return [bracket.to_dict() for bracket in self._brackets]


# =============================================================================
# INCOME AND DEDUCTION INPUTS
# =============================================================================

class IncomeBreakdown(BaseModel):
    """Income by category. All amounts are annual, in dollars."""
    model_config = ConfigDict(allow_inf_nan=False)

    wages: float = Field(default=0.0, ge=0)
    interest: float = Field(default=0.0, ge=0)
    dividends: float = Field(default=0.0, ge=0)
    business: float = Field(default=0.0, ge=0)
    rental: float = Field(default=0.0, ge=0)
    other: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def total(self) -> float:
        return (
            self.wages +
            self.interest +
            self.dividends +
            self.business +
            self.rental +
            self.other
        )


class StandardDeduction(BaseModel):
    """Fixed standard deduction amount."""
    model_config = ConfigDict(allow_inf_nan=False)

    type: Literal["standard"] = "standard"
    amount: float = Field(default=STANDARD_DEDUCTION_2023, ge=0)

    @computed_field
    @property
    def total(self) -> float:
        return self.amount


class ItemizedDeduction(BaseModel):
    """Itemized deductions; the total is the plain sum of the categories."""
    model_config = ConfigDict(allow_inf_nan=False)

    type: Literal["itemized"] = "itemized"
    mortgage_interest: float = Field(default=0.0, ge=0)
    property_tax: float = Field(default=0.0, ge=0)
    charitable: float = Field(default=0.0, ge=0)
    medical: float = Field(default=0.0, ge=0)
    state_tax: float = Field(default=0.0, ge=0)

    @computed_field
    @property
    def total(self) -> float:
        return (
            self.mortgage_interest +
            self.property_tax +
            self.charitable +
            self.medical +
            self.state_tax
        )


DeductionSelection = Annotated[
    Union[StandardDeduction, ItemizedDeduction],
    Field(discriminator="type")
]


# =============================================================================
# TAX CALCULATION RESULTS
# =============================================================================

class TaxComputationResult(BaseModel):
    """Derived totals, recomputed from the inputs on every save or preview."""
    total_income: float = 0.0
    total_deductions: float = 0.0
    taxable_income: float = 0.0
    tax_owed: float = 0.0
    refund_amount: float = 0.0


class TaxBracketBreakdown(BaseModel):
    """Details of tax calculation per bracket."""
    bracket_start: float
    bracket_end: float
    rate: float
    income_in_bracket: float
    tax_in_bracket: float


class TaxEstimate(BaseModel):
    """Preview of a calculation for the filing wizard. Never persisted."""
    tax_year: int
    deduction_type: DeductionType
    result: TaxComputationResult
    bracket_breakdown: List[TaxBracketBreakdown]
    marginal_rate: float
    effective_rate: float
    calculated_at: datetime = Field(default_factory=datetime.utcnow)


class DeductionComparison(BaseModel):
    """Standard vs itemized for the same income."""
    tax_year: int
    standard: TaxComputationResult
    itemized: TaxComputationResult
    recommended: DeductionType
    tax_savings: float = Field(description="Tax saved by the recommended option over the other")


# =============================================================================
# TAX RETURN RECORD
# =============================================================================

class Address(BaseModel):
    street: str = Field(min_length=1)
    city: str = Field(min_length=1)
    state: str = Field(min_length=1)
    zip_code: str = Field(pattern=ZIP_CODE_PATTERN)


class PersonalInfo(BaseModel):
    """Taxpayer details collected in the first wizard step."""
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    ssn: str = Field(exclude=True, description="Never serialized")
    date_of_birth: date
    address: Address
    filing_status: FilingStatus

    @field_validator('first_name', 'last_name', mode='before')
    @classmethod
    def strip_name(cls, v):
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator('ssn')
    @classmethod
    def check_ssn(cls, v: str) -> str:
        v = v.strip()
        if not SSN_PATTERN.match(v):
            raise ValueError("SSN must look like XXX-XX-XXXX")
        return v

    @field_validator('date_of_birth')
    @classmethod
    def check_date_of_birth(cls, v: date) -> date:
        if v > date.today():
            raise ValueError("Date of birth cannot be in the future")
        if v.year < 1900:
            raise ValueError("Date of birth must be after 1900")
        return v

    @computed_field
    @property
    def masked_ssn(self) -> str:
        return f"***-**-{self.ssn[-4:]}"


class TaxReturn(BaseModel):
    """
    One user's return for one tax year.

    `calculations` is only ever written by TaxReturnService.save(), which
    recomputes it from `income` and `deductions` before persisting.
    """

    return_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str = Field(min_length=1)
    tax_year: int

    status: TaxReturnStatus = TaxReturnStatus.DRAFT
    priority: ReturnPriority = ReturnPriority.MEDIUM

    personal_info: PersonalInfo
    income: IncomeBreakdown = Field(default_factory=IncomeBreakdown)
    deductions: DeductionSelection = Field(default_factory=StandardDeduction)
    calculations: TaxComputationResult = Field(default_factory=TaxComputationResult)

    # Review workflow
    submitted_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_comments: Optional[str] = None
    rejection_reason: Optional[str] = None

    due_date: Optional[date] = None
    submission_method: SubmissionMethod = SubmissionMethod.WEB

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('tax_year')
    @classmethod
    def check_tax_year(cls, v: int) -> int:
        return validate_tax_year(v)

    @model_validator(mode='after')
    def default_due_date(self):
        """Returns are due April 15 of the following year unless set explicitly."""
        if self.due_date is None:
            self.due_date = date(self.tax_year + 1, FILING_DEADLINE_MONTH, FILING_DEADLINE_DAY)
        return self

    @computed_field
    @property
    def full_name(self) -> str:
        return f"{self.personal_info.first_name} {self.personal_info.last_name}"

    @computed_field
    @property
    def days_until_due(self) -> int:
        return (self.due_date - date.today()).days

    @computed_field
    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0


class ReturnAnalytics(BaseModel):
    """Admin dashboard summary."""
    total_returns: int
    returns_by_status: Dict[str, int]
    pending_returns: int
    completed_returns: int
    overdue_returns: int
    total_tax_owed: float
    generated_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# API REQUEST/RESPONSE MODELS
# =============================================================================

class TaxEstimateRequest(BaseModel):
    """Live estimate from the filing wizard. Omitted deductions mean standard."""
    tax_year: Optional[int] = None
    income: IncomeBreakdown = Field(default_factory=IncomeBreakdown)
    deductions: Optional[DeductionSelection] = None


class DeductionCompareRequest(BaseModel):
    tax_year: Optional[int] = None
    income: IncomeBreakdown = Field(default_factory=IncomeBreakdown)
    itemized: ItemizedDeduction = Field(default_factory=ItemizedDeduction)


class TaxReturnCreateRequest(BaseModel):
    tax_year: Optional[int] = None
    personal_info: PersonalInfo
    income: IncomeBreakdown = Field(default_factory=IncomeBreakdown)
    deductions: Optional[DeductionSelection] = None
    priority: ReturnPriority = ReturnPriority.MEDIUM
    submission_method: SubmissionMethod = SubmissionMethod.WEB
    due_date: Optional[date] = None

    @field_validator('tax_year')
    @classmethod
    def check_tax_year(cls, v: Optional[int]) -> Optional[int]:
        if v is None:
            return v
        return validate_tax_year(v)


class TaxReturnUpdateRequest(BaseModel):
    """Partial update; fields left as None are unchanged."""
    personal_info: Optional[PersonalInfo] = None
    income: Optional[IncomeBreakdown] = None
    deductions: Optional[DeductionSelection] = None
    priority: Optional[ReturnPriority] = None


class ReviewRequest(BaseModel):
    action: ReviewAction
    reviewer_id: str = Field(min_length=1)
    comments: Optional[str] = None
    reason: Optional[str] = None

    @model_validator(mode='after')
    def require_reason_on_reject(self):
        if self.action == ReviewAction.REJECT and not (self.reason and self.reason.strip()):
            raise ValueError("A rejection reason is required")
        return self


class ApiResponse(BaseModel):
    """Envelope used by every endpoint: {"success": ..., "message": ..., "data": ...}."""
    success: bool = True
    message: Optional[str] = None
    data: Any = None
