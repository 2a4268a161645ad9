"""
Equity Tax - Tax Calculator
===========================
Core tax calculation engine.

Everything here is a pure function of its arguments: no I/O, no shared
mutable state. Bracket tables are built once per tax year from
tax_constants and cached.

Callers:
1. TaxReturnService.save() - recomputes stored totals before persisting
2. The estimate endpoint - live preview for the filing wizard
"""

import logging
from decimal import Decimal, ROUND_HALF_UP, localcontext
from functools import lru_cache
from typing import List, Optional, Tuple, Union

from tax_constants import (
    DEFAULT_TAX_YEAR,
    STANDARD_DEDUCTIONS,
    TAX_BRACKETS,
)
from models import (
    BracketTable,
    ConfigurationError,
    DeductionComparison,
    DeductionType,
    IncomeBreakdown,
    ItemizedDeduction,
    StandardDeduction,
    TaxBracketBreakdown,
    TaxComputationResult,
    TaxEstimate,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


# =============================================================================
# CONFIGURATION LOOKUP
# =============================================================================

@lru_cache(maxsize=None)
def load_bracket_table(tax_year: int) -> BracketTable:
    """
    Build the validated bracket table for a tax year.

    Cached, so each year's table is constructed (and validated) once per
    process. Raises ConfigurationError for a year with no configured table.
    """
    if tax_year not in TAX_BRACKETS:
        available = sorted(TAX_BRACKETS)
        raise ConfigurationError(
            f"No bracket table configured for tax year {tax_year}. Available: {available}"
        )
    logger.info(f"Loading bracket table for tax year {tax_year}")
    return BracketTable.from_rows(TAX_BRACKETS[tax_year], tax_year=tax_year)


def get_standard_deduction(tax_year: int) -> float:
    if tax_year not in STANDARD_DEDUCTIONS:
        raise ConfigurationError(f"No standard deduction configured for tax year {tax_year}")
    return STANDARD_DEDUCTIONS[tax_year]


# =============================================================================
# BRACKET MATH
# =============================================================================

def round_currency(amount: float) -> float:
    """
    Round to cents, half away from zero.

    Works on the shortest decimal repr of the float, so 2.675 rounds to 2.68
    rather than following its binary approximation down to 2.67.
    """
    value = Decimal(repr(amount))
    with localcontext() as ctx:
        # quantize needs a digit for every place down to cents
        ctx.prec = max(ctx.prec, value.adjusted() + 3)
        rounded = value.quantize(CENT, rounding=ROUND_HALF_UP)
    # + 0.0 turns -0.0 into 0.0
    return float(rounded) + 0.0


def compute_tax_with_breakdown(
    taxable_income: float,
    brackets: BracketTable
) -> Tuple[float, List[TaxBracketBreakdown]]:
    """Calculate tax with detailed bracket breakdown."""
    if taxable_income <= 0:
        return 0.0, []

    total_tax = 0.0
    breakdown = []
    remaining_income = taxable_income

    for bracket in brackets:
        # The top bracket is unbounded, so its width is inf and it takes the rest
        taxable_in_bracket = min(remaining_income, bracket.width)
        tax_in_bracket = taxable_in_bracket * bracket.rate
        total_tax += tax_in_bracket

        breakdown.append(TaxBracketBreakdown(
            bracket_start=bracket.lower_bound,
            bracket_end=(
                bracket.lower_bound + taxable_in_bracket
                if bracket.is_unbounded else bracket.upper_bound
            ),
            rate=bracket.rate,
            income_in_bracket=round_currency(taxable_in_bracket),
            tax_in_bracket=round_currency(tax_in_bracket)
        ))

        remaining_income -= taxable_in_bracket
        if remaining_income <= 0:
            break

    return round_currency(total_tax), breakdown


def compute_tax(taxable_income: float, brackets: BracketTable) -> float:
    """
    Tax owed on `taxable_income` under progressive `brackets`.

    Returns exactly 0 for zero or negative income. Rounded to cents.
    """
    tax, _ = compute_tax_with_breakdown(taxable_income, brackets)
    return tax


def get_marginal_rate(taxable_income: float, brackets: BracketTable) -> float:
    """Rate applied to the last dollar of income."""
    for bracket in brackets:
        if taxable_income <= bracket.upper_bound:
            return bracket.rate

    return brackets[-1].rate


def get_effective_rate(taxable_income: float, brackets: BracketTable) -> float:
    """Calculate the effective tax rate, as a percentage."""
    if taxable_income <= 0:
        return 0.0

    tax = compute_tax(taxable_income, brackets)
    return round_currency((tax / taxable_income) * 100)


# =============================================================================
# DERIVED TOTALS
# =============================================================================

def resolve_deduction(deductions: Union[StandardDeduction, ItemizedDeduction]) -> float:
    """The standard amount, or the sum of the itemized categories."""
    return deductions.total


def compute_derived_totals(
    income: IncomeBreakdown,
    deductions: Union[StandardDeduction, ItemizedDeduction],
    brackets: BracketTable
) -> TaxComputationResult:
    """
    Aggregate income and deductions into the stored calculation fields.

    Inputs are trusted: the models validated them on construction.
    """
    total_income = round_currency(income.total)
    total_deductions = round_currency(resolve_deduction(deductions))
    taxable_income = round_currency(max(0.0, total_income - total_deductions))
    tax_owed = compute_tax(taxable_income, brackets)

    # No withholding or payments are tracked, so this is always 0 for a
    # non-negative tax_owed. Kept as-is; see DESIGN.md open questions.
    refund_amount = max(0.0, -tax_owed)

    return TaxComputationResult(
        total_income=total_income,
        total_deductions=total_deductions,
        taxable_income=taxable_income,
        tax_owed=tax_owed,
        refund_amount=refund_amount
    )


# =============================================================================
# TAX CALCULATION ENGINE
# =============================================================================

class TaxCalculator:
    """
    Calculator bound to one tax year's bracket table and standard deduction.

    Example:
        calculator = TaxCalculator(2023)
        result = calculator.compute_derived_totals(income, StandardDeduction())
    """

    def __init__(
        self,
        tax_year: int = DEFAULT_TAX_YEAR,
        brackets: Optional[BracketTable] = None,
        standard_deduction: Optional[float] = None
    ):
        self.tax_year = tax_year
        self.brackets = brackets if brackets is not None else load_bracket_table(tax_year)
        if standard_deduction is None:
            standard_deduction = get_standard_deduction(tax_year)
        self.standard_deduction = standard_deduction

    def default_deduction(self) -> StandardDeduction:
        return StandardDeduction(amount=self.standard_deduction)

    def compute_tax(self, taxable_income: float) -> float:
        return compute_tax(taxable_income, self.brackets)

    def compute_tax_with_breakdown(self, taxable_income: float) -> Tuple[float, List[TaxBracketBreakdown]]:
        return compute_tax_with_breakdown(taxable_income, self.brackets)

    def compute_derived_totals(
        self,
        income: IncomeBreakdown,
        deductions: Union[StandardDeduction, ItemizedDeduction, None] = None
    ) -> TaxComputationResult:
        if deductions is None:
            deductions = self.default_deduction()
        return compute_derived_totals(income, deductions, self.brackets)

    def estimate(
        self,
        income: IncomeBreakdown,
        deductions: Union[StandardDeduction, ItemizedDeduction, None] = None
    ) -> TaxEstimate:
        """
        Full preview for the filing wizard: totals, per-bracket breakdown
        and marginal/effective rates.
        """
        if deductions is None:
            deductions = self.default_deduction()

        result = self.compute_derived_totals(income, deductions)
        _, breakdown = self.compute_tax_with_breakdown(result.taxable_income)

        return TaxEstimate(
            tax_year=self.tax_year,
            deduction_type=DeductionType(deductions.type),
            result=result,
            bracket_breakdown=breakdown,
            marginal_rate=get_marginal_rate(result.taxable_income, self.brackets),
            effective_rate=get_effective_rate(result.taxable_income, self.brackets)
        )

    def compare_deductions(
        self,
        income: IncomeBreakdown,
        itemized: ItemizedDeduction
    ) -> DeductionComparison:
        """
        Compute both deduction variants for the same income.

        Itemizing is recommended only when it deducts strictly more than the
        standard amount.
        """
        standard_result = self.compute_derived_totals(income, self.default_deduction())
        itemized_result = self.compute_derived_totals(income, itemized)

        if itemized_result.total_deductions > standard_result.total_deductions:
            recommended = DeductionType.ITEMIZED
        else:
            recommended = DeductionType.STANDARD

        return DeductionComparison(
            tax_year=self.tax_year,
            standard=standard_result,
            itemized=itemized_result,
            recommended=recommended,
            tax_savings=round_currency(abs(standard_result.tax_owed - itemized_result.tax_owed))
        )
