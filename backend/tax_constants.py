"""
Equity Tax - Tax Constants
==========================
Hardcoded federal tax reference data, keyed by tax year.

These rows are the ONLY source of truth for bracket math. They are turned
into validated BracketTable objects by tax_calculator.load_bracket_table().

Last Updated: 2023 Tax Year (single, filing-status-agnostic table)
"""

from enum import Enum
from typing import Dict, List, Tuple


# =============================================================================
# FILING STATUS ENUM
# =============================================================================

class FilingStatus(str, Enum):
    SINGLE = "single"
    MARRIED_FILING_JOINTLY = "married_filing_jointly"
    MARRIED_FILING_SEPARATELY = "married_filing_separately"
    HEAD_OF_HOUSEHOLD = "head_of_household"
    QUALIFYING_WIDOW = "qualifying_widow"


# =============================================================================
# FEDERAL TAX BRACKETS
# Format: List of (lower_bound, upper_bound, marginal_rate) tuples
# The last tuple uses float('inf') for unlimited income
# =============================================================================

TAX_BRACKETS_2023: List[Tuple[float, float, float]] = [
    (0, 11000, 0.10),           # 10% on first $11,000
    (11000, 44725, 0.12),       # 12% on $11,000 to $44,725
    (44725, 95375, 0.22),       # 22% on $44,725 to $95,375
    (95375, 182050, 0.24),      # 24% on $95,375 to $182,050
    (182050, 231250, 0.32),     # 32% on $182,050 to $231,250
    (231250, 578125, 0.35),     # 35% on $231,250 to $578,125
    (578125, float('inf'), 0.37)  # 37% on over $578,125
]

# One table per tax year. Filing status is collected but does not select a table.
TAX_BRACKETS: Dict[int, List[Tuple[float, float, float]]] = {
    2023: TAX_BRACKETS_2023,
}


# =============================================================================
# STANDARD DEDUCTIONS
# =============================================================================

STANDARD_DEDUCTION_2023 = 13850

STANDARD_DEDUCTIONS: Dict[int, float] = {
    2023: STANDARD_DEDUCTION_2023,
}

DEFAULT_TAX_YEAR = 2023

# Earliest tax year the filing system accepts
MIN_TAX_YEAR = 2020


# =============================================================================
# INCOME AND DEDUCTION CATEGORIES
# =============================================================================

INCOME_CATEGORIES = (
    "wages",
    "interest",
    "dividends",
    "business",
    "rental",
    "other",
)

ITEMIZED_DEDUCTION_CATEGORIES = (
    "mortgage_interest",
    "property_tax",
    "charitable",
    "medical",
    "state_tax",
)


# =============================================================================
# FILING DEADLINE
# =============================================================================

# Returns are due April 15 of the year following the tax year
FILING_DEADLINE_MONTH = 4
FILING_DEADLINE_DAY = 15


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_tax_bracket_info(tax_year: int = DEFAULT_TAX_YEAR) -> str:
    """
    Return a formatted string of the tax brackets for the given year.
    """
    brackets = TAX_BRACKETS[tax_year]
    lines = [f"{tax_year} Federal Tax Brackets:"]

    for lower, upper, rate in brackets:
        if upper == float('inf'):
            lines.append(f"  Over ${lower:,}: {rate*100:.0f}%")
        else:
            lines.append(f"  ${lower:,} to ${upper:,}: {rate*100:.0f}%")

    lines.append(f"Standard deduction: ${STANDARD_DEDUCTIONS[tax_year]:,}")
    return "\n".join(lines)
