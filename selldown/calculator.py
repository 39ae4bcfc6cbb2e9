"""
Seller Field Calculator

Computes the seller (assigned) share of one cycle record:

- every principal/charges field is apportioned by the deal's assignment ratio
- cycle interest is simple interest on the seller opening balance for the
  days in the cycle window, using the deal's day-count method
- overdue interest is carried forward from the loan's previous cycle, or
  seeded from the baseline loan record when no previous cycle exists

The calculation is pure: inputs are fetched by the caller and a new record
is returned.
"""

from decimal import Decimal
from datetime import date
from dataclasses import replace
from typing import Dict, Optional
import calendar
import logging

from .amounts import ZERO, apportion, coalesce, non_negative, round2
from .cycles import days_between
from .models import (
    APPORTIONED_FIELDS, BaselineLoanRecord, CycleRecord, DealTerms, InterestMethod
)


logger = logging.getLogger("selldown.calculator")


def _daily_rate(
    method: InterestMethod,
    annual_rate: Decimal,
    cycle_start: Optional[date],
    days_in_year: int
) -> Decimal:
    """Daily rate for the actual-day methods"""
    if method == InterestMethod.ACTUAL_360:
        return annual_rate / Decimal('360')

    elif method == InterestMethod.ACTUAL_ACTUAL:
        leap = cycle_start is not None and calendar.isleap(cycle_start.year)
        return annual_rate / Decimal('366' if leap else '365')

    return annual_rate / Decimal(days_in_year)


def cycle_interest(
    opening: Decimal,
    terms: DealTerms,
    cycle_start: Optional[date],
    cycle_end: Optional[date],
    days_in_year: int = 365
) -> Decimal:
    """
    Simple interest on `opening` for one cycle, rounded to cents.

    Zero when the window is empty or incomplete. ONE_TWELFTH charges a
    flat month of interest regardless of the window length.
    """
    days = days_between(cycle_start, cycle_end)
    if days <= 0:
        return ZERO

    if terms.interest_method == InterestMethod.ONE_TWELFTH:
        return round2(opening * (terms.annual_interest_rate / Decimal('12')))

    daily_rate = _daily_rate(terms.interest_method, terms.annual_interest_rate, cycle_start, days_in_year)
    return round2(opening * daily_rate * days)


def carried_overdue(
    prior_cycle: Optional[CycleRecord],
    baseline: Optional[BaselineLoanRecord]
) -> Decimal:
    """
    Seller overdue interest entering this cycle.

    With a previous cycle it is whatever of that cycle's interest went
    unpaid, floored at zero; for a loan's first cycle it is the baseline's
    assigned overdue interest (zero without a baseline).
    """
    if prior_cycle is not None:
        unpaid = round2(
            coalesce(prior_cycle.seller_total_interest_due)
            - coalesce(prior_cycle.seller_total_interest_component_paid)
        )
        return non_negative(unpaid)

    if baseline is not None:
        return non_negative(round2(baseline.current_assigned_overdue_interest))
    return ZERO


def compute_seller_fields(
    record: CycleRecord,
    deal: Optional[DealTerms],
    baseline: Optional[BaselineLoanRecord] = None,
    prior_cycle: Optional[CycleRecord] = None,
    days_in_year: int = 365
) -> CycleRecord:
    """
    Return a copy of `record` with every seller field populated.

    When the deal or its ratio/rate is missing the record is returned
    unchanged and a warning is logged.
    """
    if deal is None or not deal.is_complete:
        logger.warning(
            "Deal terms missing or incomplete, skipping seller calculation for loan %s (record %s)",
            record.loan_id, record.id
        )
        return record

    ratio = deal.assign_ratio
    seller: Dict[str, object] = {
        f'seller_{name}': apportion(getattr(record, name), ratio) for name in APPORTIONED_FIELDS
    }

    # Days past due are not apportioned
    seller['seller_opening_dpd'] = record.opening_dpd
    seller['seller_closing_dpd'] = record.closing_dpd

    interest_due = cycle_interest(
        seller['seller_opening_pos'], deal,
        record.cycle_start_date, record.cycle_end_date, days_in_year
    )

    # Paid in full when anything was collected on the raw side, not pro-rated
    if coalesce(record.total_interest_component_paid) > ZERO:
        interest_paid = interest_due
    else:
        interest_paid = ZERO

    overdue = carried_overdue(prior_cycle, baseline)
    if overdue > ZERO:
        overdue_paid = non_negative(round2(interest_paid - (interest_due - overdue)))
    else:
        overdue_paid = ZERO

    seller['seller_total_interest_due'] = interest_due
    seller['seller_total_interest_component_paid'] = interest_paid
    seller['seller_interest_overdue'] = overdue
    seller['seller_interest_overdue_paid'] = overdue_paid

    logger.debug(
        "Loan %s: seller opening %s, interest due %s, paid %s, overdue %s, overdue paid %s",
        record.loan_id, seller['seller_opening_pos'], interest_due, interest_paid, overdue, overdue_paid
    )
    return replace(record, **seller)
