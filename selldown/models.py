"""
Payout Data Model

CycleRecord is one loan's snapshot for one monthly cycle: the raw LMS feed
values plus the seller (assigned) share computed from them. Records are
immutable; each pipeline stage builds a new one with dataclasses.replace.
"""

from decimal import Decimal
from datetime import datetime, date
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, Mapping, Optional, Tuple
from enum import Enum

from .amounts import parse_amount, parse_days, to_string, from_string
from .errors import InvalidDealTermsError, MissingLoanIdentifierError, RowError


# Raw amounts apportioned 1:1 into a seller_<name> counterpart
APPORTIONED_FIELDS: Tuple[str, ...] = (
    'opening_pos',
    'closing_pos',
    'total_principal_due',
    'principal_overdue',
    'total_principal_component_paid',
    'principal_overdue_paid',
    'foreclosure_paid',
    'foreclosure_charges_paid',
    'prepayment_paid',
    'prepayment_charges_paid',
    'total_charges_paid',
    'total_paid',
)

# Raw interest amounts; their seller counterparts are computed, not apportioned
INTEREST_FIELDS: Tuple[str, ...] = (
    'total_interest_due',
    'interest_overdue',
    'total_interest_component_paid',
    'interest_overdue_paid',
)

RAW_AMOUNT_FIELDS: Tuple[str, ...] = APPORTIONED_FIELDS + INTEREST_FIELDS
DPD_FIELDS: Tuple[str, ...] = ('opening_dpd', 'closing_dpd')
DATE_FIELDS: Tuple[str, ...] = ('cycle_start_date', 'cycle_end_date')

SELLER_AMOUNT_FIELDS: Tuple[str, ...] = tuple(f'seller_{name}' for name in RAW_AMOUNT_FIELDS)
SELLER_DPD_FIELDS: Tuple[str, ...] = tuple(f'seller_{name}' for name in DPD_FIELDS)


class DiscrepancyType(Enum):
    """Which reference value an opening position was checked against"""
    CURRENT_MONTH = "CURRENT_MONTH"      # baseline loan balance
    PREVIOUS_MONTH = "PREVIOUS_MONTH"    # prior cycle closing balance
    NO_BASELINE = "NO_BASELINE"          # nothing to compare against


class LoanStatus(Enum):
    ACTIVE = "ACTIVE"
    CLOSED = "CLOSED"
    DEFAULTED = "DEFAULTED"
    WRITTEN_OFF = "WRITTEN_OFF"
    FORECLOSED = "FORECLOSED"


class LoanType(Enum):
    PERSONAL = "PERSONAL"
    HOME = "HOME"
    VEHICLE = "VEHICLE"
    BUSINESS = "BUSINESS"
    EDUCATION = "EDUCATION"


class InterestMethod(Enum):
    """Day-count conventions for cycle interest"""
    ACTUAL_365 = "ACTUAL_365"          # Actual days / 365
    ACTUAL_360 = "ACTUAL_360"          # Actual days / 360
    ACTUAL_ACTUAL = "ACTUAL_ACTUAL"    # Actual days / 365 or 366
    ONE_TWELFTH = "ONE_TWELFTH"        # Flat 1/12 of the annual rate


def _parse_date(value: Any, field_name: str, loan_id: Optional[str]) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        raise RowError(loan_id, f"invalid date for {field_name}: {value!r}")


def _parse_flag(value: Any) -> Optional[bool]:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "y")
    return bool(value)


def _camel(name: str) -> str:
    head, *rest = name.split('_')
    return head + ''.join(part.title() for part in rest)


# Extra spellings accepted from feeds, beyond snake_case and camelCase
_ROW_ALIASES: Dict[str, Tuple[str, ...]] = {
    'loan_id': ('lms_lan', 'lmsLan', 'lan', 'LAN'),
    'total_principal_component_paid': ('total_principal_paid', 'totalPrincipalPaid'),
    'total_interest_component_paid': ('total_interest_paid', 'totalInterestPaid'),
    'is_opening_pos_mismatch': ('isOpeningPosMisMatch',),
}


def _lookup(raw: Mapping[str, Any], name: str) -> Any:
    for key in (name, _camel(name)) + _ROW_ALIASES.get(name, ()):
        if key in raw:
            return raw[key]
    return None


@dataclass(frozen=True)
class RawCycleRow:
    """One validated row of the monthly LMS feed"""
    loan_id: str
    amounts: Dict[str, Optional[Decimal]]
    opening_dpd: Optional[int] = None
    closing_dpd: Optional[int] = None
    cycle_start_date: Optional[date] = None
    cycle_end_date: Optional[date] = None
    is_opening_pos_mismatch: Optional[bool] = None

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any], row_number: Optional[int] = None) -> 'RawCycleRow':
        """
        Validate a feed row.

        Raises MissingLoanIdentifierError when the loan id is blank and a
        RowError subclass (carrying the loan id) for any unparseable value.
        """
        loan_id = _lookup(raw, 'loan_id')
        loan_id = str(loan_id).strip() if loan_id is not None else ""
        if not loan_id:
            raise MissingLoanIdentifierError(row_number)

        amounts = {name: parse_amount(_lookup(raw, name), name, loan_id) for name in RAW_AMOUNT_FIELDS}
        mismatch = _lookup(raw, 'is_opening_pos_mismatch')

        return cls(
            loan_id=loan_id,
            amounts=amounts,
            opening_dpd=parse_days(_lookup(raw, 'opening_dpd'), 'opening_dpd', loan_id),
            closing_dpd=parse_days(_lookup(raw, 'closing_dpd'), 'closing_dpd', loan_id),
            cycle_start_date=_parse_date(_lookup(raw, 'cycle_start_date'), 'cycle_start_date', loan_id),
            cycle_end_date=_parse_date(_lookup(raw, 'cycle_end_date'), 'cycle_end_date', loan_id),
            is_opening_pos_mismatch=_parse_flag(mismatch),
        )


@dataclass(frozen=True)
class CycleRecord:
    """One loan's financial snapshot for one monthly cycle"""
    id: str
    loan_id: str
    cycle_batch_id: str
    cycle_year: int
    cycle_month: int
    created_at: datetime
    modified_at: datetime

    # Raw LMS values
    opening_pos: Optional[Decimal] = None
    closing_pos: Optional[Decimal] = None
    total_principal_due: Optional[Decimal] = None
    principal_overdue: Optional[Decimal] = None
    total_principal_component_paid: Optional[Decimal] = None
    principal_overdue_paid: Optional[Decimal] = None
    total_interest_due: Optional[Decimal] = None
    interest_overdue: Optional[Decimal] = None
    total_interest_component_paid: Optional[Decimal] = None
    interest_overdue_paid: Optional[Decimal] = None
    foreclosure_paid: Optional[Decimal] = None
    foreclosure_charges_paid: Optional[Decimal] = None
    prepayment_paid: Optional[Decimal] = None
    prepayment_charges_paid: Optional[Decimal] = None
    total_charges_paid: Optional[Decimal] = None
    total_paid: Optional[Decimal] = None
    opening_dpd: Optional[int] = None
    closing_dpd: Optional[int] = None

    # Seller (assigned) share
    seller_opening_pos: Optional[Decimal] = None
    seller_closing_pos: Optional[Decimal] = None
    seller_total_principal_due: Optional[Decimal] = None
    seller_principal_overdue: Optional[Decimal] = None
    seller_total_principal_component_paid: Optional[Decimal] = None
    seller_principal_overdue_paid: Optional[Decimal] = None
    seller_total_interest_due: Optional[Decimal] = None
    seller_interest_overdue: Optional[Decimal] = None
    seller_total_interest_component_paid: Optional[Decimal] = None
    seller_interest_overdue_paid: Optional[Decimal] = None
    seller_foreclosure_paid: Optional[Decimal] = None
    seller_foreclosure_charges_paid: Optional[Decimal] = None
    seller_prepayment_paid: Optional[Decimal] = None
    seller_prepayment_charges_paid: Optional[Decimal] = None
    seller_total_charges_paid: Optional[Decimal] = None
    seller_total_paid: Optional[Decimal] = None
    seller_opening_dpd: Optional[int] = None
    seller_closing_dpd: Optional[int] = None

    # Cycle window
    cycle_start_date: Optional[date] = None
    cycle_end_date: Optional[date] = None
    last_cycle_end_date: Optional[date] = None

    is_opening_pos_mismatch: bool = False
    deal_status_id: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        """Uniqueness key: (cycle batch, loan)"""
        return self.cycle_batch_id, self.loan_id

    def with_raw_values(self, row: RawCycleRow, **changes: Any) -> 'CycleRecord':
        """
        Copy with every raw field taken from a feed row.

        Seller fields and the deal status are cleared; they belong to the
        previous raw values and are recomputed when the cycle is processed.
        """
        cleared: Dict[str, Any] = {name: None for name in SELLER_AMOUNT_FIELDS + SELLER_DPD_FIELDS}
        cleared['deal_status_id'] = None
        cleared.update(changes)
        return replace(
            self,
            **row.amounts,
            opening_dpd=row.opening_dpd,
            closing_dpd=row.closing_dpd,
            cycle_start_date=row.cycle_start_date,
            cycle_end_date=row.cycle_end_date,
            is_opening_pos_mismatch=bool(row.is_opening_pos_mismatch),
            **cleared
        )

    def with_computed_values(self, computed: 'CycleRecord') -> 'CycleRecord':
        """Copy carrying the seller fields, mismatch flag and deal status of `computed`"""
        names = SELLER_AMOUNT_FIELDS + SELLER_DPD_FIELDS + ('is_opening_pos_mismatch', 'deal_status_id')
        return replace(self, **{name: getattr(computed, name) for name in names})

    @property
    def is_processed(self) -> bool:
        """Seller interest has been computed for this cycle"""
        return self.seller_total_interest_due is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage"""
        result: Dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, Decimal):
                value = to_string(value)
            elif isinstance(value, (date, datetime)):
                value = value.isoformat()
            result[f.name] = value
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CycleRecord':
        """Create instance from a stored dictionary"""
        values: Dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = data[f.name]
            if f.name in ('created_at', 'modified_at'):
                value = datetime.fromisoformat(value)
            elif f.name in RAW_AMOUNT_FIELDS or f.name in SELLER_AMOUNT_FIELDS:
                value = from_string(value)
            elif f.name in DATE_FIELDS or f.name == 'last_cycle_end_date':
                value = date.fromisoformat(value) if value else None
            elif f.name == 'is_opening_pos_mismatch':
                value = bool(value)
            values[f.name] = value
        return cls(**values)


@dataclass(frozen=True)
class BaselineLoanRecord:
    """Static per-loan facts captured at onboarding or modification"""
    loan_id: str
    current_outstanding_principal: Optional[Decimal] = None
    current_assigned_overdue_interest: Optional[Decimal] = None
    status: LoanStatus = LoanStatus.ACTIVE
    loan_type: Optional[LoanType] = None
    deal_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'current_outstanding_principal': to_string(self.current_outstanding_principal),
            'current_assigned_overdue_interest': to_string(self.current_assigned_overdue_interest),
            'status': self.status.value,
            'loan_type': self.loan_type.value if self.loan_type else None,
            'deal_id': self.deal_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BaselineLoanRecord':
        return cls(
            loan_id=data['loan_id'],
            current_outstanding_principal=from_string(data.get('current_outstanding_principal')),
            current_assigned_overdue_interest=from_string(data.get('current_assigned_overdue_interest')),
            status=LoanStatus(data.get('status', LoanStatus.ACTIVE.value)),
            loan_type=LoanType(data['loan_type']) if data.get('loan_type') else None,
            deal_id=data.get('deal_id'),
        )


@dataclass(frozen=True)
class DealTerms:
    """Per-deal constants applied to every loan in the deal for a cycle"""
    deal_id: Optional[str] = None
    assign_ratio: Optional[Decimal] = None          # Share assigned to the purchaser, 0..1
    annual_interest_rate: Optional[Decimal] = None  # Simple annual rate, e.g. 0.24 for 24%
    interest_method: InterestMethod = InterestMethod.ACTUAL_365
    month_on_month_day: Optional[int] = None        # Cycle anchor day, 1..31
    name: Optional[str] = None

    def __post_init__(self):
        for attr in ('assign_ratio', 'annual_interest_rate'):
            value = getattr(self, attr)
            if value is None:
                continue
            if not isinstance(value, Decimal):
                value = Decimal(str(value))
                object.__setattr__(self, attr, value)
            if value < Decimal('0') or value > Decimal('1'):
                raise InvalidDealTermsError(f"{attr} must be between 0 and 1, got {value}")

        if self.month_on_month_day is not None and not 1 <= self.month_on_month_day <= 31:
            raise InvalidDealTermsError("month_on_month_day must be between 1 and 31")

    @property
    def is_complete(self) -> bool:
        """Both ratio and rate are configured"""
        return self.assign_ratio is not None and self.annual_interest_rate is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'deal_id': self.deal_id,
            'assign_ratio': to_string(self.assign_ratio),
            'annual_interest_rate': to_string(self.annual_interest_rate),
            'interest_method': self.interest_method.value,
            'month_on_month_day': self.month_on_month_day,
            'name': self.name,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DealTerms':
        return cls(
            deal_id=data.get('deal_id'),
            assign_ratio=from_string(data.get('assign_ratio')),
            annual_interest_rate=from_string(data.get('annual_interest_rate')),
            interest_method=InterestMethod(data.get('interest_method', InterestMethod.ACTUAL_365.value)),
            month_on_month_day=data.get('month_on_month_day'),
            name=data.get('name'),
        )


@dataclass(frozen=True)
class Discrepancy:
    """Opening position check result for one loan"""
    loan_id: str
    declared_opening_pos: Decimal
    expected_opening_pos: Optional[Decimal]
    difference: Decimal
    discrepancy_type: DiscrepancyType
    description: str
    is_mismatch: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'declared_opening_pos': str(self.declared_opening_pos),
            'expected_opening_pos': to_string(self.expected_opening_pos),
            'difference': str(self.difference),
            'discrepancy_type': self.discrepancy_type.value,
            'description': self.description,
            'is_mismatch': self.is_mismatch,
        }


@dataclass
class RowFailure:
    """A rejected feed row, reported back to the uploader"""
    loan_id: Optional[str]
    reason: str
    row_number: Optional[int] = None

    @classmethod
    def from_error(cls, error: RowError, row_number: Optional[int] = None) -> 'RowFailure':
        return cls(loan_id=error.loan_id, reason=error.reason, row_number=row_number)

    def to_dict(self) -> Dict[str, Any]:
        return {'loan_id': self.loan_id, 'reason': self.reason, 'row_number': self.row_number}
