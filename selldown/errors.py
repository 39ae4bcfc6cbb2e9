"""Exception hierarchy for the payout engine."""

from typing import Any, Optional


class SelldownError(Exception):
    """Base exception for all payout engine errors."""


class RowError(SelldownError):
    """One malformed feed row. Collected per row, never fatal to a batch."""

    def __init__(self, loan_id: Optional[str], reason: str):
        self.loan_id = loan_id
        self.reason = reason
        super().__init__(f"Row {loan_id or '<missing loan id>'}: {reason}")


class MissingLoanIdentifierError(RowError):
    """Raised when a row carries no loan identifier."""

    def __init__(self, row_number: Optional[int] = None):
        self.row_number = row_number
        reason = "loan identifier is required"
        if row_number is not None:
            reason = f"{reason} (row {row_number})"
        super().__init__(None, reason)


class InvalidAmountError(RowError):
    """Raised when a monetary or DPD value cannot be parsed."""

    def __init__(self, loan_id: Optional[str], field_name: str, value: Any):
        self.field_name = field_name
        self.value = value
        super().__init__(loan_id, f"invalid value for {field_name}: {value!r}")


class MissingBatchContextError(SelldownError, ValueError):
    """Raised when no cycle year/month can be resolved for a batch."""


class InvalidDealTermsError(SelldownError, ValueError):
    """Raised when deal terms are outside their allowed range."""


class CycleNotFoundError(SelldownError):
    """Raised when a requested cycle batch does not exist."""


class PriorCycleNotProcessedError(SelldownError):
    """Raised when a loan's previous cycle has no seller values yet."""

    def __init__(self, loan_id: str, cycle_year: int, cycle_month: int):
        self.loan_id = loan_id
        self.cycle_year = cycle_year
        self.cycle_month = cycle_month
        super().__init__(
            f"Loan {loan_id}: previous cycle {cycle_year}-{cycle_month:02d} has not been processed"
        )
