"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from ..models import (
    BaselineLoanRecord, CycleRecord, DealTerms, InterestMethod, LoanStatus, LoanType
)


def _decimal(value: Optional[str]) -> Optional[Decimal]:
    return Decimal(value) if value is not None else None


# LMS feed schemas
class LMSUploadRequest(BaseModel):
    rows: List[Dict[str, Any]] = Field(..., description="LMS feed rows, snake_case or camelCase keys")


class RowErrorModel(BaseModel):
    loan_id: Optional[str] = None
    reason: str
    row_number: Optional[int] = None


class LMSUploadResponse(BaseModel):
    cycle_batch_id: str
    stage: str
    accepted: int
    rejected: int
    duplicates_removed: int
    errors: List[RowErrorModel] = []


# Reference data schemas
class BaselineLoanModel(BaseModel):
    current_outstanding_principal: Optional[str] = None  # Decimal as string
    current_assigned_overdue_interest: Optional[str] = None  # Decimal as string
    status: str = "ACTIVE"
    loan_type: Optional[str] = None
    deal_id: Optional[str] = None

    def to_baseline(self, loan_id: str) -> BaselineLoanRecord:
        return BaselineLoanRecord(
            loan_id=loan_id,
            current_outstanding_principal=_decimal(self.current_outstanding_principal),
            current_assigned_overdue_interest=_decimal(self.current_assigned_overdue_interest),
            status=LoanStatus[self.status],
            loan_type=LoanType[self.loan_type] if self.loan_type else None,
            deal_id=self.deal_id,
        )


class DealTermsModel(BaseModel):
    assign_ratio: Optional[str] = None  # Decimal as string, 0..1
    annual_interest_rate: Optional[str] = None  # Decimal as string, 0..1
    interest_method: str = "ACTUAL_365"
    month_on_month_day: Optional[int] = None
    name: Optional[str] = None

    def to_terms(self, deal_id: str) -> DealTerms:
        return DealTerms(
            deal_id=deal_id,
            assign_ratio=_decimal(self.assign_ratio),
            annual_interest_rate=_decimal(self.annual_interest_rate),
            interest_method=InterestMethod[self.interest_method],
            month_on_month_day=self.month_on_month_day,
            name=self.name,
        )


def record_to_response(record: CycleRecord) -> Dict[str, Any]:
    """Stored form of a record; amounts stay Decimal strings"""
    return record.to_dict()
