"""
Tests for payout data model: feed row normalization, deal terms and records
"""

import pytest
from decimal import Decimal
from datetime import date, datetime, timezone

from selldown.errors import InvalidAmountError, InvalidDealTermsError, MissingLoanIdentifierError, RowError
from selldown.models import (
    BaselineLoanRecord, CycleRecord, DealTerms, InterestMethod, LoanStatus, LoanType,
    RawCycleRow, RAW_AMOUNT_FIELDS
)


class TestRawCycleRow:
    """Test feed row validation and key aliases"""

    def test_snake_case_row(self):
        row = RawCycleRow.from_mapping({
            "loan_id": " LAN001 ",
            "opening_pos": "100000",
            "total_interest_component_paid": 500,
            "closing_dpd": 12,
            "cycle_start_date": "2024-01-01",
            "cycle_end_date": date(2024, 1, 31),
        })

        assert row.loan_id == "LAN001"
        assert row.amounts["opening_pos"] == Decimal('100000')
        assert row.amounts["total_interest_component_paid"] == Decimal('500')
        assert row.amounts["closing_pos"] is None
        assert row.closing_dpd == 12
        assert row.cycle_start_date == date(2024, 1, 1)
        assert row.cycle_end_date == date(2024, 1, 31)
        assert set(row.amounts) == set(RAW_AMOUNT_FIELDS)

    def test_camel_case_and_feed_aliases(self):
        """Test camelCase keys and the short paid-field names"""
        row = RawCycleRow.from_mapping({
            "loanId": "LAN002",
            "openingPos": "2500.50",
            "totalPrincipalPaid": "100",
            "totalInterestPaid": "25",
            "foreclosureChargesPaid": "3",
            "openingDpd": "0",
            "cycleEndDate": "2024-02-29T00:00:00",
        })

        assert row.loan_id == "LAN002"
        assert row.amounts["opening_pos"] == Decimal('2500.50')
        assert row.amounts["total_principal_component_paid"] == Decimal('100')
        assert row.amounts["total_interest_component_paid"] == Decimal('25')
        assert row.amounts["foreclosure_charges_paid"] == Decimal('3')
        assert row.opening_dpd == 0
        assert row.cycle_end_date == date(2024, 2, 29)

    def test_lan_alias(self):
        assert RawCycleRow.from_mapping({"lmsLan": "LAN003"}).loan_id == "LAN003"

    def test_missing_loan_id(self):
        with pytest.raises(MissingLoanIdentifierError) as exc_info:
            RawCycleRow.from_mapping({"loan_id": "  ", "opening_pos": "1"}, row_number=4)

        assert exc_info.value.loan_id is None
        assert exc_info.value.row_number == 4

    def test_invalid_amount_reports_loan(self):
        with pytest.raises(InvalidAmountError) as exc_info:
            RawCycleRow.from_mapping({"loan_id": "LAN004", "closing_pos": "n/a"})
        assert exc_info.value.loan_id == "LAN004"

    def test_invalid_date(self):
        with pytest.raises(RowError) as exc_info:
            RawCycleRow.from_mapping({"loan_id": "LAN005", "cycle_start_date": "31/01/2024"})
        assert exc_info.value.loan_id == "LAN005"


class TestDealTerms:
    """Test deal terms validation"""

    def test_valid_terms(self):
        terms = DealTerms(deal_id="D1", assign_ratio=Decimal('0.5'), annual_interest_rate=Decimal('0.24'))

        assert terms.is_complete
        assert terms.interest_method == InterestMethod.ACTUAL_365

    def test_non_decimal_values_converted(self):
        terms = DealTerms(deal_id="D1", assign_ratio="0.9", annual_interest_rate=0.18)
        assert terms.assign_ratio == Decimal('0.9')
        assert terms.annual_interest_rate == Decimal('0.18')

    def test_incomplete_terms(self):
        assert not DealTerms(deal_id="D1", assign_ratio=Decimal('0.5')).is_complete
        assert not DealTerms(deal_id="D1", annual_interest_rate=Decimal('0.1')).is_complete

    def test_out_of_range(self):
        with pytest.raises(InvalidDealTermsError):
            DealTerms(assign_ratio=Decimal('1.01'), annual_interest_rate=Decimal('0.1'))
        with pytest.raises(InvalidDealTermsError):
            DealTerms(assign_ratio=Decimal('0.5'), annual_interest_rate=Decimal('-0.1'))
        with pytest.raises(ValueError):
            DealTerms(month_on_month_day=32)

    def test_dict_conversion(self):
        terms = DealTerms(
            deal_id="D1", assign_ratio=Decimal('0.75'), annual_interest_rate=Decimal('0.12'),
            interest_method=InterestMethod.ONE_TWELFTH, month_on_month_day=5, name="PTC 2024-1"
        )
        assert DealTerms.from_dict(terms.to_dict()) == terms


class TestCycleRecord:
    """Test cycle record storage form"""

    def test_dict_conversion_keeps_types(self):
        now = datetime(2024, 2, 1, 9, 30, tzinfo=timezone.utc)
        record = CycleRecord(
            id="r1", loan_id="LAN001", cycle_batch_id="b1", cycle_year=2024, cycle_month=1,
            created_at=now, modified_at=now,
            opening_pos=Decimal('1000.00'), seller_opening_pos=Decimal('500.00'),
            closing_dpd=3, cycle_start_date=date(2024, 1, 1), last_cycle_end_date=None,
        )

        data = record.to_dict()
        assert data["opening_pos"] == "1000.00"
        assert data["closing_pos"] is None
        assert data["cycle_start_date"] == "2024-01-01"
        assert data["is_opening_pos_mismatch"] is False

        restored = CycleRecord.from_dict(data)
        assert restored == record
        assert restored.key == ("b1", "LAN001")


class TestBaselineLoanRecord:
    def test_dict_conversion(self):
        baseline = BaselineLoanRecord(
            loan_id="LAN001",
            current_outstanding_principal=Decimal('1000.00'),
            current_assigned_overdue_interest=Decimal('25.50'),
            status=LoanStatus.DEFAULTED,
            loan_type=LoanType.VEHICLE,
            deal_id="D1",
        )
        assert BaselineLoanRecord.from_dict(baseline.to_dict()) == baseline
