"""
Integration tests for the payout engine

Runs feed rows through ingestion, seller calculation, reconciliation and
persistence, including month-to-month overdue chaining.
"""

import pytest
from decimal import Decimal
from datetime import date

from selldown.cycles import DealStage, FeedType, LMSStage
from selldown.engine import BatchSummary, PayoutEngine
from selldown.errors import CycleNotFoundError
from selldown.models import BaselineLoanRecord, DealTerms, DiscrepancyType
from selldown.storage import InMemoryStorage


@pytest.fixture
def engine():
    engine = PayoutEngine(InMemoryStorage(), max_workers=4)
    engine.deals.register(DealTerms(
        deal_id="D1", assign_ratio=Decimal('0.5'), annual_interest_rate=Decimal('0.24')
    ))
    engine.baselines.save(BaselineLoanRecord(
        loan_id="LAN001",
        current_outstanding_principal=Decimal('100000'),
        current_assigned_overdue_interest=Decimal('25.50'),
        deal_id="D1",
    ))
    return engine


def january(loan_id="LAN001", **overrides):
    row = {
        "loanId": loan_id,
        "openingPos": "100000",
        "closingPos": "95000",
        "totalInterestPaid": "500",
        "cycleStartDate": "2024-01-01",
        "cycleEndDate": "2024-01-31",
    }
    row.update(overrides)
    return row


class TestEndToEnd:
    """Test a full cycle through the pipeline"""

    def test_single_cycle(self, engine):
        engine.ingest(2024, 1, [january()])

        summary = engine.process(2024, 1)

        assert isinstance(summary, BatchSummary)
        assert summary.processed == 1
        assert summary.skipped == 0
        assert summary.failed_loan_ids == []
        assert summary.discrepancy_count == 0

        stored = engine.records.records_for_cycle(2024, 1)[0]
        assert stored.seller_opening_pos == Decimal('50000.00')
        assert stored.seller_closing_pos == Decimal('47500.00')
        assert stored.seller_total_interest_due == Decimal('986.30')
        assert stored.seller_total_interest_component_paid == Decimal('986.30')
        assert stored.seller_interest_overdue == Decimal('25.50')
        assert stored.seller_interest_overdue_paid == Decimal('25.50')
        assert stored.is_opening_pos_mismatch is False

    def test_status_transitions(self, engine):
        engine.ingest(2024, 1, [january()])

        engine.process(2024, 1)

        assert engine.statuses.find(FeedType.LMS, 2024, 1).stage == LMSStage.LMS_PROCESSED
        deal_status = engine.statuses.find(FeedType.DEAL_PROCESSING, 2024, 1, "D1")
        assert deal_status.stage == DealStage.PAYOUT_FILE_CREATED
        assert engine.records.records_for_cycle(2024, 1)[0].deal_status_id == deal_status.id

    def test_reprocessing_is_stable(self, engine):
        engine.ingest(2024, 1, [january()])
        first = engine.process(2024, 1).records[0]
        second = engine.process(2024, 1).records[0]

        assert second.seller_total_interest_due == first.seller_total_interest_due
        assert second.deal_status_id == first.deal_status_id
        assert len(engine.records.records_for_cycle(2024, 1)) == 1


class TestOverdueChaining:
    """Test that each cycle's overdue derives from the previous one"""

    def test_unpaid_interest_carries_into_next_cycle(self, engine):
        engine.ingest(2024, 1, [january(totalInterestPaid="0")])
        engine.process(2024, 1)

        engine.ingest(2024, 2, [{
            "loanId": "LAN001",
            "openingPos": "95000",
            "closingPos": "90000",
            "totalInterestPaid": "0",
            "cycleStartDate": "2024-01-31",
            "cycleEndDate": "2024-02-29",
        }])
        summary = engine.process(2024, 2)

        february = summary.records[0]
        # January: 986.30 due, nothing paid
        assert february.seller_interest_overdue == Decimal('986.30')
        assert february.last_cycle_end_date == date(2024, 1, 31)
        assert summary.discrepancy_count == 0

    def test_unprocessed_previous_cycle_fails_loan(self, engine):
        """Test that a cycle is not computed on top of an unprocessed previous cycle"""
        engine.ingest(2024, 1, [january(totalInterestPaid="0")])
        engine.ingest(2024, 2, [january(
            openingPos="95000", totalInterestPaid="0",
            cycleStartDate="2024-01-31", cycleEndDate="2024-02-29"
        )])

        summary = engine.process(2024, 2)

        assert summary.failed_loan_ids == ["LAN001"]
        assert summary.processed == 0
        assert summary.records == []
        assert engine.records.records_for_cycle(2024, 2)[0].seller_interest_overdue is None

        engine.process(2024, 1)
        february = engine.process(2024, 2).records[0]
        assert february.seller_interest_overdue == Decimal('986.30')

    def test_opening_checked_against_previous_closing(self, engine):
        engine.ingest(2024, 1, [january(closingPos="95000")])
        engine.process(2024, 1)
        engine.ingest(2024, 2, [january(openingPos="96000", cycleStartDate="2024-01-31", cycleEndDate="2024-02-29")])

        summary = engine.process(2024, 2)

        assert summary.discrepancy_count == 1
        discrepancy = summary.discrepancies[0]
        assert discrepancy.discrepancy_type == DiscrepancyType.PREVIOUS_MONTH
        assert discrepancy.difference == Decimal('1000')
        assert engine.records.records_for_cycle(2024, 2)[0].is_opening_pos_mismatch is True


class TestPartialBatches:
    """Test soft skips, deal filtering and failure isolation"""

    def test_missing_deal_terms_skipped(self, engine):
        engine.baselines.save(BaselineLoanRecord(
            loan_id="LAN002", current_outstanding_principal=Decimal('100000'), deal_id="UNKNOWN"
        ))
        engine.ingest(2024, 1, [january("LAN001"), january("LAN002")])

        summary = engine.process(2024, 1)

        assert summary.processed == 1
        assert summary.skipped == 1
        skipped = engine.records.find_by_key(summary.records[0].cycle_batch_id, "LAN002")[0]
        assert skipped.seller_opening_pos is None

    def test_no_baseline_reported_but_not_counted(self, engine):
        engine.ingest(2024, 1, [january("LAN009")])

        summary = engine.process(2024, 1)

        assert summary.skipped == 1
        assert summary.discrepancy_count == 0
        assert summary.discrepancies[0].discrepancy_type == DiscrepancyType.NO_BASELINE

    def test_mismatch_counted(self, engine):
        engine.ingest(2024, 1, [january(openingPos="99990")])

        summary = engine.process(2024, 1)

        assert summary.discrepancy_count == 1
        assert summary.discrepancies[0].difference == Decimal('-10')

    def test_deal_filter(self, engine):
        engine.deals.register(DealTerms(
            deal_id="D2", assign_ratio=Decimal('0.8'), annual_interest_rate=Decimal('0.12')
        ))
        engine.baselines.save(BaselineLoanRecord(
            loan_id="LAN002", current_outstanding_principal=Decimal('100000'), deal_id="D2"
        ))
        engine.ingest(2024, 1, [january("LAN001"), january("LAN002")])

        summary = engine.process(2024, 1, deal_id="D2")

        assert [r.loan_id for r in summary.records] == ["LAN002"]
        assert summary.records[0].seller_opening_pos == Decimal('80000.00')
        assert engine.statuses.find(FeedType.DEAL_PROCESSING, 2024, 1, "D1") is None
        untouched = engine.records.find_by_key(summary.records[0].cycle_batch_id, "LAN001")[0]
        assert untouched.seller_opening_pos is None

    def test_failing_loan_isolated(self, engine):
        """Test that one loan's failure does not stop the batch"""

        class FlakyEngine(PayoutEngine):
            def _compute(self, record, baseline, terms, year, month):
                if record.loan_id == "LAN002":
                    raise RuntimeError("calculation failed")
                return super()._compute(record, baseline, terms, year, month)

        flaky = FlakyEngine(InMemoryStorage())
        flaky.deals.register(DealTerms(deal_id="D1", assign_ratio=Decimal('0.5'), annual_interest_rate=Decimal('0.24')))
        for loan_id in ("LAN001", "LAN002", "LAN003"):
            flaky.baselines.save(BaselineLoanRecord(
                loan_id=loan_id, current_outstanding_principal=Decimal('100000'), deal_id="D1"
            ))
        flaky.ingest(2024, 1, [january("LAN001"), january("LAN002"), january("LAN003")])

        summary = flaky.process(2024, 1)

        assert summary.failed_loan_ids == ["LAN002"]
        assert [r.loan_id for r in summary.records] == ["LAN001", "LAN003"]
        assert summary.processed == 2
        assert summary.to_dict()["failed"] == 1


class TestConcurrentReupload:
    """Test that processing never writes back raw values it read before a re-upload"""

    def test_reupload_during_processing_is_kept(self, engine, monkeypatch):
        engine.ingest(2024, 1, [january()])
        deal_statuses = engine._deal_statuses

        def reupload_then_stamp(records, baselines, year, month):
            engine.ingest(2024, 1, [january(openingPos="200000")])
            return deal_statuses(records, baselines, year, month)

        monkeypatch.setattr(engine, "_deal_statuses", reupload_then_stamp)

        summary = engine.process(2024, 1)

        assert summary.failed_loan_ids == ["LAN001"]
        assert summary.records == []
        stored = engine.records.records_for_cycle(2024, 1)[0]
        assert stored.opening_pos == Decimal('200000')
        assert stored.seller_opening_pos is None

    def test_persist_keeps_stored_raw_fields(self, engine):
        engine.ingest(2024, 1, [january()])

        record = engine.process(2024, 1).records[0]
        stored = engine.records.get(record.id)

        assert stored == record
        assert stored.opening_pos == Decimal('100000')
        assert stored.seller_opening_pos == Decimal('50000.00')


class TestCycleQueries:
    def test_process_unknown_cycle(self, engine):
        with pytest.raises(CycleNotFoundError):
            engine.process(2030, 1)

    def test_delete_cycle(self, engine):
        engine.ingest(2024, 1, [january("LAN001"), january("LAN002")])
        engine.ingest(2024, 2, [january("LAN001")])

        assert engine.delete_cycle(2024, 1) == 2
        assert engine.records_for_cycle(2024, 1) == []
        assert len(engine.records_for_cycle(2024, 2)) == 1
        assert engine.statuses.find(FeedType.LMS, 2024, 1) is not None

    def test_delete_unknown_cycle(self, engine):
        with pytest.raises(CycleNotFoundError):
            engine.delete_cycle(2024, 7)
