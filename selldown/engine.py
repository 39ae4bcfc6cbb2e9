"""
Payout Engine

Runs a cycle batch through the payout pipeline:

    feed rows -> ingestion/upsert -> seller field calculation -> reconciliation -> persist

Calculation fans out across loans on a worker pool; each worker fetches its
loan's prior cycle up front and runs the pure calculator. Reconciliation and
persistence then run over the whole batch. A loan that fails is reported in
the summary and never aborts the rest of the batch.
"""

from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging

from .calculator import compute_seller_fields
from .config import SelldownConfig, get_config
from .cycles import CycleStatusManager, DealStage, FeedType, LMSStage, previous_cycle, validate_cycle
from .deals import DealTermsProvider
from .errors import CycleNotFoundError, PriorCycleNotProcessedError
from .ingestion import CycleIngestionCoordinator, IngestionResult
from .logging_config import log_action
from .models import BaselineLoanRecord, CycleRecord, DealTerms, Discrepancy
from .reconciler import OpeningPositionReconciler
from .repository import BaselineLoanRepository, CycleRecordRepository
from .storage import KeyedLock, StorageInterface, create_storage


logger = logging.getLogger("selldown.engine")


@dataclass
class BatchSummary:
    """Outcome of processing one cycle batch"""
    cycle_year: int
    cycle_month: int
    deal_id: Optional[str] = None
    processed: int = 0
    skipped: int = 0
    failed_loan_ids: List[str] = field(default_factory=list)
    discrepancies: List[Discrepancy] = field(default_factory=list)
    records: List[CycleRecord] = field(default_factory=list)

    @property
    def discrepancy_count(self) -> int:
        """Real opening position mismatches (NO_BASELINE notices excluded)"""
        return sum(1 for d in self.discrepancies if d.is_mismatch)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'cycle_year': self.cycle_year,
            'cycle_month': self.cycle_month,
            'deal_id': self.deal_id,
            'processed': self.processed,
            'skipped': self.skipped,
            'failed': len(self.failed_loan_ids),
            'failed_loan_ids': list(self.failed_loan_ids),
            'discrepancy_count': self.discrepancy_count,
            'discrepancies': [d.to_dict() for d in self.discrepancies],
        }


class PayoutEngine:
    """Wires the store, provider, calculator and reconciler together"""

    def __init__(
        self,
        storage: StorageInterface,
        max_workers: int = 8,
        days_in_year: int = 365,
        default_month_on_month_day: Optional[int] = None
    ):
        self.storage = storage
        self.max_workers = max_workers
        self.days_in_year = days_in_year

        self.locks = KeyedLock()
        self.records = CycleRecordRepository(storage)
        self.baselines = BaselineLoanRepository(storage)
        self.deals = DealTermsProvider(storage)
        self.statuses = CycleStatusManager(storage)
        self.reconciler = OpeningPositionReconciler(self.records)
        self.ingestion = CycleIngestionCoordinator(
            storage, self.records, self.statuses, self.baselines, self.deals,
            default_month_on_month_day=default_month_on_month_day,
            locks=self.locks,
        )

    @classmethod
    def from_config(cls, config: Optional[SelldownConfig] = None) -> 'PayoutEngine':
        config = config or get_config()
        return cls(
            create_storage(config.database_url),
            max_workers=config.max_workers,
            days_in_year=config.days_in_year,
            default_month_on_month_day=config.default_month_on_month_day,
        )

    def ingest(self, cycle_year: Optional[int], cycle_month: Optional[int],
               rows: Iterable[Mapping[str, Any]]) -> IngestionResult:
        """Load a month's LMS feed rows"""
        result = self.ingestion.ingest(cycle_year, cycle_month, rows)
        log_action(
            logger, "info", "LMS feed ingested",
            action="ingest", resource=result.status.id,
            extra={'accepted': result.accepted, 'rejected': result.rejected,
                   'duplicates_removed': result.duplicates_removed}
        )
        return result

    def records_for_cycle(self, cycle_year: int, cycle_month: int) -> List[CycleRecord]:
        year, month = validate_cycle(cycle_year, cycle_month)
        return self.records.records_for_cycle(year, month)

    def delete_cycle(self, cycle_year: int, cycle_month: int) -> int:
        """Remove a cycle batch's records; its status is kept"""
        status = self._lms_status(cycle_year, cycle_month)
        removed = self.records.delete_batch(status.id)
        logger.info("Deleted %d records from batch %s", removed, status.id)
        return removed

    def process(self, cycle_year: int, cycle_month: int, deal_id: Optional[str] = None) -> BatchSummary:
        """
        Calculate, reconcile and persist a cycle batch.

        With `deal_id` only loans whose baseline belongs to that deal are
        processed. Raises CycleNotFoundError when the cycle was never ingested.
        """
        status = self._lms_status(cycle_year, cycle_month)
        year, month = status.year, status.month
        summary = BatchSummary(cycle_year=year, cycle_month=month, deal_id=deal_id)

        records = self.records.records_for_batch(status.id)
        baselines = self.baselines.get_many(r.loan_id for r in records)
        if deal_id is not None:
            records = [
                r for r in records
                if r.loan_id in baselines and baselines[r.loan_id].deal_id == deal_id
            ]

        terms = self.deals.snapshot(b.deal_id for b in baselines.values())
        logger.info("Processing %d records for %d-%02d (deal %s)", len(records), year, month, deal_id or "*")

        computed: List[CycleRecord] = []
        uncalculated = set()
        prior_cycles: Dict[str, Optional[CycleRecord]] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self._compute, record, baselines.get(record.loan_id), terms, year, month): record
                for record in records
            }
            for future in as_completed(futures):
                record = futures[future]
                try:
                    result, prior, calculated = future.result()
                except PriorCycleNotProcessedError as e:
                    logger.warning("Skipping calculation: %s", e)
                    summary.failed_loan_ids.append(record.loan_id)
                    continue
                except Exception:
                    logger.exception("Seller calculation failed for loan %s", record.loan_id)
                    summary.failed_loan_ids.append(record.loan_id)
                    continue
                computed.append(result)
                prior_cycles[record.loan_id] = prior
                if not calculated:
                    uncalculated.add(record.loan_id)

        # Keep batch order regardless of completion order
        position = {record.id: index for index, record in enumerate(records)}
        computed.sort(key=lambda r: position[r.id])

        reconciliation = self.reconciler.reconcile(computed, baselines, year, month, prior_cycles)
        summary.discrepancies = reconciliation.discrepancies

        deal_status_ids = self._deal_statuses(reconciliation.records, baselines, year, month)
        for record in reconciliation.records:
            loan_deal = baselines[record.loan_id].deal_id if record.loan_id in baselines else None
            if loan_deal in deal_status_ids:
                record = replace(record, deal_status_id=deal_status_ids[loan_deal])
            try:
                stored = self._persist(status.id, record)
            except Exception:
                logger.exception("Failed to persist payout record for loan %s", record.loan_id)
                summary.failed_loan_ids.append(record.loan_id)
                continue
            if stored is None:
                summary.failed_loan_ids.append(record.loan_id)
                continue
            summary.records.append(stored)

        summary.skipped = sum(1 for r in summary.records if r.loan_id in uncalculated)
        summary.processed = len(summary.records) - summary.skipped
        self.statuses.advance(status, LMSStage.LMS_PROCESSED)

        log_action(
            logger, "info",
            f"Processed {year}-{month:02d}: {summary.processed} processed, {summary.skipped} skipped, "
            f"{summary.discrepancy_count} discrepancies, {len(summary.failed_loan_ids)} failed",
            action="process", resource=status.id,
            extra={k: v for k, v in summary.to_dict().items() if k != 'discrepancies'}
        )
        return summary

    def _compute(
        self,
        record: CycleRecord,
        baseline: Optional[BaselineLoanRecord],
        terms: Mapping[str, DealTerms],
        year: int,
        month: int
    ) -> Tuple[CycleRecord, Optional[CycleRecord], bool]:
        """One loan's calculation; returns (record, prior cycle, calculated?)"""
        deal = terms.get(baseline.deal_id) if baseline and baseline.deal_id else None
        calculated = deal is not None and deal.is_complete
        prior = self.reconciler.find_prior_cycle(record.loan_id, year, month)
        if calculated and prior is not None and not prior.is_processed:
            raise PriorCycleNotProcessedError(record.loan_id, *previous_cycle(year, month))
        result = compute_seller_fields(record, deal, baseline, prior, self.days_in_year)
        return result, prior, calculated

    def _persist(self, batch_id: str, computed: CycleRecord) -> Optional[CycleRecord]:
        """
        Write a computed record's seller values onto the stored record.

        Returns None, leaving the store untouched, when the record was
        re-uploaded or removed after this run read it.
        """
        with self.locks.hold((batch_id, computed.loan_id)), self.storage.atomic():
            current = self.records.get(computed.id)
            if current is None or current.modified_at != computed.modified_at:
                logger.warning(
                    "Loan %s changed in batch %s while processing; payout values not saved",
                    computed.loan_id, batch_id
                )
                return None
            return self.records.save(current.with_computed_values(computed))

    def _deal_statuses(
        self,
        records: List[CycleRecord],
        baselines: Mapping[str, BaselineLoanRecord],
        year: int,
        month: int
    ) -> Dict[str, str]:
        """Create (or reuse) the PAYOUT_FILE_CREATED status of each deal in the batch"""
        deal_ids = {
            baselines[r.loan_id].deal_id for r in records
            if r.loan_id in baselines and baselines[r.loan_id].deal_id
        }
        status_ids = {}
        for deal_id in sorted(deal_ids):
            status = self.statuses.resolve_or_create(FeedType.DEAL_PROCESSING, year, month, deal_id)
            status = self.statuses.advance(status, DealStage.PAYOUT_FILE_CREATED)
            status_ids[deal_id] = status.id
        return status_ids

    def _lms_status(self, cycle_year: int, cycle_month: int):
        year, month = validate_cycle(cycle_year, cycle_month)
        status = self.statuses.find(FeedType.LMS, year, month)
        if status is None:
            raise CycleNotFoundError(f"No LMS upload found for {year}-{month:02d}")
        return status
