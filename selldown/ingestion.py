"""
Cycle Ingestion/Upsert Coordinator

Loads one month of LMS feed rows into the cycle record store:

1. resolve (or create) the LMS status for the cycle and mark it uploaded
2. validate each row; a bad row, or one the store rejects, is reported and
   skipped, never fatal
3. upsert each row under its (cycle batch, loan) key, collapsing any
   duplicates left behind by earlier runs to the earliest-inserted record

Each key is upserted inside one atomic unit of work under a per-key lock,
so concurrent or retried uploads cannot create duplicate keys.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
import logging
import uuid

from .cycles import (
    CycleStatusManager, FeedType, LMSStage, MonthlyCycleStatus, cycle_window, validate_cycle
)
from .deals import DealTermsProvider
from .errors import RowError
from .models import CycleRecord, RawCycleRow, RowFailure
from .repository import BaselineLoanRepository, CycleRecordRepository
from .storage import KeyedLock, StorageInterface


logger = logging.getLogger("selldown.ingestion")


@dataclass
class IngestionResult:
    """Outcome of loading one feed batch"""
    status: MonthlyCycleStatus
    records: List[CycleRecord] = field(default_factory=list)
    errors: List[RowFailure] = field(default_factory=list)
    duplicates_removed: int = 0

    @property
    def accepted(self) -> int:
        return len(self.records)

    @property
    def rejected(self) -> int:
        return len(self.errors)


class CycleIngestionCoordinator:
    """Normalizes feed rows and upserts them as CycleRecords"""

    def __init__(
        self,
        storage: StorageInterface,
        records: CycleRecordRepository,
        statuses: CycleStatusManager,
        baselines: BaselineLoanRepository,
        deals: DealTermsProvider,
        default_month_on_month_day: Optional[int] = None,
        locks: Optional[KeyedLock] = None
    ):
        self.storage = storage
        self.records = records
        self.statuses = statuses
        self.baselines = baselines
        self.deals = deals
        self.default_month_on_month_day = default_month_on_month_day
        self.locks = locks or KeyedLock()

    def ingest(
        self,
        cycle_year: Optional[int],
        cycle_month: Optional[int],
        rows: Iterable[Mapping[str, Any]]
    ) -> IngestionResult:
        """
        Ingest a month's feed rows.

        Raises MissingBatchContextError when the cycle year/month is absent
        or invalid. Row-level problems are returned in `errors`.
        """
        year, month = validate_cycle(cycle_year, cycle_month)

        status = self.statuses.resolve_or_create(FeedType.LMS, year, month)
        status = self.statuses.advance(status, LMSStage.LMS_UPLOADED)

        result = IngestionResult(status=status)
        anchors: Dict[str, Optional[int]] = {}
        stored: Dict[str, CycleRecord] = {}
        logger.info("Ingesting LMS feed for %d-%02d into batch %s", year, month, status.id)

        for row_number, raw in enumerate(rows, start=1):
            try:
                row = RawCycleRow.from_mapping(raw, row_number)
            except RowError as e:
                logger.warning("Rejected row %d: %s", row_number, e)
                result.errors.append(RowFailure.from_error(e, row_number))
                continue

            try:
                row = self._fill_cycle_window(row, year, month, anchors)
                record, removed = self.upsert(status, row)
            except Exception as e:
                logger.exception("Failed to store row %d for loan %s", row_number, row.loan_id)
                result.errors.append(RowFailure(row.loan_id, f"failed to store record: {e}", row_number))
                continue

            # A loan repeated within one feed is one stored record
            stored[record.loan_id] = record
            result.duplicates_removed += removed

        result.records = list(stored.values())

        logger.info(
            "Ingested %d rows for %d-%02d (%d rejected, %d duplicates collapsed)",
            result.accepted, year, month, result.rejected, result.duplicates_removed
        )
        return result

    def upsert(self, status: MonthlyCycleStatus, row: RawCycleRow) -> Tuple[CycleRecord, int]:
        """
        Insert or update the record for (status, row.loan_id).

        Returns the stored record and how many duplicate records were removed.
        """
        with self.locks.hold((status.id, row.loan_id)), self.storage.atomic():
            previous = self.records.latest_for_loan(row.loan_id, exclude_batch_id=status.id)
            last_cycle_end_date = previous.cycle_end_date if previous else None

            existing = self.records.find_by_key(status.id, row.loan_id)
            now = datetime.now(timezone.utc)

            if not existing:
                record = CycleRecord(
                    id=str(uuid.uuid4()),
                    loan_id=row.loan_id,
                    cycle_batch_id=status.id,
                    cycle_year=status.year,
                    cycle_month=status.month,
                    created_at=now,
                    modified_at=now,
                ).with_raw_values(row, last_cycle_end_date=last_cycle_end_date)
                return self.records.save(record), 0

            canonical, duplicates = existing[0], existing[1:]
            for duplicate in duplicates:
                self.records.delete(duplicate.id)
            if duplicates:
                logger.warning(
                    "Collapsed %d duplicate records for loan %s in batch %s; kept %s, removed %s",
                    len(duplicates), row.loan_id, status.id, canonical.id,
                    [d.id for d in duplicates]
                )

            record = canonical.with_raw_values(
                row, last_cycle_end_date=last_cycle_end_date, modified_at=now
            )
            return self.records.save(record), len(duplicates)

    def _fill_cycle_window(
        self,
        row: RawCycleRow,
        year: int,
        month: int,
        anchors: Dict[str, Optional[int]]
    ) -> RawCycleRow:
        """Derive missing cycle dates from the loan's deal anchor day"""
        if row.cycle_start_date is not None and row.cycle_end_date is not None:
            return row

        if row.loan_id not in anchors:
            terms = self.deals.for_loan(self.baselines.get(row.loan_id))
            anchor = terms.month_on_month_day if terms else None
            anchors[row.loan_id] = anchor or self.default_month_on_month_day

        anchor = anchors[row.loan_id]
        if anchor is None:
            return row

        start, end = cycle_window(year, month, anchor)
        return replace(
            row,
            cycle_start_date=row.cycle_start_date or start,
            cycle_end_date=row.cycle_end_date or end,
        )
