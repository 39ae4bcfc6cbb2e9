"""
Monthly Cycle Module

Month arithmetic for locating adjacent cycles, cycle window derivation, and
the per-feed monthly status records that every CycleRecord batch hangs off.
Status stages only move forward; re-applying a reached stage is a no-op.
"""

from datetime import datetime, timezone, date
from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Tuple, Type
from enum import Enum
import calendar
import logging
import uuid

from .errors import MissingBatchContextError
from .storage import StorageInterface, KeyedLock


logger = logging.getLogger("selldown.cycles")


def validate_cycle(year: Optional[int], month: Optional[int]) -> Tuple[int, int]:
    """Check a cycle year/month pair, raising MissingBatchContextError"""
    if year is None or month is None:
        raise MissingBatchContextError("Cycle year and month are required")
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError):
        raise MissingBatchContextError(f"Invalid cycle year/month: {year!r}/{month!r}")
    if not 1 <= month <= 12:
        raise MissingBatchContextError(f"Cycle month must be between 1 and 12, got {month}")
    if year < 1:
        raise MissingBatchContextError(f"Invalid cycle year: {year}")
    return year, month


def previous_cycle(year: int, month: int) -> Tuple[int, int]:
    """The cycle one month earlier; January wraps to December of the prior year"""
    if month == 1:
        return year - 1, 12
    return year, month - 1


def next_cycle(year: int, month: int) -> Tuple[int, int]:
    """The cycle one month later; December wraps to January of the next year"""
    if month == 12:
        return year + 1, 1
    return year, month + 1


def _anchored(year: int, month: int, day: int) -> date:
    """Date for `day` in the month, clamped to the month's last day"""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def cycle_window(year: int, month: int, month_on_month_day: int) -> Tuple[date, date]:
    """
    Cycle start/end for an anchor day.

    The cycle runs from the anchor day of the previous month to the anchor
    day of the cycle month, e.g. day 20 for 2024-09 gives 2024-08-20..2024-09-20.
    """
    if not 1 <= month_on_month_day <= 31:
        raise ValueError("Month on month day must be between 1 and 31")
    prev_year, prev_month = previous_cycle(year, month)
    return (
        _anchored(prev_year, prev_month, month_on_month_day),
        _anchored(year, month, month_on_month_day),
    )


def days_between(start: Optional[date], end: Optional[date]) -> int:
    """Whole days from start to end; 0 when either date is absent"""
    if start is None or end is None:
        return 0
    return (end - start).days


class FeedType(Enum):
    """Source feeds that each keep their own monthly status"""
    LMS = "lms"
    DEAL_PROCESSING = "deal_processing"
    OPERATION = "operation"
    SSRS = "ssrs"


class LMSStage(Enum):
    LMS_INITIALIZED = "LMS_INITIALIZED"
    LMS_UPLOADED = "LMS_UPLOADED"
    LMS_PROCESSED = "LMS_PROCESSED"


class DealStage(Enum):
    PAYOUT_FILE_CREATED = "PAYOUT_FILE_CREATED"
    PAYOUT_FILE_GENERATED = "PAYOUT_FILE_GENERATED"
    PAYOUT_FILE_ACCEPTED = "PAYOUT_FILE_ACCEPTED"
    OPERATIONS_TEAM_ACCEPTED = "OPERATIONS_TEAM_ACCEPTED"
    FINANCE_TEAM_ACCEPTED = "FINANCE_TEAM_ACCEPTED"
    PROCESS_COMPLETED = "PROCESS_COMPLETED"


class OperationStage(Enum):
    OPERATION_INITIALIZED = "OPERATION_INITIALIZED"
    OPERATION_UPLOADED = "OPERATION_UPLOADED"


class SSRSStage(Enum):
    SSRS_INITIALIZED = "SSRS_INITIALIZED"
    SSRS_UPLOADED = "SSRS_UPLOADED"


# Stage order is the enum definition order
FEED_STAGES: Dict[FeedType, Type[Enum]] = {
    FeedType.LMS: LMSStage,
    FeedType.DEAL_PROCESSING: DealStage,
    FeedType.OPERATION: OperationStage,
    FeedType.SSRS: SSRSStage,
}


def stage_rank(stage: Enum) -> int:
    return list(type(stage)).index(stage)


@dataclass(frozen=True)
class MonthlyCycleStatus:
    """One upload/processing batch for a feed, year and month"""
    id: str
    feed_type: FeedType
    year: int
    month: int
    stage: Enum
    cycle_start_date: date
    cycle_end_date: date
    created_at: datetime
    modified_at: datetime
    deal_id: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.stage, FEED_STAGES[self.feed_type]):
            raise ValueError(f"Stage {self.stage} does not belong to feed {self.feed_type.value}")

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'feed_type': self.feed_type.value,
            'year': self.year,
            'month': self.month,
            'stage': self.stage.value,
            'cycle_start_date': self.cycle_start_date.isoformat(),
            'cycle_end_date': self.cycle_end_date.isoformat(),
            'created_at': self.created_at.isoformat(),
            'modified_at': self.modified_at.isoformat(),
            'deal_id': self.deal_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'MonthlyCycleStatus':
        feed_type = FeedType(data['feed_type'])
        return cls(
            id=data['id'],
            feed_type=feed_type,
            year=data['year'],
            month=data['month'],
            stage=FEED_STAGES[feed_type](data['stage']),
            cycle_start_date=date.fromisoformat(data['cycle_start_date']),
            cycle_end_date=date.fromisoformat(data['cycle_end_date']),
            created_at=datetime.fromisoformat(data['created_at']),
            modified_at=datetime.fromisoformat(data['modified_at']),
            deal_id=data.get('deal_id'),
        )


class CycleStatusManager:
    """
    Resolves, creates and advances monthly cycle statuses.
    One status exists per (feed, year, month[, deal]).
    """

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.statuses_table = "monthly_cycle_statuses"
        self._locks = KeyedLock()

    def find(
        self,
        feed_type: FeedType,
        year: int,
        month: int,
        deal_id: Optional[str] = None
    ) -> Optional[MonthlyCycleStatus]:
        """Look up the status for a feed cycle, or None"""
        found = self.storage.find(self.statuses_table, {
            "feed_type": feed_type.value,
            "year": year,
            "month": month,
            "deal_id": deal_id,
        })
        if not found:
            return None
        return MonthlyCycleStatus.from_dict(found[0])

    def get(self, status_id: str) -> Optional[MonthlyCycleStatus]:
        data = self.storage.load(self.statuses_table, status_id)
        return MonthlyCycleStatus.from_dict(data) if data else None

    def resolve_or_create(
        self,
        feed_type: FeedType,
        year: int,
        month: int,
        deal_id: Optional[str] = None
    ) -> MonthlyCycleStatus:
        """Return the existing status, or create one at the feed's first stage"""
        year, month = validate_cycle(year, month)
        with self._locks.hold((feed_type, year, month, deal_id)):
            existing = self.find(feed_type, year, month, deal_id)
            if existing:
                return existing

            now = datetime.now(timezone.utc)
            first_stage = list(FEED_STAGES[feed_type])[0]
            status = MonthlyCycleStatus(
                id=str(uuid.uuid4()),
                feed_type=feed_type,
                year=year,
                month=month,
                stage=first_stage,
                cycle_start_date=date(year, month, 1),
                cycle_end_date=date(year, month, calendar.monthrange(year, month)[1]),
                created_at=now,
                modified_at=now,
                deal_id=deal_id,
            )
            self.storage.save(self.statuses_table, status.id, status.to_dict())
            logger.debug("Created %s status %s for %d-%02d", feed_type.value, status.id, year, month)
            return status

    def advance(self, status: MonthlyCycleStatus, stage: Enum) -> MonthlyCycleStatus:
        """
        Move a status forward to `stage`.

        Re-applying the current stage refreshes modified_at only; an earlier
        stage leaves the status unchanged.
        """
        if not isinstance(stage, FEED_STAGES[status.feed_type]):
            raise ValueError(f"Stage {stage} does not belong to feed {status.feed_type.value}")

        with self._locks.hold((status.feed_type, status.year, status.month, status.deal_id)):
            current = self.get(status.id) or status
            if stage_rank(stage) < stage_rank(current.stage):
                logger.debug(
                    "Ignoring backwards transition %s -> %s for status %s",
                    current.stage.value, stage.value, current.id
                )
                return current

            updated = replace(current, stage=stage, modified_at=datetime.now(timezone.utc))
            self.storage.save(self.statuses_table, updated.id, updated.to_dict())
            return updated

    def list_statuses(self, feed_type: Optional[FeedType] = None) -> List[MonthlyCycleStatus]:
        filters = {"feed_type": feed_type.value} if feed_type else {}
        return [MonthlyCycleStatus.from_dict(data) for data in self.storage.find(self.statuses_table, filters)]
