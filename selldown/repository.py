"""
Cycle Record Store

Repositories over the storage backend for cycle records and baseline loans.
Cycle records are keyed by (cycle batch, loan) with a secondary lookup by
(loan, cycle year/month) for locating a loan's previous cycle.
"""

from typing import Dict, Iterable, List, Optional

from .models import BaselineLoanRecord, CycleRecord
from .storage import StorageInterface


class CycleRecordRepository:
    """Reads and writes CycleRecords"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.records_table = "cycle_records"

    def save(self, record: CycleRecord) -> CycleRecord:
        self.storage.save(self.records_table, record.id, record.to_dict())
        return record

    def get(self, record_id: str) -> Optional[CycleRecord]:
        data = self.storage.load(self.records_table, record_id)
        return CycleRecord.from_dict(data) if data else None

    def delete(self, record_id: str) -> bool:
        return self.storage.delete(self.records_table, record_id)

    def find_by_key(self, cycle_batch_id: str, loan_id: str) -> List[CycleRecord]:
        """All records stored under a (batch, loan) key, earliest-inserted first"""
        found = self.storage.find(self.records_table, {
            "cycle_batch_id": cycle_batch_id,
            "loan_id": loan_id,
        })
        return [CycleRecord.from_dict(data) for data in found]

    def latest_for_loan(self, loan_id: str, exclude_batch_id: Optional[str] = None) -> Optional[CycleRecord]:
        """
        Most recently created record for a loan across all cycles.

        Records of `exclude_batch_id` are skipped so that re-uploading a
        cycle does not treat the cycle's own earlier upload as its predecessor.
        """
        candidates = [
            CycleRecord.from_dict(data)
            for data in self.storage.find(self.records_table, {"loan_id": loan_id})
            if data.get("cycle_batch_id") != exclude_batch_id
        ]
        if not candidates:
            return None
        # max() keeps the first of equal timestamps; reverse so later inserts win ties
        return max(reversed(candidates), key=lambda record: record.created_at)

    def for_cycle(self, loan_id: str, year: int, month: int) -> Optional[CycleRecord]:
        """The loan's record for a cycle month, or None"""
        found = self.storage.find(self.records_table, {
            "loan_id": loan_id,
            "cycle_year": year,
            "cycle_month": month,
        })
        if not found:
            return None
        return CycleRecord.from_dict(found[-1])

    def records_for_batch(self, cycle_batch_id: str) -> List[CycleRecord]:
        found = self.storage.find(self.records_table, {"cycle_batch_id": cycle_batch_id})
        return [CycleRecord.from_dict(data) for data in found]

    def records_for_cycle(self, year: int, month: int) -> List[CycleRecord]:
        found = self.storage.find(self.records_table, {"cycle_year": year, "cycle_month": month})
        return [CycleRecord.from_dict(data) for data in found]

    def delete_batch(self, cycle_batch_id: str) -> int:
        """Remove every record of a batch; returns the number removed"""
        removed = 0
        with self.storage.atomic():
            for data in self.storage.find(self.records_table, {"cycle_batch_id": cycle_batch_id}):
                if self.storage.delete(self.records_table, data["id"]):
                    removed += 1
        return removed


class BaselineLoanRepository:
    """Read access to baseline loan facts, plus registration"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.baselines_table = "baseline_loans"

    def save(self, baseline: BaselineLoanRecord) -> BaselineLoanRecord:
        self.storage.save(self.baselines_table, baseline.loan_id, baseline.to_dict())
        return baseline

    def get(self, loan_id: str) -> Optional[BaselineLoanRecord]:
        data = self.storage.load(self.baselines_table, loan_id)
        return BaselineLoanRecord.from_dict(data) if data else None

    def get_many(self, loan_ids: Iterable[str]) -> Dict[str, BaselineLoanRecord]:
        """Baselines for the given loans; loans without one are omitted"""
        result = {}
        for loan_id in set(loan_ids):
            baseline = self.get(loan_id)
            if baseline:
                result[loan_id] = baseline
        return result

    def list_by_deal(self, deal_id: str) -> List[BaselineLoanRecord]:
        found = self.storage.find(self.baselines_table, {"deal_id": deal_id})
        return [BaselineLoanRecord.from_dict(data) for data in found]
