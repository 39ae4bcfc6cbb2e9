"""
Opening-Position Reconciler

Checks each cycle record's declared opening principal against the value
derivable from earlier data: the previous cycle's closing position when
the loan has history, otherwise the baseline loan's outstanding principal.
Comparison is exact decimal equality with absent values treated as zero.
"""

from decimal import Decimal
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Mapping, Optional, Tuple, Union
import logging

from .amounts import ZERO, coalesce
from .cycles import previous_cycle
from .models import BaselineLoanRecord, CycleRecord, Discrepancy, DiscrepancyType
from .repository import CycleRecordRepository


logger = logging.getLogger("selldown.reconciler")

_SOURCES = {
    DiscrepancyType.PREVIOUS_MONTH: "previous month closing position",
    DiscrepancyType.CURRENT_MONTH: "baseline outstanding principal",
}


@dataclass
class ReconciliationResult:
    """Flagged copies of the input records plus the discrepancy entries"""
    records: List[CycleRecord] = field(default_factory=list)
    discrepancies: List[Discrepancy] = field(default_factory=list)

    @property
    def mismatches(self) -> List[Discrepancy]:
        """Entries that are real mismatches (excludes NO_BASELINE notices)"""
        return [d for d in self.discrepancies if d.is_mismatch]


class OpeningPositionReconciler:
    """Flags opening position mismatches for a cycle's records"""

    def __init__(self, records: CycleRecordRepository):
        self.records = records

    def reconcile(
        self,
        records: Iterable[CycleRecord],
        baselines: Union[Mapping[str, BaselineLoanRecord], Iterable[BaselineLoanRecord]],
        cycle_year: int,
        cycle_month: int,
        prior_cycles: Optional[Mapping[str, Optional[CycleRecord]]] = None
    ) -> ReconciliationResult:
        """
        Check every record and return flagged copies.

        Each returned record has is_opening_pos_mismatch set explicitly.
        `prior_cycles` may carry already-fetched previous-cycle records by
        loan id; loans missing from it are looked up in the store.
        """
        if not isinstance(baselines, Mapping):
            baselines = {b.loan_id: b for b in baselines}
        prior_cycles = prior_cycles or {}

        result = ReconciliationResult()
        for record in records:
            if not record.loan_id:
                result.records.append(record)
                continue

            baseline = baselines.get(record.loan_id)
            declared = coalesce(record.opening_pos)

            if baseline is None:
                result.discrepancies.append(Discrepancy(
                    loan_id=record.loan_id,
                    declared_opening_pos=declared,
                    expected_opening_pos=None,
                    difference=ZERO,
                    discrepancy_type=DiscrepancyType.NO_BASELINE,
                    description=f"No baseline loan record for {record.loan_id}; opening position not checked",
                    is_mismatch=False,
                ))
                result.records.append(replace(record, is_opening_pos_mismatch=False))
                continue

            expected, source = self._expected_opening(record, baseline, cycle_year, cycle_month, prior_cycles)
            expected = coalesce(expected)

            if declared == expected:
                result.records.append(replace(record, is_opening_pos_mismatch=False))
                continue

            difference = declared - expected
            result.discrepancies.append(Discrepancy(
                loan_id=record.loan_id,
                declared_opening_pos=declared,
                expected_opening_pos=expected,
                difference=difference,
                discrepancy_type=source,
                description=(
                    f"Opening position mismatch: declared {declared}, "
                    f"expected {expected} ({_SOURCES[source]})"
                ),
            ))
            result.records.append(replace(record, is_opening_pos_mismatch=True))
            logger.debug(
                "Loan %s opening position %s differs from %s by %s",
                record.loan_id, declared, source.value, difference
            )

        return result

    def detect_mismatches(
        self,
        records: Iterable[CycleRecord],
        baselines: Union[Mapping[str, BaselineLoanRecord], Iterable[BaselineLoanRecord]],
        cycle_year: int,
        cycle_month: int
    ) -> List[Discrepancy]:
        """Discrepancy entries for a batch, without the flagged records"""
        return self.reconcile(records, baselines, cycle_year, cycle_month).discrepancies

    def _expected_opening(
        self,
        record: CycleRecord,
        baseline: BaselineLoanRecord,
        cycle_year: int,
        cycle_month: int,
        prior_cycles: Mapping[str, Optional[CycleRecord]]
    ) -> Tuple[Optional[Decimal], DiscrepancyType]:
        if record.last_cycle_end_date is not None:
            if record.loan_id in prior_cycles:
                prior = prior_cycles[record.loan_id]
            else:
                prior = self.find_prior_cycle(record.loan_id, cycle_year, cycle_month)
            if prior is not None:
                return prior.closing_pos, DiscrepancyType.PREVIOUS_MONTH

        return baseline.current_outstanding_principal, DiscrepancyType.CURRENT_MONTH

    def find_prior_cycle(self, loan_id: str, cycle_year: int, cycle_month: int) -> Optional[CycleRecord]:
        """Previous cycle's record; a failed lookup counts as no previous cycle"""
        year, month = previous_cycle(cycle_year, cycle_month)
        try:
            return self.records.for_cycle(loan_id, year, month)
        except Exception:
            logger.warning(
                "Previous cycle lookup failed for loan %s (%d-%02d); treating as no previous cycle",
                loan_id, year, month, exc_info=True
            )
            return None
