"""
Deal/Ratio Provider

Supplies per-deal assignment ratio, annual interest rate, day-count method
and cycle anchor day. The engine reads terms once per batch through
`snapshot`, so terms stay fixed for the duration of a cycle's calculation.
"""

from typing import Dict, Iterable, List, Optional
import logging

from .models import BaselineLoanRecord, DealTerms
from .storage import StorageInterface


logger = logging.getLogger("selldown.deals")


class DealTermsProvider:
    """Deal terms lookup over storage"""

    def __init__(self, storage: StorageInterface):
        self.storage = storage
        self.deals_table = "deal_terms"

    def register(self, terms: DealTerms) -> DealTerms:
        """Insert or replace the terms for a deal"""
        if not terms.deal_id:
            raise ValueError("Deal terms must carry a deal_id to be registered")
        self.storage.save(self.deals_table, terms.deal_id, terms.to_dict())
        logger.info(
            "Registered terms for deal %s (ratio=%s, rate=%s, method=%s)",
            terms.deal_id, terms.assign_ratio, terms.annual_interest_rate,
            terms.interest_method.value
        )
        return terms

    def get(self, deal_id: Optional[str]) -> Optional[DealTerms]:
        if not deal_id:
            return None
        data = self.storage.load(self.deals_table, deal_id)
        return DealTerms.from_dict(data) if data else None

    def for_loan(self, baseline: Optional[BaselineLoanRecord]) -> Optional[DealTerms]:
        """Terms of the deal a loan belongs to, if known"""
        if baseline is None:
            return None
        return self.get(baseline.deal_id)

    def snapshot(self, deal_ids: Iterable[Optional[str]]) -> Dict[str, DealTerms]:
        """Read the terms of several deals at once; unknown deals are omitted"""
        terms = {}
        for deal_id in set(d for d in deal_ids if d):
            found = self.get(deal_id)
            if found:
                terms[deal_id] = found
        return terms

    def list_deals(self) -> List[DealTerms]:
        return [DealTerms.from_dict(data) for data in self.storage.load_all(self.deals_table)]
