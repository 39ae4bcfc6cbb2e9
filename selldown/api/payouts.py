"""
Payout processing endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_engine
from ..engine import PayoutEngine
from ..errors import CycleNotFoundError, MissingBatchContextError


router = APIRouter()


@router.post("/year/{year}/month/{month}/process")
async def process_payouts(
    year: int,
    month: int,
    deal_id: Optional[str] = None,
    engine: PayoutEngine = Depends(get_engine)
):
    """Calculate seller fields and reconcile opening positions for a month"""
    try:
        summary = engine.process(year, month, deal_id=deal_id)
    except MissingBatchContextError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CycleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return summary.to_dict()
