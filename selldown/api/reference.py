"""
Deal terms and baseline loan registration endpoints
"""

from fastapi import APIRouter, HTTPException, Depends

from .dependencies import get_engine
from .schemas import BaselineLoanModel, DealTermsModel
from ..engine import PayoutEngine


router = APIRouter()


@router.put("/deals/{deal_id}")
async def register_deal(
    deal_id: str,
    request: DealTermsModel,
    engine: PayoutEngine = Depends(get_engine)
):
    """Register or replace a deal's terms"""
    try:
        terms = engine.deals.register(request.to_terms(deal_id))
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return terms.to_dict()


@router.get("/deals/{deal_id}")
async def get_deal(
    deal_id: str,
    engine: PayoutEngine = Depends(get_engine)
):
    """Get a deal's terms"""
    terms = engine.deals.get(deal_id)
    if not terms:
        raise HTTPException(status_code=404, detail="Deal not found")
    return terms.to_dict()


@router.put("/baseline-loans/{loan_id}")
async def register_baseline_loan(
    loan_id: str,
    request: BaselineLoanModel,
    engine: PayoutEngine = Depends(get_engine)
):
    """Register or replace a loan's baseline record"""
    try:
        baseline = engine.baselines.save(request.to_baseline(loan_id))
    except (KeyError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return baseline.to_dict()
