"""
LMS feed endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_engine
from .schemas import LMSUploadRequest, LMSUploadResponse, RowErrorModel, record_to_response
from ..engine import PayoutEngine
from ..errors import CycleNotFoundError, MissingBatchContextError


router = APIRouter()


@router.post("/year/{year}/month/{month}", status_code=status.HTTP_201_CREATED, response_model=LMSUploadResponse)
async def upload_lms_file(
    year: int,
    month: int,
    request: LMSUploadRequest,
    engine: PayoutEngine = Depends(get_engine)
):
    """Ingest a month of LMS feed rows"""
    try:
        result = engine.ingest(year, month, request.rows)
    except MissingBatchContextError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return LMSUploadResponse(
        cycle_batch_id=result.status.id,
        stage=result.status.stage.value,
        accepted=result.accepted,
        rejected=result.rejected,
        duplicates_removed=result.duplicates_removed,
        errors=[RowErrorModel(**failure.to_dict()) for failure in result.errors],
    )


@router.get("/year/{year}/month/{month}")
async def list_lms_records(
    year: int,
    month: int,
    engine: PayoutEngine = Depends(get_engine)
):
    """List the cycle records of a month"""
    try:
        records = engine.records_for_cycle(year, month)
    except MissingBatchContextError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "year": year,
        "month": month,
        "count": len(records),
        "records": [record_to_response(record) for record in records]
    }


@router.delete("/year/{year}/month/{month}")
async def delete_lms_records(
    year: int,
    month: int,
    engine: PayoutEngine = Depends(get_engine)
):
    """Delete the cycle records of a month"""
    try:
        removed = engine.delete_cycle(year, month)
    except MissingBatchContextError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except CycleNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"deleted": removed, "message": "Cycle records deleted successfully"}
