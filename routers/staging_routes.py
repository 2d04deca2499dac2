# routers/staging_routes.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limit import limiter
from models.enums import StagingStatus
from models.user import User
from routers.errors import to_http_exception
from schemas.staging import ReleaseIn, ReleaseOut, StageBatchIn, StageBatchOut, StagingOut, StagingPatch
from services.imports.release_pipeline import release_staged_records
from services.imports.staging_service import (
    FillRecord,
    clear_rejected,
    delete_record,
    get_record,
    list_staging,
    stage_batch,
    update_record,
)
from services.ledger.errors import LedgerError
from services.price_service import YahooPriceService, get_price_service
from services.supabase_auth import get_current_db_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("", response_model=StageBatchOut)
def stage_fills(
    payload: StageBatchIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    fills = [FillRecord(**f.model_dump()) for f in payload.fills]
    try:
        result = stage_batch(db, user.id, fills)
    except LedgerError as exc:
        raise to_http_exception(exc)
    except SQLAlchemyError as exc:
        logger.exception("staging batch failed")
        raise HTTPException(status_code=500, detail=f"Failed to stage trades: {exc}")

    return StageBatchOut(
        batchId=result.batch_id,
        insertedCount=result.inserted_count,
        stagingIds=result.inserted_ids,
        skippedDuplicates=result.skipped_duplicates,
    )


@router.get("", response_model=List[StagingOut])
def get_staging_records(
    status_filter: Optional[StagingStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return list_staging(db, user.id, status_filter)


@router.delete("/rejected")
def clear_rejected_records(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    deleted = clear_rejected(db, user.id)
    return {"message": "Rejected records cleared", "deletedCount": deleted}


@router.post("/release", response_model=ReleaseOut)
@limiter.limit("30/minute")
def release_records(
    request: Request,
    payload: ReleaseIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
    prices: YahooPriceService = Depends(get_price_service),
):
    # per-record failures come back in `rejected`, never as an error status
    report = release_staged_records(
        db,
        user.id,
        payload.stagingIds,
        accounting_mode=user.accounting_mode,
        price_oracle=prices,
    )
    return report.as_dict()


@router.get("/{staging_id}", response_model=StagingOut)
def get_staging_record(
    staging_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    record = get_record(db, user.id, staging_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Staging record not found")
    return record


@router.patch("/{staging_id}", response_model=StagingOut)
def update_staging_record(
    staging_id: int,
    payload: StagingPatch,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return update_record(db, user.id, staging_id, payload.model_dump(exclude_unset=True))
    except LedgerError as exc:
        raise to_http_exception(exc)


@router.delete("/{staging_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_staging_record(
    staging_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        delete_record(db, user.id, staging_id)
    except LedgerError as exc:
        raise to_http_exception(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
