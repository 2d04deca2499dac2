# routers/broker_routes.py
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limit import limiter
from models.user import User
from routers.errors import to_http_exception
from schemas.staging import BrokerSyncIn
from services.imports.broker_sync import BrokerGateway, BrokerGatewayError, get_configured_gateway, sync_broker_trades
from services.ledger.errors import LedgerError
from services.supabase_auth import get_current_db_user

logger = logging.getLogger(__name__)

router = APIRouter()


def get_broker_gateway() -> BrokerGateway:
    gateway = get_configured_gateway()
    if gateway is None:
        raise HTTPException(status_code=503, detail="Broker gateway is not configured")
    return gateway


@router.post("/sync")
@limiter.limit("6/minute")
async def sync_trades(
    request: Request,
    payload: BrokerSyncIn,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
    gateway: BrokerGateway = Depends(get_broker_gateway),
):
    try:
        result = await sync_broker_trades(db, user.id, gateway, payload.beginTime, payload.endTime)
    except BrokerGatewayError as exc:
        logger.warning("broker sync failed: %s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    except LedgerError as exc:
        raise to_http_exception(exc)
    return result.as_dict()
