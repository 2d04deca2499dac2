"""
Broker sync: fetch -> transform -> stage.

All network round-trips (deals, then fees) finish before the database is
touched, so a slow broker never holds a write transaction open. The
broker's own wire protocol lives behind the gateway bridge; this module only
speaks the bridge's JSON.
"""
from __future__ import annotations

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

import httpx
from dotenv import load_dotenv
from sqlalchemy.orm import Session

from models.enums import TradeSide
from services.imports.staging_service import FillRecord, StageBatchResult, stage_batch
from utils.common_helpers import ZERO, quantize_amount, safe_decimal

load_dotenv()

logger = logging.getLogger(__name__)

BROKER_GATEWAY_URL = os.getenv("BROKER_GATEWAY_URL", "").rstrip("/")
BROKER_GATEWAY_KEY = os.getenv("BROKER_GATEWAY_KEY")

MARKET_CURRENCY = {
    1: "HKD",  # Hong Kong
    2: "USD",  # US
    3: "CNY",  # China A-shares
    4: "SGD",  # Singapore
    5: "AUD",  # Australia
}

_MARKET_PREFIXES = ("US", "HK", "SH", "SZ", "SG", "AU")


class BrokerGatewayError(Exception):
    """The broker bridge could not be reached or answered garbage."""


class BrokerGateway(ABC):
    """Source of raw broker deals and per-order fees."""

    @abstractmethod
    async def fetch_deals(self, begin: str, end: str) -> List[Dict[str, Any]]:
        ...

    @abstractmethod
    async def fetch_fees(self, order_ids: Sequence[str]) -> List[Dict[str, Any]]:
        ...


class HttpBrokerGateway(BrokerGateway):
    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                r = await self._client.post(url, json=payload, headers=self._headers())
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as c:
                    r = await c.post(url, json=payload, headers=self._headers())
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            raise BrokerGatewayError(f"broker gateway request to {path} failed: {e}") from e
        if not isinstance(data, dict):
            raise BrokerGatewayError(f"broker gateway returned unexpected payload for {path}")
        return data

    async def fetch_deals(self, begin: str, end: str) -> List[Dict[str, Any]]:
        data = await self._post("/deals", {"begin_time": begin, "end_time": end})
        return list(data.get("deals") or [])

    async def fetch_fees(self, order_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not order_ids:
            return []
        data = await self._post("/fees", {"order_ids": list(order_ids)})
        return list(data.get("fees") or [])


def get_configured_gateway() -> Optional[BrokerGateway]:
    if not BROKER_GATEWAY_URL:
        return None
    return HttpBrokerGateway(BROKER_GATEWAY_URL, api_key=BROKER_GATEWAY_KEY)


# -----------------------
# Transform
# -----------------------

def market_currency(market_code: Any) -> str:
    try:
        return MARKET_CURRENCY.get(int(market_code), "USD")
    except (TypeError, ValueError):
        return "USD"


def side_from_broker(trd_side: Any) -> TradeSide:
    return TradeSide.buy if str(trd_side).strip() == "1" else TradeSide.sell


def strip_market_prefix(code: str) -> str:
    code = (code or "").strip().upper()
    prefix, sep, rest = code.partition(".")
    if sep and prefix in _MARKET_PREFIXES and rest:
        return rest
    return code


def parse_trade_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)) or (isinstance(value, str) and value.strip().replace(".", "", 1).isdigit()):
        return datetime.fromtimestamp(float(value), tz=timezone.utc).date()
    text = str(value or "").strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError as e:
        raise ValueError(f"unparseable trade time: {value!r}") from e


def _fees_by_order(fees: Sequence[Dict[str, Any]]) -> Dict[str, Decimal]:
    out: Dict[str, Decimal] = {}
    for fee in fees:
        order_id = str(fee.get("order_id") or "")
        amount = safe_decimal(fee.get("fee_amount"))
        if order_id and amount is not None:
            out[order_id] = amount
    return out


def _split_fee(total: Decimal, quantities: List[Decimal]) -> List[Decimal]:
    """Split an order fee across its fills by quantity; the last fill absorbs rounding."""
    if not quantities:
        return []
    qty_sum = sum(quantities, ZERO)
    if qty_sum <= 0:
        return [ZERO for _ in quantities]
    shares: List[Decimal] = []
    for qty in quantities[:-1]:
        shares.append(quantize_amount(total * qty / qty_sum))
    shares.append(quantize_amount(total - sum(shares, ZERO)))
    return shares


def convert_deals_to_fills(
    deals: Sequence[Dict[str, Any]],
    fees: Sequence[Dict[str, Any]],
) -> List[FillRecord]:
    fee_lookup = _fees_by_order(fees)

    usable: List[Dict[str, Any]] = []
    trade_dates: List[date] = []
    for deal in deals:
        qty = safe_decimal(deal.get("qty"))
        price = safe_decimal(deal.get("price"))
        if qty is None or qty <= 0 or price is None or price <= 0 or not deal.get("code"):
            logger.warning("dropping malformed broker deal %s", deal.get("deal_id"))
            continue
        try:
            trade_date = parse_trade_date(deal.get("create_time"))
        except (ValueError, OverflowError, OSError):
            logger.warning(
                "dropping broker deal %s with bad create_time %r", deal.get("deal_id"), deal.get("create_time")
            )
            continue
        usable.append(deal)
        trade_dates.append(trade_date)

    by_order: Dict[str, List[int]] = defaultdict(list)
    for idx, deal in enumerate(usable):
        by_order[str(deal.get("order_id") or "")].append(idx)

    fee_per_deal: Dict[int, Decimal] = {}
    for order_id, indexes in by_order.items():
        total = fee_lookup.get(order_id, ZERO) if order_id else ZERO
        quantities = [safe_decimal(usable[i].get("qty")) for i in indexes]
        for i, share in zip(indexes, _split_fee(total, quantities)):
            fee_per_deal[i] = share

    fills: List[FillRecord] = []
    for idx, deal in enumerate(usable):
        fills.append(
            FillRecord(
                symbol=strip_market_prefix(str(deal["code"])),
                name=deal.get("name") or None,
                side=side_from_broker(deal.get("trd_side")),
                transaction_date=trade_dates[idx],
                quantity=quantize_amount(deal["qty"]),
                price=quantize_amount(deal["price"]),
                fees=fee_per_deal.get(idx, ZERO),
                currency=market_currency(deal.get("trd_market")),
                broker_fill_id=str(deal["deal_id"]) if deal.get("deal_id") is not None else None,
                broker_order_id=str(deal["order_id"]) if deal.get("order_id") is not None else None,
            )
        )
    return fills


@dataclass
class SyncResult:
    fetched: int
    staged: Optional[StageBatchResult]

    def as_dict(self) -> Dict[str, Any]:
        if self.staged is None:
            return {
                "message": "No new trades found in the specified date range",
                "fetched": self.fetched,
                "batchId": None,
                "insertedCount": 0,
                "stagingIds": [],
                "skippedDuplicates": 0,
            }
        return {
            "message": f"Imported {self.staged.inserted_count} trades to staging",
            "fetched": self.fetched,
            "batchId": self.staged.batch_id,
            "insertedCount": self.staged.inserted_count,
            "stagingIds": list(self.staged.inserted_ids),
            "skippedDuplicates": self.staged.skipped_duplicates,
        }


async def sync_broker_trades(
    db: Session,
    owner_id: int,
    gateway: BrokerGateway,
    begin: str,
    end: str,
) -> SyncResult:
    deals = await gateway.fetch_deals(begin, end)
    logger.info("broker returned %d deals for %s..%s", len(deals), begin, end)
    if not deals:
        return SyncResult(fetched=0, staged=None)

    order_ids = list(dict.fromkeys(str(d["order_id"]) for d in deals if d.get("order_id") is not None))
    fees = await gateway.fetch_fees(order_ids)

    fills = convert_deals_to_fills(deals, fees)
    if not fills:
        return SyncResult(fetched=len(deals), staged=None)

    # network work is done; the blocking write runs off the event loop
    staged = await asyncio.to_thread(stage_batch, db, owner_id, fills)
    return SyncResult(fetched=len(deals), staged=staged)
