# services/price_service.py
from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import Optional

import httpx
from dotenv import load_dotenv

from utils.common_helpers import quantize_amount, safe_decimal

load_dotenv()

logger = logging.getLogger(__name__)

PRICE_QUOTE_URL = os.getenv(
    "PRICE_QUOTE_URL", "https://query1.finance.yahoo.com/v8/finance/chart/{symbol}"
)
PRICE_TIMEOUT_SEC = float(os.getenv("PRICE_TIMEOUT_SEC", "3.0"))


class YahooPriceService:
    """
    Best-effort last-price lookup. Returns None instead of raising so that a
    slow or broken quote endpoint never blocks a ledger write.
    """

    def __init__(
        self,
        quote_url: str = PRICE_QUOTE_URL,
        timeout: float = PRICE_TIMEOUT_SEC,
        client: Optional[httpx.Client] = None,
    ):
        self.quote_url = quote_url
        self.timeout = timeout
        self._client = client

    def _get(self, url: str) -> httpx.Response:
        if self._client is not None:
            return self._client.get(url, params={"interval": "1d", "range": "1d"})
        with httpx.Client(timeout=self.timeout) as c:
            return c.get(url, params={"interval": "1d", "range": "1d"})

    def get_current_price(self, symbol: str) -> Optional[Decimal]:
        url = self.quote_url.format(symbol=symbol.upper())
        try:
            r = self._get(url)
            r.raise_for_status()
            data = r.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("price lookup failed for %s: %s", symbol, e)
            return None

        try:
            raw = data["chart"]["result"][0]["meta"]["regularMarketPrice"]
        except (KeyError, IndexError, TypeError):
            logger.warning("price lookup for %s returned no regularMarketPrice", symbol)
            return None

        price = safe_decimal(raw)
        if price is None or price <= 0:
            return None
        return quantize_amount(price)


def get_price_service() -> YahooPriceService:
    return YahooPriceService()
