import asyncio
import threading
import unittest
from datetime import date
from decimal import Decimal
from unittest.mock import patch

import httpx

from ledger_fixtures import LedgerTestCase

from models.enums import TradeSide
from services.imports.broker_sync import (
    BrokerGateway,
    BrokerGatewayError,
    HttpBrokerGateway,
    convert_deals_to_fills,
    market_currency,
    parse_trade_date,
    side_from_broker,
    strip_market_prefix,
    sync_broker_trades,
)
from services.imports.staging_service import get_record, stage_batch


def _deal(deal_id, order_id, qty, price, **kwargs):
    deal = {
        "deal_id": deal_id,
        "order_id": order_id,
        "code": "US.AAPL",
        "name": "Apple Inc",
        "trd_side": "1",
        "qty": qty,
        "price": price,
        "create_time": "2024-03-05 14:30:00",
        "trd_market": 2,
    }
    deal.update(kwargs)
    return deal


class _FakeGateway(BrokerGateway):
    def __init__(self, deals, fees=None):
        self.deals = deals
        self.fees = fees or []
        self.fee_requests = []

    async def fetch_deals(self, begin, end):
        return list(self.deals)

    async def fetch_fees(self, order_ids):
        self.fee_requests.append(list(order_ids))
        return list(self.fees)


class TestBrokerTransform(unittest.TestCase):
    def test_field_mapping(self):
        self.assertEqual(side_from_broker("1"), TradeSide.buy)
        self.assertEqual(side_from_broker("2"), TradeSide.sell)
        self.assertEqual(strip_market_prefix("US.AAPL"), "AAPL")
        self.assertEqual(strip_market_prefix("HK.00700"), "00700")
        self.assertEqual(strip_market_prefix("BRK.B"), "BRK.B")
        self.assertEqual(market_currency(1), "HKD")
        self.assertEqual(market_currency("5"), "AUD")
        self.assertEqual(market_currency(None), "USD")

    def test_parse_trade_date(self):
        self.assertEqual(parse_trade_date("2024-03-05 14:30:00.123"), date(2024, 3, 5))
        self.assertEqual(parse_trade_date(1709600000), date(2024, 3, 5))
        self.assertEqual(parse_trade_date("1709600000"), date(2024, 3, 5))
        with self.assertRaises(ValueError):
            parse_trade_date("yesterday")

    def test_fee_split_across_fills_of_one_order(self):
        deals = [_deal("D1", "O1", 30, 10), _deal("D2", "O1", 70, 10.5), _deal("D3", "O2", 5, 20)]
        fees = [{"order_id": "O1", "fee_amount": "10"}, {"order_id": "O2", "fee_amount": 1.25}]

        fills = convert_deals_to_fills(deals, fees)

        self.assertEqual([f.fees for f in fills], [Decimal("3"), Decimal("7"), Decimal("1.25")])
        self.assertEqual(fills[0].symbol, "AAPL")
        self.assertEqual(fills[0].currency, "USD")
        self.assertEqual(fills[0].broker_fill_id, "D1")
        self.assertEqual(fills[0].broker_order_id, "O1")
        self.assertEqual(fills[1].price, Decimal("10.5"))

    def test_fee_rounding_remainder_goes_to_last_fill(self):
        deals = [_deal(f"D{i}", "O1", 1, 10) for i in range(3)]
        fills = convert_deals_to_fills(deals, [{"order_id": "O1", "fee_amount": "1"}])
        self.assertEqual([f.fees for f in fills], [Decimal("0.333"), Decimal("0.333"), Decimal("0.334")])
        self.assertEqual(sum(f.fees for f in fills), Decimal("1"))

    def test_malformed_deals_are_dropped(self):
        deals = [
            _deal("D1", "O1", 0, 10),
            _deal("D2", "O1", 5, "n/a"),
            _deal("D3", "O1", 5, 10, code=""),
            _deal("D4", "O1", 5, 10, create_time=None),
            _deal("D5", "O1", 5, 10, create_time="yesterday"),
        ]
        self.assertEqual(convert_deals_to_fills(deals, []), [])

    def test_bad_trade_time_does_not_shift_fee_split(self):
        deals = [_deal("D1", "O1", 1, 10, create_time=""), _deal("D2", "O1", 3, 10), _deal("D3", "O1", 1, 10)]
        fills = convert_deals_to_fills(deals, [{"order_id": "O1", "fee_amount": "2"}])
        self.assertEqual([f.broker_fill_id for f in fills], ["D2", "D3"])
        self.assertEqual([f.fees for f in fills], [Decimal("1.5"), Decimal("0.5")])
        self.assertEqual(fills[0].transaction_date, date(2024, 3, 5))


class TestBrokerGateway(unittest.TestCase):
    def test_gateway_must_implement_both_calls(self):
        class _DealsOnly(BrokerGateway):
            async def fetch_deals(self, begin, end):
                return []

        with self.assertRaises(TypeError):
            _DealsOnly()
        with self.assertRaises(TypeError):
            BrokerGateway()


class TestSyncBrokerTrades(LedgerTestCase):
    def test_sync_stages_fills_and_is_idempotent(self):
        gateway = _FakeGateway(
            [_deal("D1", "O1", 10, 100), _deal("D2", "O2", 5, 101, trd_side="2")],
            [{"order_id": "O1", "fee_amount": "1"}],
        )

        result = asyncio.run(sync_broker_trades(self.db, self.owner_id, gateway, "2024-03-01", "2024-03-31"))
        body = result.as_dict()

        self.assertEqual(body["fetched"], 2)
        self.assertEqual(body["insertedCount"], 2)
        self.assertEqual(body["skippedDuplicates"], 0)
        self.assertEqual(gateway.fee_requests, [["O1", "O2"]])
        record = get_record(self.db, self.owner_id, body["stagingIds"][1])
        self.assertEqual(record.side, TradeSide.sell)
        self.assertEqual(record.fees, Decimal("0"))

        again = asyncio.run(sync_broker_trades(self.db, self.owner_id, gateway, "2024-03-01", "2024-03-31"))
        self.assertEqual(again.as_dict()["insertedCount"], 0)
        self.assertEqual(again.as_dict()["skippedDuplicates"], 2)

    def test_deal_with_bad_trade_time_is_skipped(self):
        gateway = _FakeGateway([_deal("D1", "O1", 10, 100), _deal("D2", "O2", 5, 101, create_time="not a time")])

        result = asyncio.run(sync_broker_trades(self.db, self.owner_id, gateway, "2024-03-01", "2024-03-31"))
        body = result.as_dict()

        self.assertEqual(body["fetched"], 2)
        self.assertEqual(body["insertedCount"], 1)
        self.assertEqual(get_record(self.db, self.owner_id, body["stagingIds"][0]).broker_fill_id, "D1")

    def test_staging_write_runs_off_the_event_loop_thread(self):
        loop_thread = threading.get_ident()
        seen = []

        def _stage(db, owner_id, fills):
            seen.append(threading.get_ident())
            return stage_batch(db, owner_id, fills)

        gateway = _FakeGateway([_deal("D1", "O1", 10, 100)])
        with patch("services.imports.broker_sync.stage_batch", side_effect=_stage):
            result = asyncio.run(sync_broker_trades(self.db, self.owner_id, gateway, "2024-03-01", "2024-03-31"))

        self.assertEqual(result.as_dict()["insertedCount"], 1)
        self.assertEqual(len(seen), 1)
        self.assertNotEqual(seen[0], loop_thread)

    def test_no_deals(self):
        gateway = _FakeGateway([])
        result = asyncio.run(sync_broker_trades(self.db, self.owner_id, gateway, "2024-03-01", "2024-03-31"))
        body = result.as_dict()
        self.assertIsNone(body["batchId"])
        self.assertEqual(body["insertedCount"], 0)
        self.assertEqual(gateway.fee_requests, [])


class TestHttpBrokerGateway(unittest.TestCase):
    def _run(self, handler, call):
        async def _go():
            async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
                gateway = HttpBrokerGateway("http://bridge.local/", api_key="k", client=client)
                return await call(gateway)

        return asyncio.run(_go())

    def test_fetch_deals(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"deals": [_deal("D1", "O1", 1, 1)]})

        deals = self._run(handler, lambda g: g.fetch_deals("2024-03-01", "2024-03-31"))

        self.assertEqual(len(deals), 1)
        self.assertEqual(seen["path"], "/deals")
        self.assertEqual(seen["auth"], "Bearer k")

    def test_gateway_errors_are_wrapped(self):
        def handler(request):
            return httpx.Response(502, json={"error": "upstream"})

        with self.assertRaises(BrokerGatewayError):
            self._run(handler, lambda g: g.fetch_fees(["O1"]))

    def test_no_fee_request_without_orders(self):
        def handler(request):
            raise AssertionError("no request expected")

        self.assertEqual(self._run(handler, lambda g: g.fetch_fees([])), [])


if __name__ == "__main__":
    unittest.main()
