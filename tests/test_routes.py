import unittest
from unittest.mock import patch
from decimal import Decimal

from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from ledger_fixtures import LedgerTestCase, StubPrices

from database import get_db
from main import app
from routers.broker_routes import get_broker_gateway
from models.user import User
from services.imports.broker_sync import BrokerGateway
from services.price_service import get_price_service
from services.supabase_auth import get_current_db_user


class TestLedgerRoutes(LedgerTestCase):
    def setUp(self):
        super().setUp()
        owner_id = self.owner_id

        def _current_user(db: Session = Depends(get_db)):
            return db.query(User).filter(User.id == owner_id).one()

        app.dependency_overrides[get_current_db_user] = _current_user
        app.dependency_overrides[get_price_service] = lambda: StubPrices(None)
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    def _trade(self, side="buy", quantity="10", price="100", **extra):
        body = {
            "symbol": "aapl",
            "side": side,
            "transaction_date": "2024-01-02",
            "quantity": quantity,
            "price": price,
            "strategy": "long",
        }
        body.update(extra)
        return self.client.post("/api/transactions", json=body)

    def test_record_buy_and_list_positions(self):
        resp = self._trade()
        self.assertEqual(resp.status_code, 201)
        body = resp.json()
        self.assertEqual(body["symbol"], "AAPL")
        self.assertEqual(Decimal(body["trade_value"]), Decimal("1000"))
        self.assertIsNotNone(body["position_id"])

        positions = self.client.get("/api/positions", params={"isActive": "true"}).json()
        self.assertEqual(len(positions), 1)
        self.assertEqual(Decimal(positions[0]["average_cost"]), Decimal("100"))

        self.assertEqual(
            self.client.get("/api/positions/open", params={"symbol": "aapl"}).json(), {"hasPosition": True}
        )

    def test_invalid_payload_is_400(self):
        resp = self.client.post(
            "/api/transactions",
            json={"symbol": "AAPL", "side": "buy", "transaction_date": "2024-01-02", "quantity": "1"},
        )
        self.assertEqual(resp.status_code, 400)

        resp = self._trade(strategy=None)
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(resp.json()["detail"], "strategy is required")

    def test_oversell_is_409(self):
        self._trade()
        resp = self._trade(side="sell", quantity="15", price="90")
        self.assertEqual(resp.status_code, 409)
        self.assertIn("Insufficient shares", resp.json()["detail"])

    def test_sell_shows_up_in_realized_history(self):
        buy = self._trade().json()
        self._trade(side="sell", quantity="4", price="150")

        history = self.client.get("/api/trades/realized-history").json()
        self.assertEqual(len(history), 1)
        self.assertEqual(Decimal(history[0]["realized_pnl"]), Decimal("200"))

        resp = self.client.get(f"/api/trades/realized-history/position/{buy['position_id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Decimal(resp.json()["capital_deployed"]), Decimal("400"))

        self.assertEqual(self.client.get("/api/trades/realized-history/position/9999").status_code, 404)

    def test_transaction_patch_and_delete(self):
        txn = self._trade().json()

        resp = self.client.patch(f"/api/transactions/{txn['id']}", json={"fees": "1.25", "notes": "fix"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(Decimal(resp.json()["fees"]), Decimal("1.25"))

        self.assertEqual(
            self.client.patch(f"/api/transactions/{txn['id']}", json={"quantity": "5"}).status_code, 400
        )
        self.assertEqual(self.client.delete(f"/api/transactions/{txn['id']}").status_code, 409)
        self.assertEqual(self.client.get("/api/transactions/9999").status_code, 404)

    def test_summary(self):
        self._trade()
        body = self.client.get("/api/transactions/summary").json()
        self.assertEqual(body["transaction_count"], 1)
        self.assertEqual(body["total_buys"], 1)
        self.assertEqual(self.client.get("/api/transactions/summary", params={"period": "decade"}).status_code, 400)

    def test_stage_and_release_mixed_batch(self):
        resp = self.client.post(
            "/api/staging",
            json={
                "fills": [
                    {
                        "symbol": "AAPL",
                        "side": "buy",
                        "transaction_date": "2024-01-02",
                        "quantity": "10",
                        "price": "100",
                        "strategy": "long",
                        "broker_fill_id": "F1",
                    },
                    {
                        "symbol": "MSFT",
                        "side": "buy",
                        "transaction_date": "2024-01-02",
                        "quantity": "1",
                        "price": "300",
                    },
                ]
            },
        )
        self.assertEqual(resp.status_code, 200)
        staged = resp.json()
        self.assertEqual(staged["insertedCount"], 2)
        ok_id, no_strategy_id = staged["stagingIds"]

        resp = self.client.post("/api/staging/release", json={"stagingIds": [ok_id, no_strategy_id]})
        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["released"], [ok_id])
        self.assertEqual(body["rejected"], [{"id": no_strategy_id, "reason": "Strategy required"}])
        self.assertEqual(body["summary"], {"total": 2, "success": 1, "failed": 1})

        pending = self.client.get("/api/staging", params={"status": "rejected_error"}).json()
        self.assertEqual([r["id"] for r in pending], [no_strategy_id])

        resp = self.client.patch(
            f"/api/staging/{no_strategy_id}", json={"strategy": "long", "status": "imported"}
        )
        self.assertEqual(resp.status_code, 200)
        self.assertIsNone(resp.json()["rejection_reason"])

        body = self.client.post("/api/staging/release", json={"stagingIds": [no_strategy_id]}).json()
        self.assertEqual(body["released"], [no_strategy_id])
        self.assertEqual(self.client.get(f"/api/staging/{no_strategy_id}").status_code, 404)

    def test_staging_validation(self):
        self.assertEqual(self.client.post("/api/staging", json={"fills": []}).status_code, 400)
        self.assertEqual(self.client.post("/api/staging/release", json={"stagingIds": []}).status_code, 400)
        self.assertEqual(self.client.patch("/api/staging/1", json={"symbol": "X"}).status_code, 400)
        self.assertEqual(self.client.delete("/api/staging/9999").status_code, 404)

    def test_clear_rejected(self):
        body = self.client.delete("/api/staging/rejected").json()
        self.assertEqual(body["deletedCount"], 0)

    def test_broker_sync_without_gateway_is_503(self):
        with patch("routers.broker_routes.get_configured_gateway", return_value=None):
            resp = self.client.post(
                "/api/broker/sync", json={"beginTime": "2024-01-01 00:00:00", "endTime": "2024-01-31 23:59:59"}
            )
        self.assertEqual(resp.status_code, 503)

    def test_broker_sync_stages_deals(self):
        class _Gateway(BrokerGateway):
            async def fetch_deals(self, begin, end):
                return [
                    {"deal_id": "D1", "order_id": "O1", "code": "US.NVDA", "trd_side": "1",
                     "qty": 2, "price": 450, "create_time": "2024-01-05 10:00:00", "trd_market": 2},
                ]

            async def fetch_fees(self, order_ids):
                return [{"order_id": "O1", "fee_amount": "0.5"}]

        app.dependency_overrides[get_broker_gateway] = lambda: _Gateway()
        body = self.client.post(
            "/api/broker/sync", json={"beginTime": "2024-01-01 00:00:00", "endTime": "2024-01-31 23:59:59"}
        ).json()

        self.assertEqual(body["insertedCount"], 1)
        record = self.client.get(f"/api/staging/{body['stagingIds'][0]}").json()
        self.assertEqual(record["symbol"], "NVDA")
        self.assertEqual(Decimal(record["fees"]), Decimal("0.5"))


if __name__ == "__main__":
    unittest.main()
