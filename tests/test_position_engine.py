import unittest
from datetime import date
from decimal import Decimal

from ledger_fixtures import LedgerTestCase, StubPrices

from models.position import Position
from models.realized_pnl import RealizedPnlRecord
from services.ledger.errors import InsufficientShares, LedgerValidationError, NoActivePosition
from services.ledger.position_engine import (
    apply_buy,
    apply_sell,
    get_active_position,
    has_open_position,
    list_positions,
    weighted_average_cost,
)
from services.ledger.realized_pnl_service import capital_deployed, list_for_position


class TestWeightedAverageCost(unittest.TestCase):
    def test_blends_by_quantity(self):
        avg = weighted_average_cost(Decimal("3"), Decimal("10.5"), Decimal("7"), Decimal("20.25"))
        self.assertEqual(avg, Decimal("17.325"))

    def test_rounds_half_up_to_three_places(self):
        avg = weighted_average_cost(Decimal("6"), Decimal("10.5"), Decimal("1"), Decimal("12"))
        self.assertEqual(avg, Decimal("10.714"))

    def test_rejects_empty_result(self):
        with self.assertRaises(LedgerValidationError):
            weighted_average_cost(Decimal("0"), Decimal("0"), Decimal("0"), Decimal("5"))


class TestPositionEngine(LedgerTestCase):
    def _buy(self, qty, price, day=2, symbol="AAPL", strategy="long", **kwargs):
        position = apply_buy(
            self.db, self.owner_id, symbol, strategy, Decimal(qty), Decimal(price), date(2024, 1, day), **kwargs
        )
        self.db.commit()
        return position

    def _sell(self, qty, price, day=10, symbol="AAPL", strategy="long"):
        result = apply_sell(
            self.db, self.owner_id, symbol, strategy, Decimal(qty), Decimal(price), date(2024, 1, day)
        )
        self.db.commit()
        return result

    def test_full_lifecycle_realizes_and_closes(self):
        self._buy("10", "100")
        position = self._buy("10", "120", day=3)
        self.assertEqual(position.total_shares, Decimal("20"))
        self.assertEqual(position.average_cost, Decimal("110"))

        first = self._sell("5", "150")
        self.assertEqual(first.realization.realized_pnl, Decimal("200"))
        self.assertEqual(first.realization.total_cost, Decimal("550"))
        self.assertEqual(first.realization.total_proceeds, Decimal("750"))
        self.assertEqual(first.position.total_shares, Decimal("15"))
        self.assertEqual(first.position.average_cost, Decimal("110"))
        self.assertTrue(first.position.is_active)

        second = self._sell("15", "90", day=11)
        self.assertEqual(second.realization.realized_pnl, Decimal("-300"))

        closed = self.db.get(Position, position.id)
        self.assertFalse(closed.is_active)
        self.assertEqual(closed.total_shares, Decimal("0"))
        self.assertEqual(closed.realized_pnl, Decimal("-100"))
        self.assertEqual(closed.closed_date, date(2024, 1, 11))
        self.assertIsNone(get_active_position(self.db, self.owner_id, "AAPL", "long"))

        history = list_for_position(self.db, self.owner_id, position.id)
        self.assertEqual([r.realized_pnl for r in history], [Decimal("200"), Decimal("-300")])
        self.assertEqual(history[0].entry_date, date(2024, 1, 2))
        self.assertEqual(capital_deployed(self.db, self.owner_id, position.id), Decimal("2200"))

    def test_average_cost_independent_of_buy_order(self):
        lots = [("2", "10"), ("3", "20"), ("5", "30")]
        for (qty, price), day in zip(lots, (2, 3, 4)):
            self._buy(qty, price, day=day, strategy="forward")
        for (qty, price), day in zip(reversed(lots), (2, 3, 4)):
            self._buy(qty, price, day=day, strategy="reverse")

        forward = get_active_position(self.db, self.owner_id, "AAPL", "forward")
        reverse = get_active_position(self.db, self.owner_id, "AAPL", "reverse")
        self.assertEqual(forward.average_cost, Decimal("23"))
        self.assertEqual(reverse.average_cost, Decimal("23"))
        self.assertEqual(forward.total_shares, reverse.total_shares)

    def test_oversell_leaves_position_untouched(self):
        position = self._buy("10", "100")

        with self.assertRaises(InsufficientShares) as ctx:
            apply_sell(self.db, self.owner_id, "AAPL", "long", Decimal("25"), Decimal("90"), date(2024, 1, 5))
        self.db.rollback()

        self.assertIn("Insufficient shares", str(ctx.exception))
        reloaded = self.db.get(Position, position.id)
        self.assertEqual(reloaded.total_shares, Decimal("10"))
        self.assertEqual(reloaded.realized_pnl, Decimal("0"))
        self.assertEqual(self.db.query(RealizedPnlRecord).count(), 0)

    def test_sell_without_position(self):
        with self.assertRaises(NoActivePosition) as ctx:
            apply_sell(self.db, self.owner_id, "MSFT", "long", Decimal("1"), Decimal("10"), date(2024, 1, 5))
        self.assertEqual(str(ctx.exception), "No active position found for MSFT (long)")

    def test_buy_after_close_opens_a_new_position(self):
        first = self._buy("5", "10")
        self._sell("5", "12")
        second = self._buy("2", "20", day=20)

        self.assertNotEqual(first.id, second.id)
        self.assertTrue(second.is_active)
        self.assertEqual(second.average_cost, Decimal("20"))
        self.assertEqual(second.realized_pnl, Decimal("0"))
        self.assertEqual(len(list_positions(self.db, self.owner_id)), 2)
        self.assertEqual(len(list_positions(self.db, self.owner_id, is_active=True)), 1)

    def test_strategies_are_separate_positions(self):
        self._buy("10", "100", strategy="long")
        self._buy("4", "50", strategy="swing")

        long_pos = get_active_position(self.db, self.owner_id, "AAPL", "long")
        swing_pos = get_active_position(self.db, self.owner_id, "AAPL", "swing")
        self.assertNotEqual(long_pos.id, swing_pos.id)
        self.assertEqual(long_pos.average_cost, Decimal("100"))
        self.assertEqual(swing_pos.average_cost, Decimal("50"))

    def test_initial_market_price_from_oracle(self):
        prices = StubPrices(Decimal("101.5"))
        position = self._buy("1", "100", price_oracle=prices)
        self.assertEqual(position.current_market_price, Decimal("101.5"))
        self.assertEqual(prices.calls, ["AAPL"])

    def test_failing_oracle_does_not_block_buy(self):
        class _Broken:
            def get_current_price(self, symbol):
                raise RuntimeError("quote endpoint down")

        position = self._buy("1", "100", price_oracle=_Broken())
        self.assertIsNone(position.current_market_price)

    def test_rejects_non_positive_quantity(self):
        with self.assertRaises(LedgerValidationError):
            apply_buy(self.db, self.owner_id, "AAPL", "long", Decimal("0"), Decimal("1"), date(2024, 1, 2))

    def test_has_open_position_is_case_insensitive(self):
        self._buy("1", "100")
        self.assertTrue(has_open_position(self.db, self.owner_id, "aapl"))
        self.assertFalse(has_open_position(self.db, self.owner_id, "MSFT"))


if __name__ == "__main__":
    unittest.main()
