"""Tests for GBMSimulator."""

import pytest

from tickerdesk.market.seed_prices import SEED_PRICES, UNKNOWN_PRICE_RANGE
from tickerdesk.market.simulator import GBMSimulator


class TestGBMSimulator:
    """Unit tests for the GBM price simulator."""

    def test_step_returns_all_symbols(self):
        """step() returns prices for every tracked symbol."""
        sim = GBMSimulator(symbols=["AAPL", "GOOGL"])
        result = sim.step()
        assert set(result.keys()) == {"AAPL", "GOOGL"}

    def test_prices_are_positive(self):
        """GBM prices can never go negative (exp() is always positive)."""
        sim = GBMSimulator(symbols=["AAPL"])
        for _ in range(10_000):
            prices = sim.step()
            assert prices["AAPL"] > 0

    def test_initial_prices_match_seeds(self):
        """Known symbols start at their seed price."""
        sim = GBMSimulator(symbols=["AAPL"])
        assert sim.get_price("AAPL") == SEED_PRICES["AAPL"]
        assert sim.get_open("AAPL") == SEED_PRICES["AAPL"]

    def test_add_symbol(self):
        """An added symbol appears in the next step."""
        sim = GBMSimulator(symbols=["AAPL"])
        sim.add_symbol("TSLA")
        assert "TSLA" in sim.step()

    def test_remove_symbol(self):
        """A removed symbol disappears with its open price."""
        sim = GBMSimulator(symbols=["AAPL", "GOOGL"])
        sim.remove_symbol("GOOGL")
        result = sim.step()
        assert "GOOGL" not in result
        assert "AAPL" in result
        assert sim.get_open("GOOGL") is None

    def test_add_duplicate_is_noop(self):
        """Adding a tracked symbol changes nothing."""
        sim = GBMSimulator(symbols=["AAPL"])
        sim.add_symbol("AAPL")
        assert sim.symbols == ["AAPL"]

    def test_remove_nonexistent_is_noop(self):
        """Removing an untracked symbol does not raise."""
        sim = GBMSimulator(symbols=["AAPL"])
        sim.remove_symbol("NOPE")  # Should not raise

    def test_unknown_symbol_gets_random_seed_price(self):
        """Unknown symbols start somewhere in the fallback range."""
        sim = GBMSimulator(symbols=["ZZZZ"])
        price = sim.get_price("ZZZZ")
        low, high = UNKNOWN_PRICE_RANGE
        assert low <= price <= high

    def test_empty_step(self):
        """No symbols, no prices."""
        sim = GBMSimulator(symbols=[])
        assert sim.step() == {}

    def test_prices_change_over_time(self):
        """After many steps, prices should have drifted from their seeds."""
        sim = GBMSimulator(symbols=["AAPL"])
        initial_price = sim.get_price("AAPL")
        for _ in range(1000):
            sim.step()
        # Extremely unlikely to land exactly on the seed
        assert sim.get_price("AAPL") != initial_price

    def test_cholesky_rebuilds_on_add(self):
        """A second symbol builds the correlation factor."""
        sim = GBMSimulator(symbols=["AAPL"])
        assert sim._cholesky is None  # Only 1 symbol, no correlation matrix
        sim.add_symbol("GOOGL")
        assert sim._cholesky is not None

    def test_cholesky_dropped_when_back_to_one(self):
        """Back to one symbol drops the factor."""
        sim = GBMSimulator(symbols=["AAPL", "GOOGL"])
        sim.remove_symbol("GOOGL")
        assert sim._cholesky is None

    def test_get_price_returns_none_for_untracked(self):
        """Untracked symbols have no price."""
        sim = GBMSimulator(symbols=["AAPL"])
        assert sim.get_price("UNKNOWN") is None

    @pytest.mark.parametrize(
        ("a", "b", "expected"),
        [
            ("AAPL", "GOOGL", 0.6),
            ("JPM", "V", 0.5),
            ("TSLA", "AAPL", 0.3),
            ("TSLA", "JPM", 0.3),
            ("AAPL", "JPM", 0.3),
            ("ZZZZ", "AAPL", 0.3),
        ],
    )
    def test_pairwise_correlation(self, a, b, expected):
        """Same-sector pairs correlate more than cross-sector pairs."""
        assert GBMSimulator.pairwise_correlation(a, b) == expected

    def test_dt_is_reasonable(self):
        """Half a second is a tiny fraction of a trading year."""
        sim = GBMSimulator(update_interval=0.5)
        assert 0 < sim._dt < 0.0001

    def test_prices_rounded_to_two_decimals(self):
        """Prices are quoted to the cent."""
        sim = GBMSimulator(symbols=["AAPL"])
        result = sim.step()
        assert result["AAPL"] == round(result["AAPL"], 2)

    def test_full_universe_correlation_is_positive_definite(self):
        """Cholesky must succeed for every seeded symbol at once."""
        sim = GBMSimulator(symbols=list(SEED_PRICES))
        assert sim._cholesky.shape == (len(SEED_PRICES), len(SEED_PRICES))
