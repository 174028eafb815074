"""Tests for market data models."""

import pytest

from tickerdesk.market.models import ConnectionState, Quote, Tick, normalize_symbol


class TestNormalizeSymbol:
    """Symbol normalization at API boundaries."""

    def test_uppercases(self):
        """Lowercase input is uppercased."""
        assert normalize_symbol("aapl") == "AAPL"

    def test_strips_whitespace(self):
        """Surrounding whitespace is stripped."""
        assert normalize_symbol("  msft ") == "MSFT"

    def test_keeps_class_suffix(self):
        """Share-class suffixes survive."""
        assert normalize_symbol("brk.b") == "BRK.B"

    @pytest.mark.parametrize("value", ["", "   ", None])
    def test_rejects_empty(self, value):
        """Empty, blank and None are rejected."""
        with pytest.raises(ValueError):
            normalize_symbol(value)


class TestTick:
    """Unit tests for the Tick model."""

    def test_creation(self):
        """Optional change fields default to None."""
        tick = Tick(symbol="AAPL", price=190.50, timestamp=1707580800000)
        assert tick.symbol == "AAPL"
        assert tick.price == 190.50
        assert tick.timestamp == 1707580800000
        assert tick.change is None
        assert tick.change_percent is None

    def test_default_timestamp_is_millis(self):
        """The default timestamp is epoch milliseconds."""
        tick = Tick(symbol="AAPL", price=1.0)
        # Millisecond epoch values are 13 digits for the foreseeable future
        assert tick.timestamp > 10**12

    def test_to_dict(self):
        """to_dict() carries every field."""
        tick = Tick(symbol="AAPL", price=190.5, timestamp=1000, change=0.5, change_percent=0.26)
        assert tick.to_dict() == {
            "symbol": "AAPL",
            "price": 190.5,
            "timestamp": 1000,
            "change": 0.5,
            "change_percent": 0.26,
        }

    def test_immutability(self):
        """Ticks are frozen."""
        tick = Tick(symbol="AAPL", price=190.50, timestamp=1)
        with pytest.raises(AttributeError):
            tick.price = 200.00


class TestQuote:
    """Unit tests for the Quote model."""

    def test_to_tick_carries_change(self):
        """A quote narrows to a tick with its change fields."""
        quote = Quote(
            symbol="MSFT",
            price=378.9,
            change=4.2,
            change_percent=1.12,
            high=380.0,
            low=370.0,
            open=372.0,
            previous_close=374.7,
            timestamp=5000,
        )
        tick = quote.to_tick()
        assert tick == Tick(symbol="MSFT", price=378.9, timestamp=5000, change=4.2, change_percent=1.12)


class TestConnectionState:
    """The connection-state enum."""

    def test_values(self):
        """The three states have lowercase values."""
        assert {s.value for s in ConnectionState} == {"connecting", "connected", "disconnected"}

    def test_compares_to_string(self):
        """States compare equal to their string values."""
        assert ConnectionState.CONNECTED == "connected"
