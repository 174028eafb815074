"""Tests for FinnhubFeed using scripted sockets."""

import asyncio

import pytest

from tickerdesk.market.feed import FinnhubFeed
from tickerdesk.market.models import ConnectionState

from .fakes import FakeConnector, FakeSocket, wait_until


def _feed(connector, **kwargs):
    kwargs.setdefault("reconnect_delay", 0.01)
    kwargs.setdefault("max_reconnect_attempts", 3)
    return FinnhubFeed(api_key="test-key", connector=connector, **kwargs)


def _trade(symbol, price, timestamp):
    return {"type": "trade", "data": [{"s": symbol, "p": price, "t": timestamp, "v": 1}]}


@pytest.mark.asyncio
class TestFinnhubFeedConnection:
    """Connection lifecycle and subscription replay."""

    async def test_connects_with_token_in_url(self):
        """The API key rides in the websocket URL query string."""
        connector = FakeConnector(FakeSocket())
        feed = _feed(connector)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            assert connector.urls == ["wss://ws.finnhub.io?token=test-key"]
        finally:
            await feed.close()

    async def test_connect_is_idempotent(self):
        """Repeated connect() calls share one connection loop."""
        connector = FakeConnector(FakeSocket(), FakeSocket())
        feed = _feed(connector)
        try:
            feed.connect()
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            feed.connect()
            await asyncio.sleep(0.02)
            assert len(connector.urls) == 1
        finally:
            await feed.close()

    async def test_symbols_subscribed_before_connect_are_sent_on_open(self):
        """Interest registered while offline is replayed in sorted order on open."""
        socket = FakeSocket()
        feed = _feed(FakeConnector(socket))
        feed.subscribe("msft")
        feed.subscribe("AAPL")
        try:
            feed.connect()
            await wait_until(lambda: len(socket.sent) == 2)
            assert socket.sent == [
                {"type": "subscribe", "symbol": "AAPL"},
                {"type": "subscribe", "symbol": "MSFT"},
            ]
        finally:
            await feed.close()

    async def test_subscribe_while_connected_is_sent(self):
        """Only desired-set changes produce frames while connected."""
        socket = FakeSocket()
        feed = _feed(FakeConnector(socket))
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            feed.subscribe("TSLA")
            feed.subscribe("TSLA")  # Already desired, no second frame
            feed.unsubscribe("TSLA")
            feed.unsubscribe("TSLA")
            await wait_until(lambda: len(socket.sent) == 2)
            await asyncio.sleep(0.02)
            assert socket.sent == [
                {"type": "subscribe", "symbol": "TSLA"},
                {"type": "unsubscribe", "symbol": "TSLA"},
            ]
        finally:
            await feed.close()

    async def test_resubscribes_desired_set_first_after_reconnect(self):
        """A new socket gets the full desired set before any queued frame."""
        first, second = FakeSocket(), FakeSocket()
        feed = _feed(FakeConnector(first, second), reconnect_delay=0.2)
        feed.subscribe("AAPL")
        feed.subscribe("MSFT")
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)

            first.drop()
            await wait_until(lambda: feed.state == ConnectionState.DISCONNECTED)
            # Interest added during the outage rides along on the replay
            feed.subscribe("GOOGL")
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            feed.subscribe("NVDA")
            await wait_until(lambda: len(second.sent) == 4)

            assert second.sent[:3] == [
                {"type": "subscribe", "symbol": "AAPL"},
                {"type": "subscribe", "symbol": "GOOGL"},
                {"type": "subscribe", "symbol": "MSFT"},
            ]
            assert second.sent[3] == {"type": "subscribe", "symbol": "NVDA"}
            assert first.closed
        finally:
            await feed.close()

    async def test_successful_open_resets_attempts(self):
        """Failed attempts are forgotten once a socket opens."""
        socket = FakeSocket()
        connector = FakeConnector(OSError("refused"), OSError("refused"), socket)
        feed = _feed(connector)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            assert len(connector.urls) == 3
            assert feed.reconnect_attempts == 0
        finally:
            await feed.close()

    async def test_close_stops_feed(self):
        """close() shuts the socket and no reconnect follows."""
        socket = FakeSocket()
        connector = FakeConnector(socket)
        feed = _feed(connector)
        feed.connect()
        await wait_until(lambda: feed.state == ConnectionState.CONNECTED)

        await feed.close()
        await feed.close()  # Second close is a no-op

        assert feed.state == ConnectionState.DISCONNECTED
        assert socket.closed
        await asyncio.sleep(0.03)
        assert len(connector.urls) == 1


@pytest.mark.asyncio
class TestFinnhubFeedReconnectCap:
    """Bounded reconnects and explicit recovery."""

    async def test_gives_up_after_max_attempts(self, caplog):
        """After the cap the feed stays offline and says so."""
        connector = FakeConnector()  # Every attempt is refused
        feed = _feed(connector, max_reconnect_attempts=2)
        feed.connect()

        # Initial try plus two reconnects
        await wait_until(lambda: len(connector.urls) == 3)
        await asyncio.sleep(0.05)

        assert len(connector.urls) == 3
        assert feed.state == ConnectionState.DISCONNECTED
        assert "Market data offline" in caplog.text
        await feed.close()

    async def test_connect_after_giving_up_retries(self):
        """An explicit connect() recovers a feed that gave up."""
        connector = FakeConnector()
        feed = _feed(connector, max_reconnect_attempts=1)
        feed.connect()
        await wait_until(lambda: len(connector.urls) == 2)
        await asyncio.sleep(0.03)
        assert feed.state == ConnectionState.DISCONNECTED

        connector.add(FakeSocket())
        feed.connect()
        try:
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            assert len(connector.urls) == 3
        finally:
            await feed.close()

    async def test_delay_grows_with_backoff_and_is_capped(self):
        """Backoff multiplies the delay up to the cap."""
        feed = FinnhubFeed(
            api_key="k",
            reconnect_delay=1.0,
            reconnect_backoff=2.0,
            reconnect_max_delay=5.0,
            connector=FakeConnector(),
        )
        delays = []
        for attempt in range(1, 6):
            feed._attempts = attempt
            delays.append(feed._next_delay())
        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0]

    async def test_fixed_delay_by_default(self):
        """Backoff 1.0 keeps every delay the same."""
        feed = FinnhubFeed(api_key="k", reconnect_delay=5.0, connector=FakeConnector())
        feed._attempts = 4
        assert feed._next_delay() == 5.0


@pytest.mark.asyncio
class TestFinnhubFeedFrames:
    """Inbound frame handling."""

    async def test_trades_are_emitted_as_ticks(self):
        """Each trade in a frame becomes a tick for listeners."""
        socket = FakeSocket()
        feed = _feed(FakeConnector(socket))
        got = []
        feed.on_tick(got.append)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            socket.feed(_trade("AAPL", 190.5, 1707580800000))
            await wait_until(lambda: len(got) == 1)
            assert got[0].symbol == "AAPL"
            assert got[0].price == 190.5
            assert got[0].timestamp == 1707580800000
        finally:
            await feed.close()

    async def test_malformed_frame_is_dropped(self):
        """Bad JSON is counted and skipped; the socket stays up."""
        socket = FakeSocket()
        feed = _feed(FakeConnector(socket))
        got = []
        feed.on_tick(got.append)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            socket.feed("{not json")
            socket.feed({"type": "ping"})
            socket.feed({"type": "error", "msg": "Invalid symbol"})
            socket.feed(_trade("MSFT", 378.0, 2))
            await wait_until(lambda: len(got) == 1)

            assert feed.state == ConnectionState.CONNECTED
            metrics = feed.get_health_metrics()
            assert metrics["parse_errors"] == 1
            assert metrics["ticks_received"] == 1
        finally:
            await feed.close()

    async def test_failing_listener_does_not_block_others(self):
        """A raising listener is isolated from the rest."""
        socket = FakeSocket()
        feed = _feed(FakeConnector(socket))
        got = []

        def broken(tick):
            raise RuntimeError("listener bug")

        feed.on_tick(broken)
        feed.on_tick(got.append)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            socket.feed(_trade("AAPL", 1.0, 1))
            await wait_until(lambda: len(got) == 1)
        finally:
            await feed.close()

    async def test_state_listeners_see_transitions(self):
        """A server drop walks through disconnected and back to connected."""
        first, second = FakeSocket(), FakeSocket()
        feed = _feed(FakeConnector(first, second))
        states = []
        dispose = feed.on_state_change(states.append)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            first.drop()
            await wait_until(lambda: len(states) >= 5)
            assert states[:5] == [
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
                ConnectionState.DISCONNECTED,
                ConnectionState.CONNECTING,
                ConnectionState.CONNECTED,
            ]
        finally:
            dispose()
            await feed.close()

    async def test_health_metrics_shape(self):
        """Metrics are available before the feed has ever connected."""
        feed = _feed(FakeConnector())
        feed.subscribe("AAPL")
        metrics = feed.get_health_metrics()
        assert metrics["state"] == "disconnected"
        assert metrics["symbols"] == ["AAPL"]
        assert metrics["last_tick_s_ago"] is None
        assert metrics["stale_reconnects"] == 0


@pytest.mark.asyncio
class TestFinnhubFeedStaleWatchdog:
    """A silent socket with live subscriptions is recycled."""

    async def test_silent_socket_is_reconnected(self, caplog):
        """No frames for stale_after seconds closes the socket and reconnects."""
        first, second = FakeSocket(), FakeSocket()
        connector = FakeConnector(first, second)
        feed = _feed(connector, stale_after=0.08)
        feed.subscribe("AAPL")
        try:
            feed.connect()
            await wait_until(lambda: len(connector.urls) == 2)
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)

            assert first.closed
            assert second.sent == [{"type": "subscribe", "symbol": "AAPL"}]
            assert feed.get_health_metrics()["stale_reconnects"] == 1
            assert "No Finnhub data" in caplog.text
        finally:
            await feed.close()

    async def test_silence_without_subscriptions_is_fine(self):
        """With nothing subscribed a quiet socket is left alone."""
        socket = FakeSocket()
        connector = FakeConnector(socket)
        feed = _feed(connector, stale_after=0.04)
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            await asyncio.sleep(0.15)

            assert len(connector.urls) == 1
            assert not socket.closed
            assert feed.get_health_metrics()["stale_reconnects"] == 0
        finally:
            await feed.close()

    async def test_pings_keep_socket_alive(self):
        """Any inbound frame counts as traffic, pings included."""
        socket = FakeSocket()
        connector = FakeConnector(socket)
        feed = _feed(connector, stale_after=0.1)
        feed.subscribe("AAPL")
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            for _ in range(8):
                socket.feed({"type": "ping"})
                await asyncio.sleep(0.03)

            assert len(connector.urls) == 1
            assert not socket.closed
        finally:
            await feed.close()

    async def test_disabled_watchdog(self):
        """stale_after=None never recycles the socket."""
        socket = FakeSocket()
        connector = FakeConnector(socket)
        feed = _feed(connector, stale_after=None)
        feed.subscribe("AAPL")
        try:
            feed.connect()
            await wait_until(lambda: feed.state == ConnectionState.CONNECTED)
            await asyncio.sleep(0.1)
            assert len(connector.urls) == 1
        finally:
            await feed.close()
