"""Wire adapter for the Finnhub trade websocket.

Inbound frames are decoded into a small tagged union and trade entries are
converted to Tick immediately; provider field names stay in this module.

    {"type": "trade", "data": [{"s": "AAPL", "p": 190.5, "t": 1707580800000, "v": 10}]}
    {"type": "ping"}
    {"type": "error", "msg": "Invalid symbol"}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Literal, Union

from .errors import MessageParseError
from .models import Tick, normalize_symbol

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class TradeMessage:
    ticks: tuple[Tick, ...]
    kind: Literal["trade"] = "trade"


@dataclass(frozen=True, slots=True)
class PingMessage:
    kind: Literal["ping"] = "ping"


@dataclass(frozen=True, slots=True)
class ErrorMessage:
    message: str
    kind: Literal["error"] = "error"


@dataclass(frozen=True, slots=True)
class UnknownMessage:
    type: str
    kind: Literal["unknown"] = "unknown"


InboundMessage = Union[TradeMessage, PingMessage, ErrorMessage, UnknownMessage]


def parse_message(raw: str | bytes) -> InboundMessage:
    """Decode one inbound frame. Raises MessageParseError on malformed input."""
    try:
        payload = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise MessageParseError(f"invalid JSON: {e}", raw) from e

    if not isinstance(payload, dict):
        raise MessageParseError(f"expected a JSON object, got {type(payload).__name__}", raw)

    msg_type = payload.get("type")
    if msg_type == "trade":
        entries = payload.get("data")
        if not isinstance(entries, list):
            raise MessageParseError("trade frame without a data array", raw)
        return TradeMessage(ticks=tuple(_parse_trades(entries)))
    if msg_type == "ping":
        return PingMessage()
    if msg_type == "error":
        return ErrorMessage(message=str(payload.get("msg", "")))
    return UnknownMessage(type=str(msg_type))


def _parse_trades(entries: list) -> list[Tick]:
    ticks: list[Tick] = []
    for entry in entries:
        try:
            ticks.append(
                Tick(
                    symbol=normalize_symbol(entry["s"]),
                    price=float(entry["p"]),
                    timestamp=int(entry["t"]),
                )
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning("Skipping malformed trade entry %r: %s", entry, e)
    return ticks


def encode_subscription(action: Literal["subscribe", "unsubscribe"], symbol: str) -> str:
    """Outbound subscribe/unsubscribe frame."""
    return json.dumps({"type": action, "symbol": normalize_symbol(symbol)})
