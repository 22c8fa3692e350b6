import asyncio
import json

import pytest

from ghosty.core.risk_tracker import PnLTracker
from ghosty.core.signal_engine import SignalEngine
from ghosty.core.tick_store import TickStore
from ghosty.core.trade_controller import TradeController
from ghosty.shared.types import TradeConfig, TradeMode


def quote(digit, base=1000):
    """Quote whose string form ends in the given digit."""
    return float(f"{base}.{digit}")


def tick(symbol, value, epoch=0):
    return {"msg_type": "tick", "tick": {"symbol": symbol, "quote": value, "epoch": epoch}}


def buy_ack(contract_id, buy_price=0.35):
    return {"msg_type": "buy", "buy": {"contract_id": contract_id, "buy_price": buy_price}}


def buy_error(message):
    return {"msg_type": "buy", "error": {"code": "InvalidContract", "message": message}}


def settlement(contract_id, profit, is_sold=1):
    return {
        "msg_type": "proposal_open_contract",
        "proposal_open_contract": {
            "contract_id": contract_id,
            "is_sold": is_sold,
            "profit": profit,
            "status": "won" if profit > 0 else "lost"
        }
    }


class FakeTransport:
    """Records outbound requests instead of sending them."""

    def __init__(self, ready=True):
        self.sent = []
        self.is_ready = ready

    def send(self, message):
        self.sent.append(message)
        return True

    def buys(self):
        return [m for m in self.sent if m.get("buy") == 1]


class FakeClock:
    """Millisecond clock advanced by hand."""

    def __init__(self, now=10_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, ms):
        self.now += ms


class FakeConnection:
    """In-memory stand-in for a websocket connection."""

    def __init__(self, broken=False):
        self.sent = []
        self.closed = False
        self.broken = broken
        self._inbox = asyncio.Queue()

    async def send(self, text):
        if self.broken:
            raise RuntimeError("send buffer failure")
        self.sent.append(json.loads(text))

    def feed(self, message):
        self._inbox.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self):
        self._inbox.put_nowait(None)

    async def close(self):
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Connection factory handing out FakeConnections."""

    def __init__(self, fail_first=0, broken_first=0):
        self.connections = []
        self.urls = []
        self._fail_first = fail_first
        self._broken_first = broken_first

    async def __call__(self, url):
        self.urls.append(url)
        if self._fail_first > 0:
            self._fail_first -= 1
            raise ConnectionRefusedError("connection refused")
        connection = FakeConnection(broken=len(self.connections) < self._broken_first)
        self.connections.append(connection)
        return connection


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.002)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def controller(transport, clock):
    return TradeController(
        transport=transport,
        signal_engine=SignalEngine(),
        tick_store=TickStore(capacity=50),
        pnl_tracker=PnLTracker(),
        clock=clock
    )


@pytest.fixture
def make_config():
    def _make(**kwargs):
        params = {
            "symbols": "R_10",
            "mode": TradeMode.AUTO,
            "barrier": "AUTO",
            "stake": 0.35,
            "take_profit": 5.0,
            "stop_loss": 5.0
        }
        params.update(kwargs)
        return TradeConfig(**params)
    return _make
