import asyncio
import json

import pytest

from ghosty.core.trading_system import TradingSystem

from conftest import FakeConnector, buy_ack, quote, settlement, tick, wait_until

AUTHORIZED = {"msg_type": "authorize", "authorize": {"loginid": "VRTC100"}}


def test_full_cycle_to_take_profit(tmp_path):
    config_file = tmp_path / "system_config.json"
    config_file.write_text(json.dumps({
        "session": {"reconnect_delay": 0.01},
        "trading": {"symbols": "R_10", "take_profit": 0.3, "stop_loss": 1.0}
    }))
    connector = FakeConnector()
    system = TradingSystem(str(config_file), connect_factory=connector)

    async def scenario():
        assert await system.start()
        system.connect("tok-1")
        await wait_until(lambda: connector.connections)
        connection = connector.connections[0]

        connection.feed(AUTHORIZED)
        assert await system.wait_until_ready(timeout=1.0)
        await wait_until(lambda: {"balance": 1, "subscribe": 1} in connection.sent)
        await asyncio.sleep(0.02)

        system.start_trading(system.config_manager.build_trade_config())
        await wait_until(lambda: {"ticks": "R_10", "subscribe": 1} in connection.sent)

        for digit in [0, 2, 4, 6, 8, 0, 2, 4, 6, 8]:
            connection.feed(tick("R_10", quote(digit)))
        await wait_until(lambda: any(m.get("buy") == 1 for m in connection.sent))

        connection.feed(buy_ack(777))
        connection.feed(settlement(777, 0.33))
        await wait_until(lambda: not system.is_trading)

        status = system.get_status()
        await system.stop()
        return status

    status = asyncio.run(scenario())

    trading = status["trading"]
    assert trading["stop_reason"] == "take_profit"
    assert trading["cumulative_pnl"] == pytest.approx(0.33)
    assert status["statistics"]["sessions_ready"] == 1
    assert system.state == "stopped"


def test_start_trading_without_limits_raises(tmp_path):
    system = TradingSystem(str(tmp_path / "system_config.json"), connect_factory=FakeConnector())

    async def scenario():
        await system.start()
        try:
            with pytest.raises(ValueError):
                system.start_trading(system.config_manager.build_trade_config())
            assert not system.is_trading
        finally:
            await system.stop()

    asyncio.run(scenario())
