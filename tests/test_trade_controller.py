import asyncio
import re

import pytest

from ghosty.core.protocol import forget_all_ticks_request, open_contract_request, ticks_request
from ghosty.shared.constants import STOP_MANUAL, STOP_STOP_LOSS, STOP_TAKE_PROFIT, VOLATILITY_INDICES
from ghosty.shared.types import ContractKind, RunPhase, TradeMode

from conftest import buy_ack, buy_error, quote, settlement, tick, wait_until

EVENS = [0, 2, 4, 6, 8, 0, 2, 4, 6, 8]


def feed(controller, digits, symbol="R_10"):
    for digit in digits:
        controller.handle_message(tick(symbol, quote(digit)))


def test_start_requires_both_limits(controller, transport, make_config):
    with pytest.raises(ValueError):
        controller.start(make_config(take_profit=None))
    with pytest.raises(ValueError):
        controller.start(make_config(stop_loss=None))

    assert not controller.running
    assert transport.sent == []


def test_start_rejects_non_positive_stake(controller, make_config):
    with pytest.raises(ValueError):
        controller.start(make_config(stake=0))


def test_start_while_running_raises(controller, make_config):
    controller.start(make_config())

    with pytest.raises(ValueError):
        controller.start(make_config())


def test_start_subscribes_all_indices(controller, transport, make_config):
    controller.start(make_config(symbols="all"))

    assert transport.sent == [ticks_request(symbol) for symbol in VOLATILITY_INDICES]
    assert controller.running
    assert controller.status == "Analyzing..."
    assert controller.logs[-1].endswith("Bot started")


def test_first_trade_after_min_history(controller, transport, make_config):
    controller.start(make_config())

    feed(controller, EVENS[:9])
    assert transport.buys() == []

    feed(controller, EVENS[9:])
    buys = transport.buys()
    assert len(buys) == 1
    assert buys[0]["parameters"]["contract_type"] == "DIGITEVEN"
    assert buys[0]["parameters"]["symbol"] == "R_10"
    assert controller.active_symbol == "R_10"
    assert controller.run_state.phase is RunPhase.LOCKED


def test_single_pending_order(controller, transport, clock, make_config):
    controller.start(make_config())
    feed(controller, EVENS)

    clock.advance(60_000)
    feed(controller, EVENS)

    assert len(transport.buys()) == 1


def test_buy_ack_follows_contract(controller, transport, make_config):
    controller.start(make_config())
    feed(controller, EVENS)

    controller.handle_message(buy_ack(501))

    assert controller.pending_order.contract_id == 501
    assert transport.sent[-1] == open_contract_request(501)


def test_settlement_releases_order_and_books_once(controller, make_config):
    controller.start(make_config())
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))

    controller.handle_message(settlement(501, 0.33))
    controller.handle_message(settlement(501, 0.33))

    assert controller.pending_order is None
    assert controller.active_symbol is None
    assert controller.cumulative_pnl == pytest.approx(0.33)
    assert controller.logs[-1].endswith("Contract closed: Won, Profit: $0.33")


def test_open_update_before_sale_ignored(controller, make_config):
    controller.start(make_config())
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))

    controller.handle_message(settlement(501, 0.12, is_sold=0))

    assert controller.pending_order is not None
    assert controller.cumulative_pnl == 0.0


def test_settlement_for_unknown_contract_ignored(controller, make_config):
    controller.start(make_config())

    controller.handle_message(settlement(999, 1.0))

    assert controller.cumulative_pnl == 0.0


def test_cooldown_rejects_without_restarting_timer(controller, transport, clock, make_config):
    controller.start(make_config())
    feed(controller, EVENS)
    first_trade_time = controller.run_state.last_trade_time
    controller.handle_message(buy_ack(501))
    controller.handle_message(settlement(501, 0.33))

    clock.advance(1000)
    feed(controller, [2])

    assert len(transport.buys()) == 1
    assert controller.run_state.last_trade_time == first_trade_time
    assert any("Cooldown active" in line for line in controller.logs)

    clock.advance(1500)
    feed(controller, [4])

    assert len(transport.buys()) == 2
    assert controller.run_state.last_trade_time == clock.now


def test_buy_error_releases_order(controller, transport, clock, make_config):
    controller.start(make_config())
    feed(controller, EVENS)

    controller.handle_message(buy_error("Insufficient balance"))

    assert controller.pending_order is None
    assert controller.logs[-1].endswith("Trade error: Insufficient balance")

    clock.advance(2500)
    feed(controller, [6])
    assert len(transport.buys()) == 2


def test_take_profit_stops_run(controller, transport, clock, make_config):
    controller.start(make_config(take_profit=0.3, stop_loss=5.0))
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))

    controller.handle_message(settlement(501, 0.33))

    assert not controller.running
    assert controller.run_state.stop_reason == STOP_TAKE_PROFIT
    assert controller.status == "Take Profit reached"
    assert transport.sent[-1] == forget_all_ticks_request()

    clock.advance(60_000)
    feed(controller, EVENS)
    assert len(transport.buys()) == 1


def test_stop_loss_stops_run(controller, make_config):
    controller.start(make_config(take_profit=5.0, stop_loss=0.35))
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))

    controller.handle_message(settlement(501, -0.35))

    assert not controller.running
    assert controller.run_state.stop_reason == STOP_STOP_LOSS
    assert controller.status == "Stop Loss reached"


def test_cumulative_pnl_is_sum_of_settlements(controller, clock, make_config):
    profits = [0.33, -0.35, 0.33, -0.35]
    controller.start(make_config())
    feed(controller, EVENS)

    for contract_id, profit in enumerate(profits, start=1):
        controller.handle_message(buy_ack(contract_id))
        controller.handle_message({"msg_type": "balance", "balance": {"balance": 1000.0}})
        controller.handle_message(settlement(contract_id, profit))
        clock.advance(2500)
        feed(controller, [8])

    assert controller.cumulative_pnl == pytest.approx(sum(profits))
    assert controller.balance == 1000.0


def test_malformed_messages_dropped(controller, make_config):
    controller.start(make_config())

    assert controller.handle_message(tick("R_10", 1.2, epoch="not-a-number")) is False
    assert controller.handle_message("garbage") is False
    assert controller.handle_message(
        {"msg_type": "proposal_open_contract", "proposal_open_contract": "garbage"}
    ) is True

    assert controller.running
    assert controller.get_status()["statistics"]["messages_dropped"] == 2


def test_no_trade_while_session_not_ready(controller, transport, make_config):
    transport.is_ready = False
    controller.start(make_config())
    feed(controller, EVENS)
    assert transport.buys() == []

    transport.is_ready = True
    feed(controller, [0])
    assert len(transport.buys()) == 1


def test_keyed_signal_needs_two_confirmations(controller, transport, make_config):
    controller.start(make_config(mode=TradeMode.RISE_FALL))

    feed(controller, [5, 5, 5, 5, 5, 5, 5, 1, 2, 3])
    assert transport.buys() == []

    feed(controller, [4])
    buys = transport.buys()
    assert len(buys) == 1
    assert buys[0]["parameters"]["contract_type"] == "CALL"


def test_fixed_differs_barrier(controller, transport, make_config):
    controller.start(make_config(mode=TradeMode.DIFFERS, barrier=3))

    feed(controller, [0, 1, 2, 4, 5, 6, 7, 8, 9, 0, 1])

    buys = transport.buys()
    assert len(buys) == 1
    assert buys[0]["parameters"]["contract_type"] == "DIGITDIFF"
    assert buys[0]["parameters"]["barrier"] == "3"


def test_first_symbol_in_subscription_order_wins(controller, transport, make_config):
    transport.is_ready = False
    controller.start(make_config(symbols=["R_25", "R_10"]))
    feed(controller, EVENS, symbol="R_25")
    feed(controller, EVENS, symbol="R_10")

    transport.is_ready = True
    feed(controller, [0], symbol="R_10")

    buys = transport.buys()
    assert len(buys) == 1
    assert buys[0]["parameters"]["symbol"] == "R_25"


def test_manual_stop_clears_run_but_books_late_settlement(controller, transport, make_config):
    controller.start(make_config())
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))

    controller.stop()

    assert not controller.running
    assert controller.pending_order is None
    assert controller.active_symbol is None
    assert controller.run_state.stop_reason == STOP_MANUAL
    assert controller.status == "Stopped"
    assert transport.sent[-1] == forget_all_ticks_request()

    controller.handle_message(settlement(501, -0.35))
    assert controller.cumulative_pnl == pytest.approx(-0.35)

    feed(controller, [0])
    assert controller.tick_store.history("R_10") == []


def test_submit_trade_requires_running(controller, transport):
    assert controller.submit_trade("R_10", ContractKind.DIGITEVEN) is False
    assert transport.sent == []


def test_session_ready_restores_subscriptions(controller, transport, make_config):
    controller.start(make_config())
    feed(controller, EVENS)
    controller.handle_message(buy_ack(501))
    transport.sent.clear()

    controller.on_session_ready()

    assert transport.sent == [ticks_request("R_10"), open_contract_request(501)]


def test_session_ready_releases_unacknowledged_order(controller, make_config):
    controller.start(make_config())
    feed(controller, EVENS)

    controller.on_session_ready()

    assert controller.pending_order is None


def test_log_lines_are_timestamped(controller, make_config):
    lines = []
    statuses = []
    controller.add_log_callback(lines.append)
    controller.add_status_callback(statuses.append)

    controller.start(make_config())

    assert re.match(r"^\[\d{2}:\d{2}:\d{2}\] Bot started$", lines[-1])
    assert statuses == ["Analyzing..."]


def test_process_events_applies_queue_in_order(controller, transport, make_config):
    async def scenario():
        controller.start(make_config())
        for digit in EVENS:
            controller.enqueue(tick("R_10", quote(digit)))
        controller.enqueue(buy_ack(501))
        controller.enqueue(settlement(501, 0.33))

        task = asyncio.get_running_loop().create_task(controller.process_events())
        try:
            await wait_until(lambda: controller.cumulative_pnl > 0)
        finally:
            task.cancel()

    asyncio.run(scenario())

    assert len(transport.buys()) == 1
    assert controller.pending_order is None


@pytest.mark.parametrize("mode,barrier", [
    (TradeMode.DIFFERS, 12),
    (TradeMode.OVER, -1),
    (TradeMode.UNDER, "x"),
    (TradeMode.OVER, None),
])
def test_start_rejects_barrier_outside_digits(controller, transport, make_config, mode, barrier):
    with pytest.raises(ValueError):
        controller.start(make_config(mode=mode, barrier=barrier))

    assert not controller.running
    assert transport.sent == []


@pytest.mark.parametrize("barrier,expected", [("AUTO", None), ("auto", None), (0, 0), ("9", 9)])
def test_start_accepts_auto_or_digit_barrier(controller, make_config, barrier, expected):
    controller.start(make_config(mode=TradeMode.OVER, barrier=barrier))

    assert controller.running
    assert controller.config.fixed_barrier == expected
