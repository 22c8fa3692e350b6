"""
Trade lifecycle controller for Ghosty Trader.
Feeds ticks to the tick store, polls the signal engine under the cooldown and
single-order discipline, submits buy orders, follows their settlement and
halts the run when a take-profit or stop-loss limit is crossed.
"""

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Union
import structlog

from ..shared.types import (
    ContractKind, PendingOrder, RunPhase, RunState, TradeConfig, TradeMode,
    TradeProposal, parse_barrier
)
from ..shared.constants import (
    ALL_SYMBOLS, COOLDOWN_MS, DEFAULT_CURRENCY, LOG_SAMPLE_CHARS, MAX_LOG_EVENTS,
    MSG_BALANCE, MSG_BUY, MSG_OPEN_CONTRACT, MSG_TICK, STOP_MANUAL,
    STOP_STOP_LOSS, STOP_TAKE_PROFIT, VOLATILITY_INDICES
)
from ..shared.utils import format_log_line, now_ms
from .protocol import (
    buy_request, error_message, forget_all_ticks_request, open_contract_request,
    parse_balance_message, parse_buy_message, parse_settlement_message,
    parse_tick_message, ticks_request
)
from .risk_tracker import PnLTracker
from .signal_engine import SignalEngine
from .tick_store import TickStore

logger = structlog.get_logger(__name__)

BARRIER_MODES = (TradeMode.OVER, TradeMode.UNDER, TradeMode.DIFFERS)

EVENT_MESSAGE = "message"
EVENT_READY = "ready"
EVENT_LOST = "lost"


def resolve_symbols(selection: Union[str, List[str]]) -> List[str]:
    """Expand an instrument selection into symbols.

    Args:
        selection: A symbol, a list of symbols, or "all"

    Returns:
        List[str]: Symbols to subscribe, in order
    """
    if isinstance(selection, str):
        if selection.strip().lower() == ALL_SYMBOLS:
            return list(VOLATILITY_INDICES)
        return [selection.strip()]
    return list(dict.fromkeys(selection))


class TradeController:
    """Single-writer owner of run state, tick histories and the pending order.

    Inbound messages are queued with ``enqueue`` and applied one at a time by
    ``process_events``; ``start`` and ``stop`` never await, so they cannot
    interleave with message handling on the event loop.
    """

    def __init__(self,
                 transport: Any,
                 signal_engine: Optional[SignalEngine] = None,
                 tick_store: Optional[TickStore] = None,
                 pnl_tracker: Optional[PnLTracker] = None,
                 cooldown_ms: float = COOLDOWN_MS,
                 clock: Callable[[], float] = now_ms,
                 currency: str = DEFAULT_CURRENCY,
                 max_log_events: int = MAX_LOG_EVENTS):
        """Initialize trade controller.

        Args:
            transport: Session transport exposing ``send`` and ``is_ready``
            signal_engine: Signal engine, default thresholds when omitted
            tick_store: Tick store, default capacity when omitted
            pnl_tracker: PnL tracker, fresh when omitted
            cooldown_ms: Minimum milliseconds between two submissions
            clock: Millisecond clock used for the cooldown gate
            currency: Account currency for buy requests
            max_log_events: Number of log lines kept in memory
        """
        self.transport = transport
        self.signal_engine = signal_engine or SignalEngine()
        self.tick_store = tick_store or TickStore()
        self.pnl_tracker = pnl_tracker or PnLTracker()
        self.cooldown_ms = cooldown_ms
        self.currency = currency
        self._clock = clock

        # Run state
        self.config: Optional[TradeConfig] = None
        self.run_state = RunState()
        self.pending_order: Optional[PendingOrder] = None
        self._symbols: List[str] = []
        self._run_contracts: Set[Any] = set()

        # Inbound queue drained by a single task
        self._inbox: Optional[asyncio.Queue] = None

        # Observability
        self.status = "Idle"
        self.balance: Optional[float] = None
        self.logs: Deque[str] = deque(maxlen=max_log_events)
        self._status_callbacks: List[Callable[[str], None]] = []
        self._log_callbacks: List[Callable[[str], None]] = []

        self._stats = {
            "messages_processed": 0,
            "messages_dropped": 0,
            "ticks_processed": 0,
            "trades_submitted": 0,
            "trades_rejected": 0,
            "trade_errors": 0
        }

    @property
    def running(self) -> bool:
        return self.run_state.running

    @property
    def cumulative_pnl(self) -> float:
        return self.pnl_tracker.cumulative_pnl

    @property
    def active_symbol(self) -> Optional[str]:
        return self.run_state.active_symbol

    def add_status_callback(self, callback: Callable[[str], None]) -> None:
        """Add callback for status string updates."""
        self._status_callbacks.append(callback)

    def add_log_callback(self, callback: Callable[[str], None]) -> None:
        """Add callback for timestamped log lines."""
        self._log_callbacks.append(callback)

    # ------------------------------------------------------------------
    # Commands

    def start(self, config: TradeConfig) -> None:
        """Start a run cycle.

        Args:
            config: Run configuration

        Raises:
            ValueError: If a limit is missing, the stake is not positive, the
                barrier is not "AUTO" or a digit 0-9, or a run is already active
        """
        if not config.limits.is_complete:
            raise ValueError("Both take profit and stop loss must be set")
        if config.take_profit < 0 or config.stop_loss < 0:
            raise ValueError("Take profit and stop loss must be non-negative")
        if config.stake <= 0:
            raise ValueError("Stake must be positive")
        parse_barrier(config.barrier)
        if self.run_state.running:
            raise ValueError("A run is already in progress")

        self.config = config
        self.pnl_tracker.reset(config.limits)
        self.run_state = RunState(running=True, phase=RunPhase.RUNNING)
        self.pending_order = None
        self._run_contracts = set()
        self._symbols = resolve_symbols(config.symbols)

        self._subscribe_ticks()

        logger.info(
            "Run started",
            symbols=self._symbols,
            mode=config.mode.value,
            barrier=config.barrier,
            stake=config.stake,
            take_profit=config.take_profit,
            stop_loss=config.stop_loss
        )
        self._set_status("Analyzing...")
        self._log("Bot started")

    def stop(self, reason: str = STOP_MANUAL) -> None:
        """Stop the run: unsubscribe, clear the lock and the pending order.

        Args:
            reason: Stop reason (manual, take_profit or stop_loss)
        """
        if not self.run_state.running:
            logger.warning("Stop requested but no run is active")
            return

        self.run_state.running = False
        self.run_state.phase = RunPhase.STOPPED
        self.run_state.stop_reason = reason
        self.run_state.active_symbol = None
        self.pending_order = None
        self._unsubscribe_ticks()

        logger.info("Run stopped", reason=reason, cumulative_pnl=round(self.cumulative_pnl, 2))

        if reason == STOP_TAKE_PROFIT:
            self._set_status("Take Profit reached")
            self._log("Take Profit reached, stopping bot")
        elif reason == STOP_STOP_LOSS:
            self._set_status("Stop Loss reached")
            self._log("Stop Loss reached, stopping bot")
        else:
            self._set_status("Stopped")
            self._log("Bot stopped manually")

    def submit_trade(self,
                     symbol: str,
                     contract_kind: ContractKind,
                     barrier: Optional[int] = None) -> bool:
        """Submit a buy order under the cooldown and single-order rules.

        Args:
            symbol: Instrument to trade
            contract_kind: Contract kind to buy
            barrier: Barrier digit for digit contracts

        Returns:
            bool: True if the buy request was sent
        """
        if not self.run_state.running or self.config is None:
            logger.debug("Trade skipped, no active run", symbol=symbol)
            return False

        now = self._clock()
        last = self.run_state.last_trade_time
        if last is not None and now - last < self.cooldown_ms:
            self._stats["trades_rejected"] += 1
            self._log("Cooldown active, skipping trade...")
            return False

        if self.pending_order is not None:
            self._stats["trades_rejected"] += 1
            self._log("Waiting for previous trade to finish...")
            return False

        if not self.transport.is_ready:
            self._stats["trades_rejected"] += 1
            logger.info("Trade skipped, session not ready", symbol=symbol)
            return False

        stake = self.config.stake
        barrier_text = barrier if barrier is not None else "AUTO"

        self.pending_order = PendingOrder(
            symbol=symbol,
            contract_kind=contract_kind,
            barrier=barrier,
            stake=stake,
            submitted_at=now
        )
        self.run_state.last_trade_time = now
        self.run_state.active_symbol = symbol
        self.run_state.phase = RunPhase.LOCKED

        self._log(f"Placing {contract_kind.value} on {symbol} (barrier {barrier_text}, stake ${stake})")
        self._set_status(f"Trading {contract_kind.value} on {symbol} (barrier {barrier_text})")

        request = buy_request(symbol, contract_kind, stake, barrier, currency=self.currency)
        if not self.transport.send(request):
            self._stats["trade_errors"] += 1
            self._release_order()
            self._log(f"Trade request for {symbol} could not be sent")
            return False

        self._stats["trades_submitted"] += 1
        return True

    def find_next_signal(self) -> Optional[TradeProposal]:
        """First subscribed symbol, in subscription order, yielding a proposal."""
        if self.config is None:
            return None

        mode = self.config.mode
        barrier = self.config.fixed_barrier if mode in BARRIER_MODES else None

        for symbol in self.tick_store.symbols():
            history = self.tick_store.history(symbol)
            if not self.signal_engine.has_enough_history(history):
                continue

            candidate = self.signal_engine.detect(history, mode, barrier)
            if candidate is None:
                continue

            if candidate.requires_confirmation:
                hits = self.tick_store.confirm(symbol, candidate.confirmation_key)
                if hits < self.signal_engine.settings.confirm_count:
                    continue

            return TradeProposal(symbol, candidate.contract_kind, candidate.barrier)

        return None

    # ------------------------------------------------------------------
    # Inbound events

    def enqueue(self, data: Dict[str, Any]) -> None:
        """Queue an inbound message for the processing task."""
        self._get_inbox().put_nowait((EVENT_MESSAGE, data))

    def notify_session_ready(self) -> None:
        self._get_inbox().put_nowait((EVENT_READY, None))

    def notify_session_lost(self) -> None:
        self._get_inbox().put_nowait((EVENT_LOST, None))

    async def process_events(self) -> None:
        """Drain the inbound queue forever, one event at a time."""
        inbox = self._get_inbox()
        while True:
            kind, data = await inbox.get()
            if kind == EVENT_MESSAGE:
                self.handle_message(data)
            elif kind == EVENT_READY:
                self.on_session_ready()
            elif kind == EVENT_LOST:
                self.on_session_lost()

    def handle_message(self, data: Dict[str, Any]) -> bool:
        """Apply one inbound message.

        Returns:
            bool: False if the message was malformed and dropped
        """
        msg_type = data.get("msg_type") if isinstance(data, dict) else None
        try:
            if msg_type == MSG_TICK:
                self._on_tick(data)
            elif msg_type == MSG_BUY:
                self._on_buy(data)
            elif msg_type == MSG_OPEN_CONTRACT:
                self._on_open_contract(data)
            elif msg_type == MSG_BALANCE:
                self._on_balance(data)
            else:
                error = error_message(data)
                if error:
                    self._log(f"Error: {error}")

            self._stats["messages_processed"] += 1
            return True

        except Exception as e:
            self._stats["messages_dropped"] += 1
            logger.warning(
                "Inbound message dropped",
                msg_type=msg_type,
                error=str(e),
                error_type=type(e).__name__,
                sample=str(data)[:LOG_SAMPLE_CHARS]
            )
            return False

    def on_session_ready(self) -> None:
        """Restore subscriptions of an active run on a fresh session."""
        if not self.run_state.running:
            return

        logger.info("Session ready, restoring subscriptions", symbols=self._symbols)
        self._subscribe_ticks()

        order = self.pending_order
        if order is None:
            return
        if order.contract_id is not None:
            self.transport.send(open_contract_request(order.contract_id))
        else:
            # The acknowledgment went down with the old connection.
            self._log(f"Order on {order.symbol} lost its acknowledgment, releasing it")
            self._release_order()

    def on_session_lost(self) -> None:
        if self.run_state.running:
            self._set_status("Connection lost, waiting for reconnect...")
            logger.warning("Session lost during run", pending=self.pending_order is not None)

    def _on_tick(self, data: Dict[str, Any]) -> None:
        if not self.run_state.running:
            return

        tick = parse_tick_message(data)
        if tick is None:
            return
        if not self.tick_store.append(tick.symbol, tick.quote):
            return
        self._stats["ticks_processed"] += 1

        if self.pending_order is not None or not self.transport.is_ready:
            return

        proposal = self.find_next_signal()
        if proposal is None:
            return

        barrier_text = proposal.barrier if proposal.barrier is not None else "AUTO"
        self._log(
            f"Locked on {proposal.symbol} for {proposal.contract_kind.value} (barrier {barrier_text})"
        )
        self._set_status(f"Locked on {proposal.symbol} ({proposal.contract_kind.value})")
        self.submit_trade(proposal.symbol, proposal.contract_kind, proposal.barrier)

    def _on_buy(self, data: Dict[str, Any]) -> None:
        receipt = parse_buy_message(data)
        if receipt is None:
            return

        if receipt.contract_id is None:
            self._stats["trade_errors"] += 1
            self._log(f"Trade error: {receipt.error}")
            self._set_status("Trade error")
            self._release_order()
            return

        contract_id = receipt.contract_id
        order = self.pending_order
        if order is not None and order.contract_id is None:
            order.contract_id = contract_id
        else:
            logger.warning("Buy acknowledged without a matching pending order", contract_id=contract_id)

        self._run_contracts.add(contract_id)
        self._log(f"Trade placed -> ID: {contract_id}")
        self.transport.send(open_contract_request(contract_id))

    def _on_open_contract(self, data: Dict[str, Any]) -> None:
        settlement = parse_settlement_message(data)
        if settlement is None or not settlement.is_sold:
            return

        contract_id = settlement.contract_id
        if contract_id is None:
            logger.warning("Settlement without contract id dropped", sample=str(data)[:LOG_SAMPLE_CHARS])
            return
        if contract_id not in self._run_contracts:
            logger.info("Settlement for a contract outside this run ignored", contract_id=contract_id)
            return
        if not self.pnl_tracker.record(contract_id, settlement.profit):
            return

        profit = settlement.profit
        result = "Won" if profit > 0 else "Lost"
        self._log(f"Contract closed: {result}, Profit: ${profit:.2f}")
        self._set_status(f"Last result: {result}")

        order = self.pending_order
        if order is not None and order.contract_id == contract_id:
            self._release_order()

        if self.run_state.running:
            breach = self.pnl_tracker.limit_breach()
            if breach is not None:
                self.stop(breach)

    def _on_balance(self, data: Dict[str, Any]) -> None:
        balance = parse_balance_message(data)
        if balance is not None:
            self.balance = balance
            logger.debug("Balance updated", balance=balance)

    # ------------------------------------------------------------------
    # Helpers

    def _subscribe_ticks(self) -> None:
        for symbol in self.tick_store.subscribe(self._symbols):
            self.transport.send(ticks_request(symbol))

    def _unsubscribe_ticks(self) -> None:
        self.transport.send(forget_all_ticks_request())
        self.tick_store.unsubscribe_all()

    def _release_order(self) -> None:
        self.pending_order = None
        self.run_state.active_symbol = None
        if self.run_state.running:
            self.run_state.phase = RunPhase.RUNNING

    def _get_inbox(self) -> asyncio.Queue:
        if self._inbox is None:
            self._inbox = asyncio.Queue()
        return self._inbox

    def _set_status(self, status: str) -> None:
        self.status = status
        for callback in list(self._status_callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error("Status callback failed", error=str(e))

    def _log(self, message: str) -> None:
        line = format_log_line(message)
        self.logs.append(line)
        logger.info(message)
        for callback in list(self._log_callbacks):
            try:
                callback(line)
            except Exception as e:
                logger.error("Log callback failed", error=str(e))

    def get_status(self) -> Dict[str, Any]:
        """Get a read-only snapshot of the run."""
        order = self.pending_order
        return {
            "status": self.status,
            "running": self.run_state.running,
            "phase": self.run_state.phase.value,
            "stop_reason": self.run_state.stop_reason,
            "active_symbol": self.run_state.active_symbol,
            "cumulative_pnl": self.cumulative_pnl,
            "balance": self.balance,
            "pending_order": None if order is None else {
                "symbol": order.symbol,
                "contract_kind": order.contract_kind.value,
                "barrier": order.barrier,
                "stake": order.stake,
                "contract_id": order.contract_id
            },
            "symbols": list(self._symbols),
            "statistics": {**self._stats, **self.pnl_tracker.get_statistics()},
            "tick_store": self.tick_store.get_statistics()
        }
