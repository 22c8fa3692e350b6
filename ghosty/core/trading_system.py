"""
Main trading system coordinator for Ghosty Trader.
Wires configuration, session transport and trade controller together and
manages the system lifecycle.
"""

import asyncio
from typing import Any, Dict, Optional
import structlog

from .config_manager import ConfigManager
from .session import ConnectFactory, SessionTransport
from .tick_store import TickStore
from .signal_engine import SignalEngine
from .risk_tracker import PnLTracker
from .trade_controller import TradeController
from .protocol import balance_request
from ..shared.types import SessionState, SystemConfig, TradeConfig
from ..shared.constants import CONFIG_FILE

logger = structlog.get_logger(__name__)


class TradingSystem:
    """Main system coordinator that orchestrates all components."""

    def __init__(self,
                 config_file: str = CONFIG_FILE,
                 connect_factory: Optional[ConnectFactory] = None):
        """Initialize the trading system.

        Args:
            config_file: Path to system configuration file
            connect_factory: Optional connection factory for the transport
        """
        self.config_file = config_file
        self.state = "initializing"
        self._connect_factory = connect_factory

        # Core components
        self.config_manager: Optional[ConfigManager] = None
        self.config: Optional[SystemConfig] = None
        self.transport: Optional[SessionTransport] = None
        self.controller: Optional[TradeController] = None

        self._processor_task: Optional[asyncio.Task] = None
        self.is_running = False

        self.stats = {
            "startup_time": 0.0,
            "uptime_seconds": 0,
            "sessions_ready": 0,
            "sessions_lost": 0
        }

        logger.debug("Trading system initialized", config_file=config_file)

    async def start(self) -> bool:
        """Load configuration, build components and start event processing.

        Returns:
            bool: True if system started successfully
        """
        try:
            start_time = asyncio.get_running_loop().time()
            self.state = "loading"

            self.config_manager = ConfigManager(self.config_file)
            self.config = self.config_manager.load_config()

            self._initialize_components()

            self._processor_task = asyncio.get_running_loop().create_task(
                self.controller.process_events()
            )

            self.is_running = True
            self.state = "running"
            self.stats["startup_time"] = asyncio.get_running_loop().time() - start_time

            logger.info(
                "Trading system started",
                startup_time=f"{self.stats['startup_time']:.2f}s",
                endpoint=self.transport.url
            )
            return True

        except Exception as e:
            logger.error("Failed to start trading system", error=str(e))
            self.state = "error"
            return False

    def connect(self, token: str) -> None:
        """Open the venue session.

        Raises:
            ValueError: If the token is empty
        """
        self.transport.connect(token)

    async def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        return await self.transport.wait_until_ready(timeout)

    def start_trading(self, trade_config: TradeConfig) -> None:
        """Start a run cycle.

        Raises:
            ValueError: On a precondition violation (missing limits, bad stake)
        """
        self.controller.start(trade_config)

    def stop_trading(self) -> None:
        self.controller.stop()

    @property
    def is_trading(self) -> bool:
        return bool(self.controller and self.controller.running)

    async def stop(self) -> None:
        """Stop the trading system gracefully."""
        if not self.is_running:
            logger.warning("Trading system is not running")
            return

        logger.info("Stopping trading system")
        self.state = "stopping"
        self.is_running = False

        try:
            if self.controller and self.controller.running:
                self.controller.stop()

            if self.transport:
                await self.transport.disconnect()

            if self._processor_task:
                self._processor_task.cancel()
                try:
                    await self._processor_task
                except asyncio.CancelledError:
                    pass

            self.state = "stopped"
            logger.info(
                "Trading system stopped",
                cumulative_pnl=round(self.controller.cumulative_pnl, 2) if self.controller else 0.0
            )

        except Exception as e:
            logger.error("Error during system shutdown", error=str(e))
            self.state = "error"

    def get_status(self) -> Dict[str, Any]:
        """Get current system status.

        Returns:
            Dict[str, Any]: System status information
        """
        status = {
            "state": self.state,
            "is_running": self.is_running,
            "statistics": self.stats.copy()
        }

        if self.transport:
            status["session"] = self.transport.get_statistics()

        if self.controller:
            status["trading"] = self.controller.get_status()

        return status

    def health_check(self) -> None:
        """Log a periodic health snapshot."""
        status = self.get_status()
        session = status.get("session", {})
        trading = status.get("trading", {})

        logger.debug(
            "Periodic health check",
            state=status["state"],
            session_state=session.get("state"),
            frames_received=session.get("frames_received", 0),
            frames_dropped=session.get("frames_dropped", 0),
            running=trading.get("running"),
            cumulative_pnl=trading.get("cumulative_pnl"),
            active_symbol=trading.get("active_symbol")
        )

        if self.is_trading and not self.transport.is_ready:
            logger.warning("Run active but session not ready", session_state=session.get("state"))

    def _initialize_components(self) -> None:
        """Build transport, tick store, signal engine, tracker and controller."""
        session = self.config.session
        trading = self.config.trading

        self.transport = SessionTransport(
            endpoint=session["endpoint"],
            app_id=str(session["app_id"]),
            ping_interval=float(session["ping_interval"]),
            reconnect_delay=float(session["reconnect_delay"]),
            connect_factory=self._connect_factory
        )

        self.controller = TradeController(
            transport=self.transport,
            signal_engine=SignalEngine(self.config_manager.signal_settings()),
            tick_store=TickStore(capacity=int(self.config.data["tick_capacity"])),
            pnl_tracker=PnLTracker(),
            cooldown_ms=float(trading["cooldown_ms"]),
            currency=trading["currency"]
        )

        self.transport.add_message_callback(self.controller.enqueue)
        self.transport.add_ready_callback(self._on_session_ready)
        self.transport.add_disconnect_callback(self._on_session_lost)
        self.transport.add_state_callback(self._on_state_change)

        logger.debug(
            "Components initialized",
            tick_capacity=self.controller.tick_store.capacity,
            cooldown_ms=self.controller.cooldown_ms
        )

    def _on_session_ready(self) -> None:
        self.stats["sessions_ready"] += 1
        self.transport.send(balance_request())
        self.controller.notify_session_ready()

    def _on_session_lost(self) -> None:
        self.stats["sessions_lost"] += 1
        self.controller.notify_session_lost()

    def _on_state_change(self, state: SessionState) -> None:
        logger.info("Session state", state=state.value)
