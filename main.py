#!/usr/bin/env python3
"""
Main entry point for Ghosty Trader.
Connects to the venue, runs one trading cycle and shuts down cleanly.
"""

import asyncio
import os
import signal
import sys
from typing import Any, Dict, Optional
import structlog
from dotenv import load_dotenv

from ghosty.core.trading_system import TradingSystem
from ghosty.shared.utils import setup_logging
from ghosty.shared.constants import (
    CONFIG_FILE, DEFAULT_LOG_LEVEL, ERROR_CONFIG_LOAD, ERROR_PRECONDITION,
    LOG_LEVELS, TOKEN_ENV_VAR
)

logger = structlog.get_logger(__name__)


class GhostyTrader:
    """Main application class for Ghosty Trader."""

    def __init__(self,
                 config_file: str = CONFIG_FILE,
                 token: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 log_level: str = DEFAULT_LOG_LEVEL):
        """Initialize the application.

        Args:
            config_file: Path to system configuration file
            token: API token for the venue session
            overrides: Trading values taking precedence over the config file
            log_level: Logging level
        """
        self.config_file = config_file
        self.token = token
        self.overrides = overrides or {}
        self.log_level = log_level
        self.trading_system: Optional[TradingSystem] = None
        self.shutdown_event = asyncio.Event()

    async def start(self) -> int:
        """Run the application until the run halts or a signal arrives.

        Returns:
            int: Exit code (0 for success)
        """
        try:
            setup_logging(self.log_level)
            logger.info("Initializing Ghosty Trader")

            self.trading_system = TradingSystem(self.config_file)
            if not await self.trading_system.start():
                logger.error("System startup failed")
                return ERROR_CONFIG_LOAD

            system_config = self.trading_system.config
            setup_logging(self.log_level, system_config.system.get("log_dir", "logs"))

            try:
                trade_config = self.trading_system.config_manager.build_trade_config(self.overrides)
                if not trade_config.limits.is_complete:
                    raise ValueError("Enter both take profit and stop loss")
                self.trading_system.connect(self.token)
            except ValueError as e:
                logger.error("Cannot start trading", error=str(e))
                return ERROR_PRECONDITION

            self._setup_signal_handlers()

            ready_timeout = float(system_config.session.get("ready_timeout", 30.0))
            if await self.trading_system.wait_until_ready(ready_timeout):
                logger.info("Session ready")
            else:
                logger.warning("Session not ready yet, subscriptions follow once it is")

            try:
                self.trading_system.start_trading(trade_config)
            except ValueError as e:
                logger.error("Cannot start trading", error=str(e))
                return ERROR_PRECONDITION

            logger.info("Ghosty Trader is running, press Ctrl+C to stop")
            await self._run_main_loop()
            return 0

        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
            return 0
        finally:
            await self._cleanup()

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            logger.info(f"Received signal {signum}, initiating shutdown")
            loop.call_soon_threadsafe(self.shutdown_event.set)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    async def _run_main_loop(self) -> None:
        """Idle until shutdown, with periodic health checks."""
        health_check_interval = 30.0
        last_health_check = 0.0
        loop = asyncio.get_running_loop()

        while not self.shutdown_event.is_set():
            current_time = loop.time()
            if current_time - last_health_check > health_check_interval:
                self.trading_system.health_check()
                last_health_check = current_time

            if not self.trading_system.is_trading:
                trading = self.trading_system.controller.get_status()
                logger.info(
                    "Run finished",
                    reason=trading.get("stop_reason"),
                    cumulative_pnl=round(trading.get("cumulative_pnl", 0.0), 2)
                )
                break

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=1.0)
            except asyncio.TimeoutError:
                pass

    async def _cleanup(self) -> None:
        """Cleanup resources."""
        if self.trading_system and self.trading_system.is_running:
            logger.info("Cleaning up resources")
            await self.trading_system.stop()
            logger.info("Cleanup completed")


def parse_args(argv=None):
    import argparse
    parser = argparse.ArgumentParser(description="Ghosty Trader")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to configuration file")
    parser.add_argument("--log-level", default=DEFAULT_LOG_LEVEL, choices=LOG_LEVELS, help="Logging level")
    parser.add_argument("--token", default=None, help=f"API token (defaults to ${TOKEN_ENV_VAR})")
    parser.add_argument("--symbol", default=None, help="Instrument symbol or 'all'")
    parser.add_argument("--mode", default=None,
                        help="Trade type: RANDOM, OVER, UNDER, DIFFERS, EVENODD, RISEFALL")
    parser.add_argument("--barrier", default=None, help="Barrier digit 0-9 or AUTO")
    parser.add_argument("--stake", type=float, default=None, help="Stake per trade")
    parser.add_argument("--take-profit", type=float, default=None, help="Take profit amount")
    parser.add_argument("--stop-loss", type=float, default=None, help="Stop loss amount")
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    """Main entry point."""
    load_dotenv()
    args = parse_args(argv)

    overrides = {
        "symbols": args.symbol,
        "mode": args.mode,
        "barrier": args.barrier,
        "stake": args.stake,
        "take_profit": args.take_profit,
        "stop_loss": args.stop_loss
    }

    app = GhostyTrader(
        config_file=args.config,
        token=args.token or os.getenv(TOKEN_ENV_VAR, ""),
        overrides=overrides,
        log_level=args.log_level
    )
    return await app.start()


def main_cli() -> None:
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)


if __name__ == "__main__":
    main_cli()
