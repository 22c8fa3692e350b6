"""
Core session-and-decision engine components.
"""

from .trading_system import TradingSystem
from .config_manager import ConfigManager
from .session import SessionTransport
from .tick_store import TickStore
from .signal_engine import SignalEngine, digit_distribution
from .risk_tracker import PnLTracker
from .trade_controller import TradeController

__all__ = [
    'TradingSystem',
    'ConfigManager',
    'SessionTransport',
    'TickStore',
    'SignalEngine',
    'digit_distribution',
    'PnLTracker',
    'TradeController'
]
