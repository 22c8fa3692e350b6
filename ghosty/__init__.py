"""
Ghosty Trader - automated digit-contract trading over a streaming tick feed.
"""

__version__ = "1.0.0"
__author__ = "Ghosty Trader Team"

# Core system components
from .core.trading_system import TradingSystem
from .core.trade_controller import TradeController
from .core.session import SessionTransport

# Shared types
from .shared.types import (
    SessionState, TradeMode, ContractKind, RunPhase, TradeConfig, Limits
)

__all__ = [
    'TradingSystem',
    'TradeController',
    'SessionTransport',
    'SessionState',
    'TradeMode',
    'ContractKind',
    'RunPhase',
    'TradeConfig',
    'Limits'
]
