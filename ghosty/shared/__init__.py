"""
Shared utilities and types.
"""

from .types import (
    SessionState, TradeMode, ContractKind, RunPhase, Session, Tick,
    BuyReceipt, Settlement, SignalCandidate, TradeProposal, PendingOrder,
    Limits, RunState, SignalSettings, TradeConfig, SystemConfig
)
from .constants import *
from .utils import *

__all__ = [
    # Types
    'SessionState',
    'TradeMode',
    'ContractKind',
    'RunPhase',
    'Session',
    'Tick',
    'BuyReceipt',
    'Settlement',
    'SignalCandidate',
    'TradeProposal',
    'PendingOrder',
    'Limits',
    'RunState',
    'SignalSettings',
    'TradeConfig',
    'SystemConfig',

    # Constants and utils are imported with *
]
