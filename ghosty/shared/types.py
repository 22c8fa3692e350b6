"""
Shared type definitions and data classes for Ghosty Trader.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
from enum import Enum
import asyncio


class SessionState(Enum):
    """Connection lifecycle states of the session transport."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHORIZING = "authorizing"
    READY = "ready"
    ERROR = "error"


class TradeMode(Enum):
    """Trade-type modes selectable for a run."""
    AUTO = "RANDOM"
    OVER = "OVER"
    UNDER = "UNDER"
    DIFFERS = "DIFFERS"
    EVEN_ODD = "EVENODD"
    RISE_FALL = "RISEFALL"

    @classmethod
    def parse(cls, value: Union[str, "TradeMode"]) -> "TradeMode":
        """Accept either the wire value or the member name (case-insensitive)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        for mode in cls:
            if text in (mode.value, mode.name, mode.name.replace("_", "")):
                return mode
        raise ValueError(f"Unknown trade mode: {value}")


class ContractKind(Enum):
    """Binary-outcome contract kinds the engine can propose."""
    DIGITEVEN = "DIGITEVEN"
    DIGITODD = "DIGITODD"
    DIGITDIFF = "DIGITDIFF"
    DIGITOVER = "DIGITOVER"
    DIGITUNDER = "DIGITUNDER"
    RISE = "RISE"
    FALL = "FALL"

    @property
    def api_contract_type(self) -> str:
        """Contract type as the venue names it (rise/fall are call/put)."""
        if self is ContractKind.RISE:
            return "CALL"
        if self is ContractKind.FALL:
            return "PUT"
        return self.value


class RunPhase(Enum):
    """Trade lifecycle phases of a run cycle."""
    IDLE = "idle"
    RUNNING = "running"
    LOCKED = "locked"
    STOPPED = "stopped"


@dataclass
class Session:
    """One logical connection attempt. Replaced wholesale on reconnect."""
    token: str
    connection: Any = None
    state: SessionState = SessionState.CONNECTING
    is_open: bool = False
    keepalive_task: Optional[asyncio.Task] = None
    writer_task: Optional[asyncio.Task] = None
    outbound: Optional[asyncio.Queue] = None


@dataclass
class Tick:
    """Single price quote for an instrument."""
    symbol: str
    quote: float
    epoch: int = 0


@dataclass
class BuyReceipt:
    """Venue acknowledgment of a buy request."""
    contract_id: Optional[int]
    buy_price: float = 0.0
    error: Optional[str] = None


@dataclass
class Settlement:
    """Update from an open-contract stream."""
    contract_id: Optional[int]
    is_sold: bool
    profit: float
    status: str = "open"


@dataclass
class SignalCandidate:
    """Condition met by the signal engine, before confirmation debounce."""
    contract_kind: ContractKind
    barrier: Optional[int] = None
    confirmation_key: Optional[str] = None

    @property
    def requires_confirmation(self) -> bool:
        return self.confirmation_key is not None


@dataclass
class TradeProposal:
    """Trade the controller should submit."""
    symbol: str
    contract_kind: ContractKind
    barrier: Optional[int] = None


@dataclass
class PendingOrder:
    """The single in-flight order of a controller."""
    symbol: str
    contract_kind: ContractKind
    barrier: Optional[int]
    stake: float
    submitted_at: float
    contract_id: Optional[int] = None


@dataclass(frozen=True)
class Limits:
    """Take-profit and stop-loss thresholds for a run."""
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None

    @property
    def is_complete(self) -> bool:
        return self.take_profit is not None and self.stop_loss is not None


@dataclass
class RunState:
    """State of the current (or last) run cycle."""
    running: bool = False
    active_symbol: Optional[str] = None
    last_trade_time: Optional[float] = None
    phase: RunPhase = RunPhase.IDLE
    stop_reason: Optional[str] = None


@dataclass
class SignalSettings:
    """Heuristic thresholds used by the signal engine."""
    prob_threshold: float
    side_sum_threshold: float
    auto_parity_threshold: float
    confirm_count: int
    streak_length: int
    min_history: int


def parse_barrier(value: Union[str, int]) -> Optional[int]:
    """Barrier digit 0-9, or None when the value is "AUTO".

    Raises:
        ValueError: If the value is neither "AUTO" nor a digit 0-9
    """
    if isinstance(value, str) and value.strip().upper() == "AUTO":
        return None
    try:
        digit = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"barrier must be 'AUTO' or a digit 0-9, got {value!r}") from None
    if not 0 <= digit <= 9:
        raise ValueError(f"barrier must be 'AUTO' or a digit 0-9, got {value!r}")
    return digit


@dataclass
class TradeConfig:
    """Run configuration handed to the controller by its collaborators."""
    symbols: Union[str, List[str]] = "all"
    mode: TradeMode = TradeMode.AUTO
    barrier: Union[str, int] = "AUTO"
    stake: float = 0.35
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None

    @property
    def limits(self) -> Limits:
        return Limits(take_profit=self.take_profit, stop_loss=self.stop_loss)

    @property
    def fixed_barrier(self) -> Optional[int]:
        """Configured barrier digit, or None when barrier selection is automatic."""
        return parse_barrier(self.barrier)


@dataclass
class SystemConfig:
    """Complete system configuration."""
    system: Dict[str, Any]
    session: Dict[str, Any]
    trading: Dict[str, Any]
    signal: Dict[str, Any]
    data: Dict[str, Any] = field(default_factory=dict)
