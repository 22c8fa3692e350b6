"""
Realized profit/loss accumulator with take-profit and stop-loss limits.
"""

from typing import Any, Dict, Optional, Set
import structlog

from ..shared.types import Limits
from ..shared.constants import STOP_STOP_LOSS, STOP_TAKE_PROFIT

logger = structlog.get_logger(__name__)


class PnLTracker:
    """Running realized PnL since the last start, booked once per contract."""

    def __init__(self, limits: Optional[Limits] = None):
        self.limits = limits or Limits()
        self.cumulative_pnl = 0.0
        self._settled: Set[Any] = set()
        self._stats = {"trades": 0, "wins": 0, "losses": 0}

    def reset(self, limits: Limits) -> None:
        """Zero the accumulator for a new run."""
        self.limits = limits
        self.cumulative_pnl = 0.0
        self._settled = set()
        self._stats = {"trades": 0, "wins": 0, "losses": 0}

    def is_settled(self, contract_id: Any) -> bool:
        return contract_id in self._settled

    def record(self, contract_id: Any, profit: float) -> bool:
        """Book a settled contract.

        Args:
            contract_id: Venue identifier of the contract
            profit: Realized profit (negative for a loss)

        Returns:
            bool: False if this contract was already booked
        """
        if contract_id in self._settled:
            logger.debug("Duplicate settlement ignored", contract_id=contract_id)
            return False

        self._settled.add(contract_id)
        self.cumulative_pnl += profit
        self._stats["trades"] += 1
        if profit > 0:
            self._stats["wins"] += 1
        else:
            self._stats["losses"] += 1

        logger.info(
            "Settlement booked",
            contract_id=contract_id,
            profit=profit,
            cumulative_pnl=round(self.cumulative_pnl, 2)
        )
        return True

    def limit_breach(self) -> Optional[str]:
        """Which limit the cumulative PnL has crossed, if any."""
        take_profit = self.limits.take_profit
        stop_loss = self.limits.stop_loss

        if take_profit is not None and self.cumulative_pnl >= take_profit:
            return STOP_TAKE_PROFIT
        if stop_loss is not None and self.cumulative_pnl <= -stop_loss:
            return STOP_STOP_LOSS
        return None

    def get_statistics(self) -> Dict[str, Any]:
        return {
            **self._stats,
            "cumulative_pnl": self.cumulative_pnl,
            "take_profit": self.limits.take_profit,
            "stop_loss": self.limits.stop_loss
        }
