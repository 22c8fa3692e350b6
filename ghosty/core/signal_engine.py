"""
Signal engine for Ghosty Trader.
Derives last-digit distributions and directional streaks from a quote history
and decides whether a tradeable condition exists for a trade mode.
"""

from typing import Any, List, Optional, Sequence
import numpy as np
import structlog

from ..shared.types import ContractKind, SignalCandidate, SignalSettings, TradeMode
from ..shared.constants import (
    AUTO_PARITY_THRESHOLD, CONFIRM_COUNT, DIGITS, MIN_HISTORY,
    OVER_BARRIER_CANDIDATES, PROB_THRESHOLD, SIDE_SUM_THRESHOLD,
    STREAK_LENGTH, UNDER_BARRIER_CANDIDATES
)
from ..shared.utils import digits_from_history

logger = structlog.get_logger(__name__)


def default_signal_settings() -> SignalSettings:
    return SignalSettings(
        prob_threshold=PROB_THRESHOLD,
        side_sum_threshold=SIDE_SUM_THRESHOLD,
        auto_parity_threshold=AUTO_PARITY_THRESHOLD,
        confirm_count=CONFIRM_COUNT,
        streak_length=STREAK_LENGTH,
        min_history=MIN_HISTORY
    )


def digit_distribution(history: Sequence[Any]) -> np.ndarray:
    """Percentage frequency of each last digit 0-9 over the history.

    Quotes whose string form does not end in a digit are left out, so a
    non-empty result always sums to 100.

    Args:
        history: Quote values, oldest first

    Returns:
        np.ndarray: Ten percentages (all zero when no digit is available)
    """
    digits = digits_from_history(history)
    if not digits:
        return np.zeros(DIGITS)

    counts = np.bincount(np.asarray(digits, dtype=int), minlength=DIGITS)
    return counts * 100.0 / len(digits)


class SignalEngine:
    """Threshold heuristics over last-digit statistics."""

    def __init__(self, settings: Optional[SignalSettings] = None):
        """Initialize signal engine.

        Args:
            settings: Heuristic thresholds, defaults when omitted
        """
        self.settings = settings or default_signal_settings()

        logger.debug(
            "Signal engine initialized",
            prob_threshold=self.settings.prob_threshold,
            side_sum_threshold=self.settings.side_sum_threshold,
            confirm_count=self.settings.confirm_count
        )

    def has_enough_history(self, history: Sequence[Any]) -> bool:
        return len(history) >= self.settings.min_history

    def detect(self,
               history: Sequence[Any],
               mode: TradeMode,
               barrier: Optional[int] = None) -> Optional[SignalCandidate]:
        """Evaluate one symbol's history for a trade mode.

        Keyed candidates still need the confirmation debounce before they
        become a proposal; AUTO candidates carry no key and act at once.

        Args:
            history: Quote values, oldest first
            mode: Trade-type mode of the run
            barrier: Configured barrier digit, None for automatic selection

        Returns:
            SignalCandidate: Condition met, or None
        """
        digits = digits_from_history(history)
        if not digits:
            return None

        probs = digit_distribution(history)

        if mode is TradeMode.AUTO:
            return self._detect_auto(probs, digits)
        if mode is TradeMode.OVER:
            return self._detect_over(probs, digits, barrier)
        if mode is TradeMode.UNDER:
            return self._detect_under(probs, digits, barrier)
        if mode is TradeMode.DIFFERS:
            return self._detect_differs(probs, barrier)
        if mode is TradeMode.EVEN_ODD:
            return self._detect_even_odd(probs, digits)
        if mode is TradeMode.RISE_FALL:
            return self._detect_rise_fall(digits)

        raise ValueError(f"Unsupported trade mode: {mode}")

    def choose_over_barrier(self, probs: np.ndarray, last_digit: Optional[int]) -> Optional[int]:
        """First candidate whose low side 0..b is all rare and holds the last digit."""
        for candidate in OVER_BARRIER_CANDIDATES:
            low_side = range(0, candidate + 1)
            if not all(probs[d] < self.settings.prob_threshold for d in low_side):
                continue
            if last_digit is not None and last_digit in low_side:
                return candidate
        return None

    def choose_under_barrier(self, probs: np.ndarray, last_digit: Optional[int]) -> Optional[int]:
        """First candidate whose high side b..9 is all rare and holds the last digit."""
        for candidate in UNDER_BARRIER_CANDIDATES:
            high_side = range(candidate, DIGITS)
            if not all(probs[d] < self.settings.prob_threshold for d in high_side):
                continue
            if last_digit is not None and last_digit in high_side:
                return candidate
        return None

    def is_rising(self, digits: List[int]) -> bool:
        run = digits[-self.settings.streak_length:]
        if len(digits) < self.settings.streak_length:
            return False
        return all(a < b for a, b in zip(run, run[1:]))

    def is_falling(self, digits: List[int]) -> bool:
        run = digits[-self.settings.streak_length:]
        if len(digits) < self.settings.streak_length:
            return False
        return all(a > b for a, b in zip(run, run[1:]))

    def parity_streak(self, digits: List[int], parity: int) -> bool:
        """True if the last streak-length digits all have the given parity."""
        if len(digits) < self.settings.streak_length:
            return False
        return all(d % 2 == parity for d in digits[-self.settings.streak_length:])

    def _detect_auto(self, probs: np.ndarray, digits: List[int]) -> Optional[SignalCandidate]:
        even = float(probs[0::2].sum())
        odd = 100.0 - even

        if even > self.settings.auto_parity_threshold:
            return SignalCandidate(ContractKind.DIGITEVEN)
        if odd > self.settings.auto_parity_threshold:
            return SignalCandidate(ContractKind.DIGITODD)

        if (probs < self.settings.prob_threshold).any():
            return SignalCandidate(ContractKind.DIGITDIFF, barrier=int(np.argmin(probs)))

        if self.is_rising(digits):
            return SignalCandidate(ContractKind.RISE)
        if self.is_falling(digits):
            return SignalCandidate(ContractKind.FALL)

        return None

    def _detect_over(self, probs: np.ndarray, digits: List[int],
                     barrier: Optional[int]) -> Optional[SignalCandidate]:
        if barrier is None:
            barrier = self.choose_over_barrier(probs, digits[-1])
        if barrier is None:
            return None

        upper = float(probs[barrier + 1:].sum())
        if upper >= self.settings.side_sum_threshold:
            return SignalCandidate(ContractKind.DIGITOVER, barrier=barrier,
                                   confirmation_key=f"OVER{barrier}")
        return None

    def _detect_under(self, probs: np.ndarray, digits: List[int],
                      barrier: Optional[int]) -> Optional[SignalCandidate]:
        if barrier is None:
            barrier = self.choose_under_barrier(probs, digits[-1])
        if barrier is None:
            return None

        lower = float(probs[:barrier + 1].sum())
        if lower >= self.settings.side_sum_threshold:
            return SignalCandidate(ContractKind.DIGITUNDER, barrier=barrier,
                                   confirmation_key=f"UNDER{barrier}")
        return None

    def _detect_differs(self, probs: np.ndarray,
                        barrier: Optional[int]) -> Optional[SignalCandidate]:
        if barrier is None:
            barrier = int(np.argmin(probs))

        if probs[barrier] < self.settings.prob_threshold:
            return SignalCandidate(ContractKind.DIGITDIFF, barrier=barrier,
                                   confirmation_key=f"DIFF{barrier}")
        return None

    def _detect_even_odd(self, probs: np.ndarray, digits: List[int]) -> Optional[SignalCandidate]:
        even = float(probs[0::2].sum())
        odd = 100.0 - even

        # Entry waits for a run against the dominant side.
        if even > self.settings.side_sum_threshold:
            if self.parity_streak(digits, 1):
                return SignalCandidate(ContractKind.DIGITEVEN, confirmation_key="EVEN")
        elif odd > self.settings.side_sum_threshold:
            if self.parity_streak(digits, 0):
                return SignalCandidate(ContractKind.DIGITODD, confirmation_key="ODD")
        return None

    def _detect_rise_fall(self, digits: List[int]) -> Optional[SignalCandidate]:
        if self.is_rising(digits):
            return SignalCandidate(ContractKind.RISE, confirmation_key="RISE")
        if self.is_falling(digits):
            return SignalCandidate(ContractKind.FALL, confirmation_key="FALL")
        return None
