"""
Wire protocol for the venue's JSON websocket API.
Builds outbound requests and parses the inbound messages the engine acts on.
"""

from typing import Any, Dict, Optional
import structlog

from ..shared.types import BuyReceipt, ContractKind, Settlement, Tick
from ..shared.constants import (
    CONTRACT_BASIS, CONTRACT_DURATION, CONTRACT_DURATION_UNIT, DEFAULT_CURRENCY,
    LOG_SAMPLE_CHARS, MSG_BALANCE, MSG_BUY, MSG_OPEN_CONTRACT, MSG_TICK
)
from ..shared.utils import safe_float

logger = structlog.get_logger(__name__)


def ping_request() -> Dict[str, Any]:
    return {"ping": 1}


def authorize_request(token: str) -> Dict[str, Any]:
    return {"authorize": token}


def balance_request() -> Dict[str, Any]:
    return {"balance": 1, "subscribe": 1}


def ticks_request(symbol: str) -> Dict[str, Any]:
    return {"ticks": symbol, "subscribe": 1}


def forget_all_ticks_request() -> Dict[str, Any]:
    return {"forget_all": "ticks"}


def buy_request(symbol: str,
                contract_kind: ContractKind,
                stake: float,
                barrier: Optional[int] = None,
                currency: str = DEFAULT_CURRENCY) -> Dict[str, Any]:
    """Build a one-tick, stake-based buy request.

    Args:
        symbol: Instrument to trade
        contract_kind: Generic contract kind (rise/fall mapped to call/put)
        stake: Stake amount
        barrier: Barrier digit for digit contracts, omitted when None
        currency: Account currency

    Returns:
        Dict[str, Any]: Buy request ready to serialize
    """
    parameters = {
        "amount": stake,
        "basis": CONTRACT_BASIS,
        "contract_type": contract_kind.api_contract_type,
        "currency": currency,
        "duration": CONTRACT_DURATION,
        "duration_unit": CONTRACT_DURATION_UNIT,
        "symbol": symbol,
    }
    if barrier is not None:
        parameters["barrier"] = str(barrier)

    return {"buy": 1, "price": stake, "parameters": parameters}


def open_contract_request(contract_id: Any) -> Dict[str, Any]:
    return {"proposal_open_contract": 1, "contract_id": contract_id, "subscribe": 1}


def error_message(data: Dict[str, Any]) -> Optional[str]:
    """Venue error text carried by a message, or None."""
    error = data.get("error")
    if not error:
        return None
    if isinstance(error, dict):
        return str(error.get("message") or error.get("code") or "unknown error")
    return str(error)


def parse_tick_message(data: Dict[str, Any]) -> Optional[Tick]:
    """Parse a tick message.

    Args:
        data: Inbound message

    Returns:
        Tick: Parsed tick or None if invalid
    """
    if data.get("msg_type") != MSG_TICK:
        return None

    tick = data.get("tick")
    if not isinstance(tick, dict) or not tick.get("symbol") or tick.get("quote") is None:
        logger.warning("Malformed tick message dropped", sample=str(data)[:LOG_SAMPLE_CHARS])
        return None

    return Tick(
        symbol=str(tick["symbol"]),
        quote=tick["quote"],
        epoch=int(tick.get("epoch", 0) or 0)
    )


def parse_buy_message(data: Dict[str, Any]) -> Optional[BuyReceipt]:
    """Parse a buy acknowledgment, which carries either a contract id or an error."""
    if data.get("msg_type") != MSG_BUY:
        return None

    error = error_message(data)
    buy = data.get("buy")
    if isinstance(buy, dict) and buy.get("contract_id"):
        return BuyReceipt(
            contract_id=buy["contract_id"],
            buy_price=safe_float(buy.get("buy_price")),
            error=error
        )

    return BuyReceipt(contract_id=None, error=error or "buy acknowledgment without contract id")


def parse_settlement_message(data: Dict[str, Any]) -> Optional[Settlement]:
    """Parse an open-contract update.

    Profit comes from the venue's ``profit`` field, falling back to
    ``sell_price - buy_price`` when only those are present.
    """
    if data.get("msg_type") != MSG_OPEN_CONTRACT:
        return None

    contract = data.get("proposal_open_contract")
    if not isinstance(contract, dict):
        logger.warning("Malformed settlement message dropped", sample=str(data)[:LOG_SAMPLE_CHARS])
        return None

    if contract.get("profit") is not None:
        profit = safe_float(contract.get("profit"))
    else:
        profit = safe_float(contract.get("sell_price")) - safe_float(contract.get("buy_price"))

    return Settlement(
        contract_id=contract.get("contract_id"),
        is_sold=bool(contract.get("is_sold")),
        profit=profit,
        status=str(contract.get("status") or "open")
    )


def parse_balance_message(data: Dict[str, Any]) -> Optional[float]:
    """Balance amount from a balance message, or None."""
    if data.get("msg_type") != MSG_BALANCE:
        return None
    balance = data.get("balance")
    if not isinstance(balance, dict) or balance.get("balance") is None:
        return None
    return safe_float(balance["balance"])
