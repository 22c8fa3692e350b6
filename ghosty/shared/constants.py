"""
System constants for Ghosty Trader.
"""

# Venue connection
WS_ENDPOINT = "wss://ws.derivws.com/websockets/v3"
DEFAULT_APP_ID = "1089"
PING_INTERVAL_S = 30.0
RECONNECT_DELAY_S = 3.0
TOKEN_ENV_VAR = "DERIV_API_TOKEN"

# Message Protocol
JSON_ENCODING = "utf-8"
LOG_SAMPLE_CHARS = 200

MSG_AUTHORIZE = "authorize"
MSG_BALANCE = "balance"
MSG_TICK = "tick"
MSG_BUY = "buy"
MSG_OPEN_CONTRACT = "proposal_open_contract"

# Instruments
VOLATILITY_INDICES = [
    "R_10",
    "R_25",
    "R_50",
    "R_75",
    "R_100",
    "1HZ10V",
    "1HZ25V",
    "1HZ50V",
    "1HZ75V",
    "1HZ100V",
]
ALL_SYMBOLS = "all"

# Contracts
DEFAULT_STAKE = 0.35
DEFAULT_CURRENCY = "USD"
CONTRACT_DURATION = 1
CONTRACT_DURATION_UNIT = "t"
CONTRACT_BASIS = "stake"
AUTO_BARRIER = "AUTO"

# Trade discipline
COOLDOWN_MS = 2500

# Signal heuristics (percentages)
PROB_THRESHOLD = 10.0
SIDE_SUM_THRESHOLD = 55.0
AUTO_PARITY_THRESHOLD = 60.0
CONFIRM_COUNT = 2
STREAK_LENGTH = 3
MIN_HISTORY = 10

OVER_BARRIER_CANDIDATES = [1, 2, 3]
UNDER_BARRIER_CANDIDATES = [6, 7, 8]
DIGITS = 10

# Data Management
TICK_CAPACITY = 50
MAX_LOG_EVENTS = 500

# Logging
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
DEFAULT_LOG_LEVEL = "INFO"
LOG_TIME_FORMAT = "%H:%M:%S"

# File Paths
CONFIG_FILE = "config/system_config.json"
LOG_DIR = "logs"

# Stop reasons
STOP_MANUAL = "manual"
STOP_TAKE_PROFIT = "take_profit"
STOP_STOP_LOSS = "stop_loss"

# Exit codes
ERROR_CONFIG_LOAD = 1003
ERROR_PRECONDITION = 1007
