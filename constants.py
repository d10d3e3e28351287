#!/usr/bin/env python3

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
TERMMAX_API_BASE_URL = 'https://api.termmax.ts.finance'
DEFILLAMA_API_BASE_URL = 'https://api.llama.fi'
DEFILLAMA_YIELDS_API_URL = 'https://yields.llama.fi/pools'
DEFILLAMA_PROTOCOL_SLUG = 'termmax'
DEFAULT_CHAIN_ID = 56  # BSC

POOL_LIST_TIMEOUT = 30
VAULT_DETAIL_TIMEOUT = 10
DEFILLAMA_TIMEOUT = 20

# --- Environment Variable Names ---
TELEGRAM_BOT_TOKEN_ENV_VAR = 'TELEGRAM_BOT_TOKEN'
TELEGRAM_CHAT_ID_ENV_VAR = 'TELEGRAM_CHAT_ID'
MONITOR_INTERVAL_ENV_VAR = 'MONITOR_INTERVAL'
TVL_CHANGE_THRESHOLD_ENV_VAR = 'TVL_CHANGE_THRESHOLD'
PRICE_ALERT_THRESHOLD_ENV_VAR = 'PRICE_ALERT_THRESHOLD'
MONITOR_DB_PATH_ENV_VAR = 'MONITOR_DB_PATH'

# --- Monitor Defaults ---
DEFAULT_INTERVAL_SECONDS = 60
DEFAULT_TVL_CHANGE_THRESHOLD = 20.0
DEFAULT_PRICE_ALERT_THRESHOLD = 5.0
DEFAULT_DB_PATH = 'data/monitor.db'
CHANGE_WINDOW_MINUTES = 60

# --- History & Alert Bounds ---
HISTORY_CAPACITY = 1000
ALERT_LOG_CAPACITY = 100
ALERT_BUCKET_SECONDS = 300  # 5 minute dedup bucket
ALERT_COOLDOWN_RETENTION_SECONDS = 600
UTILIZATION_SPIKE_POINTS = 20.0
APY_CHANGE_POINTS = 10.0

# --- Watchlist ---
DEFAULT_WATCH_COOLDOWN_MINUTES = 30
MATURITY_HOLDING_DAYS = 30
DAILY_DIGEST_HOUR = 8
DIGEST_RETENTION_DAYS = 30

# --- Document Store Keys ---
KNOWN_POOLS_KEY = 'known_pools'
WATCHLIST_KEY = 'watchlist'

STABLE_SYMBOL = 'USDT'

# Risk bands by absolute distance to strike, in percent.
RISK_DANGER_PCT = 5
RISK_CAUTION_PCT = 15


def risk_icon(price_to_target: float) -> str:
    distance = abs(price_to_target or 0.0)
    if distance <= RISK_DANGER_PCT:
        return '🔴'
    if distance <= RISK_CAUTION_PCT:
        return '🟡'
    return '🟢'


def format_number(num: float) -> str:
    if not num:
        return '0'
    if num >= 1e9:
        return f"{num / 1e9:.2f}B"
    if num >= 1e6:
        return f"{num / 1e6:.2f}M"
    if num >= 1e3:
        return f"{num / 1e3:.2f}K"
    return f"{num:.2f}"
