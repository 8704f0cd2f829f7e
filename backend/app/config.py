"""Application configuration."""

import os
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent
DB_PATH = BASE_DIR / "data" / "novus.db"
DATABASE_URL = os.getenv("DATABASE_URL") or f"sqlite+aiosqlite:///{DB_PATH}"

# Single-portfolio system: the whole ledger lives in one row
PORTFOLIO_STATE_ID = 1
DEFAULT_PROFILE_NAME = "Investor"
DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "₹")

# Series cache TTL (seconds) by requested range; longer ranges change slower
SERIES_CACHE_TTL = {
    "10y": 24 * 3600,
    "max": 24 * 3600,
    "5y": 12 * 3600,
    "2y": 6 * 3600,
    "1y": 6 * 3600,
    "6mo": 3600,
    "3mo": 3600,
}
SERIES_CACHE_DEFAULT_TTL = 15 * 60
SERIES_STALE_WINDOW = 14 * 24 * 3600  # durable cache served on upstream failure

# Upstream providers
REQUEST_TIMEOUT = 12.0  # seconds per network call
YAHOO_BASE_URL = os.getenv("YAHOO_BASE_URL", "https://query1.finance.yahoo.com")
MFAPI_BASE_URL = os.getenv("MFAPI_BASE_URL", "https://api.mfapi.in")
USER_AGENT = "Mozilla/5.0 (compatible; NovusWealth/0.1)"

# Background refresh
REFRESH_INTERVAL = 120  # seconds between market value refreshes
SANITY_RATIO_MAX = 2.5
SANITY_RATIO_MIN = 0.4

# Fixed deposits
DEFAULT_FD_RATE = 7.0

# Gold is tracked per gram in local currency
GOLD_SEARCH_NAME = "24K Gold 1g India"
GOLD_SYMBOL_PAIRS = [("GC=F", "USDINR=X"), ("XAUUSD=X", "USDINR=X"), ("GC=F", "INR=X")]

# Common names that Yahoo search resolves poorly
SYMBOL_ALIASES = {
    "RELIANCE": "RELIANCE.NS",
    "TCS": "TCS.NS",
    "INFOSYS": "INFY.NS",
    "HDFC BANK": "HDFCBANK.NS",
    "ICICI BANK": "ICICIBANK.NS",
    "SBI": "SBIN.NS",
    "STATE BANK OF INDIA": "SBIN.NS",
    "ITC": "ITC.NS",
    "LARSEN": "LT.NS",
    "BAJAJ FINANCE": "BAJFINANCE.NS",
    "BHARTI AIRTEL": "BHARTIARTL.NS",
    "TATA MOTORS": "TATAMOTORS.NS",
}

# Format: SYMBOL_OVERRIDES="WIPRO=WIPRO.NS,ADANI PORTS=ADANIPORTS.NS"
for _pair in os.getenv("SYMBOL_OVERRIDES", "").split(","):
    if "=" in _pair:
        _alias, _ticker = _pair.split("=", 1)
        if _alias.strip() and _ticker.strip():
            SYMBOL_ALIASES[_alias.strip().upper()] = _ticker.strip()

# AI assistant (OpenAI-compatible chat completions endpoint)
LLM_BASE_URL = os.getenv("LLM_BASE_URL", "https://integrate.api.nvidia.com/v1")
LLM_API_KEY = os.getenv("LLM_API_KEY")
LLM_MODEL = os.getenv("LLM_MODEL", "nvidia/nemotron-3-nano-30b-a3b")
LLM_RETRIES = 3
LLM_MAX_TOKENS = 1024
LLM_TIMEOUT = 30.0

# Static credential gate
AUTH_EMAIL = os.getenv("AUTH_EMAIL", "investor@example.com")
AUTH_PASSWORD = os.getenv("AUTH_PASSWORD", "change-me")

# Ensure data directory exists (only needed for local SQLite, skip if DATABASE_URL is overridden)
if not os.getenv("DATABASE_URL"):
    DB_PATH.parent.mkdir(parents=True, exist_ok=True)
