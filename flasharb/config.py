# flasharb/config.py
"""
Engine Configuration
Flash loan arbitrage: borrow, swap, swap, repay in one atomic unit
"""

import os
from dotenv import load_dotenv
from pathlib import Path
from decimal import Decimal

# -----------------------------
# Load .env if present
# -----------------------------
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / "config" / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


def _env_decimal(name: str, default: str) -> Decimal:
    value = os.getenv(name)
    return Decimal(value) if value not in (None, "") else Decimal(default)


# -----------------------------
# Chain / RPC
# -----------------------------
DEFAULT_NETWORK = os.getenv("DEFAULT_NETWORK", "polygon")
RPC_HTTP_URL = os.getenv("RPC_HTTP_URL")

# -----------------------------
# Identities
# -----------------------------
PUBLIC_ADDRESS = os.getenv("PUBLIC_ADDRESS")
OWNER_ADDRESS = os.getenv("OWNER_ADDRESS", PUBLIC_ADDRESS)

# -----------------------------
# Flash Loan Configuration (Aave V3)
# -----------------------------
AAVE_FLASH_LOAN_FEE_BPS = _env_int("AAVE_FLASH_LOAN_FEE_BPS", 5)  # 0.05%
DEFAULT_LOAN_AMOUNT = _env_int("DEFAULT_LOAN_AMOUNT", 10_000 * 10**6)  # 10k USDC
MAX_LIQUIDITY_IMPACT_PCT = _env_decimal("MAX_LIQUIDITY_IMPACT_PCT", "1.0")

# -----------------------------
# Trading Parameters
# -----------------------------
MAX_GAS_PERCENT = _env_int("MAX_GAS_PERCENT", 30)       # gas may eat 30% of gross profit
DEFAULT_SLIPPAGE_BPS = _env_int("DEFAULT_SLIPPAGE_BPS", 30)
MAX_SLIPPAGE_BPS = 500
SWAP_DEADLINE_SECONDS = 120

# -----------------------------
# Gas Configuration
# -----------------------------
GAS_LIMIT_FLASH_LOAN = _env_int("GAS_LIMIT_FLASH_LOAN", 500_000)
DEFAULT_MAX_GAS_BUDGET = _env_int("DEFAULT_MAX_GAS_BUDGET", 1_000_000)
CONGESTION_MULTIPLIER = 2                # gas price above 2x base fee = congested

# -----------------------------
# Circuit breaker
# -----------------------------
PRICE_DROP_THRESHOLD_PCT = _env_decimal("PRICE_DROP_THRESHOLD_PCT", "10")
PRICE_SAMPLE_INTERVAL_SEC = _env_int("PRICE_SAMPLE_INTERVAL_SEC", 60)
MAX_CONSECUTIVE_FAILURES = 3

# -----------------------------
# Persistence
# -----------------------------
STATE_DB_PATH = os.getenv("STATE_DB_PATH", ":memory:")

# -----------------------------
# Scan / Logging
# -----------------------------
SCAN_INTERVAL_SECONDS = float(os.getenv("SCAN_INTERVAL_SECONDS", "1.0"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
EVENT_LOG_MAX_RECORDS = _env_int("EVENT_LOG_MAX_RECORDS", 10_000)  # oldest records dropped first


def require_rpc_url() -> str:
    """RPC endpoint for live adapters; only needed outside simulation."""
    if not RPC_HTTP_URL:
        raise RuntimeError("RPC_HTTP_URL not set in .env")
    return RPC_HTTP_URL
