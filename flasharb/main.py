# flasharb/main.py
"""
Flash Loan Arbitrage Engine - Entry Point

Run with: python -m flasharb.main  (or the `flasharb` console script)

MODES:
1. scan:     Live quotes, gas and oracle price; evaluate only (safe)
2. simulate: Full borrow -> swap -> swap -> repay cycle on a simulated ledger
"""

import sys
import logging
import argparse
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from web3 import Web3
from web3.middleware import ExtraDataToPOAMiddleware

from flasharb.config import (
    DEFAULT_LOAN_AMOUNT, DEFAULT_MAX_GAS_BUDGET, DEFAULT_NETWORK, LOG_LEVEL, OWNER_ADDRESS,
    PUBLIC_ADDRESS, SCAN_INTERVAL_SECONDS, STATE_DB_PATH, require_rpc_url,
)
from flasharb.engine import ArbitrageEngine
from flasharb.ledger import Ledger
from flasharb.loans import AavePoolAdapter, SimulatedLoanProvider
from flasharb.networks import get_network
from flasharb.oracle import (
    ChainlinkPriceOracle, StaticGasOracle, StaticPriceOracle, Web3GasOracle,
)
from flasharb.sizing import LiquidityBoundSizer
from flasharb.store import StateStore
from flasharb.venues import FixedRateVenue, RouterQuoteProvider, TradeVenue

logger = logging.getLogger("flasharb")

# Placeholder identities for the simulated environment
SIM_OWNER = "0x00000000000000000000000000000000000000A1"
SIM_ENGINE = "0x00000000000000000000000000000000000000E1"
SIM_POOL = "0x00000000000000000000000000000000000000B1"
SIM_ASSET = "0x0000000000000000000000000000000000000C01"
SIM_INTERMEDIATE = "0x0000000000000000000000000000000000000C02"


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(level: str = LOG_LEVEL, log_dir: Path = Path("logs")) -> None:
    log_dir.mkdir(exist_ok=True)
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_dir / f"engine_{datetime.now().strftime('%Y%m%d')}.log"),
        ],
    )


# =============================================================================
# ENGINE BUILDERS
# =============================================================================

def build_scan_engine(network_name: str, amount: int) -> ArbitrageEngine:
    """Live read-side adapters; nothing is executed"""
    info = get_network(network_name)

    w3 = Web3(Web3.HTTPProvider(require_rpc_url()))
    w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    if not w3.is_connected():
        raise RuntimeError("Failed to connect to RPC")
    logger.info(f"Connected to {network_name} (Chain ID: {w3.eth.chain_id})")

    identity = PUBLIC_ADDRESS or SIM_ENGINE
    engine = ArbitrageEngine(owner=OWNER_ADDRESS or identity, store=StateStore(STATE_DB_PATH))

    venues = []
    for key, dex in info.dexes.items():
        quoter = RouterQuoteProvider(w3, dex.router, dex.factory)
        quoter.counter_asset = info.intermediate
        venues.append(TradeVenue(key=key, quoter=quoter))

    pool = AavePoolAdapter(w3, info.aave_pool)
    fee, total = pool.quote_fee(amount)
    logger.info(f"Aave premium {pool.get_flash_loan_fee_bps()} bps: fee {fee}, repay {total}")

    oracle = ChainlinkPriceOracle(w3, info.price_feed, asset="intermediate") if info.price_feed else None

    gas_to_asset = None
    if info.native_feed:
        native_price, _ = ChainlinkPriceOracle(w3, info.native_feed).latest_price()
        scale = Decimal(10 ** info.asset_decimals) / Decimal(10 ** 18)

        def gas_to_asset(wei: int) -> int:
            return int(Decimal(wei) * native_price * scale)

    engine.add_network(
        network_name,
        identity,
        info.asset,
        info.intermediate,
        venues,
        Ledger(),
        [],
        Web3GasOracle(w3),
        oracle=oracle,
        base_amount=amount,
        min_profit=fee,
        gas_to_asset=gas_to_asset,
        execute=False,
    )
    return engine


def build_simulated_engine(amount: int) -> ArbitrageEngine:
    """
    Two fixed-rate venues: one quoting both directions consistently, one
    whose B -> A side lags the market by 0.6%. An Aave-style pool lends and
    the oracle holds steady.
    """
    ledger = Ledger()
    engine = ArbitrageEngine(owner=SIM_OWNER)

    flat = FixedRateVenue(ledger, "0x00000000000000000000000000000000000000D1", {
        (SIM_ASSET, SIM_INTERMEDIATE): Decimal("0.0005"),
        (SIM_INTERMEDIATE, SIM_ASSET): Decimal("2000"),
    })
    lagging = FixedRateVenue(ledger, "0x00000000000000000000000000000000000000D2", {
        (SIM_ASSET, SIM_INTERMEDIATE): Decimal("0.0005"),
        (SIM_INTERMEDIATE, SIM_ASSET): Decimal("2012"),
    })
    for venue in (flat, lagging):
        ledger.mint(venue.router, SIM_ASSET, 50_000_000 * 10**6)
        ledger.mint(venue.router, SIM_INTERMEDIATE, 25_000 * 10**18)

    venues = [
        TradeVenue(key="flat", quoter=flat, executor=flat),
        TradeVenue(key="lagging", quoter=lagging, executor=lagging),
    ]

    provider = SimulatedLoanProvider(ledger, SIM_POOL)
    ledger.mint(SIM_POOL, SIM_ASSET, 10_000_000 * 10**6)

    engine.set_chain_config(SIM_OWNER, "sim", SIM_POOL, DEFAULT_MAX_GAS_BUDGET)
    engine.add_network(
        "sim",
        SIM_ENGINE,
        SIM_ASSET,
        SIM_INTERMEDIATE,
        venues,
        ledger,
        [provider],
        StaticGasOracle(gas_price=1, base_fee=1),
        oracle=StaticPriceOracle("2000", asset="intermediate"),
        base_amount=amount,
        sizer=LiquidityBoundSizer(notional=amount),
    )
    return engine


# =============================================================================
# ENTRY POINT
# =============================================================================

def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(description="Flash Loan Arbitrage Engine")
    parser.add_argument(
        "--mode",
        choices=["scan", "simulate"],
        default="scan",
        help="scan (live, evaluate only) or simulate (full cycle on a simulated ledger)",
    )
    parser.add_argument("--network", default=DEFAULT_NETWORK, help="Network key for scan mode")
    parser.add_argument(
        "--amount",
        type=int,
        default=DEFAULT_LOAN_AMOUNT,
        help=f"Loan notional in base units (default: {DEFAULT_LOAN_AMOUNT})",
    )
    parser.add_argument("--cycles", type=int, default=None, help="Stop after N cycles")
    parser.add_argument("--interval", type=float, default=SCAN_INTERVAL_SECONDS)

    args = parser.parse_args(argv)
    setup_logging()

    if args.mode == "simulate":
        engine = build_simulated_engine(args.amount)
        cycles = args.cycles if args.cycles is not None else 5
    else:
        engine = build_scan_engine(args.network, args.amount)
        cycles = args.cycles

    engine.run(interval=args.interval, max_cycles=cycles)
    return 0


if __name__ == "__main__":
    sys.exit(main())
