# flasharb/oracle.py
"""
Price and gas oracles
Reference price with a timestamp, and current network gas conditions
"""

import time
import logging
from decimal import Decimal
from typing import Callable, Optional, Tuple

from web3 import Web3

logger = logging.getLogger(__name__)

# --------- Chainlink Aggregator ABI (minimal) ---------
AGGREGATOR_ABI = [
    {
        "name": "latestRoundData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "roundId", "type": "uint80"},
            {"name": "answer", "type": "int256"},
            {"name": "startedAt", "type": "uint256"},
            {"name": "updatedAt", "type": "uint256"},
            {"name": "answeredInRound", "type": "uint80"},
        ],
    },
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
]


# =============================================================================
# PRICE ORACLES
# =============================================================================

class PriceOracle:
    """latest_price() -> (price, timestamp); data may be stale"""

    asset: str = ""

    def latest_price(self) -> Tuple[Decimal, float]:
        raise NotImplementedError


class StaticPriceOracle(PriceOracle):
    """Manually driven price; timestamp follows the clock unless pinned"""

    def __init__(self, price, asset: str = "", clock: Callable[[], float] = time.time):
        self.price = Decimal(str(price))
        self.asset = asset
        self._clock = clock
        self.updated_at: Optional[float] = None

    def set_price(self, price, updated_at: Optional[float] = None) -> None:
        self.price = Decimal(str(price))
        self.updated_at = updated_at

    def latest_price(self) -> Tuple[Decimal, float]:
        ts = self.updated_at if self.updated_at is not None else self._clock()
        return self.price, ts


class ChainlinkPriceOracle(PriceOracle):
    """Chainlink aggregator feed; staleness is judged by the caller"""

    def __init__(self, w3: Web3, feed: str, asset: str = ""):
        self.feed = w3.eth.contract(address=Web3.to_checksum_address(feed), abi=AGGREGATOR_ABI)
        self.asset = asset
        self._decimals: Optional[int] = None

    def latest_price(self) -> Tuple[Decimal, float]:
        _, answer, _, updated_at, _ = self.feed.functions.latestRoundData().call()
        if self._decimals is None:
            self._decimals = self.feed.functions.decimals().call()
        return Decimal(answer) / Decimal(10 ** self._decimals), float(updated_at)


# =============================================================================
# GAS ORACLES
# =============================================================================

class GasOracle:
    """Current gas price and base fee, both in wei"""

    def gas_price(self) -> int:
        raise NotImplementedError

    def base_fee(self) -> int:
        raise NotImplementedError


class StaticGasOracle(GasOracle):
    def __init__(self, gas_price: int = 0, base_fee: int = 0):
        self._gas_price = gas_price
        self._base_fee = base_fee

    def set(self, gas_price: int, base_fee: Optional[int] = None) -> None:
        self._gas_price = gas_price
        if base_fee is not None:
            self._base_fee = base_fee

    def gas_price(self) -> int:
        return self._gas_price

    def base_fee(self) -> int:
        return self._base_fee


class Web3GasOracle(GasOracle):
    """Reads eth_gasPrice and the latest block's baseFeePerGas"""

    def __init__(self, w3: Web3):
        self.w3 = w3

    def gas_price(self) -> int:
        return self.w3.eth.gas_price

    def base_fee(self) -> int:
        block = self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        if base_fee is None:
            # pre-London chains: fall back to the quoted price as the base
            logger.debug("Block has no baseFeePerGas, using gas price")
            return self.gas_price()
        return base_fee
