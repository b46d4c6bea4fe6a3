# flasharb/venues.py
"""
Venue adapters
Quoting and swap execution for a trading venue, live (router contract)
or simulated (settlement ledger)
"""

import time
import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_DOWN
from typing import Callable, Dict, List, Optional, Tuple

from web3 import Web3

from flasharb.errors import SwapFailed
from flasharb.ledger import Ledger

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# =============================================================================
# ROUTER ABI (Universal for V2 forks)
# =============================================================================

ROUTER_V2_ABI = [
    {
        "name": "getAmountsOut",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "amountIn", "type": "uint256"},
            {"name": "path", "type": "address[]"},
        ],
        "outputs": [{"name": "amounts", "type": "uint256[]"}],
    },
    {
        "name": "factory",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]

FACTORY_ABI = [
    {
        "name": "getPair",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "tokenA", "type": "address"},
            {"name": "tokenB", "type": "address"},
        ],
        "outputs": [{"name": "pair", "type": "address"}],
    },
]

PAIR_ABI = [
    {
        "name": "getReserves",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            {"name": "reserve0", "type": "uint112"},
            {"name": "reserve1", "type": "uint112"},
            {"name": "blockTimestampLast", "type": "uint32"},
        ],
    },
    {
        "name": "token0",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "address"}],
    },
]


# =============================================================================
# INTERFACES & DATA CLASSES
# =============================================================================

class VenueQuoteProvider:
    """Quotes a path; may fail or time out"""

    def quote(self, amount_in: int, path: List[str]) -> List[int]:
        raise NotImplementedError

    def liquidity(self, asset: str) -> Optional[int]:
        """Depth available for the asset, or None when unknown"""
        return None


class VenueSwapExecutor:
    """Executes swaps; `router` is the spender approved before each hop"""

    router: str

    def approve(self, owner: str, asset: str, amount: int) -> None:
        raise NotImplementedError

    def swap(
        self,
        sender: str,
        amount_in: int,
        min_amount_out: int,
        path: List[str],
        recipient: str,
        deadline: int,
    ) -> List[int]:
        raise NotImplementedError


@dataclass(frozen=True)
class TradeVenue:
    """A registered venue; immutable once registered"""
    key: str
    quoter: VenueQuoteProvider
    executor: Optional[VenueSwapExecutor] = None


@dataclass
class QuoteResult:
    """Explicit success/failure of a quote"""
    ok: bool
    amounts: List[int] = field(default_factory=list)
    error: str = ""

    @property
    def amount_out(self) -> int:
        return self.amounts[-1] if self.ok and self.amounts else 0


def safe_quote(provider: VenueQuoteProvider, amount_in: int, path: List[str]) -> QuoteResult:
    """Quote without ever raising; failures become QuoteResult(ok=False)"""
    try:
        amounts = provider.quote(amount_in, path)
    except Exception as e:
        return QuoteResult(ok=False, error=str(e) or e.__class__.__name__)

    if not amounts or len(amounts) != len(path):
        return QuoteResult(ok=False, error=f"Malformed quote: {amounts!r}")
    if any(a < 0 for a in amounts):
        return QuoteResult(ok=False, error=f"Negative amount in quote: {amounts!r}")
    return QuoteResult(ok=True, amounts=list(amounts))


def apply_slippage(amount: int, slippage_bps: int) -> int:
    """Minimum acceptable output for a quoted amount"""
    return amount * (10000 - slippage_bps) // 10000


# =============================================================================
# LIVE ROUTER QUOTES
# =============================================================================

class RouterQuoteProvider(VenueQuoteProvider):
    """
    Uniswap-V2-style router quoting via getAmountsOut.
    Read-only: nothing is signed or sent.
    """

    def __init__(self, w3: Web3, router: str, factory: Optional[str] = None):
        self.w3 = w3
        self.router_address = Web3.to_checksum_address(router)
        self.router = w3.eth.contract(address=self.router_address, abi=ROUTER_V2_ABI)
        self.factory = (
            w3.eth.contract(address=Web3.to_checksum_address(factory), abi=FACTORY_ABI)
            if factory else None
        )
        self._pair_cache: Dict[Tuple[str, str], str] = {}
        self.counter_asset: Optional[str] = None

    def quote(self, amount_in: int, path: List[str]) -> List[int]:
        checksum_path = [Web3.to_checksum_address(t) for t in path]
        return list(self.router.functions.getAmountsOut(amount_in, checksum_path).call())

    def get_pair_address(self, token_a: str, token_b: str) -> Optional[str]:
        """Get pair address from factory"""
        if self.factory is None:
            return None
        key = tuple(sorted((token_a.lower(), token_b.lower())))
        if key in self._pair_cache:
            return self._pair_cache[key]

        pair = self.factory.functions.getPair(
            Web3.to_checksum_address(token_a),
            Web3.to_checksum_address(token_b),
        ).call()
        if pair == ZERO_ADDRESS:
            return None
        self._pair_cache[key] = pair
        return pair

    def liquidity(self, asset: str) -> Optional[int]:
        """Reserve of `asset` in its pool against counter_asset"""
        if self.counter_asset is None:
            return None
        try:
            pair_addr = self.get_pair_address(asset, self.counter_asset)
            if not pair_addr:
                return None
            pair = self.w3.eth.contract(address=pair_addr, abi=PAIR_ABI)
            r0, r1, _ = pair.functions.getReserves().call()
            t0 = pair.functions.token0().call()
        except Exception as e:
            logger.warning(f"Reserve read failed for {asset}: {e}")
            return None
        return r0 if t0.lower() == asset.lower() else r1


# =============================================================================
# SIMULATED VENUES
# =============================================================================

class SimulatedVenue(VenueQuoteProvider, VenueSwapExecutor):
    """
    Venue backed by the settlement ledger. The router address holds the
    venue's inventory; swaps pull input from the sender with its allowance.
    """

    def __init__(
        self,
        ledger: Ledger,
        router: str,
        fee_bps: int = 0,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.router = Web3.to_checksum_address(router)
        self.fee_bps = fee_bps
        self._clock = clock

    def _hop_out(self, amount_in: int, token_in: str, token_out: str) -> int:
        raise NotImplementedError

    def _after_hop(self, amount_in: int, amount_out: int, token_in: str, token_out: str) -> None:
        pass

    def _net_of_fee(self, amount: Decimal) -> Decimal:
        return amount * Decimal(10000 - self.fee_bps) / Decimal(10000)

    def quote(self, amount_in: int, path: List[str]) -> List[int]:
        if len(path) < 2:
            raise ValueError("path needs at least two assets")
        amounts = [amount_in]
        for token_in, token_out in zip(path, path[1:]):
            amounts.append(self._hop_out(amounts[-1], token_in, token_out))
        return amounts

    def liquidity(self, asset: str) -> Optional[int]:
        return self.ledger.balance_of(self.router, asset)

    def approve(self, owner: str, asset: str, amount: int) -> None:
        self.ledger.approve(owner, self.router, asset, amount)

    def swap(
        self,
        sender: str,
        amount_in: int,
        min_amount_out: int,
        path: List[str],
        recipient: str,
        deadline: int,
    ) -> List[int]:
        if self._clock() > deadline:
            raise SwapFailed("Swap deadline expired", venue=self.router)

        amounts = self.quote(amount_in, path)
        if amounts[-1] < min_amount_out:
            raise SwapFailed(
                f"Insufficient output amount: {amounts[-1]} < {min_amount_out}",
                venue=self.router,
            )

        # Multi-hop paths settle hop by hop through the router's inventory.
        self.ledger.transfer_from(self.router, sender, self.router, path[0], amount_in)
        for (token_in, token_out), a_in, a_out in zip(zip(path, path[1:]), amounts, amounts[1:]):
            self._after_hop(a_in, a_out, token_in, token_out)
        self.ledger.transfer(self.router, recipient, path[-1], amounts[-1])
        return amounts


class FixedRateVenue(SimulatedVenue):
    """Quotes at fixed per-pair rates (token_out per token_in)"""

    def __init__(self, ledger: Ledger, router: str, rates: Dict[Tuple[str, str], Decimal], **kwargs):
        super().__init__(ledger, router, **kwargs)
        self.rates = {
            (Web3.to_checksum_address(a), Web3.to_checksum_address(b)): Decimal(str(r))
            for (a, b), r in rates.items()
        }

    def set_rate(self, token_in: str, token_out: str, rate) -> None:
        self.rates[(Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out))] = Decimal(str(rate))

    def _hop_out(self, amount_in: int, token_in: str, token_out: str) -> int:
        key = (Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out))
        if key not in self.rates:
            raise ValueError(f"No rate for {key[0]} -> {key[1]}")
        out = self._net_of_fee(Decimal(amount_in) * self.rates[key])
        return int(out.to_integral_value(rounding=ROUND_DOWN))


class ConstantProductVenue(SimulatedVenue):
    """x*y=k pool per pair, reserves tracked locally"""

    def __init__(self, ledger: Ledger, router: str, fee_bps: int = 30, **kwargs):
        super().__init__(ledger, router, fee_bps=fee_bps, **kwargs)
        self.reserves: Dict[Tuple[str, str], Tuple[int, int]] = {}
        # reserves roll back with the ledger when a unit fails
        ledger.attach(self)

    def snapshot_state(self) -> Dict[Tuple[str, str], Tuple[int, int]]:
        return dict(self.reserves)

    def restore_state(self, state: Dict[Tuple[str, str], Tuple[int, int]]) -> None:
        self.reserves = dict(state)

    def add_pool(self, token_a: str, token_b: str, reserve_a: int, reserve_b: int) -> None:
        a, b = Web3.to_checksum_address(token_a), Web3.to_checksum_address(token_b)
        self.reserves[(a, b)] = (reserve_a, reserve_b)
        self.reserves[(b, a)] = (reserve_b, reserve_a)
        self.ledger.mint(self.router, a, reserve_a)
        self.ledger.mint(self.router, b, reserve_b)

    def _hop_out(self, amount_in: int, token_in: str, token_out: str) -> int:
        key = (Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out))
        if key not in self.reserves:
            raise ValueError(f"No pool for {key[0]} -> {key[1]}")
        reserve_in, reserve_out = self.reserves[key]
        amount_in_with_fee = amount_in * (10000 - self.fee_bps)
        return (amount_in_with_fee * reserve_out) // (reserve_in * 10000 + amount_in_with_fee)

    def _after_hop(self, amount_in: int, amount_out: int, token_in: str, token_out: str) -> None:
        a, b = Web3.to_checksum_address(token_in), Web3.to_checksum_address(token_out)
        reserve_in, reserve_out = self.reserves[(a, b)]
        reserve_in, reserve_out = reserve_in + amount_in, reserve_out - amount_out
        self.reserves[(a, b)] = (reserve_in, reserve_out)
        self.reserves[(b, a)] = (reserve_out, reserve_in)

    def liquidity(self, asset: str) -> Optional[int]:
        asset = Web3.to_checksum_address(asset)
        depths = [r[0] for (a, _), r in self.reserves.items() if a == asset]
        return min(depths) if depths else None
