# flasharb/orchestrator.py
"""
Loan Orchestrator
Sizes and requests the atomic loan, runs the two swaps inside the loan
callback, verifies realized profit and authorizes repayment.
"""

import time
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from web3 import Web3

from flasharb.config import (
    DEFAULT_SLIPPAGE_BPS, GAS_LIMIT_FLASH_LOAN, MAX_SLIPPAGE_BPS, SWAP_DEADLINE_SECONDS,
)
from flasharb.errors import (
    ArbitrageError, ConfigMissing, InsufficientProfit, QuoteUnavailable, ReentrantCall, SwapFailed,
    UnauthorizedCaller, Unprofitable, UnsafeMarket,
)
from flasharb.events import EventKind, EventLog
from flasharb.ledger import Ledger
from flasharb.loans import (
    NO_DEBT_MODE, LoanProvider, decode_arbitrage_params, encode_arbitrage_params,
)
from flasharb.registry import ChainConfigRegistry, ExecutionGuard
from flasharb.safety import SafetyMonitor
from flasharb.sizing import FixedNotionalSizer, LoanSizer
from flasharb.venues import TradeVenue, apply_slippage, safe_quote

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS & DATA CLASSES
# =============================================================================

class ExecutionStatus(Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"       # nothing worth doing
    REJECTED = "rejected"     # pre-flight guard said no
    FAILED = "failed"         # unit started and rolled back


@dataclass
class ExecutionResult:
    """Result of an arbitrage execution attempt"""
    status: ExecutionStatus
    network: str
    venue: str = ""
    loan_amount: int = 0
    profit: int = 0
    error: str = ""
    execution_time_ms: float = 0


@dataclass
class _PendingLoan:
    asset: str
    amount: int
    venue_key: str
    provider: str


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class LoanOrchestrator:
    """
    Owns the borrow -> swap -> swap -> repay unit for one network.

    The provider calls on_loan_callback() synchronously while
    request_atomic_arbitrage() still holds the guard. The unit either
    commits entirely or the provider rolls everything back; the only
    effect that outlives a failure is the breaker's failure count. A
    refused callback (UnauthorizedCaller) leaves even that untouched.
    """

    def __init__(
        self,
        network: str,
        identity: str,
        ledger: Ledger,
        registry: ChainConfigRegistry,
        safety: SafetyMonitor,
        guard: ExecutionGuard,
        venues: List[TradeVenue],
        loan_providers: List[LoanProvider],
        events: Optional[EventLog] = None,
        sizer: Optional[LoanSizer] = None,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        gas_estimate: int = GAS_LIMIT_FLASH_LOAN,
        clock: Callable[[], float] = time.time,
    ):
        self.network = network
        self.identity = Web3.to_checksum_address(identity)
        self.ledger = ledger
        self.registry = registry
        self.safety = safety
        self.guard = guard
        self.venues: Dict[str, TradeVenue] = {v.key: v for v in venues}
        self.providers: Dict[str, LoanProvider] = {p.address: p for p in loan_providers}
        self.events = events or EventLog()
        self.sizer = sizer or FixedNotionalSizer()
        self.slippage_bps = slippage_bps
        self.gas_estimate = gas_estimate
        self._clock = clock

        self._pending: Optional[_PendingLoan] = None
        self._settled: Optional[int] = None
        self._in_callback = False

    @property
    def slippage_bps(self) -> int:
        return self._slippage_bps

    @slippage_bps.setter
    def slippage_bps(self, bps: int) -> None:
        if not 0 <= bps <= MAX_SLIPPAGE_BPS:
            raise ValueError(f"slippage must be within 0..{MAX_SLIPPAGE_BPS} bps, got {bps}")
        self._slippage_bps = int(bps)

    # -----------------------------
    # Entry point
    # -----------------------------

    def request_atomic_arbitrage(
        self,
        asset: str,
        amount: int,
        min_profit: int,
        venue_key: str,
        intermediate: str,
    ) -> ExecutionResult:
        """
        Pre-flight guards, then the loan. Pre-flight rejections raise before
        any external call; unit failures are recorded with the breaker and
        re-raised after the provider's rollback.
        """
        start_time = time.time()
        asset = Web3.to_checksum_address(asset)

        with self.guard.hold("request_atomic_arbitrage"):
            # Step 1: pre-flight
            if self.safety.is_frozen:
                raise UnsafeMarket(f"Trading halted on {self.network}", context={"network": self.network})

            config = self.registry.check_gas_budget(self.network, self.gas_estimate)

            provider = self.providers.get(config.loan_provider)
            if provider is None:
                raise ConfigMissing(
                    f"No adapter for loan provider {config.loan_provider}",
                    context={"network": self.network},
                )

            venue = self.venues.get(venue_key)
            if venue is None or venue.executor is None:
                raise ConfigMissing(f"Unknown or quote-only venue: {venue_key}",
                                    context={"network": self.network, "venue": venue_key})

            # Step 2: size the loan
            loan_amount = self.sizer.size(asset, amount, venue)
            if loan_amount <= 0:
                raise Unprofitable(f"Loan sized to zero on {venue_key}",
                                   context={"network": self.network, "venue": venue_key})

            params = encode_arbitrage_params(venue_key, intermediate, min_profit)

            # Step 3: the atomic unit
            logger.info(
                f"[{self.network}] Requesting loan of {loan_amount} via {provider.address} "
                f"for {venue_key} (min profit {min_profit})"
            )
            self._pending = _PendingLoan(asset, loan_amount, venue_key, provider.address)
            self._settled = None
            try:
                provider.request_loan(
                    self,
                    [asset],
                    [loan_amount],
                    [NO_DEBT_MODE],
                    self.identity,
                    params,
                    0,
                    caller=self.identity,
                )
            except UnauthorizedCaller as e:
                logger.error(f"[{self.network}] Unauthorized loan callback refused: {e}")
                raise
            except Exception as e:
                logger.error(f"[{self.network}] Atomic unit rolled back: {e}")
                self.safety.record_outcome(False)
                raise
            finally:
                self._pending = None

            profit = self._settled
            self.safety.record_outcome(True)

        self.events.emit(
            EventKind.ARBITRAGE_EXECUTED,
            network=self.network,
            venue=venue_key,
            profit=profit,
        )
        return ExecutionResult(
            status=ExecutionStatus.SUCCESS,
            network=self.network,
            venue=venue_key,
            loan_amount=loan_amount,
            profit=profit,
            execution_time_ms=(time.time() - start_time) * 1000,
        )

    # -----------------------------
    # Loan callback
    # -----------------------------

    def on_loan_callback(
        self,
        assets: List[str],
        amounts: List[int],
        fees: List[int],
        initiator: str,
        params: bytes,
        sender: str,
    ) -> bool:
        """Called by the loan provider inside the atomic unit"""
        # Step 1: authorization, before touching anything
        pending = self._pending
        config = self.registry.get(self.network)
        sender_ok = (
            pending is not None
            and config is not None
            and self.guard.held_by_current_thread()
            and _same_address(sender, config.loan_provider)
            and _same_address(sender, pending.provider)
        )
        if not sender_ok:
            raise UnauthorizedCaller("Callback sender is not the configured loan provider",
                                     caller=sender, context={"network": self.network})
        if not _same_address(initiator, self.identity):
            raise UnauthorizedCaller("Loan was not initiated by this engine",
                                     caller=initiator, context={"network": self.network})
        if self._in_callback:
            raise ReentrantCall("Loan callback re-entered", context={"network": self.network})
        if len(assets) != 1 or len(amounts) != 1 or len(fees) != 1:
            raise ArbitrageError("Expected a single-asset loan")

        self._in_callback = True
        try:
            return self._settle(pending, assets[0], amounts[0], fees[0], params, sender)
        finally:
            self._in_callback = False

    def _settle(
        self,
        pending: _PendingLoan,
        asset: str,
        amount: int,
        fee: int,
        params: bytes,
        sender: str,
    ) -> bool:
        asset = Web3.to_checksum_address(asset)
        p = decode_arbitrage_params(params)
        if not _same_address(asset, pending.asset) or p.venue_key != pending.venue_key:
            raise UnauthorizedCaller("Callback does not match the requested loan",
                                     caller=sender, context={"network": self.network})
        venue = self.venues[p.venue_key]

        # Step 2: round trip
        pre_balance = self.ledger.balance_of(self.identity, asset)
        received = self._swap_hop(venue, asset, p.intermediate, amount)
        self._swap_hop(venue, p.intermediate, asset, received)
        post_balance = self.ledger.balance_of(self.identity, asset)

        actual_profit = post_balance - pre_balance
        if actual_profit < p.min_profit:
            raise InsufficientProfit(
                f"Realized profit {actual_profit} < minimum {p.min_profit}",
                actual_profit=actual_profit,
                min_profit=p.min_profit,
                context={"network": self.network, "venue": p.venue_key},
            )

        # Step 3: settle
        owed = amount + fee
        if post_balance < owed:
            raise InsufficientProfit(
                f"Balance {post_balance} cannot cover repayment {owed}",
                actual_profit=actual_profit,
                min_profit=p.min_profit,
                context={"network": self.network, "venue": p.venue_key},
            )
        self.ledger.approve(self.identity, sender, asset, owed)

        logger.info(
            f"[{self.network}] Round trip on {p.venue_key}: profit {actual_profit}, "
            f"repaying {owed} ({fee} fee)"
        )
        self._settled = actual_profit
        return True

    def _swap_hop(self, venue: TradeVenue, token_in: str, token_out: str, amount_in: int) -> int:
        """Approve-then-swap one hop with slippage-protected minimum output"""
        path = [token_in, token_out]
        quoted = safe_quote(venue.quoter, amount_in, path)
        if not quoted.ok:
            raise QuoteUnavailable(f"Quote failed on {venue.key}: {quoted.error}",
                                   context={"network": self.network, "venue": venue.key})
        min_out = apply_slippage(quoted.amount_out, self.slippage_bps)

        executor = venue.executor
        deadline = int(self._clock()) + SWAP_DEADLINE_SECONDS
        try:
            executor.approve(self.identity, token_in, amount_in)
            amounts = executor.swap(self.identity, amount_in, min_out, path, self.identity, deadline)
        except ArbitrageError:
            raise
        except Exception as e:
            raise SwapFailed(f"Swap failed on {venue.key}: {e}", venue=venue.key) from e
        return amounts[-1]


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()
