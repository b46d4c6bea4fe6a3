# flasharb/evaluator.py
"""
Arbitrage Evaluator
Picks the most profitable venue for an A -> B -> A round trip

No loan is requested unless every gate passes:
1. Network not congested (gas price <= 2x base fee)
2. Circuit breaker ready
3. Some venue quotes a positive round trip
4. Execution cost within max_gas_percent of gross profit
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from web3 import Web3

from flasharb.config import CONGESTION_MULTIPLIER, GAS_LIMIT_FLASH_LOAN, MAX_GAS_PERCENT
from flasharb.events import EventKind, EventLog
from flasharb.oracle import GasOracle
from flasharb.safety import SafetyMonitor
from flasharb.venues import TradeVenue, safe_quote

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass(frozen=True)
class RoundTripQuote:
    """Simulated A -> B -> A for one venue; recomputed per evaluation"""
    venue: TradeVenue
    amount_in: int
    amount_out: int
    error: str = ""

    @property
    def profit(self) -> int:
        return max(self.amount_out - self.amount_in, 0)


@dataclass(frozen=True)
class Opportunity:
    """Evaluator's pick"""
    venue: TradeVenue
    amount_in: int
    profit: int
    gas_cost: int

    @property
    def net_profit(self) -> int:
        return self.profit - self.gas_cost


# =============================================================================
# EVALUATOR
# =============================================================================

class ArbitrageEvaluator:
    """Cross-venue comparison with gas and readiness filters"""

    def __init__(
        self,
        network: str,
        asset: str,
        intermediate: str,
        safety: SafetyMonitor,
        gas_oracle: GasOracle,
        events: Optional[EventLog] = None,
        max_gas_percent: int = MAX_GAS_PERCENT,
        gas_estimate: int = GAS_LIMIT_FLASH_LOAN,
        gas_to_asset: Optional[Callable[[int], int]] = None,
    ):
        self.network = network
        self.asset = Web3.to_checksum_address(asset)
        self.intermediate = Web3.to_checksum_address(intermediate)
        self.safety = safety
        self.gas_oracle = gas_oracle
        self.events = events or EventLog()
        self.gas_estimate = gas_estimate
        self.gas_to_asset = gas_to_asset or (lambda wei: wei)
        self.max_gas_percent = max_gas_percent
        self.last_reason = ""

    @property
    def max_gas_percent(self) -> int:
        return self._max_gas_percent

    @max_gas_percent.setter
    def max_gas_percent(self, pct: int) -> None:
        if not 0 <= pct <= 100:
            raise ValueError(f"max_gas_percent must be within 0..100, got {pct}")
        self._max_gas_percent = int(pct)

    @property
    def path(self) -> List[str]:
        return [self.asset, self.intermediate, self.asset]

    def _skip(self, reason: str) -> None:
        self.last_reason = reason
        self.events.emit(EventKind.NETWORK_SKIPPED, network=self.network, reason=reason)

    def round_trip(self, venue: TradeVenue, amount_in: int) -> RoundTripQuote:
        """Quote failures count as zero profit for this venue only"""
        result = safe_quote(venue.quoter, amount_in, self.path)
        if not result.ok:
            logger.debug(f"[{self.network}] Quote failed on {venue.key}: {result.error}")
            return RoundTripQuote(venue=venue, amount_in=amount_in, amount_out=0, error=result.error)
        return RoundTripQuote(venue=venue, amount_in=amount_in, amount_out=result.amount_out)

    def best_round_trip(self, venues: List[TradeVenue], amount_in: int) -> Optional[RoundTripQuote]:
        best = None
        for venue in venues:
            rt = self.round_trip(venue, amount_in)
            # strict > keeps the first-listed venue on ties
            if best is None or rt.profit > best.profit:
                best = rt
        return best

    def execution_cost(self) -> int:
        return self.gas_to_asset(self.gas_oracle.gas_price() * self.gas_estimate)

    def is_congested(self) -> bool:
        return self.gas_oracle.gas_price() > CONGESTION_MULTIPLIER * self.gas_oracle.base_fee()

    def evaluate(self, venues: List[TradeVenue], base_amount: int) -> Optional[Opportunity]:
        self.last_reason = ""

        # =========================================================
        # Readiness gate
        # =========================================================
        try:
            congested = self.is_congested()
        except Exception as e:
            self._skip(f"Gas oracle unavailable: {e}")
            return None
        if congested:
            self._skip("Network congested: gas price above 2x base fee")
            return None

        if not self.safety.is_ready():
            self._skip(f"Safety monitor not ready ({self.safety.breaker_state.value})")
            return None

        # =========================================================
        # Venue selection
        # =========================================================
        best = self.best_round_trip(venues, base_amount)
        if best is None or best.profit == 0:
            self._skip("No profitable venue")
            return None

        # =========================================================
        # Gas-adjusted profitability
        # =========================================================
        gas_cost = self.execution_cost()
        if gas_cost * 100 > self.max_gas_percent * best.profit:
            self._skip(
                f"Unprofitable: gas cost {gas_cost} exceeds {self.max_gas_percent}% "
                f"of gross profit {best.profit} on {best.venue.key}"
            )
            return None

        opportunity = Opportunity(
            venue=best.venue,
            amount_in=base_amount,
            profit=best.profit,
            gas_cost=gas_cost,
        )
        logger.info(
            f"[{self.network}] Best venue {best.venue.key}: gross {opportunity.profit}, "
            f"gas {gas_cost}, net {opportunity.net_profit}"
        )
        return opportunity
