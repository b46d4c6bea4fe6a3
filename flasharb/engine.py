# flasharb/engine.py
"""
Arbitrage Engine
Trigger loop and administrative surface over one or more networks

Per cycle and network:
1. Sample the reference price (circuit breaker)
2. Evaluate venues (readiness, best round trip, gas filter)
3. Execute the atomic unit for the chosen venue
"""

import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from flasharb.config import (
    DEFAULT_LOAN_AMOUNT, DEFAULT_SLIPPAGE_BPS, GAS_LIMIT_FLASH_LOAN, MAX_GAS_PERCENT,
    PRICE_DROP_THRESHOLD_PCT, PRICE_SAMPLE_INTERVAL_SEC, SCAN_INTERVAL_SECONDS,
)
from flasharb.errors import (
    ArbitrageError, ConfigMissing, GasBudgetExceeded, Unprofitable, UnsafeMarket,
)
from flasharb.evaluator import ArbitrageEvaluator
from flasharb.events import EventKind, EventLog
from flasharb.ledger import Ledger
from flasharb.loans import LoanProvider
from flasharb.oracle import GasOracle, PriceOracle
from flasharb.orchestrator import ExecutionResult, ExecutionStatus, LoanOrchestrator
from flasharb.registry import AccessControl, ChainConfigRegistry, ExecutionGuard
from flasharb.safety import SafetyMonitor
from flasharb.sizing import LoanSizer
from flasharb.store import StateStore
from flasharb.venues import TradeVenue

logger = logging.getLogger(__name__)

PREFLIGHT_REJECTIONS = (UnsafeMarket, ConfigMissing, GasBudgetExceeded, Unprofitable)


# =============================================================================
# STATISTICS TRACKER
# =============================================================================

class StatisticsTracker:
    """Track engine performance statistics"""

    def __init__(self):
        self.start_time = datetime.now()
        self.cycles = 0
        self.opportunities = 0
        self.executions = 0
        self.successes = 0
        self.failures = 0
        self.rejections = 0
        self.total_profit = 0
        self._lock = threading.Lock()

    def record(self, result: ExecutionResult, had_opportunity: bool) -> None:
        with self._lock:
            self.cycles += 1
            if had_opportunity:
                self.opportunities += 1
            if result.status == ExecutionStatus.SUCCESS:
                self.executions += 1
                self.successes += 1
                self.total_profit += result.profit
            elif result.status == ExecutionStatus.FAILED:
                self.executions += 1
                self.failures += 1
            elif result.status == ExecutionStatus.REJECTED:
                self.rejections += 1

    def as_dict(self) -> dict:
        with self._lock:
            return {
                "cycles": self.cycles,
                "opportunities": self.opportunities,
                "executions": self.executions,
                "successes": self.successes,
                "failures": self.failures,
                "rejections": self.rejections,
                "success_rate": (
                    self.successes / self.executions * 100 if self.executions > 0 else 0
                ),
                "total_profit": self.total_profit,
            }

    def get_summary(self) -> str:
        s = self.as_dict()
        runtime = datetime.now() - self.start_time
        return (
            f"\n{'='*60}\n"
            f"ENGINE STATISTICS\n"
            f"{'='*60}\n"
            f"Runtime: {runtime}\n"
            f"Cycles: {s['cycles']}\n"
            f"Opportunities: {s['opportunities']}\n"
            f"Executions: {s['executions']} ({s['success_rate']:.1f}% successful)\n"
            f"Rejected pre-flight: {s['rejections']}\n"
            f"Total Profit: {s['total_profit']}\n"
            f"{'='*60}\n"
        )


# =============================================================================
# NETWORK CONTEXT
# =============================================================================

@dataclass
class NetworkContext:
    """Everything the engine needs for one network"""
    network: str
    asset: str
    intermediate: str
    venues: List[TradeVenue]
    safety: SafetyMonitor
    evaluator: ArbitrageEvaluator
    orchestrator: LoanOrchestrator
    oracle: Optional[PriceOracle] = None
    base_amount: int = DEFAULT_LOAN_AMOUNT
    min_profit: int = 0
    execute: bool = True
    cycle_lock: threading.Lock = field(default_factory=threading.Lock)


# =============================================================================
# ENGINE
# =============================================================================

class ArbitrageEngine:
    """
    Keyed map of networks sharing one store, event log and privileged
    identity. Networks run independently; each one's cycle is serialized.
    """

    def __init__(
        self,
        owner: str,
        store: Optional[StateStore] = None,
        events: Optional[EventLog] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store or StateStore()
        self.events = events or EventLog(clock=clock)
        self.access = AccessControl(owner)
        self.registry = ChainConfigRegistry(self.store, self.access, self.events)
        self.networks: Dict[str, NetworkContext] = {}
        self.stats = StatisticsTracker()
        self.running = False
        self._clock = clock

    def add_network(
        self,
        network: str,
        identity: str,
        asset: str,
        intermediate: str,
        venues: List[TradeVenue],
        ledger: Ledger,
        loan_providers: List[LoanProvider],
        gas_oracle: GasOracle,
        oracle: Optional[PriceOracle] = None,
        base_amount: int = DEFAULT_LOAN_AMOUNT,
        min_profit: int = 0,
        sizer: Optional[LoanSizer] = None,
        drop_threshold_pct=PRICE_DROP_THRESHOLD_PCT,
        sample_interval_sec: int = PRICE_SAMPLE_INTERVAL_SEC,
        max_gas_percent: int = MAX_GAS_PERCENT,
        slippage_bps: int = DEFAULT_SLIPPAGE_BPS,
        gas_estimate: int = GAS_LIMIT_FLASH_LOAN,
        gas_to_asset: Optional[Callable[[int], int]] = None,
        execute: bool = True,
    ) -> NetworkContext:
        if network in self.networks:
            raise ValueError(f"Network already registered: {network}")
        if base_amount <= 0:
            raise ValueError(f"base_amount must be positive, got {base_amount}")

        safety = SafetyMonitor(
            network,
            self.store,
            self.access,
            self.events,
            drop_threshold_pct=Decimal(str(drop_threshold_pct)),
            sample_interval_sec=sample_interval_sec,
            clock=self._clock,
        )
        evaluator = ArbitrageEvaluator(
            network,
            asset,
            intermediate,
            safety,
            gas_oracle,
            self.events,
            max_gas_percent=max_gas_percent,
            gas_estimate=gas_estimate,
            gas_to_asset=gas_to_asset,
        )
        orchestrator = LoanOrchestrator(
            network,
            identity,
            ledger,
            self.registry,
            safety,
            ExecutionGuard(network),
            venues,
            loan_providers,
            self.events,
            sizer=sizer,
            slippage_bps=slippage_bps,
            gas_estimate=gas_estimate,
            clock=self._clock,
        )
        ctx = NetworkContext(
            network=network,
            asset=evaluator.asset,
            intermediate=evaluator.intermediate,
            venues=list(venues),
            safety=safety,
            evaluator=evaluator,
            orchestrator=orchestrator,
            oracle=oracle,
            base_amount=base_amount,
            min_profit=min_profit,
            execute=execute,
        )
        self.networks[network] = ctx
        logger.info(f"Registered network {network} with venues {[v.key for v in venues]}")
        return ctx

    def _context(self, network: str) -> NetworkContext:
        ctx = self.networks.get(network)
        if ctx is None:
            raise ConfigMissing(f"Unknown network: {network}", context={"network": network})
        return ctx

    # -----------------------------
    # Trigger
    # -----------------------------

    def run_once(self, network: str) -> ExecutionResult:
        """One price check, evaluation and (if warranted) execution"""
        ctx = self._context(network)
        with ctx.cycle_lock:
            result, had_opportunity = self._cycle(ctx)
        self.stats.record(result, had_opportunity)
        return result

    def _cycle(self, ctx: NetworkContext):
        network = ctx.network

        if ctx.oracle is not None:
            try:
                ctx.safety.check_oracle(ctx.oracle)
            except UnsafeMarket as e:
                return self._rejected(ctx, e), False

        opportunity = ctx.evaluator.evaluate(ctx.venues, ctx.base_amount)
        if opportunity is None:
            return ExecutionResult(
                status=ExecutionStatus.SKIPPED,
                network=network,
                error=ctx.evaluator.last_reason,
            ), False

        if not ctx.execute:
            logger.info(f"[{network}] Scan only, not executing {opportunity.venue.key}")
            return ExecutionResult(
                status=ExecutionStatus.SKIPPED,
                network=network,
                venue=opportunity.venue.key,
                profit=opportunity.net_profit,
                error="Scan only",
            ), True

        min_profit = max(ctx.min_profit, opportunity.gas_cost)
        try:
            result = ctx.orchestrator.request_atomic_arbitrage(
                ctx.asset,
                opportunity.amount_in,
                min_profit,
                opportunity.venue.key,
                ctx.intermediate,
            )
        except PREFLIGHT_REJECTIONS as e:
            return self._rejected(ctx, e, venue=opportunity.venue.key), True
        except ArbitrageError as e:
            if e.fatal:
                logger.error(f"[{network}] Unit failed on {opportunity.venue.key}: {e.reason}")
            else:
                logger.warning(f"[{network}] Unit aborted on {opportunity.venue.key}: {e.reason}")
            self.events.emit(EventKind.NETWORK_SKIPPED, network=network, reason=e.reason)
            return ExecutionResult(
                status=ExecutionStatus.FAILED,
                network=network,
                venue=opportunity.venue.key,
                error=e.reason,
            ), True
        return result, True

    def _rejected(self, ctx: NetworkContext, error: ArbitrageError, venue: str = "") -> ExecutionResult:
        self.events.emit(EventKind.NETWORK_SKIPPED, network=ctx.network, reason=error.reason)
        return ExecutionResult(
            status=ExecutionStatus.REJECTED,
            network=ctx.network,
            venue=venue,
            error=error.reason,
        )

    def run_all(self) -> Dict[str, ExecutionResult]:
        """One cycle on every network, concurrently"""
        results: Dict[str, ExecutionResult] = {}
        if not self.networks:
            return results

        with ThreadPoolExecutor(max_workers=len(self.networks)) as pool:
            futures = {pool.submit(self.run_once, name): name for name in self.networks}
            for future in as_completed(futures):
                name = futures[future]
                try:
                    results[name] = future.result()
                except Exception as e:
                    logger.error(f"[{name}] Cycle error: {e}")
                    results[name] = ExecutionResult(
                        status=ExecutionStatus.FAILED, network=name, error=str(e),
                    )
        return results

    def run(self, interval: float = SCAN_INTERVAL_SECONDS, max_cycles: Optional[int] = None) -> None:
        """Main loop; stop() or KeyboardInterrupt ends it"""
        logger.info("=" * 60)
        logger.info("ARBITRAGE ENGINE STARTING")
        logger.info(f"Networks: {', '.join(self.networks) or '-'}")
        logger.info("=" * 60)

        self.running = True
        cycles = 0
        try:
            while self.running:
                self.run_all()
                cycles += 1
                if max_cycles is not None and cycles >= max_cycles:
                    break
                time.sleep(interval)
        except KeyboardInterrupt:
            logger.info("Keyboard interrupt received")
        finally:
            self.running = False
            logger.info(self.stats.get_summary())
            logger.info("Engine stopped.")

    def stop(self) -> None:
        self.running = False

    # -----------------------------
    # Administrative surface
    # -----------------------------

    def set_chain_config(self, caller: str, network: str, loan_provider: str, max_gas_budget: int):
        return self.registry.set_chain_config(caller, network, loan_provider, max_gas_budget)

    def unfreeze(self, caller: str, network: str) -> bool:
        return self._context(network).safety.unfreeze(caller)

    def halt(self, caller: str, network: str, reason: str = "manual halt") -> bool:
        return self._context(network).safety.halt(caller, reason)

    def _targets(self, network: Optional[str]) -> List[NetworkContext]:
        return [self._context(network)] if network else list(self.networks.values())

    def set_slippage_tolerance(self, caller: str, bps: int, network: Optional[str] = None) -> None:
        self.access.require_privileged(caller, "set_slippage_tolerance")
        targets = self._targets(network)
        for ctx in targets:
            ctx.orchestrator.slippage_bps = bps
        self.events.emit(EventKind.CONFIG_SET, network=network or "*", slippage_bps=bps)

    def set_max_gas_percent(self, caller: str, pct: int, network: Optional[str] = None) -> None:
        self.access.require_privileged(caller, "set_max_gas_percent")
        targets = self._targets(network)
        for ctx in targets:
            ctx.evaluator.max_gas_percent = pct
        self.events.emit(EventKind.CONFIG_SET, network=network or "*", max_gas_percent=pct)

    def statistics(self) -> dict:
        return self.stats.as_dict()
