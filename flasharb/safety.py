# flasharb/safety.py
"""
Circuit Breaker
Halts trading on abnormal price drops or repeated execution failures.
Recovery is manual: only the privileged identity can unfreeze.
"""

import time
import logging
import threading
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Callable, Optional

from flasharb.config import (
    MAX_CONSECUTIVE_FAILURES, PRICE_DROP_THRESHOLD_PCT, PRICE_SAMPLE_INTERVAL_SEC,
)
from flasharb.errors import UnsafeMarket
from flasharb.events import EventKind, EventLog
from flasharb.registry import AccessControl
from flasharb.store import StateStore

logger = logging.getLogger(__name__)

STALENESS_FACTOR = 2


class BreakerState(Enum):
    ACTIVE = "active"
    FROZEN = "frozen"


class SampleOutcome(Enum):
    SEEDED = "seeded"               # first sample, baseline only
    RECORDED = "recorded"           # compared and stored
    RATE_LIMITED = "rate_limited"   # interval has not elapsed
    SKIPPED = "skipped"             # unusable price, nothing stored


@dataclass(frozen=True)
class SafetyState:
    """Persisted breaker state for one deployment"""
    is_frozen: bool = False
    last_price: Optional[Decimal] = None
    last_sample_time: Optional[float] = None
    consecutive_failures: int = 0
    drop_threshold_pct: Decimal = PRICE_DROP_THRESHOLD_PCT
    sample_interval_sec: int = PRICE_SAMPLE_INTERVAL_SEC

    def to_row(self) -> dict:
        return {
            "is_frozen": self.is_frozen,
            "last_price": str(self.last_price) if self.last_price is not None else None,
            "last_sample_time": self.last_sample_time,
            "consecutive_failures": self.consecutive_failures,
            "drop_threshold_pct": str(self.drop_threshold_pct),
            "sample_interval_sec": self.sample_interval_sec,
        }

    @classmethod
    def from_row(cls, row: dict) -> "SafetyState":
        return cls(
            is_frozen=bool(row["is_frozen"]),
            last_price=Decimal(row["last_price"]) if row["last_price"] is not None else None,
            last_sample_time=row["last_sample_time"],
            consecutive_failures=row["consecutive_failures"],
            drop_threshold_pct=Decimal(row["drop_threshold_pct"]),
            sample_interval_sec=row["sample_interval_sec"],
        )


def price_drop_pct(previous: Decimal, current: Decimal) -> Optional[Decimal]:
    """Percentage fall from previous to current; None when previous is unusable."""
    if previous is None or previous <= 0:
        return None
    return (previous - current) * Decimal(100) / previous


class SafetyMonitor:
    """
    ACTIVE -> FROZEN on a price drop beyond the threshold or after
    MAX_CONSECUTIVE_FAILURES failed units. FROZEN -> ACTIVE only through
    unfreeze() by the privileged identity.
    """

    def __init__(
        self,
        network: str,
        store: StateStore,
        access: AccessControl,
        events: Optional[EventLog] = None,
        drop_threshold_pct: Decimal = PRICE_DROP_THRESHOLD_PCT,
        sample_interval_sec: int = PRICE_SAMPLE_INTERVAL_SEC,
        max_failures: int = MAX_CONSECUTIVE_FAILURES,
        clock: Callable[[], float] = time.time,
    ):
        self.network = network
        self.store = store
        self.access = access
        self.events = events or EventLog()
        self.max_failures = max_failures
        self._clock = clock
        self._lock = threading.RLock()

        row = store.load_safety_state(network)
        if row is not None:
            self._state = SafetyState.from_row(row)
            logger.info(f"[{network}] Restored breaker state: {self.breaker_state.value}, "
                        f"failures={self._state.consecutive_failures}")
        else:
            self._state = SafetyState(
                drop_threshold_pct=Decimal(str(drop_threshold_pct)),
                sample_interval_sec=int(sample_interval_sec),
            )
            self._commit(self._state)

    # -----------------------------
    # State access
    # -----------------------------

    @property
    def state(self) -> SafetyState:
        return self._state

    @property
    def breaker_state(self) -> BreakerState:
        return BreakerState.FROZEN if self._state.is_frozen else BreakerState.ACTIVE

    @property
    def is_frozen(self) -> bool:
        return self._state.is_frozen

    @property
    def consecutive_failures(self) -> int:
        return self._state.consecutive_failures

    def _commit(self, new_state: SafetyState) -> None:
        # store first: a failed write leaves the in-memory state untouched
        self.store.save_safety_state(self.network, new_state.to_row())
        self._state = new_state

    def _max_age(self) -> float:
        return self._state.sample_interval_sec * STALENESS_FACTOR

    # -----------------------------
    # Readiness
    # -----------------------------

    def is_ready(self) -> bool:
        with self._lock:
            if self._state.is_frozen:
                return False
            last = self._state.last_sample_time
            if last is None:
                return False
            return self._clock() - last <= self._max_age()

    # -----------------------------
    # Price sampling
    # -----------------------------

    def sample_price(self, price, timestamp: Optional[float] = None) -> SampleOutcome:
        """
        Feed one oracle reading. Raises UnsafeMarket when the drop since the
        stored baseline exceeds the threshold.
        """
        with self._lock:
            now = self._clock()
            state = self._state

            if state.last_sample_time is not None and now < state.last_sample_time + state.sample_interval_sec:
                return SampleOutcome.RATE_LIMITED

            try:
                current = Decimal(str(price))
            except InvalidOperation:
                logger.warning(f"[{self.network}] Unparseable price {price!r}, skipping sample")
                return SampleOutcome.SKIPPED

            if not current.is_finite() or current <= 0:
                logger.warning(f"[{self.network}] Non-positive price {current}, skipping sample")
                return SampleOutcome.SKIPPED

            if timestamp is not None and now - timestamp > self._max_age():
                logger.warning(
                    f"[{self.network}] Stale oracle reading ({now - timestamp:.0f}s old), skipping sample"
                )
                return SampleOutcome.SKIPPED

            previous = state.last_price
            baseline_stale = (
                state.last_sample_time is not None
                and now - state.last_sample_time > self._max_age()
            )
            drop = None if baseline_stale else price_drop_pct(previous, current)

            self._commit(replace(state, last_price=current, last_sample_time=now))

            if drop is None:
                if previous is not None:
                    logger.warning(
                        f"[{self.network}] Baseline unusable (price={previous}, stale={baseline_stale}), "
                        f"re-seeding at {current}"
                    )
                    return SampleOutcome.RECORDED
                logger.info(f"[{self.network}] Price baseline seeded at {current}")
                return SampleOutcome.SEEDED

            if drop > state.drop_threshold_pct:
                reason = (
                    f"Price dropped {drop:.2f}% ({previous} -> {current}), "
                    f"threshold {state.drop_threshold_pct}%"
                )
                self.freeze(reason)
                raise UnsafeMarket(reason, context={
                    "network": self.network,
                    "previous": str(previous),
                    "current": str(current),
                    "drop_pct": str(drop),
                })

            return SampleOutcome.RECORDED

    def check_oracle(self, oracle) -> SampleOutcome:
        """Read the oracle and feed it through sample_price()."""
        try:
            price, timestamp = oracle.latest_price()
        except Exception as e:
            logger.warning(f"[{self.network}] Oracle read failed: {e}")
            return SampleOutcome.SKIPPED

        self.events.emit(
            EventKind.PRICE_CHECKED,
            network=self.network,
            asset=getattr(oracle, "asset", ""),
            price=price,
        )
        return self.sample_price(price, timestamp)

    # -----------------------------
    # Execution outcomes
    # -----------------------------

    def record_outcome(self, success: bool) -> None:
        with self._lock:
            if success:
                if self._state.consecutive_failures:
                    logger.info(f"[{self.network}] Success, failure streak of "
                                f"{self._state.consecutive_failures} cleared")
                self._commit(replace(self._state, consecutive_failures=0))
                return

            failures = self._state.consecutive_failures + 1
            self._commit(replace(self._state, consecutive_failures=failures))
            logger.warning(f"[{self.network}] Execution failure {failures}/{self.max_failures}")

            if failures >= self.max_failures:
                self.freeze(f"{failures} consecutive execution failures")

    # -----------------------------
    # Transitions
    # -----------------------------

    def freeze(self, reason: str) -> bool:
        """ACTIVE -> FROZEN. Returns False if already frozen (no duplicate halt)."""
        with self._lock:
            if self._state.is_frozen:
                return False
            self._commit(replace(self._state, is_frozen=True))
            logger.error(f"[{self.network}] TRADING HALTED: {reason}")
            self.events.emit(EventKind.TRADING_HALTED, network=self.network, reason=reason)
            return True

    def halt(self, caller: str, reason: str = "manual halt") -> bool:
        self.access.require_privileged(caller, "halt")
        return self.freeze(reason)

    def unfreeze(self, caller: str) -> bool:
        """FROZEN -> ACTIVE; also clears the failure streak."""
        self.access.require_privileged(caller, "unfreeze")
        with self._lock:
            if not self._state.is_frozen:
                return False
            self._commit(replace(self._state, is_frozen=False, consecutive_failures=0))
            logger.info(f"[{self.network}] Trading resumed by {caller}")
            self.events.emit(EventKind.CONFIG_SET, network=self.network, action="unfreeze", caller=caller)
            return True
