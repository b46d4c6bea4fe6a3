"""Pytest configuration and shared fixtures."""

from decimal import Decimal

import pytest

from flasharb.events import EventLog
from flasharb.ledger import Ledger
from flasharb.loans import SimulatedLoanProvider
from flasharb.oracle import StaticGasOracle
from flasharb.orchestrator import LoanOrchestrator
from flasharb.registry import AccessControl, ChainConfigRegistry, ExecutionGuard
from flasharb.safety import SafetyMonitor
from flasharb.store import StateStore
from flasharb.venues import FixedRateVenue, TradeVenue

OWNER = "0x" + "a1" * 20
ENGINE = "0x" + "e1" * 20
POOL = "0x" + "b1" * 20
STRANGER = "0x" + "66" * 20
ASSET = "0x" + "c1" * 20
INTERMEDIATE = "0x" + "c2" * 20
ROUTER_A = "0x" + "d1" * 20
ROUTER_B = "0x" + "d2" * 20

NETWORK = "testnet"
START_TIME = 1_700_000_000.0


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = START_TIME):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_venue(ledger, router, key, out_rate, back_rate, clock, inventory=10**15):
    """Fixed-rate venue quoting ASSET -> INTERMEDIATE -> ASSET, stocked on both sides."""
    venue = FixedRateVenue(ledger, router, {
        (ASSET, INTERMEDIATE): Decimal(str(out_rate)),
        (INTERMEDIATE, ASSET): Decimal(str(back_rate)),
    }, clock=clock)
    if inventory:
        ledger.mint(router, ASSET, inventory)
        ledger.mint(router, INTERMEDIATE, inventory)
    return TradeVenue(key=key, quoter=venue, executor=venue)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    s = StateStore(":memory:")
    yield s
    s.close()


@pytest.fixture
def events(clock):
    return EventLog(clock=clock)


@pytest.fixture
def access():
    return AccessControl(OWNER)


@pytest.fixture
def ledger():
    return Ledger()


@pytest.fixture
def registry(store, access, events):
    return ChainConfigRegistry(store, access, events)


@pytest.fixture
def safety(store, access, events, clock):
    return SafetyMonitor(
        NETWORK,
        store,
        access,
        events,
        drop_threshold_pct=Decimal("10"),
        sample_interval_sec=60,
        clock=clock,
    )


@pytest.fixture
def gas_oracle():
    return StaticGasOracle(gas_price=1, base_fee=1)


@pytest.fixture
def provider(ledger):
    p = SimulatedLoanProvider(ledger, POOL, fee_bps=5)
    ledger.mint(POOL, ASSET, 10**12)
    return p


@pytest.fixture
def profitable_venue(ledger, clock):
    # 1_000_000 -> 500_000 -> 1_010_000
    return make_venue(ledger, ROUTER_A, "good", "0.5", "2.02", clock)


@pytest.fixture
def losing_venue(ledger, clock):
    # 1_000_000 -> 500_000 -> 950_000
    return make_venue(ledger, ROUTER_B, "bad", "0.5", "1.9", clock)


@pytest.fixture
def configured_registry(registry):
    registry.set_chain_config(OWNER, NETWORK, POOL, 1_000_000)
    return registry


@pytest.fixture
def orchestrator(ledger, configured_registry, safety, events, provider, profitable_venue, losing_venue, clock):
    return LoanOrchestrator(
        NETWORK,
        ENGINE,
        ledger,
        configured_registry,
        safety,
        ExecutionGuard(NETWORK),
        [profitable_venue, losing_venue],
        [provider],
        events,
        slippage_bps=30,
        gas_estimate=500_000,
        clock=clock,
    )
