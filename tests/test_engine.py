"""Tests for the trigger loop and admin surface."""

import pytest

from flasharb.config import DEFAULT_LOAN_AMOUNT
from flasharb.engine import ArbitrageEngine
from flasharb.errors import ConfigMissing, UnauthorizedCaller
from flasharb.events import EventKind
from flasharb.ledger import Ledger
from flasharb.loans import SimulatedLoanProvider
from flasharb.oracle import StaticGasOracle, StaticPriceOracle
from flasharb.orchestrator import ExecutionStatus
from flasharb.store import StateStore

from conftest import (
    ASSET, ENGINE, INTERMEDIATE, NETWORK, OWNER, POOL, ROUTER_A, STRANGER, make_venue,
)

BASE_AMOUNT = 10**9


def add_network(engine, clock, name=NETWORK, back_rate="2.02", base_amount=BASE_AMOUNT, **kwargs):
    ledger = Ledger()
    provider = SimulatedLoanProvider(ledger, POOL)
    ledger.mint(POOL, ASSET, 10**12)
    venues = [make_venue(ledger, ROUTER_A, "good", "0.5", back_rate, clock)]
    oracle = StaticPriceOracle("2000", clock=clock)
    engine.add_network(
        name,
        ENGINE,
        ASSET,
        INTERMEDIATE,
        venues,
        ledger,
        [provider],
        StaticGasOracle(gas_price=1, base_fee=1),
        oracle=oracle,
        base_amount=base_amount,
        **kwargs,
    )
    return ledger, oracle


@pytest.fixture
def engine(store, events, clock):
    e = ArbitrageEngine(owner=OWNER, store=store, events=events, clock=clock)
    e.set_chain_config(OWNER, NETWORK, POOL, 1_000_000)
    return e


class TestRunOnce:
    def test_profitable_cycle_executes(self, engine, clock, events):
        ledger, _ = add_network(engine, clock)

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.SUCCESS
        assert result.profit == 10**7
        # profit less the 5 bps premium on the loan
        assert ledger.balance_of(ENGINE, ASSET) == 10**7 - 5 * 10**5
        assert events.count(EventKind.ARBITRAGE_EXECUTED) == 1
        assert events.count(EventKind.PRICE_CHECKED) == 1

    def test_no_opportunity_is_skipped(self, engine, clock, events):
        add_network(engine, clock, back_rate="2")

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.SKIPPED
        assert result.error == "No profitable venue"
        assert events.count(EventKind.NETWORK_SKIPPED) == 1

    def test_scan_only(self, engine, clock, events):
        add_network(engine, clock, execute=False)

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.SKIPPED
        assert result.error == "Scan only"
        assert result.profit == 10**7 - 500_000
        assert events.count(EventKind.ARBITRAGE_EXECUTED) == 0

    def test_price_drop_halts_network(self, engine, clock, events):
        _, oracle = add_network(engine, clock)
        engine.run_once(NETWORK)

        clock.advance(60)
        oracle.set_price("1500")
        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.REJECTED
        assert "Price dropped" in result.error
        assert engine.networks[NETWORK].safety.is_frozen
        assert events.count(EventKind.TRADING_HALTED) == 1
        assert events.count(EventKind.ARBITRAGE_EXECUTED) == 1

    def test_halted_network_does_not_trade(self, engine, clock):
        add_network(engine, clock)
        engine.halt(OWNER, NETWORK, "maintenance")

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.SKIPPED
        assert "frozen" in result.error

        assert engine.unfreeze(OWNER, NETWORK) is True
        assert engine.run_once(NETWORK).status == ExecutionStatus.SUCCESS

    def test_missing_chain_config_rejected(self, engine, clock, events):
        add_network(engine, clock, name="unconfigured")

        result = engine.run_once("unconfigured")

        assert result.status == ExecutionStatus.REJECTED
        assert engine.statistics()["rejections"] == 1
        assert events.records(EventKind.NETWORK_SKIPPED)[-1].fields["network"] == "unconfigured"

    def test_gas_budget_rejected(self, engine, clock):
        add_network(engine, clock)
        engine.set_chain_config(OWNER, NETWORK, POOL, 100_000)

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.REJECTED
        assert "exceeds budget" in result.error

    def test_failed_unit_is_reported(self, engine, clock, events):
        ledger, _ = add_network(engine, clock, min_profit=10**8)

        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.FAILED
        assert result.venue == "good"
        assert engine.networks[NETWORK].safety.consecutive_failures == 1
        assert ledger.balance_of(ENGINE, ASSET) == 0
        assert events.count(EventKind.NETWORK_SKIPPED) == 1

    def test_unknown_network(self, engine):
        with pytest.raises(ConfigMissing):
            engine.run_once("nowhere")

    def test_duplicate_network(self, engine, clock):
        add_network(engine, clock)
        with pytest.raises(ValueError):
            add_network(engine, clock)

    def test_default_notional(self, engine, clock):
        ledger = Ledger()
        ledger.mint(POOL, ASSET, 10**12)
        ctx = engine.add_network(
            NETWORK, ENGINE, ASSET, INTERMEDIATE,
            [make_venue(ledger, ROUTER_A, "good", "0.5", "2.02", clock)],
            ledger, [SimulatedLoanProvider(ledger, POOL)], StaticGasOracle(gas_price=1, base_fee=1),
            oracle=StaticPriceOracle("2000", clock=clock),
        )

        result = engine.run_once(NETWORK)

        assert ctx.base_amount == DEFAULT_LOAN_AMOUNT
        assert result.status == ExecutionStatus.SUCCESS
        assert result.loan_amount == DEFAULT_LOAN_AMOUNT

    @pytest.mark.parametrize("amount", [0, -1])
    def test_non_positive_notional_rejected(self, engine, clock, amount):
        with pytest.raises(ValueError):
            add_network(engine, clock, base_amount=amount)
        assert NETWORK not in engine.networks


class TestRunAll:
    def test_networks_run_independently(self, engine, clock):
        engine.set_chain_config(OWNER, "second", POOL, 1_000_000)
        add_network(engine, clock)
        add_network(engine, clock, name="second", back_rate="2")

        results = engine.run_all()

        assert results[NETWORK].status == ExecutionStatus.SUCCESS
        assert results["second"].status == ExecutionStatus.SKIPPED

    def test_empty_engine(self, engine):
        assert engine.run_all() == {}

    def test_run_stops_after_max_cycles(self, engine, clock):
        add_network(engine, clock)

        engine.run(interval=0, max_cycles=2)

        stats = engine.statistics()
        assert stats["cycles"] == 2
        assert stats["successes"] == 2
        assert stats["success_rate"] == 100
        assert stats["total_profit"] == 2 * 10**7
        assert not engine.running


class TestAdmin:
    def test_admin_calls_require_privilege(self, engine, clock):
        add_network(engine, clock)

        with pytest.raises(UnauthorizedCaller):
            engine.set_chain_config(STRANGER, NETWORK, POOL, 1)
        with pytest.raises(UnauthorizedCaller):
            engine.unfreeze(STRANGER, NETWORK)
        with pytest.raises(UnauthorizedCaller):
            engine.halt(STRANGER, NETWORK)
        with pytest.raises(UnauthorizedCaller):
            engine.set_slippage_tolerance(STRANGER, 10)
        with pytest.raises(UnauthorizedCaller):
            engine.set_max_gas_percent(STRANGER, 10)

    def test_set_slippage_tolerance(self, engine, clock, events):
        engine.set_chain_config(OWNER, "second", POOL, 1_000_000)
        add_network(engine, clock)
        add_network(engine, clock, name="second")

        engine.set_slippage_tolerance(OWNER, 50)

        assert all(ctx.orchestrator.slippage_bps == 50 for ctx in engine.networks.values())
        assert events.records(EventKind.CONFIG_SET)[-1].fields["slippage_bps"] == 50

        engine.set_slippage_tolerance(OWNER, 75, network="second")
        assert engine.networks[NETWORK].orchestrator.slippage_bps == 50
        assert engine.networks["second"].orchestrator.slippage_bps == 75

    def test_set_max_gas_percent(self, engine, clock):
        add_network(engine, clock)

        engine.set_max_gas_percent(OWNER, 0, network=NETWORK)
        result = engine.run_once(NETWORK)

        assert result.status == ExecutionStatus.SKIPPED
        assert result.error.startswith("Unprofitable")

    def test_invalid_values_rejected(self, engine, clock):
        add_network(engine, clock)

        with pytest.raises(ValueError):
            engine.set_slippage_tolerance(OWNER, 10_000)
        with pytest.raises(ValueError):
            engine.set_max_gas_percent(OWNER, 150)

    def test_breaker_state_survives_restart(self, clock):
        store = StateStore()
        first = ArbitrageEngine(owner=OWNER, store=store, clock=clock)
        add_network(first, clock)
        first.halt(OWNER, NETWORK)

        second = ArbitrageEngine(owner=OWNER, store=store, clock=clock)
        add_network(second, clock)

        assert second.networks[NETWORK].safety.is_frozen
        store.close()
