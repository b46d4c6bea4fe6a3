"""Tests for venue adapters."""

from unittest.mock import Mock

import pytest
from web3 import Web3

from flasharb.errors import SwapFailed
from flasharb.venues import (
    ZERO_ADDRESS, ConstantProductVenue, FixedRateVenue, RouterQuoteProvider,
    apply_slippage, safe_quote,
)

from conftest import ASSET, ENGINE, INTERMEDIATE, ROUTER_A


class TestSafeQuote:
    def test_success(self):
        provider = Mock()
        provider.quote.return_value = [100, 50]

        result = safe_quote(provider, 100, [ASSET, INTERMEDIATE])

        assert result.ok
        assert result.amount_out == 50

    def test_exception_becomes_failure(self):
        provider = Mock()
        provider.quote.side_effect = TimeoutError()

        result = safe_quote(provider, 100, [ASSET, INTERMEDIATE])

        assert not result.ok
        assert result.amount_out == 0
        assert result.error == "TimeoutError"

    @pytest.mark.parametrize("amounts", [[], [100], [100, -1]])
    def test_malformed(self, amounts):
        provider = Mock()
        provider.quote.return_value = amounts

        assert not safe_quote(provider, 100, [ASSET, INTERMEDIATE]).ok


def test_apply_slippage():
    assert apply_slippage(10_000, 30) == 9_970
    assert apply_slippage(10_000, 0) == 10_000


class TestFixedRateVenue:
    @pytest.fixture
    def venue(self, ledger, clock):
        v = FixedRateVenue(ledger, ROUTER_A, {(ASSET, INTERMEDIATE): "2", (INTERMEDIATE, ASSET): "0.5"},
                           fee_bps=100, clock=clock)
        ledger.mint(ROUTER_A, INTERMEDIATE, 10**6)
        ledger.mint(ENGINE, ASSET, 1_000)
        return v

    def test_quote_applies_fee(self, venue):
        # 1000 * 2 * 0.99
        assert venue.quote(1_000, [ASSET, INTERMEDIATE]) == [1_000, 1_980]

    def test_multi_hop_quote(self, venue):
        assert venue.quote(1_000, [ASSET, INTERMEDIATE, ASSET]) == [1_000, 1_980, 980]

    def test_missing_rate(self, venue):
        with pytest.raises(ValueError):
            venue.quote(1_000, [INTERMEDIATE, ENGINE])

    def test_swap_moves_balances(self, venue, ledger, clock):
        venue.approve(ENGINE, ASSET, 1_000)

        amounts = venue.swap(ENGINE, 1_000, 1_900, [ASSET, INTERMEDIATE], ENGINE, int(clock()) + 60)

        assert amounts == [1_000, 1_980]
        assert ledger.balance_of(ENGINE, ASSET) == 0
        assert ledger.balance_of(ENGINE, INTERMEDIATE) == 1_980
        assert ledger.balance_of(ROUTER_A, ASSET) == 1_000

    def test_swap_below_minimum(self, venue, ledger, clock):
        venue.approve(ENGINE, ASSET, 1_000)

        with pytest.raises(SwapFailed):
            venue.swap(ENGINE, 1_000, 2_000, [ASSET, INTERMEDIATE], ENGINE, int(clock()) + 60)
        assert ledger.balance_of(ENGINE, ASSET) == 1_000

    def test_swap_after_deadline(self, venue, clock):
        venue.approve(ENGINE, ASSET, 1_000)

        with pytest.raises(SwapFailed):
            venue.swap(ENGINE, 1_000, 0, [ASSET, INTERMEDIATE], ENGINE, int(clock()) - 1)

    def test_liquidity_is_router_inventory(self, venue):
        assert venue.liquidity(INTERMEDIATE) == 10**6


class TestConstantProductVenue:
    @pytest.fixture
    def pool(self, ledger, clock):
        v = ConstantProductVenue(ledger, ROUTER_A, fee_bps=30, clock=clock)
        v.add_pool(ASSET, INTERMEDIATE, 1_000_000, 500)
        return v

    def test_quote_matches_v2_formula(self, pool):
        amount_in_with_fee = 10_000 * 9_970
        expected = amount_in_with_fee * 500 // (1_000_000 * 10_000 + amount_in_with_fee)

        assert pool.quote(10_000, [ASSET, INTERMEDIATE])[-1] == expected

    def test_round_trip_loses_fees(self, pool):
        amounts = pool.quote(10_000, [ASSET, INTERMEDIATE, ASSET])
        assert amounts[-1] < 10_000

    def test_swap_updates_reserves(self, pool, ledger, clock):
        ledger.mint(ENGINE, ASSET, 10_000)
        pool.approve(ENGINE, ASSET, 10_000)
        out = pool.quote(10_000, [ASSET, INTERMEDIATE])[-1]

        pool.swap(ENGINE, 10_000, out, [ASSET, INTERMEDIATE], ENGINE, int(clock()) + 60)

        a, b = Web3.to_checksum_address(ASSET), Web3.to_checksum_address(INTERMEDIATE)
        assert pool.reserves[(a, b)] == (1_010_000, 500 - out)
        assert pool.reserves[(b, a)] == (500 - out, 1_010_000)

    def test_liquidity(self, pool):
        assert pool.liquidity(ASSET) == 1_000_000
        assert pool.liquidity(ENGINE) is None


class TestRouterQuoteProvider:
    @pytest.fixture
    def w3(self):
        w3 = Mock()
        w3.eth.contract.return_value = Mock()
        return w3

    def test_quote(self, w3):
        router = w3.eth.contract.return_value
        router.functions.getAmountsOut.return_value.call.return_value = (1_000, 500, 1_010)
        provider = RouterQuoteProvider(w3, ROUTER_A)

        assert provider.quote(1_000, [ASSET, INTERMEDIATE, ASSET]) == [1_000, 500, 1_010]
        path = router.functions.getAmountsOut.call_args[0][1]
        assert path == [Web3.to_checksum_address(ASSET), Web3.to_checksum_address(INTERMEDIATE),
                        Web3.to_checksum_address(ASSET)]

    def test_liquidity_unknown_without_counter_asset(self, w3):
        assert RouterQuoteProvider(w3, ROUTER_A, ROUTER_A).liquidity(ASSET) is None

    def test_liquidity_from_pair_reserves(self):
        router, factory, pair = Mock(), Mock(), Mock()
        w3 = Mock()
        w3.eth.contract.side_effect = [router, factory, pair]
        pair_address = "0x" + "ee" * 20
        factory.functions.getPair.return_value.call.return_value = pair_address
        pair.functions.getReserves.return_value.call.return_value = (700, 300, 0)
        pair.functions.token0.return_value.call.return_value = Web3.to_checksum_address(INTERMEDIATE)

        provider = RouterQuoteProvider(w3, ROUTER_A, ROUTER_A)
        provider.counter_asset = INTERMEDIATE

        assert provider.liquidity(ASSET) == 300

    def test_missing_pair(self, w3):
        factory = w3.eth.contract.return_value
        factory.functions.getPair.return_value.call.return_value = ZERO_ADDRESS
        provider = RouterQuoteProvider(w3, ROUTER_A, ROUTER_A)
        provider.counter_asset = INTERMEDIATE

        assert provider.get_pair_address(ASSET, INTERMEDIATE) is None
        assert provider.liquidity(ASSET) is None
