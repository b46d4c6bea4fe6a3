"""Tests for the persistence layer."""

import pytest

from flasharb.store import StateStore


def safety_row(**overrides):
    row = {
        "is_frozen": False,
        "last_price": "100",
        "last_sample_time": 1.0,
        "consecutive_failures": 0,
        "drop_threshold_pct": "10",
        "sample_interval_sec": 60,
    }
    row.update(overrides)
    return row


class TestStateStore:
    def test_missing_rows(self, store):
        assert store.load_safety_state("polygon") is None
        assert store.load_chain_config("polygon") is None
        assert store.networks() == []

    def test_safety_state_upsert(self, store):
        store.save_safety_state("polygon", safety_row())
        store.save_safety_state("polygon", safety_row(is_frozen=True, consecutive_failures=2))

        row = store.load_safety_state("polygon")
        assert row["is_frozen"] == 1
        assert row["consecutive_failures"] == 2
        assert row["last_price"] == "100"

    def test_chain_config_round_trip(self, store):
        store.save_chain_config("polygon", "0xPool", 500_000)

        row = store.load_chain_config("polygon")
        assert row == {"network": "polygon", "loan_provider": "0xPool", "max_gas_budget": 500_000}

    def test_transaction_rollback(self, store):
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.save_chain_config("polygon", "0xPool", 1)
                raise RuntimeError("abort")

        assert store.load_chain_config("polygon") is None

    def test_savepoint_rollback_keeps_outer_writes(self, store):
        with store.transaction():
            store.save_chain_config("polygon", "0xPool", 1)
            with pytest.raises(RuntimeError):
                with store.transaction():
                    store.save_chain_config("arbitrum", "0xPool", 2)
                    raise RuntimeError("abort inner")

        assert store.load_chain_config("polygon") is not None
        assert store.load_chain_config("arbitrum") is None

    def test_file_backed_store_survives_reopen(self, tmp_path):
        path = str(tmp_path / "state" / "engine.db")

        first = StateStore(path)
        first.save_safety_state("polygon", safety_row(is_frozen=True))
        first.close()

        second = StateStore(path)
        try:
            assert second.load_safety_state("polygon")["is_frozen"] == 1
        finally:
            second.close()
