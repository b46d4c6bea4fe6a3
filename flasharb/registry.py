# flasharb/registry.py
"""
Per-network configuration, privileged-action gating and the execution guard
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Optional

from web3 import Web3

from flasharb.errors import (
    ConfigMissing, GasBudgetExceeded, ReentrantCall, UnauthorizedCaller,
)
from flasharb.events import EventKind, EventLog
from flasharb.store import StateStore

logger = logging.getLogger(__name__)


# =============================================================================
# ACCESS CONTROL
# =============================================================================

class AccessControl:
    """Single privileged identity checked at every admin entrypoint"""

    def __init__(self, owner: str):
        self.owner = Web3.to_checksum_address(owner)

    def is_privileged(self, caller: Optional[str]) -> bool:
        if not caller:
            return False
        try:
            return Web3.to_checksum_address(caller) == self.owner
        except ValueError:
            return False

    def require_privileged(self, caller: Optional[str], action: str) -> None:
        if not self.is_privileged(caller):
            logger.warning(f"Rejected privileged action '{action}' from {caller}")
            raise UnauthorizedCaller(
                f"{action} requires the privileged identity",
                caller=caller,
                context={"action": action},
            )


class ExecutionGuard:
    """
    Mutual exclusion for state-mutating entrypoints of one network.

    Other threads wait their turn; the thread already holding the guard is
    refused, which is what stops a venue or provider from re-entering
    mid-transaction.
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    @property
    def locked(self) -> bool:
        return self._owner is not None

    def held_by_current_thread(self) -> bool:
        return self._owner == threading.get_ident()

    @contextmanager
    def hold(self, entrypoint: str = ""):
        if self.held_by_current_thread():
            raise ReentrantCall(
                f"Re-entered {entrypoint or 'entrypoint'} while guard '{self.name}' is held",
                context={"guard": self.name, "entrypoint": entrypoint},
            )
        self._lock.acquire()
        self._owner = threading.get_ident()
        try:
            yield
        finally:
            self._owner = None
            self._lock.release()


# =============================================================================
# CHAIN CONFIG
# =============================================================================

@dataclass(frozen=True)
class ChainConfig:
    """Static parameters for one network"""
    network: str
    loan_provider: str
    max_gas_budget: int


class ChainConfigRegistry:
    """
    Keyed configuration map: written by the privileged identity, read by
    every execution attempt on that network.
    """

    def __init__(self, store: StateStore, access: AccessControl, events: Optional[EventLog] = None):
        self.store = store
        self.access = access
        self.events = events or EventLog()
        self._cache: Dict[str, ChainConfig] = {}

    def set_chain_config(self, caller: str, network: str, loan_provider: str, max_gas_budget: int) -> ChainConfig:
        self.access.require_privileged(caller, "set_chain_config")
        if max_gas_budget < 0:
            raise ValueError("max_gas_budget must be non-negative")

        config = ChainConfig(
            network=network,
            loan_provider=Web3.to_checksum_address(loan_provider),
            max_gas_budget=int(max_gas_budget),
        )
        self.store.save_chain_config(network, config.loan_provider, config.max_gas_budget)
        self._cache[network] = config

        self.events.emit(
            EventKind.CONFIG_SET,
            network=network,
            loan_provider=config.loan_provider,
            max_gas_budget=config.max_gas_budget,
        )
        return config

    def get(self, network: str) -> Optional[ChainConfig]:
        if network in self._cache:
            return self._cache[network]
        row = self.store.load_chain_config(network)
        if row is None:
            return None
        config = ChainConfig(
            network=row["network"],
            loan_provider=row["loan_provider"],
            max_gas_budget=row["max_gas_budget"],
        )
        self._cache[network] = config
        return config

    def require(self, network: str) -> ChainConfig:
        config = self.get(network)
        if config is None or not config.loan_provider:
            raise ConfigMissing(
                f"No loan provider configured for {network}",
                context={"network": network},
            )
        return config

    def check_gas_budget(self, network: str, gas_estimate: int) -> ChainConfig:
        """The budget is a ceiling on the unit's gas; an unset (zero) budget admits nothing."""
        config = self.require(network)
        if config.max_gas_budget <= 0 or gas_estimate > config.max_gas_budget:
            raise GasBudgetExceeded(
                f"Gas estimate {gas_estimate} exceeds budget {config.max_gas_budget} on {network}",
                context={"network": network, "gas_estimate": gas_estimate,
                         "max_gas_budget": config.max_gas_budget},
            )
        return config
