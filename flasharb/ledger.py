# flasharb/ledger.py
"""
Settlement ledger for the simulated execution environment.
Balances and allowances per holder/asset, with all-or-nothing commit.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Tuple

from web3 import Web3

from flasharb.errors import InsufficientBalance

logger = logging.getLogger(__name__)


def _key(address: str) -> str:
    return Web3.to_checksum_address(address)


class Ledger:
    """
    ERC20-style accounting for every asset the engine touches.

    atomic() snapshots the whole ledger and restores it if the block raises,
    so a failed unit leaves no trace.
    """

    def __init__(self):
        self._balances: Dict[Tuple[str, str], int] = {}
        self._allowances: Dict[Tuple[str, str, str], int] = {}
        self._attached: List[Any] = []
        self._lock = threading.RLock()

    def balance_of(self, holder: str, asset: str) -> int:
        return self._balances.get((_key(holder), _key(asset)), 0)

    def allowance(self, owner: str, spender: str, asset: str) -> int:
        return self._allowances.get((_key(owner), _key(spender), _key(asset)), 0)

    def mint(self, holder: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("mint amount must be non-negative")
        with self._lock:
            k = (_key(holder), _key(asset))
            self._balances[k] = self._balances.get(k, 0) + amount

    def approve(self, owner: str, spender: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("allowance must be non-negative")
        with self._lock:
            self._allowances[(_key(owner), _key(spender), _key(asset))] = amount

    def transfer(self, sender: str, recipient: str, asset: str, amount: int) -> None:
        if amount < 0:
            raise ValueError("transfer amount must be non-negative")
        with self._lock:
            src = (_key(sender), _key(asset))
            balance = self._balances.get(src, 0)
            if balance < amount:
                raise InsufficientBalance(
                    f"Insufficient balance: {balance} < {amount}",
                    context={"holder": src[0], "asset": src[1]},
                )
            dst = (_key(recipient), _key(asset))
            self._balances[src] = balance - amount
            self._balances[dst] = self._balances.get(dst, 0) + amount

    def transfer_from(self, spender: str, owner: str, recipient: str, asset: str, amount: int) -> None:
        with self._lock:
            k = (_key(owner), _key(spender), _key(asset))
            allowed = self._allowances.get(k, 0)
            if allowed < amount:
                raise InsufficientBalance(
                    f"Insufficient allowance: {allowed} < {amount}",
                    context={"owner": k[0], "spender": k[1], "asset": k[2]},
                )
            self.transfer(owner, recipient, asset, amount)
            self._allowances[k] = allowed - amount

    def attach(self, holder: Any) -> None:
        """
        Include a holder's own state in snapshots.
        The holder must provide snapshot_state() and restore_state(state).
        """
        with self._lock:
            if holder not in self._attached:
                self._attached.append(holder)

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "balances": copy.deepcopy(self._balances),
                "allowances": copy.deepcopy(self._allowances),
                "attached": [(h, h.snapshot_state()) for h in self._attached],
            }

    def restore(self, snap: dict) -> None:
        with self._lock:
            self._balances = copy.deepcopy(snap["balances"])
            self._allowances = copy.deepcopy(snap["allowances"])
            for holder, state in snap.get("attached", []):
                holder.restore_state(state)

    @contextmanager
    def atomic(self):
        """Commit everything in the block or nothing at all."""
        with self._lock:
            snap = self.snapshot()
            try:
                yield self
            except BaseException:
                self.restore(snap)
                logger.debug("Ledger rolled back to pre-unit snapshot")
                raise
