# flasharb/errors.py
"""
Error classifications for the arbitrage engine.

Venue-level problems degrade into zero-profit quotes and never surface here.
Everything below is raised at the call boundary that owns it and is either
absorbed into a skip record by the engine or propagated as a full rollback.
"""

from typing import Any, Dict, Optional


class ArbitrageError(Exception):
    """Base class for every rejection or failure of an arbitrage call."""

    fatal = True

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.context = context or {}

    @property
    def reason(self) -> str:
        return str(self)


class QuoteUnavailable(ArbitrageError):
    """A venue could not quote a path. Absorbed by the evaluator."""

    fatal = False


class Unprofitable(ArbitrageError):
    """Best round trip does not clear the gas-adjusted threshold."""

    fatal = False


class UnsafeMarket(ArbitrageError):
    """Price moved beyond the drop threshold or the breaker is frozen."""


class UnauthorizedCaller(ArbitrageError):
    """Callback sender/initiator mismatch or a non-privileged admin call."""

    def __init__(self, message: str, caller: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.caller = caller


class InsufficientProfit(ArbitrageError):
    """Realized profit of the atomic unit fell short of the requested minimum."""

    def __init__(self, message: str, actual_profit: int = 0, min_profit: int = 0, **kwargs):
        super().__init__(message, **kwargs)
        self.actual_profit = actual_profit
        self.min_profit = min_profit


class ConfigMissing(ArbitrageError):
    """No loan provider configured for the network."""

    fatal = False


class GasBudgetExceeded(ArbitrageError):
    """The unit's gas estimate does not fit the network's budget."""

    fatal = False


class ReentrantCall(ArbitrageError):
    """An entrypoint was re-entered while its guard was held."""


class SwapFailed(ArbitrageError):
    """A venue executor failed inside the atomic unit."""

    def __init__(self, message: str, venue: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.venue = venue


class InsufficientBalance(ArbitrageError):
    """A ledger transfer was attempted without enough balance or allowance."""
