# flasharb/__init__.py
"""
Flash Loan Arbitrage Engine
Borrow, swap A -> B -> A on the best venue, repay, all in one atomic unit

Modules:
- config: Configuration and environment
- networks: Token, venue and pool registry per network
- venues: Quote providers and swap executors
- oracle: Reference price and gas oracles
- safety: Circuit breaker
- evaluator: Venue selection and gas-adjusted profitability
- sizing: Loan sizing
- loans: Flash loan providers (simulated pool, Aave V3 adapter)
- orchestrator: The atomic borrow -> swap -> swap -> repay unit
- registry: Chain config, access control, execution guard
- engine: Trigger loop and admin surface
- main: Entry point
"""

__version__ = "1.0.0"
__author__ = "TradeBot"

from flasharb.engine import ArbitrageEngine
from flasharb.errors import (
    ArbitrageError,
    ConfigMissing,
    GasBudgetExceeded,
    InsufficientProfit,
    ReentrantCall,
    UnauthorizedCaller,
    Unprofitable,
    UnsafeMarket,
)
from flasharb.evaluator import ArbitrageEvaluator, Opportunity
from flasharb.events import EventKind, EventLog
from flasharb.orchestrator import ExecutionResult, ExecutionStatus, LoanOrchestrator
from flasharb.safety import BreakerState, SafetyMonitor

__all__ = [
    "ArbitrageEngine",
    "ArbitrageEvaluator",
    "Opportunity",
    "LoanOrchestrator",
    "ExecutionResult",
    "ExecutionStatus",
    "SafetyMonitor",
    "BreakerState",
    "EventKind",
    "EventLog",
    "ArbitrageError",
    "ConfigMissing",
    "GasBudgetExceeded",
    "InsufficientProfit",
    "ReentrantCall",
    "UnauthorizedCaller",
    "Unprofitable",
    "UnsafeMarket",
]
