# flasharb/sizing.py
"""Loan sizing strategies."""

import logging
from decimal import Decimal, ROUND_DOWN

from flasharb.config import DEFAULT_LOAN_AMOUNT, MAX_LIQUIDITY_IMPACT_PCT

logger = logging.getLogger(__name__)


class LoanSizer:
    def size(self, asset: str, requested: int, venue=None) -> int:
        raise NotImplementedError


class FixedNotionalSizer(LoanSizer):
    """Borrow the requested amount, or a fixed notional when none is given"""

    def __init__(self, notional: int = DEFAULT_LOAN_AMOUNT):
        self.notional = notional

    def size(self, asset: str, requested: int, venue=None) -> int:
        return requested if requested > 0 else self.notional


class LiquidityBoundSizer(FixedNotionalSizer):
    """
    Caps the loan at max_impact_pct of the venue's depth in the asset to
    limit slippage. Unknown depth leaves the notional untouched.
    """

    def __init__(self, notional: int = DEFAULT_LOAN_AMOUNT, max_impact_pct=MAX_LIQUIDITY_IMPACT_PCT):
        super().__init__(notional)
        self.max_impact_pct = Decimal(str(max_impact_pct))

    def size(self, asset: str, requested: int, venue=None) -> int:
        amount = super().size(asset, requested, venue)
        if venue is None:
            return amount

        depth = venue.quoter.liquidity(asset)
        if depth is None:
            return amount

        cap = int((Decimal(depth) * self.max_impact_pct / Decimal(100)).to_integral_value(rounding=ROUND_DOWN))
        if amount > cap:
            logger.info(f"Loan for {venue.key} capped by liquidity: {amount} -> {cap}")
            return cap
        return amount
