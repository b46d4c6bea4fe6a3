# flasharb/loans.py
"""
Flash loan providers
The atomic-borrow primitive: lends, invokes the receiver's callback
synchronously, and pulls back principal + fee. If anything in between
fails, every effect (including the loan) is undone.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from eth_abi import decode, encode
from web3 import Web3

from flasharb.config import AAVE_FLASH_LOAN_FEE_BPS
from flasharb.errors import ArbitrageError
from flasharb.ledger import Ledger

logger = logging.getLogger(__name__)

# =============================================================================
# AAVE V3 POOL ABI (Flash Loan Related Functions)
# =============================================================================

AAVE_POOL_ABI = [
    {
        "name": "flashLoan",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "receiverAddress", "type": "address"},
            {"name": "assets", "type": "address[]"},
            {"name": "amounts", "type": "uint256[]"},
            {"name": "interestRateModes", "type": "uint256[]"},
            {"name": "onBehalfOf", "type": "address"},
            {"name": "params", "type": "bytes"},
            {"name": "referralCode", "type": "uint16"},
        ],
        "outputs": [],
    },
    {
        "name": "getReserveData",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "asset", "type": "address"}],
        "outputs": [
            {
                "components": [
                    {"name": "configuration", "type": "uint256"},
                    {"name": "liquidityIndex", "type": "uint128"},
                    {"name": "currentLiquidityRate", "type": "uint128"},
                    {"name": "variableBorrowIndex", "type": "uint128"},
                    {"name": "currentVariableBorrowRate", "type": "uint128"},
                    {"name": "currentStableBorrowRate", "type": "uint128"},
                    {"name": "lastUpdateTimestamp", "type": "uint40"},
                    {"name": "id", "type": "uint16"},
                    {"name": "aTokenAddress", "type": "address"},
                    {"name": "stableDebtTokenAddress", "type": "address"},
                    {"name": "variableDebtTokenAddress", "type": "address"},
                    {"name": "interestRateStrategyAddress", "type": "address"},
                    {"name": "accruedToTreasury", "type": "uint128"},
                    {"name": "unbacked", "type": "uint128"},
                    {"name": "isolationModeTotalDebt", "type": "uint128"},
                ],
                "name": "",
                "type": "tuple",
            }
        ],
    },
    {
        "name": "FLASHLOAN_PREMIUM_TOTAL",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint128"}],
    },
]

ERC20_BALANCE_ABI = [
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]

# Mode 0 = repay within the same unit; debt-opening modes are not supported.
NO_DEBT_MODE = 0


# =============================================================================
# PARAMS ENCODING
# =============================================================================

@dataclass(frozen=True)
class ArbitrageParams:
    """Opaque params carried through the loan to the callback"""
    venue_key: str
    intermediate: str
    min_profit: int


def encode_arbitrage_params(venue_key: str, intermediate: str, min_profit: int) -> bytes:
    return encode(
        ["string", "address", "uint256"],
        [venue_key, Web3.to_checksum_address(intermediate), min_profit],
    )


def decode_arbitrage_params(params: bytes) -> ArbitrageParams:
    venue_key, intermediate, min_profit = decode(["string", "address", "uint256"], params)
    return ArbitrageParams(
        venue_key=venue_key,
        intermediate=Web3.to_checksum_address(intermediate),
        min_profit=min_profit,
    )


def calculate_total_repayment(amount: int, fee_bps: int) -> int:
    """Calculate total amount to repay (principal + fee)"""
    return amount + (amount * fee_bps) // 10000


# =============================================================================
# PROVIDERS
# =============================================================================

class LoanProvider:
    """Atomic-borrow primitive; invokes receiver.on_loan_callback within the unit"""

    address: str

    def request_loan(
        self,
        receiver,
        assets: List[str],
        amounts: List[int],
        modes: List[int],
        on_behalf_of: str,
        params: bytes,
        referral_code: int = 0,
        caller: Optional[str] = None,
    ) -> None:
        raise NotImplementedError


class SimulatedLoanProvider(LoanProvider):
    """
    Aave-style pool over the settlement ledger.
    The pool address holds the lendable reserves.
    """

    def __init__(self, ledger: Ledger, address: str, fee_bps: int = AAVE_FLASH_LOAN_FEE_BPS):
        self.ledger = ledger
        self.address = Web3.to_checksum_address(address)
        self.fee_bps = fee_bps
        self.loans_served = 0

    def available_liquidity(self, asset: str) -> int:
        return self.ledger.balance_of(self.address, asset)

    def request_loan(
        self,
        receiver,
        assets: List[str],
        amounts: List[int],
        modes: List[int],
        on_behalf_of: str,
        params: bytes,
        referral_code: int = 0,
        caller: Optional[str] = None,
    ) -> None:
        if not (len(assets) == len(amounts) == len(modes)):
            raise ValueError("assets, amounts and modes must have equal length")
        if any(m != NO_DEBT_MODE for m in modes):
            raise ValueError("Only same-unit repayment (mode 0) is supported")

        initiator = Web3.to_checksum_address(caller or on_behalf_of)
        receiver_address = receiver.identity
        fees = [(amount * self.fee_bps) // 10000 for amount in amounts]

        with self.ledger.atomic():
            for asset, amount in zip(assets, amounts):
                self.ledger.transfer(self.address, receiver_address, asset, amount)

            ok = receiver.on_loan_callback(
                assets=list(assets),
                amounts=list(amounts),
                fees=fees,
                initiator=initiator,
                params=params,
                sender=self.address,
            )
            if not ok:
                raise ArbitrageError("Loan callback returned false", context={"receiver": receiver_address})

            for asset, amount, fee in zip(assets, amounts, fees):
                self.ledger.transfer_from(self.address, receiver_address, self.address, asset, amount + fee)

        self.loans_served += 1
        logger.debug(f"Loan settled for {receiver_address}: {amounts} (+{fees})")


class AavePoolAdapter:
    """
    Read side of the live Aave V3 pool plus flashLoan transaction building
    for an on-chain receiver. Nothing is signed here.
    """

    def __init__(self, w3: Web3, pool: str):
        self.w3 = w3
        self.address = Web3.to_checksum_address(pool)
        self.pool = w3.eth.contract(address=self.address, abi=AAVE_POOL_ABI)
        self._fee_cache: Optional[int] = None

    def get_flash_loan_fee_bps(self) -> int:
        """Get the current flash loan fee in basis points"""
        if self._fee_cache is None:
            try:
                self._fee_cache = self.pool.functions.FLASHLOAN_PREMIUM_TOTAL().call()
            except Exception as e:
                logger.warning(f"Premium lookup failed, using {AAVE_FLASH_LOAN_FEE_BPS} bps: {e}")
                self._fee_cache = AAVE_FLASH_LOAN_FEE_BPS
        return self._fee_cache

    def get_available_liquidity(self, asset: str) -> int:
        """Underlying held by the reserve's aToken"""
        asset = Web3.to_checksum_address(asset)
        try:
            reserve_data = self.pool.functions.getReserveData(asset).call()
            atoken_address = reserve_data[8]
            token = self.w3.eth.contract(address=asset, abi=ERC20_BALANCE_ABI)
            return token.functions.balanceOf(atoken_address).call()
        except Exception as e:
            logger.warning(f"Liquidity lookup failed for {asset}: {e}")
            return 0

    def quote_fee(self, amount: int) -> Tuple[int, int]:
        """(fee, total repayment) for a loan of `amount`"""
        total = calculate_total_repayment(amount, self.get_flash_loan_fee_bps())
        return total - amount, total

    def build_flash_loan_tx(
        self,
        receiver: str,
        asset: str,
        amount: int,
        params: bytes,
        from_address: str,
        gas: int,
        gas_price: int,
        nonce: int,
        chain_id: int,
    ) -> dict:
        return self.pool.functions.flashLoan(
            Web3.to_checksum_address(receiver),
            [Web3.to_checksum_address(asset)],
            [amount],
            [NO_DEBT_MODE],
            Web3.to_checksum_address(receiver),
            params,
            0,  # referralCode
        ).build_transaction({
            "from": Web3.to_checksum_address(from_address),
            "gas": gas,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": chain_id,
        })
