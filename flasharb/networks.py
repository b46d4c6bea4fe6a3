# flasharb/networks.py
"""
Known network deployments
Routers, tokens, loan pool and reference feed per network key
"""

from web3 import Web3
from dataclasses import dataclass
from typing import Dict, Optional

# =============================================================================
# TOKEN ADDRESSES (Polygon Mainnet)
# =============================================================================

USDC_LEGACY = Web3.to_checksum_address("0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174")
WETH = Web3.to_checksum_address("0x7ceB23fD6bC0adD59E62ac25578270cFf1b9f619")


@dataclass(frozen=True)
class DexInfo:
    name: str
    router: str
    factory: str
    fee_bps: int


@dataclass(frozen=True)
class NetworkInfo:
    name: str
    chain_id: int
    aave_pool: str
    asset: str                 # borrowed / settlement asset
    intermediate: str          # the B in A -> B -> A
    price_feed: Optional[str]  # Chainlink feed for the intermediate
    native_feed: Optional[str]  # Chainlink feed for the gas token
    asset_decimals: int
    dexes: Dict[str, DexInfo]


NETWORKS: Dict[str, NetworkInfo] = {
    "polygon": NetworkInfo(
        name="polygon",
        chain_id=137,
        aave_pool=Web3.to_checksum_address("0x794a61358D6845594F94dc1DB02A252b5b4814aD"),
        asset=USDC_LEGACY,
        intermediate=WETH,
        price_feed=Web3.to_checksum_address("0xF9680D99D6C9589e2a93a78A04A279e509205945"),  # ETH/USD
        native_feed=Web3.to_checksum_address("0xAB594600376Ec9fD91F8e885dADF0CE036862dE0"),  # MATIC/USD
        asset_decimals=6,
        dexes={
            "quickswap": DexInfo(
                name="QuickSwap",
                router=Web3.to_checksum_address("0xa5E0829CaCEd8fFDD4De3c43696c57F7D7A678ff"),
                factory=Web3.to_checksum_address("0x5757371414417b8C6CAad45bAeF941aBc7d3Ab32"),
                fee_bps=30,
            ),
            "sushiswap": DexInfo(
                name="SushiSwap",
                router=Web3.to_checksum_address("0x1b02dA8Cb0d097eB8D57A175b88c7D8b47997506"),
                factory=Web3.to_checksum_address("0xc35DADB65012eC5796536bD9864eD8773aBc74C4"),
                fee_bps=30,
            ),
            "apeswap": DexInfo(
                name="ApeSwap",
                router=Web3.to_checksum_address("0xC0788A3aD43d79aa53B09c2EaCc313A787d1d607"),
                factory=Web3.to_checksum_address("0xCf083Be4164828f00cAE704EC15a36D711491284"),
                fee_bps=20,
            ),
        },
    ),
}


def get_network(name: str) -> NetworkInfo:
    if name not in NETWORKS:
        raise ValueError(f"Unknown network: {name} (known: {', '.join(NETWORKS)})")
    return NETWORKS[name]
