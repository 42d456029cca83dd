"""Shared constants for the bonding-curve issuance contract on Base."""

from datetime import datetime, timezone
from typing import Any, Dict, List


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


BASE_CHAIN_ID = 8453
BASE_RPC_URL = "https://mainnet.base.org"
FACTORY_ADDRESS = "0x07DFAEC8e182C5eF79844ADc70708C1c15aA60fb"

TOKEN_DECIMALS = 18
DRY_RUN_TX_HASH = "0xDRYRUN"
IPFS_SCHEME = "ipfs://"

# Reserve thresholds (native units) used by the issuance risk score.
VERY_LOW_RESERVE = "0.01"
LOW_RESERVE = "0.1"
MODEST_RESERVE = "1"

THEME_VALUES: List[str] = [
    "sustainability",
    "social_impact",
    "innovation",
    "education",
    "health",
    "finance",
    "entertainment",
    "gaming",
    "ai_ml",
    "web3",
    "defi",
    "other",
]

FACTORY_ABI: List[Dict[str, Any]] = [
    {
        "type": "event",
        "name": "TokenCreated",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "creator", "type": "address", "indexed": True},
            {"name": "name", "type": "string", "indexed": False},
            {"name": "symbol", "type": "string", "indexed": False},
            {"name": "uri", "type": "string", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "TokenTraded",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "trader", "type": "address", "indexed": True},
            {"name": "isBuy", "type": "bool", "indexed": False},
            {"name": "ethAmount", "type": "uint256", "indexed": False},
            {"name": "tokenAmount", "type": "uint256", "indexed": False},
            {"name": "newPrice", "type": "uint256", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "event",
        "name": "TokenGraduated",
        "anonymous": False,
        "inputs": [
            {"name": "token", "type": "address", "indexed": True},
            {"name": "pair", "type": "address", "indexed": True},
            {"name": "ethLiquidity", "type": "uint256", "indexed": False},
            {"name": "tokenLiquidity", "type": "uint256", "indexed": False},
            {"name": "timestamp", "type": "uint256", "indexed": False},
        ],
    },
    {
        "type": "function",
        "name": "buyTokens",
        "stateMutability": "payable",
        "inputs": [{"name": "token", "type": "address"}],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "sellTokens",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [],
    },
    {
        "type": "function",
        "name": "getBondingCurveInfo",
        "stateMutability": "view",
        "inputs": [{"name": "token", "type": "address"}],
        "outputs": [
            {"name": "currentPrice", "type": "uint256"},
            {"name": "totalSupply", "type": "uint256"},
            {"name": "reserveETH", "type": "uint256"},
            {"name": "marketCap", "type": "uint256"},
            {"name": "graduated", "type": "bool"},
        ],
    },
]

__all__ = [
    "BASE_CHAIN_ID",
    "BASE_RPC_URL",
    "DRY_RUN_TX_HASH",
    "FACTORY_ABI",
    "FACTORY_ADDRESS",
    "IPFS_SCHEME",
    "LOW_RESERVE",
    "MODEST_RESERVE",
    "THEME_VALUES",
    "TOKEN_DECIMALS",
    "VERY_LOW_RESERVE",
    "utc_now",
]
