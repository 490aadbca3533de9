"""
Environment variable loading and ledger network resolution.

- SUI_NETWORK: devnet | testnet | mainnet (default: testnet)
- SUI_RPC_URL: JSON-RPC endpoint (overrides the network default)
- ZOMBIE_PACKAGE_ID: published Move package holding the `zombie` module
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_zombie/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

NETWORK_RPC_URLS = {
    "devnet": "https://fullnode.devnet.sui.io:443",
    "testnet": "https://fullnode.testnet.sui.io:443",
    "mainnet": "https://fullnode.mainnet.sui.io:443",
}
DEFAULT_NETWORK = "testnet"

# Placeholder package id; deployments must set ZOMBIE_PACKAGE_ID.
DEFAULT_PACKAGE_ID = "0x0"


def load_zombie_env() -> None:
    """Load .env from project root. Safe to call multiple times; never overrides real env."""
    if _ENV_PATH.is_file():
        load_dotenv(_ENV_PATH, override=False)


def get_sui_network() -> str:
    """
    Return SUI_NETWORK from env: devnet | testnet | mainnet.
    Unknown values fall back to testnet.
    """
    load_zombie_env()
    raw = (os.getenv("SUI_NETWORK") or DEFAULT_NETWORK).strip().lower()
    if raw in NETWORK_RPC_URLS:
        return raw
    return DEFAULT_NETWORK


def get_sui_rpc_url() -> str:
    """
    Resolve the ledger RPC URL.
    Order: SUI_RPC_URL > network default.
    """
    load_zombie_env()
    url = (os.getenv("SUI_RPC_URL") or "").strip()
    if url:
        return url
    return NETWORK_RPC_URLS[get_sui_network()]


def get_package_id() -> str:
    """Return ZOMBIE_PACKAGE_ID from env, or the placeholder."""
    load_zombie_env()
    return (os.getenv("ZOMBIE_PACKAGE_ID") or "").strip() or DEFAULT_PACKAGE_ID


def mask_rpc_url(url: str) -> str:
    """Hide API keys embedded in RPC URLs before logging them."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
