"""Wallet helpers for loading the EVM signing account."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from eth_account import Account
from eth_account.signers.local import LocalAccount

from ..config.settings import WalletConfig, get_app_config
from ..errors import ConfigurationError


@dataclass(slots=True)
class Wallet:
    """Wrapper around a local eth-account signer."""

    account: LocalAccount

    @property
    def address(self) -> str:
        return self.account.address


def _normalize_key(private_key: str) -> str:
    key = private_key.strip()
    if not key.startswith("0x"):
        key = f"0x{key}"
    return key


def load_wallet(config: Optional[WalletConfig] = None) -> Wallet:
    cfg = config or get_app_config().wallet
    if not cfg.private_key:
        raise ConfigurationError("Wallet configuration error - PRIVATE_KEY is not set")
    try:
        account = Account.from_key(_normalize_key(cfg.private_key))
    except (ValueError, TypeError) as exc:
        raise ConfigurationError("Wallet configuration error - PRIVATE_KEY is not a valid key") from exc
    return Wallet(account=account)


__all__ = ["Wallet", "load_wallet"]
