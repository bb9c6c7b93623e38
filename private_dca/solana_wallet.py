"""Wallet utilities for loading the operator's funding keypair."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import base58
from solders.keypair import Keypair

from private_dca.errors import ConfigurationError

DEFAULT_KEYPAIR_PATH = Path.home() / ".config" / "solana" / "id.json"


def _keypair_from_text(text: str) -> Keypair:
    text = text.strip()
    if text.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(text)))
    return Keypair.from_bytes(base58.b58decode(text))


def load_keypair(path: Optional[str] = None) -> Keypair:
    """Load a keypair from a Solana CLI JSON array or a base58 secret file."""
    key_path = Path(path).expanduser() if path else DEFAULT_KEYPAIR_PATH
    if not key_path.exists():
        raise ConfigurationError(f"Wallet file not found: {key_path}", {"path": str(key_path)})

    try:
        return _keypair_from_text(key_path.read_text())
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"Could not read keypair from {key_path}: {e}", {"path": str(key_path)}) from e


def short_address(address: str) -> str:
    """Truncate an address for log messages."""
    address = str(address)
    if len(address) <= 12:
        return address
    return f"{address[:4]}...{address[-4:]}"
