"""
Private DCA Test Configuration

Shared fixtures: temp directories, a fake Solana RPC client, keypairs and a
clean environment. Nothing here touches the network.
"""

import tempfile
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from solders.hash import Hash
from solders.keypair import Keypair

from private_dca.config import ENV_OVERRIDES


# Temporary directory for test data
@pytest.fixture
def temp_dir():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# No config leaks in from the developer's shell
@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def funder():
    return Keypair()


def rpc_value(value):
    """Wrap a value the way solana-py responses carry it."""
    resp = MagicMock()
    resp.value = value
    return resp


@pytest.fixture
def rpc_client():
    """
    AsyncClient stand-in.

    Every wallet holds 1 SOL, no token accounts exist, and every sent
    transaction confirms on the first status poll.
    """
    client = MagicMock()
    client.get_balance = AsyncMock(return_value=rpc_value(1_000_000_000))
    client.get_token_account_balance = AsyncMock(return_value=rpc_value(None))
    client.get_account_info = AsyncMock(return_value=rpc_value(None))

    blockhash = MagicMock()
    blockhash.blockhash = Hash.default()
    blockhash.last_valid_block_height = 1_000
    client.get_latest_blockhash = AsyncMock(return_value=rpc_value(blockhash))
    client.get_block_height = AsyncMock(return_value=rpc_value(900))

    client.send_raw_transaction = AsyncMock(return_value=rpc_value("5igNaTuRe1111111111111111111111111111111111"))
    status = MagicMock()
    status.err = None
    status.confirmation_status = "confirmed"
    client.get_signature_statuses = AsyncMock(return_value=rpc_value([status]))
    client.close = AsyncMock()
    return client


@pytest.fixture
def no_sleep(monkeypatch):
    """Skip backoff delays."""
    sleep = AsyncMock()
    monkeypatch.setattr("private_dca.solana_execution.asyncio.sleep", sleep)
    return sleep
