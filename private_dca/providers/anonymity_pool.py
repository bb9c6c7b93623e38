"""
Privacy Cash anonymity pool.

Deposits go into a shared shielded pool; withdrawals are proven with a
zero-knowledge proof and paid out by the relayer, so there is no on-chain
link between the depositing wallet and the recipient.
"""

import hashlib
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair

from private_dca.errors import ProviderError
from private_dca.solana_execution import (
    SignedAttempt,
    request_json,
    send_with_fresh_blockhash,
    sign_serialized,
)
from private_dca.tokens import get_token, to_raw_amount

logger = logging.getLogger(__name__)

PROVIDER = "privacy_cash"
SUPPORTED_TOKENS = ("SOL", "USDC", "USDT")


def is_token_supported(symbol: str) -> bool:
    return symbol.upper() in SUPPORTED_TOKENS


@dataclass
class PoolReceipt:
    signature: str
    token: str
    amount: float
    simulated: bool = False
    commitment: Optional[str] = None
    proof: Optional[str] = None
    recipient: Optional[str] = None
    fee: Optional[float] = None
    # Withdrawals only: what actually reached the recipient after relayer fees
    delivered: Optional[float] = None
    is_partial: bool = False
    message: str = ""


class AnonymityPool(ABC):
    """Deposit into a mixing pool, withdraw to an unlinked address."""

    name = "Privacy Cash"
    is_simulated = False

    @abstractmethod
    async def deposit(self, token: str, amount: float, owner: Keypair) -> PoolReceipt:
        ...

    @abstractmethod
    async def withdraw(self, token: str, amount: float, recipient: str) -> PoolReceipt:
        ...


class PrivacyCashPool(AnonymityPool):
    """Privacy Cash relayer client."""

    def __init__(self, client: AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def check_availability(self) -> None:
        """Raise ProviderError if the relayer does not answer its health check."""
        await request_json("GET", f"{self.base_url}/health", provider=PROVIDER, retries=1)

    def _body(self, token: str, amount: float) -> dict:
        if not is_token_supported(token):
            raise ProviderError(
                f"Privacy Cash only supports {', '.join(SUPPORTED_TOKENS)}. Got: {token}",
                provider=PROVIDER,
            )
        info = get_token(token)
        return {"mint": info.mint, "base_units": to_raw_amount(amount, info.decimals)}

    async def deposit(self, token: str, amount: float, owner: Keypair) -> PoolReceipt:
        body = self._body(token, amount)
        body["owner"] = str(owner.pubkey())

        async def build_attempt() -> SignedAttempt:
            data = await request_json("POST", f"{self.base_url}/deposit", json_payload=body, provider=PROVIDER)
            return SignedAttempt(
                sign_serialized(data["unsigned_tx_base64"], owner),
                data.get("last_valid_block_height"),
            )

        signature = await send_with_fresh_blockhash(self.client, build_attempt, label="Pool deposit")
        logger.info(f"Deposited {amount} {token} to Privacy Cash: {signature[:16]}...")
        return PoolReceipt(signature, token, amount, message=f"Deposited {amount} {token} to Privacy Cash pool")

    async def withdraw(self, token: str, amount: float, recipient: str) -> PoolReceipt:
        body = self._body(token, amount)
        body["recipient"] = recipient
        data = await request_json("POST", f"{self.base_url}/withdraw", json_payload=body, provider=PROVIDER)
        if not data.get("tx"):
            raise ProviderError(f"Withdraw failed: {data.get('error', data)}", provider=PROVIDER)

        info = get_token(token)
        scale = 10 ** info.decimals
        gross = data.get("base_units", data.get("amount_in_lamports", body["base_units"]))
        fee = data.get("fee_base_units", data.get("fee_in_lamports")) or 0
        delivered = (gross - fee) / scale
        if delivered <= 0:
            raise ProviderError(
                f"Withdraw delivered nothing after a fee of {fee / scale} {token}", provider=PROVIDER
            )

        is_partial = bool(data.get("isPartial", False))
        if is_partial:
            logger.warning(f"Partial Privacy Cash withdraw: {delivered} of {amount} {token}")
        return PoolReceipt(
            signature=data["tx"],
            token=token,
            amount=amount,
            recipient=recipient,
            fee=fee / scale,
            delivered=delivered,
            is_partial=is_partial,
            message=f"Withdrew {delivered} {token} to {recipient[:8]}... via ZK proof",
        )


class SimulatedPrivacyCash(AnonymityPool):
    """Stand-in used when the pool is not reachable. Moves no funds."""

    is_simulated = True

    def __init__(self, reason: str = "Privacy Cash relayer not configured"):
        self.reason = reason

    async def deposit(self, token: str, amount: float, owner: Keypair) -> PoolReceipt:
        commitment = "0x" + hashlib.sha256(f"{token}-{amount}-{owner.pubkey()}".encode()).hexdigest()
        return PoolReceipt(
            signature=f"sim_dep_{commitment[2:34]}",
            token=token,
            amount=amount,
            simulated=True,
            commitment=commitment,
            message=f"[SIMULATED] Deposited {amount} {token} to Privacy Cash pool",
        )

    async def withdraw(self, token: str, amount: float, recipient: str) -> PoolReceipt:
        proof = "zkp_" + hashlib.sha256(f"{recipient}-{amount}".encode()).hexdigest()[:32]
        return PoolReceipt(
            signature=f"sim_wd_{proof[4:]}",
            token=token,
            amount=amount,
            simulated=True,
            proof=proof,
            recipient=recipient,
            message=f"[SIMULATED] Withdrew {amount} {token} to {recipient[:8]}... via ZK proof",
        )
