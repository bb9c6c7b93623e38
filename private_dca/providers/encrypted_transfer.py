"""ShadowWire encrypted-amount transfers."""

import hashlib
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair

from private_dca.errors import ProviderError, ValidationError
from private_dca.solana_execution import (
    SignedAttempt,
    request_json,
    send_with_fresh_blockhash,
    sign_serialized,
)
from private_dca.tokens import TOKENS, to_raw_amount

logger = logging.getLogger(__name__)

PROVIDER = "shadowwire"
SUPPORTED_TOKENS = (
    "SOL", "RADR", "USDC", "ORE", "BONK", "JIM", "GODL", "HUSTLE", "ZEC",
    "CRT", "BLACKCOIN", "GIL", "ANON", "WLFI", "USD1", "AOL", "IQLABS",
)
VISIBILITIES = ("internal", "external")


def is_token_supported(symbol: str) -> bool:
    return symbol.upper() in SUPPORTED_TOKENS


@dataclass
class DepositReceipt:
    signature: str
    token: str
    amount: float
    pool_address: Optional[str] = None
    simulated: bool = False
    message: str = ""


@dataclass
class TransferReceipt:
    signature: str
    amount_hidden: bool
    amount_sent: Optional[float] = None
    simulated: bool = False
    message: str = ""


class EncryptedTransfer(ABC):
    """Pool-internal transfers whose amount is not publicly readable."""

    name = "ShadowWire"
    is_simulated = False

    @abstractmethod
    async def deposit(self, wallet: Keypair, amount: float, token: str) -> DepositReceipt:
        ...

    @abstractmethod
    async def transfer(
        self,
        sender: Keypair,
        recipient: str,
        amount: float,
        token: str,
        visibility: str = "internal",
    ) -> TransferReceipt:
        ...


def _check_visibility(visibility: str) -> None:
    if visibility not in VISIBILITIES:
        raise ValidationError(f"Unknown transfer visibility: {visibility}", {"visibility": visibility})


def _decimals(token: str) -> int:
    info = TOKENS.get(token.upper())
    return info.decimals if info else 9


class ShadowWireClient(EncryptedTransfer):
    """ShadowWire relayer client. Internal transfers hide the amount."""

    def __init__(self, client: AsyncClient, base_url: str):
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def check_availability(self) -> None:
        await request_json("GET", f"{self.base_url}/health", provider=PROVIDER, retries=1)

    async def deposit(self, wallet: Keypair, amount: float, token: str) -> DepositReceipt:
        if not is_token_supported(token):
            raise ProviderError(f"ShadowWire does not support {token}", provider=PROVIDER)

        body = {
            "wallet": str(wallet.pubkey()),
            "amount": to_raw_amount(amount, _decimals(token)),
            "token": token.upper(),
        }
        pool_address = None

        async def build_attempt() -> SignedAttempt:
            nonlocal pool_address
            data = await request_json("POST", f"{self.base_url}/pool/deposit", json_payload=body, provider=PROVIDER)
            if not data.get("success"):
                raise ProviderError(f"Deposit failed: {data.get('error', data)}", provider=PROVIDER)
            pool_address = data.get("pool_address")
            return SignedAttempt(sign_serialized(data["unsigned_tx_base64"], wallet))

        signature = await send_with_fresh_blockhash(self.client, build_attempt, label="ShadowWire deposit")
        return DepositReceipt(
            signature, token, amount, pool_address=pool_address,
            message=f"Deposited {amount} {token} to ShadowWire pool",
        )

    async def transfer(
        self,
        sender: Keypair,
        recipient: str,
        amount: float,
        token: str,
        visibility: str = "internal",
    ) -> TransferReceipt:
        _check_visibility(visibility)
        nonce = int(time.time() * 1000)
        message = f"shadowwire:transfer:{recipient}:{nonce}".encode()
        body = {
            "sender": str(sender.pubkey()),
            "recipient": recipient,
            "amount": amount,
            "token": token.upper(),
            "type": visibility,
            "nonce": nonce,
            "signature": str(sender.sign_message(message)),
        }
        data = await request_json("POST", f"{self.base_url}/zk/transfer", json_payload=body, provider=PROVIDER)
        if not data.get("success"):
            raise ProviderError(f"Transfer failed: {data.get('error', data)}", provider=PROVIDER)

        hidden = bool(data.get("amount_hidden"))
        return TransferReceipt(
            signature=data["tx_signature"],
            amount_hidden=hidden,
            amount_sent=data.get("amount_sent"),
            message=f"Transferred {'[HIDDEN]' if hidden else amount} {token} to {recipient[:8]}...",
        )


class SimulatedShadowWire(EncryptedTransfer):
    """Stand-in used when ShadowWire is not reachable. Moves no funds."""

    is_simulated = True

    def __init__(self, reason: str = "ShadowWire relayer not configured"):
        self.reason = reason

    async def deposit(self, wallet: Keypair, amount: float, token: str) -> DepositReceipt:
        digest = hashlib.sha256(f"{token}-{amount}-{wallet.pubkey()}".encode()).hexdigest()
        return DepositReceipt(
            signature=f"sw_dep_{digest[:32]}",
            token=token,
            amount=amount,
            simulated=True,
            message=f"[SIMULATED] Deposited {amount} {token} to ShadowWire pool",
        )

    async def transfer(
        self,
        sender: Keypair,
        recipient: str,
        amount: float,
        token: str,
        visibility: str = "internal",
    ) -> TransferReceipt:
        _check_visibility(visibility)
        digest = hashlib.sha256(f"{recipient}-{amount}".encode()).hexdigest()
        hidden = visibility == "internal"
        return TransferReceipt(
            signature=f"sw_tx_{digest[:32]}",
            amount_hidden=hidden,
            amount_sent=None if hidden else amount,
            simulated=True,
            message=f"[SIMULATED] Transferred {'[HIDDEN]' if hidden else amount} {token} "
                    f"to {recipient[:8]}... via ShadowWire",
        )
