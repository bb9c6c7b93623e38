"""Transaction submission helpers: fresh-blockhash retry, confirmation and HTTP."""

from __future__ import annotations

import asyncio
import base64
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import aiohttp
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from private_dca.errors import ProviderError, TransactionError

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 3
CONFIRM_TIMEOUT_SECONDS = 90


@dataclass
class SignedAttempt:
    """One signed transaction plus the block height after which it is dead."""
    transaction: Any
    last_valid_block_height: Optional[int] = None


def _backoff_delay(base: float, attempt: int, max_delay: float = 30.0) -> float:
    """Exponential backoff with jitter to prevent thundering herd."""
    delay = min(max_delay, base * (2 ** attempt))
    jitter = delay * 0.1 * random.random()
    return delay + jitter


def _is_rate_limited(status: int) -> bool:
    return status in (429, 503, 502)


def is_blockhash_expired(error: Optional[str]) -> bool:
    """True for errors meaning the transaction's validity window closed."""
    if not error:
        return False
    lower = error.lower()
    return (
        "block height exceeded" in lower
        or "blockhash not found" in lower
        or "blockhashnotfound" in lower
        or "blockhash expired" in lower
    )


def describe_error(error: Optional[str]) -> Optional[str]:
    """Return a short, human-readable hint for common Solana errors."""
    if not error:
        return None

    lower = error.lower()
    if is_blockhash_expired(error):
        return "Blockhash expired; rebuild and re-sign the transaction."
    if "alreadyprocessed" in lower:
        return "Transaction already processed; likely duplicate or replayed."
    if "insufficientfunds" in lower or "insufficient lamports" in lower:
        return "Insufficient funds for fee or transfer."
    if "accountnotfound" in lower or "uninitializedaccount" in lower:
        return "Account not initialized; create associated token account."
    if "signatureverificationfailed" in lower:
        return "Signature verification failed; ensure signer and recent blockhash match."

    match = re.search(r"custom program error: (0x[0-9a-f]+)", lower)
    if match:
        return f"Custom program error {match.group(1)}; program-specific constraint failed."
    return None


async def request_json(
    method: str,
    url: str,
    *,
    provider: str,
    params: Optional[Dict[str, Any]] = None,
    json_payload: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    retries: int = 3,
    backoff_seconds: float = 0.5,
    timeout_seconds: int = 20,
) -> Any:
    """
    Make an HTTP request and decode the JSON body.

    Rate limiting (429/502/503), timeouts and connection errors are retried
    with backoff. Any other non-200 answer raises ProviderError immediately
    with the response body kept as the message.
    """
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    last_error = None

    for attempt in range(retries):
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, params=params, json=json_payload, headers=headers
                ) as resp:
                    if _is_rate_limited(resp.status):
                        retry_after = resp.headers.get("Retry-After")
                        wait_time = float(retry_after) if retry_after else _backoff_delay(backoff_seconds, attempt)
                        last_error = f"HTTP {resp.status}"
                        logger.warning(f"Rate limited on {url}, waiting {wait_time:.1f}s")
                        await asyncio.sleep(wait_time)
                        continue
                    if resp.status != 200:
                        body = await resp.text()
                        raise ProviderError(f"HTTP {resp.status}: {body}", provider=provider)
                    return await resp.json(content_type=None)
        except asyncio.TimeoutError:
            last_error = "timeout"
            logger.warning(f"Request timeout on {url} (attempt {attempt + 1}/{retries})")
            await asyncio.sleep(_backoff_delay(backoff_seconds, attempt))
        except aiohttp.ClientError as e:
            last_error = str(e)
            logger.warning(f"Client error on {url}: {e} (attempt {attempt + 1}/{retries})")
            await asyncio.sleep(_backoff_delay(backoff_seconds, attempt))

    logger.error(f"Request failed after {retries} attempts: {url} - {last_error}")
    raise ProviderError(f"Request failed after {retries} attempts: {last_error}", provider=provider)


def sign_serialized(tx_base64: str, keypair: Keypair) -> VersionedTransaction:
    """Sign a base64 versioned transaction built by a remote service."""
    unsigned = VersionedTransaction.from_bytes(base64.b64decode(tx_base64))
    return VersionedTransaction(unsigned.message, [keypair])


async def latest_blockhash(client: AsyncClient) -> Tuple[Hash, int]:
    resp = await client.get_latest_blockhash(commitment=Confirmed)
    return resp.value.blockhash, resp.value.last_valid_block_height


async def _confirm_signature(
    client: AsyncClient,
    signature: str,
    *,
    last_valid_block_height: Optional[int] = None,
    timeout_seconds: int = CONFIRM_TIMEOUT_SECONDS,
    poll_interval: float = 0.5,
) -> Tuple[bool, Optional[str]]:
    """Poll a signature until confirmed, failed, or its blockhash expires."""
    start = time.time()
    poll_count = 0

    while time.time() - start < timeout_seconds:
        resp = await client.get_signature_statuses([signature])
        value = resp.value[0] if resp.value else None
        if value:
            if value.err:
                error_str = str(value.err)
                logger.warning(f"Transaction {signature[:16]}... failed: {error_str}")
                return False, error_str
            status = str(value.confirmation_status or "").lower()
            if "confirmed" in status or "finalized" in status:
                logger.info(f"Transaction {signature[:16]}... confirmed")
                return True, None

        if last_valid_block_height is not None:
            height = (await client.get_block_height(commitment=Confirmed)).value
            if height > last_valid_block_height:
                return False, "block height exceeded"

        poll_count += 1
        wait_time = min(poll_interval * (1.2 ** min(poll_count, 10)), 2.0)
        await asyncio.sleep(wait_time)

    logger.warning(f"Transaction {signature[:16]}... confirmation timeout after {timeout_seconds}s")
    return False, "confirmation timeout"


async def send_with_fresh_blockhash(
    client: AsyncClient,
    build_attempt: Callable[[], Awaitable[SignedAttempt]],
    *,
    label: str = "transaction",
    max_attempts: int = MAX_SEND_ATTEMPTS,
    skip_preflight: bool = False,
) -> str:
    """
    Submit a transaction, rebuilding it against fresh network state each try.

    ``build_attempt`` is awaited immediately before every attempt and must
    return a freshly signed transaction. Only blockhash expiry is retried; any
    other failure raises TransactionError on the spot.

    Returns:
        The confirmed transaction signature
    """
    last_error = None

    for attempt in range(1, max_attempts + 1):
        prepared = await build_attempt()
        opts = TxOpts(skip_preflight=skip_preflight, preflight_commitment=Confirmed)
        signature = None
        try:
            resp = await client.send_raw_transaction(bytes(prepared.transaction), opts=opts)
            signature = str(resp.value)
            logger.info(f"{label} sent (attempt {attempt}/{max_attempts}): {signature[:16]}...")
            confirmed, error = await _confirm_signature(
                client, signature, last_valid_block_height=prepared.last_valid_block_height
            )
        except Exception as exc:
            confirmed, error = False, str(exc)
            if not is_blockhash_expired(error):
                raise TransactionError(error, signature=signature) from exc

        if confirmed:
            return signature

        last_error = error
        if not is_blockhash_expired(error):
            hint = describe_error(error)
            if hint:
                logger.warning(f"{label} failed: {hint}")
            raise TransactionError(error, signature=signature)

        logger.warning(f"{label} blockhash expired, retrying ({attempt}/{max_attempts})")

    raise TransactionError(
        f"{label} failed after {max_attempts} attempts: {last_error}",
        retryable=True,
    )
