"""Jupiter aggregator client: quotes and swap transactions."""

import logging
from typing import Any, Dict, Optional, Tuple

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair

from private_dca.config import DEFAULT_JUPITER_API
from private_dca.errors import ProviderError
from private_dca.solana_execution import (
    SignedAttempt,
    request_json,
    send_with_fresh_blockhash,
    sign_serialized,
)

logger = logging.getLogger(__name__)

PROVIDER = "jupiter"
PRIORITY_FEE = {
    "priorityLevelWithMaxLamports": {
        "maxLamports": 1_000_000,
        "priorityLevel": "medium",
    }
}


class JupiterClient:
    """Exact-in quotes and provider-built swap transactions."""

    def __init__(self, client: AsyncClient, base_url: str = DEFAULT_JUPITER_API):
        self.client = client
        self.base_url = base_url.rstrip("/")

    async def quote(
        self,
        input_mint: str,
        output_mint: str,
        amount_raw: int,
        slippage_bps: int = 50,
    ) -> Dict[str, Any]:
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(amount_raw),
            "slippageBps": str(slippage_bps),
        }
        data = await request_json("GET", f"{self.base_url}/quote", params=params, provider=PROVIDER)
        if not isinstance(data, dict) or "outAmount" not in data:
            error = data.get("error") if isinstance(data, dict) else data
            raise ProviderError(f"Jupiter quote failed: {error}", provider=PROVIDER)
        logger.debug(f"Got swap quote: {input_mint[:8]}... -> {output_mint[:8]}... for {amount_raw}")
        return data

    async def build_swap_transaction(
        self, quote: Dict[str, Any], user_public_key: str
    ) -> Tuple[str, Optional[int]]:
        """Returns the base64 unsigned transaction and its last valid block height."""
        payload = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": PRIORITY_FEE,
        }
        data = await request_json("POST", f"{self.base_url}/swap", json_payload=payload, provider=PROVIDER)
        swap_tx = data.get("swapTransaction") if isinstance(data, dict) else None
        if not swap_tx:
            raise ProviderError(f"Jupiter swap failed: {data}", provider=PROVIDER)
        return swap_tx, data.get("lastValidBlockHeight")

    async def execute_swap(self, quote: Dict[str, Any], keypair: Keypair) -> str:
        """Sign and submit the swap, fetching a fresh transaction for every attempt."""

        async def build_attempt() -> SignedAttempt:
            swap_tx, last_valid = await self.build_swap_transaction(quote, str(keypair.pubkey()))
            return SignedAttempt(sign_serialized(swap_tx, keypair), last_valid)

        return await send_with_fresh_blockhash(
            self.client, build_attempt, label="Swap", skip_preflight=True
        )
