"""
Ephemeral (disposable) wallet lifecycle.

A fresh keypair is generated for a single swap, funded from the operator's
wallet, used to sign the swap, and then emptied back out. Keys are held in
memory only and are never written anywhere.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from solana.rpc.async_api import AsyncClient
from solana.rpc.core import RPCException
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)

from private_dca.errors import FundingFailed, TransactionError
from private_dca.solana_execution import SignedAttempt, latest_blockhash, send_with_fresh_blockhash
from private_dca.solana_wallet import short_address
from private_dca.tokens import (
    LAMPORTS_PER_SOL,
    from_raw_amount,
    lamports_to_sol,
    sol_to_lamports,
    to_raw_amount,
    token_by_mint,
)

logger = logging.getLogger(__name__)

# Smallest fee needed for the recovery transfer itself.
RECOVERY_RESERVE_LAMPORTS = 5000
# Two ATA creations (0.002 each), swap priority fee (0.003), output transfer (0.001), buffer (0.002).
RECOMMENDED_FUNDING_SOL = 0.01


@dataclass
class EphemeralWallet:
    """A one-time keypair used for exactly one swap."""
    keypair: Keypair = field(repr=False)

    @property
    def pubkey(self) -> Pubkey:
        return self.keypair.pubkey()

    @property
    def address(self) -> str:
        return str(self.keypair.pubkey())


@dataclass
class FundingResult:
    signature: str
    sol_amount: float
    token_mint: Optional[str] = None
    token_amount: Optional[float] = None


@dataclass
class TransferResult:
    signature: str
    amount: float
    mint: str
    destination: str


def _decimals_for(mint: str) -> int:
    info = token_by_mint(mint)
    return info.decimals if info else 9


def _symbol_for(mint: str) -> str:
    info = token_by_mint(mint)
    return info.symbol if info else "UNKNOWN"


def _as_pubkey(value) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    return Pubkey.from_string(str(value))


class EphemeralWalletManager:
    """Creates, funds, drains and recovers disposable wallets."""

    def __init__(self, client: AsyncClient):
        self.client = client

    def generate(self) -> EphemeralWallet:
        wallet = EphemeralWallet(keypair=Keypair())
        logger.info(f"Generated ephemeral wallet {short_address(wallet.address)}")
        return wallet

    def recommended_funding(self) -> float:
        return RECOMMENDED_FUNDING_SOL

    async def get_native_balance(self, pubkey) -> float:
        resp = await self.client.get_balance(_as_pubkey(pubkey))
        return lamports_to_sol(resp.value)

    async def get_token_balance(self, pubkey, mint: str) -> float:
        """Token balance in human units; 0 when the token account does not exist."""
        ata = get_associated_token_address(_as_pubkey(pubkey), _as_pubkey(mint))
        try:
            resp = await self.client.get_token_account_balance(ata)
        except RPCException:
            return 0.0
        if resp.value is None:
            return 0.0
        return from_raw_amount(int(resp.value.amount), _decimals_for(mint))

    async def _account_exists(self, address: Pubkey) -> bool:
        resp = await self.client.get_account_info(address)
        return resp.value is not None

    async def check_sufficient_balance(
        self,
        funder: Keypair,
        sol_needed: float,
        token_mint: Optional[str] = None,
        token_amount_needed: Optional[float] = None,
    ) -> None:
        """Raise FundingFailed if the funder cannot cover the requested amounts."""
        lamports = (await self.client.get_balance(funder.pubkey())).value
        sol_balance = lamports_to_sol(lamports)
        if lamports < sol_to_lamports(sol_needed) + RECOVERY_RESERVE_LAMPORTS:
            raise FundingFailed(
                f"Insufficient SOL balance: have {sol_balance:.6f} SOL, need {sol_needed:.6f} SOL"
            )

        if token_mint and token_amount_needed and token_amount_needed > 0:
            symbol = _symbol_for(token_mint)
            token_balance = await self.get_token_balance(funder.pubkey(), token_mint)
            if token_balance < token_amount_needed:
                raise FundingFailed(
                    f"Insufficient {symbol} balance: have {token_balance:.6f} {symbol}, "
                    f"need {token_amount_needed:.6f} {symbol}"
                )

    async def _send(self, instructions: List, payer: Keypair, label: str) -> str:
        async def build_attempt() -> SignedAttempt:
            blockhash, last_valid = await latest_blockhash(self.client)
            message = Message.new_with_blockhash(instructions, payer.pubkey(), blockhash)
            tx = Transaction.new_unsigned(message)
            tx.sign([payer], blockhash)
            return SignedAttempt(tx, last_valid)

        return await send_with_fresh_blockhash(self.client, build_attempt, label=label)

    async def fund(
        self,
        funder: Keypair,
        wallet: EphemeralWallet,
        sol_amount: float,
        token_mint: Optional[str] = None,
        token_amount: Optional[float] = None,
    ) -> FundingResult:
        """
        Fund an ephemeral wallet in a single transaction.

        Carries the SOL transfer and, when a token is requested, creates the
        wallet's associated token account (paid by the funder) and moves the
        tokens with a checked transfer. Balances are verified before anything
        is built, so an underfunded request never reaches the network.
        """
        await self.check_sufficient_balance(funder, sol_amount, token_mint, token_amount)

        instructions = [
            transfer(
                TransferParams(
                    from_pubkey=funder.pubkey(),
                    to_pubkey=wallet.pubkey,
                    lamports=sol_to_lamports(sol_amount),
                )
            )
        ]

        if token_mint and token_amount and token_amount > 0:
            mint = _as_pubkey(token_mint)
            decimals = _decimals_for(token_mint)
            source_ata = get_associated_token_address(funder.pubkey(), mint)
            wallet_ata = get_associated_token_address(wallet.pubkey, mint)
            if not await self._account_exists(wallet_ata):
                instructions.append(create_associated_token_account(funder.pubkey(), wallet.pubkey, mint))
            instructions.append(
                transfer_checked(
                    TransferCheckedParams(
                        program_id=TOKEN_PROGRAM_ID,
                        source=source_ata,
                        mint=mint,
                        dest=wallet_ata,
                        owner=funder.pubkey(),
                        amount=to_raw_amount(token_amount, decimals),
                        decimals=decimals,
                    )
                )
            )

        try:
            signature = await self._send(instructions, funder, "Ephemeral funding")
        except TransactionError as e:
            raise FundingFailed(e.message) from e

        logger.info(f"Funded ephemeral {short_address(wallet.address)} with {sol_amount} SOL")
        return FundingResult(signature, sol_amount, token_mint, token_amount)

    async def send_to_destination(
        self,
        wallet: EphemeralWallet,
        destination,
        mint: str,
        amount: float,
    ) -> TransferResult:
        """Move held tokens out; the ephemeral wallet pays for the destination ATA."""
        destination = _as_pubkey(destination)
        mint_key = _as_pubkey(mint)
        decimals = _decimals_for(mint)
        source_ata = get_associated_token_address(wallet.pubkey, mint_key)
        dest_ata = get_associated_token_address(destination, mint_key)

        instructions = []
        if not await self._account_exists(dest_ata):
            instructions.append(create_associated_token_account(wallet.pubkey, destination, mint_key))
        instructions.append(
            transfer_checked(
                TransferCheckedParams(
                    program_id=TOKEN_PROGRAM_ID,
                    source=source_ata,
                    mint=mint_key,
                    dest=dest_ata,
                    owner=wallet.pubkey,
                    amount=to_raw_amount(amount, decimals),
                    decimals=decimals,
                )
            )
        )

        signature = await self._send(instructions, wallet.keypair, "Output transfer")
        logger.info(f"Sent {amount} {_symbol_for(mint)} to {short_address(str(destination))}")
        return TransferResult(signature, amount, mint, str(destination))

    async def recover_native(self, wallet: EphemeralWallet, destination) -> Optional[str]:
        """Return leftover SOL minus the fee reserve; None when there is nothing to recover."""
        lamports = (await self.client.get_balance(wallet.pubkey)).value
        if lamports <= RECOVERY_RESERVE_LAMPORTS:
            return None

        ix = transfer(
            TransferParams(
                from_pubkey=wallet.pubkey,
                to_pubkey=_as_pubkey(destination),
                lamports=lamports - RECOVERY_RESERVE_LAMPORTS,
            )
        )
        signature = await self._send([ix], wallet.keypair, "SOL recovery")
        logger.info(
            f"Recovered {(lamports - RECOVERY_RESERVE_LAMPORTS) / LAMPORTS_PER_SOL:.6f} SOL "
            f"from {short_address(wallet.address)}"
        )
        return signature


def privacy_score(use_ephemeral: bool, use_screening: bool) -> Dict:
    """Rough privacy score (0-80) with the factors that produced it."""
    score = 0
    factors = []

    if use_ephemeral:
        score += 40
        factors.append("Ephemeral wallet breaks on-chain linkability")
    else:
        factors.append("Direct wallet exposed in transaction")

    if use_screening:
        score += 20
        factors.append("Range screening ensures compliant counterparties")

    score += 20
    factors.append("Non-custodial: you control your keys")

    return {"score": score, "factors": factors}
