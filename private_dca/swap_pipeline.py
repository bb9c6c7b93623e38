"""
Privacy-layered swap execution.

One call to SwapPipeline.execute() runs these stages in order, each gated by a
request flag:

    screening -> anonymity pool -> ephemeral funding -> quote -> swap
    -> send output -> recover SOL -> confidential encryption
    -> encrypted transfer

Screening, funding, quote, swap and output delivery are fatal and raise a
stage-tagged PipelineError. The three privacy stages degrade to their
simulated providers with a ``warn`` event unless strict privacy is on. Dust
recovery is best effort. The result records which privacy stages really
executed and which were simulated.
"""

import logging
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Callable, Dict, Optional

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from private_dca.ephemeral import EphemeralWallet, EphemeralWalletManager
from private_dca.errors import (
    DCAError,
    DeliveryFailed,
    FundingFailed,
    PrivacyStageUnavailable,
    QuoteFailed,
    ScreeningFailed,
    ScreeningRejected,
    SwapFailed,
    ValidationError,
)
from private_dca.logging_config import CorrelationContext
from private_dca.providers import ProviderSet, SimulatedArcium, SimulatedPrivacyCash, SimulatedShadowWire
from private_dca.solana_wallet import short_address
from private_dca.tokens import from_raw_amount, get_token, to_raw_amount

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    SCREENING = "screening"
    ANONYMITY_POOL = "anonymity-pool"
    EPHEMERAL_FUND = "ephemeral-fund"
    QUOTE = "quote"
    SWAP = "swap"
    SEND_OUTPUT = "send-output"
    RECOVER_SOL = "recover-sol"
    CONFIDENTIAL = "confidential"
    ENCRYPTED_TRANSFER = "encrypted-transfer"


class ProgressStatus(str, Enum):
    START = "start"
    SUCCESS = "success"
    WARN = "warn"
    FAIL = "fail"
    INFO = "info"


class StageOutcome(str, Enum):
    EXECUTED = "executed"
    SIMULATED = "simulated"
    SKIPPED = "skipped"


PRIVACY_STAGES = ("screening", "anonymity_pool", "ephemeral", "confidential", "encrypted_transfer")


@dataclass
class ProgressEvent:
    stage: str
    status: str
    message: str
    detail: Optional[str] = None


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class SwapRequest:
    from_token: str
    to_token: str
    amount: float
    slippage_bps: int = 50
    use_ephemeral: bool = False
    use_anonymity_pool: bool = False
    use_encrypted_transfer: bool = False
    use_confidential: bool = False
    screen_addresses: bool = False
    destination: Optional[str] = None
    range_api_key: Optional[str] = None

    @property
    def uses_ephemeral_path(self) -> bool:
        return self.use_ephemeral or self.use_anonymity_pool


@dataclass
class SwapResult:
    success: bool
    signature: str
    output_amount: float
    output_token: str
    stage_outcomes: Dict[str, str] = field(default_factory=dict)
    ephemeral_address: Optional[str] = None
    encrypted_amount: Optional[str] = None

    def to_dict(self) -> Dict:
        return asdict(self)


def _error_message(error: Exception) -> str:
    if isinstance(error, DCAError):
        return error.message
    return str(error)


class _Run:
    """Mutable state for one execute() call."""

    def __init__(self, funder: Keypair, request: SwapRequest, on_progress: Optional[ProgressCallback]):
        self.funder = funder
        self.request = request
        self.on_progress = on_progress
        self.input = get_token(request.from_token)
        self.output = get_token(request.to_token)
        self.destination = request.destination or str(funder.pubkey())
        self.outcomes = {name: StageOutcome.SKIPPED.value for name in PRIVACY_STAGES}
        self.wallet: Optional[EphemeralWallet] = None
        self.pool_delivered = False
        # Input actually spent by the swap; a live pool withdraw can deliver less than requested
        self.swap_amount = request.amount
        self.funded = False


class SwapPipeline:
    """Runs one swap through the privacy stages requested for it."""

    def __init__(
        self,
        client: AsyncClient,
        providers: ProviderSet,
        wallets: Optional[EphemeralWalletManager] = None,
        strict_privacy: bool = False,
    ):
        self.client = client
        self.providers = providers
        self.wallets = wallets or EphemeralWalletManager(client)
        self.strict_privacy = strict_privacy

    async def execute(
        self,
        funder: Keypair,
        request: SwapRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> SwapResult:
        self._validate(request)
        run = _Run(funder, request, on_progress)

        with CorrelationContext() as ctx:
            logger.info(
                f"Swap run {ctx.run_id[:8]}: {request.amount} {run.input.symbol} -> {run.output.symbol}"
            )
            if self.strict_privacy:
                self._require_live_providers(request)

            if request.screen_addresses:
                await self._screen(run)
            if request.use_anonymity_pool:
                await self._route_through_pool(run)
            if request.uses_ephemeral_path:
                await self._fund_ephemeral(run)

            quote = await self._quote(run)
            signature = await self._swap(run, quote)
            output_amount = from_raw_amount(int(quote["outAmount"]), run.output.decimals)

            if run.wallet is not None:
                output_amount = await self._deliver_and_recover(run, signature, output_amount)

            encrypted = None
            if request.use_confidential:
                encrypted = await self._encrypt_amount(run, output_amount)
            if request.use_encrypted_transfer:
                await self._encrypted_transfer(run, output_amount)

            logger.info(f"Swap run {ctx.run_id[:8]} complete: {signature[:16]}... outcomes={run.outcomes}")
            return SwapResult(
                success=True,
                signature=signature,
                output_amount=output_amount,
                output_token=run.output.symbol,
                stage_outcomes=run.outcomes,
                ephemeral_address=run.wallet.address if run.wallet else None,
                encrypted_amount=encrypted,
            )

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _emit(self, run: _Run, stage: Stage, status: ProgressStatus, message: str, detail: Optional[str] = None):
        level = logging.WARNING if status in (ProgressStatus.WARN, ProgressStatus.FAIL) else logging.INFO
        logger.log(level, f"[{stage.value}] {message}" + (f" ({detail})" if detail else ""))
        if run.on_progress:
            run.on_progress(ProgressEvent(stage.value, status.value, message, detail))

    def _validate(self, request: SwapRequest) -> None:
        get_token(request.from_token)
        get_token(request.to_token)
        if request.from_token.upper() == request.to_token.upper():
            raise ValidationError("Source and destination tokens must differ")
        if request.amount <= 0:
            raise ValidationError("Amount must be positive", {"amount": request.amount})
        if request.destination:
            try:
                Pubkey.from_string(request.destination)
            except ValueError as e:
                raise ValidationError(
                    f"Invalid destination address: {request.destination}", {"destination": request.destination}
                ) from e

    def _require_live_providers(self, request: SwapRequest) -> None:
        checks = (
            (request.use_anonymity_pool, self.providers.anonymity_pool, Stage.ANONYMITY_POOL),
            (request.use_confidential, self.providers.confidential, Stage.CONFIDENTIAL),
            (request.use_encrypted_transfer, self.providers.encrypted_transfer, Stage.ENCRYPTED_TRANSFER),
        )
        for requested, provider, stage in checks:
            if requested and provider.is_simulated:
                raise PrivacyStageUnavailable(
                    f"{provider.name} is not available: {provider.reason}", stage=stage.value
                )

    def _degrade(self, run: _Run, stage: Stage, error: Exception, signature: Optional[str] = None):
        """Log a privacy stage failure, or abort when strict privacy is on."""
        message = _error_message(error)
        if self.strict_privacy:
            self._emit(run, stage, ProgressStatus.FAIL, message)
            raise PrivacyStageUnavailable(message, stage=stage.value, details={"swap_signature": signature})
        self._emit(run, stage, ProgressStatus.WARN, f"Falling back to simulation: {message}")

    # ------------------------------------------------------------------
    # stages
    # ------------------------------------------------------------------

    async def _screen(self, run: _Run) -> None:
        self._emit(run, Stage.SCREENING, ProgressStatus.START, "Screening funding address with Range...")
        screener = self.providers.screener(run.request.range_api_key)
        if screener is None:
            self._emit(run, Stage.SCREENING, ProgressStatus.WARN, "Range API key not configured. Skipping screening.")
            return

        address = str(run.funder.pubkey())
        try:
            result = await screener.screen(address)
        except Exception as e:
            self._emit(run, Stage.SCREENING, ProgressStatus.FAIL, f"Screening failed: {_error_message(e)}")
            raise ScreeningFailed(_error_message(e)) from e

        if result.is_sanctioned or result.risk_level == "severe":
            self._emit(run, Stage.SCREENING, ProgressStatus.FAIL,
                       "Address screening failed: High risk detected", result.risk_level)
            raise ScreeningRejected(f"Address screening failed: Risk Level {result.risk_level}", result.risk_level)

        run.outcomes["screening"] = StageOutcome.EXECUTED.value
        self._emit(run, Stage.SCREENING, ProgressStatus.SUCCESS, f"Screening passed (Risk: {result.risk_level})")

    async def _route_through_pool(self, run: _Run) -> None:
        pool = self.providers.anonymity_pool
        token, amount = run.input.symbol, run.request.amount
        run.wallet = self.wallets.generate()

        if pool.is_simulated:
            self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.WARN, f"{pool.name} unavailable: {pool.reason}")
        else:
            self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.START, f"Depositing {amount} {token} to {pool.name}...")
            try:
                deposit = await pool.deposit(token, amount, run.funder)
                self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.INFO, deposit.message, deposit.signature[:20])
                withdraw = await pool.withdraw(token, amount, run.wallet.address)
            except Exception as e:
                self._degrade(run, Stage.ANONYMITY_POOL, e)
            else:
                run.pool_delivered = True
                run.swap_amount = withdraw.delivered
                run.outcomes["anonymity_pool"] = StageOutcome.EXECUTED.value
                if withdraw.is_partial or withdraw.fee:
                    self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.INFO,
                               f"Received {withdraw.delivered} of {amount} {token}",
                               f"Fee: {withdraw.fee} | Partial: {withdraw.is_partial}")
                self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.SUCCESS,
                           f"Funds withdrawn to ephemeral {short_address(run.wallet.address)}", withdraw.signature[:20])
                return

        simulated = self._simulated_pool()
        deposit = await simulated.deposit(token, amount, run.funder)
        withdraw = await simulated.withdraw(token, amount, run.wallet.address)
        run.outcomes["anonymity_pool"] = StageOutcome.SIMULATED.value
        self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.INFO, deposit.message, f"Commitment: {deposit.commitment[:20]}...")
        self._emit(run, Stage.ANONYMITY_POOL, ProgressStatus.SUCCESS, withdraw.message)

    def _simulated_pool(self):
        pool = self.providers.anonymity_pool
        return pool if pool.is_simulated else SimulatedPrivacyCash()

    async def _fund_ephemeral(self, run: _Run) -> None:
        if run.wallet is None:
            run.wallet = self.wallets.generate()
        wallet = run.wallet
        fees = self.wallets.recommended_funding()
        self._emit(run, Stage.EPHEMERAL_FUND, ProgressStatus.START,
                   f"Funding ephemeral wallet {short_address(wallet.address)}...")

        try:
            if run.pool_delivered:
                await self.wallets.fund(run.funder, wallet, fees)
            elif run.input.is_native:
                await self.wallets.fund(run.funder, wallet, run.request.amount + fees)
            else:
                await self.wallets.fund(run.funder, wallet, fees, run.input.mint, run.request.amount)
        except FundingFailed as e:
            self._emit(run, Stage.EPHEMERAL_FUND, ProgressStatus.FAIL, e.message)
            raise
        except Exception as e:
            self._emit(run, Stage.EPHEMERAL_FUND, ProgressStatus.FAIL, _error_message(e))
            raise FundingFailed(_error_message(e)) from e

        run.funded = True
        run.outcomes["ephemeral"] = StageOutcome.EXECUTED.value
        self._emit(run, Stage.EPHEMERAL_FUND, ProgressStatus.SUCCESS, "Ephemeral funded")

    async def _quote(self, run: _Run) -> Dict:
        self._emit(run, Stage.QUOTE, ProgressStatus.START, "Getting best swap route...")
        try:
            quote = await self.providers.jupiter.quote(
                run.input.mint,
                run.output.mint,
                to_raw_amount(run.swap_amount, run.input.decimals),
                run.request.slippage_bps,
            )
        except Exception as e:
            self._emit(run, Stage.QUOTE, ProgressStatus.FAIL, _error_message(e))
            await self._refund_after_abort(run)
            raise QuoteFailed(_error_message(e)) from e

        expected = from_raw_amount(int(quote["outAmount"]), run.output.decimals)
        self._emit(run, Stage.QUOTE, ProgressStatus.SUCCESS, "Route found",
                   f"Expected: {expected:.6f} {run.output.symbol} | Impact: {quote.get('priceImpactPct')}%")
        return quote

    async def _swap(self, run: _Run, quote: Dict) -> str:
        signer = run.wallet.keypair if run.wallet else run.funder
        self._emit(run, Stage.SWAP, ProgressStatus.START,
                   "Executing swap from ephemeral..." if run.wallet else "Executing swap...")
        try:
            signature = await self.providers.jupiter.execute_swap(quote, signer)
        except Exception as e:
            self._emit(run, Stage.SWAP, ProgressStatus.FAIL, _error_message(e))
            await self._refund_after_abort(run)
            raise SwapFailed(_error_message(e), signer=str(signer.pubkey())) from e

        self._emit(run, Stage.SWAP, ProgressStatus.SUCCESS, "Swap executed", signature)
        return signature

    async def _refund_after_abort(self, run: _Run) -> None:
        """Return whatever a funded ephemeral wallet still holds before its key is dropped."""
        if not run.funded:
            return
        # An unconfirmed swap may still have landed.
        for token in (run.input, run.output):
            if token.is_native:
                continue
            try:
                held = await self.wallets.get_token_balance(run.wallet.pubkey, token.mint)
                if held > 0:
                    await self.wallets.send_to_destination(run.wallet, run.funder.pubkey(), token.mint, held)
                    logger.info(f"Refunded {held} {token.symbol} from ephemeral {short_address(run.wallet.address)}")
            except Exception as e:
                logger.error(f"Refund of {token.symbol} from ephemeral {short_address(run.wallet.address)} failed: {e}")
        try:
            await self.wallets.recover_native(run.wallet, run.funder.pubkey())
        except Exception as e:
            logger.error(f"SOL refund from ephemeral {short_address(run.wallet.address)} failed: {e}")

    async def _return_output_to_funder(self, run: _Run, held: float) -> None:
        """Fallback after a failed delivery so the output never stays on a dropped key."""
        if run.output.is_native:
            return
        funder = str(run.funder.pubkey())
        wallet = run.wallet
        try:
            if held <= 0:
                held = await self.wallets.get_token_balance(wallet.pubkey, run.output.mint)
            if held <= 0:
                return
            await self.wallets.send_to_destination(wallet, funder, run.output.mint, held)
        except Exception as e:
            self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.FAIL,
                       f"Could not return {held} {run.output.symbol} to funder: {_error_message(e)}",
                       f"Ephemeral: {wallet.address}")
            return
        self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.WARN,
                   f"Output returned to funder {short_address(funder)}", f"{held} {run.output.symbol}")

    async def _deliver_and_recover(self, run: _Run, swap_signature: str, quoted_amount: float) -> float:
        wallet = run.wallet
        output_amount = quoted_amount
        delivery_error = None
        held = 0.0

        self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.START, "Sending output to destination...")
        try:
            held = await self.wallets.get_token_balance(wallet.pubkey, run.output.mint)
            if held > 0:
                await self.wallets.send_to_destination(wallet, run.destination, run.output.mint, held)
                output_amount = held
                self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.SUCCESS,
                           f"Output sent to {short_address(run.destination)}")
            else:
                self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.SUCCESS, "SOL output (already at ephemeral)")
        except Exception as e:
            delivery_error = e
            self._emit(run, Stage.SEND_OUTPUT, ProgressStatus.FAIL, _error_message(e))
            await self._return_output_to_funder(run, held)

        # SOL output is still sitting in the ephemeral wallet, so recovery delivers it.
        recover_to = run.destination if run.output.is_native else str(run.funder.pubkey())
        self._emit(run, Stage.RECOVER_SOL, ProgressStatus.START, "Recovering dust...")
        try:
            recovered = await self.wallets.recover_native(wallet, recover_to)
        except Exception as e:
            self._emit(run, Stage.RECOVER_SOL, ProgressStatus.WARN, f"Dust recovery failed: {_error_message(e)}")
        else:
            if recovered:
                self._emit(run, Stage.RECOVER_SOL, ProgressStatus.SUCCESS, "Dust recovered", recovered[:20])
            else:
                self._emit(run, Stage.RECOVER_SOL, ProgressStatus.INFO, "No dust to recover")

        if delivery_error is not None:
            raise DeliveryFailed(_error_message(delivery_error), swap_signature=swap_signature) from delivery_error
        return output_amount

    async def _encrypt_amount(self, run: _Run, amount: float) -> str:
        provider = self.providers.confidential
        self._emit(run, Stage.CONFIDENTIAL, ProgressStatus.START, f"Encrypting output amount with {provider.name}...")

        if not provider.is_simulated:
            try:
                ciphertext = provider.encrypt_amount(amount)
            except Exception as e:
                self._degrade(run, Stage.CONFIDENTIAL, e)
            else:
                status = provider.encryption_status()
                run.outcomes["confidential"] = StageOutcome.EXECUTED.value
                self._emit(run, Stage.CONFIDENTIAL, ProgressStatus.SUCCESS, f"Amount encrypted: {ciphertext[:30]}...",
                           f"Cipher: {status['cipher_suite']} | MXE: {status['mxe_endpoint']}")
                return ciphertext
        else:
            self._emit(run, Stage.CONFIDENTIAL, ProgressStatus.WARN, f"{provider.name} unavailable: {provider.reason}")

        simulated = provider if provider.is_simulated else SimulatedArcium()
        ciphertext = simulated.encrypt_amount(amount)
        run.outcomes["confidential"] = StageOutcome.SIMULATED.value
        self._emit(run, Stage.CONFIDENTIAL, ProgressStatus.SUCCESS, "Encryption simulated", f"Ciphertext: {ciphertext[:30]}...")
        return ciphertext

    async def _encrypted_transfer(self, run: _Run, amount: float) -> None:
        provider = self.providers.encrypted_transfer
        token = run.output.symbol
        self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.START, f"Depositing {token} to {provider.name} pool...")

        if not provider.is_simulated:
            try:
                deposit = await provider.deposit(run.funder, amount, token)
                self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.INFO, deposit.message)
                transfer = await provider.transfer(run.funder, run.destination, amount, token, "internal")
            except Exception as e:
                self._degrade(run, Stage.ENCRYPTED_TRANSFER, e)
            else:
                run.outcomes["encrypted_transfer"] = StageOutcome.EXECUTED.value
                self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.SUCCESS,
                           f"Encrypted transfer complete (amount {'[HIDDEN]' if transfer.amount_hidden else 'visible'})",
                           transfer.signature[:16])
                return
        else:
            self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.WARN, f"{provider.name} unavailable: {provider.reason}")

        simulated = provider if provider.is_simulated else SimulatedShadowWire()
        deposit = await simulated.deposit(run.funder, amount, token)
        transfer = await simulated.transfer(run.funder, run.destination, amount, token, "internal")
        run.outcomes["encrypted_transfer"] = StageOutcome.SIMULATED.value
        self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.INFO, deposit.message)
        self._emit(run, Stage.ENCRYPTED_TRANSFER, ProgressStatus.SUCCESS,
                   f"Encrypted transfer simulated (amount {'hidden' if transfer.amount_hidden else 'visible'})",
                   transfer.message)
