"""
PrivateDCA - programmatic interface to private recurring swaps.

Usage:
    dca = PrivateDCA(load_config())
    dca.on_event("executed", lambda event: print(event))
    schedule = await dca.schedule(ScheduleOptions("USDC", "SOL", 10, "daily", executions=30,
                                                  privacy=PrivacyOptions(ephemeral=True)))
    await dca.run_forever()
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from solana.rpc.async_api import AsyncClient
from solders.keypair import Keypair

from private_dca.config import DCAConfig
from private_dca.dca import Execution, JsonScheduleStore, Schedule, ScheduleEngine, ScheduleFrequency
from private_dca.errors import NotFoundError, ValidationError
from private_dca.providers import ProviderSet, select_providers
from private_dca.solana_wallet import load_keypair
from private_dca.swap_pipeline import ProgressEvent, SwapPipeline, SwapRequest, SwapResult

logger = logging.getLogger(__name__)

EVENTS = ("created", "executed", "failed", "paused", "resumed", "cancelled", "progress")


@dataclass
class PrivacyOptions:
    ephemeral: bool = False
    anonymity_pool: bool = False
    encrypted_transfer: bool = False
    confidential: bool = False
    screen_addresses: bool = False


@dataclass
class ScheduleOptions:
    from_token: str
    to_token: str
    amount: float
    frequency: str
    executions: Optional[int] = None
    slippage_bps: int = 50
    destination: Optional[str] = None
    privacy: PrivacyOptions = field(default_factory=PrivacyOptions)


@dataclass
class ScheduleHistory:
    schedule_id: str
    status: str
    total_executions: int
    last_execution: Optional[str]
    next_execution: Optional[str]
    executions: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def swap_request_for(schedule: Schedule, range_api_key: Optional[str] = None) -> SwapRequest:
    return SwapRequest(
        from_token=schedule.from_token,
        to_token=schedule.to_token,
        amount=schedule.amount_per_execution,
        slippage_bps=schedule.slippage_bps,
        use_ephemeral=schedule.use_ephemeral,
        use_anonymity_pool=schedule.use_anonymity_pool,
        use_encrypted_transfer=schedule.use_encrypted_transfer,
        use_confidential=schedule.use_confidential,
        screen_addresses=schedule.screen_addresses,
        destination=schedule.destination,
        range_api_key=range_api_key,
    )


class PrivateDCA:
    """Schedules, runs and reports on private DCA swaps."""

    def __init__(
        self,
        config: DCAConfig,
        *,
        client: Optional[AsyncClient] = None,
        funder: Optional[Keypair] = None,
        providers: Optional[ProviderSet] = None,
        pipeline: Optional[SwapPipeline] = None,
        engine: Optional[ScheduleEngine] = None,
    ):
        self.config = config
        self.client = client
        self.funder = funder
        self.providers = providers
        self.pipeline = pipeline
        self.engine = engine
        self._callbacks: Dict[str, List[Callable]] = {name: [] for name in EVENTS}
        self._initialized = False

    async def initialize(self) -> None:
        """Load the wallet, connect, pick providers. Safe to call twice."""
        if self._initialized:
            return

        if self.funder is None:
            self.funder = load_keypair(self.config.wallet_path or None)
        if self.client is None:
            self.client = AsyncClient(self.config.rpc_url)
        if self.pipeline is None:
            if self.providers is None:
                self.providers = await select_providers(self.config, self.client)
            self.pipeline = SwapPipeline(self.client, self.providers, strict_privacy=self.config.strict_privacy)
        if self.engine is None:
            self.engine = ScheduleEngine(
                JsonScheduleStore(self.config.data_path),
                timezone_name=self.config.timezone,
                fire_hour=self.config.fire_hour,
            )
        self.engine.on_executed(self._record_outcome)
        self._initialized = True
        logger.info(f"PrivateDCA ready on {self.config.network} ({self.config.rpc_url})")

    # ------------------------------------------------------------------
    # events
    # ------------------------------------------------------------------

    def on_event(self, event: str, callback: Callable[[Dict[str, Any]], None]) -> None:
        """Register event callback (created, executed, failed, paused, resumed, cancelled, progress)."""
        if event not in self._callbacks:
            raise ValidationError(f"Unknown event: {event}. Use one of: {', '.join(EVENTS)}")
        self._callbacks[event].append(callback)

    def _emit(self, event: str, **payload) -> None:
        payload["type"] = event
        for callback in self._callbacks[event]:
            try:
                callback(payload)
            except Exception as e:
                logger.error(f"Event callback error for {event}: {e}")

    def _record_outcome(self, schedule: Schedule, execution: Execution) -> None:
        if execution.success:
            self._emit("executed", schedule=schedule.to_dict(), execution=execution.to_dict())
        else:
            self._emit("failed", schedule=schedule.to_dict(), error=execution.error)

    def _on_progress(self, event: ProgressEvent) -> None:
        self._emit("progress", **asdict(event))

    # ------------------------------------------------------------------
    # execution
    # ------------------------------------------------------------------

    async def _run_schedule(self, schedule: Schedule) -> SwapResult:
        request = swap_request_for(schedule, self.config.range_api_key)
        return await self.pipeline.execute(self.funder, request, self._on_progress)

    def _resolve(self, id_prefix: str) -> Schedule:
        matches = self.engine.store.find_by_prefix(id_prefix)
        if not matches:
            raise NotFoundError(f"Schedule not found: {id_prefix}", {"schedule_id": id_prefix})
        exact = [s for s in matches if s.id == id_prefix]
        if exact:
            return exact[0]
        if len(matches) > 1:
            raise ValidationError(
                f"Schedule id prefix '{id_prefix}' is ambiguous ({len(matches)} matches)",
                {"schedule_id": id_prefix},
            )
        return matches[0]

    # ------------------------------------------------------------------
    # schedule management
    # ------------------------------------------------------------------

    async def schedule(self, options: ScheduleOptions) -> Schedule:
        await self.initialize()
        schedule = Schedule(
            from_token=options.from_token,
            to_token=options.to_token,
            amount_per_execution=options.amount,
            frequency=options.frequency,
            slippage_bps=options.slippage_bps,
            use_ephemeral=options.privacy.ephemeral,
            use_anonymity_pool=options.privacy.anonymity_pool,
            use_encrypted_transfer=options.privacy.encrypted_transfer,
            use_confidential=options.privacy.confidential,
            screen_addresses=options.privacy.screen_addresses,
            destination=options.destination,
            total_executions=options.executions,
        )
        await self.engine.create(schedule, self._run_schedule)
        self._emit("created", schedule=schedule.to_dict())
        return schedule

    async def list(self) -> List[Schedule]:
        await self.initialize()
        return self.engine.list()

    async def get(self, id_prefix: str) -> Optional[Schedule]:
        """Look a schedule up by id prefix. None when nothing matches; ambiguous prefixes raise."""
        await self.initialize()
        try:
            return self._resolve(id_prefix)
        except NotFoundError:
            return None

    async def execute(self, id_prefix: str) -> Execution:
        """Run a schedule now, outside its timer. Counts toward its cap."""
        await self.initialize()
        schedule = self._resolve(id_prefix)
        execution = await self.engine.fire(schedule.id, self._run_schedule)
        if execution is None:
            raise ValidationError(f"Schedule {schedule.id[:8]} is not active")
        return execution

    async def pause(self, id_prefix: str) -> Schedule:
        await self.initialize()
        schedule = self._resolve(id_prefix)
        await self.engine.pause(schedule.id)
        schedule = self.engine.get(schedule.id)
        self._emit("paused", schedule=schedule.to_dict())
        return schedule

    async def resume(self, id_prefix: str) -> Schedule:
        await self.initialize()
        schedule = self._resolve(id_prefix)
        await self.engine.resume(schedule.id, self._run_schedule)
        schedule = self.engine.get(schedule.id)
        self._emit("resumed", schedule=schedule.to_dict())
        return schedule

    async def cancel(self, id_prefix: str) -> None:
        await self.initialize()
        schedule = self._resolve(id_prefix)
        await self.engine.cancel(schedule.id)
        self._emit("cancelled", schedule=schedule.to_dict())

    async def history(self, id_prefix: Optional[str] = None) -> List[ScheduleHistory]:
        await self.initialize()
        schedules = [self._resolve(id_prefix)] if id_prefix else self.engine.list()

        results = []
        for schedule in schedules:
            executions = self.engine.history(schedule.id)
            next_fire = self.engine.next_fire_time(schedule.id)
            if schedule.active:
                status = "active"
            elif schedule.cap_reached():
                status = "completed"
            else:
                status = "paused"
            results.append(
                ScheduleHistory(
                    schedule_id=schedule.id,
                    status=status,
                    total_executions=len(executions),
                    last_execution=executions[-1].executed_at.isoformat() if executions else None,
                    next_execution=next_fire.isoformat() if next_fire else None,
                    executions=[e.to_dict() for e in executions],
                )
            )
        return results

    # ------------------------------------------------------------------
    # daemon
    # ------------------------------------------------------------------

    async def start(self) -> int:
        """Register timers for every active schedule and start firing them."""
        await self.initialize()
        count = await self.engine.rehydrate(self._run_schedule)
        self.engine.start()
        return count

    async def close(self) -> None:
        if self.engine:
            self.engine.shutdown()
        if self.client:
            await self.client.close()

    async def run_forever(self) -> None:
        count = await self.start()
        logger.info(f"Running {count} schedules; waiting for timers")
        try:
            await asyncio.Event().wait()
        finally:
            await self.close()


__all__ = [
    "PrivateDCA",
    "PrivacyOptions",
    "ScheduleOptions",
    "ScheduleHistory",
    "ScheduleFrequency",
    "swap_request_for",
]
