"""Schedule and execution records."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from private_dca.errors import ValidationError
from private_dca.tokens import is_known_token


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ScheduleFrequency(str, Enum):
    """DCA schedule frequencies"""
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


@dataclass
class Schedule:
    """A recurring private swap."""
    from_token: str
    to_token: str
    amount_per_execution: float
    frequency: ScheduleFrequency
    slippage_bps: int = 50

    # Privacy flags
    use_ephemeral: bool = False
    use_anonymity_pool: bool = False
    use_encrypted_transfer: bool = False
    use_confidential: bool = False
    screen_addresses: bool = False
    destination: Optional[str] = None

    # Limits
    total_executions: Optional[int] = None
    executed_count: int = 0
    active: bool = True

    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self):
        self.from_token = self.from_token.upper()
        self.to_token = self.to_token.upper()
        if not isinstance(self.frequency, ScheduleFrequency):
            try:
                self.frequency = ScheduleFrequency(str(self.frequency).lower())
            except ValueError:
                raise ValidationError(
                    f"Invalid frequency: {self.frequency}. Use: hourly, daily, weekly, monthly",
                    {"frequency": self.frequency},
                )

    def validate(self) -> None:
        for symbol in (self.from_token, self.to_token):
            if not is_known_token(symbol):
                raise ValidationError(f"Unknown token: {symbol}", {"token": symbol})
        if self.from_token == self.to_token:
            raise ValidationError("Source and destination tokens must differ")
        if self.amount_per_execution <= 0:
            raise ValidationError("Amount must be positive", {"amount": self.amount_per_execution})
        if self.total_executions is not None and self.total_executions < 1:
            raise ValidationError("Total executions must be at least 1", {"total_executions": self.total_executions})
        if not 0 <= self.slippage_bps <= 10_000:
            raise ValidationError("Slippage must be between 0 and 10000 bps", {"slippage_bps": self.slippage_bps})

    def cap_reached(self) -> bool:
        return self.total_executions is not None and self.executed_count >= self.total_executions

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_token": self.from_token,
            "to_token": self.to_token,
            "amount_per_execution": self.amount_per_execution,
            "frequency": self.frequency.value,
            "slippage_bps": self.slippage_bps,
            "use_ephemeral": self.use_ephemeral,
            "use_anonymity_pool": self.use_anonymity_pool,
            "use_encrypted_transfer": self.use_encrypted_transfer,
            "use_confidential": self.use_confidential,
            "screen_addresses": self.screen_addresses,
            "destination": self.destination,
            "total_executions": self.total_executions,
            "executed_count": self.executed_count,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schedule":
        return cls(
            id=data["id"],
            from_token=data["from_token"],
            to_token=data["to_token"],
            amount_per_execution=data["amount_per_execution"],
            frequency=ScheduleFrequency(data["frequency"]),
            slippage_bps=data.get("slippage_bps", 50),
            use_ephemeral=data.get("use_ephemeral", False),
            use_anonymity_pool=data.get("use_anonymity_pool", False),
            use_encrypted_transfer=data.get("use_encrypted_transfer", False),
            use_confidential=data.get("use_confidential", False),
            screen_addresses=data.get("screen_addresses", False),
            destination=data.get("destination"),
            total_executions=data.get("total_executions"),
            executed_count=data.get("executed_count", 0),
            active=data.get("active", True),
            created_at=datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow(),
        )


@dataclass
class Execution:
    """One run of a schedule. Never modified after it is written."""
    schedule_id: str
    success: bool
    signature: Optional[str] = None
    output_amount: Optional[float] = None
    error: Optional[str] = None
    executed_at: datetime = field(default_factory=_utcnow)
    id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"exec-{int(self.executed_at.timestamp() * 1000)}-{uuid4().hex[:6]}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "executed_at": self.executed_at.isoformat(),
            "success": self.success,
            "signature": self.signature,
            "output_amount": self.output_amount,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Execution":
        return cls(
            id=data["id"],
            schedule_id=data["schedule_id"],
            success=data["success"],
            signature=data.get("signature"),
            output_amount=data.get("output_amount"),
            error=data.get("error"),
            executed_at=datetime.fromisoformat(data["executed_at"]),
        )
