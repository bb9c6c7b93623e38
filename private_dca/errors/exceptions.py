"""Custom exception hierarchy."""
from typing import Optional, Dict, Any


class DCAError(Exception):
    """Base exception for all private DCA errors."""
    code: str = "SYS_001"

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class ValidationError(DCAError):
    """Input validation failed."""
    code = "VAL_001"


class NotFoundError(DCAError):
    """Resource not found."""
    code = "SYS_002"


class ConfigurationError(DCAError):
    """Configuration error."""
    code = "CFG_001"


class ProviderError(DCAError):
    """External provider/service error."""
    code = "PROV_001"

    def __init__(self, message: str, provider: str = None):
        super().__init__(message, {"provider": provider})
        self.provider = provider


class TransactionError(DCAError):
    """A submitted transaction was rejected or failed to confirm."""
    code = "TX_001"

    def __init__(self, message: str, signature: str = None, retryable: bool = False):
        super().__init__(message, {"signature": signature, "retryable": retryable})
        self.signature = signature
        self.retryable = retryable


class PipelineError(DCAError):
    """A swap pipeline stage failed fatally."""
    code = "PIPE_001"

    def __init__(self, message: str, stage: str, details: Dict[str, Any] = None):
        super().__init__(message, {"stage": stage, **(details or {})})
        self.stage = stage

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


class ScreeningRejected(PipelineError):
    """Compliance screening flagged the funding address."""
    code = "PIPE_SCREEN_REJECTED"

    def __init__(self, message: str, risk_level: Optional[str] = None):
        super().__init__(message, stage="screening", details={"risk_level": risk_level})
        self.risk_level = risk_level


class ScreeningFailed(PipelineError):
    """Compliance screening could not be completed."""
    code = "PIPE_SCREEN_FAILED"

    def __init__(self, message: str):
        super().__init__(message, stage="screening")


class FundingFailed(PipelineError):
    """The ephemeral wallet could not be funded."""
    code = "PIPE_FUNDING"

    def __init__(self, message: str):
        super().__init__(message, stage="ephemeral-fund")


class QuoteFailed(PipelineError):
    """No executable route was returned."""
    code = "PIPE_QUOTE"

    def __init__(self, message: str):
        super().__init__(message, stage="quote")


class SwapFailed(PipelineError):
    """The swap transaction failed; funds may or may not have moved."""
    code = "PIPE_SWAP"

    def __init__(self, message: str, signer: Optional[str] = None):
        super().__init__(message, stage="swap", details={"signer": signer})
        self.signer = signer


class DeliveryFailed(PipelineError):
    """Swap output could not be moved from the ephemeral wallet."""
    code = "PIPE_DELIVERY"

    def __init__(self, message: str, swap_signature: Optional[str] = None):
        super().__init__(message, stage="send-output", details={"swap_signature": swap_signature})
        self.swap_signature = swap_signature


class PrivacyStageUnavailable(PipelineError):
    """A requested privacy stage could not genuinely execute under strict privacy."""
    code = "PIPE_PRIVACY"
