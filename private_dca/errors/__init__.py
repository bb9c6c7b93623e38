"""
Error handling and exception classes.

Two families live here:
1. General errors rooted at DCAError (validation, config, providers, transactions)
2. PipelineError and its subclasses, which are always tagged with the swap
   stage that produced them

Provider and RPC messages are kept verbatim in ``message`` so a failed
execution record shows exactly what the remote side said.
"""

from private_dca.errors.exceptions import (
    DCAError, ValidationError, NotFoundError, ConfigurationError,
    ProviderError, TransactionError,
    PipelineError, ScreeningRejected, ScreeningFailed, FundingFailed,
    QuoteFailed, SwapFailed, DeliveryFailed, PrivacyStageUnavailable,
)

__all__ = [
    "DCAError", "ValidationError", "NotFoundError", "ConfigurationError",
    "ProviderError", "TransactionError",
    "PipelineError", "ScreeningRejected", "ScreeningFailed", "FundingFailed",
    "QuoteFailed", "SwapFailed", "DeliveryFailed", "PrivacyStageUnavailable",
]
