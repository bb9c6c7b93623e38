"""
Tests for private_dca/errors

Tests cover:
- Error codes and dict serialization
- Stage tagging on pipeline errors
"""

import pytest

from private_dca.errors import (
    DCAError,
    DeliveryFailed,
    FundingFailed,
    PipelineError,
    PrivacyStageUnavailable,
    ProviderError,
    QuoteFailed,
    ScreeningFailed,
    ScreeningRejected,
    SwapFailed,
    TransactionError,
    ValidationError,
)


class TestBaseErrors:
    """Root error behavior."""

    def test_to_dict(self):
        err = ValidationError("Amount must be positive", {"amount": -1})
        assert err.to_dict() == {
            "code": "VAL_001",
            "message": "Amount must be positive",
            "details": {"amount": -1},
        }

    def test_details_default_empty(self):
        assert DCAError("boom").details == {}

    def test_provider_error_carries_provider(self):
        err = ProviderError("HTTP 500: oops", provider="jupiter")
        assert err.provider == "jupiter"
        assert err.details["provider"] == "jupiter"

    def test_transaction_error_retryable(self):
        err = TransactionError("expired", retryable=True)
        assert err.retryable
        assert err.signature is None


class TestPipelineErrors:
    """Every fatal stage error names its stage."""

    @pytest.mark.parametrize(
        "error,stage",
        [
            (ScreeningRejected("flagged", "severe"), "screening"),
            (ScreeningFailed("timeout"), "screening"),
            (FundingFailed("Insufficient SOL balance"), "ephemeral-fund"),
            (QuoteFailed("no route"), "quote"),
            (SwapFailed("slippage", signer="abc"), "swap"),
            (DeliveryFailed("rejected", swap_signature="sig"), "send-output"),
            (PrivacyStageUnavailable("down", stage="confidential"), "confidential"),
        ],
    )
    def test_stage(self, error, stage):
        assert isinstance(error, PipelineError)
        assert error.stage == stage
        assert error.details["stage"] == stage

    def test_str_is_stage_tagged(self):
        assert str(QuoteFailed("HTTP 400: bad mint")) == "[quote] HTTP 400: bad mint"

    def test_message_preserved_verbatim(self):
        err = SwapFailed("custom program error: 0x1771", signer="abc")
        assert err.message == "custom program error: 0x1771"
        assert err.details["signer"] == "abc"

    def test_screening_rejected_risk_level(self):
        err = ScreeningRejected("Address screening failed", "severe")
        assert err.risk_level == "severe"
        assert err.to_dict()["code"] == "PIPE_SCREEN_REJECTED"

    def test_delivery_failed_keeps_swap_signature(self):
        err = DeliveryFailed("ATA creation failed", swap_signature="swapsig")
        assert err.swap_signature == "swapsig"
