"""
Tests for private_dca/providers

Tests cover:
- Range risk mapping and screening requests
- Jupiter quote/swap response handling
- Simulated and live privacy providers
- One-time provider selection
"""

import struct
from unittest.mock import AsyncMock, patch

import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from solders.keypair import Keypair

from private_dca.config import DCAConfig
from private_dca.errors import ConfigurationError, ProviderError, ValidationError
from private_dca.providers import (
    ArciumEncryption,
    JupiterClient,
    PrivacyCashPool,
    ShadowWireClient,
    SimulatedArcium,
    SimulatedPrivacyCash,
    SimulatedShadowWire,
    select_providers,
)
from private_dca.providers.confidential import KDF_INFO
from private_dca.providers.screening import (
    RangeScreener,
    format_risk_report,
    is_high_risk,
    map_risk_level,
    parse_risk_response,
)


class TestRiskMapping:

    @pytest.mark.parametrize(
        "score,level",
        [(1, "low"), (3, "low"), (4, "medium"), (5, "medium"), (6, "high"), (7, "high"), (8, "severe"), (10, "severe")],
    )
    def test_levels(self, score, level):
        assert map_risk_level(score) == level

    def test_clean_address(self):
        result = parse_risk_response("addr", "solana", {"riskScore": 2, "riskLevel": "Low risk"})
        assert not result.is_sanctioned
        assert result.risk_level == "low"
        assert result.risk_score == 20
        assert not is_high_risk(result)

    def test_critical_label_is_sanctioned(self):
        result = parse_risk_response("addr", "solana", {"riskScore": 5, "riskLevel": "CRITICAL RISK"})
        assert result.is_sanctioned
        assert is_high_risk(result)

    def test_direct_malicious_link_is_sanctioned(self):
        payload = {
            "riskScore": 6,
            "riskLevel": "High",
            "reasoning": "Direct interaction with mixer",
            "maliciousAddressesFound": [
                {"category": "sanctions", "name_tag": "OFAC", "distance": 0},
                {"category": "scam", "distance": 3},
            ],
        }
        result = parse_risk_response("addr", "solana", payload)
        assert result.is_sanctioned
        assert result.risk_factors == [
            "Direct interaction with mixer",
            "sanctions (OFAC) - 0 hops away",
            "scam - 3 hops away",
        ]

    def test_report(self):
        result = parse_risk_response("addr", "solana", {"riskScore": 8, "riskLevel": "High", "reasoning": "r"})
        report = format_risk_report(result)
        assert "Risk Level: SEVERE" in report
        assert "Risk Score: 80/100" in report
        assert "  - r" in report

    @pytest.mark.asyncio
    async def test_screen_request(self):
        mock = AsyncMock(return_value={"riskScore": 1, "riskLevel": "Low"})
        with patch("private_dca.providers.screening.request_json", mock):
            result = await RangeScreener("key-123", "https://range.test/v1/").screen("Addr111")

        assert result.address == "Addr111"
        args, kwargs = mock.call_args
        assert args == ("GET", "https://range.test/v1/risk/address")
        assert kwargs["params"] == {"address": "Addr111", "network": "solana"}
        assert kwargs["headers"] == {"Authorization": "Bearer key-123"}


class TestJupiter:

    @pytest.mark.asyncio
    async def test_quote_params(self, rpc_client):
        mock = AsyncMock(return_value={"outAmount": "49500000", "priceImpactPct": "0.01"})
        with patch("private_dca.providers.jupiter.request_json", mock):
            quote = await JupiterClient(rpc_client, "https://jup.test").quote("in", "out", 1_000_000, 75)

        assert quote["outAmount"] == "49500000"
        assert mock.call_args.kwargs["params"] == {
            "inputMint": "in", "outputMint": "out", "amount": "1000000", "slippageBps": "75",
        }

    @pytest.mark.asyncio
    async def test_quote_without_route(self, rpc_client):
        mock = AsyncMock(return_value={"error": "No routes found"})
        with patch("private_dca.providers.jupiter.request_json", mock):
            with pytest.raises(ProviderError, match="No routes found"):
                await JupiterClient(rpc_client).quote("in", "out", 1)

    @pytest.mark.asyncio
    async def test_build_swap(self, rpc_client):
        mock = AsyncMock(return_value={"swapTransaction": "AQID", "lastValidBlockHeight": 321})
        with patch("private_dca.providers.jupiter.request_json", mock):
            tx, last_valid = await JupiterClient(rpc_client).build_swap_transaction({"outAmount": "1"}, "User111")

        assert (tx, last_valid) == ("AQID", 321)
        payload = mock.call_args.kwargs["json_payload"]
        assert payload["userPublicKey"] == "User111"
        assert payload["wrapAndUnwrapSol"] is True

    @pytest.mark.asyncio
    async def test_build_swap_missing_tx(self, rpc_client):
        with patch("private_dca.providers.jupiter.request_json", AsyncMock(return_value={"error": "bad"})):
            with pytest.raises(ProviderError, match="Jupiter swap failed"):
                await JupiterClient(rpc_client).build_swap_transaction({}, "User111")


class TestAnonymityPool:

    @pytest.mark.asyncio
    async def test_simulated_receipts(self):
        pool = SimulatedPrivacyCash()
        owner = Keypair()
        deposit = await pool.deposit("SOL", 0.5, owner)
        withdraw = await pool.withdraw("SOL", 0.5, "Recipient1111")

        assert pool.is_simulated
        assert deposit.simulated and withdraw.simulated
        assert deposit.commitment.startswith("0x") and len(deposit.commitment) == 66
        assert withdraw.proof.startswith("zkp_")
        assert deposit.message.startswith("[SIMULATED]")

    @pytest.mark.asyncio
    async def test_unsupported_token_rejected_before_network(self, rpc_client):
        pool = PrivacyCashPool(rpc_client, "https://pool.test")
        mock = AsyncMock()
        with patch("private_dca.providers.anonymity_pool.request_json", mock):
            with pytest.raises(ProviderError, match="only supports SOL, USDC, USDT"):
                await pool.deposit("BONK", 1000, Keypair())
        mock.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_withdraw(self, rpc_client):
        pool = PrivacyCashPool(rpc_client, "https://pool.test")
        mock = AsyncMock(return_value={"tx": "wdSig", "fee_base_units": 2_500})
        with patch("private_dca.providers.anonymity_pool.request_json", mock):
            receipt = await pool.withdraw("USDC", 10, "Recipient1111")

        assert receipt.signature == "wdSig"
        assert receipt.fee == 0.0025
        assert receipt.delivered == pytest.approx(9.9975)
        assert not receipt.is_partial
        body = mock.call_args.kwargs["json_payload"]
        assert body["base_units"] == 10_000_000
        assert body["recipient"] == "Recipient1111"

    @pytest.mark.asyncio
    async def test_partial_withdraw_reports_delivered(self, rpc_client):
        pool = PrivacyCashPool(rpc_client, "https://pool.test")
        data = {"tx": "wdSig", "isPartial": True, "base_units": 6_000_000, "fee_base_units": 350_000}
        with patch("private_dca.providers.anonymity_pool.request_json", AsyncMock(return_value=data)):
            receipt = await pool.withdraw("USDC", 10, "Recipient1111")

        assert receipt.is_partial
        assert receipt.delivered == pytest.approx(5.65)
        assert receipt.amount == 10

    @pytest.mark.asyncio
    async def test_sol_withdraw_fields(self, rpc_client):
        pool = PrivacyCashPool(rpc_client, "https://pool.test")
        data = {"tx": "wdSig", "amount_in_lamports": 500_000_000, "fee_in_lamports": 3_000_000}
        with patch("private_dca.providers.anonymity_pool.request_json", AsyncMock(return_value=data)):
            receipt = await pool.withdraw("SOL", 0.5, "Recipient1111")

        assert receipt.fee == 0.003
        assert receipt.delivered == pytest.approx(0.497)

    @pytest.mark.asyncio
    async def test_withdraw_eaten_by_fee(self, rpc_client):
        pool = PrivacyCashPool(rpc_client, "https://pool.test")
        data = {"tx": "wdSig", "base_units": 1_000, "fee_base_units": 1_000}
        with patch("private_dca.providers.anonymity_pool.request_json", AsyncMock(return_value=data)):
            with pytest.raises(ProviderError, match="delivered nothing"):
                await pool.withdraw("USDC", 0.001, "Recipient1111")


class TestEncryptedTransfer:

    @pytest.mark.asyncio
    async def test_simulated_internal_hides_amount(self):
        receipt = await SimulatedShadowWire().transfer(Keypair(), "Dest1111", 1.5, "SOL", "internal")
        assert receipt.amount_hidden
        assert receipt.amount_sent is None
        assert receipt.signature.startswith("sw_tx_")

    @pytest.mark.asyncio
    async def test_simulated_external_shows_amount(self):
        receipt = await SimulatedShadowWire().transfer(Keypair(), "Dest1111", 1.5, "SOL", "external")
        assert not receipt.amount_hidden
        assert receipt.amount_sent == 1.5

    @pytest.mark.asyncio
    async def test_bad_visibility(self):
        with pytest.raises(ValidationError):
            await SimulatedShadowWire().transfer(Keypair(), "Dest1111", 1.5, "SOL", "public")

    @pytest.mark.asyncio
    async def test_live_transfer_signed(self, rpc_client):
        sender = Keypair()
        mock = AsyncMock(return_value={"success": True, "tx_signature": "zkSig", "amount_hidden": True})
        with patch("private_dca.providers.encrypted_transfer.request_json", mock):
            receipt = await ShadowWireClient(rpc_client, "https://sw.test").transfer(sender, "Dest1111", 2, "SOL")

        assert receipt.signature == "zkSig"
        assert receipt.amount_hidden
        body = mock.call_args.kwargs["json_payload"]
        assert body["sender"] == str(sender.pubkey())
        assert body["type"] == "internal"
        assert body["signature"]

    @pytest.mark.asyncio
    async def test_live_unsupported_token(self, rpc_client):
        with pytest.raises(ProviderError, match="does not support USDT"):
            await ShadowWireClient(rpc_client, "https://sw.test").deposit(Keypair(), 1, "USDT")


class TestConfidential:

    def test_simulated(self):
        provider = SimulatedArcium()
        assert provider.encrypt_amount(12.5) == "[RESCUE: 0x" + "00" * 32 + "]"
        assert provider.encryption_status()["cipher_suite"] == "RescueCipher (simulated)"

    def test_invalid_key(self):
        with pytest.raises(ConfigurationError):
            ArciumEncryption("not-hex")
        with pytest.raises(ConfigurationError):
            ArciumEncryption("abcd")

    def test_mxe_can_decrypt(self):
        """The holder of the MXE private key recovers the amount in base units."""
        mxe_key = X25519PrivateKey.generate()
        public_hex = mxe_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()

        output = ArciumEncryption(public_hex).encrypt_amount(1.5)
        assert output.startswith("[CHACHA20: 0x") and output.endswith("]")

        blob = bytes.fromhex(output[len("[CHACHA20: 0x"):-1])
        ephemeral_pub, nonce, ciphertext = blob[:32], blob[32:44], blob[44:]
        shared = mxe_key.exchange(X25519PublicKey.from_public_bytes(ephemeral_pub))
        key = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=KDF_INFO).derive(shared)

        plaintext = ChaCha20Poly1305(key).decrypt(nonce, ciphertext, None)
        assert struct.unpack("<Q", plaintext)[0] == 1_500_000_000


class TestSelectProviders:

    @pytest.mark.asyncio
    async def test_nothing_configured(self, rpc_client):
        providers = await select_providers(DCAConfig(), rpc_client)
        assert providers.summary() == {
            "anonymity_pool": "simulated",
            "encrypted_transfer": "simulated",
            "confidential": "simulated",
        }
        assert providers.screener(None) is None
        assert isinstance(providers.screener("key"), RangeScreener)

    @pytest.mark.asyncio
    async def test_unreachable_pool_falls_back(self, rpc_client):
        config = DCAConfig(privacy_cash_url="https://pool.test")
        failing = AsyncMock(side_effect=ProviderError("Request failed after 1 attempts: timeout", provider="privacy_cash"))
        with patch("private_dca.providers.anonymity_pool.request_json", failing):
            providers = await select_providers(config, rpc_client)

        assert providers.anonymity_pool.is_simulated
        assert "unavailable" in providers.anonymity_pool.reason
        failing.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_live_when_healthy(self, rpc_client):
        mxe_hex = X25519PrivateKey.generate().public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()
        config = DCAConfig(
            privacy_cash_url="https://pool.test",
            shadowwire_url="https://sw.test",
            arcium_mxe_public_key=mxe_hex,
        )
        healthy = AsyncMock(return_value={"status": "ok"})
        with patch("private_dca.providers.anonymity_pool.request_json", healthy), \
                patch("private_dca.providers.encrypted_transfer.request_json", healthy):
            providers = await select_providers(config, rpc_client)

        assert isinstance(providers.anonymity_pool, PrivacyCashPool)
        assert isinstance(providers.encrypted_transfer, ShadowWireClient)
        assert isinstance(providers.confidential, ArciumEncryption)

    @pytest.mark.asyncio
    async def test_bad_mxe_key_falls_back(self, rpc_client):
        providers = await select_providers(DCAConfig(arcium_mxe_public_key="zz"), rpc_client)
        assert providers.confidential.is_simulated
        assert "Invalid Arcium MXE public key" in providers.confidential.reason
