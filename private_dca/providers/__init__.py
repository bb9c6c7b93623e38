"""
External provider adapters.

Privacy providers come in a live and a simulated flavor. The choice is made
once by select_providers() from configuration and a single health check; the
swap pipeline never re-probes per call and can inspect ``is_simulated`` to
report honestly what actually ran.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from solana.rpc.async_api import AsyncClient

from private_dca.config import DCAConfig
from private_dca.errors import ConfigurationError, ProviderError
from private_dca.providers.anonymity_pool import AnonymityPool, PrivacyCashPool, SimulatedPrivacyCash
from private_dca.providers.confidential import ArciumEncryption, ConfidentialEncryption, SimulatedArcium
from private_dca.providers.encrypted_transfer import EncryptedTransfer, ShadowWireClient, SimulatedShadowWire
from private_dca.providers.jupiter import JupiterClient
from private_dca.providers.screening import RANGE_API_URL, RangeScreener

logger = logging.getLogger(__name__)


@dataclass
class ProviderSet:
    jupiter: JupiterClient
    anonymity_pool: AnonymityPool
    encrypted_transfer: EncryptedTransfer
    confidential: ConfidentialEncryption
    range_base_url: str = RANGE_API_URL

    def screener(self, api_key: Optional[str]) -> Optional[RangeScreener]:
        if not api_key:
            return None
        return RangeScreener(api_key, self.range_base_url)

    def summary(self) -> dict:
        return {
            "anonymity_pool": "simulated" if self.anonymity_pool.is_simulated else "live",
            "encrypted_transfer": "simulated" if self.encrypted_transfer.is_simulated else "live",
            "confidential": "simulated" if self.confidential.is_simulated else "live",
        }


async def _select_pool(config: DCAConfig, client: AsyncClient) -> AnonymityPool:
    if not config.privacy_cash_url:
        return SimulatedPrivacyCash()
    pool = PrivacyCashPool(client, config.privacy_cash_url)
    try:
        await pool.check_availability()
    except ProviderError as e:
        logger.warning(f"Privacy Cash unavailable, using simulation: {e.message}")
        return SimulatedPrivacyCash(f"Privacy Cash unavailable: {e.message}")
    return pool


async def _select_shadowwire(config: DCAConfig, client: AsyncClient) -> EncryptedTransfer:
    if not config.shadowwire_url:
        return SimulatedShadowWire()
    shadowwire = ShadowWireClient(client, config.shadowwire_url)
    try:
        await shadowwire.check_availability()
    except ProviderError as e:
        logger.warning(f"ShadowWire unavailable, using simulation: {e.message}")
        return SimulatedShadowWire(f"ShadowWire unavailable: {e.message}")
    return shadowwire


def _select_confidential(config: DCAConfig) -> ConfidentialEncryption:
    if not config.arcium_mxe_public_key:
        return SimulatedArcium()
    try:
        return ArciumEncryption(config.arcium_mxe_public_key)
    except ConfigurationError as e:
        logger.warning(f"Arcium unavailable, using simulation: {e.message}")
        return SimulatedArcium(e.message)


async def select_providers(config: DCAConfig, client: AsyncClient) -> ProviderSet:
    """Pick live or simulated implementations once, at startup."""
    providers = ProviderSet(
        jupiter=JupiterClient(client, config.jupiter_api_url),
        anonymity_pool=await _select_pool(config, client),
        encrypted_transfer=await _select_shadowwire(config, client),
        confidential=_select_confidential(config),
    )
    logger.info(f"Providers selected: {providers.summary()}")
    return providers


__all__ = [
    "ProviderSet", "select_providers",
    "AnonymityPool", "PrivacyCashPool", "SimulatedPrivacyCash",
    "EncryptedTransfer", "ShadowWireClient", "SimulatedShadowWire",
    "ConfidentialEncryption", "ArciumEncryption", "SimulatedArcium",
    "JupiterClient", "RangeScreener",
]
