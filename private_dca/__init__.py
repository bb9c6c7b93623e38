"""
Private DCA - recurring Solana swaps with optional privacy layers.

Ephemeral wallets, an anonymity pool, encrypted-amount transfers,
confidential amount encryption and compliance screening can each be switched
on per schedule. Stages whose provider is unavailable fall back to a
simulation and say so in the swap result.
"""

from private_dca.config import DCAConfig, load_config
from private_dca.dca import Execution, Schedule, ScheduleEngine, ScheduleFrequency
from private_dca.ephemeral import EphemeralWallet, EphemeralWalletManager
from private_dca.sdk import PrivacyOptions, PrivateDCA, ScheduleOptions
from private_dca.swap_pipeline import ProgressEvent, SwapPipeline, SwapRequest, SwapResult

__version__ = "0.1.0"

__all__ = [
    "DCAConfig", "load_config",
    "Execution", "Schedule", "ScheduleEngine", "ScheduleFrequency",
    "EphemeralWallet", "EphemeralWalletManager",
    "PrivacyOptions", "PrivateDCA", "ScheduleOptions",
    "ProgressEvent", "SwapPipeline", "SwapRequest", "SwapResult",
]
