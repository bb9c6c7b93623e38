"""Confidential amount encryption against an Arcium MXE public key."""

import logging
import os
import struct
from abc import ABC, abstractmethod
from typing import Dict

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from private_dca.errors import ConfigurationError
from private_dca.tokens import to_raw_amount

logger = logging.getLogger(__name__)

MXE_ENDPOINT = "https://mxe.arcium.network"
KDF_INFO = b"private-dca/confidential-amount"


class ConfidentialEncryption(ABC):
    name = "Arcium"
    is_simulated = False

    @abstractmethod
    def encrypt_amount(self, amount: float) -> str:
        ...

    def encryption_status(self) -> Dict[str, str]:
        return {"cipher_suite": self.cipher_suite, "mxe_endpoint": MXE_ENDPOINT}


class ArciumEncryption(ConfidentialEncryption):
    """
    Encrypts amounts to the MXE cluster key.

    An ephemeral x25519 key agrees a shared secret with the MXE, HKDF turns it
    into a ChaCha20-Poly1305 key, and the amount is sealed as a little-endian
    u64 of base units (9 decimals). The output carries the ephemeral public
    key and nonce so the MXE can decrypt it.
    """

    cipher_suite = "X25519-ChaCha20Poly1305"

    def __init__(self, mxe_public_key_hex: str):
        try:
            self.mxe_public_key = X25519PublicKey.from_public_bytes(bytes.fromhex(mxe_public_key_hex))
        except ValueError as e:
            raise ConfigurationError(f"Invalid Arcium MXE public key: {e}") from e

    def encrypt_amount(self, amount: float) -> str:
        private_key = X25519PrivateKey.generate()
        shared = private_key.exchange(self.mxe_public_key)
        key = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=KDF_INFO).derive(shared)

        nonce = os.urandom(12)
        plaintext = struct.pack("<Q", to_raw_amount(amount, 9))
        ciphertext = ChaCha20Poly1305(key).encrypt(nonce, plaintext, None)

        public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return f"[CHACHA20: 0x{(public + nonce + ciphertext).hex()}]"


class SimulatedArcium(ConfidentialEncryption):
    """Returns a fixed all-zero ciphertext; nothing is encrypted."""

    is_simulated = True
    cipher_suite = "RescueCipher (simulated)"

    def __init__(self, reason: str = "Arcium MXE public key not configured"):
        self.reason = reason

    def encrypt_amount(self, amount: float) -> str:
        return f"[RESCUE: 0x{bytes(32).hex()}]"
