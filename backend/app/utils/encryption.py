"""Field-level encryption for monetary amounts stored at rest

Amounts are stored as ``<iv hex>:<ciphertext hex>`` where the ciphertext is
AES-256-CBC with PKCS7 padding over the decimal string form of the amount.
A fresh random IV is generated for every write.

Note: CBC gives confidentiality only. Tampering usually breaks the padding or
the numeric parse, but nothing authenticates the ciphertext.
"""
import base64
import hashlib
import math
import os
from decimal import Decimal
from functools import lru_cache
from numbers import Real
from typing import Union

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from app.core.config import settings

IV_LENGTH = 16
KEY_LENGTH = 32
BLOCK_SIZE_BITS = algorithms.AES.block_size
SEPARATOR = ":"

Amount = Union[int, float, Decimal]


class MalformedCiphertext(ValueError):
    """Stored value is not in ``iv:ciphertext`` hex form"""


class DecryptionFailure(ValueError):
    """Ciphertext does not decrypt to an amount under this key and IV"""


def derive_key(secret: str) -> bytes:
    """Derive the 32-byte AES key from the operator secret.

    The key is the first 32 characters of the base64 SHA-256 digest, which is
    the derivation amounts already at rest were written with.
    """
    if not secret:
        raise ValueError(
            "ENCRYPTION_KEY environment variable is required to encrypt transaction amounts"
        )
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return base64.b64encode(digest)[:KEY_LENGTH]


def _amount_to_text(amount: Amount) -> str:
    if isinstance(amount, bool) or not isinstance(amount, (Real, Decimal)):
        raise TypeError(f"Amount must be a number, got {type(amount).__name__}")
    if isinstance(amount, Decimal):
        if not amount.is_finite():
            raise ValueError("Amount must be finite")
        return str(amount)
    if not math.isfinite(amount):
        raise ValueError("Amount must be finite")
    if isinstance(amount, float) and amount.is_integer():
        # Match the stored form of whole numbers ("12", not "12.0")
        return str(int(amount))
    return str(amount)


class AmountCipher:
    """Encrypts and decrypts a single monetary amount.

    Holds only the derived key; every call is independent, so one instance is
    shared across requests.
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Amount cipher key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._key = key

    @classmethod
    def from_secret(cls, secret: str) -> "AmountCipher":
        return cls(derive_key(secret))

    def __repr__(self):
        return "AmountCipher(key=<redacted>)"

    def encode(self, amount: Amount) -> str:
        """Encrypt an amount into ``iv_hex:ciphertext_hex``"""
        plaintext = _amount_to_text(amount).encode("utf-8")

        iv = os.urandom(IV_LENGTH)
        padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        return iv.hex() + SEPARATOR + ciphertext.hex()

    def decode(self, encoded: str) -> float:
        """Decrypt an ``iv_hex:ciphertext_hex`` value back into an amount

        Raises:
            MalformedCiphertext: If the value is not two hex segments of valid length
            DecryptionFailure: If the ciphertext does not decrypt to a number
        """
        iv, ciphertext = self._split(encoded)

        decryptor = Cipher(algorithms.AES(self._key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        try:
            plaintext = unpadder.update(padded) + unpadder.finalize()
        except ValueError:
            raise DecryptionFailure("Invalid padding after decryption")

        try:
            value = float(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise DecryptionFailure("Decrypted value is not a number")

        if not math.isfinite(value):
            raise DecryptionFailure("Decrypted value is not a finite number")
        return value

    @staticmethod
    def _split(encoded: str):
        if not isinstance(encoded, str):
            raise MalformedCiphertext(f"Encrypted amount must be a string, got {type(encoded).__name__}")

        parts = encoded.split(SEPARATOR)
        if len(parts) != 2:
            raise MalformedCiphertext("Encrypted amount must contain exactly one separator")
        iv_hex, ciphertext_hex = parts

        if len(iv_hex) != IV_LENGTH * 2:
            raise MalformedCiphertext(f"IV must be {IV_LENGTH * 2} hex characters")
        block_hex = BLOCK_SIZE_BITS // 8 * 2
        if not ciphertext_hex or len(ciphertext_hex) % block_hex:
            raise MalformedCiphertext("Ciphertext must be a non-empty multiple of the block size")

        try:
            iv, ciphertext = bytes.fromhex(iv_hex), bytes.fromhex(ciphertext_hex)
        except ValueError:
            raise MalformedCiphertext("Encrypted amount is not valid hex")

        # fromhex tolerates whitespace, so re-check the decoded lengths
        if len(iv) != IV_LENGTH or not ciphertext or len(ciphertext) % (BLOCK_SIZE_BITS // 8):
            raise MalformedCiphertext("Encrypted amount is not valid hex")
        return iv, ciphertext


@lru_cache(maxsize=1)
def get_amount_cipher() -> AmountCipher:
    """FastAPI dependency: the process-wide cipher built from ENCRYPTION_KEY"""
    return AmountCipher.from_secret(settings.ENCRYPTION_KEY)
