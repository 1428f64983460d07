"""
Signing key vault.

Wallet secrets are stored as ``iv:ciphertext:authTag`` (hex) encrypted with
AES-256-GCM. The key is PBKDF2-SHA256 over 100k iterations, bound to the
installation's service salt and, for session wallets, the session id.
Decrypted material lives in a mutable buffer that is zeroed as soon as the
signing block exits.
"""

from __future__ import annotations

import binascii
import json
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from solders.keypair import Keypair

from launchpad.auth.solana_signin import base58_decode

from .errors import DecryptFailureError

PBKDF2_ITERATIONS = 100_000
KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16


def _wipe(buffer: bytearray) -> None:
    for index in range(len(buffer)):
        buffer[index] = 0


class KeyVault:
    """
    Usage:
        vault = KeyVault(service_salt)
        with vault.signing_keypair(blob, session_id=None) as keypair:
            tx = VersionedTransaction(message, [keypair])
    """

    def __init__(self, service_salt: str, iterations: int = PBKDF2_ITERATIONS):
        if not service_salt:
            raise DecryptFailureError("Service salt is not configured")
        self._service_salt = service_salt
        self._iterations = iterations

    def _derive_key(self, session_id: Optional[str]) -> bytes:
        if session_id:
            password = f"{session_id}{self._service_salt}".encode("utf-8")
            salt = self._service_salt.encode("utf-8")
        else:
            try:
                password = salt = bytes.fromhex(self._service_salt)
            except ValueError as exc:
                raise DecryptFailureError("Service salt must be hex encoded") from exc

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=self._iterations,
        )
        return kdf.derive(password)

    def encrypt(self, secret: bytes, session_id: Optional[str] = None, iv: Optional[bytes] = None) -> str:
        """Encrypt ``secret`` into the stored ``iv:ciphertext:tag`` form."""
        iv = iv or os.urandom(IV_LENGTH)
        sealed = AESGCM(self._derive_key(session_id)).encrypt(iv, bytes(secret), None)
        ciphertext, tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]
        return f"{iv.hex()}:{ciphertext.hex()}:{tag.hex()}"

    def decrypt(self, blob: str, session_id: Optional[str] = None) -> bytearray:
        """Return the plaintext in a mutable buffer the caller must wipe."""
        parts = (blob or "").split(":")
        if len(parts) != 3:
            raise DecryptFailureError("Encrypted key must have the form iv:ciphertext:tag")

        try:
            iv, ciphertext, tag = (bytes.fromhex(part) for part in parts)
        except ValueError as exc:
            raise DecryptFailureError("Encrypted key is not hex encoded") from exc
        if not iv or len(tag) != TAG_LENGTH:
            raise DecryptFailureError("Encrypted key has an invalid iv or tag")

        try:
            plaintext = AESGCM(self._derive_key(session_id)).decrypt(iv, ciphertext + tag, None)
        except InvalidTag as exc:
            raise DecryptFailureError("Encrypted key failed authentication") from exc
        return bytearray(plaintext)

    @contextmanager
    def signing_keypair(self, blob: str, session_id: Optional[str] = None) -> Iterator[Keypair]:
        buffer = self.decrypt(blob, session_id)
        secret = bytearray()
        try:
            secret = _secret_key_bytes(buffer)
            try:
                if len(secret) == 64:
                    keypair = Keypair.from_bytes(bytes(secret))
                else:
                    keypair = Keypair.from_seed(bytes(secret))
            except ValueError as exc:
                raise DecryptFailureError("Decrypted key is not a valid ed25519 key") from exc
            yield keypair
        finally:
            _wipe(secret)
            _wipe(buffer)


def _secret_key_bytes(plaintext: bytearray) -> bytearray:
    """Normalize raw bytes, a JSON byte array or a base58 string to key bytes."""
    if len(plaintext) in (32, 64):
        try:
            plaintext.decode("ascii")
        except UnicodeDecodeError:
            return bytearray(plaintext)

    try:
        text = plaintext.decode("utf-8").strip()
    except UnicodeDecodeError as exc:
        raise DecryptFailureError("Decrypted key has an unexpected length") from exc

    if text.startswith("["):
        try:
            values = json.loads(text)
            decoded = bytearray(values)
        except (ValueError, TypeError) as exc:
            raise DecryptFailureError("Decrypted key is not a valid byte array") from exc
    elif len(text) in (64, 128) and all(ch in "0123456789abcdefABCDEF" for ch in text):
        decoded = bytearray(binascii.unhexlify(text))
    else:
        try:
            decoded = bytearray(base58_decode(text))
        except ValueError as exc:
            raise DecryptFailureError("Decrypted key is not base58, hex or raw bytes") from exc

    if len(decoded) not in (32, 64):
        raise DecryptFailureError(f"Decrypted key has length {len(decoded)}; expected 32 or 64")
    return decoded
