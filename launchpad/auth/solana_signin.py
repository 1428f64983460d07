"""
Solana wallet claim-message parsing and signature verification.
"""

from __future__ import annotations

import base64
import binascii
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from nacl.exceptions import BadSignatureError
from nacl.signing import VerifyKey


_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {char: index for index, char in enumerate(_BASE58_ALPHABET)}

_HEADER_RE = re.compile(r"^Claim creator rewards for token (?P<token_id>\S+)$", re.IGNORECASE)
_FIELD_RE = re.compile(r"^(?P<key>[A-Za-z][A-Za-z0-9 ]+):\s*(?P<value>.*)$")

DEFAULT_MAX_MESSAGE_AGE = timedelta(minutes=5)


@dataclass
class ClaimMessage:
    token_id: str
    wallet: str
    nonce: str
    issued_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "token_id": self.token_id,
            "wallet": self.wallet,
            "nonce": self.nonce,
            "issued_at": self.issued_at,
        }


def is_valid_solana_address(address: str) -> bool:
    if not address:
        return False
    length = len(address)
    if length < 32 or length > 44:
        return False
    if not all(ch in _BASE58_INDEX for ch in address):
        return False
    return len(base58_decode(address)) == 32


def build_claim_message(token_id: str, wallet: str, nonce: str, issued_at: datetime) -> str:
    """The exact text a wallet signs to authorize a manual harvest claim."""
    return (
        f"Claim creator rewards for token {token_id}\n"
        "\n"
        f"Wallet: {wallet}\n"
        f"Nonce: {nonce}\n"
        f"Issued At: {issued_at.astimezone(timezone.utc).isoformat().replace('+00:00', 'Z')}"
    )


def parse_claim_message(message: str) -> ClaimMessage:
    """
    Parse a claim authorization message.

    Expected format:
        Claim creator rewards for token <token_id>

        Wallet: <address>
        Nonce: <nonce>
        Issued At: <timestamp>
    """
    lines = [line.strip() for line in message.splitlines()]
    header_index = _next_non_empty_index(lines, 0)
    if header_index is None:
        raise ValueError("Empty claim message")

    match = _HEADER_RE.match(lines[header_index])
    if not match:
        raise ValueError("Invalid claim message header")

    fields: Dict[str, str] = {}
    for line in lines[header_index + 1:]:
        field_match = _FIELD_RE.match(line)
        if field_match:
            fields[_normalize_key(field_match.group("key"))] = field_match.group("value").strip()

    wallet = fields.get("wallet", "")
    if not is_valid_solana_address(wallet):
        raise ValueError("Invalid Solana address in message")

    nonce = fields.get("nonce")
    if not nonce:
        raise ValueError("Claim message missing nonce")

    return ClaimMessage(
        token_id=match.group("token_id"),
        wallet=wallet,
        nonce=nonce,
        issued_at=fields.get("issued_at"),
    )


def check_message_freshness(
    parsed: ClaimMessage,
    now: Optional[datetime] = None,
    max_age: timedelta = DEFAULT_MAX_MESSAGE_AGE,
) -> None:
    """Raise ValueError when the message has no timestamp or is too old to replay."""
    if not parsed.issued_at:
        raise ValueError("Claim message missing Issued At")
    try:
        issued = datetime.fromisoformat(parsed.issued_at.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError("Invalid Issued At timestamp") from exc
    if issued.tzinfo is None:
        issued = issued.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    if issued - now > timedelta(seconds=30):
        raise ValueError("Claim message is dated in the future")
    if now - issued > max_age:
        raise ValueError("Claim message has expired")


def verify_solana_signature(
    message: str,
    signature: str,
    address: str,
) -> None:
    """
    Verify a Solana signMessage signature.
    Raises ValueError if verification fails.
    """
    public_key = base58_decode(address)
    if len(public_key) != 32:
        raise ValueError("Invalid Solana public key length")

    signature_bytes = _decode_signature(signature)
    verify_key = VerifyKey(public_key)
    try:
        verify_key.verify(message.encode("utf-8"), signature_bytes)
    except BadSignatureError as exc:
        raise ValueError("Invalid Solana signature") from exc


def base58_decode(value: str) -> bytes:
    if not value:
        return b""
    num = 0
    for char in value:
        if char not in _BASE58_INDEX:
            raise ValueError("Invalid base58 character")
        num = num * 58 + _BASE58_INDEX[char]
    combined = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    pad = len(value) - len(value.lstrip("1"))
    return b"\x00" * pad + combined


def base58_encode(data: bytes) -> str:
    if not data:
        return ""
    num = int.from_bytes(data, "big")
    encoded = ""
    while num > 0:
        num, rem = divmod(num, 58)
        encoded = _BASE58_ALPHABET[rem] + encoded
    pad = 0
    for byte in data:
        if byte == 0:
            pad += 1
        else:
            break
    return "1" * pad + encoded


def _decode_signature(signature: str) -> bytes:
    candidate = signature.strip()
    if not candidate:
        raise ValueError("Signature is empty")

    if _looks_base58(candidate):
        try:
            decoded = base58_decode(candidate)
        except ValueError:
            decoded = b""
        if len(decoded) == 64:
            return decoded

    try:
        return base64.b64decode(candidate, validate=True)
    except (ValueError, binascii.Error):
        try:
            padded = candidate + "=" * (-len(candidate) % 4)
            return base64.urlsafe_b64decode(padded)
        except (ValueError, binascii.Error) as exc:
            raise ValueError("Unsupported signature encoding") from exc


def _looks_base58(value: str) -> bool:
    return all(char in _BASE58_INDEX for char in value)


def _normalize_key(key: str) -> str:
    return key.strip().lower().replace(" ", "_")


def _next_non_empty_index(lines: List[str], start: int) -> Optional[int]:
    for idx in range(start, len(lines)):
        if lines[idx]:
            return idx
    return None
