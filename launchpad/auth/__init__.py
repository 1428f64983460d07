from .solana_signin import (
    ClaimMessage,
    base58_decode,
    base58_encode,
    build_claim_message,
    check_message_freshness,
    is_valid_solana_address,
    parse_claim_message,
    verify_solana_signature,
)

__all__ = [
    "ClaimMessage",
    "base58_decode",
    "base58_encode",
    "build_claim_message",
    "check_message_freshness",
    "is_valid_solana_address",
    "parse_claim_message",
    "verify_solana_signature",
]
