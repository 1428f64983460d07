"""Jito tip instructions."""

import random
from typing import Optional

from solders.instruction import Instruction
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer

JITO_TIP_ACCOUNTS = (
    "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
    "HFqU5x63VTqvQss8hp11i4wVV8bD44PvwucfZ2bU7gRe",
    "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
    "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
    "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
    "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
    "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
    "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
)

MIN_TIP_LAMPORTS = 1_000


def random_tip_account(rng: Optional[random.Random] = None) -> Pubkey:
    return Pubkey.from_string((rng or random).choice(JITO_TIP_ACCOUNTS))


def build_tip_instruction(
    payer: Pubkey,
    lamports: int,
    tip_account: Optional[Pubkey] = None,
    rng: Optional[random.Random] = None,
) -> Instruction:
    """Transfer ``lamports`` (at least the relay minimum) to a tip account.

    The tip belongs in the last transaction of a bundle so it is only paid
    when everything before it executed.
    """
    return transfer(
        TransferParams(
            from_pubkey=payer,
            to_pubkey=tip_account or random_tip_account(rng),
            lamports=max(int(lamports), MIN_TIP_LAMPORTS),
        )
    )
