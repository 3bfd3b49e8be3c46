"""
Reference Generation Module

Generates account numbers and the reference strings that identify ledger rows.
References combine a millisecond timestamp with a random base36 component drawn
from the secrets module; the ledger table also enforces uniqueness.
"""

import secrets
import string
import time

_BASE36 = string.digits + string.ascii_lowercase

ACCOUNT_NUMBER_LENGTH = 10


def _random_base36(length: int) -> str:
    return ''.join(secrets.choice(_BASE36) for _ in range(length))


def generate_account_number() -> str:
    """Generate a random 10-digit account number"""
    return ''.join(secrets.choice(string.digits) for _ in range(ACCOUNT_NUMBER_LENGTH))


def generate_transaction_reference(prefix: str = "TRF") -> str:
    """
    Generate the unique reference of a single ledger row

    Format: ``<prefix>|<epoch milliseconds>|<9 random base36 chars>``
    """
    return f"{prefix}|{int(time.time() * 1000)}|{_random_base36(9)}"


def generate_transfer_reference(prefix: str = "Trx") -> str:
    """
    Generate the reference shared by both legs of a transfer

    Format: ``<prefix>|<epoch milliseconds>|<16 random base36 chars>``
    """
    return f"{prefix}|{int(time.time() * 1000)}|{_random_base36(16)}"
