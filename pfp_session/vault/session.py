"""Unlock state of the master password manager."""
from dataclasses import dataclass, field
from enum import Enum

from .crypto import HmacKey


class LockState(str, Enum):
    UNSET = "unset"
    SET = "set"
    KNOWN = "known"
    MIGRATING = "migrating"


@dataclass(frozen=True)
class UnlockSession:
    """Key material of an unlocked master password.

    Either the whole session exists or none of it does, so a key without a
    password (or the other way round) cannot be represented.
    """

    password: str = field(repr=False)
    key: bytes = field(repr=False)
    hmac_secret: HmacKey = field(repr=False)
    prefix: str
