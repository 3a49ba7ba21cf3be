"""PfP Vault — Master password lifecycle and encrypted credential storage.

Security Note (Threat Model):
    A passive reader of the stored key-value pairs cannot recover secrets or
    site names without the master password. Derived keys and the master
    password live in process memory while the vault is unlocked; a memory
    dump of the process exposes them. Defending against a persistence
    medium that executes arbitrary code is out of scope.
"""

from .backends import FileBackend, MemoryBackend, StorageBackend
from .config import SessionConfig
from .crypto import Crypto, CryptoCapability, HmacKey
from .exceptions import (
    DecryptionError,
    Declined,
    InvalidOperation,
    InvalidPrefix,
    MasterPasswordRequired,
    Migrating,
    VaultError,
)
from .key_rotation import rotate_master_password
from .master_password import MasterPasswordManager
from .passwords import PasswordStore, STORAGE_PREFIX
from .prefs import Preferences
from .session import LockState, UnlockSession
from .storage import ACTIVE_KEY, CURRENT_FORMAT, EncryptedStore

__all__ = [
    "ACTIVE_KEY",
    "CURRENT_FORMAT",
    "STORAGE_PREFIX",
    "Crypto",
    "CryptoCapability",
    "DecryptionError",
    "Declined",
    "EncryptedStore",
    "FileBackend",
    "HmacKey",
    "InvalidOperation",
    "InvalidPrefix",
    "LockState",
    "MasterPasswordManager",
    "MasterPasswordRequired",
    "MemoryBackend",
    "Migrating",
    "PasswordStore",
    "Preferences",
    "SessionConfig",
    "StorageBackend",
    "UnlockSession",
    "VaultError",
    "rotate_master_password",
]
