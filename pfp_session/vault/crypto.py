"""
Vault Crypto Core — Key derivation, encryption/decryption, digests and serialization.

Implements the crypto capability consumed by the storage and master password layers:
- Key derivation: scrypt(master_password, salt) → 32-byte AES key
- Encryption: AES-GCM → "base64(nonce)_base64(payload+tag)"
- Storage key digests: HMAC-SHA256(hmac_secret, name) → base64
- Legacy verification: PBKDF2-SHA1 password derivation (migration only)

Security Note:
    Never log plaintext, ciphertext, salts or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import asyncio
import logging
from typing import Any, Optional, Protocol

import orjson
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import SessionConfig

logger = logging.getLogger("pfp.vault")

NONCE_SIZE = 12  # 96-bit nonce
KEY_LENGTH = 32  # AES-256
CIPHERTEXT_SEPARATOR = "_"

LEGACY_ITERATIONS = 4096

LOWERCASE = "abcdefghjkmnpqrstuvwxyz"
UPPERCASE = "ABCDEFGHJKMNPQRSTUVWXYZ"
NUMBER = "23456789"
SYMBOL = "!#$%&()*+,-./:;<=>?@[]^_{|}~"

_BYTES_WRAPPER_KEY = "__vault_bytes_b64__"


class HmacKey:
    """Opaque handle for an imported HMAC secret."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes):
        self._raw = bytes(raw)

    @property
    def raw(self) -> bytes:
        return self._raw

    def __repr__(self) -> str:
        return "<HmacKey>"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, HmacKey):
            return NotImplemented
        return self._raw == other._raw

    def __hash__(self) -> int:
        return hash(self._raw)


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    password: str,
    salt: bytes,
    n: int = 32768,
    r: int = 8,
    p: int = 1,
) -> bytes:
    """Derive a 32-byte encryption key using scrypt.

    Args:
        password: Master password.
        salt: Per-installation random salt.
        n, r, p: scrypt cost parameters.

    Returns:
        32-byte derived key.
    """
    kdf = Scrypt(salt=salt, length=KEY_LENGTH, n=n, r=r, p=p)
    return kdf.derive(password.encode("utf-8"))


def derive_password_legacy(params: dict) -> str:
    """Derive a password the way the legacy storage format did.

    Only used to verify the master password hash of legacy data before
    migrating it.

    Args:
        params: Mapping with ``master_password``, ``domain``, ``name``,
            ``length`` and the ``lower``/``upper``/``number``/``symbol`` flags.

    Returns:
        Derived password string of the requested length.
    """
    charset = ""
    if params.get("lower", True):
        charset += LOWERCASE
    if params.get("upper", True):
        charset += UPPERCASE
    if params.get("number", True):
        charset += NUMBER
    if params.get("symbol", True):
        charset += SYMBOL
    if not charset:
        raise ValueError("At least one character class has to be enabled")

    salt = f"{params.get('domain', '')}\0{params.get('name', '')}".encode("utf-8")
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA1(),
        length=params["length"],
        salt=salt,
        iterations=LEGACY_ITERATIONS,
    )
    raw = kdf.derive(params["master_password"].encode("utf-8"))
    return "".join(charset[byte % len(charset)] for byte in raw)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt_data(key: bytes, plaintext: bytes) -> str:
    """Encrypt plaintext with AES-GCM.

    Format: ``base64(nonce 12B) + "_" + base64(payload + GCM tag 16B)``

    Args:
        key: 32-byte derived key.
        plaintext: Data to encrypt.

    Returns:
        Ciphertext string.
    """
    nonce = os.urandom(NONCE_SIZE)
    ct = AESGCM(key).encrypt(nonce, plaintext, None)
    return (
        base64.b64encode(nonce).decode("ascii")
        + CIPHERTEXT_SEPARATOR
        + base64.b64encode(ct).decode("ascii")
    )


def decrypt_data(key: bytes, ciphertext: str) -> bytes:
    """Decrypt a ciphertext string produced by ``encrypt_data``.

    Raises:
        ValueError: If the ciphertext is malformed.
        cryptography.exceptions.InvalidTag: If the data was tampered with or
            encrypted under another key.
    """
    if not isinstance(ciphertext, str) or CIPHERTEXT_SEPARATOR not in ciphertext:
        raise ValueError("Malformed ciphertext")
    nonce_b64, ct_b64 = ciphertext.split(CIPHERTEXT_SEPARATOR, 1)
    nonce = base64.b64decode(nonce_b64, validate=True)
    ct = base64.b64decode(ct_b64, validate=True)
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"Invalid nonce size: {len(nonce)} bytes")
    return AESGCM(key).decrypt(nonce, ct, None)


# ---------------------------------------------------------------------------
# Digests
# ---------------------------------------------------------------------------

def import_hmac_secret(raw: bytes) -> HmacKey:
    """Wrap raw secret bytes into an HMAC key handle."""
    if not raw:
        raise ValueError("HMAC secret cannot be empty")
    return HmacKey(raw)


def get_digest(hmac_key: HmacKey, data: str) -> str:
    """HMAC-SHA256 of ``data``, base64-encoded."""
    h = hmac.HMAC(hmac_key.raw, hashes.SHA256())
    h.update(data.encode("utf-8"))
    return base64.b64encode(h.finalize()).decode("ascii")


def get_simple_digest(data: str) -> str:
    """Unkeyed SHA-256 of ``data``, hex-encoded (legacy storage keys)."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(data.encode("utf-8"))
    return digest.finalize().hex()


def generate_random(length: int) -> bytes:
    """Return ``length`` cryptographically secure random bytes."""
    return os.urandom(length)


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def to_jsonable(value: Any) -> Any:
    """Wrap a top-level bytes value as {"__vault_bytes_b64__": "<base64>"}."""
    if isinstance(value, (bytes, bytearray)):
        return {_BYTES_WRAPPER_KEY: base64.b64encode(bytes(value)).decode("ascii")}
    return value


def from_jsonable(parsed: Any) -> Any:
    """Reverse ``to_jsonable``."""
    if isinstance(parsed, dict) and _BYTES_WRAPPER_KEY in parsed and len(parsed) == 1:
        return base64.b64decode(parsed[_BYTES_WRAPPER_KEY])
    return parsed


def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to bytes for encryption.

    Supports: str, int, float, dict, list, bytes, bool, None.
    bytes values are wrapped for safe JSON round-trip.

    Args:
        value: Python value to serialize.

    Returns:
        orjson-encoded bytes.
    """
    return orjson.dumps(to_jsonable(value))


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes back to a Python value.

    Args:
        data: orjson-encoded bytes from serialize_value.

    Returns:
        Original Python value.
    """
    return from_jsonable(orjson.loads(data))


# ---------------------------------------------------------------------------
# Capability interface
# ---------------------------------------------------------------------------

class CryptoCapability(Protocol):
    """Asynchronous crypto operations consumed by the vault."""

    async def derive_key(self, password: str, salt: bytes) -> bytes: ...

    async def encrypt_data(self, key: bytes, plaintext: bytes) -> str: ...

    async def decrypt_data(self, key: bytes, ciphertext: str) -> bytes: ...

    async def get_digest(self, hmac_key: HmacKey, data: str) -> str: ...

    async def get_simple_digest(self, data: str) -> str: ...

    async def generate_random(self, length: int) -> bytes: ...

    async def import_hmac_secret(self, raw: bytes) -> HmacKey: ...

    async def derive_password_legacy(self, params: dict) -> str: ...


class Crypto:
    """Default crypto capability built on ``cryptography``.

    CPU-bound derivations run in a worker thread so the event loop keeps
    serving other coroutines.
    """

    def __init__(self, config: Optional[SessionConfig] = None):
        self._config = config or SessionConfig()

    async def derive_key(self, password: str, salt: bytes) -> bytes:
        cfg = self._config
        return await asyncio.to_thread(
            derive_key, password, salt, cfg.scrypt_n, cfg.scrypt_r, cfg.scrypt_p,
        )

    async def encrypt_data(self, key: bytes, plaintext: bytes) -> str:
        return encrypt_data(key, plaintext)

    async def decrypt_data(self, key: bytes, ciphertext: str) -> bytes:
        return decrypt_data(key, ciphertext)

    async def get_digest(self, hmac_key: HmacKey, data: str) -> str:
        return get_digest(hmac_key, data)

    async def get_simple_digest(self, data: str) -> str:
        return get_simple_digest(data)

    async def generate_random(self, length: int) -> bytes:
        return generate_random(length)

    async def import_hmac_secret(self, raw: bytes) -> HmacKey:
        return import_hmac_secret(raw)

    async def derive_password_legacy(self, params: dict) -> str:
        return await asyncio.to_thread(derive_password_legacy, params)
