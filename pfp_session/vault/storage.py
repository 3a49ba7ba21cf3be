"""
EncryptedStore — Namespaced, encrypted key-value storage.

Wraps a persistence backend and provides:
- ``set(name, value)`` — encrypt and persist under the active namespace
- ``get(name, default)`` — read and decrypt, or return default
- ``get_all_by_prefix(prefix)`` — enumerate and decrypt, one entry at a time
- ``delete(name)`` / ``delete_by_prefix(prefix)`` — remove entries
- ``clear()`` — refused, a full wipe has to enumerate explicitly

Names starting with ``pref:`` bypass the namespace prefix. Every other name
is prefixed with the namespace of the active master password.

Security Note:
    Never log plaintext or ciphertext values. Only log key names.
"""
import logging
from typing import Any, Optional, Protocol, Union

import orjson
from cryptography.exceptions import InvalidTag

from .backends import StorageBackend
from .crypto import CryptoCapability, HmacKey, serialize_value, deserialize_value
from .events import EventTarget
from .exceptions import (
    DecryptionError,
    InvalidOperation,
    InvalidPrefix,
    MasterPasswordRequired,
)

logger = logging.getLogger("pfp.vault")

CURRENT_FORMAT = 3
FORMAT_KEY = "format"
SALT_KEY = "salt"
HMAC_SECRET_KEY = "hmac-secret"
PREFS_PREFIX = "pref:"


class _ActiveKey:
    """Marker for "use the key of the active master password"."""

    def __repr__(self) -> str:
        return "ACTIVE_KEY"


ACTIVE_KEY: Any = _ActiveKey()


class KeyMaterialSource(Protocol):
    """Read-only view on the active key material.

    Implemented by the master password manager.
    """

    def get_prefix(self) -> Optional[str]: ...

    def get_key(self) -> Optional[bytes]: ...

    def get_hmac_secret(self) -> Optional[HmacKey]: ...


class EncryptedStore(EventTarget):
    """Encrypted storage bound to the active master password.

    Emits ``set`` and ``delete`` with the unprefixed name of every entry
    written or removed.
    """

    def __init__(
        self,
        backend: StorageBackend,
        crypto: CryptoCapability,
        keys: Optional[KeyMaterialSource] = None,
    ):
        super().__init__()
        self._backend = backend
        self._crypto = crypto
        self._keys = keys

    def bind(self, keys: KeyMaterialSource) -> None:
        """Attach the source of the active prefix, key and HMAC secret."""
        self._keys = keys

    @property
    def backend(self) -> StorageBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Prefix helpers
    # ------------------------------------------------------------------

    def _active_prefix(self) -> Optional[str]:
        return self._keys.get_prefix() if self._keys is not None else None

    def _add_prefix(self, name: str) -> str:
        if name.startswith(PREFS_PREFIX):
            return name
        prefix = self._active_prefix()
        return name if prefix is None else prefix + name

    def _remove_prefix(self, name: str) -> str:
        """Strip the active namespace prefix.

        Raises:
            InvalidPrefix: If ``name`` belongs to another namespace.
        """
        if name.startswith(PREFS_PREFIX):
            return name
        prefix = self._active_prefix()
        if prefix is None:
            return name
        if name.startswith(prefix):
            return name[len(prefix):]
        raise InvalidPrefix("Storage key outside of the active namespace")

    def _get_key(self) -> bytes:
        key = self._keys.get_key() if self._keys is not None else None
        if not key:
            raise MasterPasswordRequired()
        return key

    # ------------------------------------------------------------------
    # Encryption helpers
    # ------------------------------------------------------------------

    async def encrypt(self, data: Any, key: Any = ACTIVE_KEY, as_json: bool = True) -> Any:
        """Encrypt ``data`` for storage.

        Args:
            data: Value to encrypt.
            key: Explicit key, ``None`` for plaintext passthrough, or
                ``ACTIVE_KEY`` for the key of the active master password.
            as_json: Serialize the value before encrypting it.

        Raises:
            MasterPasswordRequired: If the active key is requested but missing.
        """
        if key is ACTIVE_KEY:
            key = self._get_key()
        if not key:
            return data
        if as_json:
            plaintext = serialize_value(data)
        elif isinstance(data, str):
            plaintext = data.encode("utf-8")
        else:
            plaintext = bytes(data)
        return await self._crypto.encrypt_data(key, plaintext)

    async def decrypt(self, data: Any, key: Any = ACTIVE_KEY, as_json: bool = True) -> Any:
        """Reverse ``encrypt``.

        Raises:
            MasterPasswordRequired: If the active key is requested but missing.
            DecryptionError: If the ciphertext is corrupt or was encrypted
                under another key.
        """
        if key is ACTIVE_KEY:
            key = self._get_key()
        if not key:
            return data
        try:
            plaintext = await self._crypto.decrypt_data(key, data)
            if as_json:
                return deserialize_value(plaintext)
            return plaintext.decode("utf-8")
        except (InvalidTag, ValueError, TypeError, orjson.JSONDecodeError) as err:
            raise DecryptionError(str(err) or "Ciphertext rejected") from err

    async def name_to_storage_key(self, data: str) -> str:
        """Return the HMAC digest hiding a plaintext entry name.

        Raises:
            MasterPasswordRequired: If no HMAC secret is active.
        """
        hmac_secret = self._keys.get_hmac_secret() if self._keys is not None else None
        if hmac_secret is None:
            raise MasterPasswordRequired()
        return await self._crypto.get_digest(hmac_secret, data)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def has(self, name: str) -> bool:
        name = self._add_prefix(name)
        items = await self._backend.get(name)
        return name in items

    async def has_by_prefix(self, prefix: str) -> bool:
        prefix = self._add_prefix(prefix)
        items = await self._backend.get(None)
        return any(name.startswith(prefix) for name in items)

    async def get(self, name: str, key: Any = ACTIVE_KEY, default: Any = None) -> Any:
        """Read and decrypt a single entry.

        Returns:
            Decrypted value, or default if not found.
        """
        keyname = self._add_prefix(name)
        items = await self._backend.get(keyname)
        if keyname not in items:
            return default
        return await self.decrypt(items[keyname], key)

    async def get_all_by_prefix(self, prefix: str, key: Any = ACTIVE_KEY) -> dict[str, Any]:
        """Decrypt every entry whose name starts with ``prefix``.

        Entries are decrypted sequentially to bound peak resource use when
        a whole credential set is enumerated.

        Returns:
            Mapping of unprefixed name to decrypted value.
        """
        prefix = self._add_prefix(prefix)
        items = await self._backend.get(None)
        result: dict[str, Any] = {}
        for name in sorted(items):
            if not name.startswith(prefix) or name.startswith(PREFS_PREFIX):
                continue
            realname = self._remove_prefix(name)
            result[realname] = await self.decrypt(items[name], key)
        return result

    async def set(self, name: str, value: Any, key: Any = ACTIVE_KEY) -> None:
        """Encrypt and persist an entry.

        Args:
            name: Unprefixed entry name.
            value: Value to store.
            key: Explicit key, ``None`` to store plaintext, or ``ACTIVE_KEY``.
        """
        keyname = self._add_prefix(name)
        ciphertext = await self.encrypt(value, key)
        await self._backend.set({keyname: ciphertext})
        logger.debug("Store set: %s", name)
        await self.emit("set", name)

    async def delete(self, name: Union[str, list[str]]) -> None:
        """Remove one entry or a list of entries."""
        names = [name] if isinstance(name, str) else list(name)
        if not names:
            return
        await self._backend.remove([self._add_prefix(n) for n in names])
        logger.debug("Store delete: %s", names)
        for n in names:
            await self.emit("delete", n)

    async def delete_by_prefix(self, prefix: str) -> None:
        prefix = self._add_prefix(prefix)
        items = await self._backend.get(None)
        names = [
            self._remove_prefix(name) for name in items if name.startswith(prefix)
        ]
        await self.delete(names)

    async def clear(self) -> None:
        """Refuse to wipe the store.

        Raises:
            InvalidOperation: Always.
        """
        raise InvalidOperation("Clearing the whole storage is not permitted")
