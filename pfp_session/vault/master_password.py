"""
MasterPasswordManager — Lifecycle of the remembered master password.

Provides the public API of the unlock session:
- ``unlock_or_initialize(password)`` — create key material on first use, verify otherwise
- ``check_password(password)`` — verify a password and unlock
- ``forget_password()`` — drop all key material
- ``rekey(salt, raw_hmac_secret, new_key)`` — re-encrypt the namespace under new key material
- ``get_state()`` — one of ``unset``, ``set``, ``known``, ``migrating``

There is no stored password verifier. The namespace prefix is derived from
the password, so a wrong password resolves to a namespace without a salt
record and is declined because nothing can be found there.

Callers have to serialize master password operations with regard to plain
store writes; the manager serializes its own operations with a lock.

Security Note:
    Never log passwords, keys, salts or secrets. Only log state transitions.
"""
import asyncio
import hmac
import logging
from typing import Any, Optional

from .autolock import AutoLock
from .backends import MemoryBackend, StorageBackend, FileBackend
from .config import SessionConfig
from .crypto import Crypto, CryptoCapability, HmacKey
from .events import EventTarget
from .exceptions import (
    Declined,
    DecryptionError,
    InvalidOperation,
    MasterPasswordRequired,
    Migrating,
)
from .passwords import PasswordStore, STORAGE_PREFIX
from .prefs import Preferences
from .session import LockState, UnlockSession
from .storage import (
    CURRENT_FORMAT,
    FORMAT_KEY,
    HMAC_SECRET_KEY,
    SALT_KEY,
    EncryptedStore,
)

logger = logging.getLogger("pfp.vault")

USER_SALT_KEY = "usersalt"
USER_SALT_LENGTH = 16
LEGACY_HASH_LENGTH = 2


class MasterPasswordManager(EventTarget):
    """Owner of the unlock session and its key material.

    Emits ``passwordChanged`` after a successful unlock, ``passwordCleared``
    after the password was forgotten and ``migrationCompleted`` once
    background migration finished.
    """

    def __init__(
        self,
        store: EncryptedStore,
        prefs: Preferences,
        crypto: CryptoCapability,
        credentials: Optional[PasswordStore] = None,
        config: Optional[SessionConfig] = None,
    ):
        super().__init__()
        self._store = store
        self._prefs = prefs
        self._crypto = crypto
        self._credentials = credentials
        self._config = config or SessionConfig()
        self._session: Optional[UnlockSession] = None
        self._candidate_prefix: Optional[str] = None
        self._migration: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()
        self._autolock = AutoLock(prefs, self.forget_password, self._config)
        self.on("passwordChanged", self._autolock.password_changed)
        self.on("passwordCleared", self._autolock.cancel)
        self.on("migrationCompleted", self._autolock.password_changed)
        store.bind(self)

    @property
    def store(self) -> EncryptedStore:
        return self._store

    @property
    def prefs(self) -> Preferences:
        return self._prefs

    @property
    def crypto(self) -> CryptoCapability:
        return self._crypto

    @property
    def credentials(self) -> Optional[PasswordStore]:
        return self._credentials

    @property
    def config(self) -> SessionConfig:
        return self._config

    @property
    def auto_lock_suspended(self) -> bool:
        return self._autolock.suspended

    @property
    def migration(self) -> Optional[asyncio.Task]:
        """Background migration task, if one is running."""
        return self._migration

    # ------------------------------------------------------------------
    # Key material accessors (read by the encrypted store)
    # ------------------------------------------------------------------

    def get_prefix(self) -> Optional[str]:
        if self._candidate_prefix is not None:
            return self._candidate_prefix
        return self._session.prefix if self._session else None

    def get_key(self) -> Optional[bytes]:
        return self._session.key if self._session else None

    def get_hmac_secret(self) -> Optional[HmacKey]:
        return self._session.hmac_secret if self._session else None

    def get_master_password(self) -> str:
        """Return the remembered master password.

        Raises:
            MasterPasswordRequired: If the vault is locked.
        """
        if self._session is None:
            raise MasterPasswordRequired()
        return self._session.password

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    async def get_state(self) -> LockState:
        if self._migration is not None or (
            self._credentials is not None and self._credentials.is_migrating()
        ):
            return LockState.MIGRATING
        if self._session is not None:
            return LockState.KNOWN
        if await self._prefs.get(USER_SALT_KEY) is not None:
            return LockState.SET
        if await self._legacy_record() is not None:
            return LockState.SET
        return LockState.UNSET

    async def get_salt(self) -> Optional[bytes]:
        return await self._store.get(SALT_KEY, key=None)

    async def derive_key_with_password(
        self, salt: bytes, password: Optional[str] = None,
    ) -> bytes:
        """Derive the storage key, from the remembered password if none given.

        Raises:
            MasterPasswordRequired: If no password is given or remembered.
        """
        if not password:
            password = self.get_master_password()
        return await self._crypto.derive_key(password, salt)

    # ------------------------------------------------------------------
    # Autolock
    # ------------------------------------------------------------------

    def suspend_auto_lock(self) -> None:
        self._autolock.suspend()

    async def resume_auto_lock(self) -> None:
        await self._autolock.resume()

    # ------------------------------------------------------------------
    # Namespace
    # ------------------------------------------------------------------

    async def _derive_prefix(self, password: str, create: bool) -> Optional[str]:
        """Namespace prefix for ``password``.

        Returns ``None`` if no user salt exists and ``create`` is false.
        """
        raw_user_salt = await self._prefs.get(USER_SALT_KEY)
        if raw_user_salt is None:
            if not create:
                return None
            raw_user_salt = await self._crypto.generate_random(USER_SALT_LENGTH)
            await self._prefs.set(USER_SALT_KEY, raw_user_salt)
        user_salt = await self._crypto.import_hmac_secret(raw_user_salt)
        digest = await self._crypto.get_digest(user_salt, password)
        return f"user:{digest}/"

    async def _legacy_record(self) -> Optional[dict[str, Any]]:
        if self._credentials is None:
            return None
        return await self._credentials.get_legacy_record()

    # ------------------------------------------------------------------
    # Unlocking
    # ------------------------------------------------------------------

    async def unlock_or_initialize(self, password: str) -> None:
        """Create key material for ``password`` or verify it.

        If the namespace of ``password`` has no salt yet (and no legacy data
        waits for migration), a new salt, key and HMAC secret are created and
        persisted. Otherwise this is a ``check_password`` call. Changing an
        existing password goes through ``rekey`` instead.

        Raises:
            Declined: If verification of an existing namespace failed.
            Migrating: If the data has to be migrated first.
        """
        async with self._lock:
            prefix = await self._derive_prefix(password, create=True)
            if (
                await self._namespace_exists(prefix)
                or await self._legacy_record() is not None
            ):
                await self._check_password(password)
            else:
                await self._initialize(password, prefix)
        await self.emit("passwordChanged")

    change_password = unlock_or_initialize

    async def _namespace_exists(self, prefix: str) -> bool:
        self._candidate_prefix = prefix
        try:
            return await self._store.has(SALT_KEY)
        finally:
            self._candidate_prefix = None

    async def _initialize(self, password: str, prefix: Optional[str] = None) -> None:
        """Create and persist fresh key material for ``password``."""
        if prefix is None:
            prefix = await self._derive_prefix(password, create=True)
        self._candidate_prefix = prefix
        try:
            salt = await self._crypto.generate_random(self._config.salt_length)
            new_key = await self.derive_key_with_password(salt, password)
            raw_hmac_secret = await self._crypto.generate_random(
                self._config.hmac_secret_length,
            )
            hmac_secret, *_ = await asyncio.gather(
                self._crypto.import_hmac_secret(raw_hmac_secret),
                self._store.set(FORMAT_KEY, CURRENT_FORMAT, key=None),
                self._store.set(SALT_KEY, salt, key=None),
                self._store.set(HMAC_SECRET_KEY, raw_hmac_secret, key=new_key),
            )
        finally:
            self._candidate_prefix = None
        self._session = UnlockSession(password, new_key, hmac_secret, prefix)
        logger.info("Master password initialized")

    async def check_password(self, password: str) -> None:
        """Verify ``password`` and unlock on success.

        Raises:
            Declined: Wrong password, unsupported format or no data at all.
            Migrating: The password is correct but the data is being
                migrated; retry once migration completed.
        """
        async with self._lock:
            await self._check_password(password)
        await self.emit("passwordChanged")

    async def _check_password(self, password: str) -> None:
        needs_migrating = False
        try:
            self._candidate_prefix = await self._derive_prefix(password, create=False)
            if self._candidate_prefix is not None:
                format_, salt = await asyncio.gather(
                    self._store.get(FORMAT_KEY, key=None),
                    self._store.get(SALT_KEY, key=None),
                )
            else:
                format_, salt = None, None

            if format_ is not None and format_ != CURRENT_FORMAT:
                raise Declined(f"Unsupported storage format {format_}")
            if format_ is None:
                needs_migrating = True

            if salt is None:
                await self._check_legacy_password(password)
                self._start_migration(password, legacy=True)
                raise Migrating()

            new_key = await self.derive_key_with_password(salt, password)
            raw_hmac_secret = await self._store.get(HMAC_SECRET_KEY, key=new_key)
            if raw_hmac_secret is None:
                raise Declined("No HMAC secret in namespace")
            hmac_secret = await self._crypto.import_hmac_secret(raw_hmac_secret)
            prefix = self._candidate_prefix
        except DecryptionError as err:
            raise Declined("Stored key material rejected the password") from err
        finally:
            self._candidate_prefix = None

        self._session = UnlockSession(password, new_key, hmac_secret, prefix)
        logger.info("Master password accepted")
        if needs_migrating:
            self._start_migration(password, legacy=False)
            raise Migrating()

    async def _check_legacy_password(self, password: str) -> None:
        legacy = await self._legacy_record()
        if legacy is None:
            raise Declined("No master password set")
        expected = await self._crypto.derive_password_legacy({
            "master_password": password,
            "domain": "",
            "name": legacy.get("salt", ""),
            "length": LEGACY_HASH_LENGTH,
            "lower": True,
            "upper": True,
            "number": True,
            "symbol": True,
        })
        if not hmac.compare_digest(expected, str(legacy.get("hash", ""))):
            raise Declined("Legacy master password mismatch")

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def _start_migration(self, password: str, legacy: bool) -> None:
        logger.info("Starting %s data migration", "legacy" if legacy else "format")
        was_suspended = self._autolock.suspended
        self._autolock.suspend()
        self._migration = asyncio.create_task(
            self._migrate(password, legacy, was_suspended),
        )

    async def _migrate(self, password: str, legacy: bool, was_suspended: bool) -> None:
        """Background migration; failures are logged and never re-raised.

        Autolock stays suspended until the migration finished.
        """
        try:
            async with self._lock:
                if legacy:
                    await self._initialize(password)
                if self._credentials is not None:
                    await self._credentials.migrate_data(password)
                await self._store.set(FORMAT_KEY, CURRENT_FORMAT, key=None)
        except Exception as err:
            logger.error("Data migration failed: %s", err, exc_info=True)
            return
        finally:
            self._migration = None
            if not was_suspended:
                await self._autolock.resume()
        logger.info("Data migrated to format %d", CURRENT_FORMAT)
        await self.emit("migrationCompleted")

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    async def forget_password(self) -> None:
        self._session = None
        self._candidate_prefix = None
        logger.info("Master password forgotten")
        await self.emit("passwordCleared")

    # ------------------------------------------------------------------
    # Rekey
    # ------------------------------------------------------------------

    async def rekey(
        self,
        salt: bytes,
        raw_hmac_secret: bytes,
        new_key: bytes,
        password: Optional[str] = None,
    ) -> int:
        """Re-encrypt every credential record under new key material.

        Records are read with the current key, removed, and written again
        through the credential setters once the new key and HMAC secret are
        active. If ``password`` is given the namespace moves to the prefix
        of that password.

        A failure part-way leaves records deleted but not re-inserted;
        store writes must not run concurrently.

        Returns:
            Number of re-encrypted records.

        Raises:
            MasterPasswordRequired: If the vault is locked.
            InvalidOperation: If ``password`` already owns a namespace.
                Nothing is deleted in that case.
        """
        if self._credentials is None:
            raise RuntimeError("rekey requires a credential store")
        async with self._lock:
            session = self._session
            if session is None:
                raise MasterPasswordRequired()
            prefix = session.prefix
            if password is not None and password != session.password:
                prefix = await self._derive_prefix(password, create=True)
                if prefix != session.prefix and await self._namespace_exists(prefix):
                    raise InvalidOperation(
                        "The new master password already has stored data",
                    )
            entries = await self._store.get_all_by_prefix(STORAGE_PREFIX)
            stale = list(entries)
            if prefix != session.prefix:
                stale += [FORMAT_KEY, SALT_KEY, HMAC_SECRET_KEY]

            hmac_secret, _ = await asyncio.gather(
                self._crypto.import_hmac_secret(raw_hmac_secret),
                self._store.delete(stale),
            )
            self._session = UnlockSession(
                password or session.password, new_key, hmac_secret, prefix,
            )
            await asyncio.gather(
                self._store.set(FORMAT_KEY, CURRENT_FORMAT, key=None),
                self._store.set(SALT_KEY, salt, key=None),
                self._store.set(HMAC_SECRET_KEY, raw_hmac_secret, key=new_key),
            )
            await asyncio.gather(*(
                self._credentials.set_password(value) if value.get("type")
                else self._credentials.set_site(value)
                for value in entries.values()
            ))
        logger.info("Rekeyed %d credential record(s)", len(entries))
        return len(entries)

    # ------------------------------------------------------------------
    # Factory
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Stop the autolock timer and wait for a running migration."""
        migration = self._migration
        if migration is not None:
            await asyncio.gather(migration, return_exceptions=True)
        await self._autolock.close()

    @classmethod
    def create(
        cls,
        backend: Optional[StorageBackend] = None,
        config: Optional[SessionConfig] = None,
        crypto: Optional[CryptoCapability] = None,
    ) -> "MasterPasswordManager":
        """Wire store, preferences, credential store and manager together.

        Args:
            backend: Persistence medium; a ``FileBackend`` on
                ``config.storage_path`` or a ``MemoryBackend`` by default.
            config: Session configuration.
            crypto: Crypto capability, ``Crypto(config)`` by default.

        Returns:
            Locked MasterPasswordManager instance.
        """
        config = config or SessionConfig()
        if backend is None:
            if config.storage_path:
                backend = FileBackend(config.storage_path)
            else:
                backend = MemoryBackend()
        crypto = crypto or Crypto(config)
        store = EncryptedStore(backend, crypto)
        prefs = Preferences(store)
        credentials = PasswordStore(store, prefs)
        return cls(store, prefs, crypto, credentials=credentials, config=config)
