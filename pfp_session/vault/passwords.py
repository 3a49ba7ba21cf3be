"""
PasswordStore — Site and credential records kept in the encrypted store.

Records live under ``site:`` inside the active namespace. Neither site names
nor credential names appear in storage keys; both are replaced by HMAC
digests:

    site:<digest(site)>                              → site record
    site:<digest(site)>:<digest(site|name|revision)> → password record

Password records carry a ``type`` ("generated" or "stored"), site records
do not. This store does not generate passwords, it only keeps their
parameters.
"""
import logging
from typing import Any, Optional

from .prefs import Preferences
from .storage import EncryptedStore

logger = logging.getLogger("pfp.vault")

STORAGE_PREFIX = "site:"

LEGACY_SITES_PREF = "sites"
LEGACY_MASTER_PREF = "masterPassword"

_GENERATED_FIELDS = ("length", "lower", "upper", "number", "symbol")


class PasswordStore:
    """Credential records of the unlocked master password."""

    def __init__(self, store: EncryptedStore, prefs: Preferences):
        self._store = store
        self._prefs = prefs
        self._migrating = False

    # ------------------------------------------------------------------
    # Storage keys
    # ------------------------------------------------------------------

    async def _site_key(self, site: str) -> str:
        return STORAGE_PREFIX + await self._store.name_to_storage_key(site)

    async def _password_key(self, site: str, name: str, revision: str = "") -> str:
        site_key = await self._site_key(site)
        digest = await self._store.name_to_storage_key(f"{site}\0{name}\0{revision}")
        return f"{site_key}:{digest}"

    # ------------------------------------------------------------------
    # Setters used by rekey and migration
    # ------------------------------------------------------------------

    async def set_site(self, record: dict[str, Any]) -> str:
        key = await self._site_key(record["site"])
        await self._store.set(key, record)
        return key

    async def set_password(self, record: dict[str, Any]) -> str:
        key = await self._password_key(
            record["site"], record["name"], record.get("revision", ""),
        )
        await self._store.set(key, record)
        return key

    async def _ensure_site(self, site: str) -> None:
        if not await self._store.has(await self._site_key(site)):
            await self.set_site({"site": site})

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add_generated(self, params: dict[str, Any]) -> dict[str, Any]:
        """Remember the parameters of a generated password.

        Raises:
            MasterPasswordRequired: If the vault is locked.
        """
        record = {
            "type": "generated",
            "site": params["site"],
            "name": params["name"],
            "revision": params.get("revision", ""),
        }
        for field in _GENERATED_FIELDS:
            record[field] = params[field]
        if params.get("legacy"):
            record["legacy"] = True
        await self._ensure_site(record["site"])
        await self.set_password(record)
        return record

    async def add_stored(self, params: dict[str, Any]) -> dict[str, Any]:
        """Store a password as entered by the user."""
        record = {
            "type": "stored",
            "site": params["site"],
            "name": params["name"],
            "revision": params.get("revision", ""),
            "password": params["password"],
        }
        await self._ensure_site(record["site"])
        await self.set_password(record)
        return record

    async def add_alias(self, alias: str, site: str) -> None:
        """Make ``alias`` resolve to the passwords of ``site``."""
        await self.set_site({"site": alias, "alias": site})

    async def get_passwords(self, site: str) -> list[dict[str, Any]]:
        entries = await self._store.get_all_by_prefix(await self._site_key(site) + ":")
        return sorted(entries.values(), key=lambda r: (r["name"], r.get("revision", "")))

    async def get_all_passwords(self) -> dict[str, dict[str, Any]]:
        """Return every site of the active namespace with its passwords.

        Returns:
            Mapping of site name to ``{"site", "alias"?, "passwords": [...]}``.
        """
        entries = await self._store.get_all_by_prefix(STORAGE_PREFIX)
        result: dict[str, dict[str, Any]] = {}
        passwords = []
        for value in entries.values():
            if value.get("type"):
                passwords.append(value)
                continue
            site = dict(value)
            if "alias" not in site:
                site["passwords"] = []
            result[site["site"]] = site
        for record in passwords:
            site = result.setdefault(
                record["site"], {"site": record["site"], "passwords": []},
            )
            site.setdefault("passwords", []).append(record)
        for site in result.values():
            if "passwords" in site:
                site["passwords"].sort(key=lambda r: (r["name"], r.get("revision", "")))
        return result

    # ------------------------------------------------------------------
    # Migration
    # ------------------------------------------------------------------

    def is_migrating(self) -> bool:
        return self._migrating

    async def migrate_data(self, password: str) -> int:
        """Bring the records of the active namespace to the current format.

        Legacy data is read from the ``sites`` preference and imported;
        namespaced data written before storage keys were digests is
        rewritten through the setters. Requires unlocked key material.

        Returns:
            Number of migrated records.
        """
        self._migrating = True
        try:
            legacy = await self._prefs.get(LEGACY_MASTER_PREF)
            if legacy is not None:
                count = await self._import_legacy(legacy)
            else:
                count = await self._rewrite_entries()
        finally:
            self._migrating = False
        logger.info("Migrated %d credential record(s)", count)
        return count

    async def _import_legacy(self, legacy: dict[str, Any]) -> int:
        sites = await self._prefs.get(LEGACY_SITES_PREF, {}) or {}
        count = 0
        for site, data in sites.items():
            if data.get("alias"):
                await self.add_alias(site, data["alias"])
                count += 1
                continue
            await self.set_site({"site": site})
            count += 1
            for name, params in (data.get("passwords") or {}).items():
                record = dict(params)
                record.update(site=site, name=name)
                record.setdefault("revision", "")
                if record.get("type") == "generated":
                    record["legacy"] = True
                    record["salt"] = legacy.get("salt")
                await self.set_password(record)
                count += 1
        await self._prefs.delete(LEGACY_SITES_PREF)
        await self._prefs.delete(LEGACY_MASTER_PREF)
        return count

    async def _rewrite_entries(self) -> int:
        entries = await self._store.get_all_by_prefix(STORAGE_PREFIX)
        written = set()
        for value in entries.values():
            if value.get("type"):
                written.add(await self.set_password(value))
            else:
                written.add(await self.set_site(value))
        await self._store.delete([name for name in entries if name not in written])
        return len(entries)

    async def get_legacy_record(self) -> Optional[dict[str, Any]]:
        return await self._prefs.get(LEGACY_MASTER_PREF)
