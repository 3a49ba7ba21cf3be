"""Preferences — flat settings keyspace stored unencrypted beside the vault."""
import logging
from typing import Any

from .events import EventTarget
from .storage import EncryptedStore, PREFS_PREFIX

logger = logging.getLogger("pfp.vault")


class Preferences(EventTarget):
    """Preference access through the ``pref:`` keyspace of the store.

    Emits an event named after the preference on every change, with
    ``(name, value)`` as arguments.
    """

    def __init__(self, store: EncryptedStore):
        super().__init__()
        self._store = store

    async def get(self, name: str, default: Any = None) -> Any:
        return await self._store.get(PREFS_PREFIX + name, key=None, default=default)

    async def set(self, name: str, value: Any) -> None:
        await self._store.set(PREFS_PREFIX + name, value, key=None)
        logger.debug("Preference changed: %s", name)
        await self.emit(name, name, value)

    async def delete(self, name: str) -> None:
        await self._store.delete(PREFS_PREFIX + name)
        await self.emit(name, name, None)
