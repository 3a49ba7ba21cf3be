"""
Tests for EncryptedStore.

Tests cover:
- Encryption helpers with active, explicit and absent keys
- Namespace prefixing and the ``pref:`` bypass
- Sequential bulk decryption
- Deletion and change events
- Refusal to clear the store
"""
import asyncio

import pytest

from pfp_session.vault import (
    Crypto,
    DecryptionError,
    EncryptedStore,
    InvalidOperation,
    InvalidPrefix,
    MasterPasswordRequired,
    MemoryBackend,
)
from pfp_session.vault.crypto import KEY_LENGTH, HmacKey, generate_random

PREFIX = "user:abc/"


class StaticKeys:
    """Fixed key material standing in for the master password manager."""

    def __init__(self, prefix=PREFIX, key=None, hmac_secret=None):
        self.prefix = prefix
        self.key = key
        self.hmac_secret = hmac_secret

    def get_prefix(self):
        return self.prefix

    def get_key(self):
        return self.key

    def get_hmac_secret(self):
        return self.hmac_secret


@pytest.fixture
def keys():
    return StaticKeys(key=generate_random(KEY_LENGTH), hmac_secret=HmacKey(b"h" * 32))


@pytest.fixture
def store(backend, crypto, keys):
    return EncryptedStore(backend, crypto, keys)


class TestEncryptionHelpers:
    """encrypt/decrypt key resolution."""

    @pytest.mark.asyncio
    async def test_roundtrip_with_active_key(self, store):
        value = {"site": "example.com", "n": [1, 2]}
        ciphertext = await store.encrypt(value)
        assert isinstance(ciphertext, str)
        assert await store.decrypt(ciphertext) == value

    @pytest.mark.asyncio
    async def test_plaintext_passthrough(self, store):
        assert await store.encrypt({"a": 1}, None) == {"a": 1}
        assert await store.decrypt({"a": 1}, None) == {"a": 1}

    @pytest.mark.asyncio
    async def test_text_mode(self, store):
        ciphertext = await store.encrypt("plain text", as_json=False)
        assert await store.decrypt(ciphertext, as_json=False) == "plain text"

    @pytest.mark.asyncio
    async def test_missing_active_key(self, store, keys):
        keys.key = None
        with pytest.raises(MasterPasswordRequired):
            await store.encrypt("value")
        with pytest.raises(MasterPasswordRequired):
            await store.decrypt("value")

    @pytest.mark.asyncio
    async def test_foreign_key_is_decryption_error(self, store):
        ciphertext = await store.encrypt("value")
        with pytest.raises(DecryptionError):
            await store.decrypt(ciphertext, generate_random(KEY_LENGTH))

    @pytest.mark.asyncio
    async def test_name_to_storage_key(self, store, keys):
        digest = await store.name_to_storage_key("example.com")
        assert digest == await store.name_to_storage_key("example.com")
        assert "example.com" not in digest
        keys.hmac_secret = None
        with pytest.raises(MasterPasswordRequired):
            await store.name_to_storage_key("example.com")


class TestPrefixing:
    """Namespace prefix handling."""

    @pytest.mark.asyncio
    async def test_set_writes_prefixed_ciphertext(self, store, backend):
        await store.set("site:x", {"site": "example.com"})
        assert list(backend.data) == [PREFIX + "site:x"]
        assert "example.com" not in backend.data[PREFIX + "site:x"]
        assert await store.get("site:x") == {"site": "example.com"}

    @pytest.mark.asyncio
    async def test_get_missing_returns_default(self, store):
        assert await store.get("missing") is None
        assert await store.get("missing", default=42) == 42

    @pytest.mark.asyncio
    async def test_plaintext_record(self, store, backend):
        await store.set("salt", b"salty", key=None)
        assert backend.data[PREFIX + "salt"] == b"salty"
        assert await store.get("salt", key=None) == b"salty"

    @pytest.mark.asyncio
    async def test_prefs_bypass_namespace(self, store, backend):
        await store.set("pref:autolock", False, key=None)
        assert backend.data["pref:autolock"] is False

    @pytest.mark.asyncio
    async def test_no_prefix_without_namespace(self, backend, crypto):
        store = EncryptedStore(backend, crypto, StaticKeys(prefix=None))
        await store.set("format", 3, key=None)
        assert backend.data == {"format": 3}

    @pytest.mark.asyncio
    async def test_namespace_switch_during_enumeration(self, store, keys, crypto, monkeypatch):
        await store.set("site:a", 1)
        await store.set("site:b", 2)
        decrypt_data = crypto.decrypt_data

        async def switching(key, data):
            keys.prefix = "user:other/"
            return await decrypt_data(key, data)

        monkeypatch.setattr(crypto, "decrypt_data", switching)
        with pytest.raises(InvalidPrefix):
            await store.get_all_by_prefix("site:")

    @pytest.mark.asyncio
    async def test_has(self, store):
        await store.set("site:x", 1)
        assert await store.has("site:x") is True
        assert await store.has("site:y") is False
        assert await store.has_by_prefix("site:") is True
        assert await store.has_by_prefix("other:") is False


class TestBulkRead:
    """get_all_by_prefix."""

    @pytest.mark.asyncio
    async def test_strips_prefix_and_skips_foreign(self, store, backend):
        await store.set("site:a", "A")
        await store.set("site:b", "B")
        await store.set("pref:site:c", "C", key=None)
        backend.data["user:other/site:d"] = "not ours"
        assert await store.get_all_by_prefix("site:") == {"site:a": "A", "site:b": "B"}
        assert await store.get_all_by_prefix("pref:") == {}

    @pytest.mark.asyncio
    async def test_decrypts_one_at_a_time(self, store, crypto, monkeypatch):
        for index in range(5):
            await store.set(f"site:{index}", index)

        active = 0
        peak = 0
        original = crypto.decrypt_data

        async def tracking_decrypt(key, data):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0)
            try:
                return await original(key, data)
            finally:
                active -= 1

        monkeypatch.setattr(crypto, "decrypt_data", tracking_decrypt)
        result = await store.get_all_by_prefix("site:")
        assert len(result) == 5
        assert peak == 1


class TestDeletion:
    """delete, delete_by_prefix and clear."""

    @pytest.mark.asyncio
    async def test_delete_emits_per_name(self, store, backend):
        deleted = []
        store.on("delete", deleted.append)
        for name in ("site:a", "site:b", "site:c"):
            await store.set(name, name)
        await store.delete("site:a")
        await store.delete(["site:b", "site:c"])
        assert deleted == ["site:a", "site:b", "site:c"]
        assert backend.data == {}

    @pytest.mark.asyncio
    async def test_set_emits_unprefixed_name(self, store):
        written = []
        store.on("set", written.append)
        await store.set("site:a", 1)
        assert written == ["site:a"]

    @pytest.mark.asyncio
    async def test_delete_by_prefix(self, store, backend):
        await store.set("site:a", 1)
        await store.set("site:b", 2)
        await store.set("other", 3)
        await store.delete_by_prefix("site:")
        assert list(backend.data) == [PREFIX + "other"]

    @pytest.mark.asyncio
    async def test_clear_is_refused(self, store, backend):
        await store.set("site:a", 1)
        with pytest.raises(InvalidOperation):
            await store.clear()
        assert len(backend.data) == 1
