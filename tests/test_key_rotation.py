"""
Tests for rekey and master password rotation.

Tests cover:
- rekey preserves every credential record
- every raw storage key and ciphertext changes
- rotation moves the namespace to the new password
- autolock suspension around rotation
"""
import pytest

from pfp_session.vault import (
    Declined,
    InvalidOperation,
    MasterPasswordRequired,
    rotate_master_password,
)
from pfp_session.vault.crypto import KEY_LENGTH, generate_random

from .conftest import DUMMY_MASTER, add_data


class TestRekey:
    """MasterPasswordManager.rekey."""

    @pytest.mark.asyncio
    async def test_rekey_preserves_entries(self, manager, passwords, backend, crypto):
        await manager.change_password(DUMMY_MASTER)
        await add_data(passwords)
        before = await passwords.get_all_passwords()
        raw_before = dict(backend.data)
        prefix = manager.get_prefix()

        salt = generate_random(16)
        new_key = await crypto.derive_key(DUMMY_MASTER, salt)
        count = await manager.rekey(salt, generate_random(32), new_key)

        assert count == 5
        assert await passwords.get_all_passwords() == before
        assert manager.get_key() == new_key
        assert manager.get_prefix() == prefix
        assert await manager.get_salt() == salt

        site_keys_before = {k for k in raw_before if k.startswith(prefix + "site:")}
        site_keys_after = {k for k in backend.data if k.startswith(prefix + "site:")}
        assert len(site_keys_after) == len(site_keys_before)
        assert site_keys_before.isdisjoint(site_keys_after)
        assert set(raw_before.values()).isdisjoint(
            v for v in backend.data.values() if isinstance(v, str)
        )

    @pytest.mark.asyncio
    async def test_rekey_survives_relock(self, manager, passwords, crypto):
        await manager.change_password(DUMMY_MASTER)
        await add_data(passwords)
        before = await passwords.get_all_passwords()

        salt = generate_random(16)
        new_key = await crypto.derive_key(DUMMY_MASTER, salt)
        await manager.rekey(salt, generate_random(32), new_key)
        await manager.forget_password()

        await manager.check_password(DUMMY_MASTER)
        assert await passwords.get_all_passwords() == before

    @pytest.mark.asyncio
    async def test_rekey_requires_unlock(self, manager):
        with pytest.raises(MasterPasswordRequired):
            await manager.rekey(b"s" * 16, b"h" * 32, generate_random(KEY_LENGTH))


class TestRotateMasterPassword:
    """rotate_master_password."""

    @pytest.mark.asyncio
    async def test_rotation_moves_namespace(self, manager, passwords):
        await manager.change_password(DUMMY_MASTER)
        await add_data(passwords)
        before = await passwords.get_all_passwords()

        count = await rotate_master_password(manager, "new master")
        assert count == 5
        assert manager.get_master_password() == "new master"
        assert await passwords.get_all_passwords() == before

        await manager.forget_password()
        with pytest.raises(Declined):
            await manager.check_password(DUMMY_MASTER)

        await manager.check_password("new master")
        assert await passwords.get_all_passwords() == before

    @pytest.mark.asyncio
    async def test_old_namespace_is_emptied(self, manager, passwords, backend):
        await manager.change_password(DUMMY_MASTER)
        await add_data(passwords)
        old_prefix = manager.get_prefix()
        await rotate_master_password(manager, "new master")
        assert not any(name.startswith(old_prefix) for name in backend.data)

    @pytest.mark.asyncio
    async def test_rotation_requires_unlock(self, manager):
        with pytest.raises(MasterPasswordRequired):
            await rotate_master_password(manager, "new master")

    @pytest.mark.asyncio
    async def test_rotation_keeps_suspension(self, manager):
        await manager.change_password(DUMMY_MASTER)
        manager.suspend_auto_lock()
        await rotate_master_password(manager, "new master")
        assert manager.auto_lock_suspended is True

        await manager.resume_auto_lock()
        await rotate_master_password(manager, "third master")
        assert manager.auto_lock_suspended is False

    @pytest.mark.asyncio
    async def test_rotation_refuses_occupied_namespace(self, manager, passwords, backend):
        await manager.change_password("other")
        await passwords.add_stored({"site": "x.org", "name": "baz", "password": "q"})
        other = await passwords.get_all_passwords()

        await manager.change_password(DUMMY_MASTER)
        await add_data(passwords)
        before = await passwords.get_all_passwords()
        raw_before = dict(backend.data)

        with pytest.raises(InvalidOperation):
            await rotate_master_password(manager, "other")
        assert backend.data == raw_before
        assert manager.get_master_password() == DUMMY_MASTER
        assert await passwords.get_all_passwords() == before
        assert manager.auto_lock_suspended is False

        await manager.forget_password()
        await manager.check_password("other")
        assert await passwords.get_all_passwords() == other
