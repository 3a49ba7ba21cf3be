"""
Vault Key Rotation — Re-encryption of all credentials when the master password changes.

Generates fresh key material for the new password and hands it to
``MasterPasswordManager.rekey``, which re-encrypts every record of the
current namespace and moves it to the namespace of the new password.
Autolock is suspended for the duration, so the key material cannot be
forgotten half-way.

Security Note:
    Plaintext exists in memory only during re-encryption of each record.
    Never log passwords, plaintext or ciphertext values.
"""
import logging

from .master_password import MasterPasswordManager

logger = logging.getLogger("pfp.vault")


async def rotate_master_password(
    manager: MasterPasswordManager,
    new_password: str,
) -> int:
    """Replace the master password and re-encrypt all records under it.

    Args:
        manager: Unlocked master password manager.
        new_password: Password to switch to.

    Returns:
        Number of re-encrypted records.

    Raises:
        MasterPasswordRequired: If the manager is locked.
        InvalidOperation: If the new password already has stored data.
        ValueError: If the new password is empty.
    """
    if not new_password:
        raise ValueError("New master password cannot be empty")
    manager.get_master_password()

    crypto, config = manager.crypto, manager.config
    salt = await crypto.generate_random(config.salt_length)
    new_key = await crypto.derive_key(new_password, salt)
    raw_hmac_secret = await crypto.generate_random(config.hmac_secret_length)

    logger.info("Starting master password rotation")
    was_suspended = manager.auto_lock_suspended
    manager.suspend_auto_lock()
    try:
        count = await manager.rekey(
            salt, raw_hmac_secret, new_key, password=new_password,
        )
    finally:
        if not was_suspended:
            await manager.resume_auto_lock()

    logger.info("Master password rotation complete: %d record(s)", count)
    await manager.emit("passwordChanged")
    return count
