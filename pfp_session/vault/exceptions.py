"""
Vault Exceptions — Error taxonomy of the secret-management core.

Every error carries a stable ``code`` string so that UI code can branch on
the kind of failure (e.g. "wrong password" only for ``Declined``).
"""


class VaultError(Exception):
    """Base class for all vault errors."""

    code = "vault_error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.code)


class MasterPasswordRequired(VaultError):
    """No master password, key or HMAC secret is currently active."""

    code = "master_password_required"


class Declined(VaultError):
    """The candidate master password failed verification."""

    code = "declined"


class Migrating(VaultError):
    """Legacy data accepted the password and is being upgraded.

    The caller has to retry once migration completes.
    """

    code = "migrating"


class InvalidPrefix(VaultError):
    """A raw storage key does not carry the active namespace prefix."""

    code = "invalid_prefix"


class InvalidOperation(VaultError):
    """The requested operation is not permitted."""

    code = "invalid_operation"


class DecryptionError(VaultError):
    """Stored ciphertext could not be decrypted or decoded."""

    code = "decryption_failed"
