"""
Vault Configuration — Validated key-derivation and autolock settings.

Reads overrides from environment variables:
    PFP_SCRYPT_N, PFP_SCRYPT_R, PFP_SCRYPT_P = <int>
    PFP_AUTOLOCK = true|false
    PFP_AUTOLOCK_DELAY = <minutes>
    PFP_STORAGE_PATH = <path to the JSON storage file>

Security Note:
    Never log key material. Only log parameter values and paths.
"""
import os
import logging
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger("pfp.vault")

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(raw: str) -> bool:
    return raw.strip().lower() in _TRUE_VALUES


class SessionConfig(BaseModel):
    """Validated session configuration.

    ``autolock`` and ``autolock_delay`` are only the defaults used when the
    matching preferences were never written by the user.
    """

    scrypt_n: int = Field(default=32768, gt=1)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)
    salt_length: int = Field(default=16, ge=8)
    hmac_secret_length: int = Field(default=32, ge=16)
    autolock: bool = Field(default=True)
    autolock_delay: float = Field(default=10)
    storage_path: Optional[str] = Field(default=None)

    @field_validator("scrypt_n")
    @classmethod
    def validate_scrypt_n(cls, v: int) -> int:
        """scrypt requires the cost parameter to be a power of two."""
        if v & (v - 1):
            raise ValueError(f"scrypt_n must be a power of two, got {v}")
        return v

    @classmethod
    def from_env(cls) -> "SessionConfig":
        """Create SessionConfig by loading values from environment.

        Returns:
            Populated SessionConfig instance.
        """
        values: dict = {}
        for field, env in (
            ("scrypt_n", "PFP_SCRYPT_N"),
            ("scrypt_r", "PFP_SCRYPT_R"),
            ("scrypt_p", "PFP_SCRYPT_P"),
        ):
            raw = os.environ.get(env)
            if raw is not None:
                values[field] = int(raw)
        raw = os.environ.get("PFP_AUTOLOCK")
        if raw is not None:
            values["autolock"] = _env_bool(raw)
        raw = os.environ.get("PFP_AUTOLOCK_DELAY")
        if raw is not None:
            values["autolock_delay"] = float(raw)
        raw = os.environ.get("PFP_STORAGE_PATH")
        if raw:
            values["storage_path"] = raw
        config = cls(**values)
        logger.debug(
            "Session config loaded: scrypt N=%d r=%d p=%d, storage=%s",
            config.scrypt_n, config.scrypt_r, config.scrypt_p,
            config.storage_path or "<memory>",
        )
        return config
