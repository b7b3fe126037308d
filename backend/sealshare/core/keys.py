import binascii
import logging
import os
from typing import Mapping

from sealshare.core.config import settings
from sealshare.core.errors import KeyConfigurationError

logger = logging.getLogger("sealshare")

# AES-256
KEY_LENGTH = 32


class KeyProvider:
    """Holds the process-wide at-rest key.

    Built once at startup; construction fails if the key is not exactly
    ``KEY_LENGTH`` bytes, so a misconfigured process never serves a request.
    """

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_LENGTH:
            raise KeyConfigurationError(
                f"Encryption key must be exactly {KEY_LENGTH} bytes."
            )
        self._key = bytes(key)

    @classmethod
    def from_env(
        cls,
        var: str = settings.ENCRYPTION_KEY_ENV,
        environ: Mapping[str, str] | None = None,
    ) -> "KeyProvider":
        environ = os.environ if environ is None else environ
        key_hex = environ.get(var)
        if not key_hex:
            logger.critical("Environment variable %s is not set; refusing to start", var)
            raise KeyConfigurationError(f"Environment variable {var} is missing.")

        key_hex = key_hex.strip()
        if len(key_hex) != KEY_LENGTH * 2:
            logger.critical(
                "Environment variable %s must be a %d-character hex string", var, KEY_LENGTH * 2
            )
            raise KeyConfigurationError(
                f"Environment variable {var} must be a {KEY_LENGTH * 2}-character hex string."
            )
        try:
            key = binascii.unhexlify(key_hex)
        except (binascii.Error, ValueError):
            logger.critical("Environment variable %s is not valid hex", var)
            raise KeyConfigurationError(f"Environment variable {var} is not valid hex.") from None

        logger.info("Encryption key loaded from %s", var)
        return cls(key)

    @property
    def key(self) -> bytes:
        return self._key

    def __repr__(self) -> str:
        return "KeyProvider(key=<redacted>)"
