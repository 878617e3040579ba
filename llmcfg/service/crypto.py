from __future__ import annotations

import logging
import os
from pathlib import Path

from cryptography.fernet import Fernet, InvalidToken

from .errors import StoreError

ENCRYPTED_PREFIX = "fernet:"

logger = logging.getLogger(__name__)


class SecretCipher:
    """Encrypts secret fields before they reach the store file."""

    def __init__(self, key: bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def from_key_file(cls, key_path: Path) -> "SecretCipher":
        """Load the key at ``key_path``, generating it on first start."""
        try:
            if key_path.exists():
                key = key_path.read_bytes().strip()
            else:
                key = Fernet.generate_key()
                key_path.parent.mkdir(parents=True, exist_ok=True)
                key_path.write_bytes(key)
                os.chmod(key_path, 0o600)
                logger.info("generated store encryption key at %s", key_path)
            return cls(key)
        except OSError as exc:
            raise StoreError(f"Cannot access encryption key {key_path}: {exc}") from exc
        except ValueError as exc:
            raise StoreError(f"Encryption key {key_path} is invalid: {exc}") from exc

    def encrypt(self, value: str) -> str:
        return ENCRYPTED_PREFIX + self._fernet.encrypt(value.encode("utf-8")).decode("ascii")

    def decrypt(self, value: str) -> str:
        # Values written before encryption was enabled are read as they are.
        if not value.startswith(ENCRYPTED_PREFIX):
            return value
        try:
            return self._fernet.decrypt(value[len(ENCRYPTED_PREFIX):].encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise StoreError("Cannot decrypt a stored secret; the encryption key does not match") from exc
