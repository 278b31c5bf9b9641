"""
Credential Vault
================

Encrypts channel credential blobs and webhook secrets at rest.

- Fernet symmetric encryption keyed by CREDENTIALS_ENCRYPTION_KEY
- Without a key (DEBUG only) values are stored as plain text and a warning is logged
- Decrypt failures raise CredentialDecryptError; plaintext is never logged
"""

import json
import logging
from typing import Any, Dict, Optional

from cryptography.fernet import Fernet, InvalidToken

from ordersync.config import get_settings
from ordersync.exceptions import CredentialDecryptError

logger = logging.getLogger(__name__)

_PLAIN_PREFIX = "plain:"


class CredentialVault:

    def __init__(self, encryption_key: Optional[str] = None):
        key = encryption_key if encryption_key is not None else get_settings().CREDENTIALS_ENCRYPTION_KEY
        self._fernet: Optional[Fernet] = None
        if key:
            try:
                self._fernet = Fernet(key.encode() if isinstance(key, str) else key)
            except (ValueError, TypeError) as e:
                raise ValueError("CREDENTIALS_ENCRYPTION_KEY is not a valid Fernet key") from e
        else:
            logger.warning("CREDENTIALS_ENCRYPTION_KEY not set - channel credentials are stored unencrypted")

    @property
    def encrypted(self) -> bool:
        return self._fernet is not None

    def _encrypt(self, plaintext: str) -> str:
        if self._fernet is None:
            return _PLAIN_PREFIX + plaintext
        return self._fernet.encrypt(plaintext.encode()).decode()

    def _decrypt(self, ciphertext: str) -> str:
        if ciphertext.startswith(_PLAIN_PREFIX):
            return ciphertext[len(_PLAIN_PREFIX):]
        if self._fernet is None:
            raise CredentialDecryptError("Stored credentials are encrypted but no encryption key is configured")
        try:
            return self._fernet.decrypt(ciphertext.encode()).decode()
        except InvalidToken as e:
            logger.error("Failed to decrypt channel credentials - key mismatch or corrupted data")
            raise CredentialDecryptError("Stored credentials could not be decrypted") from e

    # --- Public API ---

    def encrypt_credentials(self, credentials: Dict[str, Any]) -> str:
        return self._encrypt(json.dumps(credentials, sort_keys=True))

    def decrypt_credentials(self, blob: Optional[str]) -> Dict[str, Any]:
        if not blob:
            return {}
        try:
            return json.loads(self._decrypt(blob))
        except json.JSONDecodeError as e:
            raise CredentialDecryptError("Stored credentials are not valid JSON") from e

    def encrypt_secret(self, secret: str) -> str:
        return self._encrypt(secret)

    def decrypt_secret(self, blob: Optional[str]) -> Optional[str]:
        if not blob:
            return None
        return self._decrypt(blob)


# Singleton instance
_vault: Optional[CredentialVault] = None


def get_credential_vault() -> CredentialVault:
    """Get or create the credential vault singleton."""
    global _vault
    if _vault is None:
        _vault = CredentialVault()
    return _vault
