# rocket/core/encryption.py
"""
Symmetric encryption keyed by the application's KEY setting
"""

import base64
import logging

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from rocket.core.exceptions import ConfigMissingError

logger = logging.getLogger(__name__)

KDF_SALT = b'rocket.encryption'
KDF_ITERATIONS = 100000


class Encryption:
    """Authenticated encryption of short strings (tokens, secrets at rest)"""

    def __init__(self, key: str):
        if not key:
            raise ConfigMissingError("KEY must be set to use encryption")

        # Derive a Fernet key from the configured master key
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KDF_SALT,
            iterations=KDF_ITERATIONS,
        )
        self.cipher = Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode('utf-8'))))

    def encrypt(self, text: str) -> str:
        return self.cipher.encrypt(text.encode('utf-8')).decode('ascii')

    def decrypt(self, token: str) -> str:
        """
        Decrypt a value produced by ``encrypt``

        Raises:
            ValueError: if the token was tampered with or made with another key
        """
        try:
            return self.cipher.decrypt(token.encode('ascii')).decode('utf-8')
        except InvalidToken as e:
            logger.error("Decryption failed: invalid token")
            raise ValueError("invalid encrypted value") from e
