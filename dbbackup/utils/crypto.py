"""
Encryption utilities for secrets stored in the dbbackup config file
(database passwords, MongoDB URI, Azure connection string).

Uses Fernet symmetric encryption with a key derived from a secret key that
comes from DBBACKUP_SECRET_KEY or a per-user key file.
"""

import os
import base64
import secrets
from typing import Mapping, Optional

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC


DEFAULT_SECRET_KEY_FILE = os.path.join('~', '.dbbackup', 'secret.key')
# The secret key itself is the secret; the salt only versions the derivation
KEY_SALT = b'dbbackup_config_key_salt_v1'


class CryptoManager:
    """Handles encryption and decryption of config file secrets."""

    def __init__(self):
        self._fernet = None

    def initialize(self, secret_key: str):
        """
        Initialize the encryption manager with a secret key.

        Args:
            secret_key: Secret to derive the Fernet key from
        """
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=KEY_SALT,
            iterations=100000,
        )
        key = base64.urlsafe_b64encode(kdf.derive(secret_key.encode()))

        self._fernet = Fernet(key)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a string.

        Args:
            plaintext: String to encrypt

        Returns:
            Fernet token (URL-safe base64 text)

        Raises:
            RuntimeError: If crypto manager not initialized
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        return self._fernet.encrypt(plaintext.encode()).decode()

    def decrypt(self, token: str) -> str:
        """
        Decrypt a string.

        Args:
            token: Fernet token produced by encrypt()

        Returns:
            Decrypted plaintext string

        Raises:
            RuntimeError: If crypto manager not initialized
            cryptography.fernet.InvalidToken: If decryption fails
        """
        if not self._fernet:
            raise RuntimeError("CryptoManager not initialized. Call initialize() first.")

        return self._fernet.decrypt(token.encode()).decode()

    @property
    def is_initialized(self) -> bool:
        """Check if the crypto manager has been initialized."""
        return self._fernet is not None


def load_or_create_secret_key(path: str) -> str:
    """
    Read the secret key file, creating it (mode 0600) on first use.

    Args:
        path: Key file location

    Returns:
        Secret key string
    """
    path = os.path.expanduser(path)

    if os.path.exists(path):
        with open(path, 'r') as f:
            return f.read().strip()

    os.makedirs(os.path.dirname(path) or '.', exist_ok=True)
    secret_key = secrets.token_hex(32)

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(secret_key)

    return secret_key


def get_crypto_manager(environ: Optional[Mapping[str, str]] = None) -> CryptoManager:
    """
    Build a CryptoManager from DBBACKUP_SECRET_KEY or the key file.

    Args:
        environ: Environment mapping (defaults to os.environ)

    Returns:
        Initialized CryptoManager
    """
    environ = os.environ if environ is None else environ

    secret_key = environ.get('DBBACKUP_SECRET_KEY')
    if not secret_key:
        key_file = environ.get('DBBACKUP_SECRET_KEY_FILE', DEFAULT_SECRET_KEY_FILE)
        secret_key = load_or_create_secret_key(key_file)

    cm = CryptoManager()
    cm.initialize(secret_key)
    return cm
