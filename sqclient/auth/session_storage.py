"""
Session Storage for the SideQuest session client.

This module persists the session snapshot (user, tokens, pending login code and
achievement cache) to a single JSON document, optionally Fernet-encrypted with a
key kept in the system keyring or in a key file beside the snapshot.
"""

import os
import json
import logging
import base64
from pathlib import Path
from typing import Optional, Union

from cryptography.fernet import Fernet
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from sqshared.exceptions import StorageError
from sqshared.models import SessionSnapshot

logger = logging.getLogger(__name__)

KEYRING_SERVICE_NAME = "sidequest-session-client"


def _generate_encryption_key() -> bytes:
    password = os.urandom(32)
    salt = os.urandom(16)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        iterations=100000,
    )
    return base64.urlsafe_b64encode(kdf.derive(password))


def _check_keyring_availability() -> bool:
    """Check if system keyring is available."""
    try:
        import keyring
        test_key = f"{KEYRING_SERVICE_NAME}_test"
        keyring.set_password(KEYRING_SERVICE_NAME, test_key, "test")
        result = keyring.get_password(KEYRING_SERVICE_NAME, test_key)
        keyring.delete_password(KEYRING_SERVICE_NAME, test_key)
        return result == "test"
    except Exception as e:
        logger.debug(f"Keyring not available: {e}")
        return False


def load_or_create_encryption_key(snapshot_path: Union[str, Path], use_keyring: bool = True) -> bytes:
    """
    Get or create the encryption key for a session snapshot.

    The key is looked up in the system keyring under the snapshot's path when
    the keyring is usable, otherwise in ``<snapshot>.key``. A new key is
    generated and stored the same way when none exists yet.

    Args:
        snapshot_path: Path of the session snapshot the key protects
        use_keyring: Whether the system keyring may be used

    Returns:
        A urlsafe base64 encoded Fernet key
    """
    snapshot_path = Path(snapshot_path)
    key_name = f"encryption_key:{snapshot_path.resolve()}"

    if use_keyring and _check_keyring_availability():
        import keyring
        try:
            stored_key = keyring.get_password(KEYRING_SERVICE_NAME, key_name)
            if stored_key:
                return stored_key.encode()

            key = _generate_encryption_key()
            keyring.set_password(KEYRING_SERVICE_NAME, key_name, key.decode())
            logger.info("Created session encryption key in system keyring")
            return key
        except Exception as e:
            logger.warning(f"Failed to use keyring for encryption key, using key file: {e}")

    key_path = snapshot_path.with_name(snapshot_path.name + '.key')
    if key_path.exists():
        return key_path.read_bytes().strip()

    key = _generate_encryption_key()
    fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(key)

    logger.info(f"Created session encryption key file: {key_path}")
    return key


class SessionStore:
    """
    Persistent storage for the session snapshot.

    A snapshot that cannot be read back is treated as absent so that a corrupt
    file never blocks startup; the next save overwrites it.
    """

    def __init__(self, path: Union[str, Path], encryption_key: Optional[bytes] = None):
        self.path = Path(path)
        self._fernet = Fernet(encryption_key) if encryption_key else None

        logger.info(f"Session storage initialized: {self.path} (encrypted: {self.is_encrypted})")

    @property
    def is_encrypted(self) -> bool:
        return self._fernet is not None

    def load(self) -> Optional[SessionSnapshot]:
        """
        Load the session snapshot.

        Returns:
            The stored snapshot, or None if there is none or it cannot be read
        """
        if not self.path.exists():
            logger.debug("Session file does not exist")
            return None

        try:
            raw = self.path.read_bytes()
            if self._fernet:
                raw = self._fernet.decrypt(raw)

            snapshot = SessionSnapshot.from_dict(json.loads(raw.decode('utf-8')))
            logger.debug(f"Session loaded from {self.path}")
            return snapshot

        except Exception as e:
            logger.warning(f"Failed to load session data from {self.path}, starting fresh: {e}")
            return None

    def save(self, snapshot: SessionSnapshot) -> None:
        """
        Save the session snapshot, replacing the previous one.

        Raises:
            StorageError: If the snapshot cannot be written
        """
        data = json.dumps(snapshot.to_dict(), indent=2).encode('utf-8')
        if self._fernet:
            data = self._fernet.encrypt(data)

        # Write to temporary file first, then rename for atomic operation
        temp_file = self.path.with_name(self.path.name + '.tmp')

        try:
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())

            os.replace(temp_file, self.path)
            logger.debug(f"Session saved to {self.path}")

        except OSError as e:
            logger.error(f"Failed to save session data: {e}")
            temp_file.unlink(missing_ok=True)
            raise StorageError(f"Failed to save session data: {e}", path=str(self.path), cause=e)
