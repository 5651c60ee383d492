"""Master key provider backed by the OS secret store."""

import base64
import binascii
import logging

import keyring
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from keyring.errors import KeyringError

from .config import KEY_LEN, KEYRING_SERVICE, KEYRING_USERNAME
from .errors import SecretStoreError

logger = logging.getLogger(__name__)


def _store_new_key() -> bytes:
    key = AESGCM.generate_key(bit_length=KEY_LEN * 8)
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, base64.b64encode(key).decode("ascii"))
    except KeyringError as exc:
        raise SecretStoreError(f"Could not store master key in OS secret store: {exc}") from exc
    return key


def _decode_key(encoded: str) -> bytes | None:
    try:
        key = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        return None
    # Length is the only corruption signal; the key carries no integrity tag.
    if len(key) != KEY_LEN:
        return None
    return key


def get_or_create_key() -> bytes:
    """Return the persistent master key, generating and storing it on first use.

    A stored value that does not decode to exactly KEY_LEN bytes is treated as
    corrupt and overwritten with a fresh key. Secret store failures raise
    SecretStoreError; an ephemeral key is never substituted.
    """
    try:
        encoded = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except KeyringError as exc:
        raise SecretStoreError(f"Could not read master key from OS secret store: {exc}") from exc

    if encoded is None:
        logger.info("no master key in OS secret store, generating one")
        return _store_new_key()

    key = _decode_key(encoded)
    if key is None:
        logger.warning("stored master key is malformed, replacing it")
        return _store_new_key()

    return key
