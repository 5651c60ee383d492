"""Sealed config store: client secrets and tokens encrypted at rest.

Every value is sealed with AES-256-GCM under the master key from the OS secret
store. All encryptions draw their nonce from one counter persisted in the
config file, so no nonce is ever used twice under the same key, whichever
client or field is being sealed.
"""

import base64
import json
import logging
import os
import stat
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import CONFIG_FILE_NAME, KEY_LEN, NONCE_LEN
from .env import config_dir
from .errors import ConfigNotPersisted, CryptographyError, MalformedConfig, UnknownClient
from .masterkey import get_or_create_key
from .token import Token

logger = logging.getLogger(__name__)


def advance_nonce(nonce: bytes) -> bytes:
    """Return `nonce` incremented by one as a big-endian unsigned integer.

    Raises CryptographyError when every byte is already 0xFF: wrapping to zero
    would reuse a nonce, so the key's encryption capacity is exhausted.
    """
    if all(byte == 0xFF for byte in nonce):
        raise CryptographyError("nonce space exhausted for this key")

    advanced = bytearray(nonce)
    for index in reversed(range(len(advanced))):
        if advanced[index] == 0xFF:
            advanced[index] = 0
        else:
            advanced[index] += 1
            break

    return bytes(advanced)


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _b64decode(value: str) -> bytes:
    return base64.b64decode(value, validate=True)


@dataclass(frozen=True)
class EncryptedBlob:
    """AEAD nonce plus ciphertext with the authentication tag appended."""

    nonce: bytes
    data: bytes

    def to_dict(self) -> dict[str, str]:
        return {"nonce": _b64encode(self.nonce), "data": _b64encode(self.data)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EncryptedBlob":
        return cls(nonce=_b64decode(data["nonce"]), data=_b64decode(data["data"]))


@dataclass
class ClientRecord:
    """One registered application. No token means never authorized or ejected."""

    enc_secret: EncryptedBlob
    enc_token: EncryptedBlob | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "enc_secret": self.enc_secret.to_dict(),
            "enc_token": self.enc_token.to_dict() if self.enc_token else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ClientRecord":
        raw_token = data.get("enc_token")
        return cls(
            enc_secret=EncryptedBlob.from_dict(data["enc_secret"]),
            enc_token=EncryptedBlob.from_dict(raw_token) if raw_token else None,
        )


def _legacy_token(client_id: str, raw_token: Any) -> Token | None:
    """Read an unencrypted token, flat or nested as {"token": {...}, "expires_at": N}.

    Unreadable tokens are dropped; the client then simply needs re-authorizing.
    """
    if raw_token is None:
        return None

    try:
        if isinstance(raw_token.get("token"), dict):
            raw_token = {**raw_token["token"], "expires_at": raw_token["expires_at"]}
        return Token.from_dict(raw_token)
    except (AttributeError, KeyError, TypeError, ValueError):
        logger.warning("dropping unreadable legacy token of client %s", client_id)
        return None


class Config:
    """All known clients, the default client id and the shared nonce counter.

    A Config built without a path is detached: it can be used for one run but
    must not be mutated, since there is nowhere to persist it.
    """

    def __init__(
        self,
        path: Path | None = None,
        key_provider: Callable[[], bytes] = get_or_create_key,
    ) -> None:
        self.path = path
        self.nonce = bytes(NONCE_LEN)
        self.default: str | None = None
        self._clients: dict[str, ClientRecord] = {}
        # Records from the old unencrypted format, kept until migrate_legacy().
        self.legacy: dict[str, dict[str, Any]] = {}
        self._dirty = False
        self._key_provider = key_provider
        self._aead: AESGCM | None = None

    @classmethod
    def load(
        cls,
        path: Path | None = None,
        key_provider: Callable[[], bytes] = get_or_create_key,
    ) -> "Config":
        """Read the config file, or start empty when it is missing or blank."""
        if path is None:
            path = config_dir() / CONFIG_FILE_NAME
        logger.debug("config path: %s", path)

        config = cls(path, key_provider)
        if not path.exists() or path.stat().st_size == 0:
            logger.info("empty config file, using default")
            return config

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
            config._apply(payload)
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise MalformedConfig(f"Could not parse config file {path}: {exc}") from exc

        return config

    def _apply(self, payload: dict[str, Any]) -> None:
        raw_nonce = payload.get("nonce")
        if raw_nonce:
            nonce = _b64decode(raw_nonce)
            if len(nonce) != NONCE_LEN:
                raise CryptographyError(f"stored nonce is {len(nonce)} bytes, expected {NONCE_LEN}")
            self.nonce = nonce

        for client_id, raw in (payload.get("clients") or {}).items():
            if not isinstance(raw, dict):
                raise ValueError(f"client {client_id!r} is not an object")
            if "enc_secret" in raw:
                self._clients[client_id] = ClientRecord.from_dict(raw)
            elif "secret" in raw:
                self.legacy[client_id] = raw
            else:
                raise ValueError(f"client {client_id!r} has no secret")

        default = payload.get("default")
        if default is not None and default not in self._clients and default not in self.legacy:
            logger.warning("default client %r does not exist, ignoring it", default)
            default = None
        self.default = default

    def to_dict(self) -> dict[str, Any]:
        clients: dict[str, Any] = dict(self.legacy)
        clients.update((client_id, record.to_dict()) for client_id, record in self._clients.items())
        return {
            "nonce": _b64encode(self.nonce),
            "default": self.default,
            "clients": clients,
        }

    # -- encryption ---------------------------------------------------------

    def _cipher(self) -> AESGCM:
        if self._aead is None:
            key = self._key_provider()
            if len(key) != KEY_LEN:
                raise CryptographyError(f"master key is {len(key)} bytes, expected {KEY_LEN}")
            self._aead = AESGCM(key)
        return self._aead

    def encrypt_and_store(self, value: Any) -> EncryptedBlob:
        """Seal the JSON encoding of `value` under the next counter nonce."""
        aead = self._cipher()
        # Counter is committed before sealing.
        self.nonce = advance_nonce(self.nonce)
        self._dirty = True

        data = aead.encrypt(self.nonce, json.dumps(value).encode("utf-8"), None)
        return EncryptedBlob(nonce=self.nonce, data=data)

    def decrypt(self, blob: EncryptedBlob) -> Any:
        if len(blob.nonce) != NONCE_LEN:
            raise CryptographyError(f"sealed value has a {len(blob.nonce)} byte nonce")

        try:
            plaintext = self._cipher().decrypt(blob.nonce, blob.data, None)
        except InvalidTag as exc:
            raise CryptographyError("sealed value failed authentication") from exc

        return json.loads(plaintext)

    # -- clients ------------------------------------------------------------

    def _record(self, client_id: str) -> ClientRecord:
        record = self._clients.get(client_id)
        if record is None:
            if client_id in self.legacy:
                raise MalformedConfig(f"Client '{client_id}' is stored unencrypted and must be migrated first")
            raise UnknownClient(client_id)
        return record

    def clients(self) -> list[tuple[str, bool]]:
        """Return (client id, has token) pairs sorted by id."""
        return [(client_id, record.enc_token is not None) for client_id, record in sorted(self._clients.items())]

    def get_client(self, client_id: str) -> tuple[str, Token | None]:
        """Decrypt the secret and token (if any) of one client."""
        record = self._record(client_id)
        secret = self.decrypt(record.enc_secret)
        token = Token.from_dict(self.decrypt(record.enc_token)) if record.enc_token else None
        return secret, token

    def add_client(self, client_id: str, secret: str) -> None:
        enc_secret = self.encrypt_and_store(secret)
        self._clients[client_id] = ClientRecord(enc_secret=enc_secret)
        self.legacy.pop(client_id, None)
        self._dirty = True

    def set_token(self, client_id: str, token: Token) -> None:
        record = self._record(client_id)
        record.enc_token = self.encrypt_and_store(token.to_dict())
        self._dirty = True

    def eject_token(self, client_id: str) -> None:
        record = self._record(client_id)
        if record.enc_token is not None:
            record.enc_token = None
            self._dirty = True

    def remove_client(self, client_id: str) -> None:
        if client_id in self.legacy and client_id not in self._clients:
            del self.legacy[client_id]
        else:
            self._record(client_id)
            del self._clients[client_id]

        # Keep `default` pointing at an existing client.
        if self.default == client_id:
            self.default = None
        self._dirty = True

    def set_default(self, client_id: str) -> None:
        self._record(client_id)
        if self.default != client_id:
            self.default = client_id
            self._dirty = True

    def migrate_legacy(self) -> list[str]:
        """Seal every record stored in the old unencrypted format.

        Returns the migrated client ids. Legacy records are only ever read
        through this explicit step.
        """
        migrated: list[str] = []
        for client_id, raw in sorted(self.legacy.items()):
            token = _legacy_token(client_id, raw.get("token"))

            record = ClientRecord(enc_secret=self.encrypt_and_store(raw["secret"]))
            if token is not None:
                record.enc_token = self.encrypt_and_store(token.to_dict())
            self._clients[client_id] = record
            migrated.append(client_id)

        if migrated:
            logger.info("sealed %d legacy client record(s)", len(migrated))
            self.legacy.clear()
            self._dirty = True
        return migrated

    # -- persistence --------------------------------------------------------

    def is_dirty(self) -> bool:
        return self._dirty

    def write_if_dirty(self) -> bool:
        """Rewrite the whole config file when something changed; return whether it wrote."""
        if not self._dirty:
            return False

        if self.path is None:
            raise ConfigNotPersisted()

        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Created owner-only; an existing file is narrowed to 0600 as well.
        fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, stat.S_IRUSR | stat.S_IWUSR)
        with os.fdopen(fd, "w", encoding="utf-8") as file:
            json.dump(self.to_dict(), file, indent=2)
        os.chmod(self.path, stat.S_IRUSR | stat.S_IWUSR)

        logger.debug("config written to %s", self.path)
        self._dirty = False
        return True
