"""Lazily constructed, memoized Spotify API handle for one invocation."""

import logging
from collections.abc import Callable
from typing import Any

import spotipy

from .errors import ClientIdRequired, replay_error
from .oauth import OAuthFlow
from .spotify_client import close_sessions, create_spotify_client
from .store import Config
from .token import Token

logger = logging.getLogger(__name__)


class OnceCell:
    """Write-once cell holding either a value or the error that prevented it.

    The factory runs at most once. A cached error is re-raised as a fresh copy
    on every later access so each raise gets its own traceback.
    """

    def __init__(self) -> None:
        self._has_value = False
        self._value: Any = None
        self._error: Exception | None = None

    def get_or_init(self, factory: Callable[[], Any]) -> Any:
        if self._error is not None:
            raise replay_error(self._error)
        if self._has_value:
            return self._value

        try:
            value = factory()
        except Exception as exc:
            self._error = exc
            raise

        self._value = value
        self._has_value = True
        return value

    @property
    def value(self) -> Any:
        return self._value if self._has_value else None


class ClientBinding:
    """Turns (client id, config, OAuth flow) into an authenticated handle once.

    Nothing is decrypted and no network call is made until `get()` is first
    called, so commands that never touch the API never prompt for authorization.
    """

    def __init__(
        self,
        config: Config,
        client_id: str | None = None,
        callback_timeout: float | None = None,
        flow_factory: Callable[..., OAuthFlow] = OAuthFlow,
        client_factory: Callable[[Token], spotipy.Spotify] = create_spotify_client,
    ) -> None:
        self._config = config
        self._client_id = client_id
        self._callback_timeout = callback_timeout
        self._flow_factory = flow_factory
        self._client_factory = client_factory
        self._cell = OnceCell()

    def resolve_client_id(self) -> str:
        client_id = self._client_id or self._config.default
        if not client_id:
            raise ClientIdRequired()
        return client_id

    def _build(self) -> spotipy.Spotify:
        client_id = self.resolve_client_id()
        secret, token = self._config.get_client(client_id)
        logger.debug("binding spotify client %s", client_id)

        flow = self._flow_factory(client_id, secret, callback_timeout=self._callback_timeout)
        token = flow.resolve_token(self._config, client_id, token)
        return self._client_factory(token)

    def get(self) -> spotipy.Spotify:
        return self._cell.get_or_init(self._build)

    def close(self) -> None:
        sp = self._cell.value
        if sp is not None:
            close_sessions(sp)
