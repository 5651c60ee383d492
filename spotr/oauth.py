"""Authorization-code flow: browser authorization, code exchange and refresh."""

import logging
import urllib.parse
import webbrowser
from collections.abc import Callable

import requests
from spotipy.cache_handler import MemoryCacheHandler
from spotipy.oauth2 import SpotifyOAuth, SpotifyOauthError

from .callback import CallbackListener
from .config import REDIRECT_URI, REQUESTS_TIMEOUT, SCOPE
from .errors import RefreshFailed, TokenRequestFailed
from .store import Config
from .token import Token

logger = logging.getLogger(__name__)


class OAuthFlow:
    """Obtain and refresh tokens for one client without any server component.

    Spotipy handles the token endpoint; its cache is kept in memory only, since
    tokens are persisted sealed in the config store instead.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str = REDIRECT_URI,
        scope: str = SCOPE,
        callback_timeout: float | None = None,
        listener_factory: Callable[[], CallbackListener] | None = None,
    ) -> None:
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self.callback_timeout = callback_timeout

        if listener_factory is None:
            redirect = urllib.parse.urlparse(redirect_uri)

            def listener_factory() -> CallbackListener:
                return CallbackListener(host=redirect.hostname, port=redirect.port)

        self._listener_factory = listener_factory
        self._cache_handler = MemoryCacheHandler()
        self._oauth = SpotifyOAuth(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            scope=scope,
            cache_handler=self._cache_handler,
            open_browser=False,
            requests_timeout=REQUESTS_TIMEOUT,
        )

    def authorize_url(self) -> str:
        return self._oauth.get_authorize_url()

    def open_authorization(self, url: str) -> None:
        """Open the authorization page, falling back to printing the URL."""
        try:
            opened = webbrowser.open(url)
        except webbrowser.Error:
            opened = False

        if not opened:
            print(f"Open '{url}' to authorize with spotify")

    def exchange_code(self, code: str) -> Token:
        try:
            # The full response lands in the memory cache handler.
            self._oauth.get_access_token(code, as_dict=False, check_cache=False)
        except (SpotifyOauthError, requests.RequestException) as exc:
            raise TokenRequestFailed(f"Token exchange failed: {exc}") from exc

        return Token.from_response(self._cache_handler.get_cached_token())

    def refresh(self, token: Token) -> Token:
        """Trade the stored refresh token for a new token; failures are not retried."""
        try:
            payload = self._oauth.refresh_access_token(token.refresh_token)
        except (SpotifyOauthError, requests.RequestException) as exc:
            raise RefreshFailed(f"Token refresh failed: {exc}") from exc

        return Token.from_response(payload, previous_refresh_token=token.refresh_token)

    def authorize(self) -> Token:
        """Run the browser flow and wait on this thread for the redirect."""
        # Listener must be bound before the browser opens.
        listener = self._listener_factory()
        try:
            self.open_authorization(self.authorize_url())
            code = listener.wait(self.callback_timeout)
        finally:
            listener.close()

        return self.exchange_code(code)

    def resolve_token(self, config: Config, client_id: str, token: Token | None) -> Token:
        """Return a usable token, authorizing or refreshing and persisting as needed."""
        if token is None:
            logger.info("no token stored for client %s, starting authorization", client_id)
            token = self.authorize()
        elif token.has_expired():
            logger.info("token for client %s expired, refreshing", client_id)
            token = self.refresh(token)
        else:
            return token

        config.set_token(client_id, token)
        return token
