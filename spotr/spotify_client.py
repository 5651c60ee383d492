"""Spotipy client setup and cleanup helpers."""

import logging

import spotipy

from .config import REQUEST_RETRIES, REQUESTS_TIMEOUT
from .token import Token


def configure_spotipy_logging() -> None:
    """Reduce Spotipy logger noise so command output stays readable."""
    for logger_name in ("spotipy", "spotipy.client", "spotipy.oauth2"):
        logger = logging.getLogger(logger_name)
        logger.setLevel(logging.CRITICAL)
        logger.propagate = False


# Apply logging policy at import so all consumers get consistent behavior.
configure_spotipy_logging()


def create_spotify_client(token: Token) -> spotipy.Spotify:
    """Create a Spotipy client authenticated with a bearer token."""
    # Token lifecycle is owned by OAuthFlow, so no auth manager is attached.
    return spotipy.Spotify(
        auth=token.access_token,
        requests_timeout=REQUESTS_TIMEOUT,
        retries=REQUEST_RETRIES,
        status_retries=REQUEST_RETRIES,
    )


def close_sessions(sp: spotipy.Spotify) -> None:
    """Close HTTP sessions held by Spotipy objects."""
    for obj in (sp, sp.auth_manager):
        # Spotipy exposes sessions on private attributes; auth_manager may be None.
        session = getattr(obj, "_session", None)
        close_fn = getattr(session, "close", None)
        if callable(close_fn):
            close_fn()
