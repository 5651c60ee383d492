"""Error taxonomy shared by the store, key provider and OAuth flow."""

import copy


class SpotrError(Exception):
    """Base class for every failure the CLI reports to the user."""


class UnavailableConfigDir(SpotrError):
    def __str__(self) -> str:
        return "Could not find app data dir"


class CryptographyError(SpotrError):
    def __str__(self) -> str:
        detail = self.args[0] if self.args else None
        if detail:
            return f"An error occurred during crypto operation: {detail}"
        return "An error occurred during crypto operation"


class ClientIdRequired(SpotrError):
    def __str__(self) -> str:
        return "No client id given and no default client configured (see `spotr client add`)"


class UnknownClient(SpotrError):
    """Raised when an operation names a client id the store does not know."""

    def __init__(self, client_id: str) -> None:
        # Keep the raw id as the only arg so copies rebuild identically.
        super().__init__(client_id)
        self.client_id = client_id

    def __str__(self) -> str:
        return f"Unknown client id '{self.client_id}'"


class SecretStoreError(SpotrError):
    """OS secret store failure, reduced to its message."""


class TokenRequestFailed(SpotrError):
    """Authorization or code exchange was rejected or could not be sent."""


class CallbackTimeout(TokenRequestFailed):
    def __str__(self) -> str:
        return "Timed out waiting for the authorization redirect"


class RefreshFailed(SpotrError):
    """Refreshing a stored token failed; the refresh token may still be valid."""


class MalformedConfig(SpotrError):
    """The config file exists but cannot be parsed."""


class PlaybackFailed(SpotrError):
    """The Web API rejected a playback request."""


class ConfigNotPersisted(SpotrError):
    def __str__(self) -> str:
        return "Could not read config but config was changed!"


def replay_error(error: BaseException) -> BaseException:
    """Return a fresh copy of a cached error, chained to the same cause."""
    replay = copy.copy(error)
    replay.__cause__ = error.__cause__
    return replay
