"""Shared configuration constants used across the application."""

# Application identity used for the data directory and keyring entry.
APP_NAME = "spotr"
APP_AUTHOR = "regiontog"

# Spotify OAuth scopes needed for reading and controlling playback.
SCOPE = "user-read-currently-playing user-modify-playback-state"

# Loopback redirect target; must be whitelisted in the Spotify app settings.
REDIRECT_HOST = "127.0.0.1"
REDIRECT_PORT = 9524
REDIRECT_URI = f"http://{REDIRECT_HOST}:{REDIRECT_PORT}"

# OS secret store entry holding the base64 master key.
KEYRING_SERVICE = APP_NAME
KEYRING_USERNAME = "master-key"

# AES-256-GCM widths in bytes.
KEY_LEN = 32
NONCE_LEN = 12

CONFIG_FILE_NAME = "config.json"

# Runtime tuning constants.
CALLBACK_POLL_INTERVAL = 0.1  # Seconds each listener poll waits for a request.
CALLBACK_READ_TIMEOUT = 1.0  # Seconds a connected client may stay silent.
REQUESTS_TIMEOUT = 10
REQUEST_RETRIES = 3
