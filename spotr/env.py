"""Environment-variable helpers and data-directory resolution."""

import os
from pathlib import Path

from platformdirs import user_data_path

from .config import APP_AUTHOR, APP_NAME
from .errors import UnavailableConfigDir


def load_env_file(path: Path = Path(".env")) -> None:
    """Load simple KEY=VALUE pairs from a .env file into process env."""
    if not path.exists():
        return

    with path.open("r", encoding="utf-8") as env_file:
        for raw_line in env_file:
            line = raw_line.strip()
            # Skip comments, blank lines, and malformed rows.
            if not line or line.startswith("#") or "=" not in line:
                continue

            # Split once so values containing '=' are preserved.
            key, value = line.split("=", 1)
            os.environ.setdefault(key.strip(), value.strip().strip("'\""))


def config_dir() -> Path:
    """Return the directory holding the config file, honoring SPOTR_CONFIG_DIR."""
    override = os.getenv("SPOTR_CONFIG_DIR")
    path = Path(override).expanduser() if override else user_data_path(APP_NAME, APP_AUTHOR)

    # platformdirs falls back to a literal "~" when no home directory exists.
    if not path.is_absolute():
        raise UnavailableConfigDir()
    return path


def callback_timeout() -> float | None:
    """Seconds to wait for the OAuth redirect, or None to wait indefinitely."""
    raw_value = os.getenv("SPOTR_CALLBACK_TIMEOUT", "").strip()
    if not raw_value:
        return None

    try:
        timeout = float(raw_value)
    except ValueError:
        raise ValueError(f"SPOTR_CALLBACK_TIMEOUT must be a number of seconds, got {raw_value!r}") from None

    if timeout <= 0:
        raise ValueError(f"SPOTR_CALLBACK_TIMEOUT must be positive, got {raw_value!r}")
    return timeout
