"""Terminal prompts and plain-text output."""

import getpass
import sys

from .config import REDIRECT_URI

REGISTER_APP_HELP = (
    "To use this CLI application you need to register an application with spotify. "
    "You can register an application at 'https://developer.spotify.com/dashboard/applications'. "
    "It does not matter what you choose for name, description or application type. "
    f"When you have created the application click edit settings and add '{REDIRECT_URI}' "
    "to the redirect whitelist."
)


def display(value: str) -> None:
    print(value)


def confirm(prompt: str) -> bool:
    """Ask a yes/no question where an empty answer means yes."""
    answer = input(f":: {prompt}? [Y/n] ").strip()
    return answer in {"", "y", "Y"}


def prompt_new_client() -> tuple[str, str]:
    """Explain app registration and read a client id and secret."""
    display(REGISTER_APP_HELP)
    client_id = input(":: Client id? ").strip()
    # Secret is read without echo when a terminal is attached.
    if sys.stdin.isatty():
        secret = getpass.getpass(":: Client secret? ").strip()
    else:
        secret = input(":: Client secret? ").strip()
    return client_id, secret


def prompt_set_default() -> bool:
    return confirm("Set new client as default")


def format_client_lines(clients: list[tuple[str, bool]], default: str | None) -> list[str]:
    """One line per client: default marker, id and token state."""
    lines: list[str] = []
    for client_id, has_token in clients:
        marker = "*" if client_id == default else " "
        state = "authorized" if has_token else "no token"
        lines.append(f"{marker} {client_id} ({state})")
    return lines
