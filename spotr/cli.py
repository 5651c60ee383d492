"""CLI entrypoint and high-level application orchestration."""

import argparse
import logging
import sys

from .binding import ClientBinding
from .env import callback_timeout, load_env_file
from .errors import SpotrError
from .playback import current_status, pause_playback, start_playback
from .store import Config
from .ui import display, format_client_lines, prompt_new_client, prompt_set_default

logger = logging.getLogger(__name__)

VERBOSITY_LEVELS = {
    0: logging.CRITICAL + 1,
    1: logging.ERROR,
    2: logging.WARNING,
    3: logging.INFO,
}


def configure_logging(verbosity: int) -> None:
    """Map the repeated -v flag onto a root logging level."""
    level = VERBOSITY_LEVELS.get(verbosity, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def run_status(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    display(current_status(binding.get()))


def run_play(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    start_playback(binding.get())


def run_pause(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    pause_playback(binding.get())


def run_client_list(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    clients = config.clients()
    if not clients:
        display("No clients registered. Add one with `spotr client add`.")
        return

    for line in format_client_lines(clients, config.default):
        display(line)


def run_client_add(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    client_id, secret = prompt_new_client()
    if not client_id or not secret:
        raise SpotrError("Client id and secret must not be empty")

    config.add_client(client_id, secret)
    # The first client becomes the default without asking.
    if len(config.clients()) == 1 or prompt_set_default():
        config.set_default(client_id)


def run_client_remove(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    config.remove_client(args.id)


def run_client_eject(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    config.eject_token(args.id)


def run_client_default(args: argparse.Namespace, config: Config, binding: ClientBinding) -> None:
    config.set_default(args.id)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse global options and the subcommand to run."""
    parser = argparse.ArgumentParser(prog="spotr", description="Control Spotify playback from the terminal")
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log output (repeat up to four times).",
    )
    parser.add_argument(
        "-i",
        "--client-id",
        help="Client id of the spotify application to use.",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("status", aliases=["s"], help="Gets metadata about the currently playing song.").set_defaults(
        handler=run_status
    )
    commands.add_parser("play", help="Starts or resumes playback.").set_defaults(handler=run_play)
    commands.add_parser("pause", help="Pauses playback.").set_defaults(handler=run_pause)

    client_parser = commands.add_parser("client", help="Manage registered spotify applications.")
    client_commands = client_parser.add_subparsers(dest="client_command", required=True)
    client_commands.add_parser("list", help="List registered clients.").set_defaults(handler=run_client_list)
    client_commands.add_parser("add", help="Register a new client.").set_defaults(handler=run_client_add)

    for name, handler, help_text in (
        ("remove", run_client_remove, "Forget a client and its token."),
        ("eject", run_client_eject, "Drop the stored token of a client."),
        ("default", run_client_default, "Use a client when --client-id is not given."),
    ):
        sub_parser = client_commands.add_parser(name, help=help_text)
        sub_parser.add_argument("id", help="Client id.")
        sub_parser.set_defaults(handler=handler)

    return parser.parse_args(argv)


def load_config() -> Config:
    """Load the persisted config, or fall back to a detached empty one."""
    try:
        return Config.load()
    except (SpotrError, OSError) as exc:
        # Writing a dirty detached config raises ConfigNotPersisted.
        logger.error("%s", exc)
        return Config()


def main(argv: list[str] | None = None) -> int:
    """Run one command against the config, persisting it only when it changed."""
    args = parse_args(argv)
    configure_logging(args.verbose)
    load_env_file()

    config = load_config()
    binding: ClientBinding | None = None
    try:
        binding = ClientBinding(config, client_id=args.client_id, callback_timeout=callback_timeout())
        if config.legacy:
            config.migrate_legacy()

        args.handler(args, config, binding)
        config.write_if_dirty()
    except (SpotrError, OSError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    finally:
        # Ensure HTTP sessions are closed on normal exit or error.
        if binding is not None:
            binding.close()

    return 0
