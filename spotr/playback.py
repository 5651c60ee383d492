"""Playback commands: current track status, play and pause."""

from typing import Any

import spotipy
from spotipy.exceptions import SpotifyException

from .errors import PlaybackFailed


def format_duration(ms: int) -> str:
    minutes, seconds = divmod(max(0, ms) // 1000, 60)
    return f"{minutes}:{seconds:02d}"


def describe_playing(playing: dict[str, Any] | None) -> str:
    """Render a currently-playing payload as one line of text."""
    if not isinstance(playing, dict) or not isinstance(playing.get("item"), dict):
        return "Nothing is playing"

    item = playing["item"]
    artists = ", ".join(
        artist.get("name", "") for artist in item.get("artists", []) if isinstance(artist, dict)
    ) or "Unknown Artist"
    line = f"{artists} - {item.get('name', 'Unknown Track')}"

    progress_ms = playing.get("progress_ms")
    duration_ms = item.get("duration_ms")
    if isinstance(progress_ms, int) and isinstance(duration_ms, int):
        line = f"{line} [{format_duration(progress_ms)}/{format_duration(duration_ms)}]"

    if not playing.get("is_playing", False):
        line = f"{line} (paused)"
    return line


def resolve_device(sp: spotipy.Spotify) -> str | None:
    """Pick a usable playback device, preferring the active one."""
    devices = sp.devices().get("devices", [])

    for device in devices:
        if device.get("is_active") and not device.get("is_restricted", False):
            return device.get("id")

    # Otherwise fall back to any unrestricted device.
    for device in devices:
        if not device.get("is_restricted", False):
            return device.get("id")

    return None


def current_status(sp: spotipy.Spotify) -> str:
    try:
        return describe_playing(sp.current_user_playing_track())
    except SpotifyException as exc:
        raise PlaybackFailed(f"Could not read playback state: {exc}") from exc


def start_playback(sp: spotipy.Spotify) -> None:
    """Start or resume playback on the active (or first usable) device."""
    try:
        device_id = resolve_device(sp)
        if not device_id:
            raise PlaybackFailed("No available Spotify devices. Open Spotify on any device and try again.")
        sp.start_playback(device_id=device_id)
    except SpotifyException as exc:
        raise PlaybackFailed(f"Could not start playback: {exc}") from exc


def pause_playback(sp: spotipy.Spotify) -> None:
    try:
        sp.pause_playback()
    except SpotifyException as exc:
        raise PlaybackFailed(f"Could not pause playback: {exc}") from exc
