"""
Startup checks run once before the agent loop.
"""

import shutil
from typing import Callable, Optional

from src.common.logger import setup_logger

from . import display
from .playback import PLAYER_MPLAYER, PLAYER_MPV

logger = setup_logger(__name__)

ASOUND_CARDS = "/proc/asound/cards"


class PreflightError(Exception):
    """A required external binary is missing."""
    pass


def detect_player(which: Callable[[str], Optional[str]] = shutil.which) -> str:
    """
    Pick the video player: mplayer preferred, mpv as fallback.

    Raises:
        PreflightError: Neither is on PATH
    """
    for name in (PLAYER_MPLAYER, PLAYER_MPV):
        if which(name):
            logger.info("Check: %s found", name)
            return name
    raise PreflightError(
        "mplayer or mpv not found. Install with: apt install mplayer  or  pacman -S mpv"
    )


def check_ffmpeg(which: Callable[[str], Optional[str]] = shutil.which) -> None:
    if not which("ffmpeg"):
        raise PreflightError(
            "ffmpeg not found. Install with: apt install ffmpeg  or  pacman -S ffmpeg"
        )
    logger.info("Check: ffmpeg found")


def has_sound_card(cards_path: str = ASOUND_CARDS) -> bool:
    """True when the ALSA card list names at least one card."""
    try:
        with open(cards_path, 'r') as f:
            data = f.read()
    except OSError:
        return False
    return bool(data.strip()) and "no soundcards" not in data


def run_startup_checks(
    which: Callable[[str], Optional[str]] = shutil.which,
    cards_path: str = ASOUND_CARDS,
    set_resolution: Callable[[], bool] = display.set_display_resolution
) -> str:
    """
    Verify external dependencies and prepare the display.

    Returns:
        Name of the player binary to use

    Raises:
        PreflightError: mplayer/mpv or ffmpeg missing
    """
    player = detect_player(which)
    check_ffmpeg(which)

    if has_sound_card(cards_path):
        logger.info("Check: sound card detected")
    else:
        logger.warning("No sound cards found (aplay -l). Audio may not work.")

    if display.x_display():
        set_resolution()
    else:
        logger.info("Check: X11 not active, output goes to the framebuffer at boot resolution")

    return player
