"""
Display helpers: video output selection, X11 environment, resolution switching,
and screen blanking between pipelines.

All helpers are best-effort. Failures are logged at debug level and never raised.
"""

import os
import subprocess
from typing import Dict, List, Mapping, Optional, Sequence

from src.common.logger import setup_logger

logger = setup_logger(__name__)

X11_SOCKET = "/tmp/.X11-unix/X0"

TARGET_MODES = ("1280x720", "1280x720_60.00", "1280x720_60")

CONSOLE_DEVICES = ("/dev/tty1", "/dev/tty0", "/dev/console")

# clear screen, cursor home, hide cursor
CONSOLE_CLEAR = "\033[2J\033[H\033[?25l"

FB_DEVICE = "/dev/fb0"
FB_SYSFS_DIR = "/sys/class/graphics/fb0"

# Refuse to blank framebuffers larger than this
FB_MAX_BYTES = 64 * 1024 * 1024

FB_CHUNK = 256 * 1024

XAUTHORITY_FALLBACKS = ("/var/run/lightdm/.Xauthority", "/var/lib/gdm/.Xauthority")


def video_output(override: str = "", environ: Optional[Mapping[str, str]] = None,
                 x11_socket: str = X11_SOCKET) -> str:
    """
    Choose the player video output.

    x11 when a display server is reachable (inherited DISPLAY/WAYLAND_DISPLAY,
    or a local :0 socket when launched from SSH/console), otherwise fbdev2.
    A non-empty override (MPLAYER_VO) wins verbatim.
    """
    if override:
        return override
    env = os.environ if environ is None else environ
    if env.get("DISPLAY") or env.get("WAYLAND_DISPLAY"):
        return "x11"
    if os.path.exists(x11_socket):
        return "x11"
    return "fbdev2"


def x_display(environ: Optional[Mapping[str, str]] = None, x11_socket: str = X11_SOCKET) -> str:
    """DISPLAY for child processes: inherited value, else ':0' if X listens there, else ''."""
    env = os.environ if environ is None else environ
    display = env.get("DISPLAY", "")
    if display:
        return display
    if os.path.exists(x11_socket):
        return ":0"
    return ""


def xauthority_path(environ: Optional[Mapping[str, str]] = None,
                    x11_socket: str = X11_SOCKET,
                    home_root: str = "/home",
                    run_user_root: str = "/run/user",
                    fallbacks: Sequence[str] = XAUTHORITY_FALLBACKS) -> str:
    """
    Locate an X authority file so a root-run agent can draw on the user's X server.

    Search order: $XAUTHORITY, ~SUDO_USER, ~user, /run/user/<owner of X0>,
    then display-manager paths. Returns '' when nothing exists.
    """
    env = os.environ if environ is None else environ

    candidates: List[str] = []
    if env.get("XAUTHORITY"):
        candidates.append(env["XAUTHORITY"])

    for name in (env.get("SUDO_USER", ""), "user"):
        if name:
            candidates.append(os.path.join(home_root, name, ".Xauthority"))

    try:
        owner = os.stat(x11_socket).st_uid
        candidates.append(os.path.join(run_user_root, str(owner), ".Xauthority"))
    except OSError:
        pass

    candidates.extend(fallbacks)

    for path in candidates:
        if os.path.exists(path):
            return path
    return ""


def player_environment(vo: str, environ: Optional[Mapping[str, str]] = None,
                       x11_socket: str = X11_SOCKET) -> Optional[Dict[str, str]]:
    """
    Environment for the player process.

    Returns None (inherit unchanged) unless the output is X11 and a display is
    known, in which case DISPLAY and XAUTHORITY are set explicitly.
    """
    env = os.environ if environ is None else environ
    display = x_display(env, x11_socket)
    if vo != "x11" or not display:
        return None

    child = {k: v for k, v in env.items() if k not in ("DISPLAY", "XAUTHORITY")}
    child["DISPLAY"] = display
    xauth = xauthority_path(env, x11_socket)
    if xauth:
        child["XAUTHORITY"] = xauth
    else:
        logger.warning("No Xauthority file found; player may fail to open %s", display)
    return child


def _xrandr_env(display: str) -> Dict[str, str]:
    env = dict(os.environ)
    env["DISPLAY"] = display
    return env


def connected_output(xrandr_query: str) -> str:
    """First output name marked ' connected' in `xrandr -q` output."""
    for line in xrandr_query.splitlines():
        if " connected" in line:
            fields = line.split()
            if fields:
                return fields[0]
    return ""


def set_display_resolution(environ: Optional[Mapping[str, str]] = None,
                           x11_socket: str = X11_SOCKET) -> bool:
    """
    Switch the first connected X11 output to 1280x720.

    Returns:
        True if one of the candidate modes was applied
    """
    display = x_display(environ, x11_socket)
    if not display:
        return False

    env = _xrandr_env(display)
    try:
        query = subprocess.run(
            ["xrandr", "-q"], env=env, check=True,
            stdout=subprocess.PIPE, stderr=subprocess.DEVNULL, universal_newlines=True
        )
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug("xrandr query failed: %s", e)
        return False

    output = connected_output(query.stdout)
    if not output:
        return False

    for mode in TARGET_MODES:
        try:
            result = subprocess.run(
                ["xrandr", "--output", output, "--mode", mode], env=env, check=False,
                stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL
            )
        except OSError as e:
            logger.debug("xrandr --mode %s failed: %s", mode, e)
            return False
        if result.returncode == 0:
            logger.info("Display resolution: 1280x720 (%s on %s)", mode, output)
            return True

    return False


def _read_int(path: str) -> int:
    try:
        with open(path, 'r') as f:
            return int(f.read().strip())
    except (OSError, ValueError):
        return 0


def framebuffer_size(sysfs_dir: str = FB_SYSFS_DIR) -> int:
    """
    Byte size of the framebuffer from sysfs, or 0 when unknown or implausible.
    """
    width = height = 0
    try:
        with open(os.path.join(sysfs_dir, "virtual_size"), 'r') as f:
            parts = f.read().strip().split(",")
        if len(parts) >= 2:
            width, height = int(parts[0].strip()), int(parts[1].strip())
    except (OSError, ValueError):
        pass

    if width <= 0 or height <= 0:
        width = _read_int(os.path.join(sysfs_dir, "width"))
        height = _read_int(os.path.join(sysfs_dir, "height"))

    bpp = _read_int(os.path.join(sysfs_dir, "bits_per_pixel"))
    if width <= 0 or height <= 0 or bpp <= 0:
        return 0

    size = width * height * (bpp // 8)
    if size <= 0 or size > FB_MAX_BYTES:
        return 0
    return size


def clear_framebuffer(device: str = FB_DEVICE, sysfs_dir: str = FB_SYSFS_DIR) -> bool:
    """Fill the framebuffer with zeros (black). Returns True if anything was written."""
    size = framebuffer_size(sysfs_dir)
    if not size:
        return False

    try:
        with open(device, 'wb', buffering=0) as fb:
            zeros = bytes(FB_CHUNK)
            written = 0
            while written < size:
                n = min(FB_CHUNK, size - written)
                fb.write(zeros[:n])
                written += n
    except OSError as e:
        logger.debug("Framebuffer clear failed: %s", e)
        return False
    return True


def clear_console(devices: Sequence[str] = CONSOLE_DEVICES) -> Optional[str]:
    """Clear the first openable text console and hide its cursor."""
    for device in devices:
        try:
            with open(device, 'w') as tty:
                tty.write(CONSOLE_CLEAR)
        except OSError:
            continue
        return device
    return None


def blank_screen() -> None:
    """Black out console and framebuffer so no text flashes between pipelines."""
    clear_console()
    clear_framebuffer()
