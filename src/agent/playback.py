"""
Playback Supervisor - runs the gapless playback pipeline.

    ffmpeg (concat demuxer, endless loop, stream copy) --matroska--> player

The supervisor owns the single pipeline handle. Starting and stopping happen
under one lock, so at most one pipeline is alive and a stop never leaves one
of the two processes behind.
"""

import os
import subprocess
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional

from src.common.logger import setup_logger

from . import display
from .media_cache import list_video_files

logger = setup_logger(__name__)

CONCAT_FILENAME = ".concat.txt"

PLAYER_MPLAYER = "mplayer"
PLAYER_MPV = "mpv"

DEFAULT_AUDIO_DEVICE = "plughw:1,0"


@dataclass
class Pipeline:
    """A running muxer/player pair and the signal that cancels it."""
    muxer: subprocess.Popen
    player: subprocess.Popen
    cancel: threading.Event = field(default_factory=threading.Event)
    waiter: Optional[threading.Thread] = None


def write_concat_file(media_dir: str, files: List[str]) -> str:
    """
    Write the ffmpeg concat list for files.

    Single quotes inside paths are doubled.

    Returns:
        Path of the written list
    """
    concat_path = os.path.join(media_dir, CONCAT_FILENAME)
    lines = ["file '%s'\n" % path.replace("'", "''") for path in files]
    fd = os.open(concat_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.writelines(lines)
    return concat_path


def build_muxer_command(concat_path: str) -> List[str]:
    """ffmpeg: loop the concat list forever, regenerate timestamps, copy streams to MKV on stdout."""
    return [
        "ffmpeg",
        "-stream_loop", "-1",
        "-f", "concat", "-safe", "0", "-i", concat_path,
        "-fflags", "+genpts",
        "-c", "copy", "-f", "matroska", "-",
    ]


def build_player_command(player: str, vo: str, audio_device: str = DEFAULT_AUDIO_DEVICE) -> List[str]:
    """
    Player arguments: read stdin, scale to 1280x720, ALSA audio, chosen
    video output, fullscreen under X11.
    """
    fullscreen = vo == "x11"

    if player == PLAYER_MPV:
        # mpv has no fbdev2 output; drm is its console equivalent
        mpv_vo = "drm" if vo == "fbdev2" else vo
        args = [
            "mpv", "-",
            "--vo=" + mpv_vo,
            "--ao=alsa",
            "--audio-device=alsa/" + audio_device,
            "--vf=scale=1280:720",
            "--cache=yes", "--demuxer-max-bytes=150M",
        ]
        if fullscreen:
            args.append("--fs")
        return args

    args = [
        "mplayer",
        "-ao", "alsa:device=" + audio_device,
        "-vo", vo,
        "-vf", "scale=1280:720",
        "-lavdopts", "lowres=0:fast",
        "-cache", "32768",
    ]
    if fullscreen:
        args.append("-fs")
    args.append("-")
    return args


def _kill(process: Optional[subprocess.Popen]) -> None:
    if process is None:
        return
    try:
        if process.poll() is None:
            process.kill()
        process.wait(timeout=5)
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.warning("Could not reap pid %s: %s", process.pid, e)


class PlaybackSupervisor:
    """Starts, watches and tears down the ffmpeg -> player pipeline."""

    def __init__(
        self,
        media_dir: str,
        player: str = PLAYER_MPLAYER,
        video_output_override: str = "",
        audio_device: str = DEFAULT_AUDIO_DEVICE,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
        environ: Optional[Mapping[str, str]] = None,
        blank: Callable[[], None] = display.blank_screen
    ):
        """
        Args:
            media_dir: Absolute media directory holding the videos
            player: Player binary chosen by preflight ("mplayer" or "mpv")
            video_output_override: MPLAYER_VO value, empty for auto
            audio_device: ALSA device for the player
            popen: Process factory
            environ: Environment to derive the player's from (os.environ if None)
            blank: Screen blanking hook run after teardown
        """
        self.media_dir = media_dir
        self.player = player
        self.video_output_override = video_output_override
        self.audio_device = audio_device
        self._popen = popen
        self._environ = environ
        self._blank = blank

        self._lock = threading.Lock()
        self._pipeline: Optional[Pipeline] = None

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._pipeline is not None

    @property
    def video_output(self) -> str:
        return display.video_output(self.video_output_override, self._environ)

    def start(self) -> bool:
        """
        Start a pipeline over the videos currently in the media directory.

        Any pipeline still registered is torn down first.

        Returns:
            True if both processes were spawned
        """
        files = list_video_files(self.media_dir)
        if not files:
            logger.warning("No playable files in %s", self.media_dir)
            return False

        with self._lock:
            if self._pipeline is not None:
                self._teardown_locked()

            try:
                concat_path = write_concat_file(self.media_dir, files)
            except OSError as e:
                logger.error("Concat list write failed: %s", e)
                return False

            vo = self.video_output
            try:
                muxer = self._popen(
                    build_muxer_command(concat_path),
                    stdin=subprocess.DEVNULL,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                )
            except OSError as e:
                logger.error("ffmpeg start failed: %s", e)
                return False

            try:
                player = self._popen(
                    build_player_command(self.player, vo, self.audio_device),
                    stdin=muxer.stdout,
                    env=display.player_environment(vo, self._environ),
                )
            except OSError as e:
                logger.error("%s start failed: %s", self.player, e)
                _kill(muxer)
                return False
            finally:
                # player holds its own copy of the read end
                if muxer.stdout is not None:
                    muxer.stdout.close()

            pipeline = Pipeline(muxer=muxer, player=player)
            pipeline.waiter = threading.Thread(
                target=self._wait_player,
                args=(pipeline,),
                name="PlayerWaiter",
                daemon=True
            )
            self._pipeline = pipeline
            pipeline.waiter.start()

        logger.info(
            "Playback started: %d file(s), ffmpeg pid %s -> %s pid %s (vo=%s)",
            len(files), muxer.pid, self.player, player.pid, vo
        )
        return True

    def _wait_player(self, pipeline: Pipeline) -> None:
        """Block on the player; when it exits, take the muxer down with it."""
        code = pipeline.player.wait()

        with self._lock:
            _kill(pipeline.muxer)
            if self._pipeline is pipeline:
                self._pipeline = None

        if not pipeline.cancel.is_set():
            logger.warning("%s exited with code %s; pipeline stopped", self.player, code)

    def _teardown_locked(self) -> Optional[Pipeline]:
        pipeline = self._pipeline
        if pipeline is None:
            return None
        pipeline.cancel.set()
        _kill(pipeline.player)
        _kill(pipeline.muxer)
        self._pipeline = None
        return pipeline

    def stop(self) -> bool:
        """
        Tear down the running pipeline (player first, then muxer) and blank the screen.

        Returns:
            True if a pipeline was running
        """
        with self._lock:
            pipeline = self._teardown_locked()

        if pipeline is not None:
            logger.info("Playback stopped")
            if pipeline.waiter is not None and pipeline.waiter is not threading.current_thread():
                pipeline.waiter.join(timeout=5)

        self._blank()
        return pipeline is not None

    def __repr__(self) -> str:
        return f"PlaybackSupervisor(player={self.player}, media_dir={self.media_dir})"
