"""
Agent lifecycle: check-in worker and the sync/playback controller.

Two activities run side by side:
- CheckInWorker: check in immediately, then every 10 minutes, saving any token.
- LifecycleController: every minute, look at the token store and the clock.
  The first token seen triggers a sync; after that a sync runs once per
  calendar date at 04:00 local time.

Tokens travel between the two only through the token store. The worker also
sets a one-shot event so the controller does not have to wait a full tick
after the first token lands.
"""

import threading
import time
from datetime import date, datetime
from enum import Enum
from typing import Callable, Optional

from src.common.logger import setup_logger

from . import display
from .control_client import ControlPlaneClient, ControlPlaneError, TokenInvalidError
from .media_cache import MediaCache
from .models import CheckInResult, CheckInStatus
from .playback import PlaybackSupervisor
from .token_store import TokenStore

logger = setup_logger(__name__)


def next_deadline(previous: float, interval: float, now: float) -> float:
    """
    Next tick on the fixed grid previous + k * interval that lies after now.

    Ticks keep their phase however long a tick runs. Slots missed by an
    overrunning tick are skipped, not replayed.
    """
    if interval <= 0:
        return now
    deadline = previous + interval
    if deadline <= now:
        deadline += ((now - deadline) // interval + 1) * interval
    return deadline


class AgentState(Enum):
    """Lifecycle state of the sync controller."""
    COLD = "cold"      # no token observed yet in this process
    ARMED = "armed"    # initial sync done, waiting for the daily slot


class CheckInWorker:
    """Periodically checks in with the control server and stores the token."""

    DEFAULT_INTERVAL = 600  # 10 minutes between check-ins

    def __init__(
        self,
        client: ControlPlaneClient,
        token_store: TokenStore,
        mac_address: str,
        interval: int = DEFAULT_INTERVAL,
        token_event: Optional[threading.Event] = None
    ):
        """
        Args:
            client: Control server client
            token_store: Where acquired tokens are persisted
            mac_address: Device identity ("" makes every check-in fail)
            interval: Seconds between check-ins
            token_event: Set after each successfully saved token
        """
        self.client = client
        self.token_store = token_store
        self.mac_address = mac_address
        self.interval = interval
        self.token_event = token_event or threading.Event()

        self._thread: Optional[threading.Thread] = None
        self._running = False
        self._stop_event = threading.Event()

        self._attempts = 0

    def check_in_once(self) -> Optional[CheckInResult]:
        """
        Run one check-in cycle. Never raises.

        Returns:
            The check-in result, or None if the attempt failed
        """
        self._attempts += 1
        try:
            result = self.client.check_in(self.mac_address)
        except ControlPlaneError as e:
            logger.error("Check-in failed: %s", e)
            return None
        except Exception:
            logger.exception("Unexpected check-in error")
            return None

        if result.status is CheckInStatus.PENDING:
            logger.info("Device is awaiting group assignment (401)")
            return result

        try:
            self.token_store.save(result.token)
        except OSError as e:
            logger.error("Saving token failed: %s", e)
            return result

        logger.info("Check-in OK, token saved")
        self.token_event.set()
        return result

    def _checkin_loop(self) -> None:
        logger.info("Check-in worker started (interval: %ds)", self.interval)

        self.check_in_once()
        while not self._stop_event.wait(timeout=self.interval):
            self.check_in_once()

        logger.info("Check-in worker stopped")

    def start(self) -> None:
        """Start the background check-in thread."""
        if self._running:
            logger.warning("Check-in worker already running")
            return

        self._running = True
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._checkin_loop, name="CheckIn", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        if not self._running:
            return

        self._running = False
        self._stop_event.set()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5)
        self._thread = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def attempts(self) -> int:
        return self._attempts


class LifecycleController:
    """
    Drives sync and playback from the token store and the wall clock.

    Owns the COLD/ARMED state and the date of the last scheduled sync.
    Only the controller thread touches either.
    """

    DEFAULT_TICK_INTERVAL = 60

    # How long the first tick waits for the check-in worker to deliver a token
    INITIAL_TOKEN_WAIT = 2.0

    def __init__(
        self,
        client: ControlPlaneClient,
        token_store: TokenStore,
        media_cache: MediaCache,
        supervisor: PlaybackSupervisor,
        tick_interval: int = DEFAULT_TICK_INTERVAL,
        sync_hour: int = 4,
        sync_minute: int = 0,
        token_event: Optional[threading.Event] = None,
        clock: Callable[[], datetime] = datetime.now,
        set_resolution: Callable[[], bool] = display.set_display_resolution,
        blank: Callable[[], None] = display.blank_screen
    ):
        self.client = client
        self.token_store = token_store
        self.media_cache = media_cache
        self.supervisor = supervisor
        self.tick_interval = tick_interval
        self.sync_hour = sync_hour
        self.sync_minute = sync_minute
        self.token_event = token_event
        self._clock = clock
        self._set_resolution = set_resolution
        self._blank = blank

        self._state = AgentState.COLD
        self._last_run_date: Optional[date] = None
        self._stop_event = threading.Event()
        self._sync_count = 0

    @property
    def state(self) -> AgentState:
        return self._state

    @property
    def last_run_date(self) -> Optional[date]:
        return self._last_run_date

    @property
    def sync_count(self) -> int:
        """Number of syncs started by tick()."""
        return self._sync_count

    def _wait_for_token(self, timeout: float) -> None:
        if self.token_event is not None:
            self.token_event.wait(timeout=timeout)
        else:
            self._stop_event.wait(timeout=timeout)

    def tick(self, first: bool = False) -> bool:
        """
        Evaluate the state table once.

        Args:
            first: True on the very first tick after startup

        Returns:
            True if a sync was triggered
        """
        token = self.token_store.load()
        if not token and first and self._state is AgentState.COLD:
            self._wait_for_token(self.INITIAL_TOKEN_WAIT)
            token = self.token_store.load()
        if not token:
            return False

        if self._state is AgentState.COLD:
            self._state = AgentState.ARMED
            logger.info("First run with a token: syncing media")
            self._run_sync()
            return True

        now = self._clock()
        today = now.date()
        if (now.hour == self.sync_hour and now.minute == self.sync_minute
                and today != self._last_run_date):
            self._last_run_date = today
            logger.info("%02d:%02d: scheduled media sync", self.sync_hour, self.sync_minute)
            self._run_sync()
            return True

        return False

    def _run_sync(self) -> None:
        self._sync_count += 1
        try:
            self.sync_and_play()
        except Exception:
            logger.exception("Sync failed")

    def sync_and_play(self) -> bool:
        """
        Fetch the manifest, mirror it locally and restart playback.

        A failed fetch leaves the current pipeline playing. Once a manifest
        is in hand (even an empty one) the pipeline is torn down and the
        cache pruned to it.

        Returns:
            True if a new pipeline was started
        """
        token = self.token_store.load()
        if not token:
            return False

        logger.info("Token present, requesting media...")
        try:
            items = self.client.fetch_media(token)
        except TokenInvalidError:
            logger.error("Fetch media: 401, token invalid; keeping current playback")
            return False
        except ControlPlaneError as e:
            logger.error("Fetch media: %s", e)
            return False

        logger.info("Media from server: %d item(s)", len(items))

        self.supervisor.stop()

        logger.info("Downloading files...")
        downloaded = self.media_cache.reconcile(items)
        logger.info("Downloaded: %d of %d", len(downloaded), len(items))
        if not downloaded:
            logger.warning("No file downloaded, playback not started")
            return False

        self._set_resolution()
        self._blank()
        return self.supervisor.start()

    def run(self) -> None:
        """Tick immediately, then every tick_interval seconds until stop()."""
        logger.info("Sync loop started (tick: %ds)", self.tick_interval)

        first = True
        next_tick = time.monotonic()
        while not self._stop_event.is_set():
            try:
                self.tick(first=first)
            except Exception:
                logger.exception("Tick failed")
            first = False

            now = time.monotonic()
            next_tick = next_deadline(next_tick, self.tick_interval, now)
            timeout = next_tick - now

            if self._state is AgentState.COLD and self.token_event is not None:
                # wake early when check-in stores the first token
                if self.token_event.wait(timeout=timeout):
                    self.token_event.clear()
                    next_tick = time.monotonic()
            else:
                self._stop_event.wait(timeout=timeout)

        logger.info("Sync loop stopped")

    def stop(self) -> None:
        self._stop_event.set()
        if self.token_event is not None:
            self.token_event.set()
