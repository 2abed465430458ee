"""
Signage agent entry point.

Wires configuration, identity, control client, media cache and playback
supervisor together and runs the lifecycle until a shutdown signal arrives.
All configuration comes from the environment (and an optional YAML file).
"""

import signal
import threading
from typing import Optional

from src.common.config import AgentConfig, ConfigError, get_agent_config
from src.common.device_id import get_device_info
from src.common.logger import configure_logging, setup_logger

from . import __version__
from .control_client import ControlPlaneClient, create_session
from .lifecycle import CheckInWorker, LifecycleController
from .media_cache import MediaCache
from .playback import PlaybackSupervisor
from .preflight import PreflightError, run_startup_checks
from .token_store import TokenStore

logger = setup_logger(__name__)


class SignageAgent:
    """Owns the agent's long-lived components."""

    def __init__(self, config: AgentConfig, mac_address: str, player: str):
        """
        Args:
            config: Prepared configuration (media dir already absolute)
            mac_address: Device identity from the identity probe
            player: Player binary chosen by preflight
        """
        self.config = config
        self.mac_address = mac_address

        session = create_session()
        self.client = ControlPlaneClient(
            config.server_url, session=session, timeout=config.request_timeout
        )
        self.token_store = TokenStore(config.token_file)
        self.media_cache = MediaCache(
            config.media_dir, session=session, download_timeout=config.download_timeout
        )
        self.supervisor = PlaybackSupervisor(
            config.media_dir,
            player=player,
            video_output_override=config.video_output,
            audio_device=config.audio_device,
        )

        token_event = threading.Event()
        self.checkin_worker = CheckInWorker(
            self.client,
            self.token_store,
            mac_address,
            interval=config.checkin_interval,
            token_event=token_event,
        )
        self.controller = LifecycleController(
            self.client,
            self.token_store,
            self.media_cache,
            self.supervisor,
            tick_interval=config.tick_interval,
            sync_hour=config.sync_hour,
            sync_minute=config.sync_minute,
            token_event=token_event,
        )

    def run(self) -> None:
        """Run until stop() is called (blocking)."""
        self.checkin_worker.start()
        try:
            self.controller.run()
        finally:
            self.shutdown()

    def stop(self) -> None:
        self.controller.stop()

    def shutdown(self) -> None:
        logger.info("Shutting down")
        self.checkin_worker.stop()
        self.supervisor.stop()
        self.client.close()


def main(config_path: Optional[str] = None) -> int:
    """
    Run the agent.

    Returns:
        Process exit code: 0 on clean shutdown, 1 on a startup failure
    """
    try:
        config = get_agent_config(config_path)
        configure_logging(config.log_level)
        config.prepare_media_dir()
    except ConfigError as e:
        logger.error("%s", e)
        return 1

    device = get_device_info()
    mac = device["mac_address"]
    logger.info(
        "Signage agent %s starting on %s, MAC=%s, SERVER=%s, MEDIA_DIR=%s",
        __version__, device["hostname"], mac or "<none>", config.server_url, config.media_dir
    )
    if not mac:
        logger.error("No network interface with a hardware address; check-in will fail")

    try:
        player = run_startup_checks()
    except PreflightError as e:
        logger.error("Error: %s", e)
        return 1

    agent = SignageAgent(config, mac, player)

    def _signal_handler(signum, frame):
        logger.info("Received signal: %s", signal.Signals(signum).name)
        agent.stop()

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    agent.run()
    return 0
