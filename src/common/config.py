"""
Configuration management for the signage agent.
Loads optional YAML defaults and applies environment variable overrides.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = "config/agent.yaml"

DEFAULTS: Dict[str, Any] = {
    'server': {
        'url': 'http://192.168.0.4:3000',
    },
    'media': {
        'dir': './media',
    },
    'player': {
        'video_output': '',
        'audio_device': 'plughw:1,0',
    },
    'token': {
        'file': '.jwt',
    },
    'schedule': {
        'checkin_interval': 600,
        'tick_interval': 60,
        'sync_hour': 4,
        'sync_minute': 0,
    },
    'http': {
        'request_timeout': 30,
        'download_timeout': 1800,
    },
    'logging': {
        'level': 'INFO',
    },
}

# Environment variable -> (dotted key, converter)
ENV_OVERRIDES = {
    'SERVER_URL': ('server.url', str),
    'MEDIA_DIR': ('media.dir', str),
    'MPLAYER_VO': ('player.video_output', str),
    'MPLAYER_AUDIO_DEVICE': ('player.audio_device', str),
    'TOKEN_FILE': ('token.file', str),
    'CHECKIN_INTERVAL': ('schedule.checkin_interval', int),
    'SYNC_TICK_INTERVAL': ('schedule.tick_interval', int),
    'SYNC_HOUR': ('schedule.sync_hour', int),
    'SYNC_MINUTE': ('schedule.sync_minute', int),
    'REQUEST_TIMEOUT': ('http.request_timeout', float),
    'DOWNLOAD_TIMEOUT': ('http.download_timeout', float),
    'LOG_LEVEL': ('logging.level', str),
}


class ConfigError(Exception):
    """Raised when the configuration cannot be turned into a usable runtime setup."""
    pass


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class AgentConfig:
    """Agent settings from YAML defaults plus environment overrides."""

    def __init__(
        self,
        config_path: Optional[str] = None,
        environ: Optional[Dict[str, str]] = None
    ):
        """
        Initialize configuration.

        Args:
            config_path: Path to YAML file. If None, uses SIGNAGE_CONFIG or
                config/agent.yaml. A missing file only means "use defaults".
            environ: Environment mapping (defaults to os.environ)
        """
        self._environ = os.environ if environ is None else environ

        if config_path is None:
            config_path = self._environ.get('SIGNAGE_CONFIG') or DEFAULT_CONFIG_PATH

        self.config_path = Path(config_path)
        self._config: Dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from the YAML file (if present) and the environment."""
        data: Dict[str, Any] = {}
        if self.config_path.exists():
            try:
                with open(self.config_path, 'r') as f:
                    data = yaml.safe_load(f) or {}
            except (OSError, yaml.YAMLError) as e:
                raise ConfigError(f"Cannot read config file {self.config_path}: {e}")
            if not isinstance(data, dict):
                raise ConfigError(f"Config file is not a mapping: {self.config_path}")

        self._config = _merge(DEFAULTS, data)
        self._apply_env_overrides()

    def _apply_env_overrides(self) -> None:
        """Override config values from environment variables. Empty values are ignored."""
        for env_name, (key, convert) in ENV_OVERRIDES.items():
            raw = self._environ.get(env_name, '')
            if raw == '':
                continue
            try:
                self.set(key, convert(raw))
            except ValueError:
                raise ConfigError(f"Invalid value for {env_name}: {raw!r}")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation.

        Args:
            key: Configuration key (e.g., 'server.url')
            default: Default value if key not found

        Returns:
            Configuration value or default
        """
        value: Any = self._config
        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation."""
        keys = key.split('.')
        config = self._config
        for k in keys[:-1]:
            config = config.setdefault(k, {})
        config[keys[-1]] = value

    @property
    def server_url(self) -> str:
        """Control server base URL without trailing slash."""
        return str(self.get('server.url', '')).rstrip('/')

    @property
    def media_dir(self) -> str:
        return str(self.get('media.dir'))

    @media_dir.setter
    def media_dir(self, value: str) -> None:
        self.set('media.dir', value)

    @property
    def video_output(self) -> str:
        """Video output override (empty means auto-detect)."""
        return str(self.get('player.video_output') or '')

    @property
    def audio_device(self) -> str:
        return str(self.get('player.audio_device'))

    @property
    def token_file(self) -> str:
        return str(self.get('token.file'))

    @property
    def checkin_interval(self) -> int:
        return int(self.get('schedule.checkin_interval'))

    @property
    def tick_interval(self) -> int:
        return int(self.get('schedule.tick_interval'))

    @property
    def sync_hour(self) -> int:
        return int(self.get('schedule.sync_hour'))

    @property
    def sync_minute(self) -> int:
        return int(self.get('schedule.sync_minute'))

    @property
    def request_timeout(self) -> float:
        return float(self.get('http.request_timeout'))

    @property
    def download_timeout(self) -> float:
        return float(self.get('http.download_timeout'))

    @property
    def log_level(self) -> str:
        return str(self.get('logging.level'))

    def prepare_media_dir(self) -> str:
        """
        Create the media directory and pin it to an absolute path.

        Returns:
            Absolute media directory path

        Raises:
            ConfigError: If the directory cannot be created or resolved
        """
        try:
            os.makedirs(self.media_dir, mode=0o755, exist_ok=True)
            absolute = os.path.abspath(self.media_dir)
        except OSError as e:
            raise ConfigError(f"Media directory {self.media_dir!r} unusable: {e}")

        self.media_dir = absolute
        return absolute

    def __repr__(self) -> str:
        return f"AgentConfig(path={self.config_path}, server={self.server_url})"


# Global config instance
_global_config: Optional[AgentConfig] = None


def get_agent_config(config_path: Optional[str] = None) -> AgentConfig:
    """
    Get the global configuration instance.

    Args:
        config_path: Path to YAML file (only used on first call)

    Returns:
        AgentConfig instance
    """
    global _global_config

    if _global_config is None:
        _global_config = AgentConfig(config_path)

    return _global_config
