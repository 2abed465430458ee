"""
Bearer token persistence.
A single owner-readable file holding the token issued by check-in.
"""

import os
import tempfile
from pathlib import Path
from typing import Optional

from src.common.logger import setup_logger

logger = setup_logger(__name__)


class TokenStore:
    """Single-value persistent cell for the device bearer token."""

    DEFAULT_PATH = ".jwt"

    def __init__(self, path: Optional[str] = None):
        """
        Args:
            path: Token file path, relative to the working directory by default
        """
        self.path = Path(path or self.DEFAULT_PATH)

    def load(self) -> Optional[str]:
        """
        Read the stored token.

        Returns:
            Trimmed token, or None when the file is absent, unreadable or blank
        """
        try:
            token = self.path.read_text().strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.warning("Cannot read token file %s: %s", self.path, e)
            return None
        return token or None

    def save(self, token: str) -> None:
        """
        Persist the token with mode 0600.

        The value is written to a sibling temp file and renamed over the
        target, so a crash never leaves a truncated token behind.
        """
        fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
        try:
            os.fchmod(fd, 0o600)
            with os.fdopen(fd, 'w') as f:
                f.write(token)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise

    def __repr__(self) -> str:
        return f"TokenStore(path={self.path})"
