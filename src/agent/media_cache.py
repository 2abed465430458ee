"""
Media Cache - mirrors the server manifest into the local media directory.

A file's identity is its stem (name minus the final extension). After a
reconcile the directory holds only files whose stem is a sanitized manifest id.
"""

import os
import re
import time
from pathlib import Path
from typing import Iterable, List, Optional

import requests

from src.common.logger import setup_logger

from .control_client import create_session
from .models import MediaItem

logger = setup_logger(__name__)

VIDEO_EXTENSIONS = (".mkv", ".mp4", ".avi", ".webm")
DEFAULT_EXTENSION = ".mp4"

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9_-]")


class DownloadError(Exception):
    """Raised when a single media file cannot be fetched."""
    pass


def sanitize_id(item_id: str) -> str:
    """Map a manifest id to a filesystem-safe stem."""
    safe = _UNSAFE_CHARS.sub("_", item_id)
    return safe or "media"


def ext_from_url(url: str) -> str:
    """Pick the first known video extension mentioned anywhere in the URL."""
    lowered = url.lower()
    for ext in VIDEO_EXTENSIONS:
        if ext in lowered:
            return ext
    return DEFAULT_EXTENSION


def file_stem(name: str) -> str:
    """Name minus its final '.'-separated extension ('.hidden' -> '')."""
    dot = name.rfind(".")
    if dot < 0:
        return name
    return name[:dot]


def list_video_files(media_dir: str) -> List[str]:
    """Absolute paths of the playable files in media_dir, sorted by name."""
    try:
        entries = sorted(os.scandir(media_dir), key=lambda e: e.name)
    except OSError as e:
        logger.warning("Cannot list media directory %s: %s", media_dir, e)
        return []

    return [
        os.path.join(media_dir, entry.name)
        for entry in entries
        if not entry.is_dir() and entry.name.lower().endswith(VIDEO_EXTENSIONS)
    ]


class MediaCache:
    """
    Reconciles the media directory with a manifest.
    Holds no state between runs besides its HTTP session.
    """

    # Per-download deadline in seconds (30 minutes)
    DOWNLOAD_TIMEOUT = 30 * 60

    # Connect/read timeout for each socket operation during a download
    SOCKET_TIMEOUT = 60

    CHUNK_SIZE = 256 * 1024

    def __init__(
        self,
        media_dir: str,
        session: Optional[requests.Session] = None,
        download_timeout: float = DOWNLOAD_TIMEOUT
    ):
        """
        Args:
            media_dir: Directory holding the cached videos
            session: HTTP session (created unverified if None)
            download_timeout: Wall-clock deadline per file, in seconds
        """
        self.media_dir = Path(media_dir)
        self.session = session or create_session()
        self.download_timeout = download_timeout

    def reconcile(self, items: Iterable[MediaItem]) -> List[str]:
        """
        Bring the media directory in line with the manifest.

        Deletes files whose stem is not a manifest id, then downloads every
        item that has a URL. A failed item is logged and skipped.

        Returns:
            Paths of the files downloaded successfully
        """
        items = list(items)
        keep = {sanitize_id(item.id) for item in items}
        self.remove_unknown(keep)

        downloaded: List[str] = []
        for item in items:
            if not item.url:
                continue

            dest = self.media_dir / (sanitize_id(item.id) + ext_from_url(item.url))
            try:
                self.download_file(item.url, dest)
            except DownloadError as e:
                logger.error("Download %s failed: %s", item.url, e)
                continue

            logger.info("Downloaded: %s -> %s", item.name or item.id, dest.name)
            downloaded.append(str(dest))

        return downloaded

    def remove_unknown(self, keep: set) -> List[str]:
        """
        Unlink every regular file whose stem is non-empty and not in keep.

        Returns:
            Names of the removed files
        """
        removed: List[str] = []
        try:
            entries = list(os.scandir(self.media_dir))
        except OSError as e:
            logger.warning("Cannot scan %s: %s", self.media_dir, e)
            return removed

        for entry in entries:
            if entry.is_dir():
                continue
            stem = file_stem(entry.name)
            if not stem or stem in keep:
                continue
            try:
                os.unlink(entry.path)
            except OSError as e:
                logger.warning("Could not remove stale file %s: %s", entry.name, e)
                continue
            logger.info("Removed stale file: %s", entry.name)
            removed.append(entry.name)

        return removed

    def download_file(self, url: str, dest: Path) -> None:
        """
        Stream url into dest.

        The body goes to a sibling .part file that replaces dest on success.

        Raises:
            DownloadError: Non-200 status, transport error, deadline exceeded,
                or a local I/O failure
        """
        dest = Path(dest)
        temp_path = dest.with_name(f".{dest.name}.part")
        deadline = time.monotonic() + self.download_timeout

        try:
            with self.session.get(
                url, stream=True, timeout=self.SOCKET_TIMEOUT, verify=False
            ) as response:
                if response.status_code != 200:
                    raise DownloadError(f"http {response.status_code}")

                with open(temp_path, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                        if time.monotonic() > deadline:
                            raise DownloadError(
                                f"deadline of {self.download_timeout:.0f}s exceeded"
                            )
                        if chunk:
                            f.write(chunk)

            os.replace(temp_path, dest)

        except requests.RequestException as e:
            self._cleanup_temp_file(temp_path)
            raise DownloadError(str(e))
        except OSError as e:
            self._cleanup_temp_file(temp_path)
            raise DownloadError(f"io error: {e}")
        except DownloadError:
            self._cleanup_temp_file(temp_path)
            raise

    def _cleanup_temp_file(self, temp_path: Path) -> None:
        """Remove a partial download if it exists."""
        try:
            temp_path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.debug("Could not remove %s: %s", temp_path, e)

    def __repr__(self) -> str:
        return f"MediaCache(media_dir={self.media_dir})"
