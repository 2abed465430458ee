"""
Control Server Client - device check-in and media manifest retrieval.

Check-in:   POST {server}/api/device/check-in   {"macAddress": "..."}
Manifest:   GET  {server}/api/device/me/media    Authorization: Bearer <token>

Certificate verification is disabled: the control server lives on a closed LAN
and typically presents a self-signed certificate.
"""

from typing import List, Optional

import requests
import urllib3

from src.common.logger import setup_logger

from .models import CheckInResult, CheckInStatus, MediaItem

logger = setup_logger(__name__)

urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

CHECK_IN_PATH = "/api/device/check-in"
MEDIA_PATH = "/api/device/me/media"


class ControlPlaneError(Exception):
    """Raised when the control server cannot be reached or answers unexpectedly."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class TokenInvalidError(ControlPlaneError):
    """The server rejected the bearer token (401 on the manifest endpoint)."""
    pass


def create_session() -> requests.Session:
    """
    Create an HTTP session that skips TLS certificate verification.

    Requests also pass verify=False, since a CA bundle from the environment
    would otherwise override the session setting.
    """
    session = requests.Session()
    session.verify = False
    return session


class ControlPlaneClient:
    """Client for the signage control server."""

    # Request timeout in seconds
    REQUEST_TIMEOUT = 30

    def __init__(
        self,
        server_url: str,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT
    ):
        """
        Args:
            server_url: Base URL of the control server
            session: Shared HTTP session (created unverified if None)
            timeout: Per-request timeout for control calls
        """
        self.server_url = server_url.rstrip('/')
        self.session = session or create_session()
        self.timeout = timeout

    def check_in(self, mac_address: str) -> CheckInResult:
        """
        Announce the device and try to obtain a bearer token.

        Args:
            mac_address: Device MAC, "AA:BB:CC:DD:EE:FF"

        Returns:
            TOKEN_ACQUIRED with the token, or PENDING while the device
            awaits group assignment (HTTP 401)

        Raises:
            ControlPlaneError: Empty MAC, transport failure, unexpected
                status, or a success response without an access token
        """
        if not mac_address:
            raise ControlPlaneError("mac address not found")

        url = f"{self.server_url}{CHECK_IN_PATH}"
        try:
            response = self.session.post(
                url,
                json={"macAddress": mac_address},
                headers={"Accept": "application/json"},
                timeout=self.timeout,
                verify=False
            )
        except requests.RequestException as e:
            raise ControlPlaneError(f"check-in request failed: {e}")

        with response:
            if response.status_code == 401:
                return CheckInResult(CheckInStatus.PENDING)

            if response.status_code not in (200, 201):
                raise ControlPlaneError(
                    f"check-in {response.status_code}: {response.text}",
                    status_code=response.status_code,
                    body=response.text
                )

            try:
                data = response.json()
            except ValueError as e:
                raise ControlPlaneError(
                    f"check-in: malformed JSON: {e}",
                    status_code=response.status_code,
                    body=response.text
                )

        token = data.get("accessToken") if isinstance(data, dict) else None
        if not isinstance(token, str) or not token.strip():
            raise ControlPlaneError(
                "check-in: response has no accessToken",
                status_code=response.status_code
            )

        return CheckInResult(CheckInStatus.TOKEN_ACQUIRED, token.strip())

    def fetch_media(self, token: str) -> List[MediaItem]:
        """
        Fetch the media manifest assigned to this device.

        Args:
            token: Bearer token from check-in

        Returns:
            Manifest items in server order

        Raises:
            TokenInvalidError: Server answered 401
            ControlPlaneError: Transport failure, other status, or bad JSON
        """
        url = f"{self.server_url}{MEDIA_PATH}"
        try:
            response = self.session.get(
                url,
                headers={
                    "Accept": "application/json",
                    "Authorization": f"Bearer {token}",
                },
                timeout=self.timeout,
                verify=False
            )
        except requests.RequestException as e:
            raise ControlPlaneError(f"media request failed: {e}")

        with response:
            if response.status_code == 401:
                raise TokenInvalidError("401: token invalid", status_code=401, body=response.text)

            if response.status_code != 200:
                raise ControlPlaneError(
                    f"media {response.status_code}: {response.text}",
                    status_code=response.status_code,
                    body=response.text
                )

            try:
                data = response.json()
            except ValueError as e:
                raise ControlPlaneError(f"media: malformed JSON: {e}", status_code=200)

        if not isinstance(data, list):
            raise ControlPlaneError("media: expected a JSON array", status_code=200)

        return [MediaItem.from_dict(entry) for entry in data if isinstance(entry, dict)]

    def close(self) -> None:
        self.session.close()

    def __repr__(self) -> str:
        return f"ControlPlaneClient(server_url={self.server_url})"
