"""
Data types exchanged with the control server.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class MediaItem:
    """One manifest entry from GET /api/device/me/media."""
    id: str
    url: str = ""
    name: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MediaItem':
        """Build an item from decoded JSON. Missing or null fields become empty strings."""
        return cls(
            id=str(data.get('id') or ''),
            url=str(data.get('url') or ''),
            name=str(data.get('name') or ''),
        )


class CheckInStatus(Enum):
    """Outcome of a check-in attempt."""
    TOKEN_ACQUIRED = "token_acquired"
    PENDING = "pending"          # known to server, not yet assigned to a group


@dataclass(frozen=True)
class CheckInResult:
    status: CheckInStatus
    token: Optional[str] = None

    @property
    def has_token(self) -> bool:
        return self.status is CheckInStatus.TOKEN_ACQUIRED and bool(self.token)
