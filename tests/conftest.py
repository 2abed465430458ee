"""
Pytest fixtures shared by the agent tests.

Provides temporary media/token locations and fake HTTP responses.
"""

import tempfile
from pathlib import Path
from unittest import mock

import pytest


def make_response(status_code=200, json_data=None, text="", chunks=None, json_error=None):
    """Build a MagicMock that behaves like a requests.Response (incl. context manager)."""
    response = mock.MagicMock()
    response.status_code = status_code
    response.text = text
    if json_error is not None:
        response.json.side_effect = json_error
    else:
        response.json.return_value = json_data
    response.iter_content.return_value = iter(chunks or [])
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    return response


@pytest.fixture
def temp_media_dir():
    """Create a temporary media directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def token_path(tmp_path):
    """Path for a token file that does not exist yet."""
    return str(tmp_path / ".jwt")


@pytest.fixture
def mock_session():
    """A requests.Session stand-in."""
    return mock.MagicMock()


@pytest.fixture
def populate():
    """Create empty files in a directory."""
    def _populate(directory, *names):
        for name in names:
            Path(directory, name).write_bytes(b"old")
    return _populate
