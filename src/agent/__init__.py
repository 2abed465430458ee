"""
Signage agent package for Orange Pi class players.
Contains modules for check-in, playlist sync, media cache reconciliation,
and supervision of the ffmpeg -> player playback pipeline.
"""

__version__ = "0.1.0"
