"""MediaBridge: a Jellyfin-compatible front end for a locally scanned library."""

from __future__ import annotations

__version__ = "1.0.0"
