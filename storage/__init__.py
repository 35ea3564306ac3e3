"""
Livetrack Storage Package

PostgreSQL access to the pilot roster and their tracks.
"""

from storage.manager import TrackStore, StoreError

__all__ = ["TrackStore", "StoreError"]
