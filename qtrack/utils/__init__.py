"""
Utilities package for QTrack.

Exports shared helpers for logging, profiling and credential hashing.
Keep this package lightweight and free of schema-specific logic.
"""

from qtrack.utils.crypto import hash_password, verify_password
from qtrack.utils.logging import configure_logging, get_logger
from qtrack.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "hash_password",
    "verify_password",
    "ProfileStats",
    "profile_block",
]
