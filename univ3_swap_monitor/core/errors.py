"""
Error taxonomy for the swap monitor.

Transient classes (connectivity, rate limiting, invalid ranges, storage) are
recovered inside the ingestion loop. ``InvariantViolation`` is fatal.
"""

from typing import Optional


class SwapMonitorError(Exception):
    """Base class for every error raised by the package."""


class ConfigError(SwapMonitorError):
    """Startup configuration is missing or invalid."""


class ConnectivityError(SwapMonitorError):
    """The provider could not be reached or returned malformed data."""


class RateLimitedError(ConnectivityError):
    """The provider is throttling us; back off longer than usual."""


class InvalidRangeError(SwapMonitorError):
    """The requested block range is inverted or wider than the provider allows."""

    def __init__(self, message: str, from_block: Optional[int] = None, to_block: Optional[int] = None):
        super().__init__(message)
        self.from_block = from_block
        self.to_block = to_block


class DecodeError(SwapMonitorError):
    kind = "malformed"

    def __init__(self, message: str, block_number: Optional[int] = None, log_index: Optional[int] = None):
        super().__init__(message)
        self.block_number = block_number
        self.log_index = log_index


class SignatureMismatchError(DecodeError):
    """topic[0] is not the Swap selector: not our event, skip it."""

    kind = "signature_mismatch"


class MalformedLogError(DecodeError):
    """Looks like a Swap but the layout or the integers are broken."""

    kind = "malformed"


class StorageError(SwapMonitorError):
    """SQLite I/O failure (disk full, lock timeout, corruption)."""


class InvariantViolation(SwapMonitorError):
    """A programming error, e.g. an attempt to move the cursor backwards."""
