# errors.py
from __future__ import annotations


# ---- Typed exceptions for protocol/transport errors ----
class LxiError(Exception):
    """Base error for pylxi."""


class InstrumentConnectionError(LxiError, ConnectionError):
    """Instrument unreachable, or the connection dropped."""


class ResponseTimeoutError(LxiError, TimeoutError):
    """No response arrived before the deadline."""


class TruncatedResponseError(LxiError):
    """Fewer bytes arrived than the TMC block header declares."""
    def __init__(self, expected: int, received: int, message: str = ""):
        self.expected = expected
        self.received = received
        super().__init__(message or f"Truncated response: expected {expected} bytes, got {received}")


class FrameError(LxiError):
    pass


class MessageTooLargeError(LxiError):
    def __init__(self, limit: int, message: str = ""):
        self.limit = limit
        super().__init__(message or f"Response exceeds maximum message size of {limit} bytes")


class DumpFileError(LxiError, OSError):
    """Local file write failed (permission, disk full, ...)."""


class InvalidCommandError(LxiError, ValueError):
    """Command text cannot be put on the wire (characters outside latin-1)."""
