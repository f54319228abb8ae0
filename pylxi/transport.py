# transport.py
"""
LXI raw-socket transport (SCPI on TCP port 5025) over a PyVISA SOCKET resource.

Receiving one response:
  - read the first byte; '#' plus a digit starts a TMC block:
      header '#N', then N length digits, then <len> payload bytes and the
      terminator, all with read_bytes and termination disabled;
  - anything else is text, read up to the '\n' read termination.

Every operation runs against one linear deadline; expiry is a hard failure.
"""

from __future__ import annotations

import logging
import time
from typing import Optional, Protocol

import pyvisa
from pyvisa.constants import StatusCode

from pylxi import tmc_block
from pylxi.errors import (
    InstrumentConnectionError,
    MessageTooLargeError,
    ResponseTimeoutError,
    TruncatedResponseError,
)

LXI_SCPI_PORT = 5025
VISA_BACKEND = "@py"
PAYLOAD_CHUNK = 64 * 1024


class Transport(Protocol):
    """Anything that can carry one SCPI exchange (VISA socket, test double)."""

    def connect(self, timeout: float) -> None: ...

    def send(self, data: bytes, timeout: float) -> None: ...

    def receive(self, timeout: float, max_size: int = tmc_block.MESSAGE_LENGTH_MAX) -> bytes: ...

    def close(self) -> None: ...


def socket_resource(address: str, port: int = LXI_SCPI_PORT) -> str:
    return f"TCPIP::{address}::{port}::SOCKET"


class VisaTransport:
    """
    One instrument connection through a pyvisa-py SOCKET resource.

    Usage:
        with VisaTransport("192.168.1.50") as t:
            t.connect(timeout=1.0)
            t.send(b"*IDN?", timeout=1.0)
            raw = t.receive(timeout=1.0)
    """

    def __init__(self, address: str, port: int = LXI_SCPI_PORT, *,
                 resource_manager=None, logger: Optional[logging.Logger] = None):
        self.address = address
        self.port = port
        self.resource = socket_resource(address, port)
        self.inst = None
        self._rm = resource_manager
        self._owns_rm = resource_manager is None
        self.LOG = logger or logging.getLogger(__name__)

    def __enter__(self) -> "VisaTransport":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def connect(self, timeout: float) -> None:
        self.LOG.debug('Opening %s (timeout %ss)', self.resource, timeout)
        try:
            if self._rm is None:
                self._rm = pyvisa.ResourceManager(VISA_BACKEND)
            inst = self._rm.open_resource(self.resource, open_timeout=_ms(timeout))
        except (pyvisa.errors.VisaIOError, OSError, ValueError) as e:
            raise InstrumentConnectionError(f"Cannot connect to {self.address}:{self.port}: {e}") from e
        inst.timeout = _ms(timeout)
        inst.write_termination = "\n"
        inst.read_termination = "\n"
        self.inst = inst

    def close(self) -> None:
        try:
            if self.inst is not None:
                try:
                    self.inst.close()
                finally:
                    self.inst = None
                self.LOG.debug('Connection to %s closed', self.address)
        finally:
            if self._owns_rm and self._rm is not None:
                self._rm.close()
                self._rm = None

    def _require_inst(self):
        if self.inst is None:
            raise InstrumentConnectionError(f"Not connected to {self.address}")
        return self.inst

    def send(self, data: bytes, timeout: float) -> None:
        """Send one command; a '\n' terminator is appended when missing."""
        inst = self._require_inst()
        if not data.endswith(b"\n"):
            data = data + b"\n"
        self.LOG.debug('>> %r', data)
        inst.timeout = _ms(timeout)
        try:
            inst.write_raw(data)
        except pyvisa.errors.VisaIOError as e:
            if e.error_code == StatusCode.error_timeout:
                raise ResponseTimeoutError(f"Timed out sending to {self.address}") from e
            raise InstrumentConnectionError(f"Send to {self.address} failed: {e}") from e

    def receive(self, timeout: float, max_size: int = tmc_block.MESSAGE_LENGTH_MAX) -> bytes:
        """Read one complete response.

        Raises:
          ResponseTimeoutError: nothing arrived before the deadline.
          TruncatedResponseError: the deadline passed, or the link dropped, mid-response.
          InstrumentConnectionError: the link dropped before anything arrived.
          MessageTooLargeError: the response is larger than max_size.
          FrameError: the TMC header is malformed.
        """
        inst = self._require_inst()
        deadline = time.monotonic() + timeout
        reader = _DeadlineReader(inst, deadline, self.address)

        first = reader.read_bytes(1)
        if first != tmc_block.BLOCK_PREFIX:
            raw = first if first == b"\n" else first + reader.read_line()
        else:
            raw = self._receive_block(reader, max_size)

        if len(raw) > max_size:
            raise MessageTooLargeError(max_size)
        self.LOG.debug('<< %d bytes', len(raw))
        return raw

    def _receive_block(self, reader: "_DeadlineReader", max_size: int) -> bytes:
        # Do not stop at '\n' inside binary payloads
        inst = reader.inst
        prev = inst.read_termination
        inst.read_termination = None
        try:
            hdr = b"#" + reader.read_bytes(1)
            if hdr == b"#\n":
                return hdr
            if not tmc_block.is_block(hdr):
                # text that happens to start with '#'
                inst.read_termination = prev
                return hdr + reader.read_line()

            h = tmc_block.header_size(hdr)
            hdr += reader.read_bytes(h - 2)
            size = h + tmc_block.declared_length(hdr) + 1
            if size > max_size:
                raise MessageTooLargeError(max_size)
            reader.expected = size

            # payload plus the trailing terminator, in chunks
            buf = bytearray(hdr)
            while len(buf) < size:
                buf += reader.read_bytes(min(PAYLOAD_CHUNK, size - len(buf)))
            return bytes(buf)
        finally:
            inst.read_termination = prev


class _DeadlineReader:
    """read_bytes/read_raw against one deadline, mapping VISA errors to LxiError."""

    def __init__(self, inst, deadline: float, address: str):
        self.inst = inst
        self.deadline = deadline
        self.address = address
        self.received = 0
        self.expected: Optional[int] = None

    def _arm(self) -> None:
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            self._fail_timeout()
        self.inst.timeout = _ms(remaining)

    def read_bytes(self, count: int) -> bytes:
        self._arm()
        try:
            data = self.inst.read_bytes(count)
        except pyvisa.errors.VisaIOError as e:
            self._fail(e)
        self.received += len(data)
        return data

    def read_line(self) -> bytes:
        self._arm()
        try:
            data = self.inst.read_raw()
        except pyvisa.errors.VisaIOError as e:
            self._fail(e)
        self.received += len(data)
        return data

    def _fail(self, e: "pyvisa.errors.VisaIOError") -> None:
        if e.error_code == StatusCode.error_timeout:
            self._fail_timeout(e)
        # connection lost, I/O error, ...
        if not self.received:
            raise InstrumentConnectionError(f"Receive from {self.address} failed: {e}") from e
        raise TruncatedResponseError(self.expected or self.received + 1, self.received,
                                     f"Connection lost after {self.received} bytes") from e

    def _fail_timeout(self, cause: Optional[BaseException] = None) -> None:
        if not self.received:
            raise ResponseTimeoutError(f"No response from {self.address}") from cause
        raise TruncatedResponseError(self.expected or self.received + 1, self.received,
                                     f"Timed out after {self.received} bytes") from cause


def _ms(seconds: float) -> int:
    """VISA timeouts are integer milliseconds; 0 would mean 'immediate'."""
    return max(1, int(seconds * 1000))
