# exchange.py
"""
One SCPI request/response cycle against a connected instrument.

    Idle -> Connected -> Sent -> Received -> Decoded -> Routed -> closed

There is no retry: the first failure aborts the exchange and propagates.
The connection is closed on every exit path (Session is a context manager).
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Callable, Optional, TextIO

from pylxi import tmc_block
from pylxi.errors import FrameError, InvalidCommandError, LxiError
from pylxi.output import file_dump, hex_print, save_image
from pylxi.transport import LXI_SCPI_PORT, Transport, VisaTransport

LOG = logging.getLogger(__name__)

SCREENSHOT_COMMAND = "display:data?"

TransportFactory = Callable[[str, int], Transport]


@dataclass(frozen=True)
class Response:
    """A decoded response: TMC block payload (binary) or text without terminator."""
    data: bytes
    binary: bool = False

    @property
    def text(self) -> str:
        return self.data.decode("utf-8", errors="replace")


@dataclass(frozen=True)
class ScreenshotResult:
    filename: str
    size: int
    converted: bool = False


def is_query(command: str) -> bool:
    """SCPI queries carry a '?'; only they produce a response."""
    return "?" in command


def encode_command(command: str) -> bytes:
    """Commands go out as latin-1; anything outside it is refused rather than mangled."""
    try:
        return command.encode("latin-1")
    except UnicodeEncodeError as e:
        raise InvalidCommandError(f"Command contains characters that cannot be sent: {command!r}") from e


def strip_terminator(raw: bytes) -> bytes:
    if raw.endswith(b"\r\n"):
        return raw[:-2]
    if raw.endswith(b"\n"):
        return raw[:-1]
    return raw


def classify_response(raw: bytes, *, strict: bool = True) -> Response:
    """Decode a raw response: '#<digit>' prefix means TMC block, anything else is text."""
    if tmc_block.is_block(raw):
        payload = tmc_block.block_payload(raw, strict=strict)
        LOG.debug('TMC block, %d payload bytes', len(payload))
        return Response(payload, binary=True)
    return Response(strip_terminator(raw), binary=False)


class Session:
    """
    Owns one instrument connection for its lifetime.

    One-shot commands open a Session per exchange; interactive and script
    mode keep a single Session open and run every command through it.

    Usage:
        with Session("192.168.1.50", timeout=1.0) as s:
            print(s.exchange("*IDN?").text)
    """

    def __init__(self, address: str, timeout: float, *, port: int = LXI_SCPI_PORT,
                 transport_factory: TransportFactory = VisaTransport,
                 max_size: int = tmc_block.MESSAGE_LENGTH_MAX, strict: bool = True):
        self.address = address
        self.port = port
        self.timeout = timeout
        self.max_size = max_size
        self.strict = strict
        self._transport_factory = transport_factory
        self._transport: Optional[Transport] = None

    @property
    def is_open(self) -> bool:
        return self._transport is not None

    def open(self) -> None:
        if self._transport is not None:
            return
        transport = self._transport_factory(self.address, self.port)
        try:
            transport.connect(self.timeout)
        except BaseException:
            transport.close()
            raise
        self._transport = transport
        LOG.debug('Connected to %s:%d', self.address, self.port)

    def close(self) -> None:
        if self._transport is not None:
            try:
                self._transport.close()
            finally:
                self._transport = None

    def __enter__(self) -> "Session":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def send(self, command: str) -> None:
        data = encode_command(command)
        if self._transport is None:
            self.open()
        try:
            self._transport.send(data, self.timeout)
        except LxiError:
            self.close()  # the next command reconnects
            raise

    def query(self, command: str) -> Response:
        """Send command and always wait for (and decode) one response.

        Any failure drops the connection, so unread bytes of a late or
        partial reply can never be taken for the next command's response.
        """
        self.send(command)
        try:
            raw = self._transport.receive(self.timeout, self.max_size)
            return classify_response(raw, strict=self.strict)
        except LxiError:
            self.close()
            raise

    def exchange(self, command: str) -> Optional[Response]:
        """Send command verbatim; read a response only when it is a query."""
        if is_query(command):
            return self.query(command)
        self.send(command)
        return None


def run_scpi_command(address: str, command_text: str, timeout: float, *,
                     port: int = LXI_SCPI_PORT,
                     transport_factory: TransportFactory = VisaTransport) -> Optional[Response]:
    """Connect, run one command, disconnect. Returns None for non-query commands."""
    with Session(address, timeout, port=port, transport_factory=transport_factory) as s:
        return s.exchange(command_text)


def run_screenshot_capture(address: str, filename: str, timeout: float, *,
                           port: int = LXI_SCPI_PORT,
                           transport_factory: TransportFactory = VisaTransport,
                           convert: bool = False) -> ScreenshotResult:
    """Fetch the display bitmap ('display:data?') and store it in filename.

    The payload is written verbatim unless convert is set, in which case it
    is re-encoded with Pillow into the format the filename suffix implies.
    Nothing is written unless the response decoded cleanly.
    """
    with Session(address, timeout, port=port, transport_factory=transport_factory) as s:
        LOG.info('Downloading screenshot from %s...', address)
        response = s.query(SCREENSHOT_COMMAND)

    if not response.binary:
        raise FrameError(f"Expected a TMC block, got text {response.text[:40]!r}")

    if convert:
        save_image(response.data, filename, description=f"Screenshot from {address}")
        return ScreenshotResult(filename, len(response.data), converted=True)

    size = file_dump(response.data, filename)
    return ScreenshotResult(filename, size)


def route_response(response: Optional[Response], *, dump_hex: bool = False,
                   filename: Optional[str] = None, out: Optional[TextIO] = None) -> None:
    """Deliver a response: hex dump and file dump may both apply; plain echo otherwise."""
    out = out or sys.stdout
    if response is None:
        return

    if dump_hex:
        hex_print(response.data, out)
    if filename:
        file_dump(response.data, filename)
        LOG.info('Saved %d bytes to %s', len(response.data), filename)
    if dump_hex or filename:
        return

    if response.binary:
        LOG.info('Received %d bytes of binary data (use --dump-file or --dump-hex)', len(response.data))
        return
    out.write(response.text + '\n')
    out.flush()
