"""Shared fixtures: a fake LXI instrument on localhost and an in-memory transport."""

from __future__ import annotations

import socketserver
import threading
from typing import Callable, Dict, List, Union

import pytest

from pylxi.errors import ResponseTimeoutError

# A reply is raw bytes, or a callable writing to the handler's wfile
Reply = Union[bytes, Callable[["_InstrumentHandler"], None]]

SILENT = b""


class _InstrumentHandler(socketserver.StreamRequestHandler):
    REPLIES: Dict[str, Reply] = {}
    RECEIVED: List[str] = []

    def handle(self) -> None:
        while True:
            line = self.rfile.readline()
            if not line:
                return
            cmd = line.decode("ascii", errors="ignore").strip()
            self.RECEIVED.append(cmd)
            reply = self.REPLIES.get(cmd.upper(), SILENT)
            if callable(reply):
                if reply(self) is False:
                    return  # drop the connection
                continue
            if reply:
                self.wfile.write(reply)
                self.wfile.flush()


class _ThreadedTCPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    daemon_threads = True
    allow_reuse_address = True


class FakeInstrument:
    def __init__(self, replies: Dict[str, Reply]):
        self.received: List[str] = []
        handler_cls = type("_BoundHandler", (_InstrumentHandler,),
                           {"REPLIES": {k.upper(): v for k, v in replies.items()},
                            "RECEIVED": self.received})
        self._srv = _ThreadedTCPServer(("127.0.0.1", 0), handler_cls)
        self.address, self.port = self._srv.server_address
        self._thread = threading.Thread(target=self._srv.serve_forever, kwargs={"poll_interval": 0.05},
                                        daemon=True)

    def __enter__(self) -> "FakeInstrument":
        self._thread.start()
        return self

    def __exit__(self, *exc) -> None:
        self._srv.shutdown()
        self._srv.server_close()


@pytest.fixture
def instrument():
    """Factory: instrument({'*IDN?': b'RIGOL...\\n'}) -> running FakeInstrument."""
    started = []

    def make(replies: Dict[str, Reply]) -> FakeInstrument:
        inst = FakeInstrument(replies).__enter__()
        started.append(inst)
        return inst

    yield make
    for inst in started:
        inst.__exit__(None, None, None)


class MemoryTransport:
    """Transport double: replies from a dict, records sends, tracks close()."""

    def __init__(self, address: str, port: int, replies: Dict[str, object]):
        self.address = address
        self.port = port
        self.replies = replies
        self.sent: List[bytes] = []
        self.connected = False
        self.closed = False
        self._pending: List[str] = []

    def connect(self, timeout: float) -> None:
        self.connected = True

    def send(self, data: bytes, timeout: float) -> None:
        self.sent.append(data)
        self._pending.append(data.decode("latin-1").strip())

    def receive(self, timeout: float, max_size: int = 0) -> bytes:
        cmd = self._pending.pop(0)
        reply = self.replies.get(cmd)
        if reply is None:
            raise ResponseTimeoutError(f"No response to {cmd}")
        if isinstance(reply, BaseException):
            raise reply
        return reply

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def memory_transport():
    """Returns (factory, instances) for Session/run_* transport_factory arguments."""
    created: List[MemoryTransport] = []

    def factory_for(replies: Dict[str, object]):
        def factory(address: str, port: int) -> MemoryTransport:
            t = MemoryTransport(address, port, replies)
            created.append(t)
            return t
        return factory

    return factory_for, created
