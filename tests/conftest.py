"""Pytest configuration and fixtures."""

import asyncio
import base64
import json
from collections.abc import Callable
from pathlib import Path

import pytest

from reckyprint.config import AgentConfig, FeatureConfig, FeatureSettings
from reckyprint.destinations import DestinationConfigResolver
from reckyprint.spool import SpoolDirectory

_CLOSE = object()


class FakeTransport:
    """In-memory stand-in for a websocket client connection."""

    def __init__(self):
        self.sent: list[dict] = []
        self.close_calls = 0
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    async def send(self, data: str) -> None:
        if self.closed:
            raise OSError("transport closed")
        self.sent.append(json.loads(data))

    def feed(self, message: dict | str) -> None:
        """Queue a message as if the server had sent it."""
        self._incoming.put_nowait(message if isinstance(message, str) else json.dumps(message))

    def drop(self) -> None:
        """Close from the server side."""
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self._incoming.put_nowait(_CLOSE)

    def actions(self) -> list[str]:
        return [m["action"] for m in self.sent]

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeServer:
    """Transport opener that records attempts and can refuse connections."""

    def __init__(self, refuse: bool = False):
        self.refuse = refuse
        self.attempts = 0
        self.transports: list[FakeTransport] = []

    async def __call__(self, url: str) -> FakeTransport:
        self.attempts += 1
        if self.refuse:
            raise OSError("Connection refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until ``predicate`` is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not reached in time")
        await asyncio.sleep(0.005)


def job_payload(filename: str = "ticket.pdf", destination: str | None = None, **extra) -> dict:
    """A ``silentPrint`` payload as the server sends it."""
    payload = {
        "file": base64.b64encode(b"%PDF-1.4 test").decode(),
        "filename": filename,
        "contentType": "application/pdf",
        "idUsuario": 7,
    }
    if destination is not None:
        payload["destino"] = destination
    payload.update(extra)
    return payload


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., AgentConfig]:
    """Factory for fast-timing configurations."""

    def _make(**overrides) -> AgentConfig:
        values = {
            "server_url": "ws://localhost:9090/ws",
            "agent_key": "test-agent-key",
            "reconnect_delay": 0.01,
            "reconnect_max_attempts": 3,
            "keepalive_interval": 10.0,
            "keepalive_timeout": 10.0,
            "job_pause": 0,
            "temp_dir": str(tmp_path / "spool"),
            "temp_file_cleanup_delay": 0,
        }
        values.update(overrides)
        return AgentConfig(**values)

    return _make


@pytest.fixture
def spool(tmp_path: Path) -> SpoolDirectory:
    directory = SpoolDirectory(tmp_path / "spool", cleanup_delay=0)
    directory.ensure()
    return directory


@pytest.fixture
def receipt_resolver() -> DestinationConfigResolver:
    """Cut and beep off globally, on for the CAJA receipt printer."""
    return DestinationConfigResolver(
        cut=FeatureConfig(
            defaults=FeatureSettings(enabled=False, mode="full", delay_ms=3000),
            per_printer={"CAJA": FeatureSettings(enabled=True, mode="partial", delay_ms=1000)},
        ),
        beep=FeatureConfig(
            defaults=FeatureSettings(enabled=False, count=4, duration=6, delay_ms=500),
            per_printer={"CAJA": FeatureSettings(enabled=True, count=2)},
        ),
    )
