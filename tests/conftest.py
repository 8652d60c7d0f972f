"""Pytest configuration and shared fixtures."""

import asyncio
from typing import Any

import pytest

from elizalink.config.schema import SessionConfig, TransportConfig
from elizalink.session.client import ElizaSession
from elizalink.transport.base import (
    CONNECT,
    DISCONNECT,
    MESSAGE_BROADCAST,
    RECONNECT_FAILED,
    Transport,
    TransportOptions,
)

AGENT = "agent-x"
USER = "user-1"
WORLD = "world-1"


class FakeTransport(Transport):
    """In-memory transport: records emissions and lets tests fire events."""

    def __init__(self, options: TransportOptions, auto_connect: bool = True):
        super().__init__(options)
        self.auto_connect = auto_connect
        self.emitted: list[tuple[str, dict[str, Any]]] = []
        self.open_calls = 0
        self.close_calls = 0
        self._connected = False

    @property
    def connected(self) -> bool:
        return self._connected

    async def open(self) -> None:
        self.open_calls += 1
        if self.auto_connect:
            await self.fire_connect()

    async def close(self) -> None:
        self.close_calls += 1
        if self._connected:
            self._connected = False
            await self._fire(DISCONNECT, "io client disconnect")

    async def emit(self, event: str, data: dict[str, Any]) -> None:
        self.emitted.append((event, data))

    async def fire_connect(self) -> None:
        self._connected = True
        await self._fire(CONNECT)

    async def fire_drop(self, reason: str = "transport close") -> None:
        self._connected = False
        await self._fire(DISCONNECT, reason)

    async def fire_reconnect_failed(self) -> None:
        await self._fire(RECONNECT_FAILED)

    async def broadcast(self, data: Any) -> None:
        await self._fire(MESSAGE_BROADCAST, data)

    def envelopes(self, kind: int | None = None) -> list[dict[str, Any]]:
        return [
            data for event, data in self.emitted
            if event == "message" and (kind is None or data["type"] == kind)
        ]


class TransportFactory:
    """Creates FakeTransports and remembers every one it created."""

    def __init__(self, auto_connect: bool = True):
        self.auto_connect = auto_connect
        self.created: list[FakeTransport] = []

    def __call__(self, options: TransportOptions) -> FakeTransport:
        transport = FakeTransport(options, auto_connect=self.auto_connect)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


def make_config(**overrides: Any) -> SessionConfig:
    values = {
        "server_url": "http://eliza.test",
        "user_id": USER,
        "world_id": WORLD,
        "agent_id": AGENT,
        "room_id": AGENT,
        "connection_timeout": 200,
        "response_timeout": 100,
    }
    values.update(overrides)
    return SessionConfig(**values)


def reply(text: str = "hello", sender: str = AGENT, **extra: Any) -> dict[str, Any]:
    return {"id": f"r-{text}", "senderId": sender, "senderName": "Eliza", "text": text,
            "roomId": AGENT, **extra}


@pytest.fixture
def factory() -> TransportFactory:
    return TransportFactory()


@pytest.fixture
def session(factory: TransportFactory) -> ElizaSession:
    return ElizaSession(
        make_config(),
        TransportConfig(switch_grace=0),
        transport_factory=factory,
    )


async def settle(predicate, rounds: int = 50) -> None:
    """Yield to the event loop until predicate() holds."""
    for _ in range(rounds):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
