"""Tests for the session lifecycle: connect, disconnect, reconnect failures."""

import asyncio

import pytest

from conftest import AGENT, FakeTransport, TransportFactory, make_config, settle
from elizalink.bus.events import ConnectionState, EnvelopeKind
from elizalink.config.schema import TransportConfig
from elizalink.errors import (
    ConfigurationError,
    ConnectTimeoutError,
    ReconnectFailedError,
    TransportError,
)
from elizalink.session.client import ElizaSession


def _session(factory: TransportFactory, **overrides) -> ElizaSession:
    return ElizaSession(make_config(**overrides), TransportConfig(switch_grace=0), transport_factory=factory)


class TestConnect:
    """Tests for connect()."""

    @pytest.mark.asyncio
    async def test_connect_transitions_and_joins_room(self, session, factory) -> None:
        states = []
        session.on_state_change(states.append)
        assert session.state == ConnectionState.DISCONNECTED

        assert await session.connect() is True

        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        joins = factory.last.envelopes(EnvelopeKind.ROOM_JOINING)
        assert joins == [{"type": 1, "payload": {"roomId": AGENT, "agentIds": [AGENT]}}]
        assert session.joined

    @pytest.mark.asyncio
    async def test_connect_passes_identity_query(self, session, factory) -> None:
        await session.connect()

        options = factory.last.options
        assert options.url == "http://eliza.test"
        assert options.query == {"clientType": "client", "agentId": AGENT, "userId": "user-1"}
        assert options.reconnection_attempts == 5
        assert options.reconnection_delay_s == 3.0
        assert options.transports == ["polling", "websocket"]

    @pytest.mark.asyncio
    async def test_connect_is_idempotent(self, session, factory) -> None:
        assert await session.connect() is True
        assert await session.connect() is True

        assert len(factory.created) == 1
        assert factory.last.open_calls == 1
        assert len(factory.last.envelopes(EnvelopeKind.ROOM_JOINING)) == 1

    @pytest.mark.asyncio
    async def test_connect_records_connection_time(self, session) -> None:
        assert session.connection_time is None
        await session.connect()
        assert isinstance(session.connection_time, int)
        assert session.connection_time >= 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "agent_id,room_id",
        [("a", "b"), ("a", ""), ("", "a"), ("", ""), ("agent-1", "agent-2")],
    )
    async def test_connect_rejects_bad_identity(self, factory, agent_id, room_id) -> None:
        session = _session(factory, agent_id=agent_id, room_id=room_id)

        with pytest.raises(ConfigurationError):
            await session.connect()

        assert factory.created == []
        assert session.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_connect_timeout_sets_error_state(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory, connection_timeout=30)
        errors = []
        session.on_error(errors.append)

        with pytest.raises(ConnectTimeoutError, match="30ms"):
            await session.connect()

        assert session.state == ConnectionState.ERROR
        assert len(errors) == 1 and isinstance(errors[0], ConnectTimeoutError)
        assert factory.last.close_calls == 1

    @pytest.mark.asyncio
    async def test_error_state_is_not_terminal(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory, connection_timeout=30)
        with pytest.raises(ConnectTimeoutError):
            await session.connect()

        factory.auto_connect = True
        assert await session.connect() is True
        assert session.state == ConnectionState.CONNECTED
        assert len(factory.created) == 2

    @pytest.mark.asyncio
    async def test_events_from_stale_transport_are_ignored(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory, connection_timeout=30)
        with pytest.raises(ConnectTimeoutError):
            await session.connect()

        await factory.last.fire_connect()

        assert session.state == ConnectionState.ERROR
        assert factory.last.emitted == []

    @pytest.mark.asyncio
    async def test_reconnect_failed_rejects_pending_connect(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory)
        task = asyncio.create_task(session.connect())
        await settle(lambda: factory.created)

        await factory.last.fire_reconnect_failed()

        with pytest.raises(ReconnectFailedError):
            await task
        assert session.state == ConnectionState.ERROR

    @pytest.mark.asyncio
    async def test_concurrent_connects_share_one_attempt(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory)
        first = asyncio.create_task(session.connect())
        await settle(lambda: factory.created)
        second = asyncio.create_task(session.connect())
        await asyncio.sleep(0)

        await factory.last.fire_connect()

        assert await first is True
        assert await second is True
        assert len(factory.created) == 1


    @pytest.mark.asyncio
    async def test_join_failure_rejects_connect(self) -> None:
        class RejectingTransport(FakeTransport):
            async def emit(self, event, data):
                raise TransportError("emit refused")

        session = ElizaSession(make_config(), transport_factory=RejectingTransport)
        errors = []
        session.on_error(errors.append)

        with pytest.raises(TransportError, match="Failed to join room: emit refused"):
            await session.connect()

        assert session.state == ConnectionState.ERROR
        assert not session.joined
        assert len(errors) == 1


class TestDisconnect:
    """Tests for disconnect() and transport-driven disconnects."""

    @pytest.mark.asyncio
    async def test_disconnect_is_driven_by_transport_event(self, session, factory) -> None:
        await session.connect()

        await session.disconnect()

        assert factory.last.close_calls == 1
        assert session.state == ConnectionState.DISCONNECTED
        assert not session.joined

    @pytest.mark.asyncio
    async def test_disconnect_when_closed_is_noop(self, session) -> None:
        await session.disconnect()
        await session.disconnect()
        assert session.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_transport_drop_resets_membership(self, session, factory) -> None:
        await session.connect()

        await factory.last.fire_drop("ping timeout")

        assert session.state == ConnectionState.DISCONNECTED
        assert not session.joined

    @pytest.mark.asyncio
    async def test_disconnect_aborts_pending_connect(self) -> None:
        factory = TransportFactory(auto_connect=False)
        session = _session(factory)
        task = asyncio.create_task(session.connect())
        await settle(lambda: factory.created)

        await session.disconnect()

        with pytest.raises(TransportError):
            await task
        assert session.state == ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_faulty_state_listener_does_not_break_session(self, session) -> None:
        seen = []

        def broken(state):
            raise RuntimeError("boom")

        session.on_state_change(broken)
        session.on_state_change(seen.append)

        assert await session.connect() is True
        assert seen == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
