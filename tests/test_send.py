"""Tests for outbound dispatch."""

import re

import pytest

from conftest import AGENT, USER, WORLD, make_config
from elizalink.bus.events import ConnectionState, EnvelopeKind
from elizalink.errors import ConfigurationError
from elizalink.session.client import ElizaSession


class TestSend:
    """Tests for send()."""

    @pytest.mark.asyncio
    async def test_send_while_disconnected_connects_first(self, session, factory) -> None:
        states = []
        session.on_state_change(states.append)

        message_id = await session.send("hi")

        assert states == [ConnectionState.CONNECTING, ConnectionState.CONNECTED]
        transport = factory.last
        assert [data["type"] for _, data in transport.emitted] == [1, 2]
        sends = transport.envelopes(EnvelopeKind.SEND_MESSAGE)
        assert len(sends) == 1
        assert sends[0]["payload"] == {
            "senderId": USER,
            "senderName": "mcp-user",
            "message": "hi",
            "roomId": AGENT,
            "agentId": AGENT,
            "worldId": WORLD,
            "messageId": message_id,
            "source": "mcp_client_chat",
        }

    @pytest.mark.asyncio
    async def test_message_id_format(self, session) -> None:
        message_id = await session.send("hi")
        assert re.fullmatch(r"mcp-msg-\d+-[a-z0-9]{7}", message_id)

    @pytest.mark.asyncio
    async def test_each_send_emits_exactly_once(self, session, factory) -> None:
        first = await session.send("one")
        second = await session.send("two")

        sends = factory.last.envelopes(EnvelopeKind.SEND_MESSAGE)
        assert [s["payload"]["message"] for s in sends] == ["one", "two"]
        assert first != second
        assert len(factory.last.envelopes(EnvelopeKind.ROOM_JOINING)) == 1

    @pytest.mark.asyncio
    async def test_send_after_drop_reconnects_and_rejoins(self, session, factory) -> None:
        await session.connect()
        await factory.last.fire_drop()

        await session.send("again")

        assert len(factory.created) == 2
        kinds = [data["type"] for _, data in factory.last.emitted]
        assert kinds == [1, 2]

    @pytest.mark.asyncio
    async def test_send_propagates_configuration_error(self, factory) -> None:
        session = ElizaSession(make_config(agent_id="", room_id=""), transport_factory=factory)

        with pytest.raises(ConfigurationError):
            await session.send("hi")
        assert factory.created == []

