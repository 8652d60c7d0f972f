"""Tests for inbound correlation: FIFO pairing, filtering, timeouts."""

import asyncio

import pytest

from conftest import AGENT, reply, settle
from elizalink.bus.events import EnvelopeKind, InboundReply
from elizalink.errors import ResponseTimeoutError, WaiterDiscardedError


async def _waiting(session) -> asyncio.Task:
    """Start wait_for_next() and yield until the waiter is registered."""
    before = session.pending_waiters
    task = asyncio.create_task(session.wait_for_next())
    await settle(lambda: session.pending_waiters == before + 1)
    return task


class TestFifoCorrelation:
    """Replies are handed to waiters strictly in arrival order."""

    @pytest.mark.asyncio
    async def test_interleaved_waiters_and_replies(self, session, factory) -> None:
        await session.connect()
        transport = factory.last

        w1 = await _waiting(session)
        await transport.broadcast(reply("R1"))
        w2 = await _waiting(session)
        await transport.broadcast(reply("R2"))
        w3 = await _waiting(session)
        await transport.broadcast(reply("R3"))

        assert (await w1).text == "R1"
        assert (await w2).text == "R2"
        assert (await w3).text == "R3"
        assert session.pending_waiters == 0
        assert session.queued_replies == 0

    @pytest.mark.asyncio
    async def test_waiters_registered_together_are_served_in_order(self, session, factory) -> None:
        await session.connect()
        w1 = await _waiting(session)
        w2 = await _waiting(session)

        await factory.last.broadcast(reply("first"))
        await factory.last.broadcast(reply("second"))

        assert (await w1).text == "first"
        assert (await w2).text == "second"

    @pytest.mark.asyncio
    async def test_queued_reply_resolves_immediately(self, session, factory) -> None:
        await session.connect()
        await factory.last.broadcast(reply("early"))
        assert session.queued_replies == 1

        result = await session.wait_for_next()

        assert result.text == "early"
        assert session.queued_replies == 0
        assert session.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_reply_keeps_extra_fields(self, session, factory) -> None:
        await session.connect()
        await factory.last.broadcast(reply("hi", thought="thinking", createdAt=123))

        result = await session.wait_for_next()

        assert isinstance(result, InboundReply)
        assert result.extra == {"thought": "thinking", "createdAt": 123}
        assert result.sender_id == AGENT


class TestFiltering:
    """Foreign or empty replies reach observers but never waiters."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "data",
        [
            reply("hello", sender="someone-else"),
            reply("   "),
            reply(""),
            {"senderId": AGENT},
            "not a dict",
        ],
    )
    async def test_invalid_reply_is_observed_not_queued(self, session, factory, data) -> None:
        await session.connect()
        observed = []
        session.on_message(observed.append)

        await factory.last.broadcast(data)

        assert len(observed) == 1
        assert session.queued_replies == 0
        with pytest.raises(ResponseTimeoutError):
            await session.wait_for_next(timeout_ms=20)

    @pytest.mark.asyncio
    async def test_valid_reply_is_also_observed(self, session, factory) -> None:
        await session.connect()
        observed = []
        session.on_message(observed.append)

        await factory.last.broadcast(reply("ok"))

        assert [m.text for m in observed] == ["ok"]
        assert session.queued_replies == 1

    @pytest.mark.asyncio
    async def test_faulty_message_listener_is_isolated(self, session, factory) -> None:
        await session.connect()
        seen = []

        def broken(message):
            raise ValueError("listener failure")

        session.on_message(broken)
        session.on_message(seen.append)

        await factory.last.broadcast(reply("ok"))

        assert len(seen) == 1
        assert session.queued_replies == 1


class TestTimeouts:
    """Timed-out waiters clean up after themselves."""

    @pytest.mark.asyncio
    async def test_timeout_error_names_agent_and_duration(self, session) -> None:
        await session.connect()

        with pytest.raises(ResponseTimeoutError) as exc_info:
            await session.wait_for_next(timeout_ms=20)

        assert exc_info.value.agent_id == AGENT
        assert exc_info.value.timeout_ms == 20
        assert f"agent {AGENT} after 20ms" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_default_timeout_comes_from_config(self, session) -> None:
        await session.connect()

        with pytest.raises(ResponseTimeoutError) as exc_info:
            await session.wait_for_next()

        assert exc_info.value.timeout_ms == 100

    @pytest.mark.asyncio
    async def test_expired_waiter_is_removed_and_late_reply_is_queued(self, session, factory) -> None:
        await session.connect()
        with pytest.raises(ResponseTimeoutError):
            await session.wait_for_next(timeout_ms=20)
        assert session.pending_waiters == 0

        await factory.last.broadcast(reply("late"))

        assert session.queued_replies == 1
        assert (await session.wait_for_next()).text == "late"

    @pytest.mark.asyncio
    async def test_satisfied_waiter_does_not_time_out_later(self, session, factory) -> None:
        await session.connect()
        task = asyncio.create_task(session.wait_for_next(timeout_ms=30))
        await settle(lambda: session.pending_waiters == 1)

        await factory.last.broadcast(reply("in time"))
        assert (await task).text == "in time"

        await asyncio.sleep(0.05)
        assert session.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_cancelled_waiter_is_removed(self, session) -> None:
        await session.connect()
        task = await _waiting(session)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await settle(lambda: session.pending_waiters == 0)

    @pytest.mark.asyncio
    async def test_waiter_fails_when_connection_drops(self, session, factory) -> None:
        await session.connect()
        task = await _waiting(session)

        await factory.last.fire_drop()

        with pytest.raises(WaiterDiscardedError):
            await task


class TestSendAndAwait:
    """send_and_await() emulates request/response over the broadcast stream."""

    @pytest.mark.asyncio
    async def test_reply_is_returned(self, session, factory) -> None:
        await session.connect()
        transport = factory.last
        task = asyncio.create_task(session.send_and_await("ping"))
        await settle(lambda: transport.envelopes(EnvelopeKind.SEND_MESSAGE))

        await transport.broadcast(reply("pong"))
        result = await task

        assert result.ok
        assert result.text == "pong"
        assert result.sender_name == "Eliza"
        assert result.room_id == AGENT
        sent = transport.envelopes(EnvelopeKind.SEND_MESSAGE)[0]
        assert result.message_id == sent["payload"]["messageId"]

    @pytest.mark.asyncio
    async def test_timeout_resolves_with_error_shape(self, session) -> None:
        result = await session.send_and_await("ping")

        assert not result.ok
        assert result.text is None
        assert "Timeout waiting for a valid textual response" in result.error
        assert result.message_id.startswith("mcp-msg-")
        assert session.pending_waiters == 0

    @pytest.mark.asyncio
    async def test_waiter_is_registered_before_emitting(self, session, factory) -> None:
        await session.connect()
        transport = factory.last
        original_emit = transport.emit

        async def emit_and_reply(event, data):
            await original_emit(event, data)
            if data["type"] == EnvelopeKind.SEND_MESSAGE:
                await transport.broadcast(reply("instant"))

        transport.emit = emit_and_reply

        result = await session.send_and_await("ping")

        assert result.text == "instant"

    @pytest.mark.asyncio
    async def test_emit_failure_removes_waiter(self, session, factory) -> None:
        await session.connect()

        async def failing_emit(event, data):
            raise ConnectionError("socket closed")

        factory.last.emit = failing_emit

        with pytest.raises(ConnectionError):
            await session.send_and_await("ping")
        await settle(lambda: session.pending_waiters == 0)

    @pytest.mark.asyncio
    async def test_overlapping_calls_pair_in_fifo_order(self, session, factory) -> None:
        await session.connect()
        transport = factory.last
        first = asyncio.create_task(session.send_and_await("one"))
        second = asyncio.create_task(session.send_and_await("two"))
        await settle(lambda: len(transport.envelopes(EnvelopeKind.SEND_MESSAGE)) == 2)

        await transport.broadcast(reply("A"))
        await transport.broadcast(reply("B"))

        assert (await first).text == "A"
        assert (await second).text == "B"
