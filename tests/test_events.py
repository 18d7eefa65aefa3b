"""Tests for request-transaction hooks and the in-process event bus.

Covers:
- get_session runs after-commit hooks on commit and after-rollback hooks on
  handler errors or a failed commit
- A failing hook is logged and the remaining hooks still run
- emit_on_commit publishes only once the transaction commits
- Global and typed delivery, failing subscribers, duplicate subscriptions
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from cvreview import events
from cvreview.db.engine import after_commit, after_rollback, get_session, run_session_hooks
from cvreview.schemas.events import EventType, SystemEvent


def _fake_session() -> MagicMock:
    session = MagicMock()
    session.info = {}
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def _factory(session: MagicMock) -> MagicMock:
    factory = MagicMock()
    factory.return_value.__aenter__ = AsyncMock(return_value=session)
    factory.return_value.__aexit__ = AsyncMock(return_value=False)
    return factory


def _event(event_type: EventType = EventType.MEETING_BOOKED) -> SystemEvent:
    return SystemEvent(event_type=event_type, entity_id=uuid.uuid4(), source_module="tests")


class TestSessionHooks:
    @pytest.mark.asyncio()
    async def test_commit_runs_commit_hooks_only(self):
        session = _fake_session()
        on_commit, on_rollback = AsyncMock(), AsyncMock()

        with patch("cvreview.db.engine.async_session_factory", _factory(session)):
            dependency = get_session()
            db = await dependency.__anext__()
            after_commit(db, on_commit)
            after_rollback(db, on_rollback)
            with pytest.raises(StopAsyncIteration):
                await dependency.__anext__()

        session.commit.assert_awaited_once()
        on_commit.assert_awaited_once()
        on_rollback.assert_not_awaited()
        assert session.info == {}

    @pytest.mark.asyncio()
    async def test_handler_error_runs_rollback_hooks(self):
        session = _fake_session()
        on_commit, on_rollback = AsyncMock(), AsyncMock()

        with patch("cvreview.db.engine.async_session_factory", _factory(session)):
            dependency = get_session()
            db = await dependency.__anext__()
            after_commit(db, on_commit)
            after_rollback(db, on_rollback)
            with pytest.raises(RuntimeError, match="handler failed"):
                await dependency.athrow(RuntimeError("handler failed"))

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()
        on_rollback.assert_awaited_once()
        on_commit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_failed_commit_runs_rollback_hooks(self):
        session = _fake_session()
        session.commit.side_effect = ConnectionResetError("connection lost")
        on_commit, on_rollback = AsyncMock(), AsyncMock()

        with patch("cvreview.db.engine.async_session_factory", _factory(session)):
            dependency = get_session()
            db = await dependency.__anext__()
            after_commit(db, on_commit)
            after_rollback(db, on_rollback)
            with pytest.raises(ConnectionResetError):
                await dependency.__anext__()

        on_rollback.assert_awaited_once()
        on_commit.assert_not_awaited()

    @pytest.mark.asyncio()
    async def test_failing_hook_does_not_stop_the_rest(self):
        session = _fake_session()
        broken = AsyncMock(side_effect=RuntimeError("calendar down"))
        after = AsyncMock()
        after_rollback(session, broken)
        after_rollback(session, after)

        await run_session_hooks(session, committed=False)

        broken.assert_awaited_once()
        after.assert_awaited_once()


class TestEmitOnCommit:
    @pytest.mark.asyncio()
    async def test_published_after_commit(self):
        session = _fake_session()
        event = _event()

        with patch("cvreview.events.emit", new_callable=AsyncMock) as mock_emit:
            events.emit_on_commit(session, event)
            mock_emit.assert_not_called()
            await run_session_hooks(session, committed=True)

        mock_emit.assert_awaited_once_with(event)

    @pytest.mark.asyncio()
    async def test_dropped_on_rollback(self):
        session = _fake_session()

        with patch("cvreview.events.emit", new_callable=AsyncMock) as mock_emit:
            events.emit_on_commit(session, _event())
            await run_session_hooks(session, committed=False)

        mock_emit.assert_not_called()


class TestEventBus:
    @pytest.fixture(autouse=True)
    def fresh_bus(self, monkeypatch):
        monkeypatch.setattr(events, "_global_handlers", [])
        monkeypatch.setattr(events, "_typed_handlers", {})
        monkeypatch.setattr(events, "_queue", None)
        monkeypatch.setattr(events, "_worker", None)

    @pytest.mark.asyncio()
    async def test_global_and_typed_delivery(self):
        everything, cancellations = AsyncMock(), AsyncMock()
        events.subscribe(everything)
        events.subscribe(cancellations, [EventType.MEETING_CANCELLED])
        booked, cancelled = _event(EventType.MEETING_BOOKED), _event(EventType.MEETING_CANCELLED)

        await events.emit(booked)
        await events.emit(cancelled)
        await events.stop_event_system()

        assert [c.args[0] for c in everything.await_args_list] == [booked, cancelled]
        cancellations.assert_awaited_once_with(cancelled)

    @pytest.mark.asyncio()
    async def test_failing_subscriber_does_not_block_others(self):
        broken = AsyncMock(side_effect=RuntimeError("audit table missing"))
        healthy = AsyncMock()
        events.subscribe(broken)
        events.subscribe(healthy)
        first, second = _event(), _event()

        await events.emit(first)
        await events.emit(second)
        await events.stop_event_system()

        assert broken.await_count == 2
        assert [c.args[0] for c in healthy.await_args_list] == [first, second]

    @pytest.mark.asyncio()
    async def test_subscribing_twice_delivers_once(self):
        handler = AsyncMock()
        events.subscribe(handler, [EventType.MEETING_BOOKED])
        events.subscribe(handler, [EventType.MEETING_BOOKED])

        await events.emit(_event(EventType.MEETING_BOOKED))
        await events.stop_event_system()

        handler.assert_awaited_once()
