"""In-process event bus for scheduling, conferencing and notification events.

Two ways to publish:

- `emit(event)` queues the event now. Used for facts that are already true
  whatever happens to the request transaction: a Google API call was made,
  a slot conflict was seen, a Jitsi room was handed out.
- `emit_on_commit(session, event)` queues the event only once the request
  transaction commits, and drops it on rollback. Used for booking and
  preference changes, so subscribers (audit, calendar release, e-mail)
  only ever act on writes that persisted.

A single background worker delivers queued events. Global subscribers get
every event; typed subscribers only the types they registered for. A failing
subscriber is logged and does not affect the others.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable, Coroutine
from functools import partial
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from cvreview.db.engine import after_commit
from cvreview.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

_global_handlers: list[EventHandler] = []
_typed_handlers: dict[EventType, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker: asyncio.Task[None] | None = None


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register `handler` for `event_types`, or for every event when None.

    Registering the same handler twice for a type is a no-op, so a restarted
    lifespan does not double-deliver.
    """
    if event_types is None:
        if handler not in _global_handlers:
            _global_handlers.append(handler)
        logger.info("Subscribed %s to all events", _handler_name(handler))
        return

    for event_type in event_types:
        handlers = _typed_handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)
    logger.info(
        "Subscribed %s to %s",
        _handler_name(handler),
        ", ".join(t.value for t in event_types),
    )


async def emit(event: SystemEvent) -> None:
    """Queue `event` for delivery; the caller never waits on subscribers."""
    queue = _ensure_running()
    await queue.put(event)
    logger.debug("Event queued: %s (entity=%s)", event.event_type.value, event.entity_id)


def emit_on_commit(session: AsyncSession, event: SystemEvent) -> None:
    """Queue `event` after the transaction on `session` commits; drop it on rollback."""
    after_commit(session, partial(emit, event))


async def start_event_system() -> None:
    """Start the delivery worker. Called from the FastAPI lifespan."""
    _ensure_running()
    logger.info(
        "Event system started: %d global, %d typed subscriptions",
        len(_global_handlers),
        sum(len(handlers) for handlers in _typed_handlers.values()),
    )


async def stop_event_system() -> None:
    """Deliver whatever is still queued, then stop the worker."""
    global _queue, _worker

    if _queue is not None:
        await _queue.join()
    if _worker is not None and not _worker.done():
        _worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await _worker

    _queue = None
    _worker = None
    logger.info("Event system stopped")


def _ensure_running() -> asyncio.Queue[SystemEvent]:
    global _queue, _worker
    if _queue is None:
        _queue = asyncio.Queue()
    if _worker is None or _worker.done():
        _worker = asyncio.create_task(_deliver_forever(_queue))
        logger.info("Event worker started")
    return _queue


async def _deliver_forever(queue: asyncio.Queue[SystemEvent]) -> None:
    while True:
        event = await queue.get()
        try:
            await _deliver(event)
        finally:
            queue.task_done()


async def _deliver(event: SystemEvent) -> None:
    handlers = [*_global_handlers, *_typed_handlers.get(event.event_type, [])]
    if handlers:
        await asyncio.gather(*(_call(handler, event) for handler in handlers))


async def _call(handler: EventHandler, event: SystemEvent) -> None:
    try:
        await handler(event)
    except Exception:
        logger.exception(
            "Subscriber %s failed on %s (entity=%s)",
            _handler_name(handler),
            event.event_type.value,
            event.entity_id,
        )


def _handler_name(handler: EventHandler) -> str:
    return getattr(handler, "__qualname__", repr(handler))
