from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal

import structlog

LOGGER = structlog.get_logger(__name__)

ReportEventKind = Literal[
    "report_submitted",
    "report_action_taken",
    "report_forwarded",
    "report_updated",
    "report_deleted",
]


@dataclass(frozen=True, slots=True)
class ReportEvent:
    """Something happened to a report that concerns ``level_id``."""

    level_id: int
    report_id: int
    kind: ReportEventKind
    status: str | None = None
    action: str | None = None
    actor_user_id: int | None = None


Subscriber = Callable[[ReportEvent], Awaitable[None]]
UnsubscribeCallback = Callable[[], Awaitable[None]]

_subscribers: dict[int, set[Subscriber]] = {}
_lock = asyncio.Lock()


async def subscribe(level_id: int, callback: Subscriber) -> UnsubscribeCallback:
    """Register a subscriber for a hierarchy level and return an unsubscribe coroutine."""
    async with _lock:
        listeners = _subscribers.setdefault(level_id, set())
        listeners.add(callback)
        listener_count = len(listeners)
    LOGGER.debug(
        "report.events.subscribe",
        level_id=level_id,
        listeners=listener_count,
    )

    async def _unsubscribe() -> None:
        remaining = 0
        async with _lock:
            listeners = _subscribers.get(level_id)
            if not listeners:
                return
            listeners.discard(callback)
            remaining = len(listeners)
            if not listeners:
                _subscribers.pop(level_id, None)
        LOGGER.debug(
            "report.events.unsubscribe",
            level_id=level_id,
            listeners=remaining,
        )

    return _unsubscribe


async def publish(event: ReportEvent) -> None:
    """Deliver ``event`` to every subscriber of its level without awaiting them."""
    async with _lock:
        listeners = list(_subscribers.get(event.level_id, ()))
    if not listeners:
        return

    LOGGER.debug(
        "report.events.publish",
        level_id=event.level_id,
        report_id=event.report_id,
        kind=event.kind,
        listeners=len(listeners),
    )
    for callback in listeners:
        asyncio.create_task(_invoke(callback, event))


async def _invoke(callback: Subscriber, event: ReportEvent) -> None:
    try:
        await callback(event)
    except Exception as exc:
        LOGGER.warning(
            "report.events.callback_error",
            error=str(exc),
            level_id=event.level_id,
            report_id=event.report_id,
            kind=event.kind,
        )


def subscriber_count(level_id: int) -> int:
    return len(_subscribers.get(level_id, ()))


__all__ = [
    "ReportEvent",
    "ReportEventKind",
    "publish",
    "subscribe",
    "subscriber_count",
]
