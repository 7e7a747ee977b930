"""
Live booking change channel.

Observer-style fan-out of BookingChange events to subscribers. Publishing is
thread-safe (services publish from worker threads); subscribers consume
either synchronously with ``get``/``drain`` or from asyncio with
``async for``. Closing a subscription unsubscribes it.
"""

from __future__ import annotations

import asyncio
from collections import deque
import logging
import threading
from typing import Callable, Deque, List, Optional, Set

from .booking_events import BookingChange

logger = logging.getLogger(__name__)

ChangeFilter = Callable[[BookingChange], bool]

DEFAULT_MAX_PENDING = 1000


class Subscription:
    def __init__(
        self,
        channel: "BookingEventChannel",
        predicate: Optional[ChangeFilter] = None,
        max_pending: int = DEFAULT_MAX_PENDING,
    ):
        self._channel = channel
        self._predicate = predicate
        self._items: Deque[BookingChange] = deque(maxlen=max_pending)
        self._cond = threading.Condition()
        self._closed = False
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._wake: Optional[asyncio.Event] = None

    @property
    def closed(self) -> bool:
        return self._closed

    def matches(self, event: BookingChange) -> bool:
        return self._predicate is None or self._predicate(event)

    def _deliver(self, event: BookingChange) -> None:
        with self._cond:
            if self._closed:
                return
            if len(self._items) == self._items.maxlen:
                logger.warning("Booking subscription backlog full; dropping oldest event")
            self._items.append(event)
            self._cond.notify_all()
            loop, wake = self._loop, self._wake
        self._wake_async(loop, wake)

    @staticmethod
    def _wake_async(
        loop: Optional[asyncio.AbstractEventLoop], wake: Optional[asyncio.Event]
    ) -> None:
        if loop is None or wake is None:
            return
        try:
            loop.call_soon_threadsafe(wake.set)
        except RuntimeError:
            # Consumer's loop already closed.
            logger.debug("Subscription loop closed before wake-up")

    def get(self, timeout: Optional[float] = None) -> Optional[BookingChange]:
        """Next event, waiting up to ``timeout`` seconds; None on timeout or close."""
        with self._cond:
            if not self._items and not self._closed:
                self._cond.wait(timeout)
            return self._items.popleft() if self._items else None

    def drain(self) -> List[BookingChange]:
        with self._cond:
            items = list(self._items)
            self._items.clear()
            return items

    async def next_event(self, timeout: Optional[float] = None) -> Optional[BookingChange]:
        loop = asyncio.get_running_loop()
        with self._cond:
            if self._items:
                return self._items.popleft()
            if self._closed:
                return None
            self._loop = loop
            self._wake = asyncio.Event()
            wake = self._wake
        try:
            await asyncio.wait_for(wake.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        finally:
            with self._cond:
                self._wake = None
        with self._cond:
            return self._items.popleft() if self._items else None

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> BookingChange:
        while True:
            event = await self.next_event()
            if event is not None:
                return event
            if self._closed:
                raise StopAsyncIteration

    def close(self) -> None:
        self._channel.unsubscribe(self)
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            loop, wake = self._loop, self._wake
        self._wake_async(loop, wake)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class BookingEventChannel:
    def __init__(self) -> None:
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(
        self,
        predicate: Optional[ChangeFilter] = None,
        *,
        user_id: Optional[str] = None,
        booking_id: Optional[str] = None,
    ) -> Subscription:
        """
        Register a subscriber.

        ``user_id`` and ``booking_id`` are equality filters combined with the
        optional ``predicate``.
        """

        def _combined(event: BookingChange) -> bool:
            if user_id is not None and event.user_id != user_id:
                return False
            if booking_id is not None and event.booking_id != booking_id:
                return False
            return predicate is None or predicate(event)

        subscription = Subscription(self, _combined)
        with self._lock:
            self._subscribers.add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def publish(self, event: BookingChange) -> int:
        """Deliver to every matching subscriber; returns the delivery count."""
        with self._lock:
            targets = list(self._subscribers)
        delivered = 0
        for subscription in targets:
            if subscription.matches(event):
                subscription._deliver(event)
                delivered += 1
        logger.debug(
            "Published booking change",
            extra={"booking_id": event.booking_id, "change_type": event.change_type},
        )
        return delivered


booking_channel = BookingEventChannel()


def get_booking_channel() -> BookingEventChannel:
    return booking_channel
