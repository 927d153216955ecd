import asyncio
import logging
from dataclasses import dataclass, field
from time import time

from voice_chat.domain.errors import CaptureError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureEvent:
    timestamp: float = field(default_factory=time)


@dataclass(frozen=True)
class TranscriptUpdated(CaptureEvent):
    text: str = ""
    is_final: bool = False


@dataclass(frozen=True)
class RecordingStateChanged(CaptureEvent):
    is_recording: bool = False


@dataclass(frozen=True)
class CaptureFailed(CaptureEvent):
    error: CaptureError | None = None


class Subscription:
    """Queue-backed view of the bus; registered as soon as it is created."""

    def __init__(self, bus: "TranscriptEventBus") -> None:
        self._bus = bus
        self._queue: asyncio.Queue[CaptureEvent | None] = asyncio.Queue()

    def deliver(self, event: CaptureEvent | None) -> None:
        self._queue.put_nowait(event)

    def close(self) -> None:
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> CaptureEvent:
        event = await self._queue.get()
        if event is None:
            self.close()
            raise StopAsyncIteration
        return event


class TranscriptEventBus:
    """Fans capture events out to every subscriber in publish order.

    ``publish`` must be called from the event loop that owns the subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscription] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, event: CaptureEvent) -> None:
        if self._closed:
            logger.debug("Dropping %s, bus is closed", type(event).__name__)
            return
        for subscription in list(self._subscribers):
            subscription.deliver(event)

    def subscribe(self) -> Subscription:
        subscription = Subscription(self)
        if self._closed:
            subscription.deliver(None)
        else:
            self._subscribers.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscribers:
            self._subscribers.remove(subscription)

    def close(self) -> None:
        self._closed = True
        for subscription in list(self._subscribers):
            subscription.deliver(None)
