import asyncio

import pytest

from voice_chat.domain.events import RecordingStateChanged, TranscriptEventBus, TranscriptUpdated


class TestTranscriptEventBus:
    @pytest.mark.asyncio
    async def test_subscriber_sees_events_in_order(self):
        bus = TranscriptEventBus()
        subscription = bus.subscribe()
        bus.publish(RecordingStateChanged(is_recording=True))
        bus.publish(TranscriptUpdated(text="hi", is_final=True))
        bus.close()

        events = [event async for event in subscription]
        assert [type(event) for event in events] == [RecordingStateChanged, TranscriptUpdated]

    @pytest.mark.asyncio
    async def test_events_before_first_iteration_are_kept(self):
        bus = TranscriptEventBus()
        subscription = bus.subscribe()
        bus.publish(TranscriptUpdated(text="early"))
        event = await asyncio.wait_for(subscription.__anext__(), timeout=1.0)
        assert event.text == "early"

    @pytest.mark.asyncio
    async def test_every_subscriber_gets_every_event(self):
        bus = TranscriptEventBus()
        first = bus.subscribe()
        second = bus.subscribe()
        bus.publish(TranscriptUpdated(text="x"))
        bus.close()
        assert len([e async for e in first]) == 1
        assert len([e async for e in second]) == 1

    @pytest.mark.asyncio
    async def test_publish_after_close_is_dropped(self):
        bus = TranscriptEventBus()
        subscription = bus.subscribe()
        bus.close()
        bus.publish(TranscriptUpdated(text="late"))
        assert [e async for e in subscription] == []
        assert bus.closed

    @pytest.mark.asyncio
    async def test_subscribe_after_close_ends_immediately(self):
        bus = TranscriptEventBus()
        bus.close()
        assert [e async for e in bus.subscribe()] == []

    @pytest.mark.asyncio
    async def test_unsubscribed_stops_receiving(self):
        bus = TranscriptEventBus()
        subscription = bus.subscribe()
        subscription.close()
        bus.publish(TranscriptUpdated(text="x"))
        bus.close()
        assert subscription._queue.empty()
