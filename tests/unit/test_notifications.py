"""
Unit tests for notification sinks.

Tests fan-out to subscribers, dropping on full queues and unsubscribe.
"""

import pytest
from prometheus_client import REGISTRY

from headend.models.events import StreamExited, StreamStats, StreamStopped
from headend.services.notifications import NullNotificationSink, QueueNotificationSink


def dropped(event_name: str) -> float:
    return REGISTRY.get_sample_value("events_dropped_total", {"event": event_name}) or 0.0


class TestQueueNotificationSink:
    """Tests for QueueNotificationSink."""

    @pytest.mark.asyncio
    async def test_fans_out_to_all_subscribers(self):
        """Should deliver each event to every subscriber queue."""
        sink = QueueNotificationSink()
        first = sink.subscribe()
        second = sink.subscribe()

        sink.publish(StreamStopped(job_id="job"))

        assert (await first.get()).job_id == "job"
        assert (await second.get()).event == "StreamStopped"

    @pytest.mark.asyncio
    async def test_full_queue_drops_without_blocking(self):
        """Should drop and count events for a subscriber that is not keeping up."""
        sink = QueueNotificationSink(max_queue_size=1)
        slow = sink.subscribe()
        before = dropped("StreamStats")

        sink.publish(StreamStats(job_id="job", stats={"frame": "1"}))
        sink.publish(StreamStats(job_id="job", stats={"frame": "2"}))

        assert slow.qsize() == 1
        assert (await slow.get()).stats == {"frame": "1"}
        assert dropped("StreamStats") == before + 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        """Should stop delivering to removed subscribers."""
        sink = QueueNotificationSink()
        queue = sink.subscribe()
        sink.unsubscribe(queue)

        sink.publish(StreamExited(job_id="job", return_code=0))

        assert queue.empty()
        assert sink.subscriber_count == 0


class TestNullNotificationSink:
    """Tests for NullNotificationSink."""

    def test_publish_is_noop(self):
        """Should accept any event silently."""
        NullNotificationSink().publish(StreamStopped(job_id="job"))


class TestEventSerialization:
    """Tests for event payloads."""

    def test_event_discriminator_in_json(self):
        """Should carry the event name when dumped for a transport."""
        payload = StreamExited(job_id="job", return_code=1).model_dump(mode="json")

        assert payload["event"] == "StreamExited"
        assert payload["return_code"] == 1
        assert "timestamp" in payload
