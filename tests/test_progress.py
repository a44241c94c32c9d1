"""
Tests for the broadcast progress bus.
"""

import asyncio

import pytest

from airlink_audit.core.progress import AuditPhase, AuditProgress, ProgressBus


def event(percentage: float, message: str = "step") -> AuditProgress:
    return AuditProgress(AuditPhase.AUTOMATED_TESTS, percentage, message)


class TestProgressBus:
    """Широковещательный канал."""

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self):
        bus = ProgressBus()
        bus.publish(event(0))
        assert bus.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_every_subscriber_receives_events_in_order(self):
        bus = ProgressBus()
        first, second = bus.subscribe(), bus.subscribe()
        for pct in (0, 50, 100):
            bus.publish(event(pct))

        assert [e.percentage for e in first.pending()] == [0, 50, 100]
        assert [e.percentage for e in second.pending()] == [0, 50, 100]

    @pytest.mark.asyncio
    async def test_late_subscriber_gets_no_replay(self):
        bus = ProgressBus()
        bus.publish(event(0, "early"))
        late = bus.subscribe()
        bus.publish(event(100, "late"))
        assert [e.message for e in late.pending()] == ["late"]

    @pytest.mark.asyncio
    async def test_close_ends_iteration(self):
        bus = ProgressBus()
        subscription = bus.subscribe()

        async def consume():
            return [e.percentage async for e in subscription]

        consumer = asyncio.create_task(consume())
        bus.publish(event(10))
        bus.publish(event(20))
        bus.close()

        assert await asyncio.wait_for(consumer, timeout=1) == [10, 20]
        assert await subscription.get() is None

    @pytest.mark.asyncio
    async def test_publish_after_close_is_noop(self):
        bus = ProgressBus()
        subscription = bus.subscribe()
        bus.close()
        bus.close()
        bus.publish(event(50))
        assert subscription.pending() == []
        assert bus.closed

    @pytest.mark.asyncio
    async def test_subscribe_after_close(self):
        bus = ProgressBus()
        bus.close()
        subscription = bus.subscribe()
        assert await asyncio.wait_for(subscription.get(), timeout=1) is None

    @pytest.mark.asyncio
    async def test_cancel_unsubscribes(self):
        bus = ProgressBus()
        subscription = bus.subscribe()
        subscription.cancel()
        bus.publish(event(10))
        assert bus.subscriber_count == 0
        assert await subscription.get() is None

    def test_to_dict(self):
        data = event(42.0, "halfway").to_dict()
        assert data["phase"] == "automated_tests"
        assert data["percentage"] == 42.0
        assert data["message"] == "halfway"
