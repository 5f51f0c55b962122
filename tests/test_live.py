"""Tests for the invalidation tracker and live queries."""
import logging
from concurrent.futures import ThreadPoolExecutor

from pocketnotes.storage.live import InvalidationTracker, LiveQuery
from tests.fakes import RecordingSubscriber


class Source:
    """Mutable value with a fetch counter, standing in for a table."""

    def __init__(self, value):
        self.value = value
        self.fetches = 0
        self.error = None

    def fetch(self):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return self.value


class TestLiveQuery:
    """Delivery semantics of a single live query."""

    def test_current_value_delivered_on_subscribe(self):
        tracker = InvalidationTracker()
        query = LiveQuery(tracker, ["notes"], Source([1]).fetch)
        received = RecordingSubscriber()

        query.subscribe(received)

        assert received.values == [[1]]

    def test_change_is_delivered(self):
        tracker = InvalidationTracker()
        source = Source("a")
        query = LiveQuery(tracker, ["notes"], source.fetch)
        received = RecordingSubscriber()
        query.subscribe(received)

        source.value = "b"
        tracker.notify(["notes"])

        assert received.values == ["a", "b"]

    def test_unchanged_result_not_redelivered(self):
        """Distinct-until-changed: a write that changes nothing is silent."""
        tracker = InvalidationTracker()
        source = Source("a")
        query = LiveQuery(tracker, ["notes"], source.fetch)
        received = RecordingSubscriber()
        query.subscribe(received)

        tracker.notify(["notes"])
        tracker.notify(["notes"])

        assert received.values == ["a"]
        assert source.fetches == 3

    def test_other_tables_do_not_trigger(self):
        tracker = InvalidationTracker()
        source = Source("a")
        query = LiveQuery(tracker, ["notes"], source.fetch)
        query.subscribe(RecordingSubscriber())

        tracker.notify(["categories"])

        assert source.fetches == 1

    def test_late_subscriber_gets_latest_value(self):
        tracker = InvalidationTracker()
        source = Source(1)
        query = LiveQuery(tracker, ["notes"], source.fetch)
        query.subscribe(RecordingSubscriber())
        source.value = 2
        tracker.notify(["notes"])

        late = RecordingSubscriber()
        query.subscribe(late)

        assert late.values == [2]

    def test_get_does_not_subscribe(self):
        tracker = InvalidationTracker()
        query = LiveQuery(tracker, ["notes"], Source(5).fetch)

        assert query.get() == 5
        assert tracker.observer_count() == 0

    def test_failing_subscriber_does_not_block_others(self):
        tracker = InvalidationTracker()
        source = Source(1)
        query = LiveQuery(tracker, ["notes"], source.fetch)

        def broken(value):
            raise RuntimeError("subscriber bug")

        received = RecordingSubscriber()
        query.subscribe(broken)
        query.subscribe(received)
        source.value = 2
        tracker.notify(["notes"])

        assert received.values == [1, 2]

    def test_failing_query_does_not_block_others(self, caplog):
        """A refresh error is logged; the writer and other queries carry on."""
        tracker = InvalidationTracker()
        broken_source = Source(1)
        broken = LiveQuery(tracker, ["notes"], broken_source.fetch, name="broken")
        stale = RecordingSubscriber()
        broken.subscribe(stale)
        healthy_source = Source("a")
        healthy = LiveQuery(tracker, ["notes"], healthy_source.fetch)
        received = RecordingSubscriber()
        healthy.subscribe(received)

        broken_source.error = RuntimeError("read failed")
        healthy_source.value = "b"
        with caplog.at_level(logging.ERROR):
            tracker.notify(["notes"])

        assert stale.values == [1]
        assert received.values == ["a", "b"]
        assert "Refreshing broken failed" in caplog.text


class TestSubscriptionLifecycle:
    """Cancellation releases the tracker registration."""

    def test_cancel_stops_delivery(self):
        tracker = InvalidationTracker()
        source = Source(1)
        query = LiveQuery(tracker, ["notes"], source.fetch)
        received = RecordingSubscriber()
        subscription = query.subscribe(received)

        subscription.cancel()
        source.value = 2
        tracker.notify(["notes"])

        assert received.values == [1]
        assert not subscription.active

    def test_last_cancel_unregisters(self):
        tracker = InvalidationTracker()
        query = LiveQuery(tracker, ["notes", "categories"], Source(1).fetch)
        first = query.subscribe(RecordingSubscriber())
        second = query.subscribe(RecordingSubscriber())
        assert tracker.observer_count() == 1

        first.cancel()
        assert tracker.observer_count() == 1
        second.cancel()
        assert tracker.observer_count() == 0
        assert query.subscriber_count == 0

    def test_cancel_is_idempotent(self):
        tracker = InvalidationTracker()
        query = LiveQuery(tracker, ["notes"], Source(1).fetch)
        subscription = query.subscribe(RecordingSubscriber())

        subscription.cancel()
        subscription.cancel()

        assert query.subscriber_count == 0

    def test_subscription_as_context_manager(self):
        tracker = InvalidationTracker()
        query = LiveQuery(tracker, ["notes"], Source(1).fetch)

        with query.subscribe(RecordingSubscriber()):
            assert tracker.observer_count() == 1
        assert tracker.observer_count() == 0

    def test_closed_tracker_ignores_notifications(self):
        tracker = InvalidationTracker()
        source = Source(1)
        query = LiveQuery(tracker, ["notes"], source.fetch)
        received = RecordingSubscriber()
        query.subscribe(received)

        tracker.close()
        source.value = 2
        tracker.notify(["notes"])

        assert received.values == [1]


class TestExecutorDelivery:
    """Re-runs can be handed to a background executor."""

    def test_refresh_runs_on_executor(self):
        with ThreadPoolExecutor(max_workers=1) as executor:
            tracker = InvalidationTracker(executor)
            source = Source(1)
            query = LiveQuery(tracker, ["notes"], source.fetch)
            received = RecordingSubscriber()
            query.subscribe(received)

            source.value = 2
            tracker.notify(["notes"])
        # Leaving the block waits for submitted work to finish

        assert received.values == [1, 2]

    def test_background_failure_is_logged(self, caplog):
        source = Source(1)
        with caplog.at_level(logging.ERROR):
            with ThreadPoolExecutor(max_workers=1) as executor:
                tracker = InvalidationTracker(executor)
                query = LiveQuery(tracker, ["notes"], source.fetch, name="notes_feed")
                received = RecordingSubscriber()
                query.subscribe(received)

                source.error = RuntimeError("disk gone")
                tracker.notify(["notes"])

        assert received.values == [1]
        assert "Refreshing notes_feed failed" in caplog.text
