"""
Unit tests for the change notifier.
"""

import threading

import pytest

from shelfdesk.circulation.errors import InvalidInputError
from shelfdesk.notifications import ChangeNotifier


class FakeSource:
    """Collection loader backed by a mutable list."""

    def __init__(self, *items):
        self.items = list(items)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return [dict(item) for item in self.items]


@pytest.fixture
def books():
    return FakeSource({"id": "b1", "title": "Dune"})


@pytest.fixture
def fake_notifier(books, clock):
    return ChangeNotifier({"books": books, "users": FakeSource()}, clock=clock)


class TestSubscribe:

    def test_primed_with_current_state(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")

        snapshot = subscription.get(timeout=1)
        assert snapshot.collection == "books"
        assert snapshot.items == [{"id": "b1", "title": "Dune"}]

    def test_receives_published_changes(self, fake_notifier, books):
        subscription = fake_notifier.subscribe("books")
        first = subscription.get(timeout=1)

        books.items.append({"id": "b2", "title": "Emma"})
        fake_notifier.publish("books")

        second = subscription.get(timeout=1)
        assert second.version > first.version
        assert len(second.items) == 2

    def test_no_snapshot_without_publish(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")
        subscription.get(timeout=1)

        assert subscription.get(timeout=0.05) is None

    def test_other_collection_not_delivered(self, fake_notifier):
        subscription = fake_notifier.subscribe("users")
        subscription.get(timeout=1)

        fake_notifier.publish("books")

        assert subscription.get(timeout=0.05) is None

    def test_close_stops_iteration(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")

        received = []
        for snapshot in subscription:
            received.append(snapshot)
            if len(received) == 1:
                fake_notifier.publish("books")
            else:
                subscription.close()

        assert len(received) == 2
        assert subscription.closed
        assert fake_notifier.subscriber_count("books") == 0

    def test_context_manager_unsubscribes(self, fake_notifier):
        with fake_notifier.subscribe("books"):
            assert fake_notifier.subscriber_count("books") == 1

        assert fake_notifier.subscriber_count("books") == 0

    def test_unknown_collection(self, fake_notifier):
        with pytest.raises(InvalidInputError):
            fake_notifier.subscribe("loans")

        with pytest.raises(InvalidInputError):
            fake_notifier.publish("transactions")

    def test_unknown_source_rejected(self):
        with pytest.raises(InvalidInputError):
            ChangeNotifier({"loans": FakeSource()})


class TestVersions:

    def test_strictly_increasing(self, fake_notifier):
        versions = [fake_notifier.publish("books").version for _ in range(5)]

        assert versions == sorted(set(versions))

    def test_latest(self, fake_notifier, books):
        assert fake_notifier.latest("books").items == books()

        published = fake_notifier.publish("books")
        assert fake_notifier.latest("books") is published

    def test_published_at_from_clock(self, fake_notifier, clock):
        assert fake_notifier.publish("books").published_at == clock()

    def test_concurrent_publishes_delivered_in_order(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")
        barrier = threading.Barrier(6)
        done = threading.Event()
        versions = []

        def publish_many():
            barrier.wait()
            for _ in range(20):
                fake_notifier.publish("books")

        def read():
            while True:
                snapshot = subscription.get(timeout=0.05)
                if snapshot is not None:
                    versions.append(snapshot.version)
                elif done.is_set():
                    return

        reader = threading.Thread(target=read)
        reader.start()
        threads = [threading.Thread(target=publish_many) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        done.set()
        reader.join()

        assert versions == sorted(set(versions))
        assert versions[-1] == fake_notifier.latest("books").version


class TestSlowSubscriber:

    def test_unread_snapshots_replaced_by_newest(self, fake_notifier, books):
        subscription = fake_notifier.subscribe("books")

        for i in range(50):
            books.items.append({"id": f"x{i}", "title": "Copy"})
            fake_notifier.publish("books")

        assert subscription.pending == 1
        assert subscription.replaced == 50

        snapshot = subscription.get(timeout=1)
        assert snapshot.version == fake_notifier.latest("books").version
        assert len(snapshot.items) == 51
        assert subscription.get(timeout=0.05) is None

    def test_reader_resumes_after_backlog(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")
        for _ in range(5):
            fake_notifier.publish("books")
        caught_up = subscription.get(timeout=1)

        fake_notifier.publish("books")

        assert subscription.get(timeout=1).version == caught_up.version + 1

    def test_wake_hook_called_per_delivery(self, fake_notifier):
        wakes = []
        subscription = fake_notifier.subscribe("books", on_deliver=lambda: wakes.append(1))

        fake_notifier.publish("books")
        fake_notifier.publish("books")
        subscription.close()

        # Priming, two publishes and the close
        assert len(wakes) == 4
        assert subscription.get_nowait() is None

    def test_failing_wake_hook_does_not_break_publish(self, fake_notifier):
        def broken():
            raise RuntimeError("loop closed")

        fake_notifier.subscribe("books", on_deliver=broken)

        assert fake_notifier.publish("books").version > 0



class TestListeners:

    def test_run_in_order_after_delivery(self, fake_notifier):
        subscription = fake_notifier.subscribe("books")
        subscription.get(timeout=1)
        calls = []

        def first(snapshot):
            # Subscriber already has the snapshot
            calls.append(("first", subscription.get(timeout=0.05).version == snapshot.version))

        fake_notifier.add_listener("books", first)
        fake_notifier.add_listener("books", lambda snapshot: calls.append(("second", True)))

        fake_notifier.publish("books")

        assert calls == [("first", True), ("second", True)]

    def test_failing_listener_swallowed(self, fake_notifier):
        calls = []

        def broken(snapshot):
            raise RuntimeError("boom")

        fake_notifier.add_listener("books", broken)
        fake_notifier.add_listener("books", lambda snapshot: calls.append(snapshot.version))

        snapshot = fake_notifier.publish("books")

        assert calls == [snapshot.version]

    def test_listener_may_publish_other_collection(self, fake_notifier):
        users = fake_notifier.subscribe("users")
        users.get(timeout=1)
        fake_notifier.add_listener("books", lambda snapshot: fake_notifier.publish("users"))

        fake_notifier.publish("books")

        assert users.get(timeout=1) is not None
