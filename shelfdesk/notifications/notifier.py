"""
Change notification layer.

Publishes full snapshots of the books, users and transactions
collections to subscribers. Every snapshot of a collection carries a
version that is strictly greater than the one before it, and a single
per-collection lock covers load and delivery, so no subscriber ever
sees an older snapshot after a newer one. A subscriber holds at most one
unread snapshot; a newer one replaces it.

Listeners registered with add_listener run after delivery, in
registration order. They carry the derived-state hooks (defaulter
reconciliation) and never make a publish fail.
"""

import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

from loguru import logger

from shelfdesk.clock import Clock, utcnow
from shelfdesk.circulation.errors import InvalidInputError

COLLECTIONS = ("books", "users", "transactions")

Loader = Callable[[], list[dict]]
Listener = Callable[["Snapshot"], None]


@dataclass(frozen=True)
class Snapshot:
    """Full state of one collection at one version."""

    collection: str
    version: int
    items: list[dict] = field(default_factory=list)
    published_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection": self.collection,
            "version": self.version,
            "items": self.items,
            "published_at": self.published_at.isoformat() if self.published_at else None,
        }


class Subscription:
    """
    Latest-snapshot slot for one subscriber.

    Holds at most one pending snapshot: a newer delivery replaces an
    unread older one, so a slow reader always catches up to the current
    state and never accumulates a backlog. Iterating blocks until the next
    snapshot and stops once the subscription is closed.
    """

    _CLOSED = object()

    def __init__(
        self,
        notifier: "ChangeNotifier",
        collection: str,
        on_deliver: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            notifier: Owning notifier
            collection: Collection name
            on_deliver: Called from the publishing thread after each delivery
        """
        self.collection = collection
        self._notifier = notifier
        self._on_deliver = on_deliver
        self._queue: queue.Queue = queue.Queue(maxsize=1)
        self._slot_lock = threading.Lock()
        self._closed = False
        self.replaced = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def get(self, timeout: Optional[float] = None) -> Optional[Snapshot]:
        """
        Next snapshot, or None if the timeout expires or the subscription closes.

        Args:
            timeout: Seconds to wait; None waits forever
        """
        if self._closed and self._queue.empty():
            return None
        try:
            item = self._queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is self._CLOSED:
            return None
        return item

    def get_nowait(self) -> Optional[Snapshot]:
        """Pending snapshot if there is one, without blocking."""
        try:
            item = self._queue.get_nowait()
        except queue.Empty:
            return None
        if item is self._CLOSED:
            return None
        return item

    def close(self) -> None:
        with self._slot_lock:
            if self._closed:
                return
            self._closed = True
            self._replace(self._CLOSED)
        self._notifier._unsubscribe(self)
        self._wake()

    def _deliver(self, snapshot: Snapshot) -> None:
        with self._slot_lock:
            if self._closed:
                return
            if self._replace(snapshot):
                self.replaced += 1
        self._wake()

    def _replace(self, item: Any) -> bool:
        # Caller holds _slot_lock
        dropped = False
        try:
            self._queue.get_nowait()
            dropped = True
        except queue.Empty:
            pass
        self._queue.put_nowait(item)
        return dropped

    def _wake(self) -> None:
        if self._on_deliver is None:
            return
        try:
            self._on_deliver()
        except Exception as e:
            logger.warning(f"Wake-up for {self.collection} subscriber failed: {e}")

    def __iter__(self) -> Iterator[Snapshot]:
        while True:
            snapshot = self.get()
            if snapshot is None:
                return
            yield snapshot

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ChangeNotifier:
    """
    Snapshot publisher for the three collections.

    Usage:
        notifier = ChangeNotifier(repository_sources(repo))
        sub = notifier.subscribe("books")
        first = sub.get(timeout=1)      # current state
        notifier.publish("books")       # after a committed change
    """

    def __init__(self, sources: dict[str, Loader], clock: Clock = utcnow):
        """
        Args:
            sources: Loader per collection name, each returning the full collection
            clock: Timestamp source for published_at
        """
        unknown = set(sources) - set(COLLECTIONS)
        if unknown:
            raise InvalidInputError("Unknown collection", detail=", ".join(sorted(unknown)))

        self.sources = dict(sources)
        self.clock = clock

        self._locks = {name: threading.RLock() for name in self.sources}
        self._versions = {name: 0 for name in self.sources}
        self._latest: dict[str, Optional[Snapshot]] = {name: None for name in self.sources}
        self._subscribers: dict[str, list[Subscription]] = {name: [] for name in self.sources}
        # Guards only the subscriber lists, never held across a load
        self._subscribers_lock = threading.Lock()
        self._listeners: dict[str, list[Listener]] = {name: [] for name in self.sources}

    def publish(self, collection: str) -> Snapshot:
        """
        Load the collection, deliver it to every subscriber, then run listeners.

        Returns:
            The published snapshot
        """
        self._check(collection)

        with self._locks[collection]:
            snapshot = self._take_snapshot(collection)

            with self._subscribers_lock:
                subscribers = list(self._subscribers[collection])
            for subscription in subscribers:
                subscription._deliver(snapshot)

            logger.debug(
                f"Published {collection} v{snapshot.version} "
                f"({len(snapshot.items)} items, {len(subscribers)} subscribers)"
            )

            for listener in list(self._listeners[collection]):
                try:
                    listener(snapshot)
                except Exception as e:
                    logger.exception(f"Listener on {collection} failed: {e}")

        return snapshot

    def subscribe(
        self,
        collection: str,
        on_deliver: Optional[Callable[[], None]] = None,
    ) -> Subscription:
        """
        Subscribe to a collection.

        The subscription is primed with a freshly loaded snapshot, so the
        first get() always returns the current state.

        Args:
            collection: Collection name
            on_deliver: Wake-up hook run on the publishing thread after each
                delivery, for readers that wait outside this thread
        """
        self._check(collection)

        with self._locks[collection]:
            subscription = Subscription(self, collection, on_deliver=on_deliver)
            subscription._deliver(self._take_snapshot(collection))
            with self._subscribers_lock:
                self._subscribers[collection].append(subscription)

        logger.debug(f"New subscriber on {collection}")
        return subscription

    def latest(self, collection: str) -> Snapshot:
        """Most recent snapshot, loading one if nothing was published yet."""
        self._check(collection)

        with self._locks[collection]:
            if self._latest[collection] is None:
                return self._take_snapshot(collection)
            return self._latest[collection]

    def add_listener(self, collection: str, listener: Listener) -> None:
        self._check(collection)
        with self._locks[collection]:
            self._listeners[collection].append(listener)

    def subscriber_count(self, collection: str) -> int:
        self._check(collection)
        with self._subscribers_lock:
            return len(self._subscribers[collection])

    def _take_snapshot(self, collection: str) -> Snapshot:
        # Caller holds the collection lock
        items = self.sources[collection]()
        self._versions[collection] += 1
        snapshot = Snapshot(
            collection=collection,
            version=self._versions[collection],
            items=items,
            published_at=self.clock(),
        )
        self._latest[collection] = snapshot
        return snapshot

    def _unsubscribe(self, subscription: Subscription) -> None:
        with self._subscribers_lock:
            subscribers = self._subscribers[subscription.collection]
            if subscription in subscribers:
                subscribers.remove(subscription)

    def _check(self, collection: str) -> None:
        if collection not in self.sources:
            raise InvalidInputError(
                "Unknown collection",
                detail=f"'{collection}' is not one of {', '.join(COLLECTIONS)}",
            )


def repository_sources(repository) -> dict[str, Loader]:
    """Loaders reading each collection from a LibraryRepository."""
    return {
        "books": lambda: [b.to_dict() for b in repository.list_books()],
        "users": lambda: [u.to_dict() for u in repository.list_users()],
        "transactions": lambda: [t.to_dict() for t in repository.list_transactions()],
    }
