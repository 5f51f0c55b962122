"""Live queries: per-query publish/subscribe channels over the store.

A :class:`LiveQuery` wraps a fetch function and the set of tables it reads.
Subscribers get the current result immediately and again after every
committed write to one of those tables, but only when the result actually
changed. The :class:`InvalidationTracker` is told which tables a write
touched and re-runs the live queries that depend on them.

Usage:
    query = repository.get_all()
    subscription = query.subscribe(lambda notes: render(notes))
    ...
    subscription.cancel()  # on owner teardown
"""

import logging
import threading
from concurrent.futures import Executor
from typing import Callable, Dict, Generic, Iterable, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNSET = object()


class Subscription:
    """Handle for one subscriber; cancel it when its owner goes away."""

    def __init__(self, query: "LiveQuery", callback: Callable) -> None:
        self._query = query
        self._callback = callback
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        """Stop receiving values. Safe to call more than once."""
        if not self._active:
            return
        self._active = False
        self._query._remove(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


class InvalidationTracker:
    """Routes table-change notifications to the live queries reading them.

    Only queries with at least one subscriber are registered, so the tracker
    never holds on to abandoned queries.

    Args:
        executor: Optional executor used to re-run queries off the writer's
            thread. When None, queries re-run synchronously on notify().
    """

    def __init__(self, executor: Optional[Executor] = None) -> None:
        self._executor = executor
        self._lock = threading.Lock()
        self._queries: Dict[str, Set["LiveQuery"]] = {}
        self._closed = False

    def register(self, query: "LiveQuery") -> None:
        with self._lock:
            for table in query.tables:
                self._queries.setdefault(table, set()).add(query)

    def unregister(self, query: "LiveQuery") -> None:
        with self._lock:
            for table in query.tables:
                observers = self._queries.get(table)
                if observers is None:
                    continue
                observers.discard(query)
                if not observers:
                    del self._queries[table]

    def observer_count(self) -> int:
        """Number of distinct live queries currently registered."""
        with self._lock:
            return len({q for queries in self._queries.values() for q in queries})

    def notify(self, tables: Iterable[str]) -> None:
        """Re-run every registered live query that reads any of ``tables``."""
        with self._lock:
            if self._closed:
                return
            affected: Set[LiveQuery] = set()
            for table in tables:
                affected.update(self._queries.get(table, ()))

        for query in sorted(affected, key=lambda q: q.sequence_id):
            if self._executor is not None:
                future = self._executor.submit(query.refresh)
                future.add_done_callback(
                    lambda f, query=query: self._log_failure(
                        query, None if f.cancelled() else f.exception()
                    )
                )
                continue
            # The write has already committed; one failing query must not
            # reach the writer or starve the others
            try:
                query.refresh()
            except Exception as e:
                self._log_failure(query, e)

    @staticmethod
    def _log_failure(query: "LiveQuery", error: Optional[BaseException]) -> None:
        if error is not None:
            logger.error(
                f"Refreshing {query.name} failed; subscribers keep the last value",
                exc_info=error,
            )

    def close(self) -> None:
        """Drop all registrations; later notifications are ignored."""
        with self._lock:
            self._closed = True
            self._queries.clear()


class LiveQuery(Generic[T]):
    """A re-runnable read with distinct-until-changed delivery."""

    _sequence = 0
    _sequence_lock = threading.Lock()

    def __init__(
        self,
        tracker: InvalidationTracker,
        tables: Iterable[str],
        fetch: Callable[[], T],
        name: str = "",
    ) -> None:
        self._tracker = tracker
        self.tables = frozenset(tables)
        self._fetch = fetch
        self.name = name or "live_query"
        self._lock = threading.RLock()
        self._subscriptions: List[Subscription] = []
        self._last = _UNSET
        # Bumped on every delivered value; a delivery loop stops early when
        # a nested refresh has already published something newer.
        self._generation = 0
        with LiveQuery._sequence_lock:
            LiveQuery._sequence += 1
            self.sequence_id = LiveQuery._sequence

    def __repr__(self) -> str:
        return f"<LiveQuery {self.name} tables={sorted(self.tables)}>"

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def get(self) -> T:
        """Run the query once and return its result (no subscription)."""
        return self._fetch()

    def subscribe(self, callback: Callable[[T], None]) -> Subscription:
        """Deliver the current value to ``callback`` now and on every change."""
        subscription = Subscription(self, callback)
        with self._lock:
            first = not self._subscriptions
            self._subscriptions.append(subscription)
            if first:
                self._tracker.register(self)
                self._last = self._fetch()
            value = self._last
            self._deliver(subscription, value)
        return subscription

    def refresh(self) -> bool:
        """Re-run the query and publish the result if it changed.

        Returns:
            True if subscribers were sent a new value.
        """
        with self._lock:
            if not self._subscriptions:
                return False
            value = self._fetch()
            if self._last is not _UNSET and value == self._last:
                return False
            self._last = value
            self._generation += 1
            generation = self._generation
            for subscription in list(self._subscriptions):
                if generation != self._generation:
                    break
                if subscription.active:
                    self._deliver(subscription, value)
            return True

    def _deliver(self, subscription: Subscription, value: T) -> None:
        try:
            subscription._callback(value)
        except Exception:
            # A broken subscriber must not fail the write that triggered it
            logger.exception(f"Subscriber of {self.name} raised; value dropped")

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            try:
                self._subscriptions.remove(subscription)
            except ValueError:
                return
            if not self._subscriptions:
                self._tracker.unregister(self)
                self._last = _UNSET
