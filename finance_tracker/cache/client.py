"""
Query Cache

An in-memory, key-addressed store of query results. It owns every cache
entry; fetch and mutation functions only reach it through fetch, subscribe
and invalidate.

Policy:
- An entry is stale when it was never fetched, was invalidated, or its data
  is older than ``stale_time``. Stale data is still served
  (stale-while-revalidate) while a refetch runs.
- Refetches happen on observer mount, window focus, visibility regained and
  network reconnect, and only for entries that are stale and observed.
- A failed read is retried ``retry`` times. The last failure is stored on the
  entry next to the last good data and handed to observers.
- Concurrent reads of one key share a single in-flight fetch.
- An entry nobody observes is evicted after ``gc_time``.

Everything runs on one event loop. State transitions are plain attribute
assignments between awaits, so no locking is needed.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Optional

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
)

from finance_tracker.cache.keys import QueryKey
from finance_tracker.config import CacheSettings, get_settings


QueryFn = Callable[[], Awaitable[Any]]


class QueryStatus(str, Enum):
    """Whether the entry holds data."""
    PENDING = "pending"   # Never resolved
    SUCCESS = "success"
    ERROR = "error"       # Last fetch failed (previous data is kept)


class FetchStatus(str, Enum):
    """Whether a fetch is running right now."""
    IDLE = "idle"
    FETCHING = "fetching"


@dataclass(frozen=True)
class QueryState:
    """Immutable snapshot of one cache entry, handed to observers."""

    key: QueryKey
    data: Any
    data_updated_at: Optional[float]
    error: Optional[BaseException]
    error_updated_at: Optional[float]
    failure_count: int
    status: QueryStatus
    fetch_status: FetchStatus
    is_invalidated: bool
    is_stale: bool
    observer_count: int

    @property
    def is_fetching(self) -> bool:
        return self.fetch_status == FetchStatus.FETCHING

    @property
    def is_loading(self) -> bool:
        """First load: no data yet and a fetch in flight."""
        return self.data_updated_at is None and self.is_fetching


Listener = Callable[[QueryState], None]


@dataclass(eq=False)
class _Observer:
    listener: Listener
    enabled: bool = True


class CacheEntry:
    """Mutable state for one query key. Only QueryClient touches it."""

    def __init__(self, key: QueryKey, query_fn: Optional[QueryFn], created_at: float):
        self.key = key
        self.query_fn = query_fn
        self.data: Any = None
        self.data_updated_at: Optional[float] = None
        self.error: Optional[BaseException] = None
        self.error_updated_at: Optional[float] = None
        self.failure_count = 0
        self.status = QueryStatus.PENDING
        self.fetch_status = FetchStatus.IDLE
        self.is_invalidated = False
        # Bumped on every invalidation; a fetch that started under an older
        # generation can't clear the invalidated flag.
        self.generation = 0
        self.fetch_generation: Optional[int] = None
        self.task: Optional[asyncio.Task] = None
        self.observers: list[_Observer] = []
        self.idle_since: Optional[float] = created_at
        self.gc_handle: Optional[asyncio.TimerHandle] = None

    @property
    def is_active(self) -> bool:
        """Observed by at least one enabled observer."""
        return any(observer.enabled for observer in self.observers)

    @property
    def is_fetching(self) -> bool:
        return self.task is not None and not self.task.done()

    def is_stale(self, now: float, stale_time: float) -> bool:
        if self.data_updated_at is None or self.is_invalidated:
            return True
        return now - self.data_updated_at >= stale_time

    def snapshot(self, now: float, stale_time: float) -> QueryState:
        return QueryState(
            key=self.key,
            data=self.data,
            data_updated_at=self.data_updated_at,
            error=self.error,
            error_updated_at=self.error_updated_at,
            failure_count=self.failure_count,
            status=self.status,
            fetch_status=self.fetch_status,
            is_invalidated=self.is_invalidated,
            is_stale=self.is_stale(now, stale_time),
            observer_count=len(self.observers),
        )


class QueryClient:
    """
    The query cache.

    Create one per session (or per test). Nothing here is global.

    Args:
        settings: Cache policy. Defaults to the configured CacheSettings.
        clock: Monotonic clock in seconds. Inject a fake one in tests.
    """

    def __init__(
        self,
        settings: Optional[CacheSettings] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._settings = settings or get_settings().cache
        self._clock = clock or time.monotonic
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._online = True
        self._closed = False
        self._logger = structlog.get_logger(__name__)

    @property
    def settings(self) -> CacheSettings:
        return self._settings

    @property
    def is_online(self) -> bool:
        return self._online

    def _now(self) -> float:
        return self._clock()

    # -------------------------------------------------------------------------
    # Entry bookkeeping
    # -------------------------------------------------------------------------

    def _build(self, key: QueryKey, query_fn: Optional[QueryFn] = None) -> CacheEntry:
        if self._closed:
            raise RuntimeError("QueryClient is closed")

        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(key, query_fn, created_at=self._now())
            self._entries[key] = entry
            self._schedule_gc(entry)
            self._logger.debug("cache_entry_created", key=str(key))
        elif query_fn is not None:
            entry.query_fn = query_fn
        return entry

    def _find_all(self, key: Optional[QueryKey] = None, exact: bool = False) -> list[CacheEntry]:
        if key is None:
            return list(self._entries.values())
        if exact:
            entry = self._entries.get(key)
            return [entry] if entry else []
        return [entry for entry in self._entries.values() if key.is_prefix_of(entry.key)]

    def _snapshot(self, entry: CacheEntry) -> QueryState:
        return entry.snapshot(self._now(), self._settings.stale_time_seconds)

    def _notify(self, entry: CacheEntry) -> None:
        if not entry.observers:
            return
        state = self._snapshot(entry)
        for observer in list(entry.observers):
            try:
                observer.listener(state)
            except Exception:
                self._logger.exception("cache_listener_failed", key=str(entry.key))

    def keys(self) -> list[QueryKey]:
        """Keys currently held in the cache."""
        return list(self._entries)

    def get_query_state(self, key: QueryKey) -> Optional[QueryState]:
        entry = self._entries.get(key)
        return self._snapshot(entry) if entry else None

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set_query_data(self, key: QueryKey, data: Any) -> None:
        """Store data as if it had just been fetched."""
        entry = self._build(key)
        entry.data = data
        entry.data_updated_at = self._now()
        entry.error = None
        entry.failure_count = 0
        entry.is_invalidated = False
        entry.status = QueryStatus.SUCCESS
        self._notify(entry)

    def is_stale(self, key: QueryKey) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        return entry.is_stale(self._now(), self._settings.stale_time_seconds)

    # -------------------------------------------------------------------------
    # Fetching
    # -------------------------------------------------------------------------

    async def fetch_query(
        self,
        key: QueryKey,
        query_fn: QueryFn,
        force: bool = False,
    ) -> Any:
        """
        Read through the cache.

        Fresh data is returned without a store call. Otherwise a fetch is
        started, or the one already in flight for this key is joined.

        Raises:
            Whatever the query function raised on its last attempt.
        """
        entry = self._build(key, query_fn)
        self._touch(entry)
        if (
            not force
            and entry.status == QueryStatus.SUCCESS
            and not entry.is_stale(self._now(), self._settings.stale_time_seconds)
        ):
            return entry.data

        return await self._fetch_current(entry)

    async def _fetch_current(self, entry: CacheEntry) -> Any:
        # A fetch that started before the latest invalidation may not see the
        # write behind it, so let it finish and start another.
        while entry.is_fetching and entry.fetch_generation != entry.generation:
            await asyncio.gather(asyncio.shield(entry.task), return_exceptions=True)
        # Shielded: a cancelled reader must not cancel the shared fetch
        return await asyncio.shield(self._start_fetch(entry))

    def _start_fetch(self, entry: CacheEntry) -> asyncio.Task:
        if entry.is_fetching:
            self._logger.debug("fetch_deduplicated", key=str(entry.key))
            return entry.task

        if entry.query_fn is None:
            raise ValueError(f"No query function registered for {entry.key}")

        entry.fetch_status = FetchStatus.FETCHING
        entry.fetch_generation = entry.generation
        entry.task = asyncio.ensure_future(self._run_fetch(entry))
        entry.task.add_done_callback(self._consume_task_result)
        self._notify(entry)
        return entry.task

    @staticmethod
    def _consume_task_result(task: asyncio.Task) -> None:
        # The failure is already stored on the entry and logged
        if not task.cancelled():
            task.exception()

    def _log_retry(self, entry: CacheEntry) -> Callable[[RetryCallState], None]:
        def before_sleep(retry_state: RetryCallState) -> None:
            entry.failure_count = retry_state.attempt_number
            self._logger.warning(
                "fetch_retrying",
                key=str(entry.key),
                attempt=retry_state.attempt_number,
                error=str(retry_state.outcome.exception()),
            )
        return before_sleep

    async def _run_fetch(self, entry: CacheEntry) -> Any:
        query_fn = entry.query_fn
        started_generation = entry.generation
        self._logger.debug("fetch_started", key=str(entry.key))
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._settings.retry + 1),
                wait=wait_exponential(
                    multiplier=self._settings.retry_delay_seconds, max=30
                ),
                before_sleep=self._log_retry(entry),
                reraise=True,
            ):
                with attempt:
                    data = await query_fn()
        except asyncio.CancelledError:
            entry.fetch_status = FetchStatus.IDLE
            raise
        except Exception as e:
            entry.error = e
            entry.error_updated_at = self._now()
            entry.failure_count = self._settings.retry + 1
            entry.status = QueryStatus.ERROR
            entry.fetch_status = FetchStatus.IDLE
            self._logger.error(
                "fetch_failed",
                key=str(entry.key),
                error=str(e),
                error_type=type(e).__name__,
                has_previous_data=entry.data_updated_at is not None,
            )
            self._notify(entry)
            raise
        finally:
            entry.task = None
            self._touch(entry)

        entry.data = data
        entry.data_updated_at = self._now()
        entry.error = None
        entry.failure_count = 0
        entry.is_invalidated = entry.generation != started_generation
        entry.status = QueryStatus.SUCCESS
        entry.fetch_status = FetchStatus.IDLE
        self._logger.debug("fetch_succeeded", key=str(entry.key))
        self._notify(entry)
        return data

    def _refetch_in_background(self, entry: CacheEntry, reason: str) -> bool:
        if entry.query_fn is None:
            return False
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # Nothing to run it on; the entry stays stale for the next read
            self._logger.debug("refetch_deferred", key=str(entry.key), reason=reason)
            return False
        self._logger.debug("refetch_scheduled", key=str(entry.key), reason=reason)
        if entry.is_fetching and entry.fetch_generation != entry.generation:
            task = asyncio.ensure_future(self._fetch_current(entry))
            task.add_done_callback(self._consume_task_result)
        else:
            self._start_fetch(entry)
        return True

    async def refetch_queries(
        self,
        key: Optional[QueryKey] = None,
        exact: bool = False,
        active_only: bool = False,
        stale_only: bool = False,
    ) -> list[QueryKey]:
        """
        Refetch matching entries and wait for them to settle.

        Failures are stored on their entries (and reach observers),
        they are not raised here.
        """
        now = self._now()
        entries = [
            entry for entry in self._find_all(key, exact)
            if entry.query_fn is not None
            and (not active_only or entry.is_active)
            and (not stale_only or entry.is_stale(now, self._settings.stale_time_seconds))
        ]
        await self._settle(entries)
        return [entry.key for entry in entries]

    async def _settle(self, entries: Iterable[CacheEntry]) -> None:
        fetches = [self._fetch_current(entry) for entry in entries]
        if fetches:
            await asyncio.gather(*fetches, return_exceptions=True)

    # -------------------------------------------------------------------------
    # Invalidation
    # -------------------------------------------------------------------------

    def invalidate(self, key: QueryKey, exact: bool = False) -> list[QueryKey]:
        """
        Mark every entry under ``key`` stale.

        Prefix match: ``(transactions, u)`` reaches every
        ``(transactions, u, month)``. Data stays servable until refetched.
        """
        entries = self._find_all(key, exact)
        for entry in entries:
            entry.is_invalidated = True
            entry.generation += 1
            self._notify(entry)
        self._logger.info(
            "queries_invalidated",
            key=str(key),
            matched=[str(entry.key) for entry in entries],
        )
        return [entry.key for entry in entries]

    async def invalidate_queries(
        self,
        *keys: QueryKey,
        exact: bool = False,
        refetch: bool = True,
    ) -> list[QueryKey]:
        """
        Invalidate several keys, then refetch what is being observed.

        Every key is marked before any refetch starts, and an entry matched
        by more than one key is fetched once.
        """
        affected: dict[QueryKey, None] = {}
        for key in keys:
            for matched in self.invalidate(key, exact=exact):
                affected[matched] = None

        if refetch:
            await self._settle(
                entry for entry in (self._entries.get(k) for k in affected)
                if entry is not None and entry.is_active and entry.query_fn is not None
            )
        return list(affected)

    # -------------------------------------------------------------------------
    # Observers
    # -------------------------------------------------------------------------

    def subscribe(
        self,
        key: QueryKey,
        listener: Listener,
        query_fn: Optional[QueryFn] = None,
        enabled: bool = True,
    ) -> Callable[[], None]:
        """
        Observe an entry. Returns the unsubscribe function.

        The listener is called synchronously after every state change of
        the entry. Mounting an enabled observer on a stale entry starts a
        background refetch.
        """
        entry = self._build(key, query_fn)
        observer = _Observer(listener, enabled)
        entry.observers.append(observer)
        entry.idle_since = None
        self._cancel_gc(entry)

        if (
            enabled
            and self._settings.refetch_on_mount
            and not entry.is_fetching
            and entry.is_stale(self._now(), self._settings.stale_time_seconds)
        ):
            self._refetch_in_background(entry, reason="mount")

        def unsubscribe() -> None:
            if observer not in entry.observers:
                return
            entry.observers.remove(observer)
            if not entry.observers:
                entry.idle_since = self._now()
                self._schedule_gc(entry)

        return unsubscribe

    def _refetch_stale_active(self, reason: str) -> list[QueryKey]:
        now = self._now()
        scheduled = []
        for entry in list(self._entries.values()):
            if (
                entry.is_active
                and not entry.is_fetching
                and entry.is_stale(now, self._settings.stale_time_seconds)
                and self._refetch_in_background(entry, reason=reason)
            ):
                scheduled.append(entry.key)
        return scheduled

    def on_window_focus(self) -> list[QueryKey]:
        """The host window regained input focus."""
        if not self._settings.refetch_on_window_focus:
            return []
        return self._refetch_stale_active("window_focus")

    def on_visibility_change(self, visible: bool) -> list[QueryKey]:
        """The host page/tab was hidden or shown again."""
        if not visible or not self._settings.refetch_on_window_focus:
            return []
        return self._refetch_stale_active("visibility")

    def set_online(self, online: bool) -> list[QueryKey]:
        """Record network connectivity; going from offline to online refetches."""
        was_online = self._online
        self._online = online
        if online and not was_online and self._settings.refetch_on_reconnect:
            return self._refetch_stale_active("reconnect")
        return []

    # -------------------------------------------------------------------------
    # Garbage collection & teardown
    # -------------------------------------------------------------------------

    def _cancel_gc(self, entry: CacheEntry) -> None:
        if entry.gc_handle is not None:
            entry.gc_handle.cancel()
            entry.gc_handle = None

    def _touch(self, entry: CacheEntry) -> None:
        # An unobserved entry stays idle from its last read, not its creation
        if not entry.observers:
            entry.idle_since = self._now()
            self._schedule_gc(entry)

    def _schedule_gc(self, entry: CacheEntry) -> None:
        self._cancel_gc(entry)
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        entry.gc_handle = loop.call_later(
            self._settings.gc_time_seconds, self.collect_garbage
        )

    def collect_garbage(self) -> list[QueryKey]:
        """Evict entries that have been unobserved for at least ``gc_time``."""
        now = self._now()
        evicted = []
        for key, entry in list(self._entries.items()):
            if (
                not entry.observers
                and not entry.is_fetching
                and entry.idle_since is not None
                and now - entry.idle_since >= self._settings.gc_time_seconds
            ):
                self._cancel_gc(entry)
                del self._entries[key]
                evicted.append(key)
        if evicted:
            self._logger.debug("cache_entries_evicted", keys=[str(k) for k in evicted])
        return evicted

    def clear(self) -> None:
        """Drop every entry, cancelling timers and in-flight fetches."""
        for entry in self._entries.values():
            self._cancel_gc(entry)
            if entry.is_fetching:
                entry.task.cancel()
        self._entries.clear()

    def close(self) -> None:
        """Tear the cache down. The client can't be used afterwards."""
        self.clear()
        self._closed = True
        self._logger.debug("query_client_closed")
