"""
Presentation Adapters

Thin objects the presentation layer holds on to:

- QueryObserver (``use_query``) keeps one subscription to a cache entry and
  exposes the latest ``QueryResult``.
- MutationObserver (``use_mutation``) runs one kind of write and tracks its
  pending/success/error state. ``on_success`` is awaited before ``mutate``
  returns, so the caller only sees the write resolved once the affected
  queries were invalidated.

Writes are never retried here.
"""

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

import structlog

from finance_tracker.cache.client import (
    FetchStatus,
    QueryClient,
    QueryFn,
    QueryState,
    QueryStatus,
)
from finance_tracker.cache.keys import QueryKey


V = TypeVar("V")
R = TypeVar("R")


@dataclass(frozen=True)
class QueryResult:
    """What a component renders from."""

    data: Any = None
    error: Optional[BaseException] = None
    status: QueryStatus = QueryStatus.PENDING
    is_loading: bool = False
    is_fetching: bool = False
    is_stale: bool = True
    data_updated_at: Optional[float] = None

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @classmethod
    def from_state(cls, state: Optional[QueryState]) -> "QueryResult":
        if state is None:
            return cls()
        return cls(
            data=state.data,
            error=state.error,
            status=state.status,
            is_loading=state.is_loading,
            is_fetching=state.fetch_status == FetchStatus.FETCHING,
            is_stale=state.is_stale,
            data_updated_at=state.data_updated_at,
        )


ResultListener = Callable[[QueryResult], None]


class QueryObserver:
    """
    One consumer of one query key.

    Args:
        client: The query cache
        key: Which read to observe
        query_fn: How to perform the read
        enabled: A disabled observer never triggers fetches
        on_change: Optional listener for every new result
    """

    def __init__(
        self,
        client: QueryClient,
        key: QueryKey,
        query_fn: QueryFn,
        enabled: bool = True,
        on_change: Optional[ResultListener] = None,
    ):
        self._client = client
        self._key = key
        self._query_fn = query_fn
        self._enabled = enabled
        self._listeners: list[ResultListener] = [on_change] if on_change else []
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._result = QueryResult()
        self._logger = structlog.get_logger(__name__)
        self._subscribe()

    def _subscribe(self) -> None:
        self._unsubscribe = self._client.subscribe(
            self._key, self._on_state, query_fn=self._query_fn, enabled=self._enabled
        )
        self._result = QueryResult.from_state(self._client.get_query_state(self._key))

    def _on_state(self, state: QueryState) -> None:
        self._result = QueryResult.from_state(state)
        for listener in list(self._listeners):
            listener(self._result)

    @property
    def key(self) -> QueryKey:
        return self._key

    @property
    def result(self) -> QueryResult:
        return self._result

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def is_subscribed(self) -> bool:
        return self._unsubscribe is not None

    def add_listener(self, listener: ResultListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def refetch(self, throw_on_error: bool = False) -> QueryResult:
        """Fetch now, even when the cached data is fresh."""
        try:
            await self._client.fetch_query(self._key, self._query_fn, force=True)
        except Exception:
            if throw_on_error:
                raise
        return self._result

    def set_enabled(self, enabled: bool) -> None:
        """Toggle fetching, e.g. once the user id becomes known."""
        if enabled == self._enabled:
            return
        self._enabled = enabled
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._subscribe()

    def unsubscribe(self) -> None:
        """
        Stop observing. A fetch already in flight still lands in the cache,
        this observer just isn't told about it.
        """
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None


def use_query(
    client: QueryClient,
    key: QueryKey,
    query_fn: QueryFn,
    enabled: bool = True,
    on_change: Optional[ResultListener] = None,
) -> QueryObserver:
    return QueryObserver(client, key, query_fn, enabled=enabled, on_change=on_change)


# =============================================================================
# MUTATIONS
# =============================================================================

class MutationStatus(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    SUCCESS = "success"
    ERROR = "error"


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class MutationObserver(Generic[V, R]):
    """
    Runs a write and reports on it.

    Args:
        mutation_fn: The write, called with the mutation variables
        on_success: Called with (result, variables) after the write
        on_error: Called with (error, variables) when the write fails
        on_settled: Called with (result, error, variables) either way

    Callbacks may be plain functions or coroutines.
    """

    def __init__(
        self,
        mutation_fn: Callable[[V], Awaitable[R]],
        on_success: Optional[Callable[[R, V], Any]] = None,
        on_error: Optional[Callable[[BaseException, V], Any]] = None,
        on_settled: Optional[Callable[[Optional[R], Optional[BaseException], V], Any]] = None,
    ):
        self._mutation_fn = mutation_fn
        self._on_success = on_success
        self._on_error = on_error
        self._on_settled = on_settled
        self._status = MutationStatus.IDLE
        self._data: Optional[R] = None
        self._error: Optional[BaseException] = None
        self._logger = structlog.get_logger(__name__)

    @property
    def status(self) -> MutationStatus:
        return self._status

    @property
    def is_pending(self) -> bool:
        return self._status == MutationStatus.PENDING

    @property
    def data(self) -> Optional[R]:
        return self._data

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    async def mutate(self, variables: V) -> R:
        """
        Run the write once.

        Raises:
            Whatever the write (or its on_success callback) raised, after
            on_error and on_settled have run.
        """
        self._status = MutationStatus.PENDING
        self._error = None
        try:
            data = await self._mutation_fn(variables)
            if self._on_success:
                await _maybe_await(self._on_success(data, variables))
        except Exception as e:
            self._status = MutationStatus.ERROR
            self._error = e
            self._logger.warning(
                "mutation_failed", error=str(e), error_type=type(e).__name__
            )
            if self._on_error:
                await _maybe_await(self._on_error(e, variables))
            if self._on_settled:
                await _maybe_await(self._on_settled(None, e, variables))
            raise

        self._status = MutationStatus.SUCCESS
        self._data = data
        if self._on_settled:
            await _maybe_await(self._on_settled(data, None, variables))
        return data

    def reset(self) -> None:
        self._status = MutationStatus.IDLE
        self._data = None
        self._error = None


def use_mutation(
    mutation_fn: Callable[[V], Awaitable[R]],
    on_success: Optional[Callable[[R, V], Any]] = None,
    on_error: Optional[Callable[[BaseException, V], Any]] = None,
    on_settled: Optional[Callable[[Optional[R], Optional[BaseException], V], Any]] = None,
) -> MutationObserver[V, R]:
    return MutationObserver(
        mutation_fn, on_success=on_success, on_error=on_error, on_settled=on_settled
    )
