"""Live query results.

A LiveQuery describes a read that can be re-evaluated; subscribing to it
yields a LiveSubscription that emits the current value, then re-evaluates
the read every time the store reports a relevant change and emits the
result when it differs from the last one, until cancelled.
"""

import asyncio
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from conti.domain.errors import StoreUnavailableError
from conti.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")
S = TypeVar("S")

Fetch = Callable[[], Awaitable[T]]
Invalidate = Callable[[], None]
Unwatch = Callable[[], None]
Watch = Callable[[Invalidate], Unwatch]

REFETCH_ATTEMPTS = 3


@dataclass(frozen=True)
class RowKey:
    """Identifies the slice of data a write touched.

    A date of None means any date of the account.
    """

    account_id: Any
    date: Optional[date] = None


@dataclass(frozen=True)
class Change:
    """A committed write, published to live queries."""

    table: str
    rows: tuple[RowKey, ...] = ()


ChangePredicate = Callable[[Change], bool]


class ChangeNotifier:
    """In-process fan-out of committed changes to interested listeners."""

    def __init__(self) -> None:
        self._listeners: list[tuple[ChangePredicate, Invalidate]] = []

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def listen(self, predicate: ChangePredicate, invalidate: Invalidate) -> Unwatch:
        """Register a listener. Returns a callable that removes it."""
        entry = (predicate, invalidate)
        self._listeners.append(entry)

        def unwatch() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unwatch

    def watcher(self, predicate: ChangePredicate) -> Watch:
        """Build a Watch hook for LiveQuery bound to this notifier."""
        return lambda invalidate: self.listen(predicate, invalidate)

    def publish(self, *changes: Change) -> None:
        """Notify every listener interested in at least one change."""
        for predicate, invalidate in list(self._listeners):
            if any(predicate(change) for change in changes):
                invalidate()


class LiveQuery(Generic[T]):
    """A re-evaluable read bound to a change source."""

    def __init__(
        self,
        fetch: Optional[Fetch] = None,
        watch: Optional[Watch] = None,
        *,
        fetch_factory: Optional[Callable[[], Fetch]] = None,
    ):
        """Initialize a live query.

        Args:
            fetch: Coroutine function evaluating the read
            watch: Hook registering an invalidation callback with the store;
                returns the function that unregisters it
            fetch_factory: Builds a fresh fetch per subscription, for reads
                that keep per-subscription state
        """
        if fetch_factory is None:
            if fetch is None:
                raise TypeError("LiveQuery needs fetch or fetch_factory")
            fetch_factory = lambda: fetch  # noqa: E731
        self._fetch_factory = fetch_factory
        self._watch = watch or (lambda invalidate: (lambda: None))

    def map(self, transform: Callable[[T], R]) -> "LiveQuery[R]":
        """Derive a live query applying transform to every emitted value."""
        parent = self._fetch_factory

        def make_fetch() -> Fetch:
            inner = parent()

            async def fetch() -> R:
                return transform(await inner())

            return fetch

        return LiveQuery(watch=self._watch, fetch_factory=make_fetch)

    def seeded(self, load: Callable[[], Awaitable[S]], combine: Callable[[S, T], R]) -> "LiveQuery[R]":
        """Derive a live query combining each value with a seed.

        The seed is loaded once per subscription, on its first evaluation,
        and is not watched for changes.
        """
        parent = self._fetch_factory

        def make_fetch() -> Fetch:
            inner = parent()
            seed: list[S] = []

            async def fetch() -> R:
                if not seed:
                    seed.append(await load())
                return combine(seed[0], await inner())

            return fetch

        return LiveQuery(watch=self._watch, fetch_factory=make_fetch)

    async def first(self) -> T:
        """Evaluate the read once, without subscribing."""
        return await self._fetch_factory()()

    def subscribe(self, refetch_attempts: int = REFETCH_ATTEMPTS) -> "LiveSubscription[T]":
        """Start a subscription. Must be called from a running event loop."""
        return LiveSubscription(self._fetch_factory(), self._watch, refetch_attempts)


class _Failure:
    __slots__ = ("error",)

    def __init__(self, error: BaseException):
        self.error = error


_END = object()
_UNSET = object()


class LiveSubscription(Generic[T]):
    """Cancellable stream of values from a LiveQuery.

    Iterate with ``async for``. A store error ends the stream: it is raised
    once from the iterator and the subscription is then closed; re-subscribe
    to resume. Transient store failures are retried before that happens.
    """

    def __init__(self, fetch: Fetch, watch: Watch, refetch_attempts: int = REFETCH_ATTEMPTS):
        self._fetch = fetch
        self._watch = watch
        self._refetch_attempts = refetch_attempts
        self._queue: asyncio.Queue = asyncio.Queue()
        self._dirty = asyncio.Event()
        self._finished = False
        self._cancelled = False
        self._task = asyncio.get_running_loop().create_task(self._run())

    @property
    def closed(self) -> bool:
        return self._finished or self._cancelled

    async def _run(self) -> None:
        unwatch: Optional[Unwatch] = None
        last: Any = _UNSET
        try:
            unwatch = self._watch(self._dirty.set)
            self._dirty.set()
            while True:
                await self._dirty.wait()
                # Writes landing while we fetch set the flag again.
                self._dirty.clear()
                value = await self._refetch()
                if value != last:
                    self._queue.put_nowait(value)
                    last = value
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.debug(f"Live subscription ended with {type(exc).__name__}: {exc}")
            self._queue.put_nowait(_Failure(exc))
        finally:
            if unwatch is not None:
                unwatch()
            self._queue.put_nowait(_END)

    async def _refetch(self) -> T:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StoreUnavailableError),
            stop=stop_after_attempt(self._refetch_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.warning(
                        f"Re-attempting live query (attempt {attempt.retry_state.attempt_number})"
                    )
                value = await self._fetch()
        return value

    def __aiter__(self) -> "LiveSubscription[T]":
        return self

    async def __anext__(self) -> T:
        if self.closed:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _END or self._cancelled:
            self._finished = True
            raise StopAsyncIteration
        if isinstance(item, _Failure):
            self._finished = True
            raise item.error
        return item

    async def receive(self, timeout: Optional[float] = None) -> T:
        """Wait for the next value.

        Raises:
            StopAsyncIteration: If the subscription is closed
            asyncio.TimeoutError: If no value arrives within timeout
        """
        return await asyncio.wait_for(self.__anext__(), timeout)

    def cancel(self) -> None:
        """Stop emissions and release the store listener."""
        if self._cancelled:
            return
        self._cancelled = True
        self._task.cancel()
        # Wake a consumer blocked on the queue.
        self._queue.put_nowait(_END)

    async def wait_closed(self) -> None:
        """Wait until the listener has been released."""
        await asyncio.gather(self._task, return_exceptions=True)

    async def __aenter__(self) -> "LiveSubscription[T]":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        await self.wait_closed()
