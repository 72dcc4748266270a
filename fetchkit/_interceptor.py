'''
Request and response interceptors.

An interceptor chain is applied like a promise chain: each active
entry is `.then(resolved, rejected)`. A `rejected` handler that returns
instead of raising recovers the chain, and its return value becomes
the value seen by the next entry.
'''
import dataclasses as dc
import inspect
from collections.abc import Callable, Iterator
from typing import Any, Generic, TypeVar

from fetchkit._models import RequestConfig, Response

T = TypeVar('T')


@dc.dataclass(slots=True)
class Interceptor(Generic[T]):
    '''
    Attributes
    ----------
    - resolved: `(value) -> value | Awaitable[value]`, run when the
      chain holds a value
    - rejected: `(error) -> value | Awaitable[value]`, run when the
      chain holds an error; raise to keep the chain rejected
    '''
    resolved: Callable[[T], Any] | None = None
    rejected: Callable[[Exception], Any] | None = None


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class InterceptorManager(Generic[T]):
    '''
    Ordered collection of interceptors. Ids are insertion indexes and
    stay valid after removals; `remove_all` starts a fresh sequence
    at 0.
    '''
    __slots__ = ('_queue',)

    def __init__(self) -> None:
        self._queue: list[Interceptor[T] | None] = []

    def add(self, interceptor: Interceptor[T]) -> int:
        '''
        Append an interceptor.

        Returns
        -------
        int
            The id to pass to `remove`.
        '''
        self._queue.append(interceptor)
        return len(self._queue) - 1

    def remove(self, interceptor_id: int) -> None:
        if 0 <= interceptor_id < len(self._queue):
            self._queue[interceptor_id] = None

    def remove_all(self) -> None:
        self._queue = []

    def __iter__(self) -> Iterator[Interceptor[T]]:
        return (item for item in list(self._queue) if item is not None)

    def __len__(self) -> int:
        return sum(1 for item in self._queue if item is not None)

    async def apply(
        self,
        value: T | None = None,
        *,
        error: Exception | None = None
    ) -> T:
        '''
        Run the chain, sequentially, from `value` or, when `error` is
        given, from a rejected state.

        Raises
        ------
        Exception
            The error still pending once every entry has run.
        '''
        current: Any = value
        pending = error
        for interceptor in self:
            if pending is None:
                if interceptor.resolved is None:
                    continue
                try:
                    current = await _maybe_await(interceptor.resolved(current))
                except Exception as exc:
                    pending = exc
            elif interceptor.rejected is not None:
                try:
                    current = await _maybe_await(interceptor.rejected(pending))
                    pending = None
                except Exception as exc:
                    pending = exc

        if pending is not None:
            raise pending
        return current


@dc.dataclass(slots=True)
class Interceptors:
    request: InterceptorManager[RequestConfig] = dc.field(default_factory=InterceptorManager)
    response: InterceptorManager[Response] = dc.field(default_factory=InterceptorManager)
