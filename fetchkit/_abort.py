'''
Cooperative cancellation signals.

An `AbortSignal` is threaded from the request options into the
transport call. A signal fired by the caller (`AbortController.abort`)
carries an `AbortError`; a signal fired by a timer carries an
`AbortTimeoutError`, which the retry engine treats like any other
failure instead of as a caller cancellation.
'''
import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


class AbortError(Exception):
    '''
    The reason carried by a signal aborted by its owner.
    '''
    name = 'AbortError'

    def __init__(self, message: str = 'This operation was aborted') -> None:
        super().__init__(message)


class AbortTimeoutError(AbortError):
    '''
    The reason carried by a signal aborted because its timer elapsed.
    '''
    name = 'TimeoutError'

    def __init__(self, message: str = 'The operation timed out') -> None:
        super().__init__(message)


class AbortSignal:
    __slots__ = ('_event', '_reason', '_callbacks', '_timer', '_sources')

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: AbortError | None = None
        self._callbacks: list[Callable[[AbortError], None]] = []
        self._timer: asyncio.TimerHandle | None = None
        self._sources: list[tuple['AbortSignal', Callable[[AbortError], None]]] = []

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> AbortError | None:
        return self._reason

    def throw_if_aborted(self) -> None:
        if self._reason is not None:
            raise self._reason

    async def wait(self) -> AbortError:
        await self._event.wait()
        assert self._reason is not None
        return self._reason

    def add_callback(self, callback: Callable[[AbortError], None]) -> None:
        if self._reason is not None:
            callback(self._reason)
            return
        self._callbacks.append(callback)

    def remove_callback(self, callback: Callable[[AbortError], None]) -> None:
        with contextlib.suppress(ValueError):
            self._callbacks.remove(callback)

    def follow(self, source: 'AbortSignal') -> None:
        '''
        Abort this signal, with the same reason, when `source` aborts.
        '''
        if source.aborted:
            self._abort(source.reason)  # type: ignore[arg-type]
            return
        source.add_callback(self._abort)
        self._sources.append((source, self._abort))

    def dispose(self) -> None:
        '''
        Cancel a pending timer and detach from the signals this one
        was derived from.
        '''
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        for source, callback in self._sources:
            source.remove_callback(callback)
        self._sources.clear()

    def _abort(self, reason: AbortError) -> None:
        if self._reason is not None:
            return
        self._reason = reason
        self._event.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    @classmethod
    def abort(cls, reason: AbortError | None = None) -> 'AbortSignal':
        '''
        Create an already aborted signal.
        '''
        signal = cls()
        signal._abort(reason or AbortError())
        return signal

    @classmethod
    def timeout(cls, milliseconds: float) -> 'AbortSignal':
        '''
        Create a signal that aborts with an `AbortTimeoutError` once
        `milliseconds` have elapsed. Must be called with a running loop.

        Parameters
        ----------
        milliseconds : float

        Returns
        -------
        AbortSignal
        '''
        signal = cls()
        loop = asyncio.get_running_loop()
        signal._timer = loop.call_later(
            max(0.0, milliseconds) / 1000,
            signal._abort,
            AbortTimeoutError(f'The operation timed out after {milliseconds}ms'),
        )
        return signal

    @classmethod
    def any(cls, signals: Iterable['AbortSignal']) -> 'AbortSignal':
        '''
        Combine several signals into one that aborts as soon as any of
        them does, with that signal's reason.

        Parameters
        ----------
        signals : Iterable[AbortSignal]

        Returns
        -------
        AbortSignal
        '''
        combined = cls()
        for source in signals:
            combined.follow(source)
        return combined


class AbortController:
    '''
    Owner of an `AbortSignal`; calling `abort` fires the signal.
    '''
    __slots__ = ('signal',)

    def __init__(self) -> None:
        self.signal = AbortSignal()

    def abort(self, reason: AbortError | None = None) -> None:
        self.signal._abort(reason or AbortError())


async def until_aborted(awaitable: Awaitable[T], signal: AbortSignal | None) -> T:
    '''
    Await `awaitable`, abandoning it with the signal's reason if the
    signal fires first.

    Raises
    ------
    AbortError
        The reason of the signal, when it fires before completion.
    '''
    if signal is None:
        return await awaitable

    task = asyncio.ensure_future(awaitable)
    if signal.aborted:
        await _discard(task)
        raise signal.reason  # type: ignore[misc]

    waiter = asyncio.ensure_future(signal.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    logger.debug(f'Abandoning pending operation: {signal.reason!r}')
    await _discard(task)
    raise signal.reason  # type: ignore[misc]


async def _discard(task: asyncio.Future) -> None:
    task.cancel()
    await asyncio.wait({task})
    if not task.cancelled():
        task.exception()
