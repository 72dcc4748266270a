'''
Retry/backoff engine for fetchkit

One `RetryEngine` drives one logical request: it runs an attempt,
classifies a failure, and either waits and re-dispatches the same
config or lets the error propagate.

Raises
------
FetchError
    _the error of the last attempt, once no retry is allowed_
'''
import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable

from fetchkit._abort import AbortError, AbortSignal, until_aborted
from fetchkit._errors import CancellationError, FetchError
from fetchkit._models import RequestConfig, Response, RetryConfig

logger = logging.getLogger(__name__)


def now_ms() -> float:
    return time.monotonic() * 1000


def _in_ranges(status: int, ranges: list[tuple[int, int]]) -> bool:
    return any(low <= status <= high for low, high in ranges)


def compute_delay(retry: RetryConfig) -> float:
    '''
    `retry_delay * retry_delay_multiplier ** current_retry_attempt`,
    capped at `max_retry_delay`. Milliseconds.
    '''
    delay = retry.retry_delay * retry.retry_delay_multiplier ** retry.current_retry_attempt
    return min(retry.max_retry_delay, delay)


def is_retryable(err: FetchError, config: RequestConfig) -> bool:
    '''
    The built-in retry rules, without the caller's `should_retry`.

    - caller cancellations are never retried
    - the method must be in `http_methods_to_retry`
    - without a response, `no_response_retries` bounds the retries
    - with a response, its status must be in `status_codes_to_retry`
    - `retry` bounds every retry
    '''
    retry = config.retry_config
    if retry is None or isinstance(err, CancellationError):
        return False

    if config.method.upper() not in {m.upper() for m in retry.http_methods_to_retry}:
        return False

    if err.status is None:
        if retry.current_retry_attempt >= retry.no_response_retries:
            return False
    elif not _in_ranges(err.status, retry.status_codes_to_retry):
        return False

    return retry.current_retry_attempt < retry.retry


async def _sleep(delay_ms: float, signal: AbortSignal | None) -> None:
    await until_aborted(asyncio.sleep(delay_ms / 1000), signal)


class RetryEngine:
    '''
    Parameters
    ----------
    config : RequestConfig
        The live config of the logical request; its retry state is
        updated in place between attempts.
    '''
    __slots__ = ('config',)

    def __init__(self, config: RequestConfig) -> None:
        self.config = config

    async def run(self, attempt: Callable[[RequestConfig], Awaitable[Response]]) -> Response:
        '''
        Run `attempt` until it succeeds or a failure is not retried.

        Parameters
        ----------
        attempt : Callable[[RequestConfig], Awaitable[Response]]
            One dispatch; must raise `FetchError` on failure.

        Returns
        -------
        Response
        '''
        retry = self.config.retry_config
        if retry is not None and retry.time_of_first_request is None:
            retry.time_of_first_request = now_ms()

        while True:
            try:
                return await attempt(self.config)
            except FetchError as err:
                if not await self.prepare_retry(err):
                    raise

    async def prepare_retry(self, err: FetchError) -> bool:
        '''
        Decide whether `err` is retried; when it is, bump the attempt
        counter, notify `on_retry_attempt` and wait out the backoff.

        Returns
        -------
        bool
            True when the caller should dispatch again.
        '''
        config = self.config
        retry = config.retry_config
        if retry is None or not is_retryable(err, config):
            return False

        started = retry.time_of_first_request
        remaining = retry.total_timeout - (now_ms() - started if started is not None else 0)
        if remaining <= 0:
            logger.debug(f'Retry budget of {retry.total_timeout}ms exhausted for {config.url}')
            return False

        if retry.should_retry is not None:
            allowed = retry.should_retry(err)
            if inspect.isawaitable(allowed):
                allowed = await allowed
            if not allowed:
                return False

        delay = min(compute_delay(retry), remaining)
        retry.current_retry_attempt += 1
        logger.debug(
            f'Retrying {config.method} {config.url} '
            f'(attempt {retry.current_retry_attempt} of {retry.retry}) in {delay:.0f}ms'
        )

        if retry.on_retry_attempt is not None:
            try:
                notified = retry.on_retry_attempt(err)
                if inspect.isawaitable(notified):
                    await notified
            except Exception as exc:
                logger.warning(f'on_retry_attempt callback failed: {exc!r}')

        if config.signal is not None and config.signal.aborted:
            return False

        try:
            if retry.retry_backoff is not None:
                await until_aborted(retry.retry_backoff(err, delay), config.signal)
            else:
                await _sleep(delay, config.signal)
        except AbortError:
            logger.debug(f'{config.method} {config.url} aborted while waiting to retry')
            return False

        return True
