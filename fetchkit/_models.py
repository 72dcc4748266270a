'''
The request options a caller supplies, the resolved configuration a
request is dispatched with, the retry state carried across attempts
and the response handed back.
'''
from __future__ import annotations

import copy
import dataclasses as dc
import functools
import math
from collections.abc import AsyncIterator, Awaitable, Callable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Literal, Union, get_args

import httpx

from fetchkit._abort import AbortSignal
from fetchkit._body import Body, MultipartPart, snapshot_body
from fetchkit._headers import Headers, HeaderTypes
from fetchkit._http._proxy import NoProxyRule
from fetchkit._http._transport import FetchImplementation

if TYPE_CHECKING:
    from fetchkit._errors import FetchError


Method = Literal[
    'GET', 'HEAD', 'POST', 'DELETE', 'PUT', 'CONNECT', 'OPTIONS', 'TRACE', 'PATCH'
]
ResponseType = Literal['json', 'text', 'arraybuffer', 'blob', 'stream', 'unknown']

METHODS: frozenset[str] = frozenset(get_args(Method))
RESPONSE_TYPES: frozenset[str] = frozenset(get_args(ResponseType))

RequestBody = Union[str, bytes, AsyncIterator[bytes], Any, None]
ErrorRedactor = Callable[
    ['RequestConfig', 'Response | None'],
    'tuple[RequestConfig, Response | None]',
]
Adapter = Callable[
    ['RequestConfig', Callable[['RequestConfig'], Awaitable['Response']]],
    Awaitable['Response'],
]


def default_validate_status(status: int) -> bool:
    '''
    By default, reject any non-2xx status code.
    '''
    return 200 <= status < 300


def _default_methods_to_retry() -> list[str]:
    return ['GET', 'HEAD', 'PUT', 'OPTIONS', 'DELETE']


def _default_status_codes_to_retry() -> list[tuple[int, int]]:
    return [(100, 199), (429, 429), (500, 599)]


@dc.dataclass(slots=True)
class RetryConfig:
    '''
    Retry policy and the retry state of one logical request.

    Durations are in milliseconds. `current_retry_attempt` only ever
    grows, by one per retry.

    Attributes
    ----------
    - retry: the maximum number of retries
    - current_retry_attempt: retries performed so far
    - retry_delay: the base delay before the first retry
    - retry_delay_multiplier: exponential growth factor of the delay
    - max_retry_delay: upper bound of a single delay
    - total_timeout: deadline across every attempt
    - http_methods_to_retry: methods eligible when a response exists
    - status_codes_to_retry: inclusive `(low, high)` status ranges
    - no_response_retries: retries for failures without any response
    - on_retry_attempt: `(err) -> None | Awaitable`, before each sleep
    - should_retry: `(err) -> bool | Awaitable[bool]`, can veto a retry
    - retry_backoff: `(err, delay_ms) -> Awaitable`, replaces the sleep
    - time_of_first_request: monotonic ms of the first attempt
    - explicit_fields: the fields set by the caller, used by `merge`
    '''
    retry: int = 3
    current_retry_attempt: int = 0
    retry_delay: float = 100
    retry_delay_multiplier: float = 2
    max_retry_delay: float = math.inf
    total_timeout: float = math.inf
    http_methods_to_retry: list[str] = dc.field(default_factory=_default_methods_to_retry)
    status_codes_to_retry: list[tuple[int, int]] = dc.field(
        default_factory=_default_status_codes_to_retry
    )
    no_response_retries: int = 2
    on_retry_attempt: Callable[[FetchError], Any] | None = None
    should_retry: Callable[[FetchError], Any] | None = None
    retry_backoff: Callable[[FetchError, float], Awaitable[Any]] | None = None
    time_of_first_request: float | None = None
    explicit_fields: frozenset[str] = dc.field(
        default=frozenset(), init=False, repr=False, compare=False
    )

    def copy(self) -> RetryConfig:
        clone = dc.replace(
            self,
            http_methods_to_retry=list(self.http_methods_to_retry),
            status_codes_to_retry=list(self.status_codes_to_retry),
        )
        clone.explicit_fields = self.explicit_fields
        return clone

    def merge(self, overrides: RetryConfig | Mapping[str, Any]) -> RetryConfig:
        '''
        Apply `overrides` key by key. For a `RetryConfig`, the fields
        given to its constructor are the overrides, whatever their value.
        '''
        if isinstance(overrides, RetryConfig):
            overrides = {name: getattr(overrides, name) for name in overrides.explicit_fields}
        unknown = set(overrides) - set(_RETRY_OPTIONS)
        if unknown:
            raise TypeError(f'Unknown retry options: {sorted(unknown)}')
        merged = dc.replace(self.copy(), **overrides)
        merged.explicit_fields = self.explicit_fields | set(overrides)
        return merged


_RETRY_OPTIONS = tuple(f.name for f in dc.fields(RetryConfig) if f.init)


def _record_explicit_fields(init: Callable[..., None]) -> Callable[..., None]:
    @functools.wraps(init)
    def __init__(self: RetryConfig, *args: Any, **kwargs: Any) -> None:
        init(self, *args, **kwargs)
        self.explicit_fields = frozenset([*_RETRY_OPTIONS[:len(args)], *kwargs])
    return __init__


RetryConfig.__init__ = _record_explicit_fields(RetryConfig.__init__)  # type: ignore[method-assign]


@dc.dataclass(slots=True)
class RequestOptions:
    '''
    Caller supplied request options. Every field defaults to `None`,
    meaning "not set"; unset fields fall back to the instance defaults
    and then to the library defaults.

    Durations (`timeout`) are in milliseconds.
    '''
    url: str | httpx.URL | None = None
    base_url: str | httpx.URL | None = None
    method: Method | str | None = None
    headers: HeaderTypes = None
    data: Any = None
    multipart: Sequence[MultipartPart] | None = None
    params: Mapping[str, Any] | None = None
    params_serializer: Callable[[Mapping[str, Any]], str] | None = None
    timeout: float | None = None
    max_redirects: int | None = None
    max_content_length: int | None = None
    validate_status: Callable[[int], bool] | None = None
    response_type: ResponseType | None = None
    proxy: str | httpx.URL | None = None
    no_proxy: Sequence[NoProxyRule] | None = None
    agent: httpx.AsyncBaseTransport | None = None
    cert: str | None = None
    key: str | None = None
    signal: AbortSignal | None = None
    retry: bool | None = None
    retry_config: RetryConfig | Mapping[str, Any] | None = None
    error_redactor: ErrorRedactor | Literal[False] | None = None
    fetch_implementation: FetchImplementation | None = None
    adapter: Adapter | None = None


@dc.dataclass(slots=True)
class RequestConfig:
    '''
    A fully resolved, dispatch-ready request. `url` is absolute and
    `headers` is owned by this config alone.
    '''
    url: str
    method: str = 'GET'
    headers: Headers = dc.field(default_factory=Headers)
    data: Body | None = None
    body: RequestBody = None
    multipart: Sequence[MultipartPart] | None = None
    params: Mapping[str, Any] | None = None
    timeout: float | None = None
    max_redirects: int = 20
    max_content_length: int | None = None
    validate_status: Callable[[int], bool] = default_validate_status
    response_type: ResponseType = 'unknown'
    proxy: str | None = None
    no_proxy: list[NoProxyRule] = dc.field(default_factory=list)
    agent: httpx.AsyncBaseTransport | None = None
    cert: str | None = None
    key: str | None = None
    signal: AbortSignal | None = None
    retry_config: RetryConfig | None = None
    error_redactor: ErrorRedactor | Literal[False] | None = None
    fetch_implementation: FetchImplementation | None = None
    adapter: Adapter | None = None
    duplex: Literal['half'] | None = None

    def snapshot(self) -> RequestConfig:
        '''
        An independent copy: mutating it (as redaction does) never
        reaches this config or the attempts that follow.
        '''
        return dc.replace(
            self,
            headers=self.headers.copy(),
            data=snapshot_body(self.data),
            params=copy.deepcopy(self.params),
            no_proxy=list(self.no_proxy),
            retry_config=self.retry_config.copy() if self.retry_config else None,
        )


def _snapshot_data(data: Any) -> Any:
    if isinstance(data, (dict, list)):
        return copy.deepcopy(data)
    return data


@dc.dataclass(slots=True)
class Response:
    '''
    The outcome of a request.

    `data` depends on the response type: parsed JSON, `str`, `bytes`
    or, for `stream`, an unconsumed async iterator of byte chunks.
    '''
    config: RequestConfig
    data: Any
    status: int
    status_text: str = ''
    headers: Headers = dc.field(default_factory=Headers)
    url: str = ''

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def snapshot(self) -> Response:
        return dc.replace(
            self,
            config=self.config.snapshot(),
            headers=self.headers.copy(),
            data=_snapshot_data(self.data),
        )
