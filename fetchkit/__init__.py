'''
**fetchkit**
---------

An asyncio HTTP request library wrapping a `fetch`-style transport with
request preparation, request/response interceptors, content-type aware
response decoding, proxy selection and an exponential backoff retry
policy with cancellation support.

`request` uses the shared module level `instance`; construct a `Fetcher`
to hold your own defaults and interceptors.
'''
from typing import Any

from fetchkit._abort import AbortController, AbortError, AbortSignal, AbortTimeoutError
from fetchkit._body import (
    BytesBody,
    FormBody,
    JsonBody,
    MultipartPart,
    StreamBody,
    TextBody,
    coerce_body,
)
from fetchkit._client import Fetcher
from fetchkit._errors import (
    CancellationError,
    ContentLengthExceededError,
    FetchError,
    HttpStatusError,
    RequestTimeoutError,
    ResponseDecodeError,
    TransportError,
    ValidationError,
)
from fetchkit._headers import Headers
from fetchkit._http import (
    AgentTransport,
    ClientConfig,
    HttpxFetch,
    TransportRequest,
    TransportResponse,
)
from fetchkit._interceptor import Interceptor, InterceptorManager
from fetchkit._models import RequestConfig, RequestOptions, Response, RetryConfig
from fetchkit._redact import REDACTED, default_error_redactor

instance = Fetcher()


async def request(options: RequestOptions | None = None, /, **overrides: Any) -> Response:
    '''
    Make an HTTP request through the shared `instance`.
    '''
    return await instance.request(options, **overrides)


__all__ = [
    'AbortController',
    'AbortError',
    'AbortSignal',
    'AbortTimeoutError',
    'AgentTransport',
    'BytesBody',
    'CancellationError',
    'ClientConfig',
    'ContentLengthExceededError',
    'FetchError',
    'Fetcher',
    'FormBody',
    'Headers',
    'HttpStatusError',
    'HttpxFetch',
    'Interceptor',
    'InterceptorManager',
    'JsonBody',
    'MultipartPart',
    'REDACTED',
    'RequestConfig',
    'RequestOptions',
    'RequestTimeoutError',
    'Response',
    'ResponseDecodeError',
    'RetryConfig',
    'StreamBody',
    'TextBody',
    'TransportError',
    'TransportRequest',
    'TransportResponse',
    'ValidationError',
    'coerce_body',
    'default_error_redactor',
    'instance',
    'request',
]
