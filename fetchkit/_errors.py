'''
The error model.

Every failure after preparation reaches the caller (and the retry
engine) as a `FetchError`. The error carries snapshots of the config
and the response; redaction runs on those snapshots inside the
constructor, never on the live config used by later attempts.
'''
import asyncio
import logging

import httpcore
import httpx

from fetchkit._abort import AbortError, AbortTimeoutError
from fetchkit._models import RequestConfig, Response
from fetchkit._redact import default_error_redactor

logger = logging.getLogger(__name__)


class ValidationError(ValueError):
    '''
    Raised for invalid request options, before any network activity.

    Parent: ValueError
    '''


class FetchError(Exception):
    '''
    A failed attempt.

    Attributes
    ----------
    - message: human readable description
    - config: redacted snapshot of the request config
    - response: redacted snapshot of the response, when one was received
    - cause: the underlying exception, if any
    - code: transport error code, `AbortError` / `TimeoutError`, or the
      HTTP status as a string
    - status: the HTTP status, when a response was received
    '''

    def __init__(
        self,
        message: str,
        config: RequestConfig,
        response: Response | None = None,
        cause: BaseException | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.config = config.snapshot()
        self.response = response.snapshot() if response is not None else None
        self.cause = cause
        self.status: int | None = response.status if response is not None else None
        self.code: str | None = _error_code(cause, self.status)
        if cause is not None:
            self.__cause__ = cause
        self._redact()

    def _redact(self) -> None:
        redactor = self.config.error_redactor
        if redactor is False:
            return
        redactor = redactor or default_error_redactor
        try:
            self.config, self.response = redactor(self.config, self.response)
        except Exception:
            logger.warning('Error redaction failed, keeping the unredacted snapshot', exc_info=True)


class TransportError(FetchError):
    '''
    The transport failed before any response was received.
    '''


class HttpStatusError(FetchError):
    '''
    A response was received but rejected by `validate_status`.
    '''


class ContentLengthExceededError(FetchError):
    '''
    The declared `Content-Length` exceeds `max_content_length`;
    the body was not read.
    '''


class ResponseDecodeError(FetchError):
    '''
    `response_type='json'` was requested and the body is not JSON.
    '''


class CancellationError(FetchError):
    '''
    The caller aborted the request through its signal.
    '''


class RequestTimeoutError(FetchError):
    '''
    The request timed out, either on the `timeout` signal or inside
    the transport.
    '''


_TIMEOUT_ERRORS = (
    asyncio.TimeoutError,
    httpx.TimeoutException,
    httpcore.TimeoutException,
)


def _error_code(cause: BaseException | None, status: int | None) -> str | None:
    if isinstance(cause, AbortError):
        return cause.name
    code = getattr(cause, 'code', None)
    if isinstance(code, str) and code:
        return code
    if isinstance(cause, (httpx.TransportError, httpcore.NetworkError, httpcore.TimeoutException)):
        return type(cause).__name__
    if status is not None:
        return str(status)
    return None


def wrap_error(exc: BaseException, config: RequestConfig) -> FetchError:
    '''
    Normalize any exception raised while dispatching into a
    `FetchError`; a `FetchError` is returned unchanged.

    Parameters
    ----------
    exc : BaseException
    config : RequestConfig

    Returns
    -------
    FetchError
    '''
    if isinstance(exc, FetchError):
        return exc
    if isinstance(exc, AbortTimeoutError):
        return RequestTimeoutError(str(exc), config, cause=exc)
    if isinstance(exc, AbortError):
        return CancellationError(str(exc), config, cause=exc)
    if isinstance(exc, _TIMEOUT_ERRORS):
        return RequestTimeoutError(str(exc) or 'The request timed out', config, cause=exc)
    return TransportError(str(exc) or type(exc).__name__, config, cause=exc)
