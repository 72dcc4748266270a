import json
import logging
from collections.abc import AsyncIterator
from typing import Any, Self

from fetchkit._abort import AbortSignal
from fetchkit._errors import (
    ContentLengthExceededError,
    FetchError,
    HttpStatusError,
    ResponseDecodeError,
    wrap_error,
)
from fetchkit._http._proxy import AgentCache
from fetchkit._http._transport import (
    ClientConfig,
    HttpxFetch,
    TransportRequest,
    TransportResponse,
)
from fetchkit._interceptor import Interceptors
from fetchkit._models import RequestConfig, RequestOptions, Response
from fetchkit._prepare import attempt_signal, merge_options, prepare_request
from fetchkit._retry import RetryEngine

logger = logging.getLogger(__name__)


class _JSONDecodeFailed(Exception):
    def __init__(self, text: str) -> None:
        super().__init__('Response body is not valid JSON')
        self.text = text


def _parse_json(text: str) -> Any:
    if not text:
        return text
    return json.loads(text)


def _parse_json_or_text(text: str) -> Any:
    try:
        return _parse_json(text)
    except ValueError:
        return text


async def decode_response_data(config: RequestConfig, res: TransportResponse) -> Any:
    '''
    Read the body according to `config.response_type`.

    - `stream`: the unconsumed byte stream
    - `json`: parsed JSON; an unparsable body raises `_JSONDecodeFailed`
      carrying the text
    - `arraybuffer`, `blob`: the buffered bytes
    - `text`: the decoded text
    - `unknown`: sniffed from `Content-Type`; JSON (falling back to
      text), text for `text/*`, bytes otherwise
    '''
    response_type = config.response_type
    if response_type == 'stream':
        return res.stream()

    if response_type == 'json':
        text = await res.text()
        try:
            return _parse_json(text)
        except ValueError as exc:
            raise _JSONDecodeFailed(text) from exc

    if response_type in ('arraybuffer', 'blob'):
        return await res.bytes()

    if response_type == 'text':
        return await res.text()

    content_type = (res.headers.get('Content-Type') or '').lower()
    if 'application/json' in content_type:
        return _parse_json_or_text(await res.text())
    if content_type.startswith('text/'):
        return await res.text()
    return await res.bytes()


async def _drain(stream: AsyncIterator[bytes]) -> str:
    chunks = [chunk async for chunk in stream]
    return b''.join(chunks).decode('utf-8', errors='replace')


async def _dispose_on_close(stream: AsyncIterator[bytes], signal: AbortSignal) -> AsyncIterator[bytes]:
    try:
        async for chunk in stream:
            yield chunk
    finally:
        signal.dispose()


class Fetcher:
    '''
    HTTP client holding instance level defaults, two interceptor chains
    and the agents built for its requests.

    Parameters
    ----------
    defaults : RequestOptions | None, optional
        Options every request starts from; call site options win.
    config : ClientConfig | None, optional
        Connection tuning for the default transport and the agents.
    '''

    def __init__(
        self,
        defaults: RequestOptions | None = None,
        *,
        config: ClientConfig | None = None,
    ) -> None:
        self.defaults: RequestOptions = defaults or RequestOptions()
        self.interceptors = Interceptors()
        self._config: ClientConfig = config or ClientConfig()
        self._fetch = HttpxFetch(self._config)
        self._agents = AgentCache(self._config)

    @property
    def agents(self) -> AgentCache:
        return self._agents

    async def request(self, options: RequestOptions | None = None, /, **overrides: Any) -> Response:
        '''
        Perform a logical request: prepare, run the request interceptors
        once, dispatch (retrying per the retry config), then run the
        response interceptors on the final outcome.

        Parameters
        ----------
        options : RequestOptions | None, optional
        **overrides
            `RequestOptions` fields, applied over `options`.

        Returns
        -------
        Response

        Raises
        ------
        ValidationError
            Before any network activity, for invalid options.
        FetchError
            When the request ultimately fails.
        '''
        if overrides:
            options = merge_options(options, RequestOptions(**overrides))

        config = prepare_request(self.defaults, options, agents=self._agents)

        try:
            config = await self.interceptors.request.apply(config)
        except FetchError:
            raise
        except Exception as exc:
            raise FetchError(str(exc) or type(exc).__name__, config, cause=exc) from exc

        try:
            response = await RetryEngine(config).run(self._attempt)
        except FetchError as err:
            return await self.interceptors.response.apply(error=err)
        return await self.interceptors.response.apply(response)

    async def _attempt(self, config: RequestConfig) -> Response:
        try:
            if config.adapter is not None:
                response = await config.adapter(config, self._default_adapter)
            else:
                response = await self._default_adapter(config)

            if not config.validate_status(response.status):
                if config.response_type == 'stream' and hasattr(response.data, '__aiter__'):
                    response.data = await _drain(response.data)
                raise HttpStatusError(
                    f'Request failed with status code {response.status}',
                    config,
                    response,
                )
            return response
        except FetchError:
            raise
        except Exception as exc:
            raise wrap_error(exc, config) from exc

    async def _default_adapter(self, config: RequestConfig) -> Response:
        '''
        Invoke the transport and decode the body of its response.
        '''
        fetch = config.fetch_implementation or self._fetch
        signal = attempt_signal(config)
        owned = signal if signal is not None and signal is not config.signal else None
        handed_off = False
        logger.debug(f'Dispatching {config.method} {config.url}')
        try:
            res = await fetch(
                config.url,
                TransportRequest(
                    method=config.method,
                    headers=config.headers.copy(),
                    body=config.body,
                    signal=signal,
                    agent=config.agent,
                    duplex=config.duplex,
                    max_redirects=config.max_redirects,
                ),
            )
            response = Response(
                config=config,
                data=None,
                status=res.status,
                status_text=res.status_text,
                headers=res.headers,
                url=res.url,
            )
            await self._check_content_length(config, res, response)

            try:
                response.data = await decode_response_data(config, res)
            except _JSONDecodeFailed as exc:
                response.data = exc.text
                if config.validate_status(response.status):
                    raise ResponseDecodeError(str(exc), config, response, cause=exc.__cause__) from exc

            if owned is not None and config.response_type == 'stream':
                response.data = _dispose_on_close(response.data, owned)
                handed_off = True
            return response
        finally:
            if owned is not None and not handed_off:
                owned.dispose()

    async def _check_content_length(
        self,
        config: RequestConfig,
        res: TransportResponse,
        response: Response
    ) -> None:
        if config.max_content_length is None:
            return
        try:
            declared = int(res.headers.get('Content-Length') or -1)
        except ValueError:
            return
        if declared > config.max_content_length:
            await res.aclose()
            raise ContentLengthExceededError(
                f'Response content length {declared} exceeds the maximum '
                f'of {config.max_content_length} bytes',
                config,
                response,
            )

    async def aclose(self) -> None:
        await self._fetch.aclose()
        await self._agents.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *args) -> None:
        await self.aclose()
