import contextlib
import dataclasses as dc
import json
import logging
import socket
import ssl
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Protocol

import httpx

from fetchkit._abort import AbortSignal, until_aborted
from fetchkit._headers import Headers

logger = logging.getLogger(__name__)


def default_socket_options() -> list[tuple]:
    '''
    cross platform socket options for TCP connections

    Returns
    -------
    list[SockOpt]
    '''
    opts = []

    if hasattr(socket, "TCP_NODELAY"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_NODELAY, 1))

    if hasattr(socket, "SO_KEEPALIVE"):
        opts.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))

    if hasattr(socket, "TCP_KEEPIDLE"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, 60))

    if hasattr(socket, "TCP_KEEPINTVL"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, 10))

    if hasattr(socket, "TCP_KEEPCNT"):
        opts.append((socket.IPPROTO_TCP, socket.TCP_KEEPCNT, 5))

    return opts


TLS_1_3_CIPHERS = [
    "TLS_AES_128_GCM_SHA256",
    "TLS_AES_256_GCM_SHA384",
    "TLS_CHACHA20_POLY1305_SHA256",
]
TLS_1_2_CIPHERS = [
    "ECDHE-ECDSA-AES128-GCM-SHA256",
    "ECDHE-RSA-AES128-GCM-SHA256",
    "ECDHE-ECDSA-CHACHA20-POLY1305",
    "ECDHE-RSA-CHACHA20-POLY1305",
    "ECDHE-ECDSA-AES256-GCM-SHA384",
    "ECDHE-RSA-AES256-GCM-SHA384",
]


def client_ssl_context(
    cert: str | None = None,
    key: str | None = None
) -> ssl.SSLContext:
    '''
    creates the SSL context used by every agent: TLS 1.2 and 1.3 with
    modern cipher suites and hostname verification. When `cert` and
    `key` are given, the client presents them for mutual TLS.

    Parameters
    ----------
    cert : str | None, optional
        path to a PEM encoded client certificate (chain)
    key : str | None, optional
        path to the PEM encoded private key of `cert`

    Returns
    -------
    ssl.SSLContext
    '''
    ctx = ssl.create_default_context(purpose=ssl.Purpose.SERVER_AUTH)

    ctx.minimum_version = ssl.TLSVersion.TLSv1_2
    ctx.maximum_version = ssl.TLSVersion.MAXIMUM_SUPPORTED

    ctx.check_hostname = True
    ctx.verify_mode = ssl.CERT_REQUIRED

    with contextlib.suppress(NotImplementedError):
        ctx.set_alpn_protocols(["h2", "http/1.1"])

    ctx.options |= ssl.OP_NO_COMPRESSION

    set_ciphersuites = getattr(ctx, "set_ciphersuites", None)
    if callable(set_ciphersuites):
        # for tls 1.3
        with contextlib.suppress(ssl.SSLError):
            set_ciphersuites(":".join(TLS_1_3_CIPHERS))

    # for tls 1.2
    ctx.set_ciphers(":".join(TLS_1_2_CIPHERS))

    if cert:
        ctx.load_cert_chain(certfile=cert, keyfile=key)

    return ctx


def _base_limits() -> httpx.Limits:
    return httpx.Limits(
        max_connections=100,
        max_keepalive_connections=20,
        keepalive_expiry=15,
    )


def _base_timeouts() -> httpx.Timeout:
    # request deadlines are enforced by the `timeout` signal
    return httpx.Timeout(
        connect=10.0,
        read=None,
        write=None,
        pool=10.0,
    )


@dc.dataclass(slots=True)
class ClientConfig:
    '''
    Connection level tuning for the default transport and the agents
    built by a `Fetcher`. Good defaults are provided for most use cases.
    '''
    timeout: httpx.Timeout = dc.field(default_factory=_base_timeouts)
    limits: httpx.Limits = dc.field(default_factory=_base_limits)
    http2: bool = True
    trust_env: bool = False
    connect_retries: int = 0


class AgentTransport(httpx.AsyncBaseTransport):
    '''
    The agent a request is dispatched through: an httpx transport
    carrying an optional proxy and an optional client certificate.
    '''
    def __init__(
        self,
        *,
        proxy: str | None = None,
        cert: str | None = None,
        key: str | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        config = config or ClientConfig()
        self.proxy: str | None = proxy
        self.cert: str | None = cert
        self.key: str | None = key
        self._inner: httpx.AsyncHTTPTransport = httpx.AsyncHTTPTransport(
            http2=config.http2,
            socket_options=default_socket_options(),
            verify=client_ssl_context(cert, key),
            trust_env=config.trust_env,
            limits=config.limits,
            proxy=httpx.Proxy(proxy) if proxy else None,
            retries=config.connect_retries,
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        return await self._inner.handle_async_request(request)

    async def aclose(self) -> None:
        await self._inner.aclose()

    def __repr__(self) -> str:
        return f'AgentTransport(proxy={self.proxy!r}, cert={self.cert!r})'


@dc.dataclass(slots=True)
class TransportRequest:
    '''
    What a fetch implementation receives besides the URL. Library-only
    fields (`data`, retry state, interceptors, ...) never reach it.
    '''
    method: str
    headers: Headers
    body: Any = None
    signal: AbortSignal | None = None
    agent: httpx.AsyncBaseTransport | None = None
    duplex: str | None = None
    max_redirects: int = 20


class TransportResponse(Protocol):
    '''
    What a fetch implementation returns. The body readers are mutually
    exclusive and single-use.
    '''
    status: int
    status_text: str
    url: str
    headers: Headers

    async def text(self) -> str: ...

    async def json(self) -> Any: ...

    async def bytes(self) -> bytes: ...

    def stream(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


FetchImplementation = Callable[[str, TransportRequest], Awaitable[TransportResponse]]


class BodyUsedError(TypeError):
    '''
    Raised when a response body is read a second time.

    Parent: TypeError
    '''


class HttpxResponse:
    '''
    `TransportResponse` over a streamed `httpx.Response`.
    '''
    __slots__ = ('_response', '_signal', 'status', 'status_text', 'url', 'headers', 'body_used')

    def __init__(self, response: httpx.Response, signal: AbortSignal | None = None) -> None:
        self._response = response
        self._signal = signal
        self.status: int = response.status_code
        self.status_text: str = response.reason_phrase
        self.url: str = str(response.url)
        self.headers = Headers(response.headers)
        self.body_used = False

    def _consume(self) -> None:
        if self.body_used:
            raise BodyUsedError('Response body has already been read')
        self.body_used = True

    async def bytes(self) -> bytes:
        self._consume()
        try:
            return await until_aborted(self._response.aread(), self._signal)
        finally:
            await self._response.aclose()

    async def text(self) -> str:
        await self.bytes()
        return self._response.text

    async def json(self) -> Any:
        return json.loads(await self.text())

    def stream(self) -> AsyncIterator[bytes]:
        self._consume()
        return self._iter_stream()

    async def _iter_stream(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


class HttpxFetch:
    '''
    The default fetch implementation, driving one `httpx.AsyncClient`
    per agent. Requests without an agent go through a lazily built
    default `AgentTransport`.
    '''
    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config: ClientConfig = config or ClientConfig()
        self._default_agent: AgentTransport | None = None
        self._clients: dict[tuple[httpx.AsyncBaseTransport, int], httpx.AsyncClient] = {}

    def _client_for(self, agent: httpx.AsyncBaseTransport | None, max_redirects: int) -> httpx.AsyncClient:
        if agent is None:
            if self._default_agent is None:
                self._default_agent = AgentTransport(config=self._config)
            agent = self._default_agent

        key = (agent, max_redirects)
        client = self._clients.get(key)
        if client is None:
            client = httpx.AsyncClient(
                transport=agent,
                timeout=self._config.timeout,
                follow_redirects=max_redirects > 0,
                max_redirects=max_redirects,
                trust_env=False,
            )
            self._clients[key] = client
        return client

    async def __call__(self, url: str, request: TransportRequest) -> HttpxResponse:
        client = self._client_for(request.agent, request.max_redirects)
        outgoing = client.build_request(
            request.method,
            url,
            headers=request.headers,
            content=request.body,
        )
        logger.debug(f'Sending request: {request.method} {url}')
        response = await until_aborted(client.send(outgoing, stream=True), request.signal)
        return HttpxResponse(response, request.signal)

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.aclose()
        if self._default_agent is not None:
            await self._default_agent.aclose()
            self._default_agent = None
