import json
from collections.abc import Callable
from typing import Any

import pytest

import fetchkit
from fetchkit import Headers, TransportRequest
from fetchkit import _retry
from fetchkit._abort import until_aborted


class FakeResponse:
    '''
    In-memory `TransportResponse` that counts body reads.
    '''

    def __init__(
        self,
        status: int = 200,
        body: Any = b'',
        headers: dict[str, str] | None = None,
        status_text: str = 'OK',
        url: str = 'https://example.com/',
    ) -> None:
        if isinstance(body, (dict, list)):
            body = json.dumps(body)
        if isinstance(body, str):
            body = body.encode('utf-8')
        self.status = status
        self.status_text = status_text
        self.url = url
        self.headers = Headers(headers or {})
        self._body: bytes = body or b''
        self.reads = 0
        self.closed = False

    async def bytes(self) -> bytes:
        self.reads += 1
        return self._body

    async def text(self) -> str:
        return (await self.bytes()).decode('utf-8')

    async def json(self) -> Any:
        return json.loads(await self.text())

    def stream(self):
        self.reads += 1
        return self._chunks()

    async def _chunks(self):
        for index in range(0, len(self._body), 4):
            yield self._body[index:index + 4]

    async def aclose(self) -> None:
        self.closed = True


class FakeFetch:
    '''
    A fetch implementation replaying queued outcomes (responses or
    exceptions), or delegating to a handler.
    '''

    def __init__(self, *outcomes: Any, handler: Callable | None = None) -> None:
        self.outcomes = list(outcomes)
        self.handler = handler
        self.calls: list[tuple[str, TransportRequest]] = []

    async def __call__(self, url: str, request: TransportRequest):
        self.calls.append((url, request))
        if self.handler is not None:
            outcome = self.handler(url, request)
        elif len(self.outcomes) > 1:
            outcome = self.outcomes.pop(0)
        else:
            outcome = self.outcomes[0]
        if hasattr(outcome, '__await__'):
            outcome = await until_aborted(outcome, request.signal)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def call_count(self) -> int:
        return len(self.calls)


def json_response(body: Any, status: int = 200, **kwargs) -> FakeResponse:
    headers = {'Content-Type': 'application/json', **kwargs.pop('headers', {})}
    return FakeResponse(status=status, body=body, headers=headers, **kwargs)


@pytest.fixture
def fetcher() -> fetchkit.Fetcher:
    return fetchkit.Fetcher()


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    '''
    Replace the backoff sleep, recording the requested delays (ms).
    '''
    delays: list[float] = []

    async def fake_sleep(delay_ms: float, signal) -> None:
        delays.append(delay_ms)

    monkeypatch.setattr(_retry, '_sleep', fake_sleep)
    return delays


@pytest.fixture(autouse=True)
def clean_proxy_env(monkeypatch) -> None:
    for name in ('HTTPS_PROXY', 'https_proxy', 'HTTP_PROXY', 'http_proxy', 'NO_PROXY', 'no_proxy'):
        monkeypatch.delenv(name, raising=False)
