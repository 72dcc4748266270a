import asyncio

import pytest

import fetchkit
from fetchkit import (
    AbortController,
    CancellationError,
    ContentLengthExceededError,
    FetchError,
    Fetcher,
    HttpStatusError,
    RequestOptions,
    RequestTimeoutError,
    Response,
    ResponseDecodeError,
    TransportError,
    ValidationError,
)

from conftest import FakeFetch, FakeResponse, json_response


async def test_validation_error_happens_before_any_dispatch(fetcher):
    fake = FakeFetch(FakeResponse())

    with pytest.raises(ValidationError):
        await fetcher.request(fetch_implementation=fake)

    assert fake.call_count == 0


async def test_json_round_trip(fetcher):
    def echo(url, request):
        return FakeResponse(body=request.body, headers={'content-type': 'application/json; charset=utf-8'})

    fake = FakeFetch(handler=echo)

    response = await fetcher.request(
        url='https://example.com/echo',
        method='POST',
        data={'name': 'fetchkit', 'tags': ['a', 'b']},
        fetch_implementation=fake,
    )

    assert response.data == {'name': 'fetchkit', 'tags': ['a', 'b']}
    assert response.status == 200
    assert response.ok
    url, request = fake.calls[0]
    assert url == 'https://example.com/echo'
    assert request.method == 'POST'
    assert request.headers['Content-Type'] == 'application/json'
    assert request.duplex == 'half'


async def test_transport_receives_its_own_copy_of_headers(fetcher):
    fake = FakeFetch(FakeResponse())

    response = await fetcher.request(
        url='https://example.com/', headers={'X-A': '1'}, fetch_implementation=fake,
    )
    fake.calls[0][1].headers['X-A'] = 'changed'

    assert response.config.headers['X-A'] == '1'


async def test_instance_defaults_apply_to_every_request():
    fake = FakeFetch(FakeResponse())
    fetcher = Fetcher(
        RequestOptions(
            base_url='https://api.example.com/v2',
            headers={'X-Client': 'fetchkit'},
            fetch_implementation=fake,
        ),
    )

    await fetcher.request(url='users', headers={'x-trace': 'abc'})

    url, request = fake.calls[0]
    assert url == 'https://api.example.com/v2/users'
    assert request.headers['X-Client'] == 'fetchkit'
    assert request.headers['X-Trace'] == 'abc'


async def test_module_level_request_uses_shared_instance():
    fake = FakeFetch(json_response({'ok': True}))

    response = await fetchkit.request(url='https://example.com/', fetch_implementation=fake)

    assert response.data == {'ok': True}
    assert fake.call_count == 1


@pytest.mark.parametrize(
    ('content_type', 'body', 'expected'),
    [
        ('application/json', '{"a": 1}', {'a': 1}),
        ('application/json', 'not json', 'not json'),
        ('text/html; charset=utf-8', '<p>hi</p>', '<p>hi</p>'),
        ('image/png', b'\x89PNG', b'\x89PNG'),
        (None, b'raw', b'raw'),
    ],
)
async def test_unknown_response_type_sniffs_content_type(fetcher, content_type, body, expected):
    headers = {'Content-Type': content_type} if content_type else {}
    fake = FakeFetch(FakeResponse(body=body, headers=headers))

    response = await fetcher.request(url='https://example.com/', fetch_implementation=fake)

    assert response.data == expected


@pytest.mark.parametrize(
    ('response_type', 'expected'),
    [
        ('text', '{"a": 1}'),
        ('arraybuffer', b'{"a": 1}'),
        ('blob', b'{"a": 1}'),
        ('json', {'a': 1}),
    ],
)
async def test_explicit_response_types(fetcher, response_type, expected):
    fake = FakeFetch(FakeResponse(body='{"a": 1}', headers={'Content-Type': 'text/plain'}))

    response = await fetcher.request(
        url='https://example.com/', response_type=response_type, fetch_implementation=fake,
    )

    assert response.data == expected


async def test_json_response_type_with_empty_body_returns_empty_string(fetcher):
    fake = FakeFetch(FakeResponse(status=204, body=b''))

    response = await fetcher.request(
        url='https://example.com/', response_type='json', fetch_implementation=fake,
    )

    assert response.data == ''


async def test_json_response_type_with_invalid_body_raises_decode_error(fetcher):
    fake = FakeFetch(FakeResponse(body='<html>'))

    with pytest.raises(ResponseDecodeError) as excinfo:
        await fetcher.request(url='https://example.com/', response_type='json', fetch_implementation=fake)

    assert excinfo.value.response.data == '<html>'


async def test_invalid_json_on_rejected_status_keeps_text(fetcher):
    fake = FakeFetch(FakeResponse(status=502, body='Bad Gateway'))

    with pytest.raises(HttpStatusError) as excinfo:
        await fetcher.request(url='https://example.com/', response_type='json', fetch_implementation=fake)

    assert excinfo.value.status == 502
    assert excinfo.value.code == '502'
    assert excinfo.value.response.data == 'Bad Gateway'


async def test_stream_response_is_not_buffered(fetcher):
    fake_response = FakeResponse(body=b'0123456789')
    fake = FakeFetch(fake_response)

    response = await fetcher.request(
        url='https://example.com/', response_type='stream', fetch_implementation=fake,
    )
    chunks = [chunk async for chunk in response.data]

    assert chunks == [b'0123', b'4567', b'89']
    assert fake_response.reads == 1


async def test_rejected_stream_response_is_drained_into_text(fetcher):
    fake = FakeFetch(FakeResponse(status=404, body=b'no such thing'))

    with pytest.raises(HttpStatusError) as excinfo:
        await fetcher.request(url='https://example.com/', response_type='stream', fetch_implementation=fake)

    assert excinfo.value.response.data == 'no such thing'


async def test_custom_validate_status(fetcher):
    fake = FakeFetch(FakeResponse(status=404, body='missing', headers={'content-type': 'text/plain'}))

    response = await fetcher.request(
        url='https://example.com/',
        validate_status=lambda status: status < 500,
        fetch_implementation=fake,
    )

    assert response.status == 404
    assert response.data == 'missing'


async def test_declared_content_length_over_limit_is_rejected_unread(fetcher):
    fake_response = FakeResponse(body=b'x' * 100, headers={'Content-Length': '100'})
    fake = FakeFetch(fake_response)

    with pytest.raises(ContentLengthExceededError):
        await fetcher.request(
            url='https://example.com/', max_content_length=10, fetch_implementation=fake,
        )

    assert fake_response.reads == 0
    assert fake_response.closed


async def test_content_length_within_limit_is_read(fetcher):
    fake = FakeFetch(FakeResponse(body=b'abc', headers={'Content-Length': '3'}))

    response = await fetcher.request(
        url='https://example.com/', max_content_length=3, fetch_implementation=fake,
    )

    assert response.data == b'abc'


async def test_transport_failure_is_wrapped(fetcher):
    fake = FakeFetch(ConnectionRefusedError('connection refused'))

    with pytest.raises(TransportError) as excinfo:
        await fetcher.request(url='https://example.com/', fetch_implementation=fake)

    err = excinfo.value
    assert err.response is None
    assert err.status is None
    assert isinstance(err.cause, ConnectionRefusedError)
    assert err.__cause__ is err.cause


async def test_transport_error_code_is_kept(fetcher):
    failure = OSError('reset')
    failure.code = 'ECONNRESET'  # type: ignore[attr-defined]
    fake = FakeFetch(failure)

    with pytest.raises(TransportError) as excinfo:
        await fetcher.request(url='https://example.com/', fetch_implementation=fake)

    assert excinfo.value.code == 'ECONNRESET'


async def test_timeout_fails_the_attempt(fetcher):
    fake = FakeFetch(handler=lambda url, request: asyncio.sleep(10))

    with pytest.raises(RequestTimeoutError) as excinfo:
        await fetcher.request(url='https://example.com/', timeout=10, fetch_implementation=fake)

    assert excinfo.value.code == 'TimeoutError'


async def test_caller_abort_raises_cancellation(fetcher):
    controller = AbortController()
    fake = FakeFetch(handler=lambda url, request: asyncio.sleep(10))
    asyncio.get_running_loop().call_later(0.01, controller.abort)

    with pytest.raises(CancellationError) as excinfo:
        await fetcher.request(
            url='https://example.com/', signal=controller.signal, fetch_implementation=fake,
        )

    assert excinfo.value.code == 'AbortError'


async def test_adapter_can_short_circuit_the_transport(fetcher):
    fake = FakeFetch(FakeResponse())

    async def adapter(config, default_adapter):
        return Response(config=config, data='from adapter', status=200)

    response = await fetcher.request(
        url='https://example.com/', adapter=adapter, fetch_implementation=fake,
    )

    assert response.data == 'from adapter'
    assert fake.call_count == 0


async def test_adapter_can_wrap_the_default_adapter(fetcher):
    fake = FakeFetch(json_response({'a': 1}))

    async def adapter(config, default_adapter):
        response = await default_adapter(config)
        response.data['wrapped'] = True
        return response

    response = await fetcher.request(
        url='https://example.com/', adapter=adapter, fetch_implementation=fake,
    )

    assert response.data == {'a': 1, 'wrapped': True}


async def test_adapter_exceptions_are_wrapped(fetcher):
    async def adapter(config, default_adapter):
        raise RuntimeError('adapter broke')

    with pytest.raises(TransportError, match='adapter broke'):
        await fetcher.request(url='https://example.com/', adapter=adapter)


async def test_error_snapshot_is_independent_of_live_config(fetcher):
    fake = FakeFetch(FakeResponse(status=500))

    with pytest.raises(FetchError) as excinfo:
        await fetcher.request(
            url='https://example.com/',
            headers={'Authorization': 'Bearer secret-token'},
            fetch_implementation=fake,
        )

    err = excinfo.value
    assert err.config.headers['Authorization'] == fetchkit.REDACTED
    assert err.response.config.headers['Authorization'] == fetchkit.REDACTED
    assert fake.calls[0][1].headers['Authorization'] == 'Bearer secret-token'


async def test_fetcher_is_an_async_context_manager():
    fake = FakeFetch(FakeResponse())

    async with Fetcher() as fetcher:
        await fetcher.request(url='https://example.com/', fetch_implementation=fake)

    assert fake.call_count == 1


async def test_consumed_stream_releases_its_attempt_signal(fetcher):
    controller = AbortController()
    fake = FakeFetch(FakeResponse(body=b'0123456789'))

    response = await fetcher.request(
        url='https://example.com/', response_type='stream', timeout=20,
        signal=controller.signal, fetch_implementation=fake,
    )
    attempt_signal = fake.calls[0][1].signal
    assert [chunk async for chunk in response.data] == [b'0123', b'4567', b'89']

    controller.abort()
    await asyncio.sleep(0.05)

    assert not attempt_signal.aborted


async def test_rejected_stream_releases_its_attempt_signal(fetcher):
    controller = AbortController()
    fake = FakeFetch(FakeResponse(status=404, body=b'no such thing'))

    with pytest.raises(HttpStatusError):
        await fetcher.request(
            url='https://example.com/', response_type='stream', timeout=20,
            signal=controller.signal, fetch_implementation=fake,
        )
    attempt_signal = fake.calls[0][1].signal

    controller.abort()
    await asyncio.sleep(0.05)

    assert not attempt_signal.aborted


async def test_failed_attempt_releases_its_attempt_signal(fetcher):
    controller = AbortController()
    fake = FakeFetch(FakeResponse(status=500, body=b'boom'))

    with pytest.raises(HttpStatusError):
        await fetcher.request(
            url='https://example.com/', timeout=20, signal=controller.signal, fetch_implementation=fake,
        )
    attempt_signal = fake.calls[0][1].signal
    assert not controller.signal._callbacks

    controller.abort()
    await asyncio.sleep(0.05)

    assert not attempt_signal.aborted
