'''
Request body variants.

`data` on the request options is one of a closed set of body kinds.
Plain Python values are mapped onto a variant once, at the API
boundary, by `coerce_body`; everything past that point dispatches on
the variant instead of inspecting arbitrary runtime types.
'''
import copy
import dataclasses as dc
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Mapping, Sequence
from typing import Any, Union

import httpx

ByteStream = Union[AsyncIterable[bytes], Iterable[bytes]]


@dc.dataclass(slots=True, frozen=True)
class JsonBody:
    '''
    A structured value; serialized as JSON, or as url-encoded pairs when
    the request declares `application/x-www-form-urlencoded`.
    '''
    value: Any


@dc.dataclass(slots=True, frozen=True)
class FormBody:
    '''
    Pairs always sent as `application/x-www-form-urlencoded`.
    '''
    fields: Mapping[str, Any] | Sequence[tuple[str, Any]]


@dc.dataclass(slots=True, frozen=True)
class TextBody:
    text: str


@dc.dataclass(slots=True, frozen=True)
class BytesBody:
    content: bytes


@dc.dataclass(slots=True, frozen=True)
class StreamBody:
    '''
    A byte stream; consumed once by the transport.
    '''
    stream: ByteStream


Body = Union[JsonBody, FormBody, TextBody, BytesBody, StreamBody]
BODY_TYPES = (JsonBody, FormBody, TextBody, BytesBody, StreamBody)


def coerce_body(data: Any) -> Body | None:
    '''
    Map a caller supplied `data` value onto a body variant.

    - `None` -> no body
    - a body variant -> unchanged
    - `str` -> `TextBody`
    - `bytes`, `bytearray`, `memoryview` -> `BytesBody`
    - `httpx.QueryParams` -> `FormBody`
    - async iterables and iterators -> `StreamBody`
    - anything else (mappings, lists, numbers, ...) -> `JsonBody`

    Parameters
    ----------
    data : Any

    Returns
    -------
    Body | None
    '''
    if data is None or isinstance(data, BODY_TYPES):
        return data
    if isinstance(data, str):
        return TextBody(data)
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BytesBody(bytes(data))
    if isinstance(data, httpx.QueryParams):
        return FormBody(data.multi_items())
    if hasattr(data, '__aiter__') or hasattr(data, '__next__'):
        return StreamBody(data)
    return JsonBody(data)


def snapshot_body(body: Body | None) -> Body | None:
    '''
    An independent copy of a body for error reporting. Streams cannot
    be copied and are returned as-is.
    '''
    if isinstance(body, JsonBody):
        return JsonBody(copy.deepcopy(body.value))
    if isinstance(body, FormBody):
        return FormBody(copy.deepcopy(body.fields))
    return body


@dc.dataclass(slots=True)
class MultipartPart:
    '''
    One part of a `multipart/related` request.

    Attributes
    ----------
    - content: text, bytes or a byte stream
    - content_type: defaults to `application/octet-stream`
    '''
    content: str | bytes | ByteStream
    content_type: str | None = None


async def _iter_content(content: str | bytes | ByteStream) -> AsyncIterator[bytes]:
    if isinstance(content, str):
        yield content.encode('utf-8')
    elif isinstance(content, (bytes, bytearray)):
        yield bytes(content)
    elif hasattr(content, '__aiter__'):
        async for chunk in content:  # type: ignore[union-attr]
            yield chunk.encode('utf-8') if isinstance(chunk, str) else chunk
    else:
        for chunk in content:  # type: ignore[union-attr]
            yield chunk.encode('utf-8') if isinstance(chunk, str) else chunk


async def build_multipart(
    parts: Sequence[MultipartPart],
    boundary: str
) -> AsyncIterator[bytes]:
    '''
    Lazily emit a `multipart/related` body (RFC 2387). Nested multipart
    content is not interpreted; it is forwarded as opaque bytes.

    Parameters
    ----------
    parts : Sequence[MultipartPart]
    boundary : str
        Must be unique per request; parts are not scanned for it.

    Yields
    ------
    bytes
    '''
    for part in parts:
        content_type = part.content_type or 'application/octet-stream'
        yield f'--{boundary}\r\nContent-Type: {content_type}\r\n\r\n'.encode('utf-8')
        async for chunk in _iter_content(part.content):
            yield chunk
        yield b'\r\n'
    yield f'--{boundary}--'.encode('utf-8')
