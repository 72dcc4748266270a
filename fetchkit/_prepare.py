'''
Request preparation: merge the call options over the instance
defaults and resolve them into a dispatch-ready `RequestConfig`.
'''
import dataclasses as dc
import json
import logging
import uuid
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote

import httpx

from fetchkit._abort import AbortSignal
from fetchkit._body import (
    Body,
    BytesBody,
    FormBody,
    JsonBody,
    StreamBody,
    TextBody,
    build_multipart,
    coerce_body,
)
from fetchkit._errors import ValidationError
from fetchkit._headers import Headers
from fetchkit._http._proxy import (
    AgentCache,
    no_proxy_from_env,
    proxy_from_env,
    should_use_proxy_for_url,
)
from fetchkit._models import (
    METHODS,
    RESPONSE_TYPES,
    RequestConfig,
    RequestOptions,
    RetryConfig,
    default_validate_status,
)
from fetchkit._redact import default_error_redactor

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = 'application/x-www-form-urlencoded'
JSON_CONTENT_TYPE = 'application/json'
_QUERY_SAFE = "!$&'()*+,;=:@/?%~"


def _as_retry_config(value: RetryConfig | Mapping[str, Any]) -> RetryConfig:
    if isinstance(value, RetryConfig):
        return value.copy()
    return RetryConfig().merge(value)


def _merge_retry_config(base, override) -> RetryConfig | None:
    if base is None and override is None:
        return None
    merged = _as_retry_config(base) if base is not None else RetryConfig()
    if override is not None:
        merged = merged.merge(override)
    return merged


def merge_options(
    defaults: RequestOptions | None,
    overrides: RequestOptions | None
) -> RequestOptions:
    '''
    Deep-merge `overrides` over `defaults`. Set fields win; headers,
    params and retry options are merged key by key. The result owns
    its headers, params and retry config.

    Parameters
    ----------
    defaults : RequestOptions | None
    overrides : RequestOptions | None

    Returns
    -------
    RequestOptions
    '''
    defaults = defaults or RequestOptions()
    overrides = overrides or RequestOptions()

    merged = {}
    for field in dc.fields(RequestOptions):
        base = getattr(defaults, field.name)
        override = getattr(overrides, field.name)
        merged[field.name] = override if override is not None else base

    merged['headers'] = Headers(defaults.headers).merge(overrides.headers)
    if defaults.params is not None or overrides.params is not None:
        merged['params'] = {**(defaults.params or {}), **(overrides.params or {})}
    merged['retry_config'] = _merge_retry_config(defaults.retry_config, overrides.retry_config)
    return RequestOptions(**merged)


def _resolve_url(url: str | httpx.URL, base_url: str | httpx.URL | None) -> httpx.URL:
    try:
        if base_url:
            base = str(base_url)
            if not base.endswith('/'):
                base += '/'
            target = httpx.URL(base).join(str(url).lstrip('/'))
        else:
            target = httpx.URL(str(url))
    except httpx.InvalidURL as exc:
        raise ValidationError(f'Invalid URL: {url}') from exc

    if not target.is_absolute_url:
        raise ValidationError(f'URL must be absolute: {target}')
    return target


def _apply_params(url: httpx.URL, options: RequestOptions) -> str:
    if not options.params:
        return str(url)

    if options.params_serializer is not None:
        query = options.params_serializer(options.params).lstrip('?')
    else:
        query = str(httpx.QueryParams(options.params))

    if not query:
        return str(url)
    combined = '&'.join(part for part in (url.query.decode('ascii'), query) if part)
    return str(url.copy_with(query=quote(combined, safe=_QUERY_SAFE).encode('ascii')))


def _url_encode(fields: Any) -> str:
    try:
        return str(httpx.QueryParams(fields))
    except TypeError as exc:
        raise ValidationError(f'Cannot form-encode a {type(fields).__name__} body') from exc


def encode_body(data: Body, headers: Headers) -> Any:
    '''
    Serialize a body variant into what the transport sends, setting a
    content type only when none is present.
    '''
    if isinstance(data, TextBody):
        return data.text
    if isinstance(data, BytesBody):
        return data.content
    if isinstance(data, StreamBody):
        return data.stream
    if isinstance(data, FormBody):
        if 'Content-Type' not in headers:
            headers.set('Content-Type', FORM_CONTENT_TYPE)
        return _url_encode(data.fields)

    content_type = headers.get('Content-Type', '')
    if content_type.lower().startswith(FORM_CONTENT_TYPE):
        return _url_encode(data.value)

    try:
        body = json.dumps(data.value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f'Request data is not JSON serializable: {exc}') from exc
    if not content_type:
        headers.set('Content-Type', JSON_CONTENT_TYPE)
    return body


def _select_agent(
    options: RequestOptions,
    url: str,
    proxy: str | None,
    no_proxy: list,
    agents: AgentCache
):
    if options.agent is not None:
        return options.agent

    if proxy and should_use_proxy_for_url(url, no_proxy):
        logger.debug(f'Using proxy {proxy} for {url}')
        return agents.proxy_agent(proxy, options.cert, options.key)

    if options.cert and options.key:
        return agents.tls_agent(options.cert, options.key)

    return None


def prepare_request(
    defaults: RequestOptions | None,
    options: RequestOptions | None,
    *,
    agents: AgentCache,
    environ: Mapping[str, str] | None = None,
) -> RequestConfig:
    '''
    Merge and validate the options into a dispatch-ready config.

    Parameters
    ----------
    defaults : RequestOptions | None
        The instance defaults.
    options : RequestOptions | None
        The call site options; they win over `defaults`.
    agents : AgentCache
        The agent cache of the calling instance.
    environ : Mapping[str, str] | None, optional
        The environment proxy settings are read from, by default
        `os.environ`.

    Returns
    -------
    RequestConfig

    Raises
    ------
    ValidationError
        If no URL results from the merge or an option is invalid.
    '''
    opts = merge_options(defaults, options)
    if not opts.url:
        raise ValidationError('URL is required.')

    method = (opts.method or 'GET').upper()
    if method not in METHODS:
        raise ValidationError(f'Unsupported HTTP method: {opts.method}')

    response_type = opts.response_type or 'unknown'
    if response_type not in RESPONSE_TYPES:
        raise ValidationError(f'Invalid responseType: {response_type}')

    url = _apply_params(_resolve_url(opts.url, opts.base_url), opts)
    headers: Headers = opts.headers  # type: ignore[assignment]

    data = coerce_body(opts.data)
    body = None
    if opts.multipart:
        boundary = str(uuid.uuid4())
        headers.set('Content-Type', f'multipart/related; boundary={boundary}')
        body = build_multipart(list(opts.multipart), boundary)
    elif data is not None:
        body = encode_body(data, headers)

    if response_type == 'json' and 'Accept' not in headers:
        headers.set('Accept', JSON_CONTENT_TYPE)

    proxy = str(opts.proxy) if opts.proxy else proxy_from_env(environ)
    no_proxy = [*(opts.no_proxy or ()), *no_proxy_from_env(environ)]

    retry_config = opts.retry_config
    if opts.retry is False:
        retry_config = None
    elif retry_config is None and opts.retry:
        retry_config = RetryConfig()

    error_redactor = opts.error_redactor
    if error_redactor is None:
        error_redactor = default_error_redactor

    return RequestConfig(
        url=url,
        method=method,
        headers=headers,
        data=data,
        body=body,
        multipart=opts.multipart,
        params=opts.params,
        timeout=opts.timeout,
        max_redirects=opts.max_redirects if opts.max_redirects is not None else 20,
        max_content_length=opts.max_content_length,
        validate_status=opts.validate_status or default_validate_status,
        response_type=response_type,
        proxy=proxy,
        no_proxy=no_proxy,
        agent=_select_agent(opts, url, proxy, no_proxy, agents),
        cert=opts.cert,
        key=opts.key,
        signal=opts.signal,
        retry_config=retry_config,  # type: ignore[arg-type]
        error_redactor=error_redactor,
        fetch_implementation=opts.fetch_implementation,
        adapter=opts.adapter,
        duplex='half' if body is not None else None,
    )


def attempt_signal(config: RequestConfig) -> AbortSignal | None:
    '''
    The signal for one attempt: a fresh timer for `timeout`, combined
    with the caller's signal when both are present. Must be called with
    a running loop.
    '''
    if config.timeout is None or config.timeout <= 0:
        return config.signal
    signal = AbortSignal.timeout(config.timeout)
    if config.signal is not None:
        signal.follow(config.signal)
    return signal
