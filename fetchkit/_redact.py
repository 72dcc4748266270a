'''
Redaction of credential-shaped values from the snapshots carried by
errors.
'''
import re
from collections.abc import Mapping, MutableMapping, Sequence
from typing import Any

import httpx

from fetchkit._body import FormBody, JsonBody, TextBody
from fetchkit._headers import Headers
from fetchkit._models import RequestConfig, Response

REDACTED = '<<REDACTED> - See `error_redactor` option in `fetchkit` for configuration>.'

_SENSITIVE_HEADER = re.compile(r'^(authentication|authorization)$|secret', re.IGNORECASE)
_SENSITIVE_TEXT = re.compile(r'grant_type=|assertion=|secret', re.IGNORECASE)
SENSITIVE_FIELDS = frozenset({'grant_type', 'assertion', 'client_secret'})
SENSITIVE_PARAMS = ('token', 'client_secret')


def is_sensitive_header(header_name: str) -> bool:
    return bool(_SENSITIVE_HEADER.search(header_name))


def redact_headers(headers: Headers | None) -> None:
    '''
    Replace, in place, the values of `Authorization`, `Authentication`
    (any casing) and of any header whose name contains "secret".
    '''
    if headers is None:
        return
    for name in headers.names():
        if is_sensitive_header(name):
            headers.delete(name)
            headers.append(name, REDACTED)


def _redact_fields(fields: Any) -> None:
    if isinstance(fields, MutableMapping):
        for key in SENSITIVE_FIELDS & set(fields):
            fields[key] = REDACTED


def _redact_form(fields: Mapping[str, Any] | Sequence[tuple[str, Any]]) -> FormBody:
    if isinstance(fields, Mapping):
        _redact_fields(fields)
        return FormBody(fields)
    return FormBody([
        (key, REDACTED if key in SENSITIVE_FIELDS else value)
        for key, value in fields
    ])


def redact_value(value: Any) -> Any:
    '''
    Redact a body or response payload, returning the value to keep.
    Mappings are redacted in place.
    '''
    if isinstance(value, str):
        return REDACTED if _SENSITIVE_TEXT.search(value) else value
    if isinstance(value, TextBody):
        return TextBody(redact_value(value.text))
    if isinstance(value, JsonBody):
        _redact_fields(value.value)
    elif isinstance(value, FormBody):
        return _redact_form(value.fields)
    else:
        _redact_fields(value)
    return value


def redact_url(url: str) -> str:
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL:
        return url
    for param in SENSITIVE_PARAMS:
        if param in parsed.params:
            parsed = parsed.copy_set_param(param, REDACTED)
    return str(parsed)


def redact_params(params: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    if not params:
        return params
    return {
        key: REDACTED if key in SENSITIVE_PARAMS else value
        for key, value in params.items()
    }


def _redact_config(config: RequestConfig) -> None:
    redact_headers(config.headers)
    config.data = redact_value(config.data)
    config.body = redact_value(config.body)
    config.url = redact_url(config.url)
    config.params = redact_params(config.params)


def default_error_redactor(
    config: RequestConfig,
    response: Response | None = None,
) -> tuple[RequestConfig, Response | None]:
    '''
    Scrub credentials from an error's config and response snapshots.

    This does not replace a data loss prevention provider; it covers:

    - `Authorization` / `Authentication` headers and headers containing
      "secret"
    - string bodies containing `grant_type=`, `assertion=` or "secret"
    - `grant_type`, `assertion` and `client_secret` keys of mapping bodies
    - `token` and `client_secret` query parameters

    Parameters
    ----------
    config : RequestConfig
    response : Response | None, optional

    Returns
    -------
    tuple[RequestConfig, Response | None]
    '''
    _redact_config(config)

    if response is not None:
        _redact_config(response.config)
        redact_headers(response.headers)
        response.data = redact_value(response.data)

    return config, response
