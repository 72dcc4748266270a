'''
Proxy selection: environment lookup, `no_proxy` rule matching and the
per-`Fetcher` agent cache.
'''
import logging
import os
import re
from collections.abc import Iterable, Mapping

import httpx

from fetchkit._http._transport import AgentTransport, ClientConfig

logger = logging.getLogger(__name__)

PROXY_ENV_VARS = ('HTTPS_PROXY', 'https_proxy', 'HTTP_PROXY', 'http_proxy')
NO_PROXY_ENV_VARS = ('NO_PROXY', 'no_proxy')

NoProxyRule = str | httpx.URL | re.Pattern[str]


def proxy_from_env(environ: Mapping[str, str] | None = None) -> str | None:
    environ = os.environ if environ is None else environ
    for name in PROXY_ENV_VARS:
        if value := environ.get(name):
            return value
    return None


def no_proxy_from_env(environ: Mapping[str, str] | None = None) -> list[str]:
    '''
    The comma separated `NO_PROXY` (or `no_proxy`) rules.
    '''
    environ = os.environ if environ is None else environ
    for name in NO_PROXY_ENV_VARS:
        if (value := environ.get(name)) is not None:
            return [rule.strip() for rule in value.split(',') if rule.strip()]
    return []


def url_origin(url: httpx.URL) -> str:
    port = f':{url.port}' if url.port is not None else ''
    return f'{url.scheme}://{url.host}{port}'


def _matches_rule(candidate: httpx.URL, rule: NoProxyRule) -> bool:
    if isinstance(rule, re.Pattern):
        return rule.search(str(candidate)) is not None

    if isinstance(rule, httpx.URL):
        return url_origin(rule) == url_origin(candidate)

    if rule.startswith('*.') or rule.startswith('.'):
        suffix = rule.removeprefix('*')
        return candidate.host.endswith(suffix)

    return rule in (url_origin(candidate), candidate.host, str(candidate))


def should_use_proxy_for_url(url: str | httpx.URL, no_proxy: Iterable[NoProxyRule]) -> bool:
    '''
    Decide whether a request to `url` goes through the proxy.

    - a compiled regular expression is searched in the full URL
    - an `httpx.URL` is compared by origin
    - a string starting with `*.` or `.` matches a hostname suffix
    - any other string must equal the origin, the hostname or the URL

    Parameters
    ----------
    url : str | httpx.URL
    no_proxy : Iterable[NoProxyRule]

    Returns
    -------
    bool
        False as soon as one rule matches.
    '''
    candidate = httpx.URL(str(url))
    return not any(_matches_rule(candidate, rule) for rule in no_proxy)


class AgentCache:
    '''
    Memoized agents owned by one `Fetcher`: proxy agents keyed by the
    proxy URL, client certificate agents keyed by their key material.
    A racing duplicate construction is harmless; the last one is kept.
    '''
    __slots__ = ('_config', '_agents')

    def __init__(self, config: ClientConfig | None = None) -> None:
        self._config: ClientConfig = config or ClientConfig()
        self._agents: dict[tuple[str | None, str | None, str | None], AgentTransport] = {}

    def proxy_agent(
        self,
        proxy: str,
        cert: str | None = None,
        key: str | None = None
    ) -> AgentTransport:
        return self._get_or_create((proxy, cert, key))

    def tls_agent(self, cert: str, key: str) -> AgentTransport:
        return self._get_or_create((None, cert, key))

    def _get_or_create(self, cache_key: tuple[str | None, str | None, str | None]) -> AgentTransport:
        if agent := self._agents.get(cache_key):
            return agent
        proxy, cert, key = cache_key
        logger.debug(f'Creating agent (proxy={proxy}, mtls={cert is not None})')
        agent = AgentTransport(proxy=proxy, cert=cert, key=key, config=self._config)
        self._agents[cache_key] = agent
        return agent

    def __len__(self) -> int:
        return len(self._agents)

    def __contains__(self, cache_key: object) -> bool:
        return cache_key in self._agents

    async def aclose(self) -> None:
        agents, self._agents = self._agents, {}
        for agent in agents.values():
            await agent.aclose()
