'''
**fetchkit._http**
---------

The transport side of fetchkit: the default httpx based fetch
implementation, the agents (proxy and mutual TLS transports) requests are
dispatched through, and proxy selection.
'''
from fetchkit._http._proxy import (
    AgentCache,
    no_proxy_from_env,
    proxy_from_env,
    should_use_proxy_for_url,
)
from fetchkit._http._transport import (
    AgentTransport,
    BodyUsedError,
    ClientConfig,
    FetchImplementation,
    HttpxFetch,
    HttpxResponse,
    TransportRequest,
    TransportResponse,
    client_ssl_context,
)

__all__ = [
    'AgentCache',
    'AgentTransport',
    'BodyUsedError',
    'ClientConfig',
    'FetchImplementation',
    'HttpxFetch',
    'HttpxResponse',
    'TransportRequest',
    'TransportResponse',
    'client_ssl_context',
    'no_proxy_from_env',
    'proxy_from_env',
    'should_use_proxy_for_url',
]
