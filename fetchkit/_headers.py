'''
Request and response headers: `httpx.Headers` with the repeatable
header rule applied on `set`.
'''
from collections.abc import Iterable, Mapping
from typing import Union

import httpx

REPEATABLE_HEADERS = frozenset({'set-cookie'})

HeaderTypes = Union[httpx.Headers, Mapping[str, str], Iterable[tuple[str, str]], None]


class Headers(httpx.Headers):
    '''
    Case-insensitive, ordered header multi-map.

    Setting a header replaces every previous value for that name,
    except for the repeatable headers (`Set-Cookie`) whose values
    accumulate. `append` always accumulates.

    Parameters
    ----------
    headers : HeaderTypes, optional
        A mapping, an iterable of `(name, value)` pairs (duplicates are
        kept) or another `httpx.Headers` instance (copied).
    '''

    def __init__(self, headers: HeaderTypes = None) -> None:
        if isinstance(headers, Mapping) and not isinstance(headers, httpx.Headers):
            headers = {name: str(value) for name, value in headers.items()}
        super().__init__(headers)

    def set(self, name: str, value: str) -> None:
        self[name] = value

    def append(self, name: str, value: str) -> None:
        key = name.lower().encode(self.encoding)
        pairs: list[tuple[str | bytes, str | bytes]] = [
            (raw_name, raw_value) for raw_name, raw_value in self.raw if raw_name.lower() == key
        ]
        pairs.append((name, str(value)))
        # update() replaces the name with every value given
        self.update(pairs)

    def delete(self, name: str) -> None:
        self.pop(name, None)

    def names(self) -> list[str]:
        '''
        The distinct header names, in the casing they were first given.
        '''
        seen: dict[bytes, str] = {}
        for raw_name, _ in self.raw:
            seen.setdefault(raw_name.lower(), raw_name.decode(self.encoding))
        return list(seen.values())

    def merge(self, other: HeaderTypes) -> 'Headers':
        '''
        Return a new collection where every name present in `other`
        replaces the values held here.
        '''
        merged = self.copy()
        merged.update(Headers(other))
        return merged

    def copy(self) -> 'Headers':
        return Headers(self)

    def __setitem__(self, name: str, value: str) -> None:
        if name.lower() in REPEATABLE_HEADERS:
            self.append(name, value)
        else:
            super().__setitem__(name, str(value))
