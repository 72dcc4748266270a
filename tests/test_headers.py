import httpx

from fetchkit import Headers


def test_lookup_is_case_insensitive():
    headers = Headers({'Content-Type': 'application/json'})

    assert headers['content-type'] == 'application/json'
    assert headers.get('CONTENT-TYPE') == 'application/json'
    assert 'cOnTeNt-TyPe' in headers


def test_set_replaces_previous_values_of_any_casing():
    headers = Headers({'Accept': 'text/plain'})
    headers['ACCEPT'] = 'application/json'

    assert headers.get_list('accept') == ['application/json']
    assert len(headers) == 1


def test_set_cookie_values_accumulate():
    headers = Headers()
    headers.set('Set-Cookie', 'a=1')
    headers.set('set-cookie', 'b=2')

    assert headers.get_list('Set-Cookie') == ['a=1', 'b=2']
    assert headers['set-cookie'] == 'a=1, b=2'


def test_pairs_keep_duplicates_in_order():
    headers = Headers([('X-A', '1'), ('x-a', '2'), ('X-B', '3')])

    assert headers.multi_items() == [('x-a', '1'), ('x-a', '2'), ('x-b', '3')]
    assert list(headers) == ['x-a', 'x-b']
    assert headers.names() == ['X-A', 'X-B']


def test_merge_replaces_names_present_in_other():
    base = Headers({'Authorization': 'Bearer a', 'X-Keep': '1'})
    merged = base.merge({'authorization': 'Bearer b'})

    assert merged['Authorization'] == 'Bearer b'
    assert merged['X-Keep'] == '1'
    assert base['Authorization'] == 'Bearer a'


def test_copy_is_independent():
    original = Headers({'X-A': '1'})
    clone = original.copy()
    clone['X-A'] = '2'

    assert original['X-A'] == '1'


def test_delete_missing_header_raises_key_error():
    headers = Headers()

    try:
        del headers['X-Missing']
    except KeyError:
        pass
    else:
        raise AssertionError('expected KeyError')

    headers.delete('X-Missing')
    assert len(headers) == 0


def test_built_on_httpx_headers():
    response_headers = httpx.Headers([('Set-Cookie', 'a=1'), ('Set-Cookie', 'b=2'), ('ETag', '"x"')])

    headers = Headers(response_headers)

    assert isinstance(headers, httpx.Headers)
    assert headers.get_list('set-cookie') == ['a=1', 'b=2']
    assert headers.names() == ['Set-Cookie', 'ETag']


def test_append_keeps_the_given_casing():
    headers = Headers({'Accept': 'text/plain'})
    headers.append('X-Trace', 'a')
    headers.append('x-trace', 'b')

    assert headers.get_list('X-TRACE') == ['a', 'b']
    assert headers['accept'] == 'text/plain'
    assert headers.names() == ['Accept', 'X-Trace']


def test_mapping_values_are_stringified():
    headers = Headers({'Content-Length': 10})

    assert headers['content-length'] == '10'


def test_merge_keeps_repeated_values_of_other():
    merged = Headers({'Set-Cookie': 'old=1'}).merge([('Set-Cookie', 'a=1'), ('Set-Cookie', 'b=2')])

    assert merged.get_list('set-cookie') == ['a=1', 'b=2']
    assert isinstance(merged, Headers)
