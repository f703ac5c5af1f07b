from cmslookup.api_keys import hash_api_key, key_matches


def test_no_configured_key_leaves_gate_open():
    assert key_matches(None, '')
    assert key_matches('anything', None)
    assert key_matches('anything', '')


def test_configured_key_must_match():
    assert key_matches('secret123', 'secret123')
    assert not key_matches('secret12', 'secret123')
    assert not key_matches('', 'secret123')
    assert not key_matches(None, 'secret123')


def test_hash_api_key_is_stable_sha256():
    h = hash_api_key('secret123')
    assert len(h) == 64
    assert h == hash_api_key('secret123')
    assert h != hash_api_key('secret124')
