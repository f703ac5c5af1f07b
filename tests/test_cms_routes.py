import subprocess

import pytest

from cmslookup.exceptions import ConfigurationError
from conftest import make_app


REPORT = b'{"cms_id": "wp", "cms_name": "WordPress", "url": "https://ma.rkus.io"}'


def test_lookup_returns_report_verbatim(client, fake_cmseek):
    fake_cmseek.report = REPORT
    r = client.get('/api/v1.0/cms/ma.rkus.io')
    assert r.status_code == 200
    assert r.mimetype == 'application/json'
    assert r.data == REPORT
    assert len(fake_cmseek.calls) == 1
    cmd, kwargs = fake_cmseek.calls[0]
    assert cmd[:5] == ['python', 'cmseek.py', '-u', 'https://ma.rkus.io', '--follow-redirect']
    assert 'https://www.domaner.xyz/domains/ma.rkus.io' in cmd[6]
    assert kwargs['timeout'] == 5.0


@pytest.mark.parametrize('path', [
    '/api/v1.0/cms/exa%20mple.com',
    '/api/v1.0/cms/example.com;id',
    '/api/v1.0/cms/$(id).example.com',
    '/api/v1.0/cms/ex%C3%A4mple.com',
    '/api/v1.0/cms/example..com',
    '/api/v1.0/cms/example.com.',
    '/api/v1.0/cms/-example.com',
    '/api/v1.0/cms/example.1com',
    '/api/v1.0/cms/foo/bar.com',
    '/api/v1.0/cms/' + 'a' * 256,
])
def test_invalid_domain_never_reaches_scanner(client, fake_cmseek, path):
    r = client.get(path)
    assert r.status_code == 400
    assert r.get_json() == {'error': 'invalid domain'}
    assert fake_cmseek.calls == []


def test_scanner_failure_is_client_error(client, fake_cmseek):
    fake_cmseek.returncode = 1
    fake_cmseek.write = False
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 400
    assert r.get_json() == {'error': 'could not query domain'}


def test_missing_result_file(client, fake_cmseek):
    fake_cmseek.write = False
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 400
    assert r.get_json() == {'error': 'could not query domain'}


def test_scanner_timeout(client, fake_cmseek):
    fake_cmseek.raise_exc = subprocess.TimeoutExpired(['python'], 5)
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 504
    assert r.get_json() == {'error': 'could not query domain'}


def test_scanner_not_installed(client, fake_cmseek):
    fake_cmseek.raise_exc = FileNotFoundError('python')
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 400


class TestApiKey:
    def test_missing_key_rejected(self, cmseek_dir, fake_cmseek):
        client = make_app(cmseek_dir, API_KEY='secret123').test_client()
        r = client.get('/api/v1.0/cms/example.com')
        assert r.status_code == 401
        assert r.get_json() == {'error': 'unauthorized'}
        assert fake_cmseek.calls == []

    def test_wrong_key_rejected(self, cmseek_dir, fake_cmseek):
        client = make_app(cmseek_dir, API_KEY='secret123').test_client()
        r = client.get('/api/v1.0/cms/example.com', headers={'X-API-KEY': 'nope'})
        assert r.status_code == 401
        assert fake_cmseek.calls == []

    def test_key_checked_before_domain(self, cmseek_dir, fake_cmseek):
        client = make_app(cmseek_dir, API_KEY='secret123').test_client()
        r = client.get('/api/v1.0/cms/bad..domain')
        assert r.status_code == 401

    def test_valid_key_accepted(self, cmseek_dir, fake_cmseek):
        client = make_app(cmseek_dir, API_KEY='secret123').test_client()
        r = client.get('/api/v1.0/cms/example.com', headers={'X-API-KEY': 'secret123'})
        assert r.status_code == 200

    def test_health_does_not_need_key(self, cmseek_dir):
        client = make_app(cmseek_dir, API_KEY='secret123').test_client()
        assert client.get('/health').status_code == 200


def test_rate_limit(cmseek_dir, fake_cmseek):
    app = make_app(cmseek_dir, RATELIMIT_ENABLED=True, RATE_LIMIT='2 per minute')
    client = app.test_client()
    assert client.get('/api/v1.0/cms/bad..one').status_code == 400
    assert client.get('/api/v1.0/cms/bad..two').status_code == 400
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 429
    body = r.get_json()
    assert body['error_code'] == 'RATE_LIMIT_EXCEEDED'
    assert fake_cmseek.calls == []
    # health stays reachable
    assert client.get('/health').status_code == 200


def _rejection_count(client, kind):
    text = client.get('/metrics/prometheus').get_data(as_text=True)
    prefix = f'cmslookup_domain_rejections_total{{kind="{kind}"}} '
    for line in text.splitlines():
        if line.startswith(prefix):
            return float(line[len(prefix):])
    return 0.0


@pytest.mark.parametrize('path,kind', [
    ('/api/v1.0/cms/ex%FFample.com', 'invalid_byte_sequence'),
    ('/api/v1.0/cms/ex%C3ample.com', 'invalid_byte_sequence'),
    ('/api/v1.0/cms/ex%EF%BF%BDample.com', 'invalid_byte_sequence'),
    ('/api/v1.0/cms/ex%C3%A4mple.com', 'invalid_character'),
])
def test_rejection_kind_comes_from_raw_bytes(client, fake_cmseek, caplog, path, kind):
    before = _rejection_count(client, kind)
    with caplog.at_level('WARNING', logger='cmslookup.cms'):
        r = client.get(path)
    assert r.status_code == 400
    assert r.get_json() == {'error': 'invalid domain'}
    assert _rejection_count(client, kind) == before + 1
    assert fake_cmseek.calls == []
    if kind == 'invalid_byte_sequence':
        assert 'invalid rune at offset 2' in caplog.text


def test_percent_encoded_domain_is_checked_and_passed_decoded(client, fake_cmseek):
    r = client.get('/api/v1.0/cms/ma%2Erkus%2Eio')
    assert r.status_code == 200
    cmd, _ = fake_cmseek.calls[0]
    assert cmd[3] == 'https://ma.rkus.io'


def test_versioned_interpreter_path(cmseek_dir, fake_cmseek):
    client = make_app(cmseek_dir, CMSEEK_PYTHON='/opt/venv/bin/python3.11').test_client()
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 200
    cmd, _ = fake_cmseek.calls[0]
    assert cmd[0] == '/opt/venv/bin/python3.11'


def test_versioned_interpreter_passes_allow_list(cmseek_dir):
    make_app(cmseek_dir, CMSEEK_PYTHON='/opt/venv/bin/python3.11')
    from cmslookup import safe_subprocess as sproc
    assert sproc.is_allowed_executable('/opt/venv/bin/python3.11')


@pytest.mark.parametrize('python', ['/bin/sh', 'bash', 'node', ''])
def test_non_python_interpreter_fails_at_startup(cmseek_dir, python):
    with pytest.raises(ConfigurationError):
        make_app(cmseek_dir, CMSEEK_PYTHON=python)


def test_service_error_is_json(client, monkeypatch):
    def broken_lookup(domain, config):
        raise ConfigurationError('CMSEEK_PYTHON', 'not permitted')

    monkeypatch.setattr('cmslookup.scanner.lookup', broken_lookup)
    r = client.get('/api/v1.0/cms/example.com')
    assert r.status_code == 500
    assert r.get_json() == {'error': 'could not query domain'}
