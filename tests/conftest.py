import sys
import pathlib
import subprocess

import pytest

# Ensure project root is on sys.path so 'import cmslookup' works when pytest runs from
# different working directories or when running individual tests.
_ROOT = pathlib.Path(__file__).resolve().parent.parent
if str(_ROOT) not in sys.path:
    sys.path.insert(0, str(_ROOT))

from cmslookup import create_app


@pytest.fixture
def cmseek_dir(tmp_path):
    (tmp_path / 'Result').mkdir()
    return tmp_path


def make_app(cmseek_dir, **overrides):
    config = {
        'TESTING': True,
        'RATELIMIT_ENABLED': False,
        'API_KEY': '',
        'CMSEEK_PATH': str(cmseek_dir),
        'CMSEEK_RESULT_DIR': str(cmseek_dir / 'Result'),
        'SCAN_TIMEOUT': 5.0,
    }
    config.update(overrides)
    return create_app(config)


@pytest.fixture
def app(cmseek_dir):
    return make_app(cmseek_dir)


@pytest.fixture
def client(app):
    return app.test_client()


class FakeCmseek:
    """Stand-in for ``safe_run`` that writes a report like CMSeeK would."""

    def __init__(self, result_dir, report=b'{"cms_id": "wp", "cms_name": "WordPress"}', returncode=0,
                 write=True, raise_exc=None):
        self.result_dir = pathlib.Path(result_dir)
        self.report = report
        self.returncode = returncode
        self.write = write
        self.raise_exc = raise_exc
        self.calls = []

    def __call__(self, cmd, **kwargs):
        self.calls.append((list(cmd), kwargs))
        if self.raise_exc is not None:
            raise self.raise_exc
        domain = cmd[3].split('://', 1)[1]
        if self.write:
            out = self.result_dir / domain
            out.mkdir(parents=True, exist_ok=True)
            (out / 'cms.json').write_bytes(self.report)
        return subprocess.CompletedProcess(cmd, self.returncode, stdout='CMSeeK finished\n')


@pytest.fixture
def fake_cmseek(monkeypatch, cmseek_dir):
    fake = FakeCmseek(cmseek_dir / 'Result')
    monkeypatch.setattr('cmslookup.safe_subprocess.safe_run', fake)
    return fake
