import os
import re
import logging
from flask import Flask, jsonify
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

from . import safe_subprocess as sproc
from .exceptions import ConfigurationError, RateLimitExceededError, error_response
from .scanner import DEFAULT_USER_AGENT

__version__ = '1.0.0'

_LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'

# python, python3, python3.11, pypy3, py, python.exe ...
_INTERPRETER_RE = re.compile(r'^(python|pypy|py)[0-9.]*(\.exe)?$', re.IGNORECASE)


def _env_float(name: str, default: str) -> float:
    raw = os.environ.get(name, default)
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(name, f'expected a number, got {raw!r}')
    if value <= 0:
        raise ConfigurationError(name, 'must be positive')
    return value


def load_config() -> dict:
    """Read service settings from the environment."""
    cmseek_path = os.environ.get('CMSEEK_PATH', '/app')
    return {
        # API_KEY is the name the deployed container has always used
        'API_KEY': os.environ.get('API_KEY') or os.environ.get('CMSLOOKUP_API_KEY') or '',
        'RATE_LIMIT': os.environ.get('CMSLOOKUP_RATE_LIMIT', '10 per minute'),
        'RATELIMIT_STORAGE_URI': os.environ.get('CMSLOOKUP_REDIS_URL') or 'memory://',
        'CMSEEK_PATH': cmseek_path,
        'CMSEEK_RESULT_DIR': os.environ.get('CMSEEK_RESULT_DIR') or os.path.join(cmseek_path, 'Result'),
        'CMSEEK_PYTHON': os.environ.get('CMSEEK_PYTHON', 'python'),
        'SCAN_TIMEOUT': _env_float('CMSLOOKUP_SCAN_TIMEOUT', '300'),
        'USER_AGENT': os.environ.get('CMSLOOKUP_USER_AGENT') or DEFAULT_USER_AGENT,
        'CMSLOOKUP_VERSION': os.environ.get('CMSLOOKUP_VERSION', __version__),
    }


def _allow_interpreter(python: str) -> None:
    """Admit the configured CMSeeK interpreter to the subprocess allow list.

    Only python interpreters are accepted, so a path such as
    '/opt/venv/bin/python3.11' works while '/bin/sh' stops startup.
    """
    name = os.path.basename(python or '')
    if not _INTERPRETER_RE.match(name):
        raise ConfigurationError('CMSEEK_PYTHON', f'{python!r} is not a python interpreter')
    sproc.register_allowed_executable(python)


def _setup_logging():
    level_name = os.environ.get('CMSLOOKUP_LOG_LEVEL', 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # Optional rotating file handler for persistent logs
    log_file = os.environ.get('CMSLOOKUP_LOG_FILE')
    if log_file:
        root = logging.getLogger()
        if not any(getattr(h, 'baseFilename', None) == os.path.abspath(log_file) for h in root.handlers):
            from logging.handlers import RotatingFileHandler
            max_bytes = int(os.environ.get('CMSLOOKUP_LOG_MAX_BYTES', str(5 * 1024 * 1024)))
            backup = int(os.environ.get('CMSLOOKUP_LOG_BACKUP_COUNT', '5'))
            fh = RotatingFileHandler(log_file, maxBytes=max_bytes, backupCount=backup)
            fh.setLevel(level)
            fh.setFormatter(logging.Formatter(_LOG_FORMAT))
            root.addHandler(fh)
            logging.getLogger(__name__).info(
                'RotatingFileHandler attached path=%s max_bytes=%d backups=%d',
                log_file, max_bytes, backup)
    logging.getLogger('werkzeug').setLevel(logging.WARNING)
    logging.getLogger(__name__).info('Logging initialized at level %s', level_name)


def create_app(overrides: dict | None = None):
    _setup_logging()
    app = Flask(__name__)
    app.config.update(load_config())
    if overrides:
        app.config.update(overrides)
    _allow_interpreter(app.config['CMSEEK_PYTHON'])

    # Rate limiting: every lookup counts against the caller's address
    limiter = Limiter(
        key_func=get_remote_address,
        app=app,
        default_limits=[app.config['RATE_LIMIT']],
        storage_uri=app.config['RATELIMIT_STORAGE_URI'],
    )
    app.extensions['limiter'] = limiter

    @app.errorhandler(429)
    def _rate_limited(e):
        body, status = error_response(RateLimitExceededError(str(getattr(e, 'description', '') or 'unknown')))
        logging.getLogger('cmslookup.limiter').info('rate limited remote=%s', get_remote_address())
        return jsonify(body), status

    from .routes.cms import bp as cms_bp
    from .routes.system import system_bp
    limiter.exempt(system_bp)
    app.register_blueprint(cms_bp)
    app.register_blueprint(system_bp)

    if not app.config.get('API_KEY'):
        logging.getLogger(__name__).warning('API_KEY not set, lookup endpoint is open to any caller')
    logging.getLogger(__name__).info(
        'cmslookup ready version=%s cmseek_path=%s rate_limit=%s',
        app.config['CMSLOOKUP_VERSION'], app.config['CMSEEK_PATH'], app.config['RATE_LIMIT'])
    return app
