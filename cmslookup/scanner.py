"""CMSeeK invocation and result readback.

CMSeeK is run as ``python cmseek.py -u https://<domain> ...`` from its own
checkout and writes its findings to ``Result/<domain>/cms.json``, e.g.::

    {
        "cms_id": "wp",
        "cms_name": "WordPress",
        "cms_url": "https://wordpress.org",
        "detection_param": "header",
        "last_scanned": "2022-02-27 17:44:17.602201",
        "url": "https://ma.rkus.io",
        "wp_license": "https://ma.rkus.io/license.txt",
        "wp_themes": "ma-rkus-io Version 5.9.1,",
        "wp_users": "markus,"
    }

The file is handed back to the client byte for byte; nothing here parses it.
"""

import logging
import os
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from . import metrics
from . import safe_subprocess as sproc
from .exceptions import ConfigurationError, ResultNotFoundError, ScanFailedError, ScanTimeoutError
from .utils.domain import check_domain

_LOG = logging.getLogger("cmslookup.scanner")

CMSEEK_SCRIPT = "cmseek.py"
RESULT_FILENAME = "cms.json"
DEFAULT_USER_AGENT = (
    "Domaner.xyz Analysis Bot - Please contact support@domaner.xyz regarding any abuse or problem. "
    "Visit https://www.domaner.xyz/domains/{domain} for more information"
)


def build_user_agent(domain: str, template: Optional[str] = None) -> str:
    return (template or DEFAULT_USER_AGENT).replace("{domain}", domain)


def build_command(
    domain: str, python: str = "python", script: str = CMSEEK_SCRIPT, user_agent: Optional[str] = None
) -> List[str]:
    """Argument vector for one CMSeeK run against ``https://<domain>``."""
    return [
        python,
        script,
        "-u",
        f"https://{domain}",
        "--follow-redirect",
        "--user-agent",
        build_user_agent(domain, user_agent),
    ]


def result_path(domain: str, result_dir: str) -> Path:
    """Location of the JSON report CMSeeK writes for ``domain``.

    Raises ValueError if the path would resolve outside ``result_dir``.
    """
    base = Path(result_dir).resolve()
    path = (base / domain / RESULT_FILENAME).resolve()
    if base not in path.parents:
        raise ValueError(f"result path for {domain!r} escapes {base}")
    return path


def _require_valid(domain: str) -> None:
    # domain ends up in argv and in a file path; refuse anything unchecked
    if not domain:
        raise ScanFailedError(domain, "empty domain")
    violation = check_domain(domain)
    if violation is not None:
        raise ScanFailedError(domain, violation.message)


def run_scan(
    domain: str,
    *,
    cmseek_path: str,
    python: str = "python",
    timeout: Optional[float] = None,
    user_agent: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
) -> str:
    """Run CMSeeK for ``domain`` and return its combined console output."""
    _require_valid(domain)
    cmd = build_command(domain, python=python, user_agent=user_agent)
    started = time.time()
    try:
        proc = sproc.safe_run(cmd, cwd=cmseek_path, timeout=timeout, env=dict(env) if env is not None else None)
    except sproc.TimeoutExpired as te:
        output = te.output or ""
        if isinstance(output, bytes):
            output = output.decode("utf-8", "replace")
        _LOG.warning("cmseek timeout domain=%s timeout=%s output=%s", domain, timeout, output)
        metrics.observe_scan(time.time() - started, "timeout")
        raise ScanTimeoutError(domain, timeout or 0) from te
    except ValueError as ve:
        raise ConfigurationError("CMSEEK_PYTHON", str(ve)) from ve
    except OSError as oe:
        _LOG.error("cmseek could not be started domain=%s cwd=%s err=%s", domain, cmseek_path, oe)
        metrics.observe_scan(time.time() - started, "error")
        raise ScanFailedError(domain, str(oe)) from oe
    elapsed = time.time() - started
    output = proc.stdout or ""
    if proc.returncode != 0:
        _LOG.warning("cmseek failed domain=%s rc=%s output=%s", domain, proc.returncode, output)
        metrics.observe_scan(elapsed, "error")
        raise ScanFailedError(domain, f"exit status {proc.returncode}", output=output)
    metrics.observe_scan(elapsed, "ok")
    _LOG.info("cmseek finished domain=%s elapsed=%.2fs", domain, elapsed)
    return output


def read_result(domain: str, result_dir: str, output: str = "") -> bytes:
    """Return the raw ``cms.json`` bytes CMSeeK left for ``domain``."""
    _require_valid(domain)
    try:
        path = result_path(domain, result_dir)
    except ValueError as ve:
        raise ScanFailedError(domain, str(ve)) from ve
    if not path.is_file():
        _LOG.warning("cmseek result missing domain=%s path=%s output=%s", domain, path, output)
        raise ResultNotFoundError(domain, str(path))
    try:
        return path.read_bytes()
    except OSError as oe:
        _LOG.warning("cmseek result unreadable domain=%s path=%s err=%s", domain, path, oe)
        raise ScanFailedError(domain, str(oe), output=output) from oe


def lookup(domain: str, config: Mapping[str, Any]) -> bytes:
    """Scan ``domain`` and return the report, using settings from ``config``.

    ``config`` is the Flask app config (or any mapping with the same keys).
    """
    cmseek_path = config.get("CMSEEK_PATH") or os.getcwd()
    result_dir = config.get("CMSEEK_RESULT_DIR") or os.path.join(cmseek_path, "Result")
    output = run_scan(
        domain,
        cmseek_path=cmseek_path,
        python=config.get("CMSEEK_PYTHON") or "python",
        timeout=config.get("SCAN_TIMEOUT"),
        user_agent=config.get("USER_AGENT"),
    )
    return read_result(domain, result_dir, output=output)


def describe(config: Mapping[str, Any]) -> Dict[str, Any]:
    """Scanner settings safe to show on /version."""
    return {
        "cmseek_path": config.get("CMSEEK_PATH"),
        "result_dir": config.get("CMSEEK_RESULT_DIR"),
        "timeout_seconds": config.get("SCAN_TIMEOUT"),
    }
