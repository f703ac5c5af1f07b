from flask import Blueprint, Response, current_app, jsonify, request
from urllib.parse import unquote_to_bytes, urlsplit
import logging

from .. import metrics
from .. import scanner
from ..api_keys import require_api_key
from ..exceptions import CmsLookupException, InvalidDomainError, ScanError, ScanTimeoutError, UnauthorizedError
from ..utils.domain import validate_domain

bp = Blueprint('cms', __name__, url_prefix='/api/v1.0')

bp.before_request(require_api_key)


@bp.errorhandler(UnauthorizedError)
def _unauthorized(err: UnauthorizedError):
    metrics.record_request('unauthorized')
    return jsonify({'error': 'unauthorized'}), err.status_code


@bp.errorhandler(CmsLookupException)
def _service_error(err: CmsLookupException):
    logging.getLogger('cmslookup.cms').error('cms lookup error code=%s err=%s', err.error_code, err.message)
    metrics.record_request('error')
    return jsonify({'error': 'could not query domain'}), err.status_code


def _raw_domain(decoded: str) -> bytes:
    """Bytes of the ``<domain>`` path segment exactly as the client sent them.

    Werkzeug hands the view a ``str`` in which undecodable bytes are already
    U+FFFD, so the segment is cut from the raw request URI (RAW_URI from
    gunicorn, REQUEST_URI from uWSGI/mod_wsgi and the Werkzeug server) and
    percent-decoded to bytes. Without a usable raw URI the decoded value is
    used.
    """
    prefix = (request.script_root + request.url_rule.rule.split('<', 1)[0]).encode('utf-8')
    raw_uri = request.environ.get('RAW_URI') or request.environ.get('REQUEST_URI')
    if raw_uri:
        # WSGI strings carry bytes as latin-1
        path = unquote_to_bytes(urlsplit(raw_uri.encode('latin-1')).path)
        if path.startswith(prefix):
            return path[len(prefix):]
    return decoded.encode('utf-8', 'surrogatepass')


@bp.route('/cms/<path:domain>', methods=['GET'])
def cms(domain: str):
    """Detect the CMS behind ``domain`` and return CMSeeK's JSON report.

    The domain must pass the label syntax check before it is allowed anywhere
    near the scanner command line or the result directory. ``path`` is used as
    converter so that values containing ``/`` reach the check (and get a 400)
    instead of falling through to a 404. Only the checked value is passed on.
    """
    log = logging.getLogger('cmslookup.cms')
    try:
        domain = validate_domain(_raw_domain(domain))
    except InvalidDomainError as e:
        log.warning('invalid domain input=%r %s', e.domain, e.message)
        metrics.record_rejection(e.violation.kind.value)
        metrics.record_request('invalid')
        return jsonify({'error': 'invalid domain'}), e.status_code
    log.info('cms lookup domain=%s', domain)
    try:
        body = scanner.lookup(domain, current_app.config)
    except ScanError as e:
        log.warning('cms lookup failed domain=%s code=%s err=%s', domain, e.error_code, e.message)
        metrics.record_request('timeout' if isinstance(e, ScanTimeoutError) else 'scan_error')
        return jsonify({'error': 'could not query domain'}), e.status_code
    metrics.record_request('ok')
    return Response(body, status=200, mimetype='application/json')
