import time
from flask import Blueprint, Response, current_app, jsonify

from .. import metrics
from .. import scanner

system_bp = Blueprint('system', __name__)

_START_TIME = time.time()


@system_bp.route('/health', methods=['GET'])
def health():
    uptime = time.time() - _START_TIME
    return jsonify({'status': 'ok', 'uptime_seconds': round(uptime, 2)})


@system_bp.route('/version', methods=['GET'])
def version():
    uptime = time.time() - _START_TIME
    return jsonify({
        'version': current_app.config.get('CMSLOOKUP_VERSION'),
        'uptime_seconds': round(uptime, 2),
        'scanner': scanner.describe(current_app.config),
    })


@system_bp.route('/metrics/prometheus', methods=['GET'])
def metrics_prometheus():
    return Response(metrics.get_metrics(), mimetype=metrics.get_content_type())
