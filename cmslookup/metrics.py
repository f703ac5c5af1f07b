"""Prometheus metrics for the CMS lookup service.

Exposed at /metrics/prometheus.
"""

from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST

# ============ Metrics Definitions ============

REQUESTS_TOTAL = Counter(
    'cmslookup_requests_total',
    'Lookup requests by outcome',
    ['status']  # ok, invalid, unauthorized, scan_error, timeout
)

DOMAIN_REJECTIONS = Counter(
    'cmslookup_domain_rejections_total',
    'Domains refused by the syntax check',
    ['kind']
)

SCAN_DURATION = Histogram(
    'cmslookup_scan_duration_seconds',
    'Wall time of CMSeeK runs',
    ['result'],
    buckets=[1, 5, 10, 20, 30, 60, 120, 300, 600]
)


def record_request(status: str) -> None:
    REQUESTS_TOTAL.labels(status=status).inc()


def record_rejection(kind: str) -> None:
    DOMAIN_REJECTIONS.labels(kind=kind).inc()


def observe_scan(duration: float, result: str) -> None:
    SCAN_DURATION.labels(result=result).observe(duration)


def get_metrics() -> bytes:
    return generate_latest()


def get_content_type() -> str:
    return CONTENT_TYPE_LATEST
