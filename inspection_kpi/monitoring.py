"""
Operational plumbing for the KPI service: log formatting, request metrics,
and the health checks used by Cloud Run.

Set LOG_FORMAT=json to emit one JSON object per line (Cloud Logging reads
``severity``); every line logged inside a request carries the request's
correlation id.
"""

import os
import time
import json
import logging
import threading
from collections import defaultdict, deque
from typing import Any, Deque, Dict
from datetime import datetime, timezone

from flask import Flask, request, jsonify, g, has_request_context

logger = logging.getLogger(__name__)

LATENCY_WINDOW = 500

_HEALTH_RANK = {'healthy': 0, 'degraded': 1, 'unhealthy': 2}


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

class KpiLogFormatter(logging.Formatter):
    """One JSON object per record, with the request correlation id when known."""

    # Attributes callers may pass through ``extra=`` that are worth keeping
    CONTEXT_FIELDS = ('bu', 'site', 'frequency', 'equipment_type')

    def format(self, record):
        payload = {
            'timestamp': _utc_now(),
            'severity': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'source': f"{record.module}:{record.funcName}:{record.lineno}",
            'service': os.environ.get('K_SERVICE', 'inspection-kpi'),
        }
        for name in self.CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value

        correlation_id = getattr(record, 'correlation_id', None)
        if correlation_id is None and has_request_context():
            correlation_id = g.get('correlation_id')
        if correlation_id:
            payload['correlation_id'] = correlation_id

        if record.exc_info and record.exc_info[0]:
            payload['exception'] = f"{record.exc_info[0].__name__}: {record.exc_info[1]}"

        return json.dumps(payload, ensure_ascii=False)


def configure_logging(app: Flask):
    """Apply LOG_LEVEL and LOG_FORMAT to the root and Flask loggers."""
    level = getattr(logging, os.environ.get('LOG_LEVEL', 'INFO').upper(), logging.INFO)

    if os.environ.get('LOG_FORMAT', 'text').lower() == 'json':
        handler = logging.StreamHandler()
        handler.setFormatter(KpiLogFormatter())
        logging.root.handlers = [handler]
        app.logger.handlers = [handler]
        app.logger.propagate = False
    elif not logging.root.handlers:
        logging.basicConfig(format='%(asctime)s %(levelname)s [%(name)s] %(message)s')

    logging.root.setLevel(level)
    app.logger.setLevel(level)


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class ServiceMetrics:
    """
    In-process counters for the monitoring endpoint. Flask serves requests
    on several threads, so every update goes through one lock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._started = time.time()
        self.requests = 0
        self.server_errors = 0
        self.by_status: Dict[int, int] = defaultdict(int)
        self.latencies: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=LATENCY_WINDOW))
        self.kpi_runs: Dict[str, int] = defaultdict(int)
        self.kpi_failures = 0

    def observe_request(self, route: str, status_code: int, elapsed_ms: float):
        with self._lock:
            self.requests += 1
            self.by_status[status_code] += 1
            if status_code >= 500:
                self.server_errors += 1
            self.latencies[route].append(elapsed_ms)

    def observe_kpi(self, frequency: str, success: bool):
        with self._lock:
            self.kpi_runs[frequency] += 1
            if not success:
                self.kpi_failures += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            routes = {}
            for route, samples in self.latencies.items():
                ordered = sorted(samples)
                routes[route] = {
                    'count': len(ordered),
                    'avg_ms': round(sum(ordered) / len(ordered), 2),
                    'p95_ms': round(ordered[int(0.95 * (len(ordered) - 1))], 2),
                }
            return {
                'uptime_seconds': int(time.time() - self._started),
                'total_requests': self.requests,
                'server_errors': self.server_errors,
                'status_codes': dict(self.by_status),
                'routes': routes,
                'kpi': {
                    'runs_by_frequency': dict(self.kpi_runs),
                    'source_failures': self.kpi_failures,
                },
            }


metrics = ServiceMetrics()


def _track_requests(app: Flask):

    @app.before_request
    def _begin():
        g.started_at = time.perf_counter()
        g.correlation_id = (
            request.headers.get('X-Correlation-ID')
            or request.headers.get('X-Cloud-Trace-Context', '').split('/')[0]
            or f"kpi-{time.time_ns():x}"
        )

    @app.after_request
    def _finish(response):
        started = g.get('started_at')
        if started is None:
            return response
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.observe_request(request.url_rule.rule if request.url_rule else request.path,
                                response.status_code, elapsed_ms)
        response.headers['X-Correlation-ID'] = g.correlation_id
        response.headers['X-Response-Time'] = f"{elapsed_ms:.2f}ms"
        return response


# ---------------------------------------------------------------------------
# Health checks
# ---------------------------------------------------------------------------

def check_record_source() -> Dict[str, Any]:
    """Ping the configured record source."""
    from inspection_kpi.database import get_record_source, get_source_info

    started = time.perf_counter()
    try:
        reachable = get_record_source().ping()
        result = {'status': 'healthy' if reachable else 'unhealthy', 'type': get_source_info()['type']}
    except Exception as e:
        logger.warning(f"Record source check failed: {e}")
        result = {'status': 'unhealthy', 'error': str(e)}
    result['latency_ms'] = round((time.perf_counter() - started) * 1000, 2)
    return result


def check_config() -> Dict[str, Any]:
    """Load and validate the KPI configuration file."""
    from inspection_kpi.config_manager import ConfigError, get_config
    from inspection_kpi.validators import validate_configuration

    try:
        is_valid, error = validate_configuration(get_config())
    except ConfigError as e:
        return {'status': 'unhealthy', 'error': str(e)}
    return {'status': 'healthy'} if is_valid else {'status': 'degraded', 'error': error}


def deep_health() -> Dict[str, Any]:
    """Every check, with the worst check status as the overall status."""
    checks = {
        'record_source': check_record_source(),
        'config': check_config(),
    }
    overall = max((c['status'] for c in checks.values()), key=_HEALTH_RANK.__getitem__)
    return {'status': overall, 'timestamp': _utc_now(), 'checks': checks}


def register_monitoring(app: Flask):
    """Install logging, request tracking and the health endpoints on ``app``."""
    configure_logging(app)
    _track_requests(app)

    @app.route('/health/live', methods=['GET'])
    def liveness_check():
        return jsonify({'alive': True}), 200

    @app.route('/health/ready', methods=['GET'])
    def readiness_check():
        status = check_record_source()
        if status['status'] != 'healthy':
            return jsonify({'ready': False, 'reason': 'record source unavailable'}), 503
        return jsonify({'ready': True}), 200

    @app.route('/health/deep', methods=['GET'])
    def deep_health_check():
        result = deep_health()
        return jsonify(result), 200 if result['status'] == 'healthy' else 503

    @app.route('/api/monitoring/metrics', methods=['GET'])
    def monitoring_metrics():
        return jsonify(metrics.snapshot())
