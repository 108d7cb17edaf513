"""
Unit tests for log formatting and service metrics.
"""
import json
import logging

from inspection_kpi.monitoring import KpiLogFormatter, ServiceMetrics, deep_health


def _log_record(message, **extra):
    record = logging.LogRecord('inspection_kpi.test', logging.WARNING, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestKpiLogFormatter:

    def test_json_line(self):
        line = KpiLogFormatter().format(_log_record("Mixer subtype failed", bu='th', frequency='daily'))
        payload = json.loads(line)
        assert payload['severity'] == 'WARNING'
        assert payload['message'] == "Mixer subtype failed"
        assert payload['bu'] == 'th'
        assert payload['frequency'] == 'daily'
        assert 'site' not in payload

    def test_explicit_correlation_id(self):
        payload = json.loads(KpiLogFormatter().format(_log_record("x", correlation_id='req-1')))
        assert payload['correlation_id'] == 'req-1'

    def test_non_ascii_kept(self):
        line = KpiLogFormatter().format(_log_record("รถ-01 inspected"))
        assert 'รถ-01' in line


class TestServiceMetrics:

    def test_snapshot(self):
        metrics = ServiceMetrics()
        metrics.observe_request('/kpi', 200, 10.0)
        metrics.observe_request('/kpi', 503, 30.0)
        metrics.observe_kpi('daily', True)
        metrics.observe_kpi('daily', False)

        snapshot = metrics.snapshot()

        assert snapshot['total_requests'] == 2
        assert snapshot['server_errors'] == 1
        assert snapshot['status_codes'] == {200: 1, 503: 1}
        assert snapshot['routes']['/kpi']['avg_ms'] == 20.0
        assert snapshot['kpi'] == {'runs_by_frequency': {'daily': 2}, 'source_failures': 1}

    def test_empty_snapshot(self):
        snapshot = ServiceMetrics().snapshot()
        assert snapshot['total_requests'] == 0
        assert snapshot['routes'] == {}


class TestDeepHealth:

    def test_invalid_config_degrades(self, app, monkeypatch):
        monkeypatch.setattr('inspection_kpi.config_manager.get_config', lambda: {'mixer_types': 'mixer'})
        result = deep_health()
        assert result['checks']['config']['status'] == 'degraded'
        assert result['status'] == 'degraded'

    def test_unreadable_config_is_unhealthy(self, app, tmp_path, monkeypatch):
        path = tmp_path / 'config.json'
        path.write_text('[1, 2', encoding='utf-8')
        monkeypatch.setattr('inspection_kpi.config_manager.CONFIG_FILE', str(path))
        result = deep_health()
        assert result['checks']['config']['status'] == 'unhealthy'
        assert result['status'] == 'unhealthy'
