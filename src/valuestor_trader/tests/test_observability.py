from __future__ import annotations

import io
import json
import logging

from valuestor_trader.config.settings import MonitoringConfig
from valuestor_trader.monitoring.logger import configure_logging, correlation_scope, get_logger
from valuestor_trader.monitoring.metrics import METRICS, summarize


def test_structured_logs_carry_correlation_id_and_extras() -> None:
    stream = io.StringIO()
    root = logging.getLogger()
    previous_handlers, previous_level = list(root.handlers), root.level
    try:
        configure_logging(MonitoringConfig(log_level="DEBUG"), stream=stream, force=True)
        logger = get_logger("valuestor_trader.test")
        with correlation_scope("0xtxhash"):
            logger.info("New token created", extra={"token": "0xabc", "block": 7})
        logger.info("outside")
    finally:
        root.handlers[:] = previous_handlers
        root.setLevel(previous_level)

    first, second = [json.loads(line) for line in stream.getvalue().splitlines()]
    assert first["message"] == "New token created"
    assert first["correlation_id"] == "0xtxhash"
    assert first["extra"] == {"token": "0xabc", "block": 7}
    assert second["correlation_id"] == "-"


def test_metrics_counters_timers_and_export() -> None:
    METRICS.increment("decisions.buy")
    METRICS.increment("decisions.buy")
    METRICS.gauge("holders.active", 3)
    with METRICS.timer("decision_engine.latency_seconds"):
        pass

    snapshot = METRICS.snapshot()
    assert METRICS.get("decisions.buy") == 2
    assert snapshot["gauges"]["holders.active"] == 3
    assert "decision_engine.latency_seconds" in snapshot["histograms"]

    output = METRICS.export_prometheus()
    assert "# TYPE valuestor_decisions_buy counter" in output
    assert "valuestor_decisions_buy 2.0" in output
    assert "valuestor_holders_active 3.0" in output
    assert 'valuestor_decision_engine_latency_seconds{quantile="0.5"}' in output
    assert "decisions.buy" not in output


def test_summary_quantiles_use_nearest_rank() -> None:
    summary = summarize([float(value) for value in range(1, 101)])
    assert summary["count"] == 100
    assert summary["avg"] == 50.5
    assert (summary["p50"], summary["p90"], summary["p99"]) == (50.0, 90.0, 99.0)
    assert summarize([]) == {}
