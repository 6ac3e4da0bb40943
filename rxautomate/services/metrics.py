"""Cloud Monitoring custom metrics for outbound NHS API usage."""

from __future__ import annotations

import logging
import time
from typing import Any

logger = logging.getLogger(__name__)

# Lazy import to avoid hard dependency in test/local dev
_client = None
_project_path: str = ""


def _get_client() -> Any:
    global _client  # noqa: PLW0603
    if _client is None:
        try:
            from google.cloud import monitoring_v3

            _client = monitoring_v3.MetricServiceClient()
        except Exception:
            logger.debug("Cloud Monitoring client not available, metrics disabled")
    return _client


def init_metrics(project_id: str) -> None:
    """Initialize the metrics subsystem with the GCP project ID."""
    global _project_path  # noqa: PLW0603
    _project_path = f"projects/{project_id}"


def record_nhs_api_call(
    category: str,
    operation: str,
    status_code: int,
    duration_ms: int,
) -> None:
    """Record one outbound NHS API call.

    Fire-and-forget: logs and swallows errors so callers are never blocked.
    """
    if not _project_path:
        return
    client = _get_client()
    if client is None:
        return

    try:
        from google.api import metric_pb2, monitored_resource_pb2
        from google.cloud.monitoring_v3 import CreateTimeSeriesRequest, TimeSeries, TimeInterval, TypedValue, Point

        now = time.time()
        seconds = int(now)
        nanos = int((now - seconds) * 1e9)
        interval = TimeInterval(
            end_time={"seconds": seconds, "nanos": nanos},
        )

        resource = monitored_resource_pb2.MonitoredResource(
            type="global",
            labels={"project_id": _project_path.split("/")[-1]},
        )
        labels = {"category": category, "operation": operation, "status": str(status_code)}

        series = [
            TimeSeries(
                metric=metric_pb2.Metric(
                    type="custom.googleapis.com/rxautomate/nhs_api/request_count",
                    labels=labels,
                ),
                resource=resource,
                points=[Point(interval=interval, value=TypedValue(int64_value=1))],
            ),
            TimeSeries(
                metric=metric_pb2.Metric(
                    type="custom.googleapis.com/rxautomate/nhs_api/latency_ms",
                    labels={"category": category, "operation": operation},
                ),
                resource=resource,
                points=[Point(interval=interval, value=TypedValue(int64_value=duration_ms))],
            ),
        ]

        client.create_time_series(
            request=CreateTimeSeriesRequest(name=_project_path, time_series=series)
        )
    except Exception:
        logger.debug("Failed to write NHS API metrics", exc_info=True)
