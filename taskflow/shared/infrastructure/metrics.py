"""
OTLP Metrics Exporter
=====================

Pushes gauge metrics to Grafana Cloud (or any OTLP/HTTP gateway).

Used for escalation pass metrics:
- escalation_pass_duration_ms
- escalation_items_checked
- escalations_fired
- escalation_failures

Export failures are logged and never propagate to the caller.
"""

import base64
import time
from typing import Dict, Optional

import httpx

from taskflow.config import settings
from taskflow.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class OTLPMetricsExporter:
    """
    Export gauge metrics via the OTLP HTTP JSON endpoint.

    Disabled unless host, API key and instance id are all configured.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        api_key: Optional[str] = None,
        instance_id: Optional[str] = None,
        timeout_seconds: float = 10.0
    ):
        """
        Initialize the exporter.

        Args:
            host: OTLP gateway URL (e.g., https://otlp-gateway-prod-ap-south-1.grafana.net)
            api_key: Grafana API key
            instance_id: Instance ID for authentication
            timeout_seconds: HTTP timeout per export
        """
        self._host = host
        self._api_key = api_key
        self._instance_id = instance_id
        self._timeout = timeout_seconds
        self._enabled = bool(host and api_key and instance_id)
        self._url = ""
        self._auth_encoded = ""

        if self._enabled:
            auth_pair = f"{instance_id}:{api_key}"
            self._auth_encoded = base64.b64encode(auth_pair.encode()).decode()
            # Don't double-append the path if host already includes it
            if "/otlp/v1/metrics" in host:
                self._url = host
            else:
                self._url = f"{host.rstrip('/')}/otlp/v1/metrics"
            logger.info(
                "OTLP metrics exporter initialized",
                extra={"host": host, "instance_id": instance_id}
            )
        else:
            logger.info(
                "OTLP metrics exporter not configured - metrics will not be exported",
                extra={
                    "host_configured": bool(host),
                    "api_key_configured": bool(api_key),
                    "instance_id_configured": bool(instance_id)
                }
            )

    def is_enabled(self) -> bool:
        """Check if exporter is properly configured."""
        return self._enabled

    def build_payload(
        self,
        gauges: Dict[str, int],
        attributes: Optional[Dict[str, str]] = None,
        timestamp_ns: Optional[int] = None
    ) -> dict:
        """Build an OTLP resourceMetrics payload of integer gauges."""
        timestamp_ns = timestamp_ns or time.time_ns()

        metric_attributes = [
            {"key": "service", "value": {"stringValue": settings.app_name}},
        ]
        for key, value in (attributes or {}).items():
            metric_attributes.append({"key": key, "value": {"stringValue": str(value)}})

        metrics = [
            {
                "name": name,
                "unit": "ms" if name.endswith("_ms") else "1",
                "gauge": {
                    "dataPoints": [
                        {
                            "asInt": int(value),
                            "timeUnixNano": timestamp_ns,
                            "attributes": metric_attributes
                        }
                    ]
                }
            }
            for name, value in gauges.items()
        ]

        return {
            "resourceMetrics": [
                {
                    "resource": {
                        "attributes": [
                            {"key": "service.name", "value": {"stringValue": settings.app_name}},
                            {"key": "service.version", "value": {"stringValue": settings.app_version}},
                            {"key": "deployment.environment", "value": {"stringValue": settings.environment}},
                        ]
                    },
                    "scopeMetrics": [{"metrics": metrics}]
                }
            ]
        }

    async def export_gauges(
        self,
        gauges: Dict[str, int],
        attributes: Optional[Dict[str, str]] = None
    ) -> bool:
        """
        Export gauge metrics.

        Returns:
            True if export succeeded, False otherwise
        """
        if not self._enabled:
            return False

        payload = self.build_payload(gauges, attributes)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Basic {self._auth_encoded}",
            "X-Grafana-Org-Id": str(self._instance_id)
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(self._url, headers=headers, json=payload)
        except httpx.HTTPError as e:
            logger.error("Error exporting metrics", extra={"error": str(e)})
            return False

        if response.status_code in (200, 202):
            logger.debug("Metrics exported", extra={"metrics": list(gauges)})
            return True

        logger.warning(
            "Failed to export metrics",
            extra={"status_code": response.status_code, "response": response.text[:500]}
        )
        return False
