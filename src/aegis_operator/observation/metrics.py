"""Optional Prometheus CPU/memory lookup for a workload."""

from __future__ import annotations

import time
from datetime import datetime, timezone

import httpx

from aegis_operator.context import ReconcileContext
from aegis_operator.observation.models import MetricsSnapshot

CPU_QUERY = (
    'sum(rate(container_cpu_usage_seconds_total{{namespace="{namespace}", pod=~"{name}-.*", '
    'container!=""}}[2m])) * 1000'
)
MEMORY_QUERY = (
    'sum(container_memory_working_set_bytes{{namespace="{namespace}", pod=~"{name}-.*", '
    'container!=""}}) / 1024 / 1024'
)


class PrometheusError(Exception):
    """Prometheus returned an unusable response."""


class PrometheusClient:
    """Queries a Prometheus-compatible HTTP API. An empty URL disables it."""

    def __init__(self, url: str | None, timeout: float = 5.0, http: httpx.Client | None = None) -> None:
        self.url = (url or "").rstrip("/")
        self.timeout = timeout
        self._http = http or httpx.Client()

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def query_workload(self, namespace: str, deployment_name: str, ctx: ReconcileContext) -> MetricsSnapshot | None:
        """CPU (millicores) and memory (MiB) summed over the Deployment's pods."""
        if not self.enabled:
            return None
        cpu = self.instant_query(CPU_QUERY.format(namespace=namespace, name=deployment_name), ctx)
        mem = self.instant_query(MEMORY_QUERY.format(namespace=namespace, name=deployment_name), ctx)
        return MetricsSnapshot(cpu_millicores=cpu, memory_mib=mem, query_time=datetime.now(timezone.utc))

    def instant_query(self, query: str, ctx: ReconcileContext) -> float:
        """Run an instant query and return the first sample (0.0 when there is no data yet)."""
        response = self._http.get(
            f"{self.url}/api/v1/query",
            params={"query": query, "time": str(int(time.time()))},
            timeout=ctx.timeout(self.timeout),
        )
        response.raise_for_status()
        payload = response.json()
        if payload.get("status") != "success":
            raise PrometheusError(f"prometheus returned status {payload.get('status')!r}")
        result = (payload.get("data") or {}).get("result") or []
        if not result:
            return 0.0
        value = result[0].get("value") or []
        if len(value) != 2:
            raise PrometheusError(f"unexpected sample shape: {value!r}")
        try:
            return float(value[1])
        except (TypeError, ValueError) as e:
            raise PrometheusError(f"converting value {value[1]!r}: {e}") from e
