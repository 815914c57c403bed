"""Collect pods, container logs, warning events, and metrics for a troubled Deployment."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import httpx
from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from aegis_operator.context import ReconcileContext
from aegis_operator.errors import CollectionError
from aegis_operator.observation.cluster import ClusterReader
from aegis_operator.observation.metrics import PrometheusClient, PrometheusError
from aegis_operator.observation.models import (
    ContainerSnapshot,
    KubeEvent,
    MetricsSnapshot,
    ObservabilitySnapshot,
    PodSnapshot,
)

logger = logging.getLogger(__name__)

# Default number of log lines to fetch per container
DEFAULT_LOG_TAIL_LINES = 50
MAX_EVENTS = 20
PREVIOUS_CONTAINER_MARKER = "[previous container]\n"

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _utc(ts: datetime | None) -> datetime | None:
    if ts is None:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def container_state_tag(container_status: Any) -> str:
    """Compact state string, e.g. running, waiting:CrashLoopBackOff, terminated:OOMKilled:exit137."""
    state = container_status.state
    if state is None:
        return "unknown"
    if state.running:
        return "running"
    if state.waiting:
        return f"waiting:{state.waiting.reason or ''}"
    if state.terminated:
        return f"terminated:{state.terminated.reason or ''}:exit{state.terminated.exit_code}"
    return "unknown"


def _image_for_container(pod: Any, container_name: str) -> str:
    """Status only carries imageID; the image name lives in the pod spec."""
    for c in getattr(pod.spec, "containers", None) or []:
        if c.name == container_name:
            return c.image or "unknown"
    return "unknown"


def _event_time(ev: Any) -> datetime | None:
    return _utc(ev.last_timestamp) or _utc(getattr(ev, "event_time", None)) or _utc(ev.first_timestamp)


def _build_kube_event(ev: Any) -> KubeEvent:
    """Build KubeEvent from CoreV1Event."""
    obj = ev.involved_object
    return KubeEvent(
        type=ev.type or "Normal",
        reason=ev.reason or "",
        message=ev.message or "",
        count=ev.count or 1,
        last_seen=_event_time(ev),
        involved_object=f"{getattr(obj, 'kind', '')}/{getattr(obj, 'name', '')}",
    )


class WorkloadCollector:
    """Builds an ObservabilitySnapshot for one Deployment.

    Only the pod listing is mandatory. Log, event, and metrics failures are
    logged and degrade their section so the diagnosis still gets partial
    context instead of nothing.
    """

    def __init__(
        self,
        reader: ClusterReader,
        prometheus: PrometheusClient | None = None,
        log_tail_lines: int = DEFAULT_LOG_TAIL_LINES,
    ) -> None:
        self.reader = reader
        self.prometheus = prometheus
        self.log_tail_lines = log_tail_lines

    def collect(self, deployment: Any, anomaly_reason: str, ctx: ReconcileContext) -> ObservabilitySnapshot:
        namespace = deployment.metadata.namespace
        name = deployment.metadata.name

        try:
            pod_list = self.reader.list_pods(deployment, ctx)
        except (ApiException, HTTPError) as e:
            raise CollectionError(f"listing pods of {namespace}/{name}: {e}") from e

        pods = []
        for pod in pod_list:
            containers = []
            for cs in getattr(pod.status, "container_statuses", None) or []:
                containers.append(
                    ContainerSnapshot(
                        name=cs.name,
                        image=_image_for_container(pod, cs.name),
                        restart_count=cs.restart_count or 0,
                        state=container_state_tag(cs),
                        last_logs=self.fetch_container_logs(namespace, pod.metadata.name, cs.name, ctx),
                    )
                )
            pods.append(
                PodSnapshot(
                    name=pod.metadata.name,
                    phase=getattr(pod.status, "phase", None) or "Unknown",
                    node_name=getattr(pod.spec, "node_name", None),
                    containers=tuple(containers),
                )
            )

        involved = {name} | {p.name for p in pods}
        snapshot = ObservabilitySnapshot(
            deployment_name=name,
            namespace=namespace,
            anomaly_reason=anomaly_reason,
            collected_at=datetime.now(timezone.utc),
            pods=tuple(pods),
            events=tuple(self.fetch_warning_events(namespace, involved, ctx)),
            metrics=self.fetch_metrics(namespace, name, ctx),
        )
        logger.info(
            "Observability snapshot collected for %s/%s: pods=%d events=%d metrics=%s",
            namespace,
            name,
            len(snapshot.pods),
            len(snapshot.events),
            snapshot.metrics is not None,
        )
        return snapshot

    def fetch_container_logs(self, namespace: str, pod: str, container: str, ctx: ReconcileContext) -> str:
        """Tail of the current container; falls back to the previous (crashed) instance."""
        current_err: Exception | None = None
        try:
            logs = self.reader.read_logs(namespace, pod, container, self.log_tail_lines, False, ctx)
            if logs:
                return logs
        except (ApiException, HTTPError) as e:
            current_err = e

        try:
            previous = self.reader.read_logs(namespace, pod, container, self.log_tail_lines, True, ctx)
        except (ApiException, HTTPError) as e:
            if current_err is None:
                # Current instance answered with nothing; that is not a failure.
                return ""
            logger.debug("Could not fetch logs for %s/%s[%s]: %s", namespace, pod, container, e)
            return f"[log unavailable: current: {_describe(current_err)}, previous: {_describe(e)}]"
        return PREVIOUS_CONTAINER_MARKER + (previous or "")

    def fetch_warning_events(self, namespace: str, involved_names: set[str], ctx: ReconcileContext) -> list[KubeEvent]:
        """Warning events naming the Deployment or one of its pods, newest first."""
        try:
            items = self.reader.list_events(namespace, ctx)
        except (ApiException, HTTPError) as e:
            logger.warning("Failed to list events in %s: %s", namespace, _describe(e))
            return []
        relevant = [
            ev
            for ev in items
            if ev.type == "Warning" and getattr(ev.involved_object, "name", None) in involved_names
        ]
        relevant.sort(key=lambda ev: _event_time(ev) or _EPOCH, reverse=True)
        return [_build_kube_event(ev) for ev in relevant[:MAX_EVENTS]]

    def fetch_metrics(self, namespace: str, name: str, ctx: ReconcileContext) -> MetricsSnapshot | None:
        if self.prometheus is None or not self.prometheus.enabled:
            return None
        try:
            return self.prometheus.query_workload(namespace, name, ctx)
        except (httpx.HTTPError, PrometheusError, ValueError) as e:
            logger.warning("Prometheus query failed for %s/%s, continuing without metrics: %s", namespace, name, e)
            return None


def _describe(err: Exception) -> str:
    if isinstance(err, ApiException):
        return f"{err.status} {err.reason}"
    return str(err)
