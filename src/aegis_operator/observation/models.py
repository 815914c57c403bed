"""Point-in-time evidence bundle for one detected anomaly."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class ContainerSnapshot(_Frozen):
    """One container's state and recent log tail."""

    name: str
    image: str = "unknown"
    restart_count: int = 0
    state: str = "unknown"  # running | waiting:<reason> | terminated:<reason>:exit<code> | unknown
    last_logs: str = ""


class PodSnapshot(_Frozen):
    """Observable state of one pod of the workload."""

    name: str
    phase: str = "Unknown"
    node_name: str | None = None
    containers: tuple[ContainerSnapshot, ...] = ()


class KubeEvent(_Frozen):
    """Kubernetes event trimmed to what the diagnosis needs."""

    type: str  # Normal | Warning
    reason: str
    message: str
    count: int = 1
    last_seen: datetime | None = None
    involved_object: str  # kind/name


class MetricsSnapshot(_Frozen):
    """CPU/memory reading for the workload from Prometheus."""

    cpu_millicores: float
    memory_mib: float
    query_time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ObservabilitySnapshot(_Frozen):
    """Everything collected about a troubled Deployment at a single point in time."""

    deployment_name: str
    namespace: str
    anomaly_reason: str
    collected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    pods: tuple[PodSnapshot, ...] = ()
    events: tuple[KubeEvent, ...] = ()
    metrics: MetricsSnapshot | None = None

    def summary(self) -> str:
        """Compact multi-line description for log output."""
        lines = [
            f"Deployment : {self.namespace}/{self.deployment_name}",
            f"Anomaly    : {self.anomaly_reason}",
            f"Pods       : {len(self.pods)}",
            f"KubeEvents : {len(self.events)}",
        ]
        if self.metrics is not None:
            lines.append(f"CPU (m)    : {self.metrics.cpu_millicores:.2f}")
            lines.append(f"Mem (MiB)  : {self.metrics.memory_mib:.2f}")
        return "\n".join(lines)
