"""Observation layer: detect anomalies and collect evidence about a Deployment."""

from aegis_operator.observation.cluster import ClusterReader
from aegis_operator.observation.collector import WorkloadCollector
from aegis_operator.observation.detector import detect_anomaly, selector_from_deployment
from aegis_operator.observation.metrics import PrometheusClient
from aegis_operator.observation.models import (
    ContainerSnapshot,
    KubeEvent,
    MetricsSnapshot,
    ObservabilitySnapshot,
    PodSnapshot,
)

__all__ = [
    "ClusterReader",
    "ContainerSnapshot",
    "KubeEvent",
    "MetricsSnapshot",
    "ObservabilitySnapshot",
    "PodSnapshot",
    "PrometheusClient",
    "WorkloadCollector",
    "detect_anomaly",
    "selector_from_deployment",
]
