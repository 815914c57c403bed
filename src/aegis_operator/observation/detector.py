"""Anomaly detection over the current state of a Deployment and its pods."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from aegis_operator.errors import ConfigurationError
from aegis_operator.watch.models import DEFAULT_RESTART_THRESHOLD

_WAITING_FAILURE_REASONS = frozenset({"CrashLoopBackOff", "OOMKilled"})


def selector_from_deployment(deployment: Any) -> dict[str, str]:
    """Return the Deployment's pod matchLabels.

    Raises ConfigurationError when the Deployment has no matchLabels selector.
    """
    selector = getattr(deployment.spec, "selector", None) if deployment.spec else None
    labels = getattr(selector, "match_labels", None) if selector else None
    if not labels:
        meta = deployment.metadata
        raise ConfigurationError(f"deployment {meta.namespace}/{meta.name} has no matchLabels selector")
    return dict(labels)


def label_selector(labels: dict[str, str]) -> str:
    """Render matchLabels as a label selector query string."""
    return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))


def detect_anomaly(
    deployment: Any,
    pods: Iterable[Any],
    restart_threshold: int | None = DEFAULT_RESTART_THRESHOLD,
) -> tuple[bool, str]:
    """Scan the Deployment's pods for known failure conditions.

    Returns (True, reason) for the first match, (False, "") otherwise. The
    evaluation is a pure function of what the cluster reports right now.
    """
    threshold = restart_threshold if restart_threshold and restart_threshold > 0 else DEFAULT_RESTART_THRESHOLD

    for pod in pods:
        meta = pod.metadata
        for cs in getattr(pod.status, "container_statuses", None) or []:
            restarts = cs.restart_count or 0
            if restarts >= threshold:
                return True, (
                    f'pod {meta.namespace}/{meta.name} container "{cs.name}" has restarted {restarts} times'
                )
            waiting = cs.state.waiting if cs.state else None
            if waiting is not None and waiting.reason in _WAITING_FAILURE_REASONS:
                return True, f'pod {meta.namespace}/{meta.name} container "{cs.name}" is in {waiting.reason}'
            terminated = cs.last_state.terminated if cs.last_state else None
            if terminated is not None and terminated.reason == "OOMKilled":
                return True, f'pod {meta.namespace}/{meta.name} container "{cs.name}" was OOMKilled'

    unavailable = (deployment.status.unavailable_replicas or 0) if deployment.status else 0
    if unavailable > 0:
        meta = deployment.metadata
        return True, f"deployment {meta.namespace}/{meta.name} has {unavailable} unavailable replicas"

    return False, ""
