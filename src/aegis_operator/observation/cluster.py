"""Read-only access to the workloads, pods, logs, events, and secrets the operator inspects."""

from __future__ import annotations

import base64
from collections.abc import Iterator
from typing import Any

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from aegis_operator.context import ReconcileContext
from aegis_operator.errors import ConfigurationError
from aegis_operator.observation.detector import label_selector, selector_from_deployment


class ClusterReader:
    """Thin wrapper over CoreV1/AppsV1 reads, each bounded by the reconcile context."""

    def __init__(
        self,
        core: client.CoreV1Api,
        apps: client.AppsV1Api,
        request_timeout: float = 10.0,
    ) -> None:
        self._core = core
        self._apps = apps
        self.request_timeout = request_timeout

    def get_deployment(self, namespace: str, name: str, ctx: ReconcileContext) -> Any | None:
        """Return the V1Deployment, or None when it does not exist."""
        try:
            return self._apps.read_namespaced_deployment(
                name=name,
                namespace=namespace,
                _request_timeout=ctx.timeout(self.request_timeout),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def list_pods(self, deployment: Any, ctx: ReconcileContext) -> list[Any]:
        """List the pods selected by the Deployment's matchLabels."""
        selector = selector_from_deployment(deployment)
        pod_list = self._core.list_namespaced_pod(
            namespace=deployment.metadata.namespace,
            label_selector=label_selector(selector),
            _request_timeout=ctx.timeout(self.request_timeout),
        )
        return list(pod_list.items)

    def read_logs(
        self,
        namespace: str,
        pod: str,
        container: str,
        tail_lines: int,
        previous: bool,
        ctx: ReconcileContext,
    ) -> str:
        return self._core.read_namespaced_pod_log(
            name=pod,
            namespace=namespace,
            container=container,
            tail_lines=tail_lines,
            previous=previous,
            timestamps=False,
            _request_timeout=ctx.timeout(self.request_timeout),
        )

    def stream_pods(self, timeout_seconds: int = 60) -> Iterator[tuple[str, Any]]:
        """Yield (event type, V1Pod) for pods in all namespaces; ends after timeout_seconds."""
        w = watch.Watch()
        for event in w.stream(self._core.list_pod_for_all_namespaces, timeout_seconds=timeout_seconds):
            yield event["type"], event["object"]

    def list_events(self, namespace: str, ctx: ReconcileContext) -> list[Any]:
        event_list = self._core.list_namespaced_event(
            namespace=namespace,
            _request_timeout=ctx.timeout(self.request_timeout),
        )
        return list(event_list.items)

    def read_secret_key(self, namespace: str, secret_name: str | None, key: str, ctx: ReconcileContext) -> str:
        """Return one decoded value from a Secret.

        Raises ConfigurationError when the reference is empty, the Secret is
        missing, or the key is absent.
        """
        if not secret_name:
            raise ConfigurationError(f"secret reference for key {key!r} is empty")
        try:
            secret = self._core.read_namespaced_secret(
                name=secret_name,
                namespace=namespace,
                _request_timeout=ctx.timeout(self.request_timeout),
            )
        except ApiException as e:
            if e.status == 404:
                raise ConfigurationError(f"secret {namespace}/{secret_name} not found") from e
            raise
        data = secret.data or {}
        if key not in data:
            raise ConfigurationError(f"secret {namespace}/{secret_name} has no key {key!r}")
        return base64.b64decode(data[key]).decode("utf-8").strip()
