"""Read AegisWatch objects, write their status, and emit Kubernetes events for them."""

from __future__ import annotations

import copy
import logging
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any

from kubernetes import client, watch
from kubernetes.client.rest import ApiException

from aegis_operator.context import ReconcileContext
from aegis_operator.errors import StatusConflictError
from aegis_operator.watch.models import AegisWatch, AegisWatchStatus

logger = logging.getLogger(__name__)

EVENT_COMPONENT = "aegis-operator"
# In-cycle retries of a status write rejected with 409 Conflict
STATUS_WRITE_ATTEMPTS = 3

EVENT_NORMAL = "Normal"
EVENT_WARNING = "Warning"


class WatchStore:
    """Access to the AegisWatch custom resource and its status subresource.

    Status writes are read-modify-write against the latest resourceVersion,
    so a concurrent writer makes the API server reject the write with 409
    instead of silently losing one of the updates.
    """

    def __init__(
        self,
        custom: client.CustomObjectsApi,
        core: client.CoreV1Api,
        group: str = "ops.aegisoperator.dev",
        version: str = "v1alpha1",
        plural: str = "aegiswatches",
        request_timeout: float = 10.0,
    ) -> None:
        self._custom = custom
        self._core = core
        self.group = group
        self.version = version
        self.plural = plural
        self.request_timeout = request_timeout

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    def _get_raw(self, namespace: str, name: str, ctx: ReconcileContext) -> dict[str, Any] | None:
        try:
            return self._custom.get_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                name=name,
                _request_timeout=ctx.timeout(self.request_timeout),
            )
        except ApiException as e:
            if e.status == 404:
                return None
            raise

    def get(self, namespace: str, name: str, ctx: ReconcileContext) -> AegisWatch | None:
        """Return the AegisWatch, or None when it has been deleted."""
        raw = self._get_raw(namespace, name, ctx)
        return AegisWatch.from_dict(raw) if raw is not None else None

    def list_watches(self, namespace: str | None = None) -> list[AegisWatch]:
        if namespace:
            resp = self._custom.list_namespaced_custom_object(
                group=self.group,
                version=self.version,
                namespace=namespace,
                plural=self.plural,
                _request_timeout=self.request_timeout,
            )
        else:
            resp = self._custom.list_cluster_custom_object(
                group=self.group,
                version=self.version,
                plural=self.plural,
                _request_timeout=self.request_timeout,
            )
        watches = []
        for item in resp.get("items", []):
            try:
                watches.append(AegisWatch.from_dict(item))
            except ValueError as e:
                meta = item.get("metadata", {})
                logger.warning(
                    "Skipping malformed AegisWatch %s/%s: %s", meta.get("namespace"), meta.get("name"), e
                )
        return watches

    def stream(self, namespace: str | None = None, timeout_seconds: int = 60) -> Iterator[tuple[str, dict[str, Any]]]:
        """Yield (event type, raw object) from a watch; ends after timeout_seconds."""
        w = watch.Watch()
        if namespace:
            func: Callable[..., Any] = self._custom.list_namespaced_custom_object
            kwargs: dict[str, Any] = {"namespace": namespace}
        else:
            func = self._custom.list_cluster_custom_object
            kwargs = {}
        for event in w.stream(
            func,
            group=self.group,
            version=self.version,
            plural=self.plural,
            timeout_seconds=timeout_seconds,
            **kwargs,
        ):
            yield event["type"], event["object"]

    def update_status(
        self,
        namespace: str,
        name: str,
        mutate: Callable[[AegisWatchStatus], None],
        ctx: ReconcileContext,
    ) -> AegisWatch | None:
        """Re-read the object, apply mutate to its status, and write it back.

        Returns the updated AegisWatch (None if it was deleted meanwhile). The
        write is skipped when mutate leaves the status unchanged.
        """
        for attempt in range(1, STATUS_WRITE_ATTEMPTS + 1):
            raw = self._get_raw(namespace, name, ctx)
            if raw is None:
                return None
            current = AegisWatch.from_dict(raw)
            status = current.status.model_copy(deep=True)
            mutate(status)
            if status == current.status:
                return current

            body = copy.deepcopy(raw)
            body["status"] = status.to_dict()
            try:
                updated = self._custom.replace_namespaced_custom_object_status(
                    group=self.group,
                    version=self.version,
                    namespace=namespace,
                    plural=self.plural,
                    name=name,
                    body=body,
                    _request_timeout=ctx.timeout(self.request_timeout),
                )
            except ApiException as e:
                if e.status == 409:
                    logger.debug(
                        "Status write for %s/%s conflicted (attempt %d/%d)",
                        namespace,
                        name,
                        attempt,
                        STATUS_WRITE_ATTEMPTS,
                    )
                    continue
                if e.status == 404:
                    return None
                raise
            return AegisWatch.from_dict(updated)
        raise StatusConflictError(
            f"status of {namespace}/{name} changed concurrently {STATUS_WRITE_ATTEMPTS} times"
        )

    def record_event(
        self,
        aw: AegisWatch,
        event_type: str,
        reason: str,
        message: str,
        ctx: ReconcileContext | None = None,
    ) -> None:
        """Create a user-visible Event on the AegisWatch. Failures are logged only."""
        now = datetime.now(timezone.utc)
        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(
                generate_name=f"{aw.metadata.name}.",
                namespace=aw.metadata.namespace,
            ),
            involved_object=client.V1ObjectReference(
                api_version=self.api_version,
                kind=aw.kind,
                name=aw.metadata.name,
                namespace=aw.metadata.namespace,
                uid=aw.metadata.uid,
                resource_version=aw.metadata.resource_version,
            ),
            type=event_type,
            reason=reason,
            message=message[:1024],
            first_timestamp=now,
            last_timestamp=now,
            count=1,
            source=client.V1EventSource(component=EVENT_COMPONENT),
            reporting_component=EVENT_COMPONENT,
        )
        timeout = self.request_timeout
        if ctx is not None and not ctx.cancelled:
            timeout = ctx.timeout(self.request_timeout)
        try:
            self._core.create_namespaced_event(
                namespace=aw.metadata.namespace,
                body=body,
                _request_timeout=timeout,
            )
        except ApiException as e:
            logger.warning("Failed to record %s event on %s: %s", reason, aw.key, e.reason)
