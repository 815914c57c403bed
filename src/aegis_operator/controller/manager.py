"""Controller manager: watch streams, periodic resync, and the reconcile worker pool."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from typing import Any

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError

from aegis_operator.config import Settings
from aegis_operator.context import ReconcileContext
from aegis_operator.controller.queue import WorkQueue
from aegis_operator.controller.reconciler import AegisWatchReconciler, ReconcileResult
from aegis_operator.errors import ReconcileCancelled
from aegis_operator.kube import KubeClients
from aegis_operator.notify import NotificationClient
from aegis_operator.observation import ClusterReader, PrometheusClient, WorkloadCollector
from aegis_operator.watch import AegisWatch, WatchStore

logger = logging.getLogger(__name__)

WATCH_TIMEOUT_SECONDS = 60
MAX_WATCH_BACKOFF = 60.0


def _key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}"


class ControllerManager:
    """Feeds AegisWatch keys to a bounded pool of reconcile workers.

    Triggers: AegisWatch creation or spec (generation) change, any pod change
    in a watched target namespace, the periodic resync, and the requeue
    interval returned by each reconcile. The WorkQueue guarantees a key is
    reconciled by at most one worker at a time.
    """

    def __init__(
        self,
        reconciler: AegisWatchReconciler,
        store: WatchStore,
        reader: ClusterReader,
        settings: Settings,
    ) -> None:
        self.reconciler = reconciler
        self.store = store
        self.reader = reader
        self.settings = settings
        self.queue = WorkQueue()
        self.stop_event = threading.Event()
        self._lock = threading.Lock()
        # watch key -> (target namespace, last seen generation)
        self._tracked: dict[str, tuple[str, int | None]] = {}
        self._threads: list[threading.Thread] = []

    def track(self, aw: AegisWatch) -> bool:
        """Remember aw's target; returns True if it is new or its spec changed."""
        with self._lock:
            previous = self._tracked.get(aw.key)
            self._tracked[aw.key] = (aw.target_namespace, aw.metadata.generation)
        return previous is None or previous[1] != aw.metadata.generation

    def untrack(self, key: str) -> None:
        with self._lock:
            self._tracked.pop(key, None)
        self.queue.forget(key)

    def keys_for_namespace(self, namespace: str) -> list[str]:
        with self._lock:
            return [key for key, (target_ns, _) in self._tracked.items() if target_ns == namespace]

    def handle_watch_event(self, event_type: str, obj: dict[str, Any]) -> None:
        meta = obj.get("metadata") or {}
        key = _key(meta.get("namespace", "default"), meta.get("name", ""))
        if event_type == "DELETED":
            logger.info("AegisWatch %s deleted", key)
            self.untrack(key)
            return
        try:
            aw = AegisWatch.from_dict(obj)
        except ValueError as e:
            logger.warning("Ignoring malformed AegisWatch %s: %s", key, e)
            return
        # Status-only updates (our own writes) do not bump the generation.
        if self.track(aw) or event_type == "ADDED":
            self.queue.add(aw.key)

    def handle_pod_event(self, event_type: str, pod: Any) -> None:
        namespace = getattr(pod.metadata, "namespace", None)
        if namespace:
            for key in self.keys_for_namespace(namespace):
                self.queue.add(key)

    def resync(self) -> None:
        """Relist every AegisWatch and enqueue it."""
        watches = self.store.list_watches(self.settings.namespace)
        seen = set()
        for aw in watches:
            seen.add(aw.key)
            self.track(aw)
            self.queue.add(aw.key)
        with self._lock:
            stale = [key for key in self._tracked if key not in seen]
        for key in stale:
            self.untrack(key)
        logger.debug("Resynced %d AegisWatch objects", len(watches))

    def process(self, key: str) -> ReconcileResult | None:
        """Run one reconcile for key and schedule its requeue."""
        namespace, _, name = key.partition("/")
        ctx = ReconcileContext.with_timeout(self.settings.reconcile_timeout, self.stop_event)
        result: ReconcileResult | None = None
        requeue_after: float | None = self.settings.requeue_interval
        try:
            result = self.reconciler.reconcile(namespace, name, ctx)
            requeue_after = result.requeue_after
        except ReconcileCancelled as e:
            logger.info("Reconcile of %s cancelled: %s", key, e)
        except Exception:
            logger.exception("Reconcile of %s failed, retrying in %.0fs", key, requeue_after)
        if requeue_after and not self.stop_event.is_set():
            self.queue.add_after(key, requeue_after)
        return result

    def _worker(self) -> None:
        while True:
            key = self.queue.get()
            if key is None:
                return
            try:
                self.process(key)
            finally:
                self.queue.done(key)

    def _run_watch(
        self,
        name: str,
        stream: Callable[[], Iterator[tuple[str, Any]]],
        handler: Callable[[str, Any], None],
    ) -> None:
        backoff = 1.0
        while not self.stop_event.is_set():
            try:
                for event_type, obj in stream():
                    if self.stop_event.is_set():
                        return
                    handler(event_type, obj)
                backoff = 1.0
            except (ApiException, HTTPError) as e:
                logger.warning("%s watch interrupted: %s; reconnecting in %.0fs", name, e, backoff)
                self.stop_event.wait(backoff)
                backoff = min(backoff * 2, MAX_WATCH_BACKOFF)

    def _resync_loop(self) -> None:
        while not self.stop_event.wait(self.settings.resync_period):
            try:
                self.resync()
            except (ApiException, HTTPError) as e:
                logger.warning("Resync failed: %s", e)

    def _spawn(self, name: str, target: Callable[..., None], *args: Any) -> None:
        thread = threading.Thread(target=target, args=args, name=name, daemon=True)
        thread.start()
        self._threads.append(thread)

    def start(self) -> None:
        self.resync()
        for i in range(self.settings.max_concurrent_reconciles):
            self._spawn(f"reconcile-worker-{i}", self._worker)
        self._spawn(
            "aegiswatch-watch",
            self._run_watch,
            "AegisWatch",
            lambda: self.store.stream(self.settings.namespace, WATCH_TIMEOUT_SECONDS),
            self.handle_watch_event,
        )
        self._spawn(
            "pod-watch",
            self._run_watch,
            "Pod",
            lambda: self.reader.stream_pods(WATCH_TIMEOUT_SECONDS),
            self.handle_pod_event,
        )
        self._spawn("resync", self._resync_loop)
        logger.info(
            "Controller started: %d workers, requeue every %.0fs",
            self.settings.max_concurrent_reconciles,
            self.settings.requeue_interval,
        )

    def stop(self) -> None:
        self.stop_event.set()
        self.queue.shutdown()

    def wait(self, timeout: float | None = None) -> None:
        for thread in self._threads:
            if thread.name.startswith("reconcile-worker"):
                thread.join(timeout)

    def run(self) -> None:
        """Start and block until stop() is called."""
        self.start()
        self.stop_event.wait()
        self.queue.shutdown()
        self.wait(timeout=self.settings.reconcile_timeout)
        logger.info("Controller stopped")

    def run_once(self) -> list[tuple[AegisWatch, ReconcileResult | None]]:
        """Reconcile every AegisWatch once, sequentially, without starting any threads."""
        results = []
        for aw in self.store.list_watches(self.settings.namespace):
            ctx = ReconcileContext.with_timeout(self.settings.reconcile_timeout, self.stop_event)
            try:
                results.append((aw, self.reconciler.reconcile(aw.metadata.namespace, aw.metadata.name, ctx)))
            except Exception:
                logger.exception("Reconcile of %s failed", aw.key)
                results.append((aw, None))
        return results


def build_manager(settings: Settings, clients: KubeClients | None = None) -> ControllerManager:
    """Wire the operator's components from settings."""
    clients = clients or KubeClients.connect(
        str(settings.kubeconfig) if settings.kubeconfig else None, settings.context
    )
    store = WatchStore(
        clients.custom,
        clients.core,
        group=settings.crd_group,
        version=settings.crd_version,
        plural=settings.crd_plural,
        request_timeout=settings.kube_timeout,
    )
    reader = ClusterReader(clients.core, clients.apps, request_timeout=settings.kube_timeout)
    collector = WorkloadCollector(
        reader,
        prometheus=PrometheusClient(settings.prometheus_url, timeout=settings.prometheus_timeout),
        log_tail_lines=settings.log_tail_lines,
    )
    notifier = NotificationClient(settings.webhook_url, timeout=settings.webhook_timeout)
    reconciler = AegisWatchReconciler(store, reader, collector, notifier, settings)
    return ControllerManager(reconciler, store, reader, settings)
