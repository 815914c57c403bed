"""Tests for event routing and requeue scheduling in the controller manager."""

from __future__ import annotations

from unittest.mock import MagicMock

from aegis_operator.config import Settings
from aegis_operator.controller import ControllerManager, ReconcileResult
from aegis_operator.errors import ReconcileCancelled
from aegis_operator.watch import AegisWatch, Phase


def _raw(name: str = "payments-watch", namespace: str = "ops", target_ns: str = "shop", generation: int = 1) -> dict:
    return {
        "metadata": {"name": name, "namespace": namespace, "generation": generation},
        "spec": {"targetRef": {"name": "payments", "namespace": target_ns}, "gitRepo": "acme/infra"},
    }


def _manager(settings: Settings, watches: list[dict] | None = None) -> ControllerManager:
    store = MagicMock()
    store.list_watches.return_value = [AegisWatch.from_dict(w) for w in (watches or [])]
    reconciler = MagicMock()
    reconciler.reconcile.return_value = ReconcileResult(requeue_after=settings.requeue_interval, phase=Phase.HEALTHY)
    return ControllerManager(reconciler, store, MagicMock(), settings)


def _pod(namespace: str) -> MagicMock:
    pod = MagicMock()
    pod.metadata.namespace = namespace
    return pod


class TestWatchEvents:
    def test_added_enqueues(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        assert m.queue.get(timeout=1) == "ops/payments-watch"

    def test_status_only_update_ignored(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        m.queue.done(m.queue.get(timeout=1))
        m.handle_watch_event("MODIFIED", _raw())
        assert len(m.queue) == 0

    def test_spec_change_enqueues(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        m.queue.done(m.queue.get(timeout=1))
        m.handle_watch_event("MODIFIED", _raw(generation=2))
        assert m.queue.get(timeout=1) == "ops/payments-watch"

    def test_deleted_untracks(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        m.handle_watch_event("DELETED", _raw())
        assert m.keys_for_namespace("shop") == []

    def test_malformed_object_ignored(self, settings: Settings) -> None:
        m = _manager(settings)
        raw = _raw()
        del raw["spec"]["gitRepo"]
        m.handle_watch_event("ADDED", raw)
        assert len(m.queue) == 0


class TestPodEvents:
    def test_pod_in_target_namespace_enqueues_watch(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        m.queue.done(m.queue.get(timeout=1))
        m.handle_pod_event("MODIFIED", _pod("shop"))
        assert m.queue.get(timeout=1) == "ops/payments-watch"

    def test_pod_elsewhere_ignored(self, settings: Settings) -> None:
        m = _manager(settings)
        m.handle_watch_event("ADDED", _raw())
        m.queue.done(m.queue.get(timeout=1))
        m.handle_pod_event("MODIFIED", _pod("kube-system"))
        assert len(m.queue) == 0


class TestProcess:
    def test_requeues_after_interval(self, settings: Settings) -> None:
        m = _manager(settings)
        m.queue.add_after = MagicMock()
        m.process("ops/payments-watch")
        m.reconciler.reconcile.assert_called_once()
        assert m.reconciler.reconcile.call_args.args[:2] == ("ops", "payments-watch")
        m.queue.add_after.assert_called_once_with("ops/payments-watch", settings.requeue_interval)

    def test_deleted_watch_not_requeued(self, settings: Settings) -> None:
        m = _manager(settings)
        m.reconciler.reconcile.return_value = ReconcileResult()
        m.queue.add_after = MagicMock()
        m.process("ops/payments-watch")
        m.queue.add_after.assert_not_called()

    def test_unexpected_error_still_requeues(self, settings: Settings) -> None:
        m = _manager(settings)
        m.reconciler.reconcile.side_effect = RuntimeError("boom")
        m.queue.add_after = MagicMock()
        assert m.process("ops/payments-watch") is None
        m.queue.add_after.assert_called_once_with("ops/payments-watch", settings.requeue_interval)

    def test_cancelled_during_shutdown_not_requeued(self, settings: Settings) -> None:
        m = _manager(settings)
        m.reconciler.reconcile.side_effect = ReconcileCancelled("operator is shutting down")
        m.queue.add_after = MagicMock()
        m.stop_event.set()
        m.process("ops/payments-watch")
        m.queue.add_after.assert_not_called()


class TestResyncAndRunOnce:
    def test_resync_enqueues_all_and_drops_stale(self, settings: Settings) -> None:
        m = _manager(settings, [_raw("a"), _raw("b")])
        m.handle_watch_event("ADDED", _raw("gone"))
        m.queue.done(m.queue.get(timeout=1))
        m.resync()
        assert sorted([m.queue.get(timeout=1), m.queue.get(timeout=1)]) == ["ops/a", "ops/b"]
        assert sorted(m.keys_for_namespace("shop")) == ["ops/a", "ops/b"]

    def test_run_once_reconciles_each_watch(self, settings: Settings) -> None:
        m = _manager(settings, [_raw("a"), _raw("b")])
        m.reconciler.reconcile.side_effect = [RuntimeError("boom"), ReconcileResult(phase=Phase.HEALTHY)]
        results = m.run_once()
        assert [aw.key for aw, _ in results] == ["ops/a", "ops/b"]
        assert results[0][1] is None
        assert results[1][1].phase == Phase.HEALTHY
