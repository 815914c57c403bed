"""Tests for AegisWatch models and the status/event store."""

from __future__ import annotations

import copy
from unittest.mock import MagicMock

import pytest
from kubernetes.client.rest import ApiException

from aegis_operator.context import ReconcileContext
from aegis_operator.errors import StatusConflictError
from aegis_operator.watch import AegisWatch, AegisWatchStatus, LLMProvider, Phase, WatchStore
from aegis_operator.watch.store import STATUS_WRITE_ATTEMPTS


def _raw(status: dict | None = None, **spec_overrides) -> dict:
    spec = {
        "targetRef": {"name": "payments", "namespace": "shop"},
        "llmProvider": "ollama",
        "gitRepo": "acme/infra",
        "gitSecretRef": "gh-token",
        "safeMode": False,
    }
    spec.update(spec_overrides)
    obj = {
        "apiVersion": "ops.aegisoperator.dev/v1alpha1",
        "kind": "AegisWatch",
        "metadata": {
            "name": "payments-watch",
            "namespace": "ops",
            "uid": "1234",
            "resourceVersion": "100",
            "generation": 2,
        },
        "spec": spec,
    }
    if status is not None:
        obj["status"] = status
    return obj


def _store(custom: MagicMock, core: MagicMock | None = None) -> WatchStore:
    return WatchStore(custom, core or MagicMock())


class TestModels:
    def test_from_dict_without_status(self) -> None:
        aw = AegisWatch.from_dict(_raw())
        assert aw.key == "ops/payments-watch"
        assert aw.target_namespace == "shop"
        assert aw.target_name == "payments"
        assert aw.spec.llm_provider == LLMProvider.OLLAMA
        assert aw.spec.model_name == "llama3"
        assert aw.status.phase == Phase.WATCHING
        assert aw.status.healing_score == 0

    def test_target_namespace_defaults_to_watch_namespace(self) -> None:
        aw = AegisWatch.from_dict(_raw(targetRef={"name": "payments"}))
        assert aw.target_namespace == "ops"

    def test_restart_threshold_default(self) -> None:
        assert AegisWatch.from_dict(_raw()).spec.effective_restart_threshold == 3
        assert AegisWatch.from_dict(_raw(restartThreshold=7)).spec.effective_restart_threshold == 7
        assert AegisWatch.from_dict(_raw(restartThreshold=0)).spec.effective_restart_threshold == 3

    def test_missing_git_repo_is_invalid(self) -> None:
        raw = _raw()
        del raw["spec"]["gitRepo"]
        with pytest.raises(ValueError):
            AegisWatch.from_dict(raw)

    def test_status_round_trips_wire_names(self) -> None:
        status = AegisWatchStatus.model_validate(
            {"phase": "Degraded", "lastPRUrl": "https://github.com/acme/infra/pull/1", "healingScore": 1}
        )
        wire = status.to_dict()
        assert wire["lastPRUrl"] == "https://github.com/acme/infra/pull/1"
        assert wire["healingScore"] == 1
        assert wire["phase"] == "Degraded"
        assert "lastDiagnosis" not in wire

    def test_condition_transition_time_only_moves_on_flip(self) -> None:
        status = AegisWatchStatus()
        status.set_condition("Degraded", True, "AnomalyDetected", "restarts")
        first = status.conditions[0].last_transition_time
        status.conditions[0].last_transition_time = first.replace(year=2020)
        status.set_condition("Degraded", True, "AnomalyDetected", "still restarting")
        assert status.conditions[0].last_transition_time.year == 2020
        status.set_condition("Degraded", False, "NoAnomaly")
        assert status.conditions[0].last_transition_time.year != 2020
        assert status.conditions[0].status == "False"
        assert len(status.conditions) == 1


class TestUpdateStatus:
    def test_writes_mutated_status(self, ctx: ReconcileContext) -> None:
        custom = MagicMock()
        custom.get_namespaced_custom_object.return_value = _raw()
        custom.replace_namespaced_custom_object_status.side_effect = lambda **kw: kw["body"]

        def mutate(status: AegisWatchStatus) -> None:
            status.phase = Phase.HEALTHY

        updated = _store(custom).update_status("ops", "payments-watch", mutate, ctx)

        assert updated.status.phase == Phase.HEALTHY
        body = custom.replace_namespaced_custom_object_status.call_args.kwargs["body"]
        assert body["metadata"]["resourceVersion"] == "100"
        assert body["status"]["phase"] == "Healthy"
        assert body["spec"]["gitRepo"] == "acme/infra"

    def test_unchanged_status_skips_write(self, ctx: ReconcileContext) -> None:
        custom = MagicMock()
        custom.get_namespaced_custom_object.return_value = _raw(status={"phase": "Healthy"})

        def mutate(status: AegisWatchStatus) -> None:
            status.phase = Phase.HEALTHY

        _store(custom).update_status("ops", "payments-watch", mutate, ctx)
        custom.replace_namespaced_custom_object_status.assert_not_called()

    def test_conflict_rereads_and_retries(self, ctx: ReconcileContext) -> None:
        custom = MagicMock()
        stale = _raw(status={"healingScore": 1})
        fresh = copy.deepcopy(stale)
        fresh["metadata"]["resourceVersion"] = "101"
        fresh["status"]["healingScore"] = 2
        custom.get_namespaced_custom_object.side_effect = [stale, fresh]
        custom.replace_namespaced_custom_object_status.side_effect = [
            ApiException(status=409, reason="Conflict"),
            fresh,
        ]

        def bump(status: AegisWatchStatus) -> None:
            status.healing_score += 1

        _store(custom).update_status("ops", "payments-watch", bump, ctx)

        second = custom.replace_namespaced_custom_object_status.call_args_list[1].kwargs["body"]
        assert second["metadata"]["resourceVersion"] == "101"
        assert second["status"]["healingScore"] == 3

    def test_persistent_conflict_raises(self, ctx: ReconcileContext) -> None:
        custom = MagicMock()
        custom.get_namespaced_custom_object.return_value = _raw()
        custom.replace_namespaced_custom_object_status.side_effect = ApiException(status=409, reason="Conflict")

        def mutate(status: AegisWatchStatus) -> None:
            status.phase = Phase.DEGRADED

        with pytest.raises(StatusConflictError):
            _store(custom).update_status("ops", "payments-watch", mutate, ctx)
        assert custom.replace_namespaced_custom_object_status.call_count == STATUS_WRITE_ATTEMPTS

    def test_deleted_object_returns_none(self, ctx: ReconcileContext) -> None:
        custom = MagicMock()
        custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")
        assert _store(custom).update_status("ops", "payments-watch", lambda s: None, ctx) is None


class TestListAndEvents:
    def test_list_skips_malformed(self) -> None:
        custom = MagicMock()
        bad = _raw()
        del bad["spec"]["targetRef"]
        custom.list_cluster_custom_object.return_value = {"items": [_raw(), bad]}
        watches = _store(custom).list_watches()
        assert [w.key for w in watches] == ["ops/payments-watch"]

    def test_list_namespaced(self) -> None:
        custom = MagicMock()
        custom.list_namespaced_custom_object.return_value = {"items": []}
        _store(custom).list_watches("ops")
        assert custom.list_namespaced_custom_object.call_args.kwargs["namespace"] == "ops"

    def test_record_event(self, ctx: ReconcileContext) -> None:
        core = MagicMock()
        aw = AegisWatch.from_dict(_raw())
        _store(MagicMock(), core).record_event(aw, "Warning", "AnomalyDetected", "restarts", ctx)

        body = core.create_namespaced_event.call_args.kwargs["body"]
        assert core.create_namespaced_event.call_args.kwargs["namespace"] == "ops"
        assert body.reason == "AnomalyDetected"
        assert body.type == "Warning"
        assert body.involved_object.kind == "AegisWatch"
        assert body.involved_object.uid == "1234"
        assert body.source.component == "aegis-operator"

    def test_record_event_failure_is_swallowed(self, ctx: ReconcileContext) -> None:
        core = MagicMock()
        core.create_namespaced_event.side_effect = ApiException(status=403, reason="Forbidden")
        aw = AegisWatch.from_dict(_raw())
        _store(MagicMock(), core).record_event(aw, "Normal", "DiagnosisComplete", "done", ctx)
