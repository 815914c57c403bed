"""Reconciler: detect, collect, diagnose, remediate, record, notify."""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from aegis_operator.config import Settings
from aegis_operator.context import ReconcileContext
from aegis_operator.diagnosis import Diagnosis, DiagnosisClient, client_from_spec
from aegis_operator.errors import CollectionError, ConfigurationError, DiagnosisError, NotificationError
from aegis_operator.notify import HealingUpdate, NotificationClient
from aegis_operator.observation import ClusterReader, WorkloadCollector, detect_anomaly
from aegis_operator.remediation import (
    GitHubPRClient,
    PRRequest,
    RemediationOutcome,
    remediate,
    should_remediate,
    split_repo,
)
from aegis_operator.watch import EVENT_NORMAL, EVENT_WARNING, AegisWatch, AegisWatchStatus, Phase, WatchStore

logger = logging.getLogger(__name__)

CONDITION_DEGRADED = "Degraded"

# Event reasons
REASON_ANOMALY = "AnomalyDetected"
REASON_MANUAL = "ManualInterventionRequired"
REASON_INVALID_TARGET = "InvalidTarget"
REASON_COLLECTION_FAILED = "CollectionFailed"
REASON_DIAGNOSIS_FAILED = "DiagnosisFailed"
REASON_DIAGNOSIS_COMPLETE = "DiagnosisComplete"
REASON_PR_OPENED = "HealingPROpened"
REASON_REMEDIATION_FAILED = "RemediationFailed"
REASON_REMEDIATION_SKIPPED = "RemediationSkipped"

DiagnoserFactory = Callable[[AegisWatch, ClusterReader, Settings, ReconcileContext], DiagnosisClient]
PRClientFactory = Callable[[str], Any]


@dataclass
class ReconcileResult:
    """What one reconcile invocation observed and did."""

    requeue_after: float | None = None
    phase: Phase | None = None
    anomaly: str = ""
    diagnosis: Diagnosis | None = None
    outcome: RemediationOutcome | None = None
    message: str = ""


class AegisWatchReconciler:
    """Drives one AegisWatch through Watching/Healing/Degraded/Healthy.

    Each call is one trigger. Nothing is retried inline beyond the oracle's
    single retry: every failure persists a phase, emits an Event, and asks to
    be requeued after the fixed interval.
    """

    def __init__(
        self,
        store: WatchStore,
        reader: ClusterReader,
        collector: WorkloadCollector,
        notifier: NotificationClient,
        settings: Settings,
        diagnoser_factory: DiagnoserFactory = client_from_spec,
        pr_client_factory: PRClientFactory | None = None,
    ) -> None:
        self.store = store
        self.reader = reader
        self.collector = collector
        self.notifier = notifier
        self.settings = settings
        self.diagnoser_factory = diagnoser_factory
        self.pr_client_factory = pr_client_factory or self._github_client

    def _github_client(self, token: str) -> GitHubPRClient:
        return GitHubPRClient(token, api_url=self.settings.github_api_url, timeout=self.settings.github_timeout)

    @property
    def interval(self) -> float:
        return self.settings.requeue_interval

    def reconcile(self, namespace: str, name: str, ctx: ReconcileContext) -> ReconcileResult:
        aw = self.store.get(namespace, name, ctx)
        if aw is None:
            logger.debug("AegisWatch %s/%s is gone, nothing to do", namespace, name)
            return ReconcileResult()

        logger.info(
            "Reconciling AegisWatch %s (target=%s/%s, phase=%s)",
            aw.key,
            aw.target_namespace,
            aw.target_name,
            aw.status.phase.value,
        )

        deployment = self.reader.get_deployment(aw.target_namespace, aw.target_name, ctx)
        if deployment is None:
            message = f"target Deployment {aw.target_namespace}/{aw.target_name} not found"
            logger.info("%s, will retry", message)
            return ReconcileResult(requeue_after=self.interval, phase=aw.status.phase, message=message)

        try:
            pods = self.reader.list_pods(deployment, ctx)
        except ConfigurationError as e:
            logger.warning("AegisWatch %s has an invalid target: %s", aw.key, e)
            self.store.record_event(aw, EVENT_WARNING, REASON_INVALID_TARGET, str(e), ctx)
            return ReconcileResult(requeue_after=self.interval, phase=aw.status.phase, message=str(e))

        anomalous, reason = detect_anomaly(deployment, pods, aw.spec.effective_restart_threshold)
        if not anomalous:
            self._mark_healthy(aw, ctx)
            return ReconcileResult(requeue_after=self.interval, phase=Phase.HEALTHY)

        return self._handle_anomaly(aw, deployment, reason, ctx)

    def _mark_healthy(self, aw: AegisWatch, ctx: ReconcileContext) -> None:
        generation = aw.metadata.generation

        def mutate(status: AegisWatchStatus) -> None:
            status.phase = Phase.HEALTHY
            status.set_condition(CONDITION_DEGRADED, False, "NoAnomaly", "no anomaly detected", generation)

        self.store.update_status(aw.metadata.namespace, aw.metadata.name, mutate, ctx)

    def _handle_anomaly(self, aw: AegisWatch, deployment: Any, reason: str, ctx: ReconcileContext) -> ReconcileResult:
        cap = self.settings.max_healing_attempts
        if aw.status.healing_score >= cap:
            message = (
                f"healing score {aw.status.healing_score} reached the cap of {cap}; "
                f"manual intervention required ({reason})"
            )
            logger.warning("AegisWatch %s: %s", aw.key, message)
            self.store.record_event(aw, EVENT_WARNING, REASON_MANUAL, message, ctx)
            return ReconcileResult(
                requeue_after=self.interval, phase=aw.status.phase, anomaly=reason, message=message
            )

        logger.warning("Anomaly detected for %s: %s", aw.key, reason)
        self.store.record_event(aw, EVENT_WARNING, REASON_ANOMALY, reason, ctx)

        try:
            snapshot = self.collector.collect(deployment, reason, ctx)
        except (CollectionError, ConfigurationError) as e:
            return self._fail(aw, reason, REASON_COLLECTION_FAILED, str(e), ctx)
        logger.debug("Observability snapshot for %s:\n%s", aw.key, snapshot.summary())

        anomaly_time = datetime.now(timezone.utc).replace(microsecond=0)

        def mark_healing(status: AegisWatchStatus) -> None:
            status.phase = Phase.HEALING
            status.last_anomaly_time = anomaly_time

        updated = self.store.update_status(aw.metadata.namespace, aw.metadata.name, mark_healing, ctx)
        if updated is None:
            return ReconcileResult()
        aw = updated

        try:
            with closing(self.diagnoser_factory(aw, self.reader, self.settings, ctx)) as diagnoser:
                diagnosis = diagnoser.diagnose(snapshot, ctx)
        except (DiagnosisError, ConfigurationError) as e:
            return self._fail(aw, reason, REASON_DIAGNOSIS_FAILED, str(e), ctx)

        logger.info("Diagnosis for %s: %s", aw.key, diagnosis.describe())
        self.store.record_event(aw, EVENT_NORMAL, REASON_DIAGNOSIS_COMPLETE, diagnosis.describe(), ctx)

        outcome = None
        allowed, skip_reason = should_remediate(aw.spec.safe_mode, diagnosis.patch, aw.status.healing_score, cap)
        if allowed:
            outcome = self._remediate(aw, diagnosis, ctx)
            if outcome.success:
                self.store.record_event(aw, EVENT_NORMAL, REASON_PR_OPENED, outcome.message, ctx)
            else:
                self.store.record_event(aw, EVENT_WARNING, REASON_REMEDIATION_FAILED, outcome.message, ctx)
        else:
            logger.info("No healing PR for %s: %s", aw.key, skip_reason)
            if aw.spec.safe_mode and diagnosis.has_patch:
                logger.info("Suggested patch for %s (safe mode):\n%s", aw.key, diagnosis.patch)
                self.store.record_event(aw, EVENT_NORMAL, REASON_REMEDIATION_SKIPPED, skip_reason, ctx)

        generation = aw.metadata.generation

        def record_outcome(status: AegisWatchStatus) -> None:
            status.phase = Phase.DEGRADED
            status.last_diagnosis = diagnosis.describe()
            if outcome is not None and outcome.success:
                status.last_pr_url = outcome.pr_url
                status.healing_score += 1
            status.set_condition(CONDITION_DEGRADED, True, REASON_ANOMALY, reason, generation)

        updated = self.store.update_status(aw.metadata.namespace, aw.metadata.name, record_outcome, ctx)
        score = updated.status.healing_score if updated is not None else aw.status.healing_score
        self._notify(aw, diagnosis, outcome, score, ctx)

        return ReconcileResult(
            requeue_after=self.interval,
            phase=Phase.DEGRADED,
            anomaly=reason,
            diagnosis=diagnosis,
            outcome=outcome,
            message=outcome.message if outcome is not None else skip_reason,
        )

    def _remediate(self, aw: AegisWatch, diagnosis: Diagnosis, ctx: ReconcileContext) -> RemediationOutcome:
        try:
            owner, repo = split_repo(aw.spec.git_repo)
            token = self.reader.read_secret_key(aw.metadata.namespace, aw.spec.git_secret_ref, "token", ctx)
        except ConfigurationError as e:
            logger.warning("Cannot open healing PR for %s: %s", aw.key, e)
            return RemediationOutcome(success=False, message=str(e))

        request = PRRequest(
            owner=owner,
            repo=repo,
            deployment_name=aw.target_name,
            namespace=aw.target_namespace,
            diagnosis=diagnosis,
            healing_score=aw.status.healing_score,
        )
        with closing(self.pr_client_factory(token)) as pr_client:
            return remediate(request, pr_client, ctx)

    def _fail(
        self, aw: AegisWatch, anomaly: str, event_reason: str, message: str, ctx: ReconcileContext
    ) -> ReconcileResult:
        logger.warning("%s for %s: %s", event_reason, aw.key, message)
        self.store.record_event(aw, EVENT_WARNING, event_reason, message, ctx)
        generation = aw.metadata.generation

        def mark_degraded(status: AegisWatchStatus) -> None:
            status.phase = Phase.DEGRADED
            status.set_condition(CONDITION_DEGRADED, True, event_reason, message[:512], generation)

        self.store.update_status(aw.metadata.namespace, aw.metadata.name, mark_degraded, ctx)
        return ReconcileResult(requeue_after=self.interval, phase=Phase.DEGRADED, anomaly=anomaly, message=message)

    def _notify(
        self,
        aw: AegisWatch,
        diagnosis: Diagnosis,
        outcome: RemediationOutcome | None,
        score: int,
        ctx: ReconcileContext,
    ) -> None:
        if not self.notifier.enabled:
            return
        update = HealingUpdate(
            deployment_name=aw.target_name,
            namespace=aw.target_namespace,
            diagnosis=diagnosis,
            pr_url=outcome.pr_url if outcome is not None and outcome.success else None,
            healing_score=score,
            safe_mode=aw.spec.safe_mode,
        )
        try:
            self.notifier.send_healing_update(update, ctx)
        except NotificationError as e:
            logger.warning("Notification for %s failed: %s", aw.key, e)
