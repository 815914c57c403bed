"""Shared fixtures for Aegis operator unit tests.

Nothing here talks to a cluster, an LLM, or GitHub: Kubernetes APIs are
MagicMocks returning real kubernetes client model objects, and HTTP services
are served by httpx.MockTransport handlers.
"""

from __future__ import annotations

import pytest

from aegis_operator.config import Settings
from aegis_operator.context import ReconcileContext


@pytest.fixture()
def ctx() -> ReconcileContext:
    return ReconcileContext.background()


@pytest.fixture()
def settings(monkeypatch: pytest.MonkeyPatch) -> Settings:
    # Keep a developer's environment or .env out of the tests.
    for var in ("AEGIS_WEBHOOK_URL", "AEGIS_PROMETHEUS_URL", "AEGIS_NAMESPACE", "AEGIS_MAX_HEALING_ATTEMPTS"):
        monkeypatch.delenv(var, raising=False)
    return Settings(_env_file=None, requeue_interval=30.0, max_healing_attempts=5)
