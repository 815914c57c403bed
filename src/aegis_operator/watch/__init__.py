"""AegisWatch custom resource: models and API access."""

from aegis_operator.watch.models import (
    AegisWatch,
    AegisWatchSpec,
    AegisWatchStatus,
    Condition,
    LLMProvider,
    Phase,
    TargetRef,
)
from aegis_operator.watch.store import EVENT_NORMAL, EVENT_WARNING, WatchStore

__all__ = [
    "AegisWatch",
    "AegisWatchSpec",
    "AegisWatchStatus",
    "Condition",
    "EVENT_NORMAL",
    "EVENT_WARNING",
    "LLMProvider",
    "Phase",
    "TargetRef",
    "WatchStore",
]
