"""Pydantic models for the AegisWatch custom resource."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DEFAULT_RESTART_THRESHOLD = 3


class LLMProvider(str, Enum):
    """Supported diagnosis backends."""

    GROQ = "groq"
    OLLAMA = "ollama"
    OPENAI = "openai"


class Phase(str, Enum):
    """Healing lifecycle phase reported in status."""

    WATCHING = "Watching"
    DEGRADED = "Degraded"
    HEALING = "Healing"
    HEALTHY = "Healthy"


DEFAULT_MODELS = {
    LLMProvider.GROQ: "llama3-70b-8192",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.OLLAMA: "llama3",
}


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TargetRef(_CamelModel):
    """The Deployment an AegisWatch monitors."""

    name: str
    namespace: str | None = None


class AegisWatchSpec(_CamelModel):
    """Owner-edited desired state. Never written by the controller."""

    target_ref: TargetRef
    llm_provider: LLMProvider = LLMProvider.GROQ
    llm_model: str | None = None
    llm_secret_ref: str | None = None
    git_repo: str
    git_secret_ref: str | None = None
    safe_mode: bool = False
    restart_threshold: int | None = None

    @property
    def model_name(self) -> str:
        return self.llm_model or DEFAULT_MODELS[self.llm_provider]

    @property
    def effective_restart_threshold(self) -> int:
        if not self.restart_threshold or self.restart_threshold <= 0:
            return DEFAULT_RESTART_THRESHOLD
        return self.restart_threshold


class Condition(_CamelModel):
    """metav1.Condition equivalent."""

    type: str
    status: str  # True | False | Unknown
    reason: str
    message: str = ""
    last_transition_time: datetime
    observed_generation: int | None = None


class AegisWatchStatus(_CamelModel):
    """Controller-owned observed state."""

    phase: Phase = Phase.WATCHING
    last_diagnosis: str | None = None
    last_pr_url: str | None = Field(default=None, alias="lastPRUrl")
    healing_score: int = 0
    last_anomaly_time: datetime | None = None
    conditions: list[Condition] = Field(default_factory=list)

    def set_condition(
        self,
        type_: str,
        status: bool,
        reason: str,
        message: str = "",
        observed_generation: int | None = None,
    ) -> None:
        """Insert or update a condition; the transition time moves only when status flips."""
        status_str = "True" if status else "False"
        now = datetime.now(timezone.utc).replace(microsecond=0)
        for cond in self.conditions:
            if cond.type == type_:
                if cond.status != status_str:
                    cond.last_transition_time = now
                cond.status = status_str
                cond.reason = reason
                cond.message = message
                cond.observed_generation = observed_generation
                return
        self.conditions.append(
            Condition(
                type=type_,
                status=status_str,
                reason=reason,
                message=message,
                last_transition_time=now,
                observed_generation=observed_generation,
            )
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ObjectMeta(_CamelModel):
    name: str
    namespace: str = "default"
    uid: str | None = None
    resource_version: str | None = None
    generation: int | None = None


class AegisWatch(_CamelModel):
    """One watched workload with its healing policy and last observed status."""

    api_version: str = "ops.aegisoperator.dev/v1alpha1"
    kind: str = "AegisWatch"
    metadata: ObjectMeta
    spec: AegisWatchSpec
    status: AegisWatchStatus = Field(default_factory=AegisWatchStatus)

    @classmethod
    def from_dict(cls, obj: dict[str, Any]) -> AegisWatch:
        data = dict(obj)
        # An unreconciled object has no status (or an empty one).
        if not data.get("status"):
            data.pop("status", None)
        return cls.model_validate(data)

    @property
    def key(self) -> str:
        return f"{self.metadata.namespace}/{self.metadata.name}"

    @property
    def target_namespace(self) -> str:
        return self.spec.target_ref.namespace or self.metadata.namespace

    @property
    def target_name(self) -> str:
        return self.spec.target_ref.name
