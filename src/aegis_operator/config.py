"""Configuration and environment for the Aegis operator."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Operator settings loaded from environment and .env."""

    model_config = SettingsConfigDict(
        env_prefix="AEGIS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Kubernetes
    kubeconfig: Path | None = Field(
        default=None,
        description="Path to kubeconfig; in-cluster config is tried first",
    )
    context: str | None = Field(default=None, description="Kubernetes context to use")
    namespace: str | None = Field(
        default=None,
        description="Only reconcile AegisWatch objects in this namespace (all namespaces if unset)",
    )
    crd_group: str = Field(default="ops.aegisoperator.dev", description="AegisWatch API group")
    crd_version: str = Field(default="v1alpha1", description="AegisWatch API version")
    crd_plural: str = Field(default="aegiswatches", description="AegisWatch resource plural")
    kube_timeout: float = Field(default=10.0, gt=0, description="Timeout for Kubernetes API calls (seconds)")

    # Control loop
    requeue_interval: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between reconciles of the same AegisWatch",
    )
    reconcile_timeout: float = Field(
        default=300.0,
        gt=0,
        description="Deadline for one reconcile invocation (seconds)",
    )
    max_concurrent_reconciles: int = Field(default=2, ge=1, le=32, description="Worker pool size")
    resync_period: float = Field(
        default=300.0,
        gt=0,
        description="Seconds between full relists of AegisWatch objects",
    )
    max_healing_attempts: int = Field(
        default=5,
        ge=1,
        description="Healing PRs opened per AegisWatch before manual intervention is required",
    )

    # Observability
    prometheus_url: str | None = Field(
        default=None,
        description="Prometheus base URL; metrics are skipped when unset",
    )
    prometheus_timeout: float = Field(default=5.0, gt=0)
    log_tail_lines: int = Field(default=50, ge=1, description="Log lines fetched per container")

    # LLM
    temperature: float = Field(default=0.1, ge=0.0, le=2.0, description="LLM temperature")
    ollama_url: str = Field(
        default="http://localhost:11434",
        description="Default Ollama base URL when the llm secret has no baseUrl",
    )
    hosted_llm_timeout: float = Field(default=60.0, gt=0, description="Timeout for Groq/OpenAI calls")
    ollama_timeout: float = Field(default=180.0, gt=0, description="Timeout for Ollama calls")

    # GitHub
    github_api_url: str = Field(default="https://api.github.com")
    github_timeout: float = Field(default=15.0, gt=0)

    # Notifications
    webhook_url: str | None = Field(
        default=None,
        description="Slack or Discord incoming webhook; notifications are skipped when unset",
    )
    webhook_timeout: float = Field(default=10.0, gt=0)

    log_level: Literal["debug", "info", "warning", "error"] = Field(default="info")


def get_settings() -> Settings:
    """Return validated settings instance."""
    return Settings()
