"""LLM-based root cause analysis over observability snapshots."""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from typing import Any

import httpx
import openai
from openai import OpenAI

from aegis_operator.config import Settings
from aegis_operator.context import ReconcileContext
from aegis_operator.diagnosis.models import Diagnosis
from aegis_operator.diagnosis.prompts import SYSTEM_PROMPT, build_user_prompt
from aegis_operator.errors import ConfigurationError, DiagnosisError
from aegis_operator.observation.cluster import ClusterReader
from aegis_operator.observation.models import ObservabilitySnapshot
from aegis_operator.watch.models import AegisWatch, LLMProvider

logger = logging.getLogger(__name__)

GROQ_BASE_URL = "https://api.groq.com/openai/v1"
# One initial call plus exactly one retry
DIAGNOSIS_ATTEMPTS = 2


def _parse_llm_json(raw: str) -> Any:
    """Extract JSON from model output, tolerating markdown code blocks."""
    text = raw.strip()
    if text.startswith("```"):
        match = re.search(r"```(?:json)?\s*([\s\S]*?)```", text)
        if match:
            text = match.group(1).strip()
        else:
            text = text.strip("`").strip()
    return json.loads(text)


def parse_diagnosis(content: str) -> Diagnosis:
    """Decode the model's JSON content into a Diagnosis.

    An empty rootCause means the model ignored the output contract and is
    treated like any other failed attempt.
    """
    try:
        data = _parse_llm_json(content)
    except json.JSONDecodeError as e:
        raise DiagnosisError(f"parsing LLM JSON response: {e}; content: {content[:200]!r}") from e
    if not isinstance(data, dict):
        raise DiagnosisError(f"LLM response is not a JSON object: {content[:200]!r}")
    diagnosis = Diagnosis.model_validate(data)
    if not diagnosis.root_cause:
        raise DiagnosisError("LLM returned empty rootCause, likely a prompt/format issue")
    return diagnosis


class DiagnosisClient(ABC):
    """Sends a snapshot to a backend and returns a validated Diagnosis."""

    provider: str = "llm"

    def __init__(self, model: str, temperature: float, timeout: float) -> None:
        self.model = model
        self.temperature = temperature
        self.timeout = timeout

    def messages(self, snapshot: ObservabilitySnapshot) -> list[dict[str, str]]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": build_user_prompt(snapshot)},
        ]

    def diagnose(self, snapshot: ObservabilitySnapshot, ctx: ReconcileContext) -> Diagnosis:
        """Run the diagnosis, retrying once on any failure."""
        last_err: Exception | None = None
        for attempt in range(1, DIAGNOSIS_ATTEMPTS + 1):
            ctx.check()
            try:
                return self._diagnose_once(snapshot, ctx)
            except (DiagnosisError, openai.OpenAIError, httpx.HTTPError, ValueError) as e:
                logger.warning(
                    "%s diagnosis attempt %d/%d failed: %s", self.provider, attempt, DIAGNOSIS_ATTEMPTS, e
                )
                last_err = e
        raise DiagnosisError(
            f"{self.provider} diagnosis failed after {DIAGNOSIS_ATTEMPTS} attempts: {last_err}"
        ) from last_err

    def close(self) -> None:
        """Release the underlying HTTP connections."""

    @abstractmethod
    def _diagnose_once(self, snapshot: ObservabilitySnapshot, ctx: ReconcileContext) -> Diagnosis:
        """One request/response round trip."""


class OpenAIDiagnosisClient(DiagnosisClient):
    """OpenAI chat completions, also used for Groq's OpenAI-compatible endpoint."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str | None = None,
        temperature: float = 0.1,
        timeout: float = 60.0,
        provider: str = "openai",
        client: OpenAI | None = None,
    ) -> None:
        super().__init__(model, temperature, timeout)
        self.provider = provider
        # SDK retries are disabled; diagnose() owns the retry policy.
        self._client = client or OpenAI(api_key=api_key, base_url=base_url, timeout=timeout, max_retries=0)

    def close(self) -> None:
        self._client.close()

    def _diagnose_once(self, snapshot: ObservabilitySnapshot, ctx: ReconcileContext) -> Diagnosis:
        response = self._client.chat.completions.create(
            model=self.model,
            temperature=self.temperature,
            messages=self.messages(snapshot),
            response_format={"type": "json_object"},
            timeout=ctx.timeout(self.timeout),
        )
        if not response.choices:
            raise DiagnosisError(f"{self.provider} returned no choices")
        return parse_diagnosis(response.choices[0].message.content or "")


class OllamaDiagnosisClient(DiagnosisClient):
    """Locally hosted Ollama server; no API key, slow first token."""

    provider = "ollama"

    def __init__(
        self,
        model: str,
        base_url: str = "http://localhost:11434",
        temperature: float = 0.1,
        timeout: float = 180.0,
        http: httpx.Client | None = None,
    ) -> None:
        super().__init__(model, temperature, timeout)
        self.base_url = base_url.rstrip("/")
        self._http = http or httpx.Client()

    def close(self) -> None:
        self._http.close()

    def _diagnose_once(self, snapshot: ObservabilitySnapshot, ctx: ReconcileContext) -> Diagnosis:
        response = self._http.post(
            f"{self.base_url}/api/chat",
            json={
                "model": self.model,
                "messages": self.messages(snapshot),
                "stream": False,
                "format": "json",
                "options": {"temperature": self.temperature},
            },
            timeout=ctx.timeout(self.timeout),
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise DiagnosisError(f"ollama reply is not a JSON object: {response.text[:200]!r}")
        if data.get("error"):
            raise DiagnosisError(f"ollama error: {data['error']}")
        message = data.get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise DiagnosisError(f"ollama reply has no message content: {response.text[:200]!r}")
        return parse_diagnosis(content)


def client_from_spec(
    aw: AegisWatch,
    reader: ClusterReader,
    settings: Settings,
    ctx: ReconcileContext,
) -> DiagnosisClient:
    """Build the DiagnosisClient selected by spec.llmProvider.

    Groq and OpenAI read the API key from spec.llmSecretRef (key "apiKey").
    Ollama needs no secret; an optional "baseUrl" key in spec.llmSecretRef
    overrides the configured default URL.
    """
    spec = aw.spec
    namespace = aw.metadata.namespace

    if spec.llm_provider in (LLMProvider.GROQ, LLMProvider.OPENAI):
        api_key = reader.read_secret_key(namespace, spec.llm_secret_ref, "apiKey", ctx)
        base_url = GROQ_BASE_URL if spec.llm_provider == LLMProvider.GROQ else None
        return OpenAIDiagnosisClient(
            model=spec.model_name,
            api_key=api_key,
            base_url=base_url,
            temperature=settings.temperature,
            timeout=settings.hosted_llm_timeout,
            provider=spec.llm_provider.value,
        )

    if spec.llm_provider == LLMProvider.OLLAMA:
        base_url = settings.ollama_url
        if spec.llm_secret_ref:
            try:
                base_url = reader.read_secret_key(namespace, spec.llm_secret_ref, "baseUrl", ctx)
            except ConfigurationError:
                logger.debug("No baseUrl in %s/%s, using %s", namespace, spec.llm_secret_ref, base_url)
        return OllamaDiagnosisClient(
            model=spec.model_name,
            base_url=base_url,
            temperature=settings.temperature,
            timeout=settings.ollama_timeout,
        )

    raise ConfigurationError(f"unsupported llmProvider {spec.llm_provider!r}")
