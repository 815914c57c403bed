"""Diagnosis layer: LLM-based root cause analysis."""

from aegis_operator.diagnosis.analyzer import (
    DiagnosisClient,
    OllamaDiagnosisClient,
    OpenAIDiagnosisClient,
    client_from_spec,
    parse_diagnosis,
)
from aegis_operator.diagnosis.models import Diagnosis

__all__ = [
    "Diagnosis",
    "DiagnosisClient",
    "OllamaDiagnosisClient",
    "OpenAIDiagnosisClient",
    "client_from_spec",
    "parse_diagnosis",
]
