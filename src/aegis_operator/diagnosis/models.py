"""Structured outputs from the diagnosis layer."""

from __future__ import annotations

from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_WITTY_LINE_CHARS = 120


class Diagnosis(BaseModel):
    """Oracle verdict: root cause, optional Deployment patch, and a short remark."""

    model_config = ConfigDict(populate_by_name=True)

    root_cause: str = Field(default="", alias="rootCause", description="1-2 sentence technical root cause")
    patch: str = Field(
        default="",
        description="Strategic-merge-patch YAML for the Deployment; empty when there is no confident fix",
    )
    witty_line: str = Field(default="", alias="wittyLine", description="Cosmetic one-liner for humans")

    @field_validator("root_cause", mode="before")
    @classmethod
    def _strip_root_cause(cls, v: Any) -> str:
        return str(v or "").strip()

    @field_validator("patch", mode="before")
    @classmethod
    def _patch_as_yaml(cls, v: Any) -> str:
        # Some models return the patch as a JSON object instead of a YAML string.
        if v is None:
            return ""
        if isinstance(v, (dict, list)):
            return yaml.safe_dump(v, sort_keys=False) if v else ""
        return str(v).strip()

    @field_validator("witty_line", mode="before")
    @classmethod
    def _bound_witty_line(cls, v: Any) -> str:
        return str(v or "").strip()[:MAX_WITTY_LINE_CHARS]

    @property
    def has_patch(self) -> bool:
        return bool(self.patch)

    def describe(self) -> str:
        """Single-line text stored in status.lastDiagnosis."""
        if self.witty_line:
            return f"{self.root_cause} | {self.witty_line}"
        return self.root_cause
