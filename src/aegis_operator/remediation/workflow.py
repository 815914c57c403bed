"""Bounded automatic remediation: turn a diagnosis into at most one healing PR."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from aegis_operator.context import ReconcileContext
from aegis_operator.errors import ConfigurationError, NoOpPatchError, RemediationError
from aegis_operator.remediation.github import GitHubPRClient, PRRequest
from aegis_operator.remediation.patch import parse_patch, validate_patch_fields

logger = logging.getLogger(__name__)


@dataclass
class RemediationOutcome:
    """Result of one healing attempt. Only success=True may bump the healing score."""

    success: bool
    message: str
    pr_url: str | None = None
    branch_name: str | None = None
    file_path: str | None = None


def should_remediate(safe_mode: bool, patch: str, healing_score: int, max_attempts: int) -> tuple[bool, str]:
    """Gate for the write path; returns (allowed, reason when not allowed)."""
    if safe_mode:
        return False, "safe mode enabled, diagnosis only"
    if not patch.strip():
        return False, "diagnosis carries no patch"
    if healing_score >= max_attempts:
        return False, f"healing score {healing_score} reached the cap of {max_attempts}"
    return True, ""


def remediate(req: PRRequest, pr_client: GitHubPRClient, ctx: ReconcileContext) -> RemediationOutcome:
    """Validate the patch and open a healing PR. Never retries; never raises on attempt failure.

    The caller's requeue interval is the retry cadence. Cancellation still
    propagates as ReconcileCancelled.
    """
    target = f"{req.namespace}/{req.deployment_name}"
    try:
        # Fail fast before any GitHub call; the full check against the manifest runs again on apply.
        validate_patch_fields(parse_patch(req.diagnosis.patch))
        result = pr_client.create_healing_pr(req, ctx)
    except NoOpPatchError as e:
        logger.info("No PR for %s: %s", target, e)
        return RemediationOutcome(success=False, message=str(e))
    except (RemediationError, ConfigurationError) as e:
        logger.warning("Healing PR for %s failed: %s", target, e)
        return RemediationOutcome(success=False, message=str(e))
    except httpx.HTTPError as e:
        logger.warning("Healing PR for %s failed talking to GitHub: %s", target, e)
        return RemediationOutcome(success=False, message=f"GitHub request failed: {e}")

    logger.info("Healing PR opened for %s: %s", target, result.pr_url)
    return RemediationOutcome(
        success=True,
        message=f"opened {result.pr_url}",
        pr_url=result.pr_url,
        branch_name=result.branch_name,
        file_path=result.file_path,
    )
