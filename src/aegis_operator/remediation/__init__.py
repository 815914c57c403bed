"""Remediation layer: patch manifests in Git and open healing pull requests."""

from aegis_operator.remediation.github import GitHubPRClient, PRRequest, PRResult, split_repo
from aegis_operator.remediation.patch import apply_yaml_patch, strategic_merge, validate_patch_fields
from aegis_operator.remediation.workflow import RemediationOutcome, remediate, should_remediate

__all__ = [
    "GitHubPRClient",
    "PRRequest",
    "PRResult",
    "RemediationOutcome",
    "apply_yaml_patch",
    "remediate",
    "should_remediate",
    "split_repo",
    "strategic_merge",
    "validate_patch_fields",
]
