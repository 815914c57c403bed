"""Open healing pull requests through the GitHub REST API.

Flow per healing cycle:
  1. Find the Deployment manifest at a conventional path in the repo.
  2. Fetch its content and blob SHA.
  3. Apply the suggested strategic merge patch.
  4. Create branch aegis/fix-<deployment>-<unix-ts> from the default branch.
  5. Commit the patched file against the fetched SHA.
  6. Open a pull request with a structured body.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Any

import httpx

from aegis_operator.context import ReconcileContext
from aegis_operator.diagnosis.models import Diagnosis
from aegis_operator.errors import ConfigurationError, ManifestNotFoundError, RemediationError
from aegis_operator.remediation.patch import apply_yaml_patch, ensure_changed
from aegis_operator.remediation.templates import (
    COMMIT_MESSAGE,
    PR_FOOTER,
    PR_HEADER,
    PR_SECTION_CHANGE,
    PR_SECTION_PATCH,
    PR_SECTION_REMARK,
    PR_SECTION_ROOT_CAUSE,
    PR_TITLE,
)

logger = logging.getLogger(__name__)

# Candidate manifest paths, tried in order; the first one present wins.
CONVENTIONAL_PATHS = (
    "deploy/{name}/deployment.yaml",
    "deploy/{name}/deployment.yml",
    "manifests/{name}/deployment.yaml",
    "manifests/{name}.yaml",
    "k8s/{name}/deployment.yaml",
)

COMMITTER = {"name": "Aegis Operator", "email": "aegis-operator@users.noreply.github.com"}


def split_repo(git_repo: str) -> tuple[str, str]:
    """Split "owner/repo" into (owner, repo)."""
    parts = (git_repo or "").strip().split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ConfigurationError(f'invalid gitRepo {git_repo!r}: expected "owner/repo"')
    return parts[0], parts[1]


def branch_name_for(deployment_name: str, now: float | None = None) -> str:
    return f"aegis/fix-{deployment_name}-{int(now if now is not None else time.time())}"


@dataclass
class PRRequest:
    """Everything needed to open one healing PR."""

    owner: str
    repo: str
    deployment_name: str
    namespace: str
    diagnosis: Diagnosis
    healing_score: int


@dataclass
class PRResult:
    pr_url: str
    branch_name: str
    file_path: str


def build_pr_body(req: PRRequest, file_path: str) -> str:
    parts = [
        PR_HEADER,
        PR_SECTION_ROOT_CAUSE.format(root_cause=req.diagnosis.root_cause),
        PR_SECTION_CHANGE.format(file_path=file_path, namespace=req.namespace, deployment=req.deployment_name),
    ]
    if req.diagnosis.patch:
        parts.append(PR_SECTION_PATCH.format(patch=req.diagnosis.patch.rstrip()))
    if req.diagnosis.witty_line:
        parts.append(PR_SECTION_REMARK.format(witty_line=req.diagnosis.witty_line))
    parts.append(PR_FOOTER.format(score=req.healing_score + 1))
    return "".join(parts)


class GitHubPRClient:
    """Uses the GitHub REST API to open healing pull requests."""

    def __init__(
        self,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.timeout = timeout
        self._http = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            transport=transport,
        )

    def close(self) -> None:
        self._http.close()

    def _request(self, method: str, path: str, ctx: ReconcileContext, **kwargs: Any) -> httpx.Response:
        response = self._http.request(method, path, timeout=ctx.timeout(self.timeout), **kwargs)
        if response.is_error:
            raise RemediationError(
                f"GitHub {method} {path} returned HTTP {response.status_code}: {response.text[:200]}"
            )
        return response

    def _fetch(self, method: str, path: str, ctx: ReconcileContext, *keys: str, **kwargs: Any) -> Any:
        """Send a request and dig keys out of its JSON body.

        A 2xx reply that is not JSON, or lacks the expected fields, raises
        RemediationError like any other failed GitHub call.
        """
        response = self._request(method, path, ctx, **kwargs)
        try:
            value = response.json()
            for key in keys:
                value = value[key]
        except (ValueError, KeyError, TypeError) as e:
            raise RemediationError(
                f"GitHub {method} {path} returned an unexpected body: {response.text[:200]!r}"
            ) from e
        return value

    def create_healing_pr(self, req: PRRequest, ctx: ReconcileContext) -> PRResult:
        """Execute the full find, patch, branch, commit, PR flow."""
        file_path, content, sha = self.find_deployment_file(req.owner, req.repo, req.deployment_name, ctx)
        logger.debug("Found manifest for %s in %s/%s at %s", req.deployment_name, req.owner, req.repo, file_path)

        patched = apply_yaml_patch(content, req.diagnosis.patch, req.deployment_name)
        ensure_changed(content, patched, file_path)

        base = self.default_branch(req.owner, req.repo, ctx)
        branch = branch_name_for(req.deployment_name)
        self.create_branch(req.owner, req.repo, branch, base, ctx)
        logger.info("Created branch %s from %s in %s/%s", branch, base, req.owner, req.repo)

        message = COMMIT_MESSAGE.format(deployment=req.deployment_name, root_cause=req.diagnosis.root_cause)
        self.commit_file(req.owner, req.repo, branch, file_path, sha, patched, message, ctx)

        pr_url = self.open_pr(req, branch, base, file_path, ctx)
        return PRResult(pr_url=pr_url, branch_name=branch, file_path=file_path)

    def find_deployment_file(
        self, owner: str, repo: str, deployment_name: str, ctx: ReconcileContext
    ) -> tuple[str, str, str]:
        """Return (path, decoded content, blob SHA) of the first conventional path present."""
        for pattern in CONVENTIONAL_PATHS:
            path = pattern.format(name=deployment_name)
            response = self._http.get(
                f"/repos/{owner}/{repo}/contents/{path}", timeout=ctx.timeout(self.timeout)
            )
            if response.status_code == 404:
                continue
            if response.is_error:
                raise RemediationError(f"GitHub GET {path} returned HTTP {response.status_code}")
            try:
                data = response.json()
                if not isinstance(data, dict) or data.get("type") != "file" or data.get("encoding") != "base64":
                    continue
                decoded = base64.b64decode(data.get("content", "").replace("\n", ""), validate=True).decode("utf-8")
                sha = data["sha"]
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                raise RemediationError(f"cannot read {path} from {owner}/{repo}: {e}") from e
            return path, decoded, sha
        raise ManifestNotFoundError(
            f"deployment manifest for {deployment_name!r} not found at any conventional path in {owner}/{repo}"
        )

    def default_branch(self, owner: str, repo: str, ctx: ReconcileContext) -> str:
        return self._fetch("GET", f"/repos/{owner}/{repo}", ctx, "default_branch")

    def create_branch(self, owner: str, repo: str, new_branch: str, base_branch: str, ctx: ReconcileContext) -> None:
        base_sha = self._fetch("GET", f"/repos/{owner}/{repo}/git/ref/heads/{base_branch}", ctx, "object", "sha")
        self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/refs",
            ctx,
            json={"ref": f"refs/heads/{new_branch}", "sha": base_sha},
        )

    def commit_file(
        self,
        owner: str,
        repo: str,
        branch: str,
        path: str,
        current_sha: str,
        content: str,
        message: str,
        ctx: ReconcileContext,
    ) -> None:
        """Update path on branch; the blob SHA makes GitHub reject a concurrent edit."""
        self._request(
            "PUT",
            f"/repos/{owner}/{repo}/contents/{path}",
            ctx,
            json={
                "message": message,
                "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
                "branch": branch,
                "sha": current_sha,
                "committer": COMMITTER,
            },
        )

    def open_pr(
        self, req: PRRequest, head_branch: str, base_branch: str, file_path: str, ctx: ReconcileContext
    ) -> str:
        """Create the pull request and return its HTML URL."""
        return self._fetch(
            "POST",
            f"/repos/{req.owner}/{req.repo}/pulls",
            ctx,
            "html_url",
            json={
                "title": PR_TITLE.format(deployment=req.deployment_name, attempt=req.healing_score + 1),
                "head": head_branch,
                "base": base_branch,
                "body": build_pr_body(req, file_path),
                "maintainer_can_modify": True,
            },
        )
