"""Tests for the GitHub healing PR flow, served by an in-memory GitHub API."""

from __future__ import annotations

import base64
import json

import httpx
import pytest
import yaml

from aegis_operator.context import ReconcileContext
from aegis_operator.diagnosis import Diagnosis
from aegis_operator.errors import ConfigurationError, ManifestNotFoundError, NoOpPatchError, RemediationError
from aegis_operator.remediation.github import (
    GitHubPRClient,
    PRRequest,
    branch_name_for,
    build_pr_body,
    split_repo,
)

MANIFEST = """apiVersion: apps/v1
kind: Deployment
metadata:
  name: payments
spec:
  template:
    spec:
      containers:
      - name: app
        image: ghcr.io/acme/payments:1.4.2
        resources:
          limits:
            memory: 128Mi
"""

PATCH = "spec:\n  template:\n    spec:\n      containers:\n      - name: app\n        resources:\n          limits:\n            memory: 256Mi\n"


class FakeGitHub:
    """Minimal GitHub REST API: one repo, files at fixed paths, recorded writes."""

    def __init__(
        self,
        files: dict[str, str | bytes] | None = None,
        fail: dict[tuple[str, str], int] | None = None,
        replies: dict[tuple[str, str], httpx.Response] | None = None,
    ) -> None:
        self.files = files if files is not None else {"manifests/payments.yaml": MANIFEST}
        self.fail = fail or {}
        self.replies = replies or {}
        self.requests: list[tuple[str, str]] = []
        self.refs: list[dict] = []
        self.commits: list[dict] = []
        self.pulls: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))
        if (method, path) in self.fail:
            return httpx.Response(self.fail[(method, path)], json={"message": "nope"})
        if (method, path) in self.replies:
            return self.replies[(method, path)]

        prefix = "/repos/acme/infra"
        if method == "GET" and path.startswith(f"{prefix}/contents/"):
            file_path = path[len(f"{prefix}/contents/") :]
            if file_path not in self.files:
                return httpx.Response(404, json={"message": "Not Found"})
            content = self.files[file_path]
            raw = content if isinstance(content, bytes) else content.encode()
            encoded = base64.b64encode(raw).decode()
            return httpx.Response(
                200,
                json={"type": "file", "encoding": "base64", "content": encoded[:20] + "\n" + encoded[20:], "sha": "blob-1"},
            )
        if method == "GET" and path == prefix:
            return httpx.Response(200, json={"default_branch": "main"})
        if method == "GET" and path == f"{prefix}/git/ref/heads/main":
            return httpx.Response(200, json={"object": {"sha": "commit-1"}})
        if method == "POST" and path == f"{prefix}/git/refs":
            self.refs.append(json.loads(request.content))
            return httpx.Response(201, json={})
        if method == "PUT" and path.startswith(f"{prefix}/contents/"):
            self.commits.append(json.loads(request.content))
            return httpx.Response(200, json={})
        if method == "POST" and path == f"{prefix}/pulls":
            self.pulls.append(json.loads(request.content))
            return httpx.Response(201, json={"html_url": "https://github.com/acme/infra/pull/42"})
        return httpx.Response(404, json={"message": "Not Found"})


def _request(patch: str = PATCH, score: int = 0) -> PRRequest:
    return PRRequest(
        owner="acme",
        repo="infra",
        deployment_name="payments",
        namespace="shop",
        diagnosis=Diagnosis(rootCause="Memory limit too low.", patch=patch, wittyLine="OOM sweet OOM."),
        healing_score=score,
    )


def _client(fake: FakeGitHub) -> GitHubPRClient:
    return GitHubPRClient("ghp_test", transport=httpx.MockTransport(fake))


class TestCreateHealingPR:
    def test_full_flow(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub()
        result = _client(fake).create_healing_pr(_request(score=1), ctx)

        assert result.pr_url == "https://github.com/acme/infra/pull/42"
        assert result.file_path == "manifests/payments.yaml"
        assert result.branch_name.startswith("aegis/fix-payments-")

        assert fake.refs == [{"ref": f"refs/heads/{result.branch_name}", "sha": "commit-1"}]
        commit = fake.commits[0]
        assert commit["sha"] == "blob-1"
        assert commit["branch"] == result.branch_name
        committed = yaml.safe_load(base64.b64decode(commit["content"]))
        assert committed["spec"]["template"]["spec"]["containers"][0]["resources"]["limits"]["memory"] == "256Mi"

        pr = fake.pulls[0]
        assert pr["head"] == result.branch_name
        assert pr["base"] == "main"
        assert "[Aegis #2]" in pr["title"]
        assert "Memory limit too low." in pr["body"]

    def test_conventional_paths_tried_in_order(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub()
        _client(fake).create_healing_pr(_request(), ctx)
        lookups = [p for m, p in fake.requests if m == "GET" and "/contents/" in p]
        assert lookups == [
            "/repos/acme/infra/contents/deploy/payments/deployment.yaml",
            "/repos/acme/infra/contents/deploy/payments/deployment.yml",
            "/repos/acme/infra/contents/manifests/payments/deployment.yaml",
            "/repos/acme/infra/contents/manifests/payments.yaml",
        ]

    def test_manifest_not_found(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub(files={})
        with pytest.raises(ManifestNotFoundError):
            _client(fake).create_healing_pr(_request(), ctx)
        assert not fake.refs

    def test_no_op_patch_creates_nothing(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub()
        with pytest.raises(NoOpPatchError):
            _client(fake).create_healing_pr(_request(patch=PATCH.replace("256Mi", "128Mi")), ctx)
        assert not fake.refs
        assert not fake.commits
        assert not fake.pulls

    def test_branch_creation_failure(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub(fail={("POST", "/repos/acme/infra/git/refs"): 422})
        with pytest.raises(RemediationError, match="HTTP 422"):
            _client(fake).create_healing_pr(_request(), ctx)
        assert not fake.pulls

    def test_non_json_success_body(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub(replies={("GET", "/repos/acme/infra"): httpx.Response(200, text="<html>proxy maintenance</html>")})
        with pytest.raises(RemediationError, match="unexpected body"):
            _client(fake).create_healing_pr(_request(), ctx)
        assert not fake.refs

    def test_non_utf8_manifest(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub(files={"deploy/payments/deployment.yaml": b"\xff\xfe bad"})
        with pytest.raises(RemediationError, match="deploy/payments/deployment.yaml"):
            _client(fake).create_healing_pr(_request(), ctx)
        assert not fake.refs

    def test_pull_reply_without_url(self, ctx: ReconcileContext) -> None:
        fake = FakeGitHub(replies={("POST", "/repos/acme/infra/pulls"): httpx.Response(201, json={"number": 42})})
        with pytest.raises(RemediationError, match="unexpected body"):
            _client(fake).create_healing_pr(_request(), ctx)

    def test_sends_token(self, ctx: ReconcileContext) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers["Authorization"])
            return httpx.Response(200, json={"default_branch": "main"})

        GitHubPRClient("ghp_test", transport=httpx.MockTransport(handler)).default_branch("acme", "infra", ctx)
        assert seen == ["Bearer ghp_test"]


class TestHelpers:
    def test_split_repo(self) -> None:
        assert split_repo("acme/infra") == ("acme", "infra")

    @pytest.mark.parametrize("value", ["", "acme", "acme/infra/extra", "/infra", "acme/"])
    def test_split_repo_invalid(self, value: str) -> None:
        with pytest.raises(ConfigurationError):
            split_repo(value)

    def test_branch_name(self) -> None:
        assert branch_name_for("payments", now=1760702400) == "aegis/fix-payments-1760702400"

    def test_pr_body_sections(self) -> None:
        body = build_pr_body(_request(score=2), "manifests/payments.yaml")
        assert "### What happened?" in body
        assert "`manifests/payments.yaml`" in body
        assert "```yaml" in body
        assert "OOM sweet OOM." in body
        assert "Healing score after this fix: **3**" in body
