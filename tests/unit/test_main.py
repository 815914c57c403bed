"""Tests for the CLI entrypoint."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from rich.console import Console

from aegis_operator import __version__, main as cli
from aegis_operator.controller import ReconcileResult
from aegis_operator.remediation import RemediationOutcome
from aegis_operator.watch import AegisWatch, Phase


def _watch(name: str) -> AegisWatch:
    return AegisWatch.from_dict(
        {
            "metadata": {"name": name, "namespace": "ops"},
            "spec": {"targetRef": {"name": "payments", "namespace": "shop"}, "gitRepo": "acme/infra"},
        }
    )


class TestArgs:
    def test_defaults(self) -> None:
        args = cli._parse_args([])
        assert args.namespace is None
        assert not args.once
        assert not args.verbose

    def test_version(self, capsys: pytest.CaptureFixture[str]) -> None:
        with pytest.raises(SystemExit):
            cli._parse_args(["--version"])
        assert __version__ in capsys.readouterr().out


class TestPrintResults:
    def test_table_rows(self) -> None:
        console = Console(record=True, width=200)
        results = [
            (
                _watch("healed"),
                ReconcileResult(
                    phase=Phase.DEGRADED,
                    anomaly="restarts",
                    outcome=RemediationOutcome(success=True, message="opened", pr_url="https://github.com/acme/infra/pull/3"),
                ),
            ),
            (_watch("broken"), None),
        ]
        cli.print_results(results, console)
        text = console.export_text()
        assert "ops/healed" in text
        assert "https://github.com/acme/infra/pull/3" in text
        assert "reconcile failed" in text


class TestMain:
    def test_once_returns_nonzero_when_a_reconcile_failed(self) -> None:
        manager = MagicMock()
        manager.run_once.return_value = [(_watch("broken"), None)]
        with patch.object(cli, "build_manager", return_value=manager) as build:
            assert cli.main(["--once", "--namespace", "ops"]) == 1
        assert build.call_args.args[0].namespace == "ops"
        manager.run.assert_not_called()

    def test_startup_error_returns_2(self) -> None:
        with patch.object(cli, "build_manager", side_effect=RuntimeError("no kubeconfig")):
            assert cli.main(["--once"]) == 2
