import json
from pathlib import Path

from click.testing import CliRunner

from opsdeck.cli.main import cli
from opsdeck.runner.allowlist import AllowlistConfig, AllowlistStore


def test_allowlist_show_defaults(tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["allowlist", "show", "--data-dir", str(tmp_path)])
    assert result.exit_code == 0
    assert json.loads(result.output)["container_names"] == ["portainer"]


def test_allowlist_show_reads_file(tmp_path: Path) -> None:
    AllowlistStore.in_dir(tmp_path).save(AllowlistConfig(repo_paths=frozenset({"/srv/app"})))
    result = CliRunner().invoke(cli, ["allowlist", "show", "--data-dir", str(tmp_path)])
    assert json.loads(result.output)["repo_paths"] == ["/srv/app"]


def test_serve_runner_requires_token(monkeypatch) -> None:
    from opsdeck.config import get_settings

    monkeypatch.setenv("RUNNER_TOKEN", "")
    get_settings.cache_clear()
    result = CliRunner().invoke(cli, ["serve-runner"])
    assert result.exit_code != 0
    assert "RUNNER_TOKEN must be set" in result.output
