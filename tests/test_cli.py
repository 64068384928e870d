"""
Tests for the content-dates command line interface.
"""

import json
import subprocess
from unittest.mock import patch

from click.testing import CliRunner

from content_dates.cli import cli, format_timestamp
from content_dates.services.history_source import HistoryKind

from .conftest import FakeHistorySource, local_temporary_directory


def write_config(project_dir):
    config_dir = project_dir / ".content-dates"
    config_dir.mkdir()
    (config_dir / "config.json").write_text(json.dumps({"repo_dir": "."}))


def run(project_dir, args, source):
    runner = CliRunner()
    with patch("content_dates.services.timestamp_index.GitHistorySource", return_value=source):
        return runner.invoke(cli, ["--path", str(project_dir), *args], obj={})


def test_format_timestamp():
    assert format_timestamp(0) == "-"
    assert format_timestamp(86_400) == "1970-01-02T00:00:00+00:00"


def test_refresh_writes_snapshots(fake_source):
    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)

        result = run(temp_dir, ["refresh"], fake_source)

        assert result.exit_code == 0, result.output
        assert "c3" in result.output
        assert (temp_dir / "metadata" / "git-mod-c3.txt").exists()
        assert (temp_dir / "metadata" / "git-pub-c3.txt").exists()


def test_refresh_single_kind(fake_source):
    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)

        result = run(temp_dir, ["refresh", "--kind", "pub"], fake_source)

        assert result.exit_code == 0, result.output
        assert not (temp_dir / "metadata" / "git-mod-c3.txt").exists()
        assert [kind for kind, _ in fake_source.fetch_calls] == [HistoryKind.PUBLICATION]


def test_show_prints_dates(fake_source):
    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)

        result = run(temp_dir, ["show", "a.md"], fake_source)

        assert result.exit_code == 0, result.output
        assert "a.md" in result.output
        assert "1970-01-01T00:03:20+00:00" in result.output
        assert "1970-01-01T00:01:40+00:00" in result.output


def test_recent_lists_nothing_for_old_history(fake_source):
    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)

        result = run(temp_dir, ["recent", "--days", "30"], fake_source)

        assert result.exit_code == 0, result.output
        assert "No files with a publication time in the last 30 days" in result.output


def test_recent_lists_recent_files():
    source = FakeHistorySource()
    source.add_commit("r1", 4_000_000_000, ["soon.md"], ["A\tsoon.md"])

    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)

        result = run(temp_dir, ["recent", "--kind", "mod", "--limit", "5"], source)

        assert result.exit_code == 0, result.output
        assert "soon.md" in result.output


def test_git_failure_exits_with_error():
    source = FakeHistorySource()
    error = subprocess.CalledProcessError(128, ["git"], stderr="not a git repository")

    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)
        with patch.object(FakeHistorySource, "head_revision", side_effect=error):
            result = run(temp_dir, ["show", "a.md"], source)

        assert result.exit_code == 1
        assert "not a git repository" in result.output


def test_status_reports_snapshots(fake_source):
    with local_temporary_directory() as temp_dir:
        write_config(temp_dir)
        run(temp_dir, ["refresh", "--kind", "mod"], fake_source)

        result = run(temp_dir, ["status"], fake_source)

        assert result.exit_code == 0, result.output
        assert "git-mod-c3.txt" in result.output
        assert "not cached" in result.output
