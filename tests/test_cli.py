"""Tests for the command-line interface."""

import json

import pytest
from typer.testing import CliRunner

from codetracker.cli import app, parse_element
from codetracker.models import ElementKind

runner = CliRunner()

QUIET = {"CODETRACKER_LOG_LEVEL": "ERROR"}


@pytest.fixture
def repo(repo_builder):
    c1 = repo_builder.commit("Add parser", {"pkg/parser.py": "class Parser:\n    def parse(self, text):\n        return text.split()\n"})
    c2 = repo_builder.commit(
        "Rename parse", {"pkg/parser.py": "class Parser:\n    def tokenize(self, text):\n        return text.split()\n"}
    )
    return repo_builder.path, c1, c2


def test_parse_element():
    """Test qualified names are split into container and name."""
    key = parse_element("Outer.Inner.run", ElementKind.METHOD, "")

    assert key.container == ("Outer", "Inner")
    assert key.name == "run"

    block = parse_element("for", ElementKind.BLOCK, "")
    assert block.signature == "for"
    assert block.name == ""


def test_track_json(repo):
    """Test track --json prints the history."""
    repo_path, c1, c2 = repo

    result = runner.invoke(
        app,
        ["track", str(repo_path), c2, "pkg/parser.py", "Parser.tokenize", "--json"],
        env=QUIET,
    )

    assert result.exit_code == 0, result.output
    data = json.loads(result.stdout)
    assert data["termination"] == "introduced"
    assert [v["commit_id"] for v in data["versions"]] == [c1, c2]
    assert data["edges"][0]["operations"] == ["renamed"]


def test_track_table(repo):
    """Test the default output renders a table of versions."""
    repo_path, _, c2 = repo

    result = runner.invoke(
        app, ["track", str(repo_path), c2, "pkg/parser.py", "Parser.tokenize"], env=QUIET
    )

    assert result.exit_code == 0, result.output
    assert "renamed" in result.stdout
    assert "Termination" in result.stdout


def test_track_unknown_element(repo):
    """Test a missing element exits with an error."""
    repo_path, _, c2 = repo

    result = runner.invoke(
        app, ["track", str(repo_path), c2, "pkg/parser.py", "Parser.missing"], env=QUIET
    )

    assert result.exit_code == 1
    assert "Error" in result.stdout


def test_track_block_requires_line(repo):
    """Test blocks cannot be tracked without a line."""
    repo_path, _, c2 = repo

    result = runner.invoke(
        app,
        ["track", str(repo_path), c2, "pkg/parser.py", "if", "--kind", "block"],
        env=QUIET,
    )

    assert result.exit_code == 1


def test_cache_commands(repo, tmp_path):
    """Test cache-stats and cache-clear on a cache written by track."""
    repo_path, _, c2 = repo
    cache_file = tmp_path / "snapshots.json"

    tracked = runner.invoke(
        app,
        ["track", str(repo_path), c2, "pkg/parser.py", "Parser.tokenize", "--cache", str(cache_file)],
        env=QUIET,
    )
    assert tracked.exit_code == 0, tracked.output
    assert cache_file.exists()

    stats = runner.invoke(app, ["cache-stats", "--cache", str(cache_file)], env=QUIET)
    assert stats.exit_code == 0, stats.output
    assert "Snapshots" in stats.stdout

    cleared = runner.invoke(app, ["cache-clear", "--cache", str(cache_file)], env=QUIET)
    assert cleared.exit_code == 0
    assert not cache_file.exists()


def test_cache_stats_without_cache():
    """Test cache-stats needs a configured cache."""
    result = runner.invoke(app, ["cache-stats"], env=QUIET)

    assert result.exit_code == 1
