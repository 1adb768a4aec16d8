"""Shared fixtures: throwaway Git repositories and parsed snapshots."""

from pathlib import Path
from textwrap import dedent
from typing import Dict, List, Optional

import git
import pytest
import structlog

from codetracker.models import SyntaxModel
from codetracker.parsing import PythonParser


class RepoBuilder:
    """Creates commits in a fresh repository, one second apart."""

    def __init__(self, path: Path) -> None:
        self.path = path
        self.repo = git.Repo.init(path)

        # Configure git
        self.repo.config_writer().set_value("user", "name", "Test User").release()
        self.repo.config_writer().set_value("user", "email", "test@example.com").release()

        self._clock = 1_700_000_000

    def commit(
        self,
        message: str,
        files: Dict[str, Optional[str]],
        parents: Optional[List[str]] = None,
    ) -> str:
        """Write (or delete, for None) files and commit them.

        Args:
            message: Commit message
            files: Content by path; None removes the file
            parents: Parent commits (defaults to HEAD); two or more make a merge

        Returns:
            The new commit's hexsha
        """
        for name, content in files.items():
            target = self.path / name
            if content is None:
                self.repo.index.remove([name], working_tree=True)
                continue
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(dedent(content).lstrip("\n"))
            self.repo.index.add([name])

        self._clock += 60
        date = f"{self._clock} +0000"
        parent_commits = [self.repo.commit(p) for p in parents] if parents is not None else None
        return self.repo.index.commit(
            message, parent_commits=parent_commits, author_date=date, commit_date=date
        ).hexsha


@pytest.fixture
def repo_builder(tmp_path):
    """A RepoBuilder over an empty repository."""
    return RepoBuilder(tmp_path / "repo")


@pytest.fixture(autouse=True)
def reset_structlog():
    """Undo any structlog configuration a test (e.g. the CLI) installed."""
    yield
    structlog.reset_defaults()


@pytest.fixture
def parse_source():
    """Parse a dedented source string into a snapshot."""

    def _parse(source: str, file_path: str = "module.py", commit_id: str = "c0") -> SyntaxModel:
        data = dedent(source).lstrip("\n").encode("utf-8")
        return PythonParser().parse(data, file_path, commit_id)

    return _parse
