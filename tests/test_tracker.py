"""End-to-end tracking tests over real Git repositories."""

import threading
import time

import pytest

from codetracker.cache import CACHE_SCHEMA_VERSION, SnapshotCache
from codetracker.errors import CommitNotFoundError, ElementNotFoundError
from codetracker.matching import similarity
from codetracker.models import (
    ElementKey,
    ElementKind,
    OperationKind,
    RepositoryConfig,
    TerminationReason,
    TrackerSettings,
)
from codetracker.parsing import ParserRegistry, PythonParser
from codetracker.tracking import Tracker, TrackRequest
from codetracker.vcs import GitBackend

SUM_FOO = """
def foo(values):
    total = 0
    for value in values:
        total += value
    return total
"""

SUM_BAR = SUM_FOO.replace("def foo", "def bar")


def _method(name, container=()):
    return ElementKey(kind=ElementKind.METHOD, container=container, name=name)


@pytest.fixture
def settings():
    return TrackerSettings(cache_path=None, max_workers=2)


@pytest.fixture
def rename_repo(repo_builder):
    """foo introduced, renamed to bar, then an unrelated edit in the same file."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Rename foo to bar", {"a.py": SUM_BAR})
    c3 = repo_builder.commit(
        "Add other", {"a.py": SUM_BAR + "\n\ndef other():\n    return 1\n"}
    )
    return repo_builder, (c1, c2, c3)


def test_rename_history(rename_repo, settings):
    """Test a rename yields versions foo, bar, bar with Renamed then Unchanged."""
    builder, (c1, c2, c3) = rename_repo

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        history = tracker.track(c3, "a.py", _method("bar"))

    assert history.commits() == [c1, c2, c3]
    assert [v.key.name for v in history.versions] == ["foo", "bar", "bar"]
    assert history.operations() == [{OperationKind.RENAMED}, {OperationKind.UNCHANGED}]
    assert history.termination is TerminationReason.INTRODUCED
    assert history.introduced_at.commit_id == c1


def test_untouched_file_takes_fast_path(repo_builder, settings, monkeypatch):
    """Test commits that do not touch the file never compare tokens."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Add readme", {"README.md": "# Project\n"})

    def fail(*args, **kwargs):
        raise AssertionError("token comparison should not run")

    monkeypatch.setattr(similarity, "body_similarity", fail)

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "a.py", _method("foo"))

    assert history.commits() == [c1, c2]
    assert history.operations() == [{OperationKind.UNCHANGED}]
    assert history.edges[0].score == 1.0
    assert history.report.fast_path_hits == 1


def test_element_of_root_commit(repo_builder, settings):
    """Test an element present since the root commit has a single version."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c1, "a.py", _method("foo"))

    assert history.commits() == [c1]
    assert history.edges == []
    assert history.termination is TerminationReason.INTRODUCED


def test_element_introduced_later(repo_builder, settings):
    """Test the walk stops at the commit that added the element."""
    repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit(
        "Add scale", {"a.py": SUM_FOO + "\n\ndef scale(x, factor):\n    return x * factor\n"}
    )

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "a.py", _method("scale"))

    assert history.commits() == [c2]
    assert history.termination is TerminationReason.INTRODUCED


def test_body_change(repo_builder, settings):
    """Test an edited body is labeled BodyChanged."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Start at one", {"a.py": SUM_FOO.replace("total = 0", "total = 1")})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "a.py", _method("foo"))

    assert history.commits() == [c1, c2]
    assert history.operations() == [{OperationKind.BODY_CHANGED}]


def test_move_across_files(repo_builder, settings):
    """Test a function moved into a new file is Moved, without BodyChanged."""
    helper = "def helper(value):\n    return value * 2\n"
    main = "def main():\n    return 42\n"
    c1 = repo_builder.commit("Add helpers", {"a.py": helper + "\n\n" + main})
    c2 = repo_builder.commit("Move helper", {"a.py": main, "b.py": helper})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "b.py", _method("helper"))

    assert history.commits() == [c1, c2]
    assert [v.file_path for v in history.versions] == ["a.py", "b.py"]
    assert history.operations() == [{OperationKind.MOVED}]
    assert history.report.cross_file_searches == 1


def test_file_rename(repo_builder, settings):
    """Test a whole-file rename is followed and labeled Moved."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Rename module", {"a.py": None, "c.py": SUM_FOO})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "c.py", _method("foo"))

    assert history.commits() == [c1, c2]
    assert [v.file_path for v in history.versions] == ["a.py", "c.py"]
    assert history.operations() == [{OperationKind.MOVED}]


def test_ambiguous_match_is_reported(repo_builder, settings):
    """Test equally good predecessors produce an Ambiguous diagnostic."""
    body = "    value = load()\n    return value\n"
    repo_builder.commit("Add pair", {"a.py": f"def alpha():\n{body}\n\ndef beta():\n{body}"})
    c2 = repo_builder.commit("Merge pair", {"a.py": f"def merged():\n{body}"})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "a.py", _method("merged"))

    assert [v.key.name for v in history.versions] == ["alpha", "merged"]
    ambiguous = history.ambiguous_edges()
    assert len(ambiguous) == 1
    assert [key.name for key in ambiguous[0].diagnostics[0].alternatives] == ["beta"]


def test_variable_scoped_to_its_method(repo_builder, settings):
    """Test a variable is followed inside its own method when methods swap places."""
    first = "    def first(self):\n        total = 1\n        return total\n"
    second = "    def second(self):\n        total = 2\n        return total\n"
    c1 = repo_builder.commit("Add worker", {"w.py": f"class Worker:\n{first}\n{second}"})
    c2 = repo_builder.commit("Reorder", {"w.py": f"class Worker:\n{second}\n{first}"})

    key = ElementKey(kind=ElementKind.VARIABLE, container=("Worker", "first"), name="total")
    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c2, "w.py", key)

    assert history.commits() == [c1, c2]
    assert history.oldest.source_range.start_line == 3
    assert history.start.source_range.start_line == 7
    assert history.operations() == [{OperationKind.UNCHANGED}]


def test_warm_cache_gives_identical_history(rename_repo, tmp_path):
    """Test a second run over a persisted cache reproduces the history without parsing."""
    builder, (_, _, c3) = rename_repo
    settings = TrackerSettings(cache_path=tmp_path / "snapshots.json", max_workers=2)

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        cold = tracker.track(c3, "a.py", _method("bar"))

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        warm = tracker.track(c3, "a.py", _method("bar"))
        assert tracker.cache.misses == 0

    assert warm.versions == cold.versions
    assert warm.edges == cold.edges
    assert warm.termination == cold.termination


def test_unparseable_parent_is_recorded_as_gap(repo_builder, settings):
    """Test a revision that does not parse is skipped and recorded."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Break it", {"a.py": SUM_FOO + "\ndef broken(:\n"})
    c3 = repo_builder.commit("Fix it", {"a.py": SUM_FOO + "\n\ndef fixed():\n    pass\n"})

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c3, "a.py", _method("foo"))

    assert history.commits() == [c1, c3]
    assert history.termination is TerminationReason.INTRODUCED
    assert len(history.gaps) == 1
    assert history.report.gaps == 1
    assert history.gaps[0].parent_id == c2
    assert history.gaps[0].file_path == "a.py"


def test_consecutive_gaps_make_history_incomplete(repo_builder):
    """Test the walk gives up once the gap limit is reached."""
    repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    repo_builder.commit("Break it", {"a.py": SUM_FOO + "\ndef broken(:\n"})
    c3 = repo_builder.commit("Fix it", {"a.py": SUM_FOO + "\n\ndef fixed():\n    pass\n"})
    settings = TrackerSettings(cache_path=None, max_consecutive_gaps=1)

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(c3, "a.py", _method("foo"))

    assert history.termination is TerminationReason.INCOMPLETE
    assert history.commits() == [c3]


def test_cancelled_walk(rename_repo, settings):
    """Test a set cancel event stops the walk between steps."""
    builder, (_, _, c3) = rename_repo
    cancel = threading.Event()
    cancel.set()

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        history = tracker.track(c3, "a.py", _method("bar"), cancel_event=cancel)

    assert history.termination is TerminationReason.CANCELLED
    assert history.commits() == [c3]


def test_track_many_shares_cache(rename_repo, settings):
    """Test several requests run concurrently and return in request order."""
    builder, (c1, c2, c3) = rename_repo
    requests = [
        TrackRequest(start_commit=c3, file_path="a.py", element_key=_method("bar")),
        TrackRequest(start_commit=c3, file_path="a.py", element_key=_method("other")),
    ]
    cache = SnapshotCache()

    with Tracker.for_repository(builder.path, settings=settings, cache=cache) as tracker:
        histories = tracker.track_many(requests)

    assert histories[0].commits() == [c1, c2, c3]
    assert histories[1].commits() == [c3]
    assert cache.stats()["entries"] == 3


def test_unknown_commit(rename_repo, settings):
    """Test an unknown start commit raises CommitNotFoundError."""
    builder, _ = rename_repo

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        with pytest.raises(CommitNotFoundError):
            tracker.track("0" * 40, "a.py", _method("bar"))


def test_missing_element(rename_repo, settings):
    """Test a seed element absent at the start commit raises ElementNotFoundError."""
    builder, (_, _, c3) = rename_repo

    with Tracker.for_repository(builder.path, settings=settings) as tracker:
        with pytest.raises(ElementNotFoundError):
            tracker.track(c3, "a.py", _method("foo"))
        with pytest.raises(ElementNotFoundError):
            tracker.track(c3, "missing.py", _method("bar"))


def test_ambiguous_seed_needs_line(repo_builder, settings):
    """Test a key matching several elements is rejected unless a line picks one."""
    source = (
        "def run(items):\n"
        "    if items:\n"
        "        first(items)\n"
        "    if not items:\n"
        "        fallback()\n"
    )
    c1 = repo_builder.commit("Add run", {"a.py": source})
    key = ElementKey(kind=ElementKind.BLOCK, name="", signature="if")

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        with pytest.raises(ElementNotFoundError, match="ambiguous"):
            tracker.track(c1, "a.py", key)
        history = tracker.track(c1, "a.py", key, line=4)

    assert history.start.key.name == "not items"


def test_invalid_repository_path(tmp_path):
    """Test a missing repository path is rejected."""
    with pytest.raises(ValueError, match="Repository path does not exist"):
        Tracker.for_repository(tmp_path / "nowhere")


class StallingParser(PythonParser):
    """Python parser that hangs on revisions carrying a ``# stall`` comment."""

    def parse(self, data, file_path, commit_id=""):
        if b"# stall" in data:
            time.sleep(1.0)
        return super().parse(data, file_path, commit_id)


def test_parse_timeout_is_recorded_as_gap(repo_builder):
    """Test a revision whose parsing times out becomes a single gap."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    c2 = repo_builder.commit("Slow revision", {"a.py": SUM_FOO + "\n# stall\n"})
    c3 = repo_builder.commit("Add other", {"a.py": SUM_FOO + "\n\ndef other():\n    return 1\n"})
    settings = TrackerSettings(cache_path=None, max_workers=2, parse_timeout_seconds=0.2)
    backend = GitBackend(RepositoryConfig(repo_path=repo_builder.path))

    with Tracker(backend, settings=settings, registry=ParserRegistry([StallingParser()])) as tracker:
        history = tracker.track(c3, "a.py", _method("foo"))

    assert history.commits() == [c1, c3]
    assert history.termination is TerminationReason.INTRODUCED
    assert len(history.gaps) == 1
    assert history.gaps[0].parent_id == c2
    assert "timed out" in history.gaps[0].reason


def test_merge_follows_best_scoring_parent(repo_builder, settings):
    """Test a merge continues through the parent whose version matches best."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    reworked = SUM_FOO.replace("total = 0", "total = 100").replace("+= value", "+= value * 2")
    c2 = repo_builder.commit("Rework foo", {"a.py": reworked}, parents=[c1])
    tweaked = SUM_FOO.replace("total = 0", "total = 1")
    c3 = repo_builder.commit("Tweak foo", {"a.py": tweaked}, parents=[c1])
    merge = repo_builder.commit(
        "Merge", {"a.py": tweaked + "\n\ndef other():\n    return 1\n"}, parents=[c2, c3]
    )

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(merge, "a.py", _method("foo"))

    assert history.commits() == [c1, c3, merge]
    assert history.operations() == [{OperationKind.BODY_CHANGED}, {OperationKind.UNCHANGED}]
    assert history.termination is TerminationReason.INTRODUCED


def test_merge_tie_prefers_first_parent(repo_builder, settings):
    """Test equally good parents are resolved in parent order."""
    c1 = repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    left = "\n\ndef left():\n    return 'l'\n"
    right = "\n\ndef right():\n    return 'r'\n"
    c2 = repo_builder.commit("Add left", {"a.py": SUM_FOO + left}, parents=[c1])
    c3 = repo_builder.commit("Add right", {"a.py": SUM_FOO + right}, parents=[c1])
    merge = repo_builder.commit("Merge", {"a.py": SUM_FOO + left + right}, parents=[c2, c3])

    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        history = tracker.track(merge, "a.py", _method("foo"))

    assert history.commits() == [c1, c2, merge]
    assert history.operations() == [{OperationKind.UNCHANGED}, {OperationKind.UNCHANGED}]


def test_cache_schema_version_is_not_configurable(repo_builder, monkeypatch):
    """Test the environment cannot override the persisted cache schema version."""
    repo_builder.commit("Add foo", {"a.py": SUM_FOO})
    monkeypatch.setenv("CODETRACKER_CACHE_SCHEMA_VERSION", str(CACHE_SCHEMA_VERSION + 1))

    settings = TrackerSettings(cache_path=None)
    with Tracker.for_repository(repo_builder.path, settings=settings) as tracker:
        assert tracker.cache.schema_version == CACHE_SCHEMA_VERSION
    assert not hasattr(settings, "cache_schema_version")
