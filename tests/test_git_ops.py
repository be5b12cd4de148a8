"""Tests for git operations module."""

from datetime import datetime, timezone
from pathlib import Path

import pytest
from git import Repo
from rich.console import Console

from git_exporter.exceptions import (
    CannotResolveRevisionException,
    EmptyChangeException,
    RepoException,
)
from git_exporter.git_ops import (
    AddExcludedFilesToIndex,
    ChangeReader,
    GitRepository,
    LazyGitRepository,
)
from git_exporter.glob import Glob
from git_exporter.revision import Author


@pytest.fixture
def local_repo(temp_dir: Path) -> GitRepository:
    """An initialized repository with a committer identity and one commit."""
    repo = GitRepository.init_repo(temp_dir / "local")
    repo.simple_command("config", "user.name", "Test User")
    repo.simple_command("config", "user.email", "test@example.com")
    (repo.path / "README.md").write_text("# Local\n")
    repo.simple_command("add", "README.md")
    repo.simple_command("commit", "-q", "-m", "Initial commit")
    return repo


AUTHOR = Author("Origin Author", "author@example.com")
WHEN = datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc)


class TestGitRepository:
    """Tests for GitRepository wrapper."""

    def test_init_valid_repo(self, local_repo: GitRepository):
        """Test initializing with a valid git repo."""
        git_repo = GitRepository(local_repo.path)
        assert git_repo.path == local_repo.path
        assert git_repo.work_tree == local_repo.path

    def test_init_invalid_repo(self, temp_dir: Path):
        """Test initializing with invalid path raises error."""
        invalid_path = temp_dir / "not-a-repo"
        invalid_path.mkdir()

        with pytest.raises(ValueError, match="Not a valid git repository"):
            GitRepository(invalid_path)

    def test_init_repo_reuses_existing(self, local_repo: GitRepository):
        """Test that init_repo opens an existing repository untouched."""
        head = local_repo.parse_ref("HEAD")
        reopened = GitRepository.init_repo(local_repo.path)
        assert reopened.parse_ref("HEAD") == head

    def test_resolve_reference(self, local_repo: GitRepository):
        revision = local_repo.resolve_reference("HEAD")
        assert len(revision.sha) == 40
        assert revision.reference == "HEAD"

    def test_resolve_missing_reference(self, local_repo: GitRepository):
        """Test that unknown references raise CannotResolveRevisionException."""
        with pytest.raises(CannotResolveRevisionException, match="Cannot find reference"):
            local_repo.resolve_reference("refs/heads/nope")
        assert local_repo.ref_exists("refs/heads/nope") is False
        assert local_repo.ref_exists("HEAD") is True

    def test_failed_command(self, local_repo: GitRepository):
        """Test that git errors are wrapped in RepoException."""
        with pytest.raises(RepoException, match="git checkout"):
            local_repo.simple_command("checkout", "no-such-branch")

    def test_commit_author_and_date(self, local_repo: GitRepository):
        """Test committing with an explicit author and date."""
        (local_repo.path / "new.txt").write_text("new\n")
        local_repo.add_all_force()
        sha = local_repo.commit(AUTHOR, WHEN, "Add new\n")

        commit = Repo(local_repo.path).commit(sha)
        assert commit.author.name == "Origin Author"
        assert commit.author.email == "author@example.com"
        assert commit.authored_datetime == WHEN
        assert commit.committer.name == "Test User"

    def test_empty_commit(self, local_repo: GitRepository):
        """Test that committing nothing raises EmptyChangeException."""
        with pytest.raises(EmptyChangeException, match="empty change"):
            local_repo.commit(AUTHOR, WHEN, "Nothing\n")

    def test_with_work_tree(self, local_repo: GitRepository, temp_dir: Path):
        """Test staging another directory as a full replacement of the index."""
        tree = temp_dir / "tree"
        (tree / "src").mkdir(parents=True)
        (tree / "src" / "app.py").write_text("app\n")
        (tree / ".gitignore").write_text("*.py\n")

        alternate = local_repo.with_work_tree(tree)
        alternate.add_all_force()
        sha = alternate.commit(AUTHOR, WHEN, "Replace\n")

        files = {i.path for i in Repo(local_repo.path).commit(sha).tree.traverse() if i.type == "blob"}
        assert files == {".gitignore", "src/app.py"}
        assert (local_repo.path / "README.md").exists()

    def test_log_grep_and_limit(self, local_repo: GitRepository):
        """Test log queries with grep, paths and limit."""
        for i in range(3):
            (local_repo.path / f"f{i}.txt").write_text(str(i))
            local_repo.add_all_force()
            local_repo.commit(AUTHOR, WHEN, f"Change {i}\n\nRevId: r{i}\n")

        entries = local_repo.log("HEAD").grep("^RevId: ").run()
        assert [e.body.splitlines()[0] for e in entries] == ["Change 2", "Change 1", "Change 0"]

        limited = local_repo.log("HEAD").grep("^RevId: ").with_limit(1).run()
        assert len(limited) == 1
        assert limited[0].author == AUTHOR

        by_path = local_repo.log("HEAD").with_paths(["f1.txt"]).run()
        assert [e.body.splitlines()[0] for e in by_path] == ["Change 1"]

    def test_log_invalid_limit(self, local_repo: GitRepository):
        with pytest.raises(ValueError, match="Limit must be positive"):
            local_repo.log("HEAD").with_limit(0)

    def test_index_and_tree_entries(self, local_repo: GitRepository):
        entries = local_repo.index_entries()
        assert [(mode, path) for mode, _, path in entries] == [("100644", "README.md")]
        assert local_repo.tree_entries("HEAD") == entries

    def test_entries_with_quoted_paths(self, local_repo: GitRepository):
        """Test that paths git quotes in plain output are read verbatim."""
        (local_repo.path / "docs").mkdir()
        (local_repo.path / "docs" / "café.md").write_text("café\n")
        (local_repo.path / 'say "hi".txt').write_text("hi\n")
        local_repo.add_all_force()
        local_repo.commit(AUTHOR, WHEN, "Add unusual paths\n")

        expected = {"README.md", "docs/café.md", 'say "hi".txt'}
        assert {path for _, _, path in local_repo.index_entries()} == expected
        assert {path for _, _, path in local_repo.tree_entries("HEAD")} == expected


class TestChangeReader:
    """Tests for ChangeReader."""

    def test_missing_ref(self, local_repo: GitRepository):
        assert ChangeReader(local_repo).run("refs/heads/nope") == []

    def test_read_head(self, local_repo: GitRepository):
        changes = ChangeReader(local_repo).run("HEAD")
        assert len(changes) == 1
        assert changes[0].message == "Initial commit\n"
        assert changes[0].parents == ()


class TestLazyGitRepository:
    """Tests for LazyGitRepository."""

    def test_created_once(self, local_repo: GitRepository):
        calls = []

        def supplier(console):
            calls.append(console)
            return local_repo

        lazy = LazyGitRepository.memoized(supplier)
        assert calls == []
        assert lazy.get(Console()) is local_repo
        assert lazy.get(Console()) is local_repo
        assert len(calls) == 1


class TestAddExcludedFilesToIndex:
    """Tests for AddExcludedFilesToIndex."""

    def test_add_before_find(self, local_repo: GitRepository):
        adder = AddExcludedFilesToIndex(local_repo, Glob(["**"]).relative_to(local_repo.path))
        with pytest.raises(RepoException, match="must be called before"):
            adder.add()

    def test_keeps_excluded_entries(self, local_repo: GitRepository, temp_dir: Path):
        """Test that entries outside the destination files survive `add --all`."""
        local_repo.update_index([("160000", "1" * 40, "vendor/lib")])
        local_repo.simple_command("commit", "-q", "-m", "Add submodule")

        console = Console(record=True, width=200)
        adder = AddExcludedFilesToIndex(local_repo, Glob(["src/**"]).relative_to(local_repo.path))
        adder.find_submodules(console)

        tree = temp_dir / "tree"
        (tree / "src").mkdir(parents=True)
        (tree / "src" / "app.py").write_text("app\n")
        local_repo.with_work_tree(tree).add_all_force()
        adder.add()

        paths = {path: mode for mode, _, path in local_repo.index_entries()}
        assert paths == {"README.md": "100644", "src/app.py": "100644", "vendor/lib": "160000"}
        assert "Keeping submodule vendor/lib" in console.export_text()
