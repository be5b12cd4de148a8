"""Pytest configuration and fixtures for git_exporter tests."""

import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest
from git import Repo
from rich.console import Console

from git_exporter.config import DestinationOptions, GeneralOptions
from git_exporter.destination import GitDestination
from git_exporter.glob import Glob
from git_exporter.revision import Author, GitRevision, TransformResult


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture(autouse=True)
def isolated_git_config(temp_dir: Path, monkeypatch):
    """Keep the user's global and system git config out of the tests."""
    home = temp_dir / "home"
    home.mkdir()
    (home / ".gitconfig").write_text("")
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(home / ".gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")


def configure_user(repo: Repo) -> None:
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")


class RemoteRepo:
    """A bare repository acting as the destination, fed through a seed clone."""

    def __init__(self, path: Path, seed_path: Path):
        self.path = path
        self.url = str(path)
        self.bare = Repo.init(path, bare=True)
        self.seed = Repo.init(seed_path)
        configure_user(self.seed)

    def commit(
        self,
        files: dict[str, str],
        message: str,
        branch: str = "main",
        parent: str | None = None,
    ) -> str:
        """Commit ``files`` on top of ``parent`` (default: the branch tip) and push it."""
        if parent is not None:
            self.seed.git.checkout("-f", "-q", "--detach", parent)
        elif self.has_branch(branch):
            self.seed.git.fetch(self.url, branch)
            self.seed.git.checkout("-f", "-q", "--detach", "FETCH_HEAD")
        for name, content in files.items():
            file_path = Path(self.seed.working_dir) / name
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content)
        self.seed.git.add("--all")
        self.seed.git.commit("--allow-empty", "-q", "-m", message)
        sha = self.seed.head.commit.hexsha
        self.seed.git.push(self.url, f"HEAD:refs/heads/{branch}")
        return sha

    def has_branch(self, branch: str = "main") -> bool:
        return any(head.name == branch for head in self.bare.heads)

    def head(self, branch: str = "main"):
        return self.bare.commit(f"refs/heads/{branch}")

    def files(self, branch: str = "main") -> set[str]:
        return {item.path for item in self.head(branch).tree.traverse() if item.type == "blob"}


@pytest.fixture
def empty_remote(temp_dir: Path) -> RemoteRepo:
    """A destination repository without any commit."""
    return RemoteRepo(temp_dir / "remote.git", temp_dir / "seed")


@pytest.fixture
def remote(empty_remote: RemoteRepo) -> RemoteRepo:
    """A destination repository with an initial commit on main."""
    empty_remote.commit({"README.md": "# Public Repo\n"}, "Initial commit")
    return empty_remote


@pytest.fixture
def make_tree(temp_dir: Path):
    """Factory creating a transformed tree (a plain directory) from a dict of files."""
    counter = iter(range(1000))

    def _make_tree(files: dict[str, str]) -> Path:
        tree = temp_dir / f"tree-{next(counter)}"
        tree.mkdir()
        for name, content in files.items():
            file_path = tree / name
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_path.write_text(content)
        return tree

    return _make_tree


@pytest.fixture
def destination_options() -> DestinationOptions:
    """Options with a committer identity, as the local clone has no user config."""
    return DestinationOptions(
        committer_name="Exporter Bot",
        committer_email="exporter@example.com",
    )


@pytest.fixture
def console() -> Console:
    """A console that records output instead of printing it."""
    return Console(record=True, width=200, force_terminal=False)


@pytest.fixture
def make_destination(destination_options: DestinationOptions):
    """Factory for a GitDestination pointing at a test remote."""
    destinations = []

    def _make_destination(
        remote: "RemoteRepo",
        force: bool = False,
        skip_push: bool = False,
        fetch: str = "main",
        push: str | None = None,
        options: DestinationOptions | None = None,
        **kwargs,
    ) -> GitDestination:
        destination = GitDestination(
            repo_url=remote.url,
            fetch=fetch,
            push=push or fetch,
            destination_options=options or destination_options,
            general_options=GeneralOptions(force=force),
            skip_push=skip_push,
            **kwargs,
        )
        destinations.append(destination)
        return destination

    yield _make_destination
    for destination in destinations:
        destination.close()


@pytest.fixture
def make_writer(make_destination, console: Console):
    """Factory for a writer owning every destination file unless told otherwise."""

    def _make_writer(remote: "RemoteRepo", include: list[str] | None = None, **kwargs):
        destination = make_destination(remote, **kwargs)
        return destination.new_writer(Glob(include or ["**"]), console=console)

    return _make_writer


@pytest.fixture
def make_result():
    """Factory for the TransformResult of a transformed tree."""

    def _make_result(
        tree: Path,
        revision: str = "a" * 40,
        summary: str = "Exported change\n",
        baseline: str | None = None,
        ask_for_confirmation: bool = False,
    ) -> TransformResult:
        return TransformResult(
            path=tree,
            summary=summary,
            author=Author("Origin Author", "author@example.com"),
            timestamp=datetime(2024, 5, 17, 12, 30, tzinfo=timezone.utc),
            current_revision=GitRevision(revision),
            baseline=baseline,
            ask_for_confirmation=ask_for_confirmation,
        )

    return _make_result
