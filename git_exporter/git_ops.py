"""
Git operations for the exporter.

Provides a wrapper around git operations using GitPython: fetching single
refs, resolving references, staging a foreign work tree, committing, pushing,
rebasing and reading history.
"""

import logging
import tempfile
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from pathlib import Path

from git import Commit, Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError
from rich.console import Console

from .config import DestinationOptions
from .exceptions import (
    CannotResolveRevisionException,
    EmptyChangeException,
    RepoException,
)
from .revision import Author, GitRevision

logger = logging.getLogger(__name__)

# Mode git uses in the index for submodule entries
GITLINK_MODE = "160000"


def _records(output: str) -> list[str]:
    """Split NUL-terminated `-z` output. Paths in it are never quoted."""
    return [record for record in output.split("\0") if record]


@dataclass(frozen=True)
class GitLogEntry:
    """A commit as returned by a log query."""

    sha: str
    body: str
    parents: tuple[str, ...]
    author: Author
    date: datetime

    @classmethod
    def from_commit(cls, commit: Commit) -> "GitLogEntry":
        """Create a GitLogEntry from a GitPython Commit object."""
        return cls(
            sha=commit.hexsha,
            body=commit.message,
            parents=tuple(p.hexsha for p in commit.parents),
            author=Author(commit.author.name or "", commit.author.email or ""),
            date=datetime.fromtimestamp(commit.authored_date, tz=timezone.utc),
        )


@dataclass(frozen=True)
class GitChange:
    """A destination commit visited while walking history."""

    sha: str
    message: str
    author: Author
    date: datetime
    parents: tuple[str, ...]

    @property
    def short_sha(self) -> str:
        return self.sha[:8]

    @classmethod
    def from_entry(cls, entry: GitLogEntry) -> "GitChange":
        return cls(entry.sha, entry.body, entry.author, entry.date, entry.parents)


@dataclass(frozen=True)
class LogCmd:
    """An immutable ``git log`` query. Each ``with_*`` call returns a new query."""

    repository: "GitRepository"
    start: str
    grep_pattern: str | None = None
    first_parent_only: bool = False
    paths: tuple[str, ...] = ()
    limit: int | None = None

    def grep(self, pattern: str) -> "LogCmd":
        return replace(self, grep_pattern=pattern)

    def first_parent(self, first_parent: bool) -> "LogCmd":
        return replace(self, first_parent_only=first_parent)

    def with_paths(self, paths) -> "LogCmd":
        return replace(self, paths=tuple(sorted(paths)))

    def with_limit(self, limit: int) -> "LogCmd":
        if limit <= 0:
            raise ValueError(f"Limit must be positive: {limit}")
        return replace(self, limit=limit)

    def run(self) -> list[GitLogEntry]:
        """Run the query, newest commit first."""
        try:
            commits = self.repository.repo.iter_commits(
                self.start,
                paths=list(self.paths) if self.paths else "",
                grep=self.grep_pattern,
                first_parent=self.first_parent_only,
                max_count=self.limit,
            )
            return [GitLogEntry.from_commit(c) for c in commits]
        except (GitCommandError, ValueError) as e:
            raise RepoException(f"Error running git log from '{self.start}': {e}") from e


class GitRepository:
    """Wrapper around a git repository for export operations.

    The work tree defaults to the repository directory but can point anywhere
    (see ``with_work_tree``), which lets the exporter stage a transformed tree
    straight into the index of its local clone.
    """

    def __init__(self, path: Path, work_tree: Path | None = None):
        """Initialize repository wrapper."""
        self.path = Path(path).resolve()
        try:
            self.repo = Repo(self.path)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise ValueError(f"Not a valid git repository: {self.path}") from e
        self.work_tree = Path(work_tree).resolve() if work_tree else self.path
        self.git = Git(str(self.work_tree))
        self.git.update_environment(
            GIT_DIR=str(Path(self.repo.git_dir).resolve()),
            GIT_WORK_TREE=str(self.work_tree),
        )

    @classmethod
    def init_repo(cls, path: Path) -> "GitRepository":
        """Create a repository at ``path``, or open the one already there."""
        path = Path(path)
        path.mkdir(parents=True, exist_ok=True)
        if not (path / ".git").exists():
            Repo.init(path)
        return cls(path)

    def with_work_tree(self, work_tree: Path) -> "GitRepository":
        """Same repository and index, different work tree."""
        return GitRepository(self.path, work_tree=work_tree)

    def _run(self, *args: str, **kwargs) -> str:
        try:
            return self.git.execute(["git", *args], **kwargs)
        except GitCommandError as e:
            stderr = (e.stderr or "").strip()
            raise RepoException(
                f"Error executing 'git {' '.join(args)}': {stderr or e}"
            ) from e

    def simple_command(self, *args: str) -> str:
        """Run a git command and return its stripped stdout."""
        return self._run(*args)

    def config_list(self) -> list[str]:
        return self._run("config", "-l").splitlines()

    def fetch_single_ref(self, url: str, ref: str) -> GitRevision:
        """Fetch ``ref`` from ``url`` into FETCH_HEAD."""
        try:
            self.git.execute(["git", "fetch", "--no-tags", "--force", url, ref])
        except GitCommandError as e:
            stderr = (e.stderr or "").lower()
            if "couldn't find remote ref" in stderr or "no such remote ref" in stderr:
                raise CannotResolveRevisionException(
                    f"Cannot find '{ref}' in '{url}'"
                ) from e
            raise RepoException(f"Error fetching '{ref}' from '{url}': {e.stderr or e}") from e
        sha = self._run("rev-parse", "FETCH_HEAD")
        return GitRevision(sha, reference=ref)

    def resolve_reference(self, ref: str) -> GitRevision:
        """Resolve a branch, tag or sha to a commit."""
        try:
            sha = self.git.execute(
                ["git", "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"]
            )
        except GitCommandError as e:
            raise CannotResolveRevisionException(f"Cannot find reference '{ref}'") from e
        return GitRevision(sha, reference=ref)

    def ref_exists(self, ref: str) -> bool:
        try:
            self.resolve_reference(ref)
            return True
        except CannotResolveRevisionException:
            return False

    def parse_ref(self, ref: str) -> str:
        return self.resolve_reference(ref).sha

    def add_all_force(self) -> None:
        """Stage the whole work tree, ignoring .gitignore, as a full replacement of the index."""
        self._run("add", "--force", "--all")

    def commit(self, author: Author, timestamp: datetime, message: str) -> str:
        """Create a commit with the staged changes and return its sha."""
        # Ensure timestamp has timezone info
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        try:
            self.git.execute(
                [
                    "git",
                    "commit",
                    "--no-verify",
                    f"--author={author}",
                    f"--date={timestamp.strftime('%Y-%m-%dT%H:%M:%S%z')}",
                    "-m",
                    message,
                ]
            )
        except GitCommandError as e:
            output = f"{e.stdout or ''}{e.stderr or ''}".lower()
            if "nothing to commit" in output or "nothing added to commit" in output:
                raise EmptyChangeException(
                    "Migration of the revision resulted in an empty change. "
                    "Is the change already migrated?"
                ) from e
            raise RepoException(f"Error creating commit: {e.stderr or e}") from e
        return self.parse_ref("HEAD")

    def push(self, url: str, refspecs: list[str]) -> str:
        """Push and return the raw server response."""
        try:
            _, stdout, stderr = self.git.execute(
                ["git", "push", url, *refspecs], with_extended_output=True
            )
        except GitCommandError as e:
            raise RepoException(
                f"Error pushing to {url} {' '.join(refspecs)}: {(e.stderr or '').strip() or e}"
            ) from e
        return f"{stdout}\n{stderr}".strip()

    def log(self, start: str) -> LogCmd:
        return LogCmd(self, start)

    def rebase(self, onto: str) -> None:
        """Rebase the current branch onto ``onto``."""
        try:
            self.git.execute(["git", "rebase", onto])
        except GitCommandError as e:
            raise RepoException(
                f"Conflict or error rebasing onto {onto}: {(e.stderr or '').strip() or e}"
            ) from e

    def index_entries(self) -> list[tuple[str, str, str]]:
        """(mode, sha, path) for every stage-0 entry in the index."""
        entries = []
        for line in _records(self._run("ls-files", "-z", "--stage")):
            meta, path = line.split("\t", 1)
            mode, sha, stage = meta.split()
            if stage == "0":
                entries.append((mode, sha, path))
        return entries

    def update_index(self, entries: list[tuple[str, str, str]], chunk_size: int = 500) -> None:
        """Add (mode, sha, path) entries to the index without touching the work tree."""
        for i in range(0, len(entries), chunk_size):
            args = ["update-index", "--add"]
            for mode, sha, path in entries[i : i + chunk_size]:
                args.extend(["--cacheinfo", f"{mode},{sha},{path}"])
            self._run(*args)

    def tree_entries(self, rev: str) -> list[tuple[str, str, str]]:
        """(mode, sha, path) for every file in the tree of ``rev``."""
        entries = []
        for line in _records(self._run("ls-tree", "-r", "-z", "--full-tree", rev)):
            meta, path = line.split("\t", 1)
            mode, _, sha = meta.split()
            entries.append((mode, sha, path))
        return entries

    def __repr__(self) -> str:
        if self.work_tree != self.path:
            return f"GitRepository({self.path}, work_tree={self.work_tree})"
        return f"GitRepository({self.path})"


def local_git_repo(options: DestinationOptions, url: str, resources: ExitStack) -> GitRepository:
    """Create the local clone used to stage changes for ``url``.

    Without a fixed ``local_repo_path`` the clone lives in a temporary directory
    that is removed when ``resources`` is closed.
    """
    if options.local_repo_path is not None:
        path = Path(options.local_repo_path)
    else:
        temp_dir = tempfile.TemporaryDirectory(prefix="git_exporter-")
        path = Path(resources.enter_context(temp_dir))
    logger.debug("Using %s as local repository for %s", path, url)
    return GitRepository.init_repo(path)


class LazyGitRepository:
    """Creates the local repository on first use and then keeps returning it."""

    def __init__(self, supplier: Callable[[Console], GitRepository]):
        self._supplier = supplier
        self._repo: GitRepository | None = None

    @classmethod
    def memoized(cls, supplier: Callable[[Console], GitRepository]) -> "LazyGitRepository":
        return cls(supplier)

    def get(self, console: Console) -> GitRepository:
        if self._repo is None:
            self._repo = self._supplier(console)
        return self._repo


class ChangeReader:
    """Reads destination commits one at a time."""

    def __init__(self, repository: GitRepository, limit: int = 1):
        self.repository = repository
        self.limit = limit

    def run(self, ref: str) -> list[GitChange]:
        if not self.repository.ref_exists(ref):
            return []
        entries = self.repository.log(ref).with_limit(self.limit).run()
        return [GitChange.from_entry(e) for e in entries]


class AddExcludedFilesToIndex:
    """Keeps files the destination does not own in the index.

    Staging the transformed tree with ``add --all`` replaces the whole index,
    which would delete submodules and every file outside the destination
    files. ``find_submodules`` must run before that stage, while the index
    still has those entries; ``add`` puts them back afterwards.
    """

    def __init__(self, repo: GitRepository, path_matcher: Callable[[Path], bool]):
        self.repo = repo
        self.path_matcher = path_matcher
        self._excluded: list[tuple[str, str, str]] | None = None

    def find_submodules(self, console: Console) -> None:
        excluded = [
            entry
            for entry in self.repo.index_entries()
            if not self.path_matcher(self.repo.work_tree / entry[2])
        ]
        submodules = [path for mode, _, path in excluded if mode == GITLINK_MODE]
        for path in submodules:
            console.print(f"[dim]Git Destination: Keeping submodule {path}[/dim]")
        logger.debug(
            "Found %d excluded index entries (%d submodules)", len(excluded), len(submodules)
        )
        self._excluded = excluded

    def add(self) -> None:
        if self._excluded is None:
            raise RepoException("find_submodules() must be called before add()")
        if self._excluded:
            self.repo.update_index(self._excluded)
