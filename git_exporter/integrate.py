"""
Integration of an external change into the exported commit.

A change summary can carry a label (``GIT_EXPORTER_INTEGRATE_REVIEW`` by
default) whose value is ``<url> [<ref>]``. After the exported commit is
created the referenced change is fetched and, depending on the strategy,
recorded as a second parent and/or used as the source of the files the
destination does not own.
"""

import logging
from collections.abc import Callable
from enum import Enum

from rich.console import Console

from .config import DEFAULT_INTEGRATE_LABEL, DestinationOptions, GeneralOptions, IntegrateConfig
from .exceptions import RepoException
from .git_ops import GitRepository
from .message import ChangeMessage
from .revision import GitRevision, TransformResult

logger = logging.getLogger(__name__)


class Strategy(str, Enum):
    # Record the change as a merge parent, keep the exported tree as is
    FAKE_MERGE = "FAKE_MERGE"
    # Merge parent, plus files outside the destination files taken from the change
    FAKE_MERGE_AND_INCLUDE_FILES = "FAKE_MERGE_AND_INCLUDE_FILES"
    # Only take the files outside the destination files, no merge parent
    INCLUDE_FILES = "INCLUDE_FILES"

    @property
    def includes_files(self) -> bool:
        return self is not Strategy.FAKE_MERGE

    @property
    def merges(self) -> bool:
        return self is not Strategy.INCLUDE_FILES


class GitIntegrateChanges:
    """Integrates the change referenced by a label in the transform summary."""

    def __init__(
        self,
        label: str = DEFAULT_INTEGRATE_LABEL,
        strategy: Strategy = Strategy.FAKE_MERGE_AND_INCLUDE_FILES,
        ignore_errors: bool = True,
    ):
        self.label = label
        self.strategy = Strategy(strategy)
        self.ignore_errors = ignore_errors

    @classmethod
    def from_config(cls, config: IntegrateConfig) -> "GitIntegrateChanges":
        return cls(config.label, Strategy(config.strategy), config.ignore_errors)

    def run(
        self,
        repo: GitRepository,
        general_options: GeneralOptions,
        destination_options: DestinationOptions,
        message_info,
        is_ignored_path: Callable[[str], bool],
        transform_result: TransformResult,
        console: Console,
    ) -> None:
        values = ChangeMessage.parse_message(transform_result.summary).label_values(self.label)
        if not values:
            return
        try:
            self._integrate(repo, values[-1], is_ignored_path)
        except RepoException as e:
            if not self.ignore_errors:
                raise
            console.print(f"[yellow]Cannot integrate '{values[-1]}': {e}[/yellow]")
            logger.warning("Ignored integrate error for %s: %s", values[-1], e)

    def _integrate(
        self, repo: GitRepository, value: str, is_ignored_path: Callable[[str], bool]
    ) -> None:
        parts = value.split()
        if not parts:
            raise RepoException(f"Empty value for label '{self.label}'")
        url = parts[0]
        ref = parts[1] if len(parts) > 1 else "HEAD"
        change: GitRevision = repo.fetch_single_ref(url, ref)
        logger.info("Integrating %s (%s) from %s", change.short_sha, ref, url)

        if self.strategy.includes_files:
            included = [
                entry for entry in repo.tree_entries(change.sha) if is_ignored_path(entry[2])
            ]
            repo.update_index(included)

        if not self.strategy.merges:
            # Fold the included files into the exported commit, keeping its author
            repo.simple_command("commit", "--amend", "--no-edit", "--no-verify", "--allow-empty")
            return

        tree = repo.simple_command("write-tree")
        head = repo.parse_ref("HEAD")
        merge = repo.simple_command(
            "commit-tree", tree, "-p", head, "-p", change.sha, "-m", f"Merge of {change.sha}\n"
        )
        repo.simple_command("reset", "--soft", merge)
        # Same message and author as the exported commit, so its labels stay on the tip
        repo.simple_command("commit", "--amend", "--no-verify", "--allow-empty", "-C", head)
