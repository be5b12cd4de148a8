"""
Git destination: writes transformed trees as commits and pushes them.

A destination hands out writers. Writers created for the same destination and
push mode share a WriterState, so a migration of many changes fetches the
destination once and keeps committing on the same local branch.
"""

import logging
import uuid
from collections.abc import Callable, Iterable
from contextlib import ExitStack
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from rich.console import Console
from rich.prompt import Confirm
from rich.syntax import Syntax

from .config import GIT_ORIGIN_REV_ID, DestinationOptions, ExporterConfig, GeneralOptions
from .exceptions import (
    CannotResolveRevisionException,
    ChangeRejectedException,
    RepoException,
    ValidationException,
)
from .git_ops import (
    AddExcludedFilesToIndex,
    ChangeReader,
    GitChange,
    GitLogEntry,
    GitRepository,
    LazyGitRepository,
    local_git_repo,
)
from .glob import Glob
from .integrate import GitIntegrateChanges
from .message import LABEL_SEPARATOR, ChangeMessage, LabelFinder
from .output import ProcessPushOutput, ProcessPushStructuredOutput, StructuredOutput
from .revision import GitRevision, TransformResult

logger = logging.getLogger(__name__)

FORCE_FLAG = "--force"

# Remote configured in a fixed local repo so users can push by hand
LOCAL_REMOTE_NAME = "git_exporter_remote"

# How many label matches to inspect before assuming the label is not there
STATUS_SEARCH_LIMIT = 50


@dataclass(frozen=True)
class MessageInfo:
    """Labels to add to the exported commit message."""

    labels_to_add: tuple[LabelFinder, ...]
    # True if the push creates a new change in the destination
    new_push: bool


class CommitGenerator(Protocol):
    def message(self, transform_result: TransformResult) -> MessageInfo:
        """Generate the message info for the change about to be committed."""
        ...


class DefaultCommitGenerator:
    """Adds one label pointing to the origin revision."""

    def message(self, transform_result: TransformResult) -> MessageInfo:
        rev = transform_result.current_revision
        return MessageInfo(
            labels_to_add=(LabelFinder(f"{rev.label_name}{LABEL_SEPARATOR}{rev.as_string()}"),),
            new_push=True,
        )


@dataclass(frozen=True)
class DestinationStatus:
    """Where the last migration to the destination left off."""

    baseline: str
    pending_changes: tuple[str, ...] = ()


class VisitResult(Enum):
    CONTINUE = "CONTINUE"
    TERMINATE = "TERMINATE"


class WriterResult(Enum):
    OK = "OK"


class WriterState:
    """State shared between writer instances of the same destination and push mode."""

    def __init__(self, local_repo: LazyGitRepository, local_branch: str):
        self.already_fetched = False
        self.first_write = True
        self.local_repo = local_repo
        self.local_branch = local_branch

    @property
    def local_branch_ref(self) -> str:
        return f"refs/heads/{self.local_branch}"

    def __repr__(self) -> str:
        return (
            f"WriterState(local_branch={self.local_branch!r}, "
            f"already_fetched={self.already_fetched}, first_write={self.first_write})"
        )


def _qualified_ref(ref: str) -> str:
    return ref if ref.startswith("refs/") else f"refs/heads/{ref}"


class Writer:
    """Writes transform results to a git destination."""

    def __init__(
        self,
        destination_files: Glob,
        skip_push: bool,
        repo_url: str,
        remote_fetch: str,
        remote_push: str,
        destination_options: DestinationOptions,
        general_options: GeneralOptions,
        commit_generator: CommitGenerator,
        push_output: ProcessPushOutput,
        state: WriterState,
        non_fast_forward_push: bool,
        integrates: Iterable[GitIntegrateChanges],
        console: Console | None = None,
    ):
        self.destination_files = destination_files
        self.skip_push = skip_push
        self.repo_url = repo_url
        self.remote_fetch = remote_fetch
        self.remote_push = remote_push
        self.destination_options = destination_options
        self.general_options = general_options
        self.force = general_options.force
        # Only used when a console is not passed to a method
        self.base_console = console or Console()
        self.commit_generator = commit_generator
        self.push_output = push_output
        self.state = state
        self.non_fast_forward_push = non_fast_forward_push
        self.integrates = list(integrates)

    def supports_history(self) -> bool:
        return True

    def visit_changes(
        self, start: str | None, visitor: Callable[[GitChange], VisitResult]
    ) -> None:
        """Walk destination history from ``start`` (or the branch tip) following first parents."""
        repository = self.state.local_repo.get(self.base_console)
        try:
            self._fetch_if_needed(repository, self.base_console)
        except ValidationException as e:
            raise CannotResolveRevisionException(
                "Cannot visit changes because fetch failed. Does the destination branch exist?"
            ) from e
        start_ref = self._get_local_branch_revision(repository)
        if start_ref is None:
            return

        rev = start if start is not None else start_ref.sha
        change_reader = ChangeReader(repository, limit=1)
        result = change_reader.run(rev)
        if not result:
            if start is None:
                self.base_console.print(
                    "[red]Unable to find HEAD - is the destination repository bare?[/red]"
                )
            raise CannotResolveRevisionException(f"Cannot find reference {rev}")

        current: GitChange | None = result[0]
        while current is not None:
            if visitor(current) is VisitResult.TERMINATE or not current.parents:
                break
            parents = change_reader.run(current.parents[0])
            current = parents[0] if parents else None

    def _fetch_if_needed(self, repo: GitRepository, console: Console) -> None:
        """Do a fetch iff we haven't done one already in this session."""
        if not self.state.already_fetched:
            revision = self._fetch_from_remote(console, repo)
            if revision is not None:
                repo.simple_command("update-ref", self.state.local_branch_ref, revision.sha)
            self.state.already_fetched = True

    def get_destination_status(self, label_name: str) -> DestinationStatus | None:
        """Find the value of ``label_name`` in the most recent destination commit carrying it.

        Returns None when nothing was migrated yet, which callers treat as a
        full migration rather than an error.
        """
        repository = self.state.local_repo.get(self.base_console)
        try:
            self._fetch_if_needed(repository, self.base_console)
        except ValidationException:
            return None
        start_ref = self._get_local_branch_revision(repository)
        if start_ref is None:
            return None

        roots = self.destination_files.roots()
        log_cmd = (
            repository.log(start_ref.sha)
            .grep(f"^{label_name}{LABEL_SEPARATOR}")
            .first_parent(self.destination_options.last_rev_first_parent)
            .with_paths([] if Glob.is_empty_root(roots) else roots)
        )

        # Nearly always the first match is the one. grep can return a false positive
        # (the label text in the description), but no match means no label.
        entries = log_cmd.with_limit(1).run()
        if not entries:
            return None

        value = self._find_label_value(label_name, entries)
        if value is not None:
            return DestinationStatus(value)

        # Try the latest matches. With that many false positives we give up.
        entries = log_cmd.with_limit(STATUS_SEARCH_LIMIT).run()
        value = self._find_label_value(label_name, entries)
        if value is not None:
            return DestinationStatus(value)
        logger.info(
            "Label %s not found in the last %d candidate commits", label_name, len(entries)
        )
        return None

    @staticmethod
    def _find_label_value(label_name: str, entries: list[GitLogEntry]) -> str | None:
        for entry in entries:
            values = ChangeMessage.parse_message(entry.body).label_values(label_name)
            if values:
                return values[-1]
        return None

    def _get_local_branch_revision(self, repo: GitRepository) -> GitRevision | None:
        try:
            return repo.resolve_reference(self.state.local_branch_ref)
        except CannotResolveRevisionException as e:
            if self.force:
                return None
            raise RepoException(
                f"Could not find {self.remote_fetch} in {self.repo_url} "
                f"and '{FORCE_FLAG}' was not used"
            ) from e

    def write(self, transform_result: TransformResult, console: Console | None = None) -> WriterResult:
        """Commit the transformed tree and, unless skipping push, push it."""
        console = console or self.base_console
        logger.info("Exporting from %s to: %r", transform_result.path, self)
        baseline = transform_result.baseline

        scratch_clone = self.state.local_repo.get(console)
        self._fetch_if_needed(scratch_clone, console)

        console.print(f"[dim]Git Destination: Checking out {self.remote_fetch}[/dim]")
        local_branch_revision = self._get_local_branch_revision(scratch_clone)
        self._update_local_branch_to_baseline(scratch_clone, baseline)
        if baseline is not None and local_branch_revision is None:
            # The baseline is known locally but there is no branch tip to rebase onto
            raise RepoException(
                f"Cannot use baseline '{baseline}': fetch reference '{self.remote_fetch}' "
                f"does not exist in {self.repo_url}."
            )

        if self.state.first_write:
            reference = baseline if baseline is not None else self.state.local_branch
            self._config_for_push(scratch_clone)
            if not self.force and local_branch_revision is None:
                raise RepoException(
                    f"Cannot checkout '{reference}' from '{self.repo_url}'. Use '{FORCE_FLAG}' "
                    "if the destination is a new git repo or you don't care about the "
                    "destination current status"
                )
            if local_branch_revision is not None:
                # The branch already points to the baseline, if any
                scratch_clone.simple_command("checkout", "-f", "-q", self.state.local_branch)
            else:
                # New repository: commit to the local branch instead of the default one
                scratch_clone.simple_command(
                    "symbolic-ref", "HEAD", self.state.local_branch_ref
                )
            self.state.first_write = False
        elif not self.skip_push:
            # Should be a no-op, but an iterative migration can take several minutes
            # between changes, so fetch the latest first.
            self._fetch_from_remote(console, scratch_clone)

        path_matcher = self.destination_files.relative_to(scratch_clone.work_tree)
        # Get the submodules (and other excluded entries) before `add --all`
        # schedules their deletion
        excluded_adder = AddExcludedFilesToIndex(scratch_clone, path_matcher)
        excluded_adder.find_submodules(console)

        alternate = scratch_clone.with_work_tree(transform_result.path)

        console.print("[dim]Git Destination: Adding all files[/dim]")
        alternate.add_all_force()

        console.print("[dim]Git Destination: Excluding files[/dim]")
        excluded_adder.add()

        console.print("[dim]Git Destination: Creating a local commit[/dim]")
        message_info = self.commit_generator.message(transform_result)

        msg = ChangeMessage.parse_message(transform_result.summary)
        for label in message_info.labels_to_add:
            msg.add_label(label.name, label.separator, label.value)

        alternate.commit(transform_result.author, transform_result.timestamp, str(msg))

        for integrate in self.integrates:
            integrate.run(
                alternate,
                self.general_options,
                self.destination_options,
                message_info,
                lambda path: not path_matcher(scratch_clone.work_tree / path),
                transform_result,
                console,
            )

        if baseline is not None:
            # Unstaged leftovers in the work tree are fine for commit and push but
            # not for a rebase, which may need the work tree to show conflicts.
            alternate.simple_command("reset", "--hard")
            alternate.rebase(local_branch_revision.sha)

        if self.destination_options.local_repo_path is not None:
            # Don't leave changes in a user provided checkout. Tracked ones...
            scratch_clone.simple_command("reset", "--hard")
            # ...and untracked ones
            scratch_clone.simple_command("clean", "-f")
            scratch_clone.simple_command("checkout", self.state.local_branch)

        if transform_result.ask_for_confirmation:
            console.print(Syntax(scratch_clone.simple_command("show", "HEAD"), "diff"))
            if not Confirm.ask(
                f"Proceed with push to {self.repo_url} {self.remote_push}?", console=console
            ):
                console.print("[yellow]Migration aborted by user.[/yellow]")
                raise ChangeRejectedException(
                    "User aborted execution: did not confirm diff changes."
                )

        if not self.skip_push:
            self._push(console, scratch_clone, alternate, message_info)
        return WriterResult.OK

    def _push(
        self,
        console: Console,
        scratch_clone: GitRepository,
        alternate: GitRepository,
        message_info: MessageInfo,
    ) -> None:
        console.print(
            f"[dim]Git Destination: Pushing to {self.repo_url} {self.remote_push}[/dim]"
        )
        ValidationException.check_condition(
            not self.non_fast_forward_push or self.remote_fetch != self.remote_push,
            "non fast-forward push is only allowed when fetch != push",
        )
        refspec = f"{'+' if self.non_fast_forward_push else ''}HEAD:{_qualified_ref(self.remote_push)}"
        server_response = scratch_clone.push(self.repo_url, [refspec])
        self.push_output.process(server_response, message_info.new_push, alternate)

    def _update_local_branch_to_baseline(self, repo: GitRepository, baseline: str | None) -> None:
        if baseline is None:
            return
        if not repo.ref_exists(baseline):
            if self._get_local_branch_revision(repo) is not None:
                where = f"' from fetch reference '{self.remote_fetch}'"
            else:
                where = f"' and fetch reference '{self.remote_fetch}' itself"
            raise RepoException(f"Cannot find baseline '{baseline}{where} in {self.repo_url}.")
        # Stage the change on top of the baseline instead of the branch tip
        repo.simple_command("update-ref", self.state.local_branch_ref, baseline)

    def _fetch_from_remote(self, console: Console, repo: GitRepository) -> GitRevision | None:
        try:
            console.print(
                f"[dim]Git Destination: Fetching: {self.repo_url} {self.remote_fetch}[/dim]"
            )
            return repo.fetch_single_ref(self.repo_url, self.remote_fetch)
        except CannotResolveRevisionException as e:
            warning = f"Git Destination: '{self.remote_fetch}' doesn't exist in '{self.repo_url}'"
            if not self.force:
                raise ValidationException(
                    f"{warning}. Use {FORCE_FLAG} flag if you want to push anyway"
                ) from e
            console.print(f"[yellow]{warning}[/yellow]")
        return None

    def _config_for_push(self, repo: GitRepository) -> None:
        if self.destination_options.local_repo_path is not None:
            # Let the user push the local branch by hand
            repo.simple_command("config", f"remote.{LOCAL_REMOTE_NAME}.url", self.repo_url)
            repo.simple_command(
                "config",
                f"remote.{LOCAL_REMOTE_NAME}.push",
                f"{self.state.local_branch}:{self.remote_push}",
            )
            repo.simple_command(
                "config", f"branch.{self.state.local_branch}.remote", LOCAL_REMOTE_NAME
            )
        if self.destination_options.committer_name:
            repo.simple_command("config", "user.name", self.destination_options.committer_name)
        if self.destination_options.committer_email:
            repo.simple_command("config", "user.email", self.destination_options.committer_email)
        _verify_user_info_configured(repo)

    def __repr__(self) -> str:
        return (
            f"Writer(repo_url={self.repo_url!r}, fetch={self.remote_fetch!r}, "
            f"push={self.remote_push!r}, skip_push={self.skip_push}, "
            f"local_branch={self.state.local_branch!r})"
        )


def _verify_user_info_configured(repo: GitRepository) -> None:
    """Fail unless user.name and user.email are set, so generated commits get a real committer."""
    name_configured = False
    email_configured = False
    for line in repo.config_list():
        if line.startswith("user.name="):
            name_configured = True
        elif line.startswith("user.email="):
            email_configured = True
    ValidationException.check_condition(
        name_configured and email_configured,
        "'user.name' and/or 'user.email' are not configured. Please run "
        "`git config --global SETTING VALUE` to set them",
    )


class GitDestination:
    """A git repository destination."""

    def __init__(
        self,
        repo_url: str,
        fetch: str,
        push: str,
        destination_options: DestinationOptions,
        general_options: GeneralOptions,
        skip_push: bool = False,
        commit_generator: CommitGenerator | None = None,
        push_output: ProcessPushOutput | None = None,
        integrates: Iterable[GitIntegrateChanges] = (),
    ):
        self.repo_url = repo_url
        self.fetch = fetch
        self.push = push
        self.destination_options = destination_options
        self.general_options = general_options
        # Whether skip_push is set in the destination config
        self.skip_push = skip_push
        # Whether skip_push is set, either by the config or the options
        self.effective_skip_push = skip_push or destination_options.skip_push
        self.commit_generator = commit_generator or DefaultCommitGenerator()
        self.push_output = push_output or ProcessPushStructuredOutput(StructuredOutput())
        self.integrates = list(integrates)
        # Temporary local clones, removed by close()
        self._resources = ExitStack()
        self.local_repo = LazyGitRepository.memoized(
            lambda console: local_git_repo(destination_options, repo_url, self._resources)
        )

    @classmethod
    def from_config(
        cls,
        config: ExporterConfig,
        commit_generator: CommitGenerator | None = None,
        push_output: ProcessPushOutput | None = None,
    ) -> "GitDestination":
        destination = config.destination
        return cls(
            repo_url=destination.url,
            fetch=destination.fetch,
            push=destination.push or destination.fetch,
            destination_options=config.options,
            general_options=config.general,
            skip_push=destination.skip_push,
            commit_generator=commit_generator,
            push_output=push_output,
            integrates=[GitIntegrateChanges.from_config(i) for i in destination.integrates],
        )

    def new_writer(
        self,
        destination_files: Glob,
        dry_run: bool = False,
        old_writer: Writer | None = None,
        console: Console | None = None,
    ) -> Writer:
        """Create a writer, continuing the session of ``old_writer`` when the push mode matches."""
        effective_skip_push = self.effective_skip_push or dry_run

        if old_writer is not None and old_writer.skip_push == effective_skip_push:
            state = old_writer.state
        else:
            if self.destination_options.local_repo_path is not None:
                # Nicer for the user
                local_branch = self.push
            else:
                local_branch = f"git_exporter/push-{uuid.uuid4()}{'-dryrun' if dry_run else ''}"
            state = WriterState(self.local_repo, local_branch)

        return Writer(
            destination_files=destination_files,
            skip_push=effective_skip_push,
            repo_url=self.repo_url,
            remote_fetch=self.fetch,
            remote_push=self.push,
            destination_options=self.destination_options,
            general_options=self.general_options,
            commit_generator=self.commit_generator,
            push_output=self.push_output,
            state=state,
            non_fast_forward_push=self.destination_options.non_fast_forward_push,
            integrates=self.integrates,
            console=console,
        )

    def close(self) -> None:
        """End every session of this destination, deleting temporary local clones.

        A clone under a configured ``local_repo_path`` is left in place.
        """
        self._resources.close()

    def __enter__(self) -> "GitDestination":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def label_name_when_origin(self) -> str:
        return GIT_ORIGIN_REV_ID

    def describe(self) -> dict[str, str]:
        description = {
            "type": "git.destination",
            "url": self.repo_url,
            "fetch": self.fetch,
            "push": self.push,
        }
        if self.skip_push:
            description["skip_push"] = str(self.skip_push).lower()
        return description

    def __repr__(self) -> str:
        return (
            f"GitDestination(repo_url={self.repo_url!r}, fetch={self.fetch!r}, "
            f"push={self.push!r}, skip_push={self.skip_push})"
        )
