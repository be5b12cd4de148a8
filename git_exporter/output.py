"""
Reporting of what a push created in the destination.
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol

from .exceptions import RepoException
from .git_ops import GitRepository

logger = logging.getLogger(__name__)


@dataclass
class SummaryLine:
    """One line of the run summary."""

    summary: str
    destination_ref: str | None = None


@dataclass
class StructuredOutput:
    """Machine-readable record of the changes created in a run."""

    summary_lines: list[SummaryLine] = field(default_factory=list)

    def add_summary_line(self, summary: str, destination_ref: str | None = None) -> SummaryLine:
        line = SummaryLine(summary=summary, destination_ref=destination_ref)
        self.summary_lines.append(line)
        return line

    def to_dict(self) -> dict:
        return {
            "summary_lines": [
                {"summary": line.summary, "destination_ref": line.destination_ref}
                for line in self.summary_lines
            ]
        }


class ProcessPushOutput(Protocol):
    """Processes the server response of a push."""

    def process(self, output: str, new_push: bool, alternate_repo: GitRepository) -> None:
        """
        Args:
            output: raw server response of the push
            new_push: True if this is the first time we push to the destination ref
            alternate_repo: the repository used to stage the commit
        """
        ...


class ProcessPushStructuredOutput:
    """Records the pushed revision in a StructuredOutput."""

    def __init__(self, structured_output: StructuredOutput):
        self.structured_output = structured_output

    def process(self, output: str, new_push: bool, alternate_repo: GitRepository) -> None:
        logger.debug("Push output (new push: %s):\n%s", new_push, output)
        try:
            sha = alternate_repo.parse_ref("HEAD")
        except RepoException as e:
            logger.warning("Failed setting summary: %s", e)
            return
        self.structured_output.add_summary_line(
            summary=f"Created revision {sha}", destination_ref=sha
        )
