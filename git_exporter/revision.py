"""
Revisions, authors and the transformed tree handed to the destination.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from .config import GIT_ORIGIN_REV_ID

_AUTHOR_PATTERN = re.compile(r"^(?P<name>[^<]*)<(?P<email>[^>]*)>\s*$")


@dataclass(frozen=True)
class Author:
    """Author of a change."""

    name: str
    email: str

    @classmethod
    def parse(cls, author: str) -> "Author":
        """Parse 'Name <email>'."""
        match = _AUTHOR_PATTERN.match(author.strip())
        if not match:
            raise ValueError(f"Invalid author '{author}'. Must be in the form of 'Name <email>'")
        return cls(match.group("name").strip(), match.group("email").strip())

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"


@dataclass(frozen=True)
class GitRevision:
    """A git commit, optionally reached through a named reference."""

    sha: str
    reference: str | None = None
    label_name: str = GIT_ORIGIN_REV_ID

    def as_string(self) -> str:
        return self.sha

    @property
    def short_sha(self) -> str:
        return self.sha[:8]


@dataclass(frozen=True)
class TransformResult:
    """A transformed tree ready to be written to the destination."""

    path: Path
    summary: str
    author: Author
    timestamp: datetime
    current_revision: GitRevision
    baseline: str | None = None
    ask_for_confirmation: bool = False
