"""
Path selection for the files a destination owns.

Patterns use fnmatch syntax relative to the repository root. ``*`` already
crosses directory separators, so ``**`` only matters as a leading ``**/``,
which also matches files at the root.
"""

import fnmatch
from collections.abc import Callable, Iterable
from pathlib import Path, PurePosixPath

_WILDCARDS = set("*?[")


def _matches_pattern(path: str, pattern: str) -> bool:
    clean_pattern = pattern.rstrip("/")
    if fnmatch.fnmatchcase(path, clean_pattern):
        return True
    # Directory patterns ("build/") cover everything below them
    if pattern.endswith("/") and path.startswith(clean_pattern + "/"):
        return True
    if clean_pattern.startswith("**/"):
        return _matches_pattern(path, pattern[3:])
    return False


class Glob:
    """A set of include patterns minus a set of exclude patterns."""

    def __init__(self, include: Iterable[str], exclude: Iterable[str] = ()):
        self.include = tuple(include)
        self.exclude = tuple(exclude)

    def matches(self, path: str) -> bool:
        """Check a repository-relative, '/'-separated path."""
        path = str(PurePosixPath(path))
        if any(_matches_pattern(path, p) for p in self.exclude):
            return False
        return any(_matches_pattern(path, p) for p in self.include)

    def relative_to(self, base: Path) -> Callable[[Path], bool]:
        """Return a matcher for absolute paths under ``base``."""
        base = Path(base).resolve()

        def matcher(path: Path) -> bool:
            path = Path(path)
            if not path.is_absolute():
                path = base / path
            try:
                rel = path.resolve().relative_to(base)
            except ValueError:
                return False
            return self.matches(rel.as_posix())

        return matcher

    def roots(self) -> set[str]:
        """Directories that contain every file the include patterns can match.

        Each include pattern contributes its leading wildcard-free directories.
        A pattern that starts with a wildcard contributes the empty root, meaning
        the whole repository.
        """
        roots: set[str] = set()
        for pattern in self.include:
            parts = PurePosixPath(pattern).parts
            literal: list[str] = []
            for part in parts[:-1]:
                if _WILDCARDS & set(part):
                    break
                literal.append(part)
            if len(literal) == len(parts) - 1 and parts and not (_WILDCARDS & set(parts[-1])):
                # A plain file path is its own root
                literal.append(parts[-1])
            roots.add("/".join(literal))

        if "" in roots:
            return {""}
        # Drop roots nested inside another root
        return {
            r for r in roots
            if not any(r != o and r.startswith(o + "/") for o in roots)
        }

    @staticmethod
    def is_empty_root(roots: set[str]) -> bool:
        """True when the roots cover the whole repository."""
        return not roots or roots == {""}

    def __repr__(self) -> str:
        return f"Glob(include={list(self.include)!r}, exclude={list(self.exclude)!r})"
