"""
Exceptions raised while writing to a destination repository.
"""


class GitExporterError(Exception):
    """Base class for every error reported by git_exporter."""


class RepoException(GitExporterError):
    """A git command failed or the repository is not in the expected state."""


class CannotResolveRevisionException(RepoException):
    """A reference or revision does not exist."""


class ValidationException(GitExporterError):
    """The configuration or the user input does not allow the operation."""

    @classmethod
    def check_condition(cls, condition: bool, message: str) -> None:
        """Raise with ``message`` unless ``condition`` holds."""
        if not condition:
            raise cls(message)


class ChangeRejectedException(ValidationException):
    """The user declined the change when asked for confirmation."""


class EmptyChangeException(ValidationException):
    """The migrated tree is identical to the destination, nothing to commit."""
