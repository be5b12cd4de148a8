"""
Configuration handling for git_exporter.

Defines the destination configuration schema and provides methods for
loading/saving it from YAML files.
"""

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

from .glob import Glob


# Label written into every exported commit when the origin is a git repo
GIT_ORIGIN_REV_ID = "GitOrigin-RevId"

# Label read by the integrate step to find the change to merge in
DEFAULT_INTEGRATE_LABEL = "GIT_EXPORTER_INTEGRATE_REVIEW"


class GlobConfig(BaseModel):
    """File selection owned by the destination."""

    include: list[str] = Field(
        default_factory=lambda: ["**"],
        description="Glob patterns of destination files written by the exporter",
    )
    exclude: list[str] = Field(
        default_factory=list,
        description="Glob patterns left untouched in the destination",
    )

    def to_glob(self) -> Glob:
        """Build the matcher for these patterns."""
        return Glob(self.include, self.exclude)


class IntegrateConfig(BaseModel):
    """An integration run after the exported commit is created."""

    label: str = Field(
        default=DEFAULT_INTEGRATE_LABEL,
        description="Label in the change summary holding '<url> [<ref>]' to integrate",
    )
    strategy: Literal["FAKE_MERGE", "FAKE_MERGE_AND_INCLUDE_FILES", "INCLUDE_FILES"] = (
        Field(
            default="FAKE_MERGE_AND_INCLUDE_FILES",
            description="How the referenced change is integrated",
        )
    )
    ignore_errors: bool = Field(
        default=True, description="Warn instead of failing when the integration fails"
    )


class DestinationConfig(BaseModel):
    """Where and how exported changes are written."""

    url: str = Field(..., description="Git URL (or local path) of the destination repo")
    fetch: str = Field(
        default="main", description="Ref fetched as the base for new changes"
    )
    push: str | None = Field(
        default=None, description="Ref pushed to (defaults to the fetch ref)"
    )
    skip_push: bool = Field(
        default=False, description="Create commits locally but never push them"
    )
    destination_files: GlobConfig = Field(
        default_factory=GlobConfig,
        description="Files in the destination owned by the exporter",
    )
    integrates: list[IntegrateConfig] = Field(
        default_factory=list, description="Integrations run after committing"
    )

    @model_validator(mode="after")
    def _default_push_to_fetch(self) -> "DestinationConfig":
        if not self.push:
            self.push = self.fetch
        return self


class DestinationOptions(BaseModel):
    """Per-run options for the git destination."""

    local_repo_path: Path | None = Field(
        default=None,
        description="Fixed directory for the local clone. A temporary one is used if unset",
    )
    committer_name: str | None = Field(
        default=None, description="user.name configured in the local clone"
    )
    committer_email: str | None = Field(
        default=None, description="user.email configured in the local clone"
    )
    skip_push: bool = Field(
        default=False, description="Do not push, regardless of the destination config"
    )
    non_fast_forward_push: bool = Field(
        default=False,
        description="Force-push. Only allowed when fetch and push refs differ",
    )
    last_rev_first_parent: bool = Field(
        default=False,
        description="Only follow first parents when looking for the last exported revision",
    )


class GeneralOptions(BaseModel):
    """Options shared by every command."""

    force: bool = Field(
        default=False,
        description="Proceed when the destination ref does not exist yet",
    )
    dry_run: bool = Field(default=False, description="Never push")
    verbose: bool = Field(default=False, description="Verbose output")


class ExporterConfig(BaseModel):
    """Main configuration for the exporter."""

    destination: DestinationConfig
    options: DestinationOptions = Field(default_factory=DestinationOptions)
    general: GeneralOptions = Field(default_factory=GeneralOptions)

    @classmethod
    def from_yaml(cls, path: Path) -> "ExporterConfig":
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(mode="json", exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )


def create_default_config(
    url: str,
    fetch: str = "main",
    push: str | None = None,
    local_repo_path: Path | None = None,
) -> ExporterConfig:
    """Create a default configuration with sensible defaults."""
    return ExporterConfig(
        destination=DestinationConfig(url=url, fetch=fetch, push=push),
        options=DestinationOptions(local_repo_path=local_repo_path),
    )
