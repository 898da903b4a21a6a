"""Value objects passed between the routing engine and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ExecutionContext:
    """Everything known about one invocation, read-only once built."""

    exit_code: int = 0
    command: str = ""
    joined_command: str = ""
    stdout: str = ""
    stderr: str = ""
    combined_output: str = ""
    pr_number: int = 0
    org: str = ""
    repo: str = ""
    sha1: str = ""
    template_key: str = ""
    template: str = ""
    update_condition: str = ""
    variables: dict[str, Any] = field(default_factory=dict)

    def as_params(self) -> dict[str, Any]:
        """Flat mapping used by `when` conditions and templates.

        Field names are part of the configuration language:
        `ExitCode != 0`, `{{.JoinCommand}}`, `{{.Vars.target}}`.
        """
        return {
            "ExitCode": self.exit_code,
            "Command": self.command,
            "JoinCommand": self.joined_command,
            "Stdout": self.stdout,
            "Stderr": self.stderr,
            "CombinedOutput": self.combined_output,
            "PRNumber": self.pr_number,
            "Org": self.org,
            "Repo": self.repo,
            "SHA1": self.sha1,
            "TemplateKey": self.template_key,
            "Template": self.template,
            "UpdateCondition": self.update_condition,
            "Vars": self.variables,
        }

    @property
    def commit(self) -> "CommitContext":
        return CommitContext(org=self.org, repo=self.repo, pr_number=self.pr_number, sha1=self.sha1)


@dataclass(frozen=True)
class CommitContext:
    org: str
    repo: str
    pr_number: int
    sha1: str

    def as_params(self) -> dict[str, Any]:
        return {"Org": self.org, "Repo": self.repo, "PRNumber": self.pr_number, "SHA1": self.sha1}


@dataclass(frozen=True)
class ExistingComment:
    """Snapshot of a comment already on the pull request."""

    id: int
    body: str
    author_login: str = ""
    is_minimized: bool = False
    node_id: str = ""


@dataclass(frozen=True)
class ResolvedComment:
    """Comment ready for the transport to create or update."""

    org: str
    repo: str
    pr_number: int
    sha1: str
    body: str
    body_for_too_long: str
    template_key: str = ""
    variables: dict[str, Any] = field(default_factory=dict)
    comment_id: int | None = None
