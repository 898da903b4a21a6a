"""CI platform detection.

Fills in org/repo/sha/pull request number from the environment variables each
CI service exposes, so workflows rarely need to pass them explicitly.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from .options import Options

GITHUB_ACTIONS = "github-actions"
CIRCLECI = "circleci"
DRONE = "drone"
CODEBUILD = "codebuild"

_TRAILING_NUMBER_RE = re.compile(r"(\d+)/?$")
_REPO_URL_RE = re.compile(r"[/:]([^/:]+)/([^/]+?)(?:\.git)?/?$")

Getenv = Callable[[str], "str | None"]


@dataclass(frozen=True)
class CIContext:
    org: str = ""
    repo: str = ""
    sha1: str = ""
    pr_number: int = 0


def _pr_number(raw: str | None) -> int:
    """Parse '123', 'pr/123' or '.../pull/123'; 0 when absent."""
    m = _TRAILING_NUMBER_RE.search((raw or "").strip())
    return int(m.group(1)) if m else 0


def _split_repository(full_name: str) -> tuple[str, str]:
    org, _, repo = (full_name or "").partition("/")
    return org, repo


class Platform:
    def __init__(
        self,
        getenv: Getenv | None = None,
        read_text: Callable[[str], str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._getenv = getenv or os.environ.get
        self._read_text = read_text or (lambda path: Path(path).read_text(encoding="utf-8"))
        self._log = logger or logging.getLogger(__name__)

    def _env(self, name: str) -> str:
        return (self._getenv(name) or "").strip()

    def ci(self) -> str:
        """Name of the CI service we run under, or '' if unknown."""
        if self._env("GITHUB_ACTIONS") == "true":
            return GITHUB_ACTIONS
        if self._env("CIRCLECI") == "true":
            return CIRCLECI
        if self._env("DRONE") == "true":
            return DRONE
        if self._env("CODEBUILD_BUILD_ID"):
            return CODEBUILD
        return ""

    def context(self) -> CIContext:
        ci = self.ci()
        if ci == GITHUB_ACTIONS:
            return self._github_actions()
        if ci == CIRCLECI:
            return CIContext(
                org=self._env("CIRCLE_PROJECT_USERNAME"),
                repo=self._env("CIRCLE_PROJECT_REPONAME"),
                sha1=self._env("CIRCLE_SHA1"),
                pr_number=_pr_number(self._env("CIRCLE_PULL_REQUEST")),
            )
        if ci == DRONE:
            return CIContext(
                org=self._env("DRONE_REPO_OWNER"),
                repo=self._env("DRONE_REPO_NAME"),
                sha1=self._env("DRONE_COMMIT_SHA"),
                pr_number=_pr_number(self._env("DRONE_PULL_REQUEST")),
            )
        if ci == CODEBUILD:
            org, repo = "", ""
            m = _REPO_URL_RE.search(self._env("CODEBUILD_SOURCE_REPO_URL"))
            if m:
                org, repo = m.group(1), m.group(2)
            version = self._env("CODEBUILD_SOURCE_VERSION")
            if not version.startswith("pr/"):
                version = self._env("CODEBUILD_WEBHOOK_TRIGGER")
            return CIContext(
                org=org,
                repo=repo,
                sha1=self._env("CODEBUILD_RESOLVED_SOURCE_VERSION"),
                pr_number=_pr_number(version) if version.startswith("pr/") else 0,
            )
        return CIContext()

    def _github_event(self) -> dict[str, Any]:
        path = self._env("GITHUB_EVENT_PATH")
        if not path:
            return {}
        try:
            event = json.loads(self._read_text(path))
        except (OSError, json.JSONDecodeError) as exc:
            self._log.warning("read GitHub event payload %s: %s", path, exc)
            return {}
        return event if isinstance(event, dict) else {}

    def _github_actions(self) -> CIContext:
        org, repo = _split_repository(self._env("GITHUB_REPOSITORY"))
        sha1 = self._env("GITHUB_SHA")
        pr_number = 0
        event = self._github_event()
        pull_request = event.get("pull_request")
        if isinstance(pull_request, dict):
            head = pull_request.get("head")
            if isinstance(head, dict) and isinstance(head.get("sha"), str):
                sha1 = head["sha"]
            number = pull_request.get("number")
            if isinstance(number, int):
                pr_number = number
        issue = event.get("issue")
        if not pr_number and isinstance(issue, dict) and isinstance(issue.get("number"), int):
            pr_number = issue["number"]
        return CIContext(org=org, repo=repo, sha1=sha1, pr_number=pr_number)

    def complement(self, opts: Options) -> None:
        """Fill empty fields of `opts` from the CI environment."""
        ctx = self.context()
        if not opts.org:
            opts.org = ctx.org
        if not opts.repo:
            opts.repo = ctx.repo
        if not opts.sha1:
            opts.sha1 = ctx.sha1
        if not opts.pr_number:
            opts.pr_number = ctx.pr_number
