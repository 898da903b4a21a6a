"""GitHub comment transport over the gh CLI.

Lists pull request comments (with minimized state and author), resolves the
authenticated user and the pull request for a commit, and creates or edits
comments. `DryRunGitHub` stands in when nothing should be sent.
"""
from __future__ import annotations

import json
import logging
import os
import random
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import IO, Protocol

from .models import ExistingComment, ResolvedComment

LOGGER = logging.getLogger(__name__)

# GitHub rejects comment bodies longer than this.
MAX_COMMENT_LENGTH = 65536

LIST_COMMENTS_QUERY = """
query($owner: String!, $repo: String!, $number: Int!, $endCursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $number) {
      comments(first: 100, after: $endCursor) {
        pageInfo { hasNextPage endCursor }
        nodes { id databaseId body isMinimized author { login } }
      }
    }
  }
}
"""


class GitHubError(Exception):
    """Talking to GitHub failed."""


class CommentPermissionError(GitHubError):
    """Token lacks permission to read or write comments."""


class TransientGitHubError(GitHubError):
    """GitHub API returned a transient error (5xx)."""


class GitHubAPIError(GitHubError):
    """gh exited non-zero for a non-transient reason."""

    def __init__(self, returncode: int, stderr: str) -> None:
        super().__init__(f"gh exited with {returncode}: {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


def _is_transient_error(stderr: str) -> bool:
    """Check if error is a transient GitHub API error (5xx)."""
    transient_codes = ("502", "503", "504")
    lower_stderr = stderr.lower()
    # Handle both gh CLI format "(http 503)" and raw "HTTP 503" formats
    return any(
        f"(http {code})" in lower_stderr or f"http {code}" in lower_stderr
        for code in transient_codes
    )


def _run_gh(
    args: list[str],
    *,
    check: bool = True,
    env: dict[str, str] | None = None,
    max_retries: int = 3,
    base_delay: float = 1.0,
) -> subprocess.CompletedProcess[str]:
    """Run a gh CLI command with retry logic for transient errors.

    Args:
        args: Arguments to pass to gh CLI
        check: Whether to raise on non-zero exit code
        env: Environment for the gh process (defaults to ours)
        max_retries: Maximum number of retry attempts for transient errors
        base_delay: Base delay in seconds between retries (uses exponential backoff)

    Returns:
        CompletedProcess result from the gh command

    Raises:
        CommentPermissionError: Token lacks permission (HTTP 403)
        TransientGitHubError: GitHub API returned 5xx after all retries
        GitHubAPIError: Other gh CLI failures
        GitHubError: gh is not installed
    """
    for attempt in range(max_retries):
        try:
            result = subprocess.run(
                ["gh", *args], capture_output=True, text=True, check=False, env=env
            )
        except FileNotFoundError:
            raise GitHubError("gh CLI not found on PATH") from None

        if result.returncode == 0:
            return result

        stderr = (result.stderr or "").lower()

        # Check for permission errors (don't retry these)
        if any(s in stderr for s in ("403", "resource not accessible", "insufficient")):
            raise CommentPermissionError(
                "token lacks permission for this request "
                f"(gh {args[0] if args else ''}): {result.stderr.strip()}\n"
                "Posting comments needs:\n"
                "permissions:\n"
                "  pull-requests: write"
            )

        if _is_transient_error(result.stderr or ""):
            if attempt < max_retries - 1:
                # Exponential backoff with jitter: 1s, 2s, 4s + random jitter
                delay = base_delay * (2 ** attempt) + random.uniform(0, 0.5)
                LOGGER.warning(
                    "GitHub API error (attempt %d/%d), retrying in %.1fs...",
                    attempt + 1,
                    max_retries,
                    delay,
                )
                time.sleep(delay)
                continue
            raise TransientGitHubError(
                f"GitHub API returned transient error after {max_retries} attempts: "
                f"{result.stderr}"
            )

        if check:
            raise GitHubAPIError(result.returncode, result.stderr or "")
        return result

    # The loop must either return or raise. This code should be unreachable.
    raise RuntimeError("_run_gh retry loop exited unexpectedly")


def comment_body(comment: ResolvedComment) -> str:
    """Body to send: the short variant when the full one is too long."""
    if len(comment.body) > MAX_COMMENT_LENGTH:
        return comment.body_for_too_long
    return comment.body


def parse_comment_pages(pages: object) -> list[ExistingComment]:
    """Flatten `gh api graphql --paginate --slurp` output, keeping order."""
    if isinstance(pages, dict):
        pages = [pages]
    if not isinstance(pages, list):
        return []
    comments: list[ExistingComment] = []
    for page in pages:
        if not isinstance(page, dict):
            continue
        pull_request = (
            ((page.get("data") or {}).get("repository") or {}).get("pullRequest") or {}
        )
        nodes = (pull_request.get("comments") or {}).get("nodes") or []
        for node in nodes:
            if not isinstance(node, dict) or not isinstance(node.get("databaseId"), int):
                continue
            author = node.get("author") or {}
            comments.append(
                ExistingComment(
                    id=node["databaseId"],
                    body=str(node.get("body") or ""),
                    author_login=str(author.get("login") or "") if isinstance(author, dict) else "",
                    is_minimized=bool(node.get("isMinimized")),
                    node_id=str(node.get("id") or ""),
                )
            )
    return comments


class Transport(Protocol):
    def list_comments(self, org: str, repo: str, pr_number: int) -> list[ExistingComment]:
        ...

    def authenticated_user(self) -> tuple[str | None, str | None]:
        ...

    def pr_number_for_sha(self, org: str, repo: str, sha1: str) -> tuple[int | None, str | None]:
        ...

    def post(self, comment: ResolvedComment) -> None:
        ...


class GitHub:
    """Transport backed by `gh api`."""

    def __init__(self, token: str = "", logger: logging.Logger | None = None) -> None:
        self._token = token
        self._log = logger or LOGGER

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._token:
            env["GH_TOKEN"] = self._token
        return env

    def _gh(self, args: list[str]) -> subprocess.CompletedProcess[str]:
        return _run_gh(args, env=self._env())

    def list_comments(self, org: str, repo: str, pr_number: int) -> list[ExistingComment]:
        """All comments on the pull request, in listing order."""
        result = self._gh(
            [
                "api",
                "graphql",
                "--paginate",
                "--slurp",
                "-f",
                f"query={LIST_COMMENTS_QUERY}",
                "-f",
                f"owner={org}",
                "-f",
                f"repo={repo}",
                "-F",
                f"number={pr_number}",
            ]
        )
        try:
            pages = json.loads(result.stdout or "[]")
        except json.JSONDecodeError as exc:
            raise GitHubError(f"invalid JSON from comment listing: {exc}") from exc
        comments = parse_comment_pages(pages)
        self._log.debug("got %d comments on %s/%s#%d", len(comments), org, repo, pr_number)
        return comments

    def authenticated_user(self) -> tuple[str | None, str | None]:
        """Login of the token's user; (None, reason) when it can't be resolved."""
        try:
            result = self._gh(["api", "user", "--jq", ".login"])
        except GitHubError as exc:
            return None, str(exc)
        login = (result.stdout or "").strip()
        if not login:
            return None, "empty login in GET /user response"
        return login, None

    def pr_number_for_sha(self, org: str, repo: str, sha1: str) -> tuple[int | None, str | None]:
        """Number of a pull request containing the commit; (None, reason) on failure."""
        try:
            result = self._gh(["api", f"repos/{org}/{repo}/commits/{sha1}/pulls"])
            pulls = json.loads(result.stdout or "[]")
        except GitHubError as exc:
            return None, str(exc)
        except json.JSONDecodeError as exc:
            return None, f"invalid JSON from associated pull requests: {exc}"
        if not isinstance(pulls, list):
            return None, "unexpected associated pull requests payload"
        for pull in pulls:
            if isinstance(pull, dict) and isinstance(pull.get("number"), int):
                return pull["number"], None
        return None, None

    def _send(self, method: str, endpoint: str, payload: dict[str, object]) -> None:
        with tempfile.NamedTemporaryFile("w", encoding="utf-8", suffix=".json", delete=False) as handle:
            json.dump(payload, handle)
            handle.flush()
            tmp_path = handle.name
        try:
            self._gh(["api", "-X", method, endpoint, "--input", tmp_path])
        finally:
            Path(tmp_path).unlink(missing_ok=True)

    def post(self, comment: ResolvedComment) -> None:
        """Edit `comment.comment_id` if set, else create a PR or commit comment.

        Raises GitHubError subclasses.
        """
        repo = f"{comment.org}/{comment.repo}"
        payload: dict[str, object] = {"body": comment_body(comment)}
        if comment.comment_id is not None:
            self._log.debug("edit comment %d on %s", comment.comment_id, repo)
            self._send("PATCH", f"repos/{repo}/issues/comments/{comment.comment_id}", payload)
        elif comment.pr_number:
            self._log.debug("create comment on %s#%d", repo, comment.pr_number)
            self._send("POST", f"repos/{repo}/issues/{comment.pr_number}/comments", payload)
        elif comment.sha1:
            self._log.debug("create commit comment on %s@%s", repo, comment.sha1)
            self._send("POST", f"repos/{repo}/commits/{comment.sha1}/comments", payload)
        else:
            raise GitHubError("neither a pull request number nor a commit SHA to comment on")


class DryRunGitHub:
    """Transport that prints instead of posting."""

    def __init__(self, stderr: IO[str] | None = None, silent: bool = False) -> None:
        self._stderr = stderr or sys.stderr
        self._silent = silent

    def list_comments(self, org: str, repo: str, pr_number: int) -> list[ExistingComment]:
        return []

    def authenticated_user(self) -> tuple[str | None, str | None]:
        return None, None

    def pr_number_for_sha(self, org: str, repo: str, sha1: str) -> tuple[int | None, str | None]:
        return None, None

    def post(self, comment: ResolvedComment) -> None:
        if self._silent:
            return
        where = f"#{comment.pr_number}" if comment.pr_number else f"@{comment.sha1}"
        action = f"update comment {comment.comment_id}" if comment.comment_id is not None else "create comment"
        self._stderr.write(
            f"[ghcomment][dry-run] {comment.org}/{comment.repo}{where} ({action})\n"
            f"{comment_body(comment)}\n"
        )
