"""Tests for the gh-backed comment transport."""
from __future__ import annotations

import io
import json
import subprocess

import pytest

import pkg.ghcomment.github as mod
from pkg.ghcomment.github import (
    MAX_COMMENT_LENGTH,
    CommentPermissionError,
    DryRunGitHub,
    GitHub,
    GitHubAPIError,
    GitHubError,
    TransientGitHubError,
    comment_body,
    parse_comment_pages,
)
from pkg.ghcomment.models import ExistingComment, ResolvedComment


def resolved(**kwargs):
    defaults = dict(org="acme", repo="app", pr_number=7, sha1="abc", body="hello", body_for_too_long="short")
    defaults.update(kwargs)
    return ResolvedComment(**defaults)


def completed(args, returncode=0, stdout="", stderr=""):
    return subprocess.CompletedProcess(args=args, returncode=returncode, stdout=stdout, stderr=stderr)


class FakeGh:
    """Stands in for _run_gh; records args and the JSON sent with --input."""

    def __init__(self, stdout=""):
        self.stdout = stdout
        self.calls: list[list[str]] = []
        self.payloads: list[dict] = []

    def __call__(self, args, *, check=True, env=None, **kwargs):
        self.calls.append(args)
        if "--input" in args:
            with open(args[args.index("--input") + 1], encoding="utf-8") as f:
                self.payloads.append(json.load(f))
        return completed(args, stdout=self.stdout)


class TestParseCommentPages:
    def test_flattens_pages_in_order(self):
        def page(*nodes):
            return {"data": {"repository": {"pullRequest": {"comments": {"nodes": list(nodes)}}}}}

        pages = [
            page({"id": "IC_1", "databaseId": 1, "body": "a", "isMinimized": False, "author": {"login": "bot"}}),
            page(
                {"id": "IC_2", "databaseId": 2, "body": "b", "isMinimized": True, "author": None},
                {"id": "IC_x", "databaseId": None, "body": "skipped"},
            ),
        ]
        assert parse_comment_pages(pages) == [
            ExistingComment(id=1, body="a", author_login="bot", is_minimized=False, node_id="IC_1"),
            ExistingComment(id=2, body="b", author_login="", is_minimized=True, node_id="IC_2"),
        ]

    def test_tolerates_missing_pull_request(self):
        assert parse_comment_pages({"data": {"repository": {"pullRequest": None}}}) == []
        assert parse_comment_pages("nonsense") == []


class TestGitHubTransport:
    def test_list_comments_uses_paginated_graphql(self, monkeypatch):
        fake = FakeGh(stdout=json.dumps([
            {"data": {"repository": {"pullRequest": {"comments": {"nodes": [
                {"id": "IC_1", "databaseId": 11, "body": "x", "isMinimized": False, "author": {"login": "bot"}},
            ]}}}}},
        ]))
        monkeypatch.setattr(mod, "_run_gh", fake)

        comments = GitHub(token="t").list_comments("acme", "app", 7)

        assert [c.id for c in comments] == [11]
        args = fake.calls[0]
        assert args[:4] == ["api", "graphql", "--paginate", "--slurp"]
        assert "owner=acme" in args
        assert "repo=app" in args
        assert "number=7" in args

    def test_list_comments_invalid_json(self, monkeypatch):
        monkeypatch.setattr(mod, "_run_gh", FakeGh(stdout="not json"))
        with pytest.raises(GitHubError, match="invalid JSON"):
            GitHub().list_comments("acme", "app", 7)

    def test_creates_pr_comment(self, monkeypatch):
        fake = FakeGh()
        monkeypatch.setattr(mod, "_run_gh", fake)

        GitHub().post(resolved())

        args = fake.calls[0]
        assert args[:4] == ["api", "-X", "POST", "repos/acme/app/issues/7/comments"]
        assert fake.payloads == [{"body": "hello"}]

    def test_updates_existing_comment(self, monkeypatch):
        fake = FakeGh()
        monkeypatch.setattr(mod, "_run_gh", fake)

        GitHub().post(resolved(comment_id=555))

        assert fake.calls[0][:4] == ["api", "-X", "PATCH", "repos/acme/app/issues/comments/555"]

    def test_commit_comment_without_pr(self, monkeypatch):
        fake = FakeGh()
        monkeypatch.setattr(mod, "_run_gh", fake)

        GitHub().post(resolved(pr_number=0))

        assert fake.calls[0][:4] == ["api", "-X", "POST", "repos/acme/app/commits/abc/comments"]

    def test_no_target_at_all(self, monkeypatch):
        monkeypatch.setattr(mod, "_run_gh", FakeGh())
        with pytest.raises(GitHubError, match="neither"):
            GitHub().post(resolved(pr_number=0, sha1=""))

    def test_too_long_body_uses_short_variant(self, monkeypatch):
        fake = FakeGh()
        monkeypatch.setattr(mod, "_run_gh", fake)

        GitHub().post(resolved(body="x" * (MAX_COMMENT_LENGTH + 1)))

        assert fake.payloads == [{"body": "short"}]

    def test_authenticated_user(self, monkeypatch):
        monkeypatch.setattr(mod, "_run_gh", FakeGh(stdout="bot\n"))
        assert GitHub().authenticated_user() == ("bot", None)

    def test_authenticated_user_failure_is_a_diagnostic(self, monkeypatch):
        def failing(args, **kwargs):
            raise GitHubAPIError(1, "HTTP 401: Bad credentials")

        monkeypatch.setattr(mod, "_run_gh", failing)
        login, problem = GitHub().authenticated_user()
        assert login is None
        assert "Bad credentials" in problem

    def test_pr_number_for_sha(self, monkeypatch):
        fake = FakeGh(stdout=json.dumps([{"number": 12}, {"number": 13}]))
        monkeypatch.setattr(mod, "_run_gh", fake)

        assert GitHub().pr_number_for_sha("acme", "app", "abc") == (12, None)
        assert fake.calls[0] == ["api", "repos/acme/app/commits/abc/pulls"]

    def test_pr_number_for_sha_without_pulls(self, monkeypatch):
        monkeypatch.setattr(mod, "_run_gh", FakeGh(stdout="[]"))
        assert GitHub().pr_number_for_sha("acme", "app", "abc") == (None, None)

    def test_token_is_passed_to_gh(self, monkeypatch):
        seen = {}

        def capture(args, *, env=None, **kwargs):
            seen["env"] = env
            return completed(args, stdout="bot")

        monkeypatch.setattr(mod, "_run_gh", capture)
        GitHub(token="s3cret").authenticated_user()
        assert seen["env"]["GH_TOKEN"] == "s3cret"


class TestDryRun:
    def test_prints_instead_of_posting(self):
        out = io.StringIO()
        DryRunGitHub(stderr=out).post(resolved(comment_id=9))
        assert out.getvalue() == "[ghcomment][dry-run] acme/app#7 (update comment 9)\nhello\n"

    def test_silent(self):
        out = io.StringIO()
        DryRunGitHub(stderr=out, silent=True).post(resolved())
        assert out.getvalue() == ""

    def test_lookups_are_empty(self):
        dry = DryRunGitHub(stderr=io.StringIO())
        assert dry.list_comments("a", "b", 1) == []
        assert dry.authenticated_user() == (None, None)
        assert dry.pr_number_for_sha("a", "b", "c") == (None, None)

    def test_comment_body_boundary(self):
        assert comment_body(resolved(body="x" * MAX_COMMENT_LENGTH)) == "x" * MAX_COMMENT_LENGTH


class TestRunGhErrorHandling:
    def test_403_raises_permission_error(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return completed(args, 1, stderr="HTTP 403: Resource not accessible by integration")

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(CommentPermissionError, match="pull-requests: write"):
            mod._run_gh(["api", "repos/x/y/issues/1/comments"])

    def test_other_errors_raise_api_error(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            return completed(args, 1, stderr="HTTP 404: Not Found")

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(GitHubAPIError) as excinfo:
            mod._run_gh(["api", "repos/x/y/issues/1/comments"])
        assert excinfo.value.returncode == 1

    def test_unchecked_failure_returns_result(self, monkeypatch):
        monkeypatch.setattr(mod.subprocess, "run", lambda args, **kw: completed(args, 1, stderr="nope"))
        assert mod._run_gh(["api", "x"], check=False).returncode == 1

    def test_missing_gh_binary(self, monkeypatch):
        def mock_subprocess_run(args, **kwargs):
            raise FileNotFoundError("gh")

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(GitHubError, match="gh CLI not found"):
            mod._run_gh(["api", "user"])


class TestTransientErrorRetry:
    def test_503_error_triggers_retry_and_eventually_succeeds(self, monkeypatch):
        call_count = 0

        def mock_subprocess_run(args, **kwargs):
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                return completed(args, 1, stderr="gh: HTTP 503: Service Unavailable")
            return completed(args, stdout="ok")

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)
        monkeypatch.setattr(mod.time, "sleep", lambda x: None)

        result = mod._run_gh(["api", "repos/x/y/issues/1/comments"])
        assert result.returncode == 0
        assert call_count == 3

    def test_exhausted_retries_raises_transient_error(self, monkeypatch):
        monkeypatch.setattr(
            mod.subprocess, "run", lambda args, **kw: completed(args, 1, stderr="gh: HTTP 502: Bad Gateway")
        )
        monkeypatch.setattr(mod.time, "sleep", lambda x: None)

        with pytest.raises(TransientGitHubError, match="after 3 attempts"):
            mod._run_gh(["api", "repos/x/y/issues/1/comments"], max_retries=3)

    def test_permission_errors_do_not_retry(self, monkeypatch):
        call_count = 0

        def mock_subprocess_run(args, **kwargs):
            nonlocal call_count
            call_count += 1
            return completed(args, 1, stderr="HTTP 403: Resource not accessible")

        monkeypatch.setattr(mod.subprocess, "run", mock_subprocess_run)

        with pytest.raises(CommentPermissionError):
            mod._run_gh(["api", "repos/x/y/issues/1/comments"])

        assert call_count == 1
