"""Shared fakes for controller and CLI tests."""
from __future__ import annotations

import logging

import pytest

from pkg.ghcomment.logs import LOGGER_NAME
from pkg.ghcomment.models import ExistingComment, ResolvedComment


class FakeTransport:
    """Records posts instead of talking to GitHub."""

    def __init__(self, comments=None, login="ghcomment-bot", pr_for_sha=None, fail_post=None):
        self.comments = list(comments or [])
        self.login = login
        self.pr_for_sha = pr_for_sha
        self.fail_post = fail_post
        self.posted: list[ResolvedComment] = []
        self.list_calls: list[tuple[str, str, int]] = []
        self.sha_lookups: list[tuple[str, str, str]] = []

    def list_comments(self, org, repo, pr_number) -> list[ExistingComment]:
        self.list_calls.append((org, repo, pr_number))
        return list(self.comments)

    def authenticated_user(self):
        if self.login is None:
            return None, "no user"
        return self.login, None

    def pr_number_for_sha(self, org, repo, sha1):
        self.sha_lookups.append((org, repo, sha1))
        if self.pr_for_sha is None:
            return None, "not found"
        return self.pr_for_sha, None

    def post(self, comment: ResolvedComment) -> None:
        if self.fail_post is not None:
            raise self.fail_post
        self.posted.append(comment)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """configure_logging() detaches the package logger from caplog; undo it."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)
