"""Decide which existing pull request comment, if any, to edit in place."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable, Mapping

from .expr import Evaluator, ExprError
from .metadata import extract_payload
from .models import CommitContext, ExistingComment


def _literal(value: Any) -> str:
    if value is None or isinstance(value, (str, bool, int, float)):
        return json.dumps(value, ensure_ascii=False)
    return json.dumps(str(value), ensure_ascii=False)


def scoped_condition(update_condition: str, target: Any) -> str:
    """AND the update condition with a check on the embedded `target` var.

    Keeps rule sets that share a pull request (e.g. two CI jobs using
    different `target` values) from editing each other's comments.
    """
    return f"({update_condition}) && Comment.Meta.Vars.target == {_literal(target)}"


def comment_params(
    comment: ExistingComment,
    commit: CommitContext,
    variables: Mapping[str, Any],
) -> dict[str, Any]:
    """Context seen by update conditions for one existing comment."""
    payload = extract_payload(comment.body)
    return {
        "Comment": {
            "Body": comment.body,
            "Meta": payload if payload is not None else {},
            "HasMeta": payload is not None,
        },
        "Commit": commit.as_params(),
        "Vars": variables,
    }


class UpdateResolver:
    """Find the comment to update; the last qualifying comment wins.

    Comments must be passed in listing order. Minimized comments are never
    candidates, and when `authenticated_login` is known only that user's
    comments are. A comment whose condition fails to evaluate is skipped
    like a non-matching one.
    """

    def __init__(self, evaluator: Evaluator | None = None, logger: logging.Logger | None = None) -> None:
        self._evaluator = evaluator or Evaluator()
        self._log = logger or logging.getLogger(__name__)

    def resolve(
        self,
        comments: Iterable[ExistingComment],
        update_condition: str,
        target: Any,
        authenticated_login: str | None,
        commit: CommitContext,
        variables: Mapping[str, Any],
    ) -> int | None:
        """Return the id of the comment to edit, or None to create a new one.

        Raises CompileError if the update condition is not valid syntax.
        """
        if not update_condition or commit.pr_number == 0:
            return None

        program = self._evaluator.compile(scoped_condition(update_condition, target))

        selected: int | None = None
        for comment in comments:
            if comment.is_minimized:
                continue
            if authenticated_login and comment.author_login != authenticated_login:
                continue
            params = comment_params(comment, commit, variables)
            self._log.debug(
                "judge whether comment %s (node %s) can be edited: %s",
                comment.id,
                comment.node_id or "-",
                update_condition,
            )
            try:
                matched = self._evaluator.run(program, params)
            except ExprError as exc:
                self._log.warning("evaluate update condition for comment %s: %s", comment.id, exc)
                continue
            if matched is True:
                selected = comment.id
        return selected
