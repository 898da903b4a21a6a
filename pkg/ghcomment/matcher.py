"""Pick the exec rule that applies to a command result."""

from __future__ import annotations

import logging
from typing import Sequence

from .config import Rule
from .expr import Evaluator
from .models import ExecutionContext


class RuleMatcher:
    """First rule whose `when` condition is true wins.

    Later rules are never evaluated once a rule matches. Compile and
    evaluation errors propagate: without a decision there is nothing to post.
    """

    def __init__(self, evaluator: Evaluator | None = None, logger: logging.Logger | None = None) -> None:
        self._evaluator = evaluator or Evaluator()
        self._log = logger or logging.getLogger(__name__)

    def match(self, rules: Sequence[Rule], context: ExecutionContext) -> tuple[Rule | None, bool]:
        params = context.as_params()
        for idx, rule in enumerate(rules):
            if not self._evaluator.match(rule.condition, params):
                continue
            self._log.debug("rule %d matched: %s", idx, rule.condition)
            return rule, True
        return None, False
