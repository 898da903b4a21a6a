"""Turn an execution context into the comment to post.

The assembler is pure: it selects a template, renders it, embeds metadata
and picks an update target from comments the caller already fetched. All
network traffic stays with the transport in `github.py`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Mapping, Sequence

from .config import PostTemplate, Rule
from .expr import Evaluator
from .matcher import RuleMatcher
from .metadata import EmbeddedMetadata, encode
from .models import ExecutionContext, ExistingComment, ResolvedComment
from .resolver import UpdateResolver
from .template import Renderer

TARGET_VAR = "target"


@dataclass(frozen=True)
class Selection:
    """The template chosen for this invocation (a matched rule or a literal)."""

    template: str
    template_for_too_long: str = ""
    update_condition: str = ""
    embedded_var_names: tuple[str, ...] = ()

    @classmethod
    def from_post_template(cls, post: PostTemplate, update_condition: str = "") -> "Selection":
        return cls(
            template=post.template,
            template_for_too_long=post.template_for_too_long,
            update_condition=post.update_condition or update_condition,
            embedded_var_names=post.embedded_var_names,
        )


def embedded_var_names(names: Iterable[str]) -> list[str]:
    """Declared names plus `target`, which every comment must carry."""
    out = list(dict.fromkeys(names))
    if TARGET_VAR not in out:
        out.append(TARGET_VAR)
    return out


def with_target(context: ExecutionContext) -> ExecutionContext:
    """Ensure `Vars.target` is set (default empty string)."""
    if TARGET_VAR in context.variables and context.variables[TARGET_VAR] is not None:
        return context
    return replace(context, variables={**context.variables, TARGET_VAR: ""})


def embedded_metadata(context: ExecutionContext, names: Iterable[str]) -> EmbeddedMetadata:
    variables = {
        name: context.variables[name] for name in embedded_var_names(names) if name in context.variables
    }
    return EmbeddedMetadata(sha1=context.sha1, template_key=context.template_key, variables=variables)


class CommentAssembler:
    def __init__(
        self,
        evaluator: Evaluator | None = None,
        renderer: Renderer | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        evaluator = evaluator or Evaluator()
        self._log = logger or logging.getLogger(__name__)
        self._renderer = renderer or Renderer()
        self._matcher = RuleMatcher(evaluator, self._log)
        self._resolver = UpdateResolver(evaluator, self._log)

    def select(self, rules: Sequence[Rule], context: ExecutionContext) -> Selection | None:
        """Choose the template to render, or None when nothing should be posted.

        A literal `context.template` bypasses rule matching. A matched rule
        without its own update condition inherits `context.update_condition`.
        """
        context = with_target(context)
        if context.template:
            return Selection(template=context.template, update_condition=context.update_condition)
        rule, found = self._matcher.match(rules, context)
        if not found or rule is None:
            self._log.debug("no exec rule matched (exit code %d)", context.exit_code)
            return None
        if rule.suppress_comment:
            self._log.debug("matched rule disables commenting: %s", rule.condition)
            return None
        return Selection(
            template=rule.template,
            template_for_too_long=rule.template_for_too_long,
            update_condition=rule.update_condition or context.update_condition,
            embedded_var_names=rule.embedded_var_names,
        )

    def needs_existing_comments(self, selection: Selection, context: ExecutionContext) -> bool:
        """Whether `assemble` will look at existing comments."""
        return bool(selection.update_condition) and context.pr_number != 0

    def assemble(
        self,
        selection: Selection,
        context: ExecutionContext,
        templates: Mapping[str, str],
        existing_comments: Iterable[ExistingComment] = (),
        authenticated_login: str | None = None,
    ) -> ResolvedComment:
        """Render bodies, embed metadata and resolve the comment to update.

        Raises RenderError for malformed templates and CompileError for an
        invalid update condition.
        """
        context = with_target(context)
        params: dict[str, Any] = context.as_params()
        body = self._renderer.render(selection.template, templates, params)
        body_for_too_long = self._renderer.render(selection.template_for_too_long, templates, params)

        suffix = encode(embedded_metadata(context, selection.embedded_var_names))

        comment_id = None
        if self.needs_existing_comments(selection, context):
            comment_id = self._resolver.resolve(
                existing_comments,
                selection.update_condition,
                context.variables.get(TARGET_VAR, ""),
                authenticated_login,
                context.commit,
                context.variables,
            )
        return ResolvedComment(
            org=context.org,
            repo=context.repo,
            pr_number=context.pr_number,
            sha1=context.sha1,
            body=body + suffix,
            body_for_too_long=body_for_too_long + suffix,
            template_key=context.template_key,
            variables=context.variables,
            comment_id=comment_id,
        )

    def build(
        self,
        rules: Sequence[Rule],
        context: ExecutionContext,
        templates: Mapping[str, str],
        existing_comments: Iterable[ExistingComment] = (),
        authenticated_login: str | None = None,
    ) -> ResolvedComment | None:
        """`select` then `assemble` in one step, for callers holding the comments."""
        selection = self.select(rules, context)
        if selection is None:
            return None
        return self.assemble(selection, context, templates, existing_comments, authenticated_login)
