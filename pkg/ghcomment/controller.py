"""`exec` and `post` orchestration.

`ExecController.exec` runs a command, routes its result through the comment
assembler and posts the outcome. Whatever happens to the comment, the
command's exit code is what `exec` returns.
"""

from __future__ import annotations

import logging
import sys
from typing import IO, Any, Mapping, Sequence

from .assembler import TARGET_VAR, CommentAssembler, Selection
from .config import Config, Rule, exec_rules_for, post_template_for
from .execute import ExecResult, Executor
from .expr import Evaluator, ExprError
from .github import GitHubError, Transport
from .models import ExecutionContext, ExistingComment
from .options import ExecOptions, Options, PostOptions, validate_exec, validate_post
from .platform import Platform
from .template import RenderError, Renderer, builtin_templates, merge_templates


def merge_vars(config_vars: Mapping[str, Any], option_vars: Mapping[str, Any]) -> dict[str, Any]:
    """Option vars override config vars; `target` defaults to ''."""
    merged = {**config_vars, **option_vars}
    if merged.get(TARGET_VAR) is None:
        merged[TARGET_VAR] = ""
    return merged


class _Controller:
    def __init__(
        self,
        *,
        config: Config,
        github: Transport,
        platform: Platform | None = None,
        renderer: Renderer | None = None,
        stderr: IO[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._github = github
        self._platform = platform
        self._stderr = stderr or sys.stderr
        self._log = logger or logging.getLogger(__name__)
        self._assembler = CommentAssembler(Evaluator(), renderer or Renderer(), self._log)

    def _ci(self) -> str:
        return self._platform.ci() if self._platform is not None else ""

    def _complement(self, opts: Options) -> None:
        if self._platform is not None:
            self._platform.complement(opts)
        if not opts.org:
            opts.org = self._config.base.org
        if not opts.repo:
            opts.repo = self._config.base.repo
        if opts.pr_number == 0 and opts.sha1 and opts.org and opts.repo:
            number, problem = self._github.pr_number_for_sha(opts.org, opts.repo, opts.sha1)
            if problem:
                self._log.warning(
                    "list associated prs (org=%s repo=%s sha=%s): %s",
                    opts.org,
                    opts.repo,
                    opts.sha1,
                    problem,
                )
            if number:
                opts.pr_number = number

    def _deliver(self, selection: Selection, context: ExecutionContext, templates: Mapping[str, str]) -> None:
        """Fetch what the assembler needs, assemble, post."""
        comments: list[ExistingComment] = []
        login: str | None = None
        if self._assembler.needs_existing_comments(selection, context):
            login, problem = self._github.authenticated_user()
            if problem:
                self._log.warning("get an authenticated user: %s", problem)
            comments = self._github.list_comments(context.org, context.repo, context.pr_number)
        comment = self._assembler.assemble(selection, context, templates, comments, login)
        self._log.debug(
            "comment meta data: org=%s repo=%s pr_number=%d sha=%s comment_id=%s",
            comment.org,
            comment.repo,
            comment.pr_number,
            comment.sha1,
            comment.comment_id,
        )
        self._github.post(comment)


class ExecController(_Controller):
    def __init__(
        self,
        *,
        config: Config,
        github: Transport,
        executor: Executor | None = None,
        platform: Platform | None = None,
        renderer: Renderer | None = None,
        stdin: IO[str] | None = None,
        stderr: IO[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            config=config,
            github=github,
            platform=platform,
            renderer=renderer,
            stderr=stderr,
            logger=logger,
        )
        self._executor = executor or Executor()
        self._stdin = stdin

    def _run(self, opts: ExecOptions) -> ExecResult:
        result = self._executor.run(opts.args[0], opts.args[1:], stdin=self._stdin)
        if result.start_error:
            self._log.error("start command %s: %s", result.cmd, result.start_error)
        return result

    def exec(self, opts: ExecOptions) -> int:
        """Run the command, post the routed comment, return the exit code.

        Raises ConfigError before running the command when options or the
        template key are invalid.
        """
        self._complement(opts)

        if opts.skip_comment:
            return self._run(opts).exit_code

        validate_exec(opts)
        rules: Sequence[Rule] = [] if opts.template else exec_rules_for(self._config, opts.template_key)

        result = self._run(opts)
        joined = " ".join(opts.args)
        context = ExecutionContext(
            exit_code=result.exit_code,
            command=result.cmd,
            joined_command=joined,
            stdout=result.stdout,
            stderr=result.stderr,
            combined_output=result.combined_output,
            pr_number=opts.pr_number,
            org=opts.org,
            repo=opts.repo,
            sha1=opts.sha1,
            template_key=opts.template_key,
            template=opts.template,
            update_condition=opts.update_condition,
            variables=merge_vars(self._config.vars, opts.vars),
        )
        templates = merge_templates(
            builtin_templates(
                self._ci(),
                exit_code=result.exit_code,
                joined_command=joined,
                combined_output=result.combined_output,
            ),
            self._config.templates,
        )
        try:
            selection = self._assembler.select(rules, context)
            if selection is not None:
                self._deliver(selection, context, templates)
        except (GitHubError, ExprError, RenderError, OSError) as exc:
            if not opts.silent:
                self._stderr.write(f"ghcomment error: {exc}\n")
        except Exception as exc:  # the command's exit code must survive
            self._log.debug("comment failed", exc_info=True)
            if not opts.silent:
                self._stderr.write(f"ghcomment error: unexpected {type(exc).__name__}: {exc}\n")
        return result.exit_code


class PostController(_Controller):
    def __init__(
        self,
        *,
        config: Config,
        github: Transport,
        platform: Platform | None = None,
        renderer: Renderer | None = None,
        stdin: IO[str] | None = None,
        stderr: IO[str] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        super().__init__(
            config=config,
            github=github,
            platform=platform,
            renderer=renderer,
            stderr=stderr,
            logger=logger,
        )
        self._stdin = stdin or sys.stdin

    def _selection(self, opts: PostOptions) -> Selection:
        if opts.stdin_template:
            opts.template = self._stdin.read()
        if opts.template:
            return Selection(template=opts.template, update_condition=opts.update_condition)
        return Selection.from_post_template(
            post_template_for(self._config, opts.template_key), opts.update_condition
        )

    def post(self, opts: PostOptions) -> None:
        """Render and post a comment.

        Raises ConfigError, RenderError, ExprError or GitHubError.
        """
        self._complement(opts)
        selection = self._selection(opts)
        validate_post(opts)
        context = ExecutionContext(
            pr_number=opts.pr_number,
            org=opts.org,
            repo=opts.repo,
            sha1=opts.sha1,
            template_key=opts.template_key,
            template=opts.template,
            update_condition=opts.update_condition,
            variables=merge_vars(self._config.vars, opts.vars),
        )
        templates = merge_templates(builtin_templates(self._ci()), self._config.templates)
        self._deliver(selection, context, templates)
