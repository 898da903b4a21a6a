"""ghcomment command line.

Commands:
  exec  Run a command and comment its result on the pull request or commit
  post  Render a template and comment it on the pull request or commit

Examples:
  ghcomment exec -k lint -- make lint
  ghcomment post --template "deployed {{.Vars.env}}" --var env:staging
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import IO, Callable, Sequence

from .config import DEFAULT_TEMPLATE_KEY, Config, ConfigError, find_and_load_config
from .expr import ExprError
from .github import DryRunGitHub, GitHub, GitHubError, Transport
from .logs import configure_logging
from .options import ExecOptions, Options, PostOptions
from .controller import ExecController, PostController
from .platform import Platform
from .template import RenderError, Renderer

SKIP_ENV = "GHCOMMENT_SKIP"
TOKEN_ENVS = ("GHCOMMENT_GITHUB_TOKEN", "GITHUB_TOKEN", "GH_TOKEN")

# Accepted spellings for boolean environment variables.
_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}


def parse_bool(value: str, name: str) -> bool:
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ConfigError(f"parse the environment variable {name} as a bool: {value!r}")


def resolve_token(getenv: Callable[[str], str | None]) -> str:
    for name in TOKEN_ENVS:
        token = getenv(name)
        if token:
            return token
    return ""


def parse_vars(values: Sequence[str]) -> dict[str, str]:
    """Parse repeated `--var key:value` flags."""
    out: dict[str, str] = {}
    for raw in values:
        name, sep, value = raw.partition(":")
        if not sep:
            raise ConfigError("invalid var flag. The format should be '--var <key>:<value>'")
        out[name] = value
    return out


def parse_var_files(values: Sequence[str]) -> dict[str, str]:
    """Parse repeated `--var-file key:path` flags, reading each file."""
    out: dict[str, str] = {}
    for raw in values:
        name, sep, path = raw.partition(":")
        if not sep:
            raise ConfigError("invalid var-file flag. The format should be '--var-file <key>:<file path>'")
        try:
            out[name] = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"read the value of the variable {name} from the file {path}: {exc}") from exc
    return out


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--org", default="", help="GitHub organization or user")
    p.add_argument("--repo", default="", help="GitHub repository name")
    p.add_argument("--pr", type=int, default=0, help="pull request number")
    p.add_argument("--sha1", default="", help="commit SHA")
    p.add_argument("--token", default="", help=f"GitHub token (default: env {', '.join(TOKEN_ENVS)})")
    p.add_argument("-k", "--template-key", default=DEFAULT_TEMPLATE_KEY, help="template key in the config")
    p.add_argument("--template", default="", help="literal template, bypasses the config")
    p.add_argument("--config", default="", help="config file path")
    p.add_argument("-u", "--update-condition", default="", help="condition to edit an existing comment")
    p.add_argument("--var", action="append", default=[], help="template variable <key>:<value>")
    p.add_argument("--var-file", action="append", default=[], help="template variable <key>:<file path>")
    p.add_argument("--dry-run", action="store_true", help="print the comment instead of posting it")
    p.add_argument("--skip-no-token", action="store_true", help="behave like --dry-run when no token is set")
    p.add_argument("--silent", action="store_true", help="don't print comment errors")
    p.add_argument("--log-level", default="", help="debug, info, warning or error")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ghcomment", description="Post command results as GitHub comments.")
    sub = parser.add_subparsers(dest="cmd", required=True)

    exec_p = sub.add_parser("exec", help="run a command and comment its result")
    _add_common(exec_p)
    exec_p.add_argument("command", nargs=argparse.REMAINDER, help="-- COMMAND [ARGS...]")

    post_p = sub.add_parser("post", help="post a rendered template")
    _add_common(post_p)
    post_p.add_argument("-s", "--stdin-template", action="store_true", help="read the template from stdin")
    return parser


def _fill_options(opts: Options, args: argparse.Namespace, getenv: Callable[[str], str | None]) -> None:
    opts.org = args.org
    opts.repo = args.repo
    opts.pr_number = args.pr
    opts.sha1 = args.sha1
    opts.token = args.token or resolve_token(getenv)
    opts.template_key = args.template_key
    opts.template = args.template
    opts.config_path = args.config
    opts.update_condition = args.update_condition
    opts.dry_run = args.dry_run
    opts.skip_no_token = args.skip_no_token
    opts.silent = args.silent
    opts.log_level = args.log_level
    variables = parse_vars(args.var)
    variables.update(parse_var_files(args.var_file))
    opts.vars = variables


def build_transport(opts: Options, cfg: Config, stderr: IO[str]) -> Transport:
    if opts.dry_run or ((opts.skip_no_token or cfg.skip_no_token) and not opts.token):
        return DryRunGitHub(stderr=stderr, silent=opts.silent)
    return GitHub(token=opts.token)


def _command_args(raw: Sequence[str]) -> list[str]:
    args = list(raw)
    if args and args[0] == "--":
        args = args[1:]
    return args


def main(
    argv: Sequence[str] | None = None,
    *,
    getenv: Callable[[str], str | None] = os.environ.get,
    stdin: IO[str] | None = None,
    stderr: IO[str] | None = None,
) -> int:
    """Entry point; returns the process exit code."""
    stderr = stderr or sys.stderr
    args = build_parser().parse_args(argv)

    opts: Options
    if args.cmd == "exec":
        opts = ExecOptions(args=_command_args(args.command))
    else:
        opts = PostOptions(stdin_template=args.stdin_template)

    try:
        skip_env = getenv(SKIP_ENV)
        skip = parse_bool(skip_env, SKIP_ENV) if skip_env else False
        _fill_options(opts, args, getenv)
    except ConfigError as exc:
        print(f"ghcomment error: {exc}", file=stderr)
        return 1

    logger = configure_logging(opts.log_level, stderr, getenv)

    if skip and isinstance(opts, PostOptions):
        return 0

    try:
        cfg = Config() if skip else find_and_load_config(opts.config_path, Path.cwd())
        transport = build_transport(opts, cfg, stderr)
        platform = Platform(getenv=getenv, logger=logger)
        renderer = Renderer(getenv=getenv)
        if isinstance(opts, ExecOptions):
            opts.skip_comment = skip
            if not opts.args:
                raise ConfigError("command is required")
            ctrl = ExecController(
                config=cfg,
                github=transport,
                platform=platform,
                renderer=renderer,
                stdin=stdin,
                stderr=stderr,
                logger=logger,
            )
            return ctrl.exec(opts)
        PostController(
            config=cfg,
            github=transport,
            platform=platform,
            renderer=renderer,
            stdin=stdin or sys.stdin,
            stderr=stderr,
            logger=logger,
        ).post(opts)
    except ConfigError as exc:
        print(f"ghcomment error: {exc}", file=stderr)
        return 1
    except (GitHubError, ExprError, RenderError, OSError) as exc:
        if not opts.silent:
            print(f"ghcomment error: {exc}", file=stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
