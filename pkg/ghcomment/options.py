"""Command options shared by `exec` and `post`."""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import DEFAULT_TEMPLATE_KEY, ConfigError


@dataclass
class Options:
    org: str = ""
    repo: str = ""
    token: str = ""
    sha1: str = ""
    template: str = ""
    template_key: str = DEFAULT_TEMPLATE_KEY
    config_path: str = ""
    pr_number: int = 0
    update_condition: str = ""
    dry_run: bool = False
    skip_no_token: bool = False
    silent: bool = False
    log_level: str = ""
    vars: dict[str, str] = field(default_factory=dict)


@dataclass
class ExecOptions(Options):
    args: list[str] = field(default_factory=list)
    skip_comment: bool = False


@dataclass
class PostOptions(Options):
    stdin_template: bool = False


def validate(opts: Options) -> None:
    """Raise ConfigError when the comment target is underspecified."""
    if not opts.org:
        raise ConfigError("org is required")
    if not opts.repo:
        raise ConfigError("repo is required")
    if opts.pr_number < 0:
        raise ConfigError("pr number must be a positive integer")
    if opts.pr_number == 0 and not opts.sha1:
        raise ConfigError("sha1 or pr is required")


def validate_exec(opts: ExecOptions) -> None:
    validate(opts)
    if not opts.template_key:
        raise ConfigError("template-key is required")
    if not opts.args:
        raise ConfigError("command is required")


def validate_post(opts: PostOptions) -> None:
    validate(opts)
    if not opts.template and not opts.template_key:
        raise ConfigError("template or template-key is required")
