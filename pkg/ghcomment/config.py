"""Typed loader for ghcomment configuration files.

Centralizes parsing/validation so the controllers only see typed values.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

CONFIG_FILE_NAMES = (
    ".ghcomment.yml",
    ".ghcomment.yaml",
    "ghcomment.yml",
    "ghcomment.yaml",
)

DEFAULT_TEMPLATE_KEY = "default"


class ConfigError(RuntimeError):
    """Configuration or options are invalid."""
    pass


@dataclass(frozen=True)
class Rule:
    """One `exec` entry: when `condition` holds, comment with `template`."""
    condition: str
    template: str = ""
    template_for_too_long: str = ""
    update_condition: str = ""
    embedded_var_names: tuple[str, ...] = ()
    suppress_comment: bool = False


@dataclass(frozen=True)
class PostTemplate:
    """One `post` entry."""
    template: str
    template_for_too_long: str = ""
    update_condition: str = ""
    embedded_var_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class BaseConfig:
    org: str = ""
    repo: str = ""


@dataclass(frozen=True)
class Config:
    """Data class for the whole configuration file."""
    base: BaseConfig = field(default_factory=BaseConfig)
    skip_no_token: bool = False
    vars: dict[str, Any] = field(default_factory=dict)
    templates: dict[str, str] = field(default_factory=dict)
    post: dict[str, PostTemplate] = field(default_factory=dict)
    exec: dict[str, list[Rule]] = field(default_factory=dict)
    path: Path | None = None


DEFAULT_EXEC_RULE = Rule(
    condition="ExitCode != 0",
    update_condition='Comment.HasMeta && Comment.Meta.TemplateKey == "default"',
    template="""{{template "status" .}} {{template "link" .}}

{{template "join_command" .}}

{{template "hidden_combined_output" .}}""",
)


def _require_mapping(value: Any, ctx: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigError(f"{ctx}: expected mapping")
    return value


def _require_list(value: Any, ctx: str) -> list[Any]:
    if not isinstance(value, list):
        raise ConfigError(f"{ctx}: expected list")
    return value


def _require_str(value: Any, ctx: str) -> str:
    if not isinstance(value, str):
        raise ConfigError(f"{ctx}: expected string")
    s = value.strip()
    if not s:
        raise ConfigError(f"{ctx}: must be non-empty")
    return s


def _require_str_list(value: Any, ctx: str) -> tuple[str, ...]:
    raw = _require_list(value, ctx)
    return tuple(_require_str(item, f"{ctx}[{idx}]") for idx, item in enumerate(raw))


def _require_bool(value: Any, ctx: str) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{ctx}: expected boolean")
    return value


def _optional_text(value: Any, ctx: str) -> str:
    # Templates keep their whitespace; only the type is checked.
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ConfigError(f"{ctx}: expected string")
    return value


def _optional_str(value: Any, ctx: str) -> str:
    return _optional_text(value, ctx).strip()


def _load_yaml(path: Path) -> Any:
    try:
        return yaml.safe_load(path.read_text())
    except FileNotFoundError:
        raise ConfigError(f"missing config file: {path}") from None
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e


def _parse_rule(raw: Any, ctx: str) -> Rule:
    item = _require_mapping(raw, ctx)
    suppress = False
    if "dont_comment" in item:
        suppress = _require_bool(item.get("dont_comment"), f"{ctx}.dont_comment")
    names: tuple[str, ...] = ()
    if item.get("embedded_var_names") is not None:
        names = _require_str_list(item.get("embedded_var_names"), f"{ctx}.embedded_var_names")
    return Rule(
        condition=_require_str(item.get("when"), f"{ctx}.when"),
        template=_optional_text(item.get("template"), f"{ctx}.template"),
        template_for_too_long=_optional_text(
            item.get("template_for_too_long"), f"{ctx}.template_for_too_long"
        ),
        update_condition=_optional_str(item.get("update_condition"), f"{ctx}.update_condition"),
        embedded_var_names=names,
        suppress_comment=suppress,
    )


def _parse_post_template(raw: Any, ctx: str) -> PostTemplate:
    if isinstance(raw, str):
        return PostTemplate(template=raw)
    item = _require_mapping(raw, ctx)
    names: tuple[str, ...] = ()
    if item.get("embedded_var_names") is not None:
        names = _require_str_list(item.get("embedded_var_names"), f"{ctx}.embedded_var_names")
    update = item.get("update_condition", item.get("update"))
    return PostTemplate(
        template=_optional_text(item.get("template"), f"{ctx}.template"),
        template_for_too_long=_optional_text(
            item.get("template_for_too_long"), f"{ctx}.template_for_too_long"
        ),
        update_condition=_optional_str(update, f"{ctx}.update_condition"),
        embedded_var_names=names,
    )


def parse_config(raw: Any, path: Path | None = None) -> Config:
    """Validate a decoded YAML document."""
    if raw is None:
        return Config(path=path)
    cfg = _require_mapping(raw, "config")

    base = BaseConfig()
    if cfg.get("base") is not None:
        base_cfg = _require_mapping(cfg.get("base"), "config.base")
        base = BaseConfig(
            org=_optional_str(base_cfg.get("org"), "config.base.org"),
            repo=_optional_str(base_cfg.get("repo"), "config.base.repo"),
        )

    skip_no_token = False
    if "skip_no_token" in cfg:
        skip_no_token = _require_bool(cfg.get("skip_no_token"), "config.skip_no_token")

    variables: dict[str, Any] = {}
    if cfg.get("vars") is not None:
        for name, value in _require_mapping(cfg.get("vars"), "config.vars").items():
            variables[_require_str(name, f"config.vars key '{name}'")] = value

    templates: dict[str, str] = {}
    if cfg.get("templates") is not None:
        for name, value in _require_mapping(cfg.get("templates"), "config.templates").items():
            key = _require_str(name, f"config.templates key '{name}'")
            templates[key] = _optional_text(value, f"config.templates[{key}]")

    post: dict[str, PostTemplate] = {}
    if cfg.get("post") is not None:
        for name, value in _require_mapping(cfg.get("post"), "config.post").items():
            key = _require_str(name, f"config.post key '{name}'")
            post[key] = _parse_post_template(value, f"config.post[{key}]")

    exec_rules: dict[str, list[Rule]] = {}
    if cfg.get("exec") is not None:
        for name, value in _require_mapping(cfg.get("exec"), "config.exec").items():
            key = _require_str(name, f"config.exec key '{name}'")
            exec_rules[key] = [
                _parse_rule(item, f"config.exec[{key}][{idx}]")
                for idx, item in enumerate(_require_list(value, f"config.exec[{key}]"))
            ]

    return Config(
        base=base,
        skip_no_token=skip_no_token,
        vars=variables,
        templates=templates,
        post=post,
        exec=exec_rules,
        path=path,
    )


def load_config(path: Path) -> Config:
    """Load and validate a configuration file."""
    return parse_config(_load_yaml(path), path)


def find_config(wd: Path) -> Path | None:
    """Return the nearest configuration file from `wd` upwards."""
    for directory in (wd, *wd.parents):
        for name in CONFIG_FILE_NAMES:
            candidate = directory / name
            if candidate.is_file():
                return candidate
    return None


def find_and_load_config(config_path: str, wd: Path) -> Config:
    """Load `config_path` if given, else the nearest config file, else defaults."""
    if config_path:
        return load_config(Path(config_path))
    found = find_config(wd)
    if found is None:
        return Config()
    return load_config(found)


def exec_rules_for(cfg: Config, template_key: str) -> list[Rule]:
    """Rules configured under `exec.<template_key>`.

    `default` falls back to DEFAULT_EXEC_RULE when not configured.
    """
    rules = cfg.exec.get(template_key)
    if rules is not None:
        return rules
    if template_key != DEFAULT_TEMPLATE_KEY:
        raise ConfigError(f"template isn't found: {template_key}")
    return [DEFAULT_EXEC_RULE]


def post_template_for(cfg: Config, template_key: str) -> PostTemplate:
    template = cfg.post.get(template_key)
    if template is None:
        raise ConfigError(f"template isn't found: {template_key}")
    return template
