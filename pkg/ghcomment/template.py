"""Comment template rendering.

Templates are plain markdown with `{{ ... }}` actions:

    {{.JoinCommand}}          field of the render context (dotted paths allowed)
    {{.Vars.target}}
    {{template "status" .}}   named snippet rendered against the same context
    {{env "GITHUB_RUN_ID"}}   environment variable

Substituted values are never re-scanned, so command output containing `{{`
is rendered verbatim.
"""

from __future__ import annotations

import json
import os
import re
from typing import Any, Callable, Mapping

ACTION_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_FIELD_RE = re.compile(r"^\.([A-Za-z_]\w*(?:\.[A-Za-z_]\w*)*)$")
_TEMPLATE_RE = re.compile(r'^template\s+"([^"]+)"(?:\s+\.)?$')
_ENV_RE = re.compile(r'^env\s+"([^"]+)"$')

MAX_DEPTH = 10

_LINKS = {
    "github-actions": (
        '[Build link]({{env "GITHUB_SERVER_URL"}}/{{env "GITHUB_REPOSITORY"}}'
        '/actions/runs/{{env "GITHUB_RUN_ID"}})'
    ),
    "circleci": (
        '[workflow](https://circleci.com/workflow-run/{{env "CIRCLE_WORKFLOW_ID"}}) '
        '[job]({{env "CIRCLE_BUILD_URL"}}) (job: {{env "CIRCLE_JOB"}})'
    ),
    "drone": (
        '[build]({{env "DRONE_BUILD_LINK"}}) '
        '[step]({{env "DRONE_BUILD_LINK"}}/{{env "DRONE_STAGE_NUMBER"}}/{{env "DRONE_STEP_NUMBER"}})'
    ),
    "codebuild": '[Build link]({{env "CODEBUILD_BUILD_URL"}})',
}


class RenderError(ValueError):
    """Template is malformed or references unknown data."""


def _format_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _lookup(params: Mapping[str, Any], path: str) -> Any:
    value: Any = params
    walked: list[str] = []
    for part in path.split("."):
        walked.append(part)
        if not isinstance(value, Mapping) or part not in value:
            raise RenderError(f'unknown field ".{".".join(walked)}"')
        value = value[part]
    return value


class Renderer:
    """Renders templates against a params mapping and named snippets."""

    def __init__(self, getenv: Callable[[str], str | None] | None = None) -> None:
        self._getenv = getenv or os.environ.get

    def render(self, template: str, templates: Mapping[str, str], params: Mapping[str, Any]) -> str:
        """Render `template`. Raises RenderError."""
        return self._render(template, templates, params, depth=0)

    def _render(
        self,
        template: str,
        templates: Mapping[str, str],
        params: Mapping[str, Any],
        *,
        depth: int,
    ) -> str:
        if not template:
            return ""
        if depth > MAX_DEPTH:
            raise RenderError(f"template nesting exceeds {MAX_DEPTH} levels")
        out: list[str] = []
        pos = 0
        for match in ACTION_RE.finditer(template):
            literal = template[pos:match.start()]
            if "{{" in literal:
                raise RenderError(f"unclosed action at offset {pos + literal.index('{{')}")
            out.append(literal)
            out.append(self._action(match.group(1).strip(), templates, params, depth))
            pos = match.end()
        rest = template[pos:]
        if "{{" in rest:
            raise RenderError(f"unclosed action at offset {pos + rest.index('{{')}")
        out.append(rest)
        return "".join(out)

    def _action(
        self,
        action: str,
        templates: Mapping[str, str],
        params: Mapping[str, Any],
        depth: int,
    ) -> str:
        m = _FIELD_RE.match(action)
        if m:
            return _format_value(_lookup(params, m.group(1)))
        m = _TEMPLATE_RE.match(action)
        if m:
            name = m.group(1)
            if name not in templates:
                raise RenderError(f'no such template "{name}"')
            return self._render(templates[name], templates, params, depth=depth + 1)
        m = _ENV_RE.match(action)
        if m:
            return self._getenv(m.group(1)) or ""
        raise RenderError(f"unsupported action {{{{{action}}}}}")


def _fence(text: str) -> str:
    longest = max((len(run) for run in re.findall(r"`+", text)), default=0)
    return "`" * max(3, longest + 1)


def builtin_templates(
    ci: str,
    *,
    exit_code: int | None = None,
    joined_command: str = "",
    combined_output: str = "",
) -> dict[str, str]:
    """Named snippets available to every template.

    Command-dependent snippets are only present when `exit_code` is given.
    """
    templates = {"link": _LINKS.get(ci, "")}
    if exit_code is None:
        return templates
    command_fence = _fence(joined_command)
    output_fence = _fence(combined_output)
    templates.update(
        {
            "status": ":white_check_mark:" if exit_code == 0 else ":x:",
            "exit_code": str(exit_code),
            "join_command": f"{command_fence}\n$ {{{{.JoinCommand}}}}\n{command_fence}",
            "hidden_combined_output": (
                f"<details>\n\n{output_fence}\n{{{{.CombinedOutput}}}}\n{output_fence}\n\n</details>"
            ),
        }
    )
    return templates


def merge_templates(builtins: Mapping[str, str], configured: Mapping[str, str]) -> dict[str, str]:
    """Configured snippets override built-ins of the same name."""
    return {**builtins, **configured}
