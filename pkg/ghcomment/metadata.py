"""Hidden metadata embedded in rendered comment bodies.

A comment posted by ghcomment ends with an HTML comment carrying a JSON
payload:

    <!-- ghcomment: {"SHA1":"abc","TemplateKey":"default","Vars":{"target":""}} -->

GitHub does not display HTML comments, so the payload is invisible in the
rendered markdown, but later runs can read it back to decide whether an
existing comment should be edited in place.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any

MARKER = "ghcomment:"

_PAYLOAD_RE = re.compile(r"<!--\s*ghcomment:\s*(\{(?:(?!-->).)*\})\s*-->", re.DOTALL)

# Escape the characters that could close the HTML comment or be mangled by
# markdown rendering. JSON decoders turn these back into the original text.
_HTML_ESCAPES = {"<": "\\u003c", ">": "\\u003e", "&": "\\u0026"}


@dataclass(frozen=True)
class EmbeddedMetadata:
    """Data embedded in a comment body."""

    sha1: str = ""
    template_key: str = ""
    variables: dict[str, Any] = field(default_factory=dict)

    def to_payload(self) -> dict[str, Any]:
        """Mapping as exposed to update conditions (Comment.Meta)."""
        return {
            "SHA1": self.sha1,
            "TemplateKey": self.template_key,
            "Vars": dict(self.variables),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "EmbeddedMetadata":
        variables = payload.get("Vars")
        return cls(
            sha1=str(payload.get("SHA1") or ""),
            template_key=str(payload.get("TemplateKey") or ""),
            variables=dict(variables) if isinstance(variables, dict) else {},
        )


def _escape_html(text: str) -> str:
    for raw, escaped in _HTML_ESCAPES.items():
        text = text.replace(raw, escaped)
    return text


def encode(metadata: EmbeddedMetadata) -> str:
    """Return the body suffix carrying `metadata`.

    Values JSON cannot represent (dates from YAML, for instance) are
    embedded as strings.
    """
    payload = json.dumps(
        metadata.to_payload(), separators=(",", ":"), ensure_ascii=False, default=str
    )
    return f"\n<!-- {MARKER} {_escape_html(payload)} -->"


def extract_payload(body: str) -> dict[str, Any] | None:
    """Return the first embedded payload object in `body`, or None.

    Never raises: a missing marker or an undecodable payload both yield None.
    """
    if not body or MARKER not in body:
        return None
    for match in _PAYLOAD_RE.finditer(body):
        try:
            obj = json.loads(match.group(1))
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


def decode(body: str) -> tuple[EmbeddedMetadata, bool]:
    """Decode metadata from a comment body.

    Returns `(metadata, True)` when a payload was found, otherwise an empty
    `EmbeddedMetadata` and False.
    """
    payload = extract_payload(body)
    if payload is None:
        return EmbeddedMetadata(), False
    return EmbeddedMetadata.from_payload(payload), True
