"""Route command results to GitHub pull request and commit comments."""

from .assembler import CommentAssembler, Selection
from .config import Config, ConfigError, Rule, find_and_load_config, load_config
from .controller import ExecController, PostController
from .expr import CompileError, EvalError, Evaluator, ExprError
from .github import DryRunGitHub, GitHub, GitHubError
from .matcher import RuleMatcher
from .metadata import EmbeddedMetadata, decode, encode
from .models import CommitContext, ExecutionContext, ExistingComment, ResolvedComment
from .resolver import UpdateResolver
from .template import RenderError, Renderer

__all__ = [
    "CommentAssembler",
    "CommitContext",
    "CompileError",
    "Config",
    "ConfigError",
    "DryRunGitHub",
    "EmbeddedMetadata",
    "EvalError",
    "Evaluator",
    "ExecController",
    "ExecutionContext",
    "ExistingComment",
    "ExprError",
    "GitHub",
    "GitHubError",
    "PostController",
    "RenderError",
    "Renderer",
    "ResolvedComment",
    "Rule",
    "RuleMatcher",
    "Selection",
    "UpdateResolver",
    "decode",
    "encode",
    "find_and_load_config",
    "load_config",
]
