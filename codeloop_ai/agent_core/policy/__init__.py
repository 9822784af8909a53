"""Permission evaluation and argument screening."""

from .evaluator import PermissionEvaluator, evaluate, explain, rule_matches
from .guards import PathIssue, redact, redact_payload, screen_path
from .models import PermissionDecision, ToolSignature

__all__ = [
    "PathIssue",
    "PermissionDecision",
    "PermissionEvaluator",
    "ToolSignature",
    "evaluate",
    "explain",
    "redact",
    "redact_payload",
    "rule_matches",
    "screen_path",
]
