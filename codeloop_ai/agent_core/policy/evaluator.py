from __future__ import annotations

"""Permission evaluator.

``evaluate`` is a pure function of ``(signature, mode, rules)``:

- Rules are consulted in order and the first matching rule decides.
- ``yolo`` allows everything except signatures matched by some ``deny`` rule.
- ``plan`` denies mutating tools outright; read tools go through the rules.
- ``auto-edit`` allows ``write`` tools that no rule matched.
- Anything left over is ``ask``.

Pattern syntax
--------------

- ``*`` matches every signature.
- ``name`` (no parentheses) matches the tool name exactly or as a glob,
  regardless of argument.
- ``name(arg)`` additionally matches the salient argument exactly or as a
  glob, e.g. ``shell.run(git *)`` or ``file.write(src/*)``.

Globs use ``fnmatch.fnmatchcase`` and are case-sensitive:

- ``*`` also matches ``/``, so ``src/*`` covers the whole subtree.
- ``**`` is no different from ``*``.
"""

import logging
import re
from fnmatch import fnmatchcase
from typing import Any, List, Mapping, Optional, Sequence, Tuple, Union

from ..schemas.domain import AgentConfiguration, PermissionMode, PermissionRule, ToolRisk, Verdict
from ..tools.base import ToolContract
from .models import PermissionDecision, ToolSignature, deny_rule

logger = logging.getLogger(__name__)

_PATTERN_WITH_ARG = re.compile(r"^(?P<name>[^()]+?)\s*\((?P<arg>.*)\)$", re.DOTALL)
_GLOB_CHARS = frozenset("*?[")


def _split_pattern(pattern: str) -> Tuple[str, Optional[str]]:
    m = _PATTERN_WITH_ARG.match(pattern)
    if m is None:
        return pattern, None
    return m.group("name").strip(), m.group("arg").strip()


def _match_text(pattern: str, value: str) -> bool:
    if pattern == "*":
        return True
    if not _GLOB_CHARS.intersection(pattern):
        return pattern == value
    return fnmatchcase(value, pattern)


def rule_matches(rule: PermissionRule, signature: ToolSignature) -> bool:
    if rule.pattern == "*":
        return True
    name_pat, arg_pat = _split_pattern(rule.pattern)
    if not _match_text(name_pat, signature.tool_name):
        return False
    if arg_pat is None or arg_pat == "*":
        return True
    if signature.argument is None:
        return False
    return _match_text(arg_pat, signature.argument)


def explain(
    signature: ToolSignature,
    mode: Union[PermissionMode, str],
    rules: Sequence[PermissionRule],
) -> PermissionDecision:
    """Evaluate a signature and report which rule or mode decided."""
    mode = PermissionMode(mode)

    if mode == PermissionMode.yolo:
        for rule in rules:
            if rule.verdict == Verdict.deny and rule_matches(rule, signature):
                return PermissionDecision(Verdict.deny, rule, f"denied by rule {rule.pattern!r}")
        return PermissionDecision(Verdict.allow, None, "yolo mode")

    if mode == PermissionMode.plan and signature.mutating:
        return PermissionDecision(Verdict.deny, None, f"plan mode blocks {signature.risk.value} tools")

    for rule in rules:
        if rule_matches(rule, signature):
            return PermissionDecision(rule.verdict, rule, f"{rule.verdict.value} by rule {rule.pattern!r}")

    if mode == PermissionMode.auto_edit and signature.risk == ToolRisk.write:
        return PermissionDecision(Verdict.allow, None, "auto-edit mode")

    return PermissionDecision(Verdict.ask, None, "no matching rule")


def evaluate(
    signature: ToolSignature,
    mode: Union[PermissionMode, str],
    rules: Sequence[PermissionRule],
) -> Verdict:
    return explain(signature, mode, rules).verdict


class PermissionEvaluator:
    """Configuration-bound wrapper around ``explain``.

    The effective rule set puts a deny rule for every blocked tool ahead of
    the configured rules.
    """

    def __init__(self, config: AgentConfiguration) -> None:
        self._mode = config.permission_mode
        blocked = [deny_rule(name) for name in sorted(config.blocked_tools)]
        self._rules: List[PermissionRule] = blocked + list(config.rules)

    @property
    def rules(self) -> List[PermissionRule]:
        return list(self._rules)

    @staticmethod
    def signature_for(tool: ToolContract, arguments: Mapping[str, Any]) -> ToolSignature:
        return ToolSignature(tool_name=tool.name, argument=tool.salient_argument(arguments), risk=tool.risk)

    def check(self, tool: ToolContract, arguments: Mapping[str, Any]) -> PermissionDecision:
        signature = self.signature_for(tool, arguments)
        decision = explain(signature, self._mode, self._rules)
        logger.debug(f"Permission {decision.verdict.value} for {signature}: {decision.reason}")
        return decision
