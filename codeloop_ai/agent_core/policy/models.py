from __future__ import annotations

"""Permission data models.

- ``ToolSignature`` is what rules are matched against: the tool name plus its
  salient argument (shell command, file path), rendered as ``name(argument)``.
- ``PermissionDecision`` is the evaluator's output with the rule that
  produced it, for display and logging.
"""

from dataclasses import dataclass
from typing import Optional

from ..schemas.domain import PermissionRule, ToolRisk, Verdict


@dataclass(frozen=True)
class ToolSignature:
    tool_name: str
    argument: Optional[str] = None
    risk: ToolRisk = ToolRisk.read

    @property
    def mutating(self) -> bool:
        return self.risk != ToolRisk.read

    def render(self) -> str:
        if self.argument is None:
            return self.tool_name
        return f"{self.tool_name}({self.argument})"

    def __str__(self) -> str:
        return self.render()


@dataclass(frozen=True)
class PermissionDecision:
    """Result of evaluating one signature.

    Attributes
    ----------
    verdict:
        ``allow``, ``ask`` or ``deny``.
    matched_rule:
        The rule that decided, or ``None`` for mode overrides and the default.
    reason:
        Human-readable explanation.
    """

    verdict: Verdict
    matched_rule: Optional[PermissionRule] = None
    reason: str = ""


def deny_rule(tool_name: str) -> PermissionRule:
    return PermissionRule(pattern=tool_name, verdict=Verdict.deny)
