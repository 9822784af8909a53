from __future__ import annotations

"""Tool contract and execution data models.

A tool is described declaratively by a ``ToolContract``: its name, a pydantic
parameter model, a risk tag and an async executor. The execution pipeline
resolves contracts through a ``ToolRegistry`` and calls ``run`` only after
validation, permission checks and (when needed) user confirmation.

Executors should:

- accept the validated parameter model instance and a ``ToolContext``,
- return a ``ToolOutput`` (or any JSON-friendly value),
- never perform permission decisions themselves.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel, Field

from ..schemas.base import BaseSchema
from ..schemas.domain import ToolRisk


@dataclass(frozen=True)
class ToolContext:
    """Execution context passed to tool executors.

    Attributes
    ----------
    session_id:
        Session the call belongs to.
    call_id:
        Correlation id of the tool call.
    working_dir:
        Working directory of the session. Relative paths resolve against it.
    """

    session_id: str
    call_id: str
    working_dir: str


class ToolOutput(BaseSchema):
    """Structured executor result.

    Executors report their own failures with ``success=False`` and an
    ``error`` message instead of raising.
    """

    success: bool = Field(default=True, description="Whether the tool did what was asked")
    data: Any = Field(default=None, description="Payload handed back to the model")
    error: Optional[str] = Field(default=None, description="Error message if failed")
    display: Optional[str] = Field(default=None, description="Short human-oriented summary")


ToolRunner = Callable[[Any, ToolContext], Awaitable[Any]]


@dataclass(frozen=True)
class ToolContract:
    """Declared interface of a callable capability.

    ``signature_argument`` names the parameter used to build the permission
    signature (e.g. ``command`` for a shell tool, ``path`` for a file tool).
    ``path_arguments`` lists parameters holding file-system paths, which are
    screened for traversal and sensitive locations before execution.
    """

    name: str
    description: str
    schema: Type[BaseModel]
    run: ToolRunner
    risk: ToolRisk = ToolRisk.read
    signature_argument: Optional[str] = None
    path_arguments: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def mutating(self) -> bool:
        return self.risk != ToolRisk.read

    def parameters_json_schema(self) -> Dict[str, Any]:
        return self.schema.model_json_schema()

    def salient_argument(self, arguments: Mapping[str, Any]) -> Optional[str]:
        if self.signature_argument is None:
            return None
        value = arguments.get(self.signature_argument)
        if value is None:
            return None
        return str(value)
