"""Pydantic models for assistant tool calls and their results."""

from __future__ import annotations

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class ToolCall(BaseModel):
    """A function call requested by a paused assistant run."""

    id: str
    function_name: str
    arguments_json: str = "{}"

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_upstream(cls, raw: Mapping[str, Any]) -> Optional["ToolCall"]:
        """Build a call from a ``required_action`` entry, or ``None`` if unusable."""

        call_id = raw.get("id")
        function = raw.get("function")
        if not isinstance(call_id, str) or not call_id:
            return None
        if not isinstance(function, Mapping):
            return None
        name = function.get("name")
        arguments = function.get("arguments")
        return cls(
            id=call_id,
            function_name=name if isinstance(name, str) else "",
            arguments_json=arguments if isinstance(arguments, str) else "{}",
        )


class ToolOutput(BaseModel):
    """The caller-supplied result for one tool call."""

    tool_call_id: str
    output: str


class ToolResult(BaseModel):
    """Structured outcome of a tool execution."""

    success: bool
    message: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, *, message: str | None = None) -> "ToolResult":
        return cls(success=False, message=message, error=error)

    def as_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)

    def to_output(self, tool_call_id: str) -> ToolOutput:
        return ToolOutput(
            tool_call_id=tool_call_id,
            output=self.model_dump_json(exclude_none=True),
        )


__all__ = ["ToolCall", "ToolOutput", "ToolResult"]
