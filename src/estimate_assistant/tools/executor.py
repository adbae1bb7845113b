"""Dispatch of assistant tool calls to registered handlers."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Protocol

from ..schemas.tools import ToolResult

logger = logging.getLogger(__name__)


class ToolExecutionError(RuntimeError):
    """Raised by handlers for expected failures; reported as a failed result."""


class ToolHandler(Protocol):
    async def __call__(self, arguments: dict[str, Any]) -> ToolResult:
        ...


@dataclass(frozen=True)
class ToolExecution:
    """Result of one call plus whether its handler ran to completion.

    ``dispatched`` is false for unknown tools, unparseable arguments and
    handler errors; such calls only produce an upstream output.
    """

    result: ToolResult
    dispatched: bool

    @classmethod
    def rejected(cls, error: str) -> "ToolExecution":
        return cls(ToolResult.failure(error), dispatched=False)


class ToolExecutor:
    """Closed mapping from tool name to handler.

    ``execute`` never raises: the relay must hold exactly one output per tool
    call before it can resume the run.
    """

    def __init__(self, handlers: Mapping[str, ToolHandler]) -> None:
        self._handlers = dict(handlers)

    @property
    def tool_names(self) -> list[str]:
        return sorted(self._handlers)

    async def execute(self, function_name: str, arguments_json: str) -> ToolExecution:
        handler = self._handlers.get(function_name)
        if handler is None:
            logger.warning("Unknown tool requested: %s", function_name)
            return ToolExecution.rejected(f"Unknown tool: {function_name}")

        try:
            arguments = json.loads(arguments_json or "{}")
        except json.JSONDecodeError as exc:
            logger.error("Invalid arguments for tool %s: %s", function_name, exc)
            return ToolExecution.rejected(
                f"Invalid tool arguments: {exc.msg} at line {exc.lineno} column {exc.colno}"
            )
        if not isinstance(arguments, dict):
            return ToolExecution.rejected("Tool arguments must be a JSON object")

        logger.info("Processing tool call: %s", function_name)
        try:
            result = await handler(arguments)
        except ToolExecutionError as exc:
            logger.error("Tool %s failed: %s", function_name, exc)
            return ToolExecution.rejected(str(exc))
        except Exception as exc:
            logger.exception("Unexpected error while running tool %s", function_name)
            return ToolExecution.rejected(str(exc) or exc.__class__.__name__)
        return ToolExecution(result, dispatched=True)


__all__ = ["ToolExecution", "ToolExecutionError", "ToolExecutor", "ToolHandler"]
