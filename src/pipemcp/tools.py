"""Host-side tool registry and the request handler built on it."""

from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pipemcp.ipc.contracts import (
    CallToolRequest,
    ErrorResponse,
    ListToolsRequest,
    ResultResponse,
    ToolMetadata,
)
from pipemcp.ipc.errors import UnknownToolError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from pydantic import JsonValue

    from pipemcp.ipc.contracts import CorrelatedRequest, ResponseEnvelope

    type ToolFunc = Callable[[dict[str, Any]], JsonValue | Awaitable[JsonValue]]

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RegisteredTool:
    metadata: ToolMetadata
    func: ToolFunc


class ToolRegistry:
    """Named tools the host serves to its helpers.

    A tool receives the call's ``arguments`` mapping and returns a
    JSON-compatible value, either directly or from a coroutine.

    Usage::

        registry = ToolRegistry()

        @registry.tool("echo", description="Return the arguments")
        def echo(arguments):
            return arguments

        host = PipeHost(handler=registry.handle_request)
    """

    def __init__(self) -> None:
        self._tools: dict[str, RegisteredTool] = {}

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def register(self, metadata: ToolMetadata, func: ToolFunc) -> None:
        """Add a tool, replacing any tool registered under the same name."""
        if metadata.name in self._tools:
            logger.warning("Replacing tool %s", metadata.name)
        self._tools[metadata.name] = RegisteredTool(metadata=metadata, func=func)

    def tool(
        self,
        name: str,
        *,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[ToolFunc], ToolFunc]:
        """Decorator form of :meth:`register`."""
        metadata = ToolMetadata(
            name=name,
            description=description,
            **({"input_schema": input_schema} if input_schema is not None else {}),
        )

        def decorator(func: ToolFunc) -> ToolFunc:
            self.register(metadata, func)
            return func

        return decorator

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    def list_metadata(self) -> list[ToolMetadata]:
        """Metadata of every tool, in registration order."""
        return [entry.metadata for entry in self._tools.values()]

    async def call(self, name: str, arguments: dict[str, Any] | None = None) -> JsonValue:
        """Run one tool.

        Raises:
            UnknownToolError: No tool is registered under *name*.
        """
        entry = self._tools.get(name)
        if entry is None:
            raise UnknownToolError(name)
        result = entry.func(dict(arguments or {}))
        if inspect.isawaitable(result):
            result = await result
        return result

    async def handle_request(self, request: CorrelatedRequest) -> ResponseEnvelope:
        """Answer a ``list_tools`` or ``call_tool`` request.

        Unknown tools and exceptions raised by a tool become error responses.
        """
        match request:
            case ListToolsRequest():
                payload = [meta.model_dump(mode="json") for meta in self.list_metadata()]
                return ResultResponse.success(request, payload)
            case CallToolRequest(tool_name=tool_name, arguments=arguments):
                try:
                    result = await self.call(tool_name, arguments)
                    # Non-JSON results fail validation here.
                    return ResultResponse.success(request, result)
                except UnknownToolError as exc:
                    logger.warning("Request %s: %s", request.message_id, exc)
                    return ErrorResponse.failure(request, str(exc))
                except Exception as exc:
                    logger.exception("Tool %s failed", tool_name)
                    return ErrorResponse.failure(request, str(exc) or type(exc).__name__)
            case _:
                msg = f"Unsupported request type: {request.type}"
                raise TypeError(msg)


# ---------------------------------------------------------------------------
# Placeholder greeting tools
# ---------------------------------------------------------------------------

HELLO_WORLD = "helloWorld"
HELLO_PERSON = "helloPerson"


def hello_world(arguments: dict[str, Any]) -> str:
    return "Hello, World!"


def hello_person(arguments: dict[str, Any]) -> str:
    name = arguments.get("name")
    if not isinstance(name, str) or not name.strip():
        msg = "helloPerson requires a non-empty string argument 'name'"
        raise ValueError(msg)
    return f"Hello, {name.strip()}!"


def build_greeting_tools(registry: ToolRegistry | None = None) -> ToolRegistry:
    """Register ``helloWorld`` and ``helloPerson`` and return the registry."""
    registry = registry if registry is not None else ToolRegistry()
    registry.register(
        ToolMetadata(name=HELLO_WORLD, description="Returns a fixed greeting"),
        hello_world,
    )
    registry.register(
        ToolMetadata(
            name=HELLO_PERSON,
            description="Greets a person by name",
            input_schema={
                "type": "object",
                "properties": {"name": {"type": "string", "description": "Name to greet"}},
                "required": ["name"],
            },
        ),
        hello_person,
    )
    return registry


__all__ = [
    "HELLO_PERSON",
    "HELLO_WORLD",
    "RegisteredTool",
    "ToolMetadata",
    "ToolRegistry",
    "build_greeting_tools",
    "hello_person",
    "hello_world",
]
