"""Name → handler table shared by the stdio and HTTP transports."""

import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from google.api_core import exceptions as gcp_exceptions
from mcp import types
from pydantic import BaseModel, ValidationError

from .content import ToolResult, error_result
from .errors import GCPToolError, ToolValidationError, UnknownToolError, format_error_message

logger = logging.getLogger(__name__)


class ToolContext:
    """Per-server state handed to every tool handler."""

    def __init__(self, clients, config):
        self.clients = clients
        self.config = config

    @property
    def bigquery(self):
        return self.clients.bigquery

    async def project_id(self, provided: Optional[str] = None) -> str:
        return await self.clients.resolve_project_id(provided)

    def location(self, provided: Optional[str] = None) -> str:
        return provided or self.config.location


Handler = Callable[[ToolContext, Any], Awaitable[ToolResult]]


class ToolSpec:
    def __init__(self, name: str, description: str, params_model: Type[BaseModel], handler: Handler):
        self.name = name
        self.description = description
        self.params_model = params_model
        self.handler = handler

    def input_schema(self) -> Dict[str, Any]:
        schema = self.params_model.model_json_schema()
        schema.pop("title", None)
        return schema

    def to_mcp(self) -> types.Tool:
        return types.Tool(name=self.name, description=self.description, inputSchema=self.input_schema())


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, ToolSpec] = {}

    def tool(self, name: str, description: str, params_model: Type[BaseModel]):
        """Decorator registering an async handler under ``name``."""

        def decorator(handler: Handler) -> Handler:
            if name in self._tools:
                raise ValueError(f"Tool already registered: {name}")
            self._tools[name] = ToolSpec(name, description, params_model, handler)
            return handler

        return decorator

    def names(self) -> List[str]:
        return list(self._tools)

    def get(self, name: str) -> ToolSpec:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name)

    def list_tools(self) -> List[types.Tool]:
        return [spec.to_mcp() for spec in self._tools.values()]

    def describe(self) -> List[Dict[str, Any]]:
        """Tool descriptors in the shape of a ``tools/list`` response."""
        return [
            {"name": spec.name, "description": spec.description, "inputSchema": spec.input_schema()}
            for spec in self._tools.values()
        ]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]], ctx: ToolContext) -> ToolResult:
        """Validate arguments and run a tool.

        Unknown tools raise ``UnknownToolError``. Invalid arguments, tool
        errors and Google API errors come back as an ``isError`` result;
        anything else propagates to the transport.
        """
        spec = self.get(name)
        logger.info(f"Calling tool {name}")
        try:
            try:
                params = spec.params_model.model_validate(arguments or {})
            except ValidationError as error:
                raise ToolValidationError(f"Invalid arguments for {name}: {error}", error)
            return await spec.handler(ctx, params)
        except (GCPToolError, gcp_exceptions.GoogleAPICallError) as error:
            logger.error(f"Tool {name} failed: {format_error_message(error)}")
            return error_result(name, error)


registry = ToolRegistry()
