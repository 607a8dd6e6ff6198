"""
Tool dispatch - the path every tool call takes.

A call arrives as a tool name and raw arguments. The registry validates
the arguments against the tool's input schema, hands them to the handler
together with a ToolContext, and turns whatever the handler raises into a
classified error result. A handler therefore only deals with the happy
path: build argv, run, parse, shape.

    registry = ToolRegistry(ToolContext(PareConfig.from_env(), "git"))
    registry.register(Tool("tag", "List tags", RawShape({...}), handle_tag))
    result = await registry.call("tag", {"path": "."})
"""

import logging
from collections.abc import Awaitable, Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from mcp.types import CallToolResult
from mcp.types import Tool as McpTool
from pydantic import BaseModel, ValidationError

from pare.config import PareConfig
from pare.errors import (
    ClassifiedError,
    CommandFailedError,
    ToolError,
    classify_error,
    classify_exception,
    error_output,
    invalid_input_error,
)
from pare.policy import assert_allowed_by_policy, assert_allowed_root
from pare.runner import run
from pare.schemas import InputSchema, compile_input_schema
from pare.types import RunResult

logger = logging.getLogger(__name__)


class ToolContext:
    """
    Per-server runtime state handed to every handler.

    Holds the configuration object built at server start. Nothing else in
    the runtime reads configuration on its own once a context exists.
    """

    def __init__(self, config: PareConfig | None = None, server_name: str = "pare"):
        self._config = config or PareConfig.from_env()
        self.server_name = server_name

    @property
    def config(self) -> PareConfig:
        return self._config

    def reload_config(self, environ: Mapping[str, str] | None = None) -> PareConfig:
        """Rebuild the configuration from the environment."""
        self._config = PareConfig.from_env(environ)
        logger.info(f"Reloaded configuration for {self.server_name}")
        return self._config

    def check_command(self, command: str) -> None:
        """Apply the ALLOWED_COMMANDS policy for this server."""
        assert_allowed_by_policy(command, self.server_name, self._config.policy)

    def check_root(self, path: str) -> None:
        """Apply the ALLOWED_ROOTS policy for this server."""
        assert_allowed_root(path, self.server_name, self._config.policy)

    async def run(self, command: str, args: Sequence[str] = (), **options: Any) -> RunResult:
        """Run a command with this context's configuration. See pare.runner.run."""
        return await run(command, args, config=self._config, **options)

    async def run_checked(
        self,
        label: str,
        command: str,
        args: Sequence[str] = (),
        **options: Any,
    ) -> RunResult:
        """
        Run a command and raise CommandFailedError on a non-zero exit.

        Args:
            label: Human-readable name used in the error, e.g. "git tag".
        """
        result = await self.run(command, args, **options)
        if result.exit_code != 0:
            raise CommandFailedError(classify_error(result, label))
        return result

    def classify(self, exc: BaseException, command: str) -> ClassifiedError:
        return classify_exception(exc, command, self._config.sanitize.redact_all_paths)


ToolHandler = Callable[[ToolContext, Any], Awaitable[CallToolResult]]


def _format_validation_error(exc: ValidationError) -> str:
    problems = []
    for error in exc.errors(include_url=False, include_input=False):
        location = ".".join(str(part) for part in error["loc"]) or "input"
        problems.append(f"{location}: {error['msg']}")
    return "Invalid input. " + "; ".join(problems)


@dataclass
class Tool:
    """
    A tool exposed to agents.

    The input schema is compiled once at construction; the handler gets an
    instance of the compiled model.
    """
    name: str
    description: str
    input_schema: InputSchema
    handler: ToolHandler
    title: str | None = None
    model: type[BaseModel] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self.model = compile_input_schema(self.input_schema, self.name)

    def to_mcp_tool(self) -> McpTool:
        """Listing entry with the JSON schema of the input model."""
        return McpTool(
            name=self.name,
            title=self.title,
            description=self.description,
            inputSchema=self.model.model_json_schema(),
        )

    async def execute(self, context: ToolContext, arguments: Mapping[str, Any] | None) -> CallToolResult:
        """
        Validate arguments and run the handler.

        Validation failures become invalid-input results before anything is
        spawned. ToolErrors raised by the handler are classified. Any other
        exception is logged with its traceback, and only a sanitized message
        reaches the caller.
        """
        try:
            params = self.model.model_validate(dict(arguments or {}))
        except ValidationError as e:
            return invalid_input_error(_format_validation_error(e))

        try:
            return await self.handler(context, params)
        except ToolError as e:
            logger.info(f"Tool {self.name} failed: {e.category.value}")
            return error_output(context.classify(e, e.command or self.name))
        except Exception as e:
            logger.exception(f"Tool {self.name} raised an unexpected error")
            return error_output(context.classify(e, self.name))


@dataclass
class ToolRegistry:
    """
    Registry of the tools one server exposes.

    Only tools registered here can be called, and every call goes through
    Tool.execute, so the error handling above applies uniformly.
    """

    context: ToolContext = field(default_factory=ToolContext)
    _tools: dict[str, Tool] = field(default_factory=dict)

    def register(self, tool: Tool) -> Tool:
        """
        Add a tool to this server and return it.

        Tool names are the dispatch keys, so a second tool with a name
        that is already taken is rejected instead of silently shadowing it.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered on {self.context.server_name}")
        self._tools[tool.name] = tool
        logger.debug(f"Registered tool {tool.name} on {self.context.server_name}")
        return tool

    async def call(self, name: str, arguments: Mapping[str, Any] | None = None) -> CallToolResult:
        """Dispatch a tool call by name."""
        tool = self._tools.get(name)
        if tool is None:
            return invalid_input_error(f"Unknown tool '{name}'")

        logger.info(f"Executing tool: {name}")
        return await tool.execute(self.context, arguments)

    def list_tools(self) -> list[McpTool]:
        """Listing entries for all registered tools."""
        return [tool.to_mcp_tool() for tool in self._tools.values()]

    def __contains__(self, name: str) -> bool:
        return name in self._tools
