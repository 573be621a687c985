from assist_gateway.execution.diff_engine import DiffEngine
from assist_gateway.execution.local_shell import LocalShellRunner
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.tools.base import (
    BaseTool,
    ToolDefinition,
    ToolHandler,
    ToolOutcome,
    ToolRegistry,
)
from assist_gateway.tools.files import ListDirTool, ReadFileTool, WriteFileTool
from assist_gateway.tools.lint import RunLintTool
from assist_gateway.tools.patch import ApplyPatchTool, GenerateDiffTool
from assist_gateway.tools.search import SearchCodeTool
from assist_gateway.tools.shell import RunCommandTool


def build_default_tool_registry(
    resolver: PathResolver,
    runner: LocalShellRunner,
    diff_engine: DiffEngine,
) -> ToolRegistry:
    """Build the registry of built-in workspace tools.

    ``write_file``, ``apply_patch`` and ``run_command`` carry an operation kind
    and are queued for approval in gated mode.
    """
    registry = ToolRegistry()
    registry.register_tool(ReadFileTool(resolver))
    registry.register_tool(WriteFileTool(resolver))
    registry.register_tool(ListDirTool(resolver))
    registry.register_tool(SearchCodeTool(resolver))
    registry.register_tool(RunCommandTool(runner))
    registry.register_tool(GenerateDiffTool(diff_engine))
    registry.register_tool(ApplyPatchTool(diff_engine, resolver))
    registry.register_tool(RunLintTool(resolver, runner))
    registry.validate_all()
    return registry


__all__ = [
    "BaseTool",
    "ToolDefinition",
    "ToolHandler",
    "ToolOutcome",
    "ToolRegistry",
    "build_default_tool_registry",
]
