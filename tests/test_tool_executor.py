import tempfile
import unittest
from pathlib import Path

from assist_gateway.agent.tool_executor import ToolExecutionWrapper
from assist_gateway.approvals.queue import ApprovalQueue
from assist_gateway.domain.models import ExecutionMode, OperationStatus, ToolCall
from assist_gateway.execution.diff_engine import DiffEngine
from assist_gateway.execution.local_shell import LocalShellRunner
from assist_gateway.sandbox.paths import PathResolver
from assist_gateway.sandbox.terminal import DEFAULT_DENY, TerminalPolicyEngine
from assist_gateway.tools import build_default_tool_registry
from assist_gateway.tools.base import BaseTool, ToolRegistry


class _ExplodingTool(BaseTool):
    name = "explode"
    description = "Always raises."
    input_schema = {"type": "object", "properties": {}}

    def run(self, args):
        raise RuntimeError("boom")


class TestToolExecutionWrapper(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.root = Path(self.tmp.name).resolve()
        resolver = PathResolver(self.root)
        runner = LocalShellRunner(resolver, TerminalPolicyEngine(allow=[], deny=DEFAULT_DENY))
        self.queue = ApprovalQueue()
        self.registry = build_default_tool_registry(resolver, runner, DiffEngine(resolver))
        self.executor = ToolExecutionWrapper(self.registry, self.queue)

    def tearDown(self):
        self.tmp.cleanup()

    async def test_direct_mode_runs_mutating_tool(self):
        call = ToolCall(id="t1", name="write_file", input={"path": "x.txt", "content": "hi"})
        result = await self.executor.execute(call, ExecutionMode.DIRECT)
        self.assertFalse(result.is_error)
        self.assertEqual(result.tool_use_id, "t1")
        self.assertEqual((self.root / "x.txt").read_text(encoding="utf-8"), "hi")

    async def test_gated_mode_queues_and_runs_after_approval(self):
        call = ToolCall(id="t1", name="write_file", input={"path": "x.txt", "content": "hi"})
        result = await self.executor.execute(call, ExecutionMode.GATED)
        self.assertFalse(result.is_error)
        self.assertTrue(result.content["pending"])
        self.assertEqual(result.content["kind"], "WriteFile")
        self.assertIn("POST /api/operations/1/approve", result.content["message"])
        self.assertFalse((self.root / "x.txt").exists())

        op_id = result.content["operation_id"]
        self.assertEqual(self.queue.get(op_id).status, OperationStatus.PENDING)
        self.queue.approve(op_id)
        [op] = self.queue.drain_approved()
        replayed = await self.executor.execute_operation(op)
        self.assertFalse(replayed.is_error)
        self.assertEqual(replayed.tool_use_id, "t1")
        self.assertEqual((self.root / "x.txt").read_text(encoding="utf-8"), "hi")

    async def test_gated_mode_runs_read_only_tools_immediately(self):
        (self.root / "a.txt").write_text("data", encoding="utf-8")
        result = await self.executor.execute(ToolCall(id="r", name="read_file", input={"path": "a.txt"}), "gated")
        self.assertEqual(result.content, "data")
        self.assertEqual(self.queue.snapshot(), [])

    async def test_gated_preflight_rejects_escape_without_queueing(self):
        call = ToolCall(id="t2", name="write_file", input={"path": "../evil.txt", "content": "x"})
        result = await self.executor.execute(call, ExecutionMode.GATED)
        self.assertTrue(result.is_error)
        self.assertEqual(result.content["error"], "ERR_SANDBOX_ESCAPE")
        self.assertEqual(self.queue.snapshot(), [])

    async def test_gated_preflight_rejects_denied_command(self):
        call = ToolCall(id="t3", name="run_command", input={"cmd": "rm -rf /"})
        result = await self.executor.execute(call, ExecutionMode.GATED)
        self.assertTrue(result.is_error)
        self.assertEqual(result.content["error"], "ERR_POLICY_DENIED")
        self.assertEqual(self.queue.snapshot(), [])

    async def test_unknown_tool(self):
        result = await self.executor.execute(ToolCall(id="u", name="nope", input={}))
        self.assertTrue(result.is_error)
        self.assertEqual(result.content["error"], "ERR_TOOL_NOT_FOUND")

    async def test_tool_failure_becomes_error_result(self):
        result = await self.executor.execute(ToolCall(id="r", name="read_file", input={"path": "missing.txt"}))
        self.assertTrue(result.is_error)
        self.assertEqual(result.content["error"], "ERR_TOOL_FAILED")

    async def test_unexpected_exception_is_contained(self):
        registry = ToolRegistry()
        registry.register_tool(_ExplodingTool())
        executor = ToolExecutionWrapper(registry, ApprovalQueue())
        with self.assertLogs("assist_gateway.agent.tool_executor", level="ERROR"):
            result = await executor.execute(ToolCall(id="e", name="explode", input={}))
        self.assertTrue(result.is_error)
        self.assertEqual(result.content["error"], "ERR_TOOL_FAILED")
        self.assertIn("RuntimeError: boom", result.content["message"])


if __name__ == "__main__":
    unittest.main()
