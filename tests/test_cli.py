import asyncio
import contextlib
import io
import json
import os
import signal
import tempfile
import unittest
from pathlib import Path

from assist_gateway.app_container import build_gateway
from assist_gateway.agent.orchestrator import CancellationToken
from assist_gateway.cli import _ask, _build_parser, _install_interrupt, _resolve_log_level, _review_pending, main
from assist_gateway.config import load_config
from assist_gateway.domain.models import OperationKind, OperationStatus
from assist_gateway.errors import ExchangeCancelled
from assist_gateway.providers.registry import ProviderRegistry


class TestCli(unittest.TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config_dir = Path(self.tmp.name).resolve()
        self.workspace = self.config_dir / "ws"
        self.workspace.mkdir()
        (self.config_dir / "config.json").write_text(
            json.dumps({"workspace_root": str(self.workspace)}), encoding="utf-8"
        )

    def tearDown(self):
        self.tmp.cleanup()

    def _main(self, *argv):
        out = io.StringIO()
        with contextlib.redirect_stdout(out):
            code = main(["--config-dir", str(self.config_dir), *argv])
        return code, out.getvalue()

    def test_tools_lists_builtin_tools(self):
        code, out = self._main("tools")
        self.assertEqual(code, 0)
        self.assertIn("read_file: ", out)
        self.assertIn("run_command: ", out)

    def test_print_config(self):
        code, out = self._main("--print-config")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out)["workspace_root"], str(self.workspace))

    def test_config_error_exits_with_2(self):
        (self.config_dir / "config.json").write_text("[]", encoding="utf-8")
        err = io.StringIO()
        with contextlib.redirect_stderr(err):
            code, _ = self._main("tools")
        self.assertEqual(code, 2)
        self.assertIn("Error:", err.getvalue())

    def test_review_pending_applies_answers(self):
        config = load_config(config_dir=self.config_dir, environ={})
        gateway = build_gateway(config, providers=ProviderRegistry())
        a = gateway.queue.enqueue(OperationKind.WRITE_FILE, {"args": {"path": "a.txt", "content": ""}})
        b = gateway.queue.enqueue(OperationKind.RUN_COMMAND, {"args": {"cmd": "ls"}})
        answers = iter(["y", ""])
        _review_pending(gateway, prompt=lambda text: next(answers))
        self.assertEqual(gateway.queue.get(a.id).status, OperationStatus.APPROVED)
        self.assertEqual(gateway.queue.get(b.id).status, OperationStatus.REJECTED)

    def _write_config(self, **values):
        values.setdefault("workspace_root", str(self.workspace))
        (self.config_dir / "config.json").write_text(json.dumps(values), encoding="utf-8")

    def test_log_level_comes_from_config_unless_flag_given(self):
        self._write_config(log_level="debug")
        config = load_config(config_dir=self.config_dir, environ={})
        self.assertEqual(_resolve_log_level(_build_parser().parse_args(["tools"]), config), "DEBUG")
        args = _build_parser().parse_args(["--log-level", "warning", "tools"])
        self.assertEqual(_resolve_log_level(args, config), "WARNING")

    def test_log_level_from_env_file(self):
        (self.config_dir / ".env").write_text("LOG_LEVEL=error\n", encoding="utf-8")
        config = load_config(config_dir=self.config_dir, environ={})
        self.assertEqual(_resolve_log_level(_build_parser().parse_args(["tools"]), config), "ERROR")

    def test_cancelled_ask_raises_before_any_provider_call(self):
        config = load_config(config_dir=self.config_dir, environ={})
        gateway = build_gateway(config, providers=ProviderRegistry())
        token = CancellationToken()
        token.cancel()
        args = _build_parser().parse_args(["ask", "hi", "--provider", "fake"])
        with self.assertRaises(ExchangeCancelled):
            asyncio.run(_ask(gateway, args, token=token))


@unittest.skipIf(os.name == "nt", "POSIX signals")
class TestInterrupt(unittest.IsolatedAsyncioTestCase):
    async def test_sigint_cancels_token(self):
        token = CancellationToken()
        loop = asyncio.get_running_loop()
        self.assertTrue(_install_interrupt(token))
        try:
            signal.raise_signal(signal.SIGINT)
            for _ in range(100):
                if token.is_cancelled:
                    break
                await asyncio.sleep(0.01)
        finally:
            loop.remove_signal_handler(signal.SIGINT)
        self.assertTrue(token.is_cancelled)


if __name__ == "__main__":
    unittest.main()
