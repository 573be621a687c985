import unittest

from assist_gateway.domain.models import SandboxPolicy
from assist_gateway.errors import PolicyDenied
from assist_gateway.sandbox.terminal import DEFAULT_ALLOW, DEFAULT_DENY, TerminalPolicyEngine


class TestTerminalPolicyEngine(unittest.TestCase):
    def test_defaults_allow_listed_programs(self):
        decision = TerminalPolicyEngine().evaluate("ls -la")
        self.assertTrue(decision.allowed)
        self.assertEqual(decision.matched_rule, "ls")

    def test_deny_wins_even_when_allow_matches(self):
        engine = TerminalPolicyEngine()
        decision = engine.evaluate("ls && rm -rf /tmp/x")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.matched_rule, "rm -rf")

    def test_rm_rf_denied_even_with_empty_allowlist(self):
        engine = TerminalPolicyEngine(allow=[], deny=DEFAULT_DENY)
        decision = engine.evaluate("rm -rf /tmp/x")
        self.assertFalse(decision.allowed)
        with self.assertRaises(PolicyDenied) as ctx:
            engine.is_allowed("rm -rf /tmp/x")
        self.assertEqual(ctx.exception.matched_rule, "rm -rf")

    def test_rm_rf_denied_even_when_allowlisted(self):
        engine = TerminalPolicyEngine(allow=["rm", "rm -rf"], deny=DEFAULT_DENY)
        self.assertFalse(engine.evaluate("rm -rf /tmp/x").allowed)

    def test_empty_allowlist_allows_anything_not_denied(self):
        engine = TerminalPolicyEngine(allow=[], deny=["shutdown"])
        self.assertTrue(engine.evaluate("make build").allowed)

    def test_command_not_in_allowlist_is_denied(self):
        decision = TerminalPolicyEngine(allow=["git"], deny=[]).evaluate("make build")
        self.assertFalse(decision.allowed)
        self.assertEqual(decision.reason, "command not in allowlist")

    def test_empty_command_is_denied(self):
        engine = TerminalPolicyEngine(allow=[], deny=[])
        self.assertFalse(engine.evaluate("").allowed)
        self.assertFalse(engine.evaluate("   ").allowed)

    def test_trailing_space_in_deny_rule_is_preserved(self):
        engine = TerminalPolicyEngine(allow=[], deny=DEFAULT_DENY)
        self.assertIn("sudo ", engine.deny_rules)
        self.assertFalse(engine.evaluate("sudo ls").allowed)
        self.assertTrue(engine.evaluate("echo sudoku").allowed)

    def test_from_policy_uses_policy_lists(self):
        policy = SandboxPolicy(workspace_root=".", terminal_allow=("git",), terminal_deny=("push",))
        engine = TerminalPolicyEngine.from_policy(policy)
        self.assertTrue(engine.evaluate("git status").allowed)
        self.assertFalse(engine.evaluate("git push").allowed)

    def test_default_lists(self):
        self.assertIn("python", DEFAULT_ALLOW)
        self.assertEqual(
            set(DEFAULT_DENY),
            {"rm -rf", "shutdown", "reboot", "mkfs", "dd if=", "cryptsetup", "sudo "},
        )


if __name__ == "__main__":
    unittest.main()
