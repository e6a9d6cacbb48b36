"""Unit tests for the command executer and its cache."""

import subprocess
import unittest
from unittest.mock import MagicMock, patch

from sleuth.deadline import Deadline
from sleuth.executor import CommandExecutor, ExecutionErrorKind


class TestCommandExecutor(unittest.TestCase):
    def setUp(self):
        self.executor = CommandExecutor()

    @patch("subprocess.run")
    def test_runs_through_shell(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="  pod-a Running\n")
        result = self.executor.run(Deadline(10), "kubectl get pods")

        self.assertTrue(result.ok)
        self.assertEqual(result.output, "pod-a Running")
        args, kwargs = mock_run.call_args
        self.assertEqual(args[0], ["sh", "-c", "kubectl get pods"])
        self.assertEqual(kwargs["stderr"], subprocess.STDOUT)
        self.assertLessEqual(kwargs["timeout"], 10)

    @patch("subprocess.run")
    def test_same_command_runs_once(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="out")
        first = self.executor.run(Deadline(10), "echo hi")
        second = self.executor.run(Deadline(1), "echo hi")

        self.assertEqual(mock_run.call_count, 1)
        self.assertEqual(self.executor.execution_count, 1)
        self.assertIs(first, second)
        self.assertIn("echo hi", self.executor.executed_commands)

    @patch("subprocess.run")
    def test_cache_key_is_exact_string(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="out")
        self.executor.run(Deadline(10), "echo hi")
        self.executor.run(Deadline(10), "echo  hi")
        self.assertEqual(mock_run.call_count, 2)

    @patch("subprocess.run")
    def test_non_zero_exit_is_failure(self, mock_run):
        mock_run.return_value = MagicMock(returncode=1, stdout="Error from server (NotFound)")
        result = self.executor.run(Deadline(10), "kubectl get pod missing")

        self.assertFalse(result.ok)
        self.assertEqual(result.error.kind, ExecutionErrorKind.EXECUTION_FAILURE)
        self.assertEqual(result.error.returncode, 1)
        self.assertEqual(str(result.error), "command execution failed: exit status 1")
        self.assertEqual(result.output, "Error from server (NotFound)")

    @patch("subprocess.run")
    def test_non_zero_exit_after_deadline_is_timeout(self, mock_run):
        clock = [100.0]

        def killed_at_deadline(*args, **kwargs):
            clock[0] += 6
            return MagicMock(returncode=-9, stdout="partial logs")

        mock_run.side_effect = killed_at_deadline
        with patch("sleuth.deadline.time.monotonic", side_effect=lambda: clock[0]):
            deadline = Deadline(5)
            result = self.executor.run(deadline, "kubectl logs big")

        self.assertEqual(result.error.kind, ExecutionErrorKind.TIMEOUT)
        self.assertTrue(str(result.error).startswith("command execution timed out"))
        self.assertEqual(result.output, "partial logs")
        self.assertNotIn("kubectl logs big", self.executor.executed_commands)

    @patch("subprocess.run")
    def test_non_zero_exit_after_cancel_is_failure(self, mock_run):
        deadline = Deadline(10)

        def cancelled_while_running(*args, **kwargs):
            deadline.cancel()
            return MagicMock(returncode=-15, stdout="")

        mock_run.side_effect = cancelled_while_running
        result = self.executor.run(deadline, "kubectl get pods")

        self.assertEqual(result.error.kind, ExecutionErrorKind.EXECUTION_FAILURE)
        self.assertEqual(str(result.error), "command execution failed: session cancelled")

    @patch("subprocess.run")
    def test_failures_are_not_cached(self, mock_run):
        mock_run.side_effect = [
            MagicMock(returncode=1, stdout=""),
            MagicMock(returncode=0, stdout="ok"),
        ]
        self.assertFalse(self.executor.run(Deadline(10), "echo hi").ok)
        self.assertTrue(self.executor.run(Deadline(10), "echo hi").ok)
        self.assertEqual(mock_run.call_count, 2)

    @patch("subprocess.run")
    def test_timeout(self, mock_run):
        mock_run.side_effect = subprocess.TimeoutExpired(cmd="sh", timeout=5, output=b"partial")
        result = self.executor.run(Deadline(5), "kubectl logs big")

        self.assertEqual(result.error.kind, ExecutionErrorKind.TIMEOUT)
        self.assertTrue(str(result.error).startswith("command execution timed out"))
        self.assertEqual(result.output, "partial")
        self.assertNotIn("kubectl logs big", self.executor.executed_commands)

    @patch("subprocess.run")
    def test_shell_start_failure(self, mock_run):
        mock_run.side_effect = FileNotFoundError("sh not found")
        result = self.executor.run(Deadline(10), "echo hi")

        self.assertEqual(result.error.kind, ExecutionErrorKind.EXECUTION_FAILURE)
        self.assertIn("sh not found", str(result.error))

    @patch("subprocess.run")
    def test_expired_deadline_skips_shell(self, mock_run):
        deadline = Deadline(0)
        result = self.executor.run(deadline, "echo hi")

        mock_run.assert_not_called()
        self.assertEqual(result.error.kind, ExecutionErrorKind.TIMEOUT)

    @patch("subprocess.run")
    def test_cancelled_deadline_skips_shell(self, mock_run):
        deadline = Deadline()
        deadline.cancel()
        result = self.executor.run(deadline, "echo hi")

        mock_run.assert_not_called()
        self.assertEqual(result.error.kind, ExecutionErrorKind.EXECUTION_FAILURE)
        self.assertIn("cancelled", str(result.error))

    @patch("subprocess.run")
    def test_unbounded_deadline_has_no_timeout(self, mock_run):
        mock_run.return_value = MagicMock(returncode=0, stdout="")
        self.executor.run(Deadline(), "echo")
        self.assertIsNone(mock_run.call_args.kwargs["timeout"])

    def test_executed_commands_is_read_only(self):
        with self.assertRaises(TypeError):
            self.executor.executed_commands["x"] = None

    def test_real_shell_combines_output(self):
        result = self.executor.run(Deadline(10), "echo out; echo err 1>&2")
        self.assertTrue(result.ok)
        self.assertEqual(result.output, "out\nerr")


if __name__ == "__main__":
    unittest.main()
