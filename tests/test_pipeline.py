#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Test the command pipeline and the CLI

The executor is mocked so these tests cover the decision flow only:
denied, cancelled, executed and history failures. CLI tests run the
non-interactive subcommands against a temporary database.
"""

import unittest
import sys
import os
import json
import io
import tempfile
from contextlib import redirect_stdout
from datetime import datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(ROOT / "src"))
sys.path.insert(0, str(ROOT))

from psguard.audit.history_store import HistoryStore
from psguard.command_pipeline import CommandPipeline, PipelineOutcome, RerunError, deny_confirmation
from psguard.config import AppConfig
from psguard.safety.models import (
    Command,
    ExecutionResult,
    ExecutionStatus,
    HistoryRecord,
    RiskLevel,
    SecurityLevel,
)
from psguard.safety.policy_engine import PolicyEngine

import interactive_assistant


def ok_result(stdout="done\n"):
    return ExecutionResult(success=True, stdout=stdout, exit_code=0)


class TestCommandPipeline(unittest.TestCase):
    """Test evaluate -> confirm -> execute -> record"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = AppConfig(
            security_level=SecurityLevel.STANDARD,
            execution_timeout_seconds=42,
            history_db_path=os.path.join(self.tmp.name, "history.db"),
        )
        self.executor = MagicMock()
        self.executor.execute.return_value = ok_result()
        self.history = HistoryStore(self.config.history_db_path)
        self.pipeline = CommandPipeline(self.config, PolicyEngine(), self.executor, self.history)

    def tearDown(self):
        self.tmp.cleanup()

    def test_denied_command_never_executes(self):
        outcome = self.pipeline.process("wipe windows", "Remove-Item C:\\Windows\\* -Recurse -Force")

        self.executor.execute.assert_not_called()
        self.assertFalse(outcome.executed)
        self.assertEqual(outcome.status, ExecutionStatus.NOT_EXECUTED)

        record = self.history.get(outcome.history_id)
        self.assertEqual(record.status, ExecutionStatus.NOT_EXECUTED)
        self.assertEqual(record.risk_level, RiskLevel.HIGH)
        self.assertEqual(record.user_input, "wipe windows")
        self.assertIn("risk too high", record.execution_result)

    def test_blacklisted_command_denied(self):
        outcome = self.pipeline.process("format", "Format-Volume -DriveLetter D")
        self.executor.execute.assert_not_called()
        self.assertIn("blacklisted", outcome.verdict.reason)

    def test_empty_command_denied_and_recorded(self):
        outcome = self.pipeline.process("nothing", "")
        self.executor.execute.assert_not_called()
        self.assertEqual(outcome.status, ExecutionStatus.NOT_EXECUTED)
        self.assertIsNotNone(outcome.history_id)

    def test_low_risk_runs_without_confirmation(self):
        confirm = MagicMock(return_value=False)
        outcome = self.pipeline.process("list processes", "Get-Process", confirm=confirm)

        confirm.assert_not_called()
        self.executor.execute.assert_called_once()
        args, kwargs = self.executor.execute.call_args
        self.assertEqual(args[0], "Get-Process")
        self.assertEqual(kwargs['timeout_seconds'], 42)
        self.assertEqual(outcome.status, ExecutionStatus.SUCCESS)
        self.assertEqual(self.history.get(outcome.history_id).execution_result, "done\n")

    def test_medium_risk_declined(self):
        confirm = MagicMock(return_value=False)
        outcome = self.pipeline.process("delete notes", "Remove-Item notes.txt", confirm=confirm)

        confirm.assert_called_once()
        command, verdict = confirm.call_args.args
        self.assertEqual(command.risk_level, RiskLevel.MEDIUM)
        self.assertTrue(verdict.requires_confirmation)
        self.executor.execute.assert_not_called()
        self.assertEqual(outcome.status, ExecutionStatus.CANCELLED)
        self.assertEqual(self.history.get(outcome.history_id).status, ExecutionStatus.CANCELLED)

    def test_default_confirmation_fails_closed(self):
        self.assertFalse(deny_confirmation(None, None))
        outcome = self.pipeline.process("delete notes", "Remove-Item notes.txt")
        self.executor.execute.assert_not_called()
        self.assertEqual(outcome.status, ExecutionStatus.CANCELLED)

    def test_medium_risk_approved(self):
        outcome = self.pipeline.process("delete notes", "Remove-Item notes.txt",
                                        confirm=lambda c, v: True)
        self.executor.execute.assert_called_once()
        self.assertEqual(outcome.status, ExecutionStatus.SUCCESS)

    def test_failed_execution_records_stderr(self):
        self.executor.execute.return_value = ExecutionResult(
            success=False, stderr="access denied", exit_code=1)
        outcome = self.pipeline.process("list processes", "Get-Process")
        self.assertEqual(outcome.status, ExecutionStatus.FAILED)
        self.assertEqual(self.history.get(outcome.history_id).execution_result, "access denied")

    def test_command_text_is_redacted_in_history(self):
        outcome = self.pipeline.process("read secret", "Get-Secret -Token abc123")
        stored = self.history.get(outcome.history_id).generated_command
        self.assertEqual(stored, "Get-Secret -Token ***")
        # Execution itself receives the real command
        self.assertEqual(self.executor.execute.call_args.args[0], "Get-Secret -Token abc123")

    def test_affected_paths_attached(self):
        outcome = self.pipeline.process("read", "Get-Content C:\\logs\\app.log")
        self.assertEqual(outcome.command.affected_paths, ("C:\\logs\\app.log",))

    def test_history_failure_does_not_change_outcome(self):
        history = MagicMock()
        history.append.return_value = None
        pipeline = CommandPipeline(self.config, PolicyEngine(), self.executor, history)

        outcome = pipeline.process("list processes", "Get-Process")
        self.assertEqual(outcome.status, ExecutionStatus.SUCCESS)
        self.assertIsNone(outcome.history_id)
        self.executor.execute.assert_called_once()

    def test_security_level_change_applies_to_next_command(self):
        self.config.security_level = SecurityLevel.STRICT
        outcome = self.pipeline.process("delete notes", "Remove-Item notes.txt",
                                        confirm=lambda c, v: True)
        self.assertEqual(outcome.status, ExecutionStatus.NOT_EXECUTED)

    def test_custom_blacklist_from_config(self):
        self.config.custom_blacklist = ["Get-Process"]
        outcome = self.pipeline.process("list processes", "get-process")
        self.assertEqual(outcome.status, ExecutionStatus.NOT_EXECUTED)

    def test_interrupted_confirmation_is_recorded(self):
        def interrupted(command, verdict):
            raise KeyboardInterrupt

        with self.assertRaises(KeyboardInterrupt):
            self.pipeline.process("rename", "Remove-Item a.txt", confirm=interrupted)

        self.executor.execute.assert_not_called()
        records = self.history.recent()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].status, ExecutionStatus.CANCELLED)
        self.assertEqual(records[0].generated_command, "Remove-Item a.txt")


class TestRerun(unittest.TestCase):
    """Test re-execution of history records"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.config = AppConfig(history_db_path=os.path.join(self.tmp.name, "history.db"))
        self.executor = MagicMock()
        self.executor.execute.return_value = ok_result()
        self.history = HistoryStore(self.config.history_db_path)
        self.pipeline = CommandPipeline(self.config, PolicyEngine(), self.executor, self.history)

    def tearDown(self):
        self.tmp.cleanup()

    def _stored(self, command, status=ExecutionStatus.SUCCESS, risk_level=RiskLevel.LOW):
        return self.history.append(HistoryRecord(
            user_input="earlier request", generated_command=command,
            status=status, risk_level=risk_level))

    def test_rerun_executes_and_records_new_entry(self):
        record_id = self._stored("Get-Process")
        outcome = self.pipeline.rerun(record_id)

        self.assertEqual(outcome.status, ExecutionStatus.SUCCESS)
        self.assertEqual(self.executor.execute.call_args.args[0], "Get-Process")
        self.assertNotEqual(outcome.history_id, record_id)
        self.assertEqual(self.history.get(outcome.history_id).user_input, "earlier request")
        self.assertEqual(self.history.count(), 2)

    def test_rerun_is_rescored_under_current_level(self):
        # Recorded as a success earlier; the policy is stricter now
        record_id = self._stored("Remove-Item notes.txt")
        self.config.security_level = SecurityLevel.STRICT

        outcome = self.pipeline.rerun(record_id, confirm=lambda c, v: True)
        self.assertEqual(outcome.status, ExecutionStatus.NOT_EXECUTED)
        self.assertEqual(outcome.command.risk_level, RiskLevel.MEDIUM)
        self.executor.execute.assert_not_called()

    def test_rerun_asks_for_confirmation_again(self):
        record_id = self._stored("Remove-Item notes.txt")
        confirm = MagicMock(return_value=False)

        outcome = self.pipeline.rerun(record_id, confirm=confirm)
        confirm.assert_called_once()
        self.assertEqual(outcome.status, ExecutionStatus.CANCELLED)

    def test_rerun_missing_record(self):
        with self.assertRaises(RerunError):
            self.pipeline.rerun(999)
        self.executor.execute.assert_not_called()

    def test_rerun_redacted_command_refused(self):
        record_id = self._stored("Connect-Api -ApiKey secret-value")
        with self.assertRaises(RerunError):
            self.pipeline.rerun(record_id)
        self.executor.execute.assert_not_called()
        self.assertEqual(self.history.count(), 1)


class TestStartupMaintenance(unittest.TestCase):
    """Test the retention sweep at startup"""

    def test_cleanup_when_enabled(self):
        history = MagicMock()
        history.cleanup.return_value = 3
        config = AppConfig(auto_cleanup=True, history_retention_days=7)
        pipeline = CommandPipeline(config, PolicyEngine(), MagicMock(), history)

        self.assertEqual(pipeline.run_startup_maintenance(), 3)
        history.cleanup.assert_called_once_with(7)

    def test_no_cleanup_when_disabled(self):
        history = MagicMock()
        config = AppConfig(auto_cleanup=False)
        pipeline = CommandPipeline(config, PolicyEngine(), MagicMock(), history)

        self.assertEqual(pipeline.run_startup_maintenance(), 0)
        history.cleanup.assert_not_called()


class TestCLI(unittest.TestCase):
    """Test the non-interactive subcommands"""

    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.db = os.path.join(self.tmp.name, "history.db")
        self.base = ['--config', os.path.join(self.tmp.name, "missing.json"), '--db', self.db]
        env = {k: v for k, v in os.environ.items() if not k.startswith("PSGUARD_")}
        self.env_patch = patch.dict(os.environ, env, clear=True)
        self.env_patch.start()

    def tearDown(self):
        self.env_patch.stop()
        self.tmp.cleanup()

    def test_check_exit_codes(self):
        self.assertEqual(interactive_assistant.main(self.base + ['check', 'Get-Process']), 0)
        self.assertEqual(interactive_assistant.main(self.base + ['check', 'Format-Volume']), 1)

    def test_level_override(self):
        argv = self.base + ['--level', 'strict', 'check', 'Remove-Item notes.txt']
        self.assertEqual(interactive_assistant.main(argv), 1)

    def test_run_denied_is_recorded(self):
        argv = self.base + ['run', 'Stop-Computer', '--request', 'shut down', '--yes']
        self.assertEqual(interactive_assistant.main(argv), 1)

        records = HistoryStore(self.db).recent()
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0].user_input, "shut down")
        self.assertEqual(records[0].status, ExecutionStatus.NOT_EXECUTED)

    def test_history_export_and_delete(self):
        store = HistoryStore(self.db)
        record_id = store.append(HistoryRecord(
            user_input="list", generated_command="Get-Process",
            status=ExecutionStatus.SUCCESS, risk_level=RiskLevel.LOW))

        buffer = io.StringIO()
        with redirect_stdout(buffer):
            self.assertEqual(interactive_assistant.main(self.base + ['history-export']), 0)
        exported = json.loads(buffer.getvalue())
        self.assertEqual(exported[0]['id'], record_id)

        self.assertEqual(interactive_assistant.main(self.base + ['history-delete', str(record_id)]), 0)
        self.assertEqual(interactive_assistant.main(self.base + ['history-delete', str(record_id)]), 1)

    def test_startup_cleanup_runs(self):
        store = HistoryStore(self.db)
        store.append(HistoryRecord(
            user_input="old", generated_command="Get-Date",
            status=ExecutionStatus.SUCCESS, risk_level=RiskLevel.LOW,
            timestamp=datetime.now() - timedelta(days=90)))

        self.assertEqual(interactive_assistant.main(self.base + ['history']), 0)
        self.assertEqual(store.count(), 0)

    def test_invalid_config_file(self):
        config_path = os.path.join(self.tmp.name, "bad.json")
        with open(config_path, 'w') as f:
            json.dump({'security_level': 'paranoid'}, f)
        argv = ['--config', config_path, '--db', self.db, 'check', 'Get-Process']
        self.assertEqual(interactive_assistant.main(argv), 2)

    def test_history_rerun(self):
        store = HistoryStore(self.db)
        record_id = store.append(HistoryRecord(
            user_input="shut down", generated_command="Stop-Computer",
            status=ExecutionStatus.NOT_EXECUTED, risk_level=RiskLevel.HIGH))

        self.assertEqual(interactive_assistant.main(self.base + ['history-rerun', str(record_id)]), 1)
        records = store.recent()
        self.assertEqual(len(records), 2)
        self.assertEqual(records[0].generated_command, "Stop-Computer")
        self.assertEqual(records[0].status, ExecutionStatus.NOT_EXECUTED)

        self.assertEqual(interactive_assistant.main(self.base + ['history-rerun', '999']), 1)
        self.assertEqual(store.count(), 2)

    def test_check_with_markup_characters(self):
        argv = self.base + ['check', 'Get-Item [string]x [/hidden]']
        self.assertEqual(interactive_assistant.main(argv), 0)


class TestConsoleRendering(unittest.TestCase):
    """Command text and output are shown literally, never as markup"""

    TEXT = "Remove-Item [bold]x[/bold] [/hidden] C:\\t"

    def _verdict(self):
        return PolicyEngine().evaluate(self.TEXT, SecurityLevel.STANDARD)

    @patch('interactive_assistant.Confirm.ask', return_value=False)
    def test_confirmation_panel_shows_literal_text(self, mock_ask):
        with interactive_assistant.console.capture() as capture:
            approved = interactive_assistant.confirm_with_user(
                Command(text=self.TEXT, description="[red]harmless[/red]"), self._verdict())

        self.assertFalse(approved)
        output = capture.get()
        self.assertIn("[bold]x[/bold] [/hidden]", output)
        self.assertIn("[red]harmless[/red]", output)

    def test_outcome_output_shown_literally(self):
        outcome = PipelineOutcome(
            command=Command(text="Write-Output x"),
            verdict=PolicyEngine().evaluate("Write-Output x", SecurityLevel.STANDARD),
            status=ExecutionStatus.SUCCESS,
            result=ExecutionResult(success=True, stdout="[/oops] [green]text[/green]\n", exit_code=0),
        )
        with interactive_assistant.console.capture() as capture:
            interactive_assistant.show_outcome(outcome)
        self.assertIn("[/oops] [green]text[/green]", capture.get())

    def test_denied_panel_shows_literal_text(self):
        outcome = PipelineOutcome(
            command=Command(text="Format-Volume [/x]"),
            verdict=PolicyEngine().evaluate("Format-Volume [/x]", SecurityLevel.STANDARD),
            status=ExecutionStatus.NOT_EXECUTED,
        )
        with interactive_assistant.console.capture() as capture:
            interactive_assistant.show_outcome(outcome)
        self.assertIn("Format-Volume [/x]", capture.get())


def run_pipeline_tests():
    """Run pipeline tests"""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()

    suite.addTests(loader.loadTestsFromTestCase(TestCommandPipeline))
    suite.addTests(loader.loadTestsFromTestCase(TestRerun))
    suite.addTests(loader.loadTestsFromTestCase(TestStartupMaintenance))
    suite.addTests(loader.loadTestsFromTestCase(TestCLI))
    suite.addTests(loader.loadTestsFromTestCase(TestConsoleRendering))

    runner = unittest.TextTestRunner(verbosity=2)
    result = runner.run(suite)

    return 0 if result.wasSuccessful() else 1


if __name__ == '__main__':
    sys.exit(run_pipeline_tests())
