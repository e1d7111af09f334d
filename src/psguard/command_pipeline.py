#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Command Pipeline - evaluate, confirm, execute and record one candidate command.

    command text -> PolicyEngine -> (confirm) -> SandboxExecutor -> HistoryStore

Initialization order: load AppConfig once, then build the policy engine,
executor and history store and inject them here (build_pipeline() does this).
Every traversal is recorded, including denials and cancellations. A failed
history write is logged by the store and never changes the outcome.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from .audit.history_store import HistoryStore
from .audit.redaction import contains_redacted_value
from .config import AppConfig
from .execution.interpreters import get_interpreter
from .execution.sandbox_executor import SandboxExecutor
from .safety.models import (
    Command,
    ExecutionResult,
    ExecutionStatus,
    HistoryRecord,
    SafetyVerdict,
)
from .safety.patterns import extract_file_paths
from .safety.policy_engine import PolicyEngine

logger = logging.getLogger(__name__)

# Called for commands that need explicit consent; True means "run it"
ConfirmCallback = Callable[[Command, SafetyVerdict], bool]


class RerunError(Exception):
    """A history record cannot be executed again."""


def deny_confirmation(command: Command, verdict: SafetyVerdict) -> bool:
    """Default confirmation: fail closed."""
    return False


@dataclass
class PipelineOutcome:
    """Everything one traversal produced."""
    command: Command
    verdict: SafetyVerdict
    status: ExecutionStatus
    result: Optional[ExecutionResult] = None
    history_id: Optional[int] = None

    @property
    def executed(self) -> bool:
        return self.result is not None


class CommandPipeline:
    """Runs candidate commands through the safety gate and the sandbox."""

    def __init__(self,
                 config: AppConfig,
                 policy_engine: PolicyEngine,
                 executor: SandboxExecutor,
                 history: HistoryStore):
        self.config = config
        self.policy_engine = policy_engine
        self.executor = executor
        self.history = history

    def evaluate(self, command: Command):
        """Policy verdict for a command under the configured security level."""
        return self.policy_engine.evaluate_command(
            command,
            self.config.security_level,
            self.config.custom_blacklist,
            self.config.custom_whitelist,
        )

    def process(self,
                user_input: str,
                command_text: str,
                description: str = "",
                confirm: ConfirmCallback = deny_confirmation,
                cancel_event: Optional[threading.Event] = None) -> PipelineOutcome:
        """
        Evaluate and, when allowed, execute one command.

        Args:
            user_input: The natural-language request that produced the command
            command_text: Candidate command from the AI collaborator
            description: Free-form explanation of the command
            confirm: Asked only for allowed commands that need confirmation
            cancel_event: Forwarded to the executor for interactive cancel

        Returns:
            PipelineOutcome (result is None unless the command ran)
        """
        command = Command(
            text=command_text or "",
            description=description or "",
            affected_paths=tuple(extract_file_paths(command_text or "")),
        )
        verdict, command = self.evaluate(command)

        if verdict.denied:
            logger.warning(f"Command denied: {verdict.reason}")
            return self._record(user_input, command, verdict, ExecutionStatus.NOT_EXECUTED)

        if verdict.requires_confirmation:
            try:
                approved = confirm(command, verdict)
            except BaseException:
                # Interrupted prompt (Ctrl-C, EOF) still counts as a cancellation
                self._record(user_input, command, verdict, ExecutionStatus.CANCELLED)
                raise
            if not approved:
                logger.info("Command cancelled at confirmation")
                return self._record(user_input, command, verdict, ExecutionStatus.CANCELLED)

        result = self.executor.execute(
            command.text,
            timeout_seconds=self.config.execution_timeout_seconds,
            cancel_event=cancel_event,
        )
        status = ExecutionStatus.SUCCESS if result.success else ExecutionStatus.FAILED
        return self._record(user_input, command, verdict, status, result)

    def rerun(self,
              record_id: int,
              confirm: ConfirmCallback = deny_confirmation,
              cancel_event: Optional[threading.Event] = None) -> PipelineOutcome:
        """
        Send a command from history through the full pipeline again.

        The stored text is rescored under the current configuration and the
        new traversal gets its own history record.

        Raises:
            RerunError: no such record, or its command was stored redacted
        """
        record = self.history.get(record_id)
        if record is None:
            raise RerunError(f"no history record with id {record_id}")
        if contains_redacted_value(record.generated_command):
            raise RerunError(f"record {record_id} holds a redacted secret and cannot be re-run")

        logger.info(f"Re-running history record {record_id}")
        return self.process(
            record.user_input,
            record.generated_command,
            confirm=confirm,
            cancel_event=cancel_event,
        )

    def _record(self,
                user_input: str,
                command: Command,
                verdict: SafetyVerdict,
                status: ExecutionStatus,
                result: Optional[ExecutionResult] = None) -> PipelineOutcome:
        if result is None:
            output = verdict.reason or None
        else:
            output = result.stdout if result.success else result.stderr

        history_id = self.history.append(HistoryRecord(
            user_input=user_input or "",
            generated_command=command.text,
            status=status,
            risk_level=verdict.risk_level,
            execution_result=output,
        ))
        if history_id is None:
            logger.warning("Pipeline outcome was not recorded in history")

        return PipelineOutcome(
            command=command,
            verdict=verdict,
            status=status,
            result=result,
            history_id=history_id,
        )

    def run_startup_maintenance(self) -> int:
        """Retention sweep, run once at startup when auto-cleanup is enabled."""
        if not self.config.auto_cleanup:
            return 0
        return self.history.cleanup(self.config.history_retention_days)


def build_pipeline(config: AppConfig) -> CommandPipeline:
    """Wire the pipeline components from a loaded config."""
    policy_engine = PolicyEngine()
    executor = SandboxExecutor(
        interpreter=get_interpreter(config.interpreter),
        default_timeout=config.execution_timeout_seconds,
    )
    history = HistoryStore(config.history_db_path)
    return CommandPipeline(config, policy_engine, executor, history)
