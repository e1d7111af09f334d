#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Sandboxed Execution - run an approved command in an isolated child interpreter.

The command text is written verbatim into a temporary script (never escaped
into a single argument), the interpreter runs that script in its own process
group with both output streams piped, and:

- stdout and stderr are drained by two reader threads started BEFORE waiting
  on the process, and joined AFTER it exits, so neither pipe can fill up and
  deadlock the child and no trailing output is lost
- a timeout (or a cancel event) kills the whole process tree and gives it a
  bounded grace period
- the temporary script is removed on every exit path

execute() never raises: every failure is returned as a failed ExecutionResult.
"""

import logging
import os
import signal
import subprocess
import sys
import tempfile
import threading
import time
from datetime import timedelta
from typing import List, Optional, Tuple

import psutil

from ..safety.models import ExecutionResult
from .interpreters import Interpreter, default_interpreter

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_GRACE_SECONDS = 2.0
TIMEOUT_EXIT_CODE = -1
SPAWN_FAILED_EXIT_CODE = -1

READ_CHUNK_SIZE = 64 * 1024
WAIT_POLL_SECONDS = 0.1

# Wait outcomes
EXITED = "exited"
TIMED_OUT = "timed_out"
CANCELLED = "cancelled"


class _StreamDrain:
    """Reads one pipe to EOF on a daemon thread, accumulating raw bytes."""

    def __init__(self, stream, name: str):
        self.stream = stream
        self.name = name
        self.chunks: List[bytes] = []
        self.error: Optional[str] = None
        self.thread = threading.Thread(target=self._run, daemon=True, name=f"drain-{name}")

    def start(self):
        self.thread.start()

    def _run(self):
        try:
            while True:
                chunk = self.stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.chunks.append(chunk)
        except (OSError, ValueError) as e:
            self.error = str(e)
        finally:
            try:
                self.stream.close()
            except OSError:
                pass

    def join(self, timeout: float) -> bool:
        """Join the reader; True if it finished within the timeout."""
        self.thread.join(timeout=max(timeout, 0))
        return not self.thread.is_alive()

    def text(self) -> str:
        return b"".join(list(self.chunks)).decode("utf-8", errors="replace")


def _format_seconds(seconds: float) -> str:
    return f"{seconds:g}"


class SandboxExecutor:
    """
    Runs command text in a separate interpreter process with a timeout.

    Args:
        interpreter: Launch profile (PowerShell by default)
        default_timeout: Timeout used when execute() is given none
        grace_seconds: Bound on waiting for a killed process and its drains
        temp_dir: Directory for temporary scripts (system default if None)
    """

    def __init__(self,
                 interpreter: Optional[Interpreter] = None,
                 default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
                 grace_seconds: float = DEFAULT_GRACE_SECONDS,
                 temp_dir: Optional[str] = None):
        self.interpreter = interpreter or default_interpreter()
        self.default_timeout = default_timeout
        self.grace_seconds = grace_seconds
        self.temp_dir = temp_dir

    def execute(self,
                command_text: str,
                timeout_seconds: Optional[float] = None,
                cancel_event: Optional[threading.Event] = None) -> ExecutionResult:
        """
        Execute a command and capture its output.

        Args:
            command_text: Approved command text
            timeout_seconds: Max run time; the process tree is killed after it
            cancel_event: Optional event; setting it is treated like a timeout

        Returns:
            ExecutionResult (success only for exit code 0 with empty stderr)
        """
        timeout = timeout_seconds if timeout_seconds is not None else self.default_timeout
        started = time.monotonic()

        if not command_text or not command_text.strip():
            return self._failure("empty command", started)

        binary = self.interpreter.resolve()
        if binary is None:
            candidates = ", ".join(self.interpreter.candidates)
            logger.error(f"{self.interpreter.name} interpreter not found (looked for: {candidates})")
            return self._failure(
                f"{self.interpreter.name} interpreter not found (looked for: {candidates})", started)

        try:
            script_path = self._write_script(command_text)
        except (OSError, UnicodeError) as e:
            logger.error(f"Could not prepare script file: {e}")
            return self._failure(f"could not prepare script file: {e}", started)

        try:
            return self._run(binary, script_path, timeout, cancel_event, started)
        except OSError as e:
            logger.error(f"Execution failed: {e}")
            return self._failure(f"execution failed: {e}", started)
        finally:
            self._remove_script(script_path)

    # --- Script file ---

    def _write_script(self, command_text: str) -> str:
        fd, path = tempfile.mkstemp(
            suffix=self.interpreter.script_suffix,
            prefix="psguard_",
            dir=self.temp_dir,
        )
        try:
            with os.fdopen(fd, "w", encoding=self.interpreter.script_encoding) as f:
                f.write(self.interpreter.wrap(command_text))
        except BaseException:
            self._remove_script(path)
            raise
        return path

    @staticmethod
    def _remove_script(path: str):
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.error(f"Failed to remove temporary script {path}: {e}")

    # --- Process lifecycle ---

    def _run(self,
             binary: str,
             script_path: str,
             timeout: float,
             cancel_event: Optional[threading.Event],
             started: float) -> ExecutionResult:
        argv = self.interpreter.build_argv(binary, script_path)
        proc, spawn_error = self._spawn(argv)
        if proc is None:
            logger.error(f"Failed to start {self.interpreter.name}: {spawn_error}")
            return self._failure(f"failed to start {self.interpreter.name}: {spawn_error}", started)

        logger.info(f"Started {self.interpreter.name} (pid {proc.pid}, timeout {_format_seconds(timeout)}s)")

        stdout_drain = _StreamDrain(proc.stdout, "stdout")
        stderr_drain = _StreamDrain(proc.stderr, "stderr")
        stdout_drain.start()
        stderr_drain.start()

        outcome = self._wait(proc, timeout, cancel_event)

        if outcome != EXITED:
            kill_error = self._kill_tree(proc)
            if kill_error:
                logger.error(f"Kill of pid {proc.pid} reported: {kill_error}")
            self._wait_after_kill(proc)

        self._join_drains(proc, stdout_drain, stderr_drain)
        elapsed = timedelta(seconds=time.monotonic() - started)

        stdout = stdout_drain.text()
        stderr = stderr_drain.text()
        for drain in (stdout_drain, stderr_drain):
            if drain.error:
                logger.warning(f"Reading {drain.name} of pid {proc.pid} failed: {drain.error}")

        if outcome == TIMED_OUT:
            message = f"timed out after {_format_seconds(timeout)} seconds"
            logger.warning(f"Command {message} (pid {proc.pid})")
            return ExecutionResult(
                success=False,
                stdout=stdout,
                stderr=message + (f"\n{stderr}" if stderr else ""),
                exit_code=TIMEOUT_EXIT_CODE,
                elapsed=elapsed,
                timed_out=True,
            )

        if outcome == CANCELLED:
            logger.warning(f"Command cancelled by user (pid {proc.pid})")
            return ExecutionResult(
                success=False,
                stdout=stdout,
                stderr="cancelled by user" + (f"\n{stderr}" if stderr else ""),
                exit_code=TIMEOUT_EXIT_CODE,
                elapsed=elapsed,
                cancelled=True,
            )

        exit_code = proc.returncode
        success = exit_code == 0 and not stderr.strip()
        if exit_code != 0 and not stderr.strip():
            stderr = f"command failed with exit code {exit_code}"

        logger.info(f"pid {proc.pid} exited with code {exit_code} in {elapsed.total_seconds():.2f}s")
        return ExecutionResult(
            success=success,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            elapsed=elapsed,
        )

    def _spawn(self, argv: List[str]) -> Tuple[Optional[subprocess.Popen], Optional[str]]:
        """Start the child; returns (process, None) or (None, error message)."""
        try:
            proc = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                **self._isolation_options(),
            )
        except (OSError, ValueError) as e:
            return None, str(e)
        return proc, None

    @staticmethod
    def _isolation_options() -> dict:
        if sys.platform == "win32":
            return {
                'creationflags': subprocess.CREATE_NEW_PROCESS_GROUP | subprocess.CREATE_NO_WINDOW,
            }
        return {'start_new_session': True}

    @staticmethod
    def _wait(proc: subprocess.Popen,
              timeout: float,
              cancel_event: Optional[threading.Event]) -> str:
        """Wait for exit; returns EXITED, TIMED_OUT or CANCELLED."""
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return TIMED_OUT
            if cancel_event is not None and cancel_event.is_set():
                return CANCELLED
            try:
                proc.wait(timeout=min(WAIT_POLL_SECONDS, remaining))
                return EXITED
            except subprocess.TimeoutExpired:
                continue

    @staticmethod
    def _kill_tree(proc: subprocess.Popen) -> Optional[str]:
        """Kill the child and all its descendants; returns an error message or None."""
        errors = []
        try:
            parent = psutil.Process(proc.pid)
            victims = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            victims = []
        for victim in victims:
            try:
                victim.kill()
            except psutil.NoSuchProcess:
                pass
            except psutil.AccessDenied as e:
                errors.append(f"access denied killing pid {victim.pid}: {e}")

        if sys.platform != "win32":
            # Descendants re-parented away from the tree are still in the group
            try:
                os.killpg(proc.pid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            except PermissionError as e:
                errors.append(f"killpg failed: {e}")

        return "; ".join(errors) or None

    def _wait_after_kill(self, proc: subprocess.Popen):
        try:
            proc.wait(timeout=self.grace_seconds)
        except subprocess.TimeoutExpired:
            logger.error(f"pid {proc.pid} still alive {self.grace_seconds}s after kill")

    def _join_drains(self, proc: subprocess.Popen, *drains: _StreamDrain):
        """Join readers within the grace period; background children holding a pipe are killed."""
        deadline = time.monotonic() + self.grace_seconds
        finished = all(d.join(deadline - time.monotonic()) for d in drains)
        if finished:
            return
        logger.warning(f"Output pipes of pid {proc.pid} held open by descendants, killing group")
        self._kill_tree(proc)
        for drain in drains:
            drain.join(self.grace_seconds / 2)

    @staticmethod
    def _failure(message: str, started: float) -> ExecutionResult:
        return ExecutionResult(
            success=False,
            stderr=message,
            exit_code=SPAWN_FAILED_EXIT_CODE,
            elapsed=timedelta(seconds=time.monotonic() - started),
        )
