#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Value types shared by the safety gate, the executor and the history store.

Enum integer values are persisted by the history store, so they must not
be renumbered.
"""

from dataclasses import dataclass, field, replace, asdict
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Dict, List, Optional, Tuple, Any


class RiskLevel(IntEnum):
    """Three-bucket classification derived from the risk score."""
    LOW = 0
    MEDIUM = 1
    HIGH = 2


class CommandType(IntEnum):
    """What kind of thing a command touches."""
    QUERY = 0
    FILE_OPERATION = 1
    SYSTEM_CONFIG = 2
    NETWORK_OPERATION = 3
    DANGEROUS = 4


class SecurityLevel(Enum):
    """User-configurable strictness of the policy engine."""
    STRICT = "strict"
    STANDARD = "standard"
    RELAXED = "relaxed"

    @classmethod
    def parse(cls, value: str) -> "SecurityLevel":
        """Accept either the value or the member name, any case."""
        if isinstance(value, cls):
            return value
        normalized = str(value).strip().lower()
        for member in cls:
            if member.value == normalized:
                return member
        raise ValueError(f"Unknown security level: {value!r}")


class ExecutionStatus(IntEnum):
    """Outcome of a pipeline traversal as stored in history."""
    NOT_EXECUTED = 0
    SUCCESS = 1
    FAILED = 2
    CANCELLED = 3


@dataclass(frozen=True)
class Command:
    """A candidate command. Rescoring returns a new value."""
    text: str
    description: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    command_type: CommandType = CommandType.FILE_OPERATION
    risk_score: float = 0.0
    affected_paths: Tuple[str, ...] = ()

    def with_verdict(self, verdict: "SafetyVerdict") -> "Command":
        return replace(
            self,
            risk_level=verdict.risk_level,
            command_type=verdict.command_type,
            risk_score=verdict.risk_score,
        )


@dataclass
class SafetyVerdict:
    """Result of one policy evaluation."""
    allowed: bool
    risk_level: RiskLevel
    risk_score: float
    command_type: CommandType
    reason: str = ""  # Set iff denied
    warnings: List[str] = field(default_factory=list)
    requires_confirmation: bool = False

    @property
    def denied(self) -> bool:
        return not self.allowed


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of exactly one execution attempt."""
    success: bool
    stdout: str = ""
    stderr: str = ""
    exit_code: int = -1
    elapsed: timedelta = timedelta(0)
    timed_out: bool = False
    cancelled: bool = False

    @property
    def error_output(self) -> str:
        return self.stderr

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'stdout': self.stdout,
            'stderr': self.stderr,
            'exit_code': self.exit_code,
            'elapsed_ms': int(self.elapsed.total_seconds() * 1000),
            'timed_out': self.timed_out,
            'cancelled': self.cancelled,
        }


@dataclass
class HistoryRecord:
    """One persisted pipeline traversal."""
    user_input: str
    generated_command: str
    status: ExecutionStatus
    risk_level: RiskLevel
    execution_result: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        data['status'] = self.status.name
        data['risk_level'] = self.risk_level.name
        return data
