#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Command Policy Engine - allow / deny / confirm decision for a candidate command.

Evaluation order, short-circuiting on the first denial:
1. Empty command
2. Built-in and user blacklist (case-insensitive substring)
3. Risk scoring
4. Security level policy (Strict / Standard / Relaxed)
5. Warnings

Evaluation is a pure function of its inputs and the pattern tables.
"""

import logging
from typing import Iterable, Optional, Tuple

from .models import Command, CommandType, RiskLevel, SafetyVerdict, SecurityLevel
from .patterns import DEFAULT_PATTERNS, PatternTables, contains_ci, first_match_ci
from .risk_scorer import MAX_SCORE, RiskScorer, risk_level_for

logger = logging.getLogger(__name__)

REASON_EMPTY = "empty command"
REASON_BLACKLISTED = "blacklisted"
REASON_STRICT_NOT_QUERY = "strict mode only allows read-only queries"
REASON_STRICT_NOT_LOW = "strict mode blocks commands above low risk"
REASON_RISK_TOO_HIGH = "risk too high"
REASON_EXTREMELY_DANGEROUS = "extremely dangerous"

# Relaxed mode denies only HIGH commands at or above this score
RELAXED_DENY_SCORE = 80


class PolicyEngine:
    """
    Maps a command and the configured security level to a SafetyVerdict.

    The custom whitelist is accepted for configuration compatibility but is
    reserved: it never changes a verdict.
    """

    def __init__(self,
                 scorer: Optional[RiskScorer] = None,
                 tables: Optional[PatternTables] = None):
        self.tables = tables or (scorer.tables if scorer else DEFAULT_PATTERNS)
        self.scorer = scorer or RiskScorer(self.tables)

    def evaluate(self,
                 command_text: str,
                 security_level: SecurityLevel,
                 blacklist: Iterable[str] = (),
                 whitelist: Iterable[str] = ()) -> SafetyVerdict:
        """
        Evaluate a command against the policy.

        Args:
            command_text: Candidate command text
            security_level: Configured strictness
            blacklist: User substrings that always deny
            whitelist: Reserved, unused

        Returns:
            SafetyVerdict; denied verdicts always carry a reason
        """
        if not command_text or not command_text.strip():
            return SafetyVerdict(
                allowed=False,
                risk_level=RiskLevel.LOW,
                risk_score=0.0,
                command_type=CommandType.QUERY,
                reason=REASON_EMPTY,
            )

        blocked_by = self._blacklist_match(command_text, blacklist)
        if blocked_by:
            logger.warning(f"Blacklisted command denied (matched {blocked_by!r})")
            return SafetyVerdict(
                allowed=False,
                risk_level=RiskLevel.HIGH,
                risk_score=MAX_SCORE,
                command_type=CommandType.DANGEROUS,
                reason=f"{REASON_BLACKLISTED}: matches '{blocked_by}'",
            )

        score, command_type = self.scorer.score(command_text)
        verdict = SafetyVerdict(
            allowed=True,
            risk_level=risk_level_for(score),
            risk_score=score,
            command_type=command_type,
        )

        if security_level == SecurityLevel.STRICT:
            self._apply_strict(verdict)
        elif security_level == SecurityLevel.STANDARD:
            self._apply_standard(verdict)
        elif security_level == SecurityLevel.RELAXED:
            self._apply_relaxed(verdict)
        else:
            raise ValueError(f"Unsupported security level: {security_level!r}")

        verdict.warnings = self.warnings_for(command_text)

        if verdict.denied:
            logger.info(f"Command denied under {security_level.value}: {verdict.reason}")
        return verdict

    def evaluate_command(self,
                         command: Command,
                         security_level: SecurityLevel,
                         blacklist: Iterable[str] = (),
                         whitelist: Iterable[str] = ()) -> Tuple[SafetyVerdict, Command]:
        """Evaluate a Command and return the verdict with the rescored Command."""
        verdict = self.evaluate(command.text, security_level, blacklist, whitelist)
        return verdict, command.with_verdict(verdict)

    def _blacklist_match(self, command_text: str, blacklist: Iterable[str]) -> Optional[str]:
        builtin = first_match_ci(command_text, self.tables.blacklisted_commands)
        if builtin:
            return builtin
        for entry in blacklist:
            # A blank entry would match every command
            if entry and entry.strip() and contains_ci(command_text, entry.strip()):
                return entry.strip()
        return None

    @staticmethod
    def _apply_strict(verdict: SafetyVerdict):
        if verdict.command_type != CommandType.QUERY:
            verdict.allowed = False
            verdict.reason = REASON_STRICT_NOT_QUERY
            return
        if verdict.risk_level != RiskLevel.LOW:
            verdict.allowed = False
            verdict.reason = REASON_STRICT_NOT_LOW

    @staticmethod
    def _apply_standard(verdict: SafetyVerdict):
        if verdict.risk_level == RiskLevel.HIGH:
            verdict.allowed = False
            verdict.reason = f"{REASON_RISK_TOO_HIGH} (score {verdict.risk_score:.1f})"
            return
        if verdict.risk_level == RiskLevel.MEDIUM:
            verdict.requires_confirmation = True

    @staticmethod
    def _apply_relaxed(verdict: SafetyVerdict):
        # HIGH commands scoring 70-79 are only flagged for confirmation here
        if verdict.risk_level == RiskLevel.HIGH and verdict.risk_score >= RELAXED_DENY_SCORE:
            verdict.allowed = False
            verdict.reason = f"{REASON_EXTREMELY_DANGEROUS} (score {verdict.risk_score:.1f})"
            return
        if verdict.risk_level >= RiskLevel.MEDIUM:
            verdict.requires_confirmation = True

    def warnings_for(self, command_text: str):
        """Human-readable warnings, independent of the allow/deny outcome."""
        warnings = []
        if contains_ci(command_text, self.tables.force_flag):
            warnings.append(f"{self.tables.force_flag} skips confirmation prompts")
        if contains_ci(command_text, self.tables.recurse_flag):
            warnings.append(f"{self.tables.recurse_flag} affects all subdirectories")
        if self.tables.wildcard in command_text:
            warnings.append("Wildcard may affect multiple items")
        system_path = first_match_ci(command_text, self.tables.system_paths)
        if system_path:
            warnings.append(f"Operates on system path: {system_path}")
        return warnings
