#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Risk Scoring Engine - heuristic 0-100 score for a PowerShell command.

The composite score is a weighted sum of four sub-scores:
- Verb risk (40%): destructive / mutating / read-only / unknown cmdlet verb
- Path risk (30%): system directories and registry hives, user profile, drive paths
- Parameter risk (20%): force / recurse / suppressed confirmation flags
- Scope risk (10%): wildcards, recursion, pipelines

Weights and level thresholds are fixed policy constants.
"""

import logging
from typing import Optional, Tuple

from .models import CommandType, RiskLevel
from .patterns import (
    DEFAULT_PATTERNS,
    DRIVE_PATH_RE,
    PatternTables,
    contains_ci,
    extract_cmdlet,
    first_match_ci,
    verb_matches,
)

logger = logging.getLogger(__name__)

VERB_WEIGHT = 0.4
PATH_WEIGHT = 0.3
PARAMETER_WEIGHT = 0.2
SCOPE_WEIGHT = 0.1

HIGH_RISK_THRESHOLD = 70
MEDIUM_RISK_THRESHOLD = 40

MAX_SCORE = 100.0
MIN_SCORE = 0.0


def clamp_score(score: float) -> float:
    return max(MIN_SCORE, min(score, MAX_SCORE))


def risk_level_for(score: float) -> RiskLevel:
    """Map a composite score to its risk bucket."""
    if score >= HIGH_RISK_THRESHOLD:
        return RiskLevel.HIGH
    if score >= MEDIUM_RISK_THRESHOLD:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


class RiskScorer:
    """Computes the composite risk score and command type for command text."""

    def __init__(self, tables: Optional[PatternTables] = None):
        self.tables = tables or DEFAULT_PATTERNS

    def score(self, command_text: str) -> Tuple[float, CommandType]:
        """
        Score a command.

        Args:
            command_text: Raw command text. Empty text must be rejected by
                the caller; here it simply scores as an unknown verb.

        Returns:
            (risk score in [0, 100], CommandType)
        """
        composite = (
            self.verb_risk(command_text) * VERB_WEIGHT
            + self.path_risk(command_text) * PATH_WEIGHT
            + self.parameter_risk(command_text) * PARAMETER_WEIGHT
            + self.scope_risk(command_text) * SCOPE_WEIGHT
        )
        score = clamp_score(composite)
        command_type = self.classify(command_text)
        logger.debug(f"Scored {command_text[:80]!r}: {score:.1f} ({command_type.name})")
        return score, command_type

    def verb_risk(self, command_text: str) -> float:
        cmdlet = extract_cmdlet(command_text)
        if verb_matches(cmdlet, self.tables.destructive_verbs):
            return 100
        if verb_matches(cmdlet, self.tables.mutating_verbs):
            return 50
        if verb_matches(cmdlet, self.tables.read_only_verbs):
            return 10
        return 40  # Unknown verb: moderate, never safe

    def path_risk(self, command_text: str) -> float:
        if first_match_ci(command_text, self.tables.system_paths):
            return 100
        if first_match_ci(command_text, self.tables.user_profile_markers):
            return 50
        if DRIVE_PATH_RE.search(command_text):
            return 30
        return 10

    def parameter_risk(self, command_text: str) -> float:
        risk = 0.0
        for param in self.tables.dangerous_parameters:
            if contains_ci(command_text, param):
                risk += 30
        return min(risk, MAX_SCORE)

    def scope_risk(self, command_text: str) -> float:
        if self.tables.wildcard in command_text:
            return 80
        if contains_ci(command_text, self.tables.recurse_flag):
            return 90
        if self.tables.pipe in command_text:
            return 40
        return 10

    def classify(self, command_text: str) -> CommandType:
        """Classify by the leading cmdlet; independent of the score."""
        cmdlet = extract_cmdlet(command_text)

        if verb_matches(cmdlet, self.tables.read_only_verbs):
            return CommandType.QUERY
        if first_match_ci(cmdlet, self.tables.file_keywords):
            return CommandType.FILE_OPERATION
        if first_match_ci(cmdlet, self.tables.system_keywords):
            return CommandType.SYSTEM_CONFIG
        if first_match_ci(cmdlet, self.tables.network_keywords):
            return CommandType.NETWORK_OPERATION
        return CommandType.FILE_OPERATION
