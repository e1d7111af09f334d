#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Safety gate: pattern tables, risk scoring and policy evaluation.
"""

from .models import (
    Command,
    CommandType,
    ExecutionResult,
    ExecutionStatus,
    HistoryRecord,
    RiskLevel,
    SafetyVerdict,
    SecurityLevel,
)
from .patterns import DEFAULT_PATTERNS, PatternTables, extract_file_paths
from .risk_scorer import RiskScorer, risk_level_for
from .policy_engine import PolicyEngine

__all__ = [
    'Command',
    'CommandType',
    'ExecutionResult',
    'ExecutionStatus',
    'HistoryRecord',
    'RiskLevel',
    'SafetyVerdict',
    'SecurityLevel',
    'DEFAULT_PATTERNS',
    'PatternTables',
    'extract_file_paths',
    'RiskScorer',
    'risk_level_for',
    'PolicyEngine',
]
