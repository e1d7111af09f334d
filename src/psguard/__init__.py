#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
psguard - safety gate and sandboxed execution for AI-generated PowerShell commands.

Candidate commands are risk-scored, checked against a configurable policy,
executed in an isolated child interpreter when allowed, and every outcome is
recorded in a redacted SQLite history.
"""

__version__ = "0.1.0"
__all__ = [
    "AppConfig",
    "load_config",
    "PolicyEngine",
    "RiskScorer",
    "SandboxExecutor",
    "HistoryStore",
    "CommandPipeline",
    "RerunError",
    "build_pipeline",
]

from .config import AppConfig, load_config
from .safety import PolicyEngine, RiskScorer
from .execution import SandboxExecutor
from .audit import HistoryStore
from .command_pipeline import CommandPipeline, RerunError, build_pipeline
