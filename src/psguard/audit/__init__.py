#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Audit trail: redaction and the SQLite history store.
"""

from .redaction import REDACTED_PLACEHOLDER, redact_command
from .history_store import HistoryStore, HistoryStoreError

__all__ = [
    'REDACTED_PLACEHOLDER',
    'redact_command',
    'HistoryStore',
    'HistoryStoreError',
]
