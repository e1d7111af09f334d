#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Pattern tables used to classify PowerShell commands.

The tables are plain immutable data. DEFAULT_PATTERNS is built once at import
and handed to the scorer and policy engine; tests can build their own
PatternTables and inject it instead.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple


@dataclass(frozen=True)
class PatternTables:
    """Verb, path and parameter signatures for lexical risk classification."""
    blacklisted_commands: Tuple[str, ...]
    destructive_verbs: Tuple[str, ...]
    mutating_verbs: Tuple[str, ...]
    read_only_verbs: Tuple[str, ...]
    system_paths: Tuple[str, ...]
    user_profile_markers: Tuple[str, ...]
    dangerous_parameters: Tuple[str, ...]
    file_keywords: Tuple[str, ...]
    system_keywords: Tuple[str, ...]
    network_keywords: Tuple[str, ...]
    force_flag: str = "-Force"
    recurse_flag: str = "-Recurse"
    wildcard: str = "*"
    pipe: str = "|"


DEFAULT_PATTERNS = PatternTables(
    # Disk formatting/partitioning, recycle bin, power state, execution policy
    blacklisted_commands=(
        "Format-Volume", "diskpart", "Clear-Disk", "Initialize-Disk",
        "Remove-Partition", "Clear-RecycleBin",
        "Stop-Computer", "Restart-Computer",
        "Set-ExecutionPolicy",
    ),
    destructive_verbs=("Remove", "Delete", "Clear", "Format", "Stop", "Disable", "Uninstall"),
    mutating_verbs=("Set", "New", "Move", "Rename", "Copy", "Start", "Enable", "Install"),
    read_only_verbs=("Get", "Show", "Test", "Measure", "Find", "Search", "Read", "Select"),
    system_paths=(
        "C:\\Windows", "C:\\Program Files", "C:\\Program Files (x86)",
        "$env:SystemRoot", "$env:ProgramFiles", "HKLM:",
        "HKCU:\\Software\\Microsoft\\Windows",
    ),
    user_profile_markers=("$env:USERPROFILE", "~\\"),
    dangerous_parameters=("-Force", "-Recurse", "-Confirm:$false", "-WhatIf:$false"),
    file_keywords=("File", "Item", "Content"),
    system_keywords=("Service", "Process", "Registry"),
    network_keywords=("Net", "Web"),
)

# Leading cmdlet token, e.g. "Remove-Item" in "Remove-Item C:\temp -Force"
_CMDLET_RE = re.compile(r"^([\w-]+)")

# Drive-letter paths are matched case-sensitively
DRIVE_PATH_RE = re.compile(r"[A-Z]:\\")

_PATH_PATTERNS = [
    re.compile(r"[A-Z]:\\(?:[^\\/:*?\"<>|\s]+\\)*[^\\/:*?\"<>|\s]*"),
    re.compile(r"\.\\[^\s]+"),
    re.compile(r"~\\[^\s]+"),
]


def contains_ci(text: str, needle: str) -> bool:
    """Case-insensitive substring test."""
    return needle.casefold() in text.casefold()


def first_match_ci(text: str, needles: Tuple[str, ...]) -> Optional[str]:
    """Return the first needle found in text (case-insensitive), else None."""
    folded = text.casefold()
    for needle in needles:
        if needle.casefold() in folded:
            return needle
    return None


def extract_cmdlet(command_text: str) -> str:
    """Return the leading verb-noun token of a command, or '' if none."""
    match = _CMDLET_RE.match(command_text.strip())
    return match.group(1) if match else ""


def verb_matches(cmdlet: str, verbs: Tuple[str, ...]) -> bool:
    """True if the cmdlet starts with one of the verbs followed by '-'."""
    folded = cmdlet.casefold()
    return any(folded.startswith(verb.casefold() + "-") for verb in verbs)


def extract_file_paths(command_text: str) -> List[str]:
    """
    Extract absolute, relative and home-directory paths referenced by a command.

    Returns distinct paths in order of first appearance.
    """
    paths: List[str] = []
    for pattern in _PATH_PATTERNS:
        for match in pattern.finditer(command_text):
            value = match.group(0).strip()
            if value and value not in paths:
                paths.append(value)
    return paths
