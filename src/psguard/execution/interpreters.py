#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Interpreter launch profiles for sandboxed execution.

A profile knows which binary to look for, how to wrap the command text into
a script file and which arguments run that file non-interactively.
"""

import shutil
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple


def _wrap_powershell(command_text: str) -> str:
    # Terminating errors are written to stderr so they count as a failure
    return (
        "$ErrorActionPreference = 'Continue'\n"
        "$ProgressPreference = 'SilentlyContinue'\n"
        "[Console]::OutputEncoding = [System.Text.Encoding]::UTF8\n"
        "$OutputEncoding = [System.Text.Encoding]::UTF8\n"
        "try {\n"
        f"{command_text}\n"
        "} catch {\n"
        "    [Console]::Error.WriteLine(\"Exception: \" + $_.Exception.Message)\n"
        "    exit 1\n"
        "}\n"
        "exit $LASTEXITCODE\n"
    )


def _wrap_posix(command_text: str) -> str:
    return f"{command_text}\n"


@dataclass(frozen=True)
class Interpreter:
    """How to run a command text through one interpreter binary."""
    name: str
    candidates: Tuple[str, ...]
    arguments: Tuple[str, ...]
    script_suffix: str
    script_encoding: str
    wrap: Callable[[str], str]

    def resolve(self) -> Optional[str]:
        """Return the full path of the first installed candidate binary."""
        for candidate in self.candidates:
            path = shutil.which(candidate)
            if path:
                return path
        return None

    def build_argv(self, binary: str, script_path: str) -> List[str]:
        return [binary, *self.arguments, script_path]


POWERSHELL = Interpreter(
    name="PowerShell",
    candidates=("pwsh", "powershell"),
    # No profile, no prompts, execution policy bypassed for this one run only
    arguments=("-NoProfile", "-NonInteractive", "-NoLogo",
               "-ExecutionPolicy", "Bypass", "-File"),
    script_suffix=".ps1",
    script_encoding="utf-8-sig",  # BOM so Windows PowerShell 5.1 reads UTF-8
    wrap=_wrap_powershell,
)

POSIX_SHELL = Interpreter(
    name="sh",
    candidates=("sh",),
    arguments=(),
    script_suffix=".sh",
    script_encoding="utf-8",
    wrap=_wrap_posix,
)

INTERPRETERS = {
    'powershell': POWERSHELL,
    'sh': POSIX_SHELL,
}


def default_interpreter() -> Interpreter:
    return POWERSHELL


def get_interpreter(name: str) -> Interpreter:
    try:
        return INTERPRETERS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown interpreter: {name!r} (expected one of {sorted(INTERPRETERS)})")
