#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Sandboxed execution of approved commands in a child interpreter process.
"""

from .interpreters import (
    Interpreter,
    POWERSHELL,
    POSIX_SHELL,
    default_interpreter,
    get_interpreter,
)
from .sandbox_executor import SandboxExecutor, TIMEOUT_EXIT_CODE

__all__ = [
    'Interpreter',
    'POWERSHELL',
    'POSIX_SHELL',
    'default_interpreter',
    'get_interpreter',
    'SandboxExecutor',
    'TIMEOUT_EXIT_CODE',
]
