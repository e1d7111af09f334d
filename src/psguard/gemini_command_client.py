#!/usr/bin/env python3
# SPDX-License-Identifier: MIT
# Copyright (c) 2025 psguard contributors
"""
Gemini command client - turns a natural-language request into a PowerShell command.

The safety pipeline treats this as an opaque collaborator: it only consumes
the (command_text, description) pair returned by suggest().
"""

import os
import re
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from google import genai
from google.genai import types

logger = logging.getLogger(__name__)

MODEL_FLASH = "gemini-3-flash-preview"

SYSTEM_INSTRUCTION = """
You are a PowerShell assistant. Turn the user's request into ONE safe, correct
PowerShell command.

RULES:
1. Only PowerShell, never cmd.exe or batch syntax
2. Never produce:
   - disk formatting or partitioning (Format-Volume, diskpart, ...)
   - deletion of system files or directories
   - deletion or modification of critical registry keys
   - execution policy changes
   - termination of critical system processes
3. Be careful with deletions and bulk operations
4. Use standard cmdlets and syntax

OUTPUT FORMAT (strict):
```powershell
<the command>
```
Explanation: <one short sentence about what the command does>
"""

_CODE_BLOCK_RE = re.compile(r"```(?:powershell|ps1|pwsh)?\s*\n(.*?)\n```", re.DOTALL | re.IGNORECASE)
_EXPLANATION_RE = re.compile(r"^\s*Explanation\s*[:：]\s*(.+?)\s*$", re.MULTILINE | re.IGNORECASE)

# Used when the model forgets the fenced block
_FALLBACK_PREFIXES = ("Get-", "Set-", "New-", "Remove-", "Test-", "Start-", "Stop-")


class CommandGenerationError(Exception):
    """The model call failed or returned no usable command."""


@dataclass(frozen=True)
class CommandSuggestion:
    """A command proposed by the model."""
    command_text: str
    description: str
    raw: str = ""


def parse_suggestion(content: str) -> Tuple[str, str]:
    """
    Extract (command_text, description) from a model reply.

    Returns empty strings for the parts that could not be found.
    """
    command_text = ""
    match = _CODE_BLOCK_RE.search(content or "")
    if match:
        command_text = match.group(1).strip()
    else:
        for line in (content or "").splitlines():
            stripped = line.strip()
            if stripped.startswith(_FALLBACK_PREFIXES):
                command_text = stripped
                break

    description = ""
    desc_match = _EXPLANATION_RE.search(content or "")
    if desc_match:
        description = desc_match.group(1).strip()
    return command_text, description


class GeminiCommandClient:
    """Generates PowerShell commands with the google-genai SDK."""

    def __init__(self, api_key: Optional[str] = None, model: str = MODEL_FLASH):
        """
        Args:
            api_key: Gemini API key (defaults to GEMINI_API_KEY env var)
            model: Model name
        """
        api_key = api_key or os.environ.get('GEMINI_API_KEY')
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable not set")

        self.client = genai.Client(api_key=api_key)
        self.model = model
        logger.info(f"Gemini command client initialized (model: {model})")

    def suggest(self, user_input: str) -> CommandSuggestion:
        """
        Ask the model for a command.

        Raises:
            CommandGenerationError: API failure or no command in the reply
        """
        try:
            response = self.client.models.generate_content(
                model=self.model,
                contents=user_input,
                config=types.GenerateContentConfig(system_instruction=SYSTEM_INSTRUCTION),
            )
        except Exception as e:
            logger.error(f"Command generation failed: {e}")
            raise CommandGenerationError(f"command generation failed: {e}") from e

        content = response.text or ""
        command_text, description = parse_suggestion(content)
        if not command_text:
            logger.warning("Model reply contained no command")
            raise CommandGenerationError("the model did not return a command")

        logger.info(f"Model suggested: {command_text[:100]}")
        return CommandSuggestion(command_text=command_text, description=description, raw=content)
