# FILE: chatrouter/routing/sanitizer.py
"""
Command sanitization.

Every string that may end up as a command token for the skill layer passes
through sanitize_command() first. It strips the characters a shell would
treat as control syntax: separators, pipes, redirects, backticks, $()/${}
expansion and escapes. Line breaks are collapsed to a single space so a
command is always one line.
"""
from __future__ import annotations
import re
from typing import Optional

# ; ` $ { } | < > & \
SHELL_METACHARACTERS = re.compile(r"[;`${}|<>&\\]")
LINE_BREAKS = re.compile(r"[\r\n]+")


def sanitize_command(text: Optional[str]) -> Optional[str]:
    """
    Remove shell metacharacters, flatten line breaks and trim.

    None and non-strings are returned as-is; never raises.
    """
    if not text or not isinstance(text, str):
        return text
    flattened = LINE_BREAKS.sub(" ", text)
    return SHELL_METACHARACTERS.sub("", flattened).strip()


def is_clean(text: Optional[str]) -> bool:
    """True if sanitize_command() would leave the text's characters alone."""
    if not text or not isinstance(text, str):
        return True
    return SHELL_METACHARACTERS.search(text) is None and LINE_BREAKS.search(text) is None
