# FILE: chatrouter/routing/auto_context.py
"""
Auto-context: fill a bare command's missing target from the chat's active
repo or company.

    "deploy"     + auto_repo JUDO    -> "deploy JUDO"
    "deadlines"  + auto_company GACC -> "deadlines GACC"
    "deploy JUDO" + auto_repo X      -> unchanged (explicit target wins)

Also recognizes messages that are already structured commands, which skip
the rule library and classifier.
"""
from __future__ import annotations
import re
import logging
from typing import List, Optional

from .schemas import RouteContext

logger = logging.getLogger(__name__)


# =============================================================================
# SCOPED COMMANDS
# =============================================================================

# Bare verbs that act on a repository
REPO_COMMANDS: List[re.Pattern] = [re.compile(p, re.IGNORECASE) for p in [
    r"^deploy$",
    r"^run tests?$",
    r"^logs$",
    r"^restart$",
    r"^build$",
    r"^install$",
    r"^project status$",
    r"^readme$",
    r"^project files$",
]]

# Bare verbs that act on a company
COMPANY_COMMANDS: List[re.Pattern] = [re.compile(p, re.IGNORECASE) for p in [
    r"^deadlines$",
    r"^company$",
    r"^expenses$",
]]


def needs_repo(command: str) -> bool:
    cmd = command.strip()
    return any(p.match(cmd) for p in REPO_COMMANDS)


def needs_company(command: str) -> bool:
    cmd = command.strip()
    return any(p.match(cmd) for p in COMPANY_COMMANDS)


def apply_auto_context(command: str, context: Optional[RouteContext]) -> str:
    """
    Append the active repo/company to a command that has no target.

    Pure function of its inputs; a command that already carries a target is
    returned as-is.
    """
    if not command or context is None:
        return command
    if not context.auto_repo and not context.auto_company:
        return command

    if context.auto_repo and needs_repo(command):
        enhanced = f"{command} {context.auto_repo}"
        logger.debug(f"Auto-context: {command!r} -> {enhanced!r}")
        return enhanced

    if context.auto_company and needs_company(command):
        enhanced = f"{command} {context.auto_company}"
        logger.debug(f"Auto-context: {command!r} -> {enhanced!r}")
        return enhanced

    return command


# =============================================================================
# STRUCTURED COMMAND RECOGNITION
# =============================================================================

STRUCTURED_COMMAND_PATTERNS: List[re.Pattern] = [re.compile(p, re.IGNORECASE) for p in [
    # Core
    r"^(help|status|deadlines|expenses|companies|list repos)\b",
    # Exact skill commands, not coding instructions
    r"^(review pr|search tasks?|read file|analyze\s+\S+$)",
    # Domain
    r"^(company|governance|intercompany|workflows|loans|ic balance)\b",
    r"^(company number|deadlines)\s+[A-Z]{2,}",
    r"^(summary|receipts|pending|due)\b",
    # Project context
    r"^(project status|readme|project files|switch to|my repos|active project)\b",
    # Remote execution with a target
    r"^run tests?\s+\S+",
    r"^deploy\s+\S+",
    r"^logs\s+\S+",
    r"^restart\s+\S+",
    r"^build\s+\S+$",
    r"^install\s+\S+",
    r"^exec\s+",
    r"^vercel\s+(deploy|preview)\b",
    r"^agent session\s+\S+",
    # Bare repo commands
    r"^(deploy|logs|restart|build|install|run tests?)$",
    r"^create new project\s+\S+$",
]]


def looks_like_command(text: str) -> bool:
    """True if the text is already in canonical command form."""
    if not text:
        return False
    stripped = text.strip()
    if "\n" in stripped or "\r" in stripped:
        return False
    return any(p.search(stripped) for p in STRUCTURED_COMMAND_PATTERNS)
