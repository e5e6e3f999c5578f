# FILE: chatrouter/routing/pattern_rules.py
"""
Rule library: natural-language phrasings -> canonical command strings.

Rules are an ordered list of records. The first rule whose pattern matches
wins, so specific rules sit above general ones (per-company deadlines before
"deadlines", Vercel deploys before the generic deploy).

Slots come from named capture groups. A command that ends up without a
target is completed from the chat's auto-context; a command whose target
came from the message is never overwritten.
"""
from __future__ import annotations
import re
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple, Union

from .schemas import RouteContext
from .sanitizer import sanitize_command
from .auto_context import apply_auto_context

logger = logging.getLogger(__name__)

Template = Union[str, Callable[[re.Match], str]]


# =============================================================================
# RULE RECORDS
# =============================================================================

@dataclass(frozen=True)
class PatternRule:
    """One ordered rule: pattern, template, and the slots the template fills."""
    name: str
    pattern: re.Pattern
    template: Template
    slots: Tuple[str, ...] = field(default=())

    def render(self, match: re.Match) -> str:
        if callable(self.template):
            command = self.template(match)
        else:
            values = {slot: (match.group(slot) or "").strip() for slot in self.slots}
            command = self.template.format(**values)
        return re.sub(r"\s+", " ", command).strip()


@dataclass
class RuleMatch:
    rule_name: str
    command: str


def rule(name: str, pattern: str, template: Template) -> PatternRule:
    compiled = re.compile(pattern, re.IGNORECASE)
    return PatternRule(name=name, pattern=compiled, template=template, slots=tuple(compiled.groupindex))


def _optional_target(command: str, slot: str, bare: str) -> Callable[[re.Match], str]:
    """Template that falls back to a bare command when the slot did not capture."""
    def _render(match: re.Match) -> str:
        value = (match.group(slot) or "").strip()
        return f"{command} {value}" if value else bare
    return _render


# =============================================================================
# DEFAULT RULES
# =============================================================================

DEADLINE_RULES = [
    rule("deadlines_gqcars", r"what.*(deadline|due).*(gq\s*cars|gqcars)", "deadlines GQCARS"),
    rule("deadlines_gmh", r"what.*(deadline|due).*(gmh|holdings)", "deadlines GMH"),
    rule("deadlines_gacc", r"what.*(deadline|due).*(gacc|accountants)", "deadlines GACC"),
    rule("deadlines_gcap", r"what.*(deadline|due).*(gcap|capital)", "deadlines GCAP"),
    rule("deadlines_gspv", r"what.*(deadline|due).*(gspv|spv)", "deadlines GSPV"),
    rule("deadlines", r"(upcoming|what).*(deadline|due)", "deadlines"),
    rule("anything_due", r"anything\s+due", "deadlines"),
]

COMPANY_RULES = [
    rule("company_number_gqcars", r"company\s*number.*(gq\s*cars|gqcars)", "company number GQCARS"),
    rule("company_number_gcap", r"company\s*number.*(capital|gcap)", "company number GCAP"),
    rule("company_number_gmh", r"company\s*number.*(holdings|gmh)", "company number GMH"),
    rule("company_number_gacc", r"company\s*number.*(accountants|gacc)", "company number GACC"),
    rule("company_number_gspv", r"company\s*number.*(spv|gspv)", "company number GSPV"),
    rule("list_companies", r"(show|list|what).*(compan|entities)", "companies"),
    rule("about_gqcars", r"tell me about.*(gq\s*cars|gqcars)", "company GQCARS"),
    rule("about_gcap", r"tell me about.*(capital|gcap)", "company GCAP"),
    rule("about_gmh", r"tell me about.*(holdings|gmh)", "company GMH"),
    rule("about_gacc", r"tell me about.*(accountants|gacc)", "company GACC"),
    rule("about_gspv", r"tell me about.*(spv|gspv)", "company GSPV"),
]

EXPENSE_RULES = [
    rule("list_expenses", r"(show|list|what).*(expense|receipt|spending)", "expenses"),
    rule("expense_summary", r"expense\s*summary", "summary"),
    rule("how_much_spent", r"how much.*spent", "summary"),
    rule("pending_receipts", r"receipts?.*pending", "pending receipts"),
    rule("log_expense", r"\blog\b.*(expense|receipt)", "expenses"),
]

REPO_RULES = [
    rule("all_repos", r"all\s*(my)?\s*repos", "my repos"),
    rule("list_all_repos", r"list\s*all\s*repos", "my repos"),
    rule("which_repos", r"what\s*(repos?|projects?)\s+do\s+i\s+have", "my repos"),
    rule("list_repos", r"(what|show|list).*(repo|project|repositories)", "list repos"),
    rule("my_repos", r"my\s*(repo|project)s", "list repos"),
    rule("analyze", r"^analyze\s+(?P<repo>\S+)$", "analyze {repo}"),
    rule("create_project", r"^create\s+(a\s+)?new\s+(project|repo)\s+(?P<name>\S+)$", "create new project {name}"),
    rule("new_repo", r"^new\s+repo\s+(?P<name>\S+)$", "create new project {name}"),
]

GOVERNANCE_RULES = [
    rule("dividend", r"can\s*i\s*(pay|declare).*(dividend)", "can I declare dividend?"),
    rule("hire", r"can\s*i\s*(hire|employ)", "can I hire employee?"),
    rule("issue_shares", r"can\s*i\s*(issue|create).*(shares)", "can I issue shares?"),
    rule("can_approve", r"can\s*i\s*(?P<verb>approve|sign)", "can I {verb}?"),
    rule("who_approves", r"who\s*(can\s*)?(approve|sign)", lambda m: m.group(0)),
    rule("board", r"board\s*(approval|meeting)", "governance board"),
]

INTERCOMPANY_RULES = [
    rule("ic_balance", r"(show|list|what).*\b(intercompany|ic)\s*(loan|balance)", "ic balance"),
    rule("loans_between", r"loan.*between", "intercompany loans"),
    rule("intercompany", r"intercompany", "intercompany"),
]

WORKFLOW_RULES = [
    rule("pending_workflows", r"(pending|active)\s*(workflow|task|approval)", "workflows pending"),
    rule("workflow_status", r"workflow\s*status", "workflows"),
]

HELP_RULES = [
    rule("what_commands", r"what\s*commands", "help"),
    rule("show_help", r"show.*help", "help"),
]

PROJECT_CONTEXT_RULES = [
    rule("whats_left_on", r"what.*(left|remaining|todo).*\b(on|for|in)\s+(?P<repo>.+)", "project status {repo}"),
    rule("project_status", r"project\s+status\s+(?P<repo>.+)", "project status {repo}"),
    rule("show_readme", r"(show|get).*(readme|about)\s+(?P<repo>.+)", "readme {repo}"),
    rule("whats_about", r"what('?s| is)\s+(?P<repo>.+)\s+about", "readme {repo}"),
    rule("project_files", r"(files|structure)\s+(in|of|for)\s+(?P<repo>.+)", "project files {repo}"),
    rule("switch_to", r"switch\s+to\s+(?P<repo>.+)", "switch to {repo}"),
    rule("work_on", r"work(ing)?\s+on\s+(?P<repo>.+)", "switch to {repo}"),
    rule("whats_left", r"what('?s| is)\s+left(\s+to\s+do)?$", "project status"),
    rule("todo_list", r"todo\s+list$", "project status"),
]

# Must stay above the generic deploy rules
VERCEL_RULES = [
    rule("vercel_deploy_repo", r"deploy\s+(?P<repo>\S+)\s+to\s+vercel", "vercel deploy {repo}"),
    rule("vercel_deploy_named", r"vercel\s+deploy\s+(?P<repo>\S+)", "vercel deploy {repo}"),
    rule("vercel_push_repo", r"push\s+(?P<repo>\S+)\s+to\s+vercel", "vercel deploy {repo}"),
    rule("vercel_preview", r"preview\s+(?P<repo>\S+)\s+on\s+vercel", "vercel preview {repo}"),
    rule("vercel_deploy", r"^deploy\s+to\s+vercel", "vercel deploy"),
    rule("vercel_deploy_bare", r"^vercel\s+deploy$", "vercel deploy"),
    rule("vercel_push", r"^push\s+to\s+vercel", "vercel deploy"),
    rule("vercel_deploy_this", r"^deploy\s+(?:this|it)\s+to\s+vercel", "vercel deploy"),
]

REMOTE_EXECUTION_RULES = [
    rule("run_tests", r"\brun\s+tests?\s+(on\s+)?(?P<repo>\S+)", "run tests {repo}"),
    rule("test", r"\btest\s+(?P<repo>\S+)", "run tests {repo}"),
    rule("deploy", r"\bdeploy\s+(?P<repo>.+?)(\s+to\s+prod(uction)?)?$", "deploy {repo}"),
    rule("push_live", r"\bpush\s+(?P<repo>.+)\s+live", "deploy {repo}"),
    rule("logs", r"(check|show|view)\s+logs?\s+(for\s+)?(?P<repo>\S+)", "logs {repo}"),
    rule("restart", r"\brestart\s+(?P<repo>\S+)", "restart {repo}"),
    rule("rebuild", r"\brebuild\s+(?P<repo>\S+)", "build {repo}"),
]

VOICE_RULES = [
    rule("need_to_do", r"what\s+(do\s+i\s+)?need\s+to\s+do(\s+for)?(\s+(?P<repo>.+))?",
         _optional_target("project status", "repo", "project status")),
    rule("status_of", r"what('?s| is)\s+the\s+status(\s+of)?(\s+(?P<repo>.+))?",
         _optional_target("project status", "repo", "status")),
    rule("what_to_work_on", r"what\s+should\s+i\s+work\s+on", "project status"),
]

# Bare verbs, completed by auto-context
BARE_COMMAND_RULES = [
    rule("bare_run_tests", r"^run\s+tests?$", "run tests"),
    rule("bare_repo_command", r"^(?P<verb>deploy|logs|restart|build|install)$", lambda m: m.group("verb").lower()),
    rule("bare_company_command", r"^(?P<verb>deadlines|expenses)$", lambda m: m.group("verb").lower()),
]

DEFAULT_RULES: List[PatternRule] = (
    DEADLINE_RULES
    + COMPANY_RULES
    + EXPENSE_RULES
    + REPO_RULES
    + GOVERNANCE_RULES
    + INTERCOMPANY_RULES
    + WORKFLOW_RULES
    + HELP_RULES
    + PROJECT_CONTEXT_RULES
    + VERCEL_RULES
    + REMOTE_EXECUTION_RULES
    + VOICE_RULES
    + BARE_COMMAND_RULES
)


# =============================================================================
# PATTERN MATCHER
# =============================================================================

class PatternMatcher:
    """First-match-wins rule engine over an ordered list of PatternRule."""

    def __init__(self, rules: Optional[List[PatternRule]] = None):
        self._rules: List[PatternRule] = list(rules if rules is not None else DEFAULT_RULES)

    @property
    def rules(self) -> List[PatternRule]:
        return list(self._rules)

    def add_rule(self, new_rule: PatternRule, before: Optional[str] = None) -> None:
        """Insert a rule ahead of the named rule, or at the end."""
        if before is None:
            self._rules.append(new_rule)
            return
        for idx, existing in enumerate(self._rules):
            if existing.name == before:
                self._rules.insert(idx, new_rule)
                return
        raise KeyError(f"No rule named {before!r}")

    def match_rule(self, text: str) -> Optional[RuleMatch]:
        """Run the rules without auto-context. Commands are sanitized."""
        if not text:
            return None
        stripped = text.strip()
        for current in self._rules:
            match = current.pattern.search(stripped)
            if match:
                command = sanitize_command(current.render(match))
                if not command:
                    continue
                return RuleMatch(rule_name=current.name, command=command)
        return None

    def match(self, text: str, context: Optional[RouteContext] = None) -> Optional[str]:
        """
        Resolve text to a canonical command, or None if no rule applies.

        Explicit targets from the message beat auto-context; auto-context
        only fills a command that has none.
        """
        result = self.match_rule(text)
        if result is None:
            return None
        command = apply_auto_context(result.command, context)
        logger.debug(f"Rule {result.rule_name}: {text!r} -> {command!r}")
        return command
