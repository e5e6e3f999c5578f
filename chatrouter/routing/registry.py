# FILE: chatrouter/routing/registry.py
"""
Known projects, companies and classifier intents.

This is the closed world the router reasons about: entity detection in the
conversation thread, pronoun targets in the multi-intent parser, and the
classifier's keyword/context factors all read from here.
"""
from __future__ import annotations
import re
from typing import Dict, List, Optional, Tuple
from .schemas import ProjectDefinition, CompanyDefinition, IntentDefinition


# =============================================================================
# PROJECTS
# =============================================================================

PROJECTS: Dict[str, ProjectDefinition] = {p.name: p for p in [
    ProjectDefinition(
        name="JUDO",
        keywords=["judo", "dojo", "martial arts"],
        capabilities=["web", "tests", "deploy"],
        priority=1,
        description="Martial arts club platform",
    ),
    ProjectDefinition(
        name="LusoTown",
        keywords=["lusotown", "luso town", "portuguese community"],
        capabilities=["web", "tests", "deploy"],
        priority=2,
        description="Portuguese-speaking community site",
    ),
    ProjectDefinition(
        name="armora",
        keywords=["armora", "close protection"],
        type="mobile-app",
        capabilities=["mobile", "tests"],
        priority=3,
        description="Security transport booking app",
    ),
    ProjectDefinition(
        name="gqcars-manager",
        keywords=["fleet manager", "cars manager", "fleet"],
        capabilities=["web", "deploy"],
        priority=4,
        description="Fleet management dashboard",
    ),
    ProjectDefinition(
        name="gq-cars-driver-app",
        keywords=["driver app", "drivers app"],
        type="mobile-app",
        capabilities=["mobile"],
        priority=5,
        description="Driver-facing mobile app",
    ),
    ProjectDefinition(
        name="giquina-accountancy-direct-filing",
        aliases=["giquina-accountancy"],
        keywords=["accountancy", "direct filing", "tax filing", "receipt", "bookkeeping"],
        type="service",
        capabilities=["accounting", "receipts", "tax-filing"],
        priority=6,
        description="Companies House / HMRC direct filing",
    ),
    ProjectDefinition(
        name="aws-clawd-bot",
        aliases=["clawd-bot"],
        keywords=["the bot", "chat bot", "telegram bot"],
        type="service",
        capabilities=["bot", "deploy"],
        priority=7,
        description="This chat bot",
    ),
    ProjectDefinition(
        name="giquina-website",
        keywords=["company website", "giquina site"],
        capabilities=["web", "deploy"],
        priority=8,
        description="Group marketing website",
    ),
    ProjectDefinition(
        name="gq-cars",
        keywords=["gq cars site", "taxi site"],
        capabilities=["web"],
        priority=9,
        description="GQ Cars public website",
    ),
    ProjectDefinition(
        name="giquina-portal",
        keywords=["client portal", "portal"],
        capabilities=["web"],
        priority=10,
        description="Client portal",
    ),
    ProjectDefinition(
        name="moltbook",
        keywords=["moltbook"],
        capabilities=["web"],
        priority=11,
        description="Notebook app",
    ),
]}


# =============================================================================
# COMPANIES
# =============================================================================

COMPANIES: Dict[str, CompanyDefinition] = {c.code: c for c in [
    CompanyDefinition(code="GMH", name="Giquina Management Holdings", keywords=["gmh", "holdings"]),
    CompanyDefinition(code="GACC", name="Giquina Accountants", keywords=["gacc", "accountants"]),
    CompanyDefinition(code="GCAP", name="Giquina Capital", keywords=["gcap", "capital"]),
    CompanyDefinition(code="GQCARS", name="GQ Cars", keywords=["gqcars", "gq cars"]),
    CompanyDefinition(code="GSPV", name="Giquina SPV", keywords=["gspv", "spv"]),
]}


# =============================================================================
# INTENTS
# =============================================================================

INTENT_DEFINITIONS: Dict[str, IntentDefinition] = {i.intent: i for i in [
    IntentDefinition(
        intent="deploy",
        patterns=["deploy", "ship", "release", "push live", "go live", "publish"],
        command="deploy",
        scope="repo",
        required_capability="deploy",
        description="Deploy a project",
    ),
    IntentDefinition(
        intent="run-tests",
        patterns=["run tests", "run the tests", "test suite", "tests", "unit tests"],
        command="run tests",
        scope="repo",
        required_capability="tests",
        description="Run a project's test suite",
    ),
    IntentDefinition(
        intent="check-status",
        patterns=["status", "progress", "what's left", "how is", "check on", "todo"],
        command="project status",
        scope="repo",
        description="Summarize outstanding work on a project",
    ),
    IntentDefinition(
        intent="view-logs",
        patterns=["logs", "log output", "error log", "stack trace"],
        command="logs",
        scope="repo",
        description="Tail a project's logs",
    ),
    IntentDefinition(
        intent="restart",
        patterns=["restart", "reboot", "bounce", "kick the server"],
        command="restart",
        scope="repo",
        description="Restart a project's service",
    ),
    IntentDefinition(
        intent="build",
        patterns=["build", "rebuild", "compile"],
        command="build",
        scope="repo",
        description="Build a project",
    ),
    IntentDefinition(
        intent="install",
        patterns=["install", "dependencies", "npm install"],
        command="install",
        scope="repo",
        description="Install a project's dependencies",
    ),
    IntentDefinition(
        intent="view-readme",
        patterns=["readme", "overview of", "what is it about"],
        command="readme",
        scope="repo",
        description="Show a project's README",
    ),
    IntentDefinition(
        intent="list-repos",
        patterns=["repos", "repositories", "my projects"],
        command="list repos",
        description="List repositories",
    ),
    IntentDefinition(
        intent="check-deadlines",
        patterns=["deadline", "due date", "filing due", "what's due", "overdue"],
        command="deadlines",
        scope="company",
        description="Upcoming statutory deadlines",
    ),
    IntentDefinition(
        intent="view-expenses",
        patterns=["expenses", "spending", "receipts", "outgoings"],
        command="expenses",
        scope="company",
        description="Recorded expenses",
    ),
    IntentDefinition(
        intent="file-taxes",
        patterns=["file taxes", "tax return", "submit filing", "vat return", "file accounts"],
        command="file-taxes",
        scope="company",
        required_capability="tax-filing",
        routable=False,
        description="Submit a filing (always confirmed by a human)",
    ),
    IntentDefinition(
        intent="process-receipt",
        patterns=["receipt", "invoice", "bill"],
        command="process-receipt",
        scope="company",
        required_capability="receipts",
        routable=False,
        description="Record a receipt against a company",
    ),
    IntentDefinition(
        intent="code-task",
        patterns=["refactor", "bug", "implement", "feature", "new page"],
        command="code-task",
        scope="repo",
        project_types=["web-app"],
        routable=False,
        description="Development work for the coding agent",
    ),
]}


# =============================================================================
# ENTITY LOOKUP
# =============================================================================

def _build_name_map() -> Dict[str, str]:
    names: Dict[str, str] = {}
    for project in PROJECTS.values():
        names[project.name.lower()] = project.name
        for alias in project.aliases:
            names[alias.lower()] = project.name
    return names


# lowercase spelling -> canonical name
KNOWN_REPOS: Dict[str, str] = _build_name_map()
KNOWN_COMPANIES: Dict[str, str] = {code.lower(): code for code in COMPANIES}

# Canonical names, repos first, for multi-intent pronoun targets
KNOWN_ENTITIES: List[str] = list(PROJECTS) + list(COMPANIES)


def _name_pattern(name: str) -> re.Pattern:
    # Hyphens count as part of a name: "gq-cars" must not match inside "gq-cars-driver-app"
    return re.compile(rf"(?<![\w-]){re.escape(name)}(?![\w-])", re.IGNORECASE)


# Longest spellings first
_REPO_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (_name_pattern(spelling), canonical)
    for spelling, canonical in sorted(KNOWN_REPOS.items(), key=lambda kv: -len(kv[0]))
]
_COMPANY_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (_name_pattern(spelling), canonical) for spelling, canonical in KNOWN_COMPANIES.items()
]


def _find_in_order(text: str, patterns: List[Tuple[re.Pattern, str]]) -> List[str]:
    hits: List[Tuple[int, str]] = []
    seen = set()
    for pattern, canonical in patterns:
        match = pattern.search(text)
        if match and canonical not in seen:
            seen.add(canonical)
            hits.append((match.start(), canonical))
    return [name for _, name in sorted(hits)]


def find_repos(text: str) -> List[str]:
    """Canonical names of known repos mentioned in text, in order of appearance."""
    if not text:
        return []
    return _find_in_order(text, _REPO_PATTERNS)


def find_companies(text: str) -> List[str]:
    """Company codes mentioned in text as whole words, in order of appearance."""
    if not text:
        return []
    return _find_in_order(text, _COMPANY_PATTERNS)


def canonical_repo(name: str) -> Optional[str]:
    return KNOWN_REPOS.get(name.lower()) if name else None


def canonical_company(code: str) -> Optional[str]:
    return KNOWN_COMPANIES.get(code.lower()) if code else None


def is_known_entity(name: str) -> bool:
    return canonical_repo(name) is not None or canonical_company(name) is not None


def get_project(name: str) -> Optional[ProjectDefinition]:
    canonical = canonical_repo(name)
    return PROJECTS.get(canonical) if canonical else None


def get_intent_definition(intent: str) -> Optional[IntentDefinition]:
    return INTENT_DEFINITIONS.get(intent)


def find_project_by_capability(capability: str) -> Optional[str]:
    for name, project in PROJECTS.items():
        if capability in project.capabilities:
            return name
    return None


def find_project_by_type(project_type: str) -> Optional[str]:
    candidates = [
        p for p in PROJECTS.values()
        if p.type == project_type or project_type == "all"
    ]
    candidates.sort(key=lambda p: p.priority)
    return candidates[0].name if candidates else None
