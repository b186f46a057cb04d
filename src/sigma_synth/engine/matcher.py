"""
Relevance matching: is a technique plausibly observable through a log source?

Strategies:
- ``CategoryPatternMatcher`` - static table of technique ID patterns per
  log-source category; categories missing from the table fail open
- ``CuratedPatternMatcher`` - only pairs with a curated pattern
- ``PermissiveMatcher`` - every pair
"""

import re

from sigma_synth.attack.patterns import PATTERN_LIBRARY, TechniquePatterns
from sigma_synth.models.attack import Technique
from sigma_synth.models.logsource import LogSource


def technique_family(*technique_ids: str) -> list[re.Pattern[str]]:
    """Patterns matching each technique and its sub-techniques."""
    patterns = []
    for technique_id in technique_ids:
        if "." in technique_id:
            patterns.append(re.compile(rf"^{re.escape(technique_id)}$"))
        else:
            patterns.append(re.compile(rf"^{technique_id}(\.\d{{3}})?$"))
    return patterns


# =============================================================================
# Category Relevance Table
# =============================================================================

CATEGORY_TECHNIQUE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    # Execution, persistence, injection, evasion and discovery families
    "process_creation": technique_family(
        "T1003", "T1021", "T1027", "T1036", "T1047", "T1053", "T1055",
        "T1057", "T1059", "T1070", "T1082", "T1087", "T1105", "T1112",
        "T1134", "T1190", "T1204", "T1218", "T1486", "T1490", "T1543",
        "T1547", "T1548", "T1562", "T1569",
    ),
    "ps_script": technique_family("T1027", "T1059.001", "T1140", "T1562"),
    "process_access": technique_family("T1003", "T1055"),
    "image_load": technique_family("T1055", "T1218", "T1574"),
    "registry_event": technique_family("T1112", "T1546", "T1547", "T1562"),
    "registry_set": technique_family("T1112", "T1546", "T1547", "T1562"),
    "file_event": technique_family(
        "T1036", "T1070", "T1105", "T1204", "T1486", "T1547", "T1566",
    ),
    # Credential access and valid accounts
    "authentication": technique_family(
        "T1021", "T1078", "T1098", "T1110", "T1133", "T1550", "T1556", "T1558",
    ),
    # C2, exfiltration and lateral movement
    "network_connection": technique_family(
        "T1021", "T1041", "T1048", "T1071", "T1090", "T1095", "T1105",
        "T1219", "T1571", "T1572", "T1573",
    ),
    "dns_query": technique_family("T1048", "T1071.004", "T1568"),
    "firewall": technique_family("T1046", "T1071", "T1090", "T1095", "T1571"),
    "webserver": technique_family("T1190", "T1505"),
}


class RelevanceMatcher:
    """Base class for relevance strategies."""

    name = "base"

    def is_relevant(self, technique: Technique, log_source: LogSource) -> bool:
        raise NotImplementedError


class CategoryPatternMatcher(RelevanceMatcher):
    """
    Static classification by log-source category.

    A technique is relevant when its ID matches any pattern registered for
    the category. Unknown categories are relevant to every technique.
    """

    name = "category"

    def __init__(self, table: dict[str, list[re.Pattern[str]]] | None = None) -> None:
        self._table = CATEGORY_TECHNIQUE_PATTERNS if table is None else table

    def is_relevant(self, technique: Technique, log_source: LogSource) -> bool:
        patterns = self._table.get(log_source.category)
        if patterns is None:
            return True
        return any(p.match(technique.id) for p in patterns)


class CuratedPatternMatcher(RelevanceMatcher):
    """Relevant only where the curated library has a pattern for the pair."""

    name = "curated"

    def __init__(self, library: dict[str, TechniquePatterns] | None = None) -> None:
        self._library = PATTERN_LIBRARY if library is None else library

    def is_relevant(self, technique: Technique, log_source: LogSource) -> bool:
        entry = self._library.get(technique.id)
        return entry is not None and log_source.pattern_key in entry.patterns


class PermissiveMatcher(RelevanceMatcher):
    """Every technique is relevant to every log source."""

    name = "all"

    def is_relevant(self, technique: Technique, log_source: LogSource) -> bool:
        return True


MATCHERS: dict[str, type[RelevanceMatcher]] = {
    CategoryPatternMatcher.name: CategoryPatternMatcher,
    CuratedPatternMatcher.name: CuratedPatternMatcher,
    PermissiveMatcher.name: PermissiveMatcher,
}


def build_matcher(name: str) -> RelevanceMatcher:
    """Create the matcher registered under ``name``."""
    try:
        return MATCHERS[name]()
    except KeyError:
        raise ValueError(f"Unknown matcher: {name}. Available: {', '.join(MATCHERS)}") from None
