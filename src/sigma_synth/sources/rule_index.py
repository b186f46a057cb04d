"""
External rule index loading.

The index document is what the corpus builder writes::

    {"_meta": {...}, "rules": {"T1059.001": [{"source": "sigma", ...}]}}

A bare ``{technique: [rules]}`` mapping is accepted too. Entries that
do not validate are skipped individually.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from sigma_synth.config import Settings
from sigma_synth.exceptions import SourceUnavailableError
from sigma_synth.logging_config import LogEventType, get_logger
from sigma_synth.models.rules import ExternalRule, RuleIndex
from sigma_synth.sources.fetch import fetch_document

logger = get_logger(__name__)


def parse_rule_index(document: Any) -> RuleIndex:
    """Turn an index document into technique -> ordered rule list."""
    if not isinstance(document, dict):
        return {}
    rules_by_technique = document.get("rules", document)
    if not isinstance(rules_by_technique, dict):
        return {}

    index: RuleIndex = {}
    skipped = 0
    for technique_id, entries in rules_by_technique.items():
        if not isinstance(technique_id, str) or technique_id.startswith("_"):
            continue
        if not isinstance(entries, list):
            continue
        rules = []
        for entry in entries:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            data = {"techniques": (technique_id,), **entry}
            try:
                rules.append(ExternalRule.model_validate(data))
            except ValidationError:
                skipped += 1
        if rules:
            index[technique_id] = rules

    if skipped:
        logger.warning(f"Skipped {skipped} malformed rule index entries")
    return index


def merge_rule_indexes(a: RuleIndex, b: RuleIndex) -> RuleIndex:
    """Concatenate per-technique lists (``a`` first) into a new index sorted by technique."""
    merged: dict[str, list[ExternalRule]] = {tid: list(rules) for tid, rules in a.items()}
    for tid, rules in b.items():
        merged.setdefault(tid, []).extend(rules)
    return {tid: merged[tid] for tid in sorted(merged)}


async def load_external_rules(
    client: httpx.AsyncClient,
    config: Settings,
) -> RuleIndex:
    """Load the configured rule index; empty when absent or unreadable."""
    location = config.rules_index
    if not location:
        return {}

    try:
        document = await fetch_document(
            client, location, retries=config.fetch_retries, backoff=config.retry_backoff
        )
    except SourceUnavailableError as e:
        logger.source_event(
            LogEventType.SOURCE_DEGRADED,
            location,
            f"Rule index unavailable, continuing without external rules: {e}",
            level=logging.WARNING,
        )
        return {}

    try:
        index = parse_rule_index(document)
    except (ValueError, TypeError) as e:
        logger.source_event(
            LogEventType.SOURCE_DEGRADED,
            location,
            f"Rule index is malformed, continuing without external rules: {e}",
            level=logging.WARNING,
        )
        return {}

    total = sum(len(rules) for rules in index.values())
    logger.source_event(
        LogEventType.SOURCE_LOAD,
        location,
        f"Loaded {total} external rules for {len(index)} techniques",
    )
    return index
