"""
Rule synthesis: turn external evidence into detection conditions.

Precedence for one (technique, log source) pair:

1. External rules for the technique whose product (and category, when
   set) match the log source, ranked by service match, then source
   preference (sigma > elastic > splunk), then index order
2. The curated pattern for the pair
3. A field-mapping condition on the log source's indicator field
4. A placeholder that marks the rule for analyst population

The result is never empty.
"""

import logging
import re

from sigma_synth.attack.patterns import PATTERN_LIBRARY, DetectionPattern, TechniquePatterns
from sigma_synth.config import Settings
from sigma_synth.engine.extractor import FieldExtractor, build_extractor
from sigma_synth.logging_config import LogEventType, get_logger
from sigma_synth.models.attack import Technique
from sigma_synth.models.detection import (
    ConditionOrigin,
    ConditionSet,
    DetectionCondition,
    split_expression,
)
from sigma_synth.models.logsource import LogSource
from sigma_synth.models.rules import ExternalRule

logger = get_logger(__name__)

# Path prefixes too generic to be useful as indicators
NOISE_VALUE = re.compile(r"^(C:\\Windows|system32|\\system32)", re.IGNORECASE)

WILDCARD_MODIFIERS = ("contains", "startswith", "endswith")

# Abstract fields tried in order for the field-mapping fallback
INDICATOR_FIELDS = (
    "Image",
    "CommandLine",
    "ParentImage",
    "TargetFilename",
    "TargetObject",
    "DestinationHostname",
    "QueryName",
)

PRODUCT_INDICATORS: dict[str, list[str]] = {
    "windows": ["cmd.exe", "powershell.exe", "rundll32.exe"],
    "linux": ["/bin/bash", "/bin/sh", "/usr/bin/python"],
    "macos": ["/bin/bash", "/bin/sh", "/usr/bin/python"],
}

PLACEHOLDER_FIELD = "AnalystReviewRequired"
PLACEHOLDER_VALUE = "no detection logic available - requires analyst population"


def normalize_wildcards(condition: DetectionCondition) -> DetectionCondition:
    """
    Move leading/trailing ``*`` into Sigma modifiers.

    ``*a*`` becomes ``field|contains: a``, ``*a`` ``field|endswith`` and
    ``a*`` ``field|startswith``. Fields that already carry a wildcard
    modifier just lose the asterisks.
    """
    normalized = DetectionCondition()
    for expression, values in condition.items():
        name, modifiers = split_expression(expression)
        for value in values:
            if modifiers:
                if any(m in WILDCARD_MODIFIERS for m in modifiers):
                    value = value.strip("*")
                if value:
                    normalized.add(expression, value)
                continue

            core = value.strip("*")
            if not core:
                continue
            leading, trailing = value.startswith("*"), value.endswith("*")
            if leading and trailing:
                target = f"{name}|contains"
            elif leading:
                target = f"{name}|endswith"
            elif trailing:
                target = f"{name}|startswith"
            else:
                target = name
            normalized.add(target, core)
    return normalized.prune()


def drop_noise(condition: DetectionCondition) -> DetectionCondition:
    """Remove bare system-path values."""
    return DetectionCondition(
        {k: [v for v in values if not NOISE_VALUE.match(v)] for k, values in condition.items()}
    ).prune()


def annotate_contains(condition: DetectionCondition) -> DetectionCondition:
    """Give unmodified multi-valued fields a ``|contains`` modifier."""
    annotated = DetectionCondition()
    for expression, values in condition.items():
        _, modifiers = split_expression(expression)
        if not modifiers and len(values) > 1:
            expression = f"{expression}|contains"
        annotated.add(expression, values)
    return annotated


def cap_values(condition: DetectionCondition, limit: int) -> DetectionCondition:
    return DetectionCondition({k: v[:limit] for k, v in condition.items()}).prune()


def pattern_condition_set(pattern: DetectionPattern) -> ConditionSet:
    """Condition set for a curated pattern, block names and condition preserved."""
    selections = {
        block.name: normalize_wildcards(
            DetectionCondition({k: list(v) for k, v in block.conditions.items()})
        )
        for block in pattern.selections
    }
    return ConditionSet(
        selections=selections,
        condition=pattern.condition_expression(),
        origin=ConditionOrigin.CURATED,
        description=pattern.description,
    )


def placeholder_condition_set() -> ConditionSet:
    return ConditionSet.single(
        DetectionCondition({PLACEHOLDER_FIELD: [PLACEHOLDER_VALUE]}),
        ConditionOrigin.PLACEHOLDER,
    )


class RuleSynthesizer:
    """
    Combines external rules, curated patterns and field mappings into a
    non-empty condition set per (technique, log source).

    Results are cached per pair, so one synthesizer serves one run.
    """

    def __init__(
        self,
        extractor: FieldExtractor,
        max_candidates: int = 3,
        max_fields_per_rule: int = 2,
        max_values_per_field: int = 3,
        pattern_library: dict[str, TechniquePatterns] | None = None,
    ) -> None:
        self.extractor = extractor
        self.max_candidates = max_candidates
        self.max_fields_per_rule = max_fields_per_rule
        self.max_values_per_field = max_values_per_field
        self._library = PATTERN_LIBRARY if pattern_library is None else pattern_library
        self._cache: dict[tuple[str, tuple[str, str, str]], ConditionSet] = {}

    @classmethod
    def from_settings(cls, config: Settings) -> "RuleSynthesizer":
        return cls(
            extractor=build_extractor(config.extractor, config.max_query_length),
            max_candidates=config.max_candidates,
            max_fields_per_rule=config.max_fields_per_rule,
            max_values_per_field=config.max_values_per_field,
        )

    def synthesize(
        self,
        technique: Technique,
        log_source: LogSource,
        rules: list[ExternalRule],
    ) -> ConditionSet:
        """Return the condition set for the pair. Never empty."""
        cache_key = (technique.id, log_source.key)
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        result = (
            self._from_external(log_source, rules)
            or self._from_pattern(technique, log_source)
            or self._from_field_mapping(log_source)
            or placeholder_condition_set()
        )

        event = (
            LogEventType.SYNTHESIS_EXTERNAL
            if result.origin is ConditionOrigin.EXTERNAL
            else LogEventType.SYNTHESIS_FALLBACK
        )
        logger.event(
            event,
            f"{technique.id} on {log_source}: {result.origin.value} conditions",
            level=logging.DEBUG,
            technique_id=technique.id,
            logsource=str(log_source),
        )

        self._cache[cache_key] = result
        return result

    def candidates(self, log_source: LogSource, rules: list[ExternalRule]) -> list[ExternalRule]:
        """Filter and rank external rules for a log source, best first."""
        product = log_source.product.lower()
        service = log_source.service.lower()
        category = log_source.category.lower()

        eligible = [
            (position, rule)
            for position, rule in enumerate(rules)
            if rule.has_known_product
            and rule.product == product
            and (rule.category is None or rule.category == category)
        ]
        eligible.sort(
            key=lambda item: (
                0 if item[1].service == service else 1,
                item[1].source.preference,
                item[0],
            )
        )
        return [rule for _, rule in eligible[: self.max_candidates]]

    def _from_external(
        self, log_source: LogSource, rules: list[ExternalRule]
    ) -> ConditionSet | None:
        merged = DetectionCondition()
        evidence: list[str] = []

        for rule in self.candidates(log_source, rules):
            extracted = self.extractor.extract(rule)
            if extracted is None:
                continue
            limited = DetectionCondition(
                {k: v for k, v in list(extracted.items())[: self.max_fields_per_rule]}
            )
            cleaned = drop_noise(normalize_wildcards(limited))
            if not cleaned:
                continue
            for expression, values in cleaned.items():
                merged.add(expression, values)
            if rule.url and rule.url not in evidence:
                evidence.append(rule.url)

        selection = cap_values(annotate_contains(merged), self.max_values_per_field)
        if not selection:
            return None
        return ConditionSet.single(selection, ConditionOrigin.EXTERNAL, tuple(evidence))

    def _from_pattern(self, technique: Technique, log_source: LogSource) -> ConditionSet | None:
        entry = self._library.get(technique.id)
        if entry is None:
            return None
        pattern = entry.patterns.get(log_source.pattern_key)
        if pattern is None:
            return None
        result = pattern_condition_set(pattern)
        return None if result.is_empty else result

    def _from_field_mapping(self, log_source: LogSource) -> ConditionSet | None:
        mapped = log_source.mapped_fields()
        indicators = PRODUCT_INDICATORS.get(log_source.product.lower())
        if not mapped or not indicators:
            return None

        field_name = next(
            (mapped[name] for name in INDICATOR_FIELDS if mapped.get(name)),
            next(iter(mapped.values())),
        )
        selection = DetectionCondition({f"{field_name}|contains": list(indicators)})
        return ConditionSet.single(selection, ConditionOrigin.FIELD_MAPPING)
