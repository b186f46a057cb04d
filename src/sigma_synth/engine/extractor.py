"""
Field extraction: recover field -> values conditions from external rule text.

Strategies:
- ``StructuredQueryExtractor`` - line scanner for Sigma/Splunk YAML
  detection blocks
- ``FreeTextQueryExtractor`` - regex passes over Elastic EQL/KQL queries
- ``YamlDetectionExtractor`` - PyYAML walk of a detection block, falling
  back to the line scanner on invalid YAML
- ``SourceAwareExtractor`` - picks one of the above by rule source

Every strategy returns ``None`` when nothing usable is recovered.
"""

import logging
import re
import textwrap
from typing import Any

import yaml

from sigma_synth.models.detection import DetectionCondition
from sigma_synth.models.rules import ExternalRule, RuleSource

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUERY_LENGTH = 2000

# field[|modifier...]: value
FIELD_LINE = re.compile(r"^(?P<field>[A-Za-z_][\w.\-]*(?:\|\w+)*)\s*:(?:\s+(?P<value>.*))?$")

# Keys that structure a detection block rather than name a field
STRUCTURAL_KEYS = ("condition", "timeframe", "detection", "keywords")
BLOCK_PREFIXES = ("selection", "filter")

# field : "value"  /  field == "value"
STRICT_SCALAR = re.compile(
    r'(?P<field>[A-Za-z_@][\w.@]*)\s*(?:==|:)\s*"(?P<value>(?:[^"\\]|\\.)*)"'
)
# field : ("a", "b")  /  field in ("a", "b")
STRICT_TUPLE = re.compile(
    r"(?P<field>[A-Za-z_@][\w.@]*)\s*(?::|\bin\b)\s*\((?P<values>[^()]*)\)"
)
QUOTED = re.compile(r'"((?:[^"\\]|\\.)*)"')
# field : *value*
LOOSE_WILDCARD = re.compile(r"(?P<field>[A-Za-z_@][\w.@]*)\s*:\s*(?P<value>\*[^\s\"()*]+\*)")


def unquote(value: str) -> str:
    """Strip one pair of surrounding quotes."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        inner = value[1:-1]
        return inner.replace("''", "'") if value[0] == "'" else inner
    return value


def _is_structural(field_expression: str) -> bool:
    base = field_expression.split("|", 1)[0].lower()
    return base in STRUCTURAL_KEYS or base.startswith(BLOCK_PREFIXES)


def _is_exclusion(field_expression: str) -> bool:
    """``filter*`` blocks hold benign exclusions, never detection values."""
    return field_expression.split("|", 1)[0].lower().startswith("filter")


def _unescape(value: str) -> str:
    return value.replace('\\"', '"').replace("\\\\", "\\")


class FieldExtractor:
    """Base class for extraction strategies."""

    name = "base"

    def __init__(self, max_query_length: int = DEFAULT_MAX_QUERY_LENGTH) -> None:
        self.max_query_length = max_query_length

    def extract(self, rule: ExternalRule) -> DetectionCondition | None:
        """Extract conditions from a rule's query text (truncated to the length bound)."""
        if not rule.query:
            return None
        return self.extract_text(rule.query[: self.max_query_length])

    def extract_text(self, text: str) -> DetectionCondition | None:
        raise NotImplementedError


class StructuredQueryExtractor(FieldExtractor):
    """
    Line scanner for YAML-style detection blocks.

    ``field[|modifier]: value`` opens a field, also as a ``- field: value``
    list item; other ``- value`` items append to the most recently opened
    field. Block headers (``selection*``) and ``condition``/``timeframe``
    lines are not fields, and everything indented under a ``filter*``
    header is skipped.
    """

    name = "structured"

    def extract_text(self, text: str) -> DetectionCondition | None:
        conditions = DetectionCondition()
        current: str | None = None
        filter_indent: int | None = None

        for raw_line in text.splitlines():
            line = raw_line.strip()
            if not line or line.startswith("#"):
                continue

            indent = len(raw_line) - len(raw_line.lstrip())
            if filter_indent is not None:
                if indent > filter_indent or (indent == filter_indent and line.startswith("-")):
                    continue
                filter_indent = None

            if line.startswith("-"):
                item = line[1:].strip()
                # "- Field: value" inside a list of maps
                match = FIELD_LINE.match(item)
                if match:
                    current = self._open_field(conditions, match)
                elif current is not None and item:
                    conditions.add(current, unquote(item))
                continue

            match = FIELD_LINE.match(line)
            if match and _is_exclusion(match.group("field")):
                filter_indent = indent
                current = None
            elif match:
                current = self._open_field(conditions, match)

        result = conditions.prune()
        return result or None

    def _open_field(self, conditions: DetectionCondition, match: re.Match[str]) -> str | None:
        field_expression = match.group("field")
        if _is_structural(field_expression):
            return None

        conditions.fields.setdefault(field_expression, [])
        value = (match.group("value") or "").strip()
        if value.startswith("[") and value.endswith("]"):
            items = [unquote(v) for v in value[1:-1].split(",")]
            conditions.add(field_expression, [v for v in items if v])
        elif value and value not in ("|", ">"):
            conditions.add(field_expression, unquote(value))
        return field_expression


class FreeTextQueryExtractor(FieldExtractor):
    """
    Regex passes over EQL/KQL query text.

    The strict pass takes quoted scalars and tuples; the loose pass then
    adds ``field : *value*`` wildcards for fields the strict pass did not
    populate.
    """

    name = "free_text"

    def extract_text(self, text: str) -> DetectionCondition | None:
        conditions = DetectionCondition()

        matches: list[tuple[int, str, list[str]]] = []
        for match in STRICT_SCALAR.finditer(text):
            matches.append((match.start(), match.group("field"), [_unescape(match.group("value"))]))
        for match in STRICT_TUPLE.finditer(text):
            values = [_unescape(v) for v in QUOTED.findall(match.group("values"))]
            if values:
                matches.append((match.start(), match.group("field"), values))

        for _, field_name, values in sorted(matches, key=lambda m: m[0]):
            conditions.add(field_name, [v for v in values if v])

        strict_fields = set(conditions.fields)
        for match in LOOSE_WILDCARD.finditer(text):
            field_name = match.group("field")
            if field_name in strict_fields:
                continue
            conditions.add(field_name, match.group("value"))

        result = conditions.prune()
        return result or None


class YamlDetectionExtractor(FieldExtractor):
    """Parse the detection block with PyYAML; line-scan it when that fails."""

    name = "yaml"

    def __init__(self, max_query_length: int = DEFAULT_MAX_QUERY_LENGTH) -> None:
        super().__init__(max_query_length)
        self._fallback = StructuredQueryExtractor(max_query_length)

    def extract_text(self, text: str) -> DetectionCondition | None:
        try:
            document = yaml.safe_load(textwrap.dedent(text))
        except yaml.YAMLError:
            logger.debug("Detection block is not valid YAML, using line scanner")
            return self._fallback.extract_text(text)

        if not isinstance(document, dict):
            return self._fallback.extract_text(text)

        conditions = DetectionCondition()
        self._walk(document, conditions)
        result = conditions.prune()
        return result or None

    def _walk(self, node: Any, conditions: DetectionCondition) -> None:
        if isinstance(node, list):
            for item in node:
                if isinstance(item, dict):
                    self._walk(item, conditions)
            return
        if not isinstance(node, dict):
            return

        for key, value in node.items():
            key = str(key)
            if _is_exclusion(key):
                continue
            if _is_structural(key):
                if isinstance(value, (dict, list)) and key.split("|", 1)[0].lower() not in STRUCTURAL_KEYS:
                    self._walk(value, conditions)
                continue
            if isinstance(value, dict):
                self._walk(value, conditions)
            elif isinstance(value, list):
                conditions.add(key, [str(v) for v in value if v is not None and not isinstance(v, (dict, list))])
            elif value is not None:
                conditions.add(key, str(value))


class SourceAwareExtractor(FieldExtractor):
    """Dispatch by rule source: Elastic to free text, Sigma/Splunk to YAML scanners."""

    name = "source_aware"

    def __init__(
        self,
        max_query_length: int = DEFAULT_MAX_QUERY_LENGTH,
        use_yaml_parser: bool = False,
    ) -> None:
        super().__init__(max_query_length)
        self._free_text = FreeTextQueryExtractor(max_query_length)
        self._structured: FieldExtractor = (
            YamlDetectionExtractor(max_query_length)
            if use_yaml_parser
            else StructuredQueryExtractor(max_query_length)
        )

    def strategy_for(self, source: RuleSource) -> FieldExtractor:
        if source is RuleSource.ELASTIC:
            return self._free_text
        return self._structured

    def extract(self, rule: ExternalRule) -> DetectionCondition | None:
        return self.strategy_for(rule.source).extract(rule)

    def extract_text(self, text: str) -> DetectionCondition | None:
        return self._structured.extract_text(text)


def build_extractor(mode: str, max_query_length: int = DEFAULT_MAX_QUERY_LENGTH) -> FieldExtractor:
    """Create the source-aware extractor for the ``regex`` or ``yaml`` mode."""
    if mode not in ("regex", "yaml"):
        raise ValueError(f"Unknown extractor mode: {mode}. Available: regex, yaml")
    return SourceAwareExtractor(max_query_length, use_yaml_parser=mode == "yaml")
