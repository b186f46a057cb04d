"""
Detection conditions and condition sets.

A ``DetectionCondition`` is one Sigma selection block: an ordered mapping
of field expressions (``Image``, ``Image|endswith``, ...) to literal
values. A ``ConditionSet`` is what the synthesizer hands to the emitter:
named selection blocks plus the boolean condition expression.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum


def split_expression(expression: str) -> tuple[str, list[str]]:
    """Split ``Field|mod1|mod2`` into the field name and its modifiers."""
    name, *modifiers = expression.split("|")
    return name, modifiers


@dataclass
class DetectionCondition:
    """
    Field expression -> values, in insertion order.

    ``Image|contains`` and ``Image|endswith`` are distinct keys.
    """

    fields: dict[str, list[str]] = field(default_factory=dict)

    def add(self, expression: str, values: list[str] | str) -> None:
        """Append values to a field, opening it if needed. Duplicates are ignored."""
        if isinstance(values, str):
            values = [values]
        bucket = self.fields.setdefault(expression, [])
        for value in values:
            if value not in bucket:
                bucket.append(value)

    def prune(self) -> "DetectionCondition":
        """Copy without fields that ended up with no values."""
        return DetectionCondition({k: list(v) for k, v in self.fields.items() if v})

    def field_names(self) -> list[str]:
        """Base field names (modifiers stripped), first occurrence order."""
        names: list[str] = []
        for expression in self.fields:
            name, _ = split_expression(expression)
            if name not in names:
                names.append(name)
        return names

    def items(self) -> Iterator[tuple[str, list[str]]]:
        return iter(self.fields.items())

    def to_dict(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.fields.items()}

    def __len__(self) -> int:
        return len(self.fields)

    def __bool__(self) -> bool:
        return any(self.fields.values())

    def __contains__(self, expression: str) -> bool:
        return expression in self.fields


class ConditionOrigin(str, Enum):
    """Which synthesis stage produced a condition set."""

    EXTERNAL = "external"
    CURATED = "curated"
    FIELD_MAPPING = "field_mapping"
    PLACEHOLDER = "placeholder"


@dataclass(frozen=True)
class ConditionSet:
    """Named selection blocks, the condition expression and provenance."""

    selections: dict[str, DetectionCondition]
    condition: str
    origin: ConditionOrigin
    evidence: tuple[str, ...] = ()
    description: str | None = None

    @classmethod
    def single(
        cls,
        selection: DetectionCondition,
        origin: ConditionOrigin,
        evidence: tuple[str, ...] = (),
    ) -> "ConditionSet":
        return cls({"selection": selection}, "selection", origin, evidence)

    @property
    def is_empty(self) -> bool:
        return not any(self.selections.values())

    @property
    def is_placeholder(self) -> bool:
        return self.origin is ConditionOrigin.PLACEHOLDER

    def to_detection(self) -> dict:
        """Sigma ``detection`` mapping: selection blocks followed by ``condition``."""
        detection: dict = {name: block.to_dict() for name, block in self.selections.items()}
        detection["condition"] = self.condition
        return detection
