"""
Sigma rule document model.

Field order follows the Sigma rule convention so rendered files read
title, id, status, ... detection, falsepositives, level.
"""

import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

RuleStatus = Literal["stable", "test", "experimental", "deprecated", "unsupported"]
RuleLevel = Literal["informational", "low", "medium", "high", "critical"]


class SigmaRuleDocument(BaseModel):
    """A generated Sigma rule. Never mutated after emission."""

    model_config = ConfigDict(frozen=True)

    title: str
    id: str
    status: RuleStatus = "experimental"
    description: str = ""
    references: list[str] = Field(default_factory=list)
    author: str = ""
    date: datetime.date
    modified: datetime.date
    tags: list[str] = Field(default_factory=list)
    logsource: dict[str, str]
    detection: dict[str, Any]
    falsepositives: list[str] = Field(default_factory=lambda: ["Unknown"])
    level: RuleLevel = "medium"

    def to_dict(self) -> dict[str, Any]:
        """Plain mapping in rule field order, dates as ISO strings."""
        data = self.model_dump(mode="json")
        if not data["references"]:
            del data["references"]
        return data
