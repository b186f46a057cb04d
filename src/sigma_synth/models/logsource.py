"""
Log-source catalogue models.

A log source is a (product, service, category) detection surface. The
triple is the catalogue key and also drives output directory placement.
"""

import logging

from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class LogSource(BaseModel):
    """One entry of the log-source catalogue."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    product: str
    service: str
    category: str
    name: str = Field(default="", description="Human-readable name")
    description: str = Field(default="")

    # category -> {abstract field name -> concrete field name}
    field_mappings: dict[str, dict[str, str]] = Field(
        default_factory=dict,
        alias="fieldMappings",
    )

    @property
    def key(self) -> tuple[str, str, str]:
        return (self.product, self.service, self.category)

    @property
    def pattern_key(self) -> str:
        """``product|service|category`` form used by the curated pattern library."""
        return "|".join(self.key)

    def mapped_fields(self) -> dict[str, str]:
        """Field mappings for this source's own category."""
        return self.field_mappings.get(self.category, {})

    def __str__(self) -> str:
        return "/".join(self.key)


class LogSourceCatalogue(BaseModel):
    """The catalogue document: ``{generated?, version?, logsources: [...]}``."""

    generated: str | None = None
    version: str | None = None
    logsources: list[LogSource] = Field(default_factory=list)

    @field_validator("logsources")
    @classmethod
    def drop_duplicate_keys(cls, entries: list[LogSource]) -> list[LogSource]:
        """Keep the first entry for each (product, service, category) key."""
        seen: set[tuple[str, str, str]] = set()
        unique = []
        for entry in entries:
            if entry.key in seen:
                logger.warning(f"Duplicate log source {entry} dropped; keeping the first entry")
                continue
            seen.add(entry.key)
            unique.append(entry)
        return unique
