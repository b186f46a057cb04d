"""
External detection rules harvested from public rule corpora.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RuleSource(str, Enum):
    """Corpora the rule index is built from."""

    SIGMA = "sigma"
    ELASTIC = "elastic"
    SPLUNK = "splunk"

    @property
    def preference(self) -> int:
        """Lower is preferred when ranking candidates."""
        return _SOURCE_PREFERENCE[self]


_SOURCE_PREFERENCE = {
    RuleSource.SIGMA: 0,
    RuleSource.ELASTIC: 1,
    RuleSource.SPLUNK: 2,
}


class ExternalRule(BaseModel):
    """
    A rule from one of the external corpora.

    Product/service/category are hints scraped from the rule text and may
    be missing; ``unknown`` is treated the same as missing.
    """

    model_config = ConfigDict(frozen=True)

    source: RuleSource
    name: str = ""
    techniques: tuple[str, ...] = Field(default=())
    product: str | None = None
    service: str | None = None
    category: str | None = None
    query: str = ""
    url: str = ""
    path: str = ""

    @field_validator("product", "service", "category", mode="before")
    @classmethod
    def lowercase_hint(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = str(value).strip().lower()
        return value or None

    @field_validator("query", mode="before")
    @classmethod
    def none_query_is_empty(cls, value: str | None) -> str:
        return value or ""

    @property
    def has_known_product(self) -> bool:
        return self.product is not None and self.product != "unknown"

    def to_index_entry(self) -> dict:
        """Serialize for the rule index document, omitting empty hints."""
        return self.model_dump(mode="json", exclude_none=True, exclude={"techniques"})


RuleIndex = dict[str, list[ExternalRule]]
