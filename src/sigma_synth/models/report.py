"""
Generation run report.
"""

from pydantic import BaseModel, Field

from sigma_synth.models.detection import ConditionOrigin


class GenerationReport(BaseModel):
    """Counters and written paths for one generation run."""

    generated: int = 0
    skipped_invalid: list[str] = Field(
        default_factory=list, description="Technique IDs rejected by the emitter"
    )
    irrelevant_pairs: int = Field(
        default=0, description="Technique/log-source pairs rejected by the matcher"
    )
    write_failures: int = 0
    origins: dict[str, int] = Field(
        default_factory=lambda: {origin.value: 0 for origin in ConditionOrigin}
    )
    paths: list[str] = Field(default_factory=list)
    degraded_sources: list[str] = Field(
        default_factory=list, description="Optional inputs that loaded empty"
    )

    def record_written(self, path: str, origin: ConditionOrigin) -> None:
        self.generated += 1
        self.origins[origin.value] = self.origins.get(origin.value, 0) + 1
        self.paths.append(path)

    def record_invalid(self, technique_id: str) -> None:
        if technique_id not in self.skipped_invalid:
            self.skipped_invalid.append(technique_id)

    @property
    def ok(self) -> bool:
        return self.write_failures == 0
