"""
ATT&CK models: techniques, threat actors and the technique graph.

The graph is assembled by the source loaders from one or more feeds
(the MITRE STIX bundle, flat actor TTP indexes) and is read-only for the
rest of a run.
"""

import re
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from sigma_synth.config import SourceDefaults

TECHNIQUE_ID_PATTERN = re.compile(r"^T\d{4}(\.\d{3})?$")


def is_valid_technique_id(technique_id: str) -> bool:
    """Return True for IDs shaped like T1234 or T1234.001."""
    return bool(TECHNIQUE_ID_PATTERN.match(technique_id))


class Tactic(str, Enum):
    """MITRE ATT&CK Tactics (STIX kill chain phase names)."""

    RECONNAISSANCE = "reconnaissance"
    RESOURCE_DEVELOPMENT = "resource-development"
    INITIAL_ACCESS = "initial-access"
    EXECUTION = "execution"
    PERSISTENCE = "persistence"
    PRIVILEGE_ESCALATION = "privilege-escalation"
    DEFENSE_EVASION = "defense-evasion"
    CREDENTIAL_ACCESS = "credential-access"
    DISCOVERY = "discovery"
    LATERAL_MOVEMENT = "lateral-movement"
    COLLECTION = "collection"
    COMMAND_AND_CONTROL = "command-and-control"
    EXFILTRATION = "exfiltration"
    IMPACT = "impact"

    @property
    def sigma_tag(self) -> str:
        """Sigma tag form, e.g. ``attack.initial_access``."""
        return f"attack.{self.value.replace('-', '_')}"


class Technique(BaseModel):
    """
    An ATT&CK technique as seen by the generator.

    The ID is not validated here: malformed IDs from upstream feeds are
    carried through and rejected by the emitter, which counts them.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(description="Technique ID, e.g. T1059.001")
    name: str = Field(default="", description="Display name")
    description: str = Field(default="")
    tactics: tuple[str, ...] = Field(
        default=(), description="Tactic short names (kill chain phase names)"
    )
    actors: tuple[str, ...] = Field(default=(), description="Associated actor names")

    @property
    def is_valid(self) -> bool:
        return is_valid_technique_id(self.id)

    @property
    def display_name(self) -> str:
        return self.name or self.id

    @property
    def reference_url(self) -> str:
        """ATT&CK page for the technique (sub-techniques use a path segment)."""
        return SourceDefaults.ATTACK_TECHNIQUE_URL.format(path=self.id.replace(".", "/"))


class Actor(BaseModel):
    """A threat actor or intrusion set. Used as a label only."""

    model_config = ConfigDict(frozen=True)

    name: str
    techniques: frozenset[str] = Field(default_factory=frozenset)


class TechniqueGraph(BaseModel):
    """
    Techniques by ID plus actor names by technique ID.

    Build new graphs with ``sigma_synth.sources.merge_graphs`` rather than
    mutating an existing one.
    """

    model_config = ConfigDict(frozen=True)

    techniques: dict[str, Technique] = Field(default_factory=dict)
    actors: dict[str, tuple[str, ...]] = Field(default_factory=dict)

    @classmethod
    def from_actors(cls, actors: list[Actor]) -> "TechniqueGraph":
        """Build a graph holding only actor associations."""
        by_technique: dict[str, list[str]] = {}
        for actor in actors:
            for technique_id in sorted(actor.techniques):
                names = by_technique.setdefault(technique_id, [])
                if actor.name not in names:
                    names.append(actor.name)
        return cls(actors={tid: tuple(names) for tid, names in by_technique.items()})

    def actors_for(self, technique_id: str) -> tuple[str, ...]:
        return self.actors.get(technique_id, ())

    def resolve(self, technique_id: str) -> Technique:
        """Return the technique with its actor list filled in."""
        technique = self.techniques.get(technique_id) or Technique(id=technique_id)
        return technique.model_copy(update={"actors": self.actors_for(technique_id)})

    def technique_ids(self) -> set[str]:
        return set(self.techniques) | set(self.actors)

    @property
    def is_empty(self) -> bool:
        return not self.techniques and not self.actors
