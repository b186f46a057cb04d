"""
ATT&CK technique/actor graph loading.

Feeds understood:
- MITRE CTI STIX bundle (``enterprise-attack.json``): attack patterns,
  intrusion sets and ``uses`` relationships between them
- Flat actor TTP index: ``{"actors": [{"name": ..., "techniques": [...]}]}``
- Flat technique index: ``{"techniques": {"T1059": "Command and ..."}}``

Each feed is best-effort. A feed that cannot be fetched or parsed yields
an empty graph and a warning; the graphs are combined with
``merge_graphs``, which never mutates its inputs.
"""

import asyncio
import logging
import re
from typing import Any

import httpx

from sigma_synth.config import Settings
from sigma_synth.exceptions import SourceUnavailableError
from sigma_synth.logging_config import LogEventType, get_logger
from sigma_synth.models.attack import Actor, Technique, TechniqueGraph
from sigma_synth.sources.fetch import fetch_document

logger = get_logger(__name__)

# Loose shape accepted from flat actor indexes
ACTOR_TECHNIQUE_PATTERN = re.compile(r"^T\d+(\.\d+)?$")

_ATTACK_SOURCE_NAMES = ("mitre-attack", "mitre-attack-legacy")


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _items(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _dicts(value: Any) -> list[dict[str, Any]]:
    return [item for item in _items(value) if isinstance(item, dict)]


def _external_id(obj: dict[str, Any]) -> str | None:
    for ref in _dicts(obj.get("external_references")):
        if ref.get("source_name") in _ATTACK_SOURCE_NAMES:
            ext_id = _text(ref.get("external_id"))
            if ext_id and ext_id.upper().startswith("T"):
                return ext_id.upper()
    return None


def _is_active(obj: dict[str, Any]) -> bool:
    return not obj.get("revoked", False) and not obj.get("x_mitre_deprecated", False)


def parse_stix_bundle(bundle: dict[str, Any]) -> TechniqueGraph:
    """Build a graph from a STIX 2.x ATT&CK bundle. Objects of the wrong shape are skipped."""
    objects = _dicts(bundle.get("objects"))

    techniques: dict[str, Technique] = {}
    pattern_ids: dict[str, str] = {}  # STIX id -> technique id
    group_names: dict[str, str] = {}  # STIX id -> intrusion set name

    for obj in objects:
        obj_type = obj.get("type")
        stix_id = _text(obj.get("id"))
        if not stix_id:
            continue
        if obj_type == "attack-pattern" and _is_active(obj):
            technique_id = _external_id(obj)
            if technique_id is None:
                continue
            tactics = tuple(
                _text(phase.get("phase_name"))
                for phase in _dicts(obj.get("kill_chain_phases"))
                if phase.get("kill_chain_name") == "mitre-attack" and _text(phase.get("phase_name"))
            )
            techniques[technique_id] = Technique(
                id=technique_id,
                name=_text(obj.get("name")),
                description=_text(obj.get("description")),
                tactics=tactics,
            )
            pattern_ids[stix_id] = technique_id
        elif obj_type == "intrusion-set" and _is_active(obj) and _text(obj.get("name")):
            group_names[stix_id] = obj["name"]

    actors: dict[str, list[str]] = {}
    for obj in objects:
        if obj.get("type") != "relationship" or obj.get("relationship_type") != "uses":
            continue
        if not _is_active(obj):
            continue
        group = group_names.get(_text(obj.get("source_ref")))
        technique_id = pattern_ids.get(_text(obj.get("target_ref")))
        if group is None or technique_id is None:
            continue
        names = actors.setdefault(technique_id, [])
        if group not in names:
            names.append(group)

    return TechniqueGraph(
        techniques=techniques,
        actors={tid: tuple(names) for tid, names in actors.items()},
    )


def parse_actor_index(document: dict[str, Any]) -> TechniqueGraph:
    """
    Build a graph from a flat actor TTP index.

    Entries that are not ``{"name": str, ...}`` mappings are skipped, as
    are technique IDs that do not look like ``T<digits>[.<digits>]``.
    """
    actors = []
    for entry in _dicts(document.get("actors")):
        name = _text(entry.get("name")).strip()
        if not name:
            continue
        techniques = frozenset(
            str(t).upper()
            for t in _items(entry.get("techniques"))
            if ACTOR_TECHNIQUE_PATTERN.match(str(t).upper())
        )
        actors.append(Actor(name=name, techniques=techniques))
    return TechniqueGraph.from_actors(actors)


def parse_technique_index(document: dict[str, Any]) -> TechniqueGraph:
    """Build a names-only graph from ``{"techniques": {id: name}}``."""
    techniques = {
        tid: Technique(id=tid, name=_text(name))
        for tid, name in document.get("techniques", {}).items()
        if isinstance(tid, str)
    }
    return TechniqueGraph(techniques=techniques)


def parse_graph_document(document: Any) -> TechniqueGraph:
    """Dispatch on document shape."""
    if not isinstance(document, dict):
        return TechniqueGraph()
    if document.get("type") == "bundle" or "objects" in document:
        return parse_stix_bundle(document)

    graph = TechniqueGraph()
    if isinstance(document.get("techniques"), dict):
        graph = merge_graphs(graph, parse_technique_index(document))
    if isinstance(document.get("actors"), list):
        graph = merge_graphs(graph, parse_actor_index(document))
    return graph


def _merge_technique(a: Technique, b: Technique) -> Technique:
    return Technique(
        id=a.id,
        name=a.name or b.name,
        description=a.description or b.description,
        tactics=tuple(dict.fromkeys(a.tactics + b.tactics)),
        actors=tuple(dict.fromkeys(a.actors + b.actors)),
    )


def merge_graphs(a: TechniqueGraph, b: TechniqueGraph) -> TechniqueGraph:
    """
    Combine two graphs into a new one.

    Technique attributes from ``a`` win where both are set; actor names
    are unioned with exact, case-sensitive de-duplication, ``a`` first.
    """
    techniques = dict(a.techniques)
    for tid, technique in b.techniques.items():
        techniques[tid] = _merge_technique(techniques[tid], technique) if tid in techniques else technique

    actors = dict(a.actors)
    for tid, names in b.actors.items():
        actors[tid] = tuple(dict.fromkeys(actors.get(tid, ()) + names))

    return TechniqueGraph(techniques=techniques, actors=actors)


async def _load_feed(
    client: httpx.AsyncClient, location: str, config: Settings
) -> TechniqueGraph:
    try:
        document = await fetch_document(
            client, location, retries=config.fetch_retries, backoff=config.retry_backoff
        )
        try:
            graph = parse_graph_document(document)
        except (ValueError, TypeError) as e:
            raise SourceUnavailableError(location, f"malformed technique feed: {e}") from e
    except SourceUnavailableError as e:
        logger.source_event(
            LogEventType.SOURCE_DEGRADED,
            location,
            f"Technique feed unavailable, continuing without it: {e}",
            level=logging.WARNING,
        )
        return TechniqueGraph()

    logger.source_event(
        LogEventType.SOURCE_LOAD,
        location,
        f"Loaded {len(graph.techniques)} techniques, "
        f"{len(graph.actors)} actor-attributed techniques from {location}",
    )
    return graph


async def load_technique_graph(
    client: httpx.AsyncClient,
    config: Settings,
) -> TechniqueGraph:
    """Fetch every configured feed concurrently and merge the results in order."""
    locations = [loc for loc in (config.attack_bundle, config.actor_index) if loc]
    graphs = await asyncio.gather(*(_load_feed(client, loc, config) for loc in locations))

    merged = TechniqueGraph()
    for graph in graphs:
        merged = merge_graphs(merged, graph)
    return merged
