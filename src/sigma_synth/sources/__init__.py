"""
Source loaders: log-source catalogue, ATT&CK graph, external rule index.
"""

from sigma_synth.sources.fetch import build_client, fetch_document, fetch_text
from sigma_synth.sources.logsources import load_catalogue, load_log_sources
from sigma_synth.sources.rule_index import (
    load_external_rules,
    merge_rule_indexes,
    parse_rule_index,
)
from sigma_synth.sources.technique_graph import (
    load_technique_graph,
    merge_graphs,
    parse_actor_index,
    parse_graph_document,
    parse_stix_bundle,
    parse_technique_index,
)

__all__ = [
    "build_client",
    "fetch_document",
    "fetch_text",
    "load_catalogue",
    "load_external_rules",
    "load_log_sources",
    "load_technique_graph",
    "merge_graphs",
    "merge_rule_indexes",
    "parse_actor_index",
    "parse_graph_document",
    "parse_rule_index",
    "parse_stix_bundle",
    "parse_technique_index",
]
