"""
Data models for Sigma Synth.

Input documents (log-source catalogue, ATT&CK graph, rule index) and the
generated Sigma rule documents are pydantic models; the detection
building blocks passed between engine stages are dataclasses.
"""

from sigma_synth.models.attack import (
    TECHNIQUE_ID_PATTERN,
    Actor,
    Tactic,
    Technique,
    TechniqueGraph,
    is_valid_technique_id,
)
from sigma_synth.models.detection import (
    ConditionOrigin,
    ConditionSet,
    DetectionCondition,
    split_expression,
)
from sigma_synth.models.logsource import LogSource, LogSourceCatalogue
from sigma_synth.models.report import GenerationReport
from sigma_synth.models.rules import ExternalRule, RuleIndex, RuleSource
from sigma_synth.models.sigma import SigmaRuleDocument

__all__ = [
    "TECHNIQUE_ID_PATTERN",
    "Actor",
    "ConditionOrigin",
    "ConditionSet",
    "DetectionCondition",
    "ExternalRule",
    "GenerationReport",
    "LogSource",
    "LogSourceCatalogue",
    "RuleIndex",
    "RuleSource",
    "SigmaRuleDocument",
    "Tactic",
    "Technique",
    "TechniqueGraph",
    "is_valid_technique_id",
    "split_expression",
]
