"""
Curated ATT&CK detection knowledge.
"""

from sigma_synth.attack.patterns import (
    PATTERN_LIBRARY,
    DetectionPattern,
    SelectionBlock,
    TechniquePatterns,
    get_pattern,
    get_technique_patterns,
    get_techniques_for_log_source,
)

__all__ = [
    "PATTERN_LIBRARY",
    "DetectionPattern",
    "SelectionBlock",
    "TechniquePatterns",
    "get_pattern",
    "get_technique_patterns",
    "get_techniques_for_log_source",
]
