"""
Rule synthesis engine: relevance matching, field extraction, synthesis and emission.
"""

from sigma_synth.engine.emitter import (
    ArtifactWriter,
    DocumentEmitter,
    RuleRenderer,
    output_path,
    rule_identifier,
    sanitize_actor,
    validate_technique_id,
)
from sigma_synth.engine.extractor import (
    FieldExtractor,
    FreeTextQueryExtractor,
    SourceAwareExtractor,
    StructuredQueryExtractor,
    YamlDetectionExtractor,
    build_extractor,
)
from sigma_synth.engine.matcher import (
    CategoryPatternMatcher,
    CuratedPatternMatcher,
    PermissiveMatcher,
    RelevanceMatcher,
    build_matcher,
)
from sigma_synth.engine.synthesizer import RuleSynthesizer

__all__ = [
    "ArtifactWriter",
    "CategoryPatternMatcher",
    "CuratedPatternMatcher",
    "DocumentEmitter",
    "FieldExtractor",
    "FreeTextQueryExtractor",
    "PermissiveMatcher",
    "RelevanceMatcher",
    "RuleRenderer",
    "RuleSynthesizer",
    "SourceAwareExtractor",
    "StructuredQueryExtractor",
    "YamlDetectionExtractor",
    "build_extractor",
    "build_matcher",
    "output_path",
    "rule_identifier",
    "sanitize_actor",
    "validate_technique_id",
]
