"""
Services for Sigma Synth.

- Rule generation pipeline
- External rule corpus builder and local SigmaHQ indexer
"""

from sigma_synth.services.corpus import (
    CorpusBuilder,
    build_index_document,
    index_local_sigma,
    save_index_document,
    scrape_toml,
    scrape_yaml,
)
from sigma_synth.services.generator import GenerationInputs, RuleGenerator

__all__ = [
    "CorpusBuilder",
    "GenerationInputs",
    "RuleGenerator",
    "build_index_document",
    "index_local_sigma",
    "save_index_document",
    "scrape_toml",
    "scrape_yaml",
]
