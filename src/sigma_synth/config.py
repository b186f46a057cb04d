"""
Configuration management for Sigma Synth.

All settings can be supplied through environment variables prefixed with
``SIGMA_SYNTH_`` or a local ``.env`` file.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class SourceDefaults:
    """
    Default locations of the upstream data sources.

    The ATT&CK bundle is the official MITRE CTI STIX export; the rule
    corpora are the public detection repositories the corpus builder walks.
    """

    ATTACK_BUNDLE_URL = (
        "https://raw.githubusercontent.com/mitre/cti/master/"
        "enterprise-attack/enterprise-attack.json"
    )

    ATTACK_TECHNIQUE_URL = "https://attack.mitre.org/techniques/{path}/"

    # (owner, repo, branch, path prefix, file suffix)
    CORPUS_REPOSITORIES = {
        "elastic": ("elastic", "detection-rules", "main", "rules/", ".toml"),
        "sigma": ("SigmaHQ", "sigma", "master", "rules/", ".yml"),
        "splunk": ("splunk", "security_content", "develop", "detections/", ".yml"),
    }

    USER_AGENT = "sigma-synth/0.1"


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    model_config = SettingsConfigDict(
        env_prefix="SIGMA_SYNTH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Inputs
    logsources_path: Path = Field(
        default=Path("logsources.json"),
        description="Log-source catalogue (JSON or YAML with a 'logsources' list)",
    )
    rules_index: str | None = Field(
        default="external-rules-index.json",
        description="External rule index document (path or URL)",
    )
    attack_bundle: str | None = Field(
        default=SourceDefaults.ATTACK_BUNDLE_URL,
        description="MITRE ATT&CK STIX bundle (path or URL)",
    )
    actor_index: str | None = Field(
        default=None,
        description="Flat threat-actor TTP index (path or URL)",
    )

    # Output
    output_dir: Path = Field(
        default=Path("sigma-rules"),
        description="Root directory for generated rules",
    )

    # Network
    fetch_timeout: float = Field(
        default=30.0, gt=0, description="Timeout in seconds for each fetch"
    )
    fetch_retries: int = Field(
        default=0, ge=0, le=5, description="Retries for transient fetch errors"
    )
    retry_backoff: float = Field(
        default=1.0, ge=0, description="Base backoff in seconds between retries"
    )
    github_token: SecretStr | None = Field(
        default=None,
        description="Token for api.github.com requests (raises the rate limit)",
    )
    corpus_concurrency: int = Field(
        default=8, ge=1, le=64, description="Concurrent rule downloads"
    )

    # Strategies
    matcher: Literal["category", "curated", "all"] = Field(
        default="category",
        description="Relevance strategy for technique/log-source pairs",
    )
    extractor: Literal["regex", "yaml"] = Field(
        default="regex",
        description="Parser for YAML detection blocks",
    )
    identifier_mode: Literal["random", "deterministic"] = Field(
        default="random",
        description="uuid4 identifiers or uuid5 hashes of the rule inputs",
    )

    # Synthesis bounds
    max_candidates: int = Field(default=3, ge=1, le=10)
    max_fields_per_rule: int = Field(default=2, ge=1, le=20)
    max_values_per_field: int = Field(default=3, ge=1, le=20)
    max_query_length: int = Field(default=2000, ge=100)

    # Emission
    author: str = Field(default="Sigma Synth Generator")
    actor_scoped: bool = Field(
        default=True, description="Write one rule per attributed actor"
    )
    include_unattributed: bool = Field(
        default=True,
        description="Write unscoped rules for techniques without actors",
    )
    technique_filter: list[str] = Field(
        default_factory=list,
        description="Restrict generation to these technique IDs",
    )

    def ensure_output_dir(self) -> Path:
        """Ensure the output directory exists and return it."""
        self.output_dir.mkdir(parents=True, exist_ok=True)
        return self.output_dir


# Global settings instance
settings = Settings()
