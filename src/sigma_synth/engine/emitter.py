"""
Sigma document emission, rendering and artifact writing.

- ``DocumentEmitter`` builds ``SigmaRuleDocument`` objects and their
  output paths (``product/service[/actor]/<technique>.yml``)
- ``RuleRenderer`` renders documents through the Jinja2 rule template
- ``ArtifactWriter`` writes rendered rules under the output root
"""

import datetime
import logging
import re
import textwrap
import uuid
from pathlib import Path, PurePosixPath
from typing import Any, Literal

import yaml
from jinja2 import Environment, FileSystemLoader

from sigma_synth.config import Settings
from sigma_synth.exceptions import InvalidTechniqueError
from sigma_synth.models.attack import Tactic, Technique, is_valid_technique_id
from sigma_synth.models.detection import ConditionSet
from sigma_synth.models.logsource import LogSource
from sigma_synth.models.sigma import SigmaRuleDocument

logger = logging.getLogger(__name__)

# uuid5 namespace for deterministic identifiers
RULE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_DNS, "sigma-synth.rules")

DEFAULT_FALSEPOSITIVES = [
    "Legitimate system administration activity",
    "Authorized security testing",
]

IdentifierMode = Literal["random", "deterministic"]


def rule_identifier(
    technique_id: str,
    title: str,
    source: str,
    mode: IdentifierMode = "random",
) -> str:
    """
    Rule ID: a random UUIDv4, or in deterministic mode a UUIDv5 over
    ``technique_id|title|source`` so unchanged inputs keep their ID.
    """
    if mode == "deterministic":
        return str(uuid.uuid5(RULE_NAMESPACE, f"{technique_id}|{title}|{source}"))
    return str(uuid.uuid4())


def validate_technique_id(technique_id: str) -> None:
    """Raise ``InvalidTechniqueError`` unless the ID looks like T1234 or T1234.001."""
    if not is_valid_technique_id(technique_id):
        raise InvalidTechniqueError(technique_id)


def sanitize_actor(actor: str) -> str:
    """Lowercase, whitespace runs to ``_``, anything outside ``[a-z0-9_.-]`` dropped."""
    name = re.sub(r"\s+", "_", actor.strip().lower())
    name = re.sub(r"[^a-z0-9_.\-]", "", name)
    return name or "unknown_actor"


def output_path(
    technique_id: str,
    log_source: LogSource,
    actor: str | None = None,
) -> PurePosixPath:
    """Relative artifact path ``product/service[/actor]/<techniqueid>.yml``."""
    validate_technique_id(technique_id)
    parts = [log_source.product.lower(), log_source.service.lower()]
    if actor:
        parts.append(sanitize_actor(actor))
    parts.append(f"{technique_id.lower()}.yml")
    return PurePosixPath(*parts)


class DocumentEmitter:
    """Builds Sigma rule documents from synthesized conditions."""

    def __init__(
        self,
        author: str = "Sigma Synth Generator",
        identifier_mode: IdentifierMode = "random",
    ) -> None:
        self.author = author
        self.identifier_mode = identifier_mode

    @classmethod
    def from_settings(cls, config: Settings) -> "DocumentEmitter":
        return cls(author=config.author, identifier_mode=config.identifier_mode)

    def title(self, technique_name: str, log_source: LogSource, actor: str | None = None) -> str:
        if actor:
            return f"{technique_name} - {actor} ({log_source.service})"
        return f"{technique_name} ({log_source.product.upper()} - {log_source.service})"

    def emit(
        self,
        technique: Technique,
        technique_name: str,
        log_source: LogSource,
        conditions: ConditionSet,
        actor: str | None = None,
    ) -> SigmaRuleDocument:
        """
        Build the document for one (technique, log source, actor).

        Raises:
            InvalidTechniqueError: The technique ID is malformed.
        """
        validate_technique_id(technique.id)

        name = technique_name or technique.display_name
        title = self.title(name, log_source, actor)
        today = datetime.date.today()

        return SigmaRuleDocument(
            title=title,
            id=rule_identifier(technique.id, title, str(log_source), self.identifier_mode),
            status="unsupported" if conditions.is_placeholder else "experimental",
            description=self._description(technique, name, log_source, conditions, actor),
            references=list(dict.fromkeys([technique.reference_url, *conditions.evidence])),
            author=self.author,
            date=today,
            modified=today,
            tags=self._tags(technique, actor),
            logsource={
                "product": log_source.product,
                "service": log_source.service,
                "category": log_source.category,
            },
            detection=conditions.to_detection(),
            falsepositives=list(DEFAULT_FALSEPOSITIVES),
            level="low" if conditions.is_placeholder else "medium",
        )

    def _description(
        self,
        technique: Technique,
        name: str,
        log_source: LogSource,
        conditions: ConditionSet,
        actor: str | None,
    ) -> str:
        lines = [
            conditions.description
            or f"Detects activity consistent with MITRE ATT&CK technique {technique.id} ({name}) "
            f"in {log_source.product} {log_source.service} {log_source.category} events."
        ]
        if actor:
            lines.append(f"Threat actor: {actor}.")
        if conditions.is_placeholder:
            lines.append(
                "No detection logic was available for this log source; "
                "the selection must be populated by an analyst."
            )
        return " ".join(lines)

    def _tags(self, technique: Technique, actor: str | None) -> list[str]:
        known = {tactic.value for tactic in Tactic}
        tags = [Tactic(phase).sigma_tag for phase in technique.tactics if phase in known]
        tags.append(f"attack.{technique.id.lower()}")
        if actor:
            tags.append(f"actor.{sanitize_actor(actor)}")
        return list(dict.fromkeys(tags))


class _IndentedListDumper(yaml.SafeDumper):
    """Indent sequences under their parent key, as Sigma rules are written."""

    def increase_indent(self, flow: bool = False, indentless: bool = False) -> Any:
        return super().increase_indent(flow, False)


def to_yaml(value: Any, indent: int = 0) -> str:
    """Jinja2 filter: dump a value as YAML, optionally indented as a block."""
    text = yaml.dump(
        value,
        Dumper=_IndentedListDumper,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
        indent=4,
        width=4096,
    )
    if text.endswith("...\n"):
        text = text[: -len("...\n")]
    text = text.rstrip("\n")
    if indent:
        text = textwrap.indent(text, " " * indent)
    return text


class RuleRenderer:
    """Renders Sigma documents with the package's Jinja2 template."""

    TEMPLATE_NAME = "sigma_rule.yml.j2"

    def __init__(self, template_dir: Path | None = None) -> None:
        self._template_env = Environment(
            loader=FileSystemLoader(
                template_dir or Path(__file__).parent.parent / "templates"
            ),
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._template_env.filters["to_yaml"] = to_yaml

    def render(self, document: SigmaRuleDocument) -> str:
        template = self._template_env.get_template(self.TEMPLATE_NAME)
        return template.render(rule=document.to_dict())


class ArtifactWriter:
    """Writes rule files below an output root, replacing existing files."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def write(self, relative_path: PurePosixPath | str, text: str) -> Path:
        """
        Write one artifact.

        Parent directories are created as needed; an existing file is
        overwritten, never merged.

        Raises:
            OSError: The file could not be written.
        """
        target = self.root / Path(relative_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(text, encoding="utf-8")
        logger.debug(f"Wrote {target}")
        return target
