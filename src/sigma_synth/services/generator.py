"""
Rule generation pipeline.

Loads the three inputs, then for every technique and log source:
matcher -> synthesizer -> emitter -> renderer -> writer.

The catalogue is mandatory (``CatalogueError`` aborts before any write);
the technique graph and rule index degrade to empty. Malformed technique
IDs and failed writes are counted in the ``GenerationReport`` and the
batch continues.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field

import httpx

from sigma_synth.attack.patterns import PATTERN_LIBRARY
from sigma_synth.config import Settings, settings
from sigma_synth.engine.emitter import (
    ArtifactWriter,
    DocumentEmitter,
    RuleRenderer,
    output_path,
    sanitize_actor,
    validate_technique_id,
)
from sigma_synth.engine.matcher import RelevanceMatcher, build_matcher
from sigma_synth.engine.synthesizer import RuleSynthesizer
from sigma_synth.exceptions import CatalogueError, InvalidTechniqueError
from sigma_synth.logging_config import LogEventType, get_logger, set_run_id
from sigma_synth.models.attack import Technique, TechniqueGraph
from sigma_synth.models.logsource import LogSource
from sigma_synth.models.report import GenerationReport
from sigma_synth.models.rules import RuleIndex
from sigma_synth.sources.fetch import build_client
from sigma_synth.sources.logsources import load_log_sources
from sigma_synth.sources.rule_index import load_external_rules
from sigma_synth.sources.technique_graph import load_technique_graph

logger = get_logger(__name__)


@dataclass
class GenerationInputs:
    """Everything one run generates from."""

    log_sources: list[LogSource]
    graph: TechniqueGraph = field(default_factory=TechniqueGraph)
    rules: RuleIndex = field(default_factory=dict)


class RuleGenerator:
    """
    The generation pipeline for one configuration.

    Collaborators default to the ones the settings select; tests inject
    their own.
    """

    def __init__(
        self,
        config: Settings | None = None,
        matcher: RelevanceMatcher | None = None,
        synthesizer: RuleSynthesizer | None = None,
        emitter: DocumentEmitter | None = None,
        renderer: RuleRenderer | None = None,
        writer: ArtifactWriter | None = None,
    ) -> None:
        self.config = config or settings
        self.matcher = matcher or build_matcher(self.config.matcher)
        self.synthesizer = synthesizer or RuleSynthesizer.from_settings(self.config)
        self.emitter = emitter or DocumentEmitter.from_settings(self.config)
        self.renderer = renderer or RuleRenderer()
        self.writer = writer or ArtifactWriter(self.config.output_dir)

    async def load_inputs(self, client: httpx.AsyncClient | None = None) -> GenerationInputs:
        """
        Load catalogue, technique graph and rule index.

        Raises:
            CatalogueError: The catalogue is missing or unparsable.
        """
        log_sources = load_log_sources(self.config.logsources_path)

        if client is None:
            async with build_client(self.config) as own_client:
                graph, rules = await self._load_optional(own_client)
        else:
            graph, rules = await self._load_optional(client)

        return GenerationInputs(log_sources=log_sources, graph=graph, rules=rules)

    async def _load_optional(self, client: httpx.AsyncClient) -> tuple[TechniqueGraph, RuleIndex]:
        graph, rules = await asyncio.gather(
            load_technique_graph(client, self.config),
            load_external_rules(client, self.config),
        )
        return graph, rules

    def technique_ids(self, inputs: GenerationInputs) -> list[str]:
        """Techniques to generate for: graph, rule index and curated library, optionally filtered."""
        universe = inputs.graph.technique_ids() | set(inputs.rules) | set(PATTERN_LIBRARY)
        if self.config.technique_filter:
            wanted = {tid.strip().upper() for tid in self.config.technique_filter}
            universe = {tid for tid in universe if tid.upper() in wanted} | (wanted - universe)
        return sorted(universe)

    def scopes_for(self, technique: Technique) -> list[str | None]:
        """
        Actor scopes to emit a technique under (``None`` is unscoped).

        Actors that share an output directory (``FIN7``/``fin7``) collapse
        to the first name listed.
        """
        if not self.config.actor_scoped:
            return [None]
        if technique.actors:
            by_directory: dict[str, str] = {}
            for actor in technique.actors:
                by_directory.setdefault(sanitize_actor(actor), actor)
            return list(by_directory.values())
        return [None] if self.config.include_unattributed else []

    def technique_name(self, technique: Technique) -> str:
        if technique.name:
            return technique.name
        curated = PATTERN_LIBRARY.get(technique.id)
        return curated.name if curated else technique.id

    def generate(self, inputs: GenerationInputs) -> GenerationReport:
        """Run the synchronous synthesis/emission stage over loaded inputs."""
        report = GenerationReport()
        if inputs.graph.is_empty:
            report.degraded_sources.append("technique_graph")
        if not inputs.rules:
            report.degraded_sources.append("rules_index")

        for technique_id in self.technique_ids(inputs):
            technique = inputs.graph.resolve(technique_id)
            try:
                validate_technique_id(technique.id)
            except InvalidTechniqueError as e:
                report.record_invalid(technique.id)
                logger.event(
                    LogEventType.TECHNIQUE_SKIPPED,
                    str(e),
                    level=logging.WARNING,
                    technique_id=technique.id,
                )
                continue
            self._generate_technique(technique, inputs, report)

        return report

    def _generate_technique(
        self,
        technique: Technique,
        inputs: GenerationInputs,
        report: GenerationReport,
    ) -> None:
        scopes = self.scopes_for(technique)
        if not scopes:
            return

        name = self.technique_name(technique)
        rules = inputs.rules.get(technique.id, [])

        for log_source in inputs.log_sources:
            if not self.matcher.is_relevant(technique, log_source):
                report.irrelevant_pairs += 1
                continue

            conditions = self.synthesizer.synthesize(technique, log_source, rules)
            for actor in scopes:
                document = self.emitter.emit(technique, name, log_source, conditions, actor)
                path = output_path(technique.id, log_source, actor)
                try:
                    self.writer.write(path, self.renderer.render(document))
                except OSError as e:
                    report.write_failures += 1
                    logger.artifact_event(
                        LogEventType.ARTIFACT_WRITE_FAILED,
                        str(path),
                        f"Failed to write {path}: {e}",
                        level=logging.ERROR,
                        technique_id=technique.id,
                    )
                    continue
                report.record_written(str(path), conditions.origin)
                logger.artifact_event(
                    LogEventType.ARTIFACT_WRITE,
                    str(path),
                    level=logging.DEBUG,
                    technique_id=technique.id,
                    actor=actor,
                )

    async def run(self, client: httpx.AsyncClient | None = None) -> GenerationReport:
        """Load inputs and generate. ``CatalogueError`` propagates."""
        set_run_id(str(uuid.uuid4()))
        started = time.monotonic()
        logger.event(
            LogEventType.RUN_START,
            f"Generating rules into {self.config.output_dir} "
            f"(matcher={self.config.matcher}, extractor={self.config.extractor})",
        )

        try:
            inputs = await self.load_inputs(client)
        except CatalogueError as e:
            logger.event(LogEventType.RUN_ABORT, f"Aborting run: {e}", level=logging.ERROR)
            raise

        self.config.ensure_output_dir()
        report = self.generate(inputs)

        logger.event(
            LogEventType.RUN_END,
            f"Generated {report.generated} rules, skipped {len(report.skipped_invalid)} "
            f"invalid techniques, {report.write_failures} write failures",
            duration_ms=(time.monotonic() - started) * 1000,
        )
        return report
