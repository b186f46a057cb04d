"""
External rule corpus builder and local SigmaHQ indexer.

The builder walks the public detection repositories through the GitHub
tree API, downloads each rule file from raw.githubusercontent.com and
parses technique IDs, query text, name and log-source hints out of it:

- elastic/detection-rules (``rules/**/*.toml``)
- SigmaHQ/sigma (``rules/**/*.yml``)
- splunk/security_content (``detections/**/*.yml``)

Files are parsed with ``toml``/PyYAML; only files the parser rejects are
scraped with the regexes below. The local indexer does the same for a
SigmaHQ checkout on disk. Both produce the index document
``sigma_synth.sources.rule_index`` loads.
"""

import asyncio
import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Any

import httpx
import toml
import yaml

from sigma_synth.config import Settings, SourceDefaults, settings
from sigma_synth.exceptions import SourceUnavailableError
from sigma_synth.logging_config import LogEventType, get_logger
from sigma_synth.models.rules import ExternalRule, RuleIndex, RuleSource
from sigma_synth.sources.fetch import build_client, fetch_text
from sigma_synth.sources.rule_index import merge_rule_indexes

logger = get_logger(__name__)

GITHUB_TREE_URL = "https://api.github.com/repos/{owner}/{repo}/git/trees/{branch}?recursive=1"
RAW_URL = "https://raw.githubusercontent.com/{owner}/{repo}/{branch}/{path}"
BLOB_URL = "https://github.com/{owner}/{repo}/blob/{branch}/{path}"

TECHNIQUE_ID = re.compile(r"^T\d{4}(?:\.\d{3})?$")

# Elastic TOML fallback
TOML_TECHNIQUE = re.compile(
    r'\[\[rule\.threat\.technique\]\][^\[]*?id\s*=\s*"(T\d+(?:\.\d+)?)"', re.DOTALL
)
TOML_SUBTECHNIQUE = re.compile(
    r'\[\[rule\.threat\.technique\.subtechnique\]\][^\[]*?id\s*=\s*"(T\d+\.\d+)"', re.DOTALL
)
TOML_QUERY = re.compile(r"query\s*=\s*'''(.*?)'''", re.DOTALL)
TOML_NAME = re.compile(r'^name\s*=\s*"([^"]+)"', re.MULTILINE)
TOML_INDEX = re.compile(r"index\s*=\s*\[(.*?)\]", re.DOTALL)

# Sigma / Splunk YAML fallback
YAML_ATTACK_TAG = re.compile(r"attack\.t(\d+(?:\.\d+)?)", re.IGNORECASE)
YAML_TECHNIQUE_ITEM = re.compile(r"^\s*-\s*(T\d{4}(?:\.\d{3})?)\s*$", re.MULTILINE)
YAML_DETECTION = re.compile(r"detection:\s*\n((?:[ \t]+[^\n]*\n?)*)")
YAML_TITLE = re.compile(r"^title:\s*(.+)$", re.MULTILINE | re.IGNORECASE)
YAML_PRODUCT = re.compile(r"^[ \t]+product:\s*(\w+)", re.MULTILINE | re.IGNORECASE)
YAML_SERVICE = re.compile(r"^[ \t]+service:\s*(\w+)", re.MULTILINE | re.IGNORECASE)
YAML_CATEGORY = re.compile(r"^[ \t]+category:\s*(\w+)", re.MULTILINE | re.IGNORECASE)

# Elastic index pattern substrings -> product
INDEX_PRODUCTS = (
    (("windows", "winlog"), "windows"),
    (("linux", "auditbeat"), "linux"),
    (("macos",), "macos"),
    (("cloud", "azure", "gcp", "aws"), "cloud"),
)


@dataclass
class ScrapedRule:
    """What the parsers recover from one rule file."""

    techniques: list[str]
    name: str
    path: str
    query: str | None = None
    product: str = "unknown"
    service: str | None = None
    category: str | None = None

    def to_rules(self, source: RuleSource, url: str) -> RuleIndex:
        """One ``ExternalRule`` per technique the file references."""
        index: RuleIndex = {}
        for technique_id in self.techniques:
            index[technique_id] = [
                ExternalRule(
                    source=source,
                    name=self.name,
                    techniques=(technique_id,),
                    product=self.product,
                    service=self.service,
                    category=self.category,
                    query=self.query or "",
                    url=url,
                    path=self.path,
                )
            ]
        return index


def _unique(items: list[str]) -> list[str]:
    return list(dict.fromkeys(items))


def _dicts(value: Any) -> list[dict[str, Any]]:
    return [item for item in value if isinstance(item, dict)] if isinstance(value, list) else []


def _hint(value: Any) -> str | None:
    return value.lower() if isinstance(value, str) and value else None


def _product_from_indices(indices: str) -> str:
    indices = indices.lower()
    for needles, candidate in INDEX_PRODUCTS:
        if any(needle in indices for needle in needles):
            return candidate
    return "unknown"


# =============================================================================
# Elastic detection-rules TOML
# =============================================================================


def elastic_rule_from_document(document: dict[str, Any], path: str) -> ScrapedRule:
    """Read ``rule.threat[].technique[].subtechnique[]``, name, query and index."""
    rule = document.get("rule")
    if not isinstance(rule, dict):
        rule = {}

    techniques = []
    for threat in _dicts(rule.get("threat")):
        for technique in _dicts(threat.get("technique")):
            techniques.append(technique.get("id"))
            techniques.extend(sub.get("id") for sub in _dicts(technique.get("subtechnique")))

    indices = rule.get("index")
    query = rule.get("query")
    name = rule.get("name")

    return ScrapedRule(
        techniques=_unique(
            [t.upper() for t in techniques if isinstance(t, str) and TECHNIQUE_ID.match(t.upper())]
        ),
        name=name if isinstance(name, str) and name else PurePosixPath(path).name,
        path=path,
        query=query.strip() if isinstance(query, str) and query.strip() else None,
        product=_product_from_indices(" ".join(str(i) for i in indices))
        if isinstance(indices, list)
        else "unknown",
    )


def scrape_toml(content: str, path: str) -> ScrapedRule:
    """Regex scrape of an Elastic TOML file the parser rejected."""
    techniques = [m.group(1) for m in TOML_TECHNIQUE.finditer(content)]
    techniques += [m.group(1) for m in TOML_SUBTECHNIQUE.finditer(content)]

    query_match = TOML_QUERY.search(content)
    name_match = TOML_NAME.search(content)
    index_match = TOML_INDEX.search(content)

    return ScrapedRule(
        techniques=_unique(techniques),
        name=name_match.group(1) if name_match else PurePosixPath(path).name,
        path=path,
        query=query_match.group(1).strip() if query_match else None,
        product=_product_from_indices(index_match.group(1)) if index_match else "unknown",
    )


def parse_toml_rule(content: str, path: str) -> ScrapedRule:
    """Parse an Elastic rule file, scraping it when it is not valid TOML."""
    try:
        document = toml.loads(content)
    except toml.TomlDecodeError as e:
        logger.debug(f"{path} is not valid TOML ({e}), scraping it")
        return scrape_toml(content, path)
    return elastic_rule_from_document(document, path)


# =============================================================================
# Sigma / Splunk security_content YAML
# =============================================================================


def _yaml_techniques(tags: Any) -> list[str]:
    # Splunk: tags: {mitre_attack_id: [T1059.001]}
    if isinstance(tags, dict):
        ids = tags.get("mitre_attack_id")
        if not isinstance(ids, list):
            return []
        return _unique([str(t).upper() for t in ids if TECHNIQUE_ID.match(str(t).upper())])
    # Sigma: tags: [attack.execution, attack.t1059.001]
    if isinstance(tags, list):
        return _unique(
            [
                tag.split(".", 1)[1].upper()
                for tag in tags
                if isinstance(tag, str)
                and tag.lower().startswith("attack.")
                and TECHNIQUE_ID.match(tag.split(".", 1)[1].upper())
            ]
        )
    return []


def yaml_rule_from_document(document: dict[str, Any], path: str) -> ScrapedRule:
    """Read techniques, title, ``logsource`` and the detection block of a parsed rule."""
    logsource = document.get("logsource")
    if not isinstance(logsource, dict):
        logsource = {}
    detection = document.get("detection")
    title = document.get("title") or document.get("name")

    return ScrapedRule(
        techniques=_yaml_techniques(document.get("tags")),
        name=title if isinstance(title, str) else PurePosixPath(path).name,
        path=path,
        query=yaml.safe_dump(detection, sort_keys=False) if isinstance(detection, dict) else None,
        product=_hint(logsource.get("product")) or "unknown",
        service=_hint(logsource.get("service")),
        category=_hint(logsource.get("category")),
    )


def scrape_yaml(content: str, path: str) -> ScrapedRule:
    """Regex scrape of a Sigma or Splunk YAML file the parser rejected."""
    techniques = [f"T{m.group(1).upper()}" for m in YAML_ATTACK_TAG.finditer(content)]
    techniques += [m.group(1) for m in YAML_TECHNIQUE_ITEM.finditer(content)]

    detection_match = YAML_DETECTION.search(content)
    title_match = YAML_TITLE.search(content)
    product_match = YAML_PRODUCT.search(content)
    service_match = YAML_SERVICE.search(content)
    category_match = YAML_CATEGORY.search(content)

    name = PurePosixPath(path).name
    if title_match:
        name = title_match.group(1).strip().strip("'\"")

    return ScrapedRule(
        techniques=_unique(techniques),
        name=name,
        path=path,
        query=detection_match.group(1) if detection_match else None,
        product=product_match.group(1).lower() if product_match else "unknown",
        service=service_match.group(1).lower() if service_match else None,
        category=category_match.group(1).lower() if category_match else None,
    )


def parse_yaml_rule(content: str, path: str) -> ScrapedRule:
    """Parse a Sigma or Splunk rule file, scraping it when PyYAML rejects it."""
    try:
        document = yaml.safe_load(content)
    except yaml.YAMLError as e:
        logger.debug(f"{path} is not valid YAML ({e}), scraping it")
        return scrape_yaml(content, path)
    if not isinstance(document, dict):
        return scrape_yaml(content, path)
    return yaml_rule_from_document(document, path)


# =============================================================================
# Index Document
# =============================================================================


@dataclass
class RepositoryResult:
    """Rules parsed from one repository plus counters."""

    source: RuleSource
    rules: RuleIndex = field(default_factory=dict)
    processed: int = 0
    failed: int = 0

    def add(self, rules: RuleIndex) -> None:
        """Append one file's rules in place."""
        self.processed += 1
        for technique_id, entries in rules.items():
            self.rules.setdefault(technique_id, []).extend(entries)

    def sort(self) -> None:
        """Order techniques by ID once every file has been added."""
        self.rules = {technique_id: self.rules[technique_id] for technique_id in sorted(self.rules)}


def build_index_document(results: list[RepositoryResult]) -> dict[str, Any]:
    """Merge per-repository results into the ``{_meta, rules}`` index document."""
    merged: RuleIndex = {}
    for result in results:
        merged = merge_rule_indexes(merged, result.rules)

    return {
        "_meta": {
            "generated": datetime.now(timezone.utc).isoformat(),
            "techniques": len(merged),
            "totalRules": sum(len(rules) for rules in merged.values()),
            "sources": {result.source.value: len(result.rules) for result in results},
        },
        "rules": {
            technique_id: [rule.to_index_entry() for rule in rules]
            for technique_id, rules in merged.items()
        },
    }


def save_index_document(document: dict[str, Any], path: Path) -> Path:
    """Write the index document as indented JSON."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document, indent=2), encoding="utf-8")
    logger.event(
        LogEventType.CORPUS_SAVED,
        f"Saved rule index with {document.get('_meta', {}).get('totalRules', 0)} rules to {path}",
        path=str(path),
    )
    return path


class CorpusBuilder:
    """Builds the external rule index from the public GitHub repositories."""

    def __init__(self, config: Settings | None = None) -> None:
        self.config = config or settings

    def _api_headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github+json"}
        if self.config.github_token:
            headers["Authorization"] = f"Bearer {self.config.github_token.get_secret_value()}"
        return headers

    async def fetch_tree(
        self, client: httpx.AsyncClient, owner: str, repo: str, branch: str
    ) -> list[dict[str, Any]]:
        """List every entry of a repository with one recursive tree request."""
        url = GITHUB_TREE_URL.format(owner=owner, repo=repo, branch=branch)
        text = await fetch_text(
            client,
            url,
            retries=self.config.fetch_retries,
            backoff=self.config.retry_backoff,
            headers=self._api_headers(),
        )
        try:
            tree = json.loads(text).get("tree", [])
        except (json.JSONDecodeError, AttributeError) as e:
            raise SourceUnavailableError(url, f"unexpected tree response: {e}") from e
        logger.source_event(
            LogEventType.CORPUS_TREE,
            f"{owner}/{repo}",
            f"Fetched tree for {owner}/{repo}@{branch}: {len(tree)} entries",
        )
        return tree

    async def fetch_repository(
        self, client: httpx.AsyncClient, source: RuleSource
    ) -> RepositoryResult:
        """Download and scrape every rule file of one repository. Best-effort."""
        owner, repo, branch, prefix, suffix = SourceDefaults.CORPUS_REPOSITORIES[source.value]
        result = RepositoryResult(source=source)

        try:
            tree = await self.fetch_tree(client, owner, repo, branch)
        except SourceUnavailableError as e:
            logger.source_event(
                LogEventType.SOURCE_DEGRADED,
                f"{owner}/{repo}",
                f"Skipping {owner}/{repo}: {e}",
                level=logging.WARNING,
            )
            return result

        paths = [
            entry["path"]
            for entry in tree
            if entry.get("type") == "blob"
            and entry.get("path", "").startswith(prefix)
            and entry["path"].endswith(suffix)
        ]
        logger.info(f"[{source.value}] Found {len(paths)} rule files")

        parse = parse_toml_rule if suffix == ".toml" else parse_yaml_rule
        semaphore = asyncio.Semaphore(self.config.corpus_concurrency)

        async def _fetch_one(path: str) -> RuleIndex | None:
            async with semaphore:
                url = RAW_URL.format(owner=owner, repo=repo, branch=branch, path=path)
                try:
                    content = await fetch_text(
                        client,
                        url,
                        retries=self.config.fetch_retries,
                        backoff=self.config.retry_backoff,
                    )
                except SourceUnavailableError as e:
                    logger.source_event(
                        LogEventType.CORPUS_FILE_FAILED,
                        url,
                        f"Skipping {path}: {e.reason}",
                        level=logging.DEBUG,
                    )
                    return None
            parsed = parse(content, path)
            return parsed.to_rules(
                source, BLOB_URL.format(owner=owner, repo=repo, branch=branch, path=path)
            )

        for rules in await asyncio.gather(*(_fetch_one(p) for p in paths)):
            if rules is None:
                result.failed += 1
                continue
            result.add(rules)
        result.sort()

        logger.info(
            f"[{source.value}] {len(result.rules)} techniques, {result.processed} rules, "
            f"{result.failed} failed"
        )
        return result

    async def build(
        self,
        sources: list[RuleSource] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> dict[str, Any]:
        """Fetch the repositories concurrently and return the index document."""
        sources = sources or [RuleSource.ELASTIC, RuleSource.SIGMA, RuleSource.SPLUNK]

        if client is None:
            async with build_client(self.config) as own_client:
                results = await asyncio.gather(
                    *(self.fetch_repository(own_client, s) for s in sources)
                )
        else:
            results = await asyncio.gather(*(self.fetch_repository(client, s) for s in sources))

        return build_index_document(list(results))


# =============================================================================
# Local SigmaHQ Indexer
# =============================================================================


def index_sigma_rule(document: Any, relative_path: str) -> RuleIndex:
    """Index one parsed Sigma rule by its ``attack.tXXXX`` tags."""
    if not isinstance(document, dict):
        return {}
    return yaml_rule_from_document(document, relative_path).to_rules(RuleSource.SIGMA, relative_path)


def index_local_sigma(rules_dir: Path) -> dict[str, Any]:
    """
    Index a SigmaHQ checkout on disk.

    Files that cannot be read or parsed are skipped.
    """
    rules_dir = Path(rules_dir)
    if not rules_dir.is_dir():
        raise FileNotFoundError(f"Sigma rules directory not found: {rules_dir}")

    result = RepositoryResult(source=RuleSource.SIGMA)
    for rule_file in sorted(rules_dir.rglob("*.yml")):
        if rule_file.name.startswith("."):
            continue
        relative = rule_file.relative_to(rules_dir).as_posix()
        try:
            document = yaml.safe_load(rule_file.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as e:
            logger.debug(f"Skipping {relative}: {e}")
            result.failed += 1
            continue
        rules = index_sigma_rule(document, relative)
        if rules:
            result.add(rules)
    result.sort()

    logger.info(
        f"Indexed {result.processed} Sigma rules covering {len(result.rules)} techniques "
        f"from {rules_dir}"
    )
    return build_index_document([result])
