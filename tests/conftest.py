"""
Global pytest configuration and fixtures for Sigma Synth.

This module ensures deterministic test execution through:
1. Fixed random seeds for all random operations
2. Frozen time for date-stamped rule documents
3. Deterministic rule identifiers
4. Mocked HTTP transports instead of network access
"""

import json
import os
import random
from datetime import date
from pathlib import Path
from typing import Any

import httpx
import pytest
from faker import Faker

# Set deterministic seeds BEFORE any other imports that might use random
RANDOM_SEED = 42
random.seed(RANDOM_SEED)
Faker.seed(RANDOM_SEED)

# Import application modules after seeding
from sigma_synth.config import Settings
from sigma_synth.models.attack import Technique
from sigma_synth.models.logsource import LogSource
from sigma_synth.models.rules import ExternalRule, RuleSource

SIGMA_QUERY = """\
selection:
    Image|endswith:
        - 'powershell.exe'
    CommandLine|contains:
        - 'DownloadString'
condition: selection
"""


# =============================================================================
# Session-Scoped Fixtures (Run once per test session)
# =============================================================================


@pytest.fixture(scope="session")
def faker() -> Faker:
    """Seeded Faker instance for deterministic fake data."""
    fake = Faker()
    Faker.seed(RANDOM_SEED)
    return fake


# =============================================================================
# Function-Scoped Fixtures (Fresh per test)
# =============================================================================


@pytest.fixture
def frozen_time():
    """
    Fixture to freeze time at a known point.

    Usage:
        def test_something(frozen_time):
            with frozen_time("2025-01-30 12:00:00"):
                # Time is frozen here
                pass
    """
    from freezegun import freeze_time

    return freeze_time


@pytest.fixture
def fixed_date() -> date:
    """The date rule documents carry under ``frozen_time("2025-01-30")``."""
    return date(2025, 1, 30)


@pytest.fixture
def catalogue_document() -> dict[str, Any]:
    """A small log-source catalogue: two process sources and one without mappings."""
    return {
        "version": "test",
        "logsources": [
            {
                "product": "windows",
                "service": "sysmon",
                "category": "process_creation",
                "name": "Sysmon Process Creation",
                "fieldMappings": {
                    "process_creation": {
                        "Image": "Image",
                        "CommandLine": "CommandLine",
                    }
                },
            },
            {
                "product": "linux",
                "service": "auditd",
                "category": "process_creation",
                "name": "Auditd EXECVE",
                "fieldMappings": {
                    "process_creation": {"Image": "exe", "CommandLine": "proctitle"}
                },
            },
            {
                "product": "windows",
                "service": "security",
                "category": "authentication",
                "name": "Windows Logon Events",
            },
        ],
    }


@pytest.fixture
def catalogue_path(tmp_path: Path, catalogue_document: dict[str, Any]) -> Path:
    """The catalogue fixture written to a JSON file."""
    path = tmp_path / "logsources.json"
    path.write_text(json.dumps(catalogue_document), encoding="utf-8")
    return path


@pytest.fixture
def stix_bundle() -> dict[str, Any]:
    """Minimal ATT&CK STIX bundle: two active techniques, one revoked, one actor."""
    return {
        "type": "bundle",
        "id": "bundle--0001",
        "objects": [
            {
                "type": "attack-pattern",
                "id": "attack-pattern--powershell",
                "name": "PowerShell",
                "description": "Adversaries may abuse PowerShell commands and scripts.",
                "kill_chain_phases": [
                    {"kill_chain_name": "mitre-attack", "phase_name": "execution"}
                ],
                "external_references": [
                    {"source_name": "mitre-attack", "external_id": "T1059.001"}
                ],
            },
            {
                "type": "attack-pattern",
                "id": "attack-pattern--encrypt",
                "name": "Data Encrypted for Impact",
                "kill_chain_phases": [
                    {"kill_chain_name": "mitre-attack", "phase_name": "impact"}
                ],
                "external_references": [
                    {"source_name": "mitre-attack", "external_id": "T1486"}
                ],
            },
            {
                "type": "attack-pattern",
                "id": "attack-pattern--revoked",
                "name": "Old Technique",
                "revoked": True,
                "external_references": [
                    {"source_name": "mitre-attack", "external_id": "T1999"}
                ],
            },
            {
                "type": "intrusion-set",
                "id": "intrusion-set--fin7",
                "name": "FIN7",
            },
            {
                "type": "relationship",
                "id": "relationship--0001",
                "relationship_type": "uses",
                "source_ref": "intrusion-set--fin7",
                "target_ref": "attack-pattern--encrypt",
            },
        ],
    }


@pytest.fixture
def bundle_path(tmp_path: Path, stix_bundle: dict[str, Any]) -> Path:
    path = tmp_path / "enterprise-attack.json"
    path.write_text(json.dumps(stix_bundle), encoding="utf-8")
    return path


@pytest.fixture
def test_settings(tmp_path: Path, catalogue_path: Path) -> Settings:
    """Settings with local inputs only, deterministic IDs and no retry delay."""
    return Settings(
        logsources_path=catalogue_path,
        output_dir=tmp_path / "sigma-rules",
        rules_index=None,
        attack_bundle=None,
        actor_index=None,
        identifier_mode="deterministic",
        retry_backoff=0.0,
    )


# =============================================================================
# Mock Fixtures
# =============================================================================


@pytest.fixture
def make_mock_client():
    """
    Factory for an ``httpx.AsyncClient`` served by a ``MockTransport``.

    ``routes`` maps full URLs to ``(status, body)`` or to a list of them
    served in order (the last one repeats). Dict bodies are sent as JSON.
    Unknown URLs answer 404. Requests are recorded on ``client.requests``.
    """

    def _make(routes: dict[str, Any]) -> httpx.AsyncClient:
        requests: list[httpx.Request] = []
        queues = {url: list(r) if isinstance(r, list) else [r] for url, r in routes.items()}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            queue = queues.get(str(request.url))
            if not queue:
                return httpx.Response(404, text="Not Found")
            status, body = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(body, (dict, list)):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=body)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client.requests = requests
        return client

    return _make


# =============================================================================
# Factory Fixtures (Deterministic Test Data)
# =============================================================================


@pytest.fixture
def make_technique():
    """Factory for creating Technique with defaults."""

    def _make(
        technique_id: str = "T1059.001",
        name: str = "PowerShell",
        tactics: tuple[str, ...] = ("execution",),
        actors: tuple[str, ...] = (),
        **kwargs,
    ) -> Technique:
        return Technique(
            id=technique_id,
            name=name,
            tactics=tuple(tactics),
            actors=tuple(actors),
            **kwargs,
        )

    return _make


@pytest.fixture
def make_log_source():
    """Factory for creating LogSource with defaults."""

    def _make(
        product: str = "windows",
        service: str = "sysmon",
        category: str = "process_creation",
        field_mappings: dict[str, dict[str, str]] | None = None,
        **kwargs,
    ) -> LogSource:
        return LogSource(
            product=product,
            service=service,
            category=category,
            field_mappings=field_mappings or {},
            **kwargs,
        )

    return _make


@pytest.fixture
def make_external_rule():
    """Factory for creating ExternalRule objects with unique URLs."""
    counter = 0

    def _make(
        source: RuleSource = RuleSource.SIGMA,
        product: str | None = "windows",
        service: str | None = "sysmon",
        category: str | None = "process_creation",
        query: str = SIGMA_QUERY,
        techniques: tuple[str, ...] = ("T1059.001",),
        **kwargs,
    ) -> ExternalRule:
        nonlocal counter
        counter += 1

        return ExternalRule(
            source=source,
            name=kwargs.pop("name", f"test-rule-{counter}"),
            techniques=techniques,
            product=product,
            service=service,
            category=category,
            query=query,
            url=kwargs.pop("url", f"https://example.test/{source.value}/rule-{counter:04d}"),
            **kwargs,
        )

    return _make


# =============================================================================
# BDD Step Fixtures
# =============================================================================


@pytest.fixture
def context():
    """
    Shared context dictionary for BDD scenarios.

    Allows steps to share state without global variables.
    """
    return {}


# =============================================================================
# Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_random_seed():
    """Reset random seed before each test for determinism."""
    random.seed(RANDOM_SEED)
    Faker.seed(RANDOM_SEED)
    yield


@pytest.fixture(autouse=True)
def clean_environment():
    """Ensure clean environment variables for each test."""
    original_env = os.environ.copy()

    # Remove any SIGMA_SYNTH_ prefixed vars that might interfere
    for key in list(os.environ.keys()):
        if key.startswith("SIGMA_SYNTH_"):
            del os.environ[key]

    yield

    os.environ.clear()
    os.environ.update(original_env)


# =============================================================================
# Markers Registration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast isolated unit tests")
    config.addinivalue_line("markers", "integration: Tests touching the filesystem or mocked HTTP")
    config.addinivalue_line("markers", "e2e: End-to-end generation runs")
    config.addinivalue_line("markers", "critical: Must pass for release")
