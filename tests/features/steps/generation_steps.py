"""
Step definitions for rule generation.

These steps implement the Gherkin scenarios defined in rule_generation.feature.
Inputs are built in memory so every scenario is deterministic and isolated.
"""

import yaml
from pytest_bdd import given, parsers, scenarios, then, when

from sigma_synth.models.attack import Actor, TechniqueGraph
from sigma_synth.models.rules import RuleSource
from sigma_synth.services.generator import GenerationInputs, RuleGenerator

scenarios("../rule_generation.feature")


def _load_rule(context: dict, path: str) -> dict:
    return yaml.safe_load((context["output_dir"] / path).read_text())


# =============================================================================
# Given Steps (Preconditions)
# =============================================================================


@given(parsers.parse('the log source "{key}"'))
def log_source(context: dict, key: str, make_log_source) -> None:
    """Add a catalogue entry given as product/service/category."""
    product, service, category = key.split("/")
    context["log_sources"].append(
        make_log_source(product=product, service=service, category=category)
    )


@given(parsers.parse('the actor "{actor}" uses "{technique_id}"'))
def actor_uses(context: dict, actor: str, technique_id: str) -> None:
    """Attribute a technique to a threat actor."""
    context["actors"].append(Actor(name=actor, techniques=frozenset({technique_id})))


@given(parsers.parse('an external "{source}" rule for "{technique_id}" on "{scope}"'))
def external_rule(
    context: dict, source: str, technique_id: str, scope: str, make_external_rule
) -> None:
    """Index one external rule hinted at product/service."""
    product, service = scope.split("/")
    rule = make_external_rule(
        source=RuleSource(source),
        product=product,
        service=service,
        techniques=(technique_id,),
    )
    context["rules"].setdefault(technique_id, []).append(rule)
    context["external_url"] = rule.url


# =============================================================================
# When Steps (Actions)
# =============================================================================


@when(parsers.parse('rules are generated for "{technique_ids}"'))
def generate_rules(context: dict, technique_ids: str, test_settings) -> None:
    """Run generation restricted to the listed techniques."""
    config = test_settings.model_copy(
        update={"technique_filter": [tid.strip() for tid in technique_ids.split(",")]}
    )
    inputs = GenerationInputs(
        log_sources=context["log_sources"],
        graph=TechniqueGraph.from_actors(context["actors"]),
        rules=context["rules"],
    )

    context["output_dir"] = config.output_dir
    context["report"] = RuleGenerator(config).generate(inputs)


# =============================================================================
# Then Steps (Assertions)
# =============================================================================


@then(parsers.parse('the rule "{path}" is written'))
def rule_written(context: dict, path: str) -> None:
    assert path in context["report"].paths
    assert (context["output_dir"] / path).is_file()


@then(parsers.parse('the rule "{path}" is not written'))
def rule_not_written(context: dict, path: str) -> None:
    assert path not in context["report"].paths
    assert not (context["output_dir"] / path).exists()


@then(parsers.parse('the rule "{path}" matches "{field}" on "{value}"'))
def rule_matches(context: dict, path: str, field: str, value: str) -> None:
    """Check a selection field carries the expected value."""
    selection = _load_rule(context, path)["detection"]["selection"]
    values = selection[field]
    assert value in (values if isinstance(values, list) else [values])


@then(parsers.parse('the rule "{path}" has condition "{condition}"'))
def rule_condition(context: dict, path: str, condition: str) -> None:
    assert _load_rule(context, path)["detection"]["condition"] == condition


@then(parsers.parse('the rule "{path}" is tagged "{tag}"'))
def rule_tagged(context: dict, path: str, tag: str) -> None:
    assert tag in _load_rule(context, path)["tags"]


@then(parsers.parse('the rule "{path}" has status "{status}"'))
def rule_status(context: dict, path: str, status: str) -> None:
    assert _load_rule(context, path)["status"] == status


@then(parsers.parse('the rule "{path}" has level "{level}"'))
def rule_level(context: dict, path: str, level: str) -> None:
    assert _load_rule(context, path)["level"] == level


@then(parsers.parse('the rule "{path}" references the external rule'))
def rule_references_external(context: dict, path: str) -> None:
    assert context["external_url"] in _load_rule(context, path)["references"]


@then(parsers.parse('the technique "{technique_id}" is reported as invalid'))
def technique_invalid(context: dict, technique_id: str) -> None:
    assert technique_id in context["report"].skipped_invalid


@then(parsers.parse("the report counts {count:d} generated rules"))
def generated_count(context: dict, count: int) -> None:
    assert context["report"].generated == count

