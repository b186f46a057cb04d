"""
Unit tests for field extraction from external rule text.
"""

import pytest

from sigma_synth.engine.extractor import (
    FreeTextQueryExtractor,
    SourceAwareExtractor,
    StructuredQueryExtractor,
    YamlDetectionExtractor,
    build_extractor,
    unquote,
)
from sigma_synth.models.rules import RuleSource

SIGMA_DETECTION = """\
selection:
    Image|endswith:
        - 'powershell.exe'
        - "pwsh.exe"
    CommandLine|contains: ['-enc', 'bypass']
timeframe: 5m
condition: selection
"""

SPLUNK_DETECTION = """\
search:
  selection:
    - EventCode: 4688
condition: selection
"""

CERTUTIL_DETECTION = """\
selection:
    - Image|endswith: '\\certutil.exe'
    - OriginalFileName: 'CertUtil.exe'
    - Hashes|contains:
        - 'IMPHASH=1'
        - 'IMPHASH=2'
condition: selection
"""

FILTERED_DETECTION = """\
selection:
    Image|endswith: '\\rundll32.exe'
filter_main_system:
    ParentImage|startswith:
        - 'C:\\Windows\\System32\\'
    CommandLine: ''
filter_optional:
- ParentImage: 'C:\\Program Files\\Agent\\agent.exe'
condition: selection and not 1 of filter_*
"""

ELASTIC_QUERY = (
    'process where process.name : ("powershell.exe", "pwsh.exe") '
    'and process.args : "-enc" and process.command_line : *bypass*'
)


class TestUnquote:
    """Tests for quote stripping."""

    @pytest.mark.unit
    def test_unquote(self):
        """Test one pair of matching quotes is removed."""
        assert unquote("'cmd.exe'") == "cmd.exe"
        assert unquote('"cmd.exe"') == "cmd.exe"
        assert unquote("'it''s'") == "it's"
        assert unquote("'unbalanced") == "'unbalanced"
        assert unquote("  plain  ") == "plain"


class TestStructuredQueryExtractor:
    """Tests for the YAML line scanner."""

    @pytest.mark.unit
    def test_sigma_detection_block(self):
        """Test list items and inline lists attach to their field."""
        result = StructuredQueryExtractor().extract_text(SIGMA_DETECTION)

        assert result is not None
        assert result.to_dict() == {
            "Image|endswith": ["powershell.exe", "pwsh.exe"],
            "CommandLine|contains": ["-enc", "bypass"],
        }

    @pytest.mark.unit
    def test_list_of_maps(self):
        """Test '- Field: value' opens a field when none is open yet."""
        result = StructuredQueryExtractor().extract_text(SPLUNK_DETECTION)

        assert result is not None
        assert result.to_dict() == {"EventCode": ["4688"]}

    @pytest.mark.unit
    def test_every_map_item_opens_its_field(self):
        """Test each '- Field: value' item opens its own field, not a value of the previous one."""
        result = StructuredQueryExtractor().extract_text(CERTUTIL_DETECTION)

        assert result is not None
        assert result.to_dict() == {
            "Image|endswith": ["\\certutil.exe"],
            "OriginalFileName": ["CertUtil.exe"],
            "Hashes|contains": ["IMPHASH=1", "IMPHASH=2"],
        }

    @pytest.mark.unit
    def test_filter_blocks_are_skipped(self):
        """Test exclusion values under filter* blocks never become conditions."""
        result = StructuredQueryExtractor().extract_text(FILTERED_DETECTION)

        assert result is not None
        assert result.to_dict() == {"Image|endswith": ["\\rundll32.exe"]}

    @pytest.mark.unit
    def test_structural_keys_only(self):
        """Test text with no field lines yields None."""
        extractor = StructuredQueryExtractor()

        assert extractor.extract_text("selection:\ncondition: selection\n") is None
        assert extractor.extract_text("") is None

    @pytest.mark.unit
    def test_query_is_truncated(self, make_external_rule):
        """Test only the first max_query_length characters are scanned."""
        rule = make_external_rule(query="Image: cmd.exe\nCommandLine: whoami\n")

        result = StructuredQueryExtractor(max_query_length=15).extract(rule)

        assert result is not None
        assert result.to_dict() == {"Image": ["cmd.exe"]}

    @pytest.mark.unit
    def test_empty_query(self, make_external_rule):
        """Test rules without query text yield None."""
        assert StructuredQueryExtractor().extract(make_external_rule(query="")) is None


class TestFreeTextQueryExtractor:
    """Tests for the EQL/KQL regex passes."""

    @pytest.mark.unit
    def test_eql_query(self):
        """Test tuples, scalars and wildcards are recovered in query order."""
        result = FreeTextQueryExtractor().extract_text(ELASTIC_QUERY)

        assert result is not None
        assert result.to_dict() == {
            "process.name": ["powershell.exe", "pwsh.exe"],
            "process.args": ["-enc"],
            "process.command_line": ["*bypass*"],
        }

    @pytest.mark.unit
    def test_loose_pass_skips_strict_fields(self):
        """Test wildcards are not added to fields the strict pass populated."""
        query = 'file.name : "a.exe" or file.name : *b*'

        result = FreeTextQueryExtractor().extract_text(query)

        assert result is not None
        assert result.to_dict() == {"file.name": ["a.exe"]}

    @pytest.mark.unit
    def test_double_equals_and_escapes(self):
        """Test '==' comparisons and escaped quotes."""
        result = FreeTextQueryExtractor().extract_text('event.action == "say \\"hi\\""')

        assert result is not None
        assert result.to_dict() == {"event.action": ['say "hi"']}

    @pytest.mark.unit
    def test_nothing_recovered(self):
        """Test free text without comparisons yields None."""
        assert FreeTextQueryExtractor().extract_text("sequence by host.id [any]") is None


class TestYamlDetectionExtractor:
    """Tests for the PyYAML extractor."""

    @pytest.mark.unit
    def test_parses_detection_block(self):
        """Test selection contents are walked and structural keys skipped."""
        result = YamlDetectionExtractor().extract_text(SIGMA_DETECTION)

        assert result is not None
        assert result.to_dict() == {
            "Image|endswith": ["powershell.exe", "pwsh.exe"],
            "CommandLine|contains": ["-enc", "bypass"],
        }

    @pytest.mark.unit
    def test_indented_block_is_dedented(self):
        """Test a block scraped with its original indentation still parses."""
        text = "    selection:\n        ParentImage: winword.exe\n    condition: selection\n"

        result = YamlDetectionExtractor().extract_text(text)

        assert result is not None
        assert result.to_dict() == {"ParentImage": ["winword.exe"]}

    @pytest.mark.unit
    def test_invalid_yaml_falls_back_to_line_scanner(self):
        """Test malformed YAML is line-scanned instead."""
        text = "selection:\n  Image: cmd.exe\n    CommandLine: whoami\n"

        result = YamlDetectionExtractor().extract_text(text)

        assert result is not None
        assert result.to_dict() == {"Image": ["cmd.exe"], "CommandLine": ["whoami"]}

    @pytest.mark.unit
    def test_list_of_maps_and_filters(self):
        """Test map lists are walked and filter* blocks skipped."""
        extractor = YamlDetectionExtractor()

        certutil = extractor.extract_text(CERTUTIL_DETECTION)
        filtered = extractor.extract_text(FILTERED_DETECTION)

        assert certutil is not None
        assert certutil.to_dict()["OriginalFileName"] == ["CertUtil.exe"]
        assert filtered is not None
        assert filtered.to_dict() == {"Image|endswith": ["\\rundll32.exe"]}

    @pytest.mark.unit
    def test_scalar_document(self):
        """Test a document that is not a mapping yields None."""
        assert YamlDetectionExtractor().extract_text("just some words") is None


class TestSourceAwareExtractor:
    """Tests for per-source dispatch."""

    @pytest.mark.unit
    def test_dispatch_by_source(self):
        """Test Elastic rules use free text and the rest use the YAML scanner."""
        extractor = SourceAwareExtractor()

        assert isinstance(extractor.strategy_for(RuleSource.ELASTIC), FreeTextQueryExtractor)
        assert isinstance(extractor.strategy_for(RuleSource.SIGMA), StructuredQueryExtractor)
        assert isinstance(extractor.strategy_for(RuleSource.SPLUNK), StructuredQueryExtractor)

    @pytest.mark.unit
    def test_elastic_rule_extraction(self, make_external_rule):
        """Test an Elastic rule goes through the free-text passes."""
        rule = make_external_rule(source=RuleSource.ELASTIC, query=ELASTIC_QUERY)

        result = SourceAwareExtractor().extract(rule)

        assert result is not None
        assert "process.name" in result

    @pytest.mark.unit
    def test_build_yaml_mode(self):
        """Test the yaml mode selects the PyYAML extractor for Sigma rules."""
        extractor = build_extractor("yaml")

        assert isinstance(extractor, SourceAwareExtractor)
        assert isinstance(extractor.strategy_for(RuleSource.SIGMA), YamlDetectionExtractor)

    @pytest.mark.unit
    def test_build_unknown_mode(self):
        """Test unknown modes raise ValueError."""
        with pytest.raises(ValueError, match="Unknown extractor mode"):
            build_extractor("llm")
