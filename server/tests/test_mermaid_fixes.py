"""
Test cases for the Mermaid repair passes.
"""

import pytest
from unittest.mock import patch

from habitviz.internal.mermaid_fallback import build_fallback
from habitviz.internal.mermaid_fixer import (
    balance_blocks,
    ensure_header,
    ensure_style_block,
    find_central_node,
    normalize,
    normalize_with_report,
    rewrite_style_annotations,
    sanitize_identifiers,
    strip_wrapping,
    validate_mermaid_syntax,
)
from habitviz.internal.mermaid_lines import LineKind, parse_lines, render_lines


def _texts(lines):
    return [line.text for line in lines if line.kind is not LineKind.BLANK]


class TestStripWrapping:
    """Test removal of code fences and surrounding prose."""

    def test_extracts_fenced_block(self):
        raw = 'Here you go:\n```mermaid\nflowchart TD\n    A["x"]\n```\nHope this helps!'
        assert strip_wrapping(raw) == 'flowchart TD\n    A["x"]'

    def test_drops_unclosed_fence_line(self):
        raw = '```mermaid\nflowchart TD\n    A["x"]'
        assert strip_wrapping(raw) == 'flowchart TD\n    A["x"]'

    def test_drops_prose_before_header(self):
        repairs = []
        result = strip_wrapping('Sure! Here it is:\n\ngraph LR\n    A --> B', repairs)

        assert result == "graph LR\n    A --> B"
        assert any("before the header" in r for r in repairs)

    def test_plain_diagram_unchanged(self):
        raw = 'flowchart TD\n    A["x"]'
        repairs = []
        assert strip_wrapping(raw, repairs) == raw
        assert repairs == []


class TestEnsureHeader:
    """Test header insertion and canonicalization."""

    def test_adds_missing_header(self):
        lines = ensure_header(parse_lines('A["x"] --> B["y"]'))
        assert lines[0].kind is LineKind.HEADER
        assert lines[0].text == "flowchart TD"

    @pytest.mark.parametrize("header,expected", [
        ("flowchart TD", "flowchart TD"),
        ("graph lr", "graph LR"),
        ("Flowchart", "flowchart TD"),
        ("flowchart XY", "flowchart TD"),
        ("flowchart TD;", "flowchart TD"),
        ("GRAPH bt", "graph BT"),
    ])
    def test_canonical_header(self, header, expected):
        lines = ensure_header(parse_lines(f'{header}\n    A["x"]'))
        assert lines[0].text == expected


class TestBalanceBlocks:
    """Test the subgraph/end balancer."""

    def test_appends_missing_end(self):
        lines = balance_blocks(parse_lines('flowchart TD\n  subgraph g\n    A["x"]'))
        assert lines[-1].kind is LineKind.BLOCK_END
        assert lines[-1].render() == "    end"

    def test_appends_one_end_per_open_block(self):
        text = 'flowchart TD\n  subgraph a\n  subgraph b\n    A["x"]'
        lines = balance_blocks(parse_lines(text))
        assert sum(1 for line in lines if line.kind is LineKind.BLOCK_END) == 2

    def test_balanced_input_unchanged(self):
        text = 'flowchart TD\n  subgraph a\n    A["x"]\n  end'
        assert render_lines(balance_blocks(parse_lines(text))) == text

    def test_excess_closers_left_alone(self):
        text = 'flowchart TD\n  A["x"]\n  end'
        assert render_lines(balance_blocks(parse_lines(text))) == text


class TestSanitizeIdentifiers:
    """Test identifier repair and duplicate removal."""

    def test_first_definition_wins(self):
        lines = sanitize_identifiers(parse_lines('flowchart TD\n  id1["A"]\n  id2["X"]\n  id1["B"]'))
        texts = _texts(lines)

        assert 'id1["A"]' in texts
        assert 'id1["B"]' not in texts
        assert 'id2["X"]' in texts

    def test_joins_two_token_identifier_everywhere(self):
        text = 'flowchart TD\n  Morning Walk["Walk"]\n  Morning Walk --> id2\n  class Morning Walk stepStyle'
        texts = _texts(sanitize_identifiers(parse_lines(text)))

        assert 'Morning_Walk["Walk"]' in texts
        assert "Morning_Walk --> id2" in texts
        assert "class Morning_Walk stepStyle" in texts

    def test_label_text_is_not_rewritten(self):
        text = 'flowchart TD\n  Morning Walk["Morning Walk"]'
        texts = _texts(sanitize_identifiers(parse_lines(text)))
        assert 'Morning_Walk["Morning Walk"]' in texts

    def test_malformed_end_is_rewritten(self):
        lines = sanitize_identifiers(parse_lines("flowchart TD\n  subgraph g\n  end}"))
        assert lines[-1].text == "end"
        assert lines[-1].render() == "  end"

    def test_repeated_header_dropped(self):
        lines = sanitize_identifiers(parse_lines("flowchart TD\nflowchart LR\n  A --> B"))
        assert [line.text for line in lines if line.kind is LineKind.HEADER] == ["flowchart TD"]

    def test_references_to_duplicates_kept(self):
        text = 'flowchart TD\n  id1["A"]\n  id1["B"]\n  id1 --> id2'
        assert "id1 --> id2" in _texts(sanitize_identifiers(parse_lines(text)))

    def test_hanging_arrows_removed(self):
        text = 'flowchart TD\n  id1["A"] -->\n  id2["B"]\n  id2 -.->\n  -->\n  id1 --> id2'
        repairs = []
        lines = sanitize_identifiers(parse_lines(text), repairs)

        assert _texts(lines) == ["flowchart TD", 'id1["A"]', 'id2["B"]', "id2", "id1 --> id2"]
        assert lines[1].kind is LineKind.NODE_DEF
        assert sum(1 for r in repairs if "hanging arrow" in r) == 3

    def test_trimmed_definition_still_deduplicated(self):
        text = 'flowchart TD\n  id1["A"]\n  id1["B"] -->'
        texts = _texts(sanitize_identifiers(parse_lines(text)))

        assert 'id1["A"]' in texts
        assert 'id1["B"]' not in texts

    def test_arrow_inside_label_is_kept(self):
        text = 'flowchart TD\n  id1 --> id2["ends with -->"]'
        assert render_lines(sanitize_identifiers(parse_lines(text))) == text


class TestRewriteStyleAnnotations:
    """Test ::: shorthand rewriting and class statement splitting."""

    def test_marker_becomes_class_statement(self):
        lines = rewrite_style_annotations(parse_lines('flowchart TD\n  id1["Main"] ::: habitStyle'))
        texts = _texts(lines)

        assert 'id1["Main"]' in texts
        assert "class id1 habitStyle" in texts
        assert not any(":::" in t for t in texts)

    def test_markers_in_connectors(self):
        lines = rewrite_style_annotations(parse_lines("flowchart TD\n  A:::triggerStyle --> B:::stepStyle"))
        texts = _texts(lines)

        assert "A --> B" in texts
        assert "class A triggerStyle" in texts
        assert "class B stepStyle" in texts

    def test_existing_statement_not_duplicated(self):
        text = 'flowchart TD\n  id1["A"]:::s\n  class id1 s\n  classDef s fill:#fff'
        texts = _texts(rewrite_style_annotations(parse_lines(text)))
        assert texts.count("class id1 s") == 1

    def test_colons_in_labels_preserved(self):
        text = 'flowchart TD\n  id1["Time: 7am"]'
        assert 'id1["Time: 7am"]' in _texts(rewrite_style_annotations(parse_lines(text)))

    def test_splits_multi_target_class_statement(self):
        lines = rewrite_style_annotations(parse_lines("flowchart TD\n  class a,b,c styleName"))
        assigns = [line for line in lines if line.kind is LineKind.CLASS_ASSIGN]

        assert [line.text for line in assigns] == [
            "class a styleName",
            "class b styleName",
            "class c styleName",
        ]

    def test_undefined_class_gets_definition(self):
        lines = rewrite_style_annotations(parse_lines('flowchart TD\n  A["x"]\n  class A fancy\n  classDef s fill:#fff'))
        defined = {line.style_class for line in lines if line.kind is LineKind.CLASS_DEF}
        assert defined == {"s", "fancy"}


    def test_comment_shorthand_collapses(self):
        lines = rewrite_style_annotations(parse_lines('flowchart TD\n  id1["A"]\n  %% id1 ::: fancyStyle'))
        texts = _texts(lines)

        assert "%% id1 : fancyStyle" in texts
        assert not any(":::" in t for t in texts)
        # A comment is not a style request
        assert "class id1 fancyStyle" not in texts


class TestEnsureStyleBlock:
    """Test canonical classDef insertion."""

    def test_appends_canonical_classes(self):
        lines = ensure_style_block(parse_lines('flowchart TD\n  id1["Read"]'), "Read")
        defined = [line.style_class for line in lines if line.kind is LineKind.CLASS_DEF]

        assert defined == ["habitStyle", "triggerStyle", "stepStyle", "rewardStyle", "obstacleStyle"]
        assert lines[-1].text == "class id1 habitStyle"

    def test_existing_classdef_left_alone(self):
        text = 'flowchart TD\n  id1["Read"]\n  classDef s fill:#fff'
        assert render_lines(ensure_style_block(parse_lines(text), "Read")) == text

    def test_central_node_prefers_habit_label(self):
        lines = parse_lines('flowchart TD\n  t1["Alarm"]\n  h["Daily Habit"]')
        assert find_central_node(lines) == "h"

    def test_central_node_matches_habit_name(self):
        lines = parse_lines('flowchart TD\n  t1["Alarm"]\n  r["Read 20 pages"]')
        assert find_central_node(lines, "read 20 pages") == "r"

    def test_central_node_defaults_to_first_definition(self):
        lines = parse_lines('flowchart TD\n  t1["Alarm"]\n  r["Coffee"]')
        assert find_central_node(lines) == "t1"

    def test_no_node_definitions(self):
        assert find_central_node(parse_lines("flowchart TD\n  A --> B")) is None


class TestScenarios:
    """End-to-end normalization of the documented repair scenarios."""

    def test_unclosed_block(self):
        raw = 'flowchart TD\n  id1["Habit"]\n  subgraph g\n    id2["Trigger"]\n'
        result = normalize(raw, "Habit")
        texts = [line.strip() for line in result.split("\n")]

        assert texts.count("end") == 1
        assert 'id1["Habit"]' in texts
        assert 'id2["Trigger"]' in texts
        assert validate_mermaid_syntax(result) == []

    def test_duplicate_definition(self):
        result = normalize('flowchart TD\n  id1["A"]\n  id2["C"]\n  id1["B"]\n  id1 --> id2', "A")

        assert 'id1["A"]' in result
        assert 'id1["B"]' not in result

    def test_inline_marker(self):
        result = normalize('id1["Main"] ::: habitStyle', "Main")
        texts = [line.strip() for line in result.split("\n")]

        assert result.startswith("flowchart TD")
        assert 'id1["Main"]' in texts
        assert "class id1 habitStyle" in texts
        assert any(t.startswith("classDef habitStyle ") for t in texts)
        assert ":::" not in result

    def test_empty_input(self):
        result = normalize("", "Read")

        assert result == build_fallback("Read")
        assert 'main["Read"]' in result

    def test_multi_target_class_statement(self):
        result = normalize("class a b c styleName", "Read")
        assigns = [line.strip() for line in result.split("\n") if line.strip().startswith("class ")]

        assert "class a styleName" in assigns
        assert "class b styleName" in assigns
        assert "class c styleName" in assigns
        assert all(len(line.split()) == 3 for line in assigns)
        assert validate_mermaid_syntax(result) == []


class TestNormalizeWithReport:
    """Test fallback substitution and repair reporting."""

    @pytest.mark.parametrize("raw", [
        "",
        "   \n  ",
        None,
        "```mermaid\n```",
        "flowchart TD",
        "%% only a comment",
    ])
    def test_nothing_to_repair_uses_fallback(self, raw):
        report = normalize_with_report(raw, "Read")

        assert report.used_fallback is True
        assert report.text == build_fallback("Read")

    def test_repairs_are_reported(self, messy_generated_diagram):
        report = normalize_with_report(messy_generated_diagram, "Morning Run")

        assert report.used_fallback is False
        assert report.repairs
        assert validate_mermaid_syntax(report.text) == []

    def test_clean_input_has_no_repairs(self):
        report = normalize_with_report(build_fallback("Read"), "Read")

        assert report.repairs == []
        assert report.text == build_fallback("Read")

    def test_internal_error_uses_fallback(self):
        with patch("habitviz.internal.mermaid_fixer.balance_blocks", side_effect=RuntimeError("boom")):
            report = normalize_with_report('flowchart TD\n  A["x"]', "Read")

        assert report.used_fallback is True
        assert report.text == build_fallback("Read")
        assert "boom" in report.repairs[-1]


class TestValidateMermaidSyntax:
    """Test the guarantee checker."""

    def test_valid_fallback(self):
        assert validate_mermaid_syntax(build_fallback("Read")) == []

    def test_reports_hanging_arrow(self):
        errors = validate_mermaid_syntax('flowchart TD\n  id1["A"] -->\n  classDef s fill:#fff')
        assert errors == ["Line 2: Incomplete arrow - connector ends without a target"]

    def test_reports_every_violation(self):
        code = 'A["x"]:::s\n  subgraph g\n  A["y"]\n  class A B s'
        errors = validate_mermaid_syntax(code)

        assert any("diagram type" in e for e in errors)
        assert any("never closed" in e for e in errors)
        assert any("Duplicate node definition 'A'" in e for e in errors)
        assert any("assigns 2 identifiers" in e for e in errors)
        assert any(":::" in e for e in errors)
        assert any("classDef" in e for e in errors)
        assert any("'s' is never defined" in e for e in errors)
