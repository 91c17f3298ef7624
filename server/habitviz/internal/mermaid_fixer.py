"""
Mermaid normalization and repair

Turns untrusted flowchart text from the generation service into Mermaid the
renderer accepts. Output guarantees:
1. Starts with a flowchart/graph header
2. No subgraph is left open (opens <= closes)
3. No two node definitions share an identifier
4. A classDef block is present
5. No ::: style shorthand remains

Every pass is a pure function over parsed line records and is idempotent on
its own output, so normalize(normalize(x)) == normalize(x).
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .mermaid_fallback import CANONICAL_STYLE_CLASSES, DEFAULT_HEADER, build_fallback
from .mermaid_lines import (
    HEADER_RE,
    HANGING_ARROW_RE,
    DiagramLine,
    LineKind,
    marker_spans,
    mask_quoted,
    parse_line,
    parse_lines,
    remove_spans,
    render_lines,
)

logger = logging.getLogger(__name__)

APPEND_INDENT = "    "
VALID_DIRECTIONS = {"TD", "TB", "LR", "RL", "BT"}
GENERIC_CLASS_ATTRIBUTES = "fill:#6B7280,color:#fff,stroke:#4B5563,stroke-width:1px"

_FENCED_BLOCK_RE = re.compile(r"```[ \t]*(?:mermaid)?[ \t]*\n(.*?)```", re.DOTALL | re.IGNORECASE)
_FENCE_LINE_RE = re.compile(r"^\s*```[\w-]*\s*$")
_NON_BODY_KINDS = {LineKind.BLANK, LineKind.COMMENT, LineKind.HEADER}


@dataclass
class NormalizationReport:
    """Result of a normalization run"""
    text: str
    used_fallback: bool = False
    repairs: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "used_fallback": self.used_fallback,
            "repairs": self.repairs,
        }


def _note(repairs: Optional[List[str]], message: str) -> None:
    logger.info(f"🔧 {message}")
    if repairs is not None:
        repairs.append(message)


# ============================================================
# Wrapping and header
# ============================================================

def strip_wrapping(raw_text: str, repairs: Optional[List[str]] = None) -> str:
    """
    Remove code fences and any prose the generation service put around the diagram.

    If a fenced block exists its body is used, stray fence lines are dropped,
    everything before the first header line is treated as prose, and leading
    and trailing blank lines are removed.
    """
    text = raw_text.replace("\r\n", "\n").replace("\r", "\n")

    fenced = _FENCED_BLOCK_RE.search(text)
    if fenced:
        text = fenced.group(1)
        _note(repairs, "Extracted diagram from code fence")

    lines = text.split("\n")
    kept = [line for line in lines if not _FENCE_LINE_RE.match(line)]
    if len(kept) != len(lines):
        _note(repairs, "Removed stray code fence lines")

    for index, line in enumerate(kept):
        if HEADER_RE.match(line.strip()):
            if index > 0:
                _note(repairs, f"Dropped {index} line(s) of text before the header")
            kept = kept[index:]
            break

    while kept and not kept[0].strip():
        kept.pop(0)
    while kept and not kept[-1].strip():
        kept.pop()
    return "\n".join(kept)


def ensure_header(lines: List[DiagramLine], repairs: Optional[List[str]] = None) -> List[DiagramLine]:
    """Make sure the diagram starts with a canonical `flowchart <DIR>` style header"""
    first = next((i for i, line in enumerate(lines) if line.kind is not LineKind.BLANK), None)
    if first is None or lines[first].kind is not LineKind.HEADER:
        _note(repairs, f"Added missing '{DEFAULT_HEADER}' header")
        return [parse_line(DEFAULT_HEADER)] + list(lines)

    header = lines[first]
    match = HEADER_RE.match(header.text)
    direction = (match.group("direction") or "").upper()
    if direction not in VALID_DIRECTIONS:
        direction = "TD"
    canonical = f"{match.group('keyword').lower()} {direction}"
    if header.text == canonical:
        return list(lines)

    _note(repairs, f"Rewrote header '{header.text}' to '{canonical}'")
    result = list(lines)
    result[first] = parse_line(header.indent + canonical)
    return result


# ============================================================
# StructuralBalancer
# ============================================================

def balance_blocks(lines: List[DiagramLine], repairs: Optional[List[str]] = None) -> List[DiagramLine]:
    """
    Append `end` lines for every subgraph that is never closed.

    Closers are appended at the end of the text instead of at the depth they
    went missing from. Excess closers are left alone; if they break rendering
    the fallback diagram takes over.
    """
    opens = sum(1 for line in lines if line.kind is LineKind.BLOCK_START)
    closes = sum(1 for line in lines if line.kind is LineKind.BLOCK_END)

    if opens <= closes:
        if closes > opens:
            logger.warning(f"Diagram has {closes - opens} more 'end' than 'subgraph' lines, leaving as is")
        return list(lines)

    missing = opens - closes
    _note(repairs, f"Appended {missing} missing 'end' line(s)")
    return list(lines) + [parse_line(f"{APPEND_INDENT}end") for _ in range(missing)]


# ============================================================
# IdentifierSanitizer
# ============================================================

def _replace_outside_quotes(line: DiagramLine, pattern: re.Pattern, replacement: str) -> DiagramLine:
    masked = mask_quoted(line.text)
    spans = [m.span() for m in pattern.finditer(masked)]
    if not spans:
        return line
    text = line.text
    for start, end in sorted(spans, reverse=True):
        text = text[:start] + replacement + text[end:]
    return parse_line(line.indent + text)


def _trim_hanging_arrow(line: DiagramLine) -> DiagramLine:
    match = HANGING_ARROW_RE.search(mask_quoted(line.text))
    if not match:
        return line
    return parse_line(line.indent + line.text[: match.start()].rstrip())


def _token_pair_pattern(first: str, second: str) -> re.Pattern:
    return re.compile(r"(?<!\w)" + re.escape(first) + r"\s+" + re.escape(second) + r"(?!\w)")


def sanitize_identifiers(lines: List[DiagramLine], repairs: Optional[List[str]] = None) -> List[DiagramLine]:
    """
    Repair node identifiers and drop duplicate node definitions.

    - `Morning Walk["..."]` becomes `Morning_Walk["..."]`, and connectors and
      class statements that mention `Morning Walk` are rewritten the same way
    - A node definition reusing an identifier that was already defined is
      dropped; the first definition wins and references are left alone
    - `end` fused with stray brackets (`end}`) becomes a plain `end`
    - Connectors ending in an arrow that points nowhere (`A -->`) lose the
      hanging arrow; a line that was nothing but arrows becomes blank
    - Repeated header lines are dropped
    """
    trimmed: List[DiagramLine] = []
    for number, line in enumerate(lines, 1):
        if line.kind is LineKind.CONNECTOR:
            repaired = _trim_hanging_arrow(line)
            if repaired is not line:
                _note(repairs, f"Line {number}: removed hanging arrow from '{line.text}'")
                line = repaired
        trimmed.append(line)
    lines = trimmed

    joins: Dict[Tuple[str, str], str] = {}
    for line in lines:
        if line.kind is LineKind.NODE_DEF and line.second_token:
            joins[(line.identifier, line.second_token)] = f"{line.identifier}_{line.second_token}"
    patterns = [(_token_pair_pattern(first, second), joined) for (first, second), joined in joins.items()]

    seen: Dict[str, int] = {}
    header_seen = False
    result: List[DiagramLine] = []

    for number, line in enumerate(lines, 1):
        if line.kind is LineKind.HEADER:
            if header_seen:
                _note(repairs, f"Line {number}: dropped repeated header '{line.text}'")
                continue
            header_seen = True

        elif line.kind is LineKind.NODE_DEF:
            if line.second_token:
                joined = joins[(line.identifier, line.second_token)]
                pattern = re.compile(
                    r"^" + re.escape(line.identifier) + r"\s+" + re.escape(line.second_token) + r"(?!\w)"
                )
                _note(repairs, f"Line {number}: joined '{line.identifier} {line.second_token}' into '{joined}'")
                line = _replace_outside_quotes(line, pattern, joined)

            if line.identifier in seen:
                _note(
                    repairs,
                    f"Line {number}: dropped duplicate definition of '{line.identifier}' "
                    f"(first defined on line {seen[line.identifier]})",
                )
                continue
            seen[line.identifier] = number

        elif line.kind in (LineKind.CONNECTOR, LineKind.CLASS_ASSIGN) and patterns:
            for pattern, joined in patterns:
                line = _replace_outside_quotes(line, pattern, joined)

        elif line.kind is LineKind.BLOCK_END and line.text not in ("end", "end;"):
            _note(repairs, f"Line {number}: rewrote malformed '{line.text}' to 'end'")
            line = replace(line, text="end")

        result.append(line)

    return result


# ============================================================
# StyleAnnotationRewriter
# ============================================================

def _strip_markers(line: DiagramLine) -> DiagramLine:
    text = remove_spans(line.text, marker_spans(line.text))
    # Colons inside labels are kept but can never form a ::: run
    text = re.sub(r":{3,}", ":", text).rstrip()
    return parse_line(line.indent + text)


def _split_class_assignment(line: DiagramLine) -> List[DiagramLine]:
    targets = list(dict.fromkeys(line.targets))
    if not targets:
        return []
    if len(targets) == 1 and line.text == f"class {targets[0]} {line.style_class}":
        return [line]
    return [parse_line(f"{line.indent}class {target} {line.style_class}") for target in targets]


def find_central_node(lines: List[DiagramLine], habit_name: str = "") -> Optional[str]:
    """
    Best-effort guess of the node that represents the habit itself.

    Prefers the first node whose label mentions "habit", "main" or the habit
    name, otherwise the first node definition.
    """
    definitions = [line for line in lines if line.kind is LineKind.NODE_DEF]
    if not definitions:
        return None

    name = (habit_name or "").strip().lower()
    for line in definitions:
        label = (line.label or "").lower()
        if "habit" in label or "main" in label or (name and name in label):
            return line.identifier
    return definitions[0].identifier


def ensure_style_block(
    lines: List[DiagramLine],
    habit_name: str = "",
    repairs: Optional[List[str]] = None,
) -> List[DiagramLine]:
    """
    Guarantee the diagram defines its style classes.

    Without any classDef the canonical habit/trigger/step/reward/obstacle block
    is appended and the central node is assigned to habitStyle. Any class a
    `class` statement references but nobody defines gets a neutral definition.
    """
    result = list(lines)
    defined = {line.style_class for line in result if line.kind is LineKind.CLASS_DEF}

    if not defined:
        _note(repairs, "Appended default classDef block")
        if result and result[-1].kind is not LineKind.BLANK:
            result.append(parse_line(""))
        for name, attributes in CANONICAL_STYLE_CLASSES:
            result.append(parse_line(f"{APPEND_INDENT}classDef {name} {attributes}"))
            defined.add(name)

        central = find_central_node(result, habit_name)
        assigned = {target for line in result if line.kind is LineKind.CLASS_ASSIGN for target in line.targets}
        if central and central not in assigned:
            _note(repairs, f"Assigned central node '{central}' to habitStyle")
            result.append(parse_line(f"{APPEND_INDENT}class {central} habitStyle"))

    referenced = [line.style_class for line in result if line.kind is LineKind.CLASS_ASSIGN]
    for name in dict.fromkeys(referenced):
        if name not in defined:
            _note(repairs, f"Added definition for undefined class '{name}'")
            result.append(parse_line(f"{APPEND_INDENT}classDef {name} {GENERIC_CLASS_ATTRIBUTES}"))
            defined.add(name)

    return result


def rewrite_style_annotations(
    lines: List[DiagramLine],
    habit_name: str = "",
    repairs: Optional[List[str]] = None,
) -> List[DiagramLine]:
    """
    Replace ::: shorthand with explicit `class` statements.

    - Every `node:::styleName` found in the incoming lines yields exactly one
      `class node styleName` statement (unless that exact statement exists)
    - `class a b c styleName` / `class a,b,c styleName` is split into one
      statement per identifier
    - Markers are stripped everywhere, whether or not a statement was emitted;
      in comments and classDef lines a ::: run only collapses to a single colon
    - Finishes with ensure_style_block so a classDef block always exists
    """
    requested: List[Tuple[str, str]] = []
    result: List[DiagramLine] = []

    for number, line in enumerate(lines, 1):
        if line.kind in (LineKind.COMMENT, LineKind.CLASS_DEF) and ":::" in line.text:
            # Not a style request, but the ::: run still has to go
            _note(repairs, f"Line {number}: collapsed ::: in {line.kind.value}")
            line = parse_line(line.indent + re.sub(r":{3,}", ":", line.text))
        elif ":::" in line.text:
            requested.extend(line.markers)
            _note(repairs, f"Line {number}: stripped ::: style shorthand")
            line = _strip_markers(line)

        if line.kind is LineKind.CLASS_ASSIGN:
            split = _split_class_assignment(line)
            if len(split) > 1:
                _note(repairs, f"Line {number}: split class statement for {len(split)} identifiers")
            result.extend(split)
            continue

        result.append(line)

    assigned = {(line.targets[0], line.style_class) for line in result if line.kind is LineKind.CLASS_ASSIGN}
    for identifier, style_class in dict.fromkeys(requested):
        if (identifier, style_class) in assigned:
            continue
        result.append(parse_line(f"{APPEND_INDENT}class {identifier} {style_class}"))
        assigned.add((identifier, style_class))

    return ensure_style_block(result, habit_name, repairs)


# ============================================================
# Orchestrator
# ============================================================

def _has_body(lines: List[DiagramLine]) -> bool:
    return any(line.kind not in _NON_BODY_KINDS for line in lines)


def _fallback_report(habit_name: str, reason: str, repairs: List[str]) -> NormalizationReport:
    logger.warning(f"Using fallback diagram for '{habit_name}': {reason}")
    repairs.append(f"Substituted fallback diagram: {reason}")
    return NormalizationReport(text=build_fallback(habit_name), used_fallback=True, repairs=repairs)


def normalize_with_report(raw_text: str, habit_name: str) -> NormalizationReport:
    """
    Normalize generated Mermaid and report which repairs were applied.

    Pass order is fixed: strip wrapping, ensure header, balance blocks,
    sanitize identifiers, rewrite style annotations (including the classDef
    block). Never raises: empty input, input without any diagram statements and
    unexpected internal errors all produce the fallback diagram.
    """
    repairs: List[str] = []
    if not isinstance(raw_text, str) or not raw_text.strip():
        return _fallback_report(habit_name, "empty input", repairs)

    try:
        lines = parse_lines(strip_wrapping(raw_text, repairs))
        if not _has_body(lines):
            return _fallback_report(habit_name, "no diagram statements", repairs)

        lines = ensure_header(lines, repairs)
        lines = balance_blocks(lines, repairs)
        lines = sanitize_identifiers(lines, repairs)
        lines = rewrite_style_annotations(lines, habit_name, repairs)
        normalized = render_lines(lines)
    except Exception as e:
        logger.error(f"Mermaid normalization failed: {e}")
        return _fallback_report(habit_name, f"normalization error: {e}", repairs)

    if not normalized.strip() or not _has_body(lines):
        return _fallback_report(habit_name, "nothing left after repair", repairs)

    remaining = validate_mermaid_syntax(normalized)
    if remaining:
        logger.warning(f"Normalized Mermaid still has issues: {remaining}")

    logger.info(f"Mermaid normalization complete with {len(repairs)} repair(s)")
    return NormalizationReport(text=normalized, used_fallback=False, repairs=repairs)


def normalize(raw_text: str, habit_name: str) -> str:
    """Normalize generated Mermaid text; see normalize_with_report"""
    return normalize_with_report(raw_text, habit_name).text


def validate_mermaid_syntax(mermaid_code: str) -> List[str]:
    """
    Check Mermaid text against the normalization guarantees.

    Args:
        mermaid_code: The Mermaid diagram code to check

    Returns:
        List of violation messages, empty when every guarantee holds
    """
    errors = []
    lines = parse_lines(mermaid_code or "")

    first = next((line for line in lines if line.kind is not LineKind.BLANK), None)
    if first is None or first.kind is not LineKind.HEADER:
        errors.append("Missing diagram type declaration (flowchart, graph)")

    opens = sum(1 for line in lines if line.kind is LineKind.BLOCK_START)
    closes = sum(1 for line in lines if line.kind is LineKind.BLOCK_END)
    if opens > closes:
        errors.append(f"{opens - closes} subgraph block(s) never closed with 'end'")

    seen = set()
    defined = set()
    for i, line in enumerate(lines, 1):
        if line.kind is LineKind.NODE_DEF:
            if line.identifier in seen:
                errors.append(f"Line {i}: Duplicate node definition '{line.identifier}'")
            seen.add(line.identifier)
        elif line.kind is LineKind.CLASS_DEF:
            defined.add(line.style_class)
        elif line.kind is LineKind.CLASS_ASSIGN and len(line.targets) > 1:
            errors.append(f"Line {i}: class statement assigns {len(line.targets)} identifiers")
        elif line.kind is LineKind.CONNECTOR and HANGING_ARROW_RE.search(mask_quoted(line.text)):
            errors.append(f"Line {i}: Incomplete arrow - connector ends without a target")

        if ":::" in line.text:
            errors.append(f"Line {i}: Inline ::: style shorthand")

    if not defined:
        errors.append("Missing classDef style block")

    for i, line in enumerate(lines, 1):
        if line.kind is LineKind.CLASS_ASSIGN and line.style_class not in defined:
            errors.append(f"Line {i}: class '{line.style_class}' is never defined")

    return errors
