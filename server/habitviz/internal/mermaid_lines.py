"""
Mermaid line model

Parses flowchart text once into typed line records so the repair passes work
on structure instead of re-scanning raw strings.

Why records instead of regex rewriting?
- Each pass only looks at the kinds it cares about (node definitions, blocks, classes)
- Quoted labels are masked before matching, so label text never looks like syntax
- A pass that changes a line re-parses just that line, keeping kinds consistent
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple


class LineKind(Enum):
    HEADER = "header"
    NODE_DEF = "node_def"
    BLOCK_START = "block_start"
    BLOCK_END = "block_end"
    CONNECTOR = "connector"
    CLASS_DEF = "class_def"
    CLASS_ASSIGN = "class_assign"
    COMMENT = "comment"
    BLANK = "blank"
    OTHER = "other"


IDENTIFIER = r"[A-Za-z0-9_]\w*"
CLASS_NAME = r"[A-Za-z_]\w*"

# Longest openers first so [[ is not read as [ followed by a stray bracket
SHAPE_OPEN = r"(?:\[\[|\[\(|\(\[|\(\(|\{\{|\[|\(|\{)"
SHAPE_CLOSE = r"(?:\]\]|\)\]|\]\)|\)\)|\}\}|\]|\)|\})"
QUOTED_SHAPE = SHAPE_OPEN + r'\s*"[^"]*"\s*' + SHAPE_CLOSE

HEADER_RE = re.compile(r"^(?P<keyword>flowchart|graph)\b(?:\s+(?P<direction>[A-Za-z]{2}))?\s*;?$", re.IGNORECASE)
BLOCK_START_RE = re.compile(r"^subgraph\b")
BLOCK_END_RE = re.compile(r"^[\]\)\}]*\s*end\s*[\]\)\}]*\s*;?$")
CLASS_DEF_RE = re.compile(r"^classDef\s+(?P<name>" + CLASS_NAME + r")\b")
CLASS_ASSIGN_RE = re.compile(r"^class\s+(?P<targets>.+?)\s+(?P<name>" + CLASS_NAME + r")\s*;?$")
ARROW_RE = re.compile(r"<?-{2,}[->ox]|<?-\.+->?|<?={2,}>?|~~~")
# One or more arrows with nothing after them, e.g. `A -->` or `A --> B -.->`
HANGING_ARROW_RE = re.compile(r"(?:\s*(?:" + ARROW_RE.pattern + r"))+\s*;?$")
NODE_DEF_RE = re.compile(
    r"^(?P<id>" + IDENTIFIER + r")(?:\s+(?P<second>" + IDENTIFIER + r"))?\s*(?P<shape>" + QUOTED_SHAPE + r")\s*;?$"
)

# Inline style shorthand: a node reference (optionally with its shape) followed by :::className
MARKER_RE = re.compile(
    r"(?<!\w)(?P<id>" + IDENTIFIER + r")(?:\s*" + QUOTED_SHAPE + r")?\s*:{3,}\s*(?P<cls>" + CLASS_NAME + r")"
)
MARKER_STRIP_RE = re.compile(r"\s*:{3,}\s*(?:" + CLASS_NAME + r")?")

_QUOTED_RE = re.compile(r'"[^"]*"')


@dataclass(frozen=True)
class DiagramLine:
    """
    One parsed line of diagram text.

    identifier/label/second_token are set for node definitions, style_class for
    classDef and class statements, targets for class statements, and markers
    holds every (identifier, class) pair requested through ::: shorthand.
    """
    kind: LineKind
    text: str
    indent: str = ""
    identifier: Optional[str] = None
    label: Optional[str] = None
    second_token: Optional[str] = None
    style_class: Optional[str] = None
    targets: Tuple[str, ...] = ()
    markers: Tuple[Tuple[str, str], ...] = ()

    def render(self) -> str:
        return f"{self.indent}{self.text}" if self.text else ""


def mask_quoted(text: str) -> str:
    """Replace the inside of quoted strings with '#' so positions are preserved"""
    return _QUOTED_RE.sub(lambda m: '"' + "#" * (len(m.group(0)) - 2) + '"', text)


def remove_spans(text: str, spans: List[Tuple[int, int]]) -> str:
    for start, end in sorted(spans, reverse=True):
        text = text[:start] + text[end:]
    return text


def marker_spans(text: str) -> List[Tuple[int, int]]:
    """Spans of ::: shorthand outside quoted labels"""
    return [m.span() for m in MARKER_STRIP_RE.finditer(mask_quoted(text))]


def parse_line(raw: str) -> DiagramLine:
    """Classify a single raw line"""
    stripped = raw.strip()
    if not stripped:
        return DiagramLine(kind=LineKind.BLANK, text="")

    indent = raw[: len(raw) - len(raw.lstrip())]
    if stripped.startswith("%%"):
        return DiagramLine(kind=LineKind.COMMENT, text=stripped, indent=indent)

    masked = mask_quoted(stripped)
    markers = tuple((m.group("id"), m.group("cls")) for m in MARKER_RE.finditer(masked))
    # Classification ignores shorthand so "id1["A"] ::: s" still reads as a node definition
    bare = remove_spans(masked, [m.span() for m in MARKER_STRIP_RE.finditer(masked)]).strip()

    if HEADER_RE.match(bare):
        return DiagramLine(kind=LineKind.HEADER, text=stripped, indent=indent, markers=markers)
    if BLOCK_START_RE.match(bare):
        return DiagramLine(kind=LineKind.BLOCK_START, text=stripped, indent=indent, markers=markers)
    if BLOCK_END_RE.match(bare):
        return DiagramLine(kind=LineKind.BLOCK_END, text=stripped, indent=indent)

    class_def = CLASS_DEF_RE.match(bare)
    if class_def:
        return DiagramLine(kind=LineKind.CLASS_DEF, text=stripped, indent=indent, style_class=class_def.group("name"))

    class_assign = CLASS_ASSIGN_RE.match(bare)
    if class_assign:
        targets = tuple(t for t in re.split(r"[\s,]+", class_assign.group("targets")) if t)
        return DiagramLine(
            kind=LineKind.CLASS_ASSIGN,
            text=stripped,
            indent=indent,
            style_class=class_assign.group("name"),
            targets=targets,
            markers=markers,
        )

    if ARROW_RE.search(bare):
        return DiagramLine(kind=LineKind.CONNECTOR, text=stripped, indent=indent, markers=markers)

    node_def = NODE_DEF_RE.match(bare)
    if node_def:
        # The first quoted string of a node definition is its label
        label_match = _QUOTED_RE.search(stripped)
        return DiagramLine(
            kind=LineKind.NODE_DEF,
            text=stripped,
            indent=indent,
            identifier=node_def.group("id"),
            label=label_match.group(0)[1:-1] if label_match else "",
            second_token=node_def.group("second"),
            markers=markers,
        )

    return DiagramLine(kind=LineKind.OTHER, text=stripped, indent=indent, markers=markers)


def parse_lines(text: str) -> List[DiagramLine]:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return [parse_line(raw) for raw in text.split("\n")]


def render_lines(lines: List[DiagramLine]) -> str:
    return "\n".join(line.render() for line in lines)
