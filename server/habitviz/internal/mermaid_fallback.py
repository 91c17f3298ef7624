"""
Fallback habit diagram

Builds the deterministic diagram used whenever generated Mermaid cannot be
repaired or fails to render. The output is already normalized: running it
through the normalizer returns it unchanged.
"""

import re
from typing import List

DEFAULT_HEADER = "flowchart TD"
DEFAULT_HABIT_LABEL = "My Habit"

# Canonical style classes shared by the fallback diagram and the normalizer
CANONICAL_STYLE_CLASSES = [
    ("habitStyle", "fill:#9333EA,color:#fff,stroke:#7E22CE,stroke-width:2px"),
    ("triggerStyle", "fill:#3B82F6,color:#fff,stroke:#2563EB,stroke-width:1px"),
    ("stepStyle", "fill:#10B981,color:#fff,stroke:#059669,stroke-width:1px"),
    ("rewardStyle", "fill:#F59E0B,color:#fff,stroke:#D97706,stroke-width:1px"),
    ("obstacleStyle", "fill:#EF4444,color:#fff,stroke:#DC2626,stroke-width:1px"),
]

# (group id, group title, style class, [(node id, node label), ...])
FALLBACK_GROUPS = [
    ("triggers", "Triggers", "triggerStyle", [("t1", "Morning Alarm"), ("t2", "Reminder")]),
    ("steps", "Steps", "stepStyle", [("s1", "Preparation"), ("s2", "Execution")]),
    ("benefits", "Benefits", "rewardStyle", [("b1", "Improved Health"), ("b2", "Mental Clarity")]),
    ("challenges", "Challenges", "obstacleStyle", [("c1", "Time Constraints"), ("c2", "Motivation Issues")]),
]

FALLBACK_CONNECTORS = [
    "t1 --> main",
    "t2 --> main",
    "main --> s1",
    "s1 --> s2",
    "s2 --> b1",
    "s2 --> b2",
    "c1 -.-> main",
    "c2 -.-> main",
]


def sanitize_habit_label(habit_name: str) -> str:
    """
    Make a habit name safe to place inside a quoted Mermaid label.

    Everything except letters, digits, underscores and whitespace is dropped and
    whitespace runs (including newlines) collapse to a single space.
    """
    if not isinstance(habit_name, str):
        habit_name = ""
    cleaned = re.sub(r"[^\w\s]", "", habit_name)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    return cleaned or DEFAULT_HABIT_LABEL


def build_fallback(habit_name: str) -> str:
    """
    Build the guaranteed-valid fallback diagram for a habit.

    Args:
        habit_name: Habit name, any string (empty, quoted, very long)

    Returns:
        Mermaid flowchart with a central habit node, four groups of two nodes,
        fixed connectors and the canonical style classes assigned to every node
    """
    indent = "    "
    lines: List[str] = [DEFAULT_HEADER, f'{indent}main["{sanitize_habit_label(habit_name)}"]', ""]

    for group_id, title, _, nodes in FALLBACK_GROUPS:
        lines.append(f'{indent}subgraph {group_id}["{title}"]')
        lines.extend(f'{indent * 2}{node_id}["{label}"]' for node_id, label in nodes)
        lines.append(f"{indent}end")
        lines.append("")

    lines.extend(f"{indent}{connector}" for connector in FALLBACK_CONNECTORS)
    lines.append("")

    lines.extend(f"{indent}classDef {name} {attributes}" for name, attributes in CANONICAL_STYLE_CLASSES)
    lines.append("")

    lines.append(f"{indent}class main habitStyle")
    for _, _, style_class, nodes in FALLBACK_GROUPS:
        lines.extend(f"{indent}class {node_id} {style_class}" for node_id, _ in nodes)

    return "\n".join(lines)
