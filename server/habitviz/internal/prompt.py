# Prompts for habit diagram generation

SYSTEM_PROMPT = (
    "You are an expert at creating valid Mermaid diagrams with perfect syntax. "
    "You always create diagrams that parse correctly."
)

DIAGRAM_PROMPT = """
Create a Mermaid diagram that visualizes the habit "{habit_name}"{description_clause}.

The diagram should include:
1. The main habit as a central node
2. Key components or steps involved in this habit
3. Triggers that start the habit
4. Rewards or benefits from the habit
5. Potential obstacles or challenges
6. Related habits or supporting activities

IMPORTANT: Follow these instructions exactly for valid Mermaid syntax:
- Use flowchart TD (top-down) syntax
- Each node MUST have a unique ID (like id1, id2, etc.)
- Node text must be in quotes like id1["Node text"]
- Always close subgraphs with "end"
- Leave spaces between node connections and arrows
- For obstacles, use dotted lines (-.->)
- DO NOT use ::: syntax for styling
- Add style definitions with classDef at the end
- Apply styles with class statements (e.g., class id1 habitStyle)
- Ensure proper indentation for readability

Return ONLY valid mermaid code without explanation or markdown tags.

Example of correct syntax:
flowchart TD
    id1["Main Habit"]

    subgraph Triggers
        id2["Trigger 1"]
        id3["Trigger 2"]
    end

    id2 --> id1
    id3 --> id1

    classDef habitStyle fill:#9333EA,color:#fff,stroke:#7E22CE,stroke-width:2px
    class id1 habitStyle
"""


def format_diagram_prompt(habit_name: str, habit_description: str = "") -> str:
    """Fill the diagram prompt for one habit"""
    description_clause = f' described as: "{habit_description}"' if habit_description else ""
    return DIAGRAM_PROMPT.format(habit_name=habit_name, description_clause=description_clause)
