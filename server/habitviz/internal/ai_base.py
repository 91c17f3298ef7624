"""
Abstract base class for diagram text providers (OpenAI, Groq, etc.)
"""

from abc import ABC, abstractmethod


class UpstreamGenerationError(Exception):
    """The text-generation service was unreachable, timed out or returned no usable text"""


class DiagramTextProvider(ABC):
    """Abstract base class for services that draft Mermaid text for a habit"""

    @abstractmethod
    async def generate_diagram(self, habit_name: str, habit_description: str = "") -> str:
        """
        Ask the generation service for a Mermaid flowchart of a habit.

        Arguments:
        habit_name -- Name of the habit to visualize
        habit_description -- Optional free-text description

        Response:
        Raw text exactly as the service returned it (may be fenced or wrapped in prose).
        Raises UpstreamGenerationError when no usable text is available.
        """
        pass
