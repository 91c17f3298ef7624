from __future__ import annotations

import asyncio
import logging
import os

from dotenv import load_dotenv
from openai import AsyncOpenAI, OpenAIError

from habitviz.internal.ai_base import DiagramTextProvider, UpstreamGenerationError
from habitviz.internal.prompt import SYSTEM_PROMPT, format_diagram_prompt

logger = logging.getLogger(__name__)

load_dotenv(override=True)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_MODEL = os.getenv("OPENAI_MODEL") or "gpt-4o"
# Any OpenAI-compatible endpoint works here, e.g. https://api.groq.com/openai/v1
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
DIAGRAM_GENERATION_TIMEOUT = float(os.getenv("DIAGRAM_GENERATION_TIMEOUT") or 20)


def get_ai(
    model: str | None = OPENAI_MODEL,
    api_key: str | None = OPENAI_API_KEY,
    base_url: str | None = OPENAI_BASE_URL,
    timeout: float = DIAGRAM_GENERATION_TIMEOUT,
) -> AI:
    if not api_key or not model:
        raise ValueError("Both API key and model need to be set")
    return AI(api_key, model, base_url=base_url, timeout=timeout)


class AI(DiagramTextProvider):
    def __init__(self, api_key: str, model: str, base_url: str | None = None, timeout: float = DIAGRAM_GENERATION_TIMEOUT):
        self.model = model
        self.timeout = timeout
        self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def generate_diagram(self, habit_name: str, habit_description: str = "") -> str:
        """
        Draft a Mermaid flowchart for a habit.

        Arguments:
        habit_name -- Name of the habit to visualize
        habit_description -- Optional free-text description

        Response:
        The raw message content. Timeouts, API errors and empty or non-text
        content raise UpstreamGenerationError so callers never normalize unusable input.
        """
        logger.info(f"🧠 Requesting diagram for habit '{habit_name}' from {self.model}")
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(
                    model=self.model,
                    temperature=0.5,  # Lower temperature keeps the syntax more consistent
                    max_tokens=1500,
                    messages=[
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {"role": "user", "content": format_diagram_prompt(habit_name, habit_description)},
                    ],
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.error(f"Diagram generation timed out after {self.timeout}s")
            raise UpstreamGenerationError(f"Generation timed out after {self.timeout}s") from e
        except OpenAIError as e:
            logger.error(f"Diagram generation request failed: {e}")
            raise UpstreamGenerationError(f"Generation request failed: {e}") from e

        choice = response.choices[0] if response.choices else None
        content = getattr(getattr(choice, "message", None), "content", None)
        if not isinstance(content, str) or not content.strip():
            logger.error("Diagram generation returned no text content")
            raise UpstreamGenerationError("Generation returned no text content")

        logger.info(f"✅ Received {len(content)} characters of diagram text")
        return content
