"""
Habit visualizer service

Connects the generation service, the normalizer and the render probe:
Requested -> Normalizing -> Validating -> Rendered | FallbackRendered.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .ai import get_ai
from .ai_base import DiagramTextProvider, UpstreamGenerationError
from .mermaid_fallback import build_fallback
from .mermaid_fixer import normalize_with_report
from .mermaid_render import RenderState, RenderValidationProbe

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    normalized_text: str
    used_fallback: bool

    def to_dict(self) -> dict:
        return {"mermaid_code": self.normalized_text, "used_fallback": self.used_fallback}


@dataclass
class VisualizationOutcome:
    request_id: int
    state: RenderState
    mermaid_code: str
    svg: str
    used_fallback: bool

    def to_dict(self) -> dict:
        return {
            "request_id": self.request_id,
            "state": self.state.value,
            "mermaid_code": self.mermaid_code,
            "svg": self.svg,
            "used_fallback": self.used_fallback,
        }


def _resolve_provider() -> Optional[DiagramTextProvider]:
    try:
        return get_ai()
    except ValueError as e:
        logger.warning(f"Diagram generation unavailable: {e}")
        return None


async def generate_and_normalize(
    habit_name: str,
    habit_description: str = "",
    provider: Optional[DiagramTextProvider] = None,
) -> GenerationResult:
    """
    Generate a diagram for a habit and normalize it.

    Missing credentials, timeouts, transport errors, empty responses and any
    unexpected provider error go straight to the fallback diagram;
    normalization only ever sees real text.
    """
    if provider is None:
        provider = _resolve_provider()
    if provider is None:
        return GenerationResult(build_fallback(habit_name), used_fallback=True)

    try:
        raw_text = await provider.generate_diagram(habit_name, habit_description or "")
    except UpstreamGenerationError as e:
        logger.warning(f"Falling back for '{habit_name}' after generation failure: {e}")
        return GenerationResult(build_fallback(habit_name), used_fallback=True)
    except Exception as e:
        logger.error(f"Unexpected error from diagram provider for '{habit_name}': {e}", exc_info=True)
        return GenerationResult(build_fallback(habit_name), used_fallback=True)

    report = normalize_with_report(raw_text, habit_name)
    return GenerationResult(report.text, used_fallback=report.used_fallback)


class HabitVisualizer:
    """
    Runs generation, normalization and render validation for one client.

    Every visualize() call gets a newer request id; when a call finishes after
    a newer one has started its result is stale and None is returned, so no
    outdated diagram is ever shown (last request wins).
    """

    def __init__(self, probe: RenderValidationProbe, provider: Optional[DiagramTextProvider] = None):
        self.probe = probe
        self.provider = provider
        self.state: Optional[RenderState] = None
        self._latest_request_id = 0

    def _enter(self, request_id: int, state: RenderState) -> None:
        if request_id == self._latest_request_id:
            self.state = state
        logger.info(f"[visualize #{request_id}] {state.value}")

    def _is_stale(self, request_id: int) -> bool:
        if request_id != self._latest_request_id:
            logger.info(f"[visualize #{request_id}] discarded, request #{self._latest_request_id} is newer")
            return True
        return False

    async def visualize(self, habit_name: str, habit_description: str = "") -> Optional[VisualizationOutcome]:
        self._latest_request_id += 1
        request_id = self._latest_request_id
        self._enter(request_id, RenderState.REQUESTED)

        self._enter(request_id, RenderState.NORMALIZING)
        generation = await generate_and_normalize(habit_name, habit_description, self.provider)
        if self._is_stale(request_id):
            return None

        self._enter(request_id, RenderState.VALIDATING)
        outcome = await self.probe.validate(generation.normalized_text, habit_name)
        if self._is_stale(request_id):
            return None

        self._enter(request_id, outcome.state)
        return VisualizationOutcome(
            request_id=request_id,
            state=outcome.state,
            mermaid_code=outcome.mermaid_code,
            svg=outcome.svg,
            used_fallback=generation.used_fallback or outcome.used_fallback,
        )
