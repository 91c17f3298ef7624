"""
Mermaid Diagram Renderer

Renders normalized Mermaid into SVG with headless Chromium and validates that
the diagram actually draws. When it does not, the probe substitutes the
fallback diagram once and validates again.
"""

import asyncio
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict

from bs4 import BeautifulSoup
from playwright.async_api import async_playwright

from .mermaid_fallback import build_fallback

logger = logging.getLogger(__name__)

DEFAULT_MERMAID_SCRIPT_URL = "https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js"

# Runs inside the page; mermaid.render rejects on syntax errors
RENDER_SCRIPT = """
async ({ code, options }) => {
    try {
        mermaid.initialize(options);
        const { svg } = await mermaid.render('habit-diagram-' + Date.now(), code);
        return { ok: true, svg: svg };
    } catch (err) {
        return { ok: false, error: String(err && err.message ? err.message : err) };
    }
}
"""


class RenderState(Enum):
    REQUESTED = "requested"
    NORMALIZING = "normalizing"
    VALIDATING = "validating"
    RENDERED = "rendered"
    FALLBACK_RENDERED = "fallback_rendered"


class RenderValidationFailure(Exception):
    """Even the fallback diagram failed to render; this is a defect, not a runtime condition"""


@dataclass
class RendererConfig:
    """Explicit renderer configuration, passed to the renderer instead of global Mermaid state"""
    theme: str = "default"
    security_level: str = "strict"
    font_family: str = "Arial, sans-serif"
    mermaid_script_url: str = DEFAULT_MERMAID_SCRIPT_URL
    render_timeout_ms: int = 10000
    flowchart: Dict[str, Any] = field(default_factory=lambda: {
        "htmlLabels": False,
        "curve": "basis",
        "useMaxWidth": False,
        "nodeSpacing": 30,
        "rankSpacing": 40,
    })

    @classmethod
    def from_env(cls) -> "RendererConfig":
        return cls(
            mermaid_script_url=os.getenv("MERMAID_SCRIPT_URL") or DEFAULT_MERMAID_SCRIPT_URL,
            render_timeout_ms=int(os.getenv("MERMAID_RENDER_TIMEOUT_MS") or 10000),
        )

    def to_mermaid_options(self) -> Dict[str, Any]:
        return {
            "startOnLoad": False,
            "theme": self.theme,
            "securityLevel": self.security_level,
            "fontFamily": self.font_family,
            "flowchart": dict(self.flowchart),
        }


@dataclass
class RenderResult:
    """Outcome of one render attempt"""
    success: bool
    svg: str = ""
    error: str = ""


@dataclass
class ProbeOutcome:
    """Terminal state of render validation"""
    state: RenderState
    mermaid_code: str
    svg: str
    used_fallback: bool
    error: str = ""

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "mermaid_code": self.mermaid_code,
            "svg": self.svg,
            "used_fallback": self.used_fallback,
            "error": self.error,
        }


class DiagramRenderer(ABC):
    """Abstract base class for rendering collaborators"""

    @abstractmethod
    async def render(self, mermaid_code: str) -> RenderResult:
        """Render Mermaid text; failures are reported in the result or raised"""
        pass


def find_svg_error(svg_content: str) -> str:
    """
    Detect Mermaid's error diagram.

    Mermaid sometimes resolves with an SVG that only shows "Syntax error in text"
    instead of rejecting, so the markup is inspected as well.
    """
    if not svg_content or "<svg" not in svg_content:
        return "Renderer returned no SVG"

    soup = BeautifulSoup(svg_content, "html.parser")
    if soup.find(class_="error-icon") or soup.find(class_="error-text"):
        error_text = soup.find(class_="error-text")
        return error_text.get_text().strip() if error_text else "Mermaid rendered an error diagram"
    if "Syntax error in text" in soup.get_text():
        return "Syntax error in text"
    return ""


class MermaidRenderer(DiagramRenderer):
    """Mermaid renderer backed by headless Chromium"""

    def __init__(self, config: RendererConfig):
        self.config = config

    def build_page(self) -> str:
        return f"""
        <!DOCTYPE html>
        <html>
        <head>
            <script src="{self.config.mermaid_script_url}"></script>
            <style>
                body {{ margin: 20px; font-family: {self.config.font_family}; background: white; }}
            </style>
        </head>
        <body></body>
        </html>
        """

    async def render(self, mermaid_code: str) -> RenderResult:
        """
        Render Mermaid syntax to SVG using Playwright

        Args:
            mermaid_code: Normalized Mermaid text

        Returns:
            RenderResult with the SVG, or success=False and the error message
        """
        timeout_seconds = self.config.render_timeout_ms / 1000
        try:
            async with async_playwright() as p:
                browser = await p.chromium.launch(headless=True)
                try:
                    page = await browser.new_page()
                    await page.set_content(self.build_page())
                    await page.wait_for_function(
                        "() => window.mermaid !== undefined",
                        timeout=self.config.render_timeout_ms,
                    )
                    outcome = await asyncio.wait_for(
                        page.evaluate(RENDER_SCRIPT, {
                            "code": mermaid_code,
                            "options": self.config.to_mermaid_options(),
                        }),
                        timeout=timeout_seconds,
                    )
                finally:
                    await browser.close()
        except Exception as e:
            logger.error(f"Mermaid rendering failed: {str(e)}")
            return RenderResult(success=False, error=str(e))

        if not outcome.get("ok"):
            error = outcome.get("error") or "Mermaid rejected the diagram"
            logger.warning(f"Mermaid rejected diagram: {error}")
            return RenderResult(success=False, error=error)

        svg = outcome.get("svg") or ""
        error = find_svg_error(svg)
        if error:
            logger.warning(f"Mermaid produced an error diagram: {error}")
            return RenderResult(success=False, svg=svg, error=error)

        logger.info(f"Mermaid diagram rendered successfully - SVG length: {len(svg)}")
        return RenderResult(success=True, svg=svg)


class RenderValidationProbe:
    """
    Validates normalized Mermaid against the rendering collaborator.

    Validating -> Rendered when the diagram draws; otherwise the fallback
    diagram is substituted exactly once -> FallbackRendered. A failing
    fallback raises RenderValidationFailure and is never retried.
    """

    def __init__(self, renderer: DiagramRenderer, fallback_builder: Callable[[str], str] = build_fallback):
        self.renderer = renderer
        self.fallback_builder = fallback_builder

    async def _attempt(self, mermaid_code: str) -> RenderResult:
        try:
            return await self.renderer.render(mermaid_code)
        except Exception as e:
            logger.error(f"Renderer raised during validation: {e}")
            return RenderResult(success=False, error=str(e))

    async def validate(self, mermaid_code: str, habit_name: str) -> ProbeOutcome:
        fallback_code = self.fallback_builder(habit_name)

        result = await self._attempt(mermaid_code)
        if result.success:
            return ProbeOutcome(RenderState.RENDERED, mermaid_code, result.svg, used_fallback=False)

        if mermaid_code == fallback_code:
            raise RenderValidationFailure(f"Fallback diagram failed to render: {result.error}")

        logger.warning(f"Diagram for '{habit_name}' failed to render, substituting fallback: {result.error}")
        fallback_result = await self._attempt(fallback_code)
        if fallback_result.success:
            return ProbeOutcome(
                RenderState.FALLBACK_RENDERED,
                fallback_code,
                fallback_result.svg,
                used_fallback=True,
                error=result.error,
            )

        logger.error(f"Fallback diagram for '{habit_name}' failed to render: {fallback_result.error}")
        raise RenderValidationFailure(f"Fallback diagram failed to render: {fallback_result.error}")
