from contextlib import asynccontextmanager
import logging
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from habitviz.internal.ai import get_ai
from habitviz.internal.ai_base import DiagramTextProvider
from habitviz.internal.db import Base, engine, get_db
from habitviz.internal.mermaid_render import (
    MermaidRenderer,
    RendererConfig,
    RenderValidationFailure,
    RenderValidationProbe,
)
from habitviz.internal.mermaid_fixer import normalize
from habitviz.internal.visualization_manager import get_visualization_manager
from habitviz.internal.visualizer import generate_and_normalize

import habitviz.schemas as schemas

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create the database tables on startup"""
    Base.metadata.create_all(bind=engine)
    yield


app = FastAPI(lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ===================================================================
# Dependencies
# ===================================================================

def get_owner(x_user_id: Optional[str] = Header(default=None)) -> str:
    """
    Identify the caller.

    Authentication happens upstream; the gateway forwards the user id in X-User-Id.
    """
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_id.strip()


def get_text_provider() -> Optional[DiagramTextProvider]:
    """Generation service, or None when credentials are not configured"""
    try:
        return get_ai()
    except ValueError as e:
        logger.warning(f"AI service unavailable, diagrams will use the fallback: {e}")
        return None


def get_render_probe() -> RenderValidationProbe:
    return RenderValidationProbe(MermaidRenderer(RendererConfig.from_env()))


# ===================================================================
# Generation and rendering
# ===================================================================

@app.post("/api/visualizer/generate")
async def generate_visualization(
    request: schemas.GenerateVisualizationRequest,
    owner: str = Depends(get_owner),
    provider: Optional[DiagramTextProvider] = Depends(get_text_provider),
) -> schemas.GenerateVisualizationResponse:
    """
    Draft a diagram for a habit.

    Nothing is persisted here; the diagram is stored only when the user saves it.
    """
    if not request.habit_name.strip():
        raise HTTPException(status_code=400, detail="Habit name is required")

    logger.info(f"Generating visualization for {owner}: '{request.habit_name}'")
    result = await generate_and_normalize(request.habit_name, request.habit_description or "", provider)
    return schemas.GenerateVisualizationResponse(
        mermaid_code=result.normalized_text,
        used_fallback=result.used_fallback,
    )


@app.post("/api/visualizer/render")
async def render_visualization(
    request: schemas.RenderVisualizationRequest,
    owner: str = Depends(get_owner),
    probe: RenderValidationProbe = Depends(get_render_probe),
) -> schemas.RenderVisualizationResponse:
    """Normalize and render a diagram, substituting the fallback if it does not draw"""
    if not request.mermaid_code.strip() and not request.habit_name.strip():
        raise HTTPException(status_code=400, detail="Mermaid code or habit name is required")

    normalized = normalize(request.mermaid_code, request.habit_name)
    try:
        outcome = await probe.validate(normalized, request.habit_name)
    except RenderValidationFailure as e:
        logger.error(f"Render validation failed for {owner}: {e}")
        raise HTTPException(status_code=502, detail="Diagram rendering is unavailable")

    return schemas.RenderVisualizationResponse(
        state=outcome.state.value,
        mermaid_code=outcome.mermaid_code,
        svg=outcome.svg,
        used_fallback=outcome.used_fallback,
    )


# ===================================================================
# Saved visualizations
# ===================================================================

@app.post("/api/visualizer/save")
def save_visualization(
    request: schemas.SaveVisualizationRequest,
    owner: str = Depends(get_owner),
    db: Session = Depends(get_db),
) -> schemas.SaveVisualizationResponse:
    """Create a visualization, or overwrite one when visualization_id is given"""
    if not request.habit_name.strip() or not request.mermaid_code.strip():
        raise HTTPException(status_code=400, detail="Habit name and mermaid code are required")

    manager = get_visualization_manager(db)
    if request.visualization_id is not None:
        visualization = manager.update_visualization(
            owner,
            request.visualization_id,
            request.habit_name,
            request.habit_description or "",
            request.mermaid_code,
        )
        if not visualization:
            raise HTTPException(status_code=404, detail="Visualization not found")
    else:
        visualization = manager.create_visualization(
            owner,
            request.habit_name,
            request.habit_description or "",
            request.mermaid_code,
        )

    return schemas.SaveVisualizationResponse(message="Visualization saved successfully", id=visualization.id)


@app.get("/api/visualizer/all")
def get_all_visualizations(
    owner: str = Depends(get_owner),
    db: Session = Depends(get_db),
) -> List[schemas.VisualizationSummary]:
    visualizations = get_visualization_manager(db).list_visualizations(owner)
    return [schemas.VisualizationSummary.model_validate(v) for v in visualizations]


@app.get("/api/visualizer/{visualization_id}")
def get_visualization(
    visualization_id: int,
    owner: str = Depends(get_owner),
    db: Session = Depends(get_db),
) -> schemas.VisualizationRead:
    visualization = get_visualization_manager(db).get_visualization(owner, visualization_id)
    if not visualization:
        raise HTTPException(status_code=404, detail="Visualization not found")
    return schemas.VisualizationRead.model_validate(visualization)


@app.delete("/api/visualizer/{visualization_id}")
def delete_visualization(
    visualization_id: int,
    owner: str = Depends(get_owner),
    db: Session = Depends(get_db),
):
    if not get_visualization_manager(db).delete_visualization(owner, visualization_id):
        raise HTTPException(status_code=404, detail="Visualization not found")
    return {"message": "Visualization deleted successfully"}
