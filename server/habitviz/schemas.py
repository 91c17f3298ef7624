from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional


# ===================================================================
# Generation and rendering
# ===================================================================

class GenerateVisualizationRequest(BaseModel):
    """Request to draft a diagram; an empty habit name is rejected by the endpoint"""
    habit_name: str = ""
    habit_description: Optional[str] = ""


class GenerateVisualizationResponse(BaseModel):
    mermaid_code: str
    used_fallback: bool


class RenderVisualizationRequest(BaseModel):
    mermaid_code: str = ""
    habit_name: str = ""


class RenderVisualizationResponse(BaseModel):
    state: str
    mermaid_code: str
    svg: str
    used_fallback: bool


# ===================================================================
# Saved visualizations
# ===================================================================

class SaveVisualizationRequest(BaseModel):
    """Create a visualization, or update one when visualization_id is given"""
    habit_name: str = ""
    habit_description: Optional[str] = ""
    mermaid_code: str = ""
    visualization_id: Optional[int] = None


class SaveVisualizationResponse(BaseModel):
    message: str
    id: int


class VisualizationSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    habit_name: str
    habit_description: str
    updated_at: datetime


class VisualizationRead(VisualizationSummary):
    owner: str
    normalized_code: str
    created_at: datetime
