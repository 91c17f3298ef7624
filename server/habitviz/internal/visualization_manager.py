"""
Visualization Manager

Stores and retrieves saved habit diagrams. Every operation is scoped by owner;
concurrent saves to the same record follow last-write-wins.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
from datetime import datetime

from ..models import Visualization
from .mermaid_fixer import normalize

logger = logging.getLogger(__name__)


class VisualizationManager:
    """
    Persistence for saved visualizations.

    Incoming Mermaid is normalized before it is written so stored code always
    satisfies the normalization guarantees. Database errors roll back and propagate.
    """

    def __init__(self, db_session: Session):
        self.db = db_session

    def create_visualization(self, owner: str, habit_name: str, habit_description: str,
                             mermaid_code: str) -> Visualization:
        """Save a new visualization"""
        try:
            visualization = Visualization(
                owner=owner,
                habit_name=habit_name,
                habit_description=habit_description or "",
                normalized_code=normalize(mermaid_code, habit_name),
            )
            self.db.add(visualization)
            self.db.commit()
            self.db.refresh(visualization)

            logger.info(f"Saved visualization {visualization.id} for {owner}")
            return visualization

        except Exception as e:
            logger.error(f"Error saving visualization: {e}")
            self.db.rollback()
            raise

    def update_visualization(self, owner: str, visualization_id: int, habit_name: str,
                             habit_description: str, mermaid_code: str) -> Optional[Visualization]:
        """Overwrite an existing visualization; returns None when the owner has no such record"""
        try:
            visualization = self.get_visualization(owner, visualization_id)
            if not visualization:
                return None

            visualization.habit_name = habit_name
            visualization.habit_description = habit_description or ""
            visualization.normalized_code = normalize(mermaid_code, habit_name)
            visualization.updated_at = datetime.utcnow()
            self.db.commit()
            self.db.refresh(visualization)

            logger.info(f"Updated visualization {visualization_id} for {owner}")
            return visualization

        except Exception as e:
            logger.error(f"Error updating visualization {visualization_id}: {e}")
            self.db.rollback()
            raise

    def list_visualizations(self, owner: str) -> List[Visualization]:
        """All visualizations of an owner, most recently updated first"""
        return list(self.db.scalars(
            select(Visualization)
            .where(Visualization.owner == owner)
            .order_by(Visualization.updated_at.desc(), Visualization.id.desc())
        ).all())

    def get_visualization(self, owner: str, visualization_id: int) -> Optional[Visualization]:
        return self.db.scalar(
            select(Visualization)
            .where(Visualization.id == visualization_id, Visualization.owner == owner)
        )

    def delete_visualization(self, owner: str, visualization_id: int) -> bool:
        """Delete a visualization; returns False when the owner has no such record"""
        try:
            visualization = self.get_visualization(owner, visualization_id)
            if not visualization:
                return False

            self.db.delete(visualization)
            self.db.commit()
            logger.info(f"Deleted visualization {visualization_id} for {owner}")
            return True

        except Exception as e:
            logger.error(f"Error deleting visualization {visualization_id}: {e}")
            self.db.rollback()
            raise


def get_visualization_manager(db: Session) -> VisualizationManager:
    """Get a VisualizationManager bound to a database session"""
    return VisualizationManager(db)
