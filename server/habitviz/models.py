from sqlalchemy import Column, Integer, String, DateTime
from datetime import datetime

from habitviz.internal.db import Base


class Visualization(Base):
    """
    Saved habit diagram

    normalized_code always holds normalized Mermaid (or the fallback diagram);
    it only changes through a new save.
    """
    __tablename__ = "visualization"

    id = Column(Integer, primary_key=True, index=True)

    # Owner of the diagram - every lookup is scoped by owner
    owner = Column(String, nullable=False, index=True)

    habit_name = Column(String, nullable=False)
    habit_description = Column(String, nullable=False, default="")
    normalized_code = Column(String, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<Visualization(id={self.id}, owner={self.owner}, habit={self.habit_name})>"

    def to_summary(self):
        """Fields shown in the saved diagrams list"""
        return {
            "id": self.id,
            "habit_name": self.habit_name,
            "habit_description": self.habit_description,
            "updated_at": self.updated_at.isoformat(),
        }
