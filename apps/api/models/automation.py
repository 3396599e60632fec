"""Automation model: per-workspace notification trigger toggles."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


class Automation(Base):
    """Enabled/disabled switch for one automation type in one workspace."""

    __tablename__ = "automations"
    __table_args__ = (
        UniqueConstraint("workspace_id", "type", name="uq_automations_workspace_type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workspace_id = Column(String, ForeignKey("workspaces.id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # TASK_DONE, DEADLINE, PROJECT_CREATED
    enabled = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    workspace = relationship("Workspace", back_populates="automations")
