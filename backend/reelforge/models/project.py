"""
Project Model
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from sqlalchemy import Column, Float, Integer, String, JSON, DateTime, Index

from reelforge.models import Base


class ProjectStatus(str, Enum):
    """Wizard lifecycle states"""

    INSPIRE = "inspire"
    STORY = "story"
    RENDERING = "rendering"
    COMPLETE = "complete"
    ERROR = "error"


class ProjectModel(Base):
    """
    Project - Accumulated state of one wizard session

    Scenes are embedded as an ordered JSON array of dicts with the keys
    id, title, blurb, image_url, video_url, video_job_id. Their order is the
    clip order of the final video.

    Moodboards are {"id", "prompt", "images": [{"id", "url"}]} dicts;
    storyline options are {"title", "overview", "scenes"} dicts.
    """

    __tablename__ = "projects"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    session_token = Column(String, nullable=False, index=True)

    # Prompts
    product_prompt = Column(String, nullable=False)
    mood_prompt = Column(String, nullable=True)
    storyline = Column(String, nullable=True)

    # Inspiration step
    moodboards = Column(JSON, nullable=False, default=list)
    liked_moodboard_ids = Column(JSON, nullable=False, default=list)
    storyline_options = Column(JSON, nullable=False, default=list)

    # Scenes (embedded)
    scenes = Column(JSON, nullable=False, default=list)

    status = Column(String, nullable=False, default=ProjectStatus.INSPIRE.value)

    # Set once
    music_track_id = Column(String, nullable=True)
    final_video_url = Column(String, nullable=True)

    # Rollups written at compose completion
    total_cost = Column(Float, nullable=True)
    total_generation_ms = Column(Integer, nullable=True)

    # Optimistic lock for the embedded scene array
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_projects_session_created", "session_token", "created_at"),
    )

    def scene_list(self) -> List[Dict[str, Any]]:
        """Return a detached copy of the scene array, safe to mutate"""
        return [dict(scene) for scene in (self.scenes or [])]

    def to_dict(self) -> dict:
        """Convert project model to dictionary"""
        return {
            "id": self.id,
            "product_prompt": self.product_prompt,
            "mood_prompt": self.mood_prompt,
            "storyline": self.storyline,
            "moodboards": list(self.moodboards or []),
            "liked_moodboard_ids": list(self.liked_moodboard_ids or []),
            "storyline_options": list(self.storyline_options or []),
            "scenes": self.scene_list(),
            "status": self.status,
            "music_track_id": self.music_track_id,
            "final_video_url": self.final_video_url,
            "total_cost": self.total_cost,
            "total_generation_ms": self.total_generation_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @staticmethod
    def new_scene(blurb: str, title: Optional[str] = None) -> Dict[str, Any]:
        """Build an embedded scene record"""
        return {
            "id": str(uuid.uuid4()),
            "title": title,
            "blurb": blurb,
            "image_url": None,
            "video_url": None,
            "video_job_id": None,
        }
