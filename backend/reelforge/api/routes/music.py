"""
Music API Routes
"""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from typing import List
from sqlalchemy.orm import Session

from reelforge.api.dependencies import get_project_service, get_session_token
from reelforge.models import get_db
from reelforge.services.project_service import ProjectService


class MusicTrackResponse(BaseModel):
    id: str
    name: str
    url: str
    mood_tag: str


class MusicOptionsResponse(BaseModel):
    tracks: List[MusicTrackResponse]


router = APIRouter()


@router.get("/music/options", response_model=MusicOptionsResponse)
async def get_music_options(
    project_id: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    """Tracks matching the project's mood"""
    return {"tracks": service.music_options(db, project_id, session_token)}
