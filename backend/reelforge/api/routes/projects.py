"""
Project API Routes - Wizard steps, rendering and status
"""

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from reelforge.api.dependencies import get_engine, get_project_service, get_session_token
from reelforge.config.constants import MAX_SCENES
from reelforge.models import get_db
from reelforge.services.observability import logger
from reelforge.services.project_service import ProjectService
from reelforge.services.storage import ProjectDB
from reelforge.services.reconciler import ReconciliationEngine
from reelforge.workers.reconcile_tasks import schedule_reconcile_pass


# Request/Response Models


class CreateProjectRequest(BaseModel):
    """Request to start a project"""

    product_prompt: str = Field(..., min_length=1, description="What the ad is for")
    mood_prompt: Optional[str] = Field(None, description="Desired mood of the ad")


class SceneInput(BaseModel):
    blurb: str = Field(..., min_length=1)
    title: Optional[str] = None


class SetScenesRequest(BaseModel):
    """Either scenes to store as-is, or nothing to have them written from the prompts"""

    storyline: Optional[str] = None
    scenes: Optional[List[SceneInput]] = Field(None, max_length=MAX_SCENES)


class SceneResponse(BaseModel):
    id: str
    title: Optional[str] = None
    blurb: str
    image_url: Optional[str] = None
    video_url: Optional[str] = None
    video_job_id: Optional[str] = None


class MoodboardImageResponse(BaseModel):
    id: str
    url: str


class MoodboardResponse(BaseModel):
    id: str
    prompt: str
    images: List[MoodboardImageResponse]


class StorylineOptionResponse(BaseModel):
    title: str
    overview: str
    scenes: List[str]


class ProjectResponse(BaseModel):
    """Project as seen by the wizard"""

    id: str
    product_prompt: str
    mood_prompt: Optional[str] = None
    storyline: Optional[str] = None
    moodboards: List[MoodboardResponse] = []
    liked_moodboard_ids: List[str] = []
    storyline_options: List[StorylineOptionResponse] = []
    scenes: List[SceneResponse]
    status: str
    music_track_id: Optional[str] = None
    final_video_url: Optional[str] = None
    total_cost: Optional[float] = None
    total_generation_ms: Optional[int] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ActiveProjectResponse(BaseModel):
    project: Optional[ProjectResponse] = None


class LikeMoodboardsRequest(BaseModel):
    moodboard_ids: List[str] = Field(..., description="Moodboards the user liked; replaces earlier likes")


class SelectStorylineRequest(BaseModel):
    index: int = Field(..., ge=0, description="Position in storyline_options")


class StorylinesResponse(BaseModel):
    storylines: List[StorylineOptionResponse]


class SelectMusicRequest(BaseModel):
    track_id: str = Field(..., min_length=1)


class StartVideosResponse(BaseModel):
    project_id: str
    job_ids: List[str]
    status: Dict[str, Any]


# Router
router = APIRouter()


@router.post("/projects", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    project = service.create_project(db, session_token, request.product_prompt, request.mood_prompt)
    return project.to_dict()


@router.get("/projects/active", response_model=ActiveProjectResponse)
async def get_active_project(
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
):
    """Latest project of this session that has not completed"""
    project = ProjectDB.get_active(db, session_token)
    return {"project": project.to_dict() if project else None}


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    return service.get_owned(db, project_id, session_token).to_dict()


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    """Delete the project and all of its jobs (the only way out of complete/error)"""
    service.delete_project(db, project_id, session_token)


@router.post("/projects/{project_id}/moodboards", response_model=ProjectResponse)
async def generate_moodboards(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    """Generate the moodboards of the inspire step, replacing earlier ones"""
    project = await service.generate_moodboards(db, project_id, session_token)
    return project.to_dict()


@router.post("/projects/{project_id}/moodboards/like", response_model=ProjectResponse)
async def like_moodboards(
    project_id: str,
    request: LikeMoodboardsRequest,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    return service.like_moodboards(db, project_id, session_token, request.moodboard_ids).to_dict()


@router.post("/projects/{project_id}/storylines", response_model=ProjectResponse)
async def generate_storylines(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    project = await service.generate_storylines(db, project_id, session_token)
    return project.to_dict()


@router.get("/projects/{project_id}/storylines", response_model=StorylinesResponse)
async def get_storylines(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    project = service.get_owned(db, project_id, session_token)
    return {"storylines": list(project.storyline_options or [])}


@router.post("/projects/{project_id}/storylines/select", response_model=ProjectResponse)
async def select_storyline(
    project_id: str,
    request: SelectStorylineRequest,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    """Keep one storyline option; the scene step follows it"""
    return service.select_storyline(db, project_id, session_token, request.index).to_dict()


@router.post("/projects/{project_id}/scenes", response_model=ProjectResponse)
async def set_scenes(
    project_id: str,
    request: SetScenesRequest,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    blurbs = None
    if request.scenes is not None:
        blurbs = [{"blurb": scene.blurb, "title": scene.title} for scene in request.scenes]
    project = await service.set_scenes(
        db,
        project_id,
        session_token,
        storyline=request.storyline,
        blurbs=blurbs,
    )
    return project.to_dict()


@router.post("/projects/{project_id}/scenes/images", response_model=ProjectResponse)
async def generate_scene_images(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    project = await service.generate_scene_images(db, project_id, session_token)
    return project.to_dict()


@router.post("/projects/{project_id}/scenes/images/approve", response_model=ProjectResponse)
async def approve_scene_images(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    return service.approve_scene_images(db, project_id, session_token).to_dict()


@router.post("/projects/{project_id}/music/select", response_model=ProjectResponse)
async def select_music(
    project_id: str,
    request: SelectMusicRequest,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
):
    return service.select_music(db, project_id, session_token, request.track_id).to_dict()


@router.post(
    "/projects/{project_id}/videos/start",
    response_model=StartVideosResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_videos(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Submit a video job for every scene that needs one.

    Safe to call repeatedly; scenes with a job in flight are left alone.
    """
    service.get_owned(db, project_id, session_token)
    job_ids = await engine.ensure_video_jobs(db, project_id)
    schedule_reconcile_pass(project_id)

    logger.info("videos_start_request", project_id=project_id, job_count=len(job_ids))
    return {
        "project_id": project_id,
        "job_ids": job_ids,
        "status": engine.status_report(db, project_id).to_dict(),
    }


@router.get("/projects/{project_id}/status")
async def get_status(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """
    Run one reconciliation pass and return status, progress and jobs.
    """
    service.get_owned(db, project_id, session_token)
    report = await engine.reconcile(db, project_id)
    return report.to_dict()


@router.post("/projects/{project_id}/compose")
async def compose_project(
    project_id: str,
    db: Session = Depends(get_db),
    session_token: str = Depends(get_session_token),
    service: ProjectService = Depends(get_project_service),
    engine: ReconciliationEngine = Depends(get_engine),
):
    """Compose the final video; repeated calls return the existing result"""
    service.get_owned(db, project_id, session_token)
    result = await engine.finalize_composition(db, project_id)
    if result.status == "error":
        report = engine.status_report(db, project_id)
        return {**result.to_dict(), "error_reason": report.error_reason}
    return result.to_dict()

