"""
Project Service - Wizard steps ahead of rendering (inspiration, story, scenes, images, music)
"""

import asyncio
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlalchemy.orm import Session

from reelforge.config.constants import (
    MAX_SCENES,
    MIN_SCENES,
    MOODBOARD_COUNT,
    MOODBOARD_IMAGES,
    MOODBOARD_VARIATIONS,
)
from reelforge.config.settings import settings
from reelforge.core.llm_orchestrator import StorylineOption, StoryWriter
from reelforge.core.prompt_compiler import PromptCompiler
from reelforge.core.provider import GenerationProvider
from reelforge.models.job import JobKind, JobStatus
from reelforge.models.project import ProjectModel, ProjectStatus
from reelforge.services.error_classifier import ErrorClassifier
from reelforge.services.errors import InvalidTransitionError, NotFoundError, PreconditionError
from reelforge.services.job_state import transition_project
from reelforge.services.music import get_music_options, get_music_track
from reelforge.services.observability import logger, log_failure_classification
from reelforge.services.storage import JobDB, ProjectDB


class ProjectService:
    """
    Session-scoped project operations used by the API
    """

    def __init__(
        self,
        provider: GenerationProvider,
        relocator: Any,
        story_writer: Optional[StoryWriter] = None,
        prompt_compiler: Optional[PromptCompiler] = None,
    ):
        """Initialize project service"""
        self.provider = provider
        self.relocator = relocator
        self.story_writer = story_writer or StoryWriter()
        self.prompt_compiler = prompt_compiler or PromptCompiler()
        self.error_classifier = ErrorClassifier()

    def get_owned(self, db: Session, project_id: str, session_token: str) -> ProjectModel:
        """
        Raises:
            NotFoundError: Project missing or owned by another session
        """
        project = ProjectDB.get_for_session(db, project_id, session_token)
        if project is None:
            raise NotFoundError("Project not found or access denied")
        return project

    def create_project(
        self,
        db: Session,
        session_token: str,
        product_prompt: str,
        mood_prompt: Optional[str] = None,
    ) -> ProjectModel:
        if not product_prompt or not product_prompt.strip():
            raise PreconditionError("product_prompt is required")
        project = ProjectDB.create_project(
            db,
            session_token=session_token,
            product_prompt=product_prompt.strip(),
            mood_prompt=mood_prompt.strip() if mood_prompt else None,
        )
        logger.info("project_created", project_id=project.id)
        return project

    def delete_project(self, db: Session, project_id: str, session_token: str) -> None:
        self.get_owned(db, project_id, session_token)
        ProjectDB.delete_project(db, project_id)
        logger.info("project_deleted", project_id=project_id)

    def _require_inspire(self, project: ProjectModel, step: str) -> None:
        if project.status != ProjectStatus.INSPIRE.value:
            raise InvalidTransitionError(
                f"{step} belong to the inspire step (project is {project.status})"
            )

    def _write_inspiration(self, db: Session, project_id: str, **fields) -> ProjectModel:
        """Store inspire-step fields only while the project is still in that step"""
        inspire = ProjectStatus.INSPIRE.value
        if not ProjectDB.transition_status(db, project_id, inspire, [inspire], **fields):
            raise InvalidTransitionError(f"Project {project_id} left the inspire step")
        return ProjectDB.get_project(db, project_id)

    async def generate_moodboards(
        self,
        db: Session,
        project_id: str,
        session_token: str,
    ) -> ProjectModel:
        """
        Generate MOODBOARD_COUNT moodboards of MOODBOARD_IMAGES images each

        Every moodboard looks at the product and mood through a different
        visual variation. A board with a failed image is left out and the
        others are kept. Regenerating replaces the boards and clears the likes.

        Raises:
            InvalidTransitionError: Project is past the inspire step
        """
        project = self.get_owned(db, project_id, session_token)
        self._require_inspire(project, "Moodboards")
        product_prompt, mood_prompt = project.product_prompt, project.mood_prompt

        moodboards: List[Dict[str, Any]] = []
        for variation in MOODBOARD_VARIATIONS[:MOODBOARD_COUNT]:
            prompt = self.prompt_compiler.compile_moodboard_prompt(product_prompt, mood_prompt, variation)
            board = await self._generate_moodboard(db, project_id, prompt)
            if board is not None:
                moodboards.append(board)

        logger.info("moodboards_generated", project_id=project_id, moodboard_count=len(moodboards))
        return self._write_inspiration(db, project_id, moodboards=moodboards, liked_moodboard_ids=[])

    async def _generate_moodboard(
        self,
        db: Session,
        project_id: str,
        prompt: str,
    ) -> Optional[Dict[str, Any]]:
        board_id = str(uuid.uuid4())
        images: List[Dict[str, str]] = []
        for _ in range(MOODBOARD_IMAGES):
            image_id = str(uuid.uuid4())
            image_url = await self._run_image_job(
                db,
                project_id,
                prompt,
                f"moodboards/{project_id}/{board_id}/{image_id}.png",
            )
            if image_url is None:
                logger.warning("moodboard_skipped", project_id=project_id, prompt=prompt)
                return None
            images.append({"id": image_id, "url": image_url})
        return {"id": board_id, "prompt": prompt, "images": images}

    def like_moodboards(
        self,
        db: Session,
        project_id: str,
        session_token: str,
        moodboard_ids: List[str],
    ) -> ProjectModel:
        """
        Replace the liked moodboards; the project stays in the inspire step

        Raises:
            PreconditionError: An id is not one of the project's moodboards
            InvalidTransitionError: Project is past the inspire step
        """
        project = self.get_owned(db, project_id, session_token)
        self._require_inspire(project, "Moodboard likes")

        known = {board["id"] for board in project.moodboards or []}
        unknown = [moodboard_id for moodboard_id in moodboard_ids if moodboard_id not in known]
        if unknown:
            raise PreconditionError(f"Unknown moodboards: {', '.join(unknown)}")

        liked = list(dict.fromkeys(moodboard_ids))
        logger.info("moodboards_liked", project_id=project_id, liked_count=len(liked))
        return self._write_inspiration(db, project_id, liked_moodboard_ids=liked)

    async def generate_storylines(
        self,
        db: Session,
        project_id: str,
        session_token: str,
    ) -> ProjectModel:
        """
        Have the story writer propose storyline options, informed by the liked moodboards

        Raises:
            InvalidTransitionError: Project is past the inspire step
        """
        project = self.get_owned(db, project_id, session_token)
        self._require_inspire(project, "Storylines")

        options = await asyncio.to_thread(
            self.story_writer.write_storylines,
            project.product_prompt,
            project.mood_prompt,
            len(project.liked_moodboard_ids or []),
        )
        return self._write_inspiration(
            db,
            project_id,
            storyline_options=[option.model_dump() for option in options],
        )

    def select_storyline(
        self,
        db: Session,
        project_id: str,
        session_token: str,
        index: int,
    ) -> ProjectModel:
        """
        Keep one storyline option as the project storyline

        The scene step then follows it unless given another storyline.

        Raises:
            PreconditionError: Index does not point at an option
            InvalidTransitionError: Project is past the inspire step
        """
        project = self.get_owned(db, project_id, session_token)
        self._require_inspire(project, "Storylines")

        options = project.storyline_options or []
        if not 0 <= index < len(options):
            raise PreconditionError(f"Invalid storyline index {index} ({len(options)} options)")

        storyline = StorylineOption(**options[index]).as_text()
        logger.info("storyline_selected", project_id=project_id, index=index)
        return self._write_inspiration(db, project_id, storyline=storyline)

    async def set_scenes(
        self,
        db: Session,
        project_id: str,
        session_token: str,
        storyline: Optional[str] = None,
        blurbs: Optional[List[Dict[str, Optional[str]]]] = None,
    ) -> ProjectModel:
        """
        Store the storyboard and move the project inspire -> story

        Args:
            db: Database session
            project_id: Project identifier
            session_token: Owning session
            storyline: Storyline to follow; defaults to the selected storyline option
            blurbs: Scenes given directly as {"blurb", "title"} dicts; when
                omitted the story writer generates them

        Returns:
            Updated project

        Raises:
            InvalidTransitionError: Project is past the inspire step
            PreconditionError: Scene count outside MIN_SCENES..MAX_SCENES
        """
        project = self.get_owned(db, project_id, session_token)
        if project.status != ProjectStatus.INSPIRE.value:
            raise InvalidTransitionError(
                f"Scenes can only be set in the inspire step (project is {project.status})"
            )
        storyline = storyline or project.storyline

        if blurbs is None:
            storyboard = await asyncio.to_thread(
                self.story_writer.write_storyboard,
                project.product_prompt,
                project.mood_prompt,
                storyline,
            )
            storyline = storyboard.storyline
            blurbs = [{"blurb": scene.blurb, "title": scene.title} for scene in storyboard.scenes]

        cleaned = [item for item in blurbs if (item.get("blurb") or "").strip()]
        if not MIN_SCENES <= len(cleaned) <= MAX_SCENES:
            raise PreconditionError(
                f"A storyboard needs between {MIN_SCENES} and {MAX_SCENES} scenes, got {len(cleaned)}"
            )

        scenes = [
            ProjectModel.new_scene(item["blurb"].strip(), title=item.get("title"))
            for item in cleaned
        ]
        ProjectDB.update_project(db, project_id, scenes=scenes, storyline=storyline)
        return transition_project(db, project_id, ProjectStatus.STORY.value)

    async def generate_scene_images(
        self,
        db: Session,
        project_id: str,
        session_token: str,
    ) -> ProjectModel:
        """
        Generate an image for every scene that lacks one

        A failing scene is recorded as an errored image-gen job and skipped;
        the other scenes still get their images.

        Raises:
            PreconditionError: Project has no scenes
            InvalidTransitionError: Project is not in the story step
        """
        project = self.get_owned(db, project_id, session_token)
        if project.status != ProjectStatus.STORY.value:
            raise InvalidTransitionError(
                f"Images are generated in the story step (project is {project.status})"
            )

        scenes = project.scene_list()
        if not scenes:
            raise PreconditionError("No scenes found for this project")

        for scene in scenes:
            if scene.get("image_url"):
                continue
            image_url = await self._run_image_job(
                db,
                project_id,
                self.prompt_compiler.compile_image_prompt(scene),
                f"images/{project_id}/{scene['id']}.png",
            )
            if image_url:
                self._set_scene_image(db, project_id, scene["id"], image_url)

        return ProjectDB.get_project(db, project_id)

    async def _run_image_job(
        self,
        db: Session,
        project_id: str,
        prompt: str,
        destination_hint: str,
    ) -> Optional[str]:
        """Generate one image as an image-gen job; None when the provider failed"""
        job = JobDB.create_job(
            db,
            project_id=project_id,
            kind=JobKind.IMAGE_GEN.value,
            status=JobStatus.RUNNING.value,
            submitted_at=datetime.utcnow(),
        )
        start_time = datetime.utcnow()

        try:
            snapshot = await self.provider.run_image(prompt)
        except Exception as e:
            classified = self.error_classifier.classify(e)
            log_failure_classification(
                error_code=classified["code"],
                classification=classified["classification"],
                retryable=classified["retryable"],
                job_id=job.id,
            )
            JobDB.finish_job(
                db,
                job.id,
                JobStatus.ERROR.value,
                error_code=classified["code"],
                error_message=classified["message"],
                completed_at=datetime.utcnow(),
            )
            return None

        raw_url = snapshot.output.first_url
        try:
            image_url = await self.relocator.relocate(raw_url, destination_hint)
        except Exception as e:
            logger.warning("asset_relocation_fallback", url=raw_url, error=str(e))
            image_url = raw_url

        JobDB.finish_job(
            db,
            job.id,
            JobStatus.SUCCESS.value,
            external_run_ref=snapshot.run_ref or None,
            output_urls=[image_url],
            cost=settings.image_cost_per_run,
            duration_ms=int((datetime.utcnow() - start_time).total_seconds() * 1000),
            completed_at=datetime.utcnow(),
        )
        logger.info("image_generated", project_id=project_id, destination=destination_hint, job_id=job.id)
        return image_url

    def _set_scene_image(self, db: Session, project_id: str, scene_id: str, image_url: str) -> None:
        def mutate(scenes: List[Dict[str, Any]]) -> bool:
            for scene in scenes:
                if scene["id"] == scene_id and not scene.get("image_url"):
                    scene["image_url"] = image_url
                    return True
            return False

        ProjectDB.update_scenes(db, project_id, mutate)

    def approve_scene_images(self, db: Session, project_id: str, session_token: str) -> ProjectModel:
        """
        Raises:
            PreconditionError: Some scene has no image
            InvalidTransitionError: Project is not in the story step
        """
        project = self.get_owned(db, project_id, session_token)
        scenes = project.scene_list()
        if not scenes or any(not scene.get("image_url") for scene in scenes):
            raise PreconditionError("Every scene needs an image before approval")
        return transition_project(db, project_id, ProjectStatus.RENDERING.value)

    def music_options(self, db: Session, project_id: str, session_token: str) -> List[Dict[str, str]]:
        project = self.get_owned(db, project_id, session_token)
        return get_music_options(project.mood_prompt)

    def select_music(
        self,
        db: Session,
        project_id: str,
        session_token: str,
        track_id: str,
    ) -> ProjectModel:
        """
        Store the music track (set once)

        Raises:
            PreconditionError: Unknown track id
            InvalidTransitionError: A different track was already selected
        """
        project = self.get_owned(db, project_id, session_token)
        if get_music_track(track_id) is None:
            raise PreconditionError(f"Unknown music track: {track_id}")

        if project.music_track_id == track_id:
            return project
        if not ProjectDB.set_music_once(db, project_id, track_id):
            raise InvalidTransitionError("Music has already been selected for this project")

        logger.info("music_selected", project_id=project_id, track_id=track_id)
        return ProjectDB.get_project(db, project_id)
