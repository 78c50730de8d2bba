"""
Reconciliation Engine - Converges a project's scenes, jobs and provider runs

Every entry point re-reads the store, so the engine holds no state between
calls and may be driven concurrently by status polls, webhooks and the rq
worker. Completion is applied through one conditional terminal write per job;
whoever wins that write performs the side effects.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterator, List, Optional
from sqlalchemy.orm import Session

from reelforge.config.constants import (
    ACTIVE_JOB_STATUSES,
    CLIP_DURATION_S,
    FAILURE_SOURCE_PROVIDER,
    FAILURE_SOURCE_SUBMIT,
    MAX_RESUBMISSIONS_PER_PASS,
    UNSUBMITTED_GRACE_S,
)
from reelforge.config.settings import settings as default_settings
from reelforge.core.prompt_compiler import PromptCompiler
from reelforge.core.provider import GenerationProvider, ProviderSnapshot, ProviderState, VideoRequest
from reelforge.models.job import JobKind, JobModel, JobStatus
from reelforge.models.project import ProjectModel, ProjectStatus
from reelforge.services.error_classifier import ErrorClassifier
from reelforge.services.errors import InvalidTransitionError, NotFoundError, PreconditionError
from reelforge.services.job_state import allowed_sources, is_terminal_project_status, mark_project_error
from reelforge.services.music import get_music_track
from reelforge.services.observability import (
    logger,
    log_compose_completed,
    log_correlation_divergence,
    log_failure_classification,
    log_retry_scheduled,
)
from reelforge.services.storage import JobDB, ProjectDB


# Scene match strategies, in resolution order
MATCH_EXACT = "exact"
MATCH_CONTENT = "content"
MATCH_POSITIONAL = "positional"


@dataclass
class SceneMatch:
    """Outcome of mapping a job back to a scene"""

    scene_id: Optional[str] = None
    strategy: Optional[str] = None
    reason: Optional[str] = None

    @property
    def matched(self) -> bool:
        return self.scene_id is not None


@dataclass
class CompletionResult:
    """What apply_completion did with one provider signal"""

    job_id: str
    applied: bool
    job_status: str
    scene_id: Optional[str] = None
    divergence: Optional[str] = None


@dataclass
class ProgressReport:
    total: int
    completed: int
    in_progress: int
    current_index: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "completed": self.completed,
            "in_progress": self.in_progress,
            "current_index": self.current_index,
        }


@dataclass
class StatusReport:
    """Externally visible projection of a project"""

    project_id: str
    status: str
    progress: ProgressReport
    jobs: List[Dict[str, Any]] = field(default_factory=list)
    final_video_url: Optional[str] = None
    error_reason: Optional[str] = None
    divergences: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "status": self.status,
            "progress": self.progress.to_dict(),
            "jobs": self.jobs,
            "final_video_url": self.final_video_url,
            "error_reason": self.error_reason,
            "divergences": self.divergences,
        }


@dataclass
class ComposeResult:
    project_id: str
    status: str
    applied: bool
    job_id: Optional[str] = None
    final_video_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "status": self.status,
            "applied": self.applied,
            "job_id": self.job_id,
            "final_video_url": self.final_video_url,
        }


def _iter_strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _iter_strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _iter_strings(item)


class ReconciliationEngine:
    """
    Drive every scene of a project to a video, then to one composed film

    Collaborators are injected so tests can substitute doubles:
    provider (GenerationProvider), relocator (has async relocate(url, hint)),
    compositor (has async compose(clip_urls, music_url, project_id)).
    """

    def __init__(
        self,
        provider: GenerationProvider,
        relocator: Any,
        compositor: Any,
        settings: Any = None,
        prompt_compiler: Optional[PromptCompiler] = None,
    ):
        """Initialize reconciliation engine"""
        self.provider = provider
        self.relocator = relocator
        self.compositor = compositor
        self.settings = settings or default_settings
        self.prompt_compiler = prompt_compiler or PromptCompiler()
        self.error_classifier = ErrorClassifier()
        self.logger = logger.bind(service="reconciler")

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def retry_cap(self, job: JobModel) -> int:
        """Cap for the chain this job belongs to, by the kind of its last failure"""
        if job.failure_source == FAILURE_SOURCE_PROVIDER:
            return self.settings.max_provider_retries
        return self.settings.max_start_retries

    def is_exhausted(self, job: JobModel) -> bool:
        return job.status == JobStatus.ERROR.value and job.retries >= self.retry_cap(job)

    def _exhaust_project(self, db: Session, job: JobModel) -> None:
        moved = mark_project_error(db, job.project_id)
        self.logger.warning(
            "retry_budget_exhausted",
            project_id=job.project_id,
            job_id=job.id,
            retries=job.retries,
            cap=self.retry_cap(job),
            project_marked_error=moved,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _get_project(self, db: Session, project_id: str) -> ProjectModel:
        project = ProjectDB.get_project(db, project_id)
        if project is None:
            raise NotFoundError(f"Project {project_id} not found")
        return project

    async def ensure_video_jobs(self, db: Session, project_id: str) -> List[str]:
        """
        Make sure every scene without a video has a job in flight

        Args:
            db: Database session
            project_id: Project identifier

        Returns:
            Job ids now associated with the project's unfinished scenes

        Raises:
            NotFoundError: Unknown project
            PreconditionError: Scenes missing or without images
            InvalidTransitionError: Project already complete or failed
        """
        project = self._get_project(db, project_id)

        if is_terminal_project_status(project.status):
            raise InvalidTransitionError(
                f"Project {project_id} is {project.status}; start a new project to render again"
            )

        scenes = project.scene_list()
        if not scenes:
            raise PreconditionError("Project has no scenes")
        missing = [scene["id"] for scene in scenes if not scene.get("image_url")]
        if missing:
            raise PreconditionError(
                f"{len(missing)} scene(s) have no image yet; generate images before videos"
            )

        # Rendering even when some submissions below fail
        ProjectDB.transition_status(
            db, project_id, ProjectStatus.RENDERING.value, allowed_sources(ProjectStatus.RENDERING.value)
        )

        job_ids: List[str] = []
        for scene in scenes:
            if scene.get("video_url"):
                continue

            job = JobDB.get_job(db, scene.get("video_job_id"))

            if job is not None and job.status in ACTIVE_JOB_STATUSES:
                if (
                    job.external_run_ref
                    or job.retries < self.retry_cap(job)
                    or not self._submission_abandoned(job)
                ):
                    job_ids.append(job.id)
                    continue
                JobDB.finish_job(
                    db,
                    job.id,
                    JobStatus.ERROR.value,
                    error_code=ErrorClassifier.ERROR_RETRY_EXHAUSTED,
                    error_message="Retry budget exhausted before the run started",
                    completed_at=datetime.utcnow(),
                )
                job = JobDB.get_job(db, job.id)

            if job is not None and self.is_exhausted(job):
                job_ids.append(job.id)
                self._exhaust_project(db, job)
                break

            predecessor = job if job is not None and job.status == JobStatus.ERROR.value else None
            new_job = await self._submit_scene(db, project, scene, predecessor)
            if new_job is not None:
                job_ids.append(new_job.id)
                if self.is_exhausted(new_job):
                    break

        self.logger.info(
            "video_jobs_ensured",
            project_id=project_id,
            job_count=len(job_ids),
        )
        return job_ids

    def _link_scene(
        self,
        db: Session,
        project_id: str,
        scene_id: str,
        expected_job_id: Optional[str],
        new_job_id: str,
    ) -> bool:
        outcome = {"linked": False}

        def mutate(scenes: List[Dict[str, Any]]) -> bool:
            for scene in scenes:
                if scene["id"] != scene_id:
                    continue
                if scene.get("video_url") or scene.get("video_job_id") != expected_job_id:
                    return False
                scene["video_job_id"] = new_job_id
                outcome["linked"] = True
                return True
            return False

        ProjectDB.update_scenes(db, project_id, mutate)
        return outcome["linked"]

    async def _submit_scene(
        self,
        db: Session,
        project: ProjectModel,
        scene: Dict[str, Any],
        predecessor: Optional[JobModel],
    ) -> Optional[JobModel]:
        """Create a job for the scene (successor of predecessor if given) and submit it"""
        retries = predecessor.retries if predecessor is not None else 0
        job = JobDB.create_job(
            db,
            project_id=project.id,
            kind=JobKind.VIDEO_GEN.value,
            retries=retries,
            previous_job_id=predecessor.id if predecessor is not None else None,
        )

        expected = scene.get("video_job_id")
        if not self._link_scene(db, project.id, scene["id"], expected, job.id):
            # Another caller linked the scene first; ours never reaches the provider
            JobDB.finish_job(
                db,
                job.id,
                JobStatus.ERROR.value,
                error_code=ErrorClassifier.ERROR_SUPERSEDED,
                error_message="Scene was linked to another job",
                completed_at=datetime.utcnow(),
            )
            self.logger.info(
                "video_job_superseded",
                project_id=project.id,
                scene_id=scene["id"],
                job_id=job.id,
            )
            return None

        if predecessor is not None:
            log_retry_scheduled(
                project_id=project.id,
                scene_id=scene["id"],
                previous_job_id=predecessor.id,
                retries=retries,
                cap=self.retry_cap(predecessor),
            )

        await self._start_job(db, project, scene, job, count_attempt=True)
        return JobDB.get_job(db, job.id)

    async def _start_job(
        self,
        db: Session,
        project: ProjectModel,
        scene: Dict[str, Any],
        job: JobModel,
        count_attempt: bool,
    ) -> bool:
        """Submit to the provider and record the run reference; failures become job data"""
        request = VideoRequest(
            scene_id=scene["id"],
            prompt=self.prompt_compiler.compile_video_prompt(
                scene, project.product_prompt, project.mood_prompt
            ),
            image_url=scene["image_url"],
            duration_s=CLIP_DURATION_S,
        )

        try:
            run_ref = await self.provider.submit_video(request)
        except Exception as e:
            self._record_submit_failure(db, job, e, count_attempt)
            return False

        started = JobDB.record_submission(db, job.id, run_ref)
        if started:
            self.logger.info(
                "video_job_submitted",
                project_id=project.id,
                scene_id=scene["id"],
                job_id=job.id,
                run_ref=run_ref,
                retries=job.retries,
            )
        else:
            self.logger.warning(
                "video_job_submit_orphaned",
                project_id=project.id,
                job_id=job.id,
                run_ref=run_ref,
            )
        return started

    def _record_submit_failure(
        self,
        db: Session,
        job: JobModel,
        error: Exception,
        count_attempt: bool,
    ) -> None:
        classified = self.error_classifier.classify(error)
        log_failure_classification(
            error_code=classified["code"],
            classification=classified["classification"],
            retryable=classified["retryable"],
            job_id=job.id,
        )

        cap = self.settings.max_start_retries
        retries = min(job.retries + (1 if count_attempt else 0), cap)
        JobDB.finish_job(
            db,
            job.id,
            JobStatus.ERROR.value,
            error_code=classified["code"],
            error_message=classified["message"],
            failure_source=FAILURE_SOURCE_SUBMIT,
            retries=retries,
            completed_at=datetime.utcnow(),
        )

        failed = JobDB.get_job(db, job.id)
        if failed is not None and self.is_exhausted(failed):
            self._exhaust_project(db, failed)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    async def apply_completion(
        self,
        db: Session,
        snapshot: ProviderSnapshot,
        event_id: Optional[str] = None,
        error_code: Optional[str] = None,
    ) -> CompletionResult:
        """
        Apply one provider signal (webhook or poll) to its job and scene

        Args:
            db: Database session
            snapshot: Normalized provider state for one run
            event_id: Webhook delivery id, if any
            error_code: Override for the stored failure code

        Returns:
            CompletionResult; applied is False for replays and non-terminal states

        Raises:
            NotFoundError: No job carries this run reference
        """
        job = JobDB.get_by_run_ref(db, snapshot.run_ref)
        if job is None:
            raise NotFoundError(f"No job for run reference {snapshot.run_ref}")

        if event_id and job.last_event_id == event_id:
            self.logger.info(
                "completion_replayed",
                job_id=job.id,
                run_ref=snapshot.run_ref,
                reason="duplicate_delivery",
            )
            return CompletionResult(job_id=job.id, applied=False, job_status=job.status)

        if job.is_terminal:
            self.logger.info(
                "completion_replayed",
                job_id=job.id,
                run_ref=snapshot.run_ref,
                reason="job_terminal",
            )
            return CompletionResult(job_id=job.id, applied=False, job_status=job.status)

        if not snapshot.state.is_terminal:
            return CompletionResult(job_id=job.id, applied=False, job_status=job.status)

        if snapshot.state == ProviderState.SUCCEEDED:
            if snapshot.output.first_url:
                return await self._apply_success(db, job, snapshot, event_id)
            return self._apply_failure(
                db,
                job,
                "Provider reported success without an output",
                ErrorClassifier.ERROR_PROVIDER_NO_OUTPUT,
                snapshot,
                event_id,
            )

        return self._apply_failure(
            db,
            job,
            snapshot.error or f"Provider run {snapshot.state.value}",
            error_code or ErrorClassifier.ERROR_PROVIDER_RUN_FAILED,
            snapshot,
            event_id,
        )

    def _estimate_cost(self, duration_ms: int) -> float:
        return round(duration_ms / 1000.0 * self.settings.video_cost_per_second, 4)

    async def _relocate(self, raw_url: str, destination_hint: str) -> str:
        try:
            return await self.relocator.relocate(raw_url, destination_hint)
        except Exception as e:
            self.logger.warning(
                "asset_relocation_fallback",
                url=raw_url,
                destination=destination_hint,
                error=str(e),
            )
            return raw_url

    async def _apply_success(
        self,
        db: Session,
        job: JobModel,
        snapshot: ProviderSnapshot,
        event_id: Optional[str],
    ) -> CompletionResult:
        raw_url = snapshot.output.first_url
        completed_at = snapshot.completed_at or datetime.utcnow()
        if snapshot.started_at is None and snapshot.predict_time_s is not None:
            duration_ms = int(snapshot.predict_time_s * 1000)
        else:
            started_at = snapshot.started_at or job.created_at
            duration_ms = max(0, int((completed_at - started_at).total_seconds() * 1000))

        claimed = JobDB.finish_job(
            db,
            job.id,
            JobStatus.SUCCESS.value,
            output_urls=[raw_url],
            cost=self._estimate_cost(duration_ms),
            duration_ms=duration_ms,
            completed_at=completed_at,
            last_event_id=event_id,
        )
        if not claimed:
            current = JobDB.get_job(db, job.id)
            self.logger.info(
                "completion_replayed",
                job_id=job.id,
                run_ref=snapshot.run_ref,
                reason="lost_claim",
            )
            return CompletionResult(
                job_id=job.id,
                applied=False,
                job_status=current.status if current else JobStatus.SUCCESS.value,
            )

        durable_url = await self._relocate(raw_url, f"videos/{job.project_id}/{job.id}.mp4")
        if durable_url != raw_url:
            JobDB.update_job(db, job.id, output_urls=[durable_url])

        match = SceneMatch(reason="not_a_scene_job")
        if job.kind == JobKind.VIDEO_GEN.value:
            match = self._apply_to_scene(db, job, snapshot, durable_url)

        self.logger.info(
            "completion_applied",
            job_id=job.id,
            project_id=job.project_id,
            run_ref=snapshot.run_ref,
            scene_id=match.scene_id,
            strategy=match.strategy,
            duration_ms=duration_ms,
        )
        return CompletionResult(
            job_id=job.id,
            applied=True,
            job_status=JobStatus.SUCCESS.value,
            scene_id=match.scene_id,
            divergence=match.reason,
        )

    def _apply_failure(
        self,
        db: Session,
        job: JobModel,
        message: str,
        code: str,
        snapshot: ProviderSnapshot,
        event_id: Optional[str],
    ) -> CompletionResult:
        cap = self.settings.max_provider_retries
        retries = min(job.retries + 1, cap)

        claimed = JobDB.finish_job(
            db,
            job.id,
            JobStatus.ERROR.value,
            error_code=code,
            error_message=message,
            failure_source=FAILURE_SOURCE_PROVIDER,
            retries=retries,
            completed_at=snapshot.completed_at or datetime.utcnow(),
            last_event_id=event_id,
        )
        if not claimed:
            current = JobDB.get_job(db, job.id)
            return CompletionResult(
                job_id=job.id,
                applied=False,
                job_status=current.status if current else JobStatus.ERROR.value,
            )

        log_failure_classification(
            error_code=code,
            classification="retryable" if retries < cap else "non_retryable",
            retryable=retries < cap,
            job_id=job.id,
        )

        failed = JobDB.get_job(db, job.id)
        if retries >= cap:
            self._exhaust_project(db, failed)

        return CompletionResult(job_id=job.id, applied=True, job_status=JobStatus.ERROR.value)

    # ------------------------------------------------------------------
    # Correlation
    # ------------------------------------------------------------------

    def resolve_scene(
        self,
        scenes: List[Dict[str, Any]],
        job: JobModel,
        snapshot: Optional[ProviderSnapshot],
        video_jobs: List[JobModel],
    ) -> SceneMatch:
        """
        Find the scene a job belongs to

        Tries, in order: the scene's own job reference, the scene id embedded
        in the image URL the provider echoed back, then the job's position
        among the project's video jobs. A positional candidate that already
        has a video is not a match.
        """
        for scene in scenes:
            if scene.get("video_job_id") == job.id:
                return SceneMatch(scene_id=scene["id"], strategy=MATCH_EXACT)

        echoed = list(_iter_strings(snapshot.input)) if snapshot is not None else []
        if echoed:
            for scene in scenes:
                if any(scene["id"] in value for value in echoed):
                    return SceneMatch(scene_id=scene["id"], strategy=MATCH_CONTENT)

        job_ids = [candidate.id for candidate in video_jobs]
        if job.id in job_ids:
            index = job_ids.index(job.id)
            if index < len(scenes) and not scenes[index].get("video_url"):
                return SceneMatch(scene_id=scenes[index]["id"], strategy=MATCH_POSITIONAL)

        return SceneMatch(reason="no_matching_scene")

    def _apply_to_scene(
        self,
        db: Session,
        job: JobModel,
        snapshot: ProviderSnapshot,
        video_url: str,
    ) -> SceneMatch:
        video_jobs = JobDB.list_jobs(db, job.project_id, kind=JobKind.VIDEO_GEN.value)
        outcome = {"match": SceneMatch(reason="project_missing")}

        def mutate(scenes: List[Dict[str, Any]]) -> bool:
            match = self.resolve_scene(scenes, job, snapshot, video_jobs)
            outcome["match"] = match
            if not match.matched:
                return False
            scene = next(s for s in scenes if s["id"] == match.scene_id)
            if scene.get("video_url"):
                outcome["match"] = SceneMatch(strategy=match.strategy, reason="scene_already_complete")
                return False
            scene["video_url"] = video_url
            scene["video_job_id"] = job.id
            return True

        ProjectDB.update_scenes(db, job.project_id, mutate)

        match = outcome["match"]
        if not match.matched:
            log_correlation_divergence(
                job_id=job.id,
                project_id=job.project_id,
                reason=match.reason,
                run_ref=job.external_run_ref,
            )
        return match

    # ------------------------------------------------------------------
    # Projection
    # ------------------------------------------------------------------

    def project_progress(self, db: Session, project: ProjectModel) -> ProgressReport:
        scenes = project.scene_list()
        total = len(scenes)
        completed = sum(1 for scene in scenes if scene.get("video_url"))
        in_progress = sum(
            1
            for job in JobDB.list_jobs(db, project.id, kind=JobKind.VIDEO_GEN.value)
            if job.status in ACTIVE_JOB_STATUSES
        )
        return ProgressReport(
            total=total,
            completed=completed,
            in_progress=in_progress,
            current_index=min(completed + 1, total),
        )

    def status_report(
        self,
        db: Session,
        project_id: str,
        divergences: Optional[List[Dict[str, Any]]] = None,
    ) -> StatusReport:
        """
        Compute the status projection (read only)

        Raises:
            NotFoundError: Unknown project
        """
        project = self._get_project(db, project_id)
        jobs = JobDB.list_jobs(db, project_id)

        error_reason = None
        if project.status == ProjectStatus.ERROR.value:
            failed = [
                job
                for job in jobs
                if job.status == JobStatus.ERROR.value
                and job.error_code != ErrorClassifier.ERROR_SUPERSEDED
            ]
            if failed:
                latest = max(failed, key=lambda job: job.completed_at or job.updated_at or job.created_at)
                error_reason = latest.error_message

        return StatusReport(
            project_id=project.id,
            status=project.status,
            progress=self.project_progress(db, project),
            jobs=[job.to_dict() for job in jobs],
            final_video_url=project.final_video_url,
            error_reason=error_reason,
            divergences=divergences or [],
        )

    # ------------------------------------------------------------------
    # Reconciliation pass
    # ------------------------------------------------------------------

    def _unsubmitted_cutoff(self) -> datetime:
        return datetime.utcnow() - timedelta(seconds=UNSUBMITTED_GRACE_S)

    def _submission_abandoned(self, job: JobModel) -> bool:
        """An unsubmitted job idle past the grace period; younger ones may still be submitting"""
        return (job.updated_at or job.created_at) < self._unsubmitted_cutoff()

    def _is_stale(self, job: JobModel) -> bool:
        reference = job.submitted_at or job.created_at
        limit = timedelta(minutes=self.settings.stale_job_timeout_minutes)
        return datetime.utcnow() - reference > limit

    async def _poll_in_flight(self, db: Session, project_id: str) -> List[Dict[str, Any]]:
        divergences: List[Dict[str, Any]] = []

        for job in JobDB.list_jobs(db, project_id, kind=JobKind.VIDEO_GEN.value):
            if job.status != JobStatus.RUNNING.value or not job.external_run_ref:
                continue

            try:
                snapshot = await self.provider.poll(job.external_run_ref)
            except Exception as e:
                classified = self.error_classifier.classify(e)
                self.logger.warning(
                    "poll_failed",
                    job_id=job.id,
                    run_ref=job.external_run_ref,
                    error_code=classified["code"],
                    error=str(e),
                )
                continue

            if snapshot.state.is_terminal:
                result = await self.apply_completion(db, snapshot)
            elif self._is_stale(job):
                self.logger.warning(
                    "stale_job_failed",
                    job_id=job.id,
                    run_ref=job.external_run_ref,
                    timeout_minutes=self.settings.stale_job_timeout_minutes,
                )
                forced = snapshot.model_copy(
                    update={
                        "state": ProviderState.FAILED,
                        "error": (
                            f"No terminal state after {self.settings.stale_job_timeout_minutes} minutes"
                        ),
                    }
                )
                result = await self.apply_completion(
                    db, forced, error_code=ErrorClassifier.ERROR_JOB_TIMEOUT
                )
            else:
                continue

            if result.divergence and result.applied:
                divergences.append({"job_id": result.job_id, "reason": result.divergence})

        return divergences

    async def _retry_one(self, db: Session, project_id: str) -> Optional[str]:
        """
        Resubmit at most MAX_RESUBMISSIONS_PER_PASS scene chains, first in scene order

        Returns:
            Id of the job that was retried, if any
        """
        project = self._get_project(db, project_id)
        attempts = 0

        for scene in project.scene_list():
            if attempts >= MAX_RESUBMISSIONS_PER_PASS:
                break
            if scene.get("video_url"):
                continue

            job = JobDB.get_job(db, scene.get("video_job_id"))
            if job is None:
                continue

            if job.status in ACTIVE_JOB_STATUSES and not job.external_run_ref:
                if not self._submission_abandoned(job):
                    continue
                attempts += 1
                cap = self.retry_cap(job)
                if job.retries >= cap:
                    JobDB.finish_job(
                        db,
                        job.id,
                        JobStatus.ERROR.value,
                        error_code=ErrorClassifier.ERROR_RETRY_EXHAUSTED,
                        error_message="Retry budget exhausted before the run started",
                        completed_at=datetime.utcnow(),
                    )
                    self._exhaust_project(db, JobDB.get_job(db, job.id))
                    return None

                if not JobDB.claim_unsubmitted(
                    db, job.id, job.retries + 1, idle_before=self._unsubmitted_cutoff()
                ):
                    continue
                claimed = JobDB.get_job(db, job.id)
                log_retry_scheduled(
                    project_id=project.id,
                    scene_id=scene["id"],
                    previous_job_id=None,
                    retries=claimed.retries,
                    cap=cap,
                )
                await self._start_job(db, project, scene, claimed, count_attempt=False)
                return claimed.id

            if job.status == JobStatus.ERROR.value:
                if self.is_exhausted(job):
                    self._exhaust_project(db, job)
                    return None
                attempts += 1
                successor = await self._submit_scene(db, project, scene, predecessor=job)
                return successor.id if successor is not None else None

        return None

    def _ready_to_compose(self, project: ProjectModel) -> bool:
        scenes = project.scene_list()
        return (
            project.status == ProjectStatus.RENDERING.value
            and bool(scenes)
            and all(scene.get("video_url") for scene in scenes)
            and bool(project.music_track_id)
        )

    async def reconcile(self, db: Session, project_id: str) -> StatusReport:
        """
        Run one reconciliation pass and return the status projection

        Polls in-flight runs sequentially, applies completions, force-fails
        stale runs, retries at most one scene chain and composes when every
        scene has a video and music is chosen.

        Raises:
            NotFoundError: Unknown project
        """
        project = self._get_project(db, project_id)
        divergences: List[Dict[str, Any]] = []

        if project.status == ProjectStatus.RENDERING.value:
            divergences = await self._poll_in_flight(db, project_id)

            if self._get_project(db, project_id).status == ProjectStatus.RENDERING.value:
                await self._retry_one(db, project_id)

            project = self._get_project(db, project_id)
            if self.settings.auto_compose and self._ready_to_compose(project):
                await self.finalize_composition(db, project_id)

        return self.status_report(db, project_id, divergences)

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def _rollup(self, db: Session, project_id: str) -> Dict[str, Any]:
        succeeded = [
            job for job in JobDB.list_jobs(db, project_id) if job.status == JobStatus.SUCCESS.value
        ]
        return {
            "total_cost": round(sum(job.cost or 0.0 for job in succeeded), 4),
            "total_generation_ms": sum(job.duration_ms or 0 for job in succeeded),
        }

    async def finalize_composition(self, db: Session, project_id: str) -> ComposeResult:
        """
        Compose the final video once

        Repeated calls after a successful composition are no-ops.

        Raises:
            NotFoundError: Unknown project
            InvalidTransitionError: Project already failed
            PreconditionError: Scenes without videos or no music selected
        """
        project = self._get_project(db, project_id)
        compose_jobs = JobDB.list_jobs(db, project_id, kind=JobKind.COMPOSE.value)

        done = next((job for job in compose_jobs if job.status == JobStatus.SUCCESS.value), None)
        if done is not None or project.status == ProjectStatus.COMPLETE.value:
            return ComposeResult(
                project_id=project_id,
                status=project.status,
                applied=False,
                job_id=done.id if done is not None else None,
                final_video_url=project.final_video_url,
            )

        if project.status != ProjectStatus.RENDERING.value:
            raise InvalidTransitionError(f"Cannot compose a project in {project.status}")

        scenes = project.scene_list()
        if not scenes or not all(scene.get("video_url") for scene in scenes):
            raise PreconditionError("Every scene needs a video before composing")

        track = get_music_track(project.music_track_id)
        if track is None:
            raise PreconditionError("Select a music track before composing")

        # A composition left running by a dead process must not block new ones
        for stale in compose_jobs:
            if stale.status in ACTIVE_JOB_STATUSES and self._is_stale(stale):
                if JobDB.finish_job(
                    db,
                    stale.id,
                    JobStatus.ERROR.value,
                    error_code=ErrorClassifier.ERROR_JOB_TIMEOUT,
                    error_message=(
                        f"Composition did not finish within {self.settings.stale_job_timeout_minutes} minutes"
                    ),
                    completed_at=datetime.utcnow(),
                ):
                    self.logger.warning("stale_compose_failed", project_id=project_id, job_id=stale.id)

        job = JobDB.create_job(
            db,
            project_id=project_id,
            kind=JobKind.COMPOSE.value,
            status=JobStatus.RUNNING.value,
            submitted_at=datetime.utcnow(),
        )
        active = [
            candidate
            for candidate in JobDB.list_jobs(db, project_id, kind=JobKind.COMPOSE.value)
            if candidate.status in ACTIVE_JOB_STATUSES
        ]
        if active and active[0].id != job.id:
            JobDB.finish_job(
                db,
                job.id,
                JobStatus.ERROR.value,
                error_code=ErrorClassifier.ERROR_SUPERSEDED,
                error_message="Another composition is in progress",
                completed_at=datetime.utcnow(),
            )
            return ComposeResult(project_id=project_id, status=project.status, applied=False, job_id=active[0].id)

        start_time = datetime.utcnow()
        try:
            final_url = await self.compositor.compose(
                [scene["video_url"] for scene in scenes],
                track["url"],
                project_id,
            )
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
                cost=0.0,
                duration_ms=int((datetime.utcnow() - start_time).total_seconds() * 1000),
                completed_at=datetime.utcnow(),
            )
            mark_project_error(db, project_id)
            self.logger.error("compose_failed", project_id=project_id, job_id=job.id, error=str(e))
            return ComposeResult(
                project_id=project_id,
                status=ProjectStatus.ERROR.value,
                applied=True,
                job_id=job.id,
            )

        duration_ms = int((datetime.utcnow() - start_time).total_seconds() * 1000)
        JobDB.finish_job(
            db,
            job.id,
            JobStatus.SUCCESS.value,
            output_urls=[final_url],
            cost=0.0,
            duration_ms=duration_ms,
            completed_at=datetime.utcnow(),
        )

        rollup = self._rollup(db, project_id)
        completed = ProjectDB.transition_status(
            db,
            project_id,
            ProjectStatus.COMPLETE.value,
            allowed_sources(ProjectStatus.COMPLETE.value),
            final_video_url=final_url,
            **rollup,
        )
        if not completed:
            self.logger.warning("compose_result_discarded", project_id=project_id, job_id=job.id)
            current = self._get_project(db, project_id)
            return ComposeResult(project_id=project_id, status=current.status, applied=False, job_id=job.id)

        log_compose_completed(
            project_id=project_id,
            job_id=job.id,
            clip_count=len(scenes),
            duration_ms=duration_ms,
            total_cost=rollup["total_cost"],
            total_generation_ms=rollup["total_generation_ms"],
        )
        return ComposeResult(
            project_id=project_id,
            status=ProjectStatus.COMPLETE.value,
            applied=True,
            job_id=job.id,
            final_video_url=final_url,
        )


def build_engine() -> ReconciliationEngine:
    """Engine wired to the configured provider, local asset storage and ffmpeg"""
    from reelforge.core.provider_factory import get_provider
    from reelforge.services.asset_storage import AssetStorage
    from reelforge.services.ffmpeg_composer import FFmpegCompositor

    storage = AssetStorage()
    return ReconciliationEngine(
        provider=get_provider(),
        relocator=storage,
        compositor=FFmpegCompositor(storage),
    )
