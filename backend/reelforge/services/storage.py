"""
Storage Service - Database operations for Projects and Jobs
"""

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime

from reelforge.config.constants import ACTIVE_JOB_STATUSES, TERMINAL_JOB_STATUSES
from reelforge.models.job import JobModel, JobStatus
from reelforge.models.project import ProjectModel, ProjectStatus
from reelforge.services.observability import logger


# Attempts for read-modify-write of the embedded scene array
SCENE_WRITE_ATTEMPTS = 5


class ProjectDB:
    """Project database operations"""

    @staticmethod
    def create_project(
        db: Session,
        session_token: str,
        product_prompt: str,
        mood_prompt: Optional[str] = None,
    ) -> ProjectModel:
        """Create a new project in the inspire step"""
        project = ProjectModel(
            session_token=session_token,
            product_prompt=product_prompt,
            mood_prompt=mood_prompt,
            scenes=[],
            status=ProjectStatus.INSPIRE.value,
        )
        db.add(project)
        db.commit()
        db.refresh(project)
        return project

    @staticmethod
    def get_project(db: Session, project_id: str) -> Optional[ProjectModel]:
        """Get project by ID"""
        return db.query(ProjectModel).filter(ProjectModel.id == project_id).first()

    @staticmethod
    def get_for_session(db: Session, project_id: str, session_token: str) -> Optional[ProjectModel]:
        """Get project by ID, only if owned by the session"""
        return (
            db.query(ProjectModel)
            .filter(ProjectModel.id == project_id, ProjectModel.session_token == session_token)
            .first()
        )

    @staticmethod
    def get_active(db: Session, session_token: str) -> Optional[ProjectModel]:
        """Latest project of the session that has not completed"""
        return (
            db.query(ProjectModel)
            .filter(
                ProjectModel.session_token == session_token,
                ProjectModel.status != ProjectStatus.COMPLETE.value,
            )
            .order_by(ProjectModel.created_at.desc())
            .first()
        )

    @staticmethod
    def update_project(db: Session, project_id: str, **kwargs) -> Optional[ProjectModel]:
        """Update plain project fields (versioned flush)"""
        project = ProjectDB.get_project(db, project_id)
        if project:
            for key, value in kwargs.items():
                setattr(project, key, value)
            db.commit()
            db.refresh(project)
        return project

    @staticmethod
    def update_scenes(
        db: Session,
        project_id: str,
        mutate: Callable[[List[Dict[str, Any]]], bool],
    ) -> Optional[ProjectModel]:
        """
        Read-modify-write the embedded scene array under the version lock

        mutate receives a detached copy of the scenes and returns True when it
        changed them. A concurrent writer bumps the version, in which case the
        project is re-read and mutate runs again on fresh data.

        Returns:
            The project after the write (or unchanged), None if not found

        Raises:
            StaleDataError: If every attempt lost the race
        """
        last_error: Optional[StaleDataError] = None
        for attempt in range(SCENE_WRITE_ATTEMPTS):
            project = ProjectDB.get_project(db, project_id)
            if project is None:
                return None
            db.refresh(project)

            scenes = project.scene_list()
            if not mutate(scenes):
                return project

            project.scenes = scenes
            try:
                db.commit()
            except StaleDataError as e:
                db.rollback()
                last_error = e
                logger.info(
                    "scene_write_conflict",
                    project_id=project_id,
                    attempt=attempt + 1,
                )
                continue

            db.refresh(project)
            return project

        raise last_error

    @staticmethod
    def transition_status(
        db: Session,
        project_id: str,
        new_status: str,
        from_statuses: List[str],
        **fields,
    ) -> bool:
        """
        Conditionally set status (and extra columns) in a single UPDATE

        Returns:
            True if the row was in one of from_statuses and got updated
        """
        values: Dict[Any, Any] = {
            ProjectModel.status: new_status,
            ProjectModel.version: ProjectModel.version + 1,
            ProjectModel.updated_at: datetime.utcnow(),
        }
        for key, value in fields.items():
            values[getattr(ProjectModel, key)] = value

        updated = (
            db.query(ProjectModel)
            .filter(ProjectModel.id == project_id, ProjectModel.status.in_(from_statuses))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1

    @staticmethod
    def set_music_once(db: Session, project_id: str, track_id: str) -> bool:
        """Store the music track if none is set yet"""
        updated = (
            db.query(ProjectModel)
            .filter(ProjectModel.id == project_id, ProjectModel.music_track_id.is_(None))
            .update(
                {
                    ProjectModel.music_track_id: track_id,
                    ProjectModel.version: ProjectModel.version + 1,
                    ProjectModel.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def delete_project(db: Session, project_id: str) -> bool:
        """Delete a project together with all of its jobs"""
        project = ProjectDB.get_project(db, project_id)
        if not project:
            return False
        db.query(JobModel).filter(JobModel.project_id == project_id).delete(synchronize_session=False)
        db.delete(project)
        db.commit()
        return True


class JobDB:
    """Job database operations"""

    @staticmethod
    def create_job(
        db: Session,
        project_id: str,
        kind: str,
        status: str = JobStatus.QUEUED.value,
        retries: int = 0,
        previous_job_id: Optional[str] = None,
        **fields,
    ) -> JobModel:
        """Create a new job"""
        job = JobModel(
            id=JobModel.generate_job_id(),
            project_id=project_id,
            kind=kind,
            status=status,
            retries=retries,
            previous_job_id=previous_job_id,
            **fields,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        return job

    @staticmethod
    def get_job(db: Session, job_id: Optional[str]) -> Optional[JobModel]:
        """Get job by ID"""
        if not job_id:
            return None
        return db.query(JobModel).filter(JobModel.id == job_id).first()

    @staticmethod
    def get_by_run_ref(db: Session, run_ref: str) -> Optional[JobModel]:
        """Get job by provider run reference"""
        return db.query(JobModel).filter(JobModel.external_run_ref == run_ref).first()

    @staticmethod
    def list_jobs(
        db: Session,
        project_id: str,
        kind: Optional[str] = None,
    ) -> List[JobModel]:
        """List a project's jobs in creation order"""
        query = db.query(JobModel).filter(JobModel.project_id == project_id)
        if kind:
            query = query.filter(JobModel.kind == kind)
        return query.order_by(JobModel.created_at.asc(), JobModel.id.asc()).all()

    @staticmethod
    def update_job(db: Session, job_id: str, **kwargs) -> Optional[JobModel]:
        """Update job fields unconditionally"""
        job = JobDB.get_job(db, job_id)
        if job:
            for key, value in kwargs.items():
                setattr(job, key, value)
            job.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(job)
        return job

    @staticmethod
    def record_submission(db: Session, job_id: str, run_ref: str) -> bool:
        """
        Store the provider run reference of an active job

        Only the first submission of a job is recorded; a job that already
        carries a run reference or has finished is left untouched.
        """
        updated = (
            db.query(JobModel)
            .filter(
                JobModel.id == job_id,
                JobModel.status.in_(ACTIVE_JOB_STATUSES),
                JobModel.external_run_ref.is_(None),
            )
            .update(
                {
                    JobModel.status: JobStatus.RUNNING.value,
                    JobModel.external_run_ref: run_ref,
                    JobModel.submitted_at: datetime.utcnow(),
                    JobModel.updated_at: datetime.utcnow(),
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return updated == 1

    @staticmethod
    def claim_unsubmitted(
        db: Session,
        job_id: str,
        retries: int,
        idle_before: Optional[datetime] = None,
    ) -> bool:
        """
        Take an active job that never got a run reference for resubmission

        With idle_before, only a job last touched before that time qualifies.
        """
        query = db.query(JobModel).filter(
            JobModel.id == job_id,
            JobModel.status.in_(ACTIVE_JOB_STATUSES),
            JobModel.external_run_ref.is_(None),
            JobModel.retries == retries - 1,
        )
        if idle_before is not None:
            query = query.filter(JobModel.updated_at < idle_before)
        updated = query.update(
            {JobModel.retries: retries, JobModel.updated_at: datetime.utcnow()},
            synchronize_session=False,
        )
        db.commit()
        return updated == 1

    @staticmethod
    def finish_job(db: Session, job_id: str, status: str, **fields) -> bool:
        """
        Move a job to a terminal status unless it already is terminal

        This is the claim every completion path goes through; exactly one
        caller gets True for a given job.
        """
        values: Dict[Any, Any] = {
            JobModel.status: status,
            JobModel.updated_at: datetime.utcnow(),
        }
        for key, value in fields.items():
            values[getattr(JobModel, key)] = value

        updated = (
            db.query(JobModel)
            .filter(JobModel.id == job_id, JobModel.status.notin_(TERMINAL_JOB_STATUSES))
            .update(values, synchronize_session=False)
        )
        db.commit()
        return updated == 1
