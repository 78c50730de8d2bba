"""
Job Model
"""

import uuid
from datetime import datetime
from enum import Enum
from sqlalchemy import Column, Float, Integer, String, JSON, DateTime, Index

from reelforge.models import Base


class JobKind(str, Enum):
    """Kinds of background work tracked per project"""

    VIDEO_GEN = "video-gen"
    IMAGE_GEN = "image-gen"
    COMPOSE = "compose"


class JobStatus(str, Enum):
    """Local job status, independent of the provider's own states"""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class JobModel(Base):
    """
    Job - One unit of background work owned by a project

    Stored apart from the project so that provider callbacks, which only
    know the run reference, can find it.
    """

    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=lambda: JobModel.generate_job_id())
    project_id = Column(String, nullable=False, index=True)

    kind = Column(String, nullable=False)  # video-gen, image-gen, compose
    status = Column(String, nullable=False, default=JobStatus.QUEUED.value)

    # Provider correlation; NULL means "not yet submitted"
    external_run_ref = Column(String, nullable=True)

    # Results
    output_urls = Column(JSON, nullable=True)
    cost = Column(Float, nullable=True)
    duration_ms = Column(Integer, nullable=True)

    # Error handling
    error_code = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    failure_source = Column(String, nullable=True)  # "submit" or "provider"

    # Retry chain
    retries = Column(Integer, default=0, nullable=False)
    previous_job_id = Column(String, nullable=True)

    # Last applied webhook delivery id
    last_event_id = Column(String, nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    submitted_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_jobs_run_ref", "external_run_ref"),
        Index("idx_jobs_project_kind", "project_id", "kind"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCESS.value, JobStatus.ERROR.value)

    def to_dict(self) -> dict:
        """Convert job model to dictionary"""
        return {
            "id": self.id,
            "project_id": self.project_id,
            "kind": self.kind,
            "status": self.status,
            "external_run_ref": self.external_run_ref,
            "output_urls": self.output_urls or [],
            "cost": self.cost,
            "duration_ms": self.duration_ms,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "retries": self.retries,
            "previous_job_id": self.previous_job_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    @staticmethod
    def generate_job_id() -> str:
        """Generate a unique job ID"""
        return str(uuid.uuid4())
