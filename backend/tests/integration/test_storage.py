"""
Integration Tests for the project and job stores
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from reelforge.models.job import JobKind, JobStatus
from reelforge.models.project import ProjectModel, ProjectStatus
from reelforge.services.storage import JobDB, ProjectDB


def _project(db, session_token="session-1"):
    project = ProjectDB.create_project(db, session_token=session_token, product_prompt="a bottle")
    return ProjectDB.update_project(
        db,
        project.id,
        scenes=[ProjectModel.new_scene("first"), ProjectModel.new_scene("second")],
    )


def test_finish_job_is_claimed_once(test_db_session):
    project = _project(test_db_session)
    job = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)

    first = JobDB.finish_job(test_db_session, job.id, JobStatus.SUCCESS.value, output_urls=["a"])
    second = JobDB.finish_job(test_db_session, job.id, JobStatus.ERROR.value, error_code="LATE")

    stored = JobDB.get_job(test_db_session, job.id)
    assert first is True
    assert second is False
    assert stored.status == JobStatus.SUCCESS.value
    assert stored.output_urls == ["a"]
    assert stored.error_code is None


def test_record_submission_only_once(test_db_session):
    project = _project(test_db_session)
    job = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)

    assert JobDB.record_submission(test_db_session, job.id, "run-1") is True
    assert JobDB.record_submission(test_db_session, job.id, "run-2") is False

    stored = JobDB.get_job(test_db_session, job.id)
    assert stored.status == JobStatus.RUNNING.value
    assert stored.external_run_ref == "run-1"
    assert stored.submitted_at is not None
    assert JobDB.get_by_run_ref(test_db_session, "run-2") is None


def test_record_submission_skips_finished_job(test_db_session):
    project = _project(test_db_session)
    job = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)
    JobDB.finish_job(test_db_session, job.id, JobStatus.ERROR.value, error_code="SUPERSEDED")

    assert JobDB.record_submission(test_db_session, job.id, "run-1") is False


def test_claim_unsubmitted(test_db_session):
    project = _project(test_db_session)
    job = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value, retries=1)

    assert JobDB.claim_unsubmitted(test_db_session, job.id, 2) is True
    # The same claim again sees retries already at 2
    assert JobDB.claim_unsubmitted(test_db_session, job.id, 2) is False
    assert JobDB.get_job(test_db_session, job.id).retries == 2

    JobDB.update_job(test_db_session, job.id, external_run_ref="run-1")
    assert JobDB.claim_unsubmitted(test_db_session, job.id, 3) is False


def test_claim_unsubmitted_respects_idle_cutoff(test_db_session):
    project = _project(test_db_session)
    job = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)

    assert not JobDB.claim_unsubmitted(
        test_db_session, job.id, 1, idle_before=datetime.utcnow() - timedelta(minutes=2)
    )
    assert JobDB.claim_unsubmitted(
        test_db_session, job.id, 1, idle_before=datetime.utcnow() + timedelta(seconds=1)
    )


def test_list_jobs_by_kind_in_creation_order(test_db_session):
    project = _project(test_db_session)
    first = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)
    JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.IMAGE_GEN.value)
    second = JobDB.create_job(test_db_session, project_id=project.id, kind=JobKind.VIDEO_GEN.value)

    video_jobs = JobDB.list_jobs(test_db_session, project.id, kind=JobKind.VIDEO_GEN.value)

    assert [job.id for job in video_jobs] == [first.id, second.id]
    assert len(JobDB.list_jobs(test_db_session, project.id)) == 3
    assert JobDB.get_job(test_db_session, None) is None


def test_update_scenes_retries_after_concurrent_write(test_db_session, test_db_engine):
    """A writer that bumps the version between read and write forces a re-read"""
    project = _project(test_db_session)
    other_session = sessionmaker(bind=test_db_engine)()
    calls = []

    def mutate(scenes):
        calls.append([scene.get("video_job_id") for scene in scenes])
        if len(calls) == 1:
            ProjectDB.transition_status(
                other_session, project.id, ProjectStatus.STORY.value, [ProjectStatus.INSPIRE.value]
            )
        scenes[0]["video_job_id"] = "job-1"
        return True

    try:
        updated = ProjectDB.update_scenes(test_db_session, project.id, mutate)
    finally:
        other_session.close()

    assert len(calls) == 2
    assert updated.scene_list()[0]["video_job_id"] == "job-1"
    assert updated.status == ProjectStatus.STORY.value


def test_update_scenes_without_change_does_not_write(test_db_session):
    project = _project(test_db_session)
    version = project.version

    ProjectDB.update_scenes(test_db_session, project.id, lambda scenes: False)

    assert ProjectDB.get_project(test_db_session, project.id).version == version


def test_get_active_skips_completed(test_db_session):
    done = _project(test_db_session)
    ProjectDB.update_project(test_db_session, done.id, status=ProjectStatus.COMPLETE.value)

    assert ProjectDB.get_active(test_db_session, "session-1") is None

    failed = _project(test_db_session)
    ProjectDB.update_project(test_db_session, failed.id, status=ProjectStatus.ERROR.value)

    assert ProjectDB.get_active(test_db_session, "session-1").id == failed.id
    assert ProjectDB.get_active(test_db_session, "session-2") is None


def test_set_music_once(test_db_session):
    project = _project(test_db_session)

    assert ProjectDB.set_music_once(test_db_session, project.id, "upbeat-1") is True
    assert ProjectDB.set_music_once(test_db_session, project.id, "ambient-1") is False
    assert ProjectDB.get_project(test_db_session, project.id).music_track_id == "upbeat-1"


def test_get_for_session(test_db_session):
    project = _project(test_db_session)

    assert ProjectDB.get_for_session(test_db_session, project.id, "session-1").id == project.id
    assert ProjectDB.get_for_session(test_db_session, project.id, "session-2") is None


@pytest.mark.parametrize("missing", ["nope", ""])
def test_delete_missing_project(test_db_session, missing):
    assert ProjectDB.delete_project(test_db_session, missing) is False
