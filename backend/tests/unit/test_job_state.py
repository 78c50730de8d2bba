"""
Unit Tests for Project and Job State Transitions
"""

import pytest

from reelforge.models.project import ProjectStatus
from reelforge.services.errors import InvalidTransitionError, NotFoundError
from reelforge.services.job_state import (
    allowed_sources,
    can_transition,
    is_terminal_project_status,
    mark_project_error,
    transition_project,
)
from reelforge.services.storage import ProjectDB


def _create_project(db):
    return ProjectDB.create_project(db, session_token="session-1", product_prompt="a bottle")


def test_allowed_sources():
    """Sources are derived from the transition table."""
    assert allowed_sources("rendering") == ["story", "rendering"]
    assert allowed_sources("error") == ["inspire", "story", "rendering"]
    assert allowed_sources("complete") == ["rendering"]
    assert allowed_sources("inspire") == []


def test_can_transition():
    assert can_transition("inspire", "story")
    assert can_transition("rendering", "rendering")
    assert not can_transition("inspire", "rendering")
    assert not can_transition("complete", "error")
    assert not can_transition("error", "rendering")


def test_transition_project_valid(test_db_session):
    """Valid transition updates status and bumps the version."""
    project = _create_project(test_db_session)
    version = project.version

    updated = transition_project(test_db_session, project.id, "story")

    assert updated.status == "story"
    assert updated.version == version + 1


def test_transition_project_invalid(test_db_session):
    """Invalid transition raises InvalidTransitionError."""
    project = _create_project(test_db_session)

    with pytest.raises(InvalidTransitionError):
        transition_project(test_db_session, project.id, "complete")

    assert ProjectDB.get_project(test_db_session, project.id).status == "inspire"


def test_transition_unknown_project(test_db_session):
    with pytest.raises(NotFoundError):
        transition_project(test_db_session, "missing", "story")


def test_mark_project_error_is_one_way(test_db_session):
    """Terminal projects are never moved again."""
    project = _create_project(test_db_session)
    ProjectDB.update_project(test_db_session, project.id, status=ProjectStatus.COMPLETE.value)

    assert mark_project_error(test_db_session, project.id) is False
    assert ProjectDB.get_project(test_db_session, project.id).status == "complete"

    other = _create_project(test_db_session)
    assert mark_project_error(test_db_session, other.id) is True
    assert ProjectDB.get_project(test_db_session, other.id).status == "error"
    assert mark_project_error(test_db_session, other.id) is False


def test_is_terminal_status():
    """Terminal state detection."""
    assert is_terminal_project_status("complete")
    assert is_terminal_project_status("error")
    assert not is_terminal_project_status("rendering")
