"""
Project and Job State Management
"""

from typing import Dict, List
from sqlalchemy.orm import Session

from reelforge.models.project import ProjectModel, ProjectStatus
from reelforge.services.errors import InvalidTransitionError, NotFoundError
from reelforge.services.storage import ProjectDB


# Valid project transitions; complete and error are terminal
PROJECT_TRANSITIONS: Dict[str, List[str]] = {
    ProjectStatus.INSPIRE.value: [ProjectStatus.STORY.value, ProjectStatus.ERROR.value],
    ProjectStatus.STORY.value: [ProjectStatus.RENDERING.value, ProjectStatus.ERROR.value],
    ProjectStatus.RENDERING.value: [
        ProjectStatus.RENDERING.value,
        ProjectStatus.COMPLETE.value,
        ProjectStatus.ERROR.value,
    ],
    ProjectStatus.COMPLETE.value: [],
    ProjectStatus.ERROR.value: [],
}


def allowed_sources(new_status: str) -> List[str]:
    """
    Project statuses from which new_status may be entered

    Args:
        new_status: Target project status

    Returns:
        List of source statuses
    """
    return [source for source, targets in PROJECT_TRANSITIONS.items() if new_status in targets]


def can_transition(current_status: str, new_status: str) -> bool:
    return new_status in PROJECT_TRANSITIONS.get(current_status, [])


def transition_project(db: Session, project_id: str, new_status: str) -> ProjectModel:
    """
    Move a project to new_status, failing loudly when the lifecycle forbids it

    The write is conditional on the current status, so a concurrent writer
    that already moved the project to a terminal state wins.

    Raises:
        NotFoundError: Unknown project
        InvalidTransitionError: Transition not allowed from the current status
    """
    project = ProjectDB.get_project(db, project_id)
    if project is None:
        raise NotFoundError(f"Project {project_id} not found")

    current_status = project.status
    if not can_transition(current_status, new_status):
        raise InvalidTransitionError(
            f"Invalid project transition: {current_status} -> {new_status}. "
            f"Valid transitions from {current_status}: {PROJECT_TRANSITIONS.get(current_status, [])}"
        )

    if not ProjectDB.transition_status(db, project_id, new_status, allowed_sources(new_status)):
        refreshed = ProjectDB.get_project(db, project_id)
        raise InvalidTransitionError(
            f"Project {project_id} changed to {refreshed.status if refreshed else 'deleted'} "
            f"before {new_status} could be applied"
        )

    return ProjectDB.get_project(db, project_id)


def mark_project_error(db: Session, project_id: str) -> bool:
    """One-way move to error; returns False when the project was already terminal"""
    return ProjectDB.transition_status(
        db, project_id, ProjectStatus.ERROR.value, allowed_sources(ProjectStatus.ERROR.value)
    )


def is_terminal_project_status(status: str) -> bool:
    return not PROJECT_TRANSITIONS.get(status)
