"""
Shared FastAPI dependencies
"""

from functools import lru_cache

from fastapi import Depends, Request

from reelforge.services.project_service import ProjectService
from reelforge.services.reconciler import ReconciliationEngine, build_engine


@lru_cache(maxsize=1)
def get_engine() -> ReconciliationEngine:
    """Process-wide engine; it keeps no per-project state"""
    return build_engine()


def get_project_service(engine: ReconciliationEngine = Depends(get_engine)) -> ProjectService:
    return ProjectService(provider=engine.provider, relocator=engine.relocator)


def get_session_token(request: Request) -> str:
    """Session token assigned by the session middleware"""
    return request.state.session_token
