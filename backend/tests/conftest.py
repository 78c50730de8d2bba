"""
Pytest Configuration and Fixtures
"""

import os
import tempfile
from types import SimpleNamespace
from typing import Any, Dict, Generator, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session

# Keep module-level engines and static mounts away from the working tree
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STATIC_ROOT", tempfile.mkdtemp(prefix="reelforge-static-"))

from reelforge.core.provider import (  # noqa: E402
    GenerationProvider,
    ProviderSnapshot,
    ProviderState,
    VideoRequest,
    normalize_output,
)
from reelforge.models import Base  # noqa: E402
from reelforge.models import job as job_models, project as project_models  # noqa: E402,F401
from reelforge.models.project import ProjectModel, ProjectStatus  # noqa: E402
from reelforge.services.reconciler import ReconciliationEngine  # noqa: E402
from reelforge.services.storage import ProjectDB  # noqa: E402
from fixtures.sample_data import SAMPLE_BLURBS, SAMPLE_PRODUCT_PROMPT, SAMPLE_MOOD_PROMPT  # noqa: E402


@pytest.fixture
def test_db_path() -> Generator[str, None, None]:
    """Create temporary database file"""
    with tempfile.NamedTemporaryFile(mode='w', suffix='.db', delete=False) as f:
        db_path = f.name
    yield db_path
    # Cleanup
    if os.path.exists(db_path):
        os.unlink(db_path)


@pytest.fixture
def test_db_engine(test_db_path: str) -> Generator:
    """Create test database engine"""
    engine = create_engine(
        f"sqlite:///{test_db_path}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def test_db_session(test_db_engine) -> Generator[Session, None, None]:
    """Create test database session"""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


class FakeProvider(GenerationProvider):
    """
    In-memory provider: numbered run refs, scripted poll results and failures
    """

    def __init__(self):
        self.submitted: List[VideoRequest] = []
        self.submit_errors: List[Exception] = []
        self.snapshots: Dict[str, ProviderSnapshot] = {}
        self.poll_errors: Dict[str, Exception] = {}
        self.polled: List[str] = []
        self.image_prompts: List[str] = []
        self.image_errors: List[Exception] = []

    async def submit_video(self, request: VideoRequest) -> str:
        self.submitted.append(request)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return f"run-{len(self.submitted)}"

    async def poll(self, run_ref: str) -> ProviderSnapshot:
        self.polled.append(run_ref)
        if run_ref in self.poll_errors:
            raise self.poll_errors[run_ref]
        return self.snapshots.get(
            run_ref, ProviderSnapshot(run_ref=run_ref, state=ProviderState.RUNNING)
        )

    async def run_image(self, prompt: str) -> ProviderSnapshot:
        self.image_prompts.append(prompt)
        if self.image_errors:
            raise self.image_errors.pop(0)
        index = len(self.image_prompts)
        return ProviderSnapshot(
            run_ref=f"img-{index}",
            state=ProviderState.SUCCEEDED,
            output=normalize_output(f"https://provider.example/images/{index}.png"),
        )


class FakeRelocator:
    """Records relocations and returns a stable local URL per destination"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.fail = False

    async def relocate(self, source_url: str, destination_hint: str) -> str:
        self.calls.append((source_url, destination_hint))
        if self.fail:
            raise RuntimeError("storage unavailable")
        return f"https://cdn.example/static/{destination_hint}"


class FakeCompositor:
    """Records compositions; raises error when set"""

    def __init__(self):
        self.calls: List[tuple] = []
        self.error: Optional[Exception] = None

    async def compose(self, ordered_clip_urls: List[str], music_url: str, project_id: str) -> str:
        self.calls.append((list(ordered_clip_urls), music_url, project_id))
        if self.error is not None:
            raise self.error
        return f"https://cdn.example/static/final/{project_id}/final.mp4"


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fake_relocator() -> FakeRelocator:
    return FakeRelocator()


@pytest.fixture
def fake_compositor() -> FakeCompositor:
    return FakeCompositor()


@pytest.fixture
def engine_settings():
    """Reconciliation policy used by the engine under test"""
    return SimpleNamespace(
        max_start_retries=3,
        max_provider_retries=2,
        stale_job_timeout_minutes=30,
        auto_compose=True,
        video_cost_per_second=0.01,
    )


@pytest.fixture
def engine(fake_provider, fake_relocator, fake_compositor, engine_settings) -> ReconciliationEngine:
    return ReconciliationEngine(
        provider=fake_provider,
        relocator=fake_relocator,
        compositor=fake_compositor,
        settings=engine_settings,
    )


def make_project(
    db: Session,
    scene_count: int = 3,
    status: str = ProjectStatus.RENDERING.value,
    with_images: bool = True,
    video_urls: Optional[List[Optional[str]]] = None,
    music_track_id: Optional[str] = None,
    session_token: str = "session-test",
) -> ProjectModel:
    """
    Create a project with scene_count scenes, already past the wizard steps
    """
    project = ProjectDB.create_project(
        db,
        session_token=session_token,
        product_prompt=SAMPLE_PRODUCT_PROMPT,
        mood_prompt=SAMPLE_MOOD_PROMPT,
    )

    scenes: List[Dict[str, Any]] = []
    for index in range(scene_count):
        scene = ProjectModel.new_scene(SAMPLE_BLURBS[index % len(SAMPLE_BLURBS)], title=f"Scene {index + 1}")
        if with_images:
            scene["image_url"] = f"https://cdn.example/static/images/{project.id}/{scene['id']}.png"
        if video_urls and index < len(video_urls):
            scene["video_url"] = video_urls[index]
        scenes.append(scene)

    return ProjectDB.update_project(
        db,
        project.id,
        scenes=scenes,
        status=status,
        music_track_id=music_track_id,
    )


@pytest.fixture
def project_factory(test_db_session):
    def _factory(**kwargs) -> ProjectModel:
        return make_project(test_db_session, **kwargs)

    return _factory


@pytest.fixture
def sample_blurbs() -> List[Dict[str, str]]:
    return [{"blurb": blurb, "title": f"Scene {index + 1}"} for index, blurb in enumerate(SAMPLE_BLURBS[:3])]
