"""
Pytest configuration and fixtures for the habit visualizer test suite.
"""

import pytest
from pathlib import Path
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

# Add server directory to Python path
import sys
server_dir = Path(__file__).parent.parent
sys.path.insert(0, str(server_dir))

from habitviz.internal.db import Base, get_db
from habitviz.internal.mermaid_render import DiagramRenderer, RenderResult, RenderValidationProbe
from habitviz.internal.ai_base import DiagramTextProvider, UpstreamGenerationError
from habitviz.models import Visualization
from habitviz.__main__ import app, get_render_probe, get_text_provider


@pytest.fixture(scope="session")
def test_db_engine():
    """Create a test database engine using SQLite in-memory database."""
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        # One shared connection so the TestClient thread sees the same in-memory database
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def db_session(test_db_engine):
    """Create a fresh database session for each test."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_db_engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.rollback()
        session.close()

        # Clear all data from tables to ensure isolation
        with test_db_engine.begin() as conn:
            conn.execute(text("DELETE FROM visualization"))


class FakeRenderer(DiagramRenderer):
    """Renderer double: fails for any code listed in failing_codes (or everything if fail_all)."""

    def __init__(self, failing_codes=None, fail_all=False, raise_error=False):
        self.failing_codes = set(failing_codes or [])
        self.fail_all = fail_all
        self.raise_error = raise_error
        self.calls = []

    async def render(self, mermaid_code: str) -> RenderResult:
        self.calls.append(mermaid_code)
        if self.fail_all or mermaid_code in self.failing_codes:
            if self.raise_error:
                raise RuntimeError("Parse error on line 3")
            return RenderResult(success=False, error="Parse error on line 3")
        return RenderResult(success=True, svg=f"<svg><g>{len(mermaid_code)}</g></svg>")


@pytest.fixture
def fake_renderer():
    return FakeRenderer()


@pytest.fixture
def client(db_session, fake_renderer):
    """Create a test client with the database, AI and renderer dependencies overridden."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_text_provider] = lambda: FakeProvider(error=UpstreamGenerationError("offline"))
    app.dependency_overrides[get_render_probe] = lambda: RenderValidationProbe(fake_renderer)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    return {"X-User-Id": "user-1"}


@pytest.fixture
def sample_visualization(db_session):
    """Create a saved visualization for testing."""
    visualization = Visualization(
        owner="user-1",
        habit_name="Morning Run",
        habit_description="Run 5k before work",
        normalized_code='flowchart TD\n    id1["Morning Run"]\n    classDef habitStyle fill:#9333EA\n    class id1 habitStyle',
    )
    db_session.add(visualization)
    db_session.commit()
    db_session.refresh(visualization)
    return visualization


@pytest.fixture
def messy_generated_diagram():
    """Generated output with fences, prose, shorthand, duplicates and an open subgraph."""
    return '''Here is the diagram for your habit:

```mermaid
flowchart TD
    id1["Morning Run"] :::habitStyle
    subgraph Triggers
        Alarm Clock["Alarm rings"]
        id3["Running shoes by the door"]
    end
    subgraph Steps
        id4["Warm up"]
        id5["Run 5k"]
        id4["Stretch"]
    Alarm Clock --> id1
    id3 --> id1
    id1 --> id4 --> id5
    class id4 id5 stepStyle
```

Let me know if you want changes!'''


@pytest.fixture
def renderer_factory():
    """Build FakeRenderer instances with custom failure behavior."""
    return FakeRenderer


class FakeProvider(DiagramTextProvider):
    """Generation service double returning canned text or raising a canned error."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []

    async def generate_diagram(self, habit_name, habit_description=""):
        self.calls.append((habit_name, habit_description))
        if self.error:
            raise self.error
        return self.text


@pytest.fixture
def provider_factory():
    return FakeProvider
