import pytest
import os
import json
import tempfile
from typing import Dict, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_DIR"] = tempfile.mkdtemp(prefix="resumeiq-tests-")

from app.core.exceptions import ResourceResolutionError
from app.database import Base, get_db
from app.dependencies import (
    get_blob_registry, get_feedback_client, get_kv_store, get_review_sessions,
    get_storage, get_tracker,
)
from app.main import app
from app.schemas.ai import ChatResponse
from app.services.ingestion import IngestionTracker
from app.services.pdf_render import ConversionResult
from app.services.presentation import ObjectUrlRegistry, ReviewSessionStore
from app.services.storage import LocalFile, StoredFile
from fastapi.testclient import TestClient

# SQLite in-memory database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

STRUCTURED_FEEDBACK = {
    "overallScore": 74,
    "ATS": {"score": 82, "tips": [{"type": "improve", "tip": "Add metrics"}]},
    "toneAndStyle": {"score": 70, "tips": [{"type": "good", "tip": "Clear voice", "explanation": "Direct sentences."}]},
    "content": {"score": 65, "tips": []},
}


# --- Fakes for the external capabilities ---

class FakeStorage:
    def __init__(self, events: Optional[List[str]] = None):
        self.files: Dict[str, bytes] = {}
        self.uploads: List[str] = []
        self.events = events if events is not None else []
        self.fail_uploads: set = set()  # 1-based indexes of upload calls that return None

    async def upload(self, files):
        self.events.append("upload")
        self.uploads.append(files[0].name)
        if len(self.uploads) in self.fail_uploads:
            return None
        path = f"{len(self.uploads)}/{files[0].name}"
        self.files[path] = files[0].data
        return StoredFile(path=path, name=files[0].name, size=len(files[0].data))

    async def read(self, path):
        if path not in self.files:
            raise ResourceResolutionError(f"Cannot read {path}")
        return self.files[path]


class FakeKeyValueStore:
    def __init__(self, events: Optional[List[str]] = None):
        self.data: Dict[str, str] = {}
        self.writes: List[str] = []
        self.events = events if events is not None else []
        self.fail_sets: set = set()  # 1-based indexes of set calls that raise

    async def get(self, key):
        return self.data.get(key)

    async def set(self, key, value):
        self.events.append("set")
        self.writes.append(key)
        if len(self.writes) in self.fail_sets:
            raise RuntimeError("kv unavailable")
        self.data[key] = value


class FakeFeedbackClient:
    def __init__(self, content=None, events: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.content = json.dumps(STRUCTURED_FEEDBACK) if content is None else content
        self.events = events if events is not None else []
        self.error = error
        self.calls: List[tuple] = []
        self.on_call = None
        self.return_none = False

    async def feedback(self, document_ref, instructions):
        self.events.append("feedback")
        self.calls.append((document_ref, instructions))
        if self.on_call is not None:
            self.on_call()
        if self.error is not None:
            raise self.error
        if self.return_none:
            return None
        return ChatResponse.model_validate({"message": {"role": "assistant", "content": self.content}})


class FakeRenderer:
    def __init__(self, result: Optional[ConversionResult] = None):
        self.result = result
        self.calls = 0

    async def convert(self, source):
        self.calls += 1
        if self.result is not None:
            return self.result
        preview = LocalFile(name=source.name.replace(".pdf", ".png"), content_type="image/png", data=b"\x89PNG-fake")
        return ConversionResult(file=preview, width=500, height=750)


def make_pdf(width: float = 200, height: float = 300, text: str = "Jane Doe - Engineer", **save_options) -> bytes:
    import fitz

    document = fitz.open()
    page = document.new_page(width=width, height=height)
    page.insert_text((20, 40), text)
    data = document.tobytes(**save_options)
    document.close()
    return data


# --- Fixtures ---

@pytest.fixture(scope="session", autouse=True)
def setup_database():
    """Create tables once for the whole test session."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)

@pytest.fixture(scope="function")
def db_session():
    """Get a clean database session for each test function with rollback safety."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)

    yield session

    session.close()
    transaction.rollback()
    connection.close()

@pytest.fixture(scope="function")
def events():
    return []

@pytest.fixture(scope="function")
def storage(events):
    return FakeStorage(events)

@pytest.fixture(scope="function")
def kv(events):
    return FakeKeyValueStore(events)

@pytest.fixture(scope="function")
def ai(events):
    return FakeFeedbackClient(events=events)

@pytest.fixture(scope="function")
def registry():
    return ObjectUrlRegistry(prefix="/api/blobs")

@pytest.fixture(scope="function")
def user(db_session):
    """Create a default user for tests."""
    from app.models.user import User
    from app.services import auth as auth_service

    user = User(
        email="jane@example.com",
        hashed_password=auth_service.get_password_hash("Password123!"),
        full_name="Jane Doe",
        is_active=True,
    )
    db_session.add(user)
    db_session.commit()
    return user

@pytest.fixture(scope="function")
def auth_headers(user):
    from app.services.auth import create_access_token

    token = create_access_token(data={"sub": user.email, "user_id": user.id})
    return {"Authorization": f"Bearer {token}"}

@pytest.fixture(scope="function")
def client(db_session, storage, kv, ai, registry):
    """TestClient with the test database session and fake storage, key-value store and AI."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    tracker = IngestionTracker()
    sessions = ReviewSessionStore(registry, ttl_seconds=600)

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_kv_store] = lambda: kv
    app.dependency_overrides[get_feedback_client] = lambda: ai
    app.dependency_overrides[get_tracker] = lambda: tracker
    app.dependency_overrides[get_blob_registry] = lambda: registry
    app.dependency_overrides[get_review_sessions] = lambda: sessions
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
