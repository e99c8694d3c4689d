from __future__ import annotations

import base64
import io
import os
import uuid

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from reportlab.pdfgen import canvas
from sqlmodel import Session, SQLModel, create_engine

from afe_approval.api.deps import get_db
from afe_approval.core.config import Settings, settings
from afe_approval.db import base as _models  # noqa: F401
from afe_approval.db.session import enable_sqlite_foreign_keys
from afe_approval.main import app
from afe_approval.models.user import User, UserRole
from afe_approval.services.audit import AuditService
from afe_approval.services.notification import NotificationKind
from afe_approval.services.storage import PDF_ROOT, LocalStorage
from afe_approval.services.workflow import WorkflowService
from afe_approval.utils.security import create_access_token

pytestmark = pytest.mark.anyio


@pytest.fixture()
def db_engine(tmp_path):
    test_database_url = os.getenv("TEST_DATABASE_URL")
    if not test_database_url:
        db_path = tmp_path / f"test_{uuid.uuid4().hex}.db"
        test_database_url = f"sqlite:///{db_path}"

    engine = create_engine(test_database_url, connect_args={"check_same_thread": False})
    enable_sqlite_foreign_keys(engine)
    SQLModel.metadata.create_all(bind=engine)

    def override_dependency():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = override_dependency

    yield engine

    app.dependency_overrides.pop(get_db, None)
    SQLModel.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture()
def storage_dir(monkeypatch, tmp_path):
    path = tmp_path / "storage"
    path.mkdir(exist_ok=True)
    monkeypatch.setenv("AFE_STORAGE", str(path))
    return path


@pytest.fixture()
def storage(storage_dir) -> LocalStorage:
    return LocalStorage(base_dir=storage_dir)


@pytest.fixture()
def client(db_engine, storage_dir) -> TestClient:
    return TestClient(app)


@pytest.fixture()
def db_session(db_engine) -> Session:
    with Session(db_engine) as session:
        yield session


class RecordingNotifications:
    """Stands in for NotificationService and keeps every message it was asked to send."""

    def __init__(self) -> None:
        self.sent: list[dict] = []

    def send(self, kind, to, data, attachment=None) -> bool:
        self.sent.append({"kind": NotificationKind(kind), "to": to, "data": data, "attachment": attachment})
        return True

    def send_bulk(self, kind, recipients, data, attachment=None) -> dict:
        from afe_approval.services.notification import unique_recipients

        results = {}
        for email in unique_recipients(recipients):
            results[email] = self.send(kind, email, data, attachment)
        return results

    def of_kind(self, kind: NotificationKind) -> list[dict]:
        return [item for item in self.sent if item["kind"] == kind]


@pytest.fixture()
def notifications() -> RecordingNotifications:
    return RecordingNotifications()


@pytest.fixture()
def test_settings() -> Settings:
    return Settings(completion_distribution_list=["ops@example.com", "Owner@Example.com"])


@pytest.fixture()
def workflow_service(db_session, notifications, storage, test_settings) -> WorkflowService:
    return WorkflowService(
        db_session,
        notification_service=notifications,
        audit_service=AuditService(db_session),
        storage=storage,
        settings=test_settings,
    )


def make_user(
    session: Session,
    *,
    role: UserRole = UserRole.SIGNER,
    email: str | None = None,
    full_name: str = "Test User",
    title: str | None = None,
) -> User:
    user = User(
        email=email or f"user_{uuid.uuid4().hex[:8]}@example.com",
        full_name=full_name,
        title=title,
        role=role,
        external_id=f"idp|{uuid.uuid4().hex}",
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token(
        subject=user.external_id or str(user.id),
        email=user.email,
        name=user.full_name,
        role=user.role.value,
    )
    return {"Authorization": f"Bearer {token}", "User-Agent": "pytest-agent"}


def make_pdf_bytes(width: float = 612, height: float = 792, pages: int = 1, text: str = "AFE document") -> bytes:
    stream = io.BytesIO()
    pdf = canvas.Canvas(stream, pagesize=(width, height))
    for index in range(pages):
        pdf.drawString(72, height - 72, f"{text} page {index + 1}")
        pdf.showPage()
    pdf.save()
    return stream.getvalue()


def make_signature_png(width: int = 200, height: int = 80) -> str:
    image = Image.new("RGBA", (width, height), (0, 0, 0, 0))
    for x in range(10, width - 10):
        image.putpixel((x, height // 2), (0, 0, 128, 255))
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


def store_pdf(storage: LocalStorage, content: bytes | None = None) -> str:
    return storage.save_bytes(root=PDF_ROOT, name=f"{uuid.uuid4()}.pdf", data=content or make_pdf_bytes())


API = settings.api_v1_str
