import os
import tempfile

import pytest

TEST_ROOT = tempfile.mkdtemp(prefix="lexidocs-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_ROOT}/test.db"
os.environ["STORAGE_DIR"] = os.path.join(TEST_ROOT, "storage")
os.environ["UPLOAD_DIR"] = os.path.join(TEST_ROOT, "uploads")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["DEV_AUTH"] = "false"
os.environ["REQUIRE_EMAIL_CONFIRMATION"] = "false"
os.environ.pop("REDIS_URL", None)
os.environ.pop("SUPABASE_URL", None)
os.environ.pop("SUPABASE_SERVICE_ROLE_KEY", None)
os.environ["STORAGE_PUBLIC_URL"] = "http://testserver/storage"
os.environ.pop("GEMINI_API_KEY", None)

from fastapi.testclient import TestClient

import database
from auth_providers import set_auth_provider
from gemini_client import get_ai_gateway
from main import app
from storage import get_storage

ANSWER_REPLY = """{
  "answer": "The rent is $1,500 per month, due on the first day of each month.",
  "confidence": 0.92,
  "sources": [{"text": "Tenant shall pay $1,500 per month", "page": 1, "section": "Rent"}],
  "key_points": ["$1,500 monthly", "Due on the 1st"],
  "follow_up_questions": ["Is there a late fee?"],
  "summary": "Monthly rent is $1,500."
}"""

CLAUSE_REPLY = """Here is the result:
{
  "clauses": [
    {"id": "c1", "type": "contractual", "title": "Rent", "text": "Tenant shall pay $1,500 per month",
     "confidence": 0.9, "key_terms": ["rent"], "summary": "Monthly rent obligation"},
    {"id": "c2", "type": "legal", "title": "Governing Law", "text": "Governed by the laws of Oregon",
     "confidence": 0.8, "key_terms": ["law"], "summary": "Oregon law applies"}
  ],
  "metadata": {"total_clauses": 2, "extraction_confidence": 0.85, "language": "en"}
}"""

LEASE_TEXT = (
    b"RESIDENTIAL LEASE AGREEMENT\n"
    b"1. Rent. Tenant shall pay $1,500 per month, due on the first day of each month.\n"
    b"2. Term. The lease runs for twelve months.\n"
    b"3. Governing Law. This agreement is governed by the laws of the State of Oregon.\n"
)


class FakeGateway:
    """Stands in for the Gemini gateway and records every prompt it receives."""

    configured = True

    def __init__(self, reply=ANSWER_REPLY):
        self.reply = reply
        self.prompts = []

    @property
    def calls(self):
        return len(self.prompts)

    def generate(self, prompt, pro=False):
        self.prompts.append(prompt)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply

    def test_connection(self):
        return {"success": True, "message": "Gemini API connection successful", "response": "Yes"}


@pytest.fixture(autouse=True)
def reset_state():
    database.drop_tables()
    database.create_tables()
    get_storage().clear()
    set_auth_provider(None)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def gateway():
    fake = FakeGateway()
    app.dependency_overrides[get_ai_gateway] = lambda: fake
    return fake


@pytest.fixture
def client(gateway):
    return TestClient(app)


def register(client, email="tenant@example.com", username="tenant", password="secret123"):
    response = client.post("/api/auth/register", json={
        "email": email,
        "password": password,
        "username": username,
        "full_name": "Test Tenant",
    })
    assert response.status_code == 201, response.text
    return response.json()["data"]


def auth_headers(client, email="tenant@example.com", username="tenant"):
    data = register(client, email=email, username=username)
    return {"Authorization": f"Bearer {data['token']}"}


def upload(client, headers, name="Lease.txt", content=LEASE_TEXT, mime_type="text/plain", **form):
    response = client.post(
        "/api/upload/single",
        files={"document": (name, content, mime_type)},
        data=form,
        headers=headers,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]["document"]


@pytest.fixture
def headers(client):
    return auth_headers(client)


@pytest.fixture
def admin_headers(client, monkeypatch):
    monkeypatch.setenv("ADMIN_EMAILS", "admin@example.com")
    return auth_headers(client, email="admin@example.com", username="admin")
