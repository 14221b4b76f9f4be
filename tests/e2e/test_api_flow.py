"""
End-to-End Tests for the HTTP API

Drives the FastAPI app with TestClient. The MathTutor dependency is
overridden with one built on the fake OpenAI client and in-memory
storage.
"""

import httpx
import pytest
import sys
import os
from fastapi.testclient import TestClient
from openai import AuthenticationError, RateLimitError

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "socratic_math_tutor", "src"))
sys.path.insert(0, os.path.join(project_root, "backend"))

import main
from socratic_math_tutor.tutor import MathTutor


@pytest.fixture
def client(fake_llm, monkeypatch):
    monkeypatch.setenv("DASHBOARD_PASSWORD", "letmein")
    monkeypatch.setenv("SESSION_SECRET", "test-secret")

    tutor = MathTutor(fake_llm)
    main.app.dependency_overrides[main.get_tutor_instance] = lambda: tutor
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


def new_session(client):
    response = client.post("/api/sessions", json={})
    assert response.status_code == 201
    return response.json()["session_code"]


def dashboard_headers(client):
    response = client.post("/api/dashboard/login", json={"password": "letmein"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['token']}"}


class TestSessionEndpoints:
    """Test session creation, resumption and lookup."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_create_and_resume(self, client):
        code = new_session(client)

        resumed = client.post("/api/sessions", json={"session_code": code})
        assert resumed.status_code == 200
        assert resumed.json()["session_code"] == code

        fetched = client.get(f"/api/sessions/{code}")
        assert fetched.status_code == 200
        assert fetched.json()["problems"] == []

    def test_resume_returns_problems_and_transcript(self, client):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})
        client.post(f"/api/sessions/{code}/chat", json={"message": "I think it is 5"})

        resumed = client.post("/api/sessions", json={"session_code": code})

        assert resumed.status_code == 200
        body = resumed.json()
        assert [p["problem_id"] for p in body["problems"]] == ["P001"]
        assert len(body["problems"][0]["steps"]) == 2
        assert [t["speaker"] for t in body["transcript"]] == ["student", "tutor", "student", "tutor"]

    def test_create_without_body(self, client):
        response = client.post("/api/sessions")
        assert response.status_code == 201
        assert len(response.json()["session_code"]) == 6

    def test_unknown_code_on_create_starts_new_session(self, client):
        response = client.post("/api/sessions", json={"session_code": "ZZZZZZ"})
        assert response.status_code == 201

    def test_malformed_code(self, client):
        response = client.get("/api/sessions/abc")
        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_code(self, client):
        response = client.get("/api/sessions/ZZZZZZ")
        assert response.status_code == 404
        assert response.json()["error"]["code"] == "NOT_FOUND"


class TestProblemAndChatEndpoints:
    """Test problem submission and chat turns over HTTP."""

    def test_text_problem_and_turns(self, client):
        code = new_session(client)

        submitted = client.post(f"/api/sessions/{code}/problems", json={"text": "Solve for x: 2x + 5 = 13"})
        assert submitted.status_code == 201
        assert submitted.json()["conversation_context"]["step_number"] == 1

        steps = []
        for message in ["I don't know", "I think we subtract 5", "then 8 divided by 2"]:
            response = client.post(f"/api/sessions/{code}/chat", json={"message": message})
            assert response.status_code == 200
            steps.append(response.json()["conversation_context"]["step_number"])

        assert steps == [2, 3, 4]

    def test_image_upload(self, client):
        code = new_session(client)
        response = client.post(
            f"/api/sessions/{code}/problems",
            files={"image": ("problem.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 32, "image/png")},
        )
        assert response.status_code == 201
        assert response.json()["problem_info"]["image_url"].startswith("memory://")

    def test_rejected_problem_body(self, client, fake_llm):
        fake_llm.replies["math problem detector"] = "NO"
        code = new_session(client)

        response = client.post(f"/api/sessions/{code}/problems", json={"text": "What's for lunch?"})

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "no_math_problem"
        assert body["fallback"]["type"] == "manual_input"

    def test_multiple_problems_and_select(self, client, fake_llm):
        fake_llm.replies["math problem parser"] = "MULTIPLE:\n1. What is 2 + 3?\n2. What is 4 * 5?"
        code = new_session(client)

        choice = client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3? What is 4 * 5?"})
        assert choice.status_code == 200
        assert choice.json()["multiple_problems"] is True

        selected = client.post(f"/api/sessions/{code}/problems/select", json={"problemText": "What is 4 * 5?"})
        assert selected.status_code == 201
        assert selected.json()["problem_id"] == "P001"

    def test_second_active_problem_conflicts(self, client):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})

        response = client.post(f"/api/sessions/{code}/problems", json={"text": "What is 4 * 5?"})
        assert response.status_code == 409
        assert response.json()["error"]["code"] == "CONFLICT"

    def test_empty_chat_message(self, client):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})

        response = client.post(f"/api/sessions/{code}/chat", json={"message": "   "})
        assert response.status_code == 400

    def test_chat_unknown_session(self, client):
        response = client.post("/api/sessions/ZZZZZZ/chat", json={"message": "hi"})
        assert response.status_code == 404

    def test_submit_to_unknown_or_malformed_session(self, client):
        unknown = client.post("/api/sessions/ZZZZZZ/problems", json={"text": "What is 2 + 3?"})
        assert unknown.status_code == 404
        assert unknown.json()["error"]["code"] == "NOT_FOUND"

        malformed = client.post("/api/sessions/abc/problems", json={"text": "What is 2 + 3?"})
        assert malformed.status_code == 400
        assert malformed.json()["error"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.parametrize("error_class,status", [(AuthenticationError, 401), (RateLimitError, 429)])
    def test_provider_status_reaches_client(self, client, fake_llm, error_class, status):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})

        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        fake_llm.replies["patient, encouraging math tutor"] = error_class(
            "provider said no", response=httpx.Response(status, request=request), body=None
        )
        response = client.post(f"/api/sessions/{code}/chat", json={"message": "I think it is 5"})

        assert response.status_code == status
        assert response.json()["error"]["code"] == "OPENAI_ERROR"

    def test_resubmit_after_failed_opening_prompt(self, client, fake_llm):
        code = new_session(client)
        request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
        fake_llm.replies["patient, encouraging math tutor"] = RateLimitError(
            "rate limited", response=httpx.Response(429, request=request), body=None
        )

        failed = client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})
        assert failed.status_code == 429

        fake_llm.replies["patient, encouraging math tutor"] = "What are we adding together?"
        retried = client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})
        assert retried.status_code == 201
        assert retried.json()["problem_id"] == "P001"


class TestDashboardEndpoints:
    """Test dashboard authentication and management endpoints."""

    def test_login_wrong_password(self, client):
        response = client.post("/api/dashboard/login", json={"password": "nope"})
        assert response.status_code == 401

    def test_login_non_ascii_password(self, client, monkeypatch):
        monkeypatch.setenv("DASHBOARD_PASSWORD", "pässwörd")
        response = client.post("/api/dashboard/login", json={"password": "wröng"})
        assert response.status_code == 401

    def test_protected_routes_require_token(self, client):
        response = client.get("/api/dashboard/stats/aggregate")
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_REQUIRED"

        response = client.get("/api/dashboard/sessions", headers={"Authorization": "Bearer junk"})
        assert response.status_code == 401
        assert response.json()["error"]["code"] == "AUTH_INVALID"

    def test_dashboard_views(self, client):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "Solve for x: 2x + 5 = 13"})
        headers = dashboard_headers(client)

        stats = client.get("/api/dashboard/stats/aggregate", headers=headers).json()
        assert stats["totalSessions"] == 1
        assert stats["categories"]["algebra"] == 1

        sessions = client.get("/api/dashboard/sessions", headers=headers).json()["sessions"]
        assert sessions[0]["session_code"] == code

        details = client.get(f"/api/dashboard/sessions/{code}", headers=headers).json()
        assert details["transcript_length"] == 2

        similar = client.get(f"/api/dashboard/sessions/{code}/similar-problems", headers=headers).json()
        assert len(similar["options"]) == 3

    def test_update_tags_and_delete(self, client):
        code = new_session(client)
        client.post(f"/api/sessions/{code}/problems", json={"text": "What is 2 + 3?"})
        headers = dashboard_headers(client)

        updated = client.put(
            f"/api/dashboard/sessions/{code}/problems/P001",
            json={"category": "word", "difficulty": "hard"},
            headers=headers,
        )
        assert updated.status_code == 200
        assert updated.json()["problem"]["difficulty"] == "hard"

        invalid = client.put(
            f"/api/dashboard/sessions/{code}/problems/P001",
            json={"category": "calculus"},
            headers=headers,
        )
        assert invalid.status_code == 400

        deleted = client.delete(f"/api/dashboard/sessions/{code}", headers=headers)
        assert deleted.status_code == 200
        assert client.get(f"/api/sessions/{code}").status_code == 404

    def test_delete_drops_uploaded_images(self, client):
        code = new_session(client)
        uploaded = client.post(
            f"/api/sessions/{code}/problems",
            files={"image": ("problem.png", b"\x89PNG\r\n\x1a\n" + b"\x00" * 32, "image/png")},
        )
        image_key = uploaded.json()["problem_info"]["image_url"][len("memory://"):]
        tutor = main.app.dependency_overrides[main.get_tutor_instance]()
        assert image_key in tutor.images._in_memory_images

        deleted = client.delete(f"/api/dashboard/sessions/{code}", headers=dashboard_headers(client))
        assert deleted.status_code == 200
        assert image_key not in tutor.images._in_memory_images
