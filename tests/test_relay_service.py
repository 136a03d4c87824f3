"""Tests for the relay HTTP endpoints.

The dispatcher is built from in-memory fakes, so no upstream service or
provider is contacted.
"""
import os
import shutil
import threading
import typing as t

import httpx
import pytest
from fastapi.testclient import TestClient

from services.relay_service import app as relay_app
from services.relay_service.app import create_app
from services.relay_service.config import RelaySettings
from services.relay_service.dispatcher import AnswerDispatcher
from services.relay_service.errors import ProviderError, UpstreamError

SETTINGS = RelaySettings(static_dir="does-not-exist")


class FakeQueryService:
    def __init__(self, result: t.Any = None, error: t.Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.calls: list[tuple[str, str]] = []

    def query(self, question: str, mode: str = "auto") -> t.Any:
        self.calls.append((question, mode))
        if self.error:
            raise self.error
        return self.result


class FakeCompletion:
    name = "fake"

    def __init__(self) -> None:
        self.prompts: list[str] = []

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.prompts.append(user_prompt)
        return "Generated."


class FakeTranscription:
    name = "fake"

    def __init__(self, error: t.Optional[Exception] = None) -> None:
        self.error = error
        self.paths: list[str] = []
        self.contents: list[bytes] = []

    def transcribe(self, audio_path: str) -> dict:
        self.paths.append(audio_path)
        with open(audio_path, "rb") as f:
            self.contents.append(f.read())
        if self.error:
            raise self.error
        return {"text": "When does 10A have math?"}


def make_client(
    query_service: t.Any = None,
    completion: t.Any = None,
    transcription: t.Any = None,
) -> TestClient:
    dispatcher = AnswerDispatcher(
        query_service=query_service,
        completion=completion or FakeCompletion(),
        transcription=transcription,
        system_prompt="system",
        prompt_template="{question} {results}",
    )
    return TestClient(create_app(SETTINGS, dispatcher))


def test_health_check() -> None:
    response = make_client().get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "service": "timetable-relay"}


def test_proxy_passes_upstream_json_through() -> None:
    query = FakeQueryService({"ok": True, "queryType": "FREE", "results": [{"Room": "101"}]})

    response = make_client(query).post("/proxy", json={"question": "Room 101?"})

    assert response.status_code == 200
    assert response.json() == {"ok": True, "queryType": "FREE", "results": [{"Room": "101"}]}
    assert query.calls == [("Room 101?", "auto")]


def test_proxy_requires_question() -> None:
    query = FakeQueryService({})

    response = make_client(query).post("/proxy", json={"question": "   "})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Missing question"}
    assert query.calls == []


def test_proxy_without_query_service_reports_missing_config() -> None:
    response = make_client(query_service=None).post("/proxy", json={"question": "q"})

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "Missing APPS_SCRIPT_EXEC"}


def test_upstream_failure_is_reported_as_json() -> None:
    query = FakeQueryService(error=UpstreamError("HTTP error from query service: 502"))

    response = make_client(query).post("/ask", json={"question": "q"})

    assert response.status_code == 500
    assert response.json() == {"ok": False, "error": "HTTP error from query service: 502"}


def test_summarize_returns_chat_completion_shape() -> None:
    completion = FakeCompletion()

    response = make_client(completion=completion).post(
        "/summarize", json={"question": "Free rooms?", "results": list(range(10))}
    )

    assert response.status_code == 200
    assert response.json() == {"choices": [{"message": {"role": "assistant", "content": "Generated."}}]}
    assert completion.prompts == ["Free rooms? [0,1,2,3,4]"]


def test_ask_renders_full_timetable() -> None:
    query = FakeQueryService({
        "queryType": "FULL_TIMETABLE",
        "timetable": {"teacher": "Mr Brown", "rows": []},
    })

    response = make_client(query).post("/ask", json={"question": "Mr Brown timetable", "mode": "teacher"})

    assert response.status_code == 200
    assert response.json() == {
        "ok": True,
        "answer": "No timetable entries found for Mr Brown.",
        "source": "timetable",
    }
    assert query.calls == [("Mr Brown timetable", "teacher")]


def test_whisper_transcribes_and_removes_temp_file() -> None:
    transcription = FakeTranscription()

    response = make_client(transcription=transcription).post(
        "/whisper", files={"audio": ("question.m4a", b"audio-bytes", "audio/mp4")}
    )

    assert response.status_code == 200
    assert response.json() == {"text": "When does 10A have math?"}
    assert transcription.contents == [b"audio-bytes"]
    assert transcription.paths[0].endswith(".m4a")
    assert not os.path.exists(transcription.paths[0])


def test_whisper_removes_temp_file_when_provider_fails() -> None:
    transcription = FakeTranscription(error=ProviderError("All transcription providers failed"))

    response = make_client(transcription=transcription).post(
        "/whisper", files={"audio": ("question.webm", b"audio-bytes", "audio/webm")}
    )

    assert response.status_code == 500
    assert response.json()["ok"] is False
    assert not os.path.exists(transcription.paths[0])


def test_whisper_requires_audio() -> None:
    response = make_client(transcription=FakeTranscription()).post("/whisper")

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "No audio file uploaded"}


def test_format_timetable_endpoint() -> None:
    response = make_client().post("/format/timetable", json={
        "timetable": {"rows": [
            {"Weekday": "Wed", "Period": 1, "Start": "9:00", "End": "9:50", "Subject": "Art", "Class": "7B"},
            {"Weekday": "Mon", "Period": 2, "Start": "9:50", "End": "10:40", "Subject": "Art", "Class": "7B"},
        ]},
        "teachers": ["Ms Green"],
    })

    text = response.json()["text"]
    assert text.startswith("## Ms Green timetable")
    assert text.index("### Monday") < text.index("### Wednesday")
    assert "| 2 | 9:50 | 10:40 | Art | 7B | — |" in text


def test_format_clarify_endpoint() -> None:
    response = make_client().post("/format/clarify", json={
        "clarify": {"type": "teacher", "input": "Jane", "message": "Which Jane?",
                    "candidates": ["Jane Smith", "Jane Doe"]},
        "question": "Jane on Friday",
    })

    text = response.json()["text"]
    assert "- Jane Smith\n- Jane Doe" in text


@pytest.mark.asyncio
async def test_ask_over_asgi_transport() -> None:
    """Concurrent-safe path: the blocking dispatcher runs in a worker thread."""
    query = FakeQueryService({"clarify": {"required": True, "message": "Which one?", "candidates": ["A", "B"]}})
    app = create_app(SETTINGS, AnswerDispatcher(query_service=query, completion=FakeCompletion(),
                                                system_prompt="s", prompt_template="{question}{results}"))

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/ask", json={"question": "A or B?"})

    assert response.status_code == 200
    assert response.json()["source"] == "clarify"
    assert "### Which one?" in response.json()["answer"]


@pytest.mark.parametrize("path", ["/ask", "/proxy"])
def test_null_question_is_reported_as_missing(path: str) -> None:
    query = FakeQueryService({})

    response = make_client(query).post(path, json={"question": None, "mode": None})

    assert response.status_code == 400
    assert response.json() == {"ok": False, "error": "Missing question"}
    assert query.calls == []


def test_malformed_body_uses_error_shape() -> None:
    response = make_client(FakeQueryService({})).post("/ask", json={"question": ["not", "text"]})

    assert response.status_code == 400
    body = response.json()
    assert body["ok"] is False
    assert body["error"].startswith("Invalid request: body.question")


def test_format_timetable_accepts_loose_field_types() -> None:
    response = make_client().post("/format/timetable", json={
        "timetable": {"teacher": 42, "rows": []},
        "teachers": [None, "A"],
    })

    assert response.status_code == 200
    assert response.json() == {"text": "No timetable entries found for 42."}

    response = make_client().post("/format/timetable", json={"timetable": None, "teachers": [None, "A"]})

    assert response.status_code == 200
    assert response.json() == {"text": "No timetable entries found for Teacher."}


def test_format_clarify_accepts_null_fields() -> None:
    response = make_client().post("/format/clarify", json={
        "clarify": {"type": None, "input": None, "message": None, "candidates": None, "required": "false"},
    })

    assert response.status_code == 200
    text = response.json()["text"]
    assert text.startswith("### I need a little more detail to answer that.")
    assert text.endswith("Please be more specific and ask again.")


@pytest.mark.asyncio
async def test_whisper_spools_upload_off_the_event_loop(monkeypatch: pytest.MonkeyPatch) -> None:
    copy_threads: list[int] = []
    copyfileobj = shutil.copyfileobj

    def recording_copy(source: t.Any, target: t.Any) -> None:
        copy_threads.append(threading.get_ident())
        copyfileobj(source, target)

    monkeypatch.setattr(relay_app.shutil, "copyfileobj", recording_copy)
    transcription = FakeTranscription()
    app = create_app(SETTINGS, AnswerDispatcher(transcription=transcription, completion=FakeCompletion(),
                                                system_prompt="s", prompt_template="{question}{results}"))

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as client:
        response = await client.post("/whisper", files={"audio": ("q.ogg", b"audio-bytes", "audio/ogg")})

    assert response.status_code == 200
    assert transcription.contents == [b"audio-bytes"]
    assert copy_threads and threading.get_ident() not in copy_threads
    assert not os.path.exists(transcription.paths[0])
