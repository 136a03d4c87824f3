"""Tests for completion and transcription providers."""
import typing as t
from types import SimpleNamespace

import httpx
import openai
import pytest

from services.relay_service.config import RelaySettings
from services.relay_service.errors import ProviderError
from services.relay_service.providers import (
    FallbackCompletionProvider,
    FallbackTranscriptionProvider,
    OpenAICompletionProvider,
    OpenAITranscriptionProvider,
    build_providers,
)


def chunk(content: t.Optional[str]) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content=content))])


class FakeCompletions:
    def __init__(self, response: t.Any = None, error: t.Optional[Exception] = None) -> None:
        self.response = response
        self.error = error
        self.kwargs: dict[str, t.Any] = {}

    def create(self, **kwargs: t.Any) -> t.Any:
        self.kwargs = kwargs
        if self.error:
            raise self.error
        return self.response


class FakeTranscriptions:
    def __init__(self, result: t.Any) -> None:
        self.result = result
        self.kwargs: dict[str, t.Any] = {}

    def create(self, **kwargs: t.Any) -> t.Any:
        self.kwargs = kwargs
        self.kwargs["content"] = kwargs["file"].read()
        return self.result


def fake_client(completions: t.Any = None, transcriptions: t.Any = None) -> SimpleNamespace:
    return SimpleNamespace(
        chat=SimpleNamespace(completions=completions),
        audio=SimpleNamespace(transcriptions=transcriptions),
    )


def api_error(message: str = "rate limited") -> openai.APIError:
    return openai.APIError(message, request=httpx.Request("POST", "https://api.example/v1"), body=None)


class StaticProvider:
    def __init__(self, name: str, reply: t.Optional[str] = None) -> None:
        self.name = name
        self.reply = reply
        self.calls = 0

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        self.calls += 1
        if self.reply is None:
            raise ProviderError(f"{self.name} down")
        return self.reply

    def transcribe(self, audio_path: str) -> dict:
        self.calls += 1
        if self.reply is None:
            raise ProviderError(f"{self.name} down")
        return {"text": self.reply}


def test_streamed_completion_is_concatenated() -> None:
    completions = FakeCompletions(response=iter([chunk("Room "), chunk(None), SimpleNamespace(choices=[]), chunk("101")]))
    provider = OpenAICompletionProvider(fake_client(completions), model="openai/gpt-oss-20b", name="groq")

    assert provider.complete("system", "prompt") == "Room 101"
    assert completions.kwargs["model"] == "openai/gpt-oss-20b"
    assert completions.kwargs["stream"] is True
    assert completions.kwargs["temperature"] == 0.2
    assert completions.kwargs["max_completion_tokens"] == 1024
    assert completions.kwargs["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "prompt"},
    ]


def test_non_streamed_completion_reads_message() -> None:
    response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="Done"))])
    provider = OpenAICompletionProvider(fake_client(FakeCompletions(response=response)), model="m", stream=False)

    assert provider.complete("s", "p") == "Done"


def test_completion_api_error_becomes_provider_error() -> None:
    provider = OpenAICompletionProvider(fake_client(FakeCompletions(error=api_error())), model="m", name="groq")

    with pytest.raises(ProviderError, match="groq completion failed"):
        provider.complete("s", "p")


def test_transcription_returns_text_and_segments(tmp_path) -> None:
    audio = tmp_path / "question.webm"
    audio.write_bytes(b"RIFF")
    result = SimpleNamespace(model_dump=lambda: {"text": "When is 10A free?", "segments": [{"id": 0}]})
    transcriptions = FakeTranscriptions(result)
    provider = OpenAITranscriptionProvider(fake_client(transcriptions=transcriptions), model="whisper-large-v3-turbo")

    assert provider.transcribe(str(audio)) == {"text": "When is 10A free?", "segments": [{"id": 0}]}
    assert transcriptions.kwargs["model"] == "whisper-large-v3-turbo"
    assert transcriptions.kwargs["temperature"] == 0
    assert transcriptions.kwargs["content"] == b"RIFF"


def test_transcription_omits_empty_segments(tmp_path) -> None:
    audio = tmp_path / "q.wav"
    audio.write_bytes(b"")
    result = SimpleNamespace(model_dump=lambda: {"text": "hello"})
    provider = OpenAITranscriptionProvider(fake_client(transcriptions=FakeTranscriptions(result)), model="m")

    assert provider.transcribe(str(audio)) == {"text": "hello"}


def test_fallback_completion_uses_first_success() -> None:
    first, second, third = StaticProvider("groq"), StaticProvider("openai", "ok"), StaticProvider("spare", "unused")

    assert FallbackCompletionProvider([first, second, third]).complete("s", "p") == "ok"
    assert (first.calls, second.calls, third.calls) == (1, 1, 0)


def test_fallback_completion_raises_when_all_fail() -> None:
    chain = FallbackCompletionProvider([StaticProvider("groq"), StaticProvider("openai")])

    with pytest.raises(ProviderError, match="All completion providers failed"):
        chain.complete("s", "p")
    assert chain.name == "groq+openai"


def test_fallback_transcription_uses_first_success() -> None:
    chain = FallbackTranscriptionProvider([StaticProvider("groq"), StaticProvider("openai", "hi")])

    assert chain.transcribe("/tmp/a.webm") == {"text": "hi"}


def test_build_providers_skips_unconfigured_keys() -> None:
    completion, transcription = build_providers(RelaySettings(openai_api_key="sk-test"))

    assert isinstance(completion, OpenAICompletionProvider)
    assert completion.name == "openai"
    assert completion.model == "gpt-4o-mini"
    assert transcription.model == "whisper-1"


def test_build_providers_without_keys_returns_none() -> None:
    assert build_providers(RelaySettings()) == (None, None)


def test_build_providers_respects_configured_order() -> None:
    settings = RelaySettings(
        groq_api_key="gsk-test",
        openai_api_key="sk-test",
        completion_providers=("openai", "bogus", "groq"),
    )

    completion, _ = build_providers(settings)

    assert [p.name for p in completion.providers] == ["openai", "groq"]
