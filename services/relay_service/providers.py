"""
Completion and transcription providers.

Groq and OpenAI both speak the OpenAI API, so one adapter per concern covers
both; only the client's base URL, key and model differ. Several providers can
be chained so the next one is tried when the previous fails.
"""
from __future__ import annotations

import logging
import typing as t

from openai import OpenAI, OpenAIError

from services.relay_service.config import RelaySettings
from services.relay_service.errors import ProviderError

logger = logging.getLogger(__name__)


class CompletionProvider(t.Protocol):
    name: str

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        ...


class TranscriptionProvider(t.Protocol):
    name: str

    def transcribe(self, audio_path: str) -> dict[str, t.Any]:
        ...


class OpenAICompletionProvider:
    """Chat completion through any OpenAI-compatible endpoint."""

    def __init__(
        self,
        client: OpenAI,
        model: str,
        name: str = "openai",
        temperature: float = 0.2,
        top_p: float = 1.0,
        max_completion_tokens: int = 1024,
        stream: bool = True,
    ) -> None:
        self.client = client
        self.model = model
        self.name = name
        self.temperature = temperature
        self.top_p = top_p
        self.max_completion_tokens = max_completion_tokens
        self.stream = stream

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Return the generated text; streamed responses are joined server-side."""
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                top_p=self.top_p,
                max_completion_tokens=self.max_completion_tokens,
                stream=self.stream,
            )
            if not self.stream:
                return response.choices[0].message.content or ""

            parts: list[str] = []
            for chunk in response:
                if chunk.choices:
                    parts.append(chunk.choices[0].delta.content or "")
            return "".join(parts)
        except OpenAIError as e:
            raise ProviderError(f"{self.name} completion failed: {e}")


class OpenAITranscriptionProvider:
    """Speech-to-text through an OpenAI-compatible audio endpoint."""

    def __init__(self, client: OpenAI, model: str, name: str = "openai",
                 response_format: str = "json") -> None:
        self.client = client
        self.model = model
        self.name = name
        self.response_format = response_format

    def transcribe(self, audio_path: str) -> dict[str, t.Any]:
        """Return {"text": ...} plus "segments" when the provider sends them."""
        try:
            with open(audio_path, "rb") as audio:
                result = self.client.audio.transcriptions.create(
                    model=self.model,
                    file=audio,
                    temperature=0,
                    response_format=self.response_format,
                )
        except OpenAIError as e:
            raise ProviderError(f"{self.name} transcription failed: {e}")

        if isinstance(result, str):
            return {"text": result}
        data = result.model_dump()
        transcript: dict[str, t.Any] = {"text": data.get("text") or ""}
        if data.get("segments"):
            transcript["segments"] = data["segments"]
        return transcript


class FallbackCompletionProvider:
    """Try each provider in order; the first success wins."""

    def __init__(self, providers: t.Sequence[CompletionProvider]) -> None:
        self.providers = list(providers)
        self.name = "+".join(p.name for p in self.providers)

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        errors: list[str] = []
        for provider in self.providers:
            try:
                return provider.complete(system_prompt, user_prompt)
            except ProviderError as e:
                logger.warning("Completion provider %s failed, trying next: %s", provider.name, e)
                errors.append(str(e))
        raise ProviderError("All completion providers failed: " + "; ".join(errors))


class FallbackTranscriptionProvider:
    """Try each transcription provider in order; the first success wins."""

    def __init__(self, providers: t.Sequence[TranscriptionProvider]) -> None:
        self.providers = list(providers)
        self.name = "+".join(p.name for p in self.providers)

    def transcribe(self, audio_path: str) -> dict[str, t.Any]:
        errors: list[str] = []
        for provider in self.providers:
            try:
                return provider.transcribe(audio_path)
            except ProviderError as e:
                logger.warning("Transcription provider %s failed, trying next: %s", provider.name, e)
                errors.append(str(e))
        raise ProviderError("All transcription providers failed: " + "; ".join(errors))


def _clients(settings: RelaySettings) -> list[tuple[str, OpenAI]]:
    """OpenAI-compatible clients for every configured provider, in preference order."""
    clients: list[tuple[str, OpenAI]] = []
    for name in settings.completion_providers:
        if name == "groq":
            if settings.groq_api_key:
                clients.append((name, OpenAI(api_key=settings.groq_api_key, base_url=settings.groq_base_url)))
        elif name == "openai":
            if settings.openai_api_key:
                clients.append((name, OpenAI(api_key=settings.openai_api_key)))
        else:
            logger.warning("Ignoring unknown provider %r", name)
    return clients


def build_providers(
    settings: RelaySettings,
) -> tuple[t.Optional[CompletionProvider], t.Optional[TranscriptionProvider]]:
    """
    Build the completion and transcription providers the settings allow.

    Providers without an API key are skipped. Returns None for a concern when
    no provider is configured; a single provider is returned unwrapped.
    """
    completions: list[CompletionProvider] = []
    transcriptions: list[TranscriptionProvider] = []
    for name, client in _clients(settings):
        if name == "groq":
            completions.append(OpenAICompletionProvider(client, settings.completion_model, name=name))
            transcriptions.append(OpenAITranscriptionProvider(client, settings.transcription_model, name=name))
        else:
            completions.append(OpenAICompletionProvider(client, settings.openai_completion_model, name=name))
            transcriptions.append(OpenAITranscriptionProvider(client, settings.openai_transcription_model, name=name))

    completion: t.Optional[CompletionProvider] = None
    if len(completions) == 1:
        completion = completions[0]
    elif completions:
        completion = FallbackCompletionProvider(completions)

    transcription: t.Optional[TranscriptionProvider] = None
    if len(transcriptions) == 1:
        transcription = transcriptions[0]
    elif transcriptions:
        transcription = FallbackTranscriptionProvider(transcriptions)

    return completion, transcription
