"""
Answer dispatching for timetable questions.

One dispatcher serves every deployment variant: the query service and the
completion/transcription providers are injected, so a Groq-only relay and a
Groq-then-OpenAI relay differ only in what is passed in.
"""
from __future__ import annotations

import json
import logging
import typing as t
from dataclasses import dataclass

from prompts import load_prompt
from services.relay_service.config import RelaySettings
from services.relay_service.errors import ConfigurationError
from services.relay_service.providers import CompletionProvider, TranscriptionProvider, build_providers
from services.relay_service.query_client import AppsScriptQueryClient, QueryService
from services.shared.models import AnswerSource
from timetable_server.formatter import format_answer_payload, format_clarify
from timetable_server.models import flag_value

logger = logging.getLogger(__name__)

FULL_TIMETABLE = "FULL_TIMETABLE"


@dataclass(frozen=True)
class Answer:
    """Rendered reply to a question and how it was produced."""
    text: str
    source: AnswerSource


def collapse_results(results: t.Any, limit: int = 5) -> str:
    """Compact JSON for the prompt; lists are cut to their first `limit` items."""
    if isinstance(results, (list, tuple)):
        results = list(results)[:limit]
    return json.dumps(results, ensure_ascii=False, separators=(",", ":"), default=str)


def needs_clarification(result: t.Mapping[str, t.Any]) -> bool:
    clarify = result.get("clarify")
    return isinstance(clarify, t.Mapping) and flag_value(clarify.get("required"), True)


class AnswerDispatcher:
    """Routes query results to the formatter or to a completion provider."""

    def __init__(
        self,
        query_service: t.Optional[QueryService] = None,
        completion: t.Optional[CompletionProvider] = None,
        transcription: t.Optional[TranscriptionProvider] = None,
        system_prompt: t.Optional[str] = None,
        prompt_template: t.Optional[str] = None,
        results_preview_limit: int = 5,
    ) -> None:
        self.query_service = query_service
        self.completion = completion
        self.transcription = transcription
        self.system_prompt = system_prompt or load_prompt("timetable_answer_system_prompt")
        self.prompt_template = prompt_template or load_prompt("timetable_answer_user_prompt")
        self.results_preview_limit = results_preview_limit

    @classmethod
    def from_settings(cls, settings: RelaySettings) -> "AnswerDispatcher":
        """Wire up the real query client and providers from settings."""
        query_service = None
        if settings.apps_script_exec:
            query_service = AppsScriptQueryClient(
                settings.apps_script_exec,
                password=settings.password,
                timeout=settings.query_timeout,
            )
        completion, transcription = build_providers(settings)
        if completion is None:
            logger.warning("No completion provider configured; free-form answers are disabled")
        return cls(
            query_service=query_service,
            completion=completion,
            transcription=transcription,
            results_preview_limit=settings.results_preview_limit,
        )

    def _require_query_service(self) -> QueryService:
        if self.query_service is None:
            raise ConfigurationError("Missing APPS_SCRIPT_EXEC")
        return self.query_service

    def proxy(self, question: str, mode: str = "auto") -> dict[str, t.Any]:
        """Forward a question to the query service and return its raw JSON."""
        return self._require_query_service().query(question, mode)

    def summarize(self, question: str, results: t.Any) -> str:
        """Answer a question from arbitrary JSON results with the completion provider."""
        if self.completion is None:
            raise ConfigurationError("No completion provider configured (set GROQ_API_KEY or OPENAI_API_KEY)")
        prompt = self.prompt_template.format(
            question=question,
            results=collapse_results(results, self.results_preview_limit),
        )
        return self.completion.complete(self.system_prompt, prompt)

    def render(self, question: str, result: t.Any) -> Answer:
        """
        Turn one query service result into text.

        Clarification descriptors and full timetables are rendered locally;
        anything else is handed to the completion provider.
        """
        if not isinstance(result, t.Mapping):
            result = {"results": result}

        if needs_clarification(result):
            return Answer(format_clarify(result["clarify"], question), "clarify")
        if result.get("queryType") == FULL_TIMETABLE:
            return Answer(format_answer_payload(result), "timetable")

        results = result.get("results", result)
        return Answer(self.summarize(question, results), "completion")

    def answer(self, question: str, mode: str = "auto") -> Answer:
        """Query once, then render."""
        result = self.proxy(question, mode)
        answer = self.render(question, result)
        logger.info("Answered question via %s", answer.source)
        return answer

    def transcribe(self, audio_path: str) -> dict[str, t.Any]:
        if self.transcription is None:
            raise ConfigurationError("No transcription provider configured (set GROQ_API_KEY or OPENAI_API_KEY)")
        return self.transcription.transcribe(audio_path)
