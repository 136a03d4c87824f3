"""
Shared Pydantic models for REST API serialization.

Request bodies accept missing fields: the relay reports a missing question
itself with a 400, and timetable payloads are passed through to the formatter,
which copes with any row shape.
"""
from __future__ import annotations

import typing as t
from pydantic import BaseModel, Field


AnswerSource = t.Literal["timetable", "clarify", "completion"]


class ProxyRequest(BaseModel):
    """Request model for forwarding a question to the query service."""
    question: t.Optional[str] = None
    mode: t.Optional[str] = "auto"


class AskRequest(ProxyRequest):
    """Request model for a fully answered question."""


class AskResponse(BaseModel):
    """Response model for an answered question."""
    ok: bool = True
    answer: str
    source: AnswerSource


class SummarizeRequest(BaseModel):
    """Request model for answering a question from JSON results."""
    question: t.Optional[str] = None
    results: t.Any = None


class ChatMessage(BaseModel):
    role: str = "assistant"
    content: str = ""


class ChatChoice(BaseModel):
    message: ChatMessage


class SummarizeResponse(BaseModel):
    """
    OpenAI-style response shape, so clients can read
    choices[0].message.content as they would from the provider directly.
    """
    choices: list[ChatChoice] = Field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> "SummarizeResponse":
        return cls(choices=[ChatChoice(message=ChatMessage(content=text))])


class TranscriptionResponse(BaseModel):
    """Response model for speech-to-text."""
    text: str = ""
    segments: t.Optional[list[dict[str, t.Any]]] = None


class TimetablePayload(BaseModel):
    """A teacher's timetable as returned by the query service."""
    teacher: t.Any = None
    rows: t.Any = None
    grouped: t.Any = None


class FormatTimetableRequest(BaseModel):
    """Request model for rendering a full timetable."""
    timetable: t.Optional[TimetablePayload] = None
    title: t.Any = None
    notes: t.Any = None
    teachers: t.Any = None


class ClarifyPayload(BaseModel):
    """Signals that a query matched several entities."""
    required: t.Any = True
    type: t.Any = None
    input: t.Any = None
    message: t.Any = None
    candidates: t.Any = None


class FormatClarifyRequest(BaseModel):
    """Request model for rendering a clarification prompt."""
    clarify: t.Optional[ClarifyPayload] = None
    question: t.Any = None


class FormattedText(BaseModel):
    """Response model for rendered Markdown."""
    text: str


class ErrorResponse(BaseModel):
    ok: bool = False
    error: str
