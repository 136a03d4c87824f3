"""
FastAPI service relaying timetable questions.

Questions go to the spreadsheet query service; answers come back as Markdown
rendered locally (full timetables, clarifications) or generated by a
completion provider (everything else). Uploaded audio is transcribed into a
question string. Blocking upstream calls run in worker threads.
"""
from __future__ import annotations

import asyncio
import logging
import shutil
import tempfile
import typing as t
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, File, HTTPException, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from services.relay_service.config import RelaySettings, load_settings
from services.relay_service.dispatcher import AnswerDispatcher
from services.relay_service.errors import RelayError
from services.shared.models import (
    AskRequest,
    AskResponse,
    ErrorResponse,
    FormatClarifyRequest,
    FormatTimetableRequest,
    FormattedText,
    ProxyRequest,
    SummarizeRequest,
    SummarizeResponse,
    TranscriptionResponse,
)
from timetable_server.formatter import format_clarify, format_full_timetable

logger = logging.getLogger(__name__)

router = APIRouter()


def get_dispatcher(request: Request) -> AnswerDispatcher:
    """Dispatcher built at startup, or lazily if the app was used without lifespan."""
    state = request.app.state
    if state.dispatcher is None:
        state.dispatcher = AnswerDispatcher.from_settings(state.settings)
    return state.dispatcher


def _require_question(question: t.Optional[str]) -> str:
    question = (question or "").strip()
    if not question:
        raise HTTPException(status_code=400, detail="Missing question")
    return question


@router.get("/health")
async def health_check():
    """Health check endpoint for container orchestration."""
    return {"status": "healthy", "service": "timetable-relay"}


@router.post("/proxy", response_model=None)
async def proxy(request: ProxyRequest, dispatcher: AnswerDispatcher = Depends(get_dispatcher)) -> t.Any:
    """Forward a question to the query service and return its JSON untouched."""
    question = _require_question(request.question)
    return await asyncio.to_thread(dispatcher.proxy, question, request.mode or "auto")


@router.post("/summarize", response_model=SummarizeResponse)
async def summarize(
    request: SummarizeRequest, dispatcher: AnswerDispatcher = Depends(get_dispatcher)
) -> SummarizeResponse:
    """
    Answer a question directly from JSON results using the completion provider.

    Only the first few list items are sent to keep the prompt small.
    """
    text = await asyncio.to_thread(dispatcher.summarize, (request.question or "").strip(), request.results)
    return SummarizeResponse.from_text(text)


def _transcribe_upload(dispatcher: AnswerDispatcher, source: t.BinaryIO, suffix: str) -> dict[str, t.Any]:
    """Spool the upload to a temporary file, transcribe it, then remove the file."""
    tmp = tempfile.NamedTemporaryFile(delete=False, suffix=suffix)
    try:
        with tmp:
            shutil.copyfileobj(source, tmp)
        return dispatcher.transcribe(tmp.name)
    finally:
        Path(tmp.name).unlink(missing_ok=True)


@router.post("/whisper", response_model=TranscriptionResponse, response_model_exclude_none=True)
async def whisper(
    audio: t.Optional[UploadFile] = File(None),
    dispatcher: AnswerDispatcher = Depends(get_dispatcher),
) -> TranscriptionResponse:
    """Transcribe an uploaded recording. The temporary copy is always removed."""
    if audio is None:
        raise HTTPException(status_code=400, detail="No audio file uploaded")

    # Providers infer the audio format from the file extension
    suffix = Path(audio.filename or "").suffix or ".webm"
    transcript = await asyncio.to_thread(_transcribe_upload, dispatcher, audio.file, suffix)
    return TranscriptionResponse(**transcript)


@router.post("/ask", response_model=AskResponse)
async def ask(request: AskRequest, dispatcher: AnswerDispatcher = Depends(get_dispatcher)) -> AskResponse:
    """Query once and return the rendered answer."""
    question = _require_question(request.question)
    answer = await asyncio.to_thread(dispatcher.answer, question, request.mode or "auto")
    return AskResponse(answer=answer.text, source=answer.source)


@router.post("/format/timetable", response_model=FormattedText)
async def format_timetable(request: FormatTimetableRequest) -> FormattedText:
    """Render a full timetable payload as Markdown without calling upstream."""
    text = format_full_timetable(
        request.timetable.model_dump(exclude_none=True) if request.timetable else {},
        title=request.title,
        notes=request.notes,
        teachers=request.teachers,
    )
    return FormattedText(text=text)


@router.post("/format/clarify", response_model=FormattedText)
async def format_clarification(request: FormatClarifyRequest) -> FormattedText:
    """Render a clarification prompt as Markdown."""
    descriptor = request.clarify.model_dump() if request.clarify else {}
    return FormattedText(text=format_clarify(descriptor, request.question))


async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content=ErrorResponse(error=str(exc)).model_dump())


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=ErrorResponse(error=str(exc.detail)).model_dump())


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    problems = "; ".join(
        f"{'.'.join(str(part) for part in error.get('loc', ()))}: {error.get('msg', 'invalid')}"
        for error in exc.errors()
    )
    return JSONResponse(status_code=400, content=ErrorResponse(error=f"Invalid request: {problems}").model_dump())


def create_app(
    settings: t.Optional[RelaySettings] = None,
    dispatcher: t.Optional[AnswerDispatcher] = None,
) -> FastAPI:
    """
    Build the relay application.

    Args:
        settings: Relay settings; read from the environment when omitted
        dispatcher: Prebuilt dispatcher; built from settings at startup when omitted
    """
    settings = settings or load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize upstream clients on startup."""
        if app.state.dispatcher is None:
            app.state.dispatcher = AnswerDispatcher.from_settings(settings)
        yield

    app = FastAPI(
        title="Timetable Relay",
        description="Relays timetable questions to the spreadsheet service and renders answers",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.dispatcher = dispatcher

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(RelayError, relay_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.include_router(router)

    # Front-end page, if one is deployed next to the service
    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=static_dir, html=True), name="static")

    return app


def run() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    import uvicorn

    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting timetable relay on port %s", settings.port)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
