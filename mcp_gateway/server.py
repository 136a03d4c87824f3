"""
MCP Gateway Server - timetable tools for MCP clients.

Formatting tools run in-process; question answering and transcription are
relayed over HTTP to the timetable relay service.
"""
from __future__ import annotations

import os
import typing as t
from dataclasses import asdict
from pathlib import Path

import requests
from fastmcp import FastMCP

from timetable_server.formatter import format_clarify as _format_clarify
from timetable_server.formatter import format_full_timetable as _format_full_timetable
from timetable_server.slots import coalesce_day_slots as _coalesce_day_slots

mcp = FastMCP("TimetableRelayGateway")

# Service URL - configurable via environment variable
RELAY_SERVICE_URL = os.getenv("TIMETABLE_RELAY_URL", "http://localhost:8080")

# Timeout settings for upstream + LLM round trips (in seconds)
ASK_TIMEOUT = 120.0
TRANSCRIBE_TIMEOUT = 300.0


def _post(path: str, timeout: float, **kwargs: t.Any) -> dict[str, t.Any]:
    """POST to the relay and return its JSON, raising RuntimeError on failure."""
    try:
        response = requests.post(f"{RELAY_SERVICE_URL}{path}", timeout=timeout, **kwargs)
        response.raise_for_status()
        return response.json()
    except requests.Timeout:
        raise RuntimeError(f"Timetable relay timed out after {timeout} seconds")
    except requests.HTTPError as e:
        raise RuntimeError(f"HTTP error from timetable relay: {e.response.status_code} {e.response.text}")
    except requests.RequestException as e:
        raise RuntimeError(f"Error calling timetable relay: {e}")


def _ask_timetable(question: str, mode: str = "auto") -> str:
    """Ask the relay a timetable question and return the Markdown answer."""
    data = _post("/ask", ASK_TIMEOUT, json={"question": question, "mode": mode})
    return data.get("answer", "")


def _transcribe_audio(audio_path: str) -> str:
    """Transcribe a local recording through the relay and return the text."""
    path = Path(audio_path)
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {audio_path}")
    with open(path, "rb") as audio:
        data = _post("/whisper", TRANSCRIBE_TIMEOUT, files={"audio": (path.name, audio)})
    return data.get("text", "")


def get_service_status() -> dict[str, str]:
    return {
        "timetable_relay": RELAY_SERVICE_URL,
        "gateway_status": "running",
    }


@mcp.tool()
def format_full_timetable(
    timetable: dict[str, t.Any],
    title: t.Optional[str] = None,
    notes: t.Optional[str] = None,
    teachers: t.Optional[list[str]] = None,
) -> str:
    """Render a teacher's timetable rows as Markdown, one table per weekday.

    :param timetable: {"teacher"?, "rows"? | "grouped"?} as returned by the query service.
    :param title: Optional heading; defaults to "<teacher> timetable".
    :param notes: Optional italic note under the heading.
    :param teachers: Candidate teacher names, used when the timetable has none.
    :return: Markdown text.
    """
    return _format_full_timetable(timetable, title=title, notes=notes, teachers=teachers)


@mcp.tool()
def format_clarify(clarify: dict[str, t.Any], question: t.Optional[str] = None) -> str:
    """Render a "which one did you mean?" message for an ambiguous query."""
    return _format_clarify(clarify, question)


@mcp.tool()
def coalesce_day_slots(slots: list[dict[str, t.Any]]) -> list[dict[str, t.Any]]:
    """Merge one day's timetable rows into contiguous multi-period slots."""
    return [asdict(slot) for slot in _coalesce_day_slots(slots)]


@mcp.tool()
def ask_timetable(question: str, mode: str = "auto") -> str:
    """Answer a natural-language timetable question via the relay."""
    return _ask_timetable(question, mode)


@mcp.tool()
def transcribe_audio(audio_path: str) -> str:
    """Turn a recorded question into text via the relay."""
    return _transcribe_audio(audio_path)


@mcp.tool()
def get_gateway_info() -> dict[str, str]:
    """Get the URL of the timetable relay this gateway talks to."""
    return get_service_status()


if __name__ == "__main__":
    print(f"Starting MCP Gateway Server for {RELAY_SERVICE_URL}")
    mcp.run()
