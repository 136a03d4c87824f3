# -*- coding: utf-8 -*-
import json
import sys
import typing as t
from pathlib import Path

import click
import httpx
from rich.console import Console
from rich.json import JSON
from rich.markdown import Markdown
from rich.panel import Panel

console = Console()
err_console = Console(stderr=True)

DEFAULT_RELAY_URL = "http://localhost:8080"
REQUEST_TIMEOUT = 120.0


def make_client(base_url: str) -> httpx.Client:
    """HTTP client for the relay service."""
    return httpx.Client(base_url=base_url, timeout=REQUEST_TIMEOUT)


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json().get("error") or response.text
    except (ValueError, AttributeError):
        return response.text


def _call(base_url: str, path: str, **kwargs: t.Any) -> t.Any:
    """POST to the relay and return the JSON body; exits with status 1 on failure."""
    try:
        with make_client(base_url) as client:
            response = client.post(path, **kwargs)
            response.raise_for_status()
            return response.json()
    except httpx.HTTPStatusError as e:
        err_console.print(f"[red]Error:[/red] {e.response.status_code} {_error_message(e.response)}")
    except httpx.RequestError as e:
        err_console.print(f"[red]Error:[/red] Could not reach relay at {base_url}: {e}")
    raise SystemExit(1)


def _print_answer(question: str, data: dict) -> None:
    console.print(Panel.fit(f"[bold blue]{question}[/bold blue]", border_style="blue"))
    console.print(Markdown(data.get("answer", "")))
    console.print(f"[dim]answered via {data.get('source', 'unknown')}[/dim]")


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--url",
    envvar="TIMETABLE_RELAY_URL",
    default=DEFAULT_RELAY_URL,
    show_default=True,
    help="Base URL of the timetable relay.",
)
@click.pass_context
def main(ctx: click.Context, url: str) -> None:
    """Ask timetable questions through the relay service."""
    ctx.obj = {"url": url.rstrip("/")}


@main.command()
@click.argument("question", nargs=-1, required=True)
@click.option("--mode", default="auto", show_default=True, help="Query mode passed to the query service.")
@click.option("--raw", is_flag=True, help="Print the query service JSON instead of the rendered answer.")
@click.pass_context
def ask(ctx: click.Context, question: tuple[str, ...], mode: str, raw: bool) -> None:
    """Ask QUESTION and render the answer as Markdown."""
    text = " ".join(question).strip()
    payload = {"question": text, "mode": mode}

    if raw:
        with console.status("[bold green]Querying timetable..."):
            data = _call(ctx.obj["url"], "/proxy", json=payload)
        console.print(JSON(json.dumps(data, indent=2)))
        return

    with console.status("[bold green]Answering..."):
        data = _call(ctx.obj["url"], "/ask", json=payload)
    _print_answer(text, data)


@main.command()
@click.argument("audio_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--ask", "then_ask", is_flag=True, help="Ask the transcribed question right away.")
@click.pass_context
def transcribe(ctx: click.Context, audio_file: str, then_ask: bool) -> None:
    """Transcribe AUDIO_FILE into a question."""
    path = Path(audio_file)
    with console.status(f"[bold green]Transcribing {path.name}..."):
        with open(path, "rb") as audio:
            data = _call(ctx.obj["url"], "/whisper", files={"audio": (path.name, audio)})

    question = (data.get("text") or "").strip()
    if not question:
        err_console.print("[yellow]No speech recognized.[/yellow]")
        raise SystemExit(1)

    console.print(question)
    if then_ask:
        with console.status("[bold green]Answering..."):
            answer = _call(ctx.obj["url"], "/ask", json={"question": question, "mode": "auto"})
        _print_answer(question, answer)


if __name__ == "__main__":
    sys.exit(main())
