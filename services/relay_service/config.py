"""
Relay configuration loaded from environment variables.

Settings are read once at startup and handed to the dispatcher explicitly.
For local development, put them in a .env file in the working directory.
"""
from __future__ import annotations

import os
import typing as t
from dataclasses import dataclass, field

from dotenv import load_dotenv

GROQ_BASE_URL = "https://api.groq.com/openai/v1"


def _split(value: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class RelaySettings:
    """Everything the relay needs to reach its upstream services."""
    port: int = 8080
    password: str = ""
    apps_script_exec: str = ""
    query_timeout: float = 30.0

    groq_api_key: str = ""
    groq_base_url: str = GROQ_BASE_URL
    openai_api_key: str = ""
    completion_providers: tuple[str, ...] = ("groq", "openai")
    completion_model: str = "openai/gpt-oss-20b"
    openai_completion_model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-large-v3-turbo"
    openai_transcription_model: str = "whisper-1"

    results_preview_limit: int = 5
    static_dir: str = "public"
    cors_origins: tuple[str, ...] = field(default=("*",))
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: t.Optional[t.Mapping[str, str]] = None) -> "RelaySettings":
        """
        Build settings from the environment.

        Args:
            environ: Optional mapping to read instead of os.environ (tests).

        Returns:
            A RelaySettings instance with defaults for anything unset.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        return cls(
            port=int(env.get("PORT") or defaults.port),
            password=env.get("PASSWORD", ""),
            apps_script_exec=env.get("APPS_SCRIPT_EXEC", ""),
            query_timeout=float(env.get("QUERY_TIMEOUT") or defaults.query_timeout),
            # GROQ_KEY is the older name some deployments still use
            groq_api_key=env.get("GROQ_API_KEY") or env.get("GROQ_KEY", ""),
            groq_base_url=env.get("GROQ_BASE_URL") or defaults.groq_base_url,
            openai_api_key=env.get("OPENAI_API_KEY", ""),
            completion_providers=_split(env.get("COMPLETION_PROVIDERS", "")) or defaults.completion_providers,
            completion_model=env.get("COMPLETION_MODEL") or defaults.completion_model,
            openai_completion_model=env.get("OPENAI_COMPLETION_MODEL") or defaults.openai_completion_model,
            transcription_model=env.get("TRANSCRIPTION_MODEL") or defaults.transcription_model,
            openai_transcription_model=env.get("OPENAI_TRANSCRIPTION_MODEL") or defaults.openai_transcription_model,
            static_dir=env.get("STATIC_DIR") or defaults.static_dir,
            cors_origins=_split(env.get("CORS_ORIGINS", "")) or defaults.cors_origins,
            log_level=env.get("LOG_LEVEL") or defaults.log_level,
        )


def load_settings(env_file: t.Optional[str] = None) -> RelaySettings:
    """Load a .env file (if present) without overriding real env vars, then read settings."""
    load_dotenv(env_file, override=False)
    return RelaySettings.from_env()
