"""Text service: structuring, project summaries and transcription."""

from typing import Literal, Optional, Sequence

from loguru import logger

from dailyflow.config import load_config
from dailyflow.text.base import (
    ITextBackend,
    SummaryTask,
    TextServiceError,
    TextServiceUnavailable,
)
from dailyflow.text.prompts import SUMMARY_INSTRUCTIONS

MAX_SUMMARY_TASKS = 10
SUMMARY_CONTEXT_CAP = 16000  # ~4 chars per token -> ~4k tokens
TRUNCATION_MARKER = "\n...[truncated]"


def get_backend(
    name: Literal["openai", "claude", "edge"] = "openai",
    api_key: Optional[str] = None,
    access_token: Optional[str] = None,
) -> ITextBackend:
    """Get a text backend by name.

    Args:
        name: Backend name - "openai", "claude" or "edge"
        api_key: Optional user-supplied key for the direct backends
        access_token: Session token for the edge backend

    Raises:
        ValueError: If backend name is unknown
    """
    if name == "openai":
        from dailyflow.text.openai_backend import OpenAITextBackend
        return OpenAITextBackend(api_key)
    elif name == "claude":
        from dailyflow.text.claude_backend import ClaudeTextBackend
        return ClaudeTextBackend(api_key)
    elif name == "edge":
        from dailyflow.text.edge_backend import EdgeTextBackend
        return EdgeTextBackend(access_token=access_token)
    raise ValueError(f"Unknown text backend: {name}")


def build_summary_context(tasks: Sequence[SummaryTask]) -> str:
    """Assemble at most MAX_SUMMARY_TASKS task blocks, capped at SUMMARY_CONTEXT_CAP chars."""
    limited = list(tasks)[:MAX_SUMMARY_TASKS]
    context = "\n\n".join(t.to_block() for t in limited)
    if len(context) > SUMMARY_CONTEXT_CAP:
        context = context[:SUMMARY_CONTEXT_CAP] + TRUNCATION_MARKER
    return context


class TextService:
    """Client-side shaping of text service requests.

    Each call goes to the one configured backend; a failure is raised to the
    caller as-is and never re-issued elsewhere.
    """

    def __init__(self, backend: ITextBackend, transcriber: Optional[ITextBackend] = None) -> None:
        self.backend = backend
        self.transcriber = transcriber or backend

    @classmethod
    def from_config(cls, api_key: Optional[str] = None, access_token: Optional[str] = None) -> "TextService":
        config = load_config()
        name = config.text_backend
        backend = get_backend(name, api_key=api_key, access_token=access_token)
        # Claude cannot transcribe; audio goes through OpenAI with its own env key
        transcriber = get_backend("openai") if name == "claude" else backend
        return cls(backend, transcriber)

    def _call(self, label: str, call):
        logger.info(f"Attempting {label} with {self.backend.name} backend")
        try:
            return call(self.backend)
        except TextServiceUnavailable as e:
            logger.warning(f"{self.backend.name} {label} backend unavailable: {e}")
            raise
        except TextServiceError as e:
            logger.error(f"{self.backend.name} {label} backend failed: {e}")
            raise

    def structure_text(self, raw: str) -> str:
        """Structure raw text into bullets. Blank input returns "" without a network call."""
        if not raw or not raw.strip():
            return ""
        return self._call("structuring", lambda b: b.structure_text(raw))

    def summarize_project(self, project_name: str, tasks: Sequence[SummaryTask]) -> str:
        """Catch-up summary for the most recent tasks (caller orders them newest first)."""
        if not tasks:
            raise ValueError("No tasks provided")
        context = build_summary_context(tasks)
        logger.info(
            f"Summarizing project {project_name}: {min(len(tasks), MAX_SUMMARY_TASKS)} of {len(tasks)} tasks, "
            f"{len(context)} chars"
        )
        return self._call(
            "summary", lambda b: b.summarize_project(project_name, context, SUMMARY_INSTRUCTIONS)
        )

    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        return self.transcriber.transcribe_audio(audio_path, language)


__all__ = [
    "ITextBackend",
    "MAX_SUMMARY_TASKS",
    "SUMMARY_CONTEXT_CAP",
    "SummaryTask",
    "TextService",
    "TextServiceError",
    "TextServiceUnavailable",
    "build_summary_context",
    "get_backend",
]
