"""Base classes and interfaces for text service backends."""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable

import requests
from loguru import logger


class TextServiceUnavailable(Exception):
    """Raised when the text service is unavailable (e.g., no API key)."""
    pass


class TextServiceError(Exception):
    """Raised when a text service call fails."""
    pass


@dataclass
class SummaryTask:
    """One deliverable's worth of context for a project catch-up summary."""
    task_title: str
    deliverables: str
    reports: str = ""

    def to_block(self) -> str:
        block = f"TITLE: {self.task_title}\nDELIVERABLES: {self.deliverables}\n"
        if self.reports:
            block += f"REPORTS: {self.reports}"
        return block


class ITextBackend(ABC):
    """Interface for text service backends."""

    name = "base"

    @abstractmethod
    def structure_text(self, raw: str) -> str:
        """Turn free-form text into a concise bullet list.

        Raises:
            TextServiceUnavailable: If the service is unavailable
            TextServiceError: For other failures
        """

    @abstractmethod
    def summarize_project(self, project_name: str, context: str, instructions: str) -> str:
        """Produce a markdown catch-up summary from an already-assembled context."""

    @abstractmethod
    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        """Transcribe a single audio clip to text."""


def post_once(label: str, send: Callable[[], requests.Response]) -> requests.Response:
    """Issue one HTTP request and map failures to text service errors.

    Failed calls are never retried; the user repeats the action instead.
    401/403 raise TextServiceUnavailable, everything else TextServiceError.
    """
    try:
        start = time.time()
        resp = send()
        dur = time.time() - start
    except requests.exceptions.RequestException as e:
        logger.error(f"Network error during {label}: {e}")
        raise TextServiceError(f"{label} network error: {e}") from e

    logger.info(f"{label} HTTP {resp.status_code} in {dur:.2f}s")
    if resp.status_code == 200:
        return resp
    if resp.status_code in (401, 403):
        raise TextServiceUnavailable(f"{label} rejected credentials ({resp.status_code})")
    logger.error(f"{label} failed with HTTP {resp.status_code}: {resp.text}")
    raise TextServiceError(f"{label} failed (HTTP {resp.status_code}): {resp.text}")
