from datetime import date
from pathlib import Path
from typing import List, Optional

import pytest

from dailyflow.recorder import CaptureUnavailable, IRecorder
from dailyflow.store.local_backend import LocalDataStore
from dailyflow.text import TextService
from dailyflow.text.base import ITextBackend


TODAY = date(2024, 6, 12)  # a Wednesday


class StubTextBackend(ITextBackend):
    """Records every call; returns canned text or raises the configured error."""

    name = "stub"

    def __init__(self, structured: str = "- Structured", summary: str = "## Summary",
                 transcript: str = "dictated words", error: Optional[Exception] = None) -> None:
        self.structured = structured
        self.summary = summary
        self.transcript = transcript
        self.error = error
        self.calls: List[tuple] = []

    def _maybe_fail(self) -> None:
        if self.error is not None:
            raise self.error

    def structure_text(self, raw: str) -> str:
        self.calls.append(("structure_text", raw))
        self._maybe_fail()
        return self.structured

    def summarize_project(self, project_name: str, context: str, instructions: str) -> str:
        self.calls.append(("summarize_project", project_name, context, instructions))
        self._maybe_fail()
        return self.summary

    def transcribe_audio(self, audio_path: str, language: str = "en") -> str:
        self.calls.append(("transcribe_audio", audio_path, language))
        self._maybe_fail()
        return self.transcript


class FakeRecorder(IRecorder):
    """In-memory recorder; writes a placeholder clip so cleanup can be observed."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.starts = 0
        self.stops = 0
        self._running = False
        self._output_path: Optional[Path] = None
        self._on_auto_stop = None

    def start(self, output_path, max_seconds=None, on_auto_stop=None) -> bool:
        if self.fail:
            raise CaptureUnavailable("Microphone access denied")
        if self._running:
            return False
        self.starts += 1
        self._running = True
        self._output_path = Path(output_path)
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        self._output_path.write_bytes(b"RIFF")
        self._on_auto_stop = on_auto_stop
        return True

    def stop(self) -> bool:
        if self._running:
            self.stops += 1
        self._running = False
        return True

    def trigger_timeout(self) -> None:
        self.stop()
        if self._on_auto_stop is not None:
            self._on_auto_stop(self._output_path)

    @property
    def is_recording(self) -> bool:
        return self._running

    @property
    def output_path(self) -> Optional[Path]:
        return self._output_path


@pytest.fixture
def store(tmp_path):
    return LocalDataStore(tmp_path / "store.json")


@pytest.fixture
def session(store):
    return store.sign_up("ada@example.com", "correct horse")


@pytest.fixture
def backend():
    return StubTextBackend()


@pytest.fixture
def text_service(backend):
    return TextService(backend)


@pytest.fixture
def recorder():
    return FakeRecorder()

