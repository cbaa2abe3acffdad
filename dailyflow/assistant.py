"""Capture-then-review helper shared by every text entry surface.

Dictation records a clip, transcribes it and appends the transcript to the
draft. AI preview structures the draft into a tentative preview that only
counts once applied. The assistant never persists anything; the owning
surface reads ``draft`` and ``applied`` when it saves.
"""

import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

from loguru import logger

from dailyflow.recorder import CaptureUnavailable, IRecorder
from dailyflow.text import TextService, TextServiceError, TextServiceUnavailable


class AssistantState(Enum):
    IDLE = "idle"
    RECORDING = "recording"
    TRANSCRIBING = "transcribing"
    PREVIEWING = "previewing"


class TextAssistant:
    def __init__(
        self,
        text_service: TextService,
        recorder: IRecorder,
        recordings_dir: Path,
        max_seconds: float = 90,
        language: str = "en",
        draft: str = "",
        on_change: Optional[Callable[["TextAssistant"], None]] = None,
    ) -> None:
        self._text = text_service
        self._recorder = recorder
        self._recordings_dir = Path(recordings_dir)
        self.max_seconds = max_seconds
        self.language = language
        self.on_change = on_change

        self.draft = draft
        self.preview: Optional[str] = None
        self.applied: Optional[str] = None
        self.error: Optional[str] = None
        self.state = AssistantState.IDLE

        self._lock = threading.Lock()
        self._capturing = False
        self._clip_path: Optional[Path] = None

    def _changed(self) -> None:
        if self.on_change is not None:
            self.on_change(self)

    def set_draft(self, text: str) -> None:
        self.draft = text

    def reset(self) -> None:
        self.draft = ""
        self.preview = None
        self.applied = None
        self.error = None
        self._changed()

    # --- Dictation ---
    @property
    def is_recording(self) -> bool:
        return self._capturing

    def start_dictation(self) -> bool:
        """Begin capture. Returns False if already capturing or the device failed."""
        with self._lock:
            if self._capturing:
                logger.debug("Dictation already active; start ignored")
                return False
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            clip_path = self._recordings_dir / f"dictation_{stamp}.wav"
            try:
                started = self._recorder.start(
                    clip_path, max_seconds=self.max_seconds, on_auto_stop=self._on_auto_stop
                )
            except CaptureUnavailable as e:
                logger.warning(f"Dictation could not start: {e}")
                self.error = str(e)
                self._changed()
                return False
            if not started:
                return False
            self._capturing = True
            self._clip_path = clip_path
            self.error = None
            self.state = AssistantState.RECORDING
        self._changed()
        return True

    def stop_dictation(self) -> Optional[str]:
        """Stop capture and transcribe. Returns the transcript, or None if idle or failed."""
        if not self._capturing:
            logger.debug("Dictation not active; stop ignored")
            return None
        self._recorder.stop()
        return self._finish_capture()

    def _on_auto_stop(self, _path: Optional[Path]) -> None:
        self._finish_capture()

    def _finish_capture(self) -> Optional[str]:
        with self._lock:
            # Manual stop and the timeout can race; only one of them transcribes
            if not self._capturing:
                return None
            self._capturing = False
            clip_path, self._clip_path = self._clip_path, None
            self.state = AssistantState.TRANSCRIBING
        self._changed()

        try:
            transcript = self._text.transcribe_audio(str(clip_path), self.language).strip()
        except (TextServiceUnavailable, TextServiceError, OSError) as e:
            logger.error(f"Transcription failed: {e}")
            self.error = f"Transcription failed: {e}"
            self.state = AssistantState.IDLE
            self._changed()
            return None
        finally:
            if clip_path is not None:
                clip_path.unlink(missing_ok=True)

        if transcript:
            self.draft = f"{self.draft}\n{transcript}" if self.draft else transcript
        logger.info(f"Dictation appended {len(transcript)} chars")
        self.state = AssistantState.IDLE
        self._changed()
        return transcript

    # --- AI preview ---
    def request_preview(self) -> Optional[str]:
        """Structure the current draft into a new pending preview, replacing any unapplied one."""
        self.preview = None
        self.error = None
        self.state = AssistantState.PREVIEWING
        self._changed()
        try:
            self.preview = self._text.structure_text(self.draft)
        except (TextServiceUnavailable, TextServiceError) as e:
            logger.error(f"AI preview failed: {e}")
            self.error = f"AI preview failed: {e}"
        finally:
            self.state = AssistantState.IDLE
            self._changed()
        return self.preview

    def apply_preview(self) -> Optional[str]:
        if self.preview is None:
            return None
        self.applied, self.preview = self.preview, None
        self._changed()
        return self.applied

    def dismiss_preview(self) -> None:
        self.preview = None
        self._changed()

    def close(self) -> None:
        """Release the capture device when the owning surface is dismissed."""
        with self._lock:
            was_capturing = self._capturing
            self._capturing = False
            clip_path, self._clip_path = self._clip_path, None
            self.state = AssistantState.IDLE
        if was_capturing:
            self._recorder.stop()
            if clip_path is not None:
                clip_path.unlink(missing_ok=True)
            logger.info("Dictation discarded on close")
