import threading
import time
import wave
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Optional

from loguru import logger


class CaptureUnavailable(Exception):
    """Raised when the capture device is missing, busy or access is denied."""
    pass


AutoStopCallback = Callable[[Optional[Path]], None]


class IRecorder(ABC):
    @abstractmethod
    def start(self, output_path: Path, max_seconds: Optional[float] = None,
              on_auto_stop: Optional[AutoStopCallback] = None) -> bool:
        """Start recording audio to output_path.

        Returns False (and does nothing) if a recording is already active.
        If max_seconds is set the recorder stops itself after that long and
        calls on_auto_stop with the output path.

        Raises:
            CaptureUnavailable: If the input device cannot be opened
        """

    @abstractmethod
    def stop(self) -> bool:
        """Stop recording. Stopping while idle is a no-op that returns True."""

    @property
    @abstractmethod
    def is_recording(self) -> bool:
        """Whether recording is active."""

    @property
    @abstractmethod
    def output_path(self) -> Optional[Path]:
        """The output file path for the current/last recording."""


class PyAudioRecorder(IRecorder):
    """Dictation recorder: one 16 kHz mono WAV clip per session, with an optional auto-stop."""

    def __init__(
        self,
        rate: int = 16000,
        channels: int = 1,
        chunk: int = 1024,
    ) -> None:
        self._rate = rate
        self._channels = channels
        self._chunk = chunk
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._timer: Optional[threading.Timer] = None
        self._running = False
        self._output_path: Optional[Path] = None

        self._p = None
        self._stream = None
        self._wf = None

    def start(self, output_path: Path, max_seconds: Optional[float] = None,
              on_auto_stop: Optional[AutoStopCallback] = None) -> bool:
        with self._lock:
            if self._running:
                logger.warning("Recorder already running; ignoring start()")
                return False

            try:
                import pyaudio  # Optional "audio" extra
            except ImportError as e:
                logger.error("PyAudio is not installed. Cannot start recording.")
                raise CaptureUnavailable("PyAudio is not installed") from e

            self._output_path = Path(output_path)
            self._output_path.parent.mkdir(parents=True, exist_ok=True)

            try:
                self._p = pyaudio.PyAudio()
                sample_format = pyaudio.paInt16

                self._wf = wave.open(str(self._output_path), "wb")
                self._wf.setnchannels(self._channels)
                self._wf.setsampwidth(self._p.get_sample_size(sample_format))
                self._wf.setframerate(self._rate)

                self._stream = self._p.open(
                    format=sample_format,
                    channels=self._channels,
                    rate=self._rate,
                    input=True,
                    frames_per_buffer=self._chunk,
                )
            except Exception as e:
                logger.error(f"Failed to open audio input device: {e}")
                self._cleanup()
                raise CaptureUnavailable(f"Microphone unavailable: {e}") from e

            self._running = True
            self._thread = threading.Thread(target=self._run_loop, daemon=True)
            self._thread.start()

            if max_seconds:
                self._timer = threading.Timer(max_seconds, self._auto_stop, args=(on_auto_stop,))
                self._timer.daemon = True
                self._timer.start()

            logger.info(f"Recording started → {self._output_path} (max {max_seconds or '∞'}s)")
            return True

    def _auto_stop(self, on_auto_stop: Optional[AutoStopCallback]) -> None:
        if not self._running:
            return
        logger.info("Maximum recording duration reached; stopping")
        self.stop()
        if on_auto_stop is not None:
            on_auto_stop(self._output_path)

    def _run_loop(self) -> None:
        try:
            while self._running:
                try:
                    data = self._stream.read(self._chunk, exception_on_overflow=False)
                    self._wf.writeframes(data)
                except OSError as e:
                    logger.warning(f"Audio read warning: {e}; retrying")
                    time.sleep(0.05)
                except Exception as e:
                    logger.error(f"Audio read error: {e}; stopping")
                    break
        finally:
            self._running = False
            self._cleanup()
            logger.info("Recording loop finished")

    def stop(self) -> bool:
        timer, self._timer = self._timer, None
        if timer is not None and timer is not threading.current_thread():
            timer.cancel()

        if not self._running and not self._thread:
            logger.info("Recorder not running; stop() noop")
            return True

        self._running = False
        thread, self._thread = self._thread, None
        if thread and thread.is_alive():
            thread.join(timeout=5)
            if thread.is_alive():
                logger.warning("Recorder thread did not stop cleanly within timeout")
                return False
        logger.info(f"Recording stopped → {self._output_path}")
        return True

    def _cleanup(self) -> None:
        try:
            if self._stream is not None:
                try:
                    self._stream.stop_stream()
                    self._stream.close()
                except OSError as e:
                    logger.warning(f"Error closing audio stream: {e}")
        finally:
            self._stream = None

        try:
            if self._p is not None:
                self._p.terminate()
        finally:
            self._p = None

        try:
            if self._wf is not None:
                self._wf.close()
        finally:
            self._wf = None

    @property
    def is_recording(self) -> bool:
        return self._running

    @property
    def output_path(self) -> Optional[Path]:
        return self._output_path
