import sys
import threading
import types
import wave

import pytest

from dailyflow.recorder import CaptureUnavailable, PyAudioRecorder


class _FakeStream:
    def __init__(self):
        self.closed = False

    def read(self, frames, exception_on_overflow=False):
        return b"\x00\x00" * frames

    def stop_stream(self):
        pass

    def close(self):
        self.closed = True


class _FakePyAudio:
    fail_open = False
    instances = []

    def __init__(self):
        self.stream = _FakeStream()
        self.terminated = False
        _FakePyAudio.instances.append(self)

    def get_sample_size(self, sample_format):
        return 2

    def open(self, **kwargs):
        if _FakePyAudio.fail_open:
            raise OSError("Invalid input device")
        return self.stream

    def terminate(self):
        self.terminated = True


@pytest.fixture
def fake_pyaudio(monkeypatch):
    _FakePyAudio.fail_open = False
    _FakePyAudio.instances = []
    monkeypatch.setitem(sys.modules, "pyaudio", types.SimpleNamespace(PyAudio=_FakePyAudio, paInt16=8))
    return _FakePyAudio


def test_records_wav_and_releases_device(fake_pyaudio, tmp_path):
    recorder = PyAudioRecorder()
    clip = tmp_path / "clips" / "clip.wav"
    assert recorder.start(clip) is True
    assert recorder.is_recording
    assert recorder.start(tmp_path / "other.wav") is False

    assert recorder.stop() is True
    assert not recorder.is_recording
    [device] = fake_pyaudio.instances
    assert device.terminated and device.stream.closed
    with wave.open(str(clip), "rb") as wf:
        assert wf.getnchannels() == 1
        assert wf.getframerate() == 16000


def test_auto_stop_after_max_seconds(fake_pyaudio, tmp_path):
    recorder = PyAudioRecorder()
    stopped = threading.Event()
    seen = []

    def on_auto_stop(path):
        seen.append(path)
        stopped.set()

    recorder.start(tmp_path / "clip.wav", max_seconds=0.05, on_auto_stop=on_auto_stop)
    assert stopped.wait(timeout=5)
    assert seen == [tmp_path / "clip.wav"]
    assert not recorder.is_recording


def test_device_open_failure_raises_capture_unavailable(fake_pyaudio, tmp_path):
    fake_pyaudio.fail_open = True
    recorder = PyAudioRecorder()
    with pytest.raises(CaptureUnavailable):
        recorder.start(tmp_path / "clip.wav")
    assert recorder.is_recording is False
    assert fake_pyaudio.instances[0].terminated


def test_pyaudio_recorder_stop_when_idle_is_noop():
    assert PyAudioRecorder().stop() is True


def test_pyaudio_missing_raises_capture_unavailable(tmp_path, monkeypatch):
    monkeypatch.setitem(sys.modules, "pyaudio", None)
    recorder = PyAudioRecorder()
    with pytest.raises(CaptureUnavailable):
        recorder.start(tmp_path / "clip.wav")
    assert recorder.is_recording is False
