import os
import shutil
from types import SimpleNamespace

import pytest

from agi_tts.agi.channel import GetDataResult
from agi_tts.audio.transcoder import TelephonyProfile
from agi_tts.core.pipeline import AudioPipeline


class FakeSynthesizer:
    """Writes a small MP3-ish payload instead of calling Edge TTS."""

    def __init__(self, *, fail=False, partial=False):
        self.fail = fail
        self.partial = partial
        self.calls = []

    async def synthesize(self, voice_id, profile, text, dest_path):
        self.calls.append({"voice": voice_id, "profile": profile, "text": text, "path": dest_path})
        if self.partial:
            with open(dest_path, "wb") as f:
                f.write(b"ID3partial")
        if self.fail:
            raise RuntimeError("engine unavailable")
        with open(dest_path, "wb") as f:
            f.write(b"ID3" + text.encode("utf-8"))
        return dest_path


class FakeTranscoder:
    """Copies the source file instead of running sox."""

    def __init__(self, *, fail=False, partial=False):
        self.fail = fail
        self.partial = partial
        self.calls = []

    async def transcode(self, source_path, dest_path, profile: TelephonyProfile):
        self.calls.append({"source": source_path, "dest": dest_path, "profile": profile})
        if self.partial:
            with open(dest_path, "wb") as f:
                f.write(b"RIFF")
        if self.fail:
            raise RuntimeError("sox crashed")
        shutil.copyfile(source_path, dest_path)
        return dest_path


class FakeChannel:
    """Telephony channel double recording every command."""

    def __init__(self, *, context="from-internal", data_result=None, stream_error=None,
                 data_error=None, routing_error=None):
        self.request = SimpleNamespace(context=context, callerid="1000", extension="200")
        self.data_result = data_result
        self.stream_error = stream_error
        self.data_error = data_error
        self.routing_error = routing_error
        self.streamed = []
        self.get_data_calls = []
        self.routing = []
        self.files_seen = []

    def _snapshot(self, name):
        directory = os.path.dirname(name)
        self.files_seen.append(sorted(os.listdir(directory)) if os.path.isdir(directory) else [])

    async def stream_file(self, name):
        self._snapshot(name)
        self.streamed.append(name)
        if self.stream_error:
            raise self.stream_error

    async def get_data(self, name, timeout_ms, max_digits):
        self._snapshot(name)
        self.get_data_calls.append((name, timeout_ms, max_digits))
        if self.data_error:
            raise self.data_error
        return self.data_result

    async def set_extension(self, extension):
        if self.routing_error:
            raise self.routing_error
        self.routing.append(("extension", extension))

    async def set_priority(self, priority):
        self.routing.append(("priority", priority))

    async def set_context(self, context):
        self.routing.append(("context", context))


@pytest.fixture
def temp_dir(tmp_path):
    path = tmp_path / "tts-edge-asterisk"
    return str(path)


@pytest.fixture
def synthesizer():
    return FakeSynthesizer()


@pytest.fixture
def transcoder():
    return FakeTranscoder()


@pytest.fixture
def pipeline(synthesizer, transcoder, temp_dir):
    return AudioPipeline(synthesizer, transcoder, temp_dir=temp_dir)


@pytest.fixture
def make_channel():
    return FakeChannel


@pytest.fixture
def digit_result():
    def _make(digits="", failure=False, timed_out=False):
        return GetDataResult(failure=failure, digits=digits, timed_out=timed_out)
    return _make


@pytest.fixture
def make_synthesizer():
    return FakeSynthesizer


@pytest.fixture
def make_transcoder():
    return FakeTranscoder
