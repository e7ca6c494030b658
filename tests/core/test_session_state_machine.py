"""
Tests for the per-call session state machine.

Every scenario checks that the session ends in a terminal state with all of
its temporary files gone, whichever stage failed.
"""

import asyncio
import os

import pytest

from agi_tts.core.models import ArtifactKind, Session, SessionMode, SessionState
from agi_tts.core.pipeline import AudioPipeline
from agi_tts.core.session import SessionStateMachine, handle_dtmf_response
from agi_tts.core.temp_resources import TempResourceTracker
from agi_tts.errors import DeliveryError, InputError, SynthesisError, TranscodeError

S = SessionState


class _CountingTracker(TempResourceTracker):
    def __init__(self, session_id=None):
        super().__init__(session_id)
        self.release_calls = 0

    def release_all(self, *extra_paths):
        self.release_calls += 1
        return super().release_all(*extra_paths)


def _machine(pipeline, channel, text="Hola", mode=SessionMode.STREAM, language="es"):
    session = Session(input_text=text, language=language, mode=mode)
    tracker = _CountingTracker(session.id)
    return SessionStateMachine(session, pipeline, channel, tracker=tracker), tracker


@pytest.mark.asyncio
async def test_stream_end_to_end(pipeline, make_channel, temp_dir):
    channel = make_channel()
    machine, tracker = _machine(pipeline, channel)

    session = await machine.run()

    assert session.state == S.DONE
    assert session.history == [S.RECEIVED, S.SYNTHESIZING, S.TRANSCODING, S.DELIVERING, S.CLEANING_UP, S.DONE]
    assert [a.kind for a in session.artifacts] == [ArtifactKind.SYNTHESIZED, ArtifactKind.TRANSCODED]

    converted = session.artifacts[1]
    assert channel.streamed == [os.path.splitext(converted.path)[0]]
    # Both files existed while the caller heard the prompt
    assert len(channel.files_seen[0]) == 2

    assert tracker.release_calls == 1
    assert all(not os.path.exists(a.path) for a in session.artifacts)
    assert all(a.owner_session_id is None for a in session.artifacts)
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_missing_text_errors_without_running_pipeline(pipeline, make_channel, synthesizer):
    channel = make_channel()
    machine, tracker = _machine(pipeline, channel, text=None)

    session = await machine.run()

    assert session.state == S.ERRORED
    assert session.history == [S.RECEIVED, S.ERRORED, S.CLEANING_UP, S.ERRORED]
    assert isinstance(session.error, InputError)
    assert synthesizer.calls == []
    assert channel.streamed == []
    assert tracker.release_calls == 1


@pytest.mark.asyncio
async def test_blank_text_is_rejected(pipeline, make_channel, synthesizer):
    machine, _ = _machine(pipeline, make_channel(), text="   ")
    session = await machine.run()

    assert isinstance(session.error, InputError)
    assert synthesizer.calls == []


@pytest.mark.asyncio
async def test_synthesis_failure_skips_delivery_and_cleans_up(make_synthesizer, transcoder, temp_dir, make_channel):
    pipeline = AudioPipeline(make_synthesizer(fail=True), transcoder, temp_dir=temp_dir)
    channel = make_channel()
    machine, tracker = _machine(pipeline, channel)

    session = await machine.run()

    assert session.state == S.ERRORED
    assert S.DELIVERING not in session.history
    assert session.history[:3] == [S.RECEIVED, S.SYNTHESIZING, S.ERRORED]
    assert isinstance(session.error, SynthesisError)
    assert channel.streamed == []
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_transcode_failure_removes_synthesized_file(synthesizer, make_transcoder, temp_dir, make_channel):
    pipeline = AudioPipeline(synthesizer, make_transcoder(fail=True), temp_dir=temp_dir)
    channel = make_channel()
    machine, tracker = _machine(pipeline, channel)

    session = await machine.run()

    assert session.state == S.ERRORED
    assert isinstance(session.error, TranscodeError)
    assert [a.kind for a in session.artifacts] == [ArtifactKind.SYNTHESIZED]
    assert channel.streamed == []
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_stream_failure_still_cleans_up(pipeline, make_channel, temp_dir):
    channel = make_channel(stream_error=DeliveryError("STREAM FILE failed"))
    machine, tracker = _machine(pipeline, channel)

    session = await machine.run()

    assert session.state == S.ERRORED
    assert isinstance(session.error, DeliveryError)
    assert session.history[-3:] == [S.ERRORED, S.CLEANING_UP, S.ERRORED]
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_unexpected_channel_fault_is_wrapped_and_cleaned_up(pipeline, make_channel, temp_dir):
    channel = make_channel(stream_error=RuntimeError("socket exploded"))
    machine, tracker = _machine(pipeline, channel)

    session = await machine.run()

    assert isinstance(session.error, DeliveryError)
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_collect_digit_routes_call(pipeline, make_channel, digit_result, temp_dir):
    channel = make_channel(context="ivr-menu", data_result=digit_result("7"))
    machine, tracker = _machine(pipeline, channel, mode=SessionMode.COLLECT_DIGIT)

    session = await machine.run()

    assert session.state == S.DONE
    assert session.digit == "7"
    converted = session.artifacts[1]
    assert channel.get_data_calls == [(os.path.splitext(converted.path)[0], 5000, 1)]
    assert channel.routing == [("extension", "7"), ("priority", 1), ("context", "ivr-menu")]
    assert channel.streamed == []
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "result_kwargs",
    [
        {"failure": True},
        {"digits": ""},
        {"digits": "", "timed_out": True},
    ],
)
async def test_collect_digit_without_digit_is_not_an_error(pipeline, make_channel, digit_result, temp_dir, result_kwargs):
    channel = make_channel(data_result=digit_result(**result_kwargs))
    machine, tracker = _machine(pipeline, channel, mode=SessionMode.COLLECT_DIGIT)

    session = await machine.run()

    assert session.state == S.DONE
    assert session.error is None
    assert session.digit is None
    assert channel.routing == []
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_collect_digit_channel_failure_is_delivery_error(pipeline, make_channel, temp_dir):
    channel = make_channel(data_error=ConnectionResetError("peer gone"))
    machine, tracker = _machine(pipeline, channel, mode=SessionMode.COLLECT_DIGIT)

    session = await machine.run()

    assert session.state == S.ERRORED
    assert isinstance(session.error, DeliveryError)
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_routing_failure_is_logged_not_raised(pipeline, make_channel, digit_result):
    channel = make_channel(data_result=digit_result("3"), routing_error=DeliveryError("SET EXTENSION failed"))
    machine, _ = _machine(pipeline, channel, mode=SessionMode.COLLECT_DIGIT)

    session = await machine.run()

    assert session.state == S.DONE
    assert session.digit is None


@pytest.mark.asyncio
async def test_cancellation_during_delivery_still_cleans_up(pipeline, make_channel, temp_dir):
    started = asyncio.Event()

    class _HangingChannel(make_channel):
        async def stream_file(self, name):
            started.set()
            await asyncio.sleep(3600)

    machine, tracker = _machine(pipeline, _HangingChannel())
    task = asyncio.create_task(machine.run())
    await started.wait()
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert machine.session.state == S.ERRORED
    assert machine.is_terminal
    assert tracker.release_calls == 1
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_cleanup_tolerates_files_already_swept(pipeline, make_channel, temp_dir):
    class _SweepingChannel(make_channel):
        async def stream_file(self, name):
            for entry in os.listdir(temp_dir):
                os.remove(os.path.join(temp_dir, entry))

    machine, tracker = _machine(pipeline, _SweepingChannel())
    session = await machine.run()

    assert session.state == S.DONE
    assert tracker.release_calls == 1


@pytest.mark.asyncio
async def test_concurrent_sessions_use_distinct_paths(pipeline, make_channel, temp_dir):
    machines = [_machine(pipeline, make_channel(), text=f"mensaje {i}")[0] for i in range(20)]

    sessions = await asyncio.gather(*(m.run() for m in machines))

    paths = [a.path for s in sessions for a in s.artifacts]
    assert len(paths) == 40
    assert len(set(paths)) == 40
    assert len({s.id for s in sessions}) == 20
    assert all(s.state == S.DONE for s in sessions)
    assert os.listdir(temp_dir) == []


@pytest.mark.asyncio
async def test_handle_dtmf_response_uses_first_digit(make_channel, digit_result):
    channel = make_channel(context="sales")

    digit = await handle_dtmf_response(channel, digit_result("42"))

    assert digit == "4"
    assert channel.routing[0] == ("extension", "4")


@pytest.mark.asyncio
async def test_handle_dtmf_response_without_result(make_channel):
    channel = make_channel()
    assert await handle_dtmf_response(channel, None) is None
    assert channel.routing == []


def test_given_empty_tracker_is_kept(pipeline, make_channel):
    session = Session(input_text="Hola")
    tracker = TempResourceTracker(session.id)
    assert len(tracker) == 0

    machine = SessionStateMachine(session, pipeline, make_channel(), tracker=tracker)

    assert machine.tracker is tracker


@pytest.mark.asyncio
async def test_session_registers_into_given_tracker(pipeline, make_channel):
    session = Session(input_text="Hola")
    tracker = _CountingTracker(session.id)
    registered = []
    original_register = tracker.register

    def _register(path, artifact=None):
        registered.append(path)
        original_register(path, artifact)

    tracker.register = _register

    await SessionStateMachine(session, pipeline, make_channel(), tracker=tracker).run()

    assert registered == [a.path for a in session.artifacts]
    assert tracker.release_calls == 1
