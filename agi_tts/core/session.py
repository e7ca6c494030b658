"""
SessionStateMachine - drives one call from received text to cleanup.

    RECEIVED -> SYNTHESIZING -> TRANSCODING -> DELIVERING -> CLEANING_UP -> DONE

ERRORED is reachable from every non-terminal state and always continues to
CLEANING_UP; a failed session ends in ERRORED once its files are released.
CLEANING_UP runs exactly once per session, whatever happened before it,
including task cancellation when the caller hangs up.
"""

import asyncio
from typing import Optional

from agi_tts.core.models import Artifact, Session, SessionMode, SessionState
from agi_tts.core.pipeline import AudioPipeline
from agi_tts.core.temp_resources import TempResourceTracker, strip_extension
from agi_tts.errors import (
    DeliveryError,
    InputError,
    SynthesisError,
    TranscodeError,
    TTSAgentError,
)
from agi_tts.logging_config import get_logger, reset_correlation_id, set_correlation_id
from agi_tts.metrics import SESSIONS_ACTIVE, SESSIONS_TOTAL

logger = get_logger(__name__)

DEFAULT_DIGIT_TIMEOUT_MS = 5000
DEFAULT_MAX_DIGITS = 1

S = SessionState
TRANSITIONS = {
    S.RECEIVED: {S.SYNTHESIZING, S.ERRORED},
    S.SYNTHESIZING: {S.TRANSCODING, S.ERRORED},
    S.TRANSCODING: {S.DELIVERING, S.ERRORED},
    S.DELIVERING: {S.CLEANING_UP, S.ERRORED},
    S.ERRORED: {S.CLEANING_UP},
    S.CLEANING_UP: {S.DONE, S.ERRORED},
    S.DONE: set(),
}


class InvalidTransition(RuntimeError):
    pass


async def handle_dtmf_response(channel, result) -> Optional[str]:
    """
    Route the call to the extension named by the first collected digit.

    Returns the digit used for routing, or None when there was nothing to
    route on or the channel refused the routing commands.
    """
    digits = getattr(result, "digits", None) if result is not None else None
    if not digits:
        logger.info("No valid DTMF digit received")
        return None

    digit = digits[0]
    logger.info("DTMF digit received", digit=digit)

    try:
        await channel.set_extension(digit)
        await channel.set_priority(1)
        await channel.set_context(channel.request.context)
        return digit
    except Exception as e:
        logger.error("Error routing call on DTMF digit", digit=digit, error=str(e))
        return None


class SessionStateMachine:
    """Runs one Session through the pipeline, delivery, and cleanup."""

    def __init__(
        self,
        session: Session,
        pipeline: AudioPipeline,
        channel,
        *,
        tracker: Optional[TempResourceTracker] = None,
        digit_timeout_ms: int = DEFAULT_DIGIT_TIMEOUT_MS,
        max_digits: int = DEFAULT_MAX_DIGITS,
    ):
        self.session = session
        self.pipeline = pipeline
        self.channel = channel
        self.tracker = tracker if tracker is not None else TempResourceTracker(session.id)
        self.digit_timeout_ms = digit_timeout_ms
        self.max_digits = max_digits
        self._released = False

    @property
    def state(self) -> SessionState:
        return self.session.state

    @property
    def is_terminal(self) -> bool:
        return self.state == S.DONE or (self.state == S.ERRORED and self._released)

    def _transition(self, new_state: SessionState) -> None:
        current = self.session.state
        if new_state not in TRANSITIONS[current] or (current == S.ERRORED and self._released):
            raise InvalidTransition(f"{current.value} -> {new_state.value}")
        self.session.state = new_state
        self.session.history.append(new_state)
        logger.debug("Session state changed",
                     session_id=self.session.id,
                     from_state=current.value,
                     to_state=new_state.value)

    async def run(self) -> Session:
        """Handle the session end to end. Never raises except on cancellation."""
        token = set_correlation_id(self.session.id)
        SESSIONS_ACTIVE.inc()
        try:
            await self._produce_and_deliver()
        except InputError as e:
            logger.info("No text received for speech synthesis", session_id=self.session.id)
            self._fail(e)
        except (SynthesisError, TranscodeError) as e:
            logger.error("Audio pipeline failed",
                         session_id=self.session.id,
                         stage=self.state.value,
                         error=e.message)
            self._fail(e)
        except DeliveryError as e:
            logger.error("Audio delivery failed", session_id=self.session.id, error=e.message)
            self._fail(e)
        except asyncio.CancelledError as e:
            logger.warning("Session cancelled", session_id=self.session.id, stage=self.state.value)
            self._fail(e)
            raise
        except Exception as e:
            logger.error("Unexpected error while handling call",
                         session_id=self.session.id,
                         stage=self.state.value,
                         error=str(e),
                         exc_info=True)
            self._fail(e)
        finally:
            self._cleanup()
            SESSIONS_ACTIVE.dec()
            SESSIONS_TOTAL.labels(outcome=self.state.value).inc()
            reset_correlation_id(token)
        return self.session

    async def _produce_and_deliver(self) -> None:
        session = self.session
        text = session.input_text
        if not text or not text.strip():
            raise InputError("No text received for speech synthesis")

        self._transition(S.SYNTHESIZING)
        synthesized = await self.pipeline.synthesize(text, session.language, self.tracker, session.id)
        session.artifacts.append(synthesized)

        self._transition(S.TRANSCODING)
        converted = await self.pipeline.transcode(synthesized, self.tracker, session.id)
        session.artifacts.append(converted)

        self._transition(S.DELIVERING)
        if session.mode == SessionMode.COLLECT_DIGIT:
            await self._collect_digit(converted)
        else:
            await self._stream(converted)

    async def _stream(self, artifact: Artifact) -> None:
        name = strip_extension(artifact.path)
        try:
            await self.channel.stream_file(name)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Stream playback failed: {e}", path=artifact.path) from e
        logger.info("Audio streamed to caller", session_id=self.session.id, sound=name)

    async def _collect_digit(self, artifact: Artifact) -> None:
        name = strip_extension(artifact.path)
        logger.info("Waiting for DTMF input",
                    session_id=self.session.id,
                    timeout_ms=self.digit_timeout_ms,
                    max_digits=self.max_digits)
        try:
            result = await self.channel.get_data(name, self.digit_timeout_ms, self.max_digits)
        except DeliveryError:
            raise
        except Exception as e:
            raise DeliveryError(f"Digit collection failed: {e}", path=artifact.path) from e

        logger.info("get_data result",
                    session_id=self.session.id,
                    failure=getattr(result, "failure", True),
                    digits=getattr(result, "digits", None),
                    timed_out=getattr(result, "timed_out", False))

        # A caller who never presses a key is an expected outcome
        if result is None or getattr(result, "failure", True):
            logger.info("DTMF digit collection returned no result", session_id=self.session.id)
            return

        self.session.digit = await handle_dtmf_response(self.channel, result)

    def _fail(self, error: BaseException) -> None:
        if self.session.error is None:
            self.session.error = error
        if self.state not in (S.ERRORED, S.CLEANING_UP, S.DONE):
            self._transition(S.ERRORED)

    def _cleanup(self) -> None:
        if self._released:
            return
        self._transition(S.CLEANING_UP)
        try:
            removed = self.tracker.release_all(*(a.path for a in self.session.artifacts))
        finally:
            self._released = True
        self._transition(S.ERRORED if self.session.failed else S.DONE)
        logger.info("Session finished",
                    session_id=self.session.id,
                    state=self.state.value,
                    files_removed=removed)
