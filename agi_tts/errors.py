"""
Error taxonomy for the TTS agent.

InputError, SynthesisError and TranscodeError abort a session's productive
work. DeliveryError ends a session during playback. CleanupError never
leaves the cleanup path; it is logged and absorbed.
"""

from typing import Optional


class TTSAgentError(Exception):
    """Base class for every error raised by the agent."""

    def __init__(self, message: str, *, path: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path


class InputError(TTSAgentError):
    """Missing or invalid text; never reaches the pipeline."""


class SynthesisError(TTSAgentError):
    """The speech synthesis engine failed."""


class TranscodeError(TTSAgentError):
    """Conversion to the telephony format failed."""


class DeliveryError(TTSAgentError):
    """Telephony I/O failed while streaming or collecting digits."""


class CleanupError(TTSAgentError):
    """A single temporary file could not be removed."""
