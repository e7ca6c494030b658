"""
AudioPipeline - text to a telephony-ready audio file in two stages.

Stage 1 synthesizes an MP3 into the shared temporary directory; stage 2
converts it to the telephony profile next to it. Each output is registered
with the caller's TempResourceTracker as soon as it exists on disk, so a
failure in a later stage never orphans an earlier file. Recovery is cleanup,
not rollback: the pipeline never deletes a completed artifact itself.
"""

import os
from typing import Mapping, Optional

from agi_tts.audio.synthesizer import (
    EDGE_MP3_PROFILE,
    SynthesisProfile,
    resolve_voice,
)
from agi_tts.audio.transcoder import TelephonyProfile
from agi_tts.core.models import Artifact, ArtifactKind
from agi_tts.core.temp_resources import (
    DEFAULT_TEMP_DIR,
    TempResourceTracker,
    allocate_artifact_path,
    ensure_temp_dir,
)
from agi_tts.errors import SynthesisError, TranscodeError
from agi_tts.logging_config import get_logger
from agi_tts.metrics import ARTIFACTS_CREATED

logger = get_logger(__name__)

CONVERTED_SUFFIX = "_converted"


class AudioPipeline:
    """Stateless synthesize -> transcode chain; all state lives in the tracker."""

    def __init__(
        self,
        synthesizer,
        transcoder,
        *,
        temp_dir: str = DEFAULT_TEMP_DIR,
        voices: Optional[Mapping[str, str]] = None,
        synthesis_profile: SynthesisProfile = EDGE_MP3_PROFILE,
        telephony_profile: Optional[TelephonyProfile] = None,
    ):
        self.synthesizer = synthesizer
        self.transcoder = transcoder
        self.temp_dir = temp_dir
        self.voices = voices
        self.synthesis_profile = synthesis_profile
        self.telephony_profile = telephony_profile or TelephonyProfile()

    async def synthesize(
        self,
        text: str,
        language: str,
        tracker: TempResourceTracker,
        session_id: Optional[str] = None,
    ) -> Artifact:
        voice = resolve_voice(language, self.voices)
        logger.info("Generating TTS audio", language=language, voice=voice)

        ensure_temp_dir(self.temp_dir)
        path = allocate_artifact_path(self.temp_dir, self.synthesis_profile.container)
        try:
            await self.synthesizer.synthesize(voice, self.synthesis_profile, text, path)
        except SynthesisError:
            tracker.delete_file(path)
            raise
        except Exception as e:
            tracker.delete_file(path)
            raise SynthesisError(f"Synthesis engine failed: {e}", path=path) from e

        artifact = Artifact(path=path, kind=ArtifactKind.SYNTHESIZED, owner_session_id=session_id)
        tracker.register(path, artifact)
        ARTIFACTS_CREATED.labels(kind=artifact.kind.value).inc()
        logger.info("TTS audio generated", file_path=path)
        return artifact

    def converted_path(self, source_path: str) -> str:
        """Destination for a conversion: same unique stem, conversion suffix."""
        stem, _ = os.path.splitext(source_path)
        return f"{stem}{CONVERTED_SUFFIX}.{self.telephony_profile.format}"

    async def transcode(
        self,
        source: Artifact,
        tracker: TempResourceTracker,
        session_id: Optional[str] = None,
    ) -> Artifact:
        dest = self.converted_path(source.path)
        logger.info("Converting audio file",
                    source=source.path,
                    sample_rate=self.telephony_profile.sample_rate,
                    format=self.telephony_profile.format)
        try:
            await self.transcoder.transcode(source.path, dest, self.telephony_profile)
        except TranscodeError:
            tracker.delete_file(dest)
            raise
        except Exception as e:
            tracker.delete_file(dest)
            raise TranscodeError(f"Transcoder failed: {e}", path=dest) from e

        artifact = Artifact(path=dest, kind=ArtifactKind.TRANSCODED, owner_session_id=session_id)
        tracker.register(dest, artifact)
        ARTIFACTS_CREATED.labels(kind=artifact.kind.value).inc()
        logger.info("Audio file converted", file_path=dest)
        return artifact

    async def run(
        self,
        text: str,
        language: str,
        tracker: TempResourceTracker,
        session_id: Optional[str] = None,
    ) -> Artifact:
        """Run both stages and return the TRANSCODED artifact."""
        synthesized = await self.synthesize(text, language, tracker, session_id)
        return await self.transcode(synthesized, tracker, session_id)
