"""
Speech synthesis through Microsoft Edge TTS.

The engine is an external collaborator: given a voice, a format profile and
text it writes encoded audio to a path. Voice selection is a fixed
language -> voice table; languages without an entry use the Spanish voice.
"""

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

import aiohttp
import edge_tts
from edge_tts.exceptions import EdgeTTSException

from agi_tts.errors import SynthesisError
from agi_tts.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_LANGUAGE = "es"

VOICE_CONFIG: Dict[str, str] = {
    "es": "es-PE-CamilaNeural",
    "en": "en-US-JennyNeural",
    "fr": "fr-FR-DeniseNeural",
    "pt": "pt-BR-FranciscaNeural",
    "de": "de-DE-KatjaNeural",
}


@dataclass(frozen=True)
class SynthesisProfile:
    """Intermediate format requested from the engine (not the telephony format)."""
    name: str = "audio-24khz-48kbitrate-mono-mp3"
    sample_rate: int = 24000
    bitrate_kbps: int = 48
    channels: int = 1
    container: str = "mp3"


# Edge TTS streams this format; it is the only profile the engine honours.
EDGE_MP3_PROFILE = SynthesisProfile()


def resolve_voice(language: Optional[str], voices: Optional[Mapping[str, str]] = None) -> str:
    """Map a language code to a voice id, falling back to the default language."""
    table = voices or VOICE_CONFIG
    if language and language in table:
        return table[language]
    return table.get(DEFAULT_LANGUAGE, VOICE_CONFIG[DEFAULT_LANGUAGE])


class EdgeSynthesizer:
    """Synthesis engine backed by the edge-tts client."""

    supported_profiles = (EDGE_MP3_PROFILE,)

    def __init__(self, rate: str = "+0%", volume: str = "+0%", pitch: str = "+0Hz"):
        self.rate = rate
        self.volume = volume
        self.pitch = pitch

    async def synthesize(self, voice_id: str, profile: SynthesisProfile, text: str, dest_path: str) -> str:
        """
        Write speech for ``text`` to ``dest_path``.

        Raises:
            SynthesisError: unsupported profile or any engine/network failure
        """
        if profile not in self.supported_profiles:
            raise SynthesisError(f"Edge TTS cannot produce format {profile.name}", path=dest_path)

        try:
            communicate = edge_tts.Communicate(
                text,
                voice_id,
                rate=self.rate,
                volume=self.volume,
                pitch=self.pitch,
            )
            await communicate.save(dest_path)
        except (EdgeTTSException, aiohttp.ClientError, ValueError, OSError) as e:
            raise SynthesisError(f"Edge TTS synthesis failed: {e}", path=dest_path) from e

        logger.debug("Edge TTS audio written", voice=voice_id, file_path=dest_path)
        return dest_path
