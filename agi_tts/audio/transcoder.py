"""
Conversion of synthesized audio to the format Asterisk plays.

The conversion itself is done by the ``sox`` binary, run as an asyncio
subprocess so a slow conversion never blocks other calls.
"""

import asyncio
from dataclasses import dataclass

from agi_tts.errors import TranscodeError
from agi_tts.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class TelephonyProfile:
    sample_rate: int = 8000
    format: str = "wav"
    channels: int = 1


class SoxTranscoder:
    """Transcoder backed by the sox command line tool."""

    def __init__(self, sox_path: str = "sox"):
        self.sox_path = sox_path

    def build_command(self, source_path: str, dest_path: str, profile: TelephonyProfile) -> list:
        return [
            self.sox_path,
            source_path,
            "-r",
            str(profile.sample_rate),
            "-c",
            str(profile.channels),
            "-t",
            profile.format,
            dest_path,
        ]

    async def transcode(self, source_path: str, dest_path: str, profile: TelephonyProfile) -> str:
        """
        Convert ``source_path`` into ``dest_path`` using ``profile``.

        Raises:
            TranscodeError: sox missing, or exiting with a non-zero status
        """
        cmd = self.build_command(source_path, dest_path, profile)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TranscodeError(f"Unable to run {self.sox_path}: {e}", path=dest_path) from e

        _, stderr = await proc.communicate()
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise TranscodeError(
                f"sox exited with status {proc.returncode}: {detail}",
                path=dest_path,
            )

        logger.debug("sox conversion finished",
                     source=source_path,
                     file_path=dest_path,
                     sample_rate=profile.sample_rate)
        return dest_path
