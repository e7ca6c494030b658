"""Command-line interface: generate a telephony audio file from text.

Usage:
    tts-edge-cli --text "Hola mundo" --output /var/lib/asterisk/sounds/custom/hola.wav
    tts-edge-cli -t "Hello" -o hello.wav --lang en --rate 16000
"""

import argparse
import asyncio
import os
import shutil
import sys
from typing import Optional, Sequence

from agi_tts import __version__
from agi_tts.config import AppConfig, load_config
from agi_tts.core.pipeline import AudioPipeline
from agi_tts.core.sweeper import sweep_once
from agi_tts.core.temp_resources import TempResourceTracker, ensure_temp_dir
from agi_tts.engine import build_pipeline
from agi_tts.errors import InputError, TTSAgentError
from agi_tts.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tts-edge-cli",
        description="Generate audio files with Microsoft Edge TTS, converted for Asterisk",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-t", "--text", required=True, help="Text to convert to speech")
    parser.add_argument("-o", "--output", required=True, help="Output audio file")
    parser.add_argument("-l", "--lang", default="es", help="Language (es, en, fr, pt, de)")
    parser.add_argument("-r", "--rate", type=int, default=8000, help="Sample rate in Hz")
    parser.add_argument("-c", "--config", default=None, help="Path to the YAML configuration file")

    # Usage errors exit 1 like every other failure
    def _usage_error(message: str) -> None:
        parser.print_usage(sys.stderr)
        parser.exit(1, f"Error: {message}\n")

    parser.error = _usage_error
    return parser


async def generate(text: str, language: str, output: str, pipeline: AudioPipeline, config: AppConfig) -> str:
    """Synthesize ``text`` into ``output``; temporary files are removed on every path."""
    if not text or not text.strip():
        raise InputError("No text given for speech synthesis")

    output_dir = os.path.dirname(os.path.abspath(output))
    os.makedirs(output_dir, exist_ok=True)

    ensure_temp_dir(config.temp.directory)
    sweep_once(config.temp.directory, config.temp.max_age_seconds)

    tracker = TempResourceTracker()
    try:
        converted = await pipeline.run(text, language, tracker)
        shutil.copyfile(converted.path, output)
    finally:
        tracker.release_all()

    logger.info("Audio file generated", output=output)
    return output


def run(args: argparse.Namespace, pipeline: Optional[AudioPipeline] = None) -> int:
    try:
        config = load_config(args.config)
        configure_logging(log_level=config.logging.level.upper())
        if pipeline is None:
            pipeline = build_pipeline(config, sample_rate=args.rate)
        asyncio.run(generate(args.text, args.lang, args.output, pipeline, config))
    except TTSAgentError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Audio file generated successfully: {args.output}")
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)
    return run(args)


if __name__ == "__main__":
    sys.exit(main())
