"""
TTS agent process.

Runs the FastAGI server that turns dialplan text into speech on the call,
the background sweeper for the shared temporary directory, and a small
aiohttp server exposing liveness, health, and Prometheus metrics.
"""

import asyncio
import logging
import signal
import time
from typing import Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from .agi.channel import AGIChannel, AGIRequest
from .agi.server import FastAGIServer
from .audio.synthesizer import EdgeSynthesizer
from .audio.transcoder import SoxTranscoder, TelephonyProfile
from .config import AppConfig, load_config, validate_config
from .core.models import Session, SessionMode
from .core.pipeline import AudioPipeline
from .core.session import SessionStateMachine
from .core.sweeper import BackgroundSweeper
from .logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def build_pipeline(config: AppConfig, sample_rate: Optional[int] = None) -> AudioPipeline:
    """Wire the Edge TTS engine and sox into an AudioPipeline from config."""
    transcode = config.transcode
    return AudioPipeline(
        EdgeSynthesizer(rate=config.tts.rate, volume=config.tts.volume, pitch=config.tts.pitch),
        SoxTranscoder(sox_path=transcode.sox_path),
        temp_dir=config.temp.directory,
        voices=config.tts.voices,
        telephony_profile=TelephonyProfile(
            sample_rate=sample_rate or transcode.sample_rate,
            format=transcode.format,
            channels=transcode.channels,
        ),
    )


def session_from_request(request: AGIRequest, config: AppConfig) -> Session:
    """
    Build a Session from the dialplan arguments.

    arg_1 is the text, arg_2 the language, and arg_3 equal to the configured
    flag ("any") asks for one DTMF digit after the prompt.
    """
    collect = request.arg(3) == config.delivery.collect_digit_flag
    return Session(
        input_text=request.arg(1),
        language=request.arg(2, config.tts.default_language),
        mode=SessionMode.COLLECT_DIGIT if collect else SessionMode.STREAM,
    )


class Engine:
    def __init__(self, config: AppConfig, pipeline: Optional[AudioPipeline] = None):
        self.config = config
        self.pipeline = pipeline or build_pipeline(config)
        self.sweeper = BackgroundSweeper(
            directory=config.temp.directory,
            max_age_seconds=config.temp.max_age_seconds,
            interval_seconds=config.temp.sweep_interval_seconds,
        )
        self.agi_server = FastAGIServer(config.agi.host, config.agi.port, on_call=self.handle_call)
        self.sessions_handled = 0
        self._health_runner: Optional[web.AppRunner] = None
        self._start_time = time.time()

    async def handle_call(self, channel: AGIChannel) -> None:
        """Run one call through the session state machine."""
        session = session_from_request(channel.request, self.config)
        logger.info("Handling TTS request",
                    session_id=session.id,
                    callerid=channel.request.callerid,
                    extension=channel.request.extension,
                    language=session.language,
                    mode=session.mode.value)
        machine = SessionStateMachine(
            session,
            self.pipeline,
            channel,
            digit_timeout_ms=self.config.delivery.digit_timeout_ms,
            max_digits=self.config.delivery.max_digits,
        )
        try:
            await machine.run()
        finally:
            self.sessions_handled += 1

    async def start(self):
        await self.sweeper.start()
        if self.config.health.enabled:
            try:
                await self._start_health_server()
            except OSError as e:
                logger.warning("Health server failed to start", error=str(e))
        await self.agi_server.start()

    async def stop(self):
        await self.agi_server.stop(graceful_timeout=self.config.agi.graceful_timeout_sec)
        await self.sweeper.stop()
        if self._health_runner:
            await self._health_runner.cleanup()
            self._health_runner = None
        logger.info("Engine stopped.")

    # ------------------------------------------------------------------
    # Health server
    # ------------------------------------------------------------------
    def create_health_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get('/live', self._live_handler)
        app.router.add_get('/health', self._health_handler)
        app.router.add_get('/metrics', self._metrics_handler)
        return app

    async def _start_health_server(self):
        runner = web.AppRunner(self.create_health_app())
        await runner.setup()
        site = web.TCPSite(runner, self.config.health.host, self.config.health.port)
        await site.start()
        self._health_runner = runner
        logger.info("Health server listening", host=self.config.health.host, port=self.config.health.port)

    async def _live_handler(self, request):
        return web.Response(text="ok", status=200)

    async def _health_handler(self, request):
        payload = {
            "status": "healthy" if self.sweeper.running else "degraded",
            "uptime_seconds": int(time.time() - self._start_time),
            "active_calls": self.agi_server.get_connection_count(),
            "sessions_handled": self.sessions_handled,
            "agi": {"host": self.config.agi.host, "port": self.agi_server.port},
            "sweeper": {
                "running": self.sweeper.running,
                "directory": self.sweeper.directory,
                "sweeps": self.sweeper.sweeps_completed,
                "files_removed": self.sweeper.files_removed,
            },
        }
        return web.json_response(payload)

    async def _metrics_handler(self, request):
        return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


async def main():
    config = load_config()
    level_name = str(config.logging.level).upper()
    configure_logging(log_level=getattr(logging, level_name, logging.INFO))

    errors, warnings = validate_config(config)
    if errors:
        logger.error("Configuration validation FAILED", errors=errors, warnings=warnings)
        raise RuntimeError(f"Configuration errors: {errors}")
    if warnings:
        logger.warning("Configuration warnings", warnings=warnings)

    engine = Engine(config)

    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown_event.set)

    await engine.start()
    await shutdown_event.wait()
    logger.info("Shutting down TTS agent")
    await engine.stop()


def run():
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
    finally:
        logger.info("TTS agent has shut down.")


if __name__ == "__main__":
    run()
