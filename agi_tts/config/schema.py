"""
Configuration schema for the TTS agent, validated with Pydantic v2.
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, field_validator

from agi_tts.audio.synthesizer import DEFAULT_LANGUAGE, VOICE_CONFIG
from agi_tts.config.defaults import (
    apply_agi_defaults,
    apply_delivery_defaults,
    apply_health_defaults,
    apply_temp_defaults,
    apply_tts_defaults,
)
from agi_tts.config.loaders import load_yaml_with_env_expansion, resolve_config_path
from agi_tts.core.session import DEFAULT_DIGIT_TIMEOUT_MS, DEFAULT_MAX_DIGITS
from agi_tts.core.sweeper import DEFAULT_INTERVAL_SECONDS, DEFAULT_MAX_AGE_SECONDS
from agi_tts.core.temp_resources import DEFAULT_TEMP_DIR
from agi_tts.logging_config import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/tts-agent.yaml"

SUPPORTED_FORMATS = ("wav", "ulaw", "alaw", "gsm", "sln")


class AGIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4573)
    # Seconds to let active calls finish on shutdown
    graceful_timeout_sec: float = Field(default=10.0)


class TTSConfig(BaseModel):
    default_language: str = Field(default=DEFAULT_LANGUAGE)
    voices: Dict[str, str] = Field(default_factory=lambda: dict(VOICE_CONFIG))
    # edge-tts prosody adjustments
    rate: str = Field(default="+0%")
    volume: str = Field(default="+0%")
    pitch: str = Field(default="+0Hz")


class TranscodeConfig(BaseModel):
    sample_rate: int = Field(default=8000)
    format: str = Field(default="wav")
    channels: int = Field(default=1)
    sox_path: str = Field(default="sox")

    @field_validator("format")
    @classmethod
    def _known_format(cls, value: str) -> str:
        value = value.lower()
        if value not in SUPPORTED_FORMATS:
            raise ValueError(f"format must be one of {', '.join(SUPPORTED_FORMATS)}")
        return value


class DeliveryConfig(BaseModel):
    digit_timeout_ms: int = Field(default=DEFAULT_DIGIT_TIMEOUT_MS)
    max_digits: int = Field(default=DEFAULT_MAX_DIGITS)
    # Value of the third dialplan argument that selects digit collection
    collect_digit_flag: str = Field(default="any")


class TempConfig(BaseModel):
    directory: str = Field(default=DEFAULT_TEMP_DIR)
    max_age_seconds: float = Field(default=DEFAULT_MAX_AGE_SECONDS)
    sweep_interval_seconds: float = Field(default=DEFAULT_INTERVAL_SECONDS)


class HealthConfig(BaseModel):
    enabled: bool = Field(default=True)
    host: str = Field(default="127.0.0.1")
    port: int = Field(default=15000)


class LoggingConfig(BaseModel):
    level: str = Field(default="info")  # debug|info|warning|error|critical


class AppConfig(BaseModel):
    agi: AGIConfig = Field(default_factory=AGIConfig)
    tts: TTSConfig = Field(default_factory=TTSConfig)
    transcode: TranscodeConfig = Field(default_factory=TranscodeConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    temp: TempConfig = Field(default_factory=TempConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: Optional[str] = None) -> AppConfig:
    """
    Load configuration from YAML, apply environment overrides, validate.

    A missing file is not an error: every setting has a default. An explicit
    ``path`` (or TTS_AGENT_CONFIG) that does not exist is reported as a warning.

    Raises:
        yaml.YAMLError: If YAML parsing fails
        pydantic.ValidationError: If values are invalid
    """
    path = path or os.getenv("TTS_AGENT_CONFIG", DEFAULT_CONFIG_PATH)
    resolved = resolve_config_path(path)
    try:
        config_data = load_yaml_with_env_expansion(resolved)
    except FileNotFoundError:
        logger.warning("Configuration file not found; using defaults", path=resolved)
        config_data = {}

    apply_agi_defaults(config_data)
    apply_tts_defaults(config_data)
    apply_temp_defaults(config_data)
    apply_delivery_defaults(config_data)
    apply_health_defaults(config_data)

    return AppConfig(**config_data)


def validate_config(config: AppConfig) -> tuple[list[str], list[str]]:
    """Return (errors, warnings). Errors block startup, warnings are only logged."""
    errors = []
    warnings = []

    if config.tts.default_language not in config.tts.voices:
        errors.append(f"No voice configured for default language '{config.tts.default_language}'")
    if "es" not in config.tts.voices:
        errors.append("Voice table must contain the 'es' fallback voice")

    if not 1 <= config.agi.port <= 65535:
        errors.append(f"AGI port {config.agi.port} out of valid range (1-65535)")
    if config.health.enabled and not 1 <= config.health.port <= 65535:
        errors.append(f"Health port {config.health.port} out of valid range (1-65535)")

    if config.transcode.channels != 1:
        warnings.append(f"Telephony audio is normally mono; configured channels={config.transcode.channels}")
    if config.transcode.sample_rate not in (8000, 16000):
        warnings.append(f"Unusual telephony sample rate {config.transcode.sample_rate} Hz")

    if config.delivery.digit_timeout_ms <= 0:
        errors.append("delivery.digit_timeout_ms must be positive")
    if config.delivery.max_digits < 1:
        errors.append("delivery.max_digits must be at least 1")

    if config.temp.max_age_seconds <= 0:
        errors.append("temp.max_age_seconds must be positive")
    if config.temp.sweep_interval_seconds <= 0:
        errors.append("temp.sweep_interval_seconds must be positive")
    elif config.temp.sweep_interval_seconds > config.temp.max_age_seconds * 4:
        warnings.append("Sweep interval is much longer than the retention window; orphaned files will linger")

    if config.agi.host == "0.0.0.0":
        warnings.append("FastAGI bound to 0.0.0.0; ensure firewall/segmentation is in place")

    return errors, warnings
