"""
Environment overrides applied on top of the YAML configuration.

Environment variables win over the file so containers can be tuned without
editing it:

- AGI_HOST / AGI_PORT: FastAGI bind address
- TTS_DEFAULT_LANGUAGE: language used when the dialplan passes none
- TTS_SAMPLE_RATE: telephony sample rate in Hz
- SOX_PATH: sox binary
- TTS_TMP_DIR: shared temporary directory
- TTS_SWEEP_MAX_AGE_SECONDS / TTS_SWEEP_INTERVAL_SECONDS: sweeper timing
- DTMF_TIMEOUT_MS: digit collection timeout
- HEALTH_ENABLED / HEALTH_HOST / HEALTH_PORT: health server
"""

import os
from typing import Any, Callable, Dict

from agi_tts.logging_config import get_logger

logger = get_logger(__name__)


def _section(config_data: Dict[str, Any], name: str) -> Dict[str, Any]:
    section = config_data.get(name)
    if not isinstance(section, dict):
        section = {}
        config_data[name] = section
    return section


def _override(section: Dict[str, Any], key: str, env_name: str, cast: Callable[[str], Any] = str) -> None:
    raw = os.getenv(env_name)
    if raw is None or raw.strip() == "":
        return
    try:
        section[key] = cast(raw.strip())
    except ValueError:
        logger.warning("Ignoring invalid environment override", variable=env_name, value=raw)


def _as_bool(raw: str) -> bool:
    return raw.lower() in ("1", "true", "yes", "on")


def apply_agi_defaults(config_data: Dict[str, Any]) -> None:
    agi = _section(config_data, "agi")
    _override(agi, "host", "AGI_HOST")
    _override(agi, "port", "AGI_PORT", int)


def apply_tts_defaults(config_data: Dict[str, Any]) -> None:
    tts = _section(config_data, "tts")
    _override(tts, "default_language", "TTS_DEFAULT_LANGUAGE")
    transcode = _section(config_data, "transcode")
    _override(transcode, "sample_rate", "TTS_SAMPLE_RATE", int)
    _override(transcode, "sox_path", "SOX_PATH")


def apply_temp_defaults(config_data: Dict[str, Any]) -> None:
    temp = _section(config_data, "temp")
    _override(temp, "directory", "TTS_TMP_DIR")
    _override(temp, "max_age_seconds", "TTS_SWEEP_MAX_AGE_SECONDS", float)
    _override(temp, "sweep_interval_seconds", "TTS_SWEEP_INTERVAL_SECONDS", float)


def apply_delivery_defaults(config_data: Dict[str, Any]) -> None:
    delivery = _section(config_data, "delivery")
    _override(delivery, "digit_timeout_ms", "DTMF_TIMEOUT_MS", int)


def apply_health_defaults(config_data: Dict[str, Any]) -> None:
    health = _section(config_data, "health")
    _override(health, "enabled", "HEALTH_ENABLED", _as_bool)
    _override(health, "host", "HEALTH_HOST")
    _override(health, "port", "HEALTH_PORT", int)
