"""
Configuration package for the TTS agent.

- loaders: YAML file loading and env expansion
- defaults: environment overrides
- schema: Pydantic models, load_config, validate_config
"""

from agi_tts.config.schema import (
    AGIConfig,
    AppConfig,
    DeliveryConfig,
    HealthConfig,
    LoggingConfig,
    TempConfig,
    TranscodeConfig,
    TTSConfig,
    load_config,
    validate_config,
)

__all__ = [
    'AGIConfig',
    'AppConfig',
    'DeliveryConfig',
    'HealthConfig',
    'LoggingConfig',
    'TempConfig',
    'TranscodeConfig',
    'TTSConfig',
    'load_config',
    'validate_config',
]
