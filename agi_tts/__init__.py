"""Text-to-speech for Asterisk calls over FastAGI, using Edge TTS and sox."""

__version__ = "1.0.0"
