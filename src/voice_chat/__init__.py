"""Voice-driven chat client: speech capture, transcription and streamed replies."""

__version__ = "0.1.0"
