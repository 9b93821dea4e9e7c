"""Transcribe and summarize long audio recordings with interchangeable providers."""

__version__ = "0.1.0"
