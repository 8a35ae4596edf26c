"""
SDK for Quota Meter.

Provides metered wrappers around billable third-party services.
"""

from .openai_client import MeteredSpeech

__all__ = ["MeteredSpeech"]
