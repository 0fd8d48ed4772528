"""
Alert Module.

Responsibilities:
- Hazard to banner / haptic / speech mapping
- Per-channel cooldown enforcement
- Speech text sanitization
- Platform sink adapters
"""

from .dispatcher import AlertDispatcher, sanitize_speech_text
from .sinks import AlertSink, LoggingAlertSink, SpeechAlertSink
