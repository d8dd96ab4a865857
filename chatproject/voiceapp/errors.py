# voiceapp/errors.py
"""
Error taxonomy shared by the speech pipeline and the chat layer.

Adapters wrap library exceptions into one of these at the seam, so callers
only ever branch on our types.
"""
from __future__ import annotations

from enum import Enum


class ChatError(Exception):
    """Base class for every failure the orchestrator knows how to present."""


class DeviceError(ChatError):
    """Microphone missing, busy, or permission denied."""


class InvalidStateError(ChatError):
    """Operation not allowed in the component's current state."""


class UnsupportedError(ChatError):
    """A host capability (recognizer, synthesizer, ...) is absent."""


class RecognitionErrorKind(str, Enum):
    NO_SPEECH = "no-speech"
    DEVICE = "device"
    DENIED = "denied"
    NETWORK = "network"
    ABORTED = "aborted"
    LANGUAGE_UNSUPPORTED = "language-unsupported"
    OTHER = "other"


class RecognitionError(ChatError):
    def __init__(self, kind: RecognitionErrorKind, message: str = ""):
        self.kind = RecognitionErrorKind(kind)
        super().__init__(message or f"Speech recognition error: {self.kind.value}")


class TranscriptionTimeoutError(ChatError, TimeoutError):
    """No recognizer result within the allowed window."""


class SynthesisError(ChatError):
    """Remote text-to-speech request or decoding failed."""


class StoreError(ChatError):
    """Any failure talking to the conversation store."""


class ModelError(ChatError):
    """Generation or media analysis failed."""


class ValidationError(ChatError):
    """Attachment rejected before upload (type or size)."""

    def __init__(self, reason: str, message: str):
        self.reason = reason
        super().__init__(message)


__all__ = [
    "ChatError",
    "DeviceError",
    "InvalidStateError",
    "UnsupportedError",
    "RecognitionErrorKind",
    "RecognitionError",
    "TranscriptionTimeoutError",
    "SynthesisError",
    "StoreError",
    "ModelError",
    "ValidationError",
]
