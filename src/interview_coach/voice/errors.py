"""Error taxonomy for the speech ports.

Speech input errors decide how the dialogue proceeds (fail, retry or degrade);
speech output errors are reported on a side channel and never stop a dialogue.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """Kinds of port failures tracked in a port's state."""

    PERMISSION_DENIED = "permission_denied"
    DEVICE_UNAVAILABLE = "device_unavailable"
    TRANSIENT_RECOGNITION = "transient_recognition"
    UNSUPPORTED_ENVIRONMENT = "unsupported_environment"
    SYNTHESIS_FAILURE = "synthesis_failure"


class VoiceError(Exception):
    """Base class for speech port failures."""

    kind: ErrorKind
    default_message = "Speech error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def user_message(self) -> str:
        """Short, actionable text suitable for showing to the user."""
        return self.default_message


class PermissionDeniedError(VoiceError):
    kind = ErrorKind.PERMISSION_DENIED
    default_message = (
        "Microphone access denied. Please allow microphone permissions and start the interview again."
    )


class DeviceUnavailableError(VoiceError):
    kind = ErrorKind.DEVICE_UNAVAILABLE
    default_message = "No microphone found. Please connect a microphone and start the interview again."


class TransientRecognitionError(VoiceError):
    kind = ErrorKind.TRANSIENT_RECOGNITION
    default_message = "Speech recognition hiccup. Please try answering again."


class UnsupportedEnvironmentError(VoiceError):
    kind = ErrorKind.UNSUPPORTED_ENVIRONMENT
    default_message = "Speech recognition is not supported here. Continuing in simulated mode."


class SynthesisFailure(VoiceError):
    kind = ErrorKind.SYNTHESIS_FAILURE
    default_message = "Speech synthesis failed."
