"""Speech ports for the interview dialogue.

question text -> output port (Piper -> speaker)
microphone -> input port (faster-whisper) -> transcript updates

Each port has a real and a simulated (degraded mode) implementation, chosen
once by a capability probe. Ports hold no session data.
"""

from interview_coach.voice.audio_io import AudioIO, AudioIOConfig
from interview_coach.voice.errors import (
    DeviceUnavailableError,
    ErrorKind,
    PermissionDeniedError,
    SynthesisFailure,
    TransientRecognitionError,
    UnsupportedEnvironmentError,
    VoiceError,
)
from interview_coach.voice.input import (
    SimulatedSpeechInput,
    SpeechInputConfig,
    SpeechInputPort,
    TranscriptUpdate,
    WhisperSpeechInput,
    create_speech_input,
)
from interview_coach.voice.output import (
    PiperSpeechOutput,
    SimulatedSpeechOutput,
    SpeechOutputConfig,
    SpeechOutputPort,
    create_speech_output,
)
from interview_coach.voice.stt import STTConfig, STTProvider, TranscriptionResult, WhisperSTT
from interview_coach.voice.tts import PiperTTS, TTSConfig, TTSProvider

__all__ = [
    "AudioIO",
    "AudioIOConfig",
    "ErrorKind",
    "VoiceError",
    "PermissionDeniedError",
    "DeviceUnavailableError",
    "TransientRecognitionError",
    "UnsupportedEnvironmentError",
    "SynthesisFailure",
    "SpeechInputPort",
    "SpeechInputConfig",
    "TranscriptUpdate",
    "WhisperSpeechInput",
    "SimulatedSpeechInput",
    "create_speech_input",
    "SpeechOutputPort",
    "SpeechOutputConfig",
    "PiperSpeechOutput",
    "SimulatedSpeechOutput",
    "create_speech_output",
    "STTConfig",
    "STTProvider",
    "TranscriptionResult",
    "WhisperSTT",
    "PiperTTS",
    "TTSConfig",
    "TTSProvider",
]
