"""Offline speech-to-text with faster-whisper.

Models are loaded lazily and shared per (size, device, compute type), so a
port that is re-created after a degraded-mode switch does not reload weights.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

_MODELS: dict[tuple[str, str, str | None], Any] = {}


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    device: str = "cpu"  # cpu|cuda|auto; auto resolves to cpu
    compute_type: str | None = None  # e.g. int8, float16
    language: str | None = "en"
    vad_filter: bool = True


@dataclass(frozen=True)
class TranscriptionResult:
    text: str
    avg_logprob: float | None = None
    no_speech_prob: float | None = None

    def is_usable(
        self,
        *,
        min_chars: int = 2,
        min_avg_logprob: float = -1.2,
        max_no_speech_prob: float = 0.9,
    ) -> bool:
        """False for near-empty text and for segments whisper itself doubts (noise, breathing)."""
        if len(self.text.strip()) < min_chars:
            return False
        if self.no_speech_prob is not None and self.no_speech_prob >= max_no_speech_prob:
            return False
        return self.avg_logprob is None or self.avg_logprob > min_avg_logprob


class STTProvider(ABC):
    @abstractmethod
    async def transcribe_file(self, wav_path: str | Path) -> TranscriptionResult:
        ...

    def is_available(self) -> bool:
        return True


class WhisperSTT(STTProvider):
    """faster-whisper transcription of WAV snapshots."""

    def __init__(self, config: STTConfig | None = None) -> None:
        self._config = config or STTConfig()

    @property
    def config(self) -> STTConfig:
        return self._config

    def is_available(self) -> bool:
        return importlib.util.find_spec("faster_whisper") is not None

    def _model(self):
        device = "cpu" if self._config.device == "auto" else self._config.device
        key = (self._config.model_size, device, self._config.compute_type)
        if key not in _MODELS:
            try:
                from faster_whisper import WhisperModel  # type: ignore
            except ImportError as e:
                raise RuntimeError("faster-whisper is required for speech input: pip install -e '.[voice]'") from e

            logger.info(f"[VOICE][STT] loading whisper model={key[0]} device={device}")
            kwargs = {"compute_type": self._config.compute_type} if self._config.compute_type else {}
            _MODELS[key] = WhisperModel(self._config.model_size, device=device, **kwargs)
        return _MODELS[key]

    def _transcribe_sync(self, wav_path: Path) -> TranscriptionResult:
        segments, _info = self._model().transcribe(
            str(wav_path),
            language=self._config.language,
            vad_filter=self._config.vad_filter,
        )
        texts: list[str] = []
        logprobs: list[float] = []
        no_speech: list[float] = []
        for segment in segments:
            if segment.text and segment.text.strip():
                texts.append(segment.text.strip())
            logprobs.append(segment.avg_logprob)
            no_speech.append(segment.no_speech_prob)

        return TranscriptionResult(
            text=" ".join(texts),
            avg_logprob=sum(logprobs) / len(logprobs) if logprobs else None,
            # Usable while any segment looks like speech.
            no_speech_prob=min(no_speech) if no_speech else None,
        )

    async def transcribe_file(self, wav_path: str | Path) -> TranscriptionResult:
        return await asyncio.to_thread(self._transcribe_sync, Path(wav_path))
