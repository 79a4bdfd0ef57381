"""Speech input port.

A port captures speech and reports transcripts upward; it never decides when
a turn ends. Interim results (`is_final=False`) may be superseded by later
ones; a final result marks a stable utterance. Silence only produces an
advisory `on_timeout`.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from interview_coach.voice.audio_io import AudioIO, has_audio_device
from interview_coach.voice.errors import (
    DeviceUnavailableError,
    PermissionDeniedError,
    TransientRecognitionError,
    UnsupportedEnvironmentError,
    VoiceError,
)
from interview_coach.voice.stt import STTConfig, STTProvider, WhisperSTT

logger = logging.getLogger(__name__)


SIMULATED_ANSWERS: tuple[str, ...] = (
    "I have experience working with React and TypeScript on several production projects.",
    "I usually approach state management by keeping state close to where it is used and lifting it only when needed.",
    "For performance I start by measuring, then look at rendering, bundle size and network requests.",
    "I make sure interfaces are accessible with semantic markup, keyboard navigation and screen reader testing.",
    "I write unit tests for the logic and a few end to end tests for the critical user flows.",
)


@dataclass(frozen=True)
class TranscriptUpdate:
    text: str
    is_final: bool
    simulated: bool = False


@dataclass(frozen=True)
class SpeechInputConfig:
    max_silence_s: float = 10.0
    interim_interval_s: float = 1.5
    final_silence_s: float = 1.2
    speech_threshold: float = 0.02  # normalized RMS
    poll_interval_s: float = 0.1
    simulated_delay_s: float = 3.0
    work_dir: str | None = None


_PERMISSION_MARKERS = ("permission", "not allowed", "access denied", "unauthorized")
_DEVICE_MARKERS = (
    "no input device",
    "no default input device",
    "invalid device",
    "device unavailable",
    "no such device",
    "invalid number of channels",
    "error querying device",
)


def map_capture_error(exc: BaseException) -> VoiceError:
    """Translate a capture backend exception into the voice error taxonomy."""
    if isinstance(exc, VoiceError):
        return exc

    msg = str(exc).lower()
    if any(m in msg for m in _PERMISSION_MARKERS):
        return PermissionDeniedError()
    if any(m in msg for m in _DEVICE_MARKERS):
        return DeviceUnavailableError()
    if "portaudio library not found" in msg or "sounddevice is required" in msg:
        return UnsupportedEnvironmentError()
    return TransientRecognitionError(f"Audio capture error: {exc}")


class SpeechInputPort(ABC):
    """Captures speech; swappable behind this contract."""

    simulated: bool = False

    def __init__(self, config: SpeechInputConfig | None = None) -> None:
        self._config = config or SpeechInputConfig()
        self._on_transcript: Callable[[TranscriptUpdate], None] | None = None
        self._on_error: Callable[[VoiceError], None] | None = None
        self._on_timeout: Callable[[], None] | None = None
        self._active = False
        self._watchdog: asyncio.Task | None = None
        self._last_activity = 0.0

    @property
    def config(self) -> SpeechInputConfig:
        return self._config

    @property
    def is_active(self) -> bool:
        return self._active

    def on_transcript(self, callback: Callable[[TranscriptUpdate], None] | None) -> None:
        self._on_transcript = callback

    def on_error(self, callback: Callable[[VoiceError], None] | None) -> None:
        self._on_error = callback

    def on_timeout(self, callback: Callable[[], None] | None) -> None:
        self._on_timeout = callback

    async def start(self) -> None:
        """Acquire the capture capability; returns once actively capturing.

        Raises:
            VoiceError: permission, device or environment failures.
        """
        if self._active:
            return
        await self._open()
        self._active = True
        self._mark_activity()
        self._watchdog = asyncio.ensure_future(self._watch_silence())
        self._begin()
        logger.info(f"[VOICE][STT] listening simulated={self.simulated}")

    def stop(self) -> None:
        was_active = self._active
        self._active = False
        if self._watchdog is not None:
            if self._watchdog is not asyncio.current_task():
                self._watchdog.cancel()
            self._watchdog = None
        self._close()
        if was_active:
            logger.info("[VOICE][STT] stopped")

    def destroy(self) -> None:
        self.stop()
        self._on_transcript = None
        self._on_error = None
        self._on_timeout = None

    @abstractmethod
    async def _open(self) -> None:
        ...

    def _begin(self) -> None:
        """Hook run once capture is active."""

    @abstractmethod
    def _close(self) -> None:
        """Release capture resources; must be idempotent."""
        ...

    def _mark_activity(self) -> None:
        try:
            self._last_activity = asyncio.get_running_loop().time()
        except RuntimeError:
            self._last_activity = 0.0

    async def _watch_silence(self) -> None:
        loop = asyncio.get_running_loop()
        window = self._config.max_silence_s
        while self._active:
            remaining = self._last_activity + window - loop.time()
            if remaining > 0:
                await asyncio.sleep(remaining)
                continue
            logger.info(f"[VOICE][STT] no speech for {window:.1f}s")
            # Once per window of continuous silence.
            self._last_activity = loop.time()
            if self._on_timeout is not None:
                try:
                    self._on_timeout()
                except Exception:
                    logger.exception("[VOICE][STT] timeout handler failed")

    def _emit_transcript(self, text: str, *, is_final: bool) -> None:
        if not self._active:
            return
        self._mark_activity()
        update = TranscriptUpdate(text=text, is_final=is_final, simulated=self.simulated)
        logger.debug(f"[VOICE][STT] transcript final={is_final} text={text[:80]!r}")
        if self._on_transcript is not None:
            try:
                self._on_transcript(update)
            except Exception:
                logger.exception("[VOICE][STT] transcript handler failed")

    def _fail(self, error: VoiceError) -> None:
        """Stop capturing and report `error` upward."""
        logger.warning(f"[VOICE][STT] {error.kind.value}: {error}")
        self.stop()
        if self._on_error is not None:
            try:
                self._on_error(error)
            except Exception:
                logger.exception("[VOICE][STT] error handler failed")


class WhisperSpeechInput(SpeechInputPort):
    """Microphone capture with rolling faster-whisper transcription."""

    def __init__(
        self,
        *,
        audio: AudioIO,
        stt: STTProvider,
        config: SpeechInputConfig | None = None,
    ) -> None:
        super().__init__(config)
        self._audio = audio
        self._stt = stt
        self._capture_task: asyncio.Task | None = None
        self._owned_dir: tempfile.TemporaryDirectory | None = None
        if self._config.work_dir:
            self._work_dir = Path(self._config.work_dir)
            self._work_dir.mkdir(parents=True, exist_ok=True)
        else:
            self._owned_dir = tempfile.TemporaryDirectory(prefix="interview-coach-stt-", ignore_cleanup_errors=True)
            self._work_dir = Path(self._owned_dir.name)

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def destroy(self) -> None:
        super().destroy()
        if self._owned_dir is not None:
            self._owned_dir.cleanup()
            self._owned_dir = None

    async def _open(self) -> None:
        try:
            self._audio.check_input_device()
            await self._audio.start_recording()
        except RuntimeError as e:
            # require_sounddevice() failed: no audio stack at all.
            raise UnsupportedEnvironmentError(str(e)) from e
        except Exception as e:
            self._audio.abort_recording()
            raise map_capture_error(e) from e

    def _begin(self) -> None:
        self._capture_task = asyncio.ensure_future(self._transcribe_loop())

    def _close(self) -> None:
        task = self._capture_task
        self._capture_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        self._audio.abort_recording()

    async def _transcribe_snapshot(self) -> str:
        audio = self._audio.snapshot()
        if audio.size == 0:
            return ""
        wav = self._audio.write_wav(self._work_dir / "live.wav", audio)
        result = await self._stt.transcribe_file(wav)
        return result.text.strip() if result.is_usable() else ""

    async def _transcribe_loop(self) -> None:
        cfg = self._config
        loop = asyncio.get_running_loop()
        heard_speech = False
        last_voice_at = loop.time()
        next_interim = loop.time() + cfg.interim_interval_s

        while self._active:
            await asyncio.sleep(cfg.poll_interval_s)
            if not self._active:
                return

            now = loop.time()
            if self._audio.input_level() >= cfg.speech_threshold:
                heard_speech = True
                last_voice_at = now
                self._mark_activity()

            if not heard_speech:
                continue

            is_final = now - last_voice_at >= cfg.final_silence_s
            if not is_final and now < next_interim:
                continue

            try:
                text = await self._transcribe_snapshot()
            except Exception as e:
                self._fail(TransientRecognitionError(f"Transcription failed: {e}"))
                return

            if not self._active:
                return
            if text:
                self._emit_transcript(text, is_final=is_final)
            if is_final:
                heard_speech = False
            next_interim = loop.time() + cfg.interim_interval_s


class SimulatedSpeechInput(SpeechInputPort):
    """Degraded mode: produces a canned answer after a fixed delay."""

    simulated = True

    def __init__(
        self,
        config: SpeechInputConfig | None = None,
        *,
        answers: tuple[str, ...] = SIMULATED_ANSWERS,
    ) -> None:
        super().__init__(config)
        self._answers = answers
        self._next_answer = 0
        self._pending: asyncio.Task | None = None

    async def _open(self) -> None:
        return None

    def _begin(self) -> None:
        self._pending = asyncio.ensure_future(self._answer_later())

    def _close(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    async def _answer_later(self) -> None:
        await asyncio.sleep(self._config.simulated_delay_s)
        if not self._active or not self._answers:
            return
        answer = self._answers[self._next_answer % len(self._answers)]
        self._next_answer += 1
        self._emit_transcript(answer, is_final=True)


def create_speech_input(
    config: SpeechInputConfig,
    *,
    stt_config: STTConfig | None = None,
    audio: AudioIO | None = None,
    force_simulated: bool = False,
) -> SpeechInputPort:
    """Probe the environment once and pick the real or simulated port."""
    if force_simulated:
        return SimulatedSpeechInput(config)

    stt = WhisperSTT(stt_config)
    if not stt.is_available():
        logger.info("[VOICE][STT] using simulated input: faster-whisper not installed")
        return SimulatedSpeechInput(config)
    if not has_audio_device("input"):
        logger.info("[VOICE][STT] using simulated input: no input device")
        return SimulatedSpeechInput(config)

    return WhisperSpeechInput(audio=audio or AudioIO(), stt=stt, config=config)
