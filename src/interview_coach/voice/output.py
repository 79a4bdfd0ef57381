"""Speech output port.

`speak()` always resolves: on normal completion, on `cancel()`, on a synthesis
failure (reported through `on_error`, never raised) and when the safety
timeout expires. A dialogue can therefore never deadlock on a speech engine.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
import shutil
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable

from interview_coach.voice.audio_io import AudioIO, has_audio_device
from interview_coach.voice.errors import SynthesisFailure
from interview_coach.voice.speakable import to_speakable
from interview_coach.voice.tts import PiperTTS, TTSConfig, TTSProvider

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SpeechOutputConfig:
    rate: float = 1.0
    volume: float = 1.0
    safety_timeout_s: float = 10.0
    max_chars: int = 400
    # Degraded mode pacing
    simulated_ms_per_char: float = 30.0
    simulated_max_s: float = 2.0
    cache_dir: str | None = None


class SpeechOutputPort(ABC):
    """Renders text as speech; swappable behind this contract."""

    simulated: bool = False

    def __init__(self, config: SpeechOutputConfig | None = None) -> None:
        self._config = config or SpeechOutputConfig()
        self._on_start: Callable[[], None] | None = None
        self._on_end: Callable[[], None] | None = None
        self._on_error: Callable[[SynthesisFailure], None] | None = None
        self._cancel_event: asyncio.Event | None = None
        self._last_progress = 0.0

    @property
    def config(self) -> SpeechOutputConfig:
        return self._config

    @property
    def is_speaking(self) -> bool:
        return self._cancel_event is not None

    def on_start(self, callback: Callable[[], None] | None) -> None:
        self._on_start = callback

    def on_end(self, callback: Callable[[], None] | None) -> None:
        self._on_end = callback

    def on_error(self, callback: Callable[[SynthesisFailure], None] | None) -> None:
        self._on_error = callback

    async def speak(self, text: str) -> None:
        text = (text or "").strip()
        if not text:
            return

        # A new utterance replaces any ongoing one.
        self.cancel()

        loop = asyncio.get_running_loop()
        cancel_event = asyncio.Event()
        self._cancel_event = cancel_event
        self._last_progress = loop.time()
        self._notify(self._on_start)

        render = asyncio.ensure_future(self._render(text))
        canceled = asyncio.ensure_future(cancel_event.wait())
        try:
            done: set[asyncio.Future] = set()
            # The safety timeout bounds time without progress, not the whole utterance.
            while not done:
                remaining = self._last_progress + self._config.safety_timeout_s - loop.time()
                if remaining <= 0:
                    break
                done, _ = await asyncio.wait(
                    {render, canceled},
                    timeout=remaining,
                    return_when=asyncio.FIRST_COMPLETED,
                )
            if render in done:
                exc = None if render.cancelled() else render.exception()
                if exc is not None:
                    logger.warning(f"[VOICE][TTS] synthesis failed, treating as spoken: {exc}")
                    self._report(SynthesisFailure(str(exc)))
            elif canceled in done:
                logger.info("[VOICE][TTS] speech canceled")
            else:
                logger.warning(
                    f"[VOICE][TTS] no progress for {self._config.safety_timeout_s:.1f}s, abandoning utterance"
                )
        finally:
            interrupted = not render.done()
            for task in (render, canceled):
                if not task.done():
                    task.cancel()
            if interrupted:
                self._halt()
            if self._cancel_event is cancel_event:
                self._cancel_event = None
            self._notify(self._on_end)

    def cancel(self) -> None:
        """Cancel in-flight speech; the pending `speak()` resolves normally."""
        if self._cancel_event is not None:
            self._cancel_event.set()

    def destroy(self) -> None:
        self.cancel()
        self._on_start = None
        self._on_end = None
        self._on_error = None

    @abstractmethod
    async def _render(self, text: str) -> None:
        """Produce audible speech for `text`; may raise on engine failure."""
        ...

    def _progress(self) -> None:
        """Re-arm the safety timeout; renderers call this as each chunk advances."""
        self._last_progress = asyncio.get_running_loop().time()

    def _halt(self) -> None:
        """Stop any playback still running after cancel or timeout."""

    def _notify(self, callback: Callable[[], None] | None) -> None:
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("[VOICE][TTS] speech event handler failed")

    def _report(self, error: SynthesisFailure) -> None:
        if self._on_error is None:
            return
        try:
            self._on_error(error)
        except Exception:
            logger.exception("[VOICE][TTS] error handler failed")


class SimulatedSpeechOutput(SpeechOutputPort):
    """Degraded mode: waits as long as the text would take to say."""

    simulated = True

    def duration_for(self, text: str) -> float:
        seconds = min(len(text) * self._config.simulated_ms_per_char / 1000.0, self._config.simulated_max_s)
        return seconds / max(self._config.rate, 0.1)

    async def _render(self, text: str) -> None:
        logger.info(f"[VOICE][TTS] (simulated) {text[:80]}")
        await asyncio.sleep(self.duration_for(text))


class PiperSpeechOutput(SpeechOutputPort):
    """Piper synthesis followed by speaker playback.

    WAVs are cached by (model + speakable text). A synthesis lands in a
    staging directory and is published with a manifest only once every chunk
    exists, so a canceled or failed utterance never leaves a partial entry.
    """

    def __init__(
        self,
        *,
        tts: TTSProvider,
        audio: AudioIO,
        config: SpeechOutputConfig | None = None,
    ) -> None:
        super().__init__(config)
        self._tts = tts
        self._audio = audio
        self._owned_dir: tempfile.TemporaryDirectory | None = None
        if self._config.cache_dir:
            self._cache_dir = Path(self._config.cache_dir)
            self._cache_dir.mkdir(parents=True, exist_ok=True)
        else:
            self._owned_dir = tempfile.TemporaryDirectory(prefix="interview-coach-tts-", ignore_cleanup_errors=True)
            self._cache_dir = Path(self._owned_dir.name)

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def destroy(self) -> None:
        super().destroy()
        if self._owned_dir is not None:
            self._owned_dir.cleanup()
            self._owned_dir = None

    async def _render(self, text: str) -> None:
        speakable = to_speakable(text, max_chars=self._config.max_chars)
        if not speakable:
            logger.info("[VOICE][TTS] skipped reason=no_speakable_text")
            return

        model_path = str(getattr(getattr(self._tts, "config", None), "model_path", ""))
        cache_key = hashlib.sha1((speakable + "\n" + model_path).encode("utf-8")).hexdigest()[:16]
        wavs = self._cached_wavs(cache_key)
        if wavs is None:
            wavs = await self._synthesize(speakable, cache_key)

        for wav in wavs:
            self._progress()
            await self._audio.play_wav(wav, volume=self._config.volume)

    def _manifest(self, cache_key: str) -> Path:
        return self._cache_dir / f"{cache_key}.chunks"

    def _cached_wavs(self, cache_key: str) -> list[Path] | None:
        manifest = self._manifest(cache_key)
        if not manifest.exists():
            return None
        wavs = [self._cache_dir / name for name in manifest.read_text(encoding="utf-8").split()]
        if not wavs or not all(wav.exists() for wav in wavs):
            return None
        return wavs

    async def _synthesize(self, speakable: str, cache_key: str) -> list[Path]:
        staging = Path(tempfile.mkdtemp(prefix=f".{cache_key}-", dir=self._cache_dir))
        try:
            produced = await self._tts.synthesize_to_wavs(
                speakable,
                out_dir=staging,
                base_name=cache_key,
                on_chunk=lambda _wav: self._progress(),
            )
            wavs = [wav.replace(self._cache_dir / wav.name) for wav in produced]
            self._manifest(cache_key).write_text("\n".join(wav.name for wav in wavs), encoding="utf-8")
            return wavs
        finally:
            shutil.rmtree(staging, ignore_errors=True)

    def _halt(self) -> None:
        self._audio.stop_playback()


def create_speech_output(
    config: SpeechOutputConfig,
    *,
    tts_config: TTSConfig | None = None,
    audio: AudioIO | None = None,
    force_simulated: bool = False,
) -> SpeechOutputPort:
    """Probe the environment once and pick the real or simulated port."""
    if force_simulated:
        return SimulatedSpeechOutput(config)

    tts = PiperTTS(replace(tts_config or TTSConfig(), length_scale=1.0 / max(config.rate, 0.1)))
    ok, reason = tts.is_available()
    if not ok:
        logger.info(f"[VOICE][TTS] using simulated speech: {reason}")
        return SimulatedSpeechOutput(config)
    if not has_audio_device("output"):
        logger.info("[VOICE][TTS] using simulated speech: no output device")
        return SimulatedSpeechOutput(config)

    return PiperSpeechOutput(tts=tts, audio=audio or AudioIO(), config=config)
