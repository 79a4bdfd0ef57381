"""Microphone and speaker access through sounddevice.

Hardware only: the speech ports decide what to capture and when to play.
Capture keeps a growing buffer that can be snapshotted while recording, and
tracks the RMS level of the latest block for silence detection. Playback is
volume-scaled and can be stopped from another task.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    dtype: str = "int16"  # sounddevice dtype and WAV sample width
    playback_timeout_s: float = 30.0


def require_sounddevice():
    try:
        import sounddevice as sd  # type: ignore

        return sd
    except Exception as e:  # pragma: no cover
        raise RuntimeError(
            "sounddevice is required for voice mode. Install Python deps with: pip install -e '.[voice]'. "
            "If you see 'PortAudio library not found', install PortAudio (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
        ) from e


def has_audio_device(kind: str) -> bool:
    """Probe for a default input/output device without opening a stream."""
    try:
        sd = require_sounddevice()
        sd.query_devices(kind=kind)
        return True
    except Exception as e:
        logger.info(f"[VOICE][AUDIO] no {kind} device: {e}")
        return False


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._recording_stream = None
        self._recording_frames: list[np.ndarray] = []
        self._last_level: float = 0.0

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    @property
    def is_recording(self) -> bool:
        return self._recording_stream is not None

    def check_input_device(self) -> None:
        """Raise the underlying PortAudio error if no capture device is usable."""
        sd = require_sounddevice()
        sd.query_devices(kind="input")
        sd.check_input_settings(
            samplerate=self._config.sample_rate,
            channels=self._config.channels,
            dtype=self._config.dtype,
        )

    async def start_recording(self) -> None:
        """Start mic capture."""
        sd = require_sounddevice()
        self._recording_frames = []
        self._last_level = 0.0

        def callback(indata, frames, time, status):  # noqa: ANN001
            if status:
                logger.debug(f"Input status: {status}")
            chunk = indata.copy()
            self._recording_frames.append(chunk)
            self._last_level = float(np.sqrt(np.mean(np.square(chunk.astype(np.float32) / 32768.0))))

        self._recording_stream = sd.InputStream(
            samplerate=self._config.sample_rate,
            channels=self._config.channels,
            dtype=self._config.dtype,
            callback=callback,
        )

        await asyncio.to_thread(self._recording_stream.start)

    def snapshot(self) -> np.ndarray:
        """Return everything captured so far without stopping the stream."""
        frames = list(self._recording_frames)
        if not frames:
            return np.zeros((0, self._config.channels), dtype=np.int16)
        return np.concatenate(frames, axis=0)

    def input_level(self) -> float:
        """RMS of the most recent capture block, normalized to 0..1."""
        return self._last_level

    async def stop_recording(self) -> np.ndarray:
        """Stop mic capture and return audio as int16 numpy array [samples, channels]."""
        if self._recording_stream is None:
            return np.zeros((0, self._config.channels), dtype=np.int16)

        stream = self._recording_stream
        self._recording_stream = None

        await asyncio.to_thread(stream.stop)
        await asyncio.to_thread(stream.close)

        return self.snapshot()

    def abort_recording(self) -> None:
        """Synchronously halt capture; safe to call when not recording."""
        stream = self._recording_stream
        self._recording_stream = None
        if stream is None:
            return
        try:
            stream.abort()
            stream.close()
        except Exception as e:
            logger.warning(f"[VOICE][AUDIO] failed to close input stream: {e}")

    def write_wav(self, wav_path: str | Path, audio: np.ndarray) -> Path:
        """Write int16 PCM WAV."""
        wav_path = Path(wav_path)
        wav_path.parent.mkdir(parents=True, exist_ok=True)

        if audio.ndim == 1:
            audio = audio[:, None]

        audio_i16 = audio.astype(np.int16, copy=False)

        with wave.open(str(wav_path), "wb") as wf:
            wf.setnchannels(self._config.channels)
            wf.setsampwidth(2)  # int16
            wf.setframerate(self._config.sample_rate)
            wf.writeframes(audio_i16.tobytes())

        return wav_path

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        wav_path = Path(wav_path)
        with wave.open(str(wav_path), "rb") as wf:
            sr = wf.getframerate()
            n_channels = wf.getnchannels()
            sampwidth = wf.getsampwidth()
            if sampwidth != 2:
                raise ValueError(f"Only 16-bit WAV supported, got sampwidth={sampwidth}")
            frames = wf.readframes(wf.getnframes())

        audio = np.frombuffer(frames, dtype=np.int16)
        if n_channels > 1:
            audio = audio.reshape(-1, n_channels)
        else:
            audio = audio.reshape(-1, 1)
        return audio, sr

    async def play_wav(self, wav_path: str | Path, *, volume: float = 1.0) -> None:
        """Play a WAV file to completion, or until `stop_playback` is called."""
        sd = require_sounddevice()

        audio, sr = self.read_wav(wav_path)
        audio_f32 = (audio.astype(np.float32) / 32768.0).squeeze(-1)
        audio_f32 = np.clip(audio_f32 * max(0.0, min(volume, 1.0)), -1.0, 1.0)

        sd.play(audio_f32, samplerate=sr, blocking=False)

        try:
            await asyncio.wait_for(asyncio.to_thread(sd.wait), timeout=self._config.playback_timeout_s)
        except asyncio.TimeoutError:
            self.stop_playback()

    def stop_playback(self) -> None:
        try:
            require_sounddevice().stop()
        except Exception as e:
            logger.warning(f"[VOICE][AUDIO] failed to stop playback: {e}")
