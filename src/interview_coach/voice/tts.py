"""Offline text-to-speech.

Turns text into WAV files with the Piper CLI. Playback, caching and
cancellation of an utterance belong to `interview_coach.voice.output`; this
module only synthesizes.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

logger = logging.getLogger(__name__)

_SENTENCE_END_RE = re.compile(r"(?<=[.!?])\s+")


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # *.onnx voice
    speaker_id: int | None = None
    length_scale: float = 1.0  # 1/rate; >1 speaks slower
    max_chars_per_chunk: int = 200
    timeout_s: float = 60.0


class TTSProvider(ABC):
    """Synthesizes text into one or more WAV files."""

    @abstractmethod
    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        on_chunk: Callable[[Path], None] | None = None,
    ) -> list[Path]:
        """Write `{base_name}_NN.wav` files in speaking order; `on_chunk` fires as each one is written."""
        ...

    def is_available(self) -> tuple[bool, str]:
        """Return (usable, reason); the reason explains an unusable engine."""
        return True, "ok"


def split_for_synthesis(text: str, max_chars: int) -> list[str]:
    """Group sentences into chunks of at most `max_chars` (a longer sentence stays whole)."""
    sentences = [s.strip() for s in _SENTENCE_END_RE.split((text or "").strip()) if s.strip()]
    chunks: list[str] = []
    for sentence in sentences:
        if chunks and len(chunks[-1]) + 1 + len(sentence) <= max_chars:
            chunks[-1] = f"{chunks[-1]} {sentence}"
        else:
            chunks.append(sentence)
    return chunks


class PiperTTS(TTSProvider):
    """Piper CLI wrapper; each chunk is one `piper` process reading text on stdin."""

    def __init__(self, config: TTSConfig | None = None) -> None:
        self._config = config or TTSConfig()
        self._piper_path: str | None = None

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            self._resolve_piper()
        except RuntimeError as e:
            return False, str(e)
        return True, "ok"

    def _resolve_piper(self) -> str:
        if self._piper_path:
            return self._piper_path

        path = shutil.which(self._config.piper_bin)
        if not path:
            raise RuntimeError(
                f"Piper binary {self._config.piper_bin!r} not found on PATH; set INTERVIEW_COACH_PIPER_BIN."
            )
        if not _is_piper_tts(path):
            # /usr/bin/piper on many Linux desktops is an unrelated GTK app.
            raise RuntimeError(
                f"{path} is not the Piper TTS CLI; point INTERVIEW_COACH_PIPER_BIN at the Piper TTS binary."
            )
        if not self._config.model_path:
            raise RuntimeError("No Piper voice configured; set INTERVIEW_COACH_PIPER_MODEL=/path/to/voice.onnx.")

        self._piper_path = path
        return path

    def _command(self, piper: str, wav_path: Path) -> list[str]:
        cmd = [
            piper,
            "--model", str(self._config.model_path),
            "--output_file", str(wav_path),
            "--length_scale", f"{self._config.length_scale:.3f}",
        ]
        if self._config.speaker_id is not None:
            cmd += ["--speaker", str(self._config.speaker_id)]
        return cmd

    async def _synthesize_chunk(self, piper: str, chunk: str, wav_path: Path) -> None:
        proc = await asyncio.create_subprocess_exec(
            *self._command(piper, wav_path),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(
                proc.communicate(chunk.encode("utf-8")), timeout=self._config.timeout_s
            )
        except asyncio.TimeoutError as e:
            proc.kill()
            raise RuntimeError(f"piper timed out after {self._config.timeout_s:.1f}s") from e
        except asyncio.CancelledError:
            # Utterance canceled mid-synthesis.
            proc.kill()
            raise

        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip() or "<empty>"
            raise RuntimeError(f"piper exited with {proc.returncode}: {detail}")

    async def synthesize_to_wavs(
        self,
        text: str,
        out_dir: str | Path,
        base_name: str,
        on_chunk: Callable[[Path], None] | None = None,
    ) -> list[Path]:
        piper = self._resolve_piper()
        out_dir = Path(out_dir)
        out_dir.mkdir(parents=True, exist_ok=True)

        wavs: list[Path] = []
        for index, chunk in enumerate(split_for_synthesis(text, self._config.max_chars_per_chunk)):
            wav_path = out_dir / f"{base_name}_{index:02d}.wav"
            await self._synthesize_chunk(piper, chunk, wav_path)
            wavs.append(wav_path)
            if on_chunk is not None:
                on_chunk(wav_path)

        logger.debug(f"[VOICE][TTS] synthesized {len(wavs)} chunk(s) for {base_name}")
        return wavs


def _is_piper_tts(path: str) -> bool:
    try:
        result = subprocess.run(
            [path, "--help"],
            capture_output=True,
            text=True,
            timeout=5,
            check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return False
    help_text = f"{result.stdout}{result.stderr}".lower()
    return ("--model" in help_text or "--output_file" in help_text) and "application options" not in help_text
