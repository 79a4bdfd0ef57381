import asyncio
from pathlib import Path

import pytest

from interview_coach.voice.errors import ErrorKind
from interview_coach.voice.output import (
    PiperSpeechOutput,
    SimulatedSpeechOutput,
    SpeechOutputConfig,
    SpeechOutputPort,
    create_speech_output,
)
from interview_coach.voice.tts import TTSConfig, TTSProvider, split_for_synthesis


class HangingOutput(SpeechOutputPort):
    def __init__(self, config: SpeechOutputConfig | None = None) -> None:
        super().__init__(config)
        self.halted = 0

    async def _render(self, text: str) -> None:
        await asyncio.Event().wait()

    def _halt(self) -> None:
        self.halted += 1


class BrokenOutput(SpeechOutputPort):
    async def _render(self, text: str) -> None:
        raise RuntimeError("piper exited with code 1")


class FakeTTS(TTSProvider):
    """Writes `chunks` empty WAVs; can stall or fail after the first one."""

    def __init__(self, chunks: int = 1, *, stall: bool = False, fail: bool = False) -> None:
        self.chunks = chunks
        self.stall = stall
        self.fail = fail
        self.calls: list[str] = []

    async def synthesize_to_wavs(self, text: str, out_dir, base_name: str, on_chunk=None) -> list[Path]:
        self.calls.append(text)
        wavs = []
        for index in range(self.chunks):
            wav = Path(out_dir) / f"{base_name}_{index:02d}.wav"
            wav.write_bytes(b"")
            wavs.append(wav)
            if on_chunk is not None:
                on_chunk(wav)
            if self.stall:
                await asyncio.Event().wait()
            if self.fail:
                raise RuntimeError("piper exited with -9")
        return wavs


class FakeAudio:
    def __init__(self, play_s: float = 0.0) -> None:
        self.play_s = play_s
        self.played: list[tuple[Path, float]] = []
        self.stopped = 0

    async def play_wav(self, wav_path, *, volume: float = 1.0) -> None:
        if self.play_s:
            await asyncio.sleep(self.play_s)
        self.played.append((Path(wav_path), volume))

    def stop_playback(self) -> None:
        self.stopped += 1


def _track(port: SpeechOutputPort) -> list[str]:
    events: list[str] = []
    port.on_start(lambda: events.append("start"))
    port.on_end(lambda: events.append("end"))
    port.on_error(lambda e: events.append(f"error:{e.kind.value}"))
    return events


@pytest.mark.asyncio
async def test_cancel_resolves_pending_speak() -> None:
    port = HangingOutput()
    events = _track(port)

    task = asyncio.create_task(port.speak("A long question"))
    await asyncio.sleep(0)
    assert port.is_speaking

    port.cancel()
    await asyncio.wait_for(task, timeout=1.0)

    assert not port.is_speaking
    assert events == ["start", "end"]
    assert port.halted == 1


@pytest.mark.asyncio
async def test_safety_timeout_resolves_hung_engine() -> None:
    port = HangingOutput(SpeechOutputConfig(safety_timeout_s=0.05))
    events = _track(port)

    await asyncio.wait_for(port.speak("Hello"), timeout=1.0)

    assert events == ["start", "end"]
    assert port.halted == 1


@pytest.mark.asyncio
async def test_engine_failure_is_reported_not_raised() -> None:
    port = BrokenOutput()
    events = _track(port)

    await port.speak("Hello")

    assert events == ["start", "error:synthesis_failure", "end"]
    assert ErrorKind.SYNTHESIS_FAILURE.value in events[1]


@pytest.mark.asyncio
async def test_blank_text_is_not_spoken() -> None:
    port = BrokenOutput()
    events = _track(port)

    await port.speak("   ")

    assert events == []


@pytest.mark.asyncio
async def test_new_utterance_replaces_ongoing_one() -> None:
    port = HangingOutput(SpeechOutputConfig(safety_timeout_s=0.2))

    first = asyncio.create_task(port.speak("first"))
    await asyncio.sleep(0)
    second = asyncio.create_task(port.speak("second"))

    await asyncio.wait_for(first, timeout=0.1)
    assert not second.done()
    port.cancel()
    await asyncio.wait_for(second, timeout=1.0)


def test_simulated_duration_scales_with_length_and_rate() -> None:
    port = SimulatedSpeechOutput(SpeechOutputConfig(simulated_ms_per_char=30, simulated_max_s=2.0))
    fast = SimulatedSpeechOutput(SpeechOutputConfig(rate=2.0, simulated_ms_per_char=30, simulated_max_s=2.0))

    assert port.duration_for("x" * 10) == pytest.approx(0.3)
    assert port.duration_for("x" * 1000) == pytest.approx(2.0)
    assert fast.duration_for("x" * 10) == pytest.approx(0.15)


@pytest.mark.asyncio
async def test_simulated_output_completes() -> None:
    port = SimulatedSpeechOutput(SpeechOutputConfig(simulated_ms_per_char=1, simulated_max_s=0.01))
    events = _track(port)

    await asyncio.wait_for(port.speak("Question 1. Tell me about yourself."), timeout=1.0)

    assert events == ["start", "end"]
    assert port.simulated


@pytest.mark.asyncio
async def test_piper_output_filters_text_and_caches_wavs(tmp_path: Path) -> None:
    tts = FakeTTS()
    audio = FakeAudio()
    port = PiperSpeechOutput(tts=tts, audio=audio, config=SpeechOutputConfig(volume=0.5, cache_dir=str(tmp_path)))

    await port.speak("**Hello** `world`")
    await port.speak("**Hello** `world`")

    assert tts.calls == ["Hello world"]
    assert len(audio.played) == 2
    assert all(volume == 0.5 for _, volume in audio.played)
    assert audio.played[0][0] == audio.played[1][0]


@pytest.mark.asyncio
async def test_piper_output_skips_unspeakable_text(tmp_path: Path) -> None:
    tts = FakeTTS()
    audio = FakeAudio()
    port = PiperSpeechOutput(tts=tts, audio=audio, config=SpeechOutputConfig(cache_dir=str(tmp_path)))

    await port.speak("```")

    assert tts.calls == []
    assert audio.played == []


def test_factory_falls_back_to_simulated_without_piper() -> None:
    config = SpeechOutputConfig()

    forced = create_speech_output(config, force_simulated=True)
    missing = create_speech_output(config, tts_config=TTSConfig(piper_bin="definitely-not-a-piper-binary"))

    assert isinstance(forced, SimulatedSpeechOutput)
    assert isinstance(missing, SimulatedSpeechOutput)


def test_split_for_synthesis_packs_sentences() -> None:
    text = "Hello there. This is question one. Is it clear?"

    assert split_for_synthesis(text, 200) == [text]
    assert split_for_synthesis(text, 30) == ["Hello there.", "This is question one.", "Is it clear?"]
    assert split_for_synthesis("   ", 30) == []


@pytest.mark.asyncio
async def test_long_utterance_outlasting_safety_timeout_plays_every_chunk(tmp_path: Path) -> None:
    audio = FakeAudio(play_s=0.1)
    port = PiperSpeechOutput(
        tts=FakeTTS(chunks=3),
        audio=audio,
        config=SpeechOutputConfig(safety_timeout_s=0.2, cache_dir=str(tmp_path)),
    )
    events = _track(port)

    await asyncio.wait_for(port.speak("A question long enough to need three chunks."), timeout=2.0)

    assert [wav.name[-6:] for wav, _ in audio.played] == ["00.wav", "01.wav", "02.wav"]
    assert events == ["start", "end"]
    assert audio.stopped == 0


@pytest.mark.asyncio
async def test_hung_playback_still_hits_safety_timeout(tmp_path: Path) -> None:
    audio = FakeAudio(play_s=30.0)
    port = PiperSpeechOutput(
        tts=FakeTTS(),
        audio=audio,
        config=SpeechOutputConfig(safety_timeout_s=0.05, cache_dir=str(tmp_path)),
    )

    await asyncio.wait_for(port.speak("Hello"), timeout=1.0)

    assert audio.played == []
    assert audio.stopped == 1


@pytest.mark.asyncio
async def test_canceled_synthesis_is_not_cached(tmp_path: Path) -> None:
    tts = FakeTTS(chunks=2, stall=True)
    audio = FakeAudio()
    port = PiperSpeechOutput(tts=tts, audio=audio, config=SpeechOutputConfig(cache_dir=str(tmp_path)))

    task = asyncio.create_task(port.speak("First sentence. Second sentence."))
    for _ in range(50):
        if tts.calls:
            break
        await asyncio.sleep(0)
    port.cancel()
    await asyncio.wait_for(task, timeout=1.0)
    for _ in range(5):
        await asyncio.sleep(0)

    assert audio.played == []
    assert list(tmp_path.rglob("*.wav")) == []

    tts.stall = False
    await port.speak("First sentence. Second sentence.")

    assert len(tts.calls) == 2
    assert len(audio.played) == 2


@pytest.mark.asyncio
async def test_failed_synthesis_is_not_cached(tmp_path: Path) -> None:
    tts = FakeTTS(chunks=2, fail=True)
    audio = FakeAudio()
    port = PiperSpeechOutput(tts=tts, audio=audio, config=SpeechOutputConfig(cache_dir=str(tmp_path)))
    events = _track(port)

    await port.speak("First sentence. Second sentence.")
    assert events == ["start", "error:synthesis_failure", "end"]
    assert list(tmp_path.rglob("*.wav")) == []

    tts.fail = False
    await port.speak("First sentence. Second sentence.")

    assert len(tts.calls) == 2
    assert len(audio.played) == 2


def test_piper_output_removes_its_own_cache_on_destroy(tmp_path: Path) -> None:
    owned = PiperSpeechOutput(tts=FakeTTS(), audio=FakeAudio())
    configured = PiperSpeechOutput(tts=FakeTTS(), audio=FakeAudio(), config=SpeechOutputConfig(cache_dir=str(tmp_path)))
    assert owned.cache_dir.is_dir()

    owned.destroy()
    configured.destroy()
    owned.destroy()

    assert not owned.cache_dir.exists()
    assert configured.cache_dir.is_dir()
