"""
Dialogue controller.

Drives one interview session through alternating speech output (questions)
and speech input (answers). All work happens on a single event loop. Every
operation that awaits a port captures the current turn token first and
re-checks it after each await; `stop()` and failures bump the token, so a
stale continuation never touches the session or a port again.
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Callable

from interview_coach.dialogue.errors import EmptyQuestionSetError, InvalidQuestionSetError, InvalidStateError
from interview_coach.dialogue.schemas import (
    CompletionPayload,
    PortState,
    SessionStatus,
    TranscriptMessage,
    TurnRecord,
    VoiceState,
)
from interview_coach.dialogue.session_state import InterviewSession
from interview_coach.dialogue.strategies import DialogueStrategy, PracticeInterviewStrategy
from interview_coach.voice.errors import (
    SynthesisFailure,
    TransientRecognitionError,
    UnsupportedEnvironmentError,
    VoiceError,
)
from interview_coach.voice.input import SpeechInputPort, TranscriptUpdate
from interview_coach.voice.output import SpeechOutputPort

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DialogueConfig:
    """Per-session options for the dialogue controller."""

    questions: tuple[str, ...] = ()
    speech_rate: float = 1.0
    speech_volume: float = 1.0
    interview_id: str | None = None
    user_id: str | None = None
    # Pause between spoken segments of a turn
    turn_pause_s: float = 0.0

    def __post_init__(self) -> None:
        if not 0.5 <= self.speech_rate <= 2.0:
            raise ValueError(f"speech_rate must be within 0.5..2.0, got {self.speech_rate}")
        if not 0.0 <= self.speech_volume <= 1.0:
            raise ValueError(f"speech_volume must be within 0.0..1.0, got {self.speech_volume}")


class DialogueController:
    """
    Turn-taking state machine between a speech output and a speech input port.

    Each event concern has a single subscriber; registering a new callback
    replaces the previous one. Events are delivered synchronously, in the
    order the transitions happen.
    """

    def __init__(
        self,
        *,
        output: SpeechOutputPort,
        input: SpeechInputPort,
        strategy: DialogueStrategy | None = None,
        config: DialogueConfig | None = None,
        degraded_input_factory: Callable[[], SpeechInputPort] | None = None,
    ) -> None:
        """
        Initialize the controller.

        Args:
            output: Port used to speak questions and prompts.
            input: Port used to capture answers.
            strategy: What is said; defaults to a practice interview.
            config: Session options.
            degraded_input_factory: Builds a simulated input port when the
                real one reports an unsupported environment.
        """
        self._output = output
        self._input = input
        self._strategy = strategy or PracticeInterviewStrategy()
        self._config = config or DialogueConfig()
        self._degraded_input_factory = degraded_input_factory

        self._session = InterviewSession(())
        self._output_state = PortState()
        self._input_state = PortState()
        self._error: str | None = None
        self._token = 0
        self._destroyed = False
        self._background: set[asyncio.Task] = set()

        self._state_handler: Callable[[VoiceState], None] | None = None
        self._transcript_handler: Callable[[list[TranscriptMessage]], None] | None = None
        self._turn_handler: Callable[[TurnRecord], None] | None = None
        self._complete_handler: Callable[[CompletionPayload], None] | None = None
        self._error_handler: Callable[[str], None] | None = None
        self._warning_handler: Callable[[str], None] | None = None

        self._wire_output()
        self._wire_input()

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self._session.status

    @property
    def session(self) -> InterviewSession:
        return self._session

    @property
    def strategy(self) -> DialogueStrategy:
        return self._strategy

    @property
    def output_state(self) -> PortState:
        return self._output_state.model_copy()

    @property
    def input_state(self) -> PortState:
        return self._input_state.model_copy()

    @property
    def input_port(self) -> SpeechInputPort:
        return self._input

    @property
    def state(self) -> VoiceState:
        status = self._session.status
        return VoiceState(
            status=status,
            is_listening=self._input_state.active,
            is_speaking=self._output_state.active,
            is_processing=status == SessionStatus.PROCESSING,
            transcript=self._session.pending_transcript,
            error=self._error,
        )

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def on_state_change(self, callback: Callable[[VoiceState], None] | None) -> None:
        self._state_handler = callback

    def on_transcript_update(self, callback: Callable[[list[TranscriptMessage]], None] | None) -> None:
        self._transcript_handler = callback

    def on_turn_complete(self, callback: Callable[[TurnRecord], None] | None) -> None:
        self._turn_handler = callback

    def on_complete(self, callback: Callable[[CompletionPayload], None] | None) -> None:
        self._complete_handler = callback

    def on_error(self, callback: Callable[[str], None] | None) -> None:
        self._error_handler = callback

    def on_warning(self, callback: Callable[[str], None] | None) -> None:
        self._warning_handler = callback

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, questions: Sequence[str] | None = None) -> None:
        """
        Start a new session and run until the first answer is awaited.

        Args:
            questions: Prompts to ask; defaults to the configured questions,
                then to the strategy's own.

        Raises:
            InvalidStateError: If a session is already running or the
                controller was destroyed.
            EmptyQuestionSetError: If there is nothing to ask.
            InvalidQuestionSetError: If some question is blank.
        """
        if self._destroyed:
            raise InvalidStateError("Dialogue controller has been destroyed")
        if self._session.is_active:
            raise InvalidStateError(f"Dialogue already running (status={self._session.status.value})")

        if questions is None:
            questions = self._config.questions or self._strategy.default_questions()
        prompts = tuple((q or "").strip() for q in questions)
        if not any(prompts):
            raise EmptyQuestionSetError("Cannot start a dialogue without questions")
        # Turn records index into the caller's list, so positions must not shift.
        blank = [str(i + 1) for i, q in enumerate(prompts) if not q]
        if blank:
            logger.warning(f"[DIALOGUE] rejected question set, blank at position(s) {', '.join(blank)}")
            raise InvalidQuestionSetError(f"Blank question at position(s) {', '.join(blank)}")

        self._token += 1
        token = self._token
        self._session = InterviewSession(prompts)
        self._output_state = PortState()
        self._input_state = PortState()
        self._error = None

        logger.info(
            f"[DIALOGUE] start mode={self._strategy.mode} questions={len(prompts)} "
            f"interview_id={self._config.interview_id}"
        )
        self._set_status(SessionStatus.AWAITING_SPEECH)
        self._emit_transcript_update()

        if not await self._say(self._strategy.introduction(len(prompts)), token):
            return
        if not await self._pause(token):
            return
        await self._ask_current(token)

    async def submit_answer(self) -> None:
        """Commit the pending transcript as the answer to the open question."""
        status = self._session.status
        if status != SessionStatus.LISTENING:
            self._warn(f"Cannot submit an answer while {status.value}")
            return
        if not self._session.pending_transcript.strip():
            self._warn("Please speak an answer first")
            return
        await self._close_turn(skipped=False)

    async def skip_question(self) -> None:
        """Record the open question as skipped, whatever was heard so far."""
        status = self._session.status
        if status != SessionStatus.LISTENING:
            self._warn(f"Cannot skip a question while {status.value}")
            return
        await self._close_turn(skipped=True)

    async def restart_listening(self) -> None:
        """Re-open the input port for the open question after a recognition error."""
        if self._session.status != SessionStatus.LISTENING or self._input_state.active:
            self._warn("Listening can only be restarted after a recognition error")
            return
        await self._open_input(self._token)

    def stop(self) -> None:
        """
        Cancel the session.

        Halts speech in both directions and discards the pending transcript.
        Does nothing unless a session is running.
        """
        if not self._session.is_active:
            return
        self._token += 1
        self._output.cancel()
        self._output_state.active = False
        self._stop_input()
        self._session.clear_pending_transcript()
        logger.info(f"[DIALOGUE] stopped at question {self._session.current_index + 1}")
        self._set_status(SessionStatus.STOPPED)

    def destroy(self) -> None:
        """Stop, release both ports and drop every subscription."""
        self.stop()
        for task in list(self._background):
            task.cancel()
        self._background.clear()
        self._output.destroy()
        self._input.destroy()
        self._state_handler = None
        self._transcript_handler = None
        self._turn_handler = None
        self._complete_handler = None
        self._error_handler = None
        self._warning_handler = None
        self._destroyed = True

    # ------------------------------------------------------------------
    # Turn flow
    # ------------------------------------------------------------------

    async def _say(self, text: str, token: int) -> bool:
        """Speak `text`; returns False if the session moved on meanwhile."""
        await self._output.speak(text)
        return token == self._token

    async def _pause(self, token: int) -> bool:
        if self._config.turn_pause_s > 0:
            await asyncio.sleep(self._config.turn_pause_s)
        return token == self._token

    async def _ask_current(self, token: int) -> None:
        index = self._session.current_index
        question = self._session.current_question
        if question is None:
            return

        self._session.add_message("assistant", self._strategy.question_message(index, question))
        self._emit_transcript_update()
        logger.info(f"[DIALOGUE] asking question {index + 1}/{len(self._session.questions)}")

        if not await self._say(self._strategy.spoken_question(index, question), token):
            return
        prompt = self._strategy.listening_prompt()
        if prompt and not await self._say(prompt, token):
            return
        await self._open_input(token)

    async def _open_input(self, token: int) -> None:
        self._session.clear_pending_transcript()
        try:
            await self._input.start()
        except UnsupportedEnvironmentError as e:
            if token != self._token:
                return
            await self._degrade_input(e, token)
            return
        except VoiceError as e:
            if token != self._token:
                return
            self._handle_input_error(e)
            return

        if token != self._token:
            # Stopped while the device was being acquired.
            self._input.stop()
            return

        self._input_state.active = True
        self._set_status(SessionStatus.LISTENING)

    async def _degrade_input(self, error: UnsupportedEnvironmentError, token: int) -> None:
        if self._degraded_input_factory is None or self._input.simulated:
            self._fail(error)
            return

        logger.warning(f"[DIALOGUE] speech input unsupported, switching to simulated input: {error}")
        self._replace_input(self._degraded_input_factory())
        self._input_state.last_error = error.kind
        self._warn(error.user_message)
        await self._open_input(token)

    async def _close_turn(self, *, skipped: bool) -> None:
        token = self._token
        self._stop_input()

        index = self._session.current_index
        if skipped:
            self._session.add_message("user", self._strategy.skip_message(index))
        else:
            self._session.add_message("user", self._session.pending_transcript)
        record = self._session.close_turn(skipped=skipped)
        last = self._session.is_exhausted

        logger.info(f"[DIALOGUE] turn {index + 1} closed skipped={skipped}")
        self._set_status(SessionStatus.PROCESSING if last else SessionStatus.AWAITING_SPEECH)
        self._emit_transcript_update()
        self._emit(self._turn_handler, record)

        if not await self._say(self._strategy.acknowledgement(skipped), token):
            return
        if last:
            await self._finish(token)
            return
        if not await self._pause(token):
            return
        await self._ask_current(token)

    async def _finish(self, token: int) -> None:
        if not await self._say(self._strategy.closing(), token):
            return

        transcript = self._session.transcript_log
        payload = CompletionPayload(
            interview_id=self._config.interview_id,
            user_id=self._config.user_id,
            mode=self._strategy.mode,
            questions_asked=len(self._session.questions),
            answers_given=self._session.answers_given,
            transcript=transcript,
            messages=self._session.messages,
            interview_params=self._strategy.interview_params(transcript, self._config.user_id),
        )
        self._set_status(SessionStatus.COMPLETED)
        logger.info(
            f"[DIALOGUE] completed questions={payload.questions_asked} answers={payload.answers_given}"
        )
        self._emit(self._complete_handler, payload)

    def _fail(self, error: VoiceError) -> None:
        self._token += 1
        self._output.cancel()
        self._output_state.active = False
        self._stop_input()
        self._input_state.last_error = error.kind
        self._error = error.user_message
        logger.error(f"[DIALOGUE] session failed: {error.kind.value}: {error}")
        self._set_status(SessionStatus.FAILED)
        self._emit(self._error_handler, error.user_message)

    def _stop_input(self) -> None:
        self._input.stop()
        self._input_state.active = False

    # ------------------------------------------------------------------
    # Port wiring
    # ------------------------------------------------------------------

    def _wire_output(self) -> None:
        self._output.on_start(self._handle_speech_start)
        self._output.on_end(self._handle_speech_end)
        self._output.on_error(self._handle_synthesis_error)

    def _wire_input(self) -> None:
        self._input.on_transcript(self._handle_transcript)
        self._input.on_error(self._handle_input_error)
        self._input.on_timeout(self._handle_silence_timeout)

    def _replace_input(self, port: SpeechInputPort) -> None:
        self._input.destroy()
        self._input = port
        self._wire_input()

    def _handle_speech_start(self) -> None:
        if not self._session.is_active:
            return
        self._output_state.active = True
        self._emit_state()

    def _handle_speech_end(self) -> None:
        if not self._output_state.active:
            return
        self._output_state.active = False
        self._emit_state()

    def _handle_synthesis_error(self, error: SynthesisFailure) -> None:
        # Never surfaced: the utterance counts as spoken.
        self._output_state.last_error = error.kind
        logger.debug(f"[DIALOGUE] synthesis failure recorded: {error}")

    def _handle_transcript(self, update: TranscriptUpdate) -> None:
        if self._session.status != SessionStatus.LISTENING:
            return
        self._session.set_pending_transcript(update.text, simulated=update.simulated)
        self._emit_state()

    def _handle_silence_timeout(self) -> None:
        if self._session.status != SessionStatus.LISTENING:
            return
        self._warn("No speech detected. Answer when ready, or skip the question.")

    def _handle_input_error(self, error: VoiceError) -> None:
        if not self._session.is_active:
            return
        self._input_state.active = False
        self._input_state.last_error = error.kind

        if isinstance(error, TransientRecognitionError):
            logger.warning(f"[DIALOGUE] recognition error, turn stays open: {error}")
            self._set_status(SessionStatus.LISTENING)
            self._emit(self._error_handler, error.user_message)
            return

        if isinstance(error, UnsupportedEnvironmentError):
            self._spawn(self._degrade_input(error, self._token))
            return

        self._fail(error)

    def _spawn(self, coro) -> None:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Event delivery
    # ------------------------------------------------------------------

    def _set_status(self, status: SessionStatus) -> None:
        self._session.set_status(status)
        self._emit_state()

    def _emit_state(self) -> None:
        self._emit(self._state_handler, self.state)

    def _emit_transcript_update(self) -> None:
        self._emit(self._transcript_handler, self._session.messages)

    def _warn(self, message: str) -> None:
        logger.warning(f"[DIALOGUE] {message}")
        self._emit(self._warning_handler, message)

    def _emit(self, handler: Callable[[Any], None] | None, payload: Any) -> None:
        if handler is None:
            return
        try:
            handler(payload)
        except Exception:
            logger.exception("[DIALOGUE] subscriber raised")
