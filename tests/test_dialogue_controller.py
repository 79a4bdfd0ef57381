import asyncio

import pytest

from interview_coach.dialogue.controller import DialogueConfig, DialogueController
from interview_coach.dialogue.errors import EmptyQuestionSetError, InvalidQuestionSetError, InvalidStateError
from interview_coach.dialogue.schemas import SKIPPED_ANSWER, SessionStatus
from interview_coach.dialogue.strategies import (
    SETUP_QUESTIONS,
    InterviewSetupStrategy,
    PracticeInterviewStrategy,
)
from interview_coach.voice.errors import (
    ErrorKind,
    PermissionDeniedError,
    TransientRecognitionError,
    UnsupportedEnvironmentError,
)
from interview_coach.voice.input import SimulatedSpeechInput, SpeechInputConfig, SpeechInputPort
from interview_coach.voice.output import SpeechOutputConfig, SpeechOutputPort


class FakeOutput(SpeechOutputPort):
    def __init__(self) -> None:
        super().__init__(SpeechOutputConfig(safety_timeout_s=5.0))
        self.spoken: list[str] = []
        self.hold = False
        self.fail_with: Exception | None = None
        self.input: SpeechInputPort | None = None

    async def _render(self, text: str) -> None:
        # Output and input must never be active together.
        assert self.input is None or not self.input.is_active
        self.spoken.append(text)
        if self.fail_with is not None:
            raise self.fail_with
        if self.hold:
            await asyncio.Event().wait()


class FakeInput(SpeechInputPort):
    def __init__(self, start_error: Exception | None = None) -> None:
        super().__init__(SpeechInputConfig(max_silence_s=60.0))
        self.start_error = start_error
        self.start_calls = 0
        self.close_calls = 0

    async def _open(self) -> None:
        self.start_calls += 1
        if self.start_error is not None:
            raise self.start_error

    def _close(self) -> None:
        self.close_calls += 1

    def say(self, text: str, *, is_final: bool = False) -> None:
        self._emit_transcript(text, is_final=is_final)

    def fail(self, error) -> None:
        self._fail(error)


class Recorder:
    def __init__(self, controller: DialogueController) -> None:
        self.states = []
        self.messages = []
        self.turns = []
        self.completions = []
        self.errors = []
        self.warnings = []
        controller.on_state_change(self.states.append)
        controller.on_transcript_update(self.messages.append)
        controller.on_turn_complete(self.turns.append)
        controller.on_complete(self.completions.append)
        controller.on_error(self.errors.append)
        controller.on_warning(self.warnings.append)

    @property
    def event_count(self) -> int:
        return sum(
            len(x) for x in (self.states, self.messages, self.turns, self.completions, self.errors, self.warnings)
        )

    @property
    def statuses(self) -> list[SessionStatus]:
        return [s.status for s in self.states]


def make_controller(*, input_port: FakeInput | None = None, strategy=None, degraded_input_factory=None):
    output = FakeOutput()
    speech_input = input_port or FakeInput()
    output.input = speech_input
    controller = DialogueController(
        output=output,
        input=speech_input,
        strategy=strategy or PracticeInterviewStrategy(submit_hint=""),
        config=DialogueConfig(interview_id="iv-1", user_id="user-1"),
        degraded_input_factory=degraded_input_factory,
    )
    return controller, output, speech_input, Recorder(controller)


async def _wait_until_speaking(output: FakeOutput) -> None:
    for _ in range(50):
        if output.is_speaking:
            return
        await asyncio.sleep(0)
    raise AssertionError("output never started speaking")


class TestTurnTaking:
    """Normal flows through the dialogue."""

    @pytest.mark.asyncio
    async def test_two_answered_questions_complete_once(self) -> None:
        controller, output, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2"])
        assert controller.status == SessionStatus.LISTENING
        assert speech_input.is_active

        speech_input.say("answer one")
        await controller.submit_answer()
        assert controller.session.current_index == 1
        assert controller.status == SessionStatus.LISTENING
        first_listen = rec.statuses.index(SessionStatus.LISTENING)
        assert SessionStatus.AWAITING_SPEECH in rec.statuses[first_listen:]

        speech_input.say("answer two", is_final=True)
        await controller.submit_answer()

        assert controller.status == SessionStatus.COMPLETED
        assert len(rec.completions) == 1
        payload = rec.completions[0]
        assert payload.questions_asked == 2
        assert payload.answers_given == 2
        assert payload.interview_id == "iv-1"
        assert payload.user_id == "user-1"
        assert [t.question_index for t in payload.transcript] == [0, 1]
        assert [t.answer_text for t in payload.transcript] == ["answer one", "answer two"]

    @pytest.mark.asyncio
    async def test_spoken_lines_follow_practice_script(self) -> None:
        controller, output, speech_input, _ = make_controller()

        await controller.start(["Explain closures."])
        speech_input.say("A function with captured scope")
        await controller.submit_answer()

        assert output.spoken == [
            "Interview starting. I will ask questions and wait for your answers.",
            "Question 1. Explain closures.",
            "Thank you for your answer.",
            "Interview completed. Preparing your feedback.",
        ]

    @pytest.mark.asyncio
    async def test_last_turn_passes_through_processing(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.say("done")
        await controller.submit_answer()

        assert rec.statuses[-2:] == [SessionStatus.PROCESSING, SessionStatus.COMPLETED]
        assert rec.states[-2].is_processing

    @pytest.mark.asyncio
    async def test_messages_record_questions_answers_and_skips(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2"])
        speech_input.say("my answer")
        await controller.submit_answer()
        await controller.skip_question()

        contents = [(m.role, m.content) for m in rec.completions[0].messages]
        assert contents == [
            ("assistant", "Question 1: Q1"),
            ("user", "my answer"),
            ("assistant", "Question 2: Q2"),
            ("user", "[Skipped question 2]"),
        ]

    @pytest.mark.asyncio
    async def test_speaking_and_listening_never_overlap(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2", "Q3"])
        for answer in ("a", "b"):
            speech_input.say(answer)
            await controller.submit_answer()
        await controller.skip_question()

        assert rec.states
        assert not any(s.is_speaking and s.is_listening for s in rec.states)
        assert any(s.is_speaking for s in rec.states)
        assert any(s.is_listening for s in rec.states)

    @pytest.mark.asyncio
    async def test_turn_complete_precedes_completion(self) -> None:
        controller, _, speech_input, rec = make_controller()
        order: list[str] = []
        controller.on_turn_complete(lambda t: order.append(f"turn{t.question_index}"))
        controller.on_complete(lambda p: order.append("complete"))

        await controller.start(["Q1", "Q2"])
        speech_input.say("x")
        await controller.submit_answer()
        await controller.skip_question()

        assert order == ["turn0", "turn1", "complete"]


class TestSkipAndSubmitRules:
    @pytest.mark.asyncio
    async def test_skip_before_any_transcript(self) -> None:
        controller, _, _, rec = make_controller()

        await controller.start(["Q1"])
        await controller.skip_question()

        assert controller.status == SessionStatus.COMPLETED
        payload = rec.completions[0]
        assert payload.answers_given == 0
        assert payload.questions_asked == 1
        assert payload.transcript[0].answer_text == SKIPPED_ANSWER
        assert payload.transcript[0].skipped

    @pytest.mark.asyncio
    async def test_skip_ignores_pending_text(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2"])
        speech_input.say("half an answer")
        await controller.skip_question()

        assert rec.turns[0].answer_text == SKIPPED_ANSWER
        assert controller.session.pending_transcript == ""

    @pytest.mark.asyncio
    async def test_submit_while_idle_is_a_warning(self) -> None:
        controller, output, _, rec = make_controller()

        await controller.submit_answer()

        assert controller.status == SessionStatus.IDLE
        assert rec.warnings and "idle" in rec.warnings[0]
        assert rec.states == []
        assert rec.turns == []
        assert output.spoken == []

    @pytest.mark.asyncio
    async def test_submit_with_empty_transcript_keeps_listening(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.say("   ")
        await controller.submit_answer()

        assert controller.status == SessionStatus.LISTENING
        assert controller.session.current_index == 0
        assert speech_input.is_active
        assert rec.warnings == ["Please speak an answer first"]
        assert rec.turns == []

    @pytest.mark.asyncio
    async def test_transcripts_alone_never_advance(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2"])
        for i in range(5):
            speech_input.say(f"partial {i}")
            speech_input.say(f"final {i}", is_final=True)
        await asyncio.sleep(0.01)

        assert controller.session.current_index == 0
        assert controller.status == SessionStatus.LISTENING
        assert controller.session.pending_transcript == "final 4"
        assert rec.turns == []

    @pytest.mark.asyncio
    async def test_interim_text_can_be_submitted(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.say("still talking", is_final=False)
        await controller.submit_answer()

        assert rec.turns[0].answer_text == "still talking"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_mid_speech_cancels_output(self) -> None:
        controller, output, speech_input, rec = make_controller()
        output.hold = True

        task = asyncio.create_task(controller.start(["Q1"]))
        await _wait_until_speaking(output)
        assert controller.status == SessionStatus.AWAITING_SPEECH

        controller.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert controller.status == SessionStatus.STOPPED
        assert not output.is_speaking
        assert speech_input.start_calls == 0
        assert rec.completions == []
        assert len(output.spoken) == 1

    @pytest.mark.asyncio
    async def test_stop_while_listening_discards_pending(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.say("unsent")
        controller.stop()

        assert controller.status == SessionStatus.STOPPED
        assert not speech_input.is_active
        assert controller.session.pending_transcript == ""
        assert controller.session.transcript_log == []
        assert rec.completions == []

    @pytest.mark.asyncio
    async def test_stop_twice_emits_nothing_more(self) -> None:
        controller, _, _, rec = make_controller()

        await controller.start(["Q1"])
        controller.stop()
        await asyncio.sleep(0.01)
        events = rec.event_count

        controller.stop()
        await asyncio.sleep(0.01)

        assert rec.event_count == events
        assert controller.status == SessionStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_in_terminal_and_idle_states_is_noop(self) -> None:
        controller, _, _, rec = make_controller()

        controller.stop()
        assert controller.status == SessionStatus.IDLE
        assert rec.event_count == 0

        await controller.start(["Q1"])
        await controller.skip_question()
        events = rec.event_count
        controller.stop()

        assert controller.status == SessionStatus.COMPLETED
        assert rec.event_count == events

    @pytest.mark.asyncio
    async def test_stop_after_last_answer_suppresses_completion(self) -> None:
        controller, output, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.say("answer")
        output.hold = True
        task = asyncio.create_task(controller.submit_answer())
        await _wait_until_speaking(output)

        controller.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert controller.status == SessionStatus.STOPPED
        assert rec.completions == []
        assert len(rec.turns) == 1

    @pytest.mark.asyncio
    async def test_restart_after_stop(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        controller.stop()
        await controller.start(["Again"])
        speech_input.say("ok")
        await controller.submit_answer()

        assert controller.status == SessionStatus.COMPLETED
        assert rec.completions[0].transcript[0].question_text == "Again"


class TestMisuse:
    @pytest.mark.asyncio
    async def test_start_while_running_raises(self) -> None:
        controller, _, _, _ = make_controller()
        await controller.start(["Q1"])

        with pytest.raises(InvalidStateError):
            await controller.start(["Q2"])

        assert controller.status == SessionStatus.LISTENING
        assert controller.session.questions == ("Q1",)

    @pytest.mark.asyncio
    async def test_start_without_questions_raises(self) -> None:
        controller, output, _, _ = make_controller()

        with pytest.raises(EmptyQuestionSetError):
            await controller.start([])
        with pytest.raises(EmptyQuestionSetError):
            await controller.start(["  ", ""])

        assert controller.status == SessionStatus.IDLE
        assert output.spoken == []

    @pytest.mark.asyncio
    async def test_blank_question_among_others_is_rejected(self) -> None:
        controller, output, _, _ = make_controller()

        with pytest.raises(InvalidQuestionSetError, match="position\\(s\\) 2"):
            await controller.start(["Q1", "  ", "Q3"])

        assert controller.status == SessionStatus.IDLE
        assert output.spoken == []

    @pytest.mark.asyncio
    async def test_destroyed_controller_cannot_start(self) -> None:
        controller, _, speech_input, rec = make_controller()
        await controller.start(["Q1"])

        controller.destroy()

        assert controller.status == SessionStatus.STOPPED
        assert not speech_input.is_active
        with pytest.raises(InvalidStateError):
            await controller.start(["Q1"])

    def test_config_rejects_out_of_range_rate(self) -> None:
        with pytest.raises(ValueError):
            DialogueConfig(speech_rate=3.0)
        with pytest.raises(ValueError):
            DialogueConfig(speech_volume=-0.1)


class TestPortErrors:
    @pytest.mark.asyncio
    async def test_permission_denied_while_listening_fails_session(self) -> None:
        controller, output, speech_input, rec = make_controller()

        await controller.start(["Q1", "Q2"])
        spoken_before = len(output.spoken)
        starts_before = speech_input.start_calls

        speech_input.fail(PermissionDeniedError())
        await asyncio.sleep(0.01)

        assert controller.status == SessionStatus.FAILED
        assert len(rec.errors) == 1
        assert "microphone" in rec.errors[0].lower()
        assert len(output.spoken) == spoken_before
        assert speech_input.start_calls == starts_before
        assert controller.input_state.last_error == ErrorKind.PERMISSION_DENIED
        assert rec.completions == []

    @pytest.mark.asyncio
    async def test_permission_denied_on_start_fails_session(self) -> None:
        controller, output, speech_input, rec = make_controller(
            input_port=FakeInput(start_error=PermissionDeniedError())
        )

        await controller.start(["Q1"])

        assert controller.status == SessionStatus.FAILED
        assert len(rec.errors) == 1
        assert speech_input.start_calls == 1
        assert not any(s.is_listening for s in rec.states)

        events = rec.event_count
        controller.stop()
        await controller.submit_answer()
        assert rec.event_count == events + 1  # only the submit warning
        assert controller.status == SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_transient_error_keeps_turn_open(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        speech_input.fail(TransientRecognitionError())

        assert controller.status == SessionStatus.LISTENING
        assert len(rec.errors) == 1
        assert not controller.input_state.active
        assert controller.input_state.last_error == ErrorKind.TRANSIENT_RECOGNITION

        await controller.restart_listening()
        assert speech_input.start_calls == 2
        assert controller.input_state.active

        speech_input.say("second try")
        await controller.submit_answer()
        assert controller.status == SessionStatus.COMPLETED
        assert rec.completions[0].transcript[0].answer_text == "second try"

    @pytest.mark.asyncio
    async def test_restart_listening_requires_prior_error(self) -> None:
        controller, _, speech_input, rec = make_controller()

        await controller.start(["Q1"])
        await controller.restart_listening()

        assert speech_input.start_calls == 1
        assert len(rec.warnings) == 1

    @pytest.mark.asyncio
    async def test_unsupported_input_degrades_to_simulated(self) -> None:
        simulated = SimulatedSpeechInput(SpeechInputConfig(simulated_delay_s=0.01), answers=("canned answer",))
        controller, _, real_input, rec = make_controller(
            input_port=FakeInput(start_error=UnsupportedEnvironmentError()),
            degraded_input_factory=lambda: simulated,
        )

        await controller.start(["Q1"])

        assert controller.status == SessionStatus.LISTENING
        assert controller.input_port is simulated
        assert rec.errors == []
        assert len(rec.warnings) == 1
        assert controller.input_state.last_error == ErrorKind.UNSUPPORTED_ENVIRONMENT

        await asyncio.sleep(0.05)
        assert controller.session.pending_transcript == "canned answer"
        await controller.submit_answer()

        record = rec.completions[0].transcript[0]
        assert record.answer_text == "canned answer"
        assert record.simulated
        controller.destroy()

    @pytest.mark.asyncio
    async def test_unsupported_input_without_fallback_fails(self) -> None:
        controller, _, _, rec = make_controller(input_port=FakeInput(start_error=UnsupportedEnvironmentError()))

        await controller.start(["Q1"])

        assert controller.status == SessionStatus.FAILED
        assert len(rec.errors) == 1

    @pytest.mark.asyncio
    async def test_synthesis_failure_is_invisible(self) -> None:
        controller, output, speech_input, rec = make_controller()
        output.fail_with = RuntimeError("engine down")

        await controller.start(["Q1"])

        assert controller.status == SessionStatus.LISTENING
        assert rec.errors == []
        assert controller.output_state.last_error == ErrorKind.SYNTHESIS_FAILURE

        speech_input.say("still works")
        await controller.submit_answer()
        assert controller.status == SessionStatus.COMPLETED


class TestSubscriptions:
    @pytest.mark.asyncio
    async def test_last_registration_wins(self) -> None:
        controller, _, _, _ = make_controller()
        first: list = []
        second: list = []
        controller.on_complete(first.append)
        controller.on_complete(second.append)

        await controller.start(["Q1"])
        await controller.skip_question()

        assert first == []
        assert len(second) == 1

    @pytest.mark.asyncio
    async def test_failing_subscriber_does_not_break_dialogue(self) -> None:
        controller, _, _, _ = make_controller()

        def boom(_state) -> None:
            raise RuntimeError("ui crashed")

        controller.on_state_change(boom)
        await controller.start(["Q1"])
        await controller.skip_question()

        assert controller.status == SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_destroy_clears_port_callbacks(self) -> None:
        controller, output, speech_input, rec = make_controller()
        await controller.start(["Q1"])

        controller.destroy()
        speech_input.say("late")

        assert speech_input._on_transcript is None
        assert output._on_start is None
        assert controller.session.pending_transcript == ""


class TestSetupDialogue:
    @pytest.mark.asyncio
    async def test_setup_uses_default_questions_and_parses_answers(self) -> None:
        controller, output, speech_input, rec = make_controller(strategy=InterviewSetupStrategy())

        await controller.start()
        assert controller.session.questions == SETUP_QUESTIONS

        answers = ["Behavioral please", "a backend developer role", "Senior", "Go, Kubernetes and Postgres"]
        for answer in answers:
            speech_input.say(answer)
            await controller.submit_answer()
        await controller.skip_question()

        payload = rec.completions[0]
        assert payload.mode == "setup"
        params = payload.interview_params
        assert params is not None
        assert params.type == "behavioral"
        assert params.role == "Backend developer"
        assert params.level == "Senior"
        assert params.techstack == ["Go", "Kubernetes", "Postgres"]
        assert params.amount == 5
        assert params.user_id == "user-1"
        assert output.spoken[0].startswith("Welcome to interview setup")
