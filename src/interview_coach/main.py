"""
Main entry point for the interview coach CLI.

    interview-coach practice --role "Backend Developer" --techstack "Python, PostgreSQL"
    interview-coach practice --interview-id <id>
    interview-coach setup --practice
    interview-coach history [--others]
"""

import argparse
import asyncio
import logging
import sys
from collections.abc import Sequence

from interview_coach.auth import IdentityProvider, SettingsIdentityProvider
from interview_coach.config import Settings, get_settings
from interview_coach.db.repository import FeedbackRepository, InterviewRepository
from interview_coach.db.store import RecordStore, create_record_store
from interview_coach.dialogue.controller import DialogueConfig, DialogueController
from interview_coach.dialogue.schemas import ACTIVE_STATES, CompletionPayload, InterviewParams, SessionStatus
from interview_coach.dialogue.strategies import (
    DialogueStrategy,
    InterviewSetupStrategy,
    PracticeInterviewStrategy,
    parse_techstack,
)
from interview_coach.interview.feedback import FeedbackService
from interview_coach.interview.question_generator import QuestionGenerator
from interview_coach.interview.schemas import Feedback, Interview
from interview_coach.models.llm_client import LLMClient
from interview_coach.voice.audio_io import AudioIO
from interview_coach.voice.input import SimulatedSpeechInput, SpeechInputConfig, create_speech_input
from interview_coach.voice.output import SpeechOutputConfig, create_speech_output
from interview_coach.voice.stt import STTConfig
from interview_coach.voice.tts import TTSConfig

logger = logging.getLogger(__name__)

PROMPT = "[Enter] submit  [s] skip  [r] retry listening  [q] quit > "


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )


def build_parser(settings: Settings | None = None) -> argparse.ArgumentParser:
    """Build the CLI parser; option defaults come from INTERVIEW_COACH_* settings."""
    settings = settings or get_settings()

    voice = argparse.ArgumentParser(add_help=False)
    voice.add_argument(
        "--simulate",
        action=argparse.BooleanOptionalAction,
        default=settings.simulate_voice,
        help="Use simulated speech ports (default: INTERVIEW_COACH_SIMULATE_VOICE)",
    )
    voice.add_argument("--rate", type=float, default=settings.speech_rate, help="Speech rate 0.5..2.0")
    voice.add_argument("--volume", type=float, default=settings.speech_volume, help="Speech volume 0..1")
    voice.add_argument("--piper-bin", default=settings.piper_bin, help="Path/name of the Piper TTS binary")
    voice.add_argument("--piper-model", default=settings.piper_model, help="Path to the Piper .onnx voice")
    voice.add_argument("--stt-model", default=settings.stt_model, help="faster-whisper model size")
    voice.add_argument(
        "--stt-device",
        default=settings.stt_device,
        choices=["cpu", "cuda", "auto"],
        help="STT device",
    )
    voice.add_argument("--pause", type=float, default=1.0, help="Seconds of silence between spoken segments")

    p = argparse.ArgumentParser(prog="interview-coach", description="Voice mock-interview coach")
    p.add_argument("--database-url", default=settings.database_url, help="Record store URL (memory:// for none)")
    p.add_argument("--log-level", default=settings.log_level, choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    sub = p.add_subparsers(dest="command", required=True)

    practice = sub.add_parser("practice", parents=[voice], help="Run a spoken practice interview")
    practice.add_argument("--interview-id", help="Practice a previously generated interview")
    practice.add_argument("--role", default="Software Engineer")
    practice.add_argument("--level", default="Mid-level", help="Junior, Mid-level or Senior")
    practice.add_argument("--type", default="technical", choices=["technical", "behavioral", "mixed"])
    practice.add_argument("--techstack", default="", help="Comma-separated technologies")
    practice.add_argument("--amount", type=int, default=5, help="Number of questions to generate")
    practice.add_argument("--no-feedback", action="store_true", help="Skip scoring after the interview")

    setup = sub.add_parser("setup", parents=[voice], help="Create an interview by answering spoken questions")
    setup.add_argument("--practice", action="store_true", help="Start practicing the new interview right away")

    history = sub.add_parser("history", help="List your interviews and their feedback scores")
    history.add_argument("--others", action="store_true", help="List the newest finalized interviews of other users")
    history.add_argument("--limit", type=int, default=20)

    return p


def _echo(text: str = "") -> None:
    print(text, flush=True)


class TerminalSession:
    """Runs one dialogue controller against keyboard commands."""

    def __init__(self, controller: DialogueController) -> None:
        self._controller = controller
        self._printed = 0
        self._last_heard = ""
        self._payload: CompletionPayload | None = None

        controller.on_transcript_update(self._print_messages)
        controller.on_state_change(self._print_state)
        controller.on_complete(self._store_payload)
        controller.on_error(lambda message: _echo(f"!! {message}"))
        controller.on_warning(lambda message: _echo(f"-- {message}"))

    def _print_messages(self, messages) -> None:
        for message in messages[self._printed :]:
            speaker = "Interviewer" if message.role == "assistant" else "You"
            _echo(f"{speaker}: {message.content}")
        self._printed = len(messages)

    def _print_state(self, state) -> None:
        if state.transcript and state.transcript != self._last_heard:
            _echo(f"   (heard) {state.transcript}")
        self._last_heard = state.transcript

    def _store_payload(self, payload: CompletionPayload) -> None:
        self._payload = payload

    async def run(self, questions: Sequence[str] | None = None) -> CompletionPayload | None:
        controller = self._controller
        await controller.start(questions)

        while controller.status in ACTIVE_STATES:
            command = (await asyncio.to_thread(input, PROMPT)).strip().lower()
            if controller.status not in ACTIVE_STATES:
                break
            if command in ("q", "quit", "stop"):
                controller.stop()
            elif command in ("s", "skip"):
                await controller.skip_question()
            elif command in ("r", "retry"):
                await controller.restart_listening()
            else:
                await controller.submit_answer()

        if controller.status == SessionStatus.STOPPED:
            _echo("Interview stopped.")
        return self._payload


def build_controller(
    args: argparse.Namespace,
    settings: Settings,
    *,
    strategy: DialogueStrategy,
    interview_id: str | None,
    user_id: str | None,
) -> DialogueController:
    output_config = SpeechOutputConfig(
        rate=args.rate,
        volume=args.volume,
        safety_timeout_s=settings.tts_safety_timeout_s,
    )
    input_config = SpeechInputConfig(max_silence_s=settings.stt_max_silence_s)
    audio = AudioIO()

    output = create_speech_output(
        output_config,
        tts_config=TTSConfig(piper_bin=args.piper_bin, model_path=args.piper_model),
        audio=audio,
        force_simulated=args.simulate,
    )
    speech_input = create_speech_input(
        input_config,
        stt_config=STTConfig(model_size=args.stt_model, device=args.stt_device, language=settings.speech_language),
        audio=audio,
        force_simulated=args.simulate,
    )
    if output.simulated or speech_input.simulated:
        _echo("Running with simulated speech (no audio hardware or voice engine available).")

    return DialogueController(
        output=output,
        input=speech_input,
        strategy=strategy,
        config=DialogueConfig(
            speech_rate=args.rate,
            speech_volume=args.volume,
            interview_id=interview_id,
            user_id=user_id,
            turn_pause_s=args.pause,
        ),
        degraded_input_factory=lambda: SimulatedSpeechInput(input_config),
    )


async def _run_dialogue(
    args: argparse.Namespace,
    settings: Settings,
    *,
    strategy: DialogueStrategy,
    questions: Sequence[str] | None,
    interview_id: str | None,
    user_id: str | None,
) -> CompletionPayload | None:
    controller = build_controller(
        args, settings, strategy=strategy, interview_id=interview_id, user_id=user_id
    )
    try:
        return await TerminalSession(controller).run(questions)
    finally:
        controller.destroy()


def _print_feedback(feedback: Feedback) -> None:
    _echo()
    _echo(f"Total score: {feedback.total_score}/100")
    for category in feedback.category_scores:
        _echo(f"  {category.name}: {category.score} - {category.comment}")
    if feedback.strengths:
        _echo("Strengths:")
        for item in feedback.strengths:
            _echo(f"  + {item}")
    if feedback.areas_for_improvement:
        _echo("Areas for improvement:")
        for item in feedback.areas_for_improvement:
            _echo(f"  - {item}")
    _echo(feedback.final_assessment)


async def _practice(
    args: argparse.Namespace,
    settings: Settings,
    *,
    interview: Interview,
    llm_client: LLMClient,
    store: RecordStore,
    user_id: str | None,
) -> None:
    _echo(f"Practice interview: {interview.level} {interview.role} ({len(interview.questions)} questions)")
    payload = await _run_dialogue(
        args,
        settings,
        strategy=PracticeInterviewStrategy(),
        questions=interview.questions,
        interview_id=interview.id,
        user_id=user_id,
    )
    if payload is None:
        return

    _echo(f"Answered {payload.answers_given} of {payload.questions_asked} questions.")
    if getattr(args, "no_feedback", False):
        return

    _echo("Scoring your answers...")
    service = FeedbackService(llm_client, FeedbackRepository(store))
    result = await service.create_feedback(interview.id, user_id, payload.messages)
    if result.feedback is not None:
        _print_feedback(result.feedback)
    if not result.success:
        _echo(f"Feedback unavailable: {result.error}")


def _interview_line(interview: Interview) -> str:
    return (
        f"{interview.id}  {interview.created_at:%Y-%m-%d %H:%M}  "
        f"{interview.level} {interview.role} ({interview.question_count} questions)"
    )


async def _history(store: RecordStore, user_id: str | None, *, others: bool = False, limit: int = 20) -> int:
    """Print the user's interviews with scores, or other users' ready-to-take interviews."""
    interviews = InterviewRepository(store)
    if others:
        latest = await interviews.list_latest(exclude_user_id=user_id, limit=limit)
        if not latest:
            _echo("No interviews from other users yet.")
        for interview in latest:
            _echo(f"{_interview_line(interview)}  {', '.join(interview.techstack) or '-'}")
        return 0

    if not user_id:
        _echo("No user configured; set INTERVIEW_COACH_USER_ID.")
        return 1
    feedback_repo = FeedbackRepository(store)
    for interview in (await interviews.list_by_user(user_id))[:limit]:
        feedback = await feedback_repo.get_by_interview(interview.id, user_id)
        score = f"{feedback.total_score}/100" if feedback else "not scored"
        _echo(f"{_interview_line(interview)}  {score}")
    return 0


async def run(argv: list[str] | None = None) -> int:
    """
    Run one CLI command.

    This is the main async entry point that initializes all components.
    """
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)
    logging.getLogger().setLevel(getattr(logging, args.log_level))

    identity: IdentityProvider = SettingsIdentityProvider(settings)
    user_id = await identity.get_current_user_id()

    store = create_record_store(args.database_url)
    await store.init_schema()
    interviews = InterviewRepository(store)
    llm_client = LLMClient(
        model=settings.llm_model_name,
        base_url=settings.llm_base_url,
        timeout=settings.llm_timeout,
        max_retries=settings.llm_max_retries,
    )

    try:
        if args.command == "history":
            return await _history(store, user_id, others=args.others, limit=args.limit)

        generator = QuestionGenerator(llm_client, interviews)

        if args.command == "setup":
            payload = await _run_dialogue(
                args,
                settings,
                strategy=InterviewSetupStrategy(),
                questions=None,
                interview_id=None,
                user_id=user_id,
            )
            if payload is None or payload.interview_params is None:
                return 1
            generated = await generator.generate(payload.interview_params)
            _echo(f"Interview created with {len(generated.questions)} questions ({generated.source}):")
            for i, question in enumerate(generated.questions, start=1):
                _echo(f"  {i}. {question}")
            if generated.interview_id:
                _echo(f"Interview id: {generated.interview_id}")
            if args.practice and generated.interview is not None:
                await _practice(
                    args, settings, interview=generated.interview, llm_client=llm_client, store=store, user_id=user_id
                )
            return 0

        # practice
        if args.interview_id:
            interview = await interviews.get_by_id(args.interview_id)
            if interview is None:
                _echo(f"Interview {args.interview_id} not found.")
                return 1
        else:
            params = InterviewParams(
                role=args.role,
                level=args.level,
                type=args.type,
                techstack=parse_techstack(args.techstack),
                amount=args.amount,
                user_id=user_id,
            )
            interview = (await generator.generate(params)).interview
        await _practice(args, settings, interview=interview, llm_client=llm_client, store=store, user_id=user_id)
        return 0
    finally:
        await llm_client.close()
        await store.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        sys.exit(asyncio.run(run(sys.argv[1:])))
    except KeyboardInterrupt:
        print("\nInterview session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logging.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
